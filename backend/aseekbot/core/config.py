"""
Application configuration via environment variables (12-factor).
Pydantic BaseSettings validates and coerces all values at startup.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ------------------------------------------------------------------
    # AWS
    # ------------------------------------------------------------------
    aws_region: str = "us-east-1"

    # Local dev: set these (or point aws_endpoint_url at LocalStack);
    # prod: use the task role, no static keys
    aws_access_key_id:     str = ""
    aws_secret_access_key: str = ""
    aws_endpoint_url:      str = ""

    # ------------------------------------------------------------------
    # Content store (S3)
    # ------------------------------------------------------------------
    s3_bucket: str = "aseekbot-documents"
    upload_prefix: str = "uploads"
    presigned_url_expiry_seconds: int = 300

    # ------------------------------------------------------------------
    # Status tables (DynamoDB)
    # ------------------------------------------------------------------
    request_status_table:  str = "RequestStatus"
    document_status_table: str = "DocumentAnalysisStatus"

    # ------------------------------------------------------------------
    # Pipeline limits
    # ------------------------------------------------------------------
    max_document_size_bytes:  int = 10 * 1024 * 1024   # validation ceiling
    textract_sync_max_bytes:  int = 5 * 1024 * 1024    # sync OCR only below this
    payload_text_limit_chars: int = 100_000            # externalize above this
    payload_text_keep_chars:  int = 50_000             # kept in the payload when externalized
    ocr_blocks_limit:         int = 1000
    spreadsheet_preview_bytes: int = 20_000
    procurement_field_cap:     int = 20

    # ------------------------------------------------------------------
    # OCR job polling
    # ------------------------------------------------------------------
    textract_poll_base_delay:   float = 1.0
    textract_poll_factor:       float = 1.5
    textract_poll_max_delay:    float = 15.0
    textract_poll_max_attempts: int   = 30

    # ------------------------------------------------------------------
    # Status estimation while a run is in flight
    # ------------------------------------------------------------------
    assumed_execution_seconds: int = 120
    running_progress_ceiling:  int = 95

    # ------------------------------------------------------------------
    # Bedrock agent
    # ------------------------------------------------------------------
    bedrock_agent_id:       str = ""
    bedrock_agent_alias_id: str = ""
    agent_max_retries:      int   = 3
    agent_base_delay:       float = 1.0
    insights_use_agent:     bool  = True

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------
    app_env: str = "development"   # development | staging | production
    debug: bool = False
    cors_origins: list[str] = ["http://localhost:3000"]   # JSON list in the environment

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def agent_configured(self) -> bool:
        return bool(self.bedrock_agent_id and self.bedrock_agent_alias_id)

    def aws_client_kwargs(self) -> dict:
        """Keyword arguments shared by every boto3/aioboto3 client we create."""
        kwargs: dict = {"region_name": self.aws_region}
        if self.aws_endpoint_url:
            kwargs["endpoint_url"] = self.aws_endpoint_url
        if self.aws_access_key_id and self.aws_secret_access_key:
            kwargs["aws_access_key_id"] = self.aws_access_key_id
            kwargs["aws_secret_access_key"] = self.aws_secret_access_key
        return kwargs


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
