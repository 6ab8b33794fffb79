"""
Pydantic request/response schemas for the HTTP surface.

Covers:
  - Chat/document ingestion        POST /api/v1/chat/messages
  - Status polling                 GET  /api/v1/status/{request_id}
  - Document-analysis start        POST /api/v1/document-analysis
  - Upload / download              /api/v1/files/*
  - Structured error bodies (400, 404, 413, 500, 503)

Wire format is camelCase (the chat client sends ``sessionId``, ``s3Files``,
``s3Url``...). Models accept either spelling and are dumped with
``by_alias=True``.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# File type partition
# ---------------------------------------------------------------------------

OCR_FILE_TYPES: frozenset[str] = frozenset({"pdf", "tiff", "jpeg", "jpg", "png"})
STRUCTURED_FILE_TYPES: frozenset[str] = frozenset({"docx", "xlsx", "csv", "txt"})
SUPPORTED_FILE_TYPES: frozenset[str] = OCR_FILE_TYPES | STRUCTURED_FILE_TYPES


# ---------------------------------------------------------------------------
# Processing status state machine
# ---------------------------------------------------------------------------

class ProcessingStatus(str, Enum):
    """
    Transitions: QUEUED → PROCESSING → COMPLETED | FAILED | ERROR
    Terminal records are only rewritten by status reconciliation (in the view).
    """
    QUEUED      = "QUEUED"       # record written, work not yet picked up
    PROCESSING  = "PROCESSING"   # a pipeline run is in flight
    COMPLETED   = "COMPLETED"    # result artifact stored
    FAILED      = "FAILED"       # fatal stage error or failed run
    ERROR       = "ERROR"        # error recorded outside a run (dispatch, worker)

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[ProcessingStatus] = frozenset(
    {ProcessingStatus.COMPLETED, ProcessingStatus.FAILED, ProcessingStatus.ERROR}
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

class S3FileReference(CamelModel):
    """One already-uploaded file attached to a chat message."""
    name:      str
    s3_url:    str
    mime_type: str | None = None
    use_case:  str | None = None


class ChatMessageRequest(CamelModel):
    # message is optional at the schema level so a missing value reaches the
    # route and is reported as MISSING_MESSAGE (400) rather than a generic error
    message:    str | None = None
    session_id: str | None = None
    s3_files:   list[S3FileReference] = Field(default_factory=list)
    user_id:    str | None = None
    chat_id:    str | None = None


class ChatMessageResponse(CamelModel):
    """202 Accepted: the request is recorded and queued."""
    request_id:    str
    status:        ProcessingStatus = ProcessingStatus.QUEUED
    message:       str
    chat_id:       str
    message_order: int


# ---------------------------------------------------------------------------
# Document analysis
# ---------------------------------------------------------------------------

class DocumentAnalysisRequest(CamelModel):
    s3_bucket: str | None = None
    s3_key:    str | None = None
    file_type: str | None = None
    user_id:   str | None = None
    is_multiple_documents: bool = False
    parser_type: str | None = None

    def missing_fields(self) -> list[str]:
        required = {
            "s3Bucket": self.s3_bucket,
            "s3Key":    self.s3_key,
            "fileType": self.file_type,
            "userId":   self.user_id,
        }
        return [name for name, value in required.items() if not value]


class DocumentAnalysisResponse(CamelModel):
    success:       bool = True
    execution_arn: str
    document_id:   str


# ---------------------------------------------------------------------------
# Upload / download
# ---------------------------------------------------------------------------

class FileUploadResponse(CamelModel):
    success:   bool = True
    file_url:  str
    file_key:  str
    file_name: str
    file_type: str
    file_size: int


class DownloadUrlResponse(CamelModel):
    url:        str
    expires_in: int


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str         = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


class ApiErrors:
    """Factories for every documented error case."""

    @staticmethod
    def missing_message() -> ErrorResponse:
        return ErrorResponse(
            error_code="MISSING_MESSAGE",
            message="A message is required.",
            details=[ErrorDetail(field="message", message="'message' must be a non-empty string.", code="MISSING_MESSAGE")],
        )

    @staticmethod
    def missing_fields(fields: list[str]) -> ErrorResponse:
        return ErrorResponse(
            error_code="MISSING_FIELDS",
            message=f"Missing required fields: {', '.join(fields)}",
            details=[
                ErrorDetail(field=name, message=f"'{name}' is required.", code="MISSING_FIELD")
                for name in fields
            ],
        )

    @staticmethod
    def missing_identifier(name: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="MISSING_IDENTIFIER",
            message=f"'{name}' is required.",
            details=[ErrorDetail(field=name, message=f"'{name}' is required.", code="MISSING_IDENTIFIER")],
        )

    @staticmethod
    def record_not_found(record_id: str, kind: str = "request") -> ErrorResponse:
        return ErrorResponse(
            error_code="NOT_FOUND",
            message=f"No {kind} found with ID: {record_id}",
        )

    @staticmethod
    def invalid_body(detail: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="INVALID_BODY",
            message="The request body could not be parsed.",
            details=[ErrorDetail(field=None, message=detail, code="INVALID_BODY")],
        )

    @staticmethod
    def invalid_file_reference(value: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="INVALID_FILE_REFERENCE",
            message=f"'{value}' is not a valid object URL or key.",
        )

    @staticmethod
    def missing_file() -> ErrorResponse:
        return ErrorResponse(
            error_code="MISSING_FILE",
            message="No file was provided in the request.",
            details=[ErrorDetail(field="file", message="The 'file' multipart field is required.", code="MISSING_FILE")],
        )

    @staticmethod
    def file_too_large(size_bytes: int, max_bytes: int) -> ErrorResponse:
        return ErrorResponse(
            error_code="FILE_TOO_LARGE",
            message=f"Uploaded file exceeds the {max_bytes // (1024 * 1024)} MB limit.",
            details=[
                ErrorDetail(
                    field="file",
                    message=f"Received {size_bytes:,} bytes; limit is {max_bytes:,} bytes.",
                    code="FILE_TOO_LARGE",
                )
            ],
        )

    @staticmethod
    def storage_error(detail: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="STORAGE_ERROR",
            message="Failed to access document storage. Please retry.",
            details=(
                [ErrorDetail(field=None, message=detail, code="STORAGE_ERROR")]
                if detail
                else []
            ),
        )

    @staticmethod
    def queue_error() -> ErrorResponse:
        return ErrorResponse(
            error_code="QUEUE_ERROR",
            message="The request was recorded but could not be queued for processing.",
        )

    @staticmethod
    def execution_error() -> ErrorResponse:
        return ErrorResponse(
            error_code="EXECUTION_ERROR",
            message="The document analysis run could not be started.",
        )

    @staticmethod
    def internal_error(request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred. Our team has been notified.",
            request_id=request_id,
        )
