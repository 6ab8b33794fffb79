"""
Job Payload
═══════════

The single growing record threaded through every pipeline stage.

Each stage reads a declared subset of fields and returns a mapping of
updates restricted to its declared writes; ``JobPayload.merge`` applies the
updates additively, so everything written upstream (validation metadata,
extraction method, ...) is still present when the run finishes.

On the wire the payload is camelCase JSON (``extractedText``,
``textExtractionMethod``, ``analysisResults``, ``resultLocation``, ...).
Fields the model does not know are kept as-is, so an event that enters with
extra keys leaves with them.
"""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field, model_validator

from aseekbot.schemas.documents import CamelModel, ProcessingStatus
from aseekbot.storage.base import ObjectRef

PAYLOAD_VERSION = 1


# ---------------------------------------------------------------------------
# Stage output models
# ---------------------------------------------------------------------------

class ValidationResult(CamelModel):
    is_valid: bool
    message:  str


class TextractResults(CamelModel):
    blocks_ref:   ObjectRef | None = None
    text_preview: str = ""


class ExtractionDetails(CamelModel):
    file_size:        int
    file_type:        str
    timestamp:        str
    character_count:  int
    line_count:       int
    methods:          list[str] = Field(default_factory=list)
    pages_processed:  int = 0


class SpreadsheetRefs(CamelModel):
    sheets_ref:             ObjectRef
    procurement_fields_ref: ObjectRef
    sheet_names:            list[str] = Field(default_factory=list)
    row_counts:             dict[str, int] = Field(default_factory=dict)


class ExtractionErrorInfo(CamelModel):
    message: str
    name:    str


class Entities(CamelModel):
    vendors:  list[str] = Field(default_factory=list)
    products: list[str] = Field(default_factory=list)
    prices:   list[str] = Field(default_factory=list)


class AnalysisMetadata(CamelModel):
    word_count:              int = 0
    keywords:                list[str] = Field(default_factory=list)
    dates:                   list[str] = Field(default_factory=list)
    is_procurement_document: bool = False


class AnalysisResult(CamelModel):
    document_type:    str
    key_findings:     list[str] = Field(default_factory=list)
    entities:         Entities = Field(default_factory=Entities)
    sentiment:        str = "neutral"          # positive | negative | neutral
    confidence_score: float = 0.0
    metadata:         AnalysisMetadata = Field(default_factory=AnalysisMetadata)
    error:            str | None = None


class ComparisonResults(CamelModel):
    similarities:       list[str] = Field(default_factory=list)
    differences:        list[str] = Field(default_factory=list)
    recommendation:     str = ""
    documents_compared: int = 0


class PipelineErrorInfo(CamelModel):
    message: str
    kind:    str
    stage:   str | None = None


# ---------------------------------------------------------------------------
# The payload
# ---------------------------------------------------------------------------

class JobPayload(CamelModel):
    """
    Versioned job payload. Optional fields stay None until the stage that
    owns them has run.
    """

    model_config = ConfigDict(extra="allow")

    version: int = PAYLOAD_VERSION

    # identity / context
    document_id:  str
    user_id:      str = "anonymous"
    session_id:   str | None = None
    request_id:   str | None = None
    source_ref:   ObjectRef
    file_type:    str = ""
    use_case:     str = "document-analysis"
    parser_type:  str = "general-parser"
    is_multiple_documents: bool = False
    documents:    list[dict[str, Any]] = Field(default_factory=list)

    # Init
    process_id:   str | None = None
    start_time:   str | None = None

    # Validate
    file_size_bytes:       int | None = None
    content_type:          str | None = None
    is_textract_supported: bool | None = None
    validation_result:     ValidationResult | None = None

    # Extract
    extracted_text:         str | None = None
    text_extraction_method: str | None = None
    text_ref:               ObjectRef | None = None
    textract_results:       TextractResults | None = None
    extraction_details:     ExtractionDetails | None = None
    spreadsheet_refs:       SpreadsheetRefs | None = None
    extraction_warnings:    list[str] = Field(default_factory=list)
    extraction_error:       ExtractionErrorInfo | None = None
    image_count:            int | None = None

    # Analyze
    analysis_results:   AnalysisResult | None = None
    analysis_timestamp: str | None = None

    # Compare
    comparison_results:   ComparisonResults | None = None
    comparison_timestamp: str | None = None

    # GenerateInsights
    insights:           dict[str, Any] | None = None
    insights_timestamp: str | None = None

    # Store
    result_location:   ObjectRef | None = None
    storage_timestamp: str | None = None

    # HandleError / UpdateStatus
    error:    PipelineErrorInfo | None = None
    status:   ProcessingStatus | None = None
    progress: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _fold_legacy_source(cls, data: Any) -> Any:
        """Accept ``s3Bucket``/``s3Key`` in place of ``sourceRef``."""
        if not isinstance(data, dict):
            return data
        if "sourceRef" in data or "source_ref" in data:
            return data
        bucket = data.get("s3Bucket") or data.get("s3_bucket")
        key = data.get("s3Key") or data.get("s3_key")
        if bucket and key:
            data = {
                k: v for k, v in data.items()
                if k not in ("s3Bucket", "s3_bucket", "s3Key", "s3_key")
            }
            data["sourceRef"] = {"bucket": bucket, "key": key}
        return data

    # ------------------------------------------------------------------

    @classmethod
    def from_event(cls, event: dict[str, Any]) -> "JobPayload":
        return cls.model_validate(event)

    def to_event(self) -> dict[str, Any]:
        """camelCase JSON-safe dict, None fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def merge(self, updates: dict[str, Any]) -> "JobPayload":
        """
        Return a new payload with ``updates`` (keyed by field name) applied.
        The receiver is not modified.
        """
        data = self.model_dump()
        data.update(updates)
        return type(self).model_validate(data)

    def has(self, field_name: str) -> bool:
        return getattr(self, field_name, None) is not None
