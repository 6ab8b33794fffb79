"""
Pipeline Stages
═══════════════

One class per step of a document-analysis run. A stage is a function of
the accumulated JobPayload: ``run(payload)`` returns a mapping of updates
keyed by JobPayload field name. Each stage declares

    reads     fields that must be present before it runs
    writes    the only fields it may return
    progress  percentage recorded once it succeeds (None: not recorded)

and the orchestrator enforces both declarations. Stages never talk to
each other except through the payload.

    Init            5   processId, startTime
    Validate       15   size / type checks (fatal on failure)
    Extract        40   text via the extractor for the resolved type
    Analyze        60   rule-based AnalysisResult
    Compare        70   multi-document jobs only
    GenerateInsights 80
    Store          90   result artifact
    UpdateStatus        terminal COMPLETED / FAILED write
    HandleError         turns a fatal exception into payload.error
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from aseekbot.core.config import Settings, settings as default_settings
from aseekbot.pipeline.exceptions import (
    FileTooLargeError,
    PipelineError,
    SourceNotFoundError,
    UnsupportedFileTypeError,
)
from aseekbot.pipeline.payload import JobPayload, PipelineErrorInfo, ValidationResult
from aseekbot.pipeline.results import ResultStore
from aseekbot.processing.analyzer import ContentAnalyzer
from aseekbot.processing.comparer import ComparedDocument, DocumentComparer
from aseekbot.processing.extractor import TextExtractor
from aseekbot.processing.insights import InsightGenerator
from aseekbot.schemas.documents import (
    OCR_FILE_TYPES,
    SUPPORTED_FILE_TYPES,
    ProcessingStatus,
)
from aseekbot.services.status import StatusRecorder
from aseekbot.storage.base import ContentStore, ObjectRef, artifact_key
from aseekbot.storage.status_table import utc_now_iso

logger = logging.getLogger(__name__)

EMPTY_TEXT_PLACEHOLDER = "No text content could be extracted from this document."
TRUNCATION_MARKER = "... (truncated, full content in S3)"


class StageName(str, Enum):
    INIT              = "Init"
    VALIDATE          = "Validate"
    EXTRACT           = "Extract"
    ANALYZE           = "Analyze"
    COMPARE           = "Compare"
    GENERATE_INSIGHTS = "GenerateInsights"
    STORE             = "Store"
    UPDATE_STATUS     = "UpdateStatus"
    HANDLE_ERROR      = "HandleError"


class Stage(ABC):
    name: StageName
    reads: frozenset[str] = frozenset()
    writes: frozenset[str] = frozenset()
    progress: int | None = None

    @abstractmethod
    async def run(self, payload: JobPayload) -> dict[str, Any]:
        """Return updates keyed by JobPayload field name."""


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------

class InitStage(Stage):
    name = StageName.INIT
    reads = frozenset({"document_id", "source_ref"})
    writes = frozenset({"process_id", "start_time"})
    progress = 5

    async def run(self, payload: JobPayload) -> dict[str, Any]:
        return {
            "process_id": f"process-{int(time.time() * 1000)}",
            "start_time": utc_now_iso(),
        }


# ---------------------------------------------------------------------------
# Validate
# ---------------------------------------------------------------------------

# content-type substring → file type, checked in this order
_CONTENT_TYPE_RULES: list[tuple[tuple[str, ...], str]] = [
    (("pdf",), "pdf"),
    (("tiff",), "tiff"),
    (("jpeg", "jpg"), "jpeg"),
    (("png",), "png"),
    (("wordprocessingml", "msword"), "docx"),
    (("spreadsheetml", "ms-excel"), "xlsx"),
    (("csv",), "csv"),
    (("text/plain",), "txt"),
]

_TYPE_ALIASES = {"jpg": "jpeg", "tif": "tiff"}


def normalize_file_type(value: str | None) -> str:
    cleaned = (value or "").strip().lower().lstrip(".")
    return _TYPE_ALIASES.get(cleaned, cleaned)


def file_type_from_content_type(content_type: str | None) -> str | None:
    lowered = (content_type or "").lower()
    for needles, file_type in _CONTENT_TYPE_RULES:
        if any(n in lowered for n in needles):
            return file_type
    return None


def resolve_file_type(content_type: str | None, declared: str | None) -> str:
    """
    The stored object's content type wins over the caller's declaration.
    Raises UnsupportedFileTypeError for anything outside the supported set.
    """
    resolved = file_type_from_content_type(content_type) or normalize_file_type(declared)
    if resolved not in SUPPORTED_FILE_TYPES:
        raise UnsupportedFileTypeError(
            f"Unsupported file type: {resolved or declared or 'unknown'}"
        )
    return resolved


class ValidateStage(Stage):
    name = StageName.VALIDATE
    reads = frozenset({"source_ref"})
    writes = frozenset({
        "file_size_bytes", "file_type", "content_type",
        "is_textract_supported", "validation_result",
    })
    progress = 15

    def __init__(self, store: ContentStore, config: Settings | None = None) -> None:
        self._store = store
        self._cfg = config or default_settings

    async def run(self, payload: JobPayload) -> dict[str, Any]:
        ref = payload.source_ref
        try:
            meta = await self._store.head(ref)
        except FileNotFoundError as exc:
            raise SourceNotFoundError(f"Source document not found: {ref.uri}") from exc

        if meta.size_bytes > self._cfg.max_document_size_bytes:
            raise FileTooLargeError(meta.size_bytes, self._cfg.max_document_size_bytes)

        file_type = resolve_file_type(meta.content_type, payload.file_type)
        logger.info(
            "Validation ok | doc=%s type=%s size=%d content_type=%s",
            payload.document_id, file_type, meta.size_bytes, meta.content_type,
        )
        return {
            "file_size_bytes": meta.size_bytes,
            "file_type": file_type,
            "content_type": meta.content_type,
            "is_textract_supported": file_type in OCR_FILE_TYPES,
            "validation_result": ValidationResult(is_valid=True, message="File validation successful"),
        }


# ---------------------------------------------------------------------------
# Extract
# ---------------------------------------------------------------------------

class ExtractStage(Stage):
    name = StageName.EXTRACT
    reads = frozenset({"source_ref", "file_type", "file_size_bytes"})
    writes = frozenset({
        "extracted_text", "text_extraction_method", "text_ref",
        "textract_results", "extraction_details", "spreadsheet_refs",
        "extraction_warnings", "extraction_error", "image_count",
    })
    progress = 40

    def __init__(
        self,
        extractors: dict[str, TextExtractor],
        store: ContentStore,
        config: Settings | None = None,
    ) -> None:
        self._extractors = extractors
        self._store = store
        self._cfg = config or default_settings

    async def run(self, payload: JobPayload) -> dict[str, Any]:
        extractor = self._extractors.get(payload.file_type)
        if extractor is None:
            raise UnsupportedFileTypeError(f"No extractor for file type: {payload.file_type}")

        output = await extractor.extract(payload)
        if not output.text.strip():
            output.text = EMPTY_TEXT_PLACEHOLDER

        updates = output.to_updates()
        if len(output.text) > self._cfg.payload_text_limit_chars:
            updates.update(await self._externalize(payload, output.text))
        return updates

    async def _externalize(self, payload: JobPayload, text: str) -> dict[str, Any]:
        """Store the full text; the payload keeps a prefix and the reference."""
        ref = await self._store.put_json(
            ObjectRef(
                bucket=payload.source_ref.bucket,
                key=artifact_key(payload.document_id, f"{payload.file_type}-extracted-text"),
            ),
            text,
        )
        logger.info(
            "Extracted text externalized | doc=%s chars=%d key=%s",
            payload.document_id, len(text), ref.key,
        )
        return {
            "extracted_text": text[: self._cfg.payload_text_keep_chars] + TRUNCATION_MARKER,
            "text_ref": ref,
        }


# ---------------------------------------------------------------------------
# Analyze
# ---------------------------------------------------------------------------

class AnalyzeStage(Stage):
    name = StageName.ANALYZE
    reads = frozenset({"extracted_text"})
    writes = frozenset({"analysis_results", "analysis_timestamp"})
    progress = 60

    def __init__(self, analyzer: ContentAnalyzer, store: ContentStore) -> None:
        self._analyzer = analyzer
        self._store = store

    async def run(self, payload: JobPayload) -> dict[str, Any]:
        fields = await self._procurement_fields(payload)
        result = self._analyzer.analyze(payload.extracted_text, payload.file_type, fields)
        logger.info(
            "Analysis done | doc=%s type=%s sentiment=%s vendors=%d",
            payload.document_id, result.document_type, result.sentiment,
            len(result.entities.vendors),
        )
        return {"analysis_results": result, "analysis_timestamp": utc_now_iso()}

    async def _procurement_fields(self, payload: JobPayload) -> dict[str, list[str]] | None:
        if payload.spreadsheet_refs is None:
            return None
        try:
            return await self._store.get_json(payload.spreadsheet_refs.procurement_fields_ref)
        except Exception as exc:
            logger.warning(
                "Procurement fields unavailable, using text patterns | doc=%s error=%s",
                payload.document_id, exc,
            )
            return None


# ---------------------------------------------------------------------------
# Compare
# ---------------------------------------------------------------------------

class CompareStage(Stage):
    name = StageName.COMPARE
    reads = frozenset({"analysis_results", "documents"})
    writes = frozenset({"comparison_results", "comparison_timestamp"})
    progress = 70

    def __init__(self, comparer: DocumentComparer) -> None:
        self._comparer = comparer

    async def run(self, payload: JobPayload) -> dict[str, Any]:
        current = ComparedDocument(document_id=payload.document_id, analysis=payload.analysis_results)
        companions = [ComparedDocument.from_companion(item) for item in payload.documents]
        results = self._comparer.compare(current, companions)
        return {"comparison_results": results, "comparison_timestamp": utc_now_iso()}


# ---------------------------------------------------------------------------
# GenerateInsights
# ---------------------------------------------------------------------------

class GenerateInsightsStage(Stage):
    name = StageName.GENERATE_INSIGHTS
    reads = frozenset({"analysis_results"})
    writes = frozenset({"insights", "insights_timestamp"})
    progress = 80

    def __init__(self, generator: InsightGenerator) -> None:
        self._generator = generator

    async def run(self, payload: JobPayload) -> dict[str, Any]:
        insights = await self._generator.generate(
            payload.analysis_results,
            payload.document_id,
            payload.file_type,
            payload.comparison_results,
        )
        return {"insights": insights, "insights_timestamp": utc_now_iso()}


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class StoreStage(Stage):
    name = StageName.STORE
    reads = frozenset({"analysis_results", "insights"})
    writes = frozenset({"result_location", "storage_timestamp"})
    progress = 90

    def __init__(self, results: ResultStore) -> None:
        self._results = results

    async def run(self, payload: JobPayload) -> dict[str, Any]:
        location = await self._results.save(payload)
        return {"result_location": location, "storage_timestamp": utc_now_iso()}


# ---------------------------------------------------------------------------
# UpdateStatus / HandleError
# ---------------------------------------------------------------------------

class UpdateStatusStage(Stage):
    name = StageName.UPDATE_STATUS
    writes = frozenset({"status", "progress"})

    def __init__(self, recorder: StatusRecorder) -> None:
        self._recorder = recorder

    async def run(self, payload: JobPayload) -> dict[str, Any]:
        if payload.error is not None:
            await self._recorder.mark_failed(payload.document_id, payload.error)
            return {"status": ProcessingStatus.FAILED}

        await self._recorder.mark_completed(payload.document_id, payload.result_location)
        return {"status": ProcessingStatus.COMPLETED, "progress": 100}


class HandleErrorStage:
    """Not a regular stage: it needs the exception as well as the payload."""

    name = StageName.HANDLE_ERROR
    writes = frozenset({"error"})

    def build(self, exc: Exception, failed_stage: StageName) -> dict[str, Any]:
        kind = exc.kind if isinstance(exc, PipelineError) else type(exc).__name__
        return {
            "error": PipelineErrorInfo(message=str(exc), kind=kind, stage=failed_stage.value),
        }
