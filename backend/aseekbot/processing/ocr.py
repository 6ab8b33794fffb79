"""
OCR  —  Text Extraction from PDFs and Images
════════════════════════════════════════════

Two layers:

  TextractJobClient   thin async wrapper over AWS Textract (aioboto3)
    detect_text()              DetectDocumentText         (sync, < 5 MB)
    analyze()                  AnalyzeDocument FORMS+TABLES (sync, < 5 MB)
    run_analysis_job()         StartDocumentAnalysis      + poll GetDocumentAnalysis
    run_text_detection_job()   StartDocumentTextDetection + poll GetDocumentTextDetection

  OcrExtractor        strategy cascade on top of the client

    NOT_STARTED
      └─ size < 5 MB ─→ SYNC_ATTEMPT (both calls, keep the longer text)
                           └─ empty/failed ─→ ASYNC_ANALYSIS ─→ POLLING
                                                └─ empty/failed ─→ ASYNC_DETECTION ─→ POLLING
                                                                     └─ empty ─→ EMPTY_RESULT_FALLBACK

Poll policy
───────────
  Before attempt n (0-based) sleep min(base × factor**n, max_delay):
  1.0s, 1.5s, 2.25s ... capped at 15s, 30 attempts (≈ 6 minutes worst case).
  SUCCEEDED pages through NextToken; FAILED raises OcrJobFailedError;
  running out of attempts raises OcrJobTimeoutError.

Failure semantics
─────────────────
  Service errors on any single call are logged and the cascade moves on.
  An empty result is not an error: the extractor returns a fixed
  explanatory sentence. A job that reports FAILED, or every strategy
  raising, attaches ``extractionError`` but the run continues.
  A poll timeout is the one fatal case; it propagates to the orchestrator.

IAM permissions required on the worker role:
  textract:DetectDocumentText, textract:AnalyzeDocument,
  textract:StartDocumentAnalysis, textract:GetDocumentAnalysis,
  textract:StartDocumentTextDetection, textract:GetDocumentTextDetection,
  s3:GetObject on the source bucket
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import aioboto3

from aseekbot.core.config import Settings, settings as default_settings
from aseekbot.pipeline.exceptions import OcrJobFailedError, OcrJobTimeoutError
from aseekbot.pipeline.payload import (
    ExtractionDetails,
    ExtractionErrorInfo,
    JobPayload,
    TextractResults,
)
from aseekbot.processing.extractor import ExtractionOutput, TextExtractor
from aseekbot.storage.base import ObjectRef, artifact_key
from aseekbot.storage.status_table import utc_now_iso

logger = logging.getLogger(__name__)

EMPTY_RESULT_TEXT = (
    "This document appears to contain primarily image content or is using a "
    "format that our OCR system couldn't process. The analysis will proceed "
    "with limited information."
)
EMPTY_RESULT_METHOD = "textract-empty-result"
FALLBACK_METHOD = "error-with-fallback"
TEXT_PREVIEW_CHARS = 500


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class OcrResult:
    """
    Output of one Textract call or job.

    text   : LINE blocks joined with newlines, in block order
    blocks : raw Textract blocks (all pages)
    """
    text:   str
    blocks: list[dict[str, Any]] = field(default_factory=list)

    @property
    def pages(self) -> int:
        return len({b.get("Page", 1) for b in self.blocks if b.get("BlockType") == "PAGE"})

    @classmethod
    def from_blocks(cls, blocks: list[dict[str, Any]]) -> "OcrResult":
        return cls(text=lines_from_blocks(blocks), blocks=blocks)


def lines_from_blocks(blocks: list[dict[str, Any]]) -> str:
    return "\n".join(
        b.get("Text", "") for b in blocks if b.get("BlockType") == "LINE"
    )


def poll_delay(attempt: int, base: float, factor: float, max_delay: float) -> float:
    """Sleep before poll attempt ``attempt`` (0-based)."""
    return min(base * factor ** attempt, max_delay)


# ---------------------------------------------------------------------------
# Client interface
# ---------------------------------------------------------------------------

class OcrJobClient(ABC):
    """OCR capability used by OcrExtractor. Implementations may raise freely."""

    @abstractmethod
    async def detect_text(self, ref: ObjectRef) -> OcrResult:
        """Synchronous line detection."""

    @abstractmethod
    async def analyze(self, ref: ObjectRef) -> OcrResult:
        """Synchronous forms/tables-aware analysis."""

    @abstractmethod
    async def run_analysis_job(self, ref: ObjectRef, job_tag: str) -> OcrResult:
        """Submit an analysis job and poll it to completion."""

    @abstractmethod
    async def run_text_detection_job(self, ref: ObjectRef, job_tag: str) -> OcrResult:
        """Submit a text-detection job and poll it to completion."""


# ---------------------------------------------------------------------------
# AWS Textract
# ---------------------------------------------------------------------------

class TextractJobClient(OcrJobClient):
    """
    AWS Textract over aioboto3. Documents are always passed as S3Object
    references; the bytes never travel through the worker.

    ``sleep`` is injectable so tests can run the poll loop instantly.
    """

    def __init__(
        self,
        config: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._cfg = config or default_settings
        self._session = aioboto3.Session()
        self._sleep = sleep

    def _client(self):
        return self._session.client("textract", **self._cfg.aws_client_kwargs())

    @staticmethod
    def _document(ref: ObjectRef) -> dict:
        return {"S3Object": {"Bucket": ref.bucket, "Name": ref.key}}

    async def detect_text(self, ref: ObjectRef) -> OcrResult:
        async with self._client() as textract:
            resp = await textract.detect_document_text(Document=self._document(ref))
        return OcrResult.from_blocks(resp.get("Blocks", []))

    async def analyze(self, ref: ObjectRef) -> OcrResult:
        async with self._client() as textract:
            resp = await textract.analyze_document(
                Document=self._document(ref),
                FeatureTypes=["FORMS", "TABLES"],
            )
        return OcrResult.from_blocks(resp.get("Blocks", []))

    async def run_analysis_job(self, ref: ObjectRef, job_tag: str) -> OcrResult:
        async with self._client() as textract:
            job = await textract.start_document_analysis(
                DocumentLocation=self._document(ref),
                FeatureTypes=["FORMS", "TABLES"],
                JobTag=job_tag,
            )
            logger.info("Textract analysis job started | job=%s key=%s", job["JobId"], ref.uri)
            blocks = await self._poll(job["JobId"], textract.get_document_analysis)
        return OcrResult.from_blocks(blocks)

    async def run_text_detection_job(self, ref: ObjectRef, job_tag: str) -> OcrResult:
        async with self._client() as textract:
            job = await textract.start_document_text_detection(
                DocumentLocation=self._document(ref),
                JobTag=job_tag,
            )
            logger.info("Textract detection job started | job=%s key=%s", job["JobId"], ref.uri)
            blocks = await self._poll(job["JobId"], textract.get_document_text_detection)
        return OcrResult.from_blocks(blocks)

    async def _poll(
        self,
        job_id: str,
        get_page: Callable[..., Awaitable[dict]],
    ) -> list[dict[str, Any]]:
        """Sleep-then-query until the job is terminal or attempts run out."""
        cfg = self._cfg
        for attempt in range(cfg.textract_poll_max_attempts):
            await self._sleep(
                poll_delay(
                    attempt,
                    cfg.textract_poll_base_delay,
                    cfg.textract_poll_factor,
                    cfg.textract_poll_max_delay,
                )
            )
            resp = await get_page(JobId=job_id)
            status = resp.get("JobStatus")

            if status == "SUCCEEDED":
                blocks = list(resp.get("Blocks", []))
                next_token = resp.get("NextToken")
                while next_token:
                    page = await get_page(JobId=job_id, NextToken=next_token)
                    blocks.extend(page.get("Blocks", []))
                    next_token = page.get("NextToken")
                logger.info(
                    "Textract job done | job=%s attempts=%d blocks=%d",
                    job_id, attempt + 1, len(blocks),
                )
                return blocks

            if status == "FAILED":
                raise OcrJobFailedError(job_id, resp.get("StatusMessage"))

            logger.debug("Textract job pending | job=%s attempt=%d status=%s", job_id, attempt + 1, status)

        raise OcrJobTimeoutError(job_id, cfg.textract_poll_max_attempts)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class OcrExtractor(TextExtractor):
    """Strategy cascade for pdf / tiff / jpeg / png."""

    method = "textract"
    label = "OCR"

    def __init__(self, client: OcrJobClient, store, config: Settings | None = None) -> None:
        super().__init__(store, config)
        self._client = client

    async def extract(self, job: JobPayload) -> ExtractionOutput:
        try:
            return await self._extract(job)
        except OcrJobTimeoutError:
            raise
        except Exception as exc:
            logger.error("OCR extraction failed | doc=%s error=%s", job.document_id, exc, exc_info=True)
            return ExtractionOutput(
                text=(
                    f"Error processing document: {exc}. "
                    "The analysis will proceed with limited information."
                ),
                method=FALLBACK_METHOD,
                extraction_error=ExtractionErrorInfo(message=str(exc), name=type(exc).__name__),
            )

    async def _extract(self, job: JobPayload) -> ExtractionOutput:
        ref = job.source_ref
        file_size = job.file_size_bytes or 0

        attempts = 0
        failures: list[Exception] = []
        job_failure: OcrJobFailedError | None = None
        best: OcrResult | None = None
        methods: list[str] = []

        # 1. synchronous pair, small documents only
        if file_size < self._cfg.textract_sync_max_bytes:
            sync_results: list[tuple[str, OcrResult]] = []
            for name, call in (
                ("DetectDocumentText", self._client.detect_text),
                ("AnalyzeDocument", self._client.analyze),
            ):
                attempts += 1
                try:
                    sync_results.append((name, await call(ref)))
                except Exception as exc:
                    logger.warning("Textract %s failed | doc=%s error=%s", name, job.document_id, exc)
                    failures.append(exc)

            # ties go to DetectDocumentText
            if sync_results:
                name, result = max(sync_results, key=lambda item: len(item[1].text.strip()))
                if result.text.strip():
                    best, methods = result, [name]

        # 2. async jobs, in order, until one yields text
        for name, run in (
            ("StartDocumentAnalysis", self._client.run_analysis_job),
            ("StartDocumentTextDetection", self._client.run_text_detection_job),
        ):
            if best is not None:
                break
            attempts += 1
            tag = ("analyze-" if name == "StartDocumentAnalysis" else "detect-") + job.document_id
            try:
                result = await run(ref, tag)
            except OcrJobTimeoutError:
                raise
            except OcrJobFailedError as exc:
                logger.warning("Textract %s job failed | doc=%s error=%s", name, job.document_id, exc)
                job_failure = exc
                failures.append(exc)
                continue
            except Exception as exc:
                logger.warning("Textract %s failed | doc=%s error=%s", name, job.document_id, exc)
                failures.append(exc)
                continue
            if result.text.strip():
                best, methods = result, [name]

        extraction_error = None
        if job_failure is not None:
            extraction_error = ExtractionErrorInfo(message=job_failure.message, name=type(job_failure).__name__)
        elif failures and len(failures) == attempts:
            last = failures[-1]
            extraction_error = ExtractionErrorInfo(
                message=f"All text extraction methods failed: {last}",
                name=type(last).__name__,
            )

        if best is None:
            logger.info("OCR produced no text | doc=%s attempts=%d", job.document_id, attempts)
            return ExtractionOutput(
                text=EMPTY_RESULT_TEXT,
                method=EMPTY_RESULT_METHOD,
                extraction_error=extraction_error,
                extraction_details=self._details(job, EMPTY_RESULT_TEXT, [], 0),
            )

        text = best.text
        blocks_ref = None
        if len(best.blocks) > self._cfg.ocr_blocks_limit:
            blocks_ref = await self._store.put_json(
                ObjectRef(bucket=ref.bucket, key=artifact_key(job.document_id, f"{job.file_type}-blocks")),
                best.blocks,
            )
            logger.info(
                "OCR blocks externalized | doc=%s blocks=%d key=%s",
                job.document_id, len(best.blocks), blocks_ref.key,
            )

        preview = text if len(text) <= TEXT_PREVIEW_CHARS else text[:TEXT_PREVIEW_CHARS] + "... (truncated)"
        return ExtractionOutput(
            text=text,
            method="+".join(methods),
            textract_results=TextractResults(blocks_ref=blocks_ref, text_preview=preview),
            extraction_details=self._details(job, text, methods, best.pages),
            extraction_error=extraction_error,
        )

    @staticmethod
    def _details(job: JobPayload, text: str, methods: list[str], pages: int) -> ExtractionDetails:
        return ExtractionDetails(
            file_size=job.file_size_bytes or 0,
            file_type=job.file_type,
            timestamp=utc_now_iso(),
            character_count=len(text),
            line_count=len(text.splitlines()),
            methods=methods,
            pages_processed=pages,
        )
