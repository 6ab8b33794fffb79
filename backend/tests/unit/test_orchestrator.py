"""
Unit Tests: WorkflowOrchestrator
════════════════════════════════
Tests for aseekbot/pipeline/orchestrator.py, end to end over the in-memory
content store, status table and OCR client.

Coverage:
  ✅ next_stage transition table, Compare only for multi-document jobs
  ✅ Any failure before UpdateStatus routes through HandleError
  ✅ Plain-text purchase order runs to COMPLETED with progress 5…100
  ✅ CSV upload parsed to JSON rows and classified as Spreadsheet Data
  ✅ Multi-document job runs Compare (70) and attaches comparativeAnalysis
  ✅ Chat request with two attached files analyzes the first and completes
  ✅ Scanned PDF with no OCR text still completes with the explanatory text
  ✅ Missing source → FAILED with kind SourceNotFound at stage Validate
  ✅ 12 MB PDF → FAILED, "exceeds maximum allowed", OCR never called
  ✅ OCR poll timeout → FAILED at stage Extract
  ✅ Stage reading a missing field / writing an undeclared field → contract error
  ✅ Failed progress write is tolerated
  ✅ Failed terminal status write propagates
"""

from __future__ import annotations

import json
from typing import Any

import pytest

from aseekbot.pipeline.exceptions import OcrJobTimeoutError
from aseekbot.pipeline.orchestrator import WorkflowOrchestrator, build_orchestrator, next_stage
from aseekbot.pipeline.payload import JobPayload
from aseekbot.pipeline.stages import InitStage, Stage, StageName, UpdateStatusStage
from aseekbot.processing.ocr import EMPTY_RESULT_METHOD, EMPTY_RESULT_TEXT
from aseekbot.schemas.documents import ProcessingStatus, S3FileReference
from aseekbot.services.ingestion import analysis_payload
from aseekbot.services.status import StatusRecorder
from tests.fakes import FakeOcrClient, InMemoryStatusTable

KEY = "uploads/u1/po.txt"


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _job(document_id: str = "doc-a", key: str = KEY, file_type: str = "txt", **extra) -> JobPayload:
    return JobPayload(
        document_id=document_id,
        user_id="user-1",
        source_ref={"bucket": "test-bucket", "key": key},
        file_type=file_type,
        **extra,
    )


def _orchestrator(content_store, document_table, test_settings, ocr=None) -> WorkflowOrchestrator:
    return build_orchestrator(content_store, ocr or FakeOcrClient(), document_table, config=test_settings)


class _FailingProgressTable(InMemoryStatusTable):
    """Rejects per-stage progress writes only."""

    async def update(self, record_id, fields, *, allow_terminal=False):
        if "currentStage" in fields:
            raise ConnectionError("DynamoDB unavailable")
        return await super().update(record_id, fields, allow_terminal=allow_terminal)


class _FailingTerminalTable(InMemoryStatusTable):
    async def update(self, record_id, fields, *, allow_terminal=False):
        if fields.get("status") == ProcessingStatus.COMPLETED.value:
            raise ConnectionError("DynamoDB unavailable")
        return await super().update(record_id, fields, allow_terminal=allow_terminal)


class _UndeclaredWriteStage(Stage):
    name = StageName.VALIDATE
    writes = frozenset({"file_type"})

    async def run(self, payload: JobPayload) -> dict[str, Any]:
        return {"file_type": "txt", "extracted_text": "sneaky"}


class _MissingReadStage(Stage):
    name = StageName.VALIDATE
    reads = frozenset({"extracted_text"})

    async def run(self, payload: JobPayload) -> dict[str, Any]:
        return {}


# ─────────────────────────────────────────────────────────────────────────────
# Transition table
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.pipeline
class TestNextStage:

    @pytest.mark.parametrize(
        "current, expected",
        [
            (StageName.INIT, StageName.VALIDATE),
            (StageName.VALIDATE, StageName.EXTRACT),
            (StageName.EXTRACT, StageName.ANALYZE),
            (StageName.ANALYZE, StageName.GENERATE_INSIGHTS),
            (StageName.GENERATE_INSIGHTS, StageName.STORE),
            (StageName.STORE, StageName.UPDATE_STATUS),
            (StageName.HANDLE_ERROR, StageName.UPDATE_STATUS),
            (StageName.UPDATE_STATUS, None),
        ],
    )
    def test_single_document_path(self, current, expected):
        assert next_stage(current, _job()) is expected

    def test_compare_only_for_multiple_documents(self):
        multi = _job(is_multiple_documents=True)

        assert next_stage(StageName.ANALYZE, multi) is StageName.COMPARE
        assert next_stage(StageName.COMPARE, multi) is StageName.GENERATE_INSIGHTS

    @pytest.mark.parametrize(
        "current",
        [StageName.INIT, StageName.VALIDATE, StageName.EXTRACT, StageName.COMPARE, StageName.STORE],
    )
    def test_failure_routes_to_handle_error(self, current):
        assert next_stage(current, _job(), failed=True) is StageName.HANDLE_ERROR

    def test_handle_error_never_loops(self):
        assert next_stage(StageName.HANDLE_ERROR, _job(), failed=True) is StageName.UPDATE_STATUS


# ─────────────────────────────────────────────────────────────────────────────
# Full runs
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.pipeline
class TestSuccessfulRuns:

    async def test_plain_text_purchase_order(self, content_store, document_table, test_settings, sample_txt_bytes):
        content_store.add("test-bucket", KEY, sample_txt_bytes, "text/plain")

        final = await _orchestrator(content_store, document_table, test_settings).run(_job())

        assert final.status is ProcessingStatus.COMPLETED
        assert final.progress == 100
        assert final.error is None
        assert final.text_extraction_method == "text-parser"
        assert final.analysis_results.entities.vendors == ["Acme Supplies Inc"]
        assert final.insights["sourceDocument"] == {"type": "txt", "documentId": "doc-a"}

        assert document_table.progress_values() == [5, 15, 40, 60, 80, 90, 100]
        assert document_table.statuses() == ["PROCESSING", "COMPLETED"]

        record = document_table.records["doc-a"]
        assert record["status"] == "COMPLETED"
        assert record["userId"] == "user-1"
        assert record["resultLocation"] == {"bucket": "test-bucket", "key": "analysis-results/doc-a/results.json"}
        assert record["documentType"] == "Procurement Document"
        assert record["textExtractionMethod"] == "text-parser"

        artifact = content_store.json_at("test-bucket", "analysis-results/doc-a/results.json")
        assert artifact["processingComplete"] is True
        assert artifact["analysisResults"]["documentType"] == "Procurement Document"
        assert artifact["comparisonResults"] is None

    async def test_csv_upload_is_spreadsheet_data(self, content_store, document_table, test_settings, sample_csv_bytes):
        content_store.add("test-bucket", "uploads/u1/lines.csv", sample_csv_bytes, "text/csv")

        final = await _orchestrator(content_store, document_table, test_settings).run(
            _job(key="uploads/u1/lines.csv", file_type="csv")
        )

        assert final.status is ProcessingStatus.COMPLETED
        assert final.file_type == "csv"
        assert final.text_extraction_method == "csv-parser"
        assert json.loads(final.extracted_text) == [
            {"Part Number": "PN-100", "Description": "Bolt", "Price": "$1.20"},
            {"Part Number": "PN-200", "Description": "Nut", "Price": "$0.45"},
        ]
        assert final.analysis_results.document_type == "Spreadsheet Data"
        assert document_table.statuses() == ["PROCESSING", "COMPLETED"]
        assert document_table.records["doc-a"]["resultLocation"]["key"] == "analysis-results/doc-a/results.json"

    async def test_wire_payload_keeps_upstream_fields(self, content_store, document_table, test_settings, sample_txt_bytes):
        content_store.add("test-bucket", KEY, sample_txt_bytes, "text/plain")

        final = await _orchestrator(content_store, document_table, test_settings).run(_job())
        event = final.to_event()

        for field in ("validationResult", "fileSizeBytes", "textExtractionMethod", "analysisResults",
                      "insights", "resultLocation", "processId", "startTime"):
            assert field in event
        assert event["status"] == "COMPLETED"

    async def test_multiple_documents_are_compared(self, content_store, document_table, test_settings, sample_txt_bytes):
        content_store.add("test-bucket", KEY, sample_txt_bytes, "text/plain")
        companion = {
            "documentId": "doc-b",
            "analysisResults": {
                "documentType": "Procurement Document",
                "entities": {"vendors": ["Acme Supplies Inc"], "prices": ["$99.00"]},
            },
        }

        final = await _orchestrator(content_store, document_table, test_settings).run(
            _job(is_multiple_documents=True, documents=[companion])
        )

        assert final.status is ProcessingStatus.COMPLETED
        assert 70 in document_table.progress_values()
        assert final.comparison_results.documents_compared == 2
        assert "doc-b" in final.comparison_results.recommendation
        assert final.insights["comparativeAnalysis"]["bestOption"] == final.comparison_results.recommendation

    async def test_chat_request_with_two_files_completes(
        self, content_store, document_table, test_settings, sample_txt_bytes,
    ):
        for name in ("a.txt", "b.txt"):
            content_store.add("test-bucket", f"uploads/u1/{name}", sample_txt_bytes, "text/plain")
        files = [
            S3FileReference(name=name, s3_url=f"s3://test-bucket/uploads/u1/{name}")
            for name in ("a.txt", "b.txt")
        ]

        final = await _orchestrator(content_store, document_table, test_settings).run(
            JobPayload.from_event(analysis_payload("req-1", "user-1", files))
        )

        assert final.status is ProcessingStatus.COMPLETED
        assert final.source_ref.key == "uploads/u1/a.txt"
        assert final.comparison_results is None
        assert 70 not in document_table.progress_values()
        assert document_table.records["req-1"]["status"] == "COMPLETED"

    async def test_scanned_pdf_without_text_still_completes(self, content_store, document_table, test_settings):
        content_store.add("test-bucket", "uploads/u1/scan.pdf", b"%PDF-1.4 image only", "application/pdf")
        ocr = FakeOcrClient()

        final = await _orchestrator(content_store, document_table, test_settings, ocr).run(
            _job(key="uploads/u1/scan.pdf", file_type="pdf")
        )

        assert final.status is ProcessingStatus.COMPLETED
        assert final.extracted_text == EMPTY_RESULT_TEXT
        assert final.text_extraction_method == EMPTY_RESULT_METHOD
        assert ocr.called() == ["detect_text", "analyze", "run_analysis_job", "run_text_detection_job"]


@pytest.mark.unit
@pytest.mark.pipeline
class TestFailedRuns:

    async def test_missing_source_fails_at_validate(self, content_store, document_table, test_settings):
        final = await _orchestrator(content_store, document_table, test_settings).run(_job())

        assert final.status is ProcessingStatus.FAILED
        assert final.error.kind == "SourceNotFound"
        assert final.error.stage == "Validate"
        assert document_table.statuses() == ["PROCESSING", "FAILED"]
        assert document_table.progress_values() == [5]

        record = document_table.records["doc-a"]
        assert record["error"]["kind"] == "SourceNotFound"
        assert "resultLocation" not in record

    async def test_oversized_pdf_fails_at_validate(self, content_store, document_table, test_settings):
        content_store.add("test-bucket", "uploads/u1/big.pdf", b"0" * (12 * 1024 * 1024), "application/pdf")
        ocr = FakeOcrClient()

        final = await _orchestrator(content_store, document_table, test_settings, ocr).run(
            _job(key="uploads/u1/big.pdf", file_type="pdf")
        )

        assert final.status is ProcessingStatus.FAILED
        assert final.error.kind == "FileTooLarge"
        assert "exceeds maximum allowed" in final.error.message
        assert document_table.records["doc-a"]["status"] == "FAILED"
        assert ocr.called() == []

    async def test_ocr_timeout_fails_at_extract(self, content_store, document_table, test_settings):
        content_store.add("test-bucket", "uploads/u1/scan.pdf", b"%PDF-1.4", "application/pdf")
        ocr = FakeOcrClient(analysis_job=OcrJobTimeoutError("job-a", 3))

        final = await _orchestrator(content_store, document_table, test_settings, ocr).run(
            _job(key="uploads/u1/scan.pdf", file_type="pdf")
        )

        assert final.status is ProcessingStatus.FAILED
        assert final.error.kind == "OcrJobTimeout"
        assert final.error.stage == "Extract"

    async def test_multi_document_without_companions_fails_at_compare(
        self, content_store, document_table, test_settings, sample_txt_bytes
    ):
        content_store.add("test-bucket", KEY, sample_txt_bytes, "text/plain")

        final = await _orchestrator(content_store, document_table, test_settings).run(
            _job(is_multiple_documents=True)
        )

        assert final.status is ProcessingStatus.FAILED
        assert final.error.kind == "ComparisonError"
        assert final.error.stage == "Compare"

    @pytest.mark.parametrize("bad_stage, message", [
        (_UndeclaredWriteStage(), "wrote undeclared fields: extracted_text"),
        (_MissingReadStage(), "requires missing fields: extracted_text"),
    ])
    async def test_stage_contract_violations(self, document_table, bad_stage, message):
        recorder = StatusRecorder(document_table)
        orchestrator = WorkflowOrchestrator([InitStage(), bad_stage, UpdateStatusStage(recorder)], recorder)

        final = await orchestrator.run(_job())

        assert final.status is ProcessingStatus.FAILED
        assert final.error.kind == "PayloadContractError"
        assert message in final.error.message


@pytest.mark.unit
@pytest.mark.pipeline
class TestStatusWriteFailures:

    async def test_progress_write_failure_is_tolerated(self, content_store, test_settings, sample_txt_bytes):
        content_store.add("test-bucket", KEY, sample_txt_bytes, "text/plain")
        table = _FailingProgressTable("documentId")

        final = await _orchestrator(content_store, table, test_settings).run(_job())

        assert final.status is ProcessingStatus.COMPLETED
        assert table.records["doc-a"]["status"] == "COMPLETED"

    async def test_terminal_write_failure_propagates(self, content_store, test_settings, sample_txt_bytes):
        content_store.add("test-bucket", KEY, sample_txt_bytes, "text/plain")
        table = _FailingTerminalTable("documentId")

        with pytest.raises(ConnectionError):
            await _orchestrator(content_store, table, test_settings).run(_job())
