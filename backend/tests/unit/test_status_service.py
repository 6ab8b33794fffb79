"""
Unit Tests: status services
═══════════════════════════
Tests for aseekbot/services/status.py

Coverage:
  ✅ Unknown id → None
  ✅ Terminal / queued records returned as stored, no execution lookup
  ✅ Execution SUCCEEDED → COMPLETED view with insights + resultLocation
  ✅ Insights found in every known execution output shape
  ✅ Task finished but the run ended FAILED → FAILED view with the run's error
  ✅ Execution FAILED / TIMED_OUT / ABORTED → FAILED view with ExecutionError
  ✅ Running execution → elapsed-time estimate, never below stored, capped at 95
  ✅ Execution lookup failure → stored record unchanged
  ✅ Reconciliation never writes back to the table
  ✅ StatusRecorder: PROCESSING put/update, COMPLETED with resultLocation, FAILED with error
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from aseekbot.pipeline.payload import JobPayload, PipelineErrorInfo
from aseekbot.services.status import StatusRecorder, StatusService, estimate_progress, find_insights
from aseekbot.storage.base import ObjectRef
from aseekbot.workers.executions import ExecutionDescription, ExecutionStatus
from tests.fakes import FakeExecutionTracker

STARTED = datetime(2024, 1, 1, tzinfo=timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _running_record(progress: int = 40, start_time: str | None = STARTED.isoformat()) -> dict:
    execution = {"executionArn": "doc-analysis-doc-1-1700000000000"}
    if start_time is not None:
        execution["startTime"] = start_time
    return {
        "documentId": "doc-1",
        "status": "PROCESSING",
        "progress": progress,
        "userId": "user-1",
        "execution": execution,
    }


def _service(document_table, test_settings, description, elapsed_seconds: float = 60) -> StatusService:
    return StatusService(
        document_table,
        FakeExecutionTracker(description=description),
        test_settings,
        clock=lambda: STARTED + timedelta(seconds=elapsed_seconds),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Read side
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.status
class TestStoredRecords:

    async def test_unknown_id_returns_none(self, document_table, test_settings, tracker):
        assert await StatusService(document_table, tracker, test_settings).get_status("nope") is None

    @pytest.mark.parametrize("status", ["QUEUED", "COMPLETED", "FAILED", "ERROR"])
    async def test_non_processing_record_returned_as_stored(self, document_table, test_settings, tracker, status):
        record = {**_running_record(), "status": status}
        await document_table.put(record)

        view = await StatusService(document_table, tracker, test_settings).get_status("doc-1")

        assert view["status"] == status
        assert tracker.described == []

    async def test_processing_without_execution_returned_as_stored(self, document_table, test_settings, tracker):
        await document_table.put({"documentId": "doc-1", "status": "PROCESSING", "progress": 40})

        view = await StatusService(document_table, tracker, test_settings).get_status("doc-1")

        assert view["progress"] == 40
        assert tracker.described == []


@pytest.mark.unit
@pytest.mark.status
class TestReconciliation:

    @pytest.mark.parametrize(
        "output",
        [
            {"statusUpdate": {"Payload": {"insights": {"summary": "done"}}}},
            {"insights": {"summary": "done"}},
            {"result": {"insights": {"summary": "done"}}},
        ],
        ids=["status-update-payload", "top-level", "nested-result"],
    )
    async def test_succeeded_execution(self, document_table, test_settings, output):
        await document_table.put(_running_record())
        output = {
            **output,
            "resultLocation": {"bucket": "test-bucket", "key": "analysis-results/doc-1/results.json"},
        }
        service = _service(document_table, test_settings, ExecutionDescription(ExecutionStatus.SUCCEEDED, output))

        view = await service.get_status("doc-1")

        assert view["status"] == "COMPLETED"
        assert view["progress"] == 100
        assert view["result"]["insights"] == {"summary": "done"}
        assert view["result"]["documentAnalysis"]["completed"] is True
        assert view["resultLocation"] == output["resultLocation"]

    @pytest.mark.parametrize(
        "output",
        [
            {"documentId": "doc-1", "status": "FAILED",
             "error": {"message": "Source document not found", "kind": "SourceNotFound", "stage": "Validate"}},
            {"documentId": "doc-1", "error": {"message": "Source document not found", "kind": "SourceNotFound"}},
        ],
    )
    async def test_finished_task_with_failed_run(self, document_table, test_settings, output):
        await document_table.put(_running_record())
        service = _service(document_table, test_settings, ExecutionDescription(ExecutionStatus.SUCCEEDED, output))

        view = await service.get_status("doc-1")

        assert view["status"] == "FAILED"
        assert view["error"] == {"message": "Source document not found", "kind": "SourceNotFound"}
        assert "result" not in view
        assert view["progress"] == 40

    @pytest.mark.parametrize(
        "status",
        [ExecutionStatus.FAILED, ExecutionStatus.TIMED_OUT, ExecutionStatus.ABORTED],
    )
    async def test_failed_execution_states(self, document_table, test_settings, status):
        await document_table.put(_running_record())
        service = _service(document_table, test_settings, ExecutionDescription(status))

        view = await service.get_status("doc-1")

        assert view["status"] == "FAILED"
        assert view["error"] == {"message": f"Execution {status.value}", "kind": "ExecutionError"}

    @pytest.mark.parametrize(
        "stored, elapsed, expected",
        [
            (40, 60, 50),        # estimate above stored
            (80, 60, 80),        # never below stored
            (40, 3600, 95),      # capped
            (0, 0, 0),
        ],
    )
    async def test_running_execution_estimate(self, document_table, test_settings, stored, elapsed, expected):
        await document_table.put(_running_record(progress=stored))
        service = _service(
            document_table, test_settings, ExecutionDescription(ExecutionStatus.RUNNING), elapsed_seconds=elapsed,
        )

        view = await service.get_status("doc-1")

        assert view["status"] == "PROCESSING"
        assert view["progress"] == expected

    async def test_running_without_start_time_keeps_stored_progress(self, document_table, test_settings):
        await document_table.put(_running_record(progress=15, start_time=None))
        service = _service(document_table, test_settings, ExecutionDescription(ExecutionStatus.RUNNING))

        view = await service.get_status("doc-1")

        assert view["progress"] == 15

    async def test_lookup_failure_returns_stored_record(self, document_table, test_settings):
        await document_table.put(_running_record(progress=15))
        service = _service(document_table, test_settings, RuntimeError("result backend down"))

        view = await service.get_status("doc-1")

        assert view["status"] == "PROCESSING"
        assert view["progress"] == 15

    async def test_reconciliation_is_view_only(self, document_table, test_settings):
        await document_table.put(_running_record())
        service = _service(document_table, test_settings, ExecutionDescription(ExecutionStatus.SUCCEEDED, {}))

        await service.get_status("doc-1")

        assert document_table.records["doc-1"]["status"] == "PROCESSING"
        assert [op for op, _ in document_table.history] == ["put"]


@pytest.mark.unit
@pytest.mark.status
class TestStatusHelpers:

    @pytest.mark.parametrize(
        "output, expected",
        [
            ({"statusUpdate": {"Payload": {"insights": "nested"}}}, "nested"),
            ({"insights": "top"}, "top"),
            ({"result": {"insights": "result"}}, "result"),
        ],
    )
    def test_find_insights_shapes(self, output, expected):
        assert find_insights(output, {}) == expected

    def test_find_insights_falls_back_to_record_then_default(self):
        assert find_insights({}, {"insights": "stored"}) == "stored"
        assert find_insights(None, {}) == "Insights not available"

    def test_estimate_accepts_zulu_suffix(self):
        now = STARTED + timedelta(seconds=30)

        assert estimate_progress("2024-01-01T00:00:00Z", now, 120, 95) == 25

    def test_estimate_without_start_time(self):
        assert estimate_progress(None, STARTED, 120, 95) is None


# ─────────────────────────────────────────────────────────────────────────────
# Write side
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.status
class TestStatusRecorder:

    def _payload(self) -> JobPayload:
        return JobPayload(
            document_id="doc-1",
            user_id="user-1",
            source_ref={"bucket": "b", "key": "k"},
            file_type="pdf",
            process_id="process-1",
            start_time="2024-01-01T00:00:00+00:00",
        )

    async def test_mark_processing_creates_record(self, document_table):
        await StatusRecorder(document_table).mark_processing(self._payload(), 5)

        record = document_table.records["doc-1"]
        assert record["status"] == "PROCESSING"
        assert record["progress"] == 5
        assert record["processId"] == "process-1"
        assert "timestamp" in record

    async def test_mark_processing_keeps_existing_execution(self, document_table):
        await document_table.put({"documentId": "doc-1", "status": "PROCESSING", "execution": {"executionArn": "x"}})

        await StatusRecorder(document_table).mark_processing(self._payload(), 5)

        assert document_table.records["doc-1"]["execution"] == {"executionArn": "x"}
        assert document_table.history[-1][0] == "update"

    async def test_mark_completed_writes_location(self, document_table):
        await document_table.put({"documentId": "doc-1", "status": "PROCESSING"})

        await StatusRecorder(document_table).mark_completed("doc-1", ObjectRef(bucket="b", key="r.json"))

        record = document_table.records["doc-1"]
        assert record["status"] == "COMPLETED"
        assert record["progress"] == 100
        assert record["resultLocation"] == {"bucket": "b", "key": "r.json"}

    async def test_mark_failed_writes_error(self, document_table):
        await document_table.put({"documentId": "doc-1", "status": "PROCESSING"})

        await StatusRecorder(document_table).mark_failed(
            "doc-1", PipelineErrorInfo(message="boom", kind="OcrJobTimeout", stage="Extract")
        )

        record = document_table.records["doc-1"]
        assert record["status"] == "FAILED"
        assert record["error"] == {"message": "boom", "kind": "OcrJobTimeout"}

    async def test_terminal_record_is_not_overwritten(self, document_table):
        await document_table.put({"documentId": "doc-1", "status": "COMPLETED", "progress": 100})

        await StatusRecorder(document_table).record_progress("doc-1", "Store", 90)

        assert document_table.records["doc-1"]["progress"] == 100
