"""
Unit Tests: CeleryExecutionTracker
══════════════════════════════════
Tests for aseekbot/workers/executions.py

Coverage:
  ✅ start() sends run_document_analysis by name with a doc-analysis-<id>-<ms> task id
  ✅ Celery states mapped onto execution statuses
  ✅ Time-limit failures reported as TIMED_OUT
  ✅ SUCCESS carries the task return value as output
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from celery.exceptions import SoftTimeLimitExceeded, TimeLimitExceeded

from aseekbot.workers.executions import (
    RUN_DOCUMENT_ANALYSIS_TASK,
    CeleryExecutionTracker,
    ExecutionStatus,
    execution_name,
)


def _async_result(state: str, result=None) -> MagicMock:
    res = MagicMock()
    res.state = state
    res.result = result
    return res


@pytest.mark.unit
@pytest.mark.workers
class TestCeleryExecutionTracker:

    async def test_start_sends_task_by_name(self):
        app = MagicMock()
        payload = {"documentId": "doc-1", "sourceRef": {"bucket": "b", "key": "k"}}

        handle = await CeleryExecutionTracker(app).start(payload)

        app.send_task.assert_called_once()
        args, kwargs = app.send_task.call_args
        assert args == (RUN_DOCUMENT_ANALYSIS_TASK,)
        assert kwargs["args"] == [payload]
        assert kwargs["task_id"] == handle.execution_arn
        assert handle.execution_arn.startswith("doc-analysis-doc-1-")
        assert handle.to_record()["startTime"] == handle.start_time

    def test_execution_name_is_millisecond_stamped(self):
        name = execution_name("doc-9")

        prefix, _, millis = name.rpartition("-")
        assert prefix == "doc-analysis-doc-9"
        assert millis.isdigit() and len(millis) >= 13

    @pytest.mark.parametrize(
        "state, result, expected",
        [
            ("PENDING", None, ExecutionStatus.RUNNING),
            ("RECEIVED", None, ExecutionStatus.RUNNING),
            ("STARTED", None, ExecutionStatus.RUNNING),
            ("RETRY", None, ExecutionStatus.RUNNING),
            ("FAILURE", ValueError("bad"), ExecutionStatus.FAILED),
            ("FAILURE", SoftTimeLimitExceeded(), ExecutionStatus.TIMED_OUT),
            ("FAILURE", TimeLimitExceeded(960), ExecutionStatus.TIMED_OUT),
            ("REVOKED", None, ExecutionStatus.ABORTED),
        ],
    )
    async def test_state_mapping(self, state, result, expected):
        with patch("aseekbot.workers.executions.AsyncResult", return_value=_async_result(state, result)):
            description = await CeleryExecutionTracker(MagicMock()).describe("doc-analysis-doc-1-1")

        assert description.status is expected
        assert description.output is None

    async def test_success_carries_output(self):
        output = {"documentId": "doc-1", "status": "COMPLETED", "insights": {"summary": "ok"}}
        app = MagicMock()

        with patch("aseekbot.workers.executions.AsyncResult", return_value=_async_result("SUCCESS", output)) as ar:
            description = await CeleryExecutionTracker(app).describe("doc-analysis-doc-1-1")

        assert description.status is ExecutionStatus.SUCCEEDED
        assert description.output == output
        ar.assert_called_once_with("doc-analysis-doc-1-1", app=app)
