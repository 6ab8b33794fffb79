"""
Status Services
═══════════════

StatusRecorder   write side, used by the pipeline: PROCESSING, per-stage
                 progress, and the terminal COMPLETED / FAILED transition.

StatusService    read side, used by the status endpoints. Returns the stored
                 record, reconciled against the live execution when the record
                 is PROCESSING and carries ``execution {executionArn, startTime}``:

    execution SUCCEEDED             → COMPLETED, progress 100, result extracted
                                      from the execution output
    execution SUCCEEDED, but the    → FAILED, error taken from the output
      run ended at HandleError
    execution FAILED / TIMED_OUT /  → FAILED, error {message: "Execution <STATUS>",
              ABORTED                                kind: "ExecutionError"}
    execution still running         → progress estimated from elapsed time,
                                      capped below 100

    Reconciliation is a view: nothing is written back. If the execution
    lookup fails the stored record is returned unchanged.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable

from aseekbot.core.config import Settings, settings as default_settings
from aseekbot.pipeline.payload import JobPayload, PipelineErrorInfo
from aseekbot.schemas.documents import ProcessingStatus
from aseekbot.storage.base import ObjectRef
from aseekbot.storage.status_table import StatusTable, utc_now_iso
from aseekbot.workers.executions import ExecutionStatus, ExecutionTracker

logger = logging.getLogger(__name__)

_FAILED_EXECUTION_STATES = frozenset(
    {ExecutionStatus.FAILED, ExecutionStatus.TIMED_OUT, ExecutionStatus.ABORTED}
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Write side
# ---------------------------------------------------------------------------

class StatusRecorder:
    """Status writes for one job, keyed by the table's key attribute."""

    def __init__(self, table: StatusTable) -> None:
        self._table = table

    async def mark_processing(self, payload: JobPayload, progress: int) -> None:
        fields = {
            "status":    ProcessingStatus.PROCESSING.value,
            "progress":  progress,
            "userId":    payload.user_id,
            "fileType":  payload.file_type,
            "processId": payload.process_id,
            "startTime": payload.start_time,
        }
        existing = await self._table.get(payload.document_id)
        if existing is None:
            await self._table.put(
                {self._table.key_name: payload.document_id, "timestamp": utc_now_iso(), **fields}
            )
        else:
            await self._table.update(payload.document_id, fields)

    async def record_progress(self, record_id: str, stage: str, progress: int) -> None:
        await self._table.update(record_id, {"progress": progress, "currentStage": stage})

    async def mark_completed(self, record_id: str, result_location: ObjectRef | None) -> None:
        fields: dict[str, Any] = {
            "status": ProcessingStatus.COMPLETED.value,
            "progress": 100,
        }
        if result_location is not None:
            fields["resultLocation"] = result_location.model_dump()
        await self._table.update(record_id, fields)

    async def mark_failed(self, record_id: str, error: PipelineErrorInfo) -> None:
        await self._table.update(
            record_id,
            {
                "status": ProcessingStatus.FAILED.value,
                "error": {"message": error.message, "kind": error.kind},
            },
        )


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

def _dig(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _run_failed(output: dict[str, Any]) -> bool:
    return output.get("status") == ProcessingStatus.FAILED.value or bool(output.get("error"))


def find_insights(output: Any, record: dict[str, Any]) -> Any:
    """
    Insights from a finished execution's output.

    Kept for compatibility with older output shapes: earlier pipeline
    variants nested the terminal payload differently. Current runs return
    top-level ``insights``.
    """
    for candidate in (
        _dig(output, "statusUpdate", "Payload", "insights"),
        _dig(output, "insights"),
        _dig(output, "result", "insights"),
        record.get("insights"),
    ):
        if candidate:
            return candidate
    return "Insights not available"


def estimate_progress(
    started_at: str | None,
    now: datetime,
    assumed_seconds: int,
    ceiling: int,
) -> int | None:
    if not started_at:
        return None
    started = datetime.fromisoformat(started_at.replace("Z", "+00:00"))
    if started.tzinfo is None:
        started = started.replace(tzinfo=timezone.utc)
    elapsed = max(0.0, (now - started).total_seconds())
    return min(ceiling, math.floor(elapsed / assumed_seconds * 100))


class StatusService:

    def __init__(
        self,
        table: StatusTable,
        tracker: ExecutionTracker,
        config: Settings | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._table = table
        self._tracker = tracker
        self._cfg = config or default_settings
        self._clock = clock

    async def get_status(self, record_id: str) -> dict[str, Any] | None:
        """Stored record, reconciled when a run is in flight. None when unknown."""
        record = await self._table.get(record_id)
        if record is None:
            return None

        execution = record.get("execution") or {}
        if record.get("status") != ProcessingStatus.PROCESSING.value or not execution.get("executionArn"):
            return record

        try:
            return await self._reconcile(record, execution)
        except Exception as exc:
            logger.warning(
                "Status reconciliation failed, returning stored record | id=%s execution=%s error=%s",
                record_id, execution.get("executionArn"), exc,
            )
            return record

    async def _reconcile(self, record: dict[str, Any], execution: dict[str, Any]) -> dict[str, Any]:
        description = await self._tracker.describe(execution["executionArn"])
        view = dict(record)
        output = description.output if isinstance(description.output, dict) else {}

        if description.status is ExecutionStatus.SUCCEEDED and _run_failed(output):
            # the task returned normally but the pipeline ended at HandleError
            error = output.get("error") if isinstance(output.get("error"), dict) else {}
            view["status"] = ProcessingStatus.FAILED.value
            view["error"] = {
                "message": error.get("message") or "Document analysis failed",
                "kind": error.get("kind") or "PipelineError",
            }

        elif description.status is ExecutionStatus.SUCCEEDED:
            view["status"] = ProcessingStatus.COMPLETED.value
            view["progress"] = 100
            view["result"] = {
                "insights": find_insights(output, record),
                "documentAnalysis": {"completed": True, "timestamp": utc_now_iso()},
            }
            if not view.get("resultLocation") and output.get("resultLocation"):
                view["resultLocation"] = output["resultLocation"]

        elif description.status in _FAILED_EXECUTION_STATES:
            view["status"] = ProcessingStatus.FAILED.value
            view["error"] = {
                "message": f"Execution {description.status.value}",
                "kind": "ExecutionError",
            }

        else:
            estimate = estimate_progress(
                execution.get("startTime"),
                self._clock(),
                self._cfg.assumed_execution_seconds,
                self._cfg.running_progress_ceiling,
            )
            if estimate is not None:
                stored = int(record.get("progress") or 0)
                view["progress"] = min(self._cfg.running_progress_ceiling, max(stored, estimate))

        logger.debug(
            "Status reconciled | execution=%s execution_status=%s status=%s progress=%s",
            execution["executionArn"], description.status.value, view.get("status"), view.get("progress"),
        )
        return view
