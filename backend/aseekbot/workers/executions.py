"""
Execution Tracker

Starts pipeline runs and reports their live state. A run is one Celery
task (``run_document_analysis``); its task id is the execution handle
("executionArn" on the wire), and its state is read back from the Celery
result backend.

    Celery state                       ExecutionStatus
    ─────────────────────────────────  ───────────────
    PENDING / RECEIVED / STARTED /     RUNNING
      RETRY
    SUCCESS                            SUCCEEDED   (output = task return value)
    FAILURE (time limit exceeded)      TIMED_OUT
    FAILURE (anything else)            FAILED
    REVOKED                            ABORTED
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from celery.exceptions import SoftTimeLimitExceeded, TimeLimitExceeded
from celery.result import AsyncResult

from aseekbot.storage.status_table import utc_now_iso
from aseekbot.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

RUN_DOCUMENT_ANALYSIS_TASK = "aseekbot.workers.tasks.run_document_analysis"


class ExecutionStatus(str, Enum):
    RUNNING   = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED    = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    ABORTED   = "ABORTED"


@dataclass(frozen=True)
class ExecutionHandle:
    execution_arn: str
    start_time:    str       # ISO-8601 UTC

    def to_record(self) -> dict[str, str]:
        return {"executionArn": self.execution_arn, "startTime": self.start_time}


@dataclass(frozen=True)
class ExecutionDescription:
    status: ExecutionStatus
    output: Any = None


class ExecutionTracker(ABC):

    @abstractmethod
    async def start(self, payload: dict[str, Any]) -> ExecutionHandle:
        """Start a pipeline run for one camelCase job payload."""

    @abstractmethod
    async def describe(self, execution_arn: str) -> ExecutionDescription:
        """Current state of a run."""


def execution_name(document_id: str) -> str:
    return f"doc-analysis-{document_id}-{int(time.time() * 1000)}"


class CeleryExecutionTracker(ExecutionTracker):

    def __init__(self, app=None) -> None:
        self._app = app or celery_app

    async def start(self, payload: dict[str, Any]) -> ExecutionHandle:
        task_id = execution_name(payload["documentId"])
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: self._app.send_task(
                RUN_DOCUMENT_ANALYSIS_TASK,
                args=[payload],
                task_id=task_id,
            ),
        )
        logger.info("Execution started | doc=%s execution=%s", payload["documentId"], task_id)
        return ExecutionHandle(execution_arn=task_id, start_time=utc_now_iso())

    async def describe(self, execution_arn: str) -> ExecutionDescription:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._describe_sync, execution_arn)

    def _describe_sync(self, execution_arn: str) -> ExecutionDescription:
        result = AsyncResult(execution_arn, app=self._app)
        state = result.state
        if state == "SUCCESS":
            return ExecutionDescription(ExecutionStatus.SUCCEEDED, result.result)
        if state == "FAILURE":
            if isinstance(result.result, (SoftTimeLimitExceeded, TimeLimitExceeded)):
                return ExecutionDescription(ExecutionStatus.TIMED_OUT)
            return ExecutionDescription(ExecutionStatus.FAILED)
        if state == "REVOKED":
            return ExecutionDescription(ExecutionStatus.ABORTED)
        return ExecutionDescription(ExecutionStatus.RUNNING)
