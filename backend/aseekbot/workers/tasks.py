"""
Celery Tasks

Task: process_request
  Worker side of POST /api/v1/chat/messages. Requests with attached files
  start a document-analysis run; plain messages go to the Bedrock agent.
  The request status record is moved to PROCESSING, COMPLETED or FAILED.

Task: run_document_analysis
  One pipeline run. The task id is the execution handle stored on status
  records, and the return value (the final payload) is the execution output
  read back by status reconciliation.
  1. Build the orchestrator over S3, Textract, DynamoDB and the agent
  2. Run the stage graph to UpdateStatus
  3. Mirror the terminal status onto the originating chat request, if any
  4. Return the final payload (camelCase JSON)

Neither task retries: a failed run is recorded as FAILED and surfaced
through the status endpoints.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from celery import Task

from aseekbot.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
                future = pool.submit(asyncio.run, coro)
                return future.result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Request processing
# ---------------------------------------------------------------------------

@celery_app.task(
    name="aseekbot.workers.tasks.process_request",
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=120,
    time_limit=150,
)
def process_request(
    self: Task,
    *,
    request_id:   str,
    request_type: str,
    body:         dict[str, Any],
) -> dict[str, str]:
    run_async(_process_request_async(request_id, request_type, body))
    return {"requestId": request_id, "requestType": request_type}


async def _process_request_async(request_id: str, request_type: str, body: dict[str, Any]) -> None:
    from aseekbot.core.config import settings
    from aseekbot.llm.agent import BedrockAgentClient
    from aseekbot.services.ingestion import RequestProcessor
    from aseekbot.storage.status_table import DynamoStatusTable
    from aseekbot.workers.executions import CeleryExecutionTracker

    processor = RequestProcessor(
        request_table=DynamoStatusTable(settings.request_status_table, "requestId", settings),
        tracker=CeleryExecutionTracker(celery_app),
        agent=BedrockAgentClient(settings) if settings.agent_configured else None,
    )
    await processor.process(request_id, request_type, body)


# ---------------------------------------------------------------------------
# Document analysis run
# ---------------------------------------------------------------------------

@celery_app.task(
    name="aseekbot.workers.tasks.run_document_analysis",
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
)
def run_document_analysis(self: Task, payload: dict[str, Any]) -> dict[str, Any]:
    return run_async(_run_document_analysis_async(payload))


async def _run_document_analysis_async(event: dict[str, Any]) -> dict[str, Any]:
    from aseekbot.core.config import settings
    from aseekbot.pipeline.orchestrator import build_default_orchestrator
    from aseekbot.pipeline.payload import JobPayload
    from aseekbot.storage.status_table import DynamoStatusTable

    payload = JobPayload.from_event(event)
    final = await build_default_orchestrator(settings).run(payload)

    if final.request_id:
        await mirror_to_request(
            final,
            DynamoStatusTable(settings.request_status_table, "requestId", settings),
        )
    return final.to_event()


async def mirror_to_request(payload, request_table) -> None:
    """
    Copy the run's terminal status onto the chat request that started it.
    A failed mirror is logged; the document record already holds the outcome.
    """
    from aseekbot.schemas.documents import ProcessingStatus
    from aseekbot.services.status import StatusRecorder

    recorder = StatusRecorder(request_table)
    try:
        if payload.status is ProcessingStatus.COMPLETED:
            await recorder.mark_completed(payload.request_id, payload.result_location)
        elif payload.error is not None:
            await recorder.mark_failed(payload.request_id, payload.error)
    except Exception as exc:
        logger.warning(
            "Request status mirror failed | request=%s doc=%s error=%s",
            payload.request_id, payload.document_id, exc,
        )
