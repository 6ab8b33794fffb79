"""
Request Ingestion Service

Accepts work over HTTP and hands it to the workers:

  Chat message (POST /api/v1/chat/messages)
    1. Validate the message text
    2. Allocate requestId, reuse or allocate chatId, compute messageOrder
    3. Write the QUEUED record (progress 0) to the request status table
    4. Publish ``process_request`` to the Celery broker
    5. Return 202 {requestId, status, message, chatId, messageOrder}

  Document analysis (POST /api/v1/document-analysis)
    1. Check s3Bucket / s3Key / fileType / userId
    2. Start a pipeline run through the execution tracker
    3. Record the execution handle on the document status record

RequestProcessor is the worker side of a chat message:

  files attached  → start a pipeline run for the first file
                    (documentId = requestId), request record PROCESSING/25
                    with ``execution``
  no files        → invoke the agent, request record COMPLETED/100 with
                    ``result {completion, sessionId, timestamp}``
  any failure     → request record FAILED with ``error {message, kind}``
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from fastapi import HTTPException, status

from aseekbot.llm.agent import AgentClient
from aseekbot.schemas.documents import (
    ApiErrors,
    ChatMessageRequest,
    ChatMessageResponse,
    DocumentAnalysisRequest,
    DocumentAnalysisResponse,
    ProcessingStatus,
    S3FileReference,
)
from aseekbot.storage.s3 import file_type_from_name, parse_s3_url
from aseekbot.storage.status_table import StatusTable, utc_now_iso
from aseekbot.workers.executions import ExecutionTracker

logger = logging.getLogger(__name__)

REQUEST_TYPE_CHAT = "CHAT_MESSAGE"
REQUEST_TYPE_DOCUMENT = "DOCUMENT_ANALYSIS"

QUEUED_MESSAGE = "Your request is being processed. Please check the status endpoint for updates."
DOCUMENT_QUEUED_MESSAGE = "Your document is being analyzed. Please check the status endpoint for updates."

DISPATCHED_PROGRESS = 25


# ---------------------------------------------------------------------------
# Task publisher: thin abstraction over Celery apply_async()
# Injected into IngestionService so it can be mocked in tests.
# ---------------------------------------------------------------------------

class TaskPublisher:
    """
    Sends request tasks to the Celery broker.
    Import is deferred so the broker connection is not required at module load time.
    """

    async def publish_request_task(
        self,
        request_id:   str,
        request_type: str,
        body:         dict[str, Any],
    ) -> None:
        from aseekbot.workers.tasks import process_request

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: process_request.apply_async(
                kwargs={
                    "request_id":   request_id,
                    "request_type": request_type,
                    "body":         body,
                },
            ),
        )
        logger.info("Request task published | request=%s type=%s", request_id, request_type)


# ---------------------------------------------------------------------------
# HTTP side
# ---------------------------------------------------------------------------

class IngestionService:
    """One instance per request; every dependency is injected."""

    def __init__(
        self,
        request_table:  StatusTable,
        document_table: StatusTable,
        publisher:      TaskPublisher,
        tracker:        ExecutionTracker,
    ) -> None:
        self._requests  = request_table
        self._documents = document_table
        self._publisher = publisher
        self._tracker   = tracker

    # ------------------------------------------------------------------
    # Chat messages
    # ------------------------------------------------------------------

    async def submit_message(self, request: ChatMessageRequest) -> ChatMessageResponse:
        message = (request.message or "").strip()
        if not message:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=ApiErrors.missing_message().model_dump(),
            )

        request_id = str(uuid.uuid4())
        chat_id = request.chat_id or str(uuid.uuid4())
        session_id = request.session_id or request_id
        user_id = request.user_id or "anonymous"
        message_order = await self._next_message_order(chat_id)
        files = [f.model_dump(by_alias=True, exclude_none=True) for f in request.s3_files]
        request_type = REQUEST_TYPE_DOCUMENT if files else REQUEST_TYPE_CHAT

        now = utc_now_iso()
        await self._requests.put(
            {
                "requestId":    request_id,
                "status":       ProcessingStatus.QUEUED.value,
                "progress":     0,
                "timestamp":    now,
                "createdAt":    now,
                "userId":       user_id,
                "sessionId":    session_id,
                "chatId":       chat_id,
                "message":      message,
                "messageOrder": message_order,
                "s3Files":      files,
                "isDocumentAnalysis": bool(files),
            }
        )
        logger.info(
            "Request queued | request=%s chat=%s order=%d type=%s files=%d",
            request_id, chat_id, message_order, request_type, len(files),
        )

        try:
            await self._publisher.publish_request_task(
                request_id=request_id,
                request_type=request_type,
                body={
                    "message":   message,
                    "sessionId": session_id,
                    "userId":    user_id,
                    "s3Files":   files,
                },
            )
        except Exception as exc:
            logger.error("Failed to publish request task | request=%s error=%s", request_id, exc)
            await self._requests.update(
                request_id,
                {
                    "status": ProcessingStatus.FAILED.value,
                    "error": {"message": str(exc), "kind": "QueueError"},
                },
            )
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=ApiErrors.queue_error().model_dump(),
            )

        return ChatMessageResponse(
            request_id=request_id,
            status=ProcessingStatus.QUEUED,
            message=DOCUMENT_QUEUED_MESSAGE if files else QUEUED_MESSAGE,
            chat_id=chat_id,
            message_order=message_order,
        )

    async def _next_message_order(self, chat_id: str) -> int:
        try:
            return await self._requests.count_matching("chatId", chat_id) + 1
        except Exception as exc:
            logger.warning("Message order lookup failed, using 1 | chat=%s error=%s", chat_id, exc)
            return 1

    # ------------------------------------------------------------------
    # Document analysis
    # ------------------------------------------------------------------

    async def start_document_analysis(self, request: DocumentAnalysisRequest) -> DocumentAnalysisResponse:
        missing = request.missing_fields()
        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=ApiErrors.missing_fields(missing).model_dump(),
            )

        document_id = str(uuid.uuid4())
        payload: dict[str, Any] = {
            "documentId": document_id,
            "userId": request.user_id,
            "sourceRef": {"bucket": request.s3_bucket, "key": request.s3_key},
            "fileType": request.file_type,
            "isMultipleDocuments": request.is_multiple_documents,
        }
        if request.parser_type:
            payload["parserType"] = request.parser_type

        try:
            handle = await self._tracker.start(payload)
        except Exception as exc:
            logger.exception("Execution start failed | doc=%s", document_id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=ApiErrors.execution_error().model_dump(),
            ) from exc

        # progress is left alone: the run's Init stage may already have written it
        await self._documents.update(
            document_id,
            {
                "status":    ProcessingStatus.PROCESSING.value,
                "userId":    request.user_id,
                "fileType":  request.file_type,
                "execution": handle.to_record(),
            },
        )
        logger.info("Document analysis started | doc=%s execution=%s", document_id, handle.execution_arn)
        return DocumentAnalysisResponse(execution_arn=handle.execution_arn, document_id=document_id)


# ---------------------------------------------------------------------------
# Worker side
# ---------------------------------------------------------------------------

def analysis_payload(request_id: str, user_id: str | None, files: list[S3FileReference]) -> dict[str, Any]:
    """
    Pipeline payload for the first attached file. Raises ValueError when the
    file reference cannot be resolved to a bucket and key.

    Only the first attachment is analyzed; chat requests never run Compare.
    """
    if not files or not files[0].s3_url:
        raise ValueError("No valid files provided for document analysis")

    first = files[0]
    ref = parse_s3_url(first.s3_url)
    file_type = file_type_from_name(first.name or ref.filename)
    if not file_type and first.mime_type:
        file_type = first.mime_type.rsplit("/", 1)[-1].lower()

    return {
        "documentId": request_id,
        "requestId":  request_id,
        "userId":     user_id or "anonymous",
        "sourceRef":  {"bucket": ref.bucket, "key": ref.key},
        "fileType":   file_type or "unknown",
        "isMultipleDocuments": False,
    }


class RequestProcessor:

    def __init__(
        self,
        request_table: StatusTable,
        tracker:       ExecutionTracker,
        agent:         AgentClient | None = None,
    ) -> None:
        self._requests = request_table
        self._tracker  = tracker
        self._agent    = agent

    async def process(self, request_id: str, request_type: str, body: dict[str, Any]) -> None:
        """Handle one queued request. Failures are recorded on the request, then re-raised."""
        files = [S3FileReference.model_validate(f) for f in body.get("s3Files") or []]
        try:
            if request_type == REQUEST_TYPE_DOCUMENT or files:
                await self._start_analysis(request_id, body.get("userId"), files)
            else:
                await self._answer_chat(request_id, body.get("message") or "", body.get("sessionId") or request_id)
        except Exception as exc:
            logger.error("Request failed | request=%s error=%s", request_id, exc, exc_info=True)
            await self._requests.update(
                request_id,
                {
                    "status": ProcessingStatus.FAILED.value,
                    "error": {"message": str(exc), "kind": type(exc).__name__},
                },
            )
            raise

    async def _start_analysis(self, request_id: str, user_id: str | None, files: list[S3FileReference]) -> None:
        payload = analysis_payload(request_id, user_id, files)
        handle = await self._tracker.start(payload)
        await self._requests.update(
            request_id,
            {
                "status":    ProcessingStatus.PROCESSING.value,
                "progress":  DISPATCHED_PROGRESS,
                "execution": handle.to_record(),
            },
        )
        logger.info("Request dispatched to pipeline | request=%s execution=%s", request_id, handle.execution_arn)

    async def _answer_chat(self, request_id: str, message: str, session_id: str) -> None:
        if self._agent is None:
            raise RuntimeError("Bedrock agent is not configured")

        await self._requests.update(
            request_id,
            {"status": ProcessingStatus.PROCESSING.value, "progress": DISPATCHED_PROGRESS},
        )
        completion = await self._agent.invoke(message, session_id)
        await self._requests.update(
            request_id,
            {
                "status":   ProcessingStatus.COMPLETED.value,
                "progress": 100,
                "result": {
                    "completion": completion.completion,
                    "sessionId":  completion.session_id,
                    "timestamp":  utc_now_iso(),
                },
            },
        )
        logger.info("Chat request completed | request=%s chars=%d", request_id, len(completion.completion))
