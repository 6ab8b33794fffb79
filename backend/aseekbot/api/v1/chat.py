"""
Chat Message API Router
POST /api/v1/chat/messages

Accepts a chat message, optionally with references to files already
uploaded to S3, records it as QUEUED and hands it to the workers.

Body: JSON, or a form with the same field names. In a form, ``s3Files`` is a
JSON-encoded list; an unparseable list is ignored and the message is
processed without files.

Responses:
  202  {requestId, status: QUEUED, message, chatId, messageOrder}
  400  missing message / unparseable body
  503  broker unavailable (the record is marked FAILED)
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from aseekbot.api.dependencies import Ingestion
from aseekbot.schemas.documents import ApiErrors, ChatMessageRequest, ChatMessageResponse, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/chat",
    tags=["Chat"],
)


@router.post(
    "/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a chat message for processing",
    responses={
        202: {"model": ChatMessageResponse, "description": "Message recorded and queued"},
        400: {"model": ErrorResponse, "description": "Missing message or malformed body"},
        503: {"model": ErrorResponse, "description": "Message broker unavailable"},
    },
)
async def submit_chat_message(request: Request, service: Ingestion) -> JSONResponse:
    body = await _read_body(request)
    try:
        chat_request = ChatMessageRequest.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ApiErrors.invalid_body(str(exc)).model_dump(),
        ) from exc

    result = await service.submit_message(chat_request)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=result.model_dump(mode="json", by_alias=True),
        headers={"Location": f"/api/v1/status/{result.request_id}"},
    )


async def _read_body(request: Request) -> dict[str, Any]:
    content_type = request.headers.get("content-type", "")

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        body: dict[str, Any] = {k: v for k, v in form.items() if isinstance(v, str)}
        raw_files = body.pop("s3Files", None)
        if raw_files:
            try:
                files = json.loads(raw_files)
                body["s3Files"] = files if isinstance(files, list) else []
            except json.JSONDecodeError as exc:
                logger.warning("Ignoring unparseable s3Files form field | error=%s", exc)
        return body

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ApiErrors.invalid_body("Body must be a JSON object.").model_dump(),
        ) from exc
    if not isinstance(body, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ApiErrors.invalid_body("Body must be a JSON object.").model_dump(),
        )
    return body
