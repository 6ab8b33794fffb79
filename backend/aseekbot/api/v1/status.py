"""
Request Status API Router
GET /api/v1/status/{request_id}?userId=

Returns the request's status record. While a document-analysis run is in
flight the record is reconciled against the run (see services/status.py):
finished runs report COMPLETED or FAILED, running ones an estimated progress.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, status

from aseekbot.api.dependencies import RequestStatuses
from aseekbot.schemas.documents import ApiErrors, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/status",
    tags=["Status"],
)


@router.get(
    "/{request_id}",
    summary="Poll a chat request",
    responses={
        200: {"description": "Status record, reconciled against the live run"},
        400: {"model": ErrorResponse, "description": "userId missing"},
        404: {"model": ErrorResponse, "description": "Unknown requestId"},
    },
)
async def get_request_status(
    request_id: str,
    service:    RequestStatuses,
    user_id:    Optional[str] = Query(None, alias="userId"),
) -> dict[str, Any]:
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ApiErrors.missing_identifier("userId").model_dump(),
        )

    record = await service.get_status(request_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ApiErrors.record_not_found(request_id).model_dump(),
        )

    logger.debug("Status read | request=%s user=%s status=%s", request_id, user_id, record.get("status"))
    return record
