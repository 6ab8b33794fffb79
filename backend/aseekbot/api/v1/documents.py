"""
Document Analysis API Router
POST /api/v1/document-analysis
GET  /api/v1/document-analysis/{document_id}/status?userId=...

Request lifecycle:
  ┌──────────────────────────────────────────────────────────┐
  │ 1. Check s3Bucket / s3Key / fileType / userId (400)       │
  │ 2. Start a pipeline run on the documents.analysis queue   │
  │ 3. Record the execution handle on the document record     │
  │ 4. Return {success, executionArn, documentId}             │
  └──────────────────────────────────────────────────────────┘

The run writes its own progress (Init 5 → Store 90) and terminal status to
the document status table; the status route reconciles that record against
the run while it is PROCESSING.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, status

from aseekbot.api.dependencies import DocumentStatuses, Ingestion
from aseekbot.schemas.documents import (
    ApiErrors,
    DocumentAnalysisRequest,
    DocumentAnalysisResponse,
    ErrorResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/document-analysis",
    tags=["Document Analysis"],
)


# ---------------------------------------------------------------------------
# POST /document-analysis
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=DocumentAnalysisResponse,
    response_model_by_alias=True,
    summary="Start a document-analysis run",
    description=(
        "Starts the extraction → analysis → insights pipeline for one stored document. "
        "Poll GET /document-analysis/{documentId}/status for progress."
    ),
    responses={
        200: {"model": DocumentAnalysisResponse},
        400: {"model": ErrorResponse, "description": "Required fields missing"},
        500: {"model": ErrorResponse, "description": "The run could not be started"},
    },
)
async def start_document_analysis(
    body:    DocumentAnalysisRequest,
    service: Ingestion,
) -> DocumentAnalysisResponse:
    return await service.start_document_analysis(body)


# ---------------------------------------------------------------------------
# GET /document-analysis/{document_id}/status
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/status",
    summary="Poll a document-analysis run",
    responses={
        200: {"description": "Status record, reconciled against the live run"},
        400: {"model": ErrorResponse, "description": "userId missing"},
        404: {"model": ErrorResponse},
    },
)
async def get_document_status(
    document_id: str,
    service:     DocumentStatuses,
    user_id:     Optional[str] = Query(None, alias="userId"),
) -> dict[str, Any]:
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ApiErrors.missing_identifier("userId").model_dump(),
        )

    record = await service.get_status(document_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ApiErrors.record_not_found(document_id, kind="document analysis").model_dump(),
        )
    logger.debug("Document status read | doc=%s user=%s status=%s", document_id, user_id, record.get("status"))
    return record
