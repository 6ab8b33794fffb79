"""
File Transfer API Router
POST /api/v1/files/upload
GET  /api/v1/files/download?fileKey=

Upload stores the file under uploads/<owner>/<millis>_<sanitized name> and
returns its virtual-hosted S3 URL; that URL is what chat messages reference
in ``s3Files[].s3Url``. Download returns a short-lived presigned GET URL.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile, status

from aseekbot.api.dependencies import AppSettings, Storage
from aseekbot.schemas.documents import (
    ApiErrors,
    DownloadUrlResponse,
    ErrorResponse,
    FileUploadResponse,
)
from aseekbot.storage.base import ObjectRef

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/files",
    tags=["Files"],
)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.\-]")


def sanitize_filename(filename: str) -> str:
    """Basename only, with anything outside [a-zA-Z0-9.-] replaced by '_'."""
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    return _UNSAFE_CHARS.sub("_", basename)[:200] or "upload"


# ---------------------------------------------------------------------------
# POST /files/upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=FileUploadResponse,
    summary="Upload a file for later analysis",
    responses={
        200: {"model": FileUploadResponse},
        400: {"model": ErrorResponse, "description": "No file in the request"},
        413: {"model": ErrorResponse, "description": "File exceeds the 10 MB limit"},
        500: {"model": ErrorResponse, "description": "Storage failure"},
    },
)
async def upload_file(
    store:      Storage,
    config:     AppSettings,
    file:       Optional[UploadFile] = File(None, description="File to store (max 10 MB)"),
    session_id: Optional[str] = Form(None, alias="sessionId"),
    user_id:    Optional[str] = Form(None, alias="userId"),
) -> FileUploadResponse:
    if file is None or not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ApiErrors.missing_file().model_dump(),
        )

    data = await file.read()
    if not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ApiErrors.missing_file().model_dump(),
        )
    if len(data) > config.max_document_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=ApiErrors.file_too_large(len(data), config.max_document_size_bytes).model_dump(),
        )

    owner = user_id or session_id or "anonymous"
    key = f"{config.upload_prefix}/{owner}/{int(time.time() * 1000)}_{sanitize_filename(file.filename)}"
    ref = ObjectRef(bucket=config.s3_bucket, key=key)
    content_type = file.content_type or "application/octet-stream"

    try:
        await store.put_bytes(ref, data, content_type=content_type)
    except Exception as exc:
        logger.exception("Upload failed | key=%s", ref.uri)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=ApiErrors.storage_error(str(exc)).model_dump(),
        ) from exc

    logger.info("Upload ok | key=%s size=%d type=%s", ref.uri, len(data), content_type)
    return FileUploadResponse(
        file_url=f"https://{config.s3_bucket}.s3.{config.aws_region}.amazonaws.com/{key}",
        file_key=key,
        file_name=file.filename,
        file_type=content_type,
        file_size=len(data),
    )


# ---------------------------------------------------------------------------
# GET /files/download
# ---------------------------------------------------------------------------

@router.get(
    "/download",
    response_model=DownloadUrlResponse,
    summary="Presigned download URL for a stored file",
    responses={
        200: {"model": DownloadUrlResponse},
        400: {"model": ErrorResponse, "description": "fileKey missing or empty"},
        404: {"model": ErrorResponse, "description": "No such object"},
    },
)
async def download_file(
    store:    Storage,
    config:   AppSettings,
    file_key: Optional[str] = Query(None, alias="fileKey"),
) -> DownloadUrlResponse:
    if not file_key or not file_key.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ApiErrors.missing_identifier("fileKey").model_dump(),
        )

    ref = ObjectRef(bucket=config.s3_bucket, key=file_key.strip())
    if not await store.exists(ref):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ApiErrors.record_not_found(ref.key, kind="file").model_dump(),
        )

    presigned = await store.presigned_get(ref, expires_in=config.presigned_url_expiry_seconds)
    return DownloadUrlResponse(url=presigned.url, expires_in=presigned.expires_in)
