"""
Composed FastAPI Dependencies

Route handlers import from here, never from storage/ or workers/ directly.
This is the single wiring point for the request context; tests replace the
leaf providers through ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from aseekbot.core.config import Settings, get_settings
from aseekbot.services.ingestion import IngestionService, TaskPublisher
from aseekbot.services.status import StatusService
from aseekbot.storage.base import ContentStore
from aseekbot.storage.s3 import S3ContentStore
from aseekbot.storage.status_table import DynamoStatusTable, StatusTable
from aseekbot.workers.executions import CeleryExecutionTracker, ExecutionTracker


# ---------------------------------------------------------------------------
# 1. Leaf providers: storage, status tables, broker
# ---------------------------------------------------------------------------

def get_content_store(
    config: Annotated[Settings, Depends(get_settings)],
) -> ContentStore:
    return S3ContentStore(config)


def get_request_table(
    config: Annotated[Settings, Depends(get_settings)],
) -> StatusTable:
    """RequestStatus: one record per chat request, keyed by requestId."""
    return DynamoStatusTable(config.request_status_table, "requestId", config)


def get_document_table(
    config: Annotated[Settings, Depends(get_settings)],
) -> StatusTable:
    """DocumentAnalysisStatus: one record per pipeline run, keyed by documentId."""
    return DynamoStatusTable(config.document_status_table, "documentId", config)


def get_execution_tracker() -> ExecutionTracker:
    return CeleryExecutionTracker()


def get_task_publisher() -> TaskPublisher:
    return TaskPublisher()


# ---------------------------------------------------------------------------
# 2. Services
# ---------------------------------------------------------------------------

def get_ingestion_service(
    requests:  Annotated[StatusTable, Depends(get_request_table)],
    documents: Annotated[StatusTable, Depends(get_document_table)],
    publisher: Annotated[TaskPublisher, Depends(get_task_publisher)],
    tracker:   Annotated[ExecutionTracker, Depends(get_execution_tracker)],
) -> IngestionService:
    return IngestionService(requests, documents, publisher, tracker)


def get_request_status_service(
    requests: Annotated[StatusTable, Depends(get_request_table)],
    tracker:  Annotated[ExecutionTracker, Depends(get_execution_tracker)],
    config:   Annotated[Settings, Depends(get_settings)],
) -> StatusService:
    return StatusService(requests, tracker, config)


def get_document_status_service(
    documents: Annotated[StatusTable, Depends(get_document_table)],
    tracker:   Annotated[ExecutionTracker, Depends(get_execution_tracker)],
    config:    Annotated[Settings, Depends(get_settings)],
) -> StatusService:
    return StatusService(documents, tracker, config)


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

AppSettings       = Annotated[Settings,         Depends(get_settings)]
Storage           = Annotated[ContentStore,     Depends(get_content_store)]
Ingestion         = Annotated[IngestionService, Depends(get_ingestion_service)]
RequestStatuses   = Annotated[StatusService,    Depends(get_request_status_service)]
DocumentStatuses  = Annotated[StatusService,    Depends(get_document_status_service)]
