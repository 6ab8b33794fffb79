"""
Root conftest.py: shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : test_settings, content_store, document_table,
                    request_table, tracker, sample file bytes,
                    app_with_overrides, async_client

Environment strategy:
  - No test touches AWS or a broker. S3, DynamoDB, Textract, Bedrock and
    Celery are replaced by the in-memory fakes in tests/fakes.py, or by
    patched aioboto3 / boto3 clients in the storage and client tests.
  - Settings are read from the environment set below, before any
    aseekbot import.

How to run:
  pytest                              # all tests
  pytest -m unit                      # unit tests only (fast, no I/O)
  pytest -m integration               # API tests through the ASGI app
  pytest -m ocr                       # one domain
  pytest tests/unit/test_analyzer.py  # single file
"""

from __future__ import annotations

import io
import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any aseekbot imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("AWS_REGION",            "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID",     "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("S3_BUCKET",             "test-bucket")
os.environ.setdefault("REQUEST_STATUS_TABLE",  "RequestStatus-test")
os.environ.setdefault("DOCUMENT_STATUS_TABLE", "DocumentAnalysisStatus-test")
os.environ.setdefault("BEDROCK_AGENT_ID",      "")
os.environ.setdefault("BEDROCK_AGENT_ALIAS_ID", "")
os.environ.setdefault("CELERY_BROKER_URL",     "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("APP_ENV",               "development")
os.environ.setdefault("DEBUG",                 "true")

from tests.fakes import (  # noqa: E402
    FakeExecutionTracker,
    InMemoryContentStore,
    InMemoryStatusTable,
)


# ─────────────────────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def test_settings():
    """Fresh Settings with instant OCR polling and agent insights disabled."""
    from aseekbot.core.config import Settings
    return Settings(
        s3_bucket="test-bucket",
        textract_poll_base_delay=0.0,
        textract_poll_max_delay=0.0,
        textract_poll_max_attempts=3,
        insights_use_agent=False,
    )


# ─────────────────────────────────────────────────────────────────────────────
# In-memory capabilities
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def content_store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def document_table() -> InMemoryStatusTable:
    return InMemoryStatusTable("documentId")


@pytest.fixture
def request_table() -> InMemoryStatusTable:
    return InMemoryStatusTable("requestId")


@pytest.fixture
def tracker() -> FakeExecutionTracker:
    return FakeExecutionTracker()


# ─────────────────────────────────────────────────────────────────────────────
# Sample file bytes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def sample_txt_bytes() -> bytes:
    return (
        b"Purchase Order 4471\n"
        b"Vendor: Acme Supplies Inc.\n"
        b"Item: Industrial widget, quantity 40, unit price $125.50\n"
        b"Delivery date: 03/15/2024\n"
    )


@pytest.fixture
def sample_csv_bytes() -> bytes:
    return b"Part Number,Description,Price\nPN-100,Bolt,$1.20\nPN-200,Nut,$0.45\n"


@pytest.fixture
def sample_docx_bytes() -> bytes:
    """Real DOCX built with python-docx: two paragraphs and a 2x2 table."""
    from docx import Document

    doc = Document()
    doc.add_paragraph("Request for Quotation")
    doc.add_paragraph("Please quote the items below.")
    table = doc.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Item"
    table.cell(0, 1).text = "Qty"
    table.cell(1, 0).text = "Valve"
    table.cell(1, 1).text = "12"
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


@pytest.fixture
def sample_xlsx_bytes() -> bytes:
    """Workbook with one sheet of bid lines, built with openpyxl."""
    from openpyxl import Workbook

    wb = Workbook()
    ws = wb.active
    ws.title = "Lines"
    ws.append(["Part Number", "Vendor", "Unit Price", "Quantity"])
    ws.append(["PN-100", "Acme Corp", 12.5, 10])
    ws.append(["PN-200", "Globex Inc", 7.25, 4])
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


# ─────────────────────────────────────────────────────────────────────────────
# Mock task publisher
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_publisher():
    """Mocked TaskPublisher: records calls without touching Celery/broker."""
    from aseekbot.services.ingestion import TaskPublisher
    publisher = MagicMock(spec=TaskPublisher)
    publisher.publish_request_task = AsyncMock(return_value=None)
    return publisher


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI test client with dependency overrides
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def app_with_overrides(test_settings, content_store, document_table, request_table, tracker, mock_publisher):
    """
    FastAPI app with ALL external dependencies overridden:
      - get_content_store     → InMemoryContentStore (no S3)
      - get_request_table     → InMemoryStatusTable  (no DynamoDB)
      - get_document_table    → InMemoryStatusTable  (no DynamoDB)
      - get_execution_tracker → FakeExecutionTracker (no Celery)
      - get_task_publisher    → mock_publisher       (no broker)
    """
    from aseekbot.api.dependencies import (
        get_content_store,
        get_document_table,
        get_execution_tracker,
        get_request_table,
        get_task_publisher,
    )
    from aseekbot.core.config import get_settings
    from aseekbot.main import app

    app.dependency_overrides[get_settings]          = lambda: test_settings
    app.dependency_overrides[get_content_store]     = lambda: content_store
    app.dependency_overrides[get_request_table]     = lambda: request_table
    app.dependency_overrides[get_document_table]    = lambda: document_table
    app.dependency_overrides[get_execution_tracker] = lambda: tracker
    app.dependency_overrides[get_task_publisher]    = lambda: mock_publisher

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(app_with_overrides) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client using the overridden app."""
    from httpx import ASGITransport
    transport = ASGITransport(app=app_with_overrides)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
