"""
Content Store — Abstract Base

Durable key/value blob storage. The pipeline reads uploaded documents from
it and uses it as a side-channel for anything too large to travel in the
job payload (full extracted text, raw OCR blocks, spreadsheet sheets).

Every backend implements the byte-level primitives; the JSON helpers and
the artifact key layout live here so they behave identically everywhere.

Key layout for externalized artifacts:
    document-analysis/<document_id>/<name>-content.json
Result artifacts:
    analysis-results/<document_id>/results.json
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

class ObjectRef(BaseModel):
    """Pointer to one object: ``{"bucket": ..., "key": ...}`` on the wire."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    key:    str

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    @property
    def filename(self) -> str:
        return self.key.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class ObjectMetadata:
    """Returned by head(): what validation needs without downloading the body."""
    size_bytes:   int
    content_type: str
    etag:         str = ""


@dataclass(frozen=True)
class PresignedUrl:
    url:        str
    expires_in: int   # seconds
    method:     str   # GET | PUT


def artifact_key(document_id: str, name: str) -> str:
    """Key for an externalized intermediate artifact of one document."""
    return f"document-analysis/{document_id}/{name}-content.json"


def result_key(document_id: str) -> str:
    return f"analysis-results/{document_id}/results.json"


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class ContentStore(ABC):
    """
    Blob storage addressed by ObjectRef.

    Missing objects raise FileNotFoundError from get_bytes() and head();
    exists() never raises for a missing object.
    """

    @abstractmethod
    async def put_bytes(
        self,
        ref: ObjectRef,
        body: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> ObjectMetadata:
        """Write (or overwrite) one object."""

    @abstractmethod
    async def get_bytes(self, ref: ObjectRef) -> bytes:
        """Read one object's full body."""

    @abstractmethod
    async def head(self, ref: ObjectRef) -> ObjectMetadata:
        """Size and declared content type, without the body."""

    @abstractmethod
    async def delete(self, ref: ObjectRef) -> None:
        """Remove one object. Deleting a missing object is not an error."""

    @abstractmethod
    async def presigned_get(self, ref: ObjectRef, expires_in: int = 300) -> PresignedUrl:
        """Time-limited direct download URL."""

    async def exists(self, ref: ObjectRef) -> bool:
        try:
            await self.head(ref)
        except FileNotFoundError:
            return False
        return True

    async def put_json(self, ref: ObjectRef, value: Any) -> ObjectRef:
        """Serialize ``value`` as JSON and store it; returns the ref for chaining."""
        body = json.dumps(value, default=str).encode("utf-8")
        await self.put_bytes(ref, body, content_type="application/json")
        return ref

    async def get_json(self, ref: ObjectRef) -> Any:
        return json.loads(await self.get_bytes(ref))
