"""
Status Table

Per-request / per-document record of workflow status, progress and result
location. Two tables share this shape:

    RequestStatus            keyed by requestId  (written by ingestion)
    DocumentAnalysisStatus   keyed by documentId (written by the pipeline)

Write semantics:
  - put()    creates or replaces a whole record.
  - update() merges the given fields into the record (last writer wins)
             and always refreshes updatedAt.
  - update() refuses to touch a record that already reached a terminal
             status (COMPLETED / FAILED / ERROR) unless allow_terminal=True;
             the refusal is reported as a False return, not an exception.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import aioboto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from aseekbot.core.config import Settings, settings as default_settings
from aseekbot.schemas.documents import TERMINAL_STATUSES

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class StatusTable(ABC):
    """Key/value status records addressed by a single string key."""

    def __init__(self, key_name: str) -> None:
        self._key_name = key_name

    @property
    def key_name(self) -> str:
        return self._key_name

    @abstractmethod
    async def get(self, record_id: str) -> dict[str, Any] | None:
        """Return the record, or None when it does not exist."""

    @abstractmethod
    async def put(self, item: dict[str, Any]) -> None:
        """Create or replace a record. ``item`` must contain the key attribute."""

    @abstractmethod
    async def update(
        self,
        record_id: str,
        fields: dict[str, Any],
        *,
        allow_terminal: bool = False,
    ) -> bool:
        """
        Merge ``fields`` into the record and set updatedAt.
        Returns False when the write was refused by the terminal-state guard.
        """

    @abstractmethod
    async def count_matching(self, attribute: str, value: Any) -> int:
        """Number of records whose ``attribute`` equals ``value``."""


# ---------------------------------------------------------------------------
# DynamoDB implementation
# ---------------------------------------------------------------------------

def _to_dynamo(value: Any) -> Any:
    """DynamoDB rejects Python floats; round-trip through JSON into Decimals."""
    return json.loads(json.dumps(value, default=str), parse_float=Decimal)


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


class DynamoStatusTable(StatusTable):
    """Status records in one DynamoDB table (aioboto3 resource API)."""

    def __init__(
        self,
        table_name: str,
        key_name: str,
        config: Settings | None = None,
    ) -> None:
        super().__init__(key_name)
        self._table_name = table_name
        self._cfg = config or default_settings
        self._session = aioboto3.Session()

    def _resource(self):
        return self._session.resource("dynamodb", **self._cfg.aws_client_kwargs())

    async def get(self, record_id: str) -> dict[str, Any] | None:
        async with self._resource() as ddb:
            table = await ddb.Table(self._table_name)
            resp = await table.get_item(Key={self._key_name: record_id})
        item = resp.get("Item")
        return _from_dynamo(item) if item else None

    async def put(self, item: dict[str, Any]) -> None:
        if self._key_name not in item:
            raise ValueError(f"Status record is missing its key '{self._key_name}'")
        record = {"updatedAt": utc_now_iso(), **item}
        async with self._resource() as ddb:
            table = await ddb.Table(self._table_name)
            await table.put_item(Item=_to_dynamo(record))
        logger.info(
            "Status put | table=%s id=%s status=%s",
            self._table_name, item[self._key_name], item.get("status"),
        )

    async def update(
        self,
        record_id: str,
        fields: dict[str, Any],
        *,
        allow_terminal: bool = False,
    ) -> bool:
        fields = {k: v for k, v in fields.items() if k != self._key_name}
        fields["updatedAt"] = utc_now_iso()

        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        assignments: list[str] = []
        for idx, (name, value) in enumerate(fields.items()):
            names[f"#f{idx}"] = name
            values[f":v{idx}"] = _to_dynamo(value)
            assignments.append(f"#f{idx} = :v{idx}")

        kwargs: dict[str, Any] = {
            "Key": {self._key_name: record_id},
            "UpdateExpression": "SET " + ", ".join(assignments),
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }
        if not allow_terminal:
            names["#status"] = "status"
            terminal = sorted(s.value for s in TERMINAL_STATUSES)
            placeholders = []
            for idx, status_value in enumerate(terminal):
                values[f":t{idx}"] = status_value
                placeholders.append(f":t{idx}")
            kwargs["ConditionExpression"] = (
                f"attribute_not_exists(#status) OR NOT (#status IN ({', '.join(placeholders)}))"
            )

        async with self._resource() as ddb:
            table = await ddb.Table(self._table_name)
            try:
                await table.update_item(**kwargs)
            except ClientError as exc:
                if exc.response["Error"]["Code"] == "ConditionalCheckFailedException":
                    logger.warning(
                        "Status update refused, record is terminal | table=%s id=%s fields=%s",
                        self._table_name, record_id, sorted(fields),
                    )
                    return False
                raise

        logger.debug(
            "Status update | table=%s id=%s fields=%s",
            self._table_name, record_id, sorted(fields),
        )
        return True

    async def count_matching(self, attribute: str, value: Any) -> int:
        """Paginated COUNT scan; chats hold a handful of messages."""
        kwargs: dict[str, Any] = {
            "FilterExpression": Attr(attribute).eq(value),
            "Select": "COUNT",
        }
        total = 0
        async with self._resource() as ddb:
            table = await ddb.Table(self._table_name)
            while True:
                resp = await table.scan(**kwargs)
                total += resp.get("Count", 0)
                last_key = resp.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        return total
