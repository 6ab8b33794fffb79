"""
Unit Tests: DynamoStatusTable
═════════════════════════════
Tests for aseekbot/storage/status_table.py with a mocked aioboto3 resource.

Coverage:
  ✅ get() converts Decimals back to int / float, None for a missing item
  ✅ put() requires the key attribute and stamps updatedAt
  ✅ update() builds a SET expression with placeholder names
  ✅ update() guards terminal records unless allow_terminal=True
  ✅ ConditionalCheckFailed → False, other ClientErrors propagate
  ✅ count_matching() follows LastEvaluatedKey across scan pages
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from aseekbot.storage.status_table import DynamoStatusTable


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "test"}}, "UpdateItem")


def _build_dynamo_mock() -> tuple[MagicMock, AsyncMock]:
    """Mock DynamoDB resource context manager plus the Table it hands out."""
    table = AsyncMock()
    ddb = AsyncMock()
    ddb.__aenter__ = AsyncMock(return_value=ddb)
    ddb.__aexit__  = AsyncMock(return_value=None)
    ddb.Table      = AsyncMock(return_value=table)
    return ddb, table


def _table(ddb, test_settings) -> DynamoStatusTable:
    with patch("aseekbot.storage.status_table.aioboto3.Session") as mock_session:
        mock_session.return_value.resource.return_value = ddb
        return DynamoStatusTable("DocumentAnalysisStatus-test", "documentId", test_settings)


# ─────────────────────────────────────────────────────────────────────────────
# Tests
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.storage
class TestDynamoStatusTable:

    async def test_get_converts_decimals(self, test_settings):
        ddb, table = _build_dynamo_mock()
        table.get_item = AsyncMock(return_value={
            "Item": {"documentId": "doc-1", "progress": Decimal("40"), "score": Decimal("0.85")}
        })

        record = await _table(ddb, test_settings).get("doc-1")

        assert record == {"documentId": "doc-1", "progress": 40, "score": 0.85}
        table.get_item.assert_awaited_once_with(Key={"documentId": "doc-1"})
        ddb.Table.assert_awaited_once_with("DocumentAnalysisStatus-test")

    async def test_get_missing_item_returns_none(self, test_settings):
        ddb, table = _build_dynamo_mock()
        table.get_item = AsyncMock(return_value={})

        assert await _table(ddb, test_settings).get("nope") is None

    async def test_put_requires_key(self, test_settings):
        ddb, _ = _build_dynamo_mock()

        with pytest.raises(ValueError):
            await _table(ddb, test_settings).put({"status": "QUEUED"})

    async def test_put_stamps_updated_at_and_decimals(self, test_settings):
        ddb, table = _build_dynamo_mock()

        await _table(ddb, test_settings).put({"documentId": "doc-1", "status": "QUEUED", "score": 0.5})

        item = table.put_item.await_args.kwargs["Item"]
        assert item["documentId"] == "doc-1"
        assert item["score"] == Decimal("0.5")
        assert "updatedAt" in item

    async def test_update_guards_terminal_records(self, test_settings):
        ddb, table = _build_dynamo_mock()

        assert await _table(ddb, test_settings).update("doc-1", {"progress": 40, "documentId": "ignored"}) is True

        kwargs = table.update_item.await_args.kwargs
        assert kwargs["Key"] == {"documentId": "doc-1"}
        assert kwargs["UpdateExpression"].startswith("SET #f0 = :v0")
        assert "documentId" not in kwargs["ExpressionAttributeNames"].values()
        assert "updatedAt" in kwargs["ExpressionAttributeNames"].values()
        assert "attribute_not_exists(#status)" in kwargs["ConditionExpression"]
        terminal = {v for k, v in kwargs["ExpressionAttributeValues"].items() if k.startswith(":t")}
        assert terminal == {"COMPLETED", "FAILED", "ERROR"}

    async def test_allow_terminal_drops_condition(self, test_settings):
        ddb, table = _build_dynamo_mock()

        await _table(ddb, test_settings).update("doc-1", {"status": "COMPLETED"}, allow_terminal=True)

        assert "ConditionExpression" not in table.update_item.await_args.kwargs

    async def test_refused_update_returns_false(self, test_settings):
        ddb, table = _build_dynamo_mock()
        table.update_item = AsyncMock(side_effect=_client_error("ConditionalCheckFailedException"))

        assert await _table(ddb, test_settings).update("doc-1", {"progress": 90}) is False

    async def test_other_client_errors_propagate(self, test_settings):
        ddb, table = _build_dynamo_mock()
        table.update_item = AsyncMock(side_effect=_client_error("ProvisionedThroughputExceededException"))

        with pytest.raises(ClientError):
            await _table(ddb, test_settings).update("doc-1", {"progress": 90})

    async def test_count_matching_pages_through_scan(self, test_settings):
        ddb, table = _build_dynamo_mock()
        table.scan = AsyncMock(side_effect=[
            {"Count": 2, "LastEvaluatedKey": {"requestId": "r2"}},
            {"Count": 1},
        ])

        assert await _table(ddb, test_settings).count_matching("chatId", "chat-1") == 3

        second = table.scan.await_args_list[1].kwargs
        assert second["ExclusiveStartKey"] == {"requestId": "r2"}
        assert second["Select"] == "COUNT"
