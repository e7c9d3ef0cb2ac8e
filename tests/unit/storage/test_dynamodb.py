"""Unit tests for DynamoDBStorageAdapter.

The adapter is exercised against an in-process fake of the boto3 Table
resource that evaluates the same condition expressions DynamoDB would.
"""

import json
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from idempotent_endpoint.config import IdempotencyConfig
from idempotent_endpoint.exceptions import BackendUnavailableError
from idempotent_endpoint.models import ErrorInfo, IdempotencyRecord, RecordStatus
from idempotent_endpoint.storage.dynamodb import (
    DynamoDBStorageAdapter,
    item_to_record,
    record_to_item,
)

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


def _conditional_check_failed(operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "failed"}},
        operation,
    )


def _matches(condition: Any, item: dict[str, Any] | None) -> bool:
    expression = condition.get_expression()
    operator = expression["operator"]
    values = expression["values"]
    if operator == "AND":
        return all(_matches(value, item) for value in values)
    if operator == "attribute_not_exists":
        return item is None or values[0].name not in item
    if operator == "attribute_exists":
        return item is not None and values[0].name in item
    if operator == "=":
        return item is not None and item.get(values[0].name) == values[1]
    raise AssertionError(f"Unexpected operator {operator}")


class FakeTable:
    """Minimal stand-in for a boto3 Table resource keyed on PK."""

    def __init__(self) -> None:
        self.items: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.error: Exception | None = None

    def _record_call(self, name: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((name, kwargs))
        if self.error is not None:
            raise self.error

    def get_item(self, **kwargs: Any) -> dict[str, Any]:
        self._record_call("get_item", kwargs)
        item = self.items.get(kwargs["Key"]["PK"])
        return {"Item": dict(item)} if item is not None else {}

    def put_item(self, **kwargs: Any) -> dict[str, Any]:
        self._record_call("put_item", kwargs)
        item = kwargs["Item"]
        condition = kwargs.get("ConditionExpression")
        if condition is not None and not _matches(condition, self.items.get(item["PK"])):
            raise _conditional_check_failed("PutItem")
        self.items[item["PK"]] = dict(item)
        return {}

    def delete_item(self, **kwargs: Any) -> dict[str, Any]:
        self._record_call("delete_item", kwargs)
        key = kwargs["Key"]["PK"]
        current = self.items.get(key)
        condition = kwargs.get("ConditionExpression")
        if condition is not None and not _matches(condition, current):
            raise _conditional_check_failed("DeleteItem")
        self.items.pop(key, None)
        return {"Attributes": current} if current is not None else {}


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def adapter(table: FakeTable) -> DynamoDBStorageAdapter:
    return DynamoDBStorageAdapter(table)


def _record(
    status: RecordStatus = RecordStatus.IN_PROGRESS,
    version: int = 0,
    fingerprint: str = "a" * 64,
    **extra: Any,
) -> IdempotencyRecord:
    return IdempotencyRecord(
        key="req-1",
        fingerprint=fingerprint,
        status=status,
        version=version,
        created_at=NOW,
        expires_at=NOW + timedelta(seconds=360.5),
        **extra,
    )


# ============================================================================
# Item mapping
# ============================================================================


class TestItemMapping:
    def test_record_to_item(self) -> None:
        item = record_to_item(_record())
        assert item["PK"] == "req-1"
        assert item["TTL"] == int(NOW.timestamp()) + 361
        assert item["fingerprint"] == "a" * 64
        assert item["status"] == "IN_PROGRESS"
        assert item["version"] == 0
        assert "result" not in item
        assert "error_info" not in item

    def test_completed_record_round_trip(self) -> None:
        record = _record(RecordStatus.COMPLETED, version=1, result='{"status":"ok"}')
        assert item_to_record(record_to_item(record)) == record

    def test_failed_record_round_trip(self) -> None:
        info = ErrorInfo(error_type="Boom", message="boom", status_code=424, detail={"a": 1})
        record = _record(RecordStatus.FAILED, version=1, error_info=info)
        item = record_to_item(record)
        assert json.loads(item["error_info"])["error_type"] == "Boom"
        assert item_to_record(item) == record

    def test_decimal_version_from_dynamodb(self) -> None:
        item = record_to_item(_record(version=3))
        item["version"] = Decimal(3)
        item["TTL"] = Decimal(item["TTL"])
        assert item_to_record(item).version == 3


# ============================================================================
# Primitives
# ============================================================================


@pytest.mark.asyncio
async def test_get_item_missing(adapter, table):
    assert await adapter.get_item("req-1") is None
    name, kwargs = table.calls[0]
    assert name == "get_item"
    assert kwargs == {"Key": {"PK": "req-1"}, "ConsistentRead": True}


@pytest.mark.asyncio
async def test_put_item_if_absent(adapter, table):
    record = _record()

    assert await adapter.put_item_if_absent(record) is True
    assert await adapter.put_item_if_absent(_record(fingerprint="b" * 64)) is False

    assert table.items["req-1"]["fingerprint"] == "a" * 64
    assert await adapter.get_item("req-1") == record


@pytest.mark.asyncio
async def test_update_item_if_version(adapter):
    await adapter.put_item_if_absent(_record())
    completed = _record(RecordStatus.COMPLETED, version=1, result="1")

    assert await adapter.update_item_if_version(completed, expected_version=1) is False
    assert await adapter.update_item_if_version(completed, expected_version=0) is True

    stored = await adapter.get_item("req-1")
    assert stored is not None
    assert stored.status is RecordStatus.COMPLETED
    assert stored.version == 1


@pytest.mark.asyncio
async def test_update_item_if_version_checks_claim_time(adapter, table):
    await adapter.put_item_if_absent(_record())
    completed = _record(RecordStatus.COMPLETED, version=1, result="1")

    earlier_claim = NOW - timedelta(seconds=61)
    assert (
        await adapter.update_item_if_version(
            completed, expected_version=0, expected_created_at=earlier_claim
        )
        is False
    )
    assert table.items["req-1"]["status"] == "IN_PROGRESS"
    assert (
        await adapter.update_item_if_version(completed, expected_version=0, expected_created_at=NOW)
        is True
    )
    assert table.items["req-1"]["status"] == "COMPLETED"

@pytest.mark.asyncio
async def test_update_item_if_version_requires_existing_item(adapter, table):
    completed = _record(RecordStatus.COMPLETED, version=1, result="1")

    assert await adapter.update_item_if_version(completed, expected_version=0) is False
    assert table.items == {}


@pytest.mark.asyncio
async def test_delete_item(adapter):
    await adapter.put_item_if_absent(_record(version=2))

    assert await adapter.delete_item("req-1", expected_version=1) is False
    assert await adapter.delete_item("req-1", expected_version=2) is True
    assert await adapter.delete_item("req-1") is False


# ============================================================================
# Errors
# ============================================================================


@pytest.mark.asyncio
async def test_client_error_is_backend_unavailable(adapter, table):
    table.error = ClientError(
        {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}},
        "GetItem",
    )

    with pytest.raises(BackendUnavailableError) as exc_info:
        await adapter.get_item("req-1")

    assert exc_info.value.operation == "get_item"
    assert exc_info.value.cause is table.error


@pytest.mark.asyncio
async def test_transport_error_is_backend_unavailable(adapter, table):
    table.error = EndpointConnectionError(endpoint_url="http://localhost:8000")

    with pytest.raises(BackendUnavailableError) as exc_info:
        await adapter.put_item_if_absent(_record())

    assert exc_info.value.operation == "put_item"


def test_from_config_builds_table() -> None:
    config = IdempotencyConfig(
        backend="dynamodb",
        table_name="records",
        aws_region="us-east-1",
        dynamodb_endpoint_url="http://localhost:8000",
    )
    adapter = DynamoDBStorageAdapter.from_config(config)
    assert adapter.table.name == "records"
