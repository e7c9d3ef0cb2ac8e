"""DynamoDB storage adapter.

Records live in a table with a string partition key ``PK`` and native TTL
enabled on the numeric ``TTL`` attribute (epoch seconds). The primitives map
onto DynamoDB as follows:

    get_item               GetItem with ConsistentRead=True
    put_item_if_absent     PutItem, condition attribute_not_exists(PK)
    update_item_if_version PutItem, condition version = :expected
                           (and created_at = :claimed when given)
    delete_item            DeleteItem, optional condition version = :expected

DynamoDB removes expired items lazily (typically within a few days), so
expired items can still be returned by reads. The coordinator handles that.

boto3 is synchronous; every call runs in a worker thread so the event loop
is never blocked.

Examples:
    Building from configuration::

        adapter = DynamoDBStorageAdapter.from_config(config)
        record = await adapter.get_item("req-1")
"""

import asyncio
import json
import math
from datetime import datetime
from decimal import Decimal
from typing import Any

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from idempotent_endpoint.config import IdempotencyConfig
from idempotent_endpoint.exceptions import BackendUnavailableError
from idempotent_endpoint.models import ErrorInfo, IdempotencyRecord, RecordStatus
from idempotent_endpoint.storage.base import StorageAdapter

PARTITION_KEY = "PK"
TTL_ATTRIBUTE = "TTL"
CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


def record_to_item(record: IdempotencyRecord) -> dict[str, Any]:
    """Serialize a record into a DynamoDB item.

    Examples:
        >>> item = record_to_item(record)
        >>> item["PK"] == record.key
        True
    """
    item: dict[str, Any] = {
        PARTITION_KEY: record.key,
        TTL_ATTRIBUTE: math.ceil(record.expires_at.timestamp()),
        "fingerprint": record.fingerprint,
        "status": record.status.value,
        "version": record.version,
        "created_at": record.created_at.isoformat(),
        "expires_at": record.expires_at.isoformat(),
    }
    if record.result is not None:
        item["result"] = record.result
    if record.error_info is not None:
        item["error_info"] = record.error_info.model_dump_json()
    return item


def item_to_record(item: dict[str, Any]) -> IdempotencyRecord:
    """Deserialize a DynamoDB item (numbers arrive as Decimal)."""
    version = item.get("version", 0)
    error_info = item.get("error_info")
    return IdempotencyRecord(
        key=item[PARTITION_KEY],
        fingerprint=item["fingerprint"],
        status=RecordStatus(item["status"]),
        result=item.get("result"),
        error_info=ErrorInfo.model_validate(json.loads(error_info)) if error_info else None,
        version=int(version) if isinstance(version, Decimal) else version,
        created_at=datetime.fromisoformat(item["created_at"]),
        expires_at=datetime.fromisoformat(item["expires_at"]),
    )


class DynamoDBStorageAdapter(StorageAdapter):
    """DynamoDB-backed storage adapter.

    Attributes:
        table: boto3 ``Table`` resource.
    """

    def __init__(self, table: Any) -> None:
        """Initialize the adapter around an existing boto3 Table resource.

        Args:
            table: ``boto3.resource("dynamodb").Table(name)`` or a compatible object.
        """
        self.table = table

    @classmethod
    def from_config(cls, config: IdempotencyConfig) -> "DynamoDBStorageAdapter":
        """Create an adapter for ``config.table_name``."""
        kwargs: dict[str, Any] = {}
        if config.aws_region:
            kwargs["region_name"] = config.aws_region
        if config.dynamodb_endpoint_url:
            kwargs["endpoint_url"] = config.dynamodb_endpoint_url
        resource = boto3.resource("dynamodb", **kwargs)
        return cls(resource.Table(config.table_name))

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any] | None:
        """Run one table operation in a worker thread.

        Returns:
            The operation response, or None if its condition failed.

        Raises:
            BackendUnavailableError: For any other client or transport error.
        """
        method = getattr(self.table, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED:
                return None
            raise BackendUnavailableError(
                message=f"DynamoDB {operation} failed: {e}",
                operation=operation,
                cause=e,
            ) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(
                message=f"DynamoDB {operation} failed: {e}",
                operation=operation,
                cause=e,
            ) from e

    async def get_item(self, key: str) -> IdempotencyRecord | None:
        response = await self._call(
            "get_item",
            Key={PARTITION_KEY: key},
            ConsistentRead=True,
        )
        item = (response or {}).get("Item")
        if item is None:
            return None
        return item_to_record(item)

    async def put_item_if_absent(self, record: IdempotencyRecord) -> bool:
        response = await self._call(
            "put_item",
            Item=record_to_item(record),
            ConditionExpression=Attr(PARTITION_KEY).not_exists(),
        )
        return response is not None

    async def update_item_if_version(
        self,
        record: IdempotencyRecord,
        expected_version: int,
        expected_created_at: datetime | None = None,
    ) -> bool:
        condition = Attr(PARTITION_KEY).exists() & Attr("version").eq(expected_version)
        if expected_created_at is not None:
            condition = condition & Attr("created_at").eq(expected_created_at.isoformat())
        # Whole-item replacement clears attributes the new state does not carry
        response = await self._call(
            "put_item",
            Item=record_to_item(record),
            ConditionExpression=condition,
        )
        return response is not None

    async def delete_item(self, key: str, expected_version: int | None = None) -> bool:
        kwargs: dict[str, Any] = {
            "Key": {PARTITION_KEY: key},
            "ReturnValues": "ALL_OLD",
        }
        if expected_version is not None:
            kwargs["ConditionExpression"] = Attr("version").eq(expected_version)
        response = await self._call("delete_item", **kwargs)
        return bool(response and response.get("Attributes"))
