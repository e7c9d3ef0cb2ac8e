"""Storage adapters for idempotency records.

All adapters implement the StorageAdapter protocol defined in base.py.

Available Adapters:
    - MemoryStorageAdapter: In-memory storage with asyncio concurrency
    - DynamoDBStorageAdapter: DynamoDB table with native TTL
"""

from idempotent_endpoint.config import IdempotencyConfig
from idempotent_endpoint.storage.base import StorageAdapter
from idempotent_endpoint.storage.dynamodb import DynamoDBStorageAdapter
from idempotent_endpoint.storage.memory import MemoryStorageAdapter


def build_storage(config: IdempotencyConfig) -> StorageAdapter:
    """Create the storage adapter selected by ``config.backend``."""
    if config.backend == "dynamodb":
        return DynamoDBStorageAdapter.from_config(config)
    return MemoryStorageAdapter()


__all__ = [
    "StorageAdapter",
    "MemoryStorageAdapter",
    "DynamoDBStorageAdapter",
    "build_storage",
]
