"""Storage adapter protocol for idempotency records.

This module defines the narrow primitive set the coordinator relies on. The
backing store is treated as a networked key-value store addressed by a single
string key per item, with native per-item expiry driven by ``expires_at``.

Examples:
    Implementing a custom storage adapter::

        from idempotent_endpoint.storage.base import StorageAdapter
        from idempotent_endpoint.models import IdempotencyRecord

        class MyStorageAdapter:
            async def get_item(self, key: str) -> IdempotencyRecord | None:
                data = await self.backend.get(key)
                if data is None:
                    return None
                return IdempotencyRecord.model_validate_json(data)

            async def put_item_if_absent(self, record: IdempotencyRecord) -> bool:
                # Atomically create, fail if the key exists
                ...

Atomicity Requirements:
    All StorageAdapter implementations MUST guarantee:

    1. **Unique create**: put_item_if_absent() atomically checks for and
       creates the item. Of N concurrent calls for one key exactly one wins.

    2. **Compare-and-swap**: update_item_if_version() and a versioned
       delete_item() apply only if the stored version equals the expected one.
       update_item_if_version() additionally checks ``created_at`` when an
       expected value is given, so a claim recreated at the same version
       after expiry is not mistaken for the original one.

    3. **Strongly consistent reads**: get_item() observes every write that
       completed before it started. Without this the protocol admits
       duplicate execution.

    4. **Lazy expiry**: items past ``expires_at`` may still be returned until
       the backend removes them. Callers decide what an expired item means.

Error Handling:
    A failed condition is reported by returning False. Anything else that
    prevents the call from completing (network, throttling, permissions) is
    raised as BackendUnavailableError. Adapters never retry internally and
    never raise driver-specific exceptions.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from idempotent_endpoint.models import IdempotencyRecord


@runtime_checkable
class StorageAdapter(Protocol):
    """Protocol defining the interface for idempotency storage backends.

    All methods are async and must be safe to call concurrently from
    independent processes.
    """

    async def get_item(self, key: str) -> IdempotencyRecord | None:
        """Read a record with strong consistency.

        Args:
            key: The idempotency key to look up.

        Returns:
            The stored record, None if no item exists.

        Examples:
            >>> record = await adapter.get_item("req-1")
            >>> if record:
            ...     print(record.status)
        """
        ...

    async def put_item_if_absent(self, record: IdempotencyRecord) -> bool:
        """Create ``record`` only if no item exists for ``record.key``.

        Args:
            record: The record to create.

        Returns:
            True if created, False if an item already exists.
        """
        ...

    async def update_item_if_version(
        self,
        record: IdempotencyRecord,
        expected_version: int,
        expected_created_at: datetime | None = None,
    ) -> bool:
        """Replace the stored item with ``record`` if its version matches.

        Args:
            record: The new item contents, carrying the new version.
            expected_version: The version the stored item must have.
            expected_created_at: If given, the ``created_at`` the stored item
                must also have.

        Returns:
            True if replaced, False if the item is missing or a condition fails.
        """
        ...

    async def delete_item(self, key: str, expected_version: int | None = None) -> bool:
        """Delete an item, optionally only if its version matches.

        Args:
            key: The idempotency key.
            expected_version: If given, delete only when the stored version matches.

        Returns:
            True if an item was deleted, False otherwise.
        """
        ...
