"""In-memory storage adapter with asyncio concurrency control.

This module provides an in-process implementation of the StorageAdapter
protocol. It emulates the atomic primitives of a networked store with
per-key asyncio locks.

The MemoryStorageAdapter is suitable for:
    - Single-process deployments
    - Development and testing

Expiry:
    Like DynamoDB's native TTL, expiry is lazy. Items past ``expires_at``
    stay readable until cleanup_expired() sweeps them; the service runs that
    sweep periodically (see core.cleanup).

Thread Safety:
    - Each key has its own asyncio.Lock held only for one primitive call
    - A global lock protects the _locks dictionary
    - Locks are cleaned up when their record is swept

Examples:
    Basic usage::

        adapter = MemoryStorageAdapter()
        created = await adapter.put_item_if_absent(record)
        if not created:
            existing = await adapter.get_item(record.key)
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from idempotent_endpoint.models import IdempotencyRecord
from idempotent_endpoint.storage.base import StorageAdapter


class MemoryStorageAdapter(StorageAdapter):
    """In-memory storage adapter with asyncio concurrency control.

    Attributes:
        _store: Dictionary mapping keys to IdempotencyRecord objects.
        _locks: Dictionary mapping keys to asyncio.Lock objects.
        _global_lock: Lock protecting the _locks dictionary.
        _clock: Source of the current time, used by the expiry sweep.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        """Initialize a new in-memory storage adapter.

        Args:
            clock: Returns the current UTC time. Defaults to ``datetime.now(UTC)``.
        """
        self._store: dict[str, IdempotencyRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._global_lock = asyncio.Lock()
        self._clock = clock or (lambda: datetime.now(UTC))

    async def _lock_for(self, key: str) -> asyncio.Lock:
        async with self._global_lock:
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            return self._locks[key]

    async def get_item(self, key: str) -> IdempotencyRecord | None:
        """Return a copy of the stored record, None if absent."""
        record = self._store.get(key)
        if record is None:
            return None
        # Copies keep callers from mutating stored state outside the primitives
        return record.model_copy(deep=True)

    async def put_item_if_absent(self, record: IdempotencyRecord) -> bool:
        """Atomically create ``record`` if its key is free.

        Race Condition Handling:
            Concurrent callers serialize on the key's lock; the first one to
            acquire it creates the record, the rest observe it and return False.
        """
        lock = await self._lock_for(record.key)
        async with lock:
            if record.key in self._store:
                return False
            self._store[record.key] = record.model_copy(deep=True)
            return True

    async def update_item_if_version(
        self,
        record: IdempotencyRecord,
        expected_version: int,
        expected_created_at: datetime | None = None,
    ) -> bool:
        """Replace the stored record if its version (and claim time) match."""
        lock = await self._lock_for(record.key)
        async with lock:
            current = self._store.get(record.key)
            if current is None or current.version != expected_version:
                return False
            if expected_created_at is not None and current.created_at != expected_created_at:
                return False
            self._store[record.key] = record.model_copy(deep=True)
            return True

    async def delete_item(self, key: str, expected_version: int | None = None) -> bool:
        """Delete the record, optionally conditioned on its version."""
        lock = await self._lock_for(key)
        async with lock:
            current = self._store.get(key)
            if current is None:
                return False
            if expected_version is not None and current.version != expected_version:
                return False
            del self._store[key]
            return True

    async def cleanup_expired(self) -> int:
        """Remove records whose ``expires_at`` has elapsed.

        This plays the role of the backend's native expiry. It also drops
        locks that belong to removed keys and are not currently held.

        Returns:
            The number of records removed.
        """
        now = self._clock()
        # Abandoned IN_PROGRESS claims are swept too. A new claim for the key may
        # then start again at version 0, so a late complete()/fail() from the
        # swept executor is told apart by its claim time, not its version.
        expired_keys = [key for key, record in self._store.items() if record.expires_at <= now]

        removed_count = 0
        for key in expired_keys:
            lock = await self._lock_for(key)
            async with lock:
                # Re-check under the lock; the record may have been replaced
                record = self._store.get(key)
                if record is not None and record.expires_at <= now:
                    del self._store[key]
                    removed_count += 1

        async with self._global_lock:
            for key in expired_keys:
                lock = self._locks.get(key)
                if lock is not None and not lock.locked() and key not in self._store:
                    del self._locks[key]

        return removed_count
