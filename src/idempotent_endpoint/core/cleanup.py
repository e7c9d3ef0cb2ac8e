"""Expiry sweep background task for backends without native TTL.

DynamoDB deletes expired items on its own. The in-memory backend has no such
mechanism, so this task stands in for it: it periodically calls
``storage.cleanup_expired()`` so that expired records disappear and the store
stays bounded.

The sweep task:
1. Runs at configurable intervals (default 5 minutes)
2. Calls storage.cleanup_expired() to remove expired records
3. Reports metrics and logs for observability
4. Logs failures and keeps running

Examples:
    Start the sweep in the background::

        storage = MemoryStorageAdapter()
        task = await start_cleanup_task(storage, interval_seconds=300)

        # Later, when shutting down
        await stop_cleanup_task(task)

    With a FastAPI lifespan (see service.create_app)::

        @asynccontextmanager
        async def lifespan(app):
            task = await start_cleanup_task(storage)
            yield
            await stop_cleanup_task(task)
"""

import asyncio
from typing import Any, Protocol, runtime_checkable

from idempotent_endpoint.observability.logging import get_logger
from idempotent_endpoint.observability.metrics import record_cleanup

logger = get_logger(__name__)

STOP_TIMEOUT_SECONDS = 5.0


@runtime_checkable
class SupportsCleanup(Protocol):
    """A storage backend that needs expired records swept explicitly."""

    async def cleanup_expired(self) -> int: ...


def needs_sweep(storage: Any) -> bool:
    """Return True if ``storage`` relies on the sweep for expiry."""
    return isinstance(storage, SupportsCleanup)


async def cleanup_loop(
    storage: SupportsCleanup,
    interval_seconds: int = 300,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Periodically remove expired records until ``stop_event`` is set.

    Args:
        storage: Storage adapter to sweep
        interval_seconds: Time between sweeps (default 300s = 5 minutes)
        stop_event: Event to signal the loop to stop (optional)
    """
    if stop_event is None:
        stop_event = asyncio.Event()

    logger.info("cleanup.started", interval_seconds=interval_seconds)

    while not stop_event.is_set():
        try:
            count = await storage.cleanup_expired()
            record_cleanup(count)
            if count > 0:
                logger.info("cleanup.completed", records_removed=count)
            else:
                logger.debug("cleanup.completed", records_removed=0)
        except Exception as e:
            logger.error(
                "cleanup.failed",
                error=str(e),
                error_type=type(e).__name__,
            )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue

    logger.info("cleanup.stopped")


async def start_cleanup_task(
    storage: SupportsCleanup,
    interval_seconds: int = 300,
) -> asyncio.Task[None]:
    """Start the sweep as a background task.

    Returns:
        The asyncio Task running the sweep loop
    """
    stop_event = asyncio.Event()

    task = asyncio.create_task(
        cleanup_loop(
            storage=storage,
            interval_seconds=interval_seconds,
            stop_event=stop_event,
        )
    )

    # Store the stop_event in the task for later use
    task._stop_event = stop_event  # type: ignore[attr-defined]

    return task


async def stop_cleanup_task(task: asyncio.Task[None]) -> None:
    """Stop a running sweep task gracefully.

    Signals the task to stop and waits for it, cancelling it if it does not
    finish within a few seconds.
    """
    stop_event: asyncio.Event | None = getattr(task, "_stop_event", None)

    if stop_event:
        stop_event.set()

    try:
        await asyncio.wait_for(task, timeout=STOP_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("cleanup.stop_timeout", message="Cleanup task did not stop in time")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("cleanup.cancelled")
