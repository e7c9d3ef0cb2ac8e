"""Idempotency coordinator: the per-key state machine and claim protocol.

For each incoming ``(key, fingerprint)`` the coordinator decides whether the
request is new, in flight, completed or failed, and records the outcome once
the handler finishes:

    (absent) --admit--> IN_PROGRESS --complete--> COMPLETED
                             |       --fail------> FAILED
                             +--(stale) reclaim--> IN_PROGRESS (version + 1)

Correctness rests entirely on the backend's conditional create and
compare-and-swap. The coordinator holds no lock and no state between calls,
so any number of instances can run side by side.

Crash recovery:
    An executor that dies after PROCEED leaves its record IN_PROGRESS until
    the in-flight TTL elapses; the next admit then reclaims it. If the dead
    executor was merely slow it may still be running when the claim is
    reclaimed, so the handler can run twice inside that window. Its late
    complete()/fail() is rejected with StaleWriteError because the version
    moved on. This bounded duplicate window is the price of liveness and is
    an accepted limitation.

    A claim is identified by its version together with its creation time
    (``Decision.claimed_at``). If the sweep removes an abandoned claim, a new
    request starts over at version 0; the claim time still differs, so the
    swept executor cannot write its outcome over the new claim.

Examples:
    Driving the protocol by hand::

        coordinator = IdempotencyCoordinator(storage, ExpiryPolicy())

        decision = await coordinator.admit("req-1", fingerprint)
        if decision.kind is DecisionKind.PROCEED:
            try:
                result = await do_work()
            except HandlerExecutionError as e:
                await coordinator.fail(
                    "req-1", decision.version, e.to_error_info(), claimed_at=decision.claimed_at
                )
                raise
            await coordinator.complete(
                "req-1", decision.version, result, claimed_at=decision.claimed_at
            )
"""

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from idempotent_endpoint.exceptions import BackendUnavailableError, StaleWriteError
from idempotent_endpoint.expiry import ExpiryPolicy
from idempotent_endpoint.models import (
    Decision,
    ErrorInfo,
    IdempotencyRecord,
    RecordStatus,
)
from idempotent_endpoint.observability.logging import get_logger
from idempotent_endpoint.observability.metrics import (
    record_backend_error,
    record_decision,
    record_reclaim,
    record_stale_write,
    record_transition,
)
from idempotent_endpoint.storage.base import StorageAdapter

logger = get_logger(__name__)

# One initial create plus one retry after an expired record was cleared
MAX_CREATE_ATTEMPTS = 2

DEFAULT_RETRY_AFTER_SECONDS = 5


def serialize_result(result: Any) -> str:
    """Serialize a handler result once, so every replay is byte-identical.

    Raises:
        TypeError: If the result is not JSON-serializable.
    """
    return json.dumps(result, separators=(",", ":"), ensure_ascii=False)


class IdempotencyCoordinator:
    """Stateless coordinator over a StorageAdapter.

    Attributes:
        storage: Backend adapter holding the records.
        policy: Expiry policy assigning TTLs and staleness.
        retry_after_seconds: Backoff suggested in IN_FLIGHT decisions.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        policy: ExpiryPolicy | None = None,
        retry_after_seconds: int = DEFAULT_RETRY_AFTER_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            storage: Backend adapter.
            policy: Expiry policy (defaults to ExpiryPolicy()).
            retry_after_seconds: Backoff hint for IN_FLIGHT decisions.
            clock: Returns the current UTC time. Defaults to ``datetime.now(UTC)``.
        """
        self.storage = storage
        self.policy = policy or ExpiryPolicy()
        self.retry_after_seconds = retry_after_seconds
        self._clock = clock or (lambda: datetime.now(UTC))

    def _now(self) -> datetime:
        return self._clock()

    def _new_claim(self, key: str, fingerprint: str, version: int) -> IdempotencyRecord:
        now = self._now()
        return IdempotencyRecord(
            key=key,
            fingerprint=fingerprint,
            status=RecordStatus.IN_PROGRESS,
            version=version,
            created_at=now,
            expires_at=self.policy.expires_at(RecordStatus.IN_PROGRESS, now),
        )

    async def _backend(self, operation: str, call: Any) -> Any:
        """Await a backend call, logging and counting failures before re-raising."""
        try:
            return await call
        except BackendUnavailableError as e:
            record_backend_error(e.operation or operation)
            logger.error(
                "backend.error",
                operation=e.operation or operation,
                error=e.message,
            )
            raise

    def _decide(self, decision: Decision) -> Decision:
        record_decision(decision.kind.value)
        logger.info(
            f"admit.{decision.kind.value.lower()}",
            key=decision.key,
            version=decision.version,
        )
        return decision

    async def admit(self, key: str, fingerprint: str) -> Decision:
        """Decide what to do with a request for ``key``.

        Flow:
            1. Conditionally create an IN_PROGRESS claim at version 0
            2. Created: PROCEED
            3. Otherwise read the existing record:
               - different fingerprint: CONFLICT (checked before status)
               - COMPLETED: REPLAY; FAILED: REPLAY_ERROR
               - IN_PROGRESS, fresh: IN_FLIGHT
               - IN_PROGRESS, stale: reclaim with version + 1, PROCEED on success
            4. An expired terminal record is cleared and the create retried

        Args:
            key: Idempotency key.
            fingerprint: SHA-256 fingerprint of the normalized payload.

        Returns:
            The Decision for this request.

        Raises:
            BackendUnavailableError: If the backend fails; never retried here.
        """
        for _attempt in range(MAX_CREATE_ATTEMPTS):
            claim = self._new_claim(key, fingerprint, version=0)
            created = await self._backend(
                "put_item_if_absent", self.storage.put_item_if_absent(claim)
            )
            if created:
                return self._decide(
                    Decision.proceed(key, version=claim.version, claimed_at=claim.created_at)
                )

            existing = await self._backend("get_item", self.storage.get_item(key))
            if existing is None:
                # Removed by native expiry between the create and the read
                logger.debug("admit.record_vanished", key=key)
                continue

            now = self._now()
            if existing.status.is_terminal and self.policy.is_expired(existing, now):
                # Past retention: behaves as if the backend had already deleted it
                await self._backend(
                    "delete_item",
                    self.storage.delete_item(key, expected_version=existing.version),
                )
                logger.info(
                    "record.expired_cleared",
                    key=key,
                    version=existing.version,
                    status=existing.status.value,
                )
                continue

            return self._decide(await self._evaluate(existing, fingerprint, now))

        # Every create lost a race to another caller
        return self._decide(Decision.in_flight(key, self.retry_after_seconds))

    async def _evaluate(
        self,
        existing: IdempotencyRecord,
        fingerprint: str,
        now: datetime,
    ) -> Decision:
        key = existing.key
        if existing.fingerprint != fingerprint:
            logger.warning(
                "admit.fingerprint_mismatch",
                key=key,
                stored_fingerprint=existing.fingerprint,
                request_fingerprint=fingerprint,
                status=existing.status.value,
            )
            return Decision.conflict(key, stored_fingerprint=existing.fingerprint)

        if existing.status is RecordStatus.COMPLETED:
            return Decision.replay(key, result=existing.result or "null")

        if existing.status is RecordStatus.FAILED:
            if existing.error_info is None:
                raise RuntimeError(f"FAILED record {key} has no error_info")
            return Decision.replay_error(key, error_info=existing.error_info)

        if not self.policy.is_stale(existing, now):
            return Decision.in_flight(key, self.retry_after_seconds)

        return await self._reclaim(existing)

    async def _reclaim(self, existing: IdempotencyRecord) -> Decision:
        """Take over an abandoned IN_PROGRESS claim with a version bump."""
        key = existing.key
        claim = self._new_claim(key, existing.fingerprint, version=existing.version + 1)
        reclaimed = await self._backend(
            "update_item_if_version",
            self.storage.update_item_if_version(claim, expected_version=existing.version),
        )
        if not reclaimed:
            # Another caller reclaimed it first
            return Decision.in_flight(key, self.retry_after_seconds)

        record_reclaim()
        logger.warning(
            "record.reclaimed",
            key=key,
            previous_version=existing.version,
            version=claim.version,
            abandoned_at=existing.expires_at.isoformat(),
        )
        return Decision.proceed(key, version=claim.version, claimed_at=claim.created_at)

    async def complete(
        self,
        key: str,
        expected_version: int,
        result: Any,
        claimed_at: datetime | None = None,
    ) -> IdempotencyRecord:
        """Record a successful outcome for the claim granted at ``expected_version``.

        Args:
            key: Idempotency key.
            expected_version: Version returned in the PROCEED decision.
            result: JSON-serializable handler output.
            claimed_at: ``claimed_at`` of the PROCEED decision. When given, the
                write also requires the stored claim to be that same claim.

        Returns:
            The COMPLETED record as stored.

        Raises:
            StaleWriteError: If the claim was reclaimed or the record is gone.
            BackendUnavailableError: If the backend fails.
        """
        return await self._finish(
            key,
            expected_version,
            RecordStatus.COMPLETED,
            claimed_at,
            result=serialize_result(result),
        )

    async def fail(
        self,
        key: str,
        expected_version: int,
        error_info: ErrorInfo,
        claimed_at: datetime | None = None,
    ) -> IdempotencyRecord:
        """Record a failed outcome for the claim granted at ``expected_version``.

        ``claimed_at`` works as in ``complete()``.

        Raises:
            StaleWriteError: If the claim was reclaimed or the record is gone.
            BackendUnavailableError: If the backend fails.
        """
        return await self._finish(
            key,
            expected_version,
            RecordStatus.FAILED,
            claimed_at,
            error_info=error_info,
        )

    async def _finish(
        self,
        key: str,
        expected_version: int,
        status: RecordStatus,
        claimed_at: datetime | None,
        result: str | None = None,
        error_info: ErrorInfo | None = None,
    ) -> IdempotencyRecord:
        current = await self._backend("get_item", self.storage.get_item(key))
        if (
            current is None
            or current.version != expected_version
            or current.status is not RecordStatus.IN_PROGRESS
            or (claimed_at is not None and current.created_at != claimed_at)
        ):
            raise self._stale(key, expected_version, current)

        now = self._now()
        record = IdempotencyRecord(
            key=key,
            fingerprint=current.fingerprint,
            status=status,
            result=result,
            error_info=error_info,
            version=expected_version + 1,
            created_at=current.created_at,
            expires_at=self.policy.expires_at(status, now),
        )
        updated = await self._backend(
            "update_item_if_version",
            self.storage.update_item_if_version(
                record,
                expected_version=expected_version,
                expected_created_at=claimed_at,
            ),
        )
        if not updated:
            latest = await self._backend("get_item", self.storage.get_item(key))
            raise self._stale(key, expected_version, latest)

        record_transition(status.value)
        logger.info(
            f"record.{status.value.lower()}",
            key=key,
            version=record.version,
            expires_at=record.expires_at.isoformat(),
        )
        return record

    def _stale(
        self,
        key: str,
        expected_version: int,
        current: IdempotencyRecord | None,
    ) -> StaleWriteError:
        actual = current.version if current is not None else None
        record_stale_write()
        logger.warning(
            "complete.stale_write",
            key=key,
            expected_version=expected_version,
            actual_version=actual,
        )
        return StaleWriteError(
            message=f"Claim on {key} at version {expected_version} is no longer held",
            key=key,
            expected_version=expected_version,
            actual_version=actual,
        )
