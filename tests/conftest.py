"""
Pytest configuration and shared fixtures for idempotent_endpoint tests.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from idempotent_endpoint.core.coordinator import IdempotencyCoordinator
from idempotent_endpoint.expiry import ExpiryPolicy
from idempotent_endpoint.models import ErrorInfo, IdempotencyRecord, RecordStatus
from idempotent_endpoint.storage.memory import MemoryStorageAdapter

START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock shared by storage and coordinator."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> ExpiryPolicy:
    """Short TTLs keep the arithmetic in tests readable."""
    return ExpiryPolicy(in_flight_ttl_seconds=60, terminal_ttl_seconds=3600)


@pytest.fixture
def storage(clock: FakeClock) -> MemoryStorageAdapter:
    return MemoryStorageAdapter(clock=clock)


@pytest.fixture
def coordinator(
    storage: MemoryStorageAdapter,
    policy: ExpiryPolicy,
    clock: FakeClock,
) -> IdempotencyCoordinator:
    return IdempotencyCoordinator(storage, policy, retry_after_seconds=5, clock=clock)


@pytest.fixture
def fp_a() -> str:
    return "a" * 64


@pytest.fixture
def fp_b() -> str:
    return "b" * 64


@pytest.fixture
def make_record() -> Callable[..., IdempotencyRecord]:
    """Build records with sensible defaults for the given status."""

    def _make(
        key: str = "req-1",
        fingerprint: str = "a" * 64,
        status: RecordStatus = RecordStatus.IN_PROGRESS,
        version: int = 0,
        created_at: datetime = START,
        ttl_seconds: int = 60,
        result: str | None = None,
        error_info: ErrorInfo | None = None,
    ) -> IdempotencyRecord:
        if status is RecordStatus.COMPLETED and result is None:
            result = '{"status":"ok"}'
        if status is RecordStatus.FAILED and error_info is None:
            error_info = ErrorInfo(error_type="Boom", message="boom")
        return IdempotencyRecord(
            key=key,
            fingerprint=fingerprint,
            status=status,
            result=result,
            error_info=error_info,
            version=version,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=ttl_seconds),
        )

    return _make
