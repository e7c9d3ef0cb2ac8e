"""Expiry policy for idempotency records.

Two TTL classes apply:

- in-flight TTL: how long an IN_PROGRESS claim is trusted. Once it elapses
  the claim counts as abandoned and another caller may reclaim it. Set it
  well above the slowest expected handler run, or slow executors will be
  reclaimed while still working.
- terminal TTL: how long a COMPLETED or FAILED outcome is retained, i.e. the
  window during which duplicates replay instead of re-executing.

The policy is a pure function of status, configuration and the current time.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from idempotent_endpoint.config import IdempotencyConfig
from idempotent_endpoint.models import IdempotencyRecord, RecordStatus


@dataclass(frozen=True)
class ExpiryPolicy:
    """TTL assignment and staleness thresholds.

    Attributes:
        in_flight_ttl_seconds: Lifetime of an IN_PROGRESS claim.
        terminal_ttl_seconds: Retention of a COMPLETED/FAILED outcome.

    Examples:
        >>> policy = ExpiryPolicy(in_flight_ttl_seconds=360, terminal_ttl_seconds=86400)
        >>> policy.ttl_for(RecordStatus.IN_PROGRESS)
        datetime.timedelta(seconds=360)
    """

    in_flight_ttl_seconds: int = 360
    terminal_ttl_seconds: int = 86400

    def __post_init__(self) -> None:
        if self.in_flight_ttl_seconds < 1 or self.terminal_ttl_seconds < 1:
            raise ValueError("TTLs must be at least 1 second")
        if self.in_flight_ttl_seconds > self.terminal_ttl_seconds:
            raise ValueError("in_flight_ttl_seconds must not exceed terminal_ttl_seconds")

    @classmethod
    def from_config(cls, config: IdempotencyConfig) -> "ExpiryPolicy":
        return cls(
            in_flight_ttl_seconds=config.in_flight_ttl_seconds,
            terminal_ttl_seconds=config.terminal_ttl_seconds,
        )

    def ttl_for(self, status: RecordStatus) -> timedelta:
        """Return the TTL that applies to a record entering ``status``."""
        if status is RecordStatus.IN_PROGRESS:
            return timedelta(seconds=self.in_flight_ttl_seconds)
        return timedelta(seconds=self.terminal_ttl_seconds)

    def expires_at(self, status: RecordStatus, now: datetime) -> datetime:
        """Return the expiry timestamp for a record entering ``status`` at ``now``."""
        return now + self.ttl_for(status)

    def is_expired(self, record: IdempotencyRecord, now: datetime) -> bool:
        # Boundary is inclusive: a record is gone at exactly expires_at.
        return now >= record.expires_at

    def is_stale(self, record: IdempotencyRecord, now: datetime) -> bool:
        """Return True if ``record`` is an abandoned IN_PROGRESS claim."""
        return record.status is RecordStatus.IN_PROGRESS and self.is_expired(record, now)
