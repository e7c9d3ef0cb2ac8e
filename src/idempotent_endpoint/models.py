"""Core type definitions and models for the idempotent endpoint.

This module provides the data structures shared by the coordinator, the
storage adapters and the handler adapter: record statuses, stored failure
details, idempotency records and the decisions returned by ``admit()``.

Examples:
    Creating an in-flight record::

        from datetime import UTC, datetime, timedelta
        from idempotent_endpoint.models import IdempotencyRecord, RecordStatus

        now = datetime.now(UTC)
        record = IdempotencyRecord(
            key="req-1",
            fingerprint="a" * 64,
            status=RecordStatus.IN_PROGRESS,
            version=0,
            created_at=now,
            expires_at=now + timedelta(seconds=360),
        )

    Completing it::

        completed = record.model_copy(
            update={
                "status": RecordStatus.COMPLETED,
                "result": '{"status":"ok"}',
                "version": record.version + 1,
            }
        )
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class RecordStatus(str, Enum):
    """Lifecycle status of an idempotency record.

    Attributes:
        IN_PROGRESS: A caller holds the claim and is executing the handler.
        COMPLETED: The handler finished successfully; ``result`` is stored.
        FAILED: The handler failed; ``error_info`` is stored.
    """

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not RecordStatus.IN_PROGRESS


class ErrorInfo(BaseModel):
    """Serialized failure detail stored on a FAILED record.

    Attributes:
        error_type: Short machine-readable error name.
        message: Human-readable description.
        status_code: HTTP status replayed to duplicates (4xx only; a recorded
            failure is final, so it is never reported as a server error).
        detail: Optional JSON-serializable detail.

    Examples:
        >>> info = ErrorInfo(error_type="InsufficientFunds", message="balance too low")
        >>> info.status_code
        422
    """

    error_type: str = Field(
        ...,
        description="Short machine-readable error name",
        min_length=1,
        examples=["HandlerExecutionError", "InsufficientFunds"],
    )
    message: str = Field(
        ...,
        description="Human-readable error description",
        examples=["balance too low"],
    )
    status_code: int = Field(
        default=422,
        description="HTTP status code replayed to duplicates",
        ge=400,
        le=499,
        examples=[400, 422, 424],
    )
    detail: dict[str, Any] | None = Field(
        default=None,
        description="Optional JSON-serializable failure detail",
    )


class IdempotencyRecord(BaseModel):
    """One tracked request, keyed by its idempotency key.

    Attributes:
        key: Caller-supplied or payload-derived identifier.
        fingerprint: Digest of the normalized payload.
        status: Current lifecycle status.
        result: Serialized handler output (JSON text), only when COMPLETED.
        error_info: Serialized failure, only when FAILED.
        version: Incremented on every transition; used for compare-and-swap.
        created_at: When the current claim was created.
        expires_at: When the backend may delete the record.
    """

    key: str = Field(
        ...,
        description="Idempotency key",
        min_length=1,
        max_length=255,
        examples=["req-1", "sha256:" + "a" * 64],
    )
    fingerprint: str = Field(
        ...,
        description="Digest of the normalized payload",
        min_length=1,
        examples=["a" * 64],
    )
    status: RecordStatus = Field(
        ...,
        description="Current lifecycle status",
        examples=[RecordStatus.IN_PROGRESS, RecordStatus.COMPLETED],
    )
    result: str | None = Field(
        default=None,
        description="Serialized handler output (set when COMPLETED)",
        examples=['{"status":"ok"}'],
    )
    error_info: ErrorInfo | None = Field(
        default=None,
        description="Serialized failure detail (set when FAILED)",
    )
    version: int = Field(
        default=0,
        description="Optimistic concurrency version",
        ge=0,
    )
    created_at: datetime = Field(
        ...,
        description="Timestamp when the record was created",
        examples=["2026-10-18T10:30:00Z"],
    )
    expires_at: datetime = Field(
        ...,
        description="Timestamp after which the backend deletes the record",
        examples=["2026-10-19T10:30:00Z"],
    )

    @field_validator("expires_at")
    @classmethod
    def validate_expires_after_created(cls, v: datetime, info: Any) -> datetime:
        """Validate that expires_at is after created_at."""
        if "created_at" in info.data and v <= info.data["created_at"]:
            raise ValueError("expires_at must be after created_at")
        return v

    @model_validator(mode="after")
    def validate_outcome_matches_status(self) -> "IdempotencyRecord":
        """Enforce that result and error_info follow the status.

        ``result`` is present only on COMPLETED records and ``error_info`` only
        on FAILED ones, so the two are mutually exclusive.
        """
        if self.status is RecordStatus.COMPLETED:
            if self.result is None:
                raise ValueError("COMPLETED record requires a result")
            if self.error_info is not None:
                raise ValueError("COMPLETED record cannot carry error_info")
        elif self.status is RecordStatus.FAILED:
            if self.error_info is None:
                raise ValueError("FAILED record requires error_info")
            if self.result is not None:
                raise ValueError("FAILED record cannot carry a result")
        elif self.result is not None or self.error_info is not None:
            raise ValueError("IN_PROGRESS record cannot carry an outcome")
        return self

    def result_value(self) -> Any:
        """Decode the stored result.

        Examples:
            >>> record.result = '{"status":"ok"}'
            >>> record.result_value()
            {'status': 'ok'}
        """
        if self.result is None:
            return None
        return json.loads(self.result)


class DecisionKind(str, Enum):
    """What the handler adapter must do for an admitted request.

    Attributes:
        PROCEED: The caller is the sole executor and must run the handler.
        REPLAY: Return the stored result without executing.
        REPLAY_ERROR: Return the stored failure without executing.
        IN_FLIGHT: Another caller is executing; retry later.
        CONFLICT: The key belongs to a different payload; reject.
    """

    PROCEED = "PROCEED"
    REPLAY = "REPLAY"
    REPLAY_ERROR = "REPLAY_ERROR"
    IN_FLIGHT = "IN_FLIGHT"
    CONFLICT = "CONFLICT"


class Decision(BaseModel):
    """Outcome of ``IdempotencyCoordinator.admit()``.

    Each kind carries exactly its own payload field:

    - PROCEED: ``version`` and ``claimed_at`` to pass back to ``complete()``/``fail()``
    - REPLAY: ``result`` (serialized JSON text)
    - REPLAY_ERROR: ``error_info``
    - IN_FLIGHT: ``retry_after_seconds``
    - CONFLICT: ``stored_fingerprint``

    Examples:
        >>> decision = Decision.proceed("req-1", version=0)
        >>> decision.kind
        <DecisionKind.PROCEED: 'PROCEED'>
    """

    kind: DecisionKind = Field(..., description="Action the caller must take")
    key: str = Field(..., description="Idempotency key the decision applies to")
    version: int | None = Field(default=None, description="Granted claim version (PROCEED)")
    claimed_at: datetime | None = Field(
        default=None, description="Creation time of the granted claim (PROCEED)"
    )
    result: str | None = Field(default=None, description="Stored result (REPLAY)")
    error_info: ErrorInfo | None = Field(default=None, description="Stored failure (REPLAY_ERROR)")
    retry_after_seconds: int | None = Field(
        default=None, description="Suggested backoff (IN_FLIGHT)", ge=0
    )
    stored_fingerprint: str | None = Field(
        default=None, description="Fingerprint owning the key (CONFLICT)"
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_payload_matches_kind(self) -> "Decision":
        """Validate that exactly the payload field of ``kind`` is set."""
        expected = {
            DecisionKind.PROCEED: "version",
            DecisionKind.REPLAY: "result",
            DecisionKind.REPLAY_ERROR: "error_info",
            DecisionKind.IN_FLIGHT: "retry_after_seconds",
            DecisionKind.CONFLICT: "stored_fingerprint",
        }[self.kind]
        for name in ("version", "result", "error_info", "retry_after_seconds", "stored_fingerprint"):
            value = getattr(self, name)
            if name == expected and value is None:
                raise ValueError(f"{name} must be provided for {self.kind.value}")
            if name != expected and value is not None:
                raise ValueError(f"{name} must be None for {self.kind.value}")
        if self.claimed_at is not None and self.kind is not DecisionKind.PROCEED:
            raise ValueError(f"claimed_at must be None for {self.kind.value}")
        return self

    @classmethod
    def proceed(cls, key: str, version: int, claimed_at: datetime | None = None) -> "Decision":
        return cls(kind=DecisionKind.PROCEED, key=key, version=version, claimed_at=claimed_at)

    @classmethod
    def replay(cls, key: str, result: str) -> "Decision":
        return cls(kind=DecisionKind.REPLAY, key=key, result=result)

    @classmethod
    def replay_error(cls, key: str, error_info: ErrorInfo) -> "Decision":
        return cls(kind=DecisionKind.REPLAY_ERROR, key=key, error_info=error_info)

    @classmethod
    def in_flight(cls, key: str, retry_after_seconds: int) -> "Decision":
        return cls(kind=DecisionKind.IN_FLIGHT, key=key, retry_after_seconds=retry_after_seconds)

    @classmethod
    def conflict(cls, key: str, stored_fingerprint: str) -> "Decision":
        return cls(kind=DecisionKind.CONFLICT, key=key, stored_fingerprint=stored_fingerprint)

    def raise_for_kind(self, request_fingerprint: str = "") -> None:
        """Raise the exception matching a non-executable decision.

        PROCEED and REPLAY return normally. CONFLICT raises ConflictError,
        IN_FLIGHT raises InFlightError and REPLAY_ERROR re-raises the stored
        HandlerExecutionError.
        """
        from idempotent_endpoint.exceptions import (
            ConflictError,
            HandlerExecutionError,
            InFlightError,
        )

        if self.kind is DecisionKind.CONFLICT:
            raise ConflictError(
                message=f"Idempotency key {self.key} was used with a different payload",
                key=self.key,
                stored_fingerprint=self.stored_fingerprint or "",
                request_fingerprint=request_fingerprint,
            )
        if self.kind is DecisionKind.IN_FLIGHT:
            raise InFlightError(
                message=f"Request {self.key} is still being processed",
                key=self.key,
                retry_after_seconds=self.retry_after_seconds or 0,
            )
        if self.kind is DecisionKind.REPLAY_ERROR and self.error_info is not None:
            raise HandlerExecutionError.from_error_info(self.error_info)
