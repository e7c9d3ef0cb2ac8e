"""Custom exceptions for the idempotent endpoint.

This module defines the exception hierarchy used by the coordinator, the
storage adapters and the handler adapter to signal conflicts, duplicates that
are still in flight, lost claims, backend outages and business logic failures.

Examples:
    Handling a conflict error::

        from idempotent_endpoint.exceptions import ConflictError

        try:
            decision.raise_for_kind()
        except ConflictError as e:
            # Same key, different payload
            logger.warning("admit.conflict", key=e.key)
            return Response(status_code=409)

    Handling a backend outage::

        from idempotent_endpoint.exceptions import BackendUnavailableError

        try:
            decision = await coordinator.admit(key, fingerprint)
        except BackendUnavailableError as e:
            # Never treat an outage as a new request
            logger.error("backend.error", operation=e.operation)
            return Response(status_code=503)
"""

from typing import Any

from idempotent_endpoint.models import ErrorInfo


class IdempotencyError(Exception):
    """Base exception for all idempotency-related errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        """Initialize the exception with a message.

        Args:
            message: Human-readable error description.
        """
        self.message = message
        super().__init__(message)


class ConflictError(IdempotencyError):
    """Same idempotency key reused with a different request fingerprint.

    The key belongs to another logical request. This is not retryable with the
    same key: the handler is never executed and no stored result is replayed.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key that conflicted.
        stored_fingerprint: The fingerprint stored in the backend.
        request_fingerprint: The fingerprint of the incoming request.
    """

    def __init__(
        self,
        message: str,
        key: str,
        stored_fingerprint: str,
        request_fingerprint: str,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.stored_fingerprint = stored_fingerprint
        self.request_fingerprint = request_fingerprint


class InFlightError(IdempotencyError):
    """A legitimate duplicate arrived while the original is still executing.

    Retryable after backing off for ``retry_after_seconds``.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key being processed.
        retry_after_seconds: Suggested backoff before retrying.
    """

    def __init__(self, message: str, key: str, retry_after_seconds: int) -> None:
        super().__init__(message)
        self.key = key
        self.retry_after_seconds = retry_after_seconds


class StaleWriteError(IdempotencyError):
    """A completion was rejected because the record's version moved on.

    Raised by ``complete()`` and ``fail()`` when the stored version no longer
    matches the version granted by ``admit()``. The record was reclaimed by
    another executor, so the caller must not report success and must treat
    this as its own failure.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key.
        expected_version: Version the caller was granted.
        actual_version: Version currently stored, None if the record is gone.
    """

    def __init__(
        self,
        message: str,
        key: str,
        expected_version: int,
        actual_version: int | None = None,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version


class BackendUnavailableError(IdempotencyError):
    """The key-value backend could not be reached or rejected the call.

    This is a transient failure. It is surfaced to the caller untransformed
    and is never interpreted as "no record exists".

    Attributes:
        message: Human-readable error description.
        operation: Backend primitive that failed (get_item, put_item_if_absent, ...).
        cause: The underlying exception.

    Examples:
        Wrapping a driver error::

            try:
                table.get_item(Key={"PK": key}, ConsistentRead=True)
            except ClientError as e:
                raise BackendUnavailableError(
                    message=f"get_item failed: {e}",
                    operation="get_item",
                    cause=e,
                ) from e
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.cause = cause


class HandlerExecutionError(IdempotencyError):
    """The business logic failed.

    The failure is recorded via ``fail()`` and replayed verbatim to every
    duplicate. Business logic raises this to control the status code and
    error detail that clients observe; any other exception is wrapped into one
    by the handler adapter.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status reported to the client. Recorded failures
            are 4xx; the handler records any other value as 422.
        error_type: Short machine-readable error name.
        detail: Optional JSON-serializable detail.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 422,
        error_type: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type or type(self).__name__
        self.detail = detail

    def to_error_info(self) -> ErrorInfo:
        """Serialize this failure for storage on a FAILED record."""
        return ErrorInfo(
            error_type=self.error_type,
            message=self.message,
            status_code=self.status_code,
            detail=self.detail,
        )

    @classmethod
    def from_error_info(cls, error_info: ErrorInfo) -> "HandlerExecutionError":
        """Rebuild the original failure from a stored ErrorInfo."""
        return cls(
            message=error_info.message,
            status_code=error_info.status_code,
            error_type=error_info.error_type,
            detail=error_info.detail,
        )


class InvalidRequestError(IdempotencyError):
    """The inbound request cannot be processed (bad key, body too large, bad JSON).

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status reported to the client.
    """

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code
