"""Framework-agnostic handler adapter for the idempotent endpoint.

This module wraps the caller's business logic so that it only runs when the
coordinator grants a claim, and reports the outcome back.

The handler:
1. Validates the request (method, body size, JSON body)
2. Extracts the idempotency key (header, then payload field, then body digest)
3. Computes the request fingerprint
4. Asks the coordinator for a decision
5. Executes, replays, or rejects, and builds the response

Response mapping:
    PROCEED       200 with the result (or the recorded failure status)
    REPLAY        200 with the stored result, byte-identical
    REPLAY_ERROR  recorded failure status (always 4xx) with the stored error
    IN_FLIGHT     425 Too Early with Retry-After
    CONFLICT      409 Conflict, not retryable with this key
    stale claim   500, the executor lost its claim
    backend down  503 with Retry-After

Recorded failures are final, so they always carry a 4xx status. A
HandlerExecutionError raised with any other status is recorded as 422; a
result that cannot be serialized is recorded as 422 ResultNotSerializable.

Examples:
    Using the handler directly::

        coordinator = IdempotencyCoordinator(MemoryStorageAdapter(), ExpiryPolicy())
        handler = IdempotentHandler(coordinator, IdempotencyConfig())

        async def business_logic(payload):
            return {"status": "ok"}

        response = await handler.handle(request, business_logic)
"""

import json
import time
from collections.abc import Awaitable, Callable
from typing import Any

from idempotent_endpoint.config import IdempotencyConfig
from idempotent_endpoint.core.coordinator import IdempotencyCoordinator, serialize_result
from idempotent_endpoint.core.replay import (
    EndpointResponse,
    error_response,
    rejection_response,
    replay_response,
    result_response,
)
from idempotent_endpoint.exceptions import (
    BackendUnavailableError,
    HandlerExecutionError,
    InvalidRequestError,
    StaleWriteError,
)
from idempotent_endpoint.fingerprint import compute_fingerprint, derive_key, parse_payload
from idempotent_endpoint.models import Decision, DecisionKind, IdempotencyRecord
from idempotent_endpoint.observability.logging import get_logger, request_context
from idempotent_endpoint.observability.metrics import record_handler_duration, record_response
from idempotent_endpoint.utils.headers import get_header_value

logger = get_logger(__name__)

BusinessLogic = Callable[[Any], Awaitable[Any]]

MAX_KEY_LENGTH = 255

MIN_FAILURE_STATUS = 400
MAX_FAILURE_STATUS = 499
DEFAULT_FAILURE_STATUS = 422


class Request:
    """Abstract request representation.

    Framework adapters convert their framework-specific request objects into
    this format.

    Attributes:
        method: HTTP method
        path: URL path
        headers: Request headers as dict
        body: Request body as bytes
    """

    def __init__(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        body: bytes,
    ) -> None:
        self.method = method
        self.path = path
        self.headers = headers
        self.body = body


class IdempotentHandler:
    """Runs business logic at most once per idempotency key.

    Attributes:
        coordinator: Coordinator deciding what to do with each request
        config: Configuration object
    """

    ALLOWED_METHOD = "POST"

    def __init__(self, coordinator: IdempotencyCoordinator, config: IdempotencyConfig) -> None:
        self.coordinator = coordinator
        self.config = config

    async def handle(self, request: Request, business_logic: BusinessLogic) -> EndpointResponse:
        """Process one request with idempotency handling.

        Args:
            request: The incoming request
            business_logic: Async function of the parsed payload, returning a
                JSON-serializable result. Raise HandlerExecutionError to choose
                the status and detail recorded for failures.

        Returns:
            EndpointResponse object
        """
        if request.method.upper() != self.ALLOWED_METHOD:
            response = rejection_response(405, "method_not_allowed", "Only POST is supported")
            response.headers["Allow"] = self.ALLOWED_METHOD
            return self._finish("rejected", response)

        try:
            self._validate_request_size(request)
            payload = parse_payload(request.body)
            key = self._extract_key(request, payload)
        except InvalidRequestError as e:
            return self._finish(
                "invalid", rejection_response(e.status_code, "invalid_request", e.message)
            )

        fingerprint = compute_fingerprint(payload)

        with request_context(key=key):
            try:
                decision = await self.coordinator.admit(key, fingerprint)
            except BackendUnavailableError as e:
                return self._finish("backend_unavailable", self._unavailable(key, e))

            if decision.kind is DecisionKind.PROCEED:
                return await self._proceed(decision, payload, business_logic)

            if decision.kind in (DecisionKind.REPLAY, DecisionKind.REPLAY_ERROR):
                return self._finish(decision.kind.value.lower(), replay_response(decision))

            if decision.kind is DecisionKind.IN_FLIGHT:
                return self._finish(
                    "in_flight",
                    rejection_response(
                        425,
                        "request_in_flight",
                        "A request with this idempotency key is still being processed",
                        key=key,
                        retry_after_seconds=decision.retry_after_seconds,
                    ),
                )

            return self._finish(
                "conflict",
                rejection_response(
                    409,
                    "idempotency_key_conflict",
                    "This idempotency key was already used with a different payload",
                    key=key,
                ),
            )

    async def call(self, payload: Any, business_logic: BusinessLogic, key: str | None = None) -> Any:
        """Run ``business_logic`` idempotently and return its decoded result.

        This is the exception-style counterpart of ``handle()`` for callers
        that are not HTTP handlers.

        Raises:
            ConflictError: The key belongs to a different payload.
            InFlightError: The original is still executing.
            HandlerExecutionError: The business logic failed, now or originally.
            StaleWriteError: The claim was lost while executing.
            BackendUnavailableError: The backend failed.
        """
        key = key or derive_key(payload)
        self._validate_key(key)
        fingerprint = compute_fingerprint(payload)

        with request_context(key=key):
            decision = await self.coordinator.admit(key, fingerprint)
            if decision.kind is DecisionKind.PROCEED:
                record = await self._run(decision, payload, business_logic)
                return record.result_value()
            if decision.kind is DecisionKind.REPLAY and decision.result is not None:
                return json.loads(decision.result)
            decision.raise_for_kind(request_fingerprint=fingerprint)
        raise RuntimeError(f"Unexpected decision: {decision.kind.value}")

    async def _proceed(
        self,
        decision: Decision,
        payload: Any,
        business_logic: BusinessLogic,
    ) -> EndpointResponse:
        key = decision.key
        try:
            record = await self._run(decision, payload, business_logic)
        except HandlerExecutionError as e:
            return self._finish(
                "failed", error_response(key, e.to_error_info(), is_replay=False)
            )
        except StaleWriteError as e:
            return self._finish(
                "stale_write",
                rejection_response(
                    500,
                    "claim_lost",
                    f"Outcome was not recorded: {e.message}",
                    key=key,
                ),
            )
        except BackendUnavailableError as e:
            return self._finish("backend_unavailable", self._unavailable(key, e))

        return self._finish("executed", result_response(key, record.result or "null", is_replay=False))

    async def _run(
        self,
        decision: Decision,
        payload: Any,
        business_logic: BusinessLogic,
    ) -> IdempotencyRecord:
        """Execute the business logic under a granted claim and record the outcome.

        Raises:
            HandlerExecutionError: After the failure has been recorded with fail().
        """
        key = decision.key
        version = _granted_version(decision)
        outcome = await self._execute(key, payload, business_logic)
        if isinstance(outcome, HandlerExecutionError):
            await self.coordinator.fail(
                key, version, outcome.to_error_info(), claimed_at=decision.claimed_at
            )
            raise outcome
        return await self.coordinator.complete(
            key, version, outcome, claimed_at=decision.claimed_at
        )

    async def _execute(
        self,
        key: str,
        payload: Any,
        business_logic: BusinessLogic,
    ) -> Any:
        """Run the business logic, returning its result or the failure to record."""
        start_time = time.perf_counter()
        try:
            result = await business_logic(payload)
        except HandlerExecutionError as e:
            return _recordable(key, e)
        except Exception as e:
            logger.exception("handler.failed", key=key, error_type=type(e).__name__)
            return HandlerExecutionError(
                message=str(e) or type(e).__name__,
                error_type=type(e).__name__,
            )
        finally:
            record_handler_duration(time.perf_counter() - start_time)

        try:
            # Reject unserializable results before anything is stored
            serialize_result(result)
        except (TypeError, ValueError) as e:
            logger.exception("handler.unserializable_result", key=key)
            return HandlerExecutionError(
                message=f"Handler result could not be serialized: {e}",
                error_type="ResultNotSerializable",
            )
        return result

    def _extract_key(self, request: Request, payload: Any) -> str:
        """Extract the idempotency key.

        Order: the configured header, then the configured payload field, then
        a digest of the normalized payload.

        Raises:
            InvalidRequestError: If the supplied key is empty or too long.
        """
        header_value = get_header_value(request.headers, self.config.key_header)
        if header_value is not None:
            key = header_value.strip()
            self._validate_key(key)
            return key

        field = self.config.key_field
        if field and isinstance(payload, dict):
            value = payload.get(field)
            if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
                key = str(value)
                self._validate_key(key)
                return key

        return derive_key(payload)

    def _validate_key(self, key: str) -> None:
        if not key:
            raise InvalidRequestError("Idempotency key cannot be empty")
        if len(key) > MAX_KEY_LENGTH:
            raise InvalidRequestError(
                f"Idempotency key exceeds maximum length of {MAX_KEY_LENGTH} characters"
            )

    def _validate_request_size(self, request: Request) -> None:
        max_size = self.config.max_body_bytes
        if max_size and len(request.body) > max_size:
            raise InvalidRequestError(
                f"Request body exceeds maximum size of {max_size} bytes",
                status_code=413,
            )

    def _unavailable(self, key: str, error: BackendUnavailableError) -> EndpointResponse:
        return rejection_response(
            503,
            "backend_unavailable",
            f"Idempotency store unavailable: {error.message}",
            key=key,
            retry_after_seconds=self.config.retry_after_seconds,
        )

    def _finish(self, outcome: str, response: EndpointResponse) -> EndpointResponse:
        record_response(outcome, response.status)
        return response


def _granted_version(decision: Decision) -> int:
    if decision.version is None:
        raise RuntimeError(f"PROCEED decision for {decision.key} carries no version")
    return decision.version


def _recordable(key: str, error: HandlerExecutionError) -> HandlerExecutionError:
    """Return ``error`` with a status that can be stored and replayed."""
    if MIN_FAILURE_STATUS <= error.status_code <= MAX_FAILURE_STATUS:
        return error
    logger.warning(
        "handler.failure_status_replaced",
        key=key,
        status_code=error.status_code,
        replacement=DEFAULT_FAILURE_STATUS,
    )
    return HandlerExecutionError(
        message=error.message,
        status_code=DEFAULT_FAILURE_STATUS,
        error_type=error.error_type,
        detail=error.detail,
    )
