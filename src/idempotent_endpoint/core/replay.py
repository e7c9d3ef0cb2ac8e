"""Response construction for executed and replayed outcomes.

Results are stored as serialized JSON text and sent as-is, so the body a
duplicate receives is byte-for-byte the body the original caller received.
Failures are rendered from their stored ErrorInfo with the recorded status.

Examples:
    Replaying a decision::

        from idempotent_endpoint.core.replay import replay_response

        response = replay_response(decision)
        # response.status == 200
        # response.headers["Idempotent-Replay"] == "true"
        # response.headers["Idempotency-Key"] == "req-1"
"""

import json
from typing import Any

from idempotent_endpoint.models import Decision, DecisionKind, ErrorInfo
from idempotent_endpoint.utils.headers import (
    IDEMPOTENCY_KEY_HEADER,
    RETRY_AFTER_HEADER,
    add_replay_headers,
)

JSON_CONTENT_TYPE = "application/json"


class EndpointResponse:
    """A response produced by the endpoint.

    Attributes:
        status: HTTP status code
        headers: Response headers as key-value pairs
        body: Response body as bytes
    """

    def __init__(self, status: int, headers: dict[str, str], body: bytes) -> None:
        self.status = status
        self.headers = headers
        self.body = body

    def json(self) -> Any:
        return json.loads(self.body)


def _json_headers() -> dict[str, str]:
    return {"content-type": JSON_CONTENT_TYPE}


def result_response(key: str, serialized_result: str, is_replay: bool) -> EndpointResponse:
    """Build the 200 response carrying a serialized handler result."""
    return EndpointResponse(
        status=200,
        headers=add_replay_headers(_json_headers(), key, is_replay=is_replay),
        body=serialized_result.encode("utf-8"),
    )


def error_response(key: str, error_info: ErrorInfo, is_replay: bool) -> EndpointResponse:
    """Build the response for a recorded handler failure.

    Examples:
        >>> info = ErrorInfo(error_type="InsufficientFunds", message="balance too low")
        >>> error_response("req-1", info, is_replay=True).status
        422
    """
    body: dict[str, Any] = {
        "error": error_info.error_type,
        "message": error_info.message,
    }
    if error_info.detail is not None:
        body["detail"] = error_info.detail
    return EndpointResponse(
        status=error_info.status_code,
        headers=add_replay_headers(_json_headers(), key, is_replay=is_replay),
        body=json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8"),
    )


def rejection_response(
    status: int,
    error: str,
    message: str,
    key: str | None = None,
    retry_after_seconds: int | None = None,
) -> EndpointResponse:
    """Build a response for a request that was not executed and not replayed."""
    headers = _json_headers()
    if key is not None:
        headers[IDEMPOTENCY_KEY_HEADER] = key
    if retry_after_seconds is not None:
        headers[RETRY_AFTER_HEADER] = str(retry_after_seconds)
    return EndpointResponse(
        status=status,
        headers=headers,
        body=json.dumps({"error": error, "message": message}).encode("utf-8"),
    )


def replay_response(decision: Decision) -> EndpointResponse:
    """Reconstruct the original response from a REPLAY or REPLAY_ERROR decision.

    Raises:
        ValueError: If the decision does not carry a stored outcome.
    """
    if decision.kind is DecisionKind.REPLAY and decision.result is not None:
        return result_response(decision.key, decision.result, is_replay=True)
    if decision.kind is DecisionKind.REPLAY_ERROR and decision.error_info is not None:
        return error_response(decision.key, decision.error_info, is_replay=True)
    raise ValueError(f"Decision {decision.kind.value} for {decision.key} has no stored outcome")
