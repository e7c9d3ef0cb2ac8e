"""Utility modules for the idempotent endpoint."""

from .headers import (
    IDEMPOTENCY_KEY_HEADER,
    REPLAY_HEADER,
    RETRY_AFTER_HEADER,
    add_replay_headers,
    get_header_value,
)

__all__ = [
    "add_replay_headers",
    "get_header_value",
    "IDEMPOTENCY_KEY_HEADER",
    "REPLAY_HEADER",
    "RETRY_AFTER_HEADER",
]
