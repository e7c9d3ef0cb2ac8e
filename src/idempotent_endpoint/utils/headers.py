"""Header utilities for the idempotent endpoint.

This module provides functions for:
- Case-insensitive header lookup
- Adding idempotency metadata headers to responses
"""

IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"
REPLAY_HEADER = "Idempotent-Replay"
RETRY_AFTER_HEADER = "Retry-After"


def add_replay_headers(
    headers: dict[str, str],
    idempotency_key: str,
    is_replay: bool = True,
) -> dict[str, str]:
    """Add idempotency-specific headers to a response.

    Args:
        headers: Existing response headers
        idempotency_key: The idempotency key used for this request
        is_replay: Whether this is a replayed response (default True)

    Returns:
        Headers with replay metadata added

    Example:
        >>> add_replay_headers({"content-type": "application/json"}, "req-1")
        {'content-type': 'application/json', 'Idempotent-Replay': 'true', 'Idempotency-Key': 'req-1'}
    """
    # Create new dict to avoid mutating original
    result = headers.copy()
    result[REPLAY_HEADER] = "true" if is_replay else "false"
    result[IDEMPOTENCY_KEY_HEADER] = idempotency_key
    return result


def get_header_value(
    headers: dict[str, str],
    header_name: str,
    default: str | None = None,
) -> str | None:
    """Get header value with case-insensitive lookup.

    Args:
        headers: Headers dictionary
        header_name: Name of header to find (case-insensitive)
        default: Default value if header not found

    Returns:
        Header value or default

    Example:
        >>> get_header_value({"Idempotency-Key": "req-1"}, "idempotency-key")
        'req-1'
        >>> get_header_value({}, "missing", "default")
        'default'
    """
    header_name_lower = header_name.lower()

    for key, value in headers.items():
        if key.lower() == header_name_lower:
            return value

    return default
