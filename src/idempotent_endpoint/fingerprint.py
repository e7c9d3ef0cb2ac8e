"""Request fingerprinting for idempotency.

A fingerprint is the SHA-256 digest of the normalized JSON payload. It tells
a legitimate duplicate (same key, same payload) apart from a key collision
(same key, different payload).

Normalization rules:

1. The body is parsed as JSON (UTF-8).
2. It is re-serialized with object keys sorted, compact separators
   ``(",", ":")`` and ``ensure_ascii=False``, then UTF-8 encoded.

Whitespace and object key order therefore never change the fingerprint.
Array order, string content and number spelling (``1`` vs ``1.0``) do.
"""

import hashlib
import json
from typing import Any

from idempotent_endpoint.exceptions import InvalidRequestError

DERIVED_KEY_PREFIX = "sha256:"


def parse_payload(body: bytes) -> Any:
    """Parse a request body as JSON.

    Raises:
        InvalidRequestError: If the body is empty or not valid UTF-8 JSON.
    """
    if not body or not body.strip():
        raise InvalidRequestError("Request body must be a JSON document")
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidRequestError(f"Request body is not valid JSON: {e}") from e


def canonicalize_payload(payload: Any) -> bytes:
    """Serialize a parsed payload into its canonical byte form.

    Examples:
        >>> canonicalize_payload({"b": 1, "a": [1, 2]})
        b'{"a":[1,2],"b":1}'
    """
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def compute_fingerprint(payload: Any) -> str:
    """Compute the deterministic fingerprint of a parsed payload.

    Args:
        payload: Any JSON-compatible value.

    Returns:
        Hexadecimal SHA-256 hash string (64 characters)

    Examples:
        >>> compute_fingerprint({"name": "test"}) == compute_fingerprint({ "name" : "test" })
        True
    """
    return hashlib.sha256(canonicalize_payload(payload)).hexdigest()


def fingerprint_body(body: bytes) -> str:
    """Parse and fingerprint a raw request body."""
    return compute_fingerprint(parse_payload(body))


def derive_key(payload: Any) -> str:
    """Derive an idempotency key from the payload itself.

    Used when the caller supplies no key. Identical payloads collapse onto the
    same key, so two deliberately repeated identical requests are treated as
    duplicates.

    Examples:
        >>> derive_key({"name": "test"}).startswith("sha256:")
        True
    """
    return f"{DERIVED_KEY_PREFIX}{compute_fingerprint(payload)}"
