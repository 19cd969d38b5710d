"""NiceHash API v2 request signing.

Every authenticated request carries an ``X-Auth`` header of the form
``{apiKey}:{hexHmac}``. The HMAC-SHA256 (keyed by the API secret) is computed
over the request's canonical form, fields separated by a single null byte:

    apiKey \\0 time \\0 nonce \\0 \\0 [orgId] \\0 \\0 method \\0 path \\0 [query] [\\0 body]

The two empty fields are part of the NiceHash protocol and must be preserved.
The query string and body signed here must be byte-identical to what is sent,
so callers serialize with ``serialize_query``/``serialize_body`` and transmit
those exact strings.
"""

import hashlib
import hmac
import json
import secrets
import string
from typing import Any
from urllib.parse import quote, urlencode

NONCE_LENGTH = 32

_NONCE_ALPHABET = string.ascii_lowercase + string.digits


def create_nonce() -> str:
    """Return a random 32-character lowercase alphanumeric nonce."""
    return "".join(secrets.choice(_NONCE_ALPHABET) for _ in range(NONCE_LENGTH))


def serialize_query(query: dict[str, Any] | str | None) -> str:
    """Serialize query parameters in insertion order.

    Spaces become ``%20`` and reserved characters (including ``/``) are
    percent-encoded. A string is assumed to be already serialized.

    Raises:
        TypeError: If ``query`` is neither a mapping, a string nor None.
    """
    if query is None:
        return ""
    if isinstance(query, str):
        return query
    if not isinstance(query, dict):
        raise TypeError(f"query must be a dict or str, got {type(query).__name__}")
    pairs = []
    for key, value in query.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        pairs.append((key, value))
    return urlencode(pairs, doseq=True, quote_via=quote)


def serialize_body(body: dict[str, Any] | list[Any] | str | None) -> str:
    """Serialize a request body as compact JSON. A string is sent as-is.

    Raises:
        TypeError: If ``body`` contains values json cannot encode.
    """
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def sign(
    api_key: str,
    api_secret: str,
    time_ms: int | str,
    nonce: str,
    org_id: str | None,
    method: str,
    path: str,
    query: dict[str, Any] | str | None = None,
    body: dict[str, Any] | list[Any] | str | None = None,
) -> str:
    """Build the ``X-Auth`` header value for one request.

    Args:
        api_key: NiceHash API key (also the prefix of the returned header).
        api_secret: NiceHash API secret, the HMAC key.
        time_ms: Server-synchronized timestamp in milliseconds.
        nonce: Unique per-request nonce.
        org_id: Organization id, or None/empty to leave the field blank.
        method: HTTP method (GET, POST, PUT, DELETE).
        path: Request path without the query string.
        query: Query parameters (dict) or an already-serialized query string.
        body: Request body (dict/list) or an already-serialized JSON string.

    Returns:
        ``"{api_key}:{hex_digest}"``.

    Raises:
        TypeError: If key, secret, nonce, method or path are not strings.
    """
    for name, value in (
        ("api_key", api_key),
        ("api_secret", api_secret),
        ("nonce", nonce),
        ("method", method),
        ("path", path),
    ):
        if not isinstance(value, str):
            raise TypeError(f"{name} must be a str, got {type(value).__name__}")

    fields = [
        api_key,
        str(time_ms),
        nonce,
        "",
        org_id or "",
        "",
        method,
        path,
        serialize_query(query) if query else "",
    ]
    message = "\0".join(fields)
    if body:
        message += "\0" + serialize_body(body)

    digest = hmac.new(
        api_secret.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"{api_key}:{digest}"
