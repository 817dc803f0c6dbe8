"""HMAC signatures for delivery callbacks.

Header format::

    X-Reqloom-Signature: t=<unix seconds>,v1=<hex hmac-sha256>

The MAC covers ``f"{t}.".encode() + raw_body``. Verification accepts
either the current or the next signing key so keys can be rotated
without dropping in-flight deliveries.
"""

import hashlib
import hmac
import time
from typing import Iterable, Optional, Union

from ..constants import SIGNATURE_MAX_AGE_SECONDS
from ..exceptions import SignatureError

SIGNATURE_HEADER = "X-Reqloom-Signature"

BodyType = Union[bytes, str]


def _as_bytes(body: BodyType) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


def _mac(key: str, timestamp: int, body: bytes) -> str:
    payload = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(key.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def sign_body(body: BodyType, key: str, timestamp: Optional[int] = None) -> str:
    """Return a signature header value for ``body``."""
    if not key:
        raise SignatureError("No signing key configured")
    ts = int(timestamp if timestamp is not None else time.time())
    return f"t={ts},v1={_mac(key, ts, _as_bytes(body))}"


def _parse_header(header: str):
    parts = {}
    for item in header.split(","):
        name, sep, value = item.strip().partition("=")
        if sep:
            parts.setdefault(name, []).append(value)
    try:
        ts = int(parts["t"][0])
    except (KeyError, ValueError, IndexError):
        raise SignatureError("Signature header has no valid timestamp")
    candidates = parts.get("v1") or []
    if not candidates:
        raise SignatureError("Signature header has no v1 signature")
    return ts, candidates


def verify_signature(
    body: BodyType,
    header: Optional[str],
    keys: Iterable[Optional[str]],
    max_age_seconds: Optional[int] = SIGNATURE_MAX_AGE_SECONDS,
    now: Optional[float] = None,
) -> int:
    """Check ``header`` against ``body`` for any of ``keys``.

    Returns:
        The signed timestamp.

    Raises:
        SignatureError: header missing/malformed, too old, or no key matches.
    """
    if not header:
        raise SignatureError("Missing signature header")
    usable = [k for k in keys if k]
    if not usable:
        raise SignatureError("No signing key configured")

    ts, candidates = _parse_header(header)
    if max_age_seconds is not None:
        current = now if now is not None else time.time()
        if abs(current - ts) > max_age_seconds:
            raise SignatureError("Signature timestamp outside tolerance")

    raw = _as_bytes(body)
    for key in usable:
        expected = _mac(key, ts, raw)
        for candidate in candidates:
            if hmac.compare_digest(expected, candidate):
                return ts
    raise SignatureError("Signature mismatch")
