from __future__ import annotations

import hashlib
import hmac
import re
import time
from dataclasses import dataclass

from tickerpilot.core.logging import get_logger

logger = get_logger(__name__)

_HEX_RE = re.compile(r"^[0-9a-fA-F]{64}$")

# Accepted key names for the timestamp / hash parts of a structured header
_TS_KEYS = ("ts", "timestamp")
_HASH_KEYS = ("h1", "hash")


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.ok


def parse_signature_header(signature_header: str | None) -> dict[str, list[str]]:
    """
    Parse "ts=1671552777;h1=eb4d..." into {"ts": [...], "h1": [...]}.
    Keys may repeat: during secret rotation Paddle sends one h1 per active
    secret. Pairs without "=" are skipped.
    """
    parts: dict[str, list[str]] = {}
    if not signature_header:
        return parts

    for pair in signature_header.split(";"):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        if value.strip():
            parts.setdefault(key.strip().lower(), []).append(value.strip())
    return parts


def is_legacy_signature(signature_header: str | None) -> bool:
    """Legacy deliveries carry a bare HMAC hex string instead of key=value pairs."""
    return bool(signature_header) and bool(_HEX_RE.match(signature_header.strip()))


def compute_signature(raw_body: bytes, timestamp: str, secret: str) -> str:
    signed_payload = timestamp.encode() + b":" + raw_body
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def _first(parts: dict[str, list[str]], keys: tuple[str, ...]) -> str:
    for key in keys:
        if parts.get(key):
            return parts[key][0]
    return ""


def _all(parts: dict[str, list[str]], keys: tuple[str, ...]) -> list[str]:
    return [value.lower() for key in keys for value in parts.get(key, [])]


def verify(
    raw_body: bytes,
    signature_header: str | None,
    secret: str | None,
    tolerance_seconds: int,
    *,
    timestamp_header: str | None = None,
    now: float | None = None,
    enforce_tolerance: bool = True,
) -> VerificationResult:
    """
    Verify a Paddle webhook signature.

    HMAC-SHA256 over f"{ts}:{raw_body}" with the endpoint secret. The current
    header format is "ts=...;h1=..."; the legacy one is a bare hex digest with
    the timestamp in a separate header. Any one matching h1 is enough, so
    deliveries signed during a secret rotation still pass. Pure: returns a
    result with a diagnostic reason instead of raising.
    """
    if not secret:
        return VerificationResult(False, "secret_not_configured")
    if not raw_body:
        return VerificationResult(False, "empty_payload")
    if not signature_header:
        return VerificationResult(False, "missing_signature")

    if is_legacy_signature(signature_header):
        received = [signature_header.strip().lower()]
        timestamp = (timestamp_header or "").strip()
    else:
        parts = parse_signature_header(signature_header)
        received = _all(parts, _HASH_KEYS)
        timestamp = _first(parts, _TS_KEYS)

    if not timestamp or not received:
        return VerificationResult(False, "malformed_signature_header")

    try:
        webhook_time = int(timestamp)
    except ValueError:
        return VerificationResult(False, "malformed_timestamp")

    expected = compute_signature(raw_body, timestamp, secret)
    if not any(hmac.compare_digest(expected.encode(), digest.encode()) for digest in received):
        return VerificationResult(False, "signature_mismatch")

    current = time.time() if now is None else now
    if abs(current - webhook_time) > tolerance_seconds:
        if enforce_tolerance:
            return VerificationResult(False, "timestamp_outside_tolerance")
        logger.warning(
            "Webhook timestamp outside tolerance (difference=%ss), accepted because enforcement is off",
            int(abs(current - webhook_time)),
        )
        return VerificationResult(True, "timestamp_outside_tolerance")

    return VerificationResult(True)
