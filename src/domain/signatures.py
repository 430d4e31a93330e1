from __future__ import annotations

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Literal


MessageFormat = Literal["timestamp_body", "timestamp_dot_body", "body"]
DigestEncoding = Literal["hex", "base64"]

DEFAULT_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class SignatureScheme:
    """How a provider signs its webhook bodies.

    ``message_format`` selects the canonical string fed to HMAC-SHA256,
    ``digest_encoding`` how the digest is rendered in the header, and
    ``version_prefix`` a tag such as ``v1=`` the provider puts in front of it.
    """

    message_format: MessageFormat
    digest_encoding: DigestEncoding = "hex"
    version_prefix: str | None = None
    requires_timestamp: bool = True


def _body_text(raw_body: bytes | str) -> str:
    if isinstance(raw_body, bytes):
        return raw_body.decode("utf-8", errors="strict")
    return raw_body


def build_signed_message(scheme: SignatureScheme, raw_body: bytes | str, timestamp: str | None) -> str:
    body = _body_text(raw_body)
    if scheme.message_format == "timestamp_body":
        return f"{timestamp or ''}{body}"
    if scheme.message_format == "timestamp_dot_body":
        return f"{timestamp or ''}.{body}"
    return body


def compute_signature(
    scheme: SignatureScheme,
    raw_body: bytes | str,
    timestamp: str | None,
    secret: str,
) -> str:
    message = build_signed_message(scheme, raw_body, timestamp)
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    if scheme.digest_encoding == "base64":
        return base64.b64encode(digest).decode("ascii")
    return digest.hex()


def _parse_unix_seconds(raw: str) -> int | None:
    text = str(raw).strip()
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text)


def is_timestamp_fresh(
    timestamp: str,
    *,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> bool:
    parsed = _parse_unix_seconds(timestamp)
    if parsed is None:
        return False
    current = time.time() if now is None else now
    return abs(current - parsed) <= tolerance_seconds


def verify_signature(
    raw_body: bytes | str,
    signature: str | None,
    timestamp: str | None,
    secret: str | None,
    scheme: SignatureScheme,
    *,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> bool:
    if not signature or not secret:
        return False
    if scheme.requires_timestamp:
        if not timestamp:
            return False
        if not is_timestamp_fresh(timestamp, tolerance_seconds=tolerance_seconds, now=now):
            return False

    provided = signature.strip()
    if scheme.version_prefix and provided.startswith(scheme.version_prefix):
        provided = provided[len(scheme.version_prefix):]

    try:
        expected = compute_signature(scheme, raw_body, timestamp, secret)
    except UnicodeDecodeError:
        return False

    if scheme.digest_encoding == "hex":
        provided = provided.lower()
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))
