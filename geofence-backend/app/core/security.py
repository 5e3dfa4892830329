"""
JWT helpers for the session token forwarded by the platform gateway.

The gateway verifies the signature before requests reach this service, so
only the claims are decoded here. The same token is forwarded untouched to
the FMS API, which performs its own verification.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timezone
from typing import Any


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def decode_token_claims(token: str) -> dict[str, Any]:
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("Malformed token")
    try:
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError("Malformed token payload") from exc
    if not isinstance(payload, dict):
        raise ValueError("Invalid payload")
    exp = payload.get("exp")
    if exp is not None:
        now_ts = int(datetime.now(timezone.utc).timestamp())
        if now_ts >= int(exp):
            raise ValueError("Token expired")
    return payload


def extract_cookie_token(cookie_header: str | None, name: str = "token") -> str | None:
    """Pull one cookie value out of a raw ``Cookie`` header."""
    if not cookie_header:
        return None
    for chunk in cookie_header.split(";"):
        key, sep, value = chunk.strip().partition("=")
        if sep and key == name:
            return value.strip() or None
    return None
