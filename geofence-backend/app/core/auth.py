"""
Request identity dependency and the resolved geofence-module permission set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Header

from .errors import UnauthorizedError
from .security import decode_token_claims, extract_cookie_token

logger = logging.getLogger("auth")


@dataclass
class UserContext:
    account_id: str
    user_id: str
    # raw Cookie header, forwarded to the FMS API
    cookie: Optional[str] = None


@dataclass
class GeofencePermissions:
    perms: list[str] = field(default_factory=list)
    admin: bool = False


def get_current_user(cookie: Optional[str] = Header(None)) -> UserContext:
    token = extract_cookie_token(cookie)
    if not token:
        raise UnauthorizedError("TOKEN_REQUIRED")
    try:
        claims = decode_token_claims(token)
    except ValueError as exc:
        logger.info("Rejected session token: %s", exc)
        raise UnauthorizedError("INVALID_TOKEN") from exc
    user_id = str(claims.get("userid") or "").strip()
    account_id = str(claims.get("accountid") or "").strip()
    if not user_id or not account_id:
        raise UnauthorizedError("INVALID_TOKEN")
    return UserContext(account_id=account_id, user_id=user_id, cookie=cookie)

