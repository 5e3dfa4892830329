"""
Shared request dependencies for the geofence API.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Optional

from fastapi import Depends, Request
from starlette.concurrency import run_in_threadpool

from ..core.auth import GeofencePermissions, UserContext, get_current_user
from ..core.errors import ForbiddenError, InternalError, ValidationError, log_exception
from ..integrations.fms_client import FmsApiError, FmsClient
from ..services.access import PermissionResolver, get_permission_resolver

logger = logging.getLogger("api")


def respond(msg: str, data: Any = None) -> dict[str, Any]:
    return {"msg": msg, "data": data}


def _valid_uuid(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


async def request_fleet_id(request: Request) -> str:
    """``fleetid`` from the query string, else from a JSON object body."""
    fleet_id: Optional[Any] = request.query_params.get("fleetid")
    if fleet_id is None and request.method in {"POST", "PUT", "PATCH", "DELETE"}:
        body = await request.body()
        if body:
            try:
                payload = json.loads(body)
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                fleet_id = payload.get("fleetid")
    if not _valid_uuid(fleet_id):
        raise ValidationError("INPUT_ERROR", "fleetid is missing or not a valid UUID")
    return fleet_id


def require_module_access(permissions: GeofencePermissions) -> GeofencePermissions:
    if not permissions.perms and not permissions.admin:
        raise ForbiddenError("PERMISSIONS_DENIED")
    return permissions


async def get_geofence_permissions(
    request: Request,
    user: UserContext = Depends(get_current_user),
    resolver: PermissionResolver = Depends(get_permission_resolver),
) -> GeofencePermissions:
    """Geofence-module permissions of the caller on the request's fleet."""
    fleet_id = await request_fleet_id(request)
    permissions = await run_in_threadpool(resolver.resolve, fleet_id, user.cookie)
    return require_module_access(permissions)


def listing_fleet_ids(fms_client: FmsClient, fleet_id: str, recursive: str, cookie: Optional[str]) -> list[str]:
    """The fleet alone, or the fleet and its sub-fleets when ``recursive`` is "true"."""
    if recursive != "true":
        return [fleet_id]
    try:
        return fms_client.get_recursive_fleets(fleet_id, cookie, True)
    except FmsApiError as exc:
        log_exception(logger, "Sub-fleet lookup failed", extra={"fleet_id": fleet_id}, exc=exc)
        raise InternalError(detail=str(exc)) from exc
