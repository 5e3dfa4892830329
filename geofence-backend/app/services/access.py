"""
Fleet-scoped access control and geofence-module permission checks.

Two independent questions are answered before any store operation runs:

* is the fleet inside the caller's resolved fleet set (the fleets reachable
  from the account root, intersected with the closure of the fleets the
  user holds a role on), and
* does the caller's geofence-module permission set grant the operation.

The permission set comes from the FMS API through a `PermissionResolver`;
the FMS-backed resolver is the default and can be swapped through the
FastAPI dependency `get_permission_resolver`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from ..core.auth import GeofencePermissions, UserContext
from ..core.errors import ForbiddenError, log_exception
from ..integrations.fms_client import FmsApiError, FmsClient, get_fms_client
from ..models.fms import FleetTree, FleetUserRole

logger = logging.getLogger("access")

PERM_WILDCARD = "all.all.all"
GEOFENCE_ADMIN = "geofence.geofence.admin"
GEOFENCE_VIEW = "geofence.geofence.view"
RULE_ADMIN = "geofence.rule.admin"
RULE_VIEW = "geofence.rule.view"
REPORTS_VIEW = "geofence.reports.view"

GEOFENCE_MODULE = "Geofence"


@dataclass(frozen=True)
class Scope:
    """Account + fleet every query is pinned to, plus the acting user."""

    account_id: str
    fleet_id: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class Requirement:
    perms: tuple[str, ...]
    mode: str
    denied_code: str


# operation -> permission requirement
REQUIREMENTS: dict[str, Requirement] = {
    "create_geofence": Requirement((GEOFENCE_ADMIN,), "all", "CREATE_GEOFENCE_PERMISSION_DENIED"),
    "create_geofence_with_rule": Requirement((GEOFENCE_ADMIN, RULE_ADMIN), "all", "CREATE_GEOFENCE_PERMISSION_DENIED"),
    "list_geofences": Requirement((GEOFENCE_ADMIN, GEOFENCE_VIEW), "any", "LIST_GEOFENCES_PERMISSION_DENIED"),
    "get_geofence": Requirement((GEOFENCE_ADMIN, GEOFENCE_VIEW), "any", "GET_GEOFENCE_PERMISSION_DENIED"),
    "list_geofences_with_action_info": Requirement(
        (GEOFENCE_ADMIN, GEOFENCE_VIEW), "any", "GET_GEOFENCES_WITH_ACTION_INFO_PERMISSION_DENIED"
    ),
    "update_geofence": Requirement((GEOFENCE_ADMIN,), "all", "UPDATE_GEOFENCE_PERMISSION_DENIED"),
    "update_geofence_state": Requirement((GEOFENCE_ADMIN,), "all", "UPDATE_GEOFENCE_PERMISSION_DENIED"),
    "update_geofence_state_with_rule": Requirement(
        (GEOFENCE_ADMIN, RULE_ADMIN), "all", "UPDATE_GEOFENCE_STATE_PERMISSION_DENIED"
    ),
    "delete_geofence": Requirement((GEOFENCE_ADMIN,), "all", "DELETE_GEOFENCE_PERMISSION_DENIED"),
    "delete_geofence_with_rule": Requirement((GEOFENCE_ADMIN, RULE_ADMIN), "all", "DELETE_GEOFENCE_PERMISSION_DENIED"),
    "list_geo_rules": Requirement((GEOFENCE_ADMIN, GEOFENCE_VIEW), "any", "LIST_GEO_RULES_PERMISSION_DENIED"),
    "create_rule": Requirement((RULE_ADMIN,), "all", "CREATE_RULE_PERMISSION_DENIED"),
    "list_rules": Requirement((RULE_ADMIN, RULE_VIEW), "any", "LIST_RULES_PERMISSION_DENIED"),
    "get_rule": Requirement((RULE_ADMIN, RULE_VIEW), "any", "GET_RULE_PERMISSION_DENIED"),
    "update_rule": Requirement((RULE_ADMIN,), "all", "UPDATE_RULE_PERMISSION_DENIED"),
    "update_rule_state": Requirement((RULE_ADMIN,), "all", "UPDATE_RULE_STATE_PERMISSION_DENIED"),
    "delete_rule": Requirement((RULE_ADMIN,), "all", "DELETE_RULE_PERMISSION_DENIED"),
    "list_assignable_vehicles": Requirement((RULE_ADMIN, RULE_VIEW), "any", "LIST_ASSIGNABLE_RULE_PERMISSION_DENIED"),
    "list_assignable_fleets": Requirement((RULE_ADMIN, RULE_VIEW), "any", "LIST_ASIGN_RULE_FLEETS_PERM_DENIED"),
    "list_assignable_users": Requirement((RULE_ADMIN, RULE_VIEW), "any", "LIST_ASIGN_RULE_USERS_PERM_DENIED"),
    "add_rule_vehicles": Requirement((RULE_ADMIN,), "all", "ADD_RULE_VEHS_PERMISSION_DENIED"),
    "delete_rule_vehicles": Requirement((RULE_ADMIN,), "all", "DELETE_RULE_VEHS_PERMISSION_DENIED"),
    "add_rule_fleets": Requirement((RULE_ADMIN,), "all", "ADD_RULE_FLEETS_PERMISSION_DENIED"),
    "delete_rule_fleets": Requirement((RULE_ADMIN,), "all", "DELETE_RULE_FLEETS_PERMISSION_DENIED"),
    "add_rule_users": Requirement((RULE_ADMIN,), "all", "ADD_RULE_USERS_PERMISSION_DENIED"),
    "update_user_noti": Requirement((GEOFENCE_ADMIN, RULE_ADMIN), "any", "UPDATE_USER_NOTI_PERMISSION_DENIED"),
    "delete_rule_users": Requirement((RULE_ADMIN, GEOFENCE_ADMIN), "any", "DELETE_RULE_USERS_PERMISSION_DENIED"),
    "alert_report": Requirement((GEOFENCE_ADMIN, RULE_ADMIN, REPORTS_VIEW), "any", "ALERT_REPORT_PERM_DENIED"),
    "trip_report": Requirement((GEOFENCE_ADMIN, RULE_ADMIN, REPORTS_VIEW), "any", "TRIP_REPORT_PERM_DENIED"),
}


def check_user_perms(user_perms: list[str] | None, required: list[str] | tuple[str, ...] | None, mode: str = "any") -> bool:
    if not isinstance(user_perms, (list, tuple, set)):
        return False
    if PERM_WILDCARD in user_perms:
        return True
    if not required:
        return False
    if mode == "all":
        return all(perm in user_perms for perm in required)
    return any(perm in user_perms for perm in required)


def _fleet_closure(db: Session, account_id: str, seed_condition, *, name: str) -> set[str]:
    """Seed fleets matching ``seed_condition`` plus every non-deleted descendant."""
    closure = (
        select(FleetTree.fleetid)
        .where(FleetTree.accountid == account_id, FleetTree.isdeleted.is_(False), seed_condition)
        .cte(name, recursive=True)
    )
    parent = closure.alias()
    child = aliased(FleetTree)
    closure = closure.union_all(
        select(child.fleetid).where(
            child.pfleetid == parent.c.fleetid,
            child.accountid == account_id,
            child.isdeleted.is_(False),
        )
    )
    return {row[0] for row in db.execute(select(closure.c.fleetid).distinct())}


def resolve_user_fleets(db: Session, account_id: str, user_id: str) -> set[str] | None:
    """
    Fleets the user may act on, or None when the user has no fleet context.

    Soft-deleted fleet nodes, and everything below them, are excluded from
    both recursive walks.
    """
    all_fleets = _fleet_closure(
        db,
        account_id,
        FleetTree.pfleetid.is_(None),
        name="fleet_path",
    )
    if not all_fleets:
        return None

    role_fleets = [
        row[0]
        for row in db.execute(
            select(FleetUserRole.fleetid)
            .where(FleetUserRole.accountid == account_id, FleetUserRole.userid == user_id)
            .distinct()
        )
    ]
    if not role_fleets:
        return None

    allowed = _fleet_closure(
        db,
        account_id,
        FleetTree.fleetid.in_(role_fleets),
        name="fleet_children",
    )
    return all_fleets & allowed


def validate_user_fleet_access(db: Session, account_id: str, user_id: str, fleet_id: str) -> bool:
    fleets = resolve_user_fleets(db, account_id, user_id)
    if not fleets:
        return False
    return fleet_id in fleets


def authorize(
    db: Session,
    user: UserContext,
    fleet_id: str,
    permissions: GeofencePermissions,
    operation: str,
) -> Scope:
    """Run the module, fleet and permission checks for one operation."""
    if not permissions.perms and not permissions.admin:
        raise ForbiddenError("PERMISSIONS_DENIED")
    if not validate_user_fleet_access(db, user.account_id, user.user_id, fleet_id):
        raise ForbiddenError("INVALID_USER_ACCESS")
    if not permissions.admin:
        requirement = REQUIREMENTS[operation]
        if not check_user_perms(permissions.perms, requirement.perms, requirement.mode):
            raise ForbiddenError(requirement.denied_code)
    return Scope(account_id=user.account_id, fleet_id=fleet_id, user_id=user.user_id)


class PermissionResolver(Protocol):
    def resolve(self, fleet_id: str, cookie: Optional[str]) -> GeofencePermissions: ...


class FmsPermissionResolver:
    """Fetches the caller's permissions from the FMS API on every request."""

    def __init__(self, client: FmsClient):
        self.client = client

    def resolve(self, fleet_id: str, cookie: Optional[str]) -> GeofencePermissions:
        try:
            data = self.client.get_my_permissions(fleet_id, cookie)
            permissions = list(data.get("permissions") or [])
            modules = data.get("permissionsbymodule") or []
            module = next(
                (m for m in modules if isinstance(m, dict) and m.get("modulename") == GEOFENCE_MODULE),
                None,
            )
            perms = [
                str(p["permid"])
                for p in (module or {}).get("perms") or []
                if isinstance(p, dict) and p.get("permid")
            ]
        except (FmsApiError, AttributeError, TypeError, KeyError) as exc:
            log_exception(logger, "Permission lookup failed", extra={"fleet_id": fleet_id}, exc=exc)
            raise ForbiddenError("PERMISSIONS_DENIED", detail=str(exc)) from exc
        if module is None:
            raise ForbiddenError("PERMISSIONS_DENIED")
        return GeofencePermissions(perms=perms, admin=PERM_WILDCARD in permissions)


def get_permission_resolver() -> PermissionResolver:
    return FmsPermissionResolver(get_fms_client())
