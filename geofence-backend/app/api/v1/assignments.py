"""
API endpoints attaching vehicles, sub-fleets and notified users to rules.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...core.auth import GeofencePermissions, UserContext, get_current_user
from ...core.db import get_db
from ...integrations.fms_client import FmsClient, get_fms_client
from ...schemas.assignment import RuleFleets, RuleUsers, RuleUsersAdd, RuleVehicles, UserNotiUpdate
from ...schemas.common import RecursiveFlag, UuidStr
from ...services import assignments
from ...services.access import authorize
from ..deps import get_geofence_permissions, listing_fleet_ids, respond


router = APIRouter(prefix="/api/v1/geofence", tags=["rule-assignments"])


@router.get("/listasinablrulevehs")
def list_assignable_vehicles(
    fleetid: UuidStr = Query(...),
    ruleid: UuidStr = Query(...),
    recursive: RecursiveFlag = Query("false"),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
    fms_client: FmsClient = Depends(get_fms_client),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "list_assignable_vehicles")
    fleet_ids = listing_fleet_ids(fms_client, fleetid, recursive, user.cookie)
    data = assignments.list_assignable_vehicles(db, scope, fleet_ids, ruleid)
    return respond("Assignable rule vehicles fetched successfully", data)


@router.get("/listasinablrulefleets")
def list_assignable_fleets(
    fleetid: UuidStr = Query(...),
    ruleid: UuidStr = Query(...),
    recursive: RecursiveFlag = Query("false"),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
    fms_client: FmsClient = Depends(get_fms_client),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "list_assignable_fleets")
    fleet_ids = listing_fleet_ids(fms_client, fleetid, recursive, user.cookie)
    data = assignments.list_assignable_fleets(db, scope, fleet_ids, ruleid)
    return respond("Assignable rule fleets fetched successfully", data)


@router.get("/listasinablruleusers")
def list_assignable_users(
    fleetid: UuidStr = Query(...),
    ruleid: UuidStr = Query(...),
    recursive: RecursiveFlag = Query("false"),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
    fms_client: FmsClient = Depends(get_fms_client),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "list_assignable_users")
    fleet_ids = listing_fleet_ids(fms_client, fleetid, recursive, user.cookie)
    data = assignments.list_assignable_users(db, scope, fleet_ids, ruleid)
    return respond("Assignable rule users fetched successfully", data)


@router.post("/addrulevehs")
def add_rule_vehicles(
    payload: RuleVehicles,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "add_rule_vehicles")
    data = assignments.add_rule_vehicles(db, scope, payload.ruleid, list(payload.vinnos))
    return respond("Vehicles added to rule successfully", data)


@router.post("/rmrulevehs")
def delete_rule_vehicles(
    payload: RuleVehicles,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "delete_rule_vehicles")
    data = assignments.delete_rule_vehicles(db, scope, payload.ruleid, list(payload.vinnos))
    return respond("Vehicles deleted from rule successfully", data)


@router.post("/addrulefleets")
def add_rule_fleets(
    payload: RuleFleets,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
    fms_client: FmsClient = Depends(get_fms_client),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "add_rule_fleets")
    data = assignments.add_rule_fleets(
        db, scope, payload.ruleid, list(payload.fleets), fms_client=fms_client, cookie=user.cookie
    )
    return respond("Fleets added to rule successfully", data)


@router.post("/rmrulefleets")
def delete_rule_fleets(
    payload: RuleFleets,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "delete_rule_fleets")
    data = assignments.delete_rule_fleets(db, scope, payload.ruleid, list(payload.fleets))
    return respond("Fleets deleted from rule successfully", data)


@router.post("/addruleusers")
def add_rule_users(
    payload: RuleUsersAdd,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "add_rule_users")
    data = assignments.add_rule_users(db, scope, payload.ruleid, list(payload.users), payload.alertmeta.model_dump())
    return respond("Users added to rule successfully", data)


@router.put("/updateusernoti")
def update_user_noti(
    payload: UserNotiUpdate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "update_user_noti")
    data = assignments.update_user_noti(db, scope, payload.ruleid, payload.userid, payload.alertmeta.model_dump())
    return respond("User notification updated successfully", data)


@router.post("/rmruleusers")
def delete_rule_users(
    payload: RuleUsers,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "delete_rule_users")
    data = assignments.delete_rule_users(db, scope, payload.ruleid, list(payload.users))
    return respond("Users deleted from rule successfully", data)
