"""
API endpoints for geofences, including the geofence + rule composite flows.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...core.auth import GeofencePermissions, UserContext, get_current_user
from ...core.db import get_db
from ...integrations.fms_client import FmsClient, get_fms_client
from ...schemas.common import RecursiveFlag, UuidStr
from ...schemas.geofence import (
    GeofenceCreate,
    GeofenceRuleStateUpdate,
    GeofenceStateUpdate,
    GeofenceUpdate,
    GeofenceWithRuleCreate,
)
from ...services import geofences, workflows
from ...services.access import authorize
from ..deps import get_geofence_permissions, listing_fleet_ids, respond


router = APIRouter(prefix="/api/v1/geofence", tags=["geofences"])


@router.post("/create")
def create_geofence(
    payload: GeofenceCreate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "create_geofence")
    data = geofences.create_geofence(
        db,
        scope,
        geofencename=payload.geofencename,
        geofenceinfo=payload.geofenceinfo.model_dump(),
        meta=payload.meta.model_dump(),
    )
    return respond("Geofence created successfully", data)


@router.post("/create/withrule")
def create_geofence_with_rule(
    payload: GeofenceWithRuleCreate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "create_geofence_with_rule")
    data = workflows.create_geofence_with_rule(
        db,
        scope,
        geofencename=payload.geofencename,
        geofenceinfo=payload.geofenceinfo.model_dump(),
        meta=payload.meta.model_dump(),
        rule=payload.rule.model_dump(),
        vehicles=list(payload.vehicles),
    )
    return respond("Geofence created successfully", data)


# Registered before /list/{geofenceid} so "withrule" is not taken for an id.
@router.get("/list/withrule")
def list_geofences_with_action_info(
    fleetid: UuidStr = Query(...),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "list_geofences_with_action_info")
    data = geofences.list_geofences_with_action_info(db, scope)
    return respond("Geofences with action info fetched successfully", data)


@router.get("/list")
def list_geofences(
    fleetid: UuidStr = Query(...),
    recursive: RecursiveFlag = Query("false"),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
    fms_client: FmsClient = Depends(get_fms_client),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "list_geofences")
    fleet_ids = listing_fleet_ids(fms_client, fleetid, recursive, user.cookie)
    data = geofences.list_geofences(db, scope.account_id, fleet_ids)
    return respond("Geofence fetched successfully", data)


@router.get("/list/{geofenceid}")
def get_geofence(
    geofenceid: UuidStr,
    fleetid: UuidStr = Query(...),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "get_geofence")
    return respond("Geofence fetched successfully", geofences.get_geofence_by_id(db, scope, geofenceid))


@router.put("/update")
def update_geofence(
    payload: GeofenceUpdate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "update_geofence")
    data = geofences.update_geofence(
        db,
        scope,
        payload.geofenceid,
        geofencename=payload.geofencename,
        geofenceinfo=payload.geofenceinfo.model_dump() if payload.geofenceinfo else None,
        meta=payload.meta.model_dump() if payload.meta else None,
    )
    return respond("Geofence updated successfully", data)


@router.put("/updateactive/withrule")
def update_geofence_state_with_rule(
    payload: GeofenceRuleStateUpdate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "update_geofence_state_with_rule")
    data = geofences.update_geofence_state_with_rule(db, scope, payload.geofenceid, payload.ruleid, payload.isactive)
    msg = data.pop("message")
    return respond(msg, data)


@router.put("/updateactive")
def update_geofence_state(
    payload: GeofenceStateUpdate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "update_geofence_state")
    data = geofences.update_geofence_state(db, scope, payload.geofenceid, payload.isactive)
    msg = data.pop("message")
    return respond(msg, data)


@router.delete("/delete/withrule")
def delete_geofence_with_rule(
    fleetid: UuidStr = Query(...),
    geofenceid: UuidStr = Query(...),
    ruleid: UuidStr = Query(...),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "delete_geofence_with_rule")
    workflows.delete_geofence_with_rule(db, scope, geofenceid, ruleid)
    return respond("Geofence deleted successfully", None)


@router.delete("/delete")
def delete_geofence(
    fleetid: UuidStr = Query(...),
    geofenceid: UuidStr = Query(...),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "delete_geofence")
    geofences.delete_geofence(db, scope, geofenceid)
    return respond("Geofence deleted successfully", {"fleetid": fleetid, "geofenceid": geofenceid})


@router.get("/listgeorules")
def list_geo_rules(
    fleetid: UuidStr = Query(...),
    geofenceid: UuidStr = Query(...),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "list_geo_rules")
    return respond("Geofence rules fetched successfully", geofences.list_geo_rules(db, scope, geofenceid))
