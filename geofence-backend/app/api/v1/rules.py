"""
API endpoints for geofence rules and the rule/action type lookups.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...core.auth import GeofencePermissions, UserContext, get_current_user
from ...core.db import get_db
from ...integrations.fms_client import FmsClient, get_fms_client
from ...schemas.common import RecursiveFlag, UuidStr
from ...schemas.rule import RuleCreate, RuleStateUpdate, RuleUpdate, bindings_of
from ...services import rules
from ...services.access import authorize
from ..deps import get_geofence_permissions, listing_fleet_ids, respond


router = APIRouter(prefix="/api/v1/geofence", tags=["rules"])


@router.get("/listruletypes")
def list_rule_types(db: Session = Depends(get_db)) -> dict:
    return respond("Rule types fetched successfully", rules.list_rule_types(db))


@router.get("/listactiontypes")
def list_action_types(db: Session = Depends(get_db)) -> dict:
    return respond("Action types fetched successfully", rules.list_action_types(db))


@router.post("/createrule")
def create_rule(
    payload: RuleCreate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "create_rule")
    body = payload.rule
    data = rules.create_rule(
        db,
        scope,
        rulename=body.rulename,
        ruletypeid=body.ruletypeid,
        rulemeta=body.meta,
        bindings=bindings_of(body.rulegeoinfo),
    )
    return respond("Rule created successfully", data)


@router.get("/listrules")
def list_rules(
    fleetid: UuidStr = Query(...),
    recursive: RecursiveFlag = Query("false"),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
    fms_client: FmsClient = Depends(get_fms_client),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "list_rules")
    fleet_ids = listing_fleet_ids(fms_client, fleetid, recursive, user.cookie)
    return respond("Rules fetched successfully", rules.list_rules(db, scope.account_id, fleet_ids))


@router.get("/rule/{ruleid}")
def get_rule(
    ruleid: UuidStr,
    fleetid: UuidStr = Query(...),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "get_rule")
    return respond("Rule fetched successfully", rules.get_rule_by_id(db, scope, ruleid))


@router.put("/updaterule")
def update_rule(
    payload: RuleUpdate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "update_rule")
    data = rules.update_rule(
        db,
        scope,
        payload.ruleid,
        rulename=payload.rulename,
        ruletypeid=payload.ruletypeid,
        rulemeta=payload.meta,
        bindings=bindings_of(payload.rulegeoinfo),
    )
    return respond("Rule updated successfully", data)


@router.put("/updateruleactive")
def update_rule_state(
    payload: RuleStateUpdate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, payload.fleetid, permissions, "update_rule_state")
    data = rules.update_rule_state(db, scope, payload.ruleid, payload.isactive)
    return respond("Rule state updated successfully", data)


@router.delete("/deleterule")
def delete_rule(
    fleetid: UuidStr = Query(...),
    ruleid: UuidStr = Query(...),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
) -> dict:
    scope = authorize(db, user, fleetid, permissions, "delete_rule")
    rules.delete_rule(db, scope, ruleid)
    return respond("Rule deleted successfully", {"fleetid": fleetid, "ruleid": ruleid})
