"""
Geofence store.

Geofences are soft-deleted: the row is flagged ``isdeleted`` and renamed
with a millisecond suffix so the name becomes free again. A geofence bound
to any rule is "in use" and cannot be deactivated or deleted.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..core.db import transaction
from ..core.errors import ConflictError, GeofenceError, NotFoundError, ValidationError, log_exception, normalize_errors
from ..core.rule_types import ActionType, RuleType
from ..core.timeutils import format_ist, now_utc
from ..models.geofence import Geofence
from ..models.rule import GeofenceRule, GeofenceRuleInfo, RuleGeofenceAction
from . import rules
from .access import Scope

logger = logging.getLogger("geofences")

CIRCLE = "circle"
POLYGON = "polygon"


def validate_shape(geofenceinfo: Optional[dict]) -> None:
    if not geofenceinfo:
        return
    latlngs = geofenceinfo.get("latlngs") or []
    if geofenceinfo.get("type") == CIRCLE:
        radius = geofenceinfo.get("radius")
        if radius is None or radius <= 0:
            raise ValidationError("INVALID_RADIUS")
        if len(latlngs) != 1:
            raise ValidationError("INVALID_CIRCLE")
    elif geofenceinfo.get("type") == POLYGON:
        if len(latlngs) < 3:
            raise ValidationError("INVALID_POLYGON")


def _geofence_query(db: Session, account_id: str):
    return db.query(Geofence).filter(Geofence.accountid == account_id, Geofence.isdeleted.is_(False))


def find_geofence(db: Session, scope: Scope, geofence_id: str) -> Optional[Geofence]:
    return (
        _geofence_query(db, scope.account_id)
        .filter(Geofence.fleetid == scope.fleet_id, Geofence.geofenceid == geofence_id)
        .first()
    )


def require_geofence(db: Session, scope: Scope, geofence_id: str) -> Geofence:
    geofence = find_geofence(db, scope, geofence_id)
    if geofence is None:
        raise NotFoundError("GEOFENCE_NOT_FOUND")
    return geofence


def _name_taken(db: Session, scope: Scope, name: str, exclude_id: Optional[str] = None) -> bool:
    query = _geofence_query(db, scope.account_id).filter(
        Geofence.fleetid == scope.fleet_id,
        Geofence.geofencename == name,
    )
    if exclude_id:
        query = query.filter(Geofence.geofenceid != exclude_id)
    return db.query(query.exists()).scalar()


def is_in_use(db: Session, scope: Scope, geofence_id: str) -> bool:
    query = db.query(GeofenceRuleInfo).filter(
        GeofenceRuleInfo.accountid == scope.account_id,
        GeofenceRuleInfo.fleetid == scope.fleet_id,
        GeofenceRuleInfo.geofenceid == geofence_id,
    )
    return db.query(query.exists()).scalar()


def _shape_view(info: Optional[dict]) -> dict[str, Any]:
    info = info or {}
    return {"type": info.get("type"), "latlngs": info.get("latlngs"), "radius": info.get("radius")}


def _meta_view(meta: Optional[dict]) -> dict[str, Any]:
    meta = meta or {}
    center = meta.get("center") or {}
    return {
        "address": meta.get("address"),
        "tag": meta.get("tag"),
        "center": {"lat": center.get("lat"), "lng": center.get("lng")},
        "colour": meta.get("colour"),
        "area": meta.get("area"),
    }


def _geofence_view(geofence: Geofence, rule_rows: list[dict]) -> dict[str, Any]:
    return {
        "fleetid": geofence.fleetid,
        "geofenceid": geofence.geofenceid,
        "geofencename": geofence.geofencename,
        "isactive": geofence.isactive,
        "geofenceinfo": _shape_view(geofence.geofenceinfo),
        "meta": _meta_view(geofence.meta),
        "rules": rule_rows,
    }


def _bound_rules(db: Session, account_id: str, fleet_ids: list[str], geofence_ids: list[str]) -> dict[str, list[dict]]:
    """Non-deleted rules bound to each geofence, one entry per (geofence, rule)."""
    if not geofence_ids:
        return {}
    rows = (
        db.query(GeofenceRuleInfo, GeofenceRule)
        .join(
            GeofenceRule,
            (GeofenceRule.ruleid == GeofenceRuleInfo.ruleid)
            & (GeofenceRule.accountid == GeofenceRuleInfo.accountid)
            & (GeofenceRule.fleetid == GeofenceRuleInfo.fleetid),
        )
        .filter(
            GeofenceRuleInfo.accountid == account_id,
            GeofenceRuleInfo.fleetid.in_(fleet_ids),
            GeofenceRuleInfo.geofenceid.in_(geofence_ids),
            GeofenceRule.isdeleted.is_(False),
        )
        .order_by(GeofenceRuleInfo.geofenceid, GeofenceRuleInfo.seqno, GeofenceRuleInfo.actiontypeid)
        .all()
    )
    by_geofence: dict[str, list[dict]] = {}
    seen: set[tuple[str, str]] = set()
    for info, rule in rows:
        key = (info.geofenceid, rule.ruleid)
        if key in seen:
            continue
        seen.add(key)
        by_geofence.setdefault(info.geofenceid, []).append(
            {
                "ruleid": rule.ruleid,
                "rulename": rule.rulename,
                "ruletypeid": rule.ruletypeid,
                "isactive": rule.isactive,
                "seqno": info.seqno,
                "actiontypeid": info.actiontypeid,
            }
        )
    return by_geofence


@normalize_errors(logger)
def create_geofence(db: Session, scope: Scope, *, geofencename: str, geofenceinfo: dict, meta: dict) -> dict[str, Any]:
    if _name_taken(db, scope, geofencename):
        raise ConflictError("GEOFENCE_EXISTS")
    validate_shape(geofenceinfo)

    now = now_utc()
    geofence = Geofence(
        geofenceid=str(uuid.uuid4()),
        accountid=scope.account_id,
        fleetid=scope.fleet_id,
        geofencename=geofencename,
        isactive=True,
        geofenceinfo=geofenceinfo,
        meta=meta,
        createdat=now,
        createdby=scope.user_id,
        updatedat=now,
        updatedby=scope.user_id,
        isdeleted=False,
    )
    with transaction(db, name="create_geofence"):
        db.add(geofence)
    logger.info("Geofence created geofence_id=%s fleet_id=%s", geofence.geofenceid, scope.fleet_id)
    return {
        "fleetid": geofence.fleetid,
        "geofenceid": geofence.geofenceid,
        "geofencename": geofence.geofencename,
        "geofenceinfo": _shape_view(geofence.geofenceinfo),
        "meta": _meta_view(geofence.meta),
    }


@normalize_errors(logger)
def list_geofences(db: Session, account_id: str, fleet_ids: list[str]) -> list[dict[str, Any]]:
    rows = (
        _geofence_query(db, account_id)
        .filter(Geofence.fleetid.in_(fleet_ids))
        .order_by(Geofence.createdat.desc())
        .all()
    )
    bound = _bound_rules(db, account_id, fleet_ids, [g.geofenceid for g in rows])
    return [_geofence_view(g, bound.get(g.geofenceid, [])) for g in rows]


@normalize_errors(logger)
def get_geofence_by_id(db: Session, scope: Scope, geofence_id: str) -> dict[str, Any]:
    geofence = require_geofence(db, scope, geofence_id)
    bound = _bound_rules(db, scope.account_id, [scope.fleet_id], [geofence_id])
    return _geofence_view(geofence, bound.get(geofence_id, []))


@normalize_errors(logger)
def update_geofence(
    db: Session,
    scope: Scope,
    geofence_id: str,
    *,
    geofencename: Optional[str] = None,
    geofenceinfo: Optional[dict] = None,
    meta: Optional[dict] = None,
) -> dict[str, Any]:
    geofence = require_geofence(db, scope, geofence_id)
    if geofencename and _name_taken(db, scope, geofencename, exclude_id=geofence_id):
        raise ConflictError("GEOFENCE_NAME_EXISTS")
    validate_shape(geofenceinfo)

    with transaction(db, name="update_geofence"):
        if geofencename:
            geofence.geofencename = geofencename
        if geofenceinfo:
            geofence.geofenceinfo = geofenceinfo
        if meta:
            geofence.meta = meta
        geofence.updatedat = now_utc()
        geofence.updatedby = scope.user_id
    return get_geofence_by_id(db, scope, geofence_id)


@normalize_errors(logger)
def update_geofence_state(db: Session, scope: Scope, geofence_id: str, isactive: bool) -> dict[str, Any]:
    geofence = require_geofence(db, scope, geofence_id)
    if not isactive and is_in_use(db, scope, geofence_id):
        raise ConflictError("GEOFENCE_IN_USE")
    with transaction(db, name="update_geofence_state"):
        geofence.isactive = bool(isactive)
        geofence.updatedat = now_utc()
        geofence.updatedby = scope.user_id
    return {
        "fleetid": geofence.fleetid,
        "geofenceid": geofence.geofenceid,
        "isactive": geofence.isactive,
        "message": f"Geofence {'activated' if isactive else 'deactivated'} successfully",
    }


@normalize_errors(logger)
def update_geofence_state_with_rule(
    db: Session, scope: Scope, geofence_id: str, rule_id: str, isactive: bool
) -> dict[str, Any]:
    """Flip the geofence and the rule together in one transaction."""
    geofence = require_geofence(db, scope, geofence_id)
    rule = rules.require_rule(db, scope, rule_id)
    now = now_utc()
    with transaction(db, name="update_geofence_state_with_rule"):
        for row in (geofence, rule):
            row.isactive = bool(isactive)
            row.updatedat = now
            row.updatedby = scope.user_id
    return {
        "geofenceid": geofence_id,
        "ruleid": rule_id,
        "isactive": bool(isactive),
        "message": f"Geofence {'activated' if isactive else 'deactivated'} successfully",
    }


@normalize_errors(logger)
def delete_geofence(db: Session, scope: Scope, geofence_id: str) -> bool:
    geofence = require_geofence(db, scope, geofence_id)
    if geofence.isactive:
        raise ConflictError("GEOFENCE_ACTIVE")
    if is_in_use(db, scope, geofence_id):
        raise ConflictError("GEOFENCE_IN_USE")
    with transaction(db, name="delete_geofence"):
        geofence.geofencename = rules.tombstone_name(geofence.geofencename)
        geofence.isdeleted = True
        geofence.updatedat = now_utc()
        geofence.updatedby = scope.user_id
    logger.info("Geofence deleted geofence_id=%s fleet_id=%s", geofence_id, scope.fleet_id)
    return True


@normalize_errors(logger)
def list_geo_rules(db: Session, scope: Scope, geofence_id: str) -> dict[str, Any]:
    require_geofence(db, scope, geofence_id)
    rows = (
        db.query(GeofenceRule, RuleGeofenceAction.actiontype)
        .join(
            GeofenceRuleInfo,
            (GeofenceRuleInfo.accountid == GeofenceRule.accountid)
            & (GeofenceRuleInfo.fleetid == GeofenceRule.fleetid)
            & (GeofenceRuleInfo.ruleid == GeofenceRule.ruleid),
        )
        .join(RuleGeofenceAction, RuleGeofenceAction.actiontypeid == GeofenceRuleInfo.actiontypeid)
        .filter(
            GeofenceRuleInfo.accountid == scope.account_id,
            GeofenceRuleInfo.fleetid == scope.fleet_id,
            GeofenceRuleInfo.geofenceid == geofence_id,
            GeofenceRule.isdeleted.is_(False),
        )
        .all()
    )
    return {
        "geofenceid": geofence_id,
        "rules": [
            {
                "ruleid": rule.ruleid,
                "rulename": rule.rulename,
                "ruletypeid": rule.ruletypeid,
                "isactive": rule.isactive,
                "actiontype": actiontype,
                "createdat": format_ist(rule.createdat),
                "createdby": rule.createdby,
            }
            for rule, actiontype in rows
        ],
    }


def _first_bound_rule_id(db: Session, scope: Scope, geofence_id: str) -> Optional[str]:
    return (
        db.query(GeofenceRuleInfo.ruleid)
        .filter(
            GeofenceRuleInfo.accountid == scope.account_id,
            GeofenceRuleInfo.fleetid == scope.fleet_id,
            GeofenceRuleInfo.geofenceid == geofence_id,
        )
        .order_by(GeofenceRuleInfo.seqno, GeofenceRuleInfo.ruleid)
        .limit(1)
        .scalar()
    )


@normalize_errors(logger)
def get_geofence_and_rule_with_vehicles(db: Session, scope: Scope, geofence_id: str) -> dict[str, Any]:
    """Geofence view merged with its first bound rule and that rule's vehicles."""
    geofence = get_geofence_by_id(db, scope, geofence_id)
    rule_id = _first_bound_rule_id(db, scope, geofence_id)
    if not rule_id:
        raise NotFoundError("RULE_NOT_FOUND")
    rule = rules.get_rule_by_id(db, scope, rule_id)
    first_binding = rule["geofences"][0] if rule["geofences"] else {}
    return {
        "geofenceid": geofence["geofenceid"],
        "ruleid": rule["ruleid"],
        "ruletypeid": rule["ruletypeid"],
        "geofencename": geofence["geofencename"],
        "geofenceinfo": geofence["geofenceinfo"],
        "meta": geofence["meta"],
        "isactive": rule["isactive"],
        "actiontypeid": first_binding.get("actiontypeid"),
        "actiontype": first_binding.get("actiontype"),
        "vehicles": rule["vehicles"],
    }


@normalize_errors(logger)
def list_geofences_with_action_info(db: Session, scope: Scope) -> list[dict[str, Any]]:
    """
    Combined geofence/rule view for every circle geofence of the fleet.

    Each geofence is looked up on its own; one that fails (typically a
    geofence with no rule bound) is logged and left out of the result.
    Trip rules and polygons are filtered out.
    """
    geofence_ids = [
        row[0]
        for row in _geofence_query(db, scope.account_id)
        .filter(Geofence.fleetid == scope.fleet_id)
        .with_entities(Geofence.geofenceid)
        .all()
    ]
    results = []
    for geofence_id in geofence_ids:
        try:
            view = get_geofence_and_rule_with_vehicles(db, scope, geofence_id)
        except GeofenceError as exc:
            if exc.errcode == "RULE_NOT_FOUND":
                logger.debug("Geofence without rule skipped geofence_id=%s", geofence_id)
            else:
                log_exception(logger, "Skipping geofence in action listing", extra={"geofence_id": geofence_id}, exc=exc)
                # clear an aborted transaction before the next lookup
                db.rollback()
            continue
        if view["actiontypeid"] == ActionType.TRIP.value or view["ruletypeid"] == RuleType.TRIP.value:
            continue
        if view["geofenceinfo"].get("type") == POLYGON:
            continue
        results.append(view)
    return results
