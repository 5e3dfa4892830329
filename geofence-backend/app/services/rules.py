"""
Rule store: rules, their geofence bindings and the rule/action lookups.

A rule owns one or two ordered bindings (``geofenceruleinfo``). Bindings and
assignments are replaced or removed inside a single transaction together
with the rule row so a failure never leaves a half-written rule behind.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..core.db import transaction
from ..core.errors import ConflictError, NotFoundError, ValidationError, normalize_errors
from ..core.rule_types import ActionType, RuleType, value_of
from ..core.timeutils import epoch_ms, now_utc
from ..models.assignment import GeofenceRuleFleet, GeofenceRuleUser, GeofenceRuleVehicle
from ..models.fms import FleetTree, FleetVehicle, FmsUser, Vehicle
from ..models.geofence import Geofence
from ..models.rule import GeofenceRule, GeofenceRuleInfo, GeofenceRuleType, RuleGeofenceAction
from .access import Scope

logger = logging.getLogger("rules")


def tombstone_name(name: str) -> str:
    return f"{name}_{epoch_ms()}_deleted"


def _rule_query(db: Session, scope: Scope):
    return db.query(GeofenceRule).filter(
        GeofenceRule.accountid == scope.account_id,
        GeofenceRule.fleetid == scope.fleet_id,
        GeofenceRule.isdeleted.is_(False),
    )


def find_rule(db: Session, scope: Scope, rule_id: str) -> Optional[GeofenceRule]:
    return _rule_query(db, scope).filter(GeofenceRule.ruleid == rule_id).first()


def require_rule(db: Session, scope: Scope, rule_id: str) -> GeofenceRule:
    rule = find_rule(db, scope, rule_id)
    if rule is None:
        raise NotFoundError("RULE_NOT_FOUND")
    return rule


def _rule_name_taken(db: Session, scope: Scope, name: str, exclude_id: Optional[str] = None) -> bool:
    query = _rule_query(db, scope).filter(GeofenceRule.rulename == name)
    if exclude_id:
        query = query.filter(GeofenceRule.ruleid != exclude_id)
    return db.query(query.exists()).scalar()


def _ensure_geofences_active(db: Session, scope: Scope, geofence_ids: list[str]) -> None:
    # A missing geofence counts as not active.
    for geofence_id in geofence_ids:
        isactive = (
            db.query(Geofence.isactive)
            .filter(
                Geofence.accountid == scope.account_id,
                Geofence.fleetid == scope.fleet_id,
                Geofence.geofenceid == geofence_id,
                Geofence.isdeleted.is_(False),
            )
            .scalar()
        )
        if not isactive:
            raise ValidationError("GEOFENCE_NOT_ACTIVE")


def _binding(bindings: list[dict], index: int) -> dict:
    return bindings[index] if len(bindings) > index else {}


def validate_trip_bindings(bindings: list[dict]) -> None:
    """
    Reject binding pairs that cannot describe a trip.

    Bindings are compared positionally (seqno 0 then 1); a missing second
    binding never matches any of the rejected combinations.
    """
    first, second = _binding(bindings, 0), _binding(bindings, 1)
    a0, a1 = value_of(first.get("actiontypeid")), value_of(second.get("actiontypeid"))
    g0, g1 = first.get("geofenceid"), second.get("geofenceid")
    entry, exit_, entry_exit = ActionType.ENTRY.value, ActionType.EXIT.value, ActionType.ENTRY_EXIT.value

    if entry_exit in (a0, a1):
        raise ValidationError("INVALID_RULE_TYPE", "Type ENTRY_EXIT is not allowed for Trip rule")
    if a0 == exit_ and a1 == exit_:
        raise ValidationError("INVALID_RULE_TYPE", "Exit and Exit combination is not allowed")
    if g0 == g1 and a0 == entry and a1 == entry:
        raise ValidationError("INVALID_RULE_TYPE", "Entry and Entry combination is not allowed for same geofence")
    if g0 != g1 and {a0, a1} == {entry, exit_}:
        raise ValidationError(
            "INVALID_RULE_TYPE",
            "Entry and Exit or Exit and Entry combination is not allowed for different geofences",
        )


def _insert_bindings(db: Session, scope: Scope, rule_id: str, bindings: list[dict], now) -> None:
    for binding in bindings:
        db.add(
            GeofenceRuleInfo(
                accountid=scope.account_id,
                fleetid=scope.fleet_id,
                ruleid=rule_id,
                geofenceid=binding["geofenceid"],
                seqno=int(binding["seqno"]),
                actiontypeid=value_of(binding["actiontypeid"]),
                geofencerulemeta=binding.get("meta") or {},
                updatedat=now,
                updatedby=scope.user_id,
            )
        )


def _delete_rule_children(db: Session, scope: Scope, rule_id: str, models=None) -> None:
    for model in models or (GeofenceRuleInfo, GeofenceRuleVehicle, GeofenceRuleFleet, GeofenceRuleUser):
        db.query(model).filter(
            model.accountid == scope.account_id,
            model.fleetid == scope.fleet_id,
            model.ruleid == rule_id,
        ).delete(synchronize_session="fetch")


@normalize_errors(logger)
def create_rule(
    db: Session,
    scope: Scope,
    *,
    rulename: str,
    ruletypeid: str,
    rulemeta: Optional[dict],
    bindings: list[dict],
) -> dict[str, Any]:
    if _rule_name_taken(db, scope, rulename):
        raise ConflictError("RULE_NAME_EXISTS")
    _ensure_geofences_active(db, scope, [b["geofenceid"] for b in bindings])
    ruletypeid = value_of(ruletypeid)
    if ruletypeid == RuleType.TRIP.value:
        validate_trip_bindings(bindings)

    rule_id = str(uuid.uuid4())
    now = now_utc()
    with transaction(db, name="create_rule"):
        db.add(
            GeofenceRule(
                ruleid=rule_id,
                accountid=scope.account_id,
                fleetid=scope.fleet_id,
                rulename=rulename,
                ruletypeid=ruletypeid,
                isactive=True,
                rulemeta=rulemeta or {},
                createdat=now,
                createdby=scope.user_id,
                updatedat=now,
                updatedby=scope.user_id,
                isdeleted=False,
            )
        )
        db.flush()
        _insert_bindings(db, scope, rule_id, bindings, now)
    logger.info("Rule created rule_id=%s fleet_id=%s", rule_id, scope.fleet_id)
    return get_rule_by_id(db, scope, rule_id)


def _existing_bindings(db: Session, scope: Scope, rule_id: str) -> list[dict]:
    rows = (
        db.query(GeofenceRuleInfo)
        .filter(
            GeofenceRuleInfo.accountid == scope.account_id,
            GeofenceRuleInfo.fleetid == scope.fleet_id,
            GeofenceRuleInfo.ruleid == rule_id,
        )
        .order_by(GeofenceRuleInfo.seqno)
        .all()
    )
    return [{"geofenceid": r.geofenceid, "seqno": r.seqno, "actiontypeid": r.actiontypeid} for r in rows]


@normalize_errors(logger)
def update_rule(
    db: Session,
    scope: Scope,
    rule_id: str,
    *,
    rulename: Optional[str] = None,
    ruletypeid: Optional[str] = None,
    rulemeta: Optional[dict] = None,
    bindings: Optional[list[dict]] = None,
) -> dict[str, Any]:
    rule = require_rule(db, scope, rule_id)
    if bindings is not None:
        _ensure_geofences_active(db, scope, [b["geofenceid"] for b in bindings])
    if rulename and _rule_name_taken(db, scope, rulename, exclude_id=rule_id):
        raise ConflictError("RULE_NAME_EXISTS")

    effective_type = value_of(ruletypeid) or rule.ruletypeid
    if effective_type == RuleType.TRIP.value:
        validate_trip_bindings(bindings if bindings is not None else _existing_bindings(db, scope, rule_id))

    now = now_utc()
    with transaction(db, name="update_rule"):
        if rulename:
            rule.rulename = rulename
        if ruletypeid:
            rule.ruletypeid = value_of(ruletypeid)
        if rulemeta is not None:
            rule.rulemeta = rulemeta
        rule.updatedat = now
        rule.updatedby = scope.user_id
        if bindings is not None:
            _delete_rule_children(db, scope, rule_id, models=(GeofenceRuleInfo,))
            _insert_bindings(db, scope, rule_id, bindings, now)
    return {
        "ruleid": rule.ruleid,
        "rulename": rule.rulename,
        "ruletypeid": rule.ruletypeid,
        "isactive": rule.isactive,
        "rulemeta": rule.rulemeta,
    }


@normalize_errors(logger)
def update_rule_state(db: Session, scope: Scope, rule_id: str, isactive: bool) -> dict[str, Any]:
    rule = require_rule(db, scope, rule_id)
    with transaction(db, name="update_rule_state"):
        rule.isactive = bool(isactive)
        rule.updatedat = now_utc()
        rule.updatedby = scope.user_id
    return {
        "fleetid": rule.fleetid,
        "ruleid": rule.ruleid,
        "isactive": rule.isactive,
        "message": f"Rule {'activated' if isactive else 'deactivated'} successfully",
    }


@normalize_errors(logger)
def delete_rule(db: Session, scope: Scope, rule_id: str) -> bool:
    """Drop bindings and assignments, then tombstone the rule row."""
    rule = require_rule(db, scope, rule_id)
    if rule.isactive:
        raise ConflictError("RULE_ACTIVE")
    with transaction(db, name="delete_rule"):
        _delete_rule_children(db, scope, rule_id)
        rule.rulename = tombstone_name(rule.rulename)
        rule.isdeleted = True
        rule.updatedat = now_utc()
        rule.updatedby = scope.user_id
    logger.info("Rule deleted rule_id=%s fleet_id=%s", rule_id, scope.fleet_id)
    return True


@normalize_errors(logger)
def get_rule_by_id(db: Session, scope: Scope, rule_id: str) -> dict[str, Any]:
    rule = require_rule(db, scope, rule_id)
    ruletype = (
        db.query(GeofenceRuleType.ruletype).filter(GeofenceRuleType.ruletypeid == rule.ruletypeid).scalar()
    )

    geofences = (
        db.query(GeofenceRuleInfo, Geofence, RuleGeofenceAction.actiontype)
        .join(
            Geofence,
            (Geofence.accountid == GeofenceRuleInfo.accountid)
            & (Geofence.fleetid == GeofenceRuleInfo.fleetid)
            & (Geofence.geofenceid == GeofenceRuleInfo.geofenceid),
        )
        .join(RuleGeofenceAction, RuleGeofenceAction.actiontypeid == GeofenceRuleInfo.actiontypeid)
        .filter(
            GeofenceRuleInfo.accountid == scope.account_id,
            GeofenceRuleInfo.fleetid == scope.fleet_id,
            GeofenceRuleInfo.ruleid == rule_id,
        )
        .order_by(GeofenceRuleInfo.seqno)
        .all()
    )

    vehicles = (
        db.query(GeofenceRuleVehicle.vinno, Vehicle.license_plate)
        .join(
            FleetVehicle,
            (FleetVehicle.accountid == GeofenceRuleVehicle.accountid)
            & (FleetVehicle.vinno == GeofenceRuleVehicle.vinno),
        )
        .join(Vehicle, Vehicle.vinno == FleetVehicle.vinno)
        .filter(
            GeofenceRuleVehicle.accountid == scope.account_id,
            GeofenceRuleVehicle.fleetid == scope.fleet_id,
            GeofenceRuleVehicle.ruleid == rule_id,
        )
        .distinct()
        .all()
    )

    sfleets = (
        db.query(GeofenceRuleFleet.subfleetid, FleetTree.name)
        .join(
            FleetTree,
            (FleetTree.accountid == GeofenceRuleFleet.accountid) & (FleetTree.fleetid == GeofenceRuleFleet.subfleetid),
        )
        .filter(
            GeofenceRuleFleet.accountid == scope.account_id,
            GeofenceRuleFleet.fleetid == scope.fleet_id,
            GeofenceRuleFleet.ruleid == rule_id,
        )
        .all()
    )

    users = (
        db.query(GeofenceRuleUser.userid, FmsUser.displayname, GeofenceRuleUser.alertmeta)
        .join(FmsUser, FmsUser.userid == GeofenceRuleUser.userid)
        .filter(
            GeofenceRuleUser.accountid == scope.account_id,
            GeofenceRuleUser.fleetid == scope.fleet_id,
            GeofenceRuleUser.ruleid == rule_id,
        )
        .all()
    )

    return {
        "fleetid": rule.fleetid,
        "ruleid": rule.ruleid,
        "rulename": rule.rulename,
        "ruletypeid": rule.ruletypeid,
        "ruletype": ruletype,
        "isactive": rule.isactive,
        "rulemeta": rule.rulemeta,
        "geofences": [
            {
                "geofenceid": info.geofenceid,
                "geofencename": geofence.geofencename,
                "geofenceinfo": geofence.geofenceinfo,
                "meta": geofence.meta,
                "seqno": info.seqno,
                "actiontypeid": info.actiontypeid,
                "actiontype": actiontype,
                "geofencerulemeta": info.geofencerulemeta,
            }
            for info, geofence, actiontype in geofences
        ],
        "vehicles": [{"vinno": vinno, "regno": regno} for vinno, regno in vehicles],
        "sfleets": [{"subfleetid": subfleetid, "name": name} for subfleetid, name in sfleets],
        "users": [{"userid": userid, "name": name, "alertmeta": alertmeta} for userid, name, alertmeta in users],
    }


@normalize_errors(logger)
def list_rules(db: Session, account_id: str, fleet_ids: list[str]) -> list[dict[str, Any]]:
    rows = (
        db.query(GeofenceRule, GeofenceRuleType.ruletype)
        .join(GeofenceRuleType, GeofenceRuleType.ruletypeid == GeofenceRule.ruletypeid)
        .filter(
            GeofenceRule.accountid == account_id,
            GeofenceRule.fleetid.in_(fleet_ids),
            GeofenceRule.isdeleted.is_(False),
        )
        .order_by(GeofenceRule.createdat.desc())
        .all()
    )
    return [
        {
            "fleetid": rule.fleetid,
            "ruleid": rule.ruleid,
            "rulename": rule.rulename,
            "rulemeta": rule.rulemeta,
            "ruletype": ruletype,
            "isactive": rule.isactive,
        }
        for rule, ruletype in rows
    ]


@normalize_errors(logger)
def list_rule_types(db: Session) -> list[dict[str, str]]:
    rows = db.query(GeofenceRuleType).order_by(GeofenceRuleType.ruletypeid).all()
    return [{"ruletypeid": r.ruletypeid, "ruletype": r.ruletype} for r in rows]


@normalize_errors(logger)
def list_action_types(db: Session) -> list[dict[str, str]]:
    rows = (
        db.query(RuleGeofenceAction)
        .filter(RuleGeofenceAction.actiontypeid != ActionType.TRIP.value)
        .order_by(RuleGeofenceAction.actiontypeid)
        .all()
    )
    return [{"actiontypeid": r.actiontypeid, "actiontype": r.actiontype} for r in rows]
