"""
Assignment store: the vehicles, sub-fleets and users attached to a rule.

Add and remove are idempotent. Every request is de-duplicated, each item is
classified on its own, and the outcome is reported per item, e.g.
``{"vehiclesAdded": [...], "vehiclesSkipped": [...]}``. The eligible rows
are then written in a single transaction.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.db import transaction
from ..core.errors import ForbiddenError, normalize_errors
from ..core.timeutils import now_utc
from ..integrations.fms_client import FmsClient
from ..models.assignment import GeofenceRuleFleet, GeofenceRuleUser, GeofenceRuleVehicle
from ..models.fms import AccountVehicleSubscription, FleetTree, FleetVehicle, FmsUser, UserFleet, Vehicle
from .access import Scope
from .rules import require_rule

logger = logging.getLogger("assignments")


def _dedupe(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _member_filter(model, scope: Scope, rule_id: str):
    return and_(
        model.accountid == scope.account_id,
        model.fleetid == scope.fleet_id,
        model.ruleid == rule_id,
    )


def _assigned(db: Session, model, column, scope: Scope, rule_id: str, values: list[str]) -> set[str]:
    if not values:
        return set()
    rows = db.query(column).filter(_member_filter(model, scope, rule_id), column.in_(values)).all()
    return {row[0] for row in rows}


# Assignable listings


@normalize_errors(logger)
def list_assignable_vehicles(db: Session, scope: Scope, fleet_ids: list[str], rule_id: str) -> list[dict[str, Any]]:
    require_rule(db, scope, rule_id)
    rows = (
        db.query(FleetVehicle.vinno, Vehicle.license_plate, FleetVehicle.fleetid)
        .join(Vehicle, Vehicle.vinno == FleetVehicle.vinno)
        .outerjoin(
            GeofenceRuleVehicle,
            and_(
                GeofenceRuleVehicle.vinno == FleetVehicle.vinno,
                GeofenceRuleVehicle.accountid == FleetVehicle.accountid,
                GeofenceRuleVehicle.fleetid.in_(fleet_ids),
                GeofenceRuleVehicle.ruleid == rule_id,
            ),
        )
        .filter(
            FleetVehicle.accountid == scope.account_id,
            FleetVehicle.fleetid.in_(fleet_ids),
            GeofenceRuleVehicle.vinno.is_(None),
        )
        .order_by(FleetVehicle.fleetid, FleetVehicle.vinno)
        .all()
    )
    vehicles = [{"vinno": vinno, "regno": plate or vinno, "fleetid": fleetid} for vinno, plate, fleetid in rows]
    if not settings.get_subscribed_vins_only:
        return vehicles

    subscribed = {
        row[0]
        for row in db.query(AccountVehicleSubscription.vinno)
        .filter(AccountVehicleSubscription.accountid == scope.account_id)
        .all()
    }
    return [v for v in vehicles if v["vinno"] in subscribed]


@normalize_errors(logger)
def list_assignable_fleets(db: Session, scope: Scope, fleet_ids: list[str], rule_id: str) -> list[dict[str, Any]]:
    require_rule(db, scope, rule_id)
    rows = (
        db.query(FleetTree.fleetid, FleetTree.name)
        .outerjoin(
            GeofenceRuleFleet,
            and_(
                GeofenceRuleFleet.accountid == FleetTree.accountid,
                GeofenceRuleFleet.subfleetid == FleetTree.fleetid,
                GeofenceRuleFleet.fleetid == scope.fleet_id,
                GeofenceRuleFleet.ruleid == rule_id,
            ),
        )
        .filter(
            FleetTree.accountid == scope.account_id,
            FleetTree.fleetid.in_(fleet_ids),
            FleetTree.isdeleted.is_(False),
            GeofenceRuleFleet.subfleetid.is_(None),
        )
        .order_by(FleetTree.fleetid)
        .all()
    )
    return [{"fleetid": fleetid, "name": name} for fleetid, name in rows]


@normalize_errors(logger)
def list_assignable_users(db: Session, scope: Scope, fleet_ids: list[str], rule_id: str) -> list[dict[str, Any]]:
    require_rule(db, scope, rule_id)
    rows = (
        db.query(UserFleet.userid, FmsUser.displayname, UserFleet.fleetid)
        .join(FmsUser, FmsUser.userid == UserFleet.userid)
        .outerjoin(
            GeofenceRuleUser,
            and_(
                GeofenceRuleUser.userid == UserFleet.userid,
                GeofenceRuleUser.accountid == UserFleet.accountid,
                GeofenceRuleUser.fleetid.in_(fleet_ids),
                GeofenceRuleUser.ruleid == rule_id,
            ),
        )
        .filter(
            UserFleet.accountid == scope.account_id,
            UserFleet.fleetid.in_(fleet_ids),
            GeofenceRuleUser.userid.is_(None),
        )
        .order_by(FmsUser.displayname)
        .all()
    )
    return [{"userid": userid, "displayname": name, "fleetid": fleetid} for userid, name, fleetid in rows]


# Vehicles


def _vehicle_in_account(db: Session, account_id: str, vinno: str) -> bool:
    query = db.query(FleetVehicle).filter(FleetVehicle.accountid == account_id, FleetVehicle.vinno == vinno)
    return db.query(query.exists()).scalar()


@normalize_errors(logger)
def add_rule_vehicles(db: Session, scope: Scope, rule_id: str, vinnos: list[str]) -> dict[str, list[str]]:
    require_rule(db, scope, rule_id)
    vinnos = _dedupe(vinnos)
    assigned = _assigned(db, GeofenceRuleVehicle, GeofenceRuleVehicle.vinno, scope, rule_id, vinnos)

    added: list[str] = []
    skipped: list[str] = []
    for vinno in vinnos:
        # any fleet of the account, so vehicles listed from sub-fleets stay addable
        if vinno not in assigned and _vehicle_in_account(db, scope.account_id, vinno):
            added.append(vinno)
        else:
            skipped.append(vinno)

    if added:
        now = now_utc()
        with transaction(db, name="add_rule_vehicles"):
            db.add_all(
                GeofenceRuleVehicle(
                    accountid=scope.account_id,
                    fleetid=scope.fleet_id,
                    ruleid=rule_id,
                    vinno=vinno,
                    createdat=now,
                    createdby=scope.user_id,
                )
                for vinno in added
            )
    return {"vehiclesAdded": added, "vehiclesSkipped": skipped}


def _delete_members(db: Session, model, column, scope: Scope, rule_id: str, values: list[str], *, name: str):
    existing = _assigned(db, model, column, scope, rule_id, values)
    deleted = [v for v in values if v in existing]
    missing = [v for v in values if v not in existing]
    if deleted:
        with transaction(db, name=name):
            db.query(model).filter(_member_filter(model, scope, rule_id), column.in_(deleted)).delete(
                synchronize_session="fetch"
            )
    return deleted, missing


@normalize_errors(logger)
def delete_rule_vehicles(db: Session, scope: Scope, rule_id: str, vinnos: list[str]) -> dict[str, list[str]]:
    require_rule(db, scope, rule_id)
    deleted, missing = _delete_members(
        db, GeofenceRuleVehicle, GeofenceRuleVehicle.vinno, scope, rule_id, _dedupe(vinnos), name="delete_rule_vehicles"
    )
    return {"vehiclesDeleted": deleted, "vehiclesNotExists": missing}


# Fleets


@normalize_errors(logger)
def add_rule_fleets(
    db: Session,
    scope: Scope,
    rule_id: str,
    fleets: list[str],
    *,
    fms_client: FmsClient,
    cookie: Optional[str],
) -> dict[str, list[str]]:
    """Attach sub-fleets; only fleets under the rule's fleet (per the FMS API) qualify."""
    require_rule(db, scope, rule_id)
    fleets = _dedupe(fleets)
    closure = set(fms_client.get_recursive_fleets(scope.fleet_id, cookie, recursive=True))
    assigned = _assigned(db, GeofenceRuleFleet, GeofenceRuleFleet.subfleetid, scope, rule_id, fleets)

    added = [f for f in fleets if f in closure and f not in assigned]
    skipped = [f for f in fleets if f not in added]

    if added:
        now = now_utc()
        with transaction(db, name="add_rule_fleets"):
            db.add_all(
                GeofenceRuleFleet(
                    accountid=scope.account_id,
                    fleetid=scope.fleet_id,
                    ruleid=rule_id,
                    subfleetid=fleet,
                    createdat=now,
                    createdby=scope.user_id,
                    updatedat=now,
                    updatedby=scope.user_id,
                )
                for fleet in added
            )
    return {"fleetsAdded": added, "fleetsSkipped": skipped}


@normalize_errors(logger)
def delete_rule_fleets(db: Session, scope: Scope, rule_id: str, fleets: list[str]) -> dict[str, list[str]]:
    require_rule(db, scope, rule_id)
    deleted, missing = _delete_members(
        db, GeofenceRuleFleet, GeofenceRuleFleet.subfleetid, scope, rule_id, _dedupe(fleets), name="delete_rule_fleets"
    )
    return {"fleetsDeleted": deleted, "fleetsNotExists": missing}


# Users


def is_user_assignable(db: Session, scope: Scope, rule_id: str, user_id: str) -> bool:
    """True when the user belongs to the fleet and is not yet attached to the rule."""
    query = (
        db.query(UserFleet.userid)
        .outerjoin(
            GeofenceRuleUser,
            and_(
                GeofenceRuleUser.userid == UserFleet.userid,
                GeofenceRuleUser.accountid == UserFleet.accountid,
                GeofenceRuleUser.fleetid == scope.fleet_id,
                GeofenceRuleUser.ruleid == rule_id,
            ),
        )
        .filter(
            UserFleet.accountid == scope.account_id,
            UserFleet.fleetid == scope.fleet_id,
            UserFleet.userid == user_id,
            GeofenceRuleUser.userid.is_(None),
        )
    )
    return db.query(query.exists()).scalar()


@normalize_errors(logger)
def add_rule_users(
    db: Session, scope: Scope, rule_id: str, users: list[str], alertmeta: dict
) -> dict[str, list[str]]:
    require_rule(db, scope, rule_id)
    added: list[str] = []
    skipped: list[str] = []
    for user_id in _dedupe(users):
        (added if is_user_assignable(db, scope, rule_id, user_id) else skipped).append(user_id)

    if added:
        now = now_utc()
        with transaction(db, name="add_rule_users"):
            db.add_all(
                GeofenceRuleUser(
                    accountid=scope.account_id,
                    fleetid=scope.fleet_id,
                    ruleid=rule_id,
                    userid=user_id,
                    alertmeta=dict(alertmeta),
                    createdat=now,
                    createdby=scope.user_id,
                    updatedat=now,
                    updatedby=scope.user_id,
                )
                for user_id in added
            )
    return {"usersAdded": added, "usersSkipped": skipped}


@normalize_errors(logger)
def update_user_noti(db: Session, scope: Scope, rule_id: str, user_id: str, alertmeta: dict) -> dict[str, Any]:
    """
    Replace a user's notification preferences on a rule.

    The guard rejects a user who is still *assignable* (a fleet member with
    no row on the rule). A user who is neither a fleet member nor attached
    passes the guard and the update touches no row.
    """
    require_rule(db, scope, rule_id)
    if is_user_assignable(db, scope, rule_id, user_id):
        raise ForbiddenError("USER_NOT_FOUND_IN_RULE")
    with transaction(db, name="update_user_noti"):
        db.query(GeofenceRuleUser).filter(
            _member_filter(GeofenceRuleUser, scope, rule_id),
            GeofenceRuleUser.userid == user_id,
        ).update(
            {
                GeofenceRuleUser.alertmeta: dict(alertmeta),
                GeofenceRuleUser.updatedat: now_utc(),
                GeofenceRuleUser.updatedby: scope.user_id,
            },
            synchronize_session="fetch",
        )
    return {"userid": user_id, "alertmeta": alertmeta}


@normalize_errors(logger)
def delete_rule_users(db: Session, scope: Scope, rule_id: str, users: list[str]) -> dict[str, list[str]]:
    require_rule(db, scope, rule_id)
    deleted, missing = _delete_members(
        db, GeofenceRuleUser, GeofenceRuleUser.userid, scope, rule_id, _dedupe(users), name="delete_rule_users"
    )
    return {"usersDeleted": deleted, "usersNotExists": missing}
