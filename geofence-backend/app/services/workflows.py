"""
Multi-step geofence + rule workflows.

Each store call commits on its own, so a composite operation is driven by
`Saga`: every completed step registers a compensation, and when a later
step fails the compensations run newest first. Compensation failures are
logged and collected; if any occurred the caller gets a
`PartialRollbackError` chained to the original failure instead of the
original error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from ..core.errors import ConflictError, PartialRollbackError, ValidationError, log_exception, normalize_errors
from ..core.rule_types import RuleType, value_of
from ..models.rule import GeofenceRuleInfo
from . import assignments, geofences, rules
from .access import Scope

logger = logging.getLogger("workflows")


@dataclass
class SagaStep:
    name: str
    compensate: Optional[Callable[[], Any]] = None


@dataclass
class Saga:
    """Runs forward steps and unwinds the completed ones on failure."""

    name: str
    # called once before compensating, e.g. to clear a failed session
    reset: Optional[Callable[[], Any]] = None
    completed: list[SagaStep] = field(default_factory=list)

    def run(self, name: str, action: Callable[[], Any], compensate: Optional[Callable[[Any], Any]] = None) -> Any:
        try:
            result = action()
        except Exception as exc:
            self._unwind(name, exc)
            raise
        undo = (lambda: compensate(result)) if compensate else None
        self.completed.append(SagaStep(name=name, compensate=undo))
        return result

    def _unwind(self, failed_step: str, cause: Exception) -> None:
        logger.warning("Saga %s failed at step=%s, compensating: %s", self.name, failed_step, cause)
        if self.reset is not None:
            self.reset()
        failures: list[tuple[str, BaseException]] = []
        for step in reversed(self.completed):
            if step.compensate is None:
                continue
            try:
                step.compensate()
            except Exception as comp_exc:
                log_exception(
                    logger,
                    "Compensation failed",
                    extra={"saga": self.name, "step": step.name},
                    exc=comp_exc,
                )
                failures.append((step.name, comp_exc))
        self.completed.clear()
        if failures:
            raise PartialRollbackError(cause, failures) from cause


def _undo_geofence(db: Session, scope: Scope, geofence_id: str) -> None:
    geofences.update_geofence_state(db, scope, geofence_id, False)
    geofences.delete_geofence(db, scope, geofence_id)


def _undo_rule(db: Session, scope: Scope, rule_id: str) -> None:
    rules.update_rule_state(db, scope, rule_id, False)
    rules.delete_rule(db, scope, rule_id)


@normalize_errors(logger)
def create_geofence_with_rule(
    db: Session,
    scope: Scope,
    *,
    geofencename: str,
    geofenceinfo: dict,
    meta: dict,
    rule: dict,
    vehicles: list[str],
) -> dict[str, Any]:
    """
    Create a circle geofence, an ENTRY_EXIT rule bound to it and the rule's
    vehicle assignments, or none of them.
    """
    latlngs = geofenceinfo.get("latlngs") or []
    first = latlngs[0] if latlngs else {}
    circle = {"type": geofences.CIRCLE, "latlngs": latlngs, "radius": geofenceinfo.get("radius")}
    circle_meta = {
        "address": meta.get("address"),
        "tag": meta.get("tag"),
        "center": {"lat": first.get("lat"), "lng": first.get("lng")},
        "colour": meta.get("colour"),
        "area": meta.get("area"),
    }

    saga = Saga("create_geofence_with_rule", reset=db.rollback)
    created = saga.run(
        "geofence",
        lambda: geofences.create_geofence(db, scope, geofencename=geofencename, geofenceinfo=circle, meta=circle_meta),
        lambda result: _undo_geofence(db, scope, result["geofenceid"]),
    )
    geofence_id = created["geofenceid"]

    created_rule = saga.run(
        "rule",
        lambda: rules.create_rule(
            db,
            scope,
            rulename=f"{geofencename} Rule",
            ruletypeid=RuleType.ENTRY_EXIT.value,
            rulemeta=rule.get("meta") or {},
            bindings=[
                {
                    "geofenceid": geofence_id,
                    "seqno": 0,
                    "actiontypeid": value_of(rule.get("actiontypeid")),
                    "meta": {},
                }
            ],
        ),
        lambda result: _undo_rule(db, scope, result["ruleid"]),
    )

    saga.run("vehicles", lambda: assignments.add_rule_vehicles(db, scope, created_rule["ruleid"], vehicles))
    logger.info(
        "Geofence with rule created geofence_id=%s rule_id=%s fleet_id=%s",
        geofence_id,
        created_rule["ruleid"],
        scope.fleet_id,
    )
    return geofences.get_geofence_and_rule_with_vehicles(db, scope, geofence_id)


@normalize_errors(logger)
def delete_geofence_with_rule(db: Session, scope: Scope, geofence_id: str, rule_id: str) -> bool:
    """Delete a bound rule and then its geofence; both must already be inactive."""
    rule = rules.require_rule(db, scope, rule_id)
    if rule.isactive:
        raise ConflictError("RULE_ACTIVE")
    geofence = geofences.require_geofence(db, scope, geofence_id)
    if geofence.isactive:
        raise ConflictError("GEOFENCE_ACTIVE")
    bound = (
        db.query(GeofenceRuleInfo)
        .filter(
            GeofenceRuleInfo.accountid == scope.account_id,
            GeofenceRuleInfo.fleetid == scope.fleet_id,
            GeofenceRuleInfo.geofenceid == geofence_id,
            GeofenceRuleInfo.ruleid == rule_id,
        )
        .first()
    )
    if bound is None:
        raise ValidationError("INVALID_GEOFENCE_AND_RULE")

    # Not transactional: a failure after the rule is gone leaves the geofence in place.
    rules.delete_rule(db, scope, rule_id)
    geofences.delete_geofence(db, scope, geofence_id)
    logger.info("Geofence with rule deleted geofence_id=%s rule_id=%s", geofence_id, rule_id)
    return True
