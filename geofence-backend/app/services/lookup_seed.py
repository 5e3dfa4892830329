"""
Seed the rule-type and action-type lookup tables.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..core.db import transaction
from ..core.rule_types import ACTION_TYPE_LABELS, RULE_TYPE_LABELS
from ..models.rule import GeofenceRuleType, RuleGeofenceAction

logger = logging.getLogger("lookup_seed")


def seed_lookups(db: Session) -> int:
    """Insert any missing lookup rows; returns how many were created."""
    created = 0
    with transaction(db, name="seed_lookups"):
        existing_rule_types = {row[0] for row in db.query(GeofenceRuleType.ruletypeid).all()}
        for rule_type, label in RULE_TYPE_LABELS.items():
            if rule_type.value not in existing_rule_types:
                db.add(GeofenceRuleType(ruletypeid=rule_type.value, ruletype=label))
                created += 1

        existing_actions = {row[0] for row in db.query(RuleGeofenceAction.actiontypeid).all()}
        for action_type, label in ACTION_TYPE_LABELS.items():
            if action_type.value not in existing_actions:
                db.add(RuleGeofenceAction(actiontypeid=action_type.value, actiontype=label))
                created += 1
    if created:
        logger.info("Seeded lookup rows count=%s", created)
    return created
