"""
Rule-type and action-type taxonomy shared by every component.
"""

from __future__ import annotations

from enum import Enum


class RuleType(str, Enum):
    ENTRY_EXIT = "ENTRY_EXIT"
    TRIP = "TRIP"


class ActionType(str, Enum):
    ENTRY = "ENTRY"
    EXIT = "EXIT"
    ENTRY_EXIT = "ENTRY_EXIT"
    # Only meaningful as a rule type; never valid on a single binding.
    TRIP = "TRIP"


ASSIGNABLE_ACTION_TYPES = (ActionType.ENTRY, ActionType.EXIT, ActionType.ENTRY_EXIT)

RULE_TYPE_LABELS = {
    RuleType.ENTRY_EXIT: "Entry/Exit",
    RuleType.TRIP: "Trip",
}

ACTION_TYPE_LABELS = {
    ActionType.ENTRY: "Entry",
    ActionType.EXIT: "Exit",
    ActionType.ENTRY_EXIT: "Entry/Exit",
    ActionType.TRIP: "Trip",
}


def value_of(item) -> str | None:
    """Plain string value of an enum member or raw string."""
    if item is None:
        return None
    return item.value if isinstance(item, Enum) else str(item)
