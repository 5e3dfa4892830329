"""
SQLAlchemy model base class for the geofence backend.

This package defines ORM models for geofences, rules, rule bindings and
rule assignments owned by the service, plus read-only mappings of the
fleet-management (FMS) reference tables the service queries. All models
inherit from the declarative `Base` defined here.
"""

from __future__ import annotations

from sqlalchemy import JSON
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB


@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return compiler.process(JSON(), **kw)


from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .geofence import Geofence  # noqa: E402,F401
from .rule import GeofenceRule, GeofenceRuleInfo, GeofenceRuleType, RuleGeofenceAction  # noqa: E402,F401
from .assignment import GeofenceRuleVehicle, GeofenceRuleFleet, GeofenceRuleUser  # noqa: E402,F401
from .fms import (  # noqa: E402,F401
    FleetTree,
    FleetVehicle,
    Vehicle,
    FmsUser,
    UserFleet,
    FleetUserRole,
    AccountVehicleSubscription,
)

# Tables this service owns and migrates; the FMS tables belong to another service.
SERVICE_TABLES = [
    Geofence.__table__,
    GeofenceRuleType.__table__,
    RuleGeofenceAction.__table__,
    GeofenceRule.__table__,
    GeofenceRuleInfo.__table__,
    GeofenceRuleVehicle.__table__,
    GeofenceRuleFleet.__table__,
    GeofenceRuleUser.__table__,
]

__all__ = [
    "Base",
    "SERVICE_TABLES",

    # Geofences / Rules
    "Geofence",
    "GeofenceRule",
    "GeofenceRuleInfo",
    "GeofenceRuleType",
    "RuleGeofenceAction",

    # Assignments
    "GeofenceRuleVehicle",
    "GeofenceRuleFleet",
    "GeofenceRuleUser",

    # FMS reference tables
    "FleetTree",
    "FleetVehicle",
    "Vehicle",
    "FmsUser",
    "UserFleet",
    "FleetUserRole",
    "AccountVehicleSubscription",
]
