"""
Read-only mappings of the fleet-management (FMS) core tables.

The FMS service owns these tables; this service only reads them to resolve
fleet hierarchy, fleet membership and vehicle/user display names. They live
in the schema named by ``FMS_CORE_SCHEMA`` (unset means the default schema,
as used by the SQLite test database).
"""

from __future__ import annotations

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from ..core.config import settings
from . import Base

FMS_SCHEMA = settings.fms_core_schema


class FleetTree(Base):
    __tablename__ = "fleet_tree"
    __table_args__ = {"schema": FMS_SCHEMA}

    accountid: Mapped[str] = mapped_column(String(36), primary_key=True)
    fleetid: Mapped[str] = mapped_column(String(36), primary_key=True)
    # None for the account's root fleet
    pfleetid: Mapped[str | None] = mapped_column(String(36), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    isdeleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class FleetVehicle(Base):
    __tablename__ = "fleet_vehicle"
    __table_args__ = {"schema": FMS_SCHEMA}

    accountid: Mapped[str] = mapped_column(String(36), primary_key=True)
    fleetid: Mapped[str] = mapped_column(String(36), primary_key=True)
    vinno: Mapped[str] = mapped_column(String(17), primary_key=True)


class Vehicle(Base):
    __tablename__ = "vehicle"
    __table_args__ = {"schema": FMS_SCHEMA}

    vinno: Mapped[str] = mapped_column(String(17), primary_key=True)
    license_plate: Mapped[str | None] = mapped_column(String(32), nullable=True)


class FmsUser(Base):
    __tablename__ = "users"
    __table_args__ = {"schema": FMS_SCHEMA}

    userid: Mapped[str] = mapped_column(String(36), primary_key=True)
    displayname: Mapped[str | None] = mapped_column(String(255), nullable=True)


class UserFleet(Base):
    __tablename__ = "user_fleet"
    __table_args__ = {"schema": FMS_SCHEMA}

    accountid: Mapped[str] = mapped_column(String(36), primary_key=True)
    fleetid: Mapped[str] = mapped_column(String(36), primary_key=True)
    userid: Mapped[str] = mapped_column(String(36), primary_key=True)


class FleetUserRole(Base):
    __tablename__ = "fleet_user_role"
    __table_args__ = {"schema": FMS_SCHEMA}

    accountid: Mapped[str] = mapped_column(String(36), primary_key=True)
    fleetid: Mapped[str] = mapped_column(String(36), primary_key=True)
    userid: Mapped[str] = mapped_column(String(36), primary_key=True)
    roleid: Mapped[str] = mapped_column(String(36), primary_key=True)


class AccountVehicleSubscription(Base):
    __tablename__ = "account_vehicle_subscription"
    __table_args__ = {"schema": FMS_SCHEMA}

    accountid: Mapped[str] = mapped_column(String(36), primary_key=True)
    vinno: Mapped[str] = mapped_column(String(17), primary_key=True)
