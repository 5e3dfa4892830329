"""
ORM models for rule memberships: vehicles, sub-fleets and users.

These join rows are the only geofence data that is physically deleted.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class GeofenceRuleVehicle(Base):
    __tablename__ = "geofencerulevehicle"

    accountid: Mapped[str] = mapped_column(String(36), primary_key=True)
    fleetid: Mapped[str] = mapped_column(String(36), primary_key=True)
    ruleid: Mapped[str] = mapped_column(String(36), primary_key=True)
    vinno: Mapped[str] = mapped_column(String(17), primary_key=True)
    createdat: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    createdby: Mapped[str | None] = mapped_column(String(36), nullable=True)


class GeofenceRuleFleet(Base):
    __tablename__ = "geofencerulefleet"

    accountid: Mapped[str] = mapped_column(String(36), primary_key=True)
    fleetid: Mapped[str] = mapped_column(String(36), primary_key=True)
    ruleid: Mapped[str] = mapped_column(String(36), primary_key=True)
    subfleetid: Mapped[str] = mapped_column(String(36), primary_key=True)
    createdat: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    createdby: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updatedat: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updatedby: Mapped[str | None] = mapped_column(String(36), nullable=True)


class GeofenceRuleUser(Base):
    __tablename__ = "geofenceruleuser"

    accountid: Mapped[str] = mapped_column(String(36), primary_key=True)
    fleetid: Mapped[str] = mapped_column(String(36), primary_key=True)
    ruleid: Mapped[str] = mapped_column(String(36), primary_key=True)
    userid: Mapped[str] = mapped_column(String(36), primary_key=True)
    # {"emailnoti": bool, "pushnoti": bool}
    alertmeta: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    createdat: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    createdby: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updatedat: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updatedby: Mapped[str | None] = mapped_column(String(36), nullable=True)
