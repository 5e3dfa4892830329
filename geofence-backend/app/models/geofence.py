"""
ORM model for geofences.

A geofence is a named circle or polygon scoped to an account and fleet.
Rows are never physically removed: deletion sets ``isdeleted`` and renames
the row so the name can be reused.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class Geofence(Base):
    __tablename__ = "geofence"
    __table_args__ = (
        Index("ix_geofence_account_fleet", "accountid", "fleetid"),
    )

    geofenceid: Mapped[str] = mapped_column(String(36), primary_key=True)
    accountid: Mapped[str] = mapped_column(String(36), nullable=False)
    fleetid: Mapped[str] = mapped_column(String(36), nullable=False)
    geofencename: Mapped[str] = mapped_column(String(255), nullable=False)
    isactive: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # {"type": "circle"|"polygon", "latlngs": [{"lat", "lng"}], "radius": float}
    geofenceinfo: Mapped[dict] = mapped_column(JSONB, nullable=False)
    # {"address", "tag": [...], "center": {"lat", "lng"}, "colour", "area"}
    meta: Mapped[dict] = mapped_column(JSONB, nullable=False)
    createdat: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    createdby: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updatedat: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updatedby: Mapped[str | None] = mapped_column(String(36), nullable=True)
    isdeleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
