"""
Data models for geofence rules.

A rule binds one or two geofences (``geofenceruleinfo`` rows ordered by
``seqno``) with an action type per binding. ``geofenceruletype`` and
``rulegeofenceaction`` are static lookups holding the display labels.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class GeofenceRuleType(Base):
    __tablename__ = "geofenceruletype"

    ruletypeid: Mapped[str] = mapped_column(String(32), primary_key=True)
    ruletype: Mapped[str] = mapped_column(String(64), nullable=False)


class RuleGeofenceAction(Base):
    __tablename__ = "rulegeofenceaction"

    actiontypeid: Mapped[str] = mapped_column(String(32), primary_key=True)
    actiontype: Mapped[str] = mapped_column(String(64), nullable=False)


class GeofenceRule(Base):
    __tablename__ = "geofencerule"
    __table_args__ = (
        Index("ix_geofencerule_account_fleet", "accountid", "fleetid"),
    )

    ruleid: Mapped[str] = mapped_column(String(36), primary_key=True)
    accountid: Mapped[str] = mapped_column(String(36), nullable=False)
    fleetid: Mapped[str] = mapped_column(String(36), nullable=False)
    rulename: Mapped[str] = mapped_column(String(255), nullable=False)
    ruletypeid: Mapped[str] = mapped_column(String(32), nullable=False)
    isactive: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    rulemeta: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    createdat: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    createdby: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updatedat: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updatedby: Mapped[str | None] = mapped_column(String(36), nullable=True)
    isdeleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class GeofenceRuleInfo(Base):
    """One rule-to-geofence binding."""

    __tablename__ = "geofenceruleinfo"
    __table_args__ = (
        Index("ix_geofenceruleinfo_geofence", "accountid", "fleetid", "geofenceid"),
    )

    accountid: Mapped[str] = mapped_column(String(36), primary_key=True)
    fleetid: Mapped[str] = mapped_column(String(36), primary_key=True)
    ruleid: Mapped[str] = mapped_column(String(36), primary_key=True)
    geofenceid: Mapped[str] = mapped_column(String(36), primary_key=True)
    seqno: Mapped[int] = mapped_column(Integer, primary_key=True)
    actiontypeid: Mapped[str] = mapped_column(String(32), nullable=False)
    geofencerulemeta: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    updatedat: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updatedby: Mapped[str | None] = mapped_column(String(36), nullable=True)
