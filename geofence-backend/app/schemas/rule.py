"""
Pydantic schemas for geofence rules.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .common import Name, UuidStr


class BindingMeta(BaseModel):
    duration: Optional[float] = None
    time: Optional[float] = None
    repeats: Optional[float] = None


class RuleGeoInfo(BaseModel):
    geofenceid: UuidStr
    seqno: Literal["0", "1"]
    actiontypeid: Literal["ENTRY", "EXIT", "ENTRY_EXIT"]
    meta: BindingMeta = Field(default_factory=BindingMeta)


class RuleBody(BaseModel):
    rulename: Name
    ruletypeid: Literal["ENTRY_EXIT", "TRIP"]
    meta: dict
    rulegeoinfo: List[RuleGeoInfo] = Field(min_length=1, max_length=2)


class RuleCreate(BaseModel):
    fleetid: UuidStr
    rule: RuleBody


class RuleUpdate(BaseModel):
    fleetid: UuidStr
    ruleid: UuidStr
    rulename: Optional[Name] = None
    ruletypeid: Optional[Literal["ENTRY_EXIT", "TRIP"]] = None
    meta: Optional[dict] = None
    rulegeoinfo: Optional[List[RuleGeoInfo]] = Field(default=None, min_length=1, max_length=2)


class RuleStateUpdate(BaseModel):
    fleetid: UuidStr
    ruleid: UuidStr
    isactive: bool


def bindings_of(items: Optional[List[RuleGeoInfo]]) -> Optional[list[dict]]:
    if items is None:
        return None
    return [item.model_dump(exclude_none=True) for item in items]
