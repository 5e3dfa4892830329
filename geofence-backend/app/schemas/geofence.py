"""
Pydantic schemas for geofence requests.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .common import Area, LatLng, Name, Tag, UuidStr, Vin


class GeofenceInfo(BaseModel):
    type: Literal["circle", "polygon"]
    latlngs: List[LatLng] = Field(min_length=1)
    radius: Optional[float] = None


class GeofenceMeta(BaseModel):
    address: Optional[str] = Field(default=None, max_length=255)
    tag: List[Tag] = Field(min_length=1)
    center: LatLng
    colour: str = Field(min_length=1, max_length=255)
    area: Area


class GeofenceCreate(BaseModel):
    fleetid: UuidStr
    geofencename: Name
    geofenceinfo: GeofenceInfo
    meta: GeofenceMeta


class GeofenceUpdate(BaseModel):
    fleetid: UuidStr
    geofenceid: UuidStr
    geofencename: Optional[Name] = None
    geofenceinfo: Optional[GeofenceInfo] = None
    meta: Optional[GeofenceMeta] = None


class GeofenceStateUpdate(BaseModel):
    fleetid: UuidStr
    geofenceid: UuidStr
    isactive: bool


class GeofenceRuleStateUpdate(GeofenceStateUpdate):
    ruleid: UuidStr


# Composite create: always a circle, centred on its first point.


class CircleInfo(BaseModel):
    latlngs: List[LatLng] = Field(min_length=1)
    radius: float


class CircleMeta(BaseModel):
    address: Optional[str] = Field(default=None, max_length=255)
    tag: List[Tag] = Field(min_length=1)
    colour: str = Field(min_length=1, max_length=255)
    area: Area


class CompositeRule(BaseModel):
    meta: dict
    actiontypeid: Literal["ENTRY", "EXIT", "ENTRY_EXIT"]


class GeofenceWithRuleCreate(BaseModel):
    fleetid: UuidStr
    geofencename: Name
    geofenceinfo: CircleInfo
    meta: CircleMeta
    rule: CompositeRule
    vehicles: List[Vin] = Field(min_length=1)
