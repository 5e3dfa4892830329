"""
Pydantic schemas for rule assignment requests.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from .common import AlertMeta, UuidStr, Vin


class RuleVehicles(BaseModel):
    fleetid: UuidStr
    ruleid: UuidStr
    vinnos: List[Vin] = Field(min_length=1)


class RuleFleets(BaseModel):
    fleetid: UuidStr
    ruleid: UuidStr
    fleets: List[UuidStr] = Field(min_length=1)


class RuleUsers(BaseModel):
    fleetid: UuidStr
    ruleid: UuidStr
    users: List[UuidStr] = Field(min_length=1)


class RuleUsersAdd(RuleUsers):
    alertmeta: AlertMeta


class UserNotiUpdate(BaseModel):
    fleetid: UuidStr
    ruleid: UuidStr
    userid: UuidStr
    alertmeta: AlertMeta
