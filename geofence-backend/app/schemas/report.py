"""
Pydantic schemas for alert and trip report requests.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from .common import UuidStr, Vin


class ReportRequest(BaseModel):
    fleetid: UuidStr
    ruleids: Optional[List[UuidStr]] = None
    vinnos: Optional[List[Vin]] = None
    # epoch milliseconds
    starttime: int
    endtime: int
