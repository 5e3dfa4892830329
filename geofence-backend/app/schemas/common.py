"""
Shared request field types.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, Field


def _check_uuid(value: str) -> str:
    try:
        uuid.UUID(value)
    except ValueError as exc:
        raise ValueError("Invalid UUID") from exc
    return value


UuidStr = Annotated[str, AfterValidator(_check_uuid)]
Name = Annotated[str, Field(min_length=1, max_length=255, pattern=r"^[A-Za-z0-9 _-]+$")]
Vin = Annotated[str, Field(min_length=17, max_length=17)]
Area = Annotated[str, Field(min_length=1, max_length=255, pattern=r"^\d+(\.\d+)?\s+sq\s+km$")]
Tag = Annotated[str, Field(min_length=1, max_length=255)]
RecursiveFlag = Literal["true", "false"]


class LatLng(BaseModel):
    lat: float
    lng: float


class AlertMeta(BaseModel):
    emailnoti: bool
    pushnoti: bool
