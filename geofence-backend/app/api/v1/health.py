"""
Health endpoints for the geofence backend.

Liveness plus a relational database round trip.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...core.errors import log_exception
from ...core.timeutils import now_utc


router = APIRouter(prefix="/api/v1/health", tags=["health"])

logger = logging.getLogger("health")


@router.get("")
def health(db: Session = Depends(get_db)):
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        log_exception(logger, "Health database check failed", exc=exc)
        database = "unavailable"
    body = {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "timestamp_utc": now_utc().isoformat(),
    }
    return JSONResponse(status_code=200 if database == "ok" else 503, content=body)
