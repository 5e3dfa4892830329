"""
API endpoints for geofence alert and trip reports.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...core.auth import GeofencePermissions, UserContext, get_current_user
from ...core.db import get_db
from ...integrations.clickhouse import ClickHouseClient, get_clickhouse_client
from ...schemas.report import ReportRequest
from ...services import reports
from ...services.access import authorize
from ..deps import get_geofence_permissions, respond


router = APIRouter(prefix="/api/v1/report", tags=["reports"])


@router.post("/alert")
def alert_report(
    payload: ReportRequest,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
    clickhouse: ClickHouseClient = Depends(get_clickhouse_client),
) -> dict:
    authorize(db, user, payload.fleetid, permissions, "alert_report")
    data = reports.alert_report(
        db,
        clickhouse,
        user.account_id,
        starttime=payload.starttime,
        endtime=payload.endtime,
        vinnos=payload.vinnos,
        ruleids=payload.ruleids,
    )
    return respond("Geo alert report fetched successfully", data)


@router.post("/trip")
def trip_report(
    payload: ReportRequest,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
    permissions: GeofencePermissions = Depends(get_geofence_permissions),
    clickhouse: ClickHouseClient = Depends(get_clickhouse_client),
) -> dict:
    authorize(db, user, payload.fleetid, permissions, "trip_report")
    data = reports.trip_report(
        db,
        clickhouse,
        user.account_id,
        starttime=payload.starttime,
        endtime=payload.endtime,
        vinnos=payload.vinnos,
        ruleids=payload.ruleids,
    )
    return respond("Geo trip report fetched successfully", data)
