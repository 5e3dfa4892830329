"""
API package for the geofence backend.

This package aggregates all API routers to be included in the FastAPI
application. The API is versioned under ``/api/v1``.
"""

from fastapi import APIRouter, Depends
from .v1.geofences import router as geofences_router
from .v1.rules import router as rules_router
from .v1.assignments import router as assignments_router
from .v1.reports import router as reports_router
from .v1.health import router as health_router
from ..core.auth import get_current_user

api_router = APIRouter()
protected = [Depends(get_current_user)]
api_router.include_router(geofences_router, dependencies=protected)
api_router.include_router(rules_router, dependencies=protected)
api_router.include_router(assignments_router, dependencies=protected)
api_router.include_router(reports_router, dependencies=protected)
api_router.include_router(health_router)
