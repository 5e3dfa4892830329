"""
Entry point for the geofence backend.

This script creates the FastAPI application, includes all API routers,
and installs the error handlers and the request timeout middleware. Run
with:

    uvicorn app.main:app --reload

"""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api import api_router
from .core.config import get_app_env, settings
from .core.db import SessionContext, engine
from .core.errors import ERROR_CODES, GeofenceError, input_error_message, log_exception
from .core.logging_config import setup_logging
from .models import Base, SERVICE_TABLES
from .scripts.run_migrations import run_migrations_to_head
from .services.lookup_seed import seed_lookups


logger = logging.getLogger("api")


def _error_body(errcode: str, msg: str | None = None) -> dict:
    return {"errcode": errcode, "msg": msg or ERROR_CODES[errcode][1]}


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="Geofence Backend", version="0.1.0")
    # Include API routers
    app.include_router(api_router)

    @app.exception_handler(GeofenceError)
    async def _geofence_error(request: Request, exc: GeofenceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("Request failed path=%s errcode=%s detail=%s", request.url.path, exc.errcode, exc.detail)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        messages = [str(err.get("msg", "")) for err in exc.errors()]
        return JSONResponse(status_code=400, content=_error_body("INPUT_ERROR", input_error_message(messages)))

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        log_exception(logger, "Unhandled request error", extra={"path": request.url.path}, exc=exc)
        return JSONResponse(status_code=500, content=_error_body("INTERNAL_ERROR"))

    @app.middleware("http")
    async def _request_timeout(request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=settings.request_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning("Request timed out path=%s after=%ss", request.url.path, settings.request_timeout_sec)
            return JSONResponse(status_code=503, content=_error_body("REQUEST_TIMEOUT"))

    # Ensure tables exist for local use
    @app.on_event("startup")
    def _init_db() -> None:
        startup_logger = logging.getLogger("startup")
        env = get_app_env()
        if settings.auto_create_db:
            try:
                Base.metadata.create_all(bind=engine, tables=SERVICE_TABLES)
            except Exception as exc:
                log_exception(startup_logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        if settings.auto_run_migrations:
            try:
                run_migrations_to_head()
            except Exception as exc:
                log_exception(startup_logger, "DB migrations failed", exc=exc)
                if env == "prod":
                    raise
        if settings.auto_create_db and settings.auto_seed_lookups:
            try:
                with SessionContext() as db:
                    seed_lookups(db)
            except Exception as exc:
                log_exception(startup_logger, "Seed lookups failed", exc=exc)
                if env == "prod":
                    raise

    return app


app = create_app()
