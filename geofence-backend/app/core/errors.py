"""
Shared error types and error-handling helpers for the geofence backend.

Stores raise typed `GeofenceError` subclasses from their pre-checks. Each
carries a machine-readable ``errcode`` which the HTTP layer maps to a status
and a client-facing message. Anything that is not a `GeofenceError` is an
internal failure: it is logged with full detail and reduced to a generic
INTERNAL_ERROR so no internal detail reaches the client.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")


# errcode -> (HTTP status, client message)
ERROR_CODES: dict[str, tuple[int, str]] = {
    # validation / conflict / not-found (reported as bad requests)
    "GEOFENCE_EXISTS": (400, "Geofence already exists"),
    "INVALID_RADIUS": (400, "Radius is not valid"),
    "INVALID_CIRCLE": (400, "Circle is not valid"),
    "INVALID_POLYGON": (400, "Polygon is not valid"),
    "GEOFENCE_NAME_EXISTS": (400, "Geofence name already exists"),
    "GEOFENCE_NOT_FOUND": (400, "Geofence not found"),
    "GEOFENCE_IN_USE": (400, "Geofence is in use"),
    "GEOFENCE_ACTIVE": (400, "Geofence is active"),
    "RULE_ACTIVE": (400, "Rule is active"),
    "INVALID_GEOFENCE_AND_RULE": (400, "Geofence and rule are not valid"),
    "RULE_NAME_EXISTS": (400, "Rule name already exists"),
    "GEOFENCE_NOT_ACTIVE": (400, "Geofence is not active"),
    "RULE_NOT_FOUND": (400, "Rule not found"),
    "INVALID_RULE_TYPE": (400, "Rule type is not valid"),
    "INVALID_TIME_RANGE": (400, "Invalid time range"),
    "NO_VALID_TIME_BUCKETS": (400, "Invalid time range"),
    "INVALID_INPUT": (400, "Invalid vehicles or rules provided"),
    "INPUT_ERROR": (400, "Invalid input"),
    # identity
    "TOKEN_REQUIRED": (401, "Authentication token is required"),
    "INVALID_TOKEN": (401, "Authentication token is not valid"),
    # forbidden
    "INVALID_USER_ACCESS": (403, "User does not have access to do this action"),
    "PERMISSIONS_DENIED": (403, "User does not have access to geofence module"),
    "USER_NOT_FOUND_IN_RULE": (403, "User not found in any rule"),
    "CREATE_GEOFENCE_PERMISSION_DENIED": (403, "User does not have permission to create geofence"),
    "GET_GEOFENCE_PERMISSION_DENIED": (403, "User does not have permission to get this geofence"),
    "LIST_GEOFENCES_PERMISSION_DENIED": (403, "User does not have permission to list geofences"),
    "GET_GEOFENCES_WITH_ACTION_INFO_PERMISSION_DENIED": (
        403,
        "User does not have permission to list geofences with action info",
    ),
    "UPDATE_GEOFENCE_PERMISSION_DENIED": (403, "User does not have permission to update geofence"),
    "UPDATE_GEOFENCE_STATE_PERMISSION_DENIED": (403, "User does not have permission to update geofence state"),
    "DELETE_GEOFENCE_PERMISSION_DENIED": (403, "User does not have permission to delete geofence"),
    "LIST_GEO_RULES_PERMISSION_DENIED": (403, "User does not have permission to list geofence rules"),
    "CREATE_RULE_PERMISSION_DENIED": (403, "User does not have permission to create rule"),
    "LIST_RULES_PERMISSION_DENIED": (403, "User does not have permission to list rules"),
    "GET_RULE_PERMISSION_DENIED": (403, "User does not have permission to fetch rule"),
    "UPDATE_RULE_PERMISSION_DENIED": (403, "User does not have permission to update rule"),
    "UPDATE_RULE_STATE_PERMISSION_DENIED": (403, "User does not have permission to update rule state"),
    "DELETE_RULE_PERMISSION_DENIED": (403, "User does not have permission to delete rule"),
    "LIST_ASSIGNABLE_RULE_PERMISSION_DENIED": (
        403,
        "User does not have permission to list vehicles, assignable to rules",
    ),
    "LIST_ASIGN_RULE_FLEETS_PERM_DENIED": (403, "User does not have permission to list fleets, assignable to rules"),
    "LIST_ASIGN_RULE_USERS_PERM_DENIED": (403, "User does not have permission to list users, assignable to rules"),
    "ADD_RULE_VEHS_PERMISSION_DENIED": (403, "User does not have permission to add vehicles to rule"),
    "DELETE_RULE_VEHS_PERMISSION_DENIED": (403, "User does not have permission to delete vehicle from rule"),
    "ADD_RULE_FLEETS_PERMISSION_DENIED": (403, "User does not have permission to add fleets to rule"),
    "DELETE_RULE_FLEETS_PERMISSION_DENIED": (403, "User does not have permission to delete fleets from rule"),
    "ADD_RULE_USERS_PERMISSION_DENIED": (403, "User does not have permission to add users to rule"),
    "UPDATE_USER_NOTI_PERMISSION_DENIED": (403, "User does not have permission to update user notification"),
    "DELETE_RULE_USERS_PERMISSION_DENIED": (403, "User does not have permission to delete users from rule"),
    "ALERT_REPORT_PERM_DENIED": (403, "User does not have permission to view alert report"),
    "TRIP_REPORT_PERM_DENIED": (403, "User does not have permission to view trip report"),
    # internal
    "INTERNAL_ERROR": (500, "Something went wrong"),
    "ROLLBACK_FAILED": (500, "Something went wrong"),
    "PARTIAL_ROLLBACK": (500, "Something went wrong"),
    "REQUEST_TIMEOUT": (503, "Request timed out"),
}


class GeofenceError(Exception):
    """Base class for errors that carry a machine-readable code."""

    kind = "internal"
    default_code = "INTERNAL_ERROR"

    def __init__(self, errcode: str | None = None, errmsg: str | None = None, *, detail: str | None = None):
        self.errcode = errcode or self.default_code
        self.errmsg = errmsg
        # server-side only; never rendered to the client
        self.detail = detail
        super().__init__(detail or errmsg or self.errcode)

    @property
    def status_code(self) -> int:
        return ERROR_CODES.get(self.errcode, ERROR_CODES["INTERNAL_ERROR"])[0]

    @property
    def message(self) -> str:
        if self.errmsg:
            return self.errmsg
        return ERROR_CODES.get(self.errcode, ERROR_CODES["INTERNAL_ERROR"])[1]

    def to_dict(self) -> dict[str, Any]:
        return {"errcode": self.errcode, "msg": self.message}


class NotFoundError(GeofenceError):
    kind = "not_found"


class ConflictError(GeofenceError):
    kind = "conflict"


class ValidationError(GeofenceError):
    kind = "validation"
    default_code = "INPUT_ERROR"


class ForbiddenError(GeofenceError):
    kind = "forbidden"
    default_code = "PERMISSIONS_DENIED"


class UnauthorizedError(GeofenceError):
    kind = "unauthorized"
    default_code = "INVALID_TOKEN"


class InternalError(GeofenceError):
    kind = "internal"


class TransactionRollbackError(InternalError):
    """The operation failed and the rollback failed too."""

    default_code = "ROLLBACK_FAILED"


class PartialRollbackError(InternalError):
    """A multi-step workflow failed and at least one compensation failed."""

    default_code = "PARTIAL_ROLLBACK"

    def __init__(self, cause: BaseException, failures: list[tuple[str, BaseException]]):
        self.cause = cause
        self.failures = failures
        names = ", ".join(name for name, _ in failures)
        super().__init__(detail=f"compensation failed for [{names}] after: {cause!r}")


def _format_extra(extra: dict | None) -> str:
    if not extra:
        return ""
    parts: list[str] = []
    for key, value in extra.items():
        if value is None:
            continue
        parts.append(f"{key}={value}")
    return f" {' '.join(parts)}" if parts else ""


def log_exception(logger: logging.Logger, msg: str, *, extra: dict | None = None, exc: Exception | None = None) -> None:
    """
    Log an exception with context. Uses logger.exception for stack traces.
    """
    suffix = _format_extra(extra)
    if exc is not None:
        logger.error(f"{msg}{suffix}: {exc}", exc_info=exc)
        return
    logger.exception(f"{msg}{suffix}")


def normalize_errors(logger: logging.Logger) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorate a service facade method so unclassified failures become
    INTERNAL_ERROR. Typed errors pass through untouched.
    """

    def _decorator(fn: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(fn)
        def _wrapped(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except GeofenceError:
                raise
            except Exception as exc:
                log_exception(logger, f"{fn.__name__} failed", exc=exc)
                raise InternalError(detail=str(exc)) from exc

        return _wrapped

    return _decorator


def input_error_message(messages: list[str]) -> str:
    """Collapse request validation messages into one client-facing line."""
    if not messages:
        return ERROR_CODES["INPUT_ERROR"][1]
    if len(messages) == 1:
        return messages[0]
    if len(messages) <= 3:
        return ", ".join(messages)
    return f"Please fix {len(messages)} validation errors and try again."
