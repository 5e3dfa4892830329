"""
HTTP client for the fleet-management (FMS) API.

Every call forwards the caller's session cookie; the FMS API answers with
the caller's own view of permissions and fleet hierarchy.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Optional

import requests

from ..core.config import settings

logger = logging.getLogger("fms_client")


class FmsApiError(RuntimeError):
    def __init__(self, path: str, *, status_code: Optional[int] = None, detail: str = ""):
        self.path = path
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"FMS API {path} failed status={status_code}: {detail}")


class FmsClient:
    def __init__(self, base_url: str, *, timeout_sec: float = 20.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = (5, timeout_sec)
        self.session = session or requests.Session()

    def _get(self, path: str, cookie: Optional[str], params: Optional[dict] = None) -> Any:
        headers = {"Accept": "application/json"}
        if cookie:
            headers["Cookie"] = cookie
        try:
            response = self.session.get(self.base_url + path, headers=headers, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FmsApiError(path, detail=str(exc)) from exc
        if response.status_code // 100 != 2:
            raise FmsApiError(path, status_code=response.status_code, detail=response.text[:500])
        try:
            return response.json()
        except ValueError as exc:
            raise FmsApiError(path, status_code=response.status_code, detail="response was not JSON") from exc

    def get_my_permissions(self, fleet_id: str, cookie: Optional[str]) -> dict:
        """Return the ``data`` object: ``permissions`` and ``permissionsbymodule``."""
        body = self._get(f"/api/v1/fms/account/fleet/{fleet_id}/getmyperms", cookie)
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise FmsApiError("getmyperms", detail="missing data")
        return data

    def get_subfleets(self, fleet_id: str, cookie: Optional[str], recursive: bool = False) -> list[str]:
        body = self._get(
            f"/api/v1/fms/account/fleet/{fleet_id}/subfleets",
            cookie,
            params={"recursive": "true" if recursive else "false"},
        )
        rows = body.get("data") if isinstance(body, dict) else None
        return [str(row["fleetid"]) for row in rows or [] if isinstance(row, dict) and row.get("fleetid")]

    def get_recursive_fleets(self, fleet_id: str, cookie: Optional[str], recursive: bool = False) -> list[str]:
        """The fleet itself followed by its sub-fleets."""
        subfleets = self.get_subfleets(fleet_id, cookie, recursive)
        return [fleet_id, *[f for f in subfleets if f != fleet_id]]


@lru_cache(maxsize=1)
def get_fms_client() -> FmsClient:
    return FmsClient(settings.fms_api_url, timeout_sec=settings.fms_api_timeout_sec)
