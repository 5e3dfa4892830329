"""
ClickHouse access for the report layer.

Wraps one ``clickhouse-connect`` client per candidate server. Queries use
server-side typed parameters (``{name:Type}`` placeholders). On a
connection failure the wrapper moves to the next server, trying each at
most once per query.
"""

from __future__ import annotations

import logging
import re
import threading
from functools import lru_cache
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import clickhouse_connect
from clickhouse_connect.driver.exceptions import DatabaseError, OperationalError

from ..core.config import settings

logger = logging.getLogger("clickhouse")

UNKNOWN_TABLE_CODE = 60
_CODE_RE = re.compile(r"(?:error code|Code:)\s*(\d+)")


class ClickHouseError(RuntimeError):
    def __init__(self, message: str, *, code: Optional[int] = None):
        self.code = code
        super().__init__(message)


def error_code(exc: Exception) -> Optional[int]:
    """Server exception code carried by a driver error, if any."""
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    match = _CODE_RE.search(str(exc))
    return int(match.group(1)) if match else None


def connect(url: str, *, username: str, password: str, database: str, timeout_sec: float):
    parsed = urlparse(url)
    secure = parsed.scheme == "https"
    return clickhouse_connect.get_client(
        host=parsed.hostname or "localhost",
        port=parsed.port or (8443 if secure else 8123),
        interface="https" if secure else "http",
        username=username,
        password=password,
        database=database,
        connect_timeout=5,
        send_receive_timeout=timeout_sec,
        # concurrent bucket queries share this client
        autogenerate_session_id=False,
    )


class ClickHouseClient:
    def __init__(
        self,
        urls: list[str],
        *,
        username: str = "default",
        password: str = "",
        database: str = "default",
        timeout_sec: float = 30.0,
        client_factory: Optional[Callable[[str], Any]] = None,
    ):
        if not urls:
            raise ValueError("At least one ClickHouse URL is required")
        self.urls = list(urls)
        self._factory = client_factory or (
            lambda url: connect(
                url, username=username, password=password, database=database, timeout_sec=timeout_sec
            )
        )
        self._clients: dict[str, Any] = {}
        self._current = 0
        self._lock = threading.Lock()

    @property
    def current_url(self) -> str:
        return self.urls[self._current]

    def _client_for(self, url: str):
        with self._lock:
            client = self._clients.get(url)
            if client is None:
                client = self._factory(url)
                self._clients[url] = client
            return client

    def _advance(self, failed_index: int) -> None:
        with self._lock:
            self._clients.pop(self.urls[failed_index], None)
            if self._current == failed_index:
                self._current = (failed_index + 1) % len(self.urls)

    def query(self, query: str, params: Optional[dict[str, Any]] = None, *, allow_missing_table: bool = True) -> list[dict]:
        """Run a SELECT and return its rows; a missing table yields no rows."""
        last_exc: Optional[Exception] = None
        for _ in range(len(self.urls)):
            index = self._current
            url = self.urls[index]
            try:
                result = self._client_for(url).query(query, parameters=params or {})
            except OperationalError as exc:
                last_exc = exc
                logger.warning("Connection failed to %s, trying next: %s", url, exc)
                self._advance(index)
                continue
            except DatabaseError as exc:
                code = error_code(exc)
                if code == UNKNOWN_TABLE_CODE and allow_missing_table:
                    logger.info("ClickHouse table missing; treating as empty url=%s", url)
                    return []
                raise ClickHouseError(str(exc)[:500], code=code) from exc
            return list(result.named_results())
        raise ClickHouseError(f"All ClickHouse endpoints failed: {last_exc}") from last_exc

    def check_connection(self) -> bool:
        try:
            self.query("SELECT 1", allow_missing_table=False)
        except ClickHouseError as exc:
            logger.warning("ClickHouse connection check failed: %s", exc)
            return False
        return True


@lru_cache(maxsize=1)
def get_clickhouse_client() -> ClickHouseClient:
    return ClickHouseClient(
        settings.clickhouse_url_list,
        username=settings.clickhouse_username,
        password=settings.clickhouse_password,
        database=settings.clickhouse_database,
        timeout_sec=settings.clickhouse_timeout_sec,
    )
