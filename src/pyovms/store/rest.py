"""PostgREST-dialect telemetry store over aiohttp."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from pyovms._redact import redact_for_log
from pyovms.exceptions import OvmsStoreError

_logger = logging.getLogger(__name__)

_REST_PREFIX = "/rest/v1"


class RestTelemetryStore:
    """Writes rows to a hosted Postgres REST endpoint.

    Updates and deletes filter on ``id=eq.<row_id>``; a filter that matches
    nothing succeeds with no rows affected, which gives the required no-op
    semantics for unknown identifiers.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http_session: aiohttp.ClientSession,
        *,
        timeout: float = 15.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._api_key,
            "authorization": f"Bearer {self._api_key}",
            "content-type": "application/json",
            "prefer": "return=minimal",
        }

    def _url(self, table: str) -> str:
        return f"{self._base_url}{_REST_PREFIX}/{table}"

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        row: Mapping[str, Any] | None = None,
    ) -> None:
        url = self._url(table)
        body = None if row is None else json.dumps(dict(row), separators=(",", ":"), default=str)
        _logger.debug("%s %s %s row=%s", method, url, dict(params or {}), redact_for_log(row))
        try:
            async with self._http.request(
                method, url, params=params, data=body, headers=self._headers(), timeout=self._timeout
            ) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    raise OvmsStoreError(
                        f"HTTP {resp.status} from {method} {table}: {text[:200]}",
                        status_code=resp.status,
                        table=table,
                    )
        except OvmsStoreError:
            raise
        except aiohttp.ClientError as exc:
            raise OvmsStoreError(f"{method} {table} failed: {exc}", table=table) from exc
        except TimeoutError as exc:
            raise OvmsStoreError(f"{method} {table} timed out after {self._timeout.total}s", table=table) from exc

    async def insert(self, table: str, row: Mapping[str, Any]) -> None:
        await self._request("POST", table, row=row)

    async def update(self, table: str, row_id: str, row: Mapping[str, Any]) -> None:
        await self._request("PATCH", table, params={"id": f"eq.{row_id}"}, row=row)

    async def delete(self, table: str, row_id: str) -> None:
        await self._request("DELETE", table, params={"id": f"eq.{row_id}"})
