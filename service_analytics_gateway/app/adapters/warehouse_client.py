"""
Async ClickHouse HTTP client used as the analytics warehouse boundary.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

import httpx

from shared.errors import UpstreamError
from shared.logging import get_logger

from ..domain.planner import WarehouseQuery


_INTEGER_COLUMNS = ("impressions", "product_page_views", "downloads")


class WarehouseClient:
    """Executes planned queries against ClickHouse's HTTP interface.

    Values travel as ``param_<name>`` query-string entries and are bound
    server-side; the SQL text never contains caller data. Every call is
    bounded by ``timeout``; exceeding it, or being cancelled, triggers a
    best-effort ``KILL QUERY`` for the in-flight query id.
    """

    def __init__(
        self,
        base_url: str,
        *,
        database: str = "default",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.database = database
        self.timeout = timeout
        self.logger = get_logger("gateway.warehouse")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout + 1.0),
            transport=transport,
        )
        self._background: set = set()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def execute(self, query: WarehouseQuery) -> List[Dict[str, Any]]:
        """Run a planned query and return normalized rows."""
        query_id = str(uuid.uuid4())
        started = time.perf_counter()
        try:
            payload = await asyncio.wait_for(
                self._post(query.sql, query.params(), query_id=query_id),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            self.logger.error("Warehouse query timed out", query_id=query_id, timeout=self.timeout)
            self._kill_in_background(query_id)
            raise UpstreamError("Warehouse query timed out", details={"query_id": query_id}) from exc
        except asyncio.CancelledError:
            self.logger.info("Warehouse query cancelled", query_id=query_id)
            self._kill_in_background(query_id)
            raise
        except httpx.HTTPError as exc:
            self.logger.error("Warehouse query failed", query_id=query_id, error=str(exc))
            raise UpstreamError("Warehouse query failed", details={"query_id": query_id, "error": str(exc)}) from exc

        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            raise UpstreamError("Warehouse response missing 'data' array", details={"query_id": query_id})

        self.logger.debug(
            "Warehouse query completed",
            query_id=query_id,
            row_count=len(rows),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return [normalize_row(row) for row in rows]

    async def ping(self) -> bool:
        """Return True when ClickHouse responds successfully."""
        try:
            response = await self._client.get("/ping")
            response.raise_for_status()
            return True
        except httpx.HTTPError:
            return False

    async def _post(self, sql: str, params: Mapping[str, Any], *, query_id: str) -> Dict[str, Any]:
        query_params: Dict[str, Any] = {
            "database": self.database,
            "query_id": query_id,
            "max_execution_time": int(self.timeout) or 1,
        }
        for key, value in params.items():
            query_params[f"param_{key}"] = format_parameter(value)

        response = await self._client.post("/", params=query_params, content=sql.encode("utf-8"))
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as exc:
            raise httpx.DecodingError("Warehouse returned non-JSON payload") from exc

    def _kill_in_background(self, query_id: str) -> None:
        task = asyncio.ensure_future(self._kill(query_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _kill(self, query_id: str) -> None:
        try:
            response = await self._client.post(
                "/",
                params={"param_query_id": query_id},
                content=b"KILL QUERY WHERE query_id = {query_id:String} ASYNC",
                timeout=2.0,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self.logger.warning("Failed to kill warehouse query", query_id=query_id, error=str(exc))


def format_parameter(value: Any) -> str:
    """Encode a bind value in ClickHouse's parameter text format."""
    if isinstance(value, (list, tuple, set, frozenset)):
        return "[" + ",".join(_quote(str(item)) for item in value) + "]"
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def normalize_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Coerce warehouse JSON values (64-bit ints arrive quoted) into plain numbers."""
    normalized = dict(row)
    for column in _INTEGER_COLUMNS:
        normalized[column] = _to_int(row.get(column))
    normalized["conversion_rate"] = _to_float(row.get("conversion_rate"))
    return normalized


def _to_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
