"""InfluxDB v1 backend: InfluxQL queries over the /query endpoint."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from promviz.backends.base import (
    CloseError,
    ConnectError,
    DataPoint,
    QueryError,
    TimeSeriesResult,
    parse_rfc3339,
    to_float,
)

logger = logging.getLogger(__name__)

# Keyword → measurement used when a bare field name is given instead of a query.
# Checked in order; first match wins.
_MEASUREMENT_HINTS: list[tuple[tuple[str, ...], str]] = [
    (("cpu",), "cpu"),
    (("memory", "mem"), "mem"),
    (("disk",), "disk"),
    (("net",), "net"),
]
DEFAULT_MEASUREMENT = "metrics"


def default_measurement(expr: str) -> str:
    """Guess the measurement a bare field expression belongs to."""
    for keywords, measurement in _MEASUREMENT_HINTS:
        if any(k in expr for k in keywords):
            return measurement
    return DEFAULT_MEASUREMENT


def build_influxql_query(expr: str) -> str:
    """Return *expr* if it is a full SELECT, else wrap it as a 5-minute mean."""
    if "SELECT" in expr.upper():
        return expr
    return (
        f'SELECT mean("{expr}") FROM "{default_measurement(expr)}" '
        "WHERE time >= now() - 5m GROUP BY time(1m) fill(0) ORDER BY time DESC"
    )


def parse_influxql_response(body: Any) -> list[DataPoint]:
    """Extract points from the first series of the first statement result."""
    if not isinstance(body, dict):
        raise QueryError("error reading query result: unexpected response shape")
    if body.get("error"):
        raise QueryError(f"InfluxDB v1 query error: {body['error']}")

    results = body.get("results") or []
    if not isinstance(results, list):
        raise QueryError("error reading query result: results is not a list")
    if not results:
        return []
    result = results[0]
    if not isinstance(result, dict):
        raise QueryError("error reading query result: unexpected result shape")
    if result.get("error"):
        raise QueryError(f"InfluxDB v1 query error: {result['error']}")
    series = result.get("series") or []
    if not isinstance(series, list):
        raise QueryError("error reading query result: series is not a list")
    if not series:
        return []
    first = series[0]
    if not isinstance(first, dict):
        raise QueryError("error reading query result: unexpected series shape")
    rows = first.get("values") or []
    if not isinstance(rows, list):
        raise QueryError("error reading query result: values is not a list")

    points: list[DataPoint] = []
    for row in rows:
        if not isinstance(row, list):
            raise QueryError("error reading query result: unexpected row shape")
        if len(row) < 2 or not isinstance(row[0], str):
            continue
        try:
            timestamp = parse_rfc3339(row[0])
        except ValueError:
            continue
        # null comes from fill(0) windows with no data
        if row[1] is None:
            points.append(DataPoint(timestamp=timestamp, value=0.0))
            continue
        value = to_float(row[1])
        if value is None:
            continue
        points.append(DataPoint(timestamp=timestamp, value=value))
    return points


class InfluxDB1Backend:
    def __init__(
        self,
        url: str,
        database: str,
        username: str = "",
        password: str = "",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("InfluxDB v1 URL is required")
        if not database:
            raise ValueError("InfluxDB v1 database is required")
        self.url = url.rstrip("/")
        self.database = database
        self._client = httpx.AsyncClient(
            base_url=self.url,
            auth=(username, password) if username else None,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "influxdb1"

    async def _query(self, command: str, database: str, timeout: float) -> Any:
        params = {"q": command}
        if database:
            params["db"] = database
        async with asyncio.timeout(timeout):
            resp = await self._client.get("/query", params=params, timeout=timeout)
        try:
            body = resp.json()
        except ValueError as e:
            resp.raise_for_status()
            raise QueryError(f"error reading query result: {e}") from e
        if resp.is_error:
            message = body.get("error") if isinstance(body, dict) else None
            raise QueryError(f"InfluxDB v1 query error: {message or resp.reason_phrase}")
        return body

    async def connect(self, timeout: float) -> None:
        """Probe connectivity with SHOW DATABASES."""
        try:
            body = await self._query("SHOW DATABASES", "", timeout)
            parse_influxql_response(body)
        except (httpx.HTTPError, QueryError, TimeoutError) as e:
            raise ConnectError(
                f"failed to connect to InfluxDB v1 at {self.url}: {str(e) or 'timed out'}"
            ) from e

    async def query_time_series(self, timeout: float, expr: str) -> TimeSeriesResult:
        command = build_influxql_query(expr)
        logger.debug("influxql query: %s", command)
        try:
            body = await self._query(command, self.database, timeout)
        except TimeoutError as e:
            raise QueryError(f"query timed out after {timeout:g}s") from e
        except httpx.HTTPError as e:
            raise QueryError(f"query failed: {e}") from e
        return TimeSeriesResult(parse_influxql_response(body))

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except httpx.HTTPError as e:
            raise CloseError(f"failed to close InfluxDB v1 client: {e}") from e
