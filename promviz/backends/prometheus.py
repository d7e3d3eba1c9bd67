"""Prometheus backend: PromQL range queries over the HTTP API."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from promviz.backends.base import (
    QUERY_STEP,
    QUERY_WINDOW,
    CloseError,
    ConnectError,
    DataPoint,
    QueryError,
    TimeSeriesResult,
    to_float,
)

logger = logging.getLogger(__name__)


class PrometheusBackend:
    def __init__(
        self,
        url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("Prometheus URL is required")
        self.url = url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.url, transport=transport)

    @property
    def name(self) -> str:
        return "prometheus"

    async def _get(self, path: str, params: dict[str, Any], timeout: float) -> Any:
        """GET an API path and return the ``data`` member of the envelope."""
        async with asyncio.timeout(timeout):
            resp = await self._client.get(path, params=params, timeout=timeout)
        try:
            body = resp.json()
        except ValueError as e:
            resp.raise_for_status()
            raise QueryError(f"unreadable response from {self.url}: {e}") from e

        if not isinstance(body, dict):
            raise QueryError(f"unexpected response from {self.url}")
        if body.get("status") != "success":
            error_type = body.get("errorType", "error")
            raise QueryError(f"{error_type}: {body.get('error', resp.reason_phrase)}")
        for warning in body.get("warnings") or []:
            logger.warning("prometheus: %s", warning)
        return body.get("data")

    async def connect(self, timeout: float) -> None:
        """Probe connectivity by listing label names for the last minute."""
        end = datetime.now(timezone.utc)
        params = {
            "start": (end - timedelta(minutes=1)).timestamp(),
            "end": end.timestamp(),
        }
        try:
            await self._get("/api/v1/labels", params, timeout)
        except (httpx.HTTPError, QueryError, TimeoutError) as e:
            raise ConnectError(
                f"failed to connect to Prometheus at {self.url}: {str(e) or 'timed out'}"
            ) from e

    async def query_time_series(self, timeout: float, expr: str) -> TimeSeriesResult:
        end = datetime.now(timezone.utc)
        params = {
            "query": expr,
            "start": (end - QUERY_WINDOW).timestamp(),
            "end": end.timestamp(),
            "step": f"{int(QUERY_STEP.total_seconds())}s",
        }
        try:
            data = await self._get("/api/v1/query_range", params, timeout)
        except TimeoutError as e:
            raise QueryError(f"query timed out after {timeout:g}s") from e
        except httpx.HTTPError as e:
            raise QueryError(f"query failed: {e}") from e

        if not isinstance(data, dict):
            raise QueryError("query failed: response has no data")
        result_type = data.get("resultType")
        if result_type != "matrix":
            raise QueryError(f"unsupported result type for range query: {result_type}")

        streams = data.get("result") or []
        if not isinstance(streams, list):
            raise QueryError("error reading query result: result is not a list")

        points: list[DataPoint] = []
        for stream in streams:
            if not isinstance(stream, dict) or not isinstance(stream.get("values") or [], list):
                raise QueryError("error reading query result: malformed matrix stream")
            for sample in stream.get("values") or []:
                try:
                    ts, raw = sample
                    timestamp = datetime.fromtimestamp(float(ts), tz=timezone.utc)
                except (TypeError, ValueError, OverflowError, OSError):
                    continue
                value = to_float(raw)
                if value is None:
                    continue
                points.append(DataPoint(timestamp=timestamp, value=value))
        return TimeSeriesResult(points)

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except httpx.HTTPError as e:
            raise CloseError(f"failed to close Prometheus client: {e}") from e
