"""InfluxDB v2 backend: Flux queries over the /api/v2/query endpoint."""

from __future__ import annotations

import asyncio
import csv
import io
import logging

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

_PROBE_TEMPLATE = """
from(bucket: "{bucket}")
  |> range(start: -1m)
  |> limit(n: 1)
"""

# Wraps a bare filter predicate into a full 5-minute, 1-minute-step query.
_FILTER_TEMPLATE = """
from(bucket: "{bucket}")
  |> range(start: -5m)
  |> filter(fn: (r) => {expr})
  |> aggregateWindow(every: 1m, fn: mean, createEmpty: true)
  |> fill(value: 0.0)
  |> sort(columns: ["_time"], desc: true)
"""


def build_flux_query(bucket: str, expr: str) -> str:
    """Return *expr* unchanged if it is full Flux, else wrap it as a filter."""
    if "from(bucket:" in expr:
        return expr
    return _FILTER_TEMPLATE.format(bucket=bucket, expr=expr)


def parse_flux_csv(text: str) -> list[DataPoint]:
    """Extract (_time, _value) pairs from a Flux CSV response.

    Tables are separated by blank lines and each starts with its own header
    row. Rows whose value isn't numeric are skipped; an error table raises.
    """
    points: list[DataPoint] = []
    header: list[str] | None = None

    for row in csv.reader(io.StringIO(text)):
        if not row or not any(cell.strip() for cell in row):
            header = None
            continue
        if row[0].startswith("#"):
            continue
        if header is None:
            header = row
            continue

        record = dict(zip(header, row))
        if "error" in record and "_time" not in record:
            raise QueryError(f"error reading query result: {record['error']}")
        raw_time = record.get("_time")
        value = to_float(record.get("_value"))
        if not raw_time or value is None:
            continue
        try:
            timestamp = parse_rfc3339(raw_time)
        except ValueError:
            continue
        points.append(DataPoint(timestamp=timestamp, value=value))

    return points


class InfluxDBBackend:
    def __init__(
        self,
        url: str,
        token: str,
        org: str,
        bucket: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("InfluxDB URL is required")
        if not token:
            raise ValueError("InfluxDB token is required")
        if not org:
            raise ValueError("InfluxDB organization is required")
        if not bucket:
            raise ValueError("InfluxDB bucket is required")
        self.url = url.rstrip("/")
        self.org = org
        self.bucket = bucket
        self._client = httpx.AsyncClient(
            base_url=self.url,
            headers={
                "Authorization": f"Token {token}",
                "Accept": "application/csv",
                "Content-Type": "application/vnd.flux",
            },
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "influxdb"

    async def _query(self, flux: str, timeout: float) -> str:
        async with asyncio.timeout(timeout):
            resp = await self._client.post(
                "/api/v2/query",
                params={"org": self.org},
                content=flux,
                timeout=timeout,
            )
        if resp.is_error:
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("message"):
                message = body["message"]
            else:
                message = resp.text or resp.reason_phrase
            raise QueryError(f"{resp.status_code}: {message}")
        return resp.text

    async def connect(self, timeout: float) -> None:
        """Probe connectivity with a one-row query against the bucket."""
        try:
            await self._query(_PROBE_TEMPLATE.format(bucket=self.bucket), timeout)
        except (httpx.HTTPError, QueryError, TimeoutError) as e:
            raise ConnectError(
                f"failed to connect to InfluxDB at {self.url}: {str(e) or 'timed out'}"
            ) from e

    async def query_time_series(self, timeout: float, expr: str) -> TimeSeriesResult:
        flux = build_flux_query(self.bucket, expr)
        logger.debug("flux query: %s", flux.strip())
        try:
            text = await self._query(flux, timeout)
        except TimeoutError as e:
            raise QueryError(f"query timed out after {timeout:g}s") from e
        except httpx.HTTPError as e:
            raise QueryError(f"query failed: {e}") from e
        except QueryError as e:
            raise QueryError(f"query failed: {e}") from e

        try:
            return TimeSeriesResult(parse_flux_csv(text))
        except csv.Error as e:
            raise QueryError(f"error reading query result: {e}") from e

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except httpx.HTTPError as e:
            raise CloseError(f"failed to close InfluxDB client: {e}") from e
