"""Backend contract shared by every metric data source."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol, runtime_checkable

# Every backend queries this trailing window at this resolution.
QUERY_WINDOW = timedelta(minutes=5)
QUERY_STEP = timedelta(minutes=1)


# ── Data types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DataPoint:
    timestamp: datetime
    value: float


@dataclass
class TimeSeriesResult:
    """Points in arrival order. Not guaranteed sorted; may be empty."""

    points: list[DataPoint] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class Query:
    name: str  # display key, not necessarily unique
    expr: str  # backend-specific query text


# ── Errors ─────────────────────────────────────────────────────────────────


class BackendError(Exception):
    """Base class for failures raised by a backend."""


class ConnectError(BackendError):
    pass


class QueryError(BackendError):
    pass


class CloseError(BackendError):
    pass


# ── Contract ───────────────────────────────────────────────────────────────


@runtime_checkable
class Backend(Protocol):
    """Capability set every data source provides.

    ``query_time_series`` must be safe to call concurrently; ``connect`` and
    ``close`` are each called once, outside of concurrent access.
    """

    @property
    def name(self) -> str: ...

    async def connect(self, timeout: float) -> None: ...

    async def query_time_series(self, timeout: float, expr: str) -> TimeSeriesResult: ...

    async def close(self) -> None: ...


# ── Parsing helpers ────────────────────────────────────────────────────────

_FRACTION = re.compile(r"\.(\d+)")


def parse_rfc3339(text: str) -> datetime:
    """Parse an RFC 3339 timestamp, tolerating nanosecond precision."""
    text = text.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # datetime only keeps microseconds
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def to_float(value: Any) -> float | None:
    """Convert a raw response value to a finite float, or None if it isn't one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value)
        except ValueError:
            return None
    else:
        return None
    # NaN/Inf samples (e.g. division by zero in PromQL) cannot be plotted
    return result if math.isfinite(result) else None
