"""Mock backend: seeded random data for demos and tests, no network."""

from __future__ import annotations

import asyncio
import random
import time
from datetime import datetime, timezone

from promviz.backends.base import QUERY_STEP, DataPoint, TimeSeriesResult

# expr → (base, spread); anything else draws from 0–1000
VALUE_RANGES: dict[str, tuple[float, float]] = {
    "cpu_usage":     (50.0, 30.0),      # 50–80 %
    "memory_usage":  (4000.0, 2000.0),  # 4000–6000 MB
    "disk_usage":    (20.0, 40.0),      # 20–60 %
    "network_bytes": (1000.0, 5000.0),  # 1000–6000 bytes
}
DEFAULT_RANGE = (0.0, 1000.0)

POINTS_PER_QUERY = 5
CONNECT_DELAY = 0.1
MAX_QUERY_DELAY_MS = 50


class MockBackend:
    def __init__(self, seed: int = 0) -> None:
        self.seed = seed or time.time_ns()
        self._rand = random.Random(self.seed)

    @property
    def name(self) -> str:
        return "mock"

    async def connect(self, timeout: float) -> None:
        await asyncio.sleep(min(CONNECT_DELAY, timeout))

    async def query_time_series(self, timeout: float, expr: str) -> TimeSeriesResult:
        await asyncio.sleep(self._rand.randrange(MAX_QUERY_DELAY_MS) / 1000)

        base, spread = VALUE_RANGES.get(expr, DEFAULT_RANGE)
        now = datetime.now(timezone.utc)
        points = [
            DataPoint(
                timestamp=now - i * QUERY_STEP,
                value=base + self._rand.random() * spread,
            )
            for i in range(POINTS_PER_QUERY - 1, -1, -1)
        ]
        return TimeSeriesResult(points)

    async def close(self) -> None:
        pass
