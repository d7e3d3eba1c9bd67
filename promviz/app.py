"""Application lifecycle: backend selection, periodic refresh, shutdown.

Backend I/O runs on an asyncio event loop owned by a worker thread. Each
refresh cycle fans out one task per query; every task hands its own result
to the PanelManager as soon as it resolves. The curses loop on the main
thread picks those up via ``PanelManager.pending_redraws()``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

from promviz.backends.base import (
    Backend,
    BackendError,
    CloseError,
    ConnectError,
    Query,
    QueryError,
)
from promviz.backends.influxdb import InfluxDBBackend
from promviz.backends.influxdb1 import InfluxDB1Backend
from promviz.backends.mock import MockBackend
from promviz.backends.prometheus import PrometheusBackend
from promviz.config import ConfigError, UnsupportedBackendError, get_queries
from promviz.panels import PanelManager

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 10.0


def create_backend(config: dict[str, Any]) -> Backend:
    """Build the backend named by ``config["backend"]`` (default prometheus).

    Raises:
        UnsupportedBackendError: For an unknown backend name.
        ConfigError: If the backend's section is missing a required field.
    """
    name = config.get("backend") or "prometheus"
    section: dict[str, Any] = config.get(name) or {}
    try:
        if name == "prometheus":
            return PrometheusBackend(section.get("url", ""))
        if name == "influxdb":
            return InfluxDBBackend(
                url=section.get("url", ""),
                token=section.get("token", ""),
                org=section.get("org", ""),
                bucket=section.get("bucket", ""),
            )
        if name == "influxdb1":
            return InfluxDB1Backend(
                url=section.get("url", ""),
                database=section.get("database", ""),
                username=section.get("username", ""),
                password=section.get("password", ""),
            )
        if name == "mock":
            return MockBackend(seed=int(section.get("seed", 0)))
    except ValueError as e:
        raise ConfigError(f"failed to create backend: {e}") from e
    raise UnsupportedBackendError(str(name))


class App:
    def __init__(
        self,
        config: dict[str, Any],
        backend: Backend,
        panels: PanelManager | None = None,
    ) -> None:
        self.config = config
        self.backend = backend
        self.queries: list[Query] = get_queries(config)
        self.panels = panels if panels is not None else PanelManager(self.queries)

        self.refresh_interval = float(config["refresh_interval"])
        self.connect_timeout = float(config["connect_timeout"])
        self.query_timeout = float(config["query_timeout"])

        self._loop = asyncio.new_event_loop()
        self._thread: threading.Thread | None = None
        self._ticker: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._cycle = 0
        self._stop_lock = threading.Lock()
        self._stopped = False

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> App:
        """Create the backend and connect to it. Any failure here is fatal."""
        backend = create_backend(config)
        logger.info("using %s backend", backend.name)
        app = cls(config, backend)
        try:
            app.connect()
        except BaseException:
            app.stop()
            raise
        return app

    # ── Worker loop ────────────────────────────────────────────────────────

    def _ensure_loop(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._loop.run_forever, name="promviz-refresh", daemon=True
            )
            self._thread.start()

    def _submit(self, coro: Any, timeout: float | None = None) -> Any:
        self._ensure_loop()
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout)

    def connect(self) -> None:
        """Probe the backend once. Raises ConnectError; never retries."""
        self._submit(self._connect())
        logger.info("connected to %s", self.backend.name)

    async def _connect(self) -> None:
        try:
            async with asyncio.timeout(self.connect_timeout):
                await self.backend.connect(self.connect_timeout)
        except TimeoutError as e:
            raise ConnectError(
                f"timed out connecting to {self.backend.name} "
                f"after {self.connect_timeout:g}s"
            ) from e

    def start(self) -> None:
        """Run one refresh cycle now and another every refresh_interval."""
        self._ensure_loop()
        self._loop.call_soon_threadsafe(self._start_ticker)

    def _start_ticker(self) -> None:
        if self._ticker is None and not self._stopped:
            self._ticker = self._loop.create_task(self._tick_forever())

    async def _tick_forever(self) -> None:
        next_tick = self._loop.time()
        while True:
            self.refresh()
            next_tick += self.refresh_interval
            await asyncio.sleep(max(0.0, next_tick - self._loop.time()))

    # ── Refresh cycle ──────────────────────────────────────────────────────

    def refresh(self) -> list[asyncio.Task[None]]:
        """Launch one task per query. Must be called on the worker loop."""
        cycle = self._cycle
        self._cycle += 1
        deadline = self._loop.time() + self.query_timeout
        logger.debug("refresh cycle %d: %d queries", cycle, len(self.queries))

        tasks: list[asyncio.Task[None]] = []
        for index, query in enumerate(self.queries):
            task = self._loop.create_task(self._refresh_one(index, query, cycle, deadline))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            tasks.append(task)
        return tasks

    def run_cycle(self, timeout: float | None = None) -> None:
        """Run a single refresh cycle to completion from the calling thread."""

        async def _cycle() -> None:
            await asyncio.gather(*self.refresh(), return_exceptions=True)

        self._submit(_cycle(), timeout)

    async def _refresh_one(self, index: int, query: Query, cycle: int, deadline: float) -> None:
        try:
            async with asyncio.timeout_at(deadline):
                result = await self.backend.query_time_series(self.query_timeout, query.expr)
        except TimeoutError:
            error: BackendError = QueryError(f"query timed out after {self.query_timeout:g}s")
        except BackendError as e:
            error = e
        except Exception as e:
            logger.exception("query %r raised unexpectedly", query.name)
            error = QueryError(f"unexpected error: {e!r}")
        else:
            self.panels.update_time_series(index, result, None, cycle)
            return

        logger.warning("query %r failed: %s", query.name, error)
        self.panels.update_time_series(index, None, error, cycle)

    # ── Shutdown ───────────────────────────────────────────────────────────

    async def _shutdown(self) -> None:
        pending: list[asyncio.Task[None]] = list(self._in_flight)
        if self._ticker is not None:
            pending.append(self._ticker)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("cancelled %d in-flight task(s)", len(pending))

        try:
            await self.backend.close()
        except CloseError as e:
            logger.error("failed to close %s backend: %s", self.backend.name, e)

    def stop(self) -> None:
        """Stop refreshing, drain in-flight queries and close the backend.

        Safe to call more than once and from any thread except the worker.
        """
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True

        logger.info("shutting down")
        self._submit(self._shutdown(), timeout=SHUTDOWN_TIMEOUT)
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=SHUTDOWN_TIMEOUT)
        if not self._loop.is_running():
            self._loop.close()
