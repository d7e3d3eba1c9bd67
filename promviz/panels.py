"""Per-query display state and the panel focus/scroll state machine.

Refresh tasks write query results here from the worker thread; the UI loop
reads them back when it drains ``pending_redraws()``. Only the UI loop ever
touches the terminal.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field, replace

from promviz.backends.base import DataPoint, Query, TimeSeriesResult
from promviz.graph import fmt_time

logger = logging.getLogger(__name__)

MAX_VISIBLE_PANELS = 3
WAITING_TEXT = "Time Range: Waiting for data..."


@dataclass
class QueryHistory:
    """Latest result for one query. An error keeps the previous series."""

    name: str
    time_series: TimeSeriesResult = field(default_factory=TimeSeriesResult)
    last_error: BaseException | None = None


class PanelManager:
    def __init__(self, queries: list[Query], max_visible: int = MAX_VISIBLE_PANELS) -> None:
        self._lock = threading.Lock()
        self._histories = [QueryHistory(name=q.name) for q in queries]
        self._applied_cycle = [-1] * len(queries)
        self._redraws: queue.SimpleQueue[int] = queue.SimpleQueue()

        self.focus_index = 0
        self.scroll_offset = 0
        # ≤2 queries are all shown; more scroll through a fixed window
        self.visible_count = min(len(queries), max_visible)

    def __len__(self) -> int:
        return len(self._histories)

    # ── Navigation ─────────────────────────────────────────────────────────

    def focus_next(self) -> None:
        if not self._histories:
            return
        self.focus_index = (self.focus_index + 1) % len(self._histories)
        self.scroll_to_show_focus()

    def focus_prev(self) -> None:
        if not self._histories:
            return
        self.focus_index = (self.focus_index - 1) % len(self._histories)
        self.scroll_to_show_focus()

    def scroll_to_show_focus(self) -> None:
        """Move the scroll window (never the focus) so the focus is visible."""
        if self.focus_index > self.scroll_offset + self.visible_count - 1:
            self.scroll_offset = self.focus_index - self.visible_count + 1
        if self.focus_index < self.scroll_offset:
            self.scroll_offset = self.focus_index
        max_offset = max(0, len(self._histories) - self.visible_count)
        self.scroll_offset = min(max(self.scroll_offset, 0), max_offset)

    def visible_range(self) -> range:
        end = min(self.scroll_offset + self.visible_count, len(self._histories))
        return range(self.scroll_offset, end)

    # ── Updates ────────────────────────────────────────────────────────────

    def update_time_series(
        self,
        index: int,
        time_series: TimeSeriesResult | None,
        error: BaseException | None,
        cycle: int | None = None,
    ) -> bool:
        """Store a query result (or error) and schedule that panel's redraw.

        Out-of-range indices and results from a cycle older than the one
        already applied are ignored. Returns True if the result was stored.
        """
        if index < 0 or index >= len(self._histories):
            return False

        with self._lock:
            if cycle is not None:
                if cycle < self._applied_cycle[index]:
                    logger.debug(
                        "dropping stale result for panel %d (cycle %d < %d)",
                        index, cycle, self._applied_cycle[index],
                    )
                    return False
                self._applied_cycle[index] = cycle

            history = self._histories[index]
            if error is not None:
                history.last_error = error
            else:
                history.time_series = time_series if time_series is not None else TimeSeriesResult()
                history.last_error = None

        self._redraws.put(index)
        return True

    def update_metric(
        self, index: int, point: DataPoint | None, error: BaseException | None
    ) -> bool:
        """Deprecated single-point form of update_time_series()."""
        if error is not None:
            return self.update_time_series(index, None, error)
        points = [point] if point is not None else []
        return self.update_time_series(index, TimeSeriesResult(points), None)

    def pending_redraws(self) -> set[int]:
        """Drain and return the panel indices updated since the last call."""
        dirty: set[int] = set()
        while True:
            try:
                dirty.add(self._redraws.get_nowait())
            except queue.Empty:
                return dirty

    # ── Reads ──────────────────────────────────────────────────────────────

    def history(self, index: int) -> QueryHistory:
        with self._lock:
            return replace(self._histories[index])

    def histories(self) -> list[QueryHistory]:
        with self._lock:
            return [replace(h) for h in self._histories]

    def time_range_text(self) -> str:
        """Footer text spanning the earliest and latest stored timestamps."""
        with self._lock:
            stamps = [
                p.timestamp for h in self._histories for p in h.time_series.points
            ]
        if not stamps:
            return WAITING_TEXT
        return f"Time Range: {fmt_time(min(stamps))} to {fmt_time(max(stamps))}"
