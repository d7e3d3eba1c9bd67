"""Tests for promviz.panels: focus/scroll state machine and result storage."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from promviz.backends.base import DataPoint, Query, QueryError, TimeSeriesResult
from promviz.graph import fmt_time
from promviz.panels import MAX_VISIBLE_PANELS, WAITING_TEXT, PanelManager

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _manager(n: int) -> PanelManager:
    return PanelManager([Query(f"q{i}", f"expr{i}") for i in range(n)])


def _series(*minutes: int) -> TimeSeriesResult:
    return TimeSeriesResult(
        [DataPoint(T0 + timedelta(minutes=m), float(m)) for m in minutes]
    )


def _assert_scroll_invariant(pm: PanelManager) -> None:
    assert 0 <= pm.focus_index < len(pm)
    assert pm.scroll_offset <= pm.focus_index < pm.scroll_offset + pm.visible_count
    assert 0 <= pm.scroll_offset <= max(0, len(pm) - pm.visible_count)


# ── Construction ───────────────────────────────────────────────────────────


@pytest.mark.parametrize(("n", "visible"), [(0, 0), (1, 1), (2, 2), (3, 3), (4, 3), (5, 3)])
def test_visible_count(n: int, visible: int) -> None:
    pm = _manager(n)
    assert pm.visible_count == visible
    assert pm.focus_index == 0
    assert pm.scroll_offset == 0
    assert list(pm.visible_range()) == list(range(visible))


def test_histories_start_empty() -> None:
    pm = _manager(2)
    names = [h.name for h in pm.histories()]
    assert names == ["q0", "q1"]
    assert all(not h.time_series.points and h.last_error is None for h in pm.histories())


# ── Navigation ─────────────────────────────────────────────────────────────


class TestNavigation:
    @pytest.mark.parametrize("n", [1, 2, 3, 5])
    def test_full_cycle_returns_to_start(self, n: int) -> None:
        pm = _manager(n)
        for _ in range(n):
            pm.focus_next()
        assert pm.focus_index == 0
        for _ in range(n):
            pm.focus_prev()
        assert pm.focus_index == 0

    def test_empty_is_noop(self) -> None:
        pm = _manager(0)
        pm.focus_next()
        pm.focus_prev()
        assert (pm.focus_index, pm.scroll_offset) == (0, 0)
        assert list(pm.visible_range()) == []

    @pytest.mark.parametrize("n", [1, 2, 3, 4, 7])
    def test_scroll_invariant_holds(self, n: int) -> None:
        pm = _manager(n)
        for _ in range(2 * n + 1):
            pm.focus_next()
            _assert_scroll_invariant(pm)
        for _ in range(3 * n):
            pm.focus_prev()
            _assert_scroll_invariant(pm)

    def test_five_panels_scroll_window(self) -> None:
        pm = _manager(5)
        offsets = []
        for _ in range(5):
            pm.focus_next()
            offsets.append((pm.focus_index, pm.scroll_offset))
        # wraps from the last panel back to the first
        assert offsets == [(1, 0), (2, 0), (3, 1), (4, 2), (0, 0)]

    def test_prev_wraps_to_last(self) -> None:
        pm = _manager(5)
        pm.focus_prev()
        assert pm.focus_index == 4
        assert pm.scroll_offset == 5 - MAX_VISIBLE_PANELS
        assert list(pm.visible_range()) == [2, 3, 4]


# ── Updates ────────────────────────────────────────────────────────────────


class TestUpdateTimeSeries:
    def test_stores_series(self) -> None:
        pm = _manager(2)
        series = _series(1, 2, 3)
        assert pm.update_time_series(1, series, None)
        stored = pm.history(1)
        assert stored.time_series is series
        assert stored.last_error is None

    def test_error_keeps_series(self) -> None:
        pm = _manager(1)
        series = _series(1, 2)
        pm.update_time_series(0, series, None)
        err = QueryError("boom")
        pm.update_time_series(0, None, err)
        stored = pm.history(0)
        assert stored.last_error is err
        assert stored.time_series is series

    def test_success_clears_error(self) -> None:
        pm = _manager(1)
        pm.update_time_series(0, None, QueryError("boom"))
        pm.update_time_series(0, _series(1), None)
        assert pm.history(0).last_error is None

    def test_none_series_stored_as_empty(self) -> None:
        pm = _manager(1)
        pm.update_time_series(0, _series(1), None)
        pm.update_time_series(0, None, None)
        assert pm.history(0).time_series.points == []

    @pytest.mark.parametrize("index", [-1, 2, 100])
    def test_out_of_range_ignored(self, index: int) -> None:
        pm = _manager(2)
        before = pm.histories()
        assert not pm.update_time_series(index, _series(1), None)
        assert pm.histories() == before
        assert pm.pending_redraws() == set()

    def test_stale_cycle_dropped(self) -> None:
        pm = _manager(1)
        fresh = _series(5)
        assert pm.update_time_series(0, fresh, None, cycle=2)
        assert not pm.update_time_series(0, _series(1), None, cycle=1)
        assert pm.history(0).time_series is fresh

    def test_same_cycle_accepted(self) -> None:
        pm = _manager(1)
        assert pm.update_time_series(0, _series(1), None, cycle=3)
        assert pm.update_time_series(0, None, QueryError("late"), cycle=3)

    def test_update_metric_wraps_point(self) -> None:
        pm = _manager(1)
        point = DataPoint(T0, 42.0)
        pm.update_metric(0, point, None)
        assert pm.history(0).time_series.points == [point]
        pm.update_metric(0, None, QueryError("x"))
        assert pm.history(0).time_series.points == [point]
        assert pm.history(0).last_error is not None


class TestPendingRedraws:
    def test_drains_updated_indices(self) -> None:
        pm = _manager(3)
        pm.update_time_series(2, _series(1), None)
        pm.update_time_series(0, None, QueryError("x"))
        pm.update_time_series(2, _series(2), None)
        assert pm.pending_redraws() == {0, 2}
        assert pm.pending_redraws() == set()

    def test_history_is_a_copy(self) -> None:
        pm = _manager(1)
        snapshot = pm.history(0)
        pm.update_time_series(0, _series(1), None)
        assert snapshot.time_series.points == []


# ── Footer ─────────────────────────────────────────────────────────────────


class TestTimeRangeText:
    def test_waiting_without_data(self) -> None:
        pm = _manager(2)
        assert pm.time_range_text() == WAITING_TEXT
        pm.update_time_series(0, None, QueryError("x"))
        assert pm.time_range_text() == WAITING_TEXT

    def test_spans_all_panels(self) -> None:
        pm = _manager(2)
        pm.update_time_series(0, _series(3, 1, 2), None)
        pm.update_time_series(1, _series(4), None)
        t1 = fmt_time(T0 + timedelta(minutes=1))
        t4 = fmt_time(T0 + timedelta(minutes=4))
        assert pm.time_range_text() == f"Time Range: {t1} to {t4}"
