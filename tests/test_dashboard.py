"""Tests for the dashboard layout helpers and the CLI entry point."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from promviz.app import App
from promviz.backends.base import ConnectError, DataPoint, Query, QueryError, TimeSeriesResult
from promviz.dashboard import (
    C_DIM,
    C_ERROR,
    C_NORMAL,
    C_VALUE,
    DashboardView,
    _dashboard_loop,
    line_color,
    main,
    panel_columns,
)
from promviz.graph import INITIAL_TEXT, NO_DATA_TEXT
from promviz.panels import WAITING_TEXT, PanelManager

MOCK_TOML = """
backend = "mock"

[mock]
seed = 1

[[queries]]
name = "CPU"
expr = "cpu_usage"
"""

# ── panel_columns ──────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("width", "count", "expected"),
    [
        (90, 3, [(0, 30), (30, 30), (60, 30)]),
        (100, 3, [(0, 33), (33, 33), (66, 34)]),
        (80, 1, [(0, 80)]),
        (80, 0, []),
    ],
)
def test_panel_columns(width: int, count: int, expected: list[tuple[int, int]]) -> None:
    assert panel_columns(width, count) == expected


# ── line_color ─────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("line", "color"),
    [
        ("Error: boom", C_ERROR),
        ("Current: 1.00", C_VALUE),
        ("Time Range: 12:00:00 to 12:04:00", C_DIM),
        (INITIAL_TEXT, C_DIM),
        ("10.00 ┤╭─", C_NORMAL),
    ],
)
def test_line_color(line: str, color: int) -> None:
    assert line_color(line) == color


# ── DashboardView ──────────────────────────────────────────────────────────


def _view(n: int = 4) -> tuple[PanelManager, DashboardView]:
    pm = PanelManager([Query(f"q{i}", f"e{i}") for i in range(n)])
    return pm, DashboardView(pm)


def _point() -> TimeSeriesResult:
    return TimeSeriesResult([DataPoint(datetime(2024, 1, 1, tzinfo=timezone.utc), 1.0)])


class TestDashboardView:
    def test_initial_text_until_first_result(self) -> None:
        pm, view = _view()
        view.refresh(set(), {0: (40, 20)})
        assert view.lines(0) == [INITIAL_TEXT]
        assert view.footer == WAITING_TEXT

    def test_renders_dirty_visible_panel(self) -> None:
        pm, view = _view()
        pm.update_time_series(0, _point(), None)
        view.refresh(pm.pending_redraws(), {0: (40, 20), 1: (40, 20)})
        assert view.lines(0)[0] == "Current: 1.00"
        assert view.lines(1) == [INITIAL_TEXT]
        assert view.footer.startswith("Time Range: ")
        assert view.footer != WAITING_TEXT

    def test_offscreen_panel_rendered_when_scrolled_in(self) -> None:
        pm, view = _view()
        pm.update_time_series(3, None, QueryError("boom"))
        view.refresh(pm.pending_redraws(), {0: (40, 20)})
        assert 3 not in view.content
        view.refresh(set(), {3: (40, 20)})
        assert view.lines(3) == ["Error: boom"]

    def test_clean_panel_not_rerendered(self) -> None:
        pm, view = _view()
        pm.update_time_series(0, TimeSeriesResult(), None)
        view.refresh(pm.pending_redraws(), {0: (40, 20)})
        assert view.lines(0) == [NO_DATA_TEXT]
        with patch("promviz.dashboard.render_panel") as render:
            view.refresh(set(), {0: (40, 20)})
            render.assert_not_called()
            view.refresh(set(), {0: (50, 20)})
            render.assert_called_once()


# ── main ───────────────────────────────────────────────────────────────────


def test_print_config(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--print-config", "influxdb1"]) == 0
    out = capsys.readouterr().out
    assert 'backend = "influxdb1"' in out
    assert "[[queries]]" in out


def test_missing_config(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("promviz.config._DEFAULT_PATH", tmp_path / "missing.toml")
    assert main([]) == 1
    assert "no configuration file found" in capsys.readouterr().err


@patch("promviz.dashboard.curses.wrapper")
def test_unsupported_backend_exits_before_ui(
    wrapper: MagicMock, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = tmp_path / "promviz.toml"
    cfg.write_text(MOCK_TOML.replace('"mock"', '"unsupported"', 1))
    assert main(["--config", str(cfg)]) == 1
    wrapper.assert_not_called()
    assert "unsupported backend: unsupported" in capsys.readouterr().err


@patch("promviz.dashboard.App.from_config")
@patch("promviz.dashboard.curses.wrapper")
def test_connect_failure_exits_before_ui(
    wrapper: MagicMock, from_config: MagicMock, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    from_config.side_effect = ConnectError("failed to connect to Prometheus at http://x:9090")
    cfg = tmp_path / "promviz.toml"
    cfg.write_text(MOCK_TOML)
    assert main(["--config", str(cfg)]) == 1
    wrapper.assert_not_called()
    assert "failed to connect to Prometheus" in capsys.readouterr().err


@patch("promviz.dashboard.signal.signal")
@patch("promviz.dashboard.curses.wrapper")
def test_runs_and_stops_app(wrapper: MagicMock, _signal: MagicMock, tmp_path: Path) -> None:
    cfg = tmp_path / "promviz.toml"
    cfg.write_text(MOCK_TOML)
    with patch.object(App, "stop", autospec=True, side_effect=App.stop) as stop:
        assert main(["--config", str(cfg), "--interval", "2"]) == 0
    wrapper.assert_called_once()
    app = wrapper.call_args.args[1]
    assert app.refresh_interval == 2.0
    assert app.backend.name == "mock"
    stop.assert_called_once_with(app)


# ── Main loop ──────────────────────────────────────────────────────────────


@patch("promviz.dashboard.curses.color_pair", return_value=0)
@patch("promviz.dashboard.curses.curs_set")
@patch("promviz.dashboard._init_colors")
@patch("promviz.dashboard._draw_header")
def test_header_redrawn_every_iteration(
    draw_header: MagicMock, _colors: MagicMock, _curs: MagicMock, _pair: MagicMock
) -> None:
    queries = [Query("CPU", "cpu_usage")]
    app = MagicMock()
    app.queries = queries
    app.panels = PanelManager(queries)
    app.backend.name = "mock"
    stdscr = MagicMock()
    stdscr.getmaxyx.return_value = (30, 120)
    stdscr.getch.side_effect = [-1, -1, ord("q")]

    _dashboard_loop(stdscr, app, threading.Event())

    app.start.assert_called_once()
    # one full draw, then the clock alone while nothing changes
    assert draw_header.call_count == 3
