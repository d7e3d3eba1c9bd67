"""Interactive terminal dashboard: one live graph panel per configured query.

Panels sit side by side in a horizontally scrollable row (at most three at
a time). Tab/→/l and Shift-Tab/←/h move the focus, scrolling the row as
needed; q quits. A footer shows the time range covered by all data.

Usage:
    promviz --config promviz.toml
    promviz --print-config influxdb > promviz.toml
"""

from __future__ import annotations

import argparse
import curses
import logging
import signal
import sys
import threading
import time
from pathlib import Path
from types import FrameType

from promviz.app import App
from promviz.backends.base import ConnectError
from promviz.config import (
    SUPPORTED_BACKENDS,
    ConfigError,
    dump_example_config,
    find_config_path,
    load_config,
)
from promviz.graph import INITIAL_TEXT, render_panel
from promviz.panels import WAITING_TEXT, PanelManager

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────────

POLL_MS = 100
MIN_COLS = 40
MIN_ROWS = 10
HELP_TEXT = "Navigation: ← → Arrow keys or Tab/Shift+Tab to switch panels | q/Q to quit"

KEYS_QUIT = (ord("q"), ord("Q"))
KEYS_NEXT = (ord("\t"), curses.KEY_RIGHT, ord("l"))
KEYS_PREV = (curses.KEY_BTAB, curses.KEY_LEFT, ord("h"))

# Curses colour-pair IDs
C_NORMAL = 1
C_VALUE = 2
C_ERROR = 3
C_TITLE = 4
C_DIM = 5
C_FOCUS = 6


# ── Colour helpers ─────────────────────────────────────────────────────────


def _init_colors() -> None:
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(C_NORMAL, curses.COLOR_GREEN, -1)
    curses.init_pair(C_VALUE, curses.COLOR_YELLOW, -1)
    curses.init_pair(C_ERROR, curses.COLOR_RED, -1)
    curses.init_pair(C_TITLE, curses.COLOR_CYAN, -1)
    curses.init_pair(C_DIM, curses.COLOR_WHITE, -1)
    curses.init_pair(C_FOCUS, curses.COLOR_YELLOW, -1)


def line_color(line: str) -> int:
    """Colour pair for one line of panel content."""
    if line.startswith("Error:"):
        return C_ERROR
    if line.startswith("Current:"):
        return C_VALUE
    if line.startswith(("Time Range:", INITIAL_TEXT)):
        return C_DIM
    return C_NORMAL


# ── Curses drawing primitives ──────────────────────────────────────────────


def _safe(win: curses.window, *args: object) -> None:
    """addstr wrapper that swallows out-of-bounds errors."""
    try:
        win.addstr(*args)
    except curses.error:
        pass


def _draw_box(
    win: curses.window,
    y: int,
    x: int,
    h: int,
    w: int,
    title: str = "",
    focused: bool = False,
) -> curses.window | None:
    """Draw a bordered box and return the sub-window."""
    max_y, max_x = win.getmaxyx()
    h = min(h, max_y - y)
    w = min(w, max_x - x)
    if h < 3 or w < 4:
        return None
    color = curses.color_pair(C_FOCUS if focused else C_DIM)
    try:
        sub = win.subwin(h, w, y, x)
        sub.attron(color)
        sub.box()
        sub.attroff(color)
        if title:
            label = f" {title} "[: w - 4]
            sub.addstr(0, 2, label, color | curses.A_BOLD)
        return sub
    except curses.error:
        return None


# ── Layout ─────────────────────────────────────────────────────────────────


def panel_columns(total_width: int, count: int) -> list[tuple[int, int]]:
    """Split *total_width* into *count* (x, width) slots; the last takes the slack."""
    if count <= 0:
        return []
    base = total_width // count
    slots = [(i * base, base) for i in range(count)]
    x, _ = slots[-1]
    slots[-1] = (x, total_width - x)
    return slots


class DashboardView:
    """Caches each panel's rendered text; re-renders only what changed."""

    def __init__(self, panels: PanelManager) -> None:
        self.panels = panels
        self.content: dict[int, list[str]] = {}
        self.sizes: dict[int, tuple[int, int]] = {}
        self.updated: set[int] = set()
        self.footer = panels.time_range_text()

    def refresh(self, dirty: set[int], sizes: dict[int, tuple[int, int]]) -> None:
        """Re-render visible panels that got new data or changed size.

        *sizes* maps each visible panel index to its inner (width, height).
        """
        self.updated |= dirty
        for index in dirty - sizes.keys():
            # off-screen: render when it scrolls into view
            self.content.pop(index, None)
        for index, size in sizes.items():
            if index not in self.updated:
                continue
            if index in dirty or index not in self.content or self.sizes.get(index) != size:
                width, height = size
                self.content[index] = render_panel(self.panels.history(index), width, height)
                self.sizes[index] = size
        if dirty:
            self.footer = self.panels.time_range_text()

    def lines(self, index: int) -> list[str]:
        return self.content.get(index, [INITIAL_TEXT])


def _layout(stdscr: curses.window, panels: PanelManager) -> dict[int, tuple[int, int, int, int]]:
    """Map visible panel index → (y, x, h, w) box geometry."""
    max_y, max_x = stdscr.getmaxyx()
    visible = panels.visible_range()
    box_h = max_y - 3  # header + footer + help
    return {
        index: (1, x, box_h, w)
        for index, (x, w) in zip(visible, panel_columns(max_x, len(visible)))
    }


def _draw_header(win: curses.window, w: int, backend: str, panels: PanelManager) -> None:
    attr = curses.color_pair(C_TITLE) | curses.A_REVERSE
    _safe(win, 0, 0, " " * (w - 1), attr)
    _safe(win, 0, 1, f"promviz [{backend}]", attr | curses.A_BOLD)
    if len(panels):
        pos = f"panel {panels.focus_index + 1}/{len(panels)}"
        _safe(win, 0, max(0, w - len(pos) - 2), pos, attr)
    ts = time.strftime("%H:%M:%S")
    _safe(win, 0, (w - len(ts)) // 2, ts, attr)


def _draw(stdscr: curses.window, app: App, view: DashboardView, dirty: set[int]) -> None:
    max_y, max_x = stdscr.getmaxyx()
    panels = app.panels
    boxes = _layout(stdscr, panels)
    view.refresh(dirty, {i: (w - 2, h - 2) for i, (_, _, h, w) in boxes.items()})

    stdscr.erase()
    _draw_header(stdscr, max_x, app.backend.name, panels)
    for index, (y, x, h, w) in boxes.items():
        box = _draw_box(
            stdscr, y, x, h, w, app.queries[index].name, index == panels.focus_index
        )
        if box is None:
            continue
        for row, line in enumerate(view.lines(index)[: h - 2], start=1):
            _safe(box, row, 1, line[: w - 2], curses.color_pair(line_color(line)))

    footer_color = C_DIM if view.footer == WAITING_TEXT else C_VALUE
    for row, text, color in (
        (max_y - 2, view.footer, footer_color),
        (max_y - 1, HELP_TEXT, C_DIM),
    ):
        col = max(0, (max_x - len(text)) // 2)
        _safe(stdscr, row, col, text[: max_x - 1], curses.color_pair(color))
    stdscr.refresh()


# ── Main loop ──────────────────────────────────────────────────────────────


def _dashboard_loop(stdscr: curses.window, app: App, stop: threading.Event) -> None:
    _init_colors()
    curses.curs_set(0)
    stdscr.keypad(True)
    stdscr.timeout(POLL_MS)

    panels = app.panels
    view = DashboardView(panels)
    app.start()

    needs_draw = True
    dirty: set[int] = set()
    while not stop.is_set():
        dirty |= panels.pending_redraws()
        max_y, max_x = stdscr.getmaxyx()

        if max_y < MIN_ROWS or max_x < MIN_COLS:
            stdscr.erase()
            _safe(stdscr, 0, 0, f"Terminal too small (need {MIN_COLS}x{MIN_ROWS}+)")
            stdscr.refresh()
            needs_draw = True
        elif dirty or needs_draw:
            _draw(stdscr, app, view, dirty)
            dirty = set()
            needs_draw = False
        else:
            # keep the clock ticking between data refreshes
            _draw_header(stdscr, max_x, app.backend.name, panels)
            stdscr.refresh()

        key = stdscr.getch()
        if key in KEYS_QUIT:
            return
        if key in KEYS_NEXT:
            panels.focus_next()
            needs_draw = True
        elif key in KEYS_PREV:
            panels.focus_prev()
            needs_draw = True
        elif key == curses.KEY_RESIZE:
            stdscr.clear()
            needs_draw = True


# ── CLI entry point ────────────────────────────────────────────────────────


def _setup_logging(log_file: Path | None, level: str) -> None:
    """Send package logs to *log_file*; without one, keep them off the screen."""
    pkg_logger = logging.getLogger("promviz")
    if log_file is None:
        pkg_logger.addHandler(logging.NullHandler())
        return
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
    )
    pkg_logger.addHandler(handler)
    pkg_logger.setLevel(level)


def _positive_float(text: str) -> float:
    value = float(text)
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {text}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="promviz",
        description="Live terminal graphs for Prometheus and InfluxDB queries.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to TOML config file (default: ./promviz.toml, then "
        "~/.config/promviz/config.toml)",
    )
    parser.add_argument(
        "--interval",
        type=_positive_float,
        default=None,
        help="Seconds between refreshes (overrides refresh_interval)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        metavar="PATH",
        help="Write logs to this file (the screen is reserved for the dashboard)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for --log-file (default: INFO)",
    )
    parser.add_argument(
        "--print-config",
        choices=SUPPORTED_BACKENDS,
        default=None,
        metavar="BACKEND",
        help=f"Print an example config for BACKEND ({', '.join(SUPPORTED_BACKENDS)}) and exit",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.print_config:
        print(dump_example_config(args.print_config), end="")
        return 0

    _setup_logging(args.log_file, args.log_level)

    path = find_config_path(args.config)
    if path is None:
        print("promviz: no configuration file found.", file=sys.stderr)
        print("Create promviz.toml or pass --config PATH. Example:\n", file=sys.stderr)
        print(dump_example_config(), file=sys.stderr)
        return 1

    try:
        config = load_config(path)
    except SystemExit as e:
        return int(e.code or 1)
    if args.interval is not None:
        config["refresh_interval"] = args.interval

    try:
        app = App.from_config(config)
    except (ConfigError, ConnectError) as e:
        logger.error("startup failed: %s", e)
        print(f"promviz: {e}", file=sys.stderr)
        return 1

    stop = threading.Event()

    def _on_sigterm(signum: int, frame: FrameType | None) -> None:
        stop.set()

    signal.signal(signal.SIGTERM, _on_sigterm)
    try:
        curses.wrapper(_dashboard_loop, app, stop)
    except KeyboardInterrupt:
        pass
    finally:
        app.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
