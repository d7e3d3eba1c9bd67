"""Text rendering of a panel's time series.

Everything here is a pure function of (history, dimensions): the UI calls
``render_panel`` with the inner size of a panel box and draws the returned
lines verbatim.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from promviz.panels import QueryHistory

# Rows/columns reserved around the plot for header text and y-axis labels.
HEADER_ROWS = 6
AXIS_MARGIN = 7
MIN_GRAPH_WIDTH = 20
MIN_GRAPH_HEIGHT = 3

NO_DATA_TEXT = "No data available"
INITIAL_TEXT = "Initializing..."


def fmt_time(ts: datetime) -> str:
    """Clock time of *ts* in the local timezone."""
    return ts.astimezone().strftime("%H:%M:%S")


def _resample(values: list[float], width: int) -> list[float]:
    """Linearly interpolate *values* onto exactly *width* columns."""
    if len(values) == 1:
        return values * width
    if len(values) == width:
        return list(values)
    step = (len(values) - 1) / (width - 1)
    out: list[float] = []
    for i in range(width):
        pos = i * step
        lo = int(pos)
        hi = min(lo + 1, len(values) - 1)
        frac = pos - lo
        out.append(values[lo] + (values[hi] - values[lo]) * frac)
    return out


def plot(values: list[float], width: int, height: int) -> list[str]:
    """Draw *values* as a line graph of *width* columns by *height* rows.

    The y-axis is labelled on every row with two decimals; the curve uses
    box-drawing characters in the style of asciigraph.
    """
    if not values:
        return []
    width = max(width, 2)
    height = max(height, 1)
    series = _resample(values, width)

    lo, hi = min(series), max(series)
    if hi == lo:
        lo, hi = lo - 1.0, hi + 1.0
    rows = height - 1

    def row_of(v: float) -> int:
        return round((hi - v) / (hi - lo) * rows)

    labels = [f"{hi - r * (hi - lo) / max(rows, 1):.2f}" for r in range(height)]
    label_w = max(len(s) for s in labels)
    grid = [[" "] * width for _ in range(height)]

    first = row_of(series[0])
    for x in range(width - 1):
        y0, y1 = row_of(series[x]), row_of(series[x + 1])
        if y0 == y1:
            grid[y0][x] = "─"
            continue
        if y1 < y0:  # rising
            grid[y0][x], grid[y1][x] = "╯", "╭"
        else:
            grid[y0][x], grid[y1][x] = "╮", "╰"
        for y in range(min(y0, y1) + 1, max(y0, y1)):
            grid[y][x] = "│"

    lines: list[str] = []
    for r in range(height):
        axis = "┼" if r == first else "┤"
        lines.append(f"{labels[r]:>{label_w}} {axis}{''.join(grid[r])}".rstrip())
    return lines


def render_panel(history: QueryHistory, width: int, height: int) -> list[str]:
    """Produce the text content for one panel.

    An error takes precedence over stored data; an empty series shows a
    placeholder. Points are sorted here, never at storage time.
    """
    if history.last_error is not None:
        return [f"Error: {history.last_error}"]
    if not history.time_series.points:
        return [NO_DATA_TEXT]

    points = sorted(history.time_series.points, key=lambda p: p.timestamp)
    values = [p.value for p in points]

    abs_max = max(abs(v) for v in values)
    y_digits = len(f"{abs_max:.0f}")
    if min(values) < 0:
        y_digits += 1
    graph_w = max(width - (y_digits + AXIS_MARGIN), MIN_GRAPH_WIDTH)
    graph_h = max(height - HEADER_ROWS, MIN_GRAPH_HEIGHT)

    oldest, latest = points[0], points[-1]
    lines = [
        f"Current: {latest.value:.2f}",
        f"Time Range: {fmt_time(oldest.timestamp)} to {fmt_time(latest.timestamp)}",
        "",
    ]
    chart = plot(values, graph_w, graph_h)
    lines.extend(chart)
    caption = f"{history.name} Time Series"
    pad = max(0, (len(chart[0]) - len(caption)) // 2) if chart else 0
    lines.append(" " * pad + caption)
    return lines
