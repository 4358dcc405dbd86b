"""Curses rendering for hostdash panels.

Layout follows a three-row grid: CPU (and battery) on top, disk/temperature
beside memory in the middle, network beside processes at the bottom. Minimal
mode drops to two rows. Drawing never mutates widget state except for telling
the process table how many rows fit.
"""

from __future__ import annotations

import curses
import logging
import os
import socket
import sys
import time
from dataclasses import dataclass
from typing import Any, Iterable, NamedTuple, Sequence

from hostdash.app import Widgets
from hostdash.colorscheme import BUILTIN, Colorscheme
from hostdash.config import DEFAULT_CONFIG
from hostdash.keys import HELP_TEXT
from hostdash.proctable import ProcessGroup, ProcessTable, SortKey
from hostdash.widgets import celsius_to_fahrenheit

log = logging.getLogger(__name__)


# ── Constants ──────────────────────────────────────────────────────────────

SPARK = " ▁▂▃▄▅▆▇█"
BAR_FILL = "█"
BAR_EMPTY = "░"
PROGRAM_NAME = "hostdash"

# Box border plus the column header line
PROC_TABLE_OVERHEAD = 3

MIN_HEIGHT = 10
MIN_WIDTH = 40

# Curses colour-pair IDs
C_NORMAL = 1
C_WARNING = 2
C_CRITICAL = 3
C_TITLE = 4
C_DIM = 5
C_BORDER = 7
C_MEM_MAIN = 8
C_MEM_SWAP = 9
C_NET = 10
C_CURSOR = 11
C_TEMP_LOW = 12
C_TEMP_HIGH = 13
# One pair per graph line, cycling through the scheme's list
C_CPU_LINES = 16
C_BATTERY_LINES = 24
LINE_PAIRS = 8


# ── Colour helpers ─────────────────────────────────────────────────────────


def _fit(color: int) -> int:
    """Fold a 256-colour index onto what the terminal supports."""
    if color < curses.COLORS:
        return color
    return color % 8


def init_colors(scheme: Colorscheme = BUILTIN["default"]) -> None:
    """Register the colour pairs used by the panels.

    Severity pairs (normal, warning, critical) stay green, yellow and red in
    every scheme; everything else comes from ``scheme``.
    """
    if not curses.has_colors():
        return
    curses.start_color()
    curses.use_default_colors()
    bg = _fit(scheme.bg)

    def pair(pair_id: int, fg: int) -> None:
        curses.init_pair(pair_id, _fit(fg), bg)

    curses.init_pair(C_NORMAL, curses.COLOR_GREEN, bg)
    curses.init_pair(C_WARNING, curses.COLOR_YELLOW, bg)
    curses.init_pair(C_CRITICAL, curses.COLOR_RED, bg)
    pair(C_TITLE, scheme.titles)
    pair(C_DIM, scheme.fg)
    pair(C_BORDER, scheme.borders)
    pair(C_MEM_MAIN, scheme.mem_main)
    pair(C_MEM_SWAP, scheme.mem_swap)
    pair(C_NET, scheme.net_bars)
    pair(C_CURSOR, scheme.proc_cursor)
    pair(C_TEMP_LOW, scheme.temp_low)
    pair(C_TEMP_HIGH, scheme.temp_high)
    for i in range(LINE_PAIRS):
        pair(C_CPU_LINES + i, scheme.cpu_lines[i % len(scheme.cpu_lines)])
        pair(C_BATTERY_LINES + i, scheme.battery_lines[i % len(scheme.battery_lines)])


def _severity_color(value: float, warn: float, crit: float) -> int:
    if value >= crit:
        return C_CRITICAL
    if value >= warn:
        return C_WARNING
    return C_NORMAL


def _line_color(base: int, index: int, value: float, warn: float, crit: float) -> int:
    """Scheme colour for graph line ``index`` until the value reaches ``warn``."""
    if value >= warn:
        return _severity_color(value, warn, crit)
    return base + index % LINE_PAIRS


# ── Formatting helpers ─────────────────────────────────────────────────────


def fmt_bytes(n: int | float) -> str:
    """Human-readable byte count (binary prefixes)."""
    v = float(n)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if abs(v) < 1024:
            return f"{v:.1f} {unit}"
        v /= 1024
    return f"{v:.1f} TiB"


def fmt_rate(bps: float) -> str:
    """Human-readable transfer rate."""
    if bps < 1024:
        return f"{bps:.0f} B/s"
    if bps < 1024 * 1024:
        return f"{bps / 1024:.1f} KB/s"
    if bps < 1024**3:
        return f"{bps / 1024 ** 2:.1f} MB/s"
    return f"{bps / 1024 ** 3:.1f} GB/s"


def resample(values: Sequence[float], samples: int, width: int) -> list[float]:
    """Spread the last ``samples`` values across ``width`` columns.

    A smaller sample window stretches each value over several columns (zoomed
    in); a larger one skips values (zoomed out). Columns older than the
    available history read as zero, so the graph stays right-aligned.
    """
    if width <= 0 or samples <= 0:
        return []
    window = list(values)[-samples:]
    missing = samples - len(window)
    out: list[float] = []
    for col in range(width):
        t = col * samples // width - missing
        out.append(window[t] if t >= 0 else 0.0)
    return out


# ── Layout ─────────────────────────────────────────────────────────────────


class Rect(NamedTuple):
    y: int
    x: int
    h: int
    w: int


def _split(start: int, total: int, ratios: Sequence[int]) -> list[tuple[int, int]]:
    """Cut ``total`` cells into pieces proportional to ``ratios``."""
    denom = sum(ratios)
    pieces: list[tuple[int, int]] = []
    pos = start
    acc = 0
    for i, r in enumerate(ratios):
        acc += r
        end = start + total if i == len(ratios) - 1 else start + total * acc // denom
        pieces.append((pos, end - pos))
        pos = end
    return pieces


def layout(height: int, width: int, widgets: Widgets, statusbar: bool = False) -> dict[str, Rect]:
    """Screen rectangle for every enabled panel."""
    rects: dict[str, Rect] = {}
    if statusbar:
        rects["statusbar"] = Rect(height - 1, 0, 1, width)
        height -= 1

    full = widgets.temp is not None
    rows = _split(0, height, [1, 1, 1] if full else [1, 1])
    top_y, top_h = rows[0]
    bottom_y, bottom_h = rows[-1]

    if widgets.battery is not None:
        (bx, bw), (cx, cw) = _split(0, width, [1, 2])
        rects["battery"] = Rect(top_y, bx, top_h, bw)
        rects["cpu"] = Rect(top_y, cx, top_h, cw)
    else:
        rects["cpu"] = Rect(top_y, 0, top_h, width)

    if full:
        mid_y, mid_h = rows[1]
        (lx, lw), (rx, rw) = _split(0, width, [1, 2])
        (dy, dh), (ty, th) = _split(mid_y, mid_h, [1, 1])
        rects["disk"] = Rect(dy, lx, dh, lw)
        rects["temp"] = Rect(ty, lx, th, lw)
        rects["mem"] = Rect(mid_y, rx, mid_h, rw)

    (lx, lw), (rx, rw) = _split(0, width, [1, 1])
    rects["net" if widgets.net is not None else "mem"] = Rect(bottom_y, lx, bottom_h, lw)
    rects["proc"] = Rect(bottom_y, rx, bottom_h, rw)
    return rects


def help_rect(height: int, width: int) -> Rect:
    lines = HELP_TEXT.splitlines()
    h = min(len(lines) + 2, height)
    w = min(max(len(line) for line in lines) + 4, width)
    return Rect((height - h) // 2, (width - w) // 2, h, w)


# ── Curses drawing primitives ──────────────────────────────────────────────


def _safe(win: curses.window, *args: Any) -> None:
    """addstr wrapper that swallows out-of-bounds errors."""
    try:
        win.addstr(*args)
    except curses.error:
        pass


def _draw_box(win: curses.window, rect: Rect, title: str = "") -> curses.window | None:
    """Clear a region, draw a bordered box over it and return the sub-window."""
    max_y, max_x = win.getmaxyx()
    h = min(rect.h, max_y - rect.y)
    w = min(rect.w, max_x - rect.x)
    if h < 3 or w < 4:
        return None
    try:
        sub = win.subwin(h, w, rect.y, rect.x)
        sub.erase()
        # box() draws with the background attribute, not the current one
        sub.bkgdset(" ", curses.color_pair(C_BORDER))
        sub.box()
        sub.bkgdset(" ", 0)
        if title and len(title) + 4 < w:
            sub.addstr(0, 2, f" {title} ", curses.color_pair(C_TITLE) | curses.A_BOLD)
        return sub
    except curses.error:
        return None


def _draw_bar(
    win: curses.window,
    y: int,
    x: int,
    width: int,
    pct: float,
    label: str = "",
    color: int = C_NORMAL,
    suffix: str | None = None,
) -> None:
    """Render ``label ████░░░░ suffix`` on one line."""
    max_y, max_x = win.getmaxyx()
    if y >= max_y - 1 or x >= max_x - 1:
        return

    cx = x
    if label:
        _safe(win, y, cx, f"{label:>6s} ", curses.color_pair(C_DIM))
        cx += 7

    if suffix is None:
        suffix = f" {pct:5.1f}%"

    bar_w = min(width - (cx - x) - len(suffix), max_x - cx - len(suffix) - 1)
    if bar_w < 3:
        return

    filled = int(bar_w * min(pct, 100.0) / 100.0)
    empty = bar_w - filled

    _safe(win, y, cx, BAR_FILL * filled, curses.color_pair(color) | curses.A_BOLD)
    _safe(win, BAR_EMPTY * empty, curses.color_pair(C_DIM))
    _safe(win, suffix, curses.color_pair(color) | curses.A_BOLD)


def _draw_sparkline(
    win: curses.window,
    y: int,
    x: int,
    values: Iterable[float],
    max_val: float = 100.0,
    color: int = C_DIM,
) -> None:
    max_y, max_x = win.getmaxyx()
    if y >= max_y - 1 or x >= max_x - 1:
        return
    chars: list[str] = []
    for v in values:
        idx = int(min(v / max_val, 1.0) * (len(SPARK) - 1)) if max_val > 0 else 0
        chars.append(SPARK[max(0, min(idx, len(SPARK) - 1))])
    _safe(win, y, x, "".join(chars)[: max_x - x - 1], curses.color_pair(color))


# ── Panel renderers ────────────────────────────────────────────────────────


def _thresholds(thresh: dict[str, Any], metric: str) -> tuple[float, float]:
    levels = thresh.get(metric, DEFAULT_CONFIG["thresholds"][metric])
    return float(levels["warning"]), float(levels["critical"])


def draw_cpu_panel(win: curses.window, rect: Rect, widgets: Widgets, thresh: dict[str, Any]) -> None:
    box = _draw_box(win, rect, widgets.cpu.title)
    if not box:
        return
    warn, crit = _thresholds(thresh, "cpu_percent")
    label_w = 11
    spark_w = rect.w - label_w - 3
    for row, (label, history) in enumerate(widgets.cpu.series(), start=1):
        if row >= rect.h - 1:
            break
        current = history[-1] if history else 0.0
        color = _line_color(C_CPU_LINES, row - 1, current, warn, crit)
        _safe(box, row, 1, f"{label:<5s}{current:4.0f}% ", curses.color_pair(color))
        _draw_sparkline(
            box, row, label_w, resample(history, widgets.scale.samples, spark_w), 100.0, color
        )


def draw_mem_panel(win: curses.window, rect: Rect, widgets: Widgets, thresh: dict[str, Any]) -> None:
    mem = widgets.mem
    box = _draw_box(win, rect, mem.title)
    if not box:
        return
    warn, crit = _thresholds(thresh, "ram_percent")
    row = 1
    for label, data, base in (("Main", mem.main, C_MEM_MAIN), ("Swap", mem.swap, C_MEM_SWAP)):
        if row >= rect.h - 2:
            break
        pct = data.percents[-1] if data.percents else 0.0
        color = _severity_color(pct, warn, crit) if pct >= warn else base
        detail = f"{label} {pct:3.0f}% {fmt_bytes(data.used)}/{fmt_bytes(data.total)}"
        _safe(box, row, 1, detail[: rect.w - 3], curses.color_pair(color) | curses.A_BOLD)
        values = resample(data.percents, widgets.scale.samples, rect.w - 3)
        _draw_sparkline(box, row + 1, 1, values, 100.0, color)
        row += 2


def draw_disk_panel(win: curses.window, rect: Rect, widgets: Widgets) -> None:
    disk = widgets.disk
    if disk is None:
        return
    box = _draw_box(win, rect, disk.title)
    if not box:
        return
    hdr = f"{'Disk':<10s}{'Mount':<12s}{'Used':>5s}{'Free':>11s}{'R/s':>11s}{'W/s':>11s}"
    _safe(box, 1, 1, hdr[: rect.w - 2], curses.color_pair(C_TITLE) | curses.A_BOLD)
    rate = float(disk.refresh_interval)
    for row, part in enumerate(list(disk.partitions.values()), start=2):
        if row >= rect.h - 1:
            break
        line = (
            f"{part.name[:9]:<10s}{part.mountpoint[:11]:<12s}{part.used_percent:4.0f}%"
            f"{fmt_bytes(part.bytes_free):>11s}"
            f"{fmt_rate(part.bytes_read_recently / rate):>11s}"
            f"{fmt_rate(part.bytes_written_recently / rate):>11s}"
        )
        _safe(box, row, 1, line[: rect.w - 2], curses.color_pair(C_DIM))


def draw_temp_panel(win: curses.window, rect: Rect, widgets: Widgets, thresh: dict[str, Any]) -> None:
    temp = widgets.temp
    if temp is None:
        return
    box = _draw_box(win, rect, temp.title)
    if not box:
        return
    warn, crit = _thresholds(thresh, "cpu_temp")
    unit = "C"
    if temp.fahrenheit:
        warn, crit, unit = celsius_to_fahrenheit(warn), celsius_to_fahrenheit(crit), "F"
    width = max(rect.w - 9, 1)
    for row, (label, value) in enumerate(list(temp.temps), start=1):
        if row >= rect.h - 1:
            break
        color = C_CRITICAL if value >= crit else C_TEMP_HIGH if value >= warn else C_TEMP_LOW
        _safe(box, row, 1, f"{label[:width]:<{width}s} {value:3.0f}{unit}", curses.color_pair(color))


def draw_net_panel(win: curses.window, rect: Rect, widgets: Widgets) -> None:
    net = widgets.net
    if net is None:
        return
    box = _draw_box(win, rect, net.title)
    if not box:
        return
    rate = float(net.refresh_interval)
    half = max((rect.h - 2) // 2, 1)
    for top, label, total, history in (
        (1, "Rx", net.total_bytes_recv, list(net.bytes_recv)),
        (1 + half, "Tx", net.total_bytes_sent, list(net.bytes_sent)),
    ):
        if top >= rect.h - 1:
            break
        last = history[-1] if history else 0
        _safe(box, top, 2, f"Total {label}: {fmt_bytes(total)}", curses.A_BOLD)
        _safe(box, top + 1, 2, f"{label}/s:     {fmt_rate(last / rate)}", curses.A_BOLD)
        window = history[-(rect.w - 3):]
        _draw_sparkline(box, top + 2, 1, window, float(max(window, default=0)), C_NET)


def draw_battery_panel(win: curses.window, rect: Rect, widgets: Widgets) -> None:
    battery = widgets.battery
    if battery is None:
        return
    box = _draw_box(win, rect, battery.title)
    if not box:
        return
    for row, (model, history) in enumerate(list(battery.charge.items()), start=1):
        if row >= rect.h - 1:
            break
        pct = history[-1] if history else 0.0
        color = _line_color(C_BATTERY_LINES, row - 1, 100.0 - pct, 80.0, 90.0)
        _draw_bar(box, row, 1, rect.w - 3, pct, model[:6], color)


def _sort_marker(table: ProcessTable, key: SortKey) -> str:
    if table.sort_key is not key:
        return ""
    return "▼" if table.descending else "▲"


def draw_proc_panel(win: curses.window, rect: Rect, table: ProcessTable, thresh: dict[str, Any]) -> None:
    title = f"{table.title} (grouped)" if table.grouping else table.title
    box = _draw_box(win, rect, title)
    if not box:
        return
    table.visible_height = rect.h - PROC_TABLE_OVERHEAD
    warn, crit = _thresholds(thresh, "cpu_percent")

    id_label = "Count" if table.grouping else "PID"
    cmd_w = max(rect.w - 2 - 7 - 7 - 7 - 3, 5)
    hdr = (
        f"{id_label + _sort_marker(table, SortKey.PID):>7s} "
        f"{('Command' + _sort_marker(table, SortKey.COMMAND))[:cmd_w]:<{cmd_w}s} "
        f"{'CPU%' + _sort_marker(table, SortKey.CPU):>6s} "
        f"{'Mem%' + _sort_marker(table, SortKey.MEM):>6s}"
    )
    _safe(box, 1, 1, hdr[: rect.w - 2], curses.color_pair(C_TITLE) | curses.A_BOLD)

    first, rows = table.visible_rows()
    for offset, proc in enumerate(rows):
        if isinstance(proc, ProcessGroup):
            ident, command, cpu, mem = proc.count, proc.name, proc.cpu_percent_sum, proc.mem_percent_sum
        else:
            ident, command, cpu, mem = proc.pid, proc.commandline, proc.cpu_percent, proc.mem_percent
        line = f"{ident:>7d} {command[:cmd_w]:<{cmd_w}s} {cpu:6.1f} {mem:6.1f}"
        if first + offset == table.selected_row:
            attr = curses.color_pair(C_CURSOR) | curses.A_REVERSE
        else:
            attr = curses.color_pair(_severity_color(cpu, warn, crit))
        _safe(box, 2 + offset, 1, line[: rect.w - 2], attr)

    if table.filter_editing or table.filter_text:
        cursor = "_" if table.filter_editing else ""
        label = f" Filter: {table.filter_text}{cursor} "
        _safe(box, rect.h - 1, 2, label[: rect.w - 4], curses.color_pair(C_TITLE) | curses.A_BOLD)


def draw_statusbar(win: curses.window, rect: Rect, hostname: str) -> None:
    ts = time.strftime("%H:%M:%S")
    attr = curses.color_pair(C_TITLE) | curses.A_REVERSE
    _safe(win, rect.y, 0, " " * (rect.w - 1), attr)
    _safe(win, rect.y, 1, hostname, attr | curses.A_BOLD)
    _safe(win, rect.y, (rect.w - len(ts)) // 2, ts, attr)
    _safe(win, rect.y, max(0, rect.w - len(PROGRAM_NAME) - 2), PROGRAM_NAME, attr)


def draw_help(win: curses.window) -> None:
    max_y, max_x = win.getmaxyx()
    box = _draw_box(win, help_rect(max_y, max_x), "Help Menu")
    if not box:
        return
    for row, line in enumerate(HELP_TEXT.splitlines(), start=1):
        _safe(box, row, 2, line, curses.color_pair(C_DIM))


# ── Renderer ───────────────────────────────────────────────────────────────


@dataclass
class CursesRenderer:
    stdscr: curses.window
    widgets: Widgets
    thresholds: dict[str, Any]
    statusbar: bool = False

    def __post_init__(self) -> None:
        self.hostname = socket.gethostname()

    def _too_small(self) -> bool:
        max_y, max_x = self.stdscr.getmaxyx()
        if max_y < MIN_HEIGHT or max_x < MIN_WIDTH:
            self.stdscr.erase()
            _safe(self.stdscr, 0, 0, f"Terminal too small (need {MIN_WIDTH}x{MIN_HEIGHT}+)")
            self.stdscr.refresh()
            return True
        return False

    def _draw_region(self, name: str, rect: Rect) -> None:
        w = self.widgets
        if name == "cpu":
            draw_cpu_panel(self.stdscr, rect, w, self.thresholds)
        elif name == "mem":
            draw_mem_panel(self.stdscr, rect, w, self.thresholds)
        elif name == "disk":
            draw_disk_panel(self.stdscr, rect, w)
        elif name == "temp":
            draw_temp_panel(self.stdscr, rect, w, self.thresholds)
        elif name == "net":
            draw_net_panel(self.stdscr, rect, w)
        elif name == "battery":
            draw_battery_panel(self.stdscr, rect, w)
        elif name == "proc":
            draw_proc_panel(self.stdscr, rect, w.proc, self.thresholds)
        elif name == "statusbar":
            draw_statusbar(self.stdscr, rect, self.hostname)

    def draw(self, paused: bool = False) -> None:
        """Full frame."""
        if self._too_small():
            return
        max_y, max_x = self.stdscr.getmaxyx()
        self.stdscr.erase()
        for name, rect in layout(max_y, max_x, self.widgets, self.statusbar).items():
            self._draw_region(name, rect)
        if paused:
            self._draw_paused(max_x)
        self.stdscr.refresh()

    def _draw_paused(self, max_x: int) -> None:
        _safe(self.stdscr, 0, max(0, max_x - 10), " PAUSED ", curses.color_pair(C_WARNING) | curses.A_REVERSE)

    def draw_regions(self, names: Iterable[str], paused: bool = False) -> None:
        """Redraw only the named panels, leaving the rest of the screen alone.

        The pause marker sits on the top border, so it is put back over any
        panel that was just redrawn.
        """
        if self._too_small():
            return
        max_y, max_x = self.stdscr.getmaxyx()
        rects = layout(max_y, max_x, self.widgets, self.statusbar)
        for name in names:
            if name in rects:
                self._draw_region(name, rects[name])
        if paused:
            self._draw_paused(max_x)
        self.stdscr.refresh()

    def draw_help(self) -> None:
        self.stdscr.erase()
        draw_help(self.stdscr)
        self.stdscr.refresh()

    def resize(self) -> None:
        try:
            cols, lines = os.get_terminal_size(sys.stdout.fileno())
        except OSError as e:
            log.warning("cannot read terminal size: %s", e)
            return
        curses.resizeterm(lines, cols)
        self.stdscr.clear()
