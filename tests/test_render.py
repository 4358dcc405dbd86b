"""Tests for hostdash.render helpers that don't need a real terminal."""

from __future__ import annotations

import curses
import os
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from hostdash.app import Widgets
from hostdash.colorscheme import BUILTIN
from hostdash.keys import HELP_TEXT
from hostdash.proctable import ProcessTable
from hostdash.render import (
    C_BATTERY_LINES,
    C_BORDER,
    C_CPU_LINES,
    C_CRITICAL,
    C_CURSOR,
    C_DIM,
    C_NORMAL,
    C_WARNING,
    LINE_PAIRS,
    PROC_TABLE_OVERHEAD,
    CursesRenderer,
    Rect,
    _line_color,
    _severity_color,
    _split,
    draw_proc_panel,
    fmt_bytes,
    fmt_rate,
    help_rect,
    init_colors,
    layout,
    resample,
)
from hostdash.sources import ProcessRecord
from hostdash.widgets import GraphScale


def widgets(minimal: bool = False, battery: bool = False) -> Widgets:
    w = Widgets(cpu=MagicMock(), mem=MagicMock(), proc=MagicMock(), scale=GraphScale())
    if not minimal:
        w.disk, w.net, w.temp = MagicMock(), MagicMock(), MagicMock()
        if battery:
            w.battery = MagicMock()
    return w


# ── Formatting ─────────────────────────────────────────────────────────────


class TestFmtBytes:
    def test_bytes(self) -> None:
        assert fmt_bytes(500) == "500.0 B"

    def test_kibibytes(self) -> None:
        assert fmt_bytes(1536) == "1.5 KiB"

    def test_gibibytes(self) -> None:
        assert fmt_bytes(3 * 1024**3) == "3.0 GiB"

    def test_tebibytes(self) -> None:
        assert fmt_bytes(2 * 1024**4) == "2.0 TiB"


class TestFmtRate:
    def test_bytes_per_sec(self) -> None:
        assert fmt_rate(500) == "500 B/s"

    def test_kb_per_sec(self) -> None:
        assert fmt_rate(2048) == "2.0 KB/s"

    def test_mb_per_sec(self) -> None:
        assert fmt_rate(5 * 1024 * 1024) == "5.0 MB/s"

    def test_gb_per_sec(self) -> None:
        assert fmt_rate(2 * 1024**3) == "2.0 GB/s"


class TestSeverityColor:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(10.0, C_NORMAL), (80.0, C_WARNING), (94.9, C_WARNING), (95.0, C_CRITICAL)],
    )
    def test_levels(self, value: float, expected: int) -> None:
        assert _severity_color(value, 80.0, 95.0) == expected


class TestLineColor:
    def test_cycles_scheme_pairs_below_warning(self) -> None:
        assert _line_color(C_CPU_LINES, 0, 10.0, 80.0, 95.0) == C_CPU_LINES
        assert _line_color(C_CPU_LINES, 3, 10.0, 80.0, 95.0) == C_CPU_LINES + 3
        assert _line_color(C_CPU_LINES, LINE_PAIRS + 1, 10.0, 80.0, 95.0) == C_CPU_LINES + 1

    def test_severity_wins_at_warning(self) -> None:
        assert _line_color(C_CPU_LINES, 2, 85.0, 80.0, 95.0) == C_WARNING
        assert _line_color(C_CPU_LINES, 2, 99.0, 80.0, 95.0) == C_CRITICAL


@pytest.fixture
def color_calls():
    with (
        patch("hostdash.render.curses.has_colors", return_value=True),
        patch("hostdash.render.curses.start_color"),
        patch("hostdash.render.curses.use_default_colors"),
        patch("hostdash.render.curses.init_pair") as init_pair,
    ):
        yield init_pair


class TestInitColors:
    def test_pairs_follow_scheme(self, color_calls: MagicMock) -> None:
        scheme = BUILTIN["monokai"]
        with patch("hostdash.render.curses.COLORS", 256, create=True):
            init_colors(scheme)
        pairs = {c.args[0]: c.args[1:] for c in color_calls.call_args_list}
        assert pairs[C_CURSOR] == (197, -1)
        assert pairs[C_BORDER] == (239, -1)
        assert pairs[C_NORMAL] == (curses.COLOR_GREEN, -1)
        assert [pairs[C_CPU_LINES + i][0] for i in range(LINE_PAIRS)] == list(scheme.cpu_lines[:LINE_PAIRS])

    def test_short_line_lists_cycle(self, color_calls: MagicMock) -> None:
        scheme = replace(BUILTIN["default"], battery_lines=(1, 2))
        with patch("hostdash.render.curses.COLORS", 256, create=True):
            init_colors(scheme)
        pairs = {c.args[0]: c.args[1:] for c in color_calls.call_args_list}
        assert [pairs[C_BATTERY_LINES + i][0] for i in range(4)] == [1, 2, 1, 2]

    def test_folds_onto_eight_colour_terminals(self, color_calls: MagicMock) -> None:
        with patch("hostdash.render.curses.COLORS", 8, create=True):
            init_colors(BUILTIN["monokai"])
        pairs = {c.args[0]: c.args[1:] for c in color_calls.call_args_list}
        assert pairs[C_CURSOR] == (197 % 8, -1)
        assert pairs[C_DIM] == (249 % 8, -1)

    def test_monochrome_terminal_is_left_alone(self) -> None:
        with (
            patch("hostdash.render.curses.has_colors", return_value=False),
            patch("hostdash.render.curses.init_pair") as init_pair,
        ):
            init_colors()
        init_pair.assert_not_called()


# ── Graph resampling ───────────────────────────────────────────────────────


class TestResample:
    def test_stretch(self) -> None:
        assert resample([1, 2], 2, 4) == [1, 1, 2, 2]

    def test_short_history_is_right_aligned(self) -> None:
        assert resample([5], 4, 4) == [0.0, 0.0, 0.0, 5]

    def test_uses_last_samples(self) -> None:
        assert resample([1, 2, 3, 4], 2, 2) == [3, 4]

    def test_zoom_out_skips(self) -> None:
        assert resample(list(range(8)), 8, 4) == [0, 2, 4, 6]

    def test_zero_width(self) -> None:
        assert resample([1, 2], 2, 0) == []


# ── Layout ─────────────────────────────────────────────────────────────────


class TestSplit:
    def test_covers_total(self) -> None:
        pieces = _split(0, 10, [1, 2])
        assert pieces == [(0, 3), (3, 7)]

    def test_offset(self) -> None:
        assert _split(5, 4, [1, 1]) == [(5, 2), (7, 2)]


class TestLayout:
    def test_full_layout(self) -> None:
        rects = layout(30, 90, widgets())
        assert set(rects) == {"cpu", "disk", "temp", "mem", "net", "proc"}
        assert rects["cpu"] == Rect(0, 0, 10, 90)
        assert rects["mem"] == Rect(10, 30, 10, 60)
        assert rects["disk"].w == 30
        assert rects["net"] == Rect(20, 0, 10, 45)
        assert rects["proc"] == Rect(20, 45, 10, 45)

    def test_minimal_layout(self) -> None:
        rects = layout(20, 80, widgets(minimal=True))
        assert set(rects) == {"cpu", "mem", "proc"}
        assert rects["cpu"] == Rect(0, 0, 10, 80)
        assert rects["mem"] == Rect(10, 0, 10, 40)
        assert rects["proc"] == Rect(10, 40, 10, 40)

    def test_battery_shares_top_row(self) -> None:
        rects = layout(30, 90, widgets(battery=True))
        assert rects["battery"] == Rect(0, 0, 10, 30)
        assert rects["cpu"] == Rect(0, 30, 10, 60)

    def test_statusbar_takes_last_line(self) -> None:
        rects = layout(31, 90, widgets(), statusbar=True)
        assert rects["statusbar"] == Rect(30, 0, 1, 90)
        assert rects["proc"].y + rects["proc"].h == 30

    def test_help_is_centred(self) -> None:
        rect = help_rect(50, 100)
        assert rect.h == len(HELP_TEXT.splitlines()) + 2
        assert rect.x == (100 - rect.w) // 2

    def test_help_clipped_to_screen(self) -> None:
        rect = help_rect(10, 20)
        assert rect.h == 10
        assert rect.w == 20


# ── Process panel ──────────────────────────────────────────────────────────


class TestDrawProcPanel:
    @patch("hostdash.render.curses.color_pair", side_effect=lambda n: n << 8)
    def test_sets_height_and_highlights_selection(self, _color: MagicMock) -> None:
        source = MagicMock()
        source.sample.return_value = [
            ProcessRecord(pid=i, name=f"p{i}", commandline=f"p{i}", cpu_percent=float(20 - i), mem_percent=1.0)
            for i in range(20)
        ]
        table = ProcessTable(source, MagicMock())
        table.refresh()
        table.scroll_by(2)

        win = MagicMock()
        win.getmaxyx.return_value = (24, 80)
        box = win.subwin.return_value

        draw_proc_panel(win, Rect(0, 0, 10, 40), table, {})

        assert table.visible_height == 10 - PROC_TABLE_OVERHEAD
        rows = {c.args[0]: c.args for c in box.addstr.call_args_list if len(c.args) == 4}
        # Row 2 of the table sits below the header at line 2
        assert rows[4][3] & curses.A_REVERSE
        assert not rows[2][3] & curses.A_REVERSE
        assert "p2" in rows[4][2]

    @patch("hostdash.render.curses.color_pair", side_effect=lambda n: n << 8)
    def test_filter_shown_on_bottom_border(self, _color: MagicMock) -> None:
        source = MagicMock()
        source.sample.return_value = [
            ProcessRecord(pid=i, name=f"p{i}", commandline=f"p{i}", cpu_percent=1.0, mem_percent=1.0)
            for i in range(20)
        ]
        table = ProcessTable(source, MagicMock())
        table.refresh()
        table.start_filter()
        table.filter_append("p1")

        win = MagicMock()
        win.getmaxyx.return_value = (24, 80)
        box = win.subwin.return_value

        draw_proc_panel(win, Rect(0, 0, 10, 40), table, {})
        texts = [c.args[:3] for c in box.addstr.call_args_list if len(c.args) == 4]
        assert (9, 2, " Filter: p1_ ") in texts

        table.accept_filter()
        box.reset_mock()
        draw_proc_panel(win, Rect(0, 0, 10, 40), table, {})
        texts = [c.args[:3] for c in box.addstr.call_args_list if len(c.args) == 4]
        assert (9, 2, " Filter: p1 ") in texts


# ── Renderer ───────────────────────────────────────────────────────────────


@pytest.fixture
def renderer():
    stdscr = MagicMock()
    stdscr.getmaxyx.return_value = (24, 80)
    w = widgets(minimal=True)
    w.proc.visible_rows.return_value = (0, [])
    w.proc.title = "Processes"
    w.proc.grouping = False
    w.proc.filter_editing = False
    w.proc.filter_text = ""
    with patch("hostdash.render.curses.color_pair", side_effect=lambda n: n << 8):
        yield CursesRenderer(stdscr, w, {})


def _paused_marker_index(stdscr: MagicMock) -> int | None:
    for i, c in enumerate(stdscr.mock_calls):
        if c[0] == "addstr" and c.args[:3] == (0, 70, " PAUSED "):
            return i
    return None


class TestCursesRenderer:
    def test_partial_redraw_keeps_pause_marker(self, renderer: CursesRenderer) -> None:
        renderer.draw_regions(["proc"], paused=True)
        stdscr = renderer.stdscr
        marker = _paused_marker_index(stdscr)
        assert marker is not None
        # Drawn over the panel, not underneath it
        subwin = next(i for i, c in enumerate(stdscr.mock_calls) if c[0] == "subwin")
        assert subwin < marker
        stdscr.refresh.assert_called_once()

    def test_partial_redraw_without_pause(self, renderer: CursesRenderer) -> None:
        renderer.draw_regions(["proc"])
        assert _paused_marker_index(renderer.stdscr) is None

    def test_resize_reads_size_from_stdout(self, renderer: CursesRenderer) -> None:
        with (
            patch("hostdash.render.sys") as mock_sys,
            patch("hostdash.render.os.get_terminal_size", return_value=os.terminal_size((100, 30))) as size,
            patch("hostdash.render.curses.resizeterm") as resizeterm,
        ):
            renderer.resize()
        size.assert_called_once_with(mock_sys.stdout.fileno.return_value)
        resizeterm.assert_called_once_with(30, 100)
        renderer.stdscr.clear.assert_called_once()

    def test_resize_without_terminal(self, renderer: CursesRenderer) -> None:
        with (
            patch("hostdash.render.os.get_terminal_size", side_effect=OSError("not a tty")),
            patch("hostdash.render.curses.resizeterm") as resizeterm,
        ):
            renderer.resize()
        resizeterm.assert_not_called()
