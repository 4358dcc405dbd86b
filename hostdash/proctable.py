"""Process table: enumerate, group, sort, scroll and select processes.

The table keeps the user's *logical* selection (a pid, or a process name when
grouped) rather than a row number, so the highlighted process stays put while
rows reshuffle underneath it on every refresh. Only when the selected process
disappears does the row number matter: the previous index is clamped into the
new list and whatever sits there becomes the selection.

Navigation marks the viewport for repair; the repair runs the next time the
visible rows are requested. Plain data refreshes never move the viewport, so
a position the user scrolled to survives unrelated updates.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Union

from hostdash.sources import MetricSource, ProcessControl, ProcessRecord
from hostdash.widgets import Widget

log = logging.getLogger(__name__)


class SortKey(Enum):
    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    COMMAND = "command"


@dataclass(slots=True, frozen=True)
class ProcessGroup:
    name: str
    count: int
    cpu_percent_sum: float
    mem_percent_sum: float


@dataclass(slots=True, frozen=True)
class ByPid:
    pid: int


@dataclass(slots=True, frozen=True)
class ByName:
    name: str


Selection = Union[ByPid, ByName]
Row = Union[ProcessRecord, ProcessGroup]


def group_records(records: list[ProcessRecord]) -> list[ProcessGroup]:
    """Fold records by name. Groups keep the order their name first appeared."""
    totals: dict[str, list[float]] = {}
    for rec in records:
        entry = totals.setdefault(rec.name, [0, 0.0, 0.0])
        entry[0] += 1
        entry[1] += rec.cpu_percent
        entry[2] += rec.mem_percent
    return [
        ProcessGroup(name=name, count=int(count), cpu_percent_sum=cpu, mem_percent_sum=mem)
        for name, (count, cpu, mem) in totals.items()
    ]


def _sort_value(row: Row, key: SortKey) -> float | int | str:
    if isinstance(row, ProcessGroup):
        if key is SortKey.CPU:
            return row.cpu_percent_sum
        if key is SortKey.MEM:
            return row.mem_percent_sum
        if key is SortKey.PID:
            return row.count
        return row.name
    if key is SortKey.CPU:
        return row.cpu_percent
    if key is SortKey.MEM:
        return row.mem_percent
    if key is SortKey.PID:
        return row.pid
    return row.commandline


def filter_records(records: list[ProcessRecord], text: str) -> list[ProcessRecord]:
    """Records whose name or command line contains ``text``, ignoring case."""
    if not text:
        return records
    needle = text.lower()
    return [
        rec for rec in records if needle in rec.name.lower() or needle in rec.commandline.lower()
    ]


def sort_rows(rows: list[Row], key: SortKey, descending: bool) -> list[Row]:
    """Stable sort: rows with equal values keep their relative order either way."""
    return sorted(rows, key=lambda row: _sort_value(row, key), reverse=descending)


def identity(row: Row) -> Selection:
    if isinstance(row, ProcessGroup):
        return ByName(row.name)
    return ByPid(row.pid)


class ProcessTable(Widget):
    name = "proc"
    title = "Processes"

    def __init__(
        self,
        source: MetricSource[list[ProcessRecord]],
        control: ProcessControl | None = None,
        refresh_interval: Fraction = Fraction(1),
        visible_height: int = 1,
    ) -> None:
        super().__init__(source, refresh_interval)
        self.control = control or ProcessControl()
        self.grouping = False
        self.sort_key = SortKey.CPU
        self.descending = True
        self.rows: list[Row] = []
        self.selection: Selection | None = None
        self.selected_row = 0
        self.first_visible_row = 0
        self._visible_height = max(1, visible_height)
        self.scrolled = False
        self.filter_text = ""
        self.filter_editing = False
        self._records: list[ProcessRecord] = []
        # Guards against a late refresh landing while the loop handles input
        self._lock = threading.RLock()

    # ── Refresh ────────────────────────────────────────────────────────────

    def update(self, sample: list[ProcessRecord]) -> None:
        with self._lock:
            self._records = list(sample)
            self._rebuild()

    def _rebuild(self) -> None:
        records = filter_records(self._records, self.filter_text)
        view: list[Row]
        if self.grouping:
            view = list(group_records(records))
        else:
            view = list(records)
        self.rows = sort_rows(view, self.sort_key, self.descending)
        self._resolve_selection()

    def _find(self, selection: Selection) -> int | None:
        if isinstance(selection, ByPid):
            if self.grouping:
                # A pid selected before grouping lands on its name's group
                name = next((r.name for r in self._records if r.pid == selection.pid), None)
                if name is None:
                    return None
                return self._find(ByName(name))
            for i, row in enumerate(self.rows):
                if isinstance(row, ProcessRecord) and row.pid == selection.pid:
                    return i
            return None
        for i, row in enumerate(self.rows):
            if row.name == selection.name:
                return i
        return None

    def _resolve_selection(self) -> None:
        if not self.rows:
            self.selected_row = 0
            self.selection = None
            self.first_visible_row = 0
            return
        index = self._find(self.selection) if self.selection is not None else None
        if index is None:
            index = min(max(self.selected_row, 0), len(self.rows) - 1)
        self.selected_row = index
        self.selection = identity(self.rows[index])
        # Keep the viewport full when the list shrinks under it
        last_top = max(0, len(self.rows) - self._visible_height)
        if self.first_visible_row > last_top:
            self.first_visible_row = last_top

    # ── Viewport ───────────────────────────────────────────────────────────

    @property
    def visible_height(self) -> int:
        return self._visible_height

    @visible_height.setter
    def visible_height(self, height: int) -> None:
        height = max(1, height)
        if height != self._visible_height:
            self._visible_height = height
            self.scrolled = True

    def _repair_viewport(self) -> None:
        if self.selected_row < self.first_visible_row:
            self.first_visible_row = self.selected_row
        elif self.selected_row > self.first_visible_row + self._visible_height - 1:
            self.first_visible_row = self.selected_row - self._visible_height + 1

    def visible_rows(self) -> tuple[int, list[Row]]:
        """Index of the first visible row and the rows that fit the viewport."""
        with self._lock:
            if self.scrolled:
                self._repair_viewport()
                self.scrolled = False
            first = self.first_visible_row
            return first, self.rows[first : first + self._visible_height]

    # ── Navigation ─────────────────────────────────────────────────────────

    def _select_row(self, index: int) -> None:
        with self._lock:
            self.scrolled = True
            if not self.rows:
                return
            self.selected_row = min(max(index, 0), len(self.rows) - 1)
            self.selection = identity(self.rows[self.selected_row])

    def scroll_by(self, n: int) -> None:
        self._select_row(self.selected_row + n)

    def scroll_up(self) -> None:
        self.scroll_by(-1)

    def scroll_down(self) -> None:
        self.scroll_by(1)

    def scroll_half_page_up(self) -> None:
        self.scroll_by(-(self._visible_height // 2))

    def scroll_half_page_down(self) -> None:
        self.scroll_by(self._visible_height // 2)

    def scroll_page_up(self) -> None:
        self.scroll_by(-self._visible_height)

    def scroll_page_down(self) -> None:
        self.scroll_by(self._visible_height)

    def scroll_to_top(self) -> None:
        self._select_row(0)

    def scroll_to_bottom(self) -> None:
        self._select_row(len(self.rows) - 1)

    # ── Modes ──────────────────────────────────────────────────────────────

    def toggle_grouping(self) -> None:
        """Flip grouping. A selected pid moves to its group; a selected group
        moves to its first member in the current sort order."""
        with self._lock:
            self.grouping = not self.grouping
            self._rebuild()
            self.scrolled = True

    def set_sort(self, key: SortKey) -> None:
        with self._lock:
            if key is self.sort_key:
                self.descending = not self.descending
            else:
                self.sort_key = key
                self.descending = True
            self._rebuild()
            self.scrolled = True

    # ── Filter ─────────────────────────────────────────────────────────────

    def _set_filter(self, text: str) -> None:
        with self._lock:
            if text != self.filter_text:
                self.filter_text = text
                self._rebuild()
                self.scrolled = True

    def start_filter(self) -> None:
        """Begin editing; typed characters narrow the table as they arrive."""
        self.filter_editing = True

    def filter_append(self, text: str) -> None:
        self._set_filter(self.filter_text + text)

    def filter_backspace(self) -> None:
        self._set_filter(self.filter_text[:-1])

    def accept_filter(self) -> None:
        self.filter_editing = False

    def clear_filter(self) -> None:
        self.filter_editing = False
        self._set_filter("")

    # ── Actions ────────────────────────────────────────────────────────────

    def kill_selected(self) -> None:
        with self._lock:
            selection = self.selection
        if isinstance(selection, ByName):
            log.info("terminating every process named %s", selection.name)
            self.control.terminate_by_name(selection.name)
        elif isinstance(selection, ByPid):
            log.info("terminating pid %d", selection.pid)
            self.control.terminate(selection.pid)
