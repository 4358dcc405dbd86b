"""Dashboard widgets: per-domain state refreshed from a metric source."""

from __future__ import annotations

import logging
import os
from collections import deque
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any

from hostdash.sources import (
    CpuSample,
    MemSample,
    MetricSource,
    NetSample,
    PartitionSample,
)

log = logging.getLogger(__name__)

HISTORY_LEN = 1000


class Widget:
    """Base for everything the scheduler refreshes.

    ``refresh()`` never raises: a failed sample or update is logged and the
    widget keeps the state it had, retrying on its next due tick.
    """

    name = "widget"
    title = ""

    def __init__(self, source: MetricSource[Any], refresh_interval: Fraction) -> None:
        self.source = source
        self.refresh_interval = Fraction(refresh_interval)
        self.update_count = 0

    def refresh(self) -> None:
        try:
            sample = self.source.sample()
            self.update(sample)
        except Exception:
            log.warning("%s: refresh failed, keeping previous state", self.name, exc_info=True)
            return
        self.update_count += 1

    def update(self, sample: Any) -> None:
        raise NotImplementedError


# ── Graph zoom ─────────────────────────────────────────────────────────────


@dataclass
class GraphScale:
    """How many samples the CPU and Mem graphs spread across their width."""

    samples: int = 100
    step: int = 10

    def scale_in(self) -> None:
        # The window never reaches zero samples
        if self.samples - self.step >= self.step:
            self.samples -= self.step

    def scale_out(self) -> None:
        if self.samples + self.step <= HISTORY_LEN:
            self.samples += self.step


# ── CPU ────────────────────────────────────────────────────────────────────


class CpuWidget(Widget):
    name = "cpu"
    title = "CPU Usage"

    def __init__(
        self,
        source: MetricSource[CpuSample],
        refresh_interval: Fraction,
        scale: GraphScale,
        show_average: bool = False,
        show_percpu: bool = False,
        cpu_count: int | None = None,
    ) -> None:
        super().__init__(source, refresh_interval)
        self.scale = scale
        self.cpu_count = cpu_count or os.cpu_count() or 1
        if not (show_average or show_percpu):
            if self.cpu_count <= 8:
                show_percpu = True
            else:
                show_average = True
        self.show_average = show_average
        self.show_percpu = show_percpu
        self.average: deque[float] = deque(maxlen=HISTORY_LEN)
        self.percpu: list[deque[float]] = [
            deque(maxlen=HISTORY_LEN) for _ in range(self.cpu_count if show_percpu else 0)
        ]

    def update(self, sample: CpuSample) -> None:
        if self.show_average:
            self.average.append(sample.average)
        if self.show_percpu:
            for history, pct in zip(self.percpu, sample.percpu):
                history.append(pct)

    def series(self) -> list[tuple[str, list[float]]]:
        """Label and history for each line the panel draws."""
        lines: list[tuple[str, list[float]]] = []
        if self.show_average:
            lines.append(("AVRG", list(self.average)))
        for i, history in enumerate(self.percpu):
            lines.append((f"CPU{i}", list(history)))
        return lines


# ── Memory ─────────────────────────────────────────────────────────────────


@dataclass
class MemData:
    total: int = 0
    used: int = 0
    percents: deque[float] = field(default_factory=lambda: deque(maxlen=HISTORY_LEN))


class MemWidget(Widget):
    name = "mem"
    title = "Memory Usage"

    def __init__(
        self,
        source: MetricSource[MemSample],
        refresh_interval: Fraction,
        scale: GraphScale,
    ) -> None:
        super().__init__(source, refresh_interval)
        self.scale = scale
        self.main = MemData()
        self.swap = MemData()

    def update(self, sample: MemSample) -> None:
        for data, total, used in (
            (self.main, sample.main_total, sample.main_used),
            (self.swap, sample.swap_total, sample.swap_used),
        ):
            data.total = total
            data.used = used
            data.percents.append(used * 100 / total if total else 0.0)


# ── Disk ───────────────────────────────────────────────────────────────────


@dataclass(slots=True)
class Partition:
    name: str
    mountpoint: str
    used_percent: float
    bytes_free: int
    bytes_read: int
    bytes_written: int
    bytes_read_recently: int = 0
    bytes_written_recently: int = 0


class DiskWidget(Widget):
    name = "disk"
    title = "Disk Usage"

    def __init__(
        self,
        source: MetricSource[list[PartitionSample]],
        refresh_interval: Fraction = Fraction(1),
    ) -> None:
        super().__init__(source, refresh_interval)
        self.partitions: dict[str, Partition] = {}

    def update(self, sample: list[PartitionSample]) -> None:
        partitions: dict[str, Partition] = {}
        for part in sample:
            previous = self.partitions.get(part.name)
            read_recently = written_recently = 0
            if previous is not None:
                read_recently = max(0, part.bytes_read - previous.bytes_read)
                written_recently = max(0, part.bytes_written - previous.bytes_written)
            partitions[part.name] = Partition(
                name=part.name,
                mountpoint=part.mountpoint,
                used_percent=part.used_percent,
                bytes_free=part.bytes_free,
                bytes_read=part.bytes_read,
                bytes_written=part.bytes_written,
                bytes_read_recently=read_recently,
                bytes_written_recently=written_recently,
            )
        self.partitions = partitions


# ── Network ────────────────────────────────────────────────────────────────


class NetWidget(Widget):
    name = "net"
    title = "Network Usage"

    def __init__(
        self,
        source: MetricSource[NetSample],
        refresh_interval: Fraction = Fraction(1),
    ) -> None:
        super().__init__(source, refresh_interval)
        self.bytes_recv: deque[int] = deque(maxlen=HISTORY_LEN)
        self.bytes_sent: deque[int] = deque(maxlen=HISTORY_LEN)
        self.total_bytes_recv = 0
        self.total_bytes_sent = 0
        self._has_prev = False

    def update(self, sample: NetSample) -> None:
        if self._has_prev:
            # Counters reset (interface went down) give a zero delta
            self.bytes_recv.append(max(0, sample.bytes_recv - self.total_bytes_recv))
            self.bytes_sent.append(max(0, sample.bytes_sent - self.total_bytes_sent))
        else:
            self.bytes_recv.append(0)
            self.bytes_sent.append(0)
        self.total_bytes_recv = sample.bytes_recv
        self.total_bytes_sent = sample.bytes_sent
        self._has_prev = True


# ── Temperature ────────────────────────────────────────────────────────────


def celsius_to_fahrenheit(c: float) -> float:
    return c * 9 / 5 + 32


class TempWidget(Widget):
    name = "temp"
    title = "Temperatures"

    def __init__(
        self,
        source: MetricSource[list[tuple[str, float]]],
        refresh_interval: Fraction = Fraction(5),
        fahrenheit: bool = False,
    ) -> None:
        super().__init__(source, refresh_interval)
        self.fahrenheit = fahrenheit
        self.temps: list[tuple[str, float]] = []

    def update(self, sample: list[tuple[str, float]]) -> None:
        temps = [(label, value) for label, value in sample if value > 0]
        if self.fahrenheit:
            temps = [(label, celsius_to_fahrenheit(value)) for label, value in temps]
        self.temps = temps


# ── Battery ────────────────────────────────────────────────────────────────


class BatteryWidget(Widget):
    name = "battery"
    title = "Batteries"

    def __init__(
        self,
        source: MetricSource[list[tuple[str, float]]],
        refresh_interval: Fraction = Fraction(60),
    ) -> None:
        super().__init__(source, refresh_interval)
        self.charge: dict[str, deque[float]] = {}

    def update(self, sample: list[tuple[str, float]]) -> None:
        present = set()
        for model, percent in sample:
            self.charge.setdefault(model, deque(maxlen=HISTORY_LEN)).append(percent)
            present.add(model)
        for model in list(self.charge):
            if model not in present:
                del self.charge[model]
