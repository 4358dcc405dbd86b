"""Metric sources: thin psutil adapters, one per dashboard domain.

Every source exposes a blocking ``sample()`` that returns a snapshot or raises
:class:`SampleError`. Sources keep no history; rates and deltas are computed by
the widgets that own the previous counters.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import Protocol, TypeVar

import psutil

log = logging.getLogger(__name__)

T_co = TypeVar("T_co", covariant=True)


class SampleError(Exception):
    """A metric read failed; the widget keeps its previous state."""


class MetricSource(Protocol[T_co]):
    def sample(self) -> T_co: ...


# ── Snapshots ──────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class CpuSample:
    average: float
    percpu: list[float]


@dataclass(slots=True, frozen=True)
class MemSample:
    main_total: int
    main_used: int
    swap_total: int
    swap_used: int


@dataclass(slots=True, frozen=True)
class PartitionSample:
    name: str
    mountpoint: str
    used_percent: float
    bytes_free: int
    bytes_read: int
    bytes_written: int


@dataclass(slots=True, frozen=True)
class NetSample:
    bytes_recv: int
    bytes_sent: int


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """One live process as seen by a single enumeration pass."""

    pid: int
    name: str
    commandline: str
    cpu_percent: float
    mem_percent: float


# ── CPU / memory ───────────────────────────────────────────────────────────


class CpuSource:
    def __init__(self) -> None:
        # Warm-up psutil internal deltas (first call returns 0.0)
        psutil.cpu_percent(interval=None, percpu=True)

    def sample(self) -> CpuSample:
        try:
            percpu = psutil.cpu_percent(interval=None, percpu=True)
        except OSError as e:
            raise SampleError(f"cpu: {e}") from e
        average = sum(percpu) / len(percpu) if percpu else 0.0
        return CpuSample(average=average, percpu=list(percpu))


class MemSource:
    def sample(self) -> MemSample:
        try:
            ram = psutil.virtual_memory()
            swap = psutil.swap_memory()
        except OSError as e:
            raise SampleError(f"memory: {e}") from e
        return MemSample(
            main_total=ram.total,
            main_used=ram.total - ram.available,
            swap_total=swap.total,
            swap_used=swap.used,
        )


# ── Disk ───────────────────────────────────────────────────────────────────


class DiskSource:
    def sample(self) -> list[PartitionSample]:
        try:
            counters = psutil.disk_io_counters(perdisk=True) or {}
            partitions = psutil.disk_partitions(all=False)
        except OSError as e:
            raise SampleError(f"disk: {e}") from e

        samples: dict[str, PartitionSample] = {}
        # Reversed so a partition mounted several times keeps its first mountpoint
        for part in reversed(partitions):
            name = os.path.basename(part.device)
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except OSError:
                log.debug("skipping unreadable mountpoint %s", part.mountpoint)
                continue
            io = counters.get(name)
            samples[name] = PartitionSample(
                name=name,
                mountpoint=part.mountpoint,
                used_percent=usage.percent,
                bytes_free=usage.free,
                bytes_read=io.read_bytes if io else 0,
                bytes_written=io.write_bytes if io else 0,
            )
        return sorted(samples.values(), key=lambda p: p.name)


# ── Network ────────────────────────────────────────────────────────────────


def parse_interfaces(interfaces: str) -> tuple[set[str], set[str], bool]:
    """Split an interface filter into (shown, hidden, show_all).

    ``"all"`` shows everything, ``"eth0,wlan0"`` shows only those, and
    ``"!tun0"`` hides one interface while showing the rest.
    """
    shown: set[str] = set()
    hidden: set[str] = set()
    show_all = False
    for item in (part.strip() for part in interfaces.split(",")):
        if not item:
            continue
        if item == "all":
            show_all = True
        elif item.startswith("!"):
            hidden.add(item[1:])
        else:
            shown.add(item)
    if not shown:
        show_all = True
    return shown, hidden, show_all


class NetSource:
    def __init__(self, interfaces: str = "!tun0") -> None:
        self.shown, self.hidden, self.show_all = parse_interfaces(interfaces)

    def _wanted(self, nic: str) -> bool:
        if nic in self.hidden:
            return False
        return self.show_all or nic in self.shown

    def sample(self) -> NetSample:
        try:
            pernic = psutil.net_io_counters(pernic=True)
        except OSError as e:
            raise SampleError(f"network: {e}") from e
        recv = sent = 0
        for nic, counters in pernic.items():
            if self._wanted(nic):
                recv += counters.bytes_recv
                sent += counters.bytes_sent
        return NetSample(bytes_recv=recv, bytes_sent=sent)


# ── Temperature ────────────────────────────────────────────────────────────


class SensorTempSource:
    """Temperatures from psutil's sensor interface (Linux, FreeBSD)."""

    def sample(self) -> list[tuple[str, float]]:
        try:
            temps = psutil.sensors_temperatures()
        except OSError as e:
            raise SampleError(f"temperature: {e}") from e
        readings: list[tuple[str, float]] = []
        for chip, entries in sorted(temps.items()):
            for i, entry in enumerate(entries):
                label = entry.label or f"{chip}{i}"
                readings.append((label, float(entry.current)))
        return readings


class NullTempSource:
    """Platforms where psutil exposes no temperature sensors."""

    def sample(self) -> list[tuple[str, float]]:
        return []


def temperature_source() -> MetricSource[list[tuple[str, float]]]:
    if hasattr(psutil, "sensors_temperatures") and not sys.platform.startswith("win"):
        return SensorTempSource()
    return NullTempSource()


# ── Battery ────────────────────────────────────────────────────────────────


class BatterySource:
    def sample(self) -> list[tuple[str, float]]:
        try:
            battery = psutil.sensors_battery()
        except (AttributeError, OSError) as e:
            raise SampleError(f"battery: {e}") from e
        if battery is None:
            return []
        return [("BAT0", float(battery.percent))]


# ── Processes ──────────────────────────────────────────────────────────────


class ProcessSource:
    def sample(self) -> list[ProcessRecord]:
        records: list[ProcessRecord] = []
        for proc in psutil.process_iter(
            ["pid", "name", "cmdline", "cpu_percent", "memory_percent"],
        ):
            try:
                info = proc.info
                name = info.get("name") or ""
                cmdline = info.get("cmdline") or []
                records.append(
                    ProcessRecord(
                        pid=info["pid"],
                        name=name,
                        commandline=" ".join(cmdline) if cmdline else f"[{name}]",
                        cpu_percent=info.get("cpu_percent") or 0.0,
                        mem_percent=info.get("memory_percent") or 0.0,
                    )
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                # Exited mid-scan or unreadable: omitted, not retried
                continue
        return records


class ProcessControl:
    """Fire-and-forget SIGTERM delivery. Failures show up on the next refresh."""

    def terminate(self, pid: int) -> None:
        try:
            psutil.Process(pid).terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            log.info("terminate %d failed: %s", pid, e)

    def terminate_by_name(self, name: str) -> None:
        for proc in psutil.process_iter(["name"]):
            try:
                if proc.info["name"] == name:
                    proc.terminate()
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                log.info("terminate %s (%d) failed: %s", name, proc.pid, e)
