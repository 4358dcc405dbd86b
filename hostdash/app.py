"""Builds the widget set the dashboard runs from the merged configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from hostdash.config import base_interval, check_interval, parse_interval
from hostdash.proctable import ProcessTable
from hostdash.sources import (
    BatterySource,
    CpuSource,
    DiskSource,
    MemSource,
    NetSource,
    ProcessControl,
    ProcessSource,
    temperature_source,
)
from hostdash.widgets import (
    BatteryWidget,
    CpuWidget,
    DiskWidget,
    GraphScale,
    MemWidget,
    NetWidget,
    TempWidget,
    Widget,
)


@dataclass
class Widgets:
    cpu: CpuWidget
    mem: MemWidget
    proc: ProcessTable
    scale: GraphScale
    disk: DiskWidget | None = None
    net: NetWidget | None = None
    temp: TempWidget | None = None
    battery: BatteryWidget | None = None

    def all(self) -> list[Widget]:
        """Every enabled widget, in a fixed order."""
        candidates: list[Widget | None] = [
            self.cpu,
            self.mem,
            self.proc,
            self.disk,
            self.net,
            self.temp,
            self.battery,
        ]
        return [w for w in candidates if w is not None]


def setup_widgets(config: dict[str, Any]) -> Widgets:
    """Create the widgets. Minimal mode keeps only CPU, Mem and Proc."""
    base = base_interval(config)
    interval = check_interval(parse_interval(config.get("interval", "1")), base)
    scale = GraphScale()

    widgets = Widgets(
        cpu=CpuWidget(
            CpuSource(),
            interval,
            scale,
            show_average=bool(config.get("average_cpu")),
            show_percpu=bool(config.get("per_cpu")),
        ),
        mem=MemWidget(MemSource(), interval, scale),
        proc=ProcessTable(ProcessSource(), ProcessControl()),
        scale=scale,
    )
    if config.get("minimal"):
        return widgets

    widgets.disk = DiskWidget(DiskSource())
    widgets.net = NetWidget(NetSource(str(config.get("interfaces", "!tun0"))))
    widgets.temp = TempWidget(temperature_source(), fahrenheit=bool(config.get("fahrenheit")))
    if config.get("battery"):
        widgets.battery = BatteryWidget(BatterySource())

    return widgets
