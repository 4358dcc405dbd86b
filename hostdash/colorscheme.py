"""Colorschemes: built-in palettes and user JSON files.

Colours are terminal palette indexes (0-255); ``-1`` means the terminal's
default colour. A custom scheme named ``foo`` is read from
``~/.config/hostdash/foo.json`` and must provide every field below.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from hostdash.config import CONFIG_DIR, ConfigError


@dataclass(slots=True, frozen=True)
class Colorscheme:
    fg: int
    bg: int
    titles: int
    borders: int
    battery_lines: tuple[int, ...]
    cpu_lines: tuple[int, ...]  # at least 8 entries
    mem_main: int
    mem_swap: int
    net_bars: int
    proc_cursor: int
    temp_low: int
    temp_high: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Colorscheme:
        names = [f.name for f in fields(cls)]
        missing = [name for name in names if name not in data]
        if missing:
            raise ConfigError(f"colorscheme is missing {', '.join(missing)}")
        values: dict[str, Any] = {}
        for name in names:
            value = data[name]
            if name.endswith("_lines"):
                if not isinstance(value, list) or not value:
                    raise ConfigError(f"colorscheme {name} must be a non-empty list")
                values[name] = tuple(_color(name, v) for v in value)
            else:
                values[name] = _color(name, value)
        if len(values["cpu_lines"]) < 8:
            raise ConfigError("colorscheme cpu_lines needs at least 8 entries")
        return cls(**values)


def _color(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not -1 <= value <= 255:
        raise ConfigError(f"colorscheme {name}: {value!r} is not a colour in -1..255")
    return value


# ── Built-in schemes ───────────────────────────────────────────────────────

BUILTIN: dict[str, Colorscheme] = {
    "default": Colorscheme(
        fg=7,
        bg=-1,
        titles=7,
        borders=6,
        battery_lines=(4, 3, 2, 1, 5, 6, 7, 8),
        cpu_lines=(4, 3, 2, 1, 5, 6, 7, 8),
        mem_main=5,
        mem_swap=11,
        net_bars=7,
        proc_cursor=4,
        temp_low=2,
        temp_high=1,
    ),
    # For terminals with a white background
    "default-dark": Colorscheme(
        fg=235,
        bg=-1,
        titles=235,
        borders=6,
        battery_lines=(4, 3, 2, 1, 5, 6, 7, 8),
        cpu_lines=(4, 3, 2, 1, 5, 6, 7, 8),
        mem_main=5,
        mem_swap=3,
        net_bars=235,
        proc_cursor=33,
        temp_low=2,
        temp_high=1,
    ),
    "solarized-dark": Colorscheme(
        fg=250,
        bg=-1,
        titles=37,
        borders=240,
        battery_lines=(61, 33, 37, 64, 125, 160, 166, 136),
        cpu_lines=(61, 33, 37, 64, 125, 160, 166, 136),
        mem_main=125,
        mem_swap=166,
        net_bars=33,
        proc_cursor=136,
        temp_low=64,
        temp_high=160,
    ),
    "monokai": Colorscheme(
        fg=249,
        bg=-1,
        titles=249,
        borders=239,
        battery_lines=(81, 70, 208, 197, 249, 141, 221, 186),
        cpu_lines=(81, 70, 208, 197, 249, 141, 221, 186),
        mem_main=208,
        mem_swap=186,
        net_bars=81,
        proc_cursor=197,
        temp_low=70,
        temp_high=208,
    ),
    "vice": Colorscheme(
        fg=231,
        bg=-1,
        titles=201,
        borders=201,
        battery_lines=(212, 218, 123, 159, 229, 158, 183, 146),
        cpu_lines=(212, 218, 123, 159, 229, 158, 183, 146),
        mem_main=201,
        mem_swap=97,
        net_bars=97,
        proc_cursor=159,
        temp_low=49,
        temp_high=197,
    ),
}


def load_colorscheme(name: str, config_dir: Path = CONFIG_DIR) -> Colorscheme:
    """Resolve a built-in scheme, or ``<config_dir>/<name>.json``."""
    if name in BUILTIN:
        return BUILTIN[name]
    path = config_dir / f"{name}.json"
    if not path.is_file():
        raise ConfigError(
            f"unknown colorscheme {name!r} (built-in: {', '.join(BUILTIN)}; "
            f"custom schemes go in {config_dir})"
        )
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must hold a JSON object")
    return Colorscheme.from_dict(data)
