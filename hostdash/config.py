"""Configuration loading for hostdash.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/hostdash/config.toml → defaults only.
"""

from __future__ import annotations

import sys
import tomllib
from fractions import Fraction
from pathlib import Path
from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "rate": 1,
    "interval": "1",
    "refresh_timeout": 2.0,
    "minimal": False,
    "average_cpu": False,
    "per_cpu": False,
    "battery": False,
    "fahrenheit": False,
    "statusbar": False,
    "interfaces": "!tun0",
    "log_level": "WARNING",
    "colorscheme": "default",
    "thresholds": {
        "cpu_percent": {"warning": 80.0, "critical": 95.0},
        "ram_percent": {"warning": 85.0, "critical": 95.0},
        "cpu_temp": {"warning": 80.0, "critical": 90.0},
    },
}

CONFIG_DIR = Path.home() / ".config" / "hostdash"
_DEFAULT_PATH = CONFIG_DIR / "config.toml"


class ConfigError(ValueError):
    """A config value parsed fine but cannot be used."""


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            # Merge one level: overlay sub-keys into base sub-keys
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/hostdash/config.toml.

    Returns:
        Merged configuration dict.

    Raises:
        SystemExit: If an explicit path doesn't exist or can't be parsed.
    """
    if path is not None:
        if not path.is_file():
            print(f"hostdash: config file not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        try:
            user_config = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            print(f"hostdash: invalid TOML in {path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
        return _deep_merge(DEFAULT_CONFIG, user_config)

    # Try default location silently
    if _DEFAULT_PATH.is_file():
        try:
            user_config = tomllib.loads(_DEFAULT_PATH.read_text(encoding="utf-8"))
            return _deep_merge(DEFAULT_CONFIG, user_config)
        except tomllib.TOMLDecodeError:
            print(
                f"hostdash: warning: ignoring invalid TOML in {_DEFAULT_PATH}",
                file=sys.stderr,
            )

    return dict(DEFAULT_CONFIG)


def parse_interval(value: str | int | float) -> Fraction:
    """Parse a refresh interval such as ``1``, ``"5"`` or ``"1/4"`` into seconds.

    Floats go through their decimal string so ``0.25`` becomes exactly 1/4.
    """
    try:
        seconds = Fraction(str(value))
    except (ValueError, ZeroDivisionError) as e:
        raise ConfigError(f"invalid interval: {value!r}") from e
    if seconds <= 0:
        raise ConfigError(f"interval must be positive: {value!r}")
    return seconds


def base_interval(config: dict[str, Any]) -> Fraction:
    """Seconds between two physical ticks (``1 / rate``)."""
    rate = config.get("rate", DEFAULT_CONFIG["rate"])
    if not isinstance(rate, int) or isinstance(rate, bool) or rate < 1:
        raise ConfigError(f"rate must be a positive integer: {rate!r}")
    return Fraction(1, rate)


def check_interval(interval: Fraction, base: Fraction) -> Fraction:
    """Reject intervals the tick clock can never land on."""
    if interval % base != 0:
        raise ConfigError(
            f"interval {interval} is not a multiple of the tick length {base}"
        )
    return interval


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    lines = [
        "# hostdash configuration",
        "# Place this file at ~/.config/hostdash/config.toml",
        "",
    ]

    for key, value in DEFAULT_CONFIG.items():
        if isinstance(value, dict):
            continue
        if isinstance(value, bool):
            lines.append(f"{key} = {'true' if value else 'false'}")
        elif isinstance(value, str):
            lines.append(f'{key} = "{value}"')
        else:
            lines.append(f"{key} = {value}")
    lines.append("")

    # Thresholds
    for metric, levels in DEFAULT_CONFIG["thresholds"].items():
        lines.append(f"[thresholds.{metric}]")
        lines.append(f"warning = {levels['warning']}")
        lines.append(f"critical = {levels['critical']}")
        lines.append("")

    return "\n".join(lines) + "\n"


def refresh_timeout(config: dict[str, Any]) -> float:
    """Seconds the tick waits for due refreshes before moving on."""
    value = config.get("refresh_timeout", DEFAULT_CONFIG["refresh_timeout"])
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"refresh_timeout must be a positive number: {value!r}")
    return float(value)
