"""Input events, raw terminal decoding and the dashboard keymap."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Union

# ── Events ─────────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class Key:
    name: str  # a printable character, or "up", "pagedown", "esc", ...
    ctrl: bool = False


@dataclass(slots=True, frozen=True)
class Mouse:
    button: str  # "wheel_up", "wheel_down", "left", ...


@dataclass(slots=True, frozen=True)
class Resize:
    pass


@dataclass(slots=True, frozen=True)
class Tick:
    pass


@dataclass(slots=True, frozen=True)
class Terminate:
    signum: int = 0


Event = Union[Key, Mouse, Resize, Tick, Terminate]


# ── Decoding ───────────────────────────────────────────────────────────────

_SGR_MOUSE = re.compile(r"\x1b\[<(\d+);(\d+);(\d+)([Mm])")
_CSI = re.compile(r"\x1b\[([0-9;]*)([@-~])")

_CSI_KEYS = {"A": "up", "B": "down", "C": "right", "D": "left", "H": "home", "F": "end"}
_TILDE_KEYS = {
    "1": "home",
    "2": "insert",
    "3": "delete",
    "4": "end",
    "5": "pageup",
    "6": "pagedown",
    "7": "home",
    "8": "end",
}
_CONTROL_KEYS = {"\t": "tab", "\r": "enter", "\n": "enter", "\x7f": "backspace", "\x08": "backspace"}


def _mouse_button(code: int) -> str:
    if code & 64:
        return "wheel_down" if code & 1 else "wheel_up"
    return ("left", "middle", "right", "release")[code & 3]


def _decode_escape(text: str, i: int) -> tuple[Event | None, int]:
    if i + 1 >= len(text):
        return Key("esc"), i + 1

    nxt = text[i + 1]
    if nxt == "[":
        m = _SGR_MOUSE.match(text, i)
        if m:
            return Mouse(_mouse_button(int(m.group(1)))), m.end()
        if text.startswith("\x1b[M", i) and i + 5 < len(text):
            return Mouse(_mouse_button(ord(text[i + 3]) - 32)), i + 6
        m = _CSI.match(text, i)
        if m:
            params, final = m.group(1), m.group(2)
            if final in _CSI_KEYS:
                return Key(_CSI_KEYS[final]), m.end()
            if final == "~":
                name = _TILDE_KEYS.get(params.split(";")[0])
                return (Key(name) if name else None), m.end()
            return None, m.end()
        return Key("esc"), i + 1
    if nxt == "O" and i + 2 < len(text):
        name = _CSI_KEYS.get(text[i + 2])
        return (Key(name) if name else None), i + 3
    # Alt+key arrives as ESC followed by the key; treat the ESC on its own
    return Key("esc"), i + 1


def decode(data: bytes) -> list[Event]:
    """Turn a chunk of raw terminal input into key and mouse events."""
    text = data.decode("utf-8", errors="replace")
    events: list[Event] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\x1b":
            event, i = _decode_escape(text, i)
            if event is not None:
                events.append(event)
            continue
        if ch in _CONTROL_KEYS:
            events.append(Key(_CONTROL_KEYS[ch]))
        elif "\x01" <= ch <= "\x1a":
            events.append(Key(chr(ord(ch) + 96), ctrl=True))
        elif ch.isprintable():
            events.append(Key(ch))
        i += 1
    return events


# ── Keymap ─────────────────────────────────────────────────────────────────


class Action(Enum):
    QUIT = auto()
    HELP = auto()
    PAUSE = auto()
    ESCAPE = auto()
    UP = auto()
    DOWN = auto()
    HALF_PAGE_UP = auto()
    HALF_PAGE_DOWN = auto()
    PAGE_UP = auto()
    PAGE_DOWN = auto()
    TOP = auto()
    BOTTOM = auto()
    KILL = auto()
    SORT_CPU = auto()
    SORT_MEM = auto()
    SORT_PID = auto()
    SORT_COMMAND = auto()
    TOGGLE_GROUP = auto()
    SCALE_IN = auto()
    SCALE_OUT = auto()
    FILTER = auto()


KEYMAP: dict[Key, Action] = {
    Key("q"): Action.QUIT,
    Key("?"): Action.HELP,
    Key(" "): Action.PAUSE,
    Key("esc"): Action.ESCAPE,
    Key("k"): Action.UP,
    Key("up"): Action.UP,
    Key("j"): Action.DOWN,
    Key("down"): Action.DOWN,
    Key("pageup"): Action.PAGE_UP,
    Key("pagedown"): Action.PAGE_DOWN,
    Key("home"): Action.TOP,
    Key("G"): Action.BOTTOM,
    Key("end"): Action.BOTTOM,
    Key("tab"): Action.TOGGLE_GROUP,
    Key("c"): Action.SORT_CPU,
    Key("m"): Action.SORT_MEM,
    Key("p"): Action.SORT_PID,
    Key("n"): Action.SORT_COMMAND,
    Key("h"): Action.SCALE_IN,
    Key("l"): Action.SCALE_OUT,
    Key("/"): Action.FILTER,
    # Control layer
    Key("c", ctrl=True): Action.QUIT,
    Key("u", ctrl=True): Action.HALF_PAGE_UP,
    Key("d", ctrl=True): Action.HALF_PAGE_DOWN,
    Key("b", ctrl=True): Action.PAGE_UP,
    Key("f", ctrl=True): Action.PAGE_DOWN,
}

SEQUENCES: dict[Key, Action] = {
    Key("g"): Action.TOP,
    Key("d"): Action.KILL,
}

MOUSE_MAP: dict[str, Action] = {
    "wheel_up": Action.UP,
    "wheel_down": Action.DOWN,
}

HELP_TEXT = """\
Quit: q or <C-c>
Pause: <Space>
Process navigation:
  - k and <Up>: up
  - j and <Down>: down
  - <C-u>: half page up
  - <C-d>: half page down
  - <C-b> and <PageUp>: full page up
  - <C-f> and <PageDown>: full page down
  - gg and <Home>: jump to top
  - G and <End>: jump to bottom
  - mouse wheel: up and down
Process actions:
  - <Tab>: toggle process grouping
  - dd: kill selected process or process group
Process sorting (again to reverse):
  - p: PID/Count
  - n: Command
  - c: CPU
  - m: Mem
Process filtering:
  - /: start editing filter
  - (while editing):
    - <Enter>: accept filter
    - <C-c> and <Escape>: clear filter
CPU and Mem graph scaling:
  - h: scale in
  - l: scale out
Close this menu: ? or <Esc>"""


# ── Two-key sequences ──────────────────────────────────────────────────────


class Idle:
    def __repr__(self) -> str:
        return "Idle()"


@dataclass(slots=True, frozen=True)
class AwaitingSecondOf:
    key: Key


IDLE = Idle()


class KeySequence:
    """Tracks ``gg``/``dd`` style bindings.

    The first press of a sequence key moves to ``AwaitingSecondOf(key)``;
    pressing that same key next fires the action and returns to ``Idle``.
    Any other input in between cancels the sequence.
    """

    def __init__(self, sequences: dict[Key, Action] = SEQUENCES) -> None:
        self.sequences = sequences
        self.state: Idle | AwaitingSecondOf = IDLE

    def feed(self, key: Key) -> Action | None:
        state = self.state
        if isinstance(state, AwaitingSecondOf) and state.key == key:
            self.state = IDLE
            return self.sequences[key]
        self.state = AwaitingSecondOf(key) if key in self.sequences else IDLE
        return None

    def cancel(self) -> None:
        self.state = IDLE
