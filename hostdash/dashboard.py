"""Interactive terminal dashboard: event loop, terminal ownership and CLI.

One coordinating loop on the main thread reads a single event channel. Three
producers feed it: a ticker thread at the base tick rate, a reader thread
decoding raw terminal input, and signal handlers (termination and resize).
Refreshes, input handling and rendering therefore happen strictly one after
another on the main thread.

Usage:
    hostdash
    hostdash --rate 4 --interval 1/2 --per-cpu
    hostdash --minimal --config path/to/config.toml
    hostdash -c solarized-dark
"""

from __future__ import annotations

import argparse
import curses
import logging
import os
import select
import signal
import sys
import threading
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Any, Callable, Protocol, Sequence

from hostdash.app import Widgets, setup_widgets
from hostdash.colorscheme import BUILTIN, Colorscheme, load_colorscheme
from hostdash.config import (
    DEFAULT_CONFIG,
    base_interval,
    dump_default_config,
    load_config,
    refresh_timeout,
)
from hostdash.keys import (
    KEYMAP,
    MOUSE_MAP,
    Action,
    Event,
    Key,
    KeySequence,
    Mouse,
    Resize,
    Terminate,
    Tick,
    decode,
)
from hostdash.proctable import SortKey
from hostdash.render import CursesRenderer, init_colors
from hostdash.scheduler import Scheduler

log = logging.getLogger(__name__)

LOGFILE = Path.home() / ".local" / "state" / "hostdash" / "errors.log"

MOUSE_ON = "\x1b[?1000h\x1b[?1006h"
MOUSE_OFF = "\x1b[?1000l\x1b[?1006l"

_TABLE_ACTIONS: dict[Action, str] = {
    Action.UP: "scroll_up",
    Action.DOWN: "scroll_down",
    Action.HALF_PAGE_UP: "scroll_half_page_up",
    Action.HALF_PAGE_DOWN: "scroll_half_page_down",
    Action.PAGE_UP: "scroll_page_up",
    Action.PAGE_DOWN: "scroll_page_down",
    Action.TOP: "scroll_to_top",
    Action.BOTTOM: "scroll_to_bottom",
    Action.TOGGLE_GROUP: "toggle_grouping",
}

_SORT_ACTIONS: dict[Action, SortKey] = {
    Action.SORT_CPU: SortKey.CPU,
    Action.SORT_MEM: SortKey.MEM,
    Action.SORT_PID: SortKey.PID,
    Action.SORT_COMMAND: SortKey.COMMAND,
}


class Renderer(Protocol):
    def draw(self, paused: bool = False) -> None: ...

    def draw_regions(self, names: Sequence[str], paused: bool = False) -> None: ...

    def draw_help(self) -> None: ...

    def resize(self) -> None: ...


class TerminalError(RuntimeError):
    """The terminal could not be put into dashboard mode."""


# ── Terminal ───────────────────────────────────────────────────────────────


class Terminal:
    """Owns curses setup and teardown.

    ``restore()`` is idempotent and also runs from the crash hooks, before any
    traceback is printed, so a crash never leaves the shell in raw mode on the
    alternate screen.
    """

    def __init__(
        self,
        on_crash: Callable[[], None] | None = None,
        scheme: Colorscheme = BUILTIN["default"],
    ) -> None:
        self.stdscr: curses.window | None = None
        self.scheme = scheme
        self.on_crash = on_crash
        self._active = False

    def setup(self) -> curses.window:
        try:
            stdscr = curses.initscr()
            self._active = True
            curses.noecho()
            curses.raw()
            init_colors(self.scheme)
            try:
                curses.curs_set(0)
            except curses.error:
                pass  # terminal cannot hide the cursor
        except curses.error as e:
            self.restore()
            raise TerminalError(f"cannot initialise terminal: {e}") from e
        sys.stdout.write(MOUSE_ON)
        sys.stdout.flush()
        self.stdscr = stdscr
        self._install_crash_hooks()
        return stdscr

    def restore(self) -> None:
        if not self._active:
            return
        self._active = False
        try:
            sys.stdout.write(MOUSE_OFF)
            sys.stdout.flush()
            curses.noraw()
            curses.echo()
            curses.endwin()
        except (curses.error, OSError):
            log.exception("terminal teardown failed")

    def _install_crash_hooks(self) -> None:
        previous = sys.excepthook
        previous_thread = threading.excepthook

        def hook(exc_type: Any, exc: Any, tb: Any) -> None:
            self.restore()
            previous(exc_type, exc, tb)

        def thread_hook(args: threading.ExceptHookArgs) -> None:
            self.restore()
            log.error("thread %s crashed", args.thread.name if args.thread else "?")
            if self.on_crash is not None:
                self.on_crash()
            previous_thread(args)

        sys.excepthook = hook
        threading.excepthook = thread_hook


# ── Event producers ────────────────────────────────────────────────────────


class Ticker(threading.Thread):
    """Posts a Tick every ``period`` seconds, without drifting or bursting."""

    def __init__(self, events: SimpleQueue[Event], period: float) -> None:
        super().__init__(daemon=True, name="ticker")
        self.events = events
        self.period = period
        self._stop_event = threading.Event()

    def run(self) -> None:
        next_at = time.monotonic() + self.period
        while not self._stop_event.wait(max(0.0, next_at - time.monotonic())):
            self.events.put(Tick())
            next_at += self.period
            now = time.monotonic()
            if next_at < now:
                # Fell behind (suspended laptop, slow frame): skip missed ticks
                next_at = now + self.period

    def stop(self) -> None:
        self._stop_event.set()


class InputReader(threading.Thread):
    """Reads raw terminal input off the main thread and posts decoded events."""

    def __init__(self, events: SimpleQueue[Event], fd: int) -> None:
        super().__init__(daemon=True, name="input")
        self.events = events
        self.fd = fd
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.is_set():
            ready, _, _ = select.select([self.fd], [], [], 0.2)
            if not ready:
                continue
            data = os.read(self.fd, 1024)
            if not data:
                log.warning("terminal input closed")
                self.events.put(Terminate())
                return
            for event in decode(data):
                self.events.put(event)

    def stop(self) -> None:
        self._stop_event.set()


def install_signal_handlers(events: SimpleQueue[Event]) -> dict[int, Any]:
    """Route termination and resize signals into the event channel.

    SimpleQueue.put is reentrant, so it is safe to call from a handler that
    interrupts the main thread while it waits on the same queue. Returns the
    handlers that were replaced, for :func:`restore_signal_handlers`.
    """

    def on_terminate(signum: int, frame: Any) -> None:
        events.put(Terminate(signum))

    def on_resize(signum: int, frame: Any) -> None:
        events.put(Resize())

    previous: dict[int, Any] = {}
    for name in ("SIGINT", "SIGTERM", "SIGHUP"):
        if hasattr(signal, name):
            signum = getattr(signal, name)
            previous[signum] = signal.signal(signum, on_terminate)
    if hasattr(signal, "SIGWINCH"):
        previous[signal.SIGWINCH] = signal.signal(signal.SIGWINCH, on_resize)
    return previous


def restore_signal_handlers(previous: dict[int, Any]) -> None:
    """Put back the handlers replaced once nothing reads the event channel."""
    for signum, handler in previous.items():
        signal.signal(signum, handler if handler is not None else signal.SIG_DFL)


# ── Event loop ─────────────────────────────────────────────────────────────


class Dashboard:
    """The coordinating loop. Every state change happens inside ``handle()``."""

    def __init__(
        self,
        widgets: Widgets,
        scheduler: Scheduler,
        renderer: Renderer,
        events: SimpleQueue[Event],
        producers: Sequence[threading.Thread] = (),
    ) -> None:
        self.widgets = widgets
        self.scheduler = scheduler
        self.renderer = renderer
        self.events = events
        self.producers = producers
        self.paused = False
        self.help_visible = False
        self.sequence = KeySequence()
        self.running = False

    def run(self) -> None:
        self.running = True
        # Initial pass so the first frame has data before any tick elapses
        self.scheduler.prime()
        self.renderer.draw()
        for producer in self.producers:
            producer.start()
        while self.running:
            self.handle(self.events.get())

    def handle(self, event: Event) -> None:
        if isinstance(event, Terminate):
            log.info("terminating (signal %d)", event.signum)
            self.running = False
        elif isinstance(event, Tick):
            self.on_tick()
        elif isinstance(event, Key):
            if self.widgets.proc.filter_editing:
                self.edit_filter(event)
                return
            action = self.sequence.feed(event)
            if action is None:
                action = KEYMAP.get(event)
            if action is not None:
                self.dispatch(action)
        elif isinstance(event, Mouse):
            self.sequence.cancel()
            action = MOUSE_MAP.get(event.button)
            if action is not None:
                self.dispatch(action)
        elif isinstance(event, Resize):
            self.renderer.resize()
            self._draw_screen()

    def edit_filter(self, key: Key) -> None:
        """While the filter is being edited every key goes to its text."""
        table = self.widgets.proc
        if key.name == "enter":
            table.accept_filter()
        elif key.name == "esc" or key == Key("c", ctrl=True):
            table.clear_filter()
        elif key.name == "backspace":
            table.filter_backspace()
        elif len(key.name) == 1 and not key.ctrl:
            table.filter_append(key.name)
        else:
            return
        self.renderer.draw_regions(["proc"], paused=self.paused)

    def on_tick(self) -> None:
        # Ticks are dropped, not buffered, while paused
        if self.paused:
            return
        self.scheduler.tick()
        if not self.help_visible:
            self.renderer.draw(paused=False)

    def _draw_screen(self) -> None:
        if self.help_visible:
            self.renderer.draw_help()
        else:
            self.renderer.draw(paused=self.paused)

    def dispatch(self, action: Action) -> None:
        if action is Action.QUIT:
            self.running = False
            return
        if action is Action.HELP:
            self.help_visible = not self.help_visible
            self._draw_screen()
            return
        if action is Action.ESCAPE:
            if self.help_visible:
                self.help_visible = False
                self._draw_screen()
            return
        if self.help_visible:
            return
        if action is Action.PAUSE:
            self.paused = not self.paused
            self._draw_screen()
            return

        table = self.widgets.proc
        if action in _TABLE_ACTIONS:
            getattr(table, _TABLE_ACTIONS[action])()
            self.renderer.draw_regions(["proc"], paused=self.paused)
        elif action in _SORT_ACTIONS:
            table.set_sort(_SORT_ACTIONS[action])
            self.renderer.draw_regions(["proc"], paused=self.paused)
        elif action is Action.FILTER:
            table.start_filter()
            self.renderer.draw_regions(["proc"], paused=self.paused)
        elif action is Action.KILL:
            table.kill_selected()
        elif action is Action.SCALE_IN:
            self.widgets.scale.scale_in()
            self.renderer.draw_regions(["cpu", "mem"], paused=self.paused)
        elif action is Action.SCALE_OUT:
            self.widgets.scale.scale_out()
            self.renderer.draw_regions(["cpu", "mem"], paused=self.paused)


# ── Wiring ─────────────────────────────────────────────────────────────────


def setup_logfile(path: Path, level: str) -> None:
    """Send all log records to a rotating file; the terminal belongs to curses."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=1048576, backupCount=4)
    handler.setFormatter(
        logging.Formatter(
            "[%(asctime)s][%(name)s][%(levelname)s]: %(message)s",
            datefmt="%Y-%m-%d][%H:%M:%S",
        )
    )
    root.addHandler(handler)


def run_dashboard(
    config: dict[str, Any], widgets: Widgets, scheme: Colorscheme = BUILTIN["default"]
) -> None:
    events: SimpleQueue[Event] = SimpleQueue()
    terminal = Terminal(on_crash=lambda: events.put(Terminate()), scheme=scheme)
    try:
        stdscr = terminal.setup()
    except TerminalError as e:
        print(f"hostdash: {e}", file=sys.stderr)
        raise SystemExit(1) from e

    scheduler = Scheduler(
        widgets.all(), base_interval(config), refresh_timeout(config)
    )
    renderer = CursesRenderer(
        stdscr,
        widgets,
        config.get("thresholds", DEFAULT_CONFIG["thresholds"]),
        statusbar=bool(config.get("statusbar")),
    )
    ticker = Ticker(events, float(scheduler.base_interval))
    reader = InputReader(events, sys.stdin.fileno())
    previous_handlers = install_signal_handlers(events)
    try:
        Dashboard(widgets, scheduler, renderer, events, (ticker, reader)).run()
    finally:
        ticker.stop()
        reader.stop()
        scheduler.shutdown()
        terminal.restore()
        restore_signal_handlers(previous_handlers)


# ── CLI entry point ────────────────────────────────────────────────────────


def _apply_args(config: dict[str, Any], args: argparse.Namespace) -> dict[str, Any]:
    """Command-line flags win over the config file."""
    merged = dict(config)
    for key in (
        "average_cpu",
        "battery",
        "fahrenheit",
        "interfaces",
        "interval",
        "rate",
        "minimal",
        "per_cpu",
        "statusbar",
        "log_level",
        "colorscheme",
    ):
        value = getattr(args, key)
        if value is not None:
            merged[key] = value
    return merged


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Live terminal dashboard for CPU, memory, disk, network, "
        "temperature, battery and processes.",
    )
    parser.add_argument("-a", "--average-cpu", action="store_true", default=None,
                        help="Show average CPU in the CPU widget")
    parser.add_argument("-b", "--battery", action="store_true", default=None,
                        help="Show the battery widget (ignored with --minimal)")
    parser.add_argument("-c", "--colorscheme", default=None, metavar="NAME",
                        help="Colorscheme: default, default-dark, solarized-dark, monokai, vice, "
                        "or the name of a JSON file in ~/.config/hostdash (default: default)")
    parser.add_argument("-f", "--fahrenheit", action="store_true", default=None,
                        help="Show temperatures in fahrenheit")
    parser.add_argument("-i", "--interfaces", default=None, metavar="LIST",
                        help="Comma separated network interfaces to show; prefix with "
                        "'!' to hide one; 'all' shows every interface (default: !tun0)")
    parser.add_argument("--interval", default=None, metavar="SECONDS",
                        help="Seconds between CPU and Mem updates, e.g. 1 or 1/2 (default: 1)")
    parser.add_argument("-r", "--rate", type=int, default=None,
                        help="Ticks per second (default: 1)")
    parser.add_argument("-m", "--minimal", action="store_true", default=None,
                        help="Only show the CPU, Mem and Process widgets")
    parser.add_argument("-p", "--per-cpu", action="store_true", default=None,
                        help="Show each CPU in the CPU widget")
    parser.add_argument("-s", "--statusbar", action="store_true", default=None,
                        help="Show a statusbar with the time")
    parser.add_argument("--log-level", default=None, metavar="LEVEL",
                        help=f"Log level for {LOGFILE} (default: WARNING)")
    parser.add_argument("--config", type=Path, default=None, metavar="PATH",
                        help="Path to TOML config file")
    parser.add_argument("--dump-config", action="store_true",
                        help="Print the default configuration and exit")
    args = parser.parse_args(argv)

    if args.dump_config:
        print(dump_default_config(), end="")
        return

    config = _apply_args(load_config(args.config), args)
    try:
        widgets = setup_widgets(config)
        # Checked before curses takes over the terminal
        refresh_timeout(config)
        scheme = load_colorscheme(str(config.get("colorscheme", "default")))
        setup_logfile(LOGFILE, str(config.get("log_level", "WARNING")))
    except ValueError as e:  # ConfigError, or an unknown log level
        print(f"hostdash: {e}", file=sys.stderr)
        raise SystemExit(1) from e

    log.info("hostdash started with pid %d", os.getpid())
    run_dashboard(config, widgets, scheme)


if __name__ == "__main__":
    main()
