"""Tick clock and per-widget refresh fan-out.

The clock counts elapsed seconds as an exact :class:`~fractions.Fraction` and
wraps at one minute. A widget is due whenever its refresh interval divides the
clock with no remainder, so an interval of 1/4 fires on every quarter second
and an interval of 60 fires once per wraparound, forever, without drift.
"""

from __future__ import annotations

import logging
import threading
import time
from fractions import Fraction
from typing import Protocol, Sequence

log = logging.getLogger(__name__)

WRAP = Fraction(60)


class Refreshable(Protocol):
    name: str
    refresh_interval: Fraction

    def refresh(self) -> None: ...


class _Refresh:
    """One refresh running on its own daemon thread."""

    def __init__(self, widget: Refreshable) -> None:
        self.widget = widget
        self.done = threading.Event()
        self.error: Exception | None = None
        self.thread = threading.Thread(
            target=self._run, name=f"refresh-{widget.name}", daemon=True
        )

    def _run(self) -> None:
        try:
            self.widget.refresh()
        except Exception as e:
            # Reported by the scheduler once it collects this refresh
            self.error = e
        finally:
            self.done.set()


class Scheduler:
    """Decides which widgets refresh on each tick and runs them concurrently.

    Each due widget refreshes on its own daemon thread. The barrier waits at
    most ``refresh_timeout`` seconds; a widget still refreshing after that
    keeps running in the background and is skipped on later ticks until it
    returns, so one stuck source only ever stalls its own panel. Daemon threads
    never hold up interpreter exit.
    """

    def __init__(
        self,
        widgets: Sequence[Refreshable],
        base_interval: Fraction,
        refresh_timeout: float | None = 2.0,
    ) -> None:
        if base_interval <= 0:
            raise ValueError(f"base interval must be positive: {base_interval}")
        self.widgets = list(widgets)
        self.base_interval = Fraction(base_interval)
        self.refresh_timeout = refresh_timeout
        self.elapsed = Fraction(0)
        self._inflight: dict[int, _Refresh] = {}

    def advance(self) -> Fraction:
        """Move the clock forward one tick. Call exactly once per tick."""
        self.elapsed = (self.elapsed + self.base_interval) % WRAP
        return self.elapsed

    def due(self, elapsed: Fraction | None = None) -> list[Refreshable]:
        if elapsed is None:
            elapsed = self.elapsed
        return [w for w in self.widgets if elapsed % w.refresh_interval == 0]

    def run_due(self, widgets: Sequence[Refreshable]) -> list[Refreshable]:
        """Refresh ``widgets`` concurrently and wait for them.

        Returns the widgets whose refresh finished within the timeout.
        """
        started: list[_Refresh] = []
        for widget in widgets:
            previous = self._inflight.get(id(widget))
            if previous is not None and not previous.done.is_set():
                log.warning("%s: previous refresh still running, skipping", widget.name)
                continue
            job = _Refresh(widget)
            self._inflight[id(widget)] = job
            job.thread.start()
            started.append(job)

        deadline = None
        if self.refresh_timeout is not None:
            deadline = time.monotonic() + self.refresh_timeout

        finished: list[Refreshable] = []
        for job in started:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not job.done.wait(remaining):
                log.warning("%s: refresh exceeded %ss", job.widget.name, self.refresh_timeout)
                continue
            if job.error is not None:
                log.error("%s: refresh raised %r", job.widget.name, job.error)
            else:
                finished.append(job.widget)
        return finished

    def tick(self) -> list[Refreshable]:
        """Advance one tick and refresh whatever became due."""
        self.advance()
        return self.run_due(self.due())

    def prime(self) -> list[Refreshable]:
        """Initial pass at clock 0: every widget is due."""
        return self.run_due(self.due())

    def shutdown(self) -> None:
        """Forget in-flight refreshes. Stuck ones are abandoned, not joined."""
        for job in self._inflight.values():
            if not job.done.is_set():
                log.warning("%s: abandoning refresh still running at exit", job.widget.name)
        self._inflight.clear()
