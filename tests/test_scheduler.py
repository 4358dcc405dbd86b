"""Tests for hostdash.scheduler."""

from __future__ import annotations

import os
import subprocess
import sys
import threading
import time
from fractions import Fraction
from pathlib import Path

import pytest

from hostdash.scheduler import WRAP, Scheduler

ROOT = Path(__file__).resolve().parents[1]


class CountingWidget:
    def __init__(self, name: str, interval: Fraction | int) -> None:
        self.name = name
        self.refresh_interval = Fraction(interval)
        self.refreshes = 0

    def refresh(self) -> None:
        self.refreshes += 1


class BlockingWidget(CountingWidget):
    def __init__(self, name: str, interval: Fraction | int) -> None:
        super().__init__(name, interval)
        self.release = threading.Event()

    def refresh(self) -> None:
        self.release.wait(5)
        super().refresh()


class FailingWidget(CountingWidget):
    def refresh(self) -> None:
        raise RuntimeError("sensor gone")


@pytest.fixture
def make_scheduler():
    created: list[Scheduler] = []

    def factory(widgets, base=Fraction(1), timeout: float | None = 2.0) -> Scheduler:
        scheduler = Scheduler(widgets, base, timeout)
        created.append(scheduler)
        return scheduler

    yield factory
    for scheduler in created:
        scheduler.shutdown()


# ── Clock ──────────────────────────────────────────────────────────────────


class TestClock:
    def test_no_drift_after_many_thirds(self, make_scheduler) -> None:
        scheduler = make_scheduler([], Fraction(1, 3))
        for _ in range(10_000):
            scheduler.advance()
            assert 0 <= scheduler.elapsed < WRAP
        assert scheduler.elapsed == Fraction(10_000, 3) % 60

    def test_wraps_at_sixty(self, make_scheduler) -> None:
        scheduler = make_scheduler([], Fraction(1))
        for _ in range(60):
            scheduler.advance()
        assert scheduler.elapsed == 0

    def test_quarter_second_ticks_land_on_whole_seconds(self, make_scheduler) -> None:
        scheduler = make_scheduler([], Fraction(1, 4))
        for _ in range(4 * 125):
            scheduler.advance()
        assert scheduler.elapsed == 5
        assert scheduler.elapsed.denominator == 1

    def test_rejects_non_positive_base(self) -> None:
        with pytest.raises(ValueError):
            Scheduler([], Fraction(0))


# ── Due set ────────────────────────────────────────────────────────────────


class TestDue:
    def test_everything_due_at_zero(self, make_scheduler) -> None:
        widgets = [CountingWidget(str(i), i) for i in (1, 5, 60)]
        scheduler = make_scheduler(widgets)
        assert scheduler.due() == widgets

    def test_interval_one_due_every_tick(self, make_scheduler) -> None:
        every = CountingWidget("every", 1)
        scheduler = make_scheduler([every])
        for _ in range(120):
            scheduler.advance()
            assert scheduler.due() == [every]

    def test_interval_sixty_due_once_per_wrap(self, make_scheduler) -> None:
        slow = CountingWidget("slow", 60)
        scheduler = make_scheduler([slow], Fraction(1, 4))
        hits = 0
        for _ in range(4 * 60 * 3):
            scheduler.advance()
            hits += len(scheduler.due())
        assert hits == 3

    def test_fractional_interval(self, make_scheduler) -> None:
        half = CountingWidget("half", Fraction(1, 2))
        scheduler = make_scheduler([half], Fraction(1, 4))
        due = []
        for _ in range(4):
            scheduler.advance()
            due.append(bool(scheduler.due()))
        assert due == [False, True, False, True]

    def test_due_matches_modulo(self, make_scheduler) -> None:
        widgets = [CountingWidget(str(i), i) for i in (1, 2, 3, 5)]
        scheduler = make_scheduler(widgets)
        for _ in range(30):
            clock = scheduler.advance()
            expected = [w for w in widgets if clock % w.refresh_interval == 0]
            assert scheduler.due() == expected


# ── Fan-out ────────────────────────────────────────────────────────────────


class TestRunDue:
    def test_end_to_end_scenario(self, make_scheduler) -> None:
        a, b = CountingWidget("a", 1), CountingWidget("b", 1)
        five, sixty = CountingWidget("five", 5), CountingWidget("sixty", 60)
        scheduler = make_scheduler([a, b, five, sixty])
        scheduler.prime()
        for _ in range(5):
            scheduler.tick()
        assert a.refreshes == 6
        assert b.refreshes == 6
        assert five.refreshes == 2
        assert sixty.refreshes == 1

    def test_failure_does_not_stop_others(self, make_scheduler) -> None:
        ok = CountingWidget("ok", 1)
        bad = FailingWidget("bad", 1)
        scheduler = make_scheduler([bad, ok])
        finished = scheduler.prime()
        assert finished == [ok]
        assert ok.refreshes == 1

    def test_stuck_widget_isolated_by_timeout(self, make_scheduler) -> None:
        stuck = BlockingWidget("stuck", 1)
        ok = CountingWidget("ok", 1)
        scheduler = make_scheduler([stuck, ok], timeout=0.2)

        start = time.monotonic()
        finished = scheduler.prime()
        assert time.monotonic() - start < 2
        assert finished == [ok]

        # Still running: skipped rather than stacked up
        finished = scheduler.tick()
        assert finished == [ok]
        assert ok.refreshes == 2

        stuck.release.set()
        time.sleep(0.1)
        scheduler.tick()
        assert stuck.refreshes == 2
        assert ok.refreshes == 3

    def test_refreshes_run_concurrently(self, make_scheduler) -> None:
        barrier = threading.Barrier(3, timeout=2)

        class Meeting(CountingWidget):
            def refresh(self) -> None:
                barrier.wait()
                super().refresh()

        widgets = [Meeting(str(i), 1) for i in range(3)]
        scheduler = make_scheduler(widgets)
        scheduler.prime()
        assert all(w.refreshes == 1 for w in widgets)

    def test_nothing_due(self, make_scheduler) -> None:
        slow = CountingWidget("slow", 5)
        scheduler = make_scheduler([slow])
        assert scheduler.tick() == []
        assert slow.refreshes == 0


# ── Exit ───────────────────────────────────────────────────────────────────

_HUNG_REFRESH_SCRIPT = """
import threading
from fractions import Fraction
from hostdash.scheduler import Scheduler

class Hung:
    name = "hung"
    refresh_interval = Fraction(1)

    def refresh(self):
        threading.Event().wait()

scheduler = Scheduler([Hung()], Fraction(1), refresh_timeout=0.1)
scheduler.prime()
scheduler.tick()
scheduler.shutdown()
print("loop exited", flush=True)
"""


class TestShutdown:
    def test_hung_refresh_does_not_block_exit(self) -> None:
        env = {**os.environ, "PYTHONPATH": str(ROOT)}
        result = subprocess.run(
            [sys.executable, "-c", _HUNG_REFRESH_SCRIPT],
            capture_output=True,
            env=env,
            timeout=20,
        )
        assert result.returncode == 0, result.stderr
        assert result.stdout == b"loop exited\n"

    def test_shutdown_abandons_inflight(
        self, make_scheduler, caplog: pytest.LogCaptureFixture
    ) -> None:
        stuck = BlockingWidget("stuck", 1)
        scheduler = make_scheduler([stuck], timeout=0.05)
        try:
            scheduler.prime()
            scheduler.shutdown()
            assert "abandoning refresh" in caplog.text
            caplog.clear()
            # The abandoned refresh no longer blocks a new one
            scheduler.prime()
            assert "still running, skipping" not in caplog.text
        finally:
            stuck.release.set()

    def test_refresh_threads_are_daemons(self, make_scheduler) -> None:
        seen: list[bool] = []

        class Recorder(CountingWidget):
            def refresh(self) -> None:
                seen.append(threading.current_thread().daemon)

        scheduler = make_scheduler([Recorder("r", 1)])
        scheduler.prime()
        assert seen == [True]
