"""Shared fixtures: manual clock/scheduler so debounce timers run deterministically."""

from __future__ import annotations

import datetime as dt

import pytest

from laundry_watcher.config import DEFAULT_CHANNELS, ChannelTable
from laundry_watcher.engine import LaundryEngine
from laundry_watcher.payloads import Reading
from laundry_watcher.stats import JsonStatsStore, StatsLedger

T0 = dt.datetime(2026, 10, 19, 9, 0, 0)


class ManualClock:
    def __init__(self, start: dt.datetime = T0) -> None:
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += dt.timedelta(seconds=seconds)


class ManualTimer:
    def __init__(self, due: dt.datetime, callback) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Drop-in for the thread scheduler; timers fire only on advance()."""

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self.timers: list[ManualTimer] = []

    def __call__(self, delay_s: float, callback) -> ManualTimer:
        timer = ManualTimer(self.clock() + dt.timedelta(seconds=delay_s), callback)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        target = self.clock() + dt.timedelta(seconds=seconds)
        while True:
            due = sorted((t for t in self.pending() if t.due <= target), key=lambda t: t.due)
            if not due:
                break
            timer = due[0]
            self.clock.now = timer.due
            timer.fired = True
            timer.callback()
        self.clock.now = target


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def channels() -> ChannelTable:
    return ChannelTable.from_list(DEFAULT_CHANNELS)


@pytest.fixture
def stats_dir(tmp_path):
    return tmp_path / "stats"


@pytest.fixture
def ledger(channels: ChannelTable, stats_dir) -> StatsLedger:
    return StatsLedger(JsonStatsStore(str(stats_dir)), names=channels.machine_names())


@pytest.fixture
def engine(channels, ledger, scheduler, clock) -> LaundryEngine:
    return LaundryEngine(channels, ledger, scheduler=scheduler, clock=clock)


@pytest.fixture
def recorded(engine: LaundryEngine) -> list:
    events: list = []
    engine.events.subscribe(events.append)
    return events


def feed(engine: LaundryEngine, channel: int, power: float, current: float | None = None) -> bool:
    return engine.ingest(Reading(channel, power, current))
