"""
Per-machine run/idle state machine.

    IDLE --(power > start)--> RUNNING --(power < stop)--> PENDING_STOP
    PENDING_STOP --(power > start before expiry)--> RUNNING   (same run, startedAt kept)
    PENDING_STOP --(debounce timer fires)--> IDLE

PENDING_STOP still reports is_running = True. The machine is driven by a
tri-state request: True (asked to run), False (asked to stop) or None
(reading inside the hysteresis band, nothing to do).
"""

import datetime as dt
from typing import Any, Callable, Dict, Optional

from .config import ChannelProfile
from .timers import TimerArena
from .utils import iso_or_none, local_now, tprint

IDLE = "IDLE"
RUNNING = "RUNNING"
PENDING_STOP = "PENDING_STOP"


class Machine:
    """Live record of one washer/dryer slot."""

    def __init__(self, machine_id: int, name: str):
        self.id = machine_id
        self.name = name
        self.power: float = 0.0
        self.current: Optional[float] = None
        self.is_running = False
        self.started_at: Optional[dt.datetime] = None
        self.last_started_at: Optional[dt.datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "power": self.power,
            "current": self.current,
            "isRunning": self.is_running,
            "startedAt": iso_or_none(self.started_at),
            "lastStartedAt": iso_or_none(self.last_started_at),
        }


def run_request(profile: ChannelProfile, power: float) -> Optional[bool]:
    if power > profile.start_threshold_w:
        return True
    if power < profile.stop_threshold_w:
        return False
    return None


StartedHook = Callable[["ChannelStateMachine", dt.datetime], None]
StoppedHook = Callable[["ChannelStateMachine", int, dt.datetime], None]


class ChannelStateMachine:

    def __init__(self, machine: Machine, profile: ChannelProfile, timers: TimerArena,
                 on_started: Optional[StartedHook] = None, on_stopped: Optional[StoppedHook] = None,
                 clock: Callable[[], dt.datetime] = local_now):
        self.machine = machine
        self.profile = profile
        self.timers = timers
        self.on_started = on_started
        self.on_stopped = on_stopped
        self.clock = clock

    # --- helpers ---

    def _log(self, msg: str):
        tprint(f"[{self.machine.name}] {msg}")

    @property
    def key(self) -> int:
        return self.machine.id

    @property
    def state(self) -> str:
        if not self.machine.is_running:
            return IDLE
        return PENDING_STOP if self.timers.is_armed(self.key) else RUNNING

    # --- transitions ---

    def _enter_running(self):
        if self.timers.cancel(self.key):
            self._log(f"stop aborted (power up, {self.machine.power:.1f} W)")
        if self.machine.is_running:
            return
        now = self.clock()
        self.machine.is_running = True
        self.machine.started_at = now
        self.machine.last_started_at = now
        self._log(f"state -> {RUNNING} ({self.machine.power:.1f} W)")
        if self.on_started:
            self.on_started(self, now)

    def _enter_pending_stop(self):
        if not self.machine.is_running or self.timers.is_armed(self.key):
            return
        started_at = self.machine.started_at
        delay = self.profile.stop_delay_seconds
        self.timers.arm(self.key, delay, lambda: self._finish(started_at))
        self._log(f"state -> {PENDING_STOP} ({self.machine.power:.1f} W, stop in {int(delay)}s)")

    def _finish(self, started_at: Optional[dt.datetime]):
        now = self.clock()
        runtime_ms = 0
        if started_at is not None:
            runtime_ms = max(0, int((now - started_at).total_seconds() * 1000))
        self.machine.is_running = False
        self.machine.started_at = None
        self._log(f"state -> {IDLE} (ran {runtime_ms // 60000}m)")
        if self.on_stopped:
            self.on_stopped(self, runtime_ms, now)

    # --- public ---

    def observe(self, power: float, current: Optional[float] = None):
        self.machine.power = power
        self.machine.current = current

    def apply(self, wants_run: Optional[bool]):
        if wants_run is True:
            self._enter_running()
        elif wants_run is False:
            self._enter_pending_stop()

    def update_power(self, power: float, current: Optional[float] = None):
        """Single-machine channel: thresholds alone decide."""
        self.observe(power, current)
        self.apply(run_request(self.profile, power))
