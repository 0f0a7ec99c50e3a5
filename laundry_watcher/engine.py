"""
Telemetry -> machine state engine.

    broker message -> diagnostics
                   -> normalize_payload -> readings
                   -> channel driver (single machine, or dual-occupancy pair)
                   -> ChannelStateMachine transitions
                   -> StatsLedger (write-through) -> EventBus

Everything that mutates machine state (inbound messages and debounce
timers) runs under one re-entrant lock, so a stop timer and a new
reading never interleave.
"""

import datetime as dt
import threading
from typing import Any, Callable, Dict, Optional, Union

from .config import ChannelTable
from .diagnostics import DiagnosticsCollector
from .dual import DualOccupancyChannel
from .events import MACHINE_STARTED, MACHINE_STOPPED, EventBus, MachineEvent
from .fsm import ChannelStateMachine, Machine
from .payloads import Reading, normalize_payload
from .stats import StatsLedger
from .timers import Scheduler, TimerArena
from .utils import local_now

Driver = Union[ChannelStateMachine, DualOccupancyChannel]


class LaundryEngine:

    def __init__(self, channels: ChannelTable, ledger: StatsLedger,
                 scheduler: Optional[Scheduler] = None,
                 clock: Callable[[], dt.datetime] = local_now,
                 events: Optional[EventBus] = None,
                 diagnostics: Optional[DiagnosticsCollector] = None):
        self._lock = threading.RLock()
        self.channels = channels
        self.ledger = ledger
        self.clock = clock
        self.events = events if events is not None else EventBus()
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticsCollector(clock)
        self.timers = TimerArena(scheduler, lock=self._lock)

        self.machines: Dict[int, Machine] = {}
        self._fsms: Dict[int, ChannelStateMachine] = {}
        self._drivers: Dict[int, Driver] = {}
        for cfg in channels:
            fsms = []
            for spec in cfg.machines:
                machine = Machine(spec.id, spec.name)
                fsm = ChannelStateMachine(machine, cfg.profile, self.timers,
                                          on_started=self._on_started,
                                          on_stopped=self._on_stopped,
                                          clock=clock)
                self.machines[spec.id] = machine
                self._fsms[spec.id] = fsm
                fsms.append(fsm)
            if cfg.is_dual:
                self._drivers[cfg.channel] = DualOccupancyChannel(cfg.profile, fsms[0], fsms[1])
            else:
                self._drivers[cfg.channel] = fsms[0]

    # --- transition hooks ---

    def _on_started(self, fsm: ChannelStateMachine, now: dt.datetime):
        self.ledger.record_start(fsm.machine.id, now.date())
        self.events.emit(MachineEvent(MACHINE_STARTED, fsm.machine.to_dict(), now))

    def _on_stopped(self, fsm: ChannelStateMachine, runtime_ms: int, now: dt.datetime):
        self.ledger.record_runtime(fsm.machine.id, now.date(), runtime_ms)
        self.events.emit(MachineEvent(MACHINE_STOPPED, fsm.machine.to_dict(), now))

    # --- ingestion ---

    def handle_message(self, topic: str, payload: Any) -> int:
        """Broker callback entry. Returns the number of readings applied."""
        self.diagnostics.record_message(topic, payload)
        applied = 0
        for reading in normalize_payload(payload):
            if self.ingest(reading):
                applied += 1
        return applied

    def ingest(self, reading: Reading) -> bool:
        driver = self._drivers.get(reading.channel)
        if driver is None:
            return False
        with self._lock:
            driver.update_power(reading.power, reading.current)
        return True

    # --- queries ---

    def get_machines(self) -> Dict[int, Dict[str, Any]]:
        with self._lock:
            return {mid: m.to_dict() for mid, m in sorted(self.machines.items())}

    def get_stats(self, days_back: int = 7) -> Dict[str, Dict[int, Dict[str, Any]]]:
        return self.ledger.query(days_back, today=self.clock().date())

    def get_debug_status(self) -> Dict[str, Any]:
        return self.diagnostics.snapshot()

    def machine_state(self, machine_id: int) -> str:
        with self._lock:
            return self._fsms[machine_id].state

    def shutdown(self):
        self.timers.cancel_all()
