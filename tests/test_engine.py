"""Engine-level tests: broker payload in, state/stats/events out."""

from __future__ import annotations

import json
import os

from conftest import T0, feed

from laundry_watcher.config import ChannelTable
from laundry_watcher.engine import LaundryEngine
from laundry_watcher.events import MACHINE_STARTED, MACHINE_STOPPED
from laundry_watcher.stats import JsonStatsStore, StatsLedger


def _notify(**channels) -> bytes:
    params = {key.replace("_", ":"): body for key, body in channels.items()}
    return json.dumps({"method": "NotifyStatus", "params": params}).encode("utf-8")


def test_handle_message_drives_machines_and_diagnostics(engine, recorded) -> None:
    applied = engine.handle_message("refoss/em06p", _notify(em_1={"power": 600.0}, em_5={"power": 240.0, "current": 4.2}))

    assert applied == 2
    machines = engine.get_machines()
    assert [mid for mid, m in machines.items() if m["isRunning"]] == [1, 5, 6]
    assert [e.machine["id"] for e in recorded] == [1, 5, 6]
    assert engine.get_debug_status()["messagesReceived"] == 1


def test_garbage_and_unknown_channels_are_ignored(engine, recorded) -> None:
    assert engine.handle_message("misc", b"\x00\x01 binary") == 0
    assert engine.handle_message("misc", b'{"hello": "world"}') == 0
    assert engine.handle_message("misc", b'{"channel": 42, "power": 900}') == 0
    assert feed(engine, 6, 900) is False  # 6 is a virtual unit, not a channel

    assert recorded == []
    assert engine.get_debug_status()["messagesReceived"] == 3


def test_stats_are_durable_before_event_is_emitted(engine, stats_dir) -> None:
    seen = []

    def listener(event):
        path = engine.ledger.store.path_for(event.at.date())
        with open(path, encoding="utf-8") as f:
            seen.append(json.load(f)[str(event.machine["id"])])

    engine.events.subscribe(listener, kinds=[MACHINE_STARTED])
    feed(engine, 3, 100)

    assert seen == [{"starts": 1, "runtimeMs": 0}]


def test_get_stats_reports_runs(engine, scheduler) -> None:
    feed(engine, 1, 500)
    scheduler.advance(45 * 60)
    feed(engine, 1, 0)
    scheduler.advance(180)

    stats = engine.get_stats(7)

    assert stats == {
        T0.date().isoformat(): {
            1: {"name": "Washer 9kg", "starts": 1, "runtimeMs": 48 * 60 * 1000, "runtimeHuman": "48m"},
        }
    }


def test_persistence_failure_does_not_stop_the_engine(engine, recorded, monkeypatch, scheduler) -> None:
    def broken_save(day, buckets):
        raise OSError("read-only file system")

    monkeypatch.setattr(engine.ledger.store, "save_day", broken_save)

    feed(engine, 2, 300)
    feed(engine, 2, 0)
    scheduler.advance(180)

    assert [e.kind for e in recorded] == [MACHINE_STARTED, MACHINE_STOPPED]
    assert engine.ledger.bucket(T0.date(), 2)["starts"] == 1


def test_shutdown_cancels_pending_stops(engine, scheduler, recorded) -> None:
    feed(engine, 1, 500)
    feed(engine, 1, 0)

    engine.shutdown()
    scheduler.advance(600)

    assert [e.kind for e in recorded] == [MACHINE_STARTED]
    assert engine.machines[1].is_running


def test_independent_engines_do_not_share_state(tmp_path, scheduler, clock) -> None:
    def build(sub: str) -> LaundryEngine:
        channels = ChannelTable.from_list([{"channel": 1, "id": 1, "name": "Washer"}])
        ledger = StatsLedger(JsonStatsStore(str(tmp_path / sub)))
        return LaundryEngine(channels, ledger, scheduler=scheduler, clock=clock)

    a, b = build("a"), build("b")
    feed(a, 1, 500)

    assert a.machines[1].is_running
    assert not b.machines[1].is_running
    assert not os.path.exists(tmp_path / "b")


def test_real_thread_timer_fires_stop(tmp_path) -> None:
    import threading

    channels = ChannelTable.from_list(
        [{"channel": 1, "id": 1, "name": "Washer", "stop_delay_seconds": 0.05}]
    )
    engine = LaundryEngine(channels, StatsLedger(JsonStatsStore(str(tmp_path))))
    stopped = threading.Event()
    engine.events.subscribe(lambda e: stopped.set(), kinds=[MACHINE_STOPPED])

    feed(engine, 1, 500)
    feed(engine, 1, 0)

    assert stopped.wait(5)
    assert not engine.machines[1].is_running
