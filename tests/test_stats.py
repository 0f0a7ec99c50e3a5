"""Unit tests for the daily stats ledger and its JSON store."""

from __future__ import annotations

import datetime as dt
import json

import pytest

from laundry_watcher.stats import JsonStatsStore, StatsLedger, format_runtime

TODAY = dt.date(2026, 10, 19)


@pytest.mark.parametrize(
    ("runtime_ms", "expected"),
    [
        (0, "0m"),
        (59_999, "0m"),
        (45 * 60_000, "45m"),
        (60 * 60_000, "1h 0m"),
        ((2 * 60 + 15) * 60_000, "2h 15m"),
    ],
)
def test_format_runtime(runtime_ms: int, expected: str) -> None:
    assert format_runtime(runtime_ms) == expected


def test_record_start_and_runtime_create_bucket_lazily(tmp_path) -> None:
    ledger = StatsLedger(JsonStatsStore(str(tmp_path)), names={1: "Washer"})

    ledger.record_start(1, TODAY)
    ledger.record_start(1, TODAY)
    ledger.record_runtime(1, TODAY, 90_000)
    ledger.record_runtime(1, TODAY, -5)

    assert ledger.bucket(TODAY, 1) == {"starts": 2, "runtimeMs": 90_000}
    assert ledger.bucket(TODAY, 2) == {"starts": 0, "runtimeMs": 0}


def test_every_mutation_is_written_through(tmp_path) -> None:
    store = JsonStatsStore(str(tmp_path))
    ledger = StatsLedger(store)

    ledger.record_start(3, TODAY)

    with open(store.path_for(TODAY), encoding="utf-8") as f:
        assert json.load(f) == {"3": {"starts": 1, "runtimeMs": 0}}

    ledger.record_runtime(3, TODAY, 1234)

    with open(store.path_for(TODAY), encoding="utf-8") as f:
        assert json.load(f) == {"3": {"starts": 1, "runtimeMs": 1234}}


def test_history_survives_restart(tmp_path) -> None:
    first = StatsLedger(JsonStatsStore(str(tmp_path)))
    first.record_start(1, TODAY - dt.timedelta(days=1))
    first.record_runtime(1, TODAY - dt.timedelta(days=1), 3_600_000)
    first.record_start(5, TODAY)

    second = StatsLedger(JsonStatsStore(str(tmp_path)))

    assert second.bucket(TODAY - dt.timedelta(days=1), 1) == {"starts": 1, "runtimeMs": 3_600_000}
    assert second.bucket(TODAY, 5) == {"starts": 1, "runtimeMs": 0}


def test_missing_directory_means_no_history(tmp_path) -> None:
    ledger = StatsLedger(JsonStatsStore(str(tmp_path / "does-not-exist")))

    assert ledger.query(30, today=TODAY) == {}


def test_empty_and_corrupt_day_files_are_skipped(tmp_path, capsys) -> None:
    (tmp_path / "stats-2026-10-17.json").write_text("", encoding="utf-8")
    (tmp_path / "stats-2026-10-18.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "stats-2026-10-19.json").write_text('{"2": {"starts": 4, "runtimeMs": 60000}}', encoding="utf-8")
    (tmp_path / "stats-garbage.json").write_text("{}", encoding="utf-8")

    ledger = StatsLedger(JsonStatsStore(str(tmp_path)))

    assert list(ledger.query(7, today=TODAY)) == ["2026-10-19"]
    assert "stats-2026-10-18.json" in capsys.readouterr().err


def test_query_window_and_shape(tmp_path) -> None:
    ledger = StatsLedger(JsonStatsStore(str(tmp_path)), names={1: "Washer 9kg", 5: "Dryer (block 1)"})
    for days_ago in (0, 1, 6, 7, 30):
        ledger.record_start(1, TODAY - dt.timedelta(days=days_ago))
    ledger.record_start(1, TODAY + dt.timedelta(days=1))
    ledger.record_runtime(5, TODAY, (2 * 60 + 15) * 60_000)
    ledger.record_start(9, TODAY)

    stats = ledger.query(7, today=TODAY)

    assert list(stats) == ["2026-10-19", "2026-10-18", "2026-10-13"]
    assert stats["2026-10-19"][5] == {
        "name": "Dryer (block 1)",
        "starts": 0,
        "runtimeMs": 8_100_000,
        "runtimeHuman": "2h 15m",
    }
    assert stats["2026-10-19"][1]["runtimeHuman"] == "0m"
    assert stats["2026-10-19"][9]["name"] == "Channel 9"
    assert list(ledger.query(1, today=TODAY)) == ["2026-10-19"]


def test_query_rejects_empty_window(tmp_path) -> None:
    ledger = StatsLedger(JsonStatsStore(str(tmp_path)))

    with pytest.raises(ValueError):
        ledger.query(0, today=TODAY)


def test_write_failure_keeps_in_memory_counters(tmp_path, monkeypatch, capsys) -> None:
    store = JsonStatsStore(str(tmp_path))
    ledger = StatsLedger(store)

    def broken_save(day, buckets):
        raise OSError("disk full")

    monkeypatch.setattr(store, "save_day", broken_save)

    ledger.record_start(1, TODAY)
    ledger.record_runtime(1, TODAY, 500)

    assert ledger.bucket(TODAY, 1) == {"starts": 1, "runtimeMs": 500}
    assert "disk full" in capsys.readouterr().err
