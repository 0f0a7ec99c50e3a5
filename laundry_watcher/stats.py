"""
Daily usage statistics.

Buckets are keyed by (date, machine id) and hold a start counter and the
accumulated runtime in milliseconds. Every mutation is written through
to one JSON file per day:

    <stats_dir>/stats-2026-10-19.json  ->  {"1": {"starts": 3, "runtimeMs": 7200000}, ...}

A failed write is logged and the in-memory counters are kept.
"""

import datetime as dt
import glob
import json
import os
import tempfile
import threading
from typing import Any, Dict, Optional

from .utils import local_now, tprint

DayBuckets = Dict[int, Dict[str, int]]


def format_runtime(runtime_ms: int) -> str:
    """2h 15m, or 45m under an hour."""
    total_min = max(0, int(runtime_ms)) // 60000
    hours, mins = divmod(total_min, 60)
    if hours:
        return f"{hours}h {mins}m"
    return f"{mins}m"


# -------------------- persistence --------------------

class JsonStatsStore:
    """One JSON document per calendar day."""

    PREFIX = "stats-"

    def __init__(self, directory: str):
        self.directory = directory

    def path_for(self, day: dt.date) -> str:
        return os.path.join(self.directory, f"{self.PREFIX}{day.isoformat()}.json")

    def load(self) -> Dict[dt.date, DayBuckets]:
        days: Dict[dt.date, DayBuckets] = {}
        for path in sorted(glob.glob(os.path.join(self.directory, f"{self.PREFIX}*.json"))):
            stem = os.path.basename(path)[len(self.PREFIX):-len(".json")]
            try:
                day = dt.date.fromisoformat(stem)
            except ValueError:
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    text = f.read()
                if not text.strip():
                    continue
                raw = json.loads(text)
                days[day] = {
                    int(ch): {"starts": int(b.get("starts", 0)), "runtimeMs": int(b.get("runtimeMs", 0))}
                    for ch, b in raw.items()
                }
            except (OSError, ValueError, TypeError, AttributeError) as e:
                tprint(f"[stats] skipping unreadable {path}: {e}", err=True)
        return days

    def save_day(self, day: dt.date, buckets: DayBuckets):
        os.makedirs(self.directory, exist_ok=True)
        doc = {str(ch): dict(b) for ch, b in sorted(buckets.items())}
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".stats-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path_for(day))
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise


# -------------------- ledger --------------------

class StatsLedger:

    def __init__(self, store: JsonStatsStore, names: Optional[Dict[int, str]] = None):
        self.store = store
        self.names: Dict[int, str] = dict(names or {})
        self._lock = threading.RLock()
        self._days: Dict[dt.date, DayBuckets] = store.load()

    def _bucket(self, day: dt.date, channel: int) -> Dict[str, int]:
        buckets = self._days.setdefault(day, {})
        return buckets.setdefault(channel, {"starts": 0, "runtimeMs": 0})

    def _flush(self, day: dt.date):
        try:
            self.store.save_day(day, self._days[day])
        except OSError as e:
            tprint(f"[stats] write failed for {day.isoformat()}: {e}", err=True)

    def record_start(self, channel: int, day: dt.date):
        with self._lock:
            self._bucket(day, channel)["starts"] += 1
            self._flush(day)

    def record_runtime(self, channel: int, day: dt.date, duration_ms: int):
        with self._lock:
            self._bucket(day, channel)["runtimeMs"] += max(0, int(duration_ms))
            self._flush(day)

    def bucket(self, day: dt.date, channel: int) -> Dict[str, int]:
        with self._lock:
            b = self._days.get(day, {}).get(channel)
            return dict(b) if b else {"starts": 0, "runtimeMs": 0}

    def query(self, days_back: int, today: Optional[dt.date] = None) -> Dict[str, Dict[int, Dict[str, Any]]]:
        if days_back < 1:
            raise ValueError("days_back must be at least 1")
        today = today or local_now().date()
        first = today - dt.timedelta(days=days_back - 1)
        out: Dict[str, Dict[int, Dict[str, Any]]] = {}
        with self._lock:
            for day in sorted(self._days, reverse=True):
                if not first <= day <= today:
                    continue
                out[day.isoformat()] = {
                    ch: {
                        "name": self.names.get(ch, f"Channel {ch}"),
                        "starts": b["starts"],
                        "runtimeMs": b["runtimeMs"],
                        "runtimeHuman": format_runtime(b["runtimeMs"]),
                    }
                    for ch, b in sorted(self._days[day].items())
                }
        return out
