import datetime as dt
import sys
import threading
from typing import Optional


# -------------------- time --------------------

def local_now() -> dt.datetime:
    """Wall-clock time used for run timestamps and day buckets."""
    return dt.datetime.now()

def now_iso() -> str:
    """Wall-clock timestamp for logs/status."""
    return dt.datetime.now().isoformat(timespec="seconds")

def iso_or_none(value: Optional[dt.datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat(timespec="seconds")


# -------------------- thread-safe print --------------------

_print_lock = threading.Lock()

def tprint(msg: str, err: bool = False):
    with _print_lock:
        stream = sys.stderr if err else sys.stdout
        stream.write(msg + "\n")
        stream.flush()
