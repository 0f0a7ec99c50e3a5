"""
Pending-stop timer arena.

One cancellable deferred callback per key, never more. Callbacks run
under the owner's lock; a timer whose slot was canceled or replaced
while it waited for the lock does nothing when it finally runs.
"""

import threading
from typing import Any, Callable, Dict, Hashable, Optional

# scheduler(delay_seconds, callback) -> handle with .cancel()
Scheduler = Callable[[float, Callable[[], None]], Any]


def thread_timer_scheduler(delay_s: float, callback: Callable[[], None]) -> threading.Timer:
    t = threading.Timer(delay_s, callback)
    t.daemon = True
    t.start()
    return t


class _Slot:
    __slots__ = ("handle",)

    def __init__(self):
        self.handle = None


class TimerArena:

    def __init__(self, scheduler: Optional[Scheduler] = None, lock=None):
        self._schedule = scheduler or thread_timer_scheduler
        self._lock = lock if lock is not None else threading.RLock()
        self._slots: Dict[Hashable, _Slot] = {}

    def is_armed(self, key: Hashable) -> bool:
        return key in self._slots

    def arm(self, key: Hashable, delay_s: float, callback: Callable[[], None]) -> bool:
        """Schedule callback for key. Returns False if key already has a live timer."""
        with self._lock:
            if key in self._slots:
                return False
            slot = _Slot()
            self._slots[key] = slot

            def fire():
                with self._lock:
                    if self._slots.get(key) is not slot:
                        return
                    del self._slots[key]
                    callback()

            slot.handle = self._schedule(delay_s, fire)
            return True

    def cancel(self, key: Hashable) -> bool:
        with self._lock:
            slot = self._slots.pop(key, None)
        if slot is None:
            return False
        if slot.handle is not None:
            slot.handle.cancel()
        return True

    def cancel_all(self):
        with self._lock:
            keys = list(self._slots)
        for key in keys:
            self.cancel(key)

    def __len__(self):
        return len(self._slots)
