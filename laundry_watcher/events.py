import datetime as dt
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .utils import tprint

MACHINE_STARTED = "machineStarted"
MACHINE_STOPPED = "machineStopped"
EVENT_KINDS = (MACHINE_STARTED, MACHINE_STOPPED)


class MachineEvent:
    """A machine transition; ``machine`` is a snapshot of the full record."""

    __slots__ = ("kind", "machine", "at")

    def __init__(self, kind: str, machine: Dict[str, Any], at: dt.datetime):
        self.kind = kind
        self.machine = machine
        self.at = at

    def __repr__(self):
        return f"MachineEvent({self.kind!r}, id={self.machine.get('id')!r}, at={self.at.isoformat()})"


Listener = Callable[[MachineEvent], None]


class EventBus:
    """Fire-and-forget observer list. Listener errors are logged, never raised."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: List[Tuple[Listener, Optional[frozenset]]] = []

    def subscribe(self, listener: Listener, kinds: Optional[Iterable[str]] = None) -> Callable[[], None]:
        wanted = frozenset(kinds) if kinds is not None else None
        if wanted is not None and not wanted <= set(EVENT_KINDS):
            raise ValueError(f"unknown event kinds: {sorted(wanted - set(EVENT_KINDS))}")
        with self._lock:
            self._listeners.append((listener, wanted))
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> bool:
        with self._lock:
            before = len(self._listeners)
            self._listeners = [(l, k) for l, k in self._listeners if l is not listener]
            return len(self._listeners) != before

    def emit(self, event: MachineEvent):
        with self._lock:
            listeners = list(self._listeners)
        for listener, wanted in listeners:
            if wanted is not None and event.kind not in wanted:
                continue
            try:
                listener(event)
            except Exception as e:
                tprint(f"[events] listener {listener!r} failed on {event.kind}: {e}", err=True)
