import datetime as dt
import threading
from typing import Optional

import requests

from .events import MACHINE_STOPPED, EventBus, MachineEvent
from .stats import format_runtime
from .utils import tprint


class NtfyNotifier:
    """Posts a "finished" message to an ntfy topic when a machine stops."""

    def __init__(self, url: str, topic: str, user: Optional[str] = None, password: Optional[str] = None,
                 title: str = "Laundry", priority: int = 3, icon: Optional[str] = None,
                 background: bool = True, timeout: float = 10):
        self.url = f"{url.rstrip('/')}/{topic}"
        self.auth = (user, password) if (user and password) else None
        self.title = title
        self.priority = priority
        self.icon = icon
        self.background = background
        self.timeout = timeout

    def attach(self, bus: EventBus):
        return bus.subscribe(self, kinds=[MACHINE_STOPPED])

    def __call__(self, event: MachineEvent):
        text = self.format_message(event)
        if self.background:
            threading.Thread(target=self.send, args=(text,), daemon=True).start()
        else:
            self.send(text)

    @staticmethod
    def format_message(event: MachineEvent) -> str:
        m = event.machine
        msg = f"{m['name']} finished."
        started = m.get("lastStartedAt")
        if started:
            elapsed = event.at - dt.datetime.fromisoformat(started)
            msg += f" Runtime: {format_runtime(int(elapsed.total_seconds() * 1000))}."
        return msg

    def send(self, text: str) -> bool:
        headers = {
            "Title": self.title,
            "Priority": str(self.priority),
        }
        if self.icon:
            headers["Icon"] = self.icon
        try:
            r = requests.post(self.url, headers=headers, data=text.encode("utf-8"),
                              auth=self.auth, timeout=self.timeout)
            if r.status_code >= 300:
                tprint(f"[ntfy] HTTP {r.status_code}: {r.text}", err=True)
                return False
        except requests.RequestException as e:
            tprint(f"[ntfy] error: {e}", err=True)
            return False
        return True
