import json
import os
from typing import Any, Dict, List, Optional, Tuple


# -------------------- channel classes --------------------

class ChannelProfile:
    """Thresholds and debounce shared by a class of channels."""

    def __init__(self, name: str, start_threshold_w: float, stop_threshold_w: float,
                 stop_delay_seconds: float, dual_current_threshold_a: Optional[float] = None):
        self.name = name
        self.start_threshold_w = float(start_threshold_w)
        self.stop_threshold_w = float(stop_threshold_w)
        self.stop_delay_seconds = float(stop_delay_seconds)
        self.dual_current_threshold_a = (
            float(dual_current_threshold_a) if dual_current_threshold_a is not None else None
        )

    def override(self, d: Dict[str, Any]) -> "ChannelProfile":
        dual = d.get("dual_current_threshold_a", self.dual_current_threshold_a)
        return ChannelProfile(
            self.name,
            d.get("start_threshold_w", self.start_threshold_w),
            d.get("stop_threshold_w", self.stop_threshold_w),
            d.get("stop_delay_seconds", self.stop_delay_seconds),
            dual,
        )


# Washers idle at ~0 W. Dryers draw tens of watts idle (gas ignition and
# control electronics), so their band sits much higher.
WASHER = ChannelProfile("washer", start_threshold_w=10.0, stop_threshold_w=5.0,
                        stop_delay_seconds=180)
DRYER = ChannelProfile("dryer", start_threshold_w=100.0, stop_threshold_w=50.0,
                       stop_delay_seconds=120, dual_current_threshold_a=3.5)

PROFILES: Dict[str, ChannelProfile] = {p.name: p for p in (WASHER, DRYER)}


# -------------------- channel mapping --------------------

class MachineSpec:
    def __init__(self, machine_id: int, name: str):
        self.id = int(machine_id)
        self.name = str(name)


class ChannelConfig:
    """One physical metering channel and the machine(s) behind it."""

    def __init__(self, d: Dict[str, Any]):
        if not isinstance(d, dict) or "channel" not in d:
            raise ValueError(f"channel entry must be an object with 'channel', got {d!r}")
        try:
            self.channel: int = int(d["channel"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"bad channel number {d['channel']!r}") from e

        class_name = str(d.get("class", "washer")).lower()
        if class_name not in PROFILES:
            raise ValueError(f"channel {self.channel}: unknown class '{class_name}'")
        try:
            self.profile: ChannelProfile = PROFILES[class_name].override(d)
        except (TypeError, ValueError) as e:
            raise ValueError(f"channel {self.channel}: thresholds and delays must be numbers") from e

        raw_machines = d.get("machines")
        if raw_machines is None:
            raw_machines = [{"id": d.get("id", self.channel), "name": d.get("name", f"Machine {self.channel}")}]
        if not isinstance(raw_machines, list) or not 1 <= len(raw_machines) <= 2:
            raise ValueError(f"channel {self.channel}: 'machines' must list one or two machines")
        try:
            self.machines: List[MachineSpec] = [MachineSpec(m["id"], m["name"]) for m in raw_machines]
        except (KeyError, TypeError) as e:
            raise ValueError(f"channel {self.channel}: each machine needs 'id' and 'name'") from e

        p = self.profile
        if p.stop_threshold_w > p.start_threshold_w:
            raise ValueError(f"channel {self.channel}: stop threshold above start threshold")
        if p.stop_delay_seconds <= 0:
            raise ValueError(f"channel {self.channel}: stop_delay_seconds must be positive")
        if self.is_dual and p.dual_current_threshold_a is None:
            raise ValueError(f"channel {self.channel}: paired machines need dual_current_threshold_a")

    @property
    def is_dual(self) -> bool:
        return len(self.machines) == 2


class ChannelTable:
    """Static channel -> machine(s) mapping."""

    def __init__(self, channels: List[ChannelConfig]):
        self._by_channel: Dict[int, ChannelConfig] = {}
        seen_ids = set()
        for c in channels:
            if c.channel in self._by_channel:
                raise ValueError(f"duplicate channel {c.channel}")
            for m in c.machines:
                if m.id in seen_ids:
                    raise ValueError(f"duplicate machine id {m.id}")
                seen_ids.add(m.id)
            self._by_channel[c.channel] = c

    def get(self, channel: int) -> Optional[ChannelConfig]:
        return self._by_channel.get(channel)

    def __iter__(self):
        return iter(sorted(self._by_channel.values(), key=lambda c: c.channel))

    def __len__(self):
        return len(self._by_channel)

    def machine_names(self) -> Dict[int, str]:
        return {m.id: m.name for c in self for m in c.machines}

    @classmethod
    def from_list(cls, raw: List[Dict[str, Any]]) -> "ChannelTable":
        if not isinstance(raw, list):
            raise ValueError("channels file must be a list of objects")
        return cls([ChannelConfig(d) for d in raw])


DEFAULT_CHANNELS: List[Dict[str, Any]] = [
    {"channel": 1, "class": "washer", "id": 1, "name": "Washer 9kg"},
    {"channel": 2, "class": "washer", "id": 2, "name": "Washer 9kg (+Ozone)"},
    {"channel": 3, "class": "washer", "id": 3, "name": "Washer 15kg (+Ozone)"},
    {"channel": 4, "class": "washer", "id": 4, "name": "Washer 20kg"},
    {"channel": 5, "class": "dryer", "machines": [
        {"id": 5, "name": "Dryer (block 1)"},
        {"id": 6, "name": "Dryer (block 2)"},
    ]},
]

def load_channels(path: Optional[str]) -> ChannelTable:
    if not path:
        return ChannelTable.from_list(DEFAULT_CHANNELS)
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return ChannelTable.from_list(raw)


# -------------------- process config --------------------

class GlobalConfig:
    def __init__(self, args):
        self.channels_file: Optional[str] = args.channels_file or None
        self.broker_url: Optional[str] = args.broker_url or None
        self.mqtt_topic: str = args.mqtt_topic
        self.mqtt_username: Optional[str] = os.getenv("MQTT_USERNAME")
        self.mqtt_password: Optional[str] = os.getenv("MQTT_PASSWORD")
        self.stats_dir: str = args.stats_dir
        self.status_http: Optional[Tuple[str, int]] = None
        if args.status_http:
            host, port = args.status_http.rsplit(":", 1)
            self.status_http = (host, int(port))
        self.heartbeat_seconds: Optional[int] = args.heartbeat_seconds
        self.ntfy_url: Optional[str] = args.ntfy_url or None
        self.ntfy_topic: Optional[str] = args.ntfy_topic or None
        self.ntfy_user: Optional[str] = os.getenv("NTFY_USER")
        self.ntfy_pass: Optional[str] = os.getenv("NTFY_PASS")
        self.shutdown = False
