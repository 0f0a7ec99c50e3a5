"""
Payload normalization for energy-meter messages.

Devices on the broker publish power in several shapes. Each shape has a
matcher that returns ``None`` when the message is not in its shape, or a
list of readings (possibly empty) when it is. Matchers are tried in
order and the first match wins:

- NotifyStatus envelope:  {"method": "NotifyStatus", "params": {"em:1": {"power": 12.0, "current": 0.1}}}
- channel array:          {"channels": [{"channel": 1, "power": 12.0}, ...]}
- flat channel/power:     {"channel": 1, "power": 12.0}  (several spellings)
- positional energy list: {"energy": [{"power": 12.0}, ...]}  (channel = index + 1)

Anything else, including malformed JSON, normalizes to an empty list.
"""

import json
import math
import re
from typing import Any, Callable, Dict, List, NamedTuple, Optional


class Reading(NamedTuple):
    channel: int
    power: float
    current: Optional[float] = None


_STATUS_KEY = re.compile(r"^[A-Za-z][A-Za-z0-9_]*:(\d+)$")

CHANNEL_FIELDS = ("channel", "Channel")
POWER_FIELDS = ("power", "Power", "active_power", "ActivePower")
CURRENT_FIELDS = ("current", "Current")


# -------------------- value coercion --------------------

def to_float(val: Any) -> Optional[float]:
    """Finite float from a number or numeric string, else None."""
    if val is None or isinstance(val, bool):
        return None
    try:
        f = float(val)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(f):
        return None
    return f

def to_channel(val: Any) -> Optional[int]:
    f = to_float(val)
    if f is None or not f.is_integer():
        return None
    return int(f)

def _first(d: Dict[str, Any], fields) -> Any:
    for name in fields:
        if name in d and d[name] is not None:
            return d[name]
    return None

def _reading(channel: Any, power: Any, current: Any = None) -> Optional[Reading]:
    ch = to_channel(channel)
    pw = to_float(power)
    if ch is None or pw is None:
        return None
    return Reading(ch, pw, to_float(current))


# -------------------- shape matchers --------------------

def match_notify_status(data: Dict[str, Any]) -> Optional[List[Reading]]:
    params = data.get("params")
    if data.get("method") != "NotifyStatus" or not isinstance(params, dict):
        return None
    readings = []
    for key, body in params.items():
        m = _STATUS_KEY.match(str(key))
        if not m or not isinstance(body, dict):
            continue
        r = _reading(m.group(1), _first(body, ("power", "apower")), body.get("current"))
        if r is not None:
            readings.append(r)
    return readings

def match_channel_array(data: Dict[str, Any]) -> Optional[List[Reading]]:
    channels = data.get("channels")
    if not isinstance(channels, list):
        return None
    readings = []
    for item in channels:
        if not isinstance(item, dict):
            continue
        r = _reading(_first(item, CHANNEL_FIELDS), _first(item, POWER_FIELDS),
                     _first(item, CURRENT_FIELDS))
        if r is not None:
            readings.append(r)
    return readings

def match_flat(data: Dict[str, Any]) -> Optional[List[Reading]]:
    channel = _first(data, CHANNEL_FIELDS)
    power = _first(data, POWER_FIELDS)
    if channel is None or power is None:
        return None
    r = _reading(channel, power, _first(data, CURRENT_FIELDS))
    return [r] if r is not None else None

def match_energy_array(data: Dict[str, Any]) -> Optional[List[Reading]]:
    energy = data.get("energy")
    if not isinstance(energy, list):
        return None
    readings = []
    for index, item in enumerate(energy):
        if not isinstance(item, dict):
            continue
        power = item.get("power")
        r = _reading(index + 1, 0.0 if power is None else power, item.get("current"))
        if r is not None:
            readings.append(r)
    return readings


ShapeMatcher = Callable[[Dict[str, Any]], Optional[List[Reading]]]

SHAPE_MATCHERS: List[ShapeMatcher] = [
    match_notify_status,
    match_channel_array,
    match_flat,
    match_energy_array,
]


# -------------------- entry point --------------------

def decode_payload(payload: Any) -> Optional[Dict[str, Any]]:
    """bytes/str/dict -> dict, or None if it isn't a JSON object."""
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(payload, str):
        return None
    try:
        data = json.loads(payload)
    except (ValueError, RecursionError):
        return None
    return data if isinstance(data, dict) else None

def normalize_payload(payload: Any, matchers: Optional[List[ShapeMatcher]] = None) -> List[Reading]:
    data = decode_payload(payload)
    if data is None:
        return []
    for matcher in (matchers if matchers is not None else SHAPE_MATCHERS):
        readings = matcher(data)
        if readings is not None:
            return readings
    return []
