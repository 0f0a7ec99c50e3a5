"""Laundry machine state inference from MQTT energy-meter telemetry."""

from .config import ChannelConfig, ChannelProfile, ChannelTable, load_channels
from .engine import LaundryEngine
from .events import MACHINE_STARTED, MACHINE_STOPPED, EventBus, MachineEvent
from .payloads import Reading, normalize_payload
from .stats import JsonStatsStore, StatsLedger, format_runtime

__version__ = "1.0.0"
