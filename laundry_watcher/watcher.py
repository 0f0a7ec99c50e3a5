#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Laundry machine state watcher (MQTT energy meter -> idle/running + daily stats).

- Subscribes to an MQTT broker and normalizes energy-meter payloads
- FSM per machine with start/stop thresholds and a stop debounce
- Dual-occupancy channels (two dryers on one meter) split by current
- Daily start counts / runtime, written through to JSON files
- JSON status HTTP endpoint and optional ntfy notifications

Deps: paho-mqtt, requests
"""

import argparse
import os
import signal
import sys
import threading
import time

from .config import GlobalConfig, load_channels
from .engine import LaundryEngine
from .mqtt_client import MqttSubscriber
from .notify import NtfyNotifier
from .stats import JsonStatsStore, StatsLedger
from .status_http import start_status_http_server
from .utils import tprint


def build_argparser():
    ap = argparse.ArgumentParser(description="Laundry machine watcher (MQTT energy meter) + stats + HTTP status")
    ap.add_argument("--channels-file", default=os.getenv("CHANNELS_FILE", ""),
                    help="Path to channels JSON file (empty = built-in table)")
    ap.add_argument("--broker-url", default=os.getenv("MQTT_BROKER_URL", ""),
                    help="MQTT broker, e.g. mqtt://host:1883 or mqtts://host:8883")
    ap.add_argument("--mqtt-topic", default=os.getenv("MQTT_TOPIC", "#"),
                    help="Topic filter to subscribe to")
    ap.add_argument("--stats-dir", default=os.getenv("STATS_DIR", "/app/stats"),
                    help="Directory for daily stats JSON files")
    ap.add_argument("--status-http", default=os.getenv("STATUS_HTTP", ""),  # e.g. "0.0.0.0:8080"
                    help="Bind host:port for JSON status server (empty to disable)")
    ap.add_argument("--heartbeat-seconds", type=int, default=int(os.getenv("HEARTBEAT_SECONDS", "0")),
                    help="Log heartbeat line every N seconds (0=off)")
    ap.add_argument("--ntfy-url", default=os.getenv("NTFY_URL", ""),
                    help="ntfy server base URL (empty to disable)")
    ap.add_argument("--ntfy-topic", default=os.getenv("NTFY_TOPIC", ""),
                    help="ntfy topic for 'finished' messages")
    return ap


def log_heartbeat(engine: LaundryEngine):
    for mid, m in engine.get_machines().items():
        tprint(f"[{m['name']}] HEARTBEAT state={engine.machine_state(mid)} power={m['power']}W")


def build_engine(gcfg: GlobalConfig) -> LaundryEngine:
    channels = load_channels(gcfg.channels_file)
    ledger = StatsLedger(JsonStatsStore(gcfg.stats_dir), names=channels.machine_names())
    engine = LaundryEngine(channels, ledger)
    if gcfg.ntfy_url and gcfg.ntfy_topic:
        NtfyNotifier(gcfg.ntfy_url, gcfg.ntfy_topic, gcfg.ntfy_user, gcfg.ntfy_pass).attach(engine.events)
    return engine


def main(argv=None):
    args = build_argparser().parse_args(argv)
    try:
        gcfg = GlobalConfig(args)
        engine = build_engine(gcfg)
    except (OSError, ValueError) as e:
        tprint(f"Failed to load configuration: {e}", err=True)
        sys.exit(2)

    for c in engine.channels:
        names = ", ".join(m.name for m in c.machines)
        tprint(f"[boot] channel {c.channel} ({c.profile.name}{', dual' if c.is_dual else ''}): {names}")

    if gcfg.status_http:
        th = threading.Thread(target=start_status_http_server, args=(gcfg.status_http, engine), daemon=True)
        th.start()

    subscriber = None
    if gcfg.broker_url:
        try:
            subscriber = MqttSubscriber(engine, gcfg.broker_url, topic=gcfg.mqtt_topic,
                                        username=gcfg.mqtt_username, password=gcfg.mqtt_password)
        except ValueError as e:
            tprint(f"Bad broker url: {e}", err=True)
            sys.exit(2)
        subscriber.start()
    else:
        tprint("[boot] MQTT broker url is not defined; MQTT client will not connect", err=True)

    # Graceful shutdown
    def _sig_handler(signum, _):
        tprint(f"[boot] signal {signum} -> shutdown")
        gcfg.shutdown = True

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _sig_handler)

    last_heartbeat = time.monotonic()
    try:
        while not gcfg.shutdown:
            time.sleep(0.5)
            if gcfg.heartbeat_seconds and (time.monotonic() - last_heartbeat) >= gcfg.heartbeat_seconds:
                log_heartbeat(engine)
                last_heartbeat = time.monotonic()
    except KeyboardInterrupt:
        gcfg.shutdown = True

    tprint("[boot] stopping...")
    if subscriber is not None:
        subscriber.stop()
    engine.shutdown()
    tprint("[boot] bye.")


if __name__ == "__main__":
    main()
