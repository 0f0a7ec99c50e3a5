import urllib.parse as urlparse
from typing import Callable, NamedTuple, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from .utils import tprint

DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883}
TLS_SCHEMES = {"mqtts", "ssl"}


class BrokerAddress(NamedTuple):
    host: str
    port: int
    tls: bool
    username: Optional[str]
    password: Optional[str]

    @property
    def display(self) -> str:
        scheme = "mqtts" if self.tls else "mqtt"
        return f"{scheme}://{self.host}:{self.port}"


def parse_broker_url(url: str) -> BrokerAddress:
    parsed = urlparse.urlparse(url if "://" in url else f"mqtt://{url}")
    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise ValueError(f"unsupported broker scheme '{scheme}'")
    if not parsed.hostname:
        raise ValueError(f"broker url '{url}' has no host")
    return BrokerAddress(
        host=parsed.hostname,
        port=parsed.port or DEFAULT_PORTS[scheme],
        tls=scheme in TLS_SCHEMES,
        username=urlparse.unquote(parsed.username) if parsed.username else None,
        password=urlparse.unquote(parsed.password) if parsed.password else None,
    )


def _paho_client(client_id: str):
    return mqtt.Client(CallbackAPIVersion.VERSION2, client_id=client_id)


class MqttSubscriber:
    """Feeds every message on the subscribed topic into the engine.

    Reconnects are left to paho's network loop; this class only mirrors
    connection state into the engine diagnostics.
    """

    def __init__(self, engine, broker_url: str, topic: str = "#",
                 username: Optional[str] = None, password: Optional[str] = None,
                 client_id: str = "laundry-watcher",
                 client_factory: Optional[Callable[[str], object]] = None):
        self.engine = engine
        self.address = parse_broker_url(broker_url)
        self.topic = topic
        self.username = username or self.address.username
        self.password = password or self.address.password
        self.client = (client_factory or _paho_client)(client_id)
        self.client.on_connect = self._on_connect
        self.client.on_connect_fail = self._on_connect_fail
        self.client.on_disconnect = self._on_disconnect
        self.client.on_subscribe = self._on_subscribe
        self.client.on_message = self._on_message

    @property
    def diagnostics(self):
        return self.engine.diagnostics

    def start(self):
        self.diagnostics.record_client(self.address.display)
        if self.address.tls:
            self.client.tls_set()
        if self.username:
            self.client.username_pw_set(self.username, self.password)
        self.client.reconnect_delay_set(min_delay=1, max_delay=60)
        tprint(f"[mqtt] connecting to {self.address.display} ...")
        self.client.connect_async(self.address.host, self.address.port, keepalive=60)
        self.client.loop_start()

    def stop(self):
        self.client.disconnect()
        self.client.loop_stop()

    # --- paho callbacks ---

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            tprint(f"[mqtt] connect refused: {reason_code}", err=True)
            self.diagnostics.record_error(f"connect refused: {reason_code}")
            return
        tprint(f"[mqtt] connected to {self.address.display}, subscribing to '{self.topic}'")
        self.diagnostics.record_connect()
        client.subscribe(self.topic)

    def _on_connect_fail(self, client, userdata):
        tprint(f"[mqtt] cannot reach {self.address.display}, retrying", err=True)
        self.diagnostics.record_error(f"connect failed: {self.address.display} unreachable")

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None):
        for rc in reason_code_list:
            if rc.is_failure:
                tprint(f"[mqtt] subscription to '{self.topic}' failed: {rc}", err=True)
                self.diagnostics.record_error(f"subscribe failed: {rc}")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        if reason_code.is_failure:
            tprint(f"[mqtt] offline: {reason_code}", err=True)
            self.diagnostics.record_disconnect(f"disconnected: {reason_code}")
        else:
            tprint("[mqtt] disconnected")
            self.diagnostics.record_disconnect()

    def _on_message(self, client, userdata, msg):
        self.engine.handle_message(msg.topic, msg.payload)
