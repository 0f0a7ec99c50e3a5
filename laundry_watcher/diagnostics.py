import datetime as dt
import threading
from typing import Any, Callable, Dict, Optional

from .utils import iso_or_none, local_now

PAYLOAD_PREVIEW_CHARS = 500


class DiagnosticsCollector:
    """Connection and message-flow health. Read-only for the state machines."""

    def __init__(self, clock: Callable[[], dt.datetime] = local_now):
        self._clock = clock
        self._lock = threading.Lock()
        self.initialized = False
        self.is_connected = False
        self.connected_at: Optional[dt.datetime] = None
        self.last_error: Optional[str] = None
        self.last_error_at: Optional[dt.datetime] = None
        self.messages_received = 0
        self.last_message_at: Optional[dt.datetime] = None
        self.last_message_topic: Optional[str] = None
        self.last_message_payload: Optional[str] = None
        self.broker_url: Optional[str] = None

    def record_client(self, broker_url: str):
        with self._lock:
            self.initialized = True
            self.broker_url = broker_url

    def record_connect(self):
        with self._lock:
            self.is_connected = True
            self.connected_at = self._clock()

    def record_disconnect(self, reason: Optional[str] = None):
        with self._lock:
            self.is_connected = False
            if reason:
                self.last_error = reason
                self.last_error_at = self._clock()

    def record_error(self, error: Any):
        with self._lock:
            self.last_error = str(error)
            self.last_error_at = self._clock()

    def record_message(self, topic: str, payload: Any):
        if isinstance(payload, (bytes, bytearray)):
            raw = payload.decode("utf-8", errors="replace")
        else:
            raw = str(payload)
        if len(raw) > PAYLOAD_PREVIEW_CHARS:
            raw = raw[:PAYLOAD_PREVIEW_CHARS] + "..."
        with self._lock:
            self.messages_received += 1
            self.last_message_at = self._clock()
            self.last_message_topic = topic
            self.last_message_payload = raw

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            if not self.initialized:
                client_state = "not initialized"
            else:
                client_state = "connected" if self.is_connected else "disconnected"
            return {
                "isConnected": self.is_connected,
                "connectedAt": iso_or_none(self.connected_at),
                "lastError": self.last_error,
                "lastErrorAt": iso_or_none(self.last_error_at),
                "messagesReceived": self.messages_received,
                "lastMessageAt": iso_or_none(self.last_message_at),
                "lastMessageTopic": self.last_message_topic,
                "lastMessagePayload": self.last_message_payload,
                "brokerUrl": self.broker_url,
                "clientState": client_state,
            }
