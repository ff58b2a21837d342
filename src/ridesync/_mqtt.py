"""Internal MQTT runtime for record snapshot topics."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from ridesync.config import MqttSettings


@dataclass(frozen=True)
class MqttRecordMessage:
    """A decoded record snapshot received on ``{prefix}/{request_id}``."""

    request_id: str
    topic: str
    data: dict[str, Any] | None


def topic_for(prefix: str, request_id: str) -> str:
    return f"{prefix.rstrip('/')}/{request_id}"


def decode_record_payload(payload: bytes) -> dict[str, Any] | None:
    """Decode a snapshot body. Empty bodies and ``null`` mean the record is absent.

    Raises :class:`ValueError` for bodies that are neither an object nor ``null``.
    """
    text = payload.decode("utf-8").strip()
    if not text:
        return None
    parsed = json.loads(text)
    if parsed is None:
        return None
    if not isinstance(parsed, dict):
        raise ValueError("record payload is not a JSON object")
    return parsed


class RecordMqttRuntime:
    """Threaded paho-mqtt runtime that emits decoded snapshots onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        settings: MqttSettings,
        on_message: Callable[[MqttRecordMessage], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._settings = settings
        self._on_message = on_message
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topics: set[str] = set()
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def _request_id_for(self, topic: str) -> str:
        prefix = self._settings.topic_prefix.rstrip("/") + "/"
        return topic[len(prefix) :] if topic.startswith(prefix) else topic

    def start(self) -> None:
        """Connect and start the network loop. Blocking; run it in an executor."""
        self.stop()
        settings = self._settings
        self._logger.debug("MQTT runtime start requested host=%s port=%s", settings.host, settings.port)

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=f"ridesync-{secrets.token_hex(6)}",
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected reason=%s", reason_code)
            with self._lock:
                topics = list(self._topics)
            for topic in topics:
                c.subscribe(topic, qos=1)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                data = decode_record_payload(msg.payload)
            except ValueError:
                self._logger.warning("Ignoring malformed record payload topic=%s", msg.topic, exc_info=True)
                return
            message = MqttRecordMessage(request_id=self._request_id_for(msg.topic), topic=msg.topic, data=data)
            self._loop.call_soon_threadsafe(self._on_message, message)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def subscribe(self, request_id: str) -> None:
        topic = topic_for(self._settings.topic_prefix, request_id)
        with self._lock:
            self._topics.add(topic)
        client = self._client
        if client is not None and self._running:
            client.subscribe(topic, qos=1)

    def unsubscribe(self, request_id: str) -> None:
        topic = topic_for(self._settings.topic_prefix, request_id)
        with self._lock:
            self._topics.discard(topic)
        client = self._client
        if client is not None and self._running:
            client.unsubscribe(topic)

    def stop(self) -> None:
        """Stop and disconnect the current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
