"""Client configuration for ridesync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from ridesync._constants import (
    ACCEPT_GRACE_S,
    DEFAULT_COLLECTION,
    MQTT_DEFAULT_TOPIC_PREFIX,
    PROGRESS_MAX,
    SCAN_DURATION_S,
    SCAN_TICK_S,
)
from ridesync.exceptions import RideSyncConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class MqttSettings:
    """Broker settings for the optional MQTT record feed.

    When enabled, record snapshots are expected on
    ``{topic_prefix}/{request_id}`` as JSON objects.
    """

    enabled: bool = False
    host: str = ""
    port: int = 1883
    topic_prefix: str = MQTT_DEFAULT_TOPIC_PREFIX
    keepalive: int = 60
    tls: bool = False
    username: str | None = None
    password: str | None = None


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Library configuration.

    Parameters
    ----------
    database_url : str
        Base URL of the realtime database (e.g.
        ``"https://example-rtdb.firebaseio.com"``). Only required when the
        client builds its own REST store.
    collection : str
        Name of the shared collection holding request records.
    scan_duration : float
        Seconds to wait for a driver before declaring a timeout.
    scan_tick : float
        Countdown tick interval in seconds.
    progress_max : float
        Progress value reported when scanning completes.
    accept_grace : float
        Seconds between the accepted state and the ``on_accepted``
        notification, so the accepted UI state can render first.
    request_timeout : float
        Total timeout for single REST calls.
    stream_retry_delay : float
        Seconds to wait before reconnecting a dropped event stream.
    mqtt : MqttSettings
        Optional MQTT feed used for subscriptions instead of the event stream.
    """

    database_url: str = ""
    collection: str = DEFAULT_COLLECTION
    scan_duration: float = SCAN_DURATION_S
    scan_tick: float = SCAN_TICK_S
    progress_max: float = PROGRESS_MAX
    accept_grace: float = ACCEPT_GRACE_S
    request_timeout: float = 10.0
    stream_retry_delay: float = 2.0
    mqtt: MqttSettings = dataclasses.field(default_factory=MqttSettings)

    def validate(self) -> SyncConfig:
        """Check value ranges, returning ``self`` for chaining."""
        if self.scan_duration <= 0:
            raise RideSyncConfigError(f"scan_duration must be positive, got {self.scan_duration}")
        if self.scan_tick <= 0 or self.scan_tick > self.scan_duration:
            raise RideSyncConfigError(
                f"scan_tick must be in (0, scan_duration], got {self.scan_tick} (duration {self.scan_duration})"
            )
        if self.progress_max <= 0:
            raise RideSyncConfigError(f"progress_max must be positive, got {self.progress_max}")
        if self.accept_grace < 0:
            raise RideSyncConfigError(f"accept_grace must not be negative, got {self.accept_grace}")
        if not self.collection.strip():
            raise RideSyncConfigError("collection must be non-empty")
        if self.mqtt.enabled and not self.mqtt.host:
            raise RideSyncConfigError("mqtt.host is required when the MQTT feed is enabled")
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from ``RIDESYNC_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        mqtt_kwargs: dict[str, Any] = {}
        _ENV_MQTT_MAP = {
            "RIDESYNC_MQTT_HOST": "host",
            "RIDESYNC_MQTT_TOPIC_PREFIX": "topic_prefix",
            "RIDESYNC_MQTT_USERNAME": "username",
            "RIDESYNC_MQTT_PASSWORD": "password",
        }
        for env_key, field_name in _ENV_MQTT_MAP.items():
            val = env.get(env_key)
            if val is not None:
                mqtt_kwargs[field_name] = val
        port_env = env.get("RIDESYNC_MQTT_PORT")
        if port_env is not None:
            mqtt_kwargs["port"] = int(port_env)
        keepalive_env = env.get("RIDESYNC_MQTT_KEEPALIVE")
        if keepalive_env is not None:
            mqtt_kwargs["keepalive"] = int(keepalive_env)
        mqtt_kwargs["enabled"] = _env_bool(env.get("RIDESYNC_MQTT_ENABLED"), False)
        mqtt_kwargs["tls"] = _env_bool(env.get("RIDESYNC_MQTT_TLS"), False)

        mqtt_overrides = overrides.pop("mqtt", None)
        if isinstance(mqtt_overrides, dict):
            mqtt_kwargs.update(mqtt_overrides)
        elif isinstance(mqtt_overrides, MqttSettings):
            mqtt_kwargs = dataclasses.asdict(mqtt_overrides)

        config_kwargs: dict[str, Any] = {"mqtt": MqttSettings(**mqtt_kwargs)}

        url = env.get("RIDESYNC_DATABASE_URL")
        if url is not None:
            config_kwargs["database_url"] = url.rstrip("/")
        collection = env.get("RIDESYNC_COLLECTION")
        if collection is not None:
            config_kwargs["collection"] = collection

        _ENV_FLOAT_MAP = {
            "RIDESYNC_SCAN_DURATION": "scan_duration",
            "RIDESYNC_SCAN_TICK": "scan_tick",
            "RIDESYNC_ACCEPT_GRACE": "accept_grace",
            "RIDESYNC_REQUEST_TIMEOUT": "request_timeout",
            "RIDESYNC_STREAM_RETRY_DELAY": "stream_retry_delay",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
