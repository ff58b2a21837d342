"""MQTT push source for record snapshots.

Used when the dispatch side publishes the full record on
``{topic_prefix}/{request_id}`` after every write. The feed multiplexes any
number of per-id listeners over one broker connection and only keeps a
topic subscribed while someone listens to it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ridesync._mqtt import MqttRecordMessage, RecordMqttRuntime
from ridesync.config import MqttSettings

_logger = logging.getLogger(__name__)

RawListener = Callable[[dict[str, Any] | None], None]


class MqttRecordFeed:
    """Routes decoded MQTT snapshots to listeners keyed by request id."""

    def __init__(
        self,
        settings: MqttSettings,
        *,
        runtime_factory: Callable[..., RecordMqttRuntime] = RecordMqttRuntime,
    ) -> None:
        self._settings = settings
        self._runtime_factory = runtime_factory
        self._runtime: RecordMqttRuntime | None = None
        self._listeners: dict[str, list[RawListener]] = {}

    @property
    def is_running(self) -> bool:
        return self._runtime is not None and self._runtime.is_running

    async def start(self) -> None:
        if self.is_running:
            return
        loop = asyncio.get_running_loop()
        runtime = self._runtime_factory(
            loop=loop,
            settings=self._settings,
            on_message=self.dispatch,
            logger=_logger,
        )
        for request_id in self._listeners:
            runtime.subscribe(request_id)
        await loop.run_in_executor(None, runtime.start)
        self._runtime = runtime

    async def stop(self) -> None:
        runtime = self._runtime
        self._runtime = None
        if runtime is None:
            return
        await asyncio.get_running_loop().run_in_executor(None, runtime.stop)

    def listen(self, request_id: str, listener: RawListener) -> Callable[[], None]:
        """Register *listener* for snapshots of *request_id*; returns the remover."""
        listeners = self._listeners.setdefault(request_id, [])
        first = not listeners
        listeners.append(listener)
        if first and self._runtime is not None:
            self._runtime.subscribe(request_id)

        def remove() -> None:
            current = self._listeners.get(request_id)
            if current is None or listener not in current:
                return
            current.remove(listener)
            if not current:
                self._listeners.pop(request_id, None)
                if self._runtime is not None:
                    self._runtime.unsubscribe(request_id)

        return remove

    def dispatch(self, message: MqttRecordMessage) -> None:
        """Deliver *message* to the current listeners (runs on the event loop)."""
        for listener in list(self._listeners.get(message.request_id, [])):
            try:
                listener(message.data)
            except Exception:
                _logger.warning("MQTT record listener failed request_id=%s", message.request_id, exc_info=True)
