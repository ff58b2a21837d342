"""Record store backed by a Firebase-compatible realtime database REST API.

Layout: one collection location (``/{collection}``) whose children are the
request records keyed by id. Writes use ``POST`` (create, the server
assigns a chronologically sortable key) and ``PATCH`` (status). Reads use
``GET``, optionally filtered with ``orderBy``/``equalTo``. Subscriptions
either stream the record location as server-sent events or, when an
:class:`~ridesync.store.mqtt_feed.MqttRecordFeed` is configured, read the
initial value once and follow MQTT snapshots afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp
from pydantic import ValidationError

from ridesync._constants import (
    DEFAULT_COLLECTION,
    SERVER_TIMESTAMP,
    STREAM_EVENT_PATCH,
    STREAM_EVENT_PUT,
    STREAM_EVENTS_CLOSING,
)
from ridesync._redact import redact_for_log
from ridesync._transport import RealtimeDbTransport, Transport
from ridesync.config import SyncConfig
from ridesync.exceptions import RecordNotFoundError, StoreError, StoreReadError, StoreWriteError
from ridesync.models._base import RequestStatus
from ridesync.models.record import RequestInput, RequestRecord
from ridesync.store.base import OnChange, Subscription
from ridesync.store.mqtt_feed import MqttRecordFeed
from ridesync.store.stream import apply_stream_event

_logger = logging.getLogger(__name__)


def _to_record(request_id: str, data: Any) -> RequestRecord | None:
    if not isinstance(data, Mapping):
        return None
    try:
        return RequestRecord.from_snapshot(request_id, data)
    except ValidationError:
        _logger.warning("Discarding malformed record id=%s data=%s", request_id, redact_for_log(data))
        return None


class _FeedBridge:
    """Orders the initial ``GET`` before MQTT snapshots for one subscription.

    Snapshots arriving while the initial read is in flight are buffered and
    delivered after it, in arrival order.
    """

    def __init__(self, subscription: Subscription) -> None:
        self._subscription = subscription
        self._buffered: list[dict[str, Any] | None] = []
        self._ready = False

    def on_raw(self, data: dict[str, Any] | None) -> None:
        if self._ready:
            self._subscription.deliver(_to_record(self._subscription.request_id, data))
        else:
            self._buffered.append(data)

    def release(self, initial: RequestRecord | None, *, have_initial: bool) -> None:
        if have_initial:
            self._subscription.deliver(initial)
        buffered, self._buffered = self._buffered, []
        for data in buffered:
            self._subscription.deliver(_to_record(self._subscription.request_id, data))
        self._ready = True


class RestRecordStore:
    """Realtime database implementation of :class:`~ridesync.store.base.RecordStore`."""

    def __init__(
        self,
        transport: Transport,
        *,
        collection: str = DEFAULT_COLLECTION,
        feed: MqttRecordFeed | None = None,
        stream_retry_delay: float = 2.0,
    ) -> None:
        self._transport = transport
        self._collection = collection.strip("/")
        self._feed = feed
        self._stream_retry_delay = stream_retry_delay

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        http_session: aiohttp.ClientSession,
        *,
        feed: MqttRecordFeed | None = None,
    ) -> RestRecordStore:
        return cls(
            RealtimeDbTransport(config, http_session),
            collection=config.collection,
            feed=feed,
            stream_retry_delay=config.stream_retry_delay,
        )

    def _path(self, request_id: str | None = None) -> str:
        if request_id is None:
            return self._collection
        return f"{self._collection}/{request_id}"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, record: RequestInput) -> str:
        payload = record.to_wire()
        payload["status"] = str(RequestStatus.PENDING)
        payload["createdAt"] = dict(SERVER_TIMESTAMP)
        path = self._path()
        try:
            body = await self._transport.request_json("POST", path, payload=payload)
        except StoreError as exc:
            raise StoreWriteError(f"create failed: {exc}", endpoint=path, status_code=exc.status_code) from exc

        name = body.get("name") if isinstance(body, dict) else None
        if not isinstance(name, str) or not name:
            raise StoreWriteError("create response missing the assigned key", endpoint=path)
        _logger.debug("Created request id=%s", name)
        return name

    async def update_status(self, request_id: str, status: RequestStatus) -> None:
        path = self._path(request_id)
        # PATCH on a missing location would recreate a partial record.
        try:
            current = await self._transport.request_json("GET", path)
        except StoreError as exc:
            raise StoreWriteError(
                f"status update failed: {exc}",
                request_id=request_id,
                endpoint=path,
                status_code=exc.status_code,
            ) from exc
        if current is None:
            raise RecordNotFoundError(f"request {request_id} no longer exists", request_id=request_id, endpoint=path)

        try:
            await self._transport.request_json("PATCH", path, payload={"status": str(status)})
        except StoreError as exc:
            raise StoreWriteError(
                f"status update failed: {exc}",
                request_id=request_id,
                endpoint=path,
                status_code=exc.status_code,
            ) from exc
        _logger.debug("Updated request id=%s status=%s", request_id, status)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch(self, request_id: str) -> RequestRecord | None:
        path = self._path(request_id)
        try:
            data = await self._transport.request_json("GET", path)
        except StoreError as exc:
            raise StoreReadError(f"read failed: {exc}", request_id=request_id, endpoint=path) from exc
        return _to_record(request_id, data)

    async def find_active_request(self, user_id: str) -> str | None:
        path = self._path()
        try:
            body = await self._transport.request_json(
                "GET",
                path,
                params={"orderBy": "userId", "equalTo": user_id},
            )
        except StoreError as exc:
            raise StoreReadError(f"active request lookup failed: {exc}", endpoint=path) from exc
        if not isinstance(body, dict):
            return None

        active: list[RequestRecord] = []
        for request_id, data in body.items():
            record = _to_record(str(request_id), data)
            if record is not None and record.user_id == user_id and not record.status.is_terminal:
                active.append(record)
        if not active:
            return None
        if len(active) > 1:
            _logger.warning("User has %d active requests; using the most recent", len(active))
        # Server keys sort chronologically, which breaks created_at ties.
        newest = max(active, key=lambda rec: (rec.created_at.timestamp() if rec.created_at else 0.0, rec.id))
        return newest.id

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, request_id: str, on_change: OnChange) -> Subscription:
        loop = asyncio.get_running_loop()
        if self._feed is not None:
            return self._subscribe_feed(loop, self._feed, request_id, on_change)

        task: asyncio.Task[None] | None = None

        def _cancel() -> None:
            if task is not None and not task.done():
                task.cancel()

        subscription = Subscription(request_id, on_change, on_close=_cancel)
        task = loop.create_task(self._run_stream(subscription), name=f"ridesync-stream-{request_id}")
        return subscription

    async def _run_stream(self, subscription: Subscription) -> None:
        request_id = subscription.request_id
        path = self._path(request_id)
        while not subscription.closed:
            mirror: dict[str, Any] | None = None
            try:
                async for event in self._transport.stream(path):
                    if subscription.closed:
                        return
                    if event.event in STREAM_EVENTS_CLOSING:
                        _logger.warning("Stream for request %s closed by server (%s)", request_id, event.event)
                        return
                    if event.event not in (STREAM_EVENT_PUT, STREAM_EVENT_PATCH):
                        continue
                    if not isinstance(event.data, dict) or "path" not in event.data:
                        _logger.warning("Ignoring malformed %s event for request %s", event.event, request_id)
                        continue
                    mirror = apply_stream_event(mirror, event)
                    subscription.deliver(_to_record(request_id, mirror))
            except StoreError:
                _logger.warning("Stream for request %s dropped; reconnecting", request_id, exc_info=True)
            if subscription.closed:
                return
            await asyncio.sleep(self._stream_retry_delay)

    def _subscribe_feed(
        self,
        loop: asyncio.AbstractEventLoop,
        feed: MqttRecordFeed,
        request_id: str,
        on_change: OnChange,
    ) -> Subscription:
        task: asyncio.Task[None] | None = None
        remove_listener = None

        def _close() -> None:
            if remove_listener is not None:
                remove_listener()
            if task is not None and not task.done():
                task.cancel()

        subscription = Subscription(request_id, on_change, on_close=_close)
        bridge = _FeedBridge(subscription)
        remove_listener = feed.listen(request_id, bridge.on_raw)
        task = loop.create_task(self._initial_read(subscription, bridge), name=f"ridesync-initial-{request_id}")
        return subscription

    async def _initial_read(self, subscription: Subscription, bridge: _FeedBridge) -> None:
        try:
            initial = await self.fetch(subscription.request_id)
        except StoreReadError:
            _logger.warning("Initial read for request %s failed", subscription.request_id, exc_info=True)
            bridge.release(None, have_initial=False)
            return
        bridge.release(initial, have_initial=True)
