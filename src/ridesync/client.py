"""High-level async client wiring store, watcher and lifecycle together."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from ridesync.adapter import order_from_record, to_record_input
from ridesync.config import SyncConfig
from ridesync.exceptions import RideSyncConfigError, RideSyncError
from ridesync.lifecycle import CancelOutcome, RequestLifecycle
from ridesync.models.orders import Order, RequestContext, UserRef
from ridesync.models.record import RequestRecord
from ridesync.store.base import RecordStore
from ridesync.store.mqtt_feed import MqttRecordFeed
from ridesync.store.rest import RestRecordStore
from ridesync.watcher import RequestWatcher

_logger = logging.getLogger(__name__)


class RideSyncClient:
    """Async client for request lifecycle synchronization.

    Usage::

        async with RideSyncClient(SyncConfig.from_env()) as client:
            flow = await client.submit(order, UserRef(id="u1", name="Ada"))
            ...
            await flow.cancel()

    When no ``store`` is injected, a :class:`~ridesync.store.RestRecordStore`
    is built from ``config`` (with the MQTT feed when enabled).
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        store: RecordStore | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = (config or SyncConfig()).validate()
        self._store = store
        self._external_store = store is not None
        self._external_session = session is not None
        self._http_session = session
        self._feed: MqttRecordFeed | None = None
        self._flows: list[RequestLifecycle] = []

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RideSyncClient:
        if self._store is None:
            if not self._config.database_url:
                raise RideSyncConfigError("database_url is required when no store is injected")
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            await self._start_feed()
            self._store = RestRecordStore.from_config(self._config, self._http_session, feed=self._feed)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        for flow in self._flows:
            flow.close()
        self._flows.clear()
        if self._feed is not None:
            await self._feed.stop()
            self._feed = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if not self._external_store:
            self._store = None

    async def _start_feed(self) -> None:
        """Best-effort MQTT startup; subscriptions fall back to the event stream."""
        if not self._config.mqtt.enabled:
            return
        feed = MqttRecordFeed(self._config.mqtt)
        try:
            await feed.start()
        except Exception:
            _logger.warning("MQTT feed startup failed; using the event stream", exc_info=True)
            return
        self._feed = feed

    def _prune_flows(self) -> None:
        self._flows = [flow for flow in self._flows if not flow.is_finished]

    def _require_store(self) -> RecordStore:
        if self._store is None:
            raise RideSyncError("Client not initialized. Use 'async with RideSyncClient(...) as client:'")
        return self._store

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def store(self) -> RecordStore:
        return self._require_store()

    def watch(self, request_id: str | None = None) -> RequestWatcher:
        """A new watcher, bound to *request_id* when given."""
        watcher = RequestWatcher(self.store)
        if request_id is not None:
            watcher.open(request_id)
        return watcher

    def lifecycle(
        self,
        context: RequestContext,
        *,
        on_accepted: Callable[[RequestRecord], None] | None = None,
        on_timed_out: Callable[[], None] | None = None,
        on_cancelled: Callable[[CancelOutcome], None] | None = None,
    ) -> RequestLifecycle:
        """Build (but do not start) a lifecycle for *context*."""
        self._prune_flows()
        flow = RequestLifecycle(
            RequestWatcher(self.store),
            context,
            config=self._config,
            on_accepted=on_accepted,
            on_timed_out=on_timed_out,
            on_cancelled=on_cancelled,
        )
        self._flows.append(flow)
        return flow

    async def submit(
        self,
        order: Order,
        user: UserRef,
        *,
        on_accepted: Callable[[RequestRecord], None] | None = None,
        on_timed_out: Callable[[], None] | None = None,
        on_cancelled: Callable[[CancelOutcome], None] | None = None,
    ) -> RequestLifecycle:
        """Create the request record and return a started lifecycle.

        Raises :class:`~ridesync.exceptions.StoreWriteError` if the record
        could not be created.
        """
        request_id = await self.store.create(to_record_input(order, user))
        context = RequestContext(order=order, user=user, request_id=request_id)
        flow = self.lifecycle(
            context,
            on_accepted=on_accepted,
            on_timed_out=on_timed_out,
            on_cancelled=on_cancelled,
        )
        flow.start()
        return flow

    async def resume(
        self,
        user: UserRef,
        *,
        on_accepted: Callable[[RequestRecord], None] | None = None,
        on_timed_out: Callable[[], None] | None = None,
        on_cancelled: Callable[[CancelOutcome], None] | None = None,
    ) -> RequestLifecycle | None:
        """Recover the user's active request (e.g. after a restart).

        Returns ``None`` when the user has no active request.
        """
        request_id = await self.store.find_active_request(user.id)
        if request_id is None:
            return None
        record = await self.store.fetch(request_id)
        if record is None:
            _logger.info("Active request %s disappeared before it could be resumed", request_id)
            return None
        context = RequestContext(order=order_from_record(record), user=user, request_id=request_id)
        flow = self.lifecycle(
            context,
            on_accepted=on_accepted,
            on_timed_out=on_timed_out,
            on_cancelled=on_cancelled,
        )
        flow.start(current=record)
        return flow
