"""Unified request listener.

A :class:`RequestWatcher` owns zero or one live store subscription. Binding
it to another request id is a single close-then-open step, so two
subscriptions never coexist for one watcher. Every snapshot replaces
``latest`` and recomputes ``is_accepted``; observers receive a frozen
:class:`WatchState` after each change.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from ridesync.models.record import RequestInput, RequestRecord, is_accepted
from ridesync.store.base import RecordStore, Subscription

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WatchState:
    """What the presentation layer renders from the watcher."""

    request_id: str | None
    latest: RequestRecord | None
    is_loading: bool
    is_accepted: bool


WatchListener = Callable[[WatchState], None]


class RequestWatcher:
    """Keeps the client's view of one request record in sync with the store."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store
        self._request_id: str | None = None
        self._subscription: Subscription | None = None
        self._latest: RequestRecord | None = None
        self._awaiting_initial = False
        self._pending_creates = 0
        self._listeners: list[WatchListener] = []

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def request_id(self) -> str | None:
        return self._request_id

    @property
    def latest(self) -> RequestRecord | None:
        return self._latest

    @property
    def is_loading(self) -> bool:
        return self._pending_creates > 0 or self._awaiting_initial

    @property
    def is_accepted(self) -> bool:
        return is_accepted(self._latest)

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None

    def snapshot(self) -> WatchState:
        return WatchState(
            request_id=self._request_id,
            latest=self._latest,
            is_loading=self.is_loading,
            is_accepted=self.is_accepted,
        )

    def add_listener(self, listener: WatchListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def open(self, request_id: str | None) -> None:
        """Bind to *request_id*, closing any previous subscription first.

        Re-opening the id that is already live is a no-op. ``None`` unbinds.
        """
        if request_id is not None and request_id == self._request_id and self._subscription is not None:
            return

        self._dispose()
        self._request_id = request_id
        self._latest = None
        self._awaiting_initial = request_id is not None
        if request_id is not None:
            _logger.debug("Watching request %s", request_id)
            self._subscription = self._store.subscribe(request_id, self._on_snapshot)
        self._emit()

    async def create(self, record: RequestInput, *, bind: bool = True) -> str:
        """Create a record through the store and (by default) bind to its id.

        ``is_loading`` stays true for the duration of the write. On
        :class:`~ridesync.exceptions.StoreWriteError` the current binding is
        left untouched and the error propagates. With ``bind=False`` the
        caller decides whether to :meth:`open` the new id.
        """
        self._pending_creates += 1
        self._emit()
        request_id: str | None = None
        try:
            request_id = await self._store.create(record)
        finally:
            self._pending_creates -= 1
            if request_id is None:
                self._emit()
        _logger.info("Created %s request %s", record.kind, request_id)
        if bind:
            self.open(request_id)
        else:
            self._emit()
        return request_id

    def close(self) -> None:
        """Tear down the live subscription. Safe to call repeatedly."""
        if self._subscription is None and not self._awaiting_initial:
            return
        self._dispose()
        self._emit()

    def _dispose(self) -> None:
        subscription = self._subscription
        self._subscription = None
        self._awaiting_initial = False
        if subscription is not None:
            subscription.close()

    def _on_snapshot(self, record: RequestRecord | None) -> None:
        self._latest = record
        self._awaiting_initial = False
        self._emit()
        if record is not None and record.status.is_terminal and self._subscription is not None:
            _logger.debug("Request %s reached %s; closing subscription", record.id, record.status)
            self._dispose()

    def _emit(self) -> None:
        state = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                _logger.warning("Watch listener failed", exc_info=True)
