"""Record store interface and the subscription handle shared by implementations."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from ridesync.models._base import RequestStatus
from ridesync.models.record import RequestInput, RequestRecord

_logger = logging.getLogger(__name__)

OnChange = Callable[[RequestRecord | None], None]
"""Snapshot callback. ``None`` means the record does not exist (yet or anymore)."""


class Subscription:
    """Handle for one push feed keyed by a single request id.

    ``close()`` is synchronous and idempotent. Once it returns, the callback
    is never invoked again for this subscription. Implementations route
    every delivery through :meth:`deliver`, which enforces that.
    """

    __slots__ = ("request_id", "_on_change", "_on_close", "_closed", "delivered")

    def __init__(
        self,
        request_id: str,
        on_change: OnChange,
        *,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self.request_id = request_id
        self._on_change = on_change
        self._on_close = on_close
        self._closed = False
        self.delivered = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, record: RequestRecord | None) -> bool:
        """Invoke the callback unless closed. Returns whether it was invoked."""
        if self._closed:
            return False
        self.delivered += 1
        self._on_change(record)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        on_close = self._on_close
        self._on_close = None
        if on_close is not None:
            on_close()
        _logger.debug("Subscription closed request_id=%s delivered=%d", self.request_id, self.delivered)


class RecordStore(Protocol):
    """Typed access to the shared collection of request records.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementations concrete.
    """

    async def create(self, record: RequestInput) -> str:
        """Write a new record with ``status=pending`` and return its id."""
        ...

    async def fetch(self, request_id: str) -> RequestRecord | None:
        """Read one record, ``None`` when absent."""
        ...

    def subscribe(self, request_id: str, on_change: OnChange) -> Subscription:
        """Open a push feed: initial state first, then every change in order."""
        ...

    async def update_status(self, request_id: str, status: RequestStatus) -> None:
        """Best-effort status write (last writer wins)."""
        ...

    async def find_active_request(self, user_id: str) -> str | None:
        """Most recently created non-terminal record owned by *user_id*."""
        ...
