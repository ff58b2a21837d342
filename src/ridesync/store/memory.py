"""In-process record store.

Holds records in their wire shape (camelCase dicts keyed by id) so that
reads go through the same validation as records coming from a remote
database. Deliveries are scheduled on the running asyncio loop in the
order changes are applied.

Besides the client-facing :class:`~ridesync.store.base.RecordStore`
operations, the store exposes the writes a driver/dispatch process would
perform (:meth:`MemoryRecordStore.assign_driver`,
:meth:`MemoryRecordStore.set_status`, ...). Tests and embedding hosts use
them to play the remote side.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from ridesync._redact import redact_for_log
from ridesync.exceptions import RecordNotFoundError, StoreReadError, StoreWriteError
from ridesync.models._base import RequestStatus
from ridesync.models.record import RequestInput, RequestRecord
from ridesync.store.base import OnChange, Subscription

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MemoryRecordStore:
    """Deterministic in-memory implementation of the record store."""

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._records: dict[str, dict[str, Any]] = {}
        self._order: dict[str, int] = {}
        self._seq = itertools.count()
        self._subscriptions: dict[str, list[Subscription]] = {}
        self.unreachable = False
        """When set, every client operation fails as if the store were offline."""

    # ------------------------------------------------------------------
    # Client operations
    # ------------------------------------------------------------------

    async def create(self, record: RequestInput) -> str:
        if self.unreachable:
            raise StoreWriteError("store unreachable", endpoint="create")
        request_id = f"-{secrets.token_hex(10)}"
        data = record.to_wire()
        data["status"] = str(RequestStatus.PENDING)
        data["createdAt"] = int(self._clock().timestamp() * 1000)
        self._records[request_id] = data
        self._order[request_id] = next(self._seq)
        _logger.debug("Created request id=%s data=%s", request_id, redact_for_log(data))
        self._notify(request_id)
        return request_id

    async def fetch(self, request_id: str) -> RequestRecord | None:
        if self.unreachable:
            raise StoreReadError("store unreachable", request_id=request_id, endpoint="fetch")
        return self._snapshot(request_id)

    def subscribe(self, request_id: str, on_change: OnChange) -> Subscription:
        loop = asyncio.get_running_loop()
        subscription = Subscription(
            request_id,
            on_change,
            on_close=lambda: self._detach(request_id, subscription),
        )
        self._subscriptions.setdefault(request_id, []).append(subscription)
        loop.call_soon(subscription.deliver, self._snapshot(request_id))
        return subscription

    async def update_status(self, request_id: str, status: RequestStatus) -> None:
        if self.unreachable:
            raise StoreWriteError("store unreachable", request_id=request_id, endpoint="update_status")
        data = self._records.get(request_id)
        if data is None:
            raise RecordNotFoundError(
                f"request {request_id} no longer exists",
                request_id=request_id,
                endpoint="update_status",
            )
        data["status"] = str(status)
        self._notify(request_id)

    async def find_active_request(self, user_id: str) -> str | None:
        if self.unreachable:
            raise StoreReadError("store unreachable", endpoint="find_active_request")
        candidates = [
            request_id
            for request_id, data in self._records.items()
            if data.get("userId") == user_id and not RequestStatus(data.get("status", "pending")).is_terminal
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda rid: (self._records[rid].get("createdAt", 0), self._order[rid]))

    # ------------------------------------------------------------------
    # Remote-side writes
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> dict[str, Any] | None:
        """Raw stored value for *request_id* (a copy)."""
        data = self._records.get(request_id)
        return copy.deepcopy(data) if data is not None else None

    def assign_driver(self, request_id: str, driver_id: str) -> None:
        """Atomically set ``driverId`` and move the record to ``accepted``."""
        data = self._require(request_id)
        current = RequestStatus(data.get("status", "pending"))
        if not current.can_transition_to(RequestStatus.ACCEPTED):
            raise ValueError(f"cannot accept request {request_id} in status {current}")
        data["driverId"] = driver_id
        data["status"] = str(RequestStatus.ACCEPTED)
        self._notify(request_id)

    def set_status(self, request_id: str, status: RequestStatus) -> None:
        """Advance the status as the remote side would, enforcing forward moves."""
        data = self._require(request_id)
        current = RequestStatus(data.get("status", "pending"))
        if not current.can_transition_to(status):
            raise ValueError(f"illegal transition {current} -> {status} for request {request_id}")
        data["status"] = str(status)
        self._notify(request_id)

    def apply_remote(self, request_id: str, **fields: Any) -> None:
        """Unchecked patch of wire fields (``None`` removes a key)."""
        data = self._require(request_id)
        for key, value in fields.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        self._notify(request_id)

    def delete(self, request_id: str) -> None:
        """Remove a record, as an external cleanup job would."""
        if self._records.pop(request_id, None) is not None:
            self._order.pop(request_id, None)
            self._notify(request_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, request_id: str) -> dict[str, Any]:
        data = self._records.get(request_id)
        if data is None:
            raise KeyError(request_id)
        return data

    def _snapshot(self, request_id: str) -> RequestRecord | None:
        data = self._records.get(request_id)
        if data is None:
            return None
        try:
            return RequestRecord.from_snapshot(request_id, data)
        except ValidationError:
            _logger.warning("Discarding malformed record id=%s", request_id, exc_info=True)
            return None

    def _notify(self, request_id: str) -> None:
        subscriptions = self._subscriptions.get(request_id)
        if not subscriptions:
            return
        snapshot = self._snapshot(request_id)
        loop = asyncio.get_running_loop()
        for subscription in list(subscriptions):
            loop.call_soon(subscription.deliver, snapshot)

    def _detach(self, request_id: str, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(request_id)
        if subscriptions is None:
            return
        self._subscriptions[request_id] = [cand for cand in subscriptions if cand is not subscription]
        if not self._subscriptions[request_id]:
            self._subscriptions.pop(request_id, None)

    def subscription_count(self, request_id: str) -> int:
        """Number of open subscriptions for *request_id*."""
        return len(self._subscriptions.get(request_id, []))
