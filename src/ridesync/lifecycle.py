"""Client-side request lifecycle.

:class:`RequestLifecycle` drives what the user sees while a request waits
for a driver::

    idle -> scanning -> accepted
                     -> timed_out -> scanning (retry)
    idle | scanning | timed_out -> cancelled

The state is local to the client and independent of the record's own
``status``. Transitions only happen on three kinds of events: a snapshot
from the :class:`~ridesync.watcher.RequestWatcher`, a countdown tick, or a
user action (:meth:`RequestLifecycle.retry`, :meth:`RequestLifecycle.cancel`).
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass

from ridesync.adapter import to_record_input
from ridesync.config import SyncConfig
from ridesync.exceptions import StoreReadError, StoreWriteError, UnresolvedTargetError
from ridesync.models._base import RequestStatus
from ridesync.models.orders import RequestContext
from ridesync.models.record import RequestRecord
from ridesync.watcher import RequestWatcher, WatchState

_logger = logging.getLogger(__name__)


class LifecycleState(enum.StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    ACCEPTED = "accepted"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (LifecycleState.ACCEPTED, LifecycleState.CANCELLED)


@dataclass(frozen=True, slots=True)
class CancelOutcome:
    """Result of a cancel, including what a follow-up screen needs.

    ``write_error`` is set when the ``cancelled`` write did not reach the
    store; the local state is cancelled either way.
    """

    request_id: str
    context: RequestContext
    write_error: StoreWriteError | None = None

    @property
    def confirmed(self) -> bool:
        return self.write_error is None


@dataclass(frozen=True, slots=True)
class LifecycleSnapshot:
    state: LifecycleState
    progress: float
    request_id: str | None
    watch: WatchState


LifecycleListener = Callable[[LifecycleSnapshot], None]


class RequestLifecycle:
    """State machine over one request flow.

    Parameters
    ----------
    watcher : RequestWatcher
        Watcher owned by this flow. The lifecycle binds and closes it.
    context : RequestContext
        Order and user the flow was started with, optionally with the id of
        the record already created for it.
    config : SyncConfig
        Countdown duration, tick, progress maximum and accept grace delay.
    on_accepted, on_timed_out, on_cancelled
        Optional callbacks for the presentation layer. ``on_accepted``
        fires ``config.accept_grace`` seconds after the accepted state.
    """

    def __init__(
        self,
        watcher: RequestWatcher,
        context: RequestContext,
        *,
        config: SyncConfig | None = None,
        on_accepted: Callable[[RequestRecord], None] | None = None,
        on_timed_out: Callable[[], None] | None = None,
        on_cancelled: Callable[[CancelOutcome], None] | None = None,
    ) -> None:
        self._watcher = watcher
        self._context = context
        self._config = (config or SyncConfig()).validate()
        self._on_accepted = on_accepted
        self._on_timed_out = on_timed_out
        self._on_cancelled = on_cancelled

        self._state = LifecycleState.IDLE
        self._progress = 0.0
        self._countdown: asyncio.Task[None] | None = None
        self._grace_handle: asyncio.TimerHandle | None = None
        self._remove_watch: Callable[[], None] | None = None
        self._listeners: list[LifecycleListener] = []
        self._retrying = False
        self._cancelling = False
        self._closed = False

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def context(self) -> RequestContext:
        return self._context

    @property
    def request_id(self) -> str | None:
        return self._context.request_id

    @property
    def watcher(self) -> RequestWatcher:
        return self._watcher

    @property
    def is_retrying(self) -> bool:
        return self._retrying

    @property
    def is_finished(self) -> bool:
        """Closed, or terminal with no subscription or pending callback left."""
        if self._closed:
            return True
        return self._state.is_terminal and not self._watcher.is_subscribed and self._grace_handle is None

    def snapshot(self) -> LifecycleSnapshot:
        return LifecycleSnapshot(
            state=self._state,
            progress=self._progress,
            request_id=self._context.request_id,
            watch=self._watcher.snapshot(),
        )

    def add_listener(self, listener: LifecycleListener) -> Callable[[], None]:
        """Register *listener* for state and progress changes."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, *, current: RequestRecord | None = None) -> None:
        """Bind the watcher and start scanning if a request id is known.

        *current* is the record as last read (when resuming). If it has
        already moved past ``pending``, a driver holds the request and the
        flow goes straight to ``accepted`` instead of scanning.
        """
        if self._closed or self._remove_watch is not None:
            return
        self._remove_watch = self._watcher.add_listener(self._on_watch)
        request_id = self._context.request_id
        if request_id is None:
            _logger.debug("No request id yet; lifecycle stays idle")
            return
        self._watcher.open(request_id)
        if current is not None and current.id == request_id and current.status != RequestStatus.PENDING:
            _logger.info("Request %s already %s; not scanning", request_id, current.status)
            self._enter_accepted(current)
            return
        self._begin_scanning()

    async def retry(self) -> str | None:
        """Re-request after a timeout with the same order and user.

        Ignored (returns ``None``) outside ``timed_out`` or while another
        retry is in flight. Raises :class:`~ridesync.exceptions.StoreWriteError`
        when the new record could not be created; the state stays
        ``timed_out``.
        """
        if self._state != LifecycleState.TIMED_OUT or self._retrying or self._closed:
            _logger.debug("Retry ignored state=%s retrying=%s", self._state, self._retrying)
            return None

        self._retrying = True
        try:
            record_input = to_record_input(self._context.order, self._context.user)
            request_id = await self._watcher.create(record_input, bind=False)
        except StoreWriteError:
            _logger.warning("Retry failed; staying timed out", exc_info=True)
            raise
        finally:
            self._retrying = False

        if self._state != LifecycleState.TIMED_OUT or self._closed:
            _logger.warning("Flow moved to %s during retry; cancelling new request %s", self._state, request_id)
            await self._release_orphan(request_id)
            return None

        self._context = self._context.with_request_id(request_id)
        self._watcher.open(request_id)
        self._begin_scanning()
        return request_id

    async def cancel(self) -> CancelOutcome | None:
        """Cancel the request.

        The target is resolved in order: the record the watcher is bound to,
        the locally known id, then a lookup of the user's active request.
        Raises :class:`~ridesync.exceptions.UnresolvedTargetError` (without
        changing state) when none resolves. Returns ``None`` when the flow
        is already terminal or a cancel is in progress.
        """
        if self._cancelling or self._state.is_terminal or self._closed:
            return None

        self._cancelling = True
        request_id = await self._resolve_cancel_target()
        if request_id is None:
            self._cancelling = False
            _logger.error("No request id available to cancel for user %s; aborting", self._context.user.id)
            if self._watcher.is_accepted:
                self._on_watch(self._watcher.snapshot())
            raise UnresolvedTargetError("no request id available to cancel", user_id=self._context.user.id)

        self._stop_countdown()
        write_error: StoreWriteError | None = None
        try:
            await self._watcher.store.update_status(request_id, RequestStatus.CANCELLED)
        except StoreWriteError as exc:
            write_error = exc
            _logger.warning("Cancel write for request %s failed; cancelling locally", request_id, exc_info=True)

        self._watcher.close()
        self._context = self._context.with_request_id(request_id)
        outcome = CancelOutcome(request_id=request_id, context=self._context, write_error=write_error)
        self._set_state(LifecycleState.CANCELLED)
        self._notify(self._on_cancelled, outcome)
        return outcome

    def close(self) -> None:
        """Stop timers and the watcher. The lifecycle cannot be restarted."""
        if self._closed:
            return
        self._closed = True
        self._stop_countdown()
        if self._grace_handle is not None:
            self._grace_handle.cancel()
            self._grace_handle = None
        if self._remove_watch is not None:
            self._remove_watch()
        self._watcher.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _resolve_cancel_target(self) -> str | None:
        latest = self._watcher.latest
        if latest is not None:
            return latest.id
        if self._context.request_id is not None:
            return self._context.request_id
        try:
            return await self._watcher.store.find_active_request(self._context.user.id)
        except StoreReadError:
            _logger.warning("Active request lookup failed", exc_info=True)
            return None

    async def _release_orphan(self, request_id: str) -> None:
        try:
            await self._watcher.store.update_status(request_id, RequestStatus.CANCELLED)
        except StoreWriteError:
            _logger.warning("Could not cancel orphaned request %s", request_id, exc_info=True)

    def _on_watch(self, watch: WatchState) -> None:
        if not watch.is_accepted or watch.latest is None:
            return
        if self._cancelling:
            # Last writer wins at the store; the local cancel proceeds.
            _logger.warning("Acceptance of %s observed while cancelling", watch.latest.id)
            return
        if self._closed or self._state not in (LifecycleState.SCANNING, LifecycleState.TIMED_OUT):
            return
        _logger.info("Request %s accepted by driver %s", watch.latest.id, watch.latest.driver_id)
        self._enter_accepted(watch.latest)

    def _enter_accepted(self, record: RequestRecord) -> None:
        self._stop_countdown()
        self._progress = self._config.progress_max
        self._set_state(LifecycleState.ACCEPTED)
        loop = asyncio.get_running_loop()
        self._grace_handle = loop.call_later(self._config.accept_grace, self._fire_accepted, record)

    def _fire_accepted(self, record: RequestRecord) -> None:
        self._grace_handle = None
        if self._closed:
            return
        self._notify(self._on_accepted, record)

    def _begin_scanning(self) -> None:
        self._progress = 0.0
        self._set_state(LifecycleState.SCANNING)
        self._stop_countdown()
        self._countdown = asyncio.get_running_loop().create_task(self._run_countdown(), name="ridesync-countdown")

    def _stop_countdown(self) -> None:
        task = self._countdown
        self._countdown = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run_countdown(self) -> None:
        duration = self._config.scan_duration
        tick = self._config.scan_tick
        # Float division can land a hair above an integer (0.3 / 0.1).
        total_ticks = max(1, math.ceil(duration / tick - 1e-9))
        for count in range(1, total_ticks + 1):
            await asyncio.sleep(tick)
            if self._state != LifecycleState.SCANNING:
                return
            self._progress = self._config.progress_max * count / total_ticks
            if count < total_ticks:
                self._emit()

        self._countdown = None
        self._progress = self._config.progress_max
        _logger.info("No driver accepted request %s within %.1fs", self._context.request_id, duration)
        self._set_state(LifecycleState.TIMED_OUT)
        self._notify(self._on_timed_out)

    def _set_state(self, state: LifecycleState) -> None:
        if state == self._state:
            self._emit()
            return
        _logger.debug("Lifecycle %s -> %s request=%s", self._state, state, self._context.request_id)
        self._state = state
        self._emit()

    def _emit(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _logger.warning("Lifecycle listener failed", exc_info=True)

    def _notify(self, callback: Callable[..., None] | None, *args: object) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            _logger.warning("Lifecycle callback failed", exc_info=True)
