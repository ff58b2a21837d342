from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from ridesync.adapter import to_record_input
from ridesync.config import SyncConfig
from ridesync.exceptions import StoreWriteError, UnresolvedTargetError
from ridesync.lifecycle import CancelOutcome, LifecycleSnapshot, LifecycleState, RequestLifecycle
from ridesync.models import RequestContext, RequestInput, RequestRecord, RequestStatus, RideOrder, UserRef
from ridesync.store.memory import MemoryRecordStore
from ridesync.watcher import RequestWatcher

USER = UserRef(id="u1", name="Ada")
ORDER = RideOrder(pickup="A", destination="B", price=10.0, car_type="sedan")

FAST = SyncConfig(scan_duration=0.1, scan_tick=0.02, accept_grace=0.0)
SLOW = SyncConfig(scan_duration=10.0, scan_tick=1.0, accept_grace=0.0)


class _CountingStore(MemoryRecordStore):
    def __init__(self, *, write_delay: float = 0.0, create_delay: float = 0.0) -> None:
        super().__init__()
        self.status_writes: list[tuple[str, RequestStatus]] = []
        self.lookups = 0
        self.creates = 0
        self._write_delay = write_delay
        self._create_delay = create_delay

    async def create(self, record: RequestInput) -> str:
        self.creates += 1
        if self._create_delay:
            await asyncio.sleep(self._create_delay)
        return await super().create(record)

    async def update_status(self, request_id: str, status: RequestStatus) -> None:
        self.status_writes.append((request_id, status))
        if self._write_delay:
            await asyncio.sleep(self._write_delay)
        await super().update_status(request_id, status)

    async def find_active_request(self, user_id: str) -> str | None:
        self.lookups += 1
        return await super().find_active_request(user_id)


class _Callbacks:
    def __init__(self) -> None:
        self.accepted: list[RequestRecord] = []
        self.timed_out = 0
        self.cancelled: list[CancelOutcome] = []

    def on_accepted(self, record: RequestRecord) -> None:
        self.accepted.append(record)

    def on_timed_out(self) -> None:
        self.timed_out += 1

    def on_cancelled(self, outcome: CancelOutcome) -> None:
        self.cancelled.append(outcome)


async def _start_flow(
    store: MemoryRecordStore,
    *,
    config: SyncConfig = SLOW,
    callbacks: _Callbacks | None = None,
    create: bool = True,
) -> RequestLifecycle:
    context = RequestContext(order=ORDER, user=USER)
    if create:
        request_id = await store.create(to_record_input(ORDER, USER))
        context = context.with_request_id(request_id)
    callbacks = callbacks or _Callbacks()
    flow = RequestLifecycle(
        RequestWatcher(store),
        context,
        config=config,
        on_accepted=callbacks.on_accepted,
        on_timed_out=callbacks.on_timed_out,
        on_cancelled=callbacks.on_cancelled,
    )
    flow.start()
    return flow


async def _until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


# ------------------------------------------------------------------
# Scanning and acceptance
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_start_with_request_id_begins_scanning() -> None:
    flow = await _start_flow(MemoryRecordStore())

    assert flow.state == LifecycleState.SCANNING
    assert flow.progress == 0.0
    assert flow.watcher.request_id == flow.request_id
    flow.close()


@pytest.mark.asyncio
async def test_start_without_request_id_stays_idle() -> None:
    store = MemoryRecordStore()
    flow = await _start_flow(store, create=False)

    assert flow.state == LifecycleState.IDLE
    assert not flow.watcher.is_subscribed
    flow.close()


@pytest.mark.asyncio
async def test_start_with_record_past_pending_skips_scanning() -> None:
    store = MemoryRecordStore()
    callbacks = _Callbacks()
    request_id = await store.create(to_record_input(ORDER, USER))
    store.assign_driver(request_id, "d1")
    store.set_status(request_id, RequestStatus.ARRIVED)
    current = await store.fetch(request_id)
    flow = RequestLifecycle(
        RequestWatcher(store),
        RequestContext(order=ORDER, user=USER, request_id=request_id),
        config=FAST,
        on_accepted=callbacks.on_accepted,
        on_timed_out=callbacks.on_timed_out,
    )

    flow.start(current=current)

    assert flow.state == LifecycleState.ACCEPTED
    assert flow.progress == FAST.progress_max
    await _until(lambda: bool(callbacks.accepted))
    await asyncio.sleep(FAST.scan_duration * 2)
    assert flow.state == LifecycleState.ACCEPTED
    assert callbacks.timed_out == 0
    assert callbacks.accepted[0].status == RequestStatus.ARRIVED
    assert await flow.retry() is None
    flow.close()


@pytest.mark.asyncio
async def test_acceptance_preempts_countdown_on_next_loop_turn() -> None:
    store = MemoryRecordStore()
    flow = await _start_flow(store)

    store.assign_driver(flow.request_id, "d1")
    await asyncio.sleep(0)

    assert flow.state == LifecycleState.ACCEPTED
    assert flow.progress == SLOW.progress_max
    flow.close()


@pytest.mark.asyncio
async def test_on_accepted_fires_after_grace_delay() -> None:
    store = MemoryRecordStore()
    callbacks = _Callbacks()
    config = SyncConfig(scan_duration=10.0, scan_tick=1.0, accept_grace=0.05)
    flow = await _start_flow(store, config=config, callbacks=callbacks)

    store.assign_driver(flow.request_id, "d1")
    await asyncio.sleep(0)
    assert flow.state == LifecycleState.ACCEPTED
    assert callbacks.accepted == []

    await _until(lambda: bool(callbacks.accepted))
    assert callbacks.accepted[0].driver_id == "d1"
    flow.close()


@pytest.mark.asyncio
async def test_status_flip_without_driver_keeps_scanning() -> None:
    store = MemoryRecordStore()
    flow = await _start_flow(store)

    store.apply_remote(flow.request_id, status="accepted")
    await asyncio.sleep(0)

    assert flow.state == LifecycleState.SCANNING
    flow.close()


@pytest.mark.asyncio
async def test_countdown_reaches_max_and_times_out() -> None:
    store = MemoryRecordStore()
    callbacks = _Callbacks()
    flow = await _start_flow(store, config=FAST, callbacks=callbacks)
    progress: list[float] = []
    flow.add_listener(lambda snap: progress.append(snap.progress))

    await _until(lambda: flow.state == LifecycleState.TIMED_OUT)

    assert flow.progress == FAST.progress_max
    assert progress == sorted(progress)
    assert all(0.0 <= value <= FAST.progress_max for value in progress)
    assert callbacks.timed_out == 1
    # The record stays live after a local timeout.
    assert store.get(flow.request_id)["status"] == "pending"
    flow.close()


@pytest.mark.asyncio
async def test_acceptance_after_timeout_is_honoured() -> None:
    store = MemoryRecordStore()
    flow = await _start_flow(store, config=FAST)
    await _until(lambda: flow.state == LifecycleState.TIMED_OUT)

    store.assign_driver(flow.request_id, "d1")
    await asyncio.sleep(0)

    assert flow.state == LifecycleState.ACCEPTED
    flow.close()


# ------------------------------------------------------------------
# Retry
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_retry_rebinds_to_new_record() -> None:
    store = MemoryRecordStore()
    flow = await _start_flow(store, config=FAST)
    old_id = flow.request_id
    await _until(lambda: flow.state == LifecycleState.TIMED_OUT)

    new_id = await flow.retry()

    assert new_id is not None and new_id != old_id
    assert flow.request_id == new_id
    assert flow.state == LifecycleState.SCANNING
    assert flow.progress == 0.0
    assert store.subscription_count(old_id) == 0
    assert store.subscription_count(new_id) == 1
    assert store.get(new_id)["status"] == "pending"

    store.assign_driver(old_id, "d-old")
    await asyncio.sleep(0)
    assert flow.state == LifecycleState.SCANNING

    store.assign_driver(new_id, "d-new")
    await asyncio.sleep(0)
    assert flow.state == LifecycleState.ACCEPTED
    flow.close()


@pytest.mark.asyncio
async def test_retry_outside_timed_out_is_ignored() -> None:
    store = MemoryRecordStore()
    flow = await _start_flow(store)
    request_id = flow.request_id

    assert await flow.retry() is None
    assert flow.request_id == request_id
    assert flow.state == LifecycleState.SCANNING
    flow.close()


@pytest.mark.asyncio
async def test_failed_retry_stays_timed_out() -> None:
    store = MemoryRecordStore()
    flow = await _start_flow(store, config=FAST)
    old_id = flow.request_id
    await _until(lambda: flow.state == LifecycleState.TIMED_OUT)

    store.unreachable = True
    with pytest.raises(StoreWriteError):
        await flow.retry()

    assert flow.state == LifecycleState.TIMED_OUT
    assert flow.request_id == old_id
    assert not flow.is_retrying
    flow.close()


@pytest.mark.asyncio
async def test_concurrent_retries_create_one_record() -> None:
    store = _CountingStore(create_delay=0.02)
    flow = await _start_flow(store, config=FAST)
    await _until(lambda: flow.state == LifecycleState.TIMED_OUT)
    creates_before = store.creates

    results = await asyncio.gather(flow.retry(), flow.retry())

    assert store.creates == creates_before + 1
    assert results.count(None) == 1
    new_id = next(result for result in results if result is not None)
    assert flow.request_id == new_id
    assert flow.state == LifecycleState.SCANNING
    flow.close()


# ------------------------------------------------------------------
# Cancel
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_writes_status_once_and_notifies() -> None:
    store = _CountingStore()
    callbacks = _Callbacks()
    flow = await _start_flow(store, callbacks=callbacks)
    await asyncio.sleep(0)
    request_id = flow.request_id

    outcome = await flow.cancel()

    assert outcome is not None
    assert outcome.request_id == request_id
    assert outcome.confirmed
    assert outcome.context.order == ORDER
    assert outcome.context.user == USER
    assert flow.state == LifecycleState.CANCELLED
    assert store.status_writes == [(request_id, RequestStatus.CANCELLED)]
    assert store.get(request_id)["status"] == "cancelled"
    assert store.subscription_count(request_id) == 0
    assert callbacks.cancelled == [outcome]
    assert store.lookups == 0


@pytest.mark.asyncio
async def test_concurrent_and_repeated_cancel_write_once() -> None:
    store = _CountingStore(write_delay=0.01)
    flow = await _start_flow(store)

    first, second = await asyncio.gather(flow.cancel(), flow.cancel())
    third = await flow.cancel()

    assert first is not None
    assert second is None
    assert third is None
    assert len(store.status_writes) == 1


@pytest.mark.asyncio
async def test_cancel_write_failure_still_cancels_locally() -> None:
    store = _CountingStore()
    callbacks = _Callbacks()
    flow = await _start_flow(store, callbacks=callbacks)
    await asyncio.sleep(0)

    store.unreachable = True
    outcome = await flow.cancel()

    assert outcome is not None
    assert not outcome.confirmed
    assert isinstance(outcome.write_error, StoreWriteError)
    assert flow.state == LifecycleState.CANCELLED
    assert callbacks.cancelled == [outcome]


@pytest.mark.asyncio
async def test_cancel_of_deleted_record_is_non_fatal() -> None:
    store = _CountingStore()
    flow = await _start_flow(store)
    request_id = flow.request_id
    store.delete(request_id)
    await asyncio.sleep(0)

    outcome = await flow.cancel()

    assert outcome is not None
    assert outcome.request_id == request_id
    assert not outcome.confirmed
    assert flow.state == LifecycleState.CANCELLED


@pytest.mark.asyncio
async def test_cancel_falls_back_to_active_request_lookup() -> None:
    store = _CountingStore()
    request_id = await store.create(to_record_input(ORDER, USER))
    flow = await _start_flow(store, create=False)

    outcome = await flow.cancel()

    assert outcome is not None
    assert outcome.request_id == request_id
    assert flow.request_id == request_id
    assert store.lookups == 1
    assert store.get(request_id)["status"] == "cancelled"


@pytest.mark.asyncio
async def test_cancel_without_any_target_raises_and_keeps_state() -> None:
    store = _CountingStore()
    flow = await _start_flow(store, create=False)

    with pytest.raises(UnresolvedTargetError) as excinfo:
        await flow.cancel()

    assert excinfo.value.user_id == "u1"
    assert flow.state == LifecycleState.IDLE
    assert store.lookups == 1
    assert store.status_writes == []

    with pytest.raises(UnresolvedTargetError):
        await flow.cancel()
    assert store.lookups == 2


@pytest.mark.asyncio
async def test_acceptance_during_cancel_is_ignored() -> None:
    store = _CountingStore(write_delay=0.02)
    callbacks = _Callbacks()
    flow = await _start_flow(store, callbacks=callbacks)
    await asyncio.sleep(0)

    task = asyncio.create_task(flow.cancel())
    await asyncio.sleep(0)
    store.assign_driver(flow.request_id, "d1")
    outcome = await task

    assert outcome is not None
    assert flow.state == LifecycleState.CANCELLED
    assert callbacks.accepted == []
    assert store.get(outcome.request_id)["status"] == "cancelled"


@pytest.mark.asyncio
async def test_cancel_after_acceptance_is_ignored() -> None:
    store = _CountingStore()
    flow = await _start_flow(store)
    store.assign_driver(flow.request_id, "d1")
    await asyncio.sleep(0)

    assert await flow.cancel() is None
    assert store.status_writes == []
    flow.close()


# ------------------------------------------------------------------
# Teardown and observation
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_close_stops_timers_and_subscription() -> None:
    store = MemoryRecordStore()
    callbacks = _Callbacks()
    flow = await _start_flow(store, config=FAST, callbacks=callbacks)
    request_id = flow.request_id

    flow.close()
    flow.close()
    await asyncio.sleep(0.2)

    assert flow.state == LifecycleState.SCANNING
    assert callbacks.timed_out == 0
    assert store.subscription_count(request_id) == 0


@pytest.mark.asyncio
async def test_snapshot_combines_lifecycle_and_watch_state() -> None:
    store = MemoryRecordStore()
    flow = await _start_flow(store)
    snapshots: list[LifecycleSnapshot] = []
    flow.add_listener(snapshots.append)

    store.assign_driver(flow.request_id, "d1")
    await asyncio.sleep(0)

    last = snapshots[-1]
    assert last.state == LifecycleState.ACCEPTED
    assert last.request_id == flow.request_id
    assert last.watch.is_accepted
    flow.close()
