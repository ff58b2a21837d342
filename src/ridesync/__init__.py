"""ridesync - Async client-side synchronization of ride and food request lifecycles."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ridesync")
except PackageNotFoundError:
    __version__ = "0+local"
from ridesync.adapter import order_from_record, project, to_record_input, user_from_record
from ridesync.client import RideSyncClient
from ridesync.config import MqttSettings, SyncConfig
from ridesync.exceptions import (
    RecordNotFoundError,
    RideSyncConfigError,
    RideSyncError,
    StoreError,
    StoreReadError,
    StoreWriteError,
    UnresolvedTargetError,
)
from ridesync.lifecycle import CancelOutcome, LifecycleSnapshot, LifecycleState, RequestLifecycle
from ridesync.models import (
    DeliveryMode,
    FoodItem,
    FoodOrder,
    FoodView,
    Order,
    RequestContext,
    RequestInput,
    RequestKind,
    RequestRecord,
    RequestStatus,
    RequestView,
    RideOrder,
    RideView,
    UserRef,
    is_accepted,
)
from ridesync.store import MemoryRecordStore, MqttRecordFeed, RecordStore, RestRecordStore, Subscription
from ridesync.watcher import RequestWatcher, WatchState

__all__ = [
    "__version__",
    "CancelOutcome",
    "DeliveryMode",
    "FoodItem",
    "FoodOrder",
    "FoodView",
    "LifecycleSnapshot",
    "LifecycleState",
    "MemoryRecordStore",
    "MqttRecordFeed",
    "MqttSettings",
    "Order",
    "RecordNotFoundError",
    "RecordStore",
    "RequestContext",
    "RequestInput",
    "RequestKind",
    "RequestLifecycle",
    "RequestRecord",
    "RequestStatus",
    "RequestView",
    "RequestWatcher",
    "RestRecordStore",
    "RideOrder",
    "RideSyncClient",
    "RideSyncConfigError",
    "RideSyncError",
    "RideView",
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    "Subscription",
    "SyncConfig",
    "UnresolvedTargetError",
    "UserRef",
    "WatchState",
    "is_accepted",
    "order_from_record",
    "project",
    "to_record_input",
    "user_from_record",
]
