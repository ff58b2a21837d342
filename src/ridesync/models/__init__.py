"""Data models for request records, orders and projections."""

from ridesync.models._base import (
    ACTIVE_STATUSES,
    EpochTimestamp,
    RequestKind,
    RequestStatus,
    RideSyncBaseModel,
    parse_epoch_timestamp,
)
from ridesync.models.orders import DeliveryMode, FoodOrder, Order, RequestContext, RideOrder, UserRef
from ridesync.models.record import FoodItem, RequestInput, RequestRecord, is_accepted
from ridesync.models.views import FoodView, RequestView, RideView

__all__ = [
    "ACTIVE_STATUSES",
    "DeliveryMode",
    "EpochTimestamp",
    "FoodItem",
    "FoodOrder",
    "FoodView",
    "Order",
    "RequestContext",
    "RequestInput",
    "RequestKind",
    "RequestRecord",
    "RequestStatus",
    "RequestView",
    "RideOrder",
    "RideSyncBaseModel",
    "RideView",
    "UserRef",
    "is_accepted",
    "parse_epoch_timestamp",
]
