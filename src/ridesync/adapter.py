"""Mapping between kind-specific orders and the common record shape.

Ride and food requests share one collection. The adapter is the only place
that knows how each kind is laid out in a record:

* write side: :func:`to_record_input` turns an order plus user attribution
  into a :class:`~ridesync.models.RequestInput` with an explicit ``kind`` tag;
* read side: :func:`project` turns a record into a kind-specific view and
  :func:`order_from_record` recovers the order (used when resuming).
"""

from __future__ import annotations

from typing import NoReturn

from ridesync.models._base import RequestKind
from ridesync.models.orders import DeliveryMode, FoodOrder, Order, RideOrder, UserRef
from ridesync.models.record import RequestInput, RequestRecord
from ridesync.models.views import FoodView, RequestView, RideView


def _unhandled_kind(value: object) -> NoReturn:
    raise ValueError(f"unsupported request kind: {value!r}")


def to_record_input(order: Order, user: UserRef) -> RequestInput:
    """Build the record written by ``create`` for *order*."""
    common = {
        "pickup": order.pickup,
        "destination": order.destination,
        "stops": list(order.stops),
        "price": order.price,
        "user_id": user.id,
        "user_name": user.name,
    }
    if isinstance(order, RideOrder):
        return RequestInput(kind=RequestKind.RIDE, vehicle_or_mode=order.car_type, **common)
    if isinstance(order, FoodOrder):
        return RequestInput(
            kind=RequestKind.FOOD,
            vehicle_or_mode=str(order.delivery_mode),
            food_items=list(order.food_items),
            food_subtotal=order.food_subtotal,
            delivery_fee=order.delivery_fee,
            **common,
        )
    _unhandled_kind(order)


def _delivery_mode(value: str) -> DeliveryMode | str:
    try:
        return DeliveryMode(value)
    except ValueError:
        return value


def project(record: RequestRecord) -> RequestView:
    """Kind-specific display data for *record*."""
    if record.kind == RequestKind.RIDE:
        return RideView(record=record, car_type=record.vehicle_or_mode, fare=record.price)
    if record.kind == RequestKind.FOOD:
        return FoodView(
            record=record,
            delivery_mode=_delivery_mode(record.vehicle_or_mode),
            food_items=list(record.food_items or []),
            food_subtotal=record.food_subtotal or 0.0,
            delivery_fee=record.delivery_fee or 0.0,
            total=record.price,
        )
    _unhandled_kind(record.kind)


def order_from_record(record: RequestRecord) -> Order:
    """Recover the order a record was created from.

    Raises :class:`ValueError` when a food record carries a delivery mode
    outside :class:`~ridesync.models.DeliveryMode`.
    """
    common = {
        "pickup": record.pickup,
        "destination": record.destination,
        "stops": list(record.stops),
        "price": record.price,
    }
    if record.kind == RequestKind.RIDE:
        return RideOrder(car_type=record.vehicle_or_mode, **common)
    if record.kind == RequestKind.FOOD:
        return FoodOrder(
            delivery_mode=DeliveryMode(record.vehicle_or_mode),
            food_items=list(record.food_items or []),
            food_subtotal=record.food_subtotal or 0.0,
            delivery_fee=record.delivery_fee or 0.0,
            **common,
        )
    _unhandled_kind(record.kind)


def user_from_record(record: RequestRecord) -> UserRef:
    return UserRef(id=record.user_id, name=record.user_name)
