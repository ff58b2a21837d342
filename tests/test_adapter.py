from __future__ import annotations

import pytest

from ridesync.adapter import order_from_record, project, to_record_input, user_from_record
from ridesync.models import (
    DeliveryMode,
    FoodItem,
    FoodOrder,
    FoodView,
    RequestKind,
    RequestRecord,
    RideOrder,
    RideView,
    UserRef,
)
from ridesync.store.memory import MemoryRecordStore

USER = UserRef(id="u1", name="Ada")


def _food_order() -> FoodOrder:
    return FoodOrder(
        pickup="Pizzeria",
        destination="Home",
        price=23.5,
        delivery_mode=DeliveryMode.MOTORBIKE,
        food_items=[FoodItem(name="Margherita", price=9.5, quantity=2), FoodItem(name="Tiramisu", price=3.0)],
        food_subtotal=22.0,
        delivery_fee=1.5,
    )


def test_ride_order_maps_to_tagged_record_without_food_fields() -> None:
    order = RideOrder(pickup="A", destination="B", stops=["C", "D"], price=14.0, car_type="sedan")
    record = to_record_input(order, USER)

    assert record.kind == RequestKind.RIDE
    assert record.vehicle_or_mode == "sedan"
    assert record.stops == ["C", "D"]
    assert record.user_id == "u1"
    assert record.user_name == "Ada"
    assert record.food_items is None
    assert record.delivery_fee is None


@pytest.mark.asyncio
async def test_food_order_survives_store_round_trip() -> None:
    store = MemoryRecordStore()
    order = _food_order()

    request_id = await store.create(to_record_input(order, USER))
    record = await store.fetch(request_id)
    assert record is not None
    assert record.kind == RequestKind.FOOD

    view = project(record)
    assert isinstance(view, FoodView)
    assert view.delivery_mode == DeliveryMode.MOTORBIKE
    assert [item.name for item in view.food_items] == ["Margherita", "Tiramisu"]
    assert view.food_subtotal == 22.0
    assert view.delivery_fee == 1.5
    assert view.total == 23.5

    assert order_from_record(record) == order
    assert user_from_record(record) == USER


@pytest.mark.asyncio
async def test_food_item_extras_survive_order_round_trip() -> None:
    store = MemoryRecordStore()
    request_id = await store.create(to_record_input(_food_order(), USER))
    store.apply_remote(
        request_id,
        foodItems=[{"id": "sku-7", "name": "Margherita", "price": 9.5, "quantity": 2, "notes": "extra crispy"}],
    )

    record = await store.fetch(request_id)
    assert record is not None
    order = order_from_record(record)
    rewritten = to_record_input(order, USER).to_wire()

    assert rewritten["foodItems"] == [
        {"id": "sku-7", "name": "Margherita", "price": 9.5, "quantity": 2, "notes": "extra crispy"},
    ]


def test_ride_projection_exposes_car_type_and_fare() -> None:
    record = RequestRecord.from_snapshot(
        "-r1",
        {"kind": "ride", "pickup": "A", "destination": "B", "vehicleOrMode": "van", "price": 30.0, "userId": "u1"},
    )
    view = project(record)
    assert isinstance(view, RideView)
    assert view.car_type == "van"
    assert view.fare == 30.0
    assert order_from_record(record) == RideOrder(pickup="A", destination="B", price=30.0, car_type="van")


def test_unknown_delivery_mode_projects_but_cannot_rebuild_order() -> None:
    record = RequestRecord.from_snapshot(
        "-f1",
        {
            "kind": "food",
            "pickup": "A",
            "destination": "B",
            "vehicleOrMode": "drone",
            "price": 8.0,
            "userId": "u1",
        },
    )
    view = project(record)
    assert isinstance(view, FoodView)
    assert view.delivery_mode == "drone"
    assert view.food_items == []

    with pytest.raises(ValueError):
        order_from_record(record)
