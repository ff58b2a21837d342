"""Kind-specific read projections of a request record."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from ridesync.models.orders import DeliveryMode
from ridesync.models.record import FoodItem, RequestRecord


class RideView(BaseModel):
    """Display data for a ride request."""

    model_config = ConfigDict(frozen=True)

    record: RequestRecord
    car_type: str
    fare: float


class FoodView(BaseModel):
    """Display data for a food delivery request."""

    model_config = ConfigDict(frozen=True)

    record: RequestRecord
    delivery_mode: DeliveryMode | str
    food_items: list[FoodItem]
    food_subtotal: float
    delivery_fee: float
    total: float


RequestView = RideView | FoodView
