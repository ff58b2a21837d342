"""Kind-specific orders and the request context carried through a flow."""

from __future__ import annotations

import enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ridesync.models._base import RideSyncBaseModel
from ridesync.models.record import FoodItem


class DeliveryMode(enum.StrEnum):
    """How a food order is delivered."""

    CAR = "car"
    MOTORBIKE = "motorbike"
    BICYCLE = "bicycle"


class UserRef(BaseModel):
    """Attribution written onto every record the user creates."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    id: str
    name: str = ""

    @field_validator("id")
    @classmethod
    def _id_non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("user id must be non-empty")
        return value


class _OrderBase(RideSyncBaseModel):
    pickup: str
    destination: str
    stops: list[str] = Field(default_factory=list)
    price: float = Field(ge=0)


class RideOrder(_OrderBase):
    """A ride from ``pickup`` to ``destination`` via ordered ``stops``."""

    kind: Literal["ride"] = "ride"
    car_type: str


class FoodOrder(_OrderBase):
    """A food delivery. ``price`` is the total charged (subtotal + fee)."""

    kind: Literal["food"] = "food"
    delivery_mode: DeliveryMode
    food_items: list[FoodItem] = Field(default_factory=list)
    food_subtotal: float = Field(default=0.0, ge=0)
    delivery_fee: float = Field(default=0.0, ge=0)


Order = Annotated[RideOrder | FoodOrder, Field(discriminator="kind")]


class RequestContext(BaseModel):
    """Immutable context built once when a request is submitted.

    Holds everything a retry or a cancel needs, so nothing has to be
    reconstructed from screen state later on.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    order: Order
    user: UserRef
    request_id: str | None = None

    def with_request_id(self, request_id: str | None) -> RequestContext:
        """Return a copy bound to *request_id* (e.g. after a retry)."""
        return self.model_copy(update={"request_id": request_id})
