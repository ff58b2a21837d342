"""Request record models.

A request record is the single source of truth for one ride or delivery
request. It is created by the client with ``status=pending``; afterwards
only ``status`` and ``driverId`` change, written by the remote
driver/dispatch side or (for ``cancelled``) by the client.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, ConfigDict, Field, model_validator

from ridesync.models._base import EpochTimestamp, RequestKind, RequestStatus, RideSyncBaseModel

_FOOD_FIELDS: tuple[str, ...] = ("food_items", "food_subtotal", "delivery_fee")
_FOOD_WIRE_KEYS: tuple[str, ...] = ("foodItems", "foodSubtotal", "deliveryFee")


class FoodItem(RideSyncBaseModel):
    """One line item of a food order.

    Items are written by other clients too, so missing fields fall back to
    defaults and unknown keys (``id``, ``notes``, ...) are kept and written
    back unchanged.
    """

    model_config = ConfigDict(extra="allow")

    name: str = ""
    price: float = 0.0
    quantity: int = 1


class RequestInput(RideSyncBaseModel):
    """Fields written when a request record is created.

    ``kind`` is an explicit tag. Records written by older clients carry
    ``requestType`` instead, or no tag at all; for those the kind is derived
    from the presence of food fields.
    """

    kind: RequestKind = Field(validation_alias=AliasChoices("kind", "requestType"), serialization_alias="kind")
    pickup: str
    destination: str
    stops: list[str] = Field(default_factory=list)
    vehicle_or_mode: str = Field(
        default="",
        validation_alias=AliasChoices("vehicleOrMode", "vehicle_or_mode", "carType", "deliveryMode"),
        serialization_alias="vehicleOrMode",
    )
    price: float = Field(ge=0)
    user_id: str
    user_name: str = ""

    food_items: list[FoodItem] | None = None
    food_subtotal: float | None = Field(default=None, ge=0)
    delivery_fee: float | None = Field(default=None, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _derive_kind(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        if values.get("kind") is not None or values.get("requestType") is not None:
            return values
        merged = dict(values)
        has_food = any(merged.get(key) is not None for key in (*_FOOD_WIRE_KEYS, *_FOOD_FIELDS))
        merged["kind"] = RequestKind.FOOD if has_food else RequestKind.RIDE
        return merged

    @model_validator(mode="after")
    def _check_kind_fields(self) -> RequestInput:
        if self.kind == RequestKind.RIDE:
            present = [name for name in _FOOD_FIELDS if getattr(self, name) is not None]
            if present:
                raise ValueError(f"ride requests must not carry food fields: {', '.join(present)}")
        elif self.food_items is None:
            object.__setattr__(self, "food_items", [])
        return self


class RequestRecord(RequestInput):
    """A request record as read back from the store."""

    id: str
    status: RequestStatus = RequestStatus.PENDING
    driver_id: str | None = None
    created_at: EpochTimestamp = None

    @classmethod
    def from_snapshot(cls, request_id: str, data: Mapping[str, Any]) -> RequestRecord:
        """Build a record from a raw stored value keyed by *request_id*.

        The stored value does not repeat its own key; the id is injected here.
        """
        payload = dict(data)
        payload["id"] = request_id
        return cls.model_validate(payload)

    @property
    def is_accepted(self) -> bool:
        """Driver attribution present and status advanced to ``accepted``."""
        return bool(self.driver_id) and self.status == RequestStatus.ACCEPTED


def is_accepted(record: RequestRecord | None) -> bool:
    """Acceptance predicate over a possibly-absent snapshot.

    A status flip without a ``driverId`` is not acceptance.
    """
    return record is not None and record.is_accepted
