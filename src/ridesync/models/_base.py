"""Base model and enums for request records.

Every wire-facing model inherits from :class:`RideSyncBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase database keys map
  automatically to snake_case fields.
* A ``model_validator(mode="before")`` that drops ``None`` values so the
  field default is used (the database stores ``null`` for cleared fields).
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_epoch_timestamp(value: Any) -> datetime | None:
    """Convert an epoch timestamp (seconds **or** milliseconds) to a UTC datetime.

    Server-assigned timestamps arrive as epoch milliseconds. Unresolved
    server-value placeholders (``{".sv": "timestamp"}``) map to ``None``.
    """
    if value is None or isinstance(value, dict):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    ts = float(value)
    if ts >= _MS_THRESHOLD:
        ts /= 1000.0
    return datetime.fromtimestamp(ts, tz=UTC)


EpochTimestamp = Annotated[datetime | None, BeforeValidator(parse_epoch_timestamp)]
"""Annotated type that coerces epoch ints (seconds or ms) to UTC datetimes."""


class RequestKind(enum.StrEnum):
    """Closed set of request kinds sharing the record collection."""

    RIDE = "ride"
    FOOD = "food"


class RequestStatus(enum.StrEnum):
    """Remote status of a request record.

    Statuses only move forward; a retry creates a new record instead of
    rewinding an old one.
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.CANCELLED)

    def can_transition_to(self, target: RequestStatus) -> bool:
        """Whether ``self -> target`` is a legal forward move."""
        return target in _STATUS_TRANSITIONS[self]


_STATUS_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.ACCEPTED, RequestStatus.CANCELLED}),
    RequestStatus.ACCEPTED: frozenset({RequestStatus.ARRIVED, RequestStatus.CANCELLED}),
    RequestStatus.ARRIVED: frozenset({RequestStatus.STARTED, RequestStatus.CANCELLED}),
    RequestStatus.STARTED: frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED}),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

ACTIVE_STATUSES: frozenset[RequestStatus] = frozenset(s for s in RequestStatus if not s.is_terminal)


class RideSyncBaseModel(BaseModel):
    """Base for models that travel through the record store."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return {key: value for key, value in values.items() if value is not None}

    def to_wire(self) -> dict[str, Any]:
        """Dump to the camelCase JSON shape stored in the database."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
