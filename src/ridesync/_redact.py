"""Debug-log rendering of request record payloads.

Records carry user attribution (names, ids) and create/patch payloads may
embed database credentials. :func:`redact_for_log` renders a payload for a
DEBUG line with those masked, long strings cut and long item lists elided.

Keys are compared after normalization (``userName``, ``user_name`` and
``USERNAME`` are the same key).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

_MAX_DEPTH = 12

# Replaced outright.
_SECRET_KEYS: frozenset[str] = frozenset(
    {"auth", "accesstoken", "idtoken", "token", "authorization", "cookie", "password", "secret"}
)
_PERSONAL_KEYS: frozenset[str] = frozenset({"username", "displayname", "phone", "phonenumber", "email"})

# Kept recognizable for correlation: only the tail is shown.
_ID_KEYS: frozenset[str] = frozenset({"userid", "driverid"})


def _normalize(key: object) -> str:
    return str(key).replace("_", "").replace("-", "").lower()


def _mask_id(value: Any) -> str:
    text = str(value)
    if len(text) <= 4:
        return "***"
    return f"***{text[-4:]}"


@dataclass(frozen=True, slots=True)
class _Renderer:
    max_string: int
    max_items: int

    def render(self, value: Any, depth: int = 0) -> Any:
        if depth > _MAX_DEPTH:
            return "<max-depth>"
        if value is None or isinstance(value, (bool, int, float)):
            return value
        if isinstance(value, str):
            if len(value) > self.max_string:
                return f"{value[: self.max_string]}…<truncated>"
            return value
        if isinstance(value, (bytes, bytearray)):
            return f"<bytes:{len(value)}b>"
        if isinstance(value, BaseModel):
            return self.render(value.model_dump(by_alias=True, exclude_none=True, mode="json"), depth)
        if isinstance(value, Mapping):
            return {str(key): self._field(key, item, depth) for key, item in value.items()}
        if isinstance(value, Sequence):
            items = [self.render(item, depth + 1) for item in value[: self.max_items]]
            if len(value) > self.max_items:
                items.append(f"<+{len(value) - self.max_items} more>")
            return items
        return repr(value)

    def _field(self, key: object, value: Any, depth: int) -> Any:
        name = _normalize(key)
        if name in _SECRET_KEYS or name in _PERSONAL_KEYS:
            return "<redacted>"
        if name in _ID_KEYS and isinstance(value, (str, int)):
            return _mask_id(value)
        return self.render(value, depth + 1)


def redact_for_log(value: Any, *, max_string: int = 512, max_items: int = 20) -> Any:
    """Return a copy of *value* safe to put in a debug log line.

    *value* may be a raw record dict, a pydantic model (rendered in its wire
    shape) or any nesting of mappings and sequences.
    """
    return _Renderer(max_string=max_string, max_items=max_items).render(value)
