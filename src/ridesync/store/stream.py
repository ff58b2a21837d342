"""Server-sent event decoding for realtime database streams.

A streaming ``GET`` on a record location yields events of the form::

    event: put
    data: {"path": "/", "data": {...}}

``put`` replaces the value at ``path`` (relative to the streamed location),
``patch`` merges the children of ``data`` into the value at ``path``.
The first event is always a ``put`` at ``/`` carrying the current value
(``null`` when the record does not exist).

This module keeps the decoding pure so it can be tested without a network.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from typing import Any

from ridesync._constants import STREAM_EVENT_PATCH, STREAM_EVENT_PUT


@dataclass(frozen=True)
class StreamEvent:
    """One decoded server-sent event."""

    event: str
    data: Any


class SseDecoder:
    """Incremental line decoder for ``text/event-stream`` bodies."""

    def __init__(self) -> None:
        self._event: str | None = None
        self._data: list[str] = []

    def feed_line(self, line: str) -> StreamEvent | None:
        """Consume one line (without the trailing newline).

        Returns a :class:`StreamEvent` when a blank line completes one.
        """
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> StreamEvent | None:
        event = self._event
        data_lines = self._data
        self._event = None
        self._data = []
        if event is None and not data_lines:
            return None
        text = "\n".join(data_lines)
        try:
            data = json.loads(text) if text else None
        except json.JSONDecodeError:
            data = text
        return StreamEvent(event=event or "message", data=data)


def _split_path(path: str) -> list[str]:
    return [part for part in path.split("/") if part]


def _set_at(root: Any, parts: list[str], value: Any) -> Any:
    if not parts:
        return copy.deepcopy(value)
    base: dict[str, Any] = dict(root) if isinstance(root, dict) else {}
    head, rest = parts[0], parts[1:]
    child = _set_at(base.get(head), rest, value)
    if child is None:
        base.pop(head, None)
    else:
        base[head] = child
    return base or None


def apply_stream_event(current: dict[str, Any] | None, event: StreamEvent) -> dict[str, Any] | None:
    """Return the mirrored value after applying *event* to *current*.

    Events other than ``put``/``patch`` leave the value unchanged. Values
    are never mutated in place.
    """
    if event.event not in (STREAM_EVENT_PUT, STREAM_EVENT_PATCH):
        return current
    body = event.data
    if not isinstance(body, dict) or "path" not in body:
        return current
    parts = _split_path(str(body["path"]))
    data = body.get("data")

    if event.event == STREAM_EVENT_PUT:
        result = _set_at(current, parts, data)
    else:
        if not isinstance(data, dict):
            return current
        result = current
        for key, value in data.items():
            result = _set_at(result, [*parts, *_split_path(key)], value)

    return result if isinstance(result, dict) else None
