"""HTTP transport for a Firebase-compatible realtime database REST API."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol

import aiohttp

from ridesync._constants import USER_AGENT
from ridesync._redact import redact_for_log
from ridesync.config import SyncConfig
from ridesync.exceptions import StoreError
from ridesync.store.stream import SseDecoder, StreamEvent

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the REST store.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`RealtimeDbTransport`) concrete.
    """

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        payload: Any = None,
    ) -> Any: ...

    def stream(self, path: str) -> AsyncIterator[StreamEvent]: ...


def _encode_query(params: Mapping[str, Any] | None) -> dict[str, str]:
    """Query values are JSON-encoded (``orderBy="userId"``), except plain flags."""
    if not params:
        return {}
    encoded: dict[str, str] = {}
    for key, value in params.items():
        encoded[key] = value if key in {"print", "format"} else json.dumps(value)
    return encoded


class RealtimeDbTransport:
    """JSON-over-HTTP access to ``{database_url}/{path}.json``."""

    def __init__(self, config: SyncConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)
        self._stream_timeout = aiohttp.ClientTimeout(total=None, sock_connect=config.request_timeout)

    def _url(self, path: str) -> str:
        return f"{self._config.database_url.rstrip('/')}/{path.strip('/')}.json"

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        payload: Any = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises :class:`~ridesync.exceptions.StoreError` on network failures,
        non-2xx responses and invalid JSON.
        """
        url = self._url(path)
        headers = {"user-agent": USER_AGENT, "accept": "application/json"}
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else None
        if body is not None:
            headers["content-type"] = "application/json; charset=UTF-8"

        _logger.debug("%s %s payload=%s", method, url, redact_for_log(payload))

        try:
            async with self._http.request(
                method,
                url,
                params=_encode_query(params),
                data=body,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if resp.status // 100 != 2:
                    raise StoreError(
                        f"HTTP {resp.status} from {method} {path}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=path,
                    )
        except StoreError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise StoreError(f"{method} {path} failed: {exc}", endpoint=path) from exc

        try:
            return json.loads(text) if text else None
        except json.JSONDecodeError as exc:
            raise StoreError(f"Invalid JSON from {method} {path}: {text[:200]}", endpoint=path) from exc

    async def stream(self, path: str) -> AsyncIterator[StreamEvent]:
        """Yield server-sent events for *path* until the server closes the stream."""
        url = self._url(path)
        headers = {"user-agent": USER_AGENT, "accept": "text/event-stream"}
        decoder = SseDecoder()

        _logger.debug("STREAM %s", url)

        try:
            async with self._http.get(url, headers=headers, timeout=self._stream_timeout) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise StoreError(
                        f"HTTP {resp.status} opening stream {path}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=path,
                    )
                async for raw_line in resp.content:
                    line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
                    event = decoder.feed_line(line)
                    if event is not None:
                        yield event
        except StoreError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise StoreError(f"stream {path} failed: {exc}", endpoint=path) from exc
        except ValueError as exc:
            # aiohttp refuses lines longer than its read buffer limit.
            raise StoreError(f"stream {path} sent an unreadable line: {exc}", endpoint=path) from exc
