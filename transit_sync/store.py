"""
Backend data-store contract and implementations.

The sync layer treats the backend as an opaque tree addressed by
slash-separated paths with read / write / update / subscribe semantics.

- MemoryStore keeps the tree in process (local runs and tests).
- FirebaseRestStore talks to a Firebase Realtime Database over its REST
  API with aiohttp, including server-sent-event subscriptions.
"""
from __future__ import annotations

import asyncio
import copy
import json
import logging
from typing import Any, Callable

import aiohttp

from .const import REQUEST_TIMEOUT
from .errors import ReadError, StoreResponseError, WriteError

_LOGGER = logging.getLogger(__name__)

UpdateCallback = Callable[[Any], None]


def split_path(path: str) -> list[str]:
    return [part for part in path.strip("/").split("/") if part]


class DataStore:
    """Interface every backend store implements."""

    async def read(self, path: str) -> Any | None:
        """Point read; returns None when nothing exists at path."""
        raise NotImplementedError

    async def write(self, path: str, value: Any) -> None:
        """Replace the value at path."""
        raise NotImplementedError

    async def update(self, path: str, values: dict[str, Any]) -> None:
        """Merge the given children into the value at path."""
        raise NotImplementedError

    async def write_many(self, updates: dict[str, Any]) -> None:
        """Replace several paths in one request."""
        raise NotImplementedError

    def subscribe(self, path: str, on_update: UpdateCallback) -> Callable[[], None]:
        """Call on_update with the value at path on every change; returns unsubscribe."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release network resources."""


# ---------------------------------------------------------------------------
# In-process store
# ---------------------------------------------------------------------------

class MemoryStore(DataStore):
    """Tree held in a nested dict; subscribers are called synchronously."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._root: dict[str, Any] = copy.deepcopy(data) if data else {}
        self._subscribers: dict[str, list[UpdateCallback]] = {}

    def _get(self, parts: list[str]) -> Any | None:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _set(self, parts: list[str], value: Any) -> None:
        if not parts:
            self._root = value if isinstance(value, dict) else {}
            return
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)

    def _notify(self, changed: str) -> None:
        changed_parts = split_path(changed)
        for path, callbacks in list(self._subscribers.items()):
            parts = split_path(path)
            shortest = min(len(parts), len(changed_parts))
            if parts[:shortest] != changed_parts[:shortest]:
                continue
            value = self._get(parts)
            for callback in list(callbacks):
                callback(copy.deepcopy(value))

    async def read(self, path: str) -> Any | None:
        return copy.deepcopy(self._get(split_path(path)))

    async def write(self, path: str, value: Any) -> None:
        self._set(split_path(path), value)
        self._notify(path)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        parts = split_path(path)
        for key, value in values.items():
            self._set(parts + split_path(key), value)
        self._notify(path)

    async def write_many(self, updates: dict[str, Any]) -> None:
        for path, value in updates.items():
            self._set(split_path(path), value)
        for path in updates:
            self._notify(path)

    def subscribe(self, path: str, on_update: UpdateCallback) -> Callable[[], None]:
        self._subscribers.setdefault(path, []).append(on_update)

        def _unsubscribe() -> None:
            callbacks = self._subscribers.get(path, [])
            if on_update in callbacks:
                callbacks.remove(on_update)
            if not callbacks:
                self._subscribers.pop(path, None)

        return _unsubscribe


# ---------------------------------------------------------------------------
# Firebase Realtime Database over REST
# ---------------------------------------------------------------------------

class FirebaseRestStore(DataStore):
    """
    Firebase Realtime Database REST client.

    Every path maps to `{database_url}/{path}.json`. Subscriptions use the
    database's server-sent-event stream and run as background tasks.
    """

    def __init__(
        self,
        database_url: str,
        auth_token: str | None = None,
        timeout: int = REQUEST_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = database_url.rstrip("/")
        self._auth_token = auth_token
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._streams: set[asyncio.Task] = set()

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{'/'.join(split_path(path))}.json"

    def _params(self) -> dict[str, str]:
        return {"auth": self._auth_token} if self._auth_token else {}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, payload: Any = None) -> Any:
        session = self._get_session()
        async with session.request(
            method, self._url(path), params=self._params(), json=payload
        ) as response:
            if response.status >= 300:
                body = await response.text()
                _LOGGER.warning(
                    "%s %s answered with status %s", method, path, response.status
                )
                raise StoreResponseError(response.status, body)
            return await response.json(content_type=None)

    async def read(self, path: str) -> Any | None:
        try:
            return await self._request("GET", path)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ReadError(f"Read of {path} failed: {exc}") from exc

    async def _write(self, method: str, path: str, payload: Any) -> None:
        try:
            await self._request(method, path, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise WriteError(f"{method} of {path or '/'} failed: {exc}") from exc

    async def write(self, path: str, value: Any) -> None:
        await self._write("PUT", path, value)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        await self._write("PATCH", path, values)

    async def write_many(self, updates: dict[str, Any]) -> None:
        await self._write("PATCH", "", {"/".join(split_path(p)): v for p, v in updates.items()})

    def subscribe(self, path: str, on_update: UpdateCallback) -> Callable[[], None]:
        task = asyncio.ensure_future(self._stream(path, on_update))
        self._streams.add(task)
        task.add_done_callback(self._streams.discard)

        def _unsubscribe() -> None:
            task.cancel()

        return _unsubscribe

    async def _stream(self, path: str, on_update: UpdateCallback) -> None:
        """Consume the event stream for path until cancelled or revoked."""
        session = self._get_session()
        headers = {"Accept": "text/event-stream"}
        timeout = aiohttp.ClientTimeout(total=None, sock_read=None)
        try:
            async with session.get(
                self._url(path), params=self._params(), headers=headers, timeout=timeout
            ) as response:
                if response.status != 200:
                    _LOGGER.warning(
                        "Subscription to %s refused with status %s", path, response.status
                    )
                    return
                event = None
                async for raw_line in response.content:
                    line = raw_line.decode("utf-8", errors="replace").strip()
                    if line.startswith("event:"):
                        event = line[len("event:"):].strip()
                    elif line.startswith("data:") and event is not None:
                        if not await self._handle_event(path, event, line[len("data:"):].strip(), on_update):
                            return
                        event = None
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            _LOGGER.warning("Subscription to %s dropped: %s", path, exc)

    async def _handle_event(
        self, path: str, event: str, data: str, on_update: UpdateCallback
    ) -> bool:
        """Dispatch one server-sent event; returns False when the stream should end."""
        if event == "keep-alive":
            return True
        if event in ("cancel", "auth_revoked"):
            _LOGGER.warning("Subscription to %s ended by server: %s", path, event)
            return False
        if event not in ("put", "patch"):
            return True
        try:
            message = json.loads(data)
        except ValueError:
            _LOGGER.error("Malformed event payload on %s: %s", path, data[:200])
            return True
        if not isinstance(message, dict):
            _LOGGER.error("Unexpected event payload on %s: %s", path, data[:200])
            return True
        if event == "put" and message.get("path") == "/":
            on_update(message.get("data"))
        else:
            # Partial change below the subscribed node: deliver the whole node
            try:
                on_update(await self.read(path))
            except ReadError as exc:
                _LOGGER.warning("Refresh after %s event on %s failed: %s", event, path, exc)
        return True

    async def close(self) -> None:
        for task in list(self._streams):
            task.cancel()
        if self._streams:
            await asyncio.gather(*self._streams, return_exceptions=True)
        self._streams.clear()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
