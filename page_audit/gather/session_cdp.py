"""Async CDP session over a single websocket.

- CdpConnection: id-correlated commands, event fan-out (`on`/`once`/`off`)
  and raw protocol-message listeners (used by the devtools log).
- fetch_ws_url: resolve a page target's websocket URL from `/json/list`.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any

import websockets

from .errors import LighthouseError, ProtocolError

logger = logging.getLogger("page_audit.gather.session_cdp")

EventListener = Callable[[dict[str, Any]], Any]
MessageListener = Callable[[dict[str, Any]], Any]


def _http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Fetch JSON from URL."""
    from urllib.error import URLError
    from urllib.request import urlopen

    try:
        with urlopen(url, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except URLError as e:
        raise ProtocolError(str(e)) from e


def fetch_ws_url(host: str = "127.0.0.1", port: int = 9222, *, timeout: float = 2.0) -> str:
    """Return the websocket debugger URL of the first page target."""
    targets = _http_get_json(f"http://{host}:{port}/json/list", timeout=timeout)
    if isinstance(targets, list):
        for target in targets:
            if isinstance(target, dict) and target.get("type") == "page" and target.get("webSocketDebuggerUrl"):
                return str(target["webSocketDebuggerUrl"])
    raise ProtocolError(f"No page target available at {host}:{port}")


class CdpConnection:
    """One websocket, one reader task. Not thread-safe; use from a single event loop."""

    def __init__(self, ws: Any, *, timeout: float = 30.0) -> None:
        self._ws = ws
        self.timeout = timeout
        self._next_id = 1
        self._pending: dict[int, tuple[str, asyncio.Future[dict[str, Any]]]] = {}
        self._listeners: dict[str, list[tuple[EventListener, bool]]] = {}
        self._message_listeners: list[MessageListener] = []
        self._reader: asyncio.Task[None] | None = None
        self._closed = False

    @classmethod
    async def open(cls, ws_url: str, *, timeout: float = 30.0, open_timeout: float = 5.0) -> CdpConnection:
        try:
            ws = await websockets.connect(ws_url, ping_interval=None, open_timeout=open_timeout, max_size=None)
        except Exception as exc:  # noqa: BLE001
            raise ProtocolError(f"Failed to connect to {ws_url}: {exc}") from exc
        conn = cls(ws, timeout=timeout)
        conn._reader = asyncio.create_task(conn._read_loop())
        return conn

    @property
    def closed(self) -> bool:
        return self._closed

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    async def send_command(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a command and wait for its response (bounded by `timeout`)."""
        if self._closed:
            raise ProtocolError(f"{method}: connection is closed")
        msg_id = self._next_id
        self._next_id += 1

        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params

        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = (method, future)
        try:
            await self._ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            self._pending.pop(msg_id, None)
            raise ProtocolError(f"{method}: {exc}") from exc

        try:
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise LighthouseError("PROTOCOL_TIMEOUT", {"protocolMethod": method}) from exc
        finally:
            self._pending.pop(msg_id, None)

    # ─────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────

    def on(self, event: str, listener: EventListener) -> None:
        self._listeners.setdefault(event, []).append((listener, False))

    def once(self, event: str, listener: EventListener) -> None:
        self._listeners.setdefault(event, []).append((listener, True))

    def off(self, event: str, listener: EventListener) -> None:
        entries = self._listeners.get(event)
        if not entries:
            return
        self._listeners[event] = [entry for entry in entries if entry[0] != listener]

    def add_protocol_message_listener(self, listener: MessageListener) -> None:
        self._message_listeners.append(listener)

    def remove_protocol_message_listener(self, listener: MessageListener) -> None:
        with contextlib.suppress(ValueError):
            self._message_listeners.remove(listener)

    async def wait_for_event(self, event: str, *, timeout: float) -> dict[str, Any] | None:
        """Wait for the next `event`; None on timeout."""
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()

        def _resolve(params: dict[str, Any]) -> None:
            if not future.done():
                future.set_result(params)

        self.once(event, _resolve)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self.off(event, _resolve)

    def dispatch(self, message: dict[str, Any]) -> None:
        """Route one inbound protocol message."""
        if "id" in message:
            entry = self._pending.get(message["id"])
            if entry is None:
                return
            method, future = entry
            if future.done():
                return
            error = message.get("error")
            if isinstance(error, dict):
                future.set_exception(ProtocolError(f"Protocol error ({method}): {error.get('message', '')}"))
            else:
                result = message.get("result")
                future.set_result(result if isinstance(result, dict) else {})
            return

        method = message.get("method")
        if not isinstance(method, str):
            return
        for listener in list(self._message_listeners):
            listener(message)
        params = message.get("params")
        params = params if isinstance(params, dict) else {}
        entries = self._listeners.get(method) or []
        if any(once for _listener, once in entries):
            self._listeners[method] = [entry for entry in entries if not entry[1]]
        for listener, _once in entries:
            listener(params)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    continue
                if isinstance(message, dict):
                    self.dispatch(message)
        except websockets.ConnectionClosed:
            logger.debug("CDP websocket closed")
        finally:
            self._closed = True
            self._fail_pending(ProtocolError("CDP connection closed"))

    def _fail_pending(self, exc: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for _method, future in pending:
            if not future.done():
                future.set_exception(exc)

    async def close(self) -> None:
        self._closed = True
        with contextlib.suppress(Exception):
            await self._ws.close()
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
        self._fail_pending(ProtocolError("CDP connection closed"))


__all__ = ["CdpConnection", "fetch_ws_url"]
