from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from page_audit.gather import session_cdp
from page_audit.gather.errors import LighthouseError, ProtocolError
from page_audit.gather.session_cdp import CdpConnection, fetch_ws_url


class DummyWebSocket:
    """Records sent frames and replays `incoming` when iterated."""

    def __init__(self, incoming: list[str] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.incoming = list(incoming or [])
        self.closed = False
        self.fail_send: Exception | None = None

    async def send(self, raw: str) -> None:
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(json.loads(raw))

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self) -> DummyWebSocket:
        return self

    async def __anext__(self) -> str:
        await asyncio.sleep(0)
        if not self.incoming:
            raise StopAsyncIteration
        return self.incoming.pop(0)


def test_send_command_resolves_matching_response() -> None:
    ws = DummyWebSocket()
    conn = CdpConnection(ws)

    async def scenario() -> Any:
        task = asyncio.ensure_future(conn.send_command("Browser.getVersion"))
        await asyncio.sleep(0)
        conn.dispatch({"id": 99, "result": {"product": "ignored"}})
        conn.dispatch({"id": 1, "result": {"product": "Chrome/120"}})
        return await task

    assert asyncio.run(scenario()) == {"product": "Chrome/120"}
    assert ws.sent == [{"id": 1, "method": "Browser.getVersion"}]


def test_send_command_includes_params_and_increments_ids() -> None:
    ws = DummyWebSocket()
    conn = CdpConnection(ws)

    async def scenario() -> None:
        first = asyncio.ensure_future(conn.send_command("Page.navigate", {"url": "https://example.com/"}))
        second = asyncio.ensure_future(conn.send_command("Page.enable"))
        await asyncio.sleep(0)
        conn.dispatch({"id": 2, "result": {}})
        conn.dispatch({"id": 1, "result": None})
        assert await first == {}
        assert await second == {}

    asyncio.run(scenario())

    assert ws.sent == [
        {"id": 1, "method": "Page.navigate", "params": {"url": "https://example.com/"}},
        {"id": 2, "method": "Page.enable"},
    ]


def test_protocol_error_response_raises() -> None:
    conn = CdpConnection(DummyWebSocket())

    async def scenario() -> None:
        task = asyncio.ensure_future(conn.send_command("DOM.getDocument"))
        await asyncio.sleep(0)
        conn.dispatch({"id": 1, "error": {"code": -32000, "message": "Not attached"}})
        await task

    with pytest.raises(ProtocolError, match=r"Protocol error \(DOM.getDocument\): Not attached"):
        asyncio.run(scenario())


def test_send_command_times_out_as_protocol_timeout() -> None:
    conn = CdpConnection(DummyWebSocket(), timeout=0.01)

    with pytest.raises(LighthouseError) as excinfo:
        asyncio.run(conn.send_command("Network.enable"))

    assert excinfo.value.code == "PROTOCOL_TIMEOUT"
    assert excinfo.value.data == {"protocolMethod": "Network.enable"}


def test_send_failure_is_protocol_error() -> None:
    ws = DummyWebSocket()
    ws.fail_send = OSError("broken pipe")
    conn = CdpConnection(ws)

    with pytest.raises(ProtocolError, match="Page.enable: broken pipe"):
        asyncio.run(conn.send_command("Page.enable"))


def test_closed_connection_rejects_commands() -> None:
    conn = CdpConnection(DummyWebSocket())
    asyncio.run(conn.close())

    assert conn.closed is True
    with pytest.raises(ProtocolError, match="connection is closed"):
        asyncio.run(conn.send_command("Page.enable"))


def test_event_listeners_on_once_off() -> None:
    conn = CdpConnection(DummyWebSocket())
    seen: list[tuple[str, Any]] = []

    def on_load(params: dict[str, Any]) -> None:
        seen.append(("on", params["timestamp"]))

    def once_load(params: dict[str, Any]) -> None:
        seen.append(("once", params["timestamp"]))

    conn.on("Page.loadEventFired", on_load)
    conn.once("Page.loadEventFired", once_load)
    conn.dispatch({"method": "Page.loadEventFired", "params": {"timestamp": 1}})
    conn.dispatch({"method": "Page.loadEventFired", "params": {"timestamp": 2}})
    conn.off("Page.loadEventFired", on_load)
    conn.dispatch({"method": "Page.loadEventFired", "params": {"timestamp": 3}})

    assert seen == [("on", 1), ("once", 1), ("on", 2)]


def test_protocol_message_listeners_see_raw_events() -> None:
    conn = CdpConnection(DummyWebSocket())
    messages: list[dict[str, Any]] = []

    conn.add_protocol_message_listener(messages.append)
    conn.dispatch({"method": "Network.requestWillBeSent", "params": {"requestId": "1"}})
    conn.dispatch({"id": 5, "result": {}})
    conn.remove_protocol_message_listener(messages.append)
    conn.remove_protocol_message_listener(messages.append)
    conn.dispatch({"method": "Network.loadingFinished", "params": {}})

    assert messages == [{"method": "Network.requestWillBeSent", "params": {"requestId": "1"}}]


def test_wait_for_event() -> None:
    conn = CdpConnection(DummyWebSocket())

    async def scenario() -> tuple[Any, Any]:
        task = asyncio.ensure_future(conn.wait_for_event("Page.frameStoppedLoading", timeout=1))
        await asyncio.sleep(0)
        conn.dispatch({"method": "Page.frameStoppedLoading", "params": {"frameId": "main"}})
        received = await task
        missed = await conn.wait_for_event("Page.frameStoppedLoading", timeout=0.01)
        return received, missed

    received, missed = asyncio.run(scenario())

    assert received == {"frameId": "main"}
    assert missed is None


def test_read_loop_dispatches_and_fails_pending_on_close() -> None:
    events: list[dict[str, Any]] = []
    ws = DummyWebSocket(
        [
            "not json",
            json.dumps({"method": "Target.targetCreated", "params": {"targetInfo": {"type": "page"}}}),
            json.dumps(["unexpected"]),
        ]
    )
    conn = CdpConnection(ws)
    conn.on("Target.targetCreated", events.append)

    async def scenario() -> None:
        pending = asyncio.ensure_future(conn.send_command("Page.enable"))
        await asyncio.sleep(0)
        await conn._read_loop()
        await pending

    with pytest.raises(ProtocolError, match="CDP connection closed"):
        asyncio.run(scenario())

    assert events == [{"targetInfo": {"type": "page"}}]
    assert conn.closed is True


def test_fetch_ws_url_picks_first_page_target(monkeypatch: pytest.MonkeyPatch) -> None:
    targets = [
        {"type": "service_worker", "webSocketDebuggerUrl": "ws://127.0.0.1:9222/devtools/sw"},
        {"type": "page", "webSocketDebuggerUrl": "ws://127.0.0.1:9222/devtools/page/A"},
        {"type": "page", "webSocketDebuggerUrl": "ws://127.0.0.1:9222/devtools/page/B"},
    ]
    requested: list[str] = []

    def fake_get_json(url: str, timeout: float = 2.0) -> Any:
        requested.append(url)
        return targets

    monkeypatch.setattr(session_cdp, "_http_get_json", fake_get_json)

    assert fetch_ws_url("localhost", 9333) == "ws://127.0.0.1:9222/devtools/page/A"
    assert requested == ["http://localhost:9333/json/list"]


def test_fetch_ws_url_without_page_target(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(session_cdp, "_http_get_json", lambda url, timeout=2.0: [{"type": "other"}])

    with pytest.raises(ProtocolError, match="No page target"):
        fetch_ws_url()


def test_open_wraps_connection_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    async def refuse(*args: Any, **kwargs: Any) -> Any:
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(session_cdp.websockets, "connect", refuse)

    with pytest.raises(ProtocolError, match="Failed to connect to ws://127.0.0.1:1/devtools"):
        asyncio.run(CdpConnection.open("ws://127.0.0.1:1/devtools"))


def test_trace_recorders_do_not_share_events() -> None:
    from page_audit.gather.gatherers.trace import TraceRecorder

    conn = CdpConnection(DummyWebSocket())
    next_id = iter(range(1, 100))

    async def answer(coro: Any) -> Any:
        task = asyncio.ensure_future(coro)
        await asyncio.sleep(0)
        conn.dispatch({"id": next(next_id), "result": {}})
        conn.dispatch({"method": "Tracing.tracingComplete", "params": {}})
        return await task

    async def record(name: str) -> dict[str, Any]:
        recorder = TraceRecorder(conn)
        await answer(recorder.start(["-*"]))
        conn.dispatch({"method": "Tracing.dataCollected", "params": {"value": [{"name": name}]}})
        return await answer(recorder.end())

    async def scenario() -> tuple[dict[str, Any], dict[str, Any]]:
        return await record("pass1"), await record("pass2")

    first, second = asyncio.run(scenario())

    assert first == {"traceEvents": [{"name": "pass1"}]}
    assert second == {"traceEvents": [{"name": "pass2"}]}
    assert conn._listeners.get("Tracing.dataCollected") == []
