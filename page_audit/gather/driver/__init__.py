"""Driver: the run's handle on one page target.

Wraps a `CdpConnection` and exposes the small surface runners and gatherers use.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..errors import ProtocolError
from ..gatherers.devtools_log import DevtoolsMessageLog
from ..gatherers.trace import TraceRecorder, trace_categories
from ..session_cdp import CdpConnection

if TYPE_CHECKING:
    from ..config import GatherSettings

logger = logging.getLogger("page_audit.gather.driver")


class Driver:
    """`page` is the target's websocket debugger URL (see `session_cdp.fetch_ws_url`)."""

    def __init__(self, page: str, *, protocol_timeout: float = 30.0) -> None:
        self.page = page
        self.protocol_timeout = protocol_timeout
        self.online = True
        self._session: CdpConnection | None = None
        self._devtools_log = DevtoolsMessageLog()
        self._trace: TraceRecorder | None = None

    @property
    def default_session(self) -> CdpConnection:
        if self._session is None:
            raise ProtocolError("Driver is not connected")
        return self._session

    async def connect(self) -> None:
        if self._session is not None:
            return
        logger.debug("connecting to %s", self.page)
        self._session = await CdpConnection.open(self.page, timeout=self.protocol_timeout)

    async def disconnect(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await session.close()

    async def url(self) -> str:
        info = await self.default_session.send_command("Target.getTargetInfo")
        return str((info.get("targetInfo") or {}).get("url", ""))

    async def get_browser_version(self) -> dict[str, Any]:
        version = await self.default_session.send_command("Browser.getVersion")
        product = str(version.get("product", ""))
        milestone = product.split("/", 1)[-1].split(".", 1)[0]
        return {
            "product": product,
            "userAgent": str(version.get("userAgent", "")),
            "protocolVersion": str(version.get("protocolVersion", "")),
            "milestone": int(milestone) if milestone.isdigit() else 0,
        }

    async def evaluate(self, expression: str) -> Any:
        """Evaluate JavaScript in the page and return the result by value."""
        result = await self.default_session.send_command(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )
        details = result.get("exceptionDetails")
        if isinstance(details, dict):
            exception = details.get("exception") or {}
            message = exception.get("description") or details.get("text") or "evaluation failed"
            raise ProtocolError(f"Runtime.evaluate: {message}")
        value = result.get("result")
        if not isinstance(value, dict) or value.get("type") == "undefined":
            return None
        if value.get("type") == "object" and value.get("subtype") == "null":
            return None
        return value.get("value")

    async def scroll_to(self, x: float, y: float) -> None:
        await self.evaluate(f"window.scrollTo({float(x)}, {float(y)})")

    async def begin_trace(self, settings: GatherSettings | None = None) -> None:
        self._trace = TraceRecorder(self.default_session)
        await self._trace.start(trace_categories(settings))

    async def end_trace(self) -> dict[str, Any]:
        recorder, self._trace = self._trace, None
        if recorder is None:
            return {"traceEvents": []}
        return await recorder.end()

    async def begin_devtools_log(self) -> None:
        self._devtools_log.reset()
        self._devtools_log.begin_recording()
        self.default_session.add_protocol_message_listener(self._devtools_log.record)

    async def end_devtools_log(self) -> list[dict[str, Any]]:
        self._devtools_log.end_recording()
        self.default_session.remove_protocol_message_listener(self._devtools_log.record)
        return self._devtools_log.messages


__all__ = ["Driver"]
