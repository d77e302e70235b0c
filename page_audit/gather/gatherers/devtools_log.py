"""Devtools log: every protocol event seen during the sensitive window."""

from __future__ import annotations

from typing import Any

from .base import GatherContext, GathererMeta, InstrumentationGatherer

DEVTOOLS_LOG_SYMBOL = "DevtoolsLog"


class DevtoolsMessageLog:
    """Records protocol event messages between `begin_recording` and `end_recording`."""

    def __init__(self, filter_prefix: str | None = None) -> None:
        self._filter_prefix = filter_prefix
        self._messages: list[dict[str, Any]] = []
        self._recording = False

    @property
    def messages(self) -> list[dict[str, Any]]:
        return self._messages

    def reset(self) -> None:
        self._messages = []

    def begin_recording(self) -> None:
        self._recording = True

    def end_recording(self) -> None:
        self._recording = False

    def record(self, message: dict[str, Any]) -> None:
        if not self._recording or "id" in message:
            return
        method = message.get("method")
        if not isinstance(method, str):
            return
        if self._filter_prefix and not method.startswith(self._filter_prefix):
            return
        self._messages.append(message)


class DevtoolsLog(InstrumentationGatherer):
    symbol = DEVTOOLS_LOG_SYMBOL
    meta = GathererMeta(symbol=DEVTOOLS_LOG_SYMBOL, supported_modes=("timespan", "navigation"))

    def __init__(self) -> None:
        self._message_log = DevtoolsMessageLog()

    async def start_sensitive_instrumentation(self, ctx: GatherContext) -> None:
        self._message_log.reset()
        self._message_log.begin_recording()
        session = ctx.driver.default_session
        session.add_protocol_message_listener(self._message_log.record)
        await session.send_command("Page.enable")

    async def stop_sensitive_instrumentation(self, ctx: GatherContext) -> None:
        self._message_log.end_recording()
        ctx.driver.default_session.remove_protocol_message_listener(self._message_log.record)

    async def get_artifact(self, ctx: GatherContext) -> list[dict[str, Any]]:
        return self._message_log.messages


__all__ = ["DEVTOOLS_LOG_SYMBOL", "DevtoolsLog", "DevtoolsMessageLog"]
