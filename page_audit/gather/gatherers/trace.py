from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..errors import ProtocolError
from .base import GatherContext, GathererMeta, InstrumentationGatherer

logger = logging.getLogger("page_audit.gather.gatherers.trace")

TRACE_SYMBOL = "Trace"

DEFAULT_TRACE_CATEGORIES = [
    "-*",
    "devtools.timeline",
    "v8.execute",
    "blink.user_timing",
    "blink.console",
    "loading",
    "latencyInfo",
    "disabled-by-default-devtools.timeline",
    "disabled-by-default-devtools.timeline.frame",
    "disabled-by-default-devtools.screenshot",
]

TRACE_END_TIMEOUT_S = 30.0


def trace_categories(settings: Any = None) -> list[str]:
    extra = settings.additional_trace_categories if settings is not None else []
    return [*DEFAULT_TRACE_CATEGORIES, *extra]


class TraceRecorder:
    """Collects `Tracing.dataCollected` chunks between start and end."""

    def __init__(self, session: Any) -> None:
        self._session = session
        self._events: list[dict[str, Any]] = []

    def _on_data(self, params: dict[str, Any]) -> None:
        self._events.extend(params.get("value") or [])

    async def start(self, categories: list[str]) -> None:
        self._events = []
        self._session.on("Tracing.dataCollected", self._on_data)
        await self._session.send_command(
            "Tracing.start",
            {
                "transferMode": "ReportEvents",
                "traceConfig": {"includedCategories": categories},
            },
        )

    async def end(self) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        complete: asyncio.Future[None] = loop.create_future()

        def _on_complete(_params: dict[str, Any]) -> None:
            if not complete.done():
                complete.set_result(None)

        self._session.once("Tracing.tracingComplete", _on_complete)
        try:
            await self._session.send_command("Tracing.end")
            await asyncio.wait_for(complete, timeout=TRACE_END_TIMEOUT_S)
        except asyncio.TimeoutError as exc:
            raise ProtocolError("Timed out waiting for Tracing.tracingComplete") from exc
        finally:
            self._session.off("Tracing.dataCollected", self._on_data)
            self._session.off("Tracing.tracingComplete", _on_complete)
        logger.debug("trace collected (%d events)", len(self._events))
        return {"traceEvents": self._events}


class Trace(InstrumentationGatherer):
    symbol = TRACE_SYMBOL
    meta = GathererMeta(symbol=TRACE_SYMBOL, supported_modes=("timespan", "navigation"))

    def __init__(self) -> None:
        self._recorder: TraceRecorder | None = None
        self._trace: dict[str, Any] = {"traceEvents": []}

    async def start_sensitive_instrumentation(self, ctx: GatherContext) -> None:
        self._recorder = TraceRecorder(ctx.driver.default_session)
        await self._recorder.start(trace_categories(ctx.settings))

    async def stop_sensitive_instrumentation(self, ctx: GatherContext) -> None:
        if self._recorder is None:
            return
        self._trace = await self._recorder.end()
        self._recorder = None

    def get_artifact(self, ctx: GatherContext) -> dict[str, Any]:
        return self._trace


__all__ = ["DEFAULT_TRACE_CATEGORIES", "TRACE_SYMBOL", "Trace", "TraceRecorder", "trace_categories"]
