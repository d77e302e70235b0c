from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from ..errors import LighthouseError
from ..gatherers.base import maybe_await

if TYPE_CHECKING:
    from ..config import GatherSettings, NavigationDefn
    from . import Driver

logger = logging.getLogger("page_audit.gather.driver.navigation")

# A URL, or a callable that performs the navigation itself (e.g. a click).
Requestor = Union[str, Callable[[], Any]]

LOAD_TIMEOUT_WARNING = (
    "The page loaded too slowly to finish within the time limit. Results may be incomplete."
)
RESPONSIVENESS_TIMEOUT_S = 1.0


@dataclass
class NavigationOptions:
    wait_until: tuple[str, ...] = ("load",)
    max_wait_for_load_ms: float = 45_000
    max_wait_for_fcp_ms: float = 30_000
    pause_after_load_ms: float = 0

    @classmethod
    def from_settings(
        cls,
        settings: GatherSettings,
        *,
        wait_until: tuple[str, ...] = ("load",),
        navigation: NavigationDefn | None = None,
    ) -> NavigationOptions:
        pause = settings.pause_after_load_ms
        if navigation is not None and navigation.pause_after_load_ms is not None:
            pause = navigation.pause_after_load_ms
        return cls(
            wait_until=wait_until,
            max_wait_for_load_ms=settings.max_wait_for_load,
            max_wait_for_fcp_ms=settings.max_wait_for_fcp,
            pause_after_load_ms=pause if "load" in wait_until else 0,
        )


@dataclass
class NavigationResult:
    requested_url: str
    main_document_url: str
    warnings: list[Any] = field(default_factory=list)
    timed_out: bool = False


async def _is_page_responsive(driver: Driver) -> bool:
    try:
        await asyncio.wait_for(driver.evaluate("1"), timeout=RESPONSIVENESS_TIMEOUT_S)
    except (asyncio.TimeoutError, LighthouseError):
        return False
    return True


async def goto_url(driver: Driver, requestor: Requestor, options: NavigationOptions | None = None) -> NavigationResult:
    """Navigate the page and wait for the requested lifecycle milestones.

    Raises `LighthouseError("NO_FCP")` when first paint never happens and
    `LighthouseError("PAGE_HUNG")` when the page stops answering after a load timeout.
    """
    options = options or NavigationOptions()
    session = driver.default_session
    loop = asyncio.get_running_loop()
    fcp: asyncio.Future[None] = loop.create_future()
    load: asyncio.Future[None] = loop.create_future()
    documents: list[str] = []

    frame_tree = await session.send_command("Page.getFrameTree")
    main_frame_id = ((frame_tree.get("frameTree") or {}).get("frame") or {}).get("id")

    def _on_request(params: dict[str, Any]) -> None:
        if params.get("type") != "Document":
            return
        if main_frame_id and params.get("frameId") not in (None, main_frame_id):
            return
        url = (params.get("request") or {}).get("url")
        if url:
            documents.append(str(url))

    def _on_lifecycle(params: dict[str, Any]) -> None:
        if params.get("name") == "firstContentfulPaint" and not fcp.done():
            fcp.set_result(None)

    def _on_load(_params: dict[str, Any]) -> None:
        if not load.done():
            load.set_result(None)

    session.on("Network.requestWillBeSent", _on_request)
    session.on("Page.lifecycleEvent", _on_lifecycle)
    session.on("Page.loadEventFired", _on_load)
    warnings: list[Any] = []
    timed_out = False
    try:
        await session.send_command("Page.enable")
        await session.send_command("Network.enable")
        await session.send_command("Page.setLifecycleEventsEnabled", {"enabled": True})

        if isinstance(requestor, str):
            requested_url = requestor
            logger.info("navigating to %s", requestor)
            await session.send_command("Page.navigate", {"url": requestor})
        else:
            logger.info("navigating via callback requestor")
            await maybe_await(requestor())
            requested_url = ""

        if "fcp" in options.wait_until:
            try:
                await asyncio.wait_for(asyncio.shield(fcp), timeout=options.max_wait_for_fcp_ms / 1000)
            except asyncio.TimeoutError as exc:
                raise LighthouseError("NO_FCP") from exc

        if "load" in options.wait_until:
            try:
                await asyncio.wait_for(asyncio.shield(load), timeout=options.max_wait_for_load_ms / 1000)
            except asyncio.TimeoutError:
                timed_out = True
                if not await _is_page_responsive(driver):
                    raise LighthouseError("PAGE_HUNG") from None
                logger.warning("page load timed out after %.0fms", options.max_wait_for_load_ms)
                warnings.append(LOAD_TIMEOUT_WARNING)
            if options.pause_after_load_ms > 0:
                await asyncio.sleep(options.pause_after_load_ms / 1000)
    finally:
        session.off("Network.requestWillBeSent", _on_request)
        session.off("Page.lifecycleEvent", _on_lifecycle)
        session.off("Page.loadEventFired", _on_load)

    if not requested_url:
        requested_url = documents[0] if documents else await driver.url()
    main_document_url = documents[-1] if documents else requested_url
    return NavigationResult(
        requested_url=requested_url,
        main_document_url=main_document_url,
        warnings=warnings,
        timed_out=timed_out,
    )


__all__ = ["LOAD_TIMEOUT_WARNING", "NavigationOptions", "NavigationResult", "Requestor", "goto_url"]
