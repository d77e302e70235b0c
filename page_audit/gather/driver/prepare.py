"""Target preparation before measurement.

Each function returns `{"warnings": [...]}`; runners decide whether to surface them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable

from . import emulation, storage

if TYPE_CHECKING:
    from ..config import GatherSettings
    from . import Driver

logger = logging.getLogger("page_audit.gather.driver.prepare")


def _dismiss_javascript_dialogs(session: Any) -> Callable[[], None]:
    """Accept every javascript dialog the page opens. Returns a function that stops it."""
    pending: set[asyncio.Future[Any]] = set()

    def _on_handled(task: asyncio.Future[Any]) -> None:
        pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("failed to dismiss javascript dialog: %s", exc)

    def _on_dialog(params: dict[str, Any]) -> None:
        logger.warning("dismissing javascript %s dialog: %s", params.get("type"), params.get("message"))
        task = asyncio.ensure_future(
            session.send_command(
                "Page.handleJavaScriptDialog",
                {"accept": True, "promptText": "Page audit prompt"},
            )
        )
        pending.add(task)
        task.add_done_callback(_on_handled)

    def _remove() -> None:
        session.off("Page.javascriptDialogOpening", _on_dialog)
        for task in list(pending):
            task.cancel()

    session.on("Page.javascriptDialogOpening", _on_dialog)
    return _remove


async def _prepare_shared(driver: Driver, settings: GatherSettings) -> None:
    session = driver.default_session
    await session.send_command("Page.enable")
    await session.send_command("Network.enable")
    await emulation.emulate(session, settings)
    if settings.extra_headers:
        await session.send_command("Network.setExtraHTTPHeaders", {"headers": dict(settings.extra_headers)})
    _dismiss_javascript_dialogs(session)


async def prepare_target_for_navigation_mode(driver: Driver, settings: GatherSettings) -> dict[str, Any]:
    await _prepare_shared(driver, settings)
    return {"warnings": []}


async def prepare_target_for_timespan_mode(driver: Driver, settings: GatherSettings) -> dict[str, Any]:
    await _prepare_shared(driver, settings)
    await emulation.throttle(driver.default_session, settings)
    return {"warnings": []}


async def prepare_target_for_individual_navigation(
    driver: Driver,
    settings: GatherSettings,
    *,
    requestor: Any,
    disable_storage_reset: bool = False,
    disable_throttling: bool = False,
    blocked_url_patterns: list[str] | None = None,
) -> dict[str, Any]:
    session = driver.default_session
    warnings: list[Any] = []

    if not disable_storage_reset and isinstance(requestor, str):
        warning = await storage.get_important_storage_warning(session, requestor)
        if warning:
            warnings.append(warning)
        await storage.clear_data_for_origin(session, requestor)
        await storage.clear_browser_caches(session)

    patterns = [*settings.blocked_url_patterns, *(blocked_url_patterns or [])]
    await session.send_command("Network.setBlockedURLs", {"urls": patterns})

    if disable_throttling:
        await emulation.clear_throttling(session)
    else:
        await emulation.throttle(session, settings)

    return {"warnings": warnings}


__all__ = [
    "prepare_target_for_individual_navigation",
    "prepare_target_for_navigation_mode",
    "prepare_target_for_timespan_mode",
]
