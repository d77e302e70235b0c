from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlsplit

from ..errors import LighthouseError

logger = logging.getLogger("page_audit.gather.driver.storage")

# Cookies are left alone so authenticated runs keep working.
STORAGE_TYPES_TO_CLEAR = (
    "file_systems",
    "shader_cache",
    "service_workers",
    "websql",
    "indexeddb",
    "local_storage",
    "cache_storage",
)

_IMPORTANT_STORAGE_TYPES = {
    "local_storage": "Local Storage",
    "indexeddb": "IndexedDB",
    "websql": "Web SQL",
}


def url_origin(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


async def clear_data_for_origin(session: Any, url: str) -> None:
    origin = url_origin(url)
    if not origin:
        return
    try:
        await session.send_command(
            "Storage.clearDataForOrigin",
            {"origin": origin, "storageTypes": ",".join(STORAGE_TYPES_TO_CLEAR)},
        )
    except LighthouseError as exc:
        if exc.code != "PROTOCOL_TIMEOUT":
            raise
        logger.warning("clearing storage for %s timed out", origin)


async def clear_browser_caches(session: Any) -> None:
    await session.send_command("Network.clearBrowserCache")
    # Toggle cache off and on so in-memory cache is dropped as well.
    await session.send_command("Network.setCacheDisabled", {"cacheDisabled": True})
    await session.send_command("Network.setCacheDisabled", {"cacheDisabled": False})


async def get_important_storage_warning(session: Any, url: str) -> str | None:
    origin = url_origin(url)
    if not origin:
        return None
    usage = await session.send_command("Storage.getUsageAndQuota", {"origin": origin})
    locations = [
        _IMPORTANT_STORAGE_TYPES[entry.get("storageType")]
        for entry in usage.get("usageBreakdown") or []
        if entry.get("storageType") in _IMPORTANT_STORAGE_TYPES and entry.get("usage", 0) > 0
    ]
    if not locations:
        return None
    return (
        "There may be stored data affecting loading performance in this location: "
        f"{', '.join(locations)}. Audit this page in an incognito window to prevent "
        "those resources from affecting your scores."
    )


__all__ = [
    "STORAGE_TYPES_TO_CLEAR",
    "clear_browser_caches",
    "clear_data_for_origin",
    "get_important_storage_warning",
    "url_origin",
]
