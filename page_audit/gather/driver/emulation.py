from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..config import GatherSettings

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 11; moto g power (2022)) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)

NO_THROTTLING: dict[str, Any] = {
    "offline": False,
    "latency": 0,
    "downloadThroughput": 0,
    "uploadThroughput": 0,
}


def _user_agent(settings: GatherSettings) -> str | None:
    if settings.emulated_user_agent is False:
        return None
    if isinstance(settings.emulated_user_agent, str):
        return settings.emulated_user_agent
    return MOBILE_USER_AGENT if settings.form_factor == "mobile" else DESKTOP_USER_AGENT


async def emulate(session: Any, settings: GatherSettings) -> None:
    user_agent = _user_agent(settings)
    if user_agent:
        await session.send_command("Network.setUserAgentOverride", {"userAgent": user_agent})

    screen = settings.screen_emulation or {}
    if screen.get("disabled"):
        return
    await session.send_command(
        "Emulation.setDeviceMetricsOverride",
        {
            "mobile": bool(screen.get("mobile")),
            "width": int(screen.get("width", 0)),
            "height": int(screen.get("height", 0)),
            "deviceScaleFactor": float(screen.get("deviceScaleFactor", 1)),
        },
    )
    await session.send_command("Emulation.setTouchEmulationEnabled", {"enabled": bool(screen.get("mobile"))})


async def throttle(session: Any, settings: GatherSettings) -> None:
    """Apply devtools throttling; other throttling methods leave the network untouched."""
    if settings.throttling_method != "devtools":
        return
    throttling = settings.throttling or {}
    await session.send_command(
        "Network.emulateNetworkConditions",
        {
            "offline": False,
            "latency": float(throttling.get("requestLatencyMs", 0)),
            "downloadThroughput": float(throttling.get("downloadThroughputKbps", 0)) * 1024 / 8,
            "uploadThroughput": float(throttling.get("uploadThroughputKbps", 0)) * 1024 / 8,
        },
    )
    await session.send_command("Emulation.setCPUThrottlingRate", {"rate": float(throttling.get("cpuSlowdownMultiplier", 1))})


async def clear_throttling(session: Any) -> None:
    await session.send_command("Network.emulateNetworkConditions", dict(NO_THROTTLING))
    await session.send_command("Emulation.setCPUThrottlingRate", {"rate": 1})


__all__ = ["clear_throttling", "emulate", "throttle"]
