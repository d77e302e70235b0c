from __future__ import annotations

import asyncio
from typing import Any

SERVICE_WORKER_EVENT_TIMEOUT_S = 5.0


async def _enable_and_wait(session: Any, event: str) -> dict[str, Any]:
    loop = asyncio.get_running_loop()
    received: asyncio.Future[dict[str, Any]] = loop.create_future()

    def _on_event(params: dict[str, Any]) -> None:
        if not received.done():
            received.set_result(params)

    session.once(event, _on_event)
    try:
        await session.send_command("ServiceWorker.enable")
        return await asyncio.wait_for(received, timeout=SERVICE_WORKER_EVENT_TIMEOUT_S)
    finally:
        session.off(event, _on_event)
        await session.send_command("ServiceWorker.disable")


async def get_service_worker_versions(session: Any) -> dict[str, Any]:
    """`{"versions": [...]}` as first reported after enabling the domain."""
    params = await _enable_and_wait(session, "ServiceWorker.workerVersionUpdated")
    return {"versions": list(params.get("versions") or [])}


async def get_service_worker_registrations(session: Any) -> dict[str, Any]:
    params = await _enable_and_wait(session, "ServiceWorker.workerRegistrationUpdated")
    return {"registrations": list(params.get("registrations") or [])}


__all__ = ["get_service_worker_registrations", "get_service_worker_versions"]
