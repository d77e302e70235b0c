from __future__ import annotations

from typing import Any

from ..driver.service_workers import get_service_worker_registrations, get_service_worker_versions
from .base import GatherContext, GathererMeta, InstrumentationGatherer


class ServiceWorker(InstrumentationGatherer):
    meta = GathererMeta(symbol="ServiceWorker", supported_modes=("navigation", "snapshot"))

    async def get_artifact(self, ctx: GatherContext) -> dict[str, Any]:
        session = ctx.driver.default_session
        versions = await get_service_worker_versions(session)
        registrations = await get_service_worker_registrations(session)
        return {
            "versions": versions["versions"],
            "registrations": registrations["registrations"],
        }


__all__ = ["ServiceWorker"]
