"""Snapshot runner: collect artifacts from the page as it is right now."""

from __future__ import annotations

import logging
from typing import Any

from .artifacts import GatherResult
from .base_artifacts import finalize_artifacts, get_base_artifacts
from .config import initialize_config
from .driver import Driver
from .gatherers.base import GatherContext
from .runner_helpers import await_artifacts, collect_phase_artifacts, get_empty_artifact_state

logger = logging.getLogger("page_audit.gather.snapshot_runner")


async def snapshot_gather(
    page: str,
    *,
    config: dict[str, Any] | None = None,
    flags: dict[str, Any] | None = None,
    driver: Driver | None = None,
) -> GatherResult:
    """Run `get_artifact` for every snapshot-capable gatherer. No instrumentation hooks run."""
    gather_config = initialize_config("snapshot", config, flags)
    driver = driver or Driver(page, protocol_timeout=gather_config.settings.protocol_timeout)

    await driver.connect()
    try:
        base_artifacts = await get_base_artifacts(gather_config.settings, driver, gather_mode="snapshot")
        url = await driver.url()
        base_artifacts.URL.requested_url = None
        base_artifacts.URL.main_document_url = None
        base_artifacts.URL.final_displayed_url = url

        artifact_state = get_empty_artifact_state()
        context = GatherContext(
            driver=driver,
            gather_mode="snapshot",
            base_artifacts=base_artifacts,
            settings=gather_config.settings,
        )
        logger.info("taking snapshot of %s", url)
        with base_artifacts.timing.measure("gather:snapshot"):
            await collect_phase_artifacts(
                phase="get_artifact",
                artifact_defns=gather_config.artifacts,
                artifact_state=artifact_state,
                context=context,
            )
        artifacts = await_artifacts(artifact_state)
    finally:
        await driver.disconnect()

    return GatherResult(artifacts=finalize_artifacts(base_artifacts, artifacts), config=gather_config)


__all__ = ["snapshot_gather"]
