"""Timespan runner: a measurement window opened now and closed by the caller."""

from __future__ import annotations

import logging
from typing import Any

from .artifacts import GatherResult
from .base_artifacts import BaseArtifacts, finalize_artifacts, get_base_artifacts
from .config import GatherConfig, initialize_config
from .driver import Driver
from .driver.prepare import prepare_target_for_timespan_mode
from .gatherers.base import GatherContext
from .gatherers.devtools_log import DEVTOOLS_LOG_SYMBOL
from .gatherers.trace import TRACE_SYMBOL
from .runner_helpers import await_artifacts, collect_phase_artifacts, get_empty_artifact_state

logger = logging.getLogger("page_audit.gather.timespan_runner")

TIMESPAN_KEY = "timespan"


class TimespanGather:
    """Handle for an open timespan window. Call `end_timespan_gather` once.

    Base artifacts are captured before the start hooks run; only the final
    displayed URL is read when the window closes.
    """

    def __init__(self, driver: Driver, config: GatherConfig, base_artifacts: BaseArtifacts) -> None:
        self.driver = driver
        self.config = config
        self.base_artifacts = base_artifacts
        self.artifact_state = get_empty_artifact_state()
        self.context = GatherContext(
            driver=driver,
            gather_mode="timespan",
            base_artifacts=base_artifacts,
            settings=config.settings,
        )
        self._ended = False

    async def _run_phase(self, phase: str) -> None:
        await collect_phase_artifacts(
            phase=phase,
            artifact_defns=self.config.artifacts,
            artifact_state=self.artifact_state,
            context=self.context,
        )

    async def start(self) -> None:
        await self._run_phase("start_instrumentation")
        await self._run_phase("start_sensitive_instrumentation")

    async def end_timespan_gather(self) -> GatherResult:
        """Stop instrumentation, collect artifacts and disconnect."""
        if self._ended:
            raise RuntimeError("Timespan gather already ended")
        self._ended = True

        try:
            final_url = await self.driver.url()
            self.base_artifacts.URL.final_displayed_url = final_url

            await self._run_phase("stop_sensitive_instrumentation")
            await self._run_phase("stop_instrumentation")
            await self._run_phase("get_artifact")

            artifacts = await_artifacts(self.artifact_state)
            for defn in self.config.artifacts:
                value = artifacts.get(defn.id)
                if value is None or isinstance(value, Exception):
                    continue
                if defn.gatherer.meta.symbol == DEVTOOLS_LOG_SYMBOL:
                    artifacts["devtoolsLogs"] = {TIMESPAN_KEY: value}
                elif defn.gatherer.meta.symbol == TRACE_SYMBOL:
                    artifacts["traces"] = {TIMESPAN_KEY: value}
        finally:
            await self.driver.disconnect()

        logger.info("timespan ended at %s", final_url)
        return GatherResult(artifacts=finalize_artifacts(self.base_artifacts, artifacts), config=self.config)


async def start_timespan_gather(
    page: str,
    *,
    config: dict[str, Any] | None = None,
    flags: dict[str, Any] | None = None,
    driver: Driver | None = None,
) -> TimespanGather:
    """Prepare the target and start every timespan-capable gatherer."""
    gather_config = initialize_config("timespan", config, flags)
    driver = driver or Driver(page, protocol_timeout=gather_config.settings.protocol_timeout)

    await driver.connect()
    try:
        base_artifacts = await get_base_artifacts(gather_config.settings, driver, gather_mode="timespan")
        base_artifacts.URL.requested_url = None
        base_artifacts.URL.main_document_url = None
        prepared = await prepare_target_for_timespan_mode(driver, gather_config.settings)
        base_artifacts.run_warnings.extend(prepared.get("warnings") or [])

        gather = TimespanGather(driver, gather_config, base_artifacts)
        await gather.start()
    except Exception:
        await driver.disconnect()
        raise
    logger.info("timespan started")
    return gather


__all__ = ["TIMESPAN_KEY", "TimespanGather", "start_timespan_gather"]
