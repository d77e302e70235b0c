"""Legacy multi-pass runner.

Each pass: blank page -> prepare -> before_pass -> record + load -> pass_ ->
stop recording -> clear throttling -> classify load -> after_pass -> merge.
A fatal PageLoadError stops the remaining passes; earlier artifacts are kept.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .artifacts import GatherResult, PhaseResult, merge_phase_results
from .base_artifacts import (
    BENCHMARK_EXPRESSION,
    BaseArtifacts,
    UrlArtifact,
    fetch_time_now,
    finalize_artifacts,
    host_form_factor,
)
from .config import DEFAULT_BLANK_PAGE, GatherConfig, PassDefn, initialize_legacy_config
from .driver import Driver
from .driver.emulation import clear_throttling
from .driver.navigation import NavigationOptions, goto_url
from .driver.prepare import prepare_target_for_individual_navigation, prepare_target_for_navigation_mode
from .driver.storage import clear_data_for_origin
from .errors import GathererNoArtifactError, LighthouseError, is_navigation_error
from .gatherers.base import PHASE_SHAPE, LoadData, PassContext, maybe_await, require_shape
from .navigation_error import get_page_load_error
from .network_records import network_records_from_devtools_log, network_user_agent
from .sw_check import assert_no_same_origin_service_worker_clients

if TYPE_CHECKING:
    from .config import GatherSettings

logger = logging.getLogger("page_audit.gather.legacy_runner")

# gatherer name -> one result per phase that ran
GathererResults = dict[str, list[PhaseResult]]


class GatherRunner:
    @staticmethod
    async def load_blank(driver: Driver, url: str = DEFAULT_BLANK_PAGE) -> None:
        await goto_url(driver, url, NavigationOptions(wait_until=("load",)))

    @staticmethod
    async def load_page(driver: Driver, ctx: PassContext) -> LighthouseError | None:
        """Navigate to `ctx.url`; return a recognised navigation error instead of raising it."""
        wait_until = ("fcp", "load") if ctx.pass_config.record_trace else ("load",)
        try:
            result = await goto_url(driver, ctx.url, NavigationOptions.from_settings(ctx.settings, wait_until=wait_until))
        except LighthouseError as err:
            if not is_navigation_error(err):
                raise
            return err

        ctx.url = result.main_document_url
        url_artifact = ctx.base_artifacts.URL
        if not url_artifact.final_displayed_url or not url_artifact.main_document_url:
            url_artifact.main_document_url = result.main_document_url
            url_artifact.final_displayed_url = await driver.url()
        if ctx.pass_config.load_failure_mode == "fatal":
            ctx.run_warnings.extend(result.warnings)
        return None

    @staticmethod
    async def _run_phase(ctx: PassContext, results: GathererResults, phase: str, *args: Any) -> None:
        for defn in ctx.pass_config.gatherers:
            gatherer = defn.instance
            require_shape(gatherer, PHASE_SHAPE)
            logger.debug("%s:%s", gatherer.name, phase)
            try:
                value = await maybe_await(getattr(gatherer, phase)(ctx, *args))
                result = PhaseResult(value=value)
            except Exception as exc:  # noqa: BLE001
                logger.debug("%s failed in %s: %s", gatherer.name, phase, exc)
                result = PhaseResult.failure(exc)
            results.setdefault(gatherer.name, []).append(result)
            if phase == "after_pass":
                await ctx.driver.scroll_to(0, 0)

    @staticmethod
    async def before_pass(ctx: PassContext, results: GathererResults) -> None:
        await GatherRunner._run_phase(ctx, results, "before_pass")

    @staticmethod
    async def pass_(ctx: PassContext, results: GathererResults) -> None:
        await GatherRunner._run_phase(ctx, results, "pass_")

    @staticmethod
    async def after_pass(ctx: PassContext, load_data: LoadData, results: GathererResults) -> None:
        await GatherRunner._run_phase(ctx, results, "after_pass", load_data)

    @staticmethod
    def collect_artifacts(results: GathererResults) -> dict[str, Any]:
        """Merge each gatherer's phase results into one artifact.

        Raises `GathererNoArtifactError` when a gatherer produced nothing in any phase.
        """
        artifacts: dict[str, Any] = {}
        for name, phase_results in results.items():
            merged = merge_phase_results(phase_results)
            if merged is None:
                raise GathererNoArtifactError(name)
            artifacts[name] = merged.to_store()
        return artifacts

    @staticmethod
    async def begin_recording(ctx: PassContext) -> None:
        if ctx.pass_config.record_trace:
            await ctx.driver.begin_trace(ctx.settings)
        await ctx.driver.begin_devtools_log()

    @staticmethod
    async def end_recording(ctx: PassContext) -> LoadData:
        trace = await ctx.driver.end_trace() if ctx.pass_config.record_trace else None
        devtools_log = await ctx.driver.end_devtools_log()
        return LoadData(
            devtools_log=devtools_log,
            network_records=network_records_from_devtools_log(devtools_log),
            trace=trace,
        )

    @staticmethod
    def get_page_load_error(
        ctx: PassContext, load_data: LoadData, navigation_error: LighthouseError | None
    ) -> LighthouseError | None:
        return get_page_load_error(
            navigation_error,
            url=ctx.url,
            load_failure_mode=ctx.pass_config.load_failure_mode,
            network_records=load_data.network_records,
            skip_network_errors=not ctx.driver.online,
        )

    @staticmethod
    def _store_load_data(ctx: PassContext, load_data: LoadData, key: str) -> None:
        if load_data.trace is not None:
            ctx.base_artifacts.traces[key] = load_data.trace
        ctx.base_artifacts.devtools_logs[key] = load_data.devtools_log

    @staticmethod
    async def run_pass(ctx: PassContext) -> tuple[dict[str, Any], LighthouseError | None]:
        """Run one pass. Returns its artifacts, or no artifacts plus the page-load error."""
        driver = ctx.driver
        pass_config = ctx.pass_config
        results: GathererResults = {}

        if not ctx.settings.skip_about_blank:
            await GatherRunner.load_blank(driver, pass_config.blank_page)
        prepared = await prepare_target_for_individual_navigation(
            driver,
            ctx.settings,
            requestor=ctx.url,
            disable_storage_reset=ctx.settings.disable_storage_reset,
            disable_throttling=not pass_config.use_throttling,
            blocked_url_patterns=pass_config.blocked_url_patterns,
        )
        ctx.run_warnings.extend(prepared.get("warnings") or [])

        await GatherRunner.before_pass(ctx, results)
        await GatherRunner.begin_recording(ctx)
        navigation_error = await GatherRunner.load_page(driver, ctx)
        await GatherRunner.pass_(ctx, results)
        load_data = await GatherRunner.end_recording(ctx)
        await clear_throttling(driver.default_session)

        page_load_error = GatherRunner.get_page_load_error(ctx, load_data, navigation_error)
        if page_load_error is not None:
            logger.error("%s: %s", pass_config.pass_name, page_load_error.friendly_message["formattedDefault"])
            ctx.run_warnings.push(page_load_error.friendly_message)
            GatherRunner._store_load_data(ctx, load_data, f"pageLoadError-{pass_config.pass_name}")
            return {}, page_load_error

        url_artifact = ctx.base_artifacts.URL
        if not url_artifact.final_displayed_url:
            url_artifact.main_document_url = ctx.url
            url_artifact.final_displayed_url = await driver.url()

        GatherRunner._store_load_data(ctx, load_data, pass_config.pass_name)
        await GatherRunner.after_pass(ctx, load_data, results)
        return GatherRunner.collect_artifacts(results), None

    @staticmethod
    async def initialize_base_artifacts(
        *, driver: Driver, settings: GatherSettings, requested_url: str
    ) -> BaseArtifacts:
        version = await driver.get_browser_version()
        user_agent = str(version.get("userAgent", ""))
        return BaseArtifacts(
            fetch_time=fetch_time_now(),
            settings=settings,
            gather_mode="navigation",
            URL=UrlArtifact(requested_url=requested_url, main_document_url="", final_displayed_url=""),
            host_user_agent=user_agent,
            host_form_factor=host_form_factor(user_agent),
        )

    @staticmethod
    async def populate_base_artifacts(ctx: PassContext) -> None:
        """Fill facts that need a completed page load."""
        devtools_log = ctx.base_artifacts.devtools_logs.get(ctx.pass_config.pass_name)
        ctx.base_artifacts.network_user_agent = network_user_agent(devtools_log)

    @staticmethod
    async def assert_no_same_origin_service_worker_clients(session: Any, page_url: str) -> None:
        await assert_no_same_origin_service_worker_clients(session, page_url)

    @staticmethod
    async def setup_driver(driver: Driver, base_artifacts: BaseArtifacts, settings: GatherSettings, requested_url: str) -> None:
        logger.info("preparing target")
        await GatherRunner.assert_no_same_origin_service_worker_clients(driver.default_session, requested_url)
        prepared = await prepare_target_for_navigation_mode(driver, settings)
        base_artifacts.run_warnings.extend(prepared.get("warnings") or [])

    @staticmethod
    async def dispose_driver(driver: Driver, settings: GatherSettings, requested_url: str) -> None:
        logger.info("disconnecting from browser")
        try:
            if not settings.disable_storage_reset:
                await clear_data_for_origin(driver.default_session, requested_url)
            await driver.disconnect()
        except Exception as err:  # noqa: BLE001
            logger.warning("failed to dispose driver: %s", err)

    @staticmethod
    async def run(
        passes: list[PassDefn], *, driver: Driver, requested_url: str, settings: GatherSettings
    ) -> dict[str, Any]:
        """Run every pass against `requested_url` and return the finalized artifacts."""
        try:
            await driver.connect()
            if not settings.skip_about_blank:
                await GatherRunner.load_blank(driver)

            base_artifacts = await GatherRunner.initialize_base_artifacts(
                driver=driver, settings=settings, requested_url=requested_url
            )
            base_artifacts.benchmark_index = float(await driver.evaluate(BENCHMARK_EXPRESSION) or 0)
            await GatherRunner.setup_driver(driver, base_artifacts, settings, requested_url)

            artifacts: dict[str, Any] = {}
            is_first_pass = True
            for pass_config in passes:
                ctx = PassContext(
                    driver=driver,
                    pass_config=pass_config,
                    settings=settings,
                    base_artifacts=base_artifacts,
                    run_warnings=base_artifacts.run_warnings,
                    url=requested_url,
                )
                logger.info("running pass %s", pass_config.pass_name)
                with base_artifacts.timing.measure(f"gather:pass:{pass_config.pass_name}"):
                    pass_artifacts, page_load_error = await GatherRunner.run_pass(ctx)
                artifacts.update(pass_artifacts)

                if page_load_error is not None and pass_config.load_failure_mode == "fatal":
                    base_artifacts.page_load_error = page_load_error
                    break

                if is_first_pass:
                    await GatherRunner.populate_base_artifacts(ctx)
                    is_first_pass = False
        except Exception:
            await GatherRunner.dispose_driver(driver, settings, requested_url)
            raise

        await GatherRunner.dispose_driver(driver, settings, requested_url)
        return finalize_artifacts(base_artifacts, artifacts)


async def legacy_gather(
    page: str,
    requested_url: str,
    *,
    config: dict[str, Any] | None = None,
    flags: dict[str, Any] | None = None,
    driver: Driver | None = None,
) -> GatherResult:
    """Build the pass config and run it against one page target."""
    gather_config: GatherConfig = initialize_legacy_config(config, flags)
    driver = driver or Driver(page, protocol_timeout=gather_config.settings.protocol_timeout)
    artifacts = await GatherRunner.run(
        gather_config.passes or [],
        driver=driver,
        requested_url=requested_url,
        settings=gather_config.settings,
    )
    return GatherResult(artifacts=artifacts, config=gather_config)


__all__ = ["GatherRunner", "legacy_gather"]
