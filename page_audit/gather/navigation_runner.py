"""Navigation-mode runner.

One `_setup` per run, then for every configured navigation:
blank page -> prepare -> start hooks -> navigate -> stop hooks ->
clear throttling -> classify load -> get_artifact. `_cleanup` runs once.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlsplit

from .artifacts import GatherResult, merge_navigation_artifacts
from .base_artifacts import BaseArtifacts, finalize_artifacts, get_base_artifacts
from .config import GatherConfig, NavigationDefn, initialize_config
from .driver import Driver
from .driver.emulation import clear_throttling
from .driver.navigation import NavigationOptions, Requestor, goto_url
from .driver.prepare import prepare_target_for_individual_navigation, prepare_target_for_navigation_mode
from .driver.storage import clear_data_for_origin
from .errors import ConfigError, LighthouseError, is_navigation_error
from .gatherers.base import GatherContext
from .gatherers.devtools_log import DEVTOOLS_LOG_SYMBOL
from .gatherers.trace import TRACE_SYMBOL
from .navigation_error import get_page_load_error
from .network_records import network_records_from_devtools_log
from .run_warnings import RunWarnings
from .runner_helpers import ArtifactState, await_artifacts, collect_phase_artifacts, get_empty_artifact_state

logger = logging.getLogger("page_audit.gather.navigation_runner")


def _should_load_blank(requestor: Requestor, config: GatherConfig) -> bool:
    return isinstance(requestor, str) and not config.settings.skip_about_blank


def _is_valid_url(url: str) -> bool:
    parts = urlsplit(url or "")
    return bool(parts.scheme) and bool(parts.netloc or parts.scheme in {"about", "data", "file"})


async def _setup(*, driver: Driver, requestor: Requestor, config: GatherConfig) -> BaseArtifacts:
    """Connect, warm up, capture base artifacts, then prepare the target."""
    await driver.connect()
    if _should_load_blank(requestor, config):
        await goto_url(driver, "about:blank", NavigationOptions(wait_until=("load",)))

    base_artifacts = await get_base_artifacts(config.settings, driver, gather_mode="navigation")
    if isinstance(requestor, str):
        base_artifacts.URL.requested_url = requestor

    prepared = await prepare_target_for_navigation_mode(driver, config.settings)
    base_artifacts.run_warnings.extend(prepared.get("warnings") or [])
    return base_artifacts


async def _setup_navigation(
    *, driver: Driver, requestor: Requestor, navigation: NavigationDefn, config: GatherConfig
) -> dict[str, Any]:
    if _should_load_blank(requestor, config):
        await goto_url(driver, navigation.blank_page, NavigationOptions(wait_until=("load",)))
    return await prepare_target_for_individual_navigation(
        driver,
        config.settings,
        requestor=requestor,
        disable_storage_reset=navigation.disable_storage_reset or config.settings.disable_storage_reset,
        disable_throttling=navigation.disable_throttling,
    )


async def _navigate(
    *, driver: Driver, requestor: Requestor, navigation: NavigationDefn, config: GatherConfig
) -> dict[str, Any]:
    """Load the page. A recognised navigation error on a URL requestor is returned, not raised."""
    pause_after_fcp = navigation.pause_after_fcp_ms
    if pause_after_fcp is None:
        pause_after_fcp = config.settings.pause_after_fcp_ms
    wait_until = ("fcp", "load") if pause_after_fcp else ("load",)
    options = NavigationOptions.from_settings(config.settings, wait_until=wait_until, navigation=navigation)
    try:
        result = await goto_url(driver, requestor, options)
    except LighthouseError as err:
        if not isinstance(requestor, str) or not is_navigation_error(err):
            raise
        logger.debug("navigation %s failed with %s", navigation.id, err.code)
        return {
            "requested_url": requestor,
            "main_document_url": requestor,
            "warnings": [],
            "navigation_error": err,
        }
    return {
        "requested_url": result.requested_url,
        "main_document_url": result.main_document_url,
        "warnings": list(result.warnings),
        "navigation_error": None,
    }


def _find_by_symbol(navigation: NavigationDefn, symbol: str) -> Any:
    return next((defn for defn in navigation.artifacts if defn.gatherer.meta.symbol == symbol), None)


async def _compute_navigation_result(
    *,
    driver: Driver,
    navigation: NavigationDefn,
    artifact_state: ArtifactState,
    context: GatherContext,
    navigate_result: dict[str, Any],
    warnings: list[Any],
) -> dict[str, Any]:
    devtools_log_defn = _find_by_symbol(navigation, DEVTOOLS_LOG_SYMBOL)
    trace_defn = _find_by_symbol(navigation, TRACE_SYMBOL)
    devtools_log = None
    trace = None

    page_load_error = navigate_result["navigation_error"]
    if devtools_log_defn is not None:
        early = [defn for defn in (devtools_log_defn, trace_defn) if defn is not None]
        await collect_phase_artifacts(
            phase="get_artifact", artifact_defns=early, artifact_state=artifact_state, context=context
        )
        devtools_log_result = artifact_state["get_artifact"][devtools_log_defn.id]
        devtools_log = devtools_log_result.value if devtools_log_result.ok else None
        if trace_defn is not None:
            trace_result = artifact_state["get_artifact"][trace_defn.id]
            trace = trace_result.value if trace_result.ok else None
        page_load_error = get_page_load_error(
            navigate_result["navigation_error"],
            url=navigate_result["main_document_url"],
            load_failure_mode=navigation.load_failure_mode,
            network_records=network_records_from_devtools_log(devtools_log or []),
            skip_network_errors=not driver.online,
        )
    elif navigation.load_failure_mode == "ignore":
        page_load_error = None

    if page_load_error is not None:
        if navigation.load_failure_mode == "fatal":
            logger.error("%s: %s", navigation.id, page_load_error.friendly_message["formattedDefault"])
        artifacts: dict[str, Any] = {}
        key = f"pageLoadError-{navigation.id}"
        if devtools_log is not None:
            artifacts["devtoolsLogs"] = {key: devtools_log}
        if trace is not None:
            artifacts["traces"] = {key: trace}
        return {
            "artifacts": artifacts,
            "page_load_error": page_load_error,
            "warnings": [*warnings, page_load_error.friendly_message],
        }

    await collect_phase_artifacts(
        phase="get_artifact", artifact_defns=navigation.artifacts, artifact_state=artifact_state, context=context
    )
    artifacts = await_artifacts(artifact_state)
    if devtools_log_defn is not None and devtools_log_defn.id in artifacts:
        artifacts["devtoolsLogs"] = {navigation.id: artifacts[devtools_log_defn.id]}
    if trace_defn is not None and trace_defn.id in artifacts:
        artifacts["traces"] = {navigation.id: artifacts[trace_defn.id]}
    return {"artifacts": artifacts, "page_load_error": None, "warnings": warnings}


async def _navigation(
    *,
    driver: Driver,
    requestor: Requestor,
    navigation: NavigationDefn,
    config: GatherConfig,
    base_artifacts: BaseArtifacts,
) -> dict[str, Any]:
    """Run one navigation. Returns `artifacts`, `page_load_error` and `warnings`."""
    artifact_state = get_empty_artifact_state()
    context = GatherContext(
        driver=driver,
        gather_mode="navigation",
        base_artifacts=base_artifacts,
        settings=config.settings,
    )

    async def run_phase(phase: str) -> None:
        await collect_phase_artifacts(
            phase=phase, artifact_defns=navigation.artifacts, artifact_state=artifact_state, context=context
        )

    setup_result = await _setup_navigation(driver=driver, requestor=requestor, navigation=navigation, config=config)
    await run_phase("start_instrumentation")
    await run_phase("start_sensitive_instrumentation")
    navigate_result = await _navigate(driver=driver, requestor=requestor, navigation=navigation, config=config)

    url = base_artifacts.URL
    if not url.requested_url:
        url.requested_url = navigate_result["requested_url"]
    if not url.final_displayed_url or not url.main_document_url:
        url.main_document_url = navigate_result["main_document_url"]
        url.final_displayed_url = await driver.url()

    await run_phase("stop_sensitive_instrumentation")
    await run_phase("stop_instrumentation")
    await clear_throttling(driver.default_session)

    warnings = [*(setup_result.get("warnings") or []), *navigate_result["warnings"]]
    return await _compute_navigation_result(
        driver=driver,
        navigation=navigation,
        artifact_state=artifact_state,
        context=context,
        navigate_result=navigate_result,
        warnings=warnings,
    )


async def _navigations(
    *, driver: Driver, requestor: Requestor, config: GatherConfig, base_artifacts: BaseArtifacts
) -> dict[str, Any]:
    """Run every navigation in order, halting after a fatal page-load error."""
    if not config.navigations:
        raise ConfigError("No navigations configured")

    artifacts: dict[str, Any] = {}
    run_warnings = RunWarnings()
    for navigation in config.navigations:
        logger.info("running navigation %s", navigation.id)
        with base_artifacts.timing.measure(f"gather:navigation:{navigation.id}"):
            result = await _navigation(
                driver=driver,
                requestor=requestor,
                navigation=navigation,
                config=config,
                base_artifacts=base_artifacts,
            )
        merge_navigation_artifacts(
            artifacts, result["artifacts"], declared_ids=[defn.id for defn in navigation.artifacts]
        )

        page_load_error = result["page_load_error"]
        if navigation.load_failure_mode == "fatal":
            run_warnings.extend(result["warnings"])
            if page_load_error is not None:
                artifacts["PageLoadError"] = page_load_error
                break
        elif page_load_error is not None:
            run_warnings.push(page_load_error.friendly_message)

    artifacts["LighthouseRunWarnings"] = run_warnings.deduplicated()
    return artifacts


async def _cleanup(*, driver: Driver, requested_url: str | None, config: GatherConfig) -> None:
    if not config.settings.disable_storage_reset and requested_url:
        await clear_data_for_origin(driver.default_session, requested_url)
    await driver.disconnect()


async def navigation_gather(
    page: str,
    requestor: Requestor,
    *,
    config: dict[str, Any] | None = None,
    flags: dict[str, Any] | None = None,
    driver: Driver | None = None,
) -> GatherResult:
    """Run every configured navigation against `requestor`.

    `requestor` is a URL, or a callable that triggers the navigation itself.
    """
    if isinstance(requestor, str) and not _is_valid_url(requestor):
        raise LighthouseError("INVALID_URL")

    gather_config = initialize_config("navigation", config, flags)
    driver = driver or Driver(page, protocol_timeout=gather_config.settings.protocol_timeout)

    try:
        base_artifacts = await _setup(driver=driver, requestor=requestor, config=gather_config)
        artifacts = await _navigations(
            driver=driver, requestor=requestor, config=gather_config, base_artifacts=base_artifacts
        )
    except Exception:
        await driver.disconnect()
        raise
    if "PageLoadError" in artifacts:
        base_artifacts.page_load_error = artifacts.pop("PageLoadError")
    await _cleanup(driver=driver, requested_url=base_artifacts.URL.requested_url, config=gather_config)

    return GatherResult(artifacts=finalize_artifacts(base_artifacts, artifacts), config=gather_config)


__all__ = ["navigation_gather"]
