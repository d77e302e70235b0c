from __future__ import annotations

import asyncio
from typing import Any

import pytest

from page_audit.gather.base_artifacts import BaseArtifacts, UrlArtifact
from page_audit.gather.config import GatherSettings, PassDefn
from page_audit.gather.gatherers import DevtoolsLog, LinkElements, ServiceWorker, Trace
from page_audit.gather.gatherers.base import GatherContext, InstrumentationGatherer, LoadData, PassContext
from page_audit.gather.gatherers.link_elements import parse_link_header
from page_audit.gather.gatherers.trace import DEFAULT_TRACE_CATEGORIES
from page_audit.gather.network_records import NetworkRecord
from page_audit.gather.run_warnings import RunWarnings


def _gather_context(driver: Any, **kwargs: Any) -> GatherContext:
    return GatherContext(driver=driver, gather_mode="navigation", base_artifacts=None, settings=GatherSettings(), **kwargs)


# LinkElements


def test_parse_link_header() -> None:
    refs = parse_link_header('</style.css>; rel=preload; as=style, <https://cdn.example/font.woff2>; rel="preload"; as=font; crossorigin')

    assert refs == [
        {"uri": "/style.css", "rel": "preload", "as": "style"},
        {"uri": "https://cdn.example/font.woff2", "rel": "preload", "as": "font", "crossorigin": ""},
    ]


def test_parse_link_header_keeps_commas_inside_uri_and_quotes() -> None:
    refs = parse_link_header('<https://example.com/a,b>; rel="alternate"; title="x, y"')

    assert refs == [{"uri": "https://example.com/a,b", "rel": "alternate", "title": "x, y"}]


def test_parse_link_header_skips_malformed_entries() -> None:
    assert parse_link_header("not-a-link; rel=preload") == []


def _pass_context(driver: Any, url: str = "https://example.com/") -> PassContext:
    settings = GatherSettings()
    base = BaseArtifacts(
        fetch_time="2026-01-01T00:00:00.000Z",
        settings=settings,
        URL=UrlArtifact(requested_url=url, main_document_url=url, final_displayed_url=url),
    )
    return PassContext(
        driver=driver,
        pass_config=PassDefn(),
        settings=settings,
        base_artifacts=base,
        run_warnings=RunWarnings(),
        url=url,
    )


def test_link_elements_combines_dom_and_headers(driver: Any) -> None:
    driver.evaluate_result = [
        {"rel": "Stylesheet", "href": "https://example.com/main.css", "hrefRaw": "/main.css", "source": "head"}
    ]
    main = NetworkRecord(
        request_id="1",
        url="https://example.com/",
        resource_type="Document",
        response_headers=[
            {"name": "Content-Type", "value": "text/html"},
            {"name": "link", "value": "</font.woff2>; rel=Preload; as=font; crossorigin=anonymous"},
        ],
    )
    load_data = LoadData(devtools_log=[], network_records=[main])

    links = asyncio.run(LinkElements().after_pass(_pass_context(driver), load_data))

    assert links[0]["rel"] == "stylesheet"
    assert links[0]["source"] == "head"
    assert links[1] == {
        "rel": "preload",
        "href": "https://example.com/font.woff2",
        "hrefRaw": "/font.woff2",
        "hreflang": "",
        "as": "font",
        "crossOrigin": "anonymous",
        "node": None,
        "source": "headers",
    }


def test_link_elements_without_main_document(driver: Any) -> None:
    driver.evaluate_result = None

    links = asyncio.run(LinkElements().after_pass(_pass_context(driver), LoadData(devtools_log=[], network_records=[])))

    assert links == []


def test_link_elements_drops_unknown_cross_origin(driver: Any) -> None:
    driver.evaluate_result = []
    main = NetworkRecord(
        request_id="1",
        url="https://example.com/",
        response_headers=[{"name": "Link", "value": "<https://cdn.example/x.js>; rel=preload; crossorigin=bogus"}],
    )

    links = asyncio.run(
        LinkElements().after_pass(_pass_context(driver), LoadData(devtools_log=[], network_records=[main]))
    )

    assert links[0]["crossOrigin"] is None
    assert links[0]["href"] == "https://cdn.example/x.js"


# ServiceWorker


def test_service_worker_artifact(driver: Any, session: Any) -> None:
    versions = [{"versionId": "1", "registrationId": "1", "status": "activated"}]
    registrations = [{"registrationId": "1", "scopeURL": "https://example.com/", "isDeleted": False}]

    def _enable(_params: Any) -> dict[str, Any]:
        session.emit("ServiceWorker.workerVersionUpdated", {"versions": versions})
        session.emit("ServiceWorker.workerRegistrationUpdated", {"registrations": registrations})
        return {}

    session.responses["ServiceWorker.enable"] = _enable

    artifact = asyncio.run(ServiceWorker().get_artifact(_gather_context(driver)))

    assert artifact == {"versions": versions, "registrations": registrations}
    assert session.methods() == [
        "ServiceWorker.enable",
        "ServiceWorker.disable",
        "ServiceWorker.enable",
        "ServiceWorker.disable",
    ]
    assert session.listener_count("ServiceWorker.workerVersionUpdated") == 0


# DevtoolsLog


def test_devtools_log_records_only_sensitive_window(driver: Any, session: Any) -> None:
    gatherer = DevtoolsLog()
    ctx = _gather_context(driver)

    async def scenario() -> Any:
        session.emit("Network.requestWillBeSent", {"requestId": "early"})
        await gatherer.start_sensitive_instrumentation(ctx)
        session.emit("Network.requestWillBeSent", {"requestId": "1"})
        session.emit("Page.loadEventFired", {"timestamp": 2})
        await gatherer.stop_sensitive_instrumentation(ctx)
        session.emit("Network.requestWillBeSent", {"requestId": "late"})
        return await gatherer.get_artifact(ctx)

    log = asyncio.run(scenario())

    assert [message["method"] for message in log] == ["Network.requestWillBeSent", "Page.loadEventFired"]
    assert log[0]["params"] == {"requestId": "1"}
    assert "Page.enable" in session.methods()


# Trace


def test_trace_collects_data_until_complete(driver: Any, session: Any) -> None:
    def _end(_params: Any) -> dict[str, Any]:
        session.emit("Tracing.dataCollected", {"value": [{"name": "navigationStart"}]})
        session.emit("Tracing.dataCollected", {"value": [{"name": "firstContentfulPaint"}]})
        session.emit("Tracing.tracingComplete", {})
        return {}

    session.responses["Tracing.end"] = _end
    gatherer = Trace()
    ctx = _gather_context(driver)

    async def scenario() -> Any:
        await gatherer.start_sensitive_instrumentation(ctx)
        await gatherer.stop_sensitive_instrumentation(ctx)
        return gatherer.get_artifact(ctx)

    trace = asyncio.run(scenario())

    assert trace == {"traceEvents": [{"name": "navigationStart"}, {"name": "firstContentfulPaint"}]}
    start_params = session.calls[0][1]
    assert start_params["traceConfig"]["includedCategories"] == DEFAULT_TRACE_CATEGORIES
    assert session.listener_count("Tracing.dataCollected") == 0


def test_trace_includes_additional_categories(driver: Any, session: Any) -> None:
    session.responses["Tracing.end"] = lambda _params: session.emit("Tracing.tracingComplete", {}) or {}
    ctx = GatherContext(
        driver=driver,
        gather_mode="timespan",
        base_artifacts=None,
        settings=GatherSettings(additional_trace_categories=["v8"]),
    )
    gatherer = Trace()

    async def scenario() -> None:
        await gatherer.start_sensitive_instrumentation(ctx)
        await gatherer.stop_sensitive_instrumentation(ctx)

    asyncio.run(scenario())

    assert session.calls[0][1]["traceConfig"]["includedCategories"][-1] == "v8"


def test_trace_without_start_is_empty(driver: Any) -> None:
    gatherer = Trace()
    ctx = _gather_context(driver)

    asyncio.run(gatherer.stop_sensitive_instrumentation(ctx))

    assert gatherer.get_artifact(ctx) == {"traceEvents": []}


@pytest.mark.parametrize("gatherer_cls", [DevtoolsLog, Trace, ServiceWorker, LinkElements])
def test_builtin_gatherers_declare_shape_and_modes(gatherer_cls: Any) -> None:
    gatherer = gatherer_cls()

    assert gatherer.shape in {"phase", "instrumentation"}
    assert gatherer.meta.supported_modes
    assert gatherer.meta.symbol == gatherer_cls.__name__


def test_subclasses_get_their_own_meta() -> None:
    class First(InstrumentationGatherer):
        pass

    class Second(InstrumentationGatherer):
        pass

    class CustomTrace(Trace):
        pass

    First.meta.dependencies["DevtoolsLog"] = "DevtoolsLog"

    assert First.meta is not Second.meta
    assert Second.meta.dependencies == {}
    assert InstrumentationGatherer.meta.dependencies == {}
    assert CustomTrace.meta is not Trace.meta
    assert CustomTrace.meta.symbol == "Trace"
