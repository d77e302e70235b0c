from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from page_audit.gather.gatherers.base import GathererMeta, InstrumentationGatherer, PhaseGatherer


class FakeSession:
    """In-memory stand-in for `CdpConnection`.

    `responses` maps a method to a result dict, a callable taking params, or an
    exception instance to raise.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any] | None]] = []
        self.responses: dict[str, Any] = {}
        self._listeners: dict[str, list[tuple[Callable[[dict[str, Any]], Any], bool]]] = {}
        self._message_listeners: list[Callable[[dict[str, Any]], Any]] = []

    async def send_command(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        self.calls.append((method, params))
        response = self.responses.get(method, {})
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(params)
        return response

    def methods(self) -> list[str]:
        return [method for method, _params in self.calls]

    def on(self, event: str, listener: Callable[[dict[str, Any]], Any]) -> None:
        self._listeners.setdefault(event, []).append((listener, False))

    def once(self, event: str, listener: Callable[[dict[str, Any]], Any]) -> None:
        self._listeners.setdefault(event, []).append((listener, True))

    def off(self, event: str, listener: Callable[[dict[str, Any]], Any]) -> None:
        entries = self._listeners.get(event) or []
        self._listeners[event] = [entry for entry in entries if entry[0] != listener]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event) or [])

    def add_protocol_message_listener(self, listener: Callable[[dict[str, Any]], Any]) -> None:
        self._message_listeners.append(listener)

    def remove_protocol_message_listener(self, listener: Callable[[dict[str, Any]], Any]) -> None:
        if listener in self._message_listeners:
            self._message_listeners.remove(listener)

    def emit(self, event: str, params: dict[str, Any] | None = None) -> None:
        params = params or {}
        for listener in list(self._message_listeners):
            listener({"method": event, "params": params})
        entries = self._listeners.get(event) or []
        self._listeners[event] = [entry for entry in entries if not entry[1]]
        for listener, _once in entries:
            listener(params)


def document_devtools_log(
    url: str = "https://example.com/",
    *,
    status: int = 200,
    mime_type: str = "text/html",
    error_text: str | None = None,
    document_url: str | None = None,
    user_agent: str = "Mozilla/5.0 (Linux; Android 11) Chrome/120.0 Mobile",
) -> list[dict[str, Any]]:
    """A devtools log with one main-document request."""
    log: list[dict[str, Any]] = [
        {
            "method": "Network.requestWillBeSent",
            "params": {
                "requestId": "1000.1",
                "type": "Document",
                "frameId": "main",
                "documentURL": document_url or url,
                "timestamp": 1.0,
                "request": {"url": url, "method": "GET", "headers": {"User-Agent": user_agent}},
            },
        }
    ]
    if error_text is not None:
        log.append(
            {
                "method": "Network.loadingFailed",
                "params": {"requestId": "1000.1", "type": "Document", "errorText": error_text, "timestamp": 2.0},
            }
        )
        return log
    log.append(
        {
            "method": "Network.responseReceived",
            "params": {
                "requestId": "1000.1",
                "type": "Document",
                "response": {"url": url, "status": status, "mimeType": mime_type, "headers": {}},
            },
        }
    )
    log.append({"method": "Network.loadingFinished", "params": {"requestId": "1000.1", "timestamp": 2.0}})
    return log


class FakeDriver:
    def __init__(self, session: FakeSession | None = None, *, url: str = "https://example.com/") -> None:
        self.session = session or FakeSession()
        self.online = True
        self.current_url = url
        self.calls: list[str] = []
        self.scrolls: list[tuple[float, float]] = []
        self.evaluate_result: Any = 1000
        self.browser_version: dict[str, Any] = {
            "product": "Chrome/120.0.6099.0",
            "userAgent": "Mozilla/5.0 (X11; Linux x86_64) Chrome/120.0",
            "protocolVersion": "1.3",
            "milestone": 120,
        }
        self.devtools_log = document_devtools_log(url)
        self.trace: dict[str, Any] = {"traceEvents": [{"name": "TracingStartedInBrowser"}]}

    @property
    def default_session(self) -> FakeSession:
        return self.session

    async def connect(self) -> None:
        self.calls.append("connect")

    async def disconnect(self) -> None:
        self.calls.append("disconnect")

    async def url(self) -> str:
        return self.current_url

    async def get_browser_version(self) -> dict[str, Any]:
        self.calls.append("get_browser_version")
        return dict(self.browser_version)

    async def evaluate(self, expression: str) -> Any:
        self.calls.append("evaluate")
        if isinstance(self.evaluate_result, BaseException):
            raise self.evaluate_result
        if callable(self.evaluate_result):
            return self.evaluate_result(expression)
        return self.evaluate_result

    async def scroll_to(self, x: float, y: float) -> None:
        self.scrolls.append((x, y))

    async def begin_trace(self, settings: Any = None) -> None:
        self.calls.append("begin_trace")

    async def end_trace(self) -> dict[str, Any]:
        self.calls.append("end_trace")
        return self.trace

    async def begin_devtools_log(self) -> None:
        self.calls.append("begin_devtools_log")

    async def end_devtools_log(self) -> list[dict[str, Any]]:
        self.calls.append("end_devtools_log")
        return self.devtools_log


class MockInstrumentationGatherer(InstrumentationGatherer):
    """Records each hook call; `errors` maps a hook name to the exception it raises."""

    def __init__(
        self,
        *,
        artifact: Any = None,
        supported_modes: tuple[str, ...] = ("timespan", "snapshot", "navigation"),
        symbol: Any = None,
        dependencies: dict[str, Any] | None = None,
        log: list[str] | None = None,
        label: str = "",
    ) -> None:
        self.meta = GathererMeta(symbol=symbol, supported_modes=supported_modes, dependencies=dict(dependencies or {}))
        self.artifact = artifact
        self.errors: dict[str, BaseException] = {}
        self.calls: list[str] = []
        self.contexts: list[Any] = []
        self.log = log if log is not None else []
        self.label = label

    def _hook(self, phase: str, ctx: Any) -> None:
        self.calls.append(phase)
        self.contexts.append(ctx)
        self.log.append(f"{self.label}:{phase}")
        if phase in self.errors:
            raise self.errors[phase]

    async def start_instrumentation(self, ctx: Any) -> None:
        self._hook("start_instrumentation", ctx)

    async def start_sensitive_instrumentation(self, ctx: Any) -> None:
        self._hook("start_sensitive_instrumentation", ctx)

    async def stop_sensitive_instrumentation(self, ctx: Any) -> None:
        self._hook("stop_sensitive_instrumentation", ctx)

    async def stop_instrumentation(self, ctx: Any) -> None:
        self._hook("stop_instrumentation", ctx)

    async def get_artifact(self, ctx: Any) -> Any:
        self._hook("get_artifact", ctx)
        return self.artifact


class MockPhaseGatherer(PhaseGatherer):
    """Phase gatherer whose per-phase values come from `values` (exceptions are raised)."""

    def __init__(self, name: str = "MockPhaseGatherer", **values: Any) -> None:
        self._name = name
        self.values = values
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return self._name

    def _phase(self, phase: str) -> Any:
        self.calls.append(phase)
        value = self.values.get(phase)
        if isinstance(value, BaseException):
            raise value
        return value

    async def before_pass(self, ctx: Any) -> Any:
        return self._phase("before_pass")

    async def pass_(self, ctx: Any) -> Any:
        return self._phase("pass_")

    async def after_pass(self, ctx: Any, load_data: Any) -> Any:
        return self._phase("after_pass")


class ManualTimer:
    """Timer whose callbacks run only when `flush()` is called."""

    class Handle:
        def __init__(self, callback: Callable[[], None]) -> None:
            self.callback = callback
            self.cancelled = False

        def cancel(self) -> None:
            self.cancelled = True

    def __init__(self) -> None:
        self.handles: list[ManualTimer.Handle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer.Handle:  # noqa: ARG002
        handle = ManualTimer.Handle(callback)
        self.handles.append(handle)
        return handle

    def flush(self) -> None:
        for handle in list(self.handles):
            if not handle.cancelled:
                handle.cancelled = True
                handle.callback()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def driver(session: FakeSession) -> FakeDriver:
    return FakeDriver(session)


@pytest.fixture
def manual_timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def make_instrumentation_gatherer() -> Callable[..., MockInstrumentationGatherer]:
    return MockInstrumentationGatherer


@pytest.fixture
def make_phase_gatherer() -> Callable[..., MockPhaseGatherer]:
    return MockPhaseGatherer


@pytest.fixture
def make_devtools_log() -> Callable[..., list[dict[str, Any]]]:
    return document_devtools_log


class Collaborators:
    """Recording replacements for the navigation, preparation and storage helpers.

    `navigation_errors` is consumed one entry per non-blank navigation; `None`
    means that navigation succeeds.
    """

    BLANK_PAGES = ("about:blank",)

    def __init__(self) -> None:
        self.events: list[str] = []
        self.goto_calls: list[Any] = []
        self.navigation_errors: list[BaseException | None] = []
        self.navigation_warnings: list[Any] = []
        self.redirects: dict[str, str] = {}
        self.prepare_warnings: list[Any] = []
        self.individual_navigation_kwargs: list[dict[str, Any]] = []

    async def goto_url(self, driver: Any, requestor: Any, options: Any = None) -> Any:
        from page_audit.gather.driver.navigation import NavigationResult

        self.goto_calls.append(requestor)
        if isinstance(requestor, str):
            self.events.append(f"goto:{requestor}")
            if requestor in self.BLANK_PAGES or requestor.startswith("about:"):
                return NavigationResult(requested_url=requestor, main_document_url=requestor)
            requested_url = requestor
        else:
            self.events.append("goto:callback")
            await requestor()
            requested_url = driver.current_url

        error = self.navigation_errors.pop(0) if self.navigation_errors else None
        if error is not None:
            raise error
        return NavigationResult(
            requested_url=requested_url,
            main_document_url=self.redirects.get(requested_url, requested_url),
            warnings=list(self.navigation_warnings),
        )

    async def prepare_target_for_navigation_mode(self, driver: Any, settings: Any) -> dict[str, Any]:
        self.events.append("prepare_navigation_mode")
        return {"warnings": []}

    async def prepare_target_for_timespan_mode(self, driver: Any, settings: Any) -> dict[str, Any]:
        self.events.append("prepare_timespan_mode")
        return {"warnings": list(self.prepare_warnings)}

    async def prepare_target_for_individual_navigation(self, driver: Any, settings: Any, **kwargs: Any) -> dict[str, Any]:
        self.events.append("prepare_individual_navigation")
        self.individual_navigation_kwargs.append(kwargs)
        return {"warnings": list(self.prepare_warnings)}

    async def clear_throttling(self, session: Any) -> None:
        self.events.append("clear_throttling")

    async def clear_data_for_origin(self, session: Any, url: str) -> None:
        self.events.append(f"clear_data:{url}")

    async def assert_no_same_origin_service_worker_clients(self, session: Any, page_url: str) -> None:
        self.events.append("sw_check")

    def install(self, monkeypatch: pytest.MonkeyPatch, module: Any) -> Collaborators:
        for name in (
            "goto_url",
            "prepare_target_for_navigation_mode",
            "prepare_target_for_timespan_mode",
            "prepare_target_for_individual_navigation",
            "clear_throttling",
            "clear_data_for_origin",
            "assert_no_same_origin_service_worker_clients",
        ):
            if hasattr(module, name):
                monkeypatch.setattr(module, name, getattr(self, name))
        return self


@pytest.fixture
def collaborators() -> Collaborators:
    return Collaborators()
