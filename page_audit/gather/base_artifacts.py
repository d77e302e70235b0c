"""Run-wide environment facts captured once per run, plus final artifact assembly."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .errors import GatherError, LighthouseError
from .network_records import network_user_agent
from .run_warnings import RunWarnings
from .timing import TimingLog

if TYPE_CHECKING:
    from .config import GatherSettings
    from .driver import Driver

# Iterations per second of a fixed string-building workload.
BENCHMARK_EXPRESSION = """
(() => {
  const start = Date.now();
  let iterations = 0;
  while (Date.now() - start < 500) {
    let s = '';
    for (let j = 0; j < 10000; j++) s += 'a';
    iterations++;
  }
  return iterations / ((Date.now() - start) / 1000) * 10;
})()
"""


@dataclass
class UrlArtifact:
    requested_url: str | None = ""
    main_document_url: str | None = ""
    final_displayed_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "requestedUrl": self.requested_url,
            "mainDocumentUrl": self.main_document_url,
            "finalDisplayedUrl": self.final_displayed_url,
        }


def host_form_factor(user_agent: str) -> str:
    return "mobile" if ("Android" in user_agent or "Mobile" in user_agent) else "desktop"


@dataclass
class BaseArtifacts:
    fetch_time: str
    settings: GatherSettings
    gather_mode: str = "navigation"
    URL: UrlArtifact = field(default_factory=UrlArtifact)
    host_user_agent: str = ""
    network_user_agent: str = ""
    host_form_factor: str = "desktop"
    benchmark_index: float = 0.0
    run_warnings: RunWarnings = field(default_factory=RunWarnings)
    timing: TimingLog = field(default_factory=TimingLog)
    traces: dict[str, Any] = field(default_factory=dict)
    devtools_logs: dict[str, Any] = field(default_factory=dict)
    page_load_error: LighthouseError | None = None

    def to_artifacts(self) -> dict[str, Any]:
        return {
            "fetchTime": self.fetch_time,
            "URL": self.URL.to_dict(),
            "HostUserAgent": self.host_user_agent,
            "NetworkUserAgent": self.network_user_agent,
            "HostFormFactor": self.host_form_factor,
            "BenchmarkIndex": self.benchmark_index,
            "GatherContext": {"gatherMode": self.gather_mode},
            "settings": asdict(self.settings),
            "LighthouseRunWarnings": list(self.run_warnings),
            "traces": dict(self.traces),
            "devtoolsLogs": dict(self.devtools_logs),
            "Timing": self.timing.entries(),
            "PageLoadError": self.page_load_error,
        }


def fetch_time_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def get_base_artifacts(settings: GatherSettings, driver: Driver, *, gather_mode: str) -> BaseArtifacts:
    """Capture host facts. The URL triple is filled in later by the runner."""
    version = await driver.get_browser_version()
    user_agent = str(version.get("userAgent", ""))
    benchmark_index = await driver.evaluate(BENCHMARK_EXPRESSION)
    return BaseArtifacts(
        fetch_time=fetch_time_now(),
        settings=settings,
        gather_mode=gather_mode,
        host_user_agent=user_agent,
        host_form_factor=host_form_factor(user_agent),
        benchmark_index=float(benchmark_index or 0),
    )


def finalize_artifacts(base_artifacts: BaseArtifacts, gathered: dict[str, Any]) -> dict[str, Any]:
    """Combine base and gathered artifacts into the run result."""
    warnings = RunWarnings(base_artifacts.run_warnings)
    warnings.extend(gathered.get("LighthouseRunWarnings") or [])

    artifacts = base_artifacts.to_artifacts()
    for key in ("devtoolsLogs", "traces"):
        artifacts[key].update(gathered.get(key) or {})
    artifacts.update({k: v for k, v in gathered.items() if k not in ("devtoolsLogs", "traces")})
    artifacts["LighthouseRunWarnings"] = warnings.deduplicated()

    if not artifacts["NetworkUserAgent"]:
        for log in artifacts["devtoolsLogs"].values():
            if not isinstance(log, list):
                continue
            artifacts["NetworkUserAgent"] = network_user_agent(log)
            break

    url = artifacts["URL"]
    if artifacts.get("PageLoadError") is not None and not url["finalDisplayedUrl"]:
        url["finalDisplayedUrl"] = url["requestedUrl"] or ""
    if not url["finalDisplayedUrl"]:
        raise GatherError("Runner did not set finalDisplayedUrl")
    return artifacts


__all__ = [
    "BENCHMARK_EXPRESSION",
    "BaseArtifacts",
    "UrlArtifact",
    "fetch_time_now",
    "finalize_artifacts",
    "get_base_artifacts",
    "host_form_factor",
]
