"""Gatherer contract.

Two shapes, tagged by `Gatherer.shape`:
- PhaseGatherer ("phase"): before_pass / pass_ / after_pass (legacy runner)
- InstrumentationGatherer ("instrumentation"): start/stop hooks + get_artifact

Hooks may be plain functions or coroutines; runners await whatever they return.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from ..errors import GatherError

if TYPE_CHECKING:
    from ..base_artifacts import BaseArtifacts
    from ..config import GatherSettings, PassDefn
    from ..driver import Driver
    from ..network_records import NetworkRecord
    from ..run_warnings import RunWarnings

PHASE_SHAPE = "phase"
INSTRUMENTATION_SHAPE = "instrumentation"


@dataclass
class GathererMeta:
    """Descriptor read by the config layer and runners.

    `symbol` identifies the gatherer for dependency lookup; `dependencies`
    maps a dependency key to the producer's symbol.
    """

    symbol: Any = None
    supported_modes: tuple[str, ...] = ()
    dependencies: dict[str, Any] = field(default_factory=dict)


@dataclass
class LoadData:
    devtools_log: list[dict[str, Any]]
    network_records: list[NetworkRecord]
    trace: dict[str, Any] | None = None


@dataclass
class PassContext:
    """Run context for one legacy pass. Passed explicitly; never global."""

    driver: Driver
    pass_config: PassDefn
    settings: GatherSettings
    base_artifacts: BaseArtifacts
    run_warnings: RunWarnings
    url: str = ""
    gather_mode: str = "navigation"


@dataclass
class GatherContext:
    """Context handed to every instrumentation hook."""

    driver: Driver
    gather_mode: str
    base_artifacts: BaseArtifacts | None
    settings: GatherSettings
    page: Any = None
    dependencies: dict[str, Any] = field(default_factory=dict)


class Gatherer:
    shape: str = ""
    meta: GathererMeta = GathererMeta()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "meta" not in cls.__dict__:
            cls.meta = replace(cls.meta, dependencies=dict(cls.meta.dependencies))

    @property
    def name(self) -> str:
        return type(self).__name__


class PhaseGatherer(Gatherer):
    shape = PHASE_SHAPE

    def before_pass(self, ctx: PassContext) -> Any:
        return None

    def pass_(self, ctx: PassContext) -> Any:
        return None

    def after_pass(self, ctx: PassContext, load_data: LoadData) -> Any:
        return None


class InstrumentationGatherer(Gatherer):
    shape = INSTRUMENTATION_SHAPE

    def start_instrumentation(self, ctx: GatherContext) -> Any:
        return None

    def start_sensitive_instrumentation(self, ctx: GatherContext) -> Any:
        return None

    def stop_sensitive_instrumentation(self, ctx: GatherContext) -> Any:
        return None

    def stop_instrumentation(self, ctx: GatherContext) -> Any:
        return None

    def get_artifact(self, ctx: GatherContext) -> Any:
        raise NotImplementedError(f"{self.name} does not implement get_artifact")


def require_shape(gatherer: Gatherer, shape: str) -> None:
    if gatherer.shape != shape:
        raise GatherError(f"{gatherer.name} is a {gatherer.shape or 'untagged'} gatherer; expected {shape}")


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


__all__ = [
    "INSTRUMENTATION_SHAPE",
    "PHASE_SHAPE",
    "GatherContext",
    "Gatherer",
    "GathererMeta",
    "InstrumentationGatherer",
    "LoadData",
    "PassContext",
    "PhaseGatherer",
    "maybe_await",
    "require_shape",
]
