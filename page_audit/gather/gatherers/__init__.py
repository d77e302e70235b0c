from __future__ import annotations

from typing import Any

from .base import (
    GatherContext,
    Gatherer,
    GathererMeta,
    InstrumentationGatherer,
    LoadData,
    PassContext,
    PhaseGatherer,
)
from .devtools_log import DEVTOOLS_LOG_SYMBOL, DevtoolsLog
from .link_elements import LinkElements
from .service_worker import ServiceWorker
from .trace import TRACE_SYMBOL, Trace


def default_artifacts() -> list[dict[str, Any]]:
    """Artifacts gathered when the caller supplies no config."""
    return [
        {"id": "DevtoolsLog", "gatherer": DevtoolsLog()},
        {"id": "Trace", "gatherer": Trace()},
        {"id": "ServiceWorker", "gatherer": ServiceWorker()},
    ]


def default_passes() -> list[dict[str, Any]]:
    return [
        {
            "passName": "defaultPass",
            "recordTrace": True,
            "useThrottling": True,
            "gatherers": [LinkElements()],
        }
    ]


__all__ = [
    "DEVTOOLS_LOG_SYMBOL",
    "TRACE_SYMBOL",
    "DevtoolsLog",
    "GatherContext",
    "Gatherer",
    "GathererMeta",
    "InstrumentationGatherer",
    "LinkElements",
    "LoadData",
    "PassContext",
    "PhaseGatherer",
    "ServiceWorker",
    "Trace",
    "default_artifacts",
    "default_passes",
]
