"""Artifact store helpers.

Phase results travel as `PhaseResult` (value or error) and are flattened to
the store form (value, or the `Exception` instance) only when written.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import GatherError

if TYPE_CHECKING:
    from .config import GatherConfig

# Containers keyed by pass/navigation name; merged rather than replaced.
KEYED_CONTAINERS = ("devtoolsLogs", "traces")


@dataclass(frozen=True)
class PhaseResult:
    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: BaseException) -> PhaseResult:
        return cls(error=error)

    def to_store(self) -> Any:
        return self.error if self.error is not None else self.value


@dataclass
class GatherResult:
    artifacts: dict[str, Any]
    config: GatherConfig


def merge_phase_results(results: Iterable[PhaseResult]) -> PhaseResult | None:
    """First error in phase order wins; otherwise the last non-None value.

    Returns None when every phase produced nothing.
    """
    last_value: PhaseResult | None = None
    for result in results:
        if result.error is not None:
            return result
        if result.value is not None:
            last_value = result
    return last_value


def merge_navigation_artifacts(
    artifacts: dict[str, Any],
    navigation_artifacts: dict[str, Any],
    declared_ids: Iterable[str] = (),
) -> dict[str, Any]:
    """Merge one navigation's artifacts into the run store in place.

    An id already present may only be replaced when the navigation declared it.
    """
    declared = set(declared_ids)
    for artifact_id, value in navigation_artifacts.items():
        if artifact_id in KEYED_CONTAINERS and isinstance(value, dict):
            artifacts.setdefault(artifact_id, {}).update(value)
            continue
        if artifact_id in artifacts and artifact_id not in declared:
            raise GatherError(f'Artifact "{artifact_id}" was already set by an earlier navigation')
        artifacts[artifact_id] = value
    return artifacts


__all__ = [
    "KEYED_CONTAINERS",
    "GatherResult",
    "PhaseResult",
    "merge_navigation_artifacts",
    "merge_phase_results",
]
