"""Instrumentation phase sequencing and dependency resolution shared by the runners."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from .artifacts import PhaseResult
from .config import ArtifactDefn
from .errors import GatherError
from .gatherers.base import INSTRUMENTATION_SHAPE, GatherContext, maybe_await, require_shape

logger = logging.getLogger("page_audit.gather.runner_helpers")

PHASES = (
    "start_instrumentation",
    "start_sensitive_instrumentation",
    "stop_sensitive_instrumentation",
    "stop_instrumentation",
    "get_artifact",
)
_PRIOR_PHASE = dict(zip(PHASES[1:], PHASES[:-1]))

# phase -> artifact id -> result
ArtifactState = dict[str, dict[str, PhaseResult]]


def get_empty_artifact_state() -> ArtifactState:
    return {phase: {} for phase in PHASES}


def collect_dependencies(defn: ArtifactDefn, results: dict[str, PhaseResult]) -> dict[str, Any]:
    dependencies: dict[str, Any] = {}
    for key, producer_id in defn.dependencies.items():
        result = results.get(producer_id)
        if result is None:
            raise GatherError(f'"{producer_id}" did not run')
        if result.error is not None:
            raise GatherError(f'Dependency "{producer_id}" failed with exception: {result.error}')
        dependencies[key] = result.value
    return dependencies


async def collect_phase_artifacts(
    *,
    phase: str,
    artifact_defns: Iterable[ArtifactDefn],
    artifact_state: ArtifactState,
    context: GatherContext,
) -> None:
    """Run `phase` for each artifact, strictly one after another.

    A failure in an earlier phase is carried forward instead of running the
    hook. `get_artifact` runs at most once per artifact and is the only phase
    that sees resolved dependencies.
    """
    prior_phase = _PRIOR_PHASE.get(phase)
    for defn in artifact_defns:
        gatherer = defn.gatherer
        require_shape(gatherer, INSTRUMENTATION_SHAPE)
        if phase == "get_artifact" and defn.id in artifact_state[phase]:
            continue

        prior = artifact_state[prior_phase].get(defn.id) if prior_phase else None
        if prior is not None and prior.error is not None:
            artifact_state[phase][defn.id] = prior
            continue

        try:
            if phase == "get_artifact":
                dependencies = collect_dependencies(defn, artifact_state["get_artifact"])
                value = await maybe_await(gatherer.get_artifact(replace(context, dependencies=dependencies)))
            else:
                value = await maybe_await(getattr(gatherer, phase)(context))
            artifact_state[phase][defn.id] = PhaseResult(value=value)
        except Exception as exc:  # noqa: BLE001
            logger.debug("%s failed in %s: %s", defn.id, phase, exc)
            artifact_state[phase][defn.id] = PhaseResult.failure(exc)


def await_artifacts(artifact_state: ArtifactState) -> dict[str, Any]:
    """Flatten `get_artifact` results to the store form, skipping undefined ones."""
    artifacts: dict[str, Any] = {}
    for artifact_id, result in artifact_state["get_artifact"].items():
        if result.ok and result.value is None:
            continue
        artifacts[artifact_id] = result.to_store()
    return artifacts


__all__ = [
    "PHASES",
    "ArtifactState",
    "await_artifacts",
    "collect_dependencies",
    "collect_phase_artifacts",
    "get_empty_artifact_state",
]
