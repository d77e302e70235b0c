from __future__ import annotations

import copy
import logging
import os
import re
from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any

from .errors import ConfigError

if TYPE_CHECKING:
    from .gatherers.base import Gatherer

logger = logging.getLogger("page_audit.gather.config")

GATHER_MODES = ("navigation", "timespan", "snapshot")
LOAD_FAILURE_MODES = ("fatal", "warn", "ignore")
DEFAULT_BLANK_PAGE = "about:blank"

MOBILE_SCREEN_EMULATION: dict[str, Any] = {
    "mobile": True,
    "width": 412,
    "height": 823,
    "deviceScaleFactor": 1.75,
    "disabled": False,
}
DESKTOP_SCREEN_EMULATION: dict[str, Any] = {
    "mobile": False,
    "width": 1350,
    "height": 940,
    "deviceScaleFactor": 1,
    "disabled": False,
}
MOBILE_THROTTLING: dict[str, Any] = {
    "rttMs": 150,
    "throughputKbps": 1638.4,
    "requestLatencyMs": 562.5,
    "downloadThroughputKbps": 1474.56,
    "uploadThroughputKbps": 675,
    "cpuSlowdownMultiplier": 4,
}


def _camel_to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class GatherSettings:
    """Run-wide settings. Flags from callers are overlaid via `with_flags`."""

    form_factor: str = "mobile"
    throttling_method: str = "simulate"
    throttling: dict[str, Any] = field(default_factory=lambda: dict(MOBILE_THROTTLING))
    screen_emulation: dict[str, Any] = field(default_factory=lambda: dict(MOBILE_SCREEN_EMULATION))
    emulated_user_agent: str | bool = True
    max_wait_for_load: float = 45_000
    max_wait_for_fcp: float = 30_000
    pause_after_fcp_ms: float = 1_000
    pause_after_load_ms: float = 1_000
    skip_about_blank: bool = False
    disable_storage_reset: bool = False
    blocked_url_patterns: list[str] = field(default_factory=list)
    additional_trace_categories: list[str] = field(default_factory=list)
    extra_headers: dict[str, str] | None = None
    channel: str = "python"
    locale: str = "en-US"
    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    protocol_timeout: float = 30.0

    @staticmethod
    def normalize_form_factor(raw: str | None) -> str:
        value = (raw or "").strip().lower()
        if value in {"desktop", "pc"}:
            return "desktop"
        return "mobile"

    @staticmethod
    def normalize_throttling_method(raw: str | None) -> str:
        value = (raw or "").strip().lower()
        if value in {"devtools", "provided"}:
            return value
        return "simulate"

    @classmethod
    def from_env(cls) -> GatherSettings:
        form_factor = cls.normalize_form_factor(os.environ.get("PAGE_AUDIT_FORM_FACTOR"))
        method = cls.normalize_throttling_method(os.environ.get("PAGE_AUDIT_THROTTLING_METHOD"))
        blocked_raw = os.environ.get("PAGE_AUDIT_BLOCKED_URL_PATTERNS", "")
        blocked = [pattern.strip() for pattern in blocked_raw.split(",") if pattern.strip()]
        settings = cls(
            form_factor=form_factor,
            throttling_method=method,
            screen_emulation=dict(DESKTOP_SCREEN_EMULATION if form_factor == "desktop" else MOBILE_SCREEN_EMULATION),
            max_wait_for_load=float(os.environ.get("PAGE_AUDIT_MAX_WAIT_FOR_LOAD", "45000")),
            max_wait_for_fcp=float(os.environ.get("PAGE_AUDIT_MAX_WAIT_FOR_FCP", "30000")),
            skip_about_blank=_env_flag("PAGE_AUDIT_SKIP_ABOUT_BLANK"),
            disable_storage_reset=_env_flag("PAGE_AUDIT_DISABLE_STORAGE_RESET"),
            blocked_url_patterns=blocked,
            cdp_host=os.environ.get("PAGE_AUDIT_CDP_HOST", "127.0.0.1"),
            cdp_port=int(os.environ.get("PAGE_AUDIT_CDP_PORT", "9222")),
            protocol_timeout=float(os.environ.get("PAGE_AUDIT_PROTOCOL_TIMEOUT", "30")),
        )
        return settings

    def with_flags(self, flags: dict[str, Any] | None) -> GatherSettings:
        """Return a copy with `flags` overlaid. Keys may be camelCase or snake_case.

        Dict-valued settings are merged key by key; unknown keys are ignored.
        """
        if not flags:
            return replace(self)
        known = {f.name for f in fields(self)}
        updates: dict[str, Any] = {}
        for raw_key, value in flags.items():
            key = _camel_to_snake(raw_key)
            if key not in known:
                logger.debug("ignoring unknown settings flag %s", raw_key)
                continue
            current = getattr(self, key)
            if isinstance(current, dict) and isinstance(value, dict):
                merged = dict(current)
                merged.update(value)
                updates[key] = merged
            else:
                updates[key] = copy.deepcopy(value)
        if "form_factor" in updates:
            updates["form_factor"] = self.normalize_form_factor(updates["form_factor"])
        return replace(self, **updates)


@dataclass
class GathererDefn:
    instance: Gatherer

    @property
    def name(self) -> str:
        return self.instance.name


@dataclass
class ArtifactDefn:
    """One declared artifact. `dependencies` maps a dependency key to the producer artifact id."""

    id: str
    gatherer: Gatherer
    dependencies: dict[str, str] = field(default_factory=dict)


@dataclass
class PassDefn:
    pass_name: str = "defaultPass"
    load_failure_mode: str = "fatal"
    record_trace: bool = False
    use_throttling: bool = False
    blank_page: str = DEFAULT_BLANK_PAGE
    blocked_url_patterns: list[str] = field(default_factory=list)
    gatherers: list[GathererDefn] = field(default_factory=list)


@dataclass
class NavigationDefn:
    id: str = "default"
    load_failure_mode: str = "fatal"
    disable_throttling: bool = False
    disable_storage_reset: bool = False
    pause_after_fcp_ms: float | None = None
    pause_after_load_ms: float | None = None
    network_quiet_threshold_ms: float = 1_000
    cpu_quiet_threshold_ms: float = 1_000
    blank_page: str = DEFAULT_BLANK_PAGE
    artifacts: list[ArtifactDefn] = field(default_factory=list)


@dataclass
class GatherConfig:
    settings: GatherSettings
    artifacts: list[ArtifactDefn] = field(default_factory=list)
    navigations: list[NavigationDefn] | None = None
    passes: list[PassDefn] | None = None


def _load_failure_mode(raw: Any) -> str:
    mode = str(raw or "fatal").strip().lower()
    if mode not in LOAD_FAILURE_MODES:
        raise ConfigError(f"Invalid loadFailureMode: {raw}")
    return mode


def _gatherer_instance(raw: Any) -> Gatherer:
    from .gatherers.base import Gatherer

    instance = raw.get("instance") if isinstance(raw, dict) else raw
    if not isinstance(instance, Gatherer):
        raise ConfigError(f"Gatherer must be a Gatherer instance, got {type(instance).__name__}")
    return instance


def _get(raw: dict[str, Any], camel: str, default: Any = None) -> Any:
    if camel in raw:
        return raw[camel]
    return raw.get(_camel_to_snake(camel), default)


def _resolve_settings(config: dict[str, Any], flags: dict[str, Any] | None) -> GatherSettings:
    settings = config.get("settings")
    if not isinstance(settings, GatherSettings):
        settings = GatherSettings().with_flags(settings if isinstance(settings, dict) else None)
    return settings.with_flags(flags)


def _artifact_defns(raw_artifacts: list[Any]) -> list[ArtifactDefn]:
    defns: list[ArtifactDefn] = []
    seen: set[str] = set()
    for raw in raw_artifacts:
        if isinstance(raw, ArtifactDefn):
            defn = raw
        else:
            defn = ArtifactDefn(id=str(raw["id"]), gatherer=_gatherer_instance(raw["gatherer"]))
        if defn.id in seen:
            raise ConfigError(f"Duplicate artifact id: {defn.id}")
        seen.add(defn.id)
        if not defn.dependencies:
            defn.dependencies = _resolve_dependencies(defn, defns)
        defns.append(defn)
    return defns


def _resolve_dependencies(defn: ArtifactDefn, earlier: list[ArtifactDefn]) -> dict[str, str]:
    resolved: dict[str, str] = {}
    for key, symbol in defn.gatherer.meta.dependencies.items():
        producer = next((prior for prior in earlier if prior.gatherer.meta.symbol == symbol), None)
        if producer is None:
            raise ConfigError(f"Dependency {key!r} of artifact {defn.id!r} has no earlier producer")
        resolved[key] = producer.id
    return resolved


def filter_artifacts_by_mode(artifacts: list[ArtifactDefn], mode: str) -> list[ArtifactDefn]:
    """Keep artifacts whose gatherer supports `mode`, then drop dependents of dropped producers."""
    kept: list[ArtifactDefn] = []
    kept_ids: set[str] = set()
    for defn in artifacts:
        if mode not in defn.gatherer.meta.supported_modes:
            logger.debug("skipping %s: gatherer does not support %s mode", defn.id, mode)
            continue
        missing = [dep for dep in defn.dependencies.values() if dep not in kept_ids]
        if missing:
            logger.debug("skipping %s: dependencies filtered out (%s)", defn.id, ", ".join(missing))
            continue
        kept.append(defn)
        kept_ids.add(defn.id)
    return kept


def _navigation_defns(raw_navigations: list[Any] | None, artifacts: list[ArtifactDefn]) -> list[NavigationDefn]:
    by_id = {defn.id: defn for defn in artifacts}
    if not raw_navigations:
        return [NavigationDefn(artifacts=list(artifacts))]

    navigations: list[NavigationDefn] = []
    for raw in raw_navigations:
        if isinstance(raw, NavigationDefn):
            navigations.append(raw)
            continue
        ids = raw.get("artifacts") or []
        navigation = NavigationDefn(
            id=str(raw.get("id") or "default"),
            load_failure_mode=_load_failure_mode(_get(raw, "loadFailureMode")),
            disable_throttling=bool(_get(raw, "disableThrottling", False)),
            disable_storage_reset=bool(_get(raw, "disableStorageReset", False)),
            pause_after_fcp_ms=_get(raw, "pauseAfterFcpMs"),
            pause_after_load_ms=_get(raw, "pauseAfterLoadMs"),
            network_quiet_threshold_ms=float(_get(raw, "networkQuietThresholdMs", 1_000)),
            cpu_quiet_threshold_ms=float(_get(raw, "cpuQuietThresholdMs", 1_000)),
            blank_page=str(_get(raw, "blankPage", DEFAULT_BLANK_PAGE)),
            artifacts=[by_id[artifact_id] for artifact_id in ids if artifact_id in by_id],
        )
        navigations.append(navigation)

    if len({navigation.id for navigation in navigations}) != len(navigations):
        raise ConfigError("Navigation ids must be unique")
    return navigations


def initialize_config(
    gather_mode: str,
    config: dict[str, Any] | None = None,
    flags: dict[str, Any] | None = None,
) -> GatherConfig:
    """Build a `GatherConfig` for one of the instrumentation-based gather modes."""
    if gather_mode not in GATHER_MODES:
        raise ConfigError(f"Unknown gather mode: {gather_mode}")
    config = dict(config or {})
    settings = _resolve_settings(config, flags)

    raw_artifacts = config.get("artifacts")
    if raw_artifacts is None:
        from .gatherers import default_artifacts

        raw_artifacts = default_artifacts()
    artifacts = filter_artifacts_by_mode(_artifact_defns(list(raw_artifacts)), gather_mode)

    navigations = None
    if gather_mode == "navigation":
        navigations = _navigation_defns(config.get("navigations"), artifacts)

    return GatherConfig(settings=settings, artifacts=artifacts, navigations=navigations)


def initialize_legacy_config(config: dict[str, Any] | None = None, flags: dict[str, Any] | None = None) -> GatherConfig:
    """Build a pass-based `GatherConfig` for the legacy runner."""
    config = dict(config or {})
    settings = _resolve_settings(config, flags)

    raw_passes = config.get("passes")
    if raw_passes is None:
        from .gatherers import default_passes

        raw_passes = default_passes()

    passes: list[PassDefn] = []
    for raw in raw_passes:
        if isinstance(raw, PassDefn):
            passes.append(raw)
            continue
        passes.append(
            PassDefn(
                pass_name=str(_get(raw, "passName", "defaultPass")),
                load_failure_mode=_load_failure_mode(_get(raw, "loadFailureMode")),
                record_trace=bool(_get(raw, "recordTrace", False)),
                use_throttling=bool(_get(raw, "useThrottling", False)),
                blank_page=str(_get(raw, "blankPage", DEFAULT_BLANK_PAGE)),
                blocked_url_patterns=list(_get(raw, "blockedUrlPatterns", []) or []),
                gatherers=[GathererDefn(_gatherer_instance(g)) for g in (raw.get("gatherers") or [])],
            )
        )

    names = [p.pass_name for p in passes]
    if len(set(names)) != len(names):
        raise ConfigError("Pass names must be unique")
    return GatherConfig(settings=settings, passes=passes)


__all__ = [
    "DEFAULT_BLANK_PAGE",
    "GATHER_MODES",
    "LOAD_FAILURE_MODES",
    "ArtifactDefn",
    "GatherConfig",
    "GatherSettings",
    "GathererDefn",
    "NavigationDefn",
    "PassDefn",
    "filter_artifacts_by_mode",
    "initialize_config",
    "initialize_legacy_config",
]
