"""Load, validate, and hot-reload the Lunara adaptive engine configuration.

The config lives in ``adaptive_config.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_adaptive_config()`` to
re-read from disk after an admin update without a restart.

Usage::

    from src.adaptive.config_loader import get_adaptive_config

    config = get_adaptive_config()
    learning = config.maturity.learning        # ThresholdSet(days=7, ...)
    gate = config.feature("calendar_view")     # FeatureDefinition
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

logger = logging.getLogger("lunara.adaptive.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "adaptive_config.yaml"

MATURITY_LEVELS = ("discovery", "learning", "autonomous")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ThresholdSet:
    """Minimum counters required to enter a maturity tier."""

    days: int
    conversations: int
    entries: int
    cycles: int = 0


@dataclass(frozen=True)
class MaturityConfig:
    """Tier thresholds and confidence formula constants."""

    learning: ThresholdSet
    autonomous: ThresholdSet
    discovery_per_day: int = 10
    learning_base: int = 40
    learning_per_phase: int = 15
    autonomous_base: int = 70
    autonomous_per_signal: int = 10

    def thresholds_for(self, level: str) -> ThresholdSet | None:
        if level == "learning":
            return self.learning
        if level == "autonomous":
            return self.autonomous
        return None


@dataclass(frozen=True)
class EngagementScoreConfig:
    """Weights of the composite 0–100 engagement score."""

    days_used: float = 5
    conversations_completed: float = 10
    phases_explored: float = 25
    autonomy_signals: float = 20
    divisor: float = 4


@dataclass(frozen=True)
class FeatureDefinition:
    """A single entry of the static feature-gate registry.

    Attributes:
        key:          Registry key (e.g. 'calendar_view').
        category:     Grouping used in the evaluation summary.
        description:  Human-readable feature label.
        tier:         'progressive', 'autonomous' or 'social'.
        requirements: Read-only mapping of metric path → threshold.  A path
                      is a plain counter name, ``intelligence.<field>``,
                      ``maturityLevel`` (level or list of levels) or
                      ``phasesExplored`` (compared by set size).
    """

    key: str
    category: str
    description: str
    tier: str
    requirements: Mapping[str, Any]


@dataclass(frozen=True)
class FeatureCacheConfig:
    """Bounded evaluation cache settings."""

    capacity: int = 50
    confidence_bucket: int = 10


@dataclass(frozen=True)
class CycleConfig:
    """Calendar defaults and validation bounds for cycle data."""

    default_length: int = 28
    default_period_duration: int = 5
    min_length: int = 21
    max_length: int = 45
    min_period_duration: int = 2
    max_period_duration: int = 10
    follicular_end_fraction: float = 0.4
    ovulatory_end_fraction: float = 0.6


@dataclass(frozen=True)
class ObservationConfig:
    """Observation intake limits."""

    history_limit: int = 90
    notes_max_length: int = 500
    default_feeling: int = 3
    default_energy: int = 3
    analysis_window: int = 30


@dataclass(frozen=True)
class PhaseInferenceConfig:
    """Constants of the observation/prediction fusion."""

    recent_window: int = 7
    max_analyzed: int = 50
    confidence_threshold: float = 0.4
    pattern_boost: float = 0.2
    pattern_boost_min_occurrences: int = 5
    guidance_min_observations: int = 3


@dataclass
class AdaptiveConfig:
    """Complete, validated adaptive engine configuration.

    This is the single in-memory representation of adaptive_config.yaml.
    The tracker, gate, observation engine and composer all read from it.
    """

    version: str
    maturity: MaturityConfig
    engagement_score: EngagementScoreConfig
    features: Mapping[str, FeatureDefinition]
    feature_cache: FeatureCacheConfig
    observations: ObservationConfig
    phase_inference: PhaseInferenceConfig
    cycle: CycleConfig = field(default_factory=CycleConfig)
    _raw: dict = field(default_factory=dict, repr=False)

    def feature(self, key: str) -> FeatureDefinition | None:
        """Return the registry entry for ``key`` or None if unregistered."""
        return self.features.get(key)

    def features_in_category(self, category: str) -> list[str]:
        return [k for k, f in self.features.items() if f.category == category]


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when adaptive_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Adaptive config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _as_int(value: Any, name: str, errors: list[str], default: int = 0) -> int:
    if value is None:
        return default
    try:
        result = int(value)
    except (TypeError, ValueError):
        errors.append(f"{name} must be an integer, got {value!r}")
        return default
    if result < 0:
        errors.append(f"{name} = {result} must not be negative")
    return result


def _as_float(value: Any, name: str, errors: list[str], default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        errors.append(f"{name} must be a number, got {value!r}")
        return default


def _build_thresholds(raw: dict, tier: str, errors: list[str]) -> ThresholdSet:
    section = f"maturity.thresholds.{tier}"
    if not isinstance(raw, dict):
        errors.append(f"'{section}' section is missing or not a mapping")
        raw = {}
    return ThresholdSet(
        days=_as_int(raw.get("days"), f"{section}.days", errors),
        conversations=_as_int(raw.get("conversations"), f"{section}.conversations", errors),
        entries=_as_int(raw.get("entries"), f"{section}.entries", errors),
        cycles=_as_int(raw.get("cycles"), f"{section}.cycles", errors),
    )


def _build_feature(key: str, raw: Any, errors: list[str]) -> FeatureDefinition | None:
    if not isinstance(raw, dict):
        errors.append(f"feature_gates.{key} must be a mapping")
        return None

    reqs_raw = raw.get("requirements")
    if not isinstance(reqs_raw, dict) or not reqs_raw:
        errors.append(f"feature_gates.{key}.requirements is missing or empty")
        return None

    requirements: dict[str, Any] = {}
    for path, required in reqs_raw.items():
        name = f"feature_gates.{key}.requirements.{path}"
        if path == "maturityLevel":
            levels = required if isinstance(required, list) else [required]
            unknown = [lvl for lvl in levels if lvl not in MATURITY_LEVELS]
            if unknown:
                errors.append(f"{name} has unknown maturity level(s) {unknown!r}")
            requirements[path] = tuple(levels) if isinstance(required, list) else required
            continue
        threshold = _as_float(required, name, errors)
        if threshold < 0:
            errors.append(f"{name} = {threshold} must not be negative")
        requirements[path] = threshold

    return FeatureDefinition(
        key=key,
        category=str(raw.get("category", "general")),
        description=str(raw.get("description", key)),
        tier=str(raw.get("tier", "progressive")),
        requirements=MappingProxyType(requirements),
    )


def _validate_and_build(raw: dict) -> AdaptiveConfig:
    """Validate the raw YAML dict and construct an AdaptiveConfig.

    Performs structural validation and applies defaults for optional fields.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Maturity ──
    mat_raw = raw.get("maturity") or {}
    thr_raw = mat_raw.get("thresholds") or {}
    conf_raw = mat_raw.get("confidence") or {}
    if not thr_raw:
        errors.append("'maturity.thresholds' section is missing or empty")
    maturity = MaturityConfig(
        learning=_build_thresholds(thr_raw.get("learning"), "learning", errors),
        autonomous=_build_thresholds(thr_raw.get("autonomous"), "autonomous", errors),
        discovery_per_day=_as_int(conf_raw.get("discovery_per_day"), "maturity.confidence.discovery_per_day", errors, 10),
        learning_base=_as_int(conf_raw.get("learning_base"), "maturity.confidence.learning_base", errors, 40),
        learning_per_phase=_as_int(conf_raw.get("learning_per_phase"), "maturity.confidence.learning_per_phase", errors, 15),
        autonomous_base=_as_int(conf_raw.get("autonomous_base"), "maturity.confidence.autonomous_base", errors, 70),
        autonomous_per_signal=_as_int(conf_raw.get("autonomous_per_signal"), "maturity.confidence.autonomous_per_signal", errors, 10),
    )

    # ── Engagement score ──
    es_raw = raw.get("engagement_score") or {}
    w_raw = es_raw.get("weights") or {}
    engagement_score = EngagementScoreConfig(
        days_used=_as_float(w_raw.get("days_used"), "engagement_score.weights.days_used", errors, 5),
        conversations_completed=_as_float(
            w_raw.get("conversations_completed"), "engagement_score.weights.conversations_completed", errors, 10
        ),
        phases_explored=_as_float(w_raw.get("phases_explored"), "engagement_score.weights.phases_explored", errors, 25),
        autonomy_signals=_as_float(w_raw.get("autonomy_signals"), "engagement_score.weights.autonomy_signals", errors, 20),
        divisor=_as_float(es_raw.get("divisor"), "engagement_score.divisor", errors, 4),
    )
    if engagement_score.divisor <= 0:
        errors.append("engagement_score.divisor must be positive")

    # ── Feature gates ──
    gates_raw = raw.get("feature_gates") or {}
    if not gates_raw:
        errors.append("'feature_gates' section is missing or empty")
    features: dict[str, FeatureDefinition] = {}
    for key, gate_raw in gates_raw.items():
        definition = _build_feature(str(key), gate_raw, errors)
        if definition is not None:
            features[definition.key] = definition

    # ── Cache ──
    fc_raw = raw.get("feature_cache") or {}
    feature_cache = FeatureCacheConfig(
        capacity=_as_int(fc_raw.get("capacity"), "feature_cache.capacity", errors, 50),
        confidence_bucket=_as_int(fc_raw.get("confidence_bucket"), "feature_cache.confidence_bucket", errors, 10),
    )
    if feature_cache.capacity < 1:
        errors.append("feature_cache.capacity must be at least 1")
    if feature_cache.confidence_bucket < 1:
        errors.append("feature_cache.confidence_bucket must be at least 1")

    # ── Cycle ──
    cy_raw = raw.get("cycle") or {}
    cycle = CycleConfig(
        default_length=_as_int(cy_raw.get("default_length"), "cycle.default_length", errors, 28),
        default_period_duration=_as_int(
            cy_raw.get("default_period_duration"), "cycle.default_period_duration", errors, 5
        ),
        min_length=_as_int(cy_raw.get("min_length"), "cycle.min_length", errors, 21),
        max_length=_as_int(cy_raw.get("max_length"), "cycle.max_length", errors, 45),
        min_period_duration=_as_int(cy_raw.get("min_period_duration"), "cycle.min_period_duration", errors, 2),
        max_period_duration=_as_int(cy_raw.get("max_period_duration"), "cycle.max_period_duration", errors, 10),
        follicular_end_fraction=_as_float(
            cy_raw.get("follicular_end_fraction"), "cycle.follicular_end_fraction", errors, 0.4
        ),
        ovulatory_end_fraction=_as_float(
            cy_raw.get("ovulatory_end_fraction"), "cycle.ovulatory_end_fraction", errors, 0.6
        ),
    )
    if not (cycle.min_length <= cycle.default_length <= cycle.max_length):
        errors.append(
            f"cycle.default_length = {cycle.default_length} is outside "
            f"[{cycle.min_length}, {cycle.max_length}]"
        )
    if not (0.0 < cycle.follicular_end_fraction < cycle.ovulatory_end_fraction < 1.0):
        errors.append("cycle phase fractions must satisfy 0 < follicular < ovulatory < 1")

    # ── Observations ──
    obs_raw = raw.get("observations") or {}
    observations = ObservationConfig(
        history_limit=_as_int(obs_raw.get("history_limit"), "observations.history_limit", errors, 90),
        notes_max_length=_as_int(obs_raw.get("notes_max_length"), "observations.notes_max_length", errors, 500),
        default_feeling=_as_int(obs_raw.get("default_feeling"), "observations.default_feeling", errors, 3),
        default_energy=_as_int(obs_raw.get("default_energy"), "observations.default_energy", errors, 3),
        analysis_window=_as_int(obs_raw.get("analysis_window"), "observations.analysis_window", errors, 30),
    )
    if observations.history_limit < 1 or observations.analysis_window < 1:
        errors.append("observations.history_limit and analysis_window must be at least 1")

    # ── Phase inference ──
    pi_raw = raw.get("phase_inference") or {}
    phase_inference = PhaseInferenceConfig(
        recent_window=_as_int(pi_raw.get("recent_window"), "phase_inference.recent_window", errors, 7),
        max_analyzed=_as_int(pi_raw.get("max_analyzed"), "phase_inference.max_analyzed", errors, 50),
        confidence_threshold=_as_float(
            pi_raw.get("confidence_threshold"), "phase_inference.confidence_threshold", errors, 0.4
        ),
        pattern_boost=_as_float(pi_raw.get("pattern_boost"), "phase_inference.pattern_boost", errors, 0.2),
        pattern_boost_min_occurrences=_as_int(
            pi_raw.get("pattern_boost_min_occurrences"), "phase_inference.pattern_boost_min_occurrences", errors, 5
        ),
        guidance_min_observations=_as_int(
            pi_raw.get("guidance_min_observations"), "phase_inference.guidance_min_observations", errors, 3
        ),
    )
    if not (0.0 <= phase_inference.confidence_threshold <= 1.0):
        errors.append(
            f"phase_inference.confidence_threshold = {phase_inference.confidence_threshold} "
            "is out of range [0.0, 1.0]"
        )

    if errors:
        raise ConfigValidationError(
            f"adaptive_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return AdaptiveConfig(
        version=version,
        maturity=maturity,
        engagement_score=engagement_score,
        features=MappingProxyType(features),
        feature_cache=feature_cache,
        observations=observations,
        phase_inference=phase_inference,
        cycle=cycle,
        _raw=raw,
    )


def load_adaptive_config(path: Path | None = None) -> AdaptiveConfig:
    """Load and validate the adaptive config from disk.

    Args:
        path: Override path to YAML. Uses the bundled adaptive_config.yaml by default.

    Returns:
        Validated AdaptiveConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info(
        "Loaded adaptive config v%s from %s (%d feature gates)",
        config.version,
        target,
        len(config.features),
    )
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: AdaptiveConfig | None = None
_config_lock = threading.Lock()


def get_adaptive_config() -> AdaptiveConfig:
    """Return the global AdaptiveConfig, loading it on first call.

    Thread-safe.  Use ``reload_adaptive_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_adaptive_config()
    return _config


def reload_adaptive_config(path: Path | None = None) -> AdaptiveConfig:
    """Reload the adaptive config from disk and replace the global instance.

    If validation fails, the old config is retained and the error is re-raised.
    Engines constructed before the reload keep the config they were given.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_adaptive_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded adaptive config: %s → %s", old_version, new_config.version)
    return new_config
