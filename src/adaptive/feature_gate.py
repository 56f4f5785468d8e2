"""Progressive feature gating.

A static registry (``feature_gates`` in adaptive_config.yaml) maps each
feature key to a set of requirements.  A feature is *available* when every
requirement passes; its *progress* gives partial credit:

    progress = mean over checks of (100 if passed else min(100, current / required * 100))

Full evaluations are cached per metrics fingerprint: identical relevant
metrics return the identical cached object, and any relevant change yields a
different fingerprint and therefore a fresh evaluation.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping

from src.adaptive.base import round_half_up, safe_count
from src.adaptive.cache import BoundedCache
from src.adaptive.config_loader import AdaptiveConfig, FeatureDefinition, get_adaptive_config
from src.adaptive.engagement import EngagementMetrics

logger = logging.getLogger("lunara.adaptive.feature_gate")

# Registry metric path → EngagementMetrics attribute
METRIC_PATHS: dict[str, str] = {
    "daysUsed": "days_used",
    "sessionsCount": "sessions_count",
    "totalTimeSpent": "total_time_spent",
    "conversationsStarted": "conversations_started",
    "conversationsCompleted": "conversations_completed",
    "notebookEntriesCreated": "notebook_entries_created",
    "cycleTrackedDays": "cycle_tracked_days",
    "insightsSaved": "insights_saved",
    "vignettesEngaged": "vignettes_engaged",
    "cyclesCompleted": "cycles_completed",
    "autonomySignals": "autonomy_signals",
}

_INTELLIGENCE_PREFIX = "intelligence."
_MATURITY_PATH = "maturityLevel"
_PHASES_PATH = "phasesExplored"

_ACTION_MESSAGES: dict[str, str] = {
    "daysUsed": "Use the app {n} more day{s}",
    "conversationsStarted": "Start {n} conversation{s} with your companion",
    "conversationsCompleted": "Finish {n} conversation{s}",
    "notebookEntriesCreated": "Write {n} notebook entr{ies}",
    "cycleTrackedDays": "Track your cycle on {n} more day{s}",
    "insightsSaved": "Save {n} insight{s}",
    "phasesExplored": "Explore {n} more cycle phase{s}",
    "cyclesCompleted": "Complete {n} full cycle{s}",
    "autonomySignals": "Keep connecting how you feel with your cycle",
    "intelligence.confidence": "Keep interacting to improve personalization",
    "intelligence.patterns": "Log observations regularly so patterns can emerge",
    "maturityLevel": "Keep going to reach the next stage of your journey",
}


@dataclass(frozen=True)
class FeatureCheck:
    """Outcome of one requirement of one feature."""

    metric: str
    required: Any
    current: Any
    passed: bool


@dataclass(frozen=True)
class FeatureEvaluationResult:
    """Evaluation of a single feature.

    ``found`` is False for keys missing from the registry; such results are
    never available and carry no checks.
    """

    key: str
    found: bool
    available: bool
    progress: int
    checks: tuple[FeatureCheck, ...] = ()
    next_unmet_requirement: FeatureCheck | None = None
    category: str | None = None
    description: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class FeatureEvaluation:
    """Evaluation of the whole registry plus its summary."""

    fingerprint: str
    features: Mapping[str, FeatureEvaluationResult]
    summary: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProgressionSuggestion:
    feature_key: str
    description: str
    action: str
    progress: int
    priority: str


def _not_found(key: str) -> FeatureEvaluationResult:
    return FeatureEvaluationResult(
        key=key, found=False, available=False, progress=0, reason="Feature not found"
    )


def _check_progress(check: FeatureCheck) -> float:
    if check.passed:
        return 100.0
    if check.metric == _MATURITY_PATH:
        return 0.0
    required = safe_count(check.required)
    if required <= 0:
        return 100.0
    return min(100.0, safe_count(check.current) / required * 100.0)


def _action_for(check: FeatureCheck) -> str:
    template = _ACTION_MESSAGES.get(check.metric)
    if template is None:
        return f"Make progress on {check.metric}"
    if check.metric == _MATURITY_PATH:
        return template
    remaining = max(1, math.ceil(safe_count(check.required) - safe_count(check.current)))
    plural = remaining > 1
    return template.format(
        n=remaining,
        s="s" if plural else "",
        ies="ies" if plural else "y",
    )


class FeatureGate:
    """Evaluate the feature registry against engagement state.

    Usage::

        gate = FeatureGate()
        result = gate.evaluate_feature("calendar_view", metrics, signals, "discovery")
        evaluation = gate.evaluate_all_features(metrics, signals, "learning")
        evaluation.summary["available"]
    """

    def __init__(self, config: AdaptiveConfig | None = None) -> None:
        self._config = config or get_adaptive_config()
        self._cache: BoundedCache[str, FeatureEvaluation] = BoundedCache(
            self._config.feature_cache.capacity
        )
        self._consulted_paths = sorted(
            {path for f in self._config.features.values() for path in f.requirements}
        )
        self.evaluations_computed = 0

    @property
    def registry(self) -> Mapping[str, FeatureDefinition]:
        return self._config.features

    # ------------------------------------------------------------------
    # Single feature
    # ------------------------------------------------------------------

    def evaluate_feature(
        self,
        key: str,
        metrics: EngagementMetrics,
        intelligence: Mapping[str, Any] | None,
        maturity_level: str,
    ) -> FeatureEvaluationResult:
        """Evaluate one registry entry.

        Args:
            key:            Feature key.
            metrics:        Current engagement metrics.
            intelligence:   Derived intelligence signals (``confidence``, ``patterns``).
            maturity_level: Current maturity level.

        Returns:
            FeatureEvaluationResult; ``found=False`` for an unregistered key.
        """
        feature = self._config.feature(key)
        if feature is None:
            return _not_found(key)

        signals = intelligence or {}
        checks = tuple(
            self._check(path, required, metrics, signals, maturity_level)
            for path, required in feature.requirements.items()
        )
        progress = sum(_check_progress(c) for c in checks) / len(checks) if checks else 100.0

        return FeatureEvaluationResult(
            key=key,
            found=True,
            available=all(c.passed for c in checks),
            progress=round_half_up(progress),
            checks=checks,
            next_unmet_requirement=next((c for c in checks if not c.passed), None),
            category=feature.category,
            description=feature.description,
        )

    def _check(
        self,
        path: str,
        required: Any,
        metrics: EngagementMetrics,
        intelligence: Mapping[str, Any],
        maturity_level: str,
    ) -> FeatureCheck:
        if path == _MATURITY_PATH:
            levels = tuple(required) if isinstance(required, (list, tuple)) else (required,)
            return FeatureCheck(
                metric=path,
                required=levels,
                current=maturity_level,
                passed=maturity_level in levels,
            )

        current = self._current_value(path, metrics, intelligence)
        return FeatureCheck(metric=path, required=required, current=current, passed=current >= required)

    @staticmethod
    def _current_value(
        path: str, metrics: EngagementMetrics, intelligence: Mapping[str, Any]
    ) -> float:
        if path.startswith(_INTELLIGENCE_PREFIX):
            return safe_count(intelligence.get(path[len(_INTELLIGENCE_PREFIX):]))
        if path == _PHASES_PATH:
            phases = metrics.phases_explored
            return float(len(phases)) if isinstance(phases, (set, list, tuple)) else 0.0
        attr = METRIC_PATHS.get(path)
        if attr is None:
            logger.warning("Feature requirement references unknown metric %r", path)
            return 0.0
        return safe_count(getattr(metrics, attr, 0))

    # ------------------------------------------------------------------
    # Whole registry (cached)
    # ------------------------------------------------------------------

    def fingerprint(
        self,
        metrics: EngagementMetrics,
        intelligence: Mapping[str, Any] | None,
        maturity_level: str,
    ) -> str:
        """Build the cache key for an evaluation.

        Covers exactly the values the registry consults: every referenced
        counter, the explored-phase count, every referenced intelligence
        signal (``confidence`` bucketed to ``feature_cache.confidence_bucket``
        to reduce churn) and the maturity level.
        """
        signals = intelligence or {}
        bucket = self._config.feature_cache.confidence_bucket
        parts = []
        for path in self._consulted_paths:
            if path == _MATURITY_PATH:
                continue
            value = self._current_value(path, metrics, signals)
            if path == "intelligence.confidence":
                value = math.floor(value / bucket)
            parts.append(f"{path}={value:g}")
        parts.append(f"{_MATURITY_PATH}={maturity_level}")
        return "|".join(parts)

    def evaluate_all_features(
        self,
        metrics: EngagementMetrics,
        intelligence: Mapping[str, Any] | None,
        maturity_level: str,
    ) -> FeatureEvaluation:
        """Evaluate the full registry, reusing a cached result when possible.

        Returns:
            The cached FeatureEvaluation object on a fingerprint hit, otherwise
            a freshly computed one (which is then cached).
        """
        key = self.fingerprint(metrics, intelligence, maturity_level)
        cached = self._cache.get(key)
        if cached is not None:
            if self._is_well_formed(cached, key):
                logger.debug("Feature evaluation cache hit: %s", key)
                return cached
            logger.warning("Malformed feature cache entry for %s, recomputing", key)
            self._cache.discard(key)

        results = {
            feature_key: self.evaluate_feature(feature_key, metrics, intelligence, maturity_level)
            for feature_key in self._config.features
        }
        evaluation = FeatureEvaluation(
            fingerprint=key,
            features=results,
            summary={
                "available": sum(1 for r in results.values() if r.available),
                "total": len(results),
                "categories": self._category_status(results),
            },
        )
        self.evaluations_computed += 1
        self._cache.put(key, evaluation)
        return evaluation

    def _is_well_formed(self, entry: object, key: str) -> bool:
        return (
            isinstance(entry, FeatureEvaluation)
            and entry.fingerprint == key
            and set(entry.features) == set(self._config.features)
            and isinstance(entry.summary, dict)
            and "available" in entry.summary
        )

    @staticmethod
    def _category_status(results: Mapping[str, FeatureEvaluationResult]) -> dict[str, dict[str, int]]:
        categories: dict[str, dict[str, int]] = {}
        for result in results.values():
            status = categories.setdefault(result.category or "general", {"available": 0, "total": 0})
            status["total"] += 1
            if result.available:
                status["available"] += 1
        return categories

    # ------------------------------------------------------------------
    # Suggestions & helpers
    # ------------------------------------------------------------------

    def get_progression_suggestions(
        self,
        metrics: EngagementMetrics,
        intelligence: Mapping[str, Any] | None,
        maturity_level: str,
        limit: int = 3,
    ) -> list[ProgressionSuggestion]:
        """Suggest actions for the locked features closest to unlocking.

        Picks unavailable features with progress ≥ 50, highest progress first.
        """
        evaluation = self.evaluate_all_features(metrics, intelligence, maturity_level)
        near_unlock = sorted(
            (r for r in evaluation.features.values() if not r.available and r.progress >= 50),
            key=lambda r: r.progress,
            reverse=True,
        )[:limit]

        suggestions = []
        for result in near_unlock:
            check = result.next_unmet_requirement
            if check is None:
                continue
            suggestions.append(
                ProgressionSuggestion(
                    feature_key=result.key,
                    description=result.description or result.key,
                    action=_action_for(check),
                    progress=result.progress,
                    priority="high" if result.progress > 70 else "medium",
                )
            )
        return suggestions

    def is_feature_available(
        self,
        key: str,
        metrics: EngagementMetrics,
        intelligence: Mapping[str, Any] | None,
        maturity_level: str,
    ) -> bool:
        result = self.evaluate_all_features(metrics, intelligence, maturity_level).features.get(key)
        return bool(result and result.available)

    def get_available_features(
        self,
        metrics: EngagementMetrics,
        intelligence: Mapping[str, Any] | None,
        maturity_level: str,
    ) -> list[str]:
        evaluation = self.evaluate_all_features(metrics, intelligence, maturity_level)
        return [k for k, r in evaluation.features.items() if r.available]

    def get_features_by_category(self, category: str) -> list[str]:
        return self._config.features_in_category(category)

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)
