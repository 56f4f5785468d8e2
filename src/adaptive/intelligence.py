"""Long-term learning from observations.

``UserIntelligence`` keeps three things:

* a rolling window of the most recent observations (default 30) used for
  consistency and readiness analysis,
* one ``PhasePattern`` per cycle phase, accumulated additively,
* ``AutonomySignals`` counters, incremented when the user shows they are
  reasoning about their cycle independently of the calendar prediction.

From these it derives the signals the feature gate consults:

    confidence = min(40, window * 4) + min(30, phases with data * 8)
                 + min(30, autonomy signals * 5)          capped at 100
    patterns   = number of phases observed at least 3 times

Autonomy signals detected here leave through a caller-supplied sink so the
session can forward them to the engagement tracker.  This module never
touches the tracker itself.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from src.adaptive.base import (
    MODE_HYBRID,
    MODE_OBSERVATION,
    MODE_PREDICTIVE,
    PHASES,
    SIGNAL_CORRECTS_PREDICTION,
    SIGNAL_DETAILED_OBSERVATION,
    SIGNAL_MANUAL_PHASE_CHANGE,
    SIGNAL_PATTERN_RECOGNITION,
    clamp,
    is_valid_phase,
    safe_int,
)
from src.adaptive.config_loader import AdaptiveConfig, get_adaptive_config
from src.adaptive.cycle.observations import Observation

logger = logging.getLogger("lunara.adaptive.intelligence")

SignalSink = Callable[[str, dict], None]

# Minimum observations in a phase for it to count as a recognized pattern
PATTERN_MIN_OCCURRENCES = 3

# Readiness thresholds for the cycle mode
HYBRID_MIN_OBSERVATIONS = 5
HYBRID_MIN_CONSISTENCY = 0.4
OBSERVATION_MIN_OBSERVATIONS = 20
OBSERVATION_MIN_CONSISTENCY = 0.7

_SIGNAL_COUNTERS: dict[str, str] = {
    SIGNAL_CORRECTS_PREDICTION: "corrects_predictions",
    SIGNAL_MANUAL_PHASE_CHANGE: "manual_phase_changes",
    SIGNAL_DETAILED_OBSERVATION: "detailed_observations",
    SIGNAL_PATTERN_RECOGNITION: "pattern_recognitions",
}


@dataclass
class PhasePattern:
    """What the user typically reports during one phase.

    Attributes:
        symptom_counts: Frequency of each symptom label (lower-cased).
        mood_counts:    Frequency of each mood label (lower-cased).
        typical_energy: Energy of the latest observation in this phase.
        occurrences:    Observations recorded in this phase.
    """

    symptom_counts: Counter = field(default_factory=Counter)
    mood_counts: Counter = field(default_factory=Counter)
    typical_energy: int | None = None
    occurrences: int = 0

    @property
    def typical_symptoms(self) -> list[str]:
        return [s for s, _ in self.symptom_counts.most_common()]

    @property
    def typical_moods(self) -> list[str]:
        return [m for m, _ in self.mood_counts.most_common()]

    @property
    def top_symptom(self) -> str | None:
        return self.typical_symptoms[0] if self.symptom_counts else None

    @property
    def top_mood(self) -> str | None:
        return self.typical_moods[0] if self.mood_counts else None

    def add(self, observation: Observation) -> None:
        self.occurrences += 1
        self.symptom_counts.update(s.lower() for s in observation.symptoms)
        if observation.mood:
            self.mood_counts[observation.mood.lower()] += 1
        self.typical_energy = observation.energy

    def to_dict(self) -> dict[str, Any]:
        return {
            "symptom_counts": dict(self.symptom_counts),
            "mood_counts": dict(self.mood_counts),
            "typical_energy": self.typical_energy,
            "occurrences": self.occurrences,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> "PhasePattern":
        if not raw:
            return cls()

        def _counter(value: Any) -> Counter:
            if isinstance(value, Mapping):
                return Counter({str(k): max(0, safe_int(v) or 0) for k, v in value.items()})
            # Older snapshots stored plain lists of labels
            if isinstance(value, (list, tuple)):
                return Counter(str(v) for v in value)
            return Counter()

        occurrences = safe_int(raw.get("occurrences")) or 0
        return cls(
            symptom_counts=_counter(raw.get("symptom_counts", raw.get("typical_symptoms"))),
            mood_counts=_counter(raw.get("mood_counts", raw.get("typical_moods"))),
            typical_energy=safe_int(raw.get("typical_energy")),
            occurrences=max(0, occurrences),
        )


@dataclass
class AutonomySignals:
    corrects_predictions: int = 0
    manual_phase_changes: int = 0
    detailed_observations: int = 0
    pattern_recognitions: int = 0

    @property
    def total(self) -> int:
        return (
            self.corrects_predictions
            + self.manual_phase_changes
            + self.detailed_observations
            + self.pattern_recognitions
        )

    def to_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in _SIGNAL_COUNTERS.values()}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> "AutonomySignals":
        signals = cls()
        for name in _SIGNAL_COUNTERS.values():
            value = safe_int((raw or {}).get(name))
            setattr(signals, name, max(0, value) if value is not None else 0)
        return signals


@dataclass(frozen=True)
class ObservationReadiness:
    total_observations: int
    consistency: float
    confidence: int
    ready_for_hybrid: bool
    ready_for_observation: bool


class UserIntelligence:
    """Accumulate phase patterns and autonomy signals for one user.

    Usage::

        intelligence = UserIntelligence()
        intelligence.learn_from_observation(obs, signal_sink=sink)
        intelligence.signals()        # {'confidence': 12, 'patterns': 0}
        intelligence.cycle_mode()     # 'predictive'
    """

    def __init__(self, config: AdaptiveConfig | None = None) -> None:
        self._config = config or get_adaptive_config()
        self.window: deque[Observation] = deque(maxlen=self._config.observations.analysis_window)
        self.phase_patterns: dict[str, PhasePattern] = {p: PhasePattern() for p in PHASES}
        self.autonomy = AutonomySignals()
        self.total_observations = 0
        self._recognized_phases: set[str] = set()

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def learn_from_observation(
        self, observation: Observation, signal_sink: SignalSink | None = None
    ) -> None:
        """Fold one stored observation into the window and its phase pattern.

        The first time a phase's occurrences exceed the pattern-boost
        threshold a ``pattern_recognition`` signal is emitted.
        """
        self.window.append(observation)
        self.total_observations += 1

        phase = observation.phase
        if not is_valid_phase(phase):
            logger.debug("Observation %s has no phase, pattern not updated", observation.id)
            return

        pattern = self.phase_patterns[phase]
        pattern.add(observation)

        threshold = self._config.phase_inference.pattern_boost_min_occurrences
        if pattern.occurrences > threshold and phase not in self._recognized_phases:
            self._recognized_phases.add(phase)
            self._emit(
                SIGNAL_PATTERN_RECOGNITION,
                {"phase": phase, "occurrences": pattern.occurrences},
                signal_sink,
            )

    def track_autonomy_signal(self, signal_type: str, data: dict | None = None) -> bool:
        """Increment the counter for ``signal_type``.

        Returns:
            True if the signal type is known and was counted.
        """
        counter = _SIGNAL_COUNTERS.get(signal_type)
        if counter is None:
            logger.warning("Ignoring unknown autonomy signal %r", signal_type)
            return False
        setattr(self.autonomy, counter, getattr(self.autonomy, counter) + 1)
        logger.debug("Autonomy signal %s %s", signal_type, data or {})
        return True

    def _emit(self, signal_type: str, data: dict, sink: SignalSink | None) -> None:
        if sink is not None:
            sink(signal_type, data)
        else:
            self.track_autonomy_signal(signal_type, data)

    # ------------------------------------------------------------------
    # Derived signals
    # ------------------------------------------------------------------

    def phases_with_data(self) -> int:
        return sum(1 for p in self.phase_patterns.values() if p.occurrences > 0)

    def signals(self) -> dict[str, int]:
        """Gate-facing intelligence signals (``confidence`` 0–100, ``patterns``)."""
        confidence = (
            min(40, len(self.window) * 4)
            + min(30, self.phases_with_data() * 8)
            + min(30, self.autonomy.total * 5)
        )
        patterns = sum(
            1 for p in self.phase_patterns.values() if p.occurrences >= PATTERN_MIN_OCCURRENCES
        )
        return {"confidence": int(clamp(confidence, 0, 100)), "patterns": patterns}

    def consistency(self) -> float:
        """Share of days with an observation across the window's date span."""
        if not self.window:
            return 0.0
        days = {obs.observed_on for obs in self.window}
        span = (max(days) - min(days)).days + 1
        return len(days) / span

    def observation_readiness(self) -> ObservationReadiness:
        consistency = self.consistency()
        total = self.total_observations
        return ObservationReadiness(
            total_observations=total,
            consistency=round(consistency, 2),
            confidence=self.signals()["confidence"],
            ready_for_hybrid=total >= HYBRID_MIN_OBSERVATIONS and consistency > HYBRID_MIN_CONSISTENCY,
            ready_for_observation=(
                total >= OBSERVATION_MIN_OBSERVATIONS and consistency > OBSERVATION_MIN_CONSISTENCY
            ),
        )

    def cycle_mode(self) -> str:
        """How much the phase display should trust observations over the calendar."""
        readiness = self.observation_readiness()
        if readiness.ready_for_observation:
            return MODE_OBSERVATION
        if readiness.ready_for_hybrid:
            return MODE_HYBRID
        return MODE_PREDICTIVE

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def reset(self) -> None:
        self.window.clear()
        self.phase_patterns = {p: PhasePattern() for p in PHASES}
        self.autonomy = AutonomySignals()
        self.total_observations = 0
        self._recognized_phases = set()

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase_patterns": {p: pattern.to_dict() for p, pattern in self.phase_patterns.items()},
            "autonomy_signals": self.autonomy.to_dict(),
            "total_observations": self.total_observations,
            "recognized_phases": sorted(self._recognized_phases),
        }

    def restore(
        self,
        phase_patterns: Mapping[str, Any] | None,
        autonomy_signals: Mapping[str, Any] | None,
        recent_observations: Iterable[Observation] = (),
        total_observations: int | None = None,
        recognized_phases: Iterable[str] = (),
    ) -> None:
        """Replace state from a snapshot; the window is rebuilt from stored observations."""
        self.reset()
        for phase in PHASES:
            self.phase_patterns[phase] = PhasePattern.from_dict((phase_patterns or {}).get(phase))
        self.autonomy = AutonomySignals.from_dict(autonomy_signals)
        self.window.extend(recent_observations)
        self.total_observations = (
            total_observations if total_observations is not None else len(self.window)
        )
        threshold = self._config.phase_inference.pattern_boost_min_occurrences
        self._recognized_phases = {p for p in recognized_phases if is_valid_phase(p)} | {
            p for p, pattern in self.phase_patterns.items() if pattern.occurrences > threshold
        }
