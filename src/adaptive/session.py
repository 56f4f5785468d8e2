"""Adaptive session: the explicit state owner for one user.

The session builds the tracker, gate, intelligence, observation log and
observation engine once, injects the shared config into each, and exposes
the public operations.  Every operation runs under one re-entrant lock, so
an action together with its recomputation is atomic for concurrent readers.

Dependency direction is fixed and acyclic:

    observation → intelligence → (signal sink) → tracker → maturity
    tracker / intelligence → gate → composer

The tracker never calls back into intelligence, and recompute listeners
never mutate.  After each mutation the session hands a fresh snapshot to
its durable store; a failing store is logged and never breaks the mutation.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Iterable

from src.adaptive.base import (
    MATURITY_ORDER,
    SIGNAL_DETAILED_OBSERVATION,
    SIGNAL_MANUAL_PHASE_CHANGE,
    is_valid_phase,
    safe_int,
    utc_now,
)
from src.adaptive.composer import AdaptiveComposer, AdaptiveConfiguration
from src.adaptive.config_loader import AdaptiveConfig, get_adaptive_config
from src.adaptive.cycle.calendar import CycleState
from src.adaptive.cycle.observations import Observation, ObservationLog
from src.adaptive.engagement import (
    ACTION_AUTONOMY_SIGNAL,
    ACTION_CYCLE_COMPLETED,
    EngagementMetrics,
    EngagementTracker,
    MaturityState,
    Milestone,
)
from src.adaptive.feature_gate import (
    FeatureEvaluation,
    FeatureEvaluationResult,
    FeatureGate,
    ProgressionSuggestion,
)
from src.adaptive.intelligence import UserIntelligence
from src.adaptive.observation_engine import (
    CorrectionResult,
    ObservationEngine,
    ObservationGuidance,
    ObservationPrompt,
    ObservationQuality,
    PhaseInferenceResult,
)
from src.adaptive.personas import DEFAULT_PERSONA, PersonaStyle, is_known_persona, persona_style
from src.adaptive.store import DurableStore, parse_snapshot
from src.models.adaptive import SNAPSHOT_VERSION

logger = logging.getLogger("lunara.adaptive.session")

# Bookkeeping-only action recorded with each observation
ACTION_OBSERVATION_RECORDED = "observation_recorded"


@dataclass(frozen=True)
class ObservationOutcome:
    success: bool
    phase: str
    mode: str
    quality: ObservationQuality | None = None
    observation: Observation | None = None


class AdaptiveSession:
    """All adaptive state for one user plus the operations on it.

    Usage::

        session = AdaptiveSession.from_store(JsonFileStore("state.json"))
        session.track_action("conversation_started")
        session.start_new_cycle(date(2026, 3, 1))
        session.record_observation(feeling=4, energy=2, symptoms=["cramps"])
        configuration = session.compose()
    """

    def __init__(
        self,
        config: AdaptiveConfig | None = None,
        store: DurableStore | None = None,
        persona_id: str | None = None,
        today: Callable[[], date] | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or get_adaptive_config()
        self._store = store
        self._today = today or date.today
        self._lock = threading.RLock()

        self.tracker = EngagementTracker(self._config, clock=self._today)
        self.gate = FeatureGate(self._config)
        self.intelligence = UserIntelligence(self._config)
        self.observations = ObservationLog(self._config, clock=now or utc_now)
        self.engine = ObservationEngine(self._config, intelligence=self.intelligence)
        self.composer = AdaptiveComposer()
        self.cycle = CycleState(
            cycle_length=self._config.cycle.default_length,
            period_duration=self._config.cycle.default_period_duration,
        )
        self.persona_id = persona_id if is_known_persona(persona_id) else DEFAULT_PERSONA

        self.tracker.subscribe(self._log_recompute)

    @classmethod
    def from_store(cls, store: DurableStore, **kwargs: Any) -> "AdaptiveSession":
        """Build a session and restore it from ``store`` (read once).

        Raises:
            SnapshotError: If the stored snapshot has an unsupported version.
        """
        session = cls(store=store, **kwargs)
        raw = store.load()
        if raw:
            session.restore(raw)
            logger.info(
                "Restored adaptive session (maturity=%s, %d observations)",
                session.tracker.maturity.level,
                len(session.observations),
            )
        return session

    @property
    def config(self) -> AdaptiveConfig:
        return self._config

    # ------------------------------------------------------------------
    # Internal wiring
    # ------------------------------------------------------------------

    @staticmethod
    def _log_recompute(metrics: EngagementMetrics, maturity: MaturityState) -> None:
        logger.debug(
            "Maturity recomputed: %s (%d) after %d day(s)",
            maturity.level,
            maturity.confidence,
            metrics.days_used,
        )

    def _signal_sink(self, signal_type: str, data: dict) -> None:
        if self.intelligence.track_autonomy_signal(signal_type, data):
            self.tracker.track_action(ACTION_AUTONOMY_SIGNAL, {"signal": signal_type})

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save(self.snapshot())
        except Exception as exc:
            logger.warning("Snapshot write failed, state kept in memory: %s", exc)

    # ------------------------------------------------------------------
    # Engagement
    # ------------------------------------------------------------------

    def track_action(self, action_type: str, metadata: dict[str, Any] | None = None) -> MaturityState:
        with self._lock:
            state = self.tracker.track_action(action_type, metadata)
            self._persist()
            return state

    @property
    def metrics(self) -> EngagementMetrics:
        return self.tracker.metrics

    @property
    def maturity(self) -> MaturityState:
        return self.tracker.maturity

    def get_engagement_score(self) -> int:
        with self._lock:
            return self.tracker.get_engagement_score()

    def get_next_milestone(self) -> Milestone | None:
        with self._lock:
            return self.tracker.get_next_milestone()

    # ------------------------------------------------------------------
    # Feature gating
    # ------------------------------------------------------------------

    def intelligence_signals(self) -> dict[str, int]:
        with self._lock:
            return self.intelligence.signals()

    def evaluate_feature(self, key: str) -> FeatureEvaluationResult:
        with self._lock:
            return self.gate.evaluate_feature(
                key, self.tracker.metrics, self.intelligence.signals(), self.tracker.maturity.level
            )

    def evaluate_all_features(self) -> FeatureEvaluation:
        with self._lock:
            return self.gate.evaluate_all_features(
                self.tracker.metrics, self.intelligence.signals(), self.tracker.maturity.level
            )

    def get_progression_suggestions(self) -> list[ProgressionSuggestion]:
        with self._lock:
            return self.gate.get_progression_suggestions(
                self.tracker.metrics, self.intelligence.signals(), self.tracker.maturity.level
            )

    def is_feature_available(self, key: str) -> bool:
        with self._lock:
            return self.gate.is_feature_available(
                key, self.tracker.metrics, self.intelligence.signals(), self.tracker.maturity.level
            )

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def current_phase(self) -> str:
        return self.cycle.current_phase(self._today(), self._config.cycle)

    def current_day(self) -> int:
        return self.cycle.current_day(self._today())

    def start_new_cycle(self, start: date | None = None) -> CycleState:
        """Anchor a new cycle; a previous active cycle counts as completed."""
        with self._lock:
            had_cycle = self.cycle.is_active
            self.cycle = self.cycle.with_updates(
                last_period_start=start or self._today(),
                period_duration=self._config.cycle.default_period_duration,
            )
            if had_cycle:
                self.tracker.track_action(ACTION_CYCLE_COMPLETED)
            self._persist()
            return self.cycle

    def update_cycle(
        self,
        last_period_start: date | None = None,
        cycle_length: int | None = None,
        period_duration: int | None = None,
    ) -> tuple[CycleState, list[str]]:
        """Apply a partial cycle update if the result is consistent.

        Returns:
            (cycle state now in effect, validation errors).  On errors the
            previous state is kept.
        """
        with self._lock:
            candidate = self.cycle.with_updates(
                last_period_start=last_period_start,
                cycle_length=cycle_length,
                period_duration=period_duration,
            )
            errors = candidate.validate(self._config.cycle)
            if errors:
                logger.warning("Cycle update rejected: %s", "; ".join(errors))
                return self.cycle, errors
            self.cycle = candidate
            self._persist()
            return self.cycle, []

    def end_period(self) -> CycleState:
        """Set the period duration to today's cycle day."""
        with self._lock:
            if not self.cycle.is_active:
                logger.warning("end_period ignored: no active cycle")
                return self.cycle
            self.cycle = self.cycle.with_updates(period_duration=self.cycle.current_day(self._today()))
            self._persist()
            return self.cycle

    # ------------------------------------------------------------------
    # Observations
    # ------------------------------------------------------------------

    def record_observation(
        self,
        feeling: object = None,
        energy: object = None,
        notes: object = "",
        symptoms: Iterable[Any] | None = None,
        mood: object = None,
    ) -> ObservationOutcome:
        """Record a self-report and learn from it.

        Without an active cycle nothing is stored and ``success`` is False.
        """
        with self._lock:
            observation = self.observations.record(
                feeling, energy, notes, symptoms, mood, cycle=self.cycle, as_of=self._today()
            )
            if observation is None:
                return ObservationOutcome(
                    success=False,
                    phase=self.current_phase(),
                    mode=self.intelligence.cycle_mode(),
                )

            self.intelligence.learn_from_observation(observation, signal_sink=self._signal_sink)
            quality = self.engine.analyze_observation_quality(observation)
            if quality.quality == "excellent":
                self._signal_sink(SIGNAL_DETAILED_OBSERVATION, {"observation_id": observation.id})
            self.tracker.track_action(ACTION_OBSERVATION_RECORDED)

            inference = self.infer_phase()
            self._persist()
            return ObservationOutcome(
                success=True,
                phase=inference.phase,
                mode=self.intelligence.cycle_mode(),
                quality=quality,
                observation=observation,
            )

    def infer_phase(self) -> PhaseInferenceResult:
        with self._lock:
            return self.engine.get_current_phase_from_observation(
                self.cycle,
                self.observations.recent(self._config.phase_inference.max_analyzed),
                as_of=self._today(),
            )

    def correct_phase(self, observed_phase: str) -> CorrectionResult:
        """The user states which phase they are actually in.

        Raises:
            TypeError:  If observed_phase is not a string.
            ValueError: If observed_phase is not a cycle phase.
        """
        if not isinstance(observed_phase, str):
            raise TypeError(f"observed_phase must be a str, got {type(observed_phase).__name__}")
        if not is_valid_phase(observed_phase):
            raise ValueError(f"Unknown cycle phase {observed_phase!r}")

        with self._lock:
            predicted = self.current_phase()
            result = self.engine.detect_prediction_correction(
                observed_phase, predicted, self._signal_sink
            )
            self._signal_sink(
                SIGNAL_MANUAL_PHASE_CHANGE, {"observed": observed_phase, "predicted": predicted}
            )
            self._persist()
            return result

    def get_observation_guidance(self, phase: str | None = None) -> ObservationGuidance:
        with self._lock:
            target = phase if is_valid_phase(phase) else self.infer_phase().phase
            readiness = self.intelligence.observation_readiness()
            return self.engine.get_observation_guidance(
                target,
                {
                    "confidence": readiness.confidence,
                    "total_observations": readiness.total_observations,
                },
                self.tracker.maturity.level,
            )

    def get_intelligent_prompts(self, phase: str | None = None) -> list[ObservationPrompt]:
        with self._lock:
            target = phase if is_valid_phase(phase) else self.infer_phase().phase
            history = self.observations.recent(self._config.observations.analysis_window)
            return self.engine.get_intelligent_prompts(target, history)

    # ------------------------------------------------------------------
    # Composition & persona
    # ------------------------------------------------------------------

    def set_persona(self, persona_id: str) -> PersonaStyle:
        with self._lock:
            if not is_known_persona(persona_id):
                logger.warning("Unknown persona %r, using %s", persona_id, DEFAULT_PERSONA)
                persona_id = DEFAULT_PERSONA
            self.persona_id = persona_id
            self._persist()
            return persona_style(persona_id)

    def compose(self) -> AdaptiveConfiguration:
        with self._lock:
            signals = self.intelligence.signals()
            return self.composer.compose(
                maturity=self.tracker.maturity,
                metrics=self.tracker.metrics,
                persona_id=self.persona_id,
                evaluation=self.evaluate_all_features(),
                engagement_score=self.tracker.get_engagement_score(),
                milestone=self.tracker.get_next_milestone(),
                intelligence_confidence=signals["confidence"],
                guidance=self.get_observation_guidance(),
                suggestions=self.get_progression_suggestions(),
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Versioned, JSON-ready snapshot of the durable state."""
        with self._lock:
            intelligence = self.intelligence.to_dict()
            return {
                "version": SNAPSHOT_VERSION,
                **self.tracker.to_snapshot(),
                "observations": [o.to_dict() for o in self.observations.entries()],
                "phase_patterns": intelligence["phase_patterns"],
                "autonomy_signals": intelligence["autonomy_signals"],
                "total_observations": intelligence["total_observations"],
                "recognized_phases": intelligence["recognized_phases"],
                "cycle": self.cycle.to_dict(),
                "persona": self.persona_id,
            }

    def restore(self, raw: dict[str, Any]) -> None:
        """Replace all state from a snapshot dict.

        Raises:
            SnapshotError: If the snapshot version is unsupported or invalid.
        """
        snap = parse_snapshot(raw)
        with self._lock:
            metrics = EngagementMetrics.from_dict(snap.metrics)
            self.tracker.restore(metrics, self._maturity_from(snap.maturity))

            notes_max = self._config.observations.notes_max_length
            observations = [
                obs
                for obs in (Observation.from_dict(o, notes_max) for o in snap.observations)
                if obs is not None
            ]
            self.observations.restore(observations)
            self.intelligence.restore(
                snap.phase_patterns,
                snap.autonomy_signals,
                recent_observations=observations[-self._config.observations.analysis_window:],
                total_observations=snap.total_observations,
                recognized_phases=snap.recognized_phases,
            )
            self.cycle = CycleState.from_dict(snap.cycle)
            self.persona_id = snap.persona if is_known_persona(snap.persona) else DEFAULT_PERSONA
            self.gate.clear_cache()

    @staticmethod
    def _maturity_from(raw: dict[str, Any] | None) -> MaturityState | None:
        if not raw or raw.get("level") not in MATURITY_ORDER:
            return None
        last = raw.get("last_calculated")
        try:
            last_calculated = datetime.fromisoformat(last) if isinstance(last, str) else None
        except ValueError:
            last_calculated = None
        return MaturityState(
            level=raw["level"],
            confidence=safe_int(raw.get("confidence")) or 0,
            last_calculated=last_calculated,
        )

    def reset(self) -> None:
        with self._lock:
            self.tracker.reset()
            self.intelligence.reset()
            self.observations.clear()
            self.gate.clear_cache()
            self.cycle = CycleState(
                cycle_length=self._config.cycle.default_length,
                period_duration=self._config.cycle.default_period_duration,
            )
            self._persist()
