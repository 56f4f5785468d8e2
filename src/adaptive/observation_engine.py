"""Observation-based phase inference and observation guidance.

The engine fuses the calendar prediction with what the user actually
reports.  Each phase has a static vocabulary of symptom, mood and energy
terms; recent observations are scored against every phase:

    +2  per symptom containing a phase symptom term
    +3  if the mood contains a phase mood term
    +2  if the energy label contains a phase energy term

    confidence = best phase score / sum of all phase scores
               (+0.2 when that phase already has > 5 recorded occurrences, capped at 1)

The observed phase wins only when confidence > 0.4; otherwise the calendar
prediction is kept and the result is reported as ``hybrid``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping, Sequence

from src.adaptive.base import (
    MATURITY_ORDER,
    MODE_HYBRID,
    MODE_OBSERVATION,
    MODE_PREDICTIVE,
    PHASES,
    SIGNAL_CORRECTS_PREDICTION,
    clamp,
    utc_now,
)
from src.adaptive.config_loader import AdaptiveConfig, get_adaptive_config
from src.adaptive.cycle.calendar import CycleState
from src.adaptive.cycle.observations import Observation
from src.adaptive.intelligence import SignalSink, UserIntelligence

logger = logging.getLogger("lunara.adaptive.observation_engine")

SYMPTOM_KEYWORDS: dict[str, tuple[str, ...]] = {
    "menstrual": ("cramp", "bleeding", "flow", "back pain", "headache", "fatigue"),
    "follicular": ("clear skin", "lightness", "restful sleep", "appetite", "motivation"),
    "ovulatory": ("discharge", "ovulation pain", "libido", "glow", "warmth"),
    "luteal": ("bloating", "breast tenderness", "craving", "acne", "tension", "pms"),
}

MOOD_KEYWORDS: dict[str, tuple[str, ...]] = {
    "menstrual": ("tired", "withdrawn", "introspective", "sensitive", "quiet"),
    "follicular": ("optimistic", "curious", "creative", "motivated", "fresh"),
    "ovulatory": ("confident", "social", "radiant", "outgoing", "joyful"),
    "luteal": ("irritable", "anxious", "sad", "emotional", "moody"),
}

ENERGY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "menstrual": ("very low", "low"),
    "follicular": ("moderate", "rising"),
    "ovulatory": ("high", "peak"),
    "luteal": ("moderate", "declining"),
}

ENERGY_LABELS: dict[int, str] = {
    1: "very low",
    2: "low",
    3: "moderate",
    4: "high",
    5: "very high",
}

SYMPTOM_SCORE = 2
MOOD_SCORE = 3
ENERGY_SCORE = 2

# Guidance templates: maturity → phase → (personal message, generic message, action)
GUIDANCE_TEMPLATES: dict[str, dict[str, tuple[str | None, str, str]]] = {
    "discovery": {
        "menstrual": (None, "Your period is a time to slow down. How does your body feel today?", "log_feeling"),
        "follicular": (None, "Energy often comes back in this phase. Notice what inspires you.", "log_energy"),
        "ovulatory": (None, "Many people feel more social now. How is your mood today?", "log_mood"),
        "luteal": (None, "This phase can bring sensitivity. Be gentle with yourself.", "log_feeling"),
    },
    "learning": {
        "menstrual": (
            "During your period you often notice {symptom}. Plan some rest if you can.",
            "Keep noting how your period feels so patterns can emerge.",
            "log_symptoms",
        ),
        "follicular": (
            "In this phase your energy tends to be {energy}. A good time to start something new.",
            "Notice how your energy changes as your cycle moves forward.",
            "log_energy",
        ),
        "ovulatory": (
            "Around ovulation you often feel {mood}. Lean into it.",
            "Watch how your mood shifts around ovulation.",
            "log_mood",
        ),
        "luteal": (
            "Before your period you often notice {symptom} and feel {mood}. Give yourself extra space.",
            "Keep observing this phase to learn what helps you most.",
            "log_symptoms",
        ),
    },
    "autonomous": {
        "menstrual": (
            "You know this phase well: {pattern}",
            "You know your body. Trust what it tells you today.",
            "reflect",
        ),
        "follicular": (
            "Your own pattern for this phase: {pattern}",
            "What would you like to start while your energy rises?",
            "plan",
        ),
        "ovulatory": (
            "Your observations show: {pattern}",
            "How will you use this peak of energy?",
            "create",
        ),
        "luteal": (
            "You have learned that {pattern}",
            "What does your body ask for before your period?",
            "reflect",
        ),
    },
}

_PROMPTS: dict[str, dict[str, str]] = {
    "menstrual": {
        "symptoms": "How does your body feel today?",
        "energy": "What is your energy level right now?",
        "mood": "How gentle do you need to be with yourself today?",
    },
    "follicular": {
        "symptoms": "Do you notice any changes in your body?",
        "energy": "Do you feel your energy coming back?",
        "mood": "Do you have projects that inspire you?",
    },
    "ovulatory": {
        "symptoms": "Any physical signs of ovulation today?",
        "energy": "How are you living this peak of energy?",
        "mood": "Do you feel confident and radiant?",
    },
    "luteal": {
        "symptoms": "Do you feel any physical tension?",
        "energy": "Is your energy slowing down?",
        "mood": "Do you need more calm today?",
    },
}

_CATEGORY_ORDER = ("energy", "mood", "symptoms")


@dataclass(frozen=True)
class PhaseSignal:
    """One keyword match supporting a phase."""

    type: str
    value: str
    phase: str


@dataclass(frozen=True)
class PhaseInferenceResult:
    phase: str
    confidence: float
    method: str
    signals: tuple[PhaseSignal, ...] = ()
    predicted_phase: str | None = None
    scores: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ObservationGuidance:
    message: str
    action: str
    insights: tuple[str, ...] = ()
    confidence: int = 0


@dataclass(frozen=True)
class CorrectionResult:
    corrected: bool
    message: str | None = None


@dataclass(frozen=True)
class ObservationPrompt:
    prompt: str
    type: str
    options: tuple[str, ...] = ()
    priority: str = "normal"


@dataclass(frozen=True)
class ObservationQuality:
    score: int
    quality: str
    feedback: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()


def energy_label(energy: int) -> str:
    return ENERGY_LABELS.get(int(clamp(energy, 1, 5)), "moderate")


def _score_observation(observation: Observation, phase: str) -> tuple[int, list[PhaseSignal]]:
    score = 0
    signals: list[PhaseSignal] = []

    for symptom in observation.symptoms:
        text = symptom.lower()
        if any(term in text for term in SYMPTOM_KEYWORDS[phase]):
            score += SYMPTOM_SCORE
            signals.append(PhaseSignal("symptom", symptom, phase))

    if observation.mood:
        mood = observation.mood.lower()
        if any(term in mood for term in MOOD_KEYWORDS[phase]):
            score += MOOD_SCORE
            signals.append(PhaseSignal("mood", observation.mood, phase))

    label = energy_label(observation.energy)
    if any(term in label for term in ENERGY_KEYWORDS[phase]):
        score += ENERGY_SCORE
        signals.append(PhaseSignal("energy", label, phase))

    return score, signals


class ObservationEngine:
    """Infer the current phase from observations and guide what to observe next.

    Usage::

        engine = ObservationEngine(intelligence=intelligence)
        result = engine.get_current_phase_from_observation(cycle, log.recent(50))
        result.phase, result.method
    """

    def __init__(
        self,
        config: AdaptiveConfig | None = None,
        intelligence: UserIntelligence | None = None,
    ) -> None:
        self._config = config or get_adaptive_config()
        self._intelligence = intelligence

    # ------------------------------------------------------------------
    # Phase inference
    # ------------------------------------------------------------------

    def get_current_phase_from_observation(
        self,
        cycle: CycleState,
        recent_observations: Iterable[Observation],
        as_of: date | None = None,
    ) -> PhaseInferenceResult:
        """Fuse the calendar prediction with recent observations.

        Args:
            cycle:               Current cycle state (source of the prediction).
            recent_observations: Observations in any order.  The
                                 ``max_analyzed`` newest are kept; of those the
                                 ``recent_window`` most recent are scored.
            as_of:               Reference date for the calendar prediction.

        Returns:
            PhaseInferenceResult with method 'predictive' (nothing to
            analyze), 'observation' (confident) or 'hybrid'.
        """
        pi = self._config.phase_inference
        predicted = cycle.current_phase(as_of, self._config.cycle)

        pool = sorted(recent_observations, key=lambda o: o.timestamp, reverse=True)[: pi.max_analyzed]
        if not pool:
            return PhaseInferenceResult(
                phase=predicted,
                confidence=0.0,
                method=MODE_PREDICTIVE,
                predicted_phase=predicted,
            )

        window = pool[: pi.recent_window]

        scores = {phase: 0 for phase in PHASES}
        signals: list[PhaseSignal] = []
        for observation in window:
            for phase in PHASES:
                score, matched = _score_observation(observation, phase)
                scores[phase] += score
                signals.extend(matched)

        total = sum(scores.values())
        best = max(scores.values())
        # Ties go to the calendar prediction, then to cycle order
        candidates = [p for p in PHASES if scores[p] == best]
        candidate = predicted if predicted in candidates else candidates[0]

        confidence = best / total if total > 0 else 0.0
        if total > 0 and self._intelligence is not None:
            pattern = self._intelligence.phase_patterns.get(candidate)
            if pattern is not None and pattern.occurrences > pi.pattern_boost_min_occurrences:
                confidence = min(1.0, confidence + pi.pattern_boost)

        confident = confidence > pi.confidence_threshold
        return PhaseInferenceResult(
            phase=candidate if confident else predicted,
            confidence=round(confidence, 4),
            method=MODE_OBSERVATION if confident else MODE_HYBRID,
            signals=tuple(signals),
            predicted_phase=predicted,
            scores=scores,
        )

    # ------------------------------------------------------------------
    # Guidance
    # ------------------------------------------------------------------

    def get_observation_guidance(
        self,
        phase: str,
        intelligence_signals: Mapping[str, Any] | None = None,
        maturity_level: str = "discovery",
    ) -> ObservationGuidance:
        """Phase-specific observation guidance tiered by maturity.

        Personal templates are used once the user has at least
        ``guidance_min_observations`` observations and is past discovery.
        Placeholders are filled from the phase's recorded pattern; when a
        value is missing the generic template is used instead.
        """
        level = maturity_level if maturity_level in MATURITY_ORDER else "discovery"
        templates = GUIDANCE_TEMPLATES[level]
        personal, generic, action = templates.get(phase, templates["menstrual"])

        signals = dict(intelligence_signals or {})
        if self._intelligence is not None:
            readiness = self._intelligence.observation_readiness()
            signals.setdefault("confidence", readiness.confidence)
            signals.setdefault("total_observations", readiness.total_observations)
        confidence = int(clamp(signals.get("confidence") or 0, 0, 100))
        total = signals.get("total_observations") or 0

        min_obs = self._config.phase_inference.guidance_min_observations
        if personal is None or total < min_obs or level == "discovery" or self._intelligence is None:
            return ObservationGuidance(message=generic, action=action, confidence=confidence)

        pattern = self._intelligence.phase_patterns.get(phase)
        if pattern is None or pattern.occurrences == 0:
            return ObservationGuidance(message=generic, action=action, confidence=confidence)

        values = {
            "symptom": pattern.top_symptom,
            "mood": pattern.top_mood,
            "energy": energy_label(pattern.typical_energy) if pattern.typical_energy else None,
            "pattern": self._pattern_sentence(pattern),
        }
        needed = [name for name in values if "{" + name + "}" in personal]
        if any(values[name] is None for name in needed):
            message = generic
        else:
            message = personal.format(**{name: values[name] for name in needed})

        insights = []
        if pattern.top_symptom:
            insights.append(f"Most frequent symptom in this phase: {pattern.top_symptom}")
        if pattern.top_mood:
            insights.append(f"Typical mood in this phase: {pattern.top_mood}")
        insights.append(f"Observed {pattern.occurrences} time(s) in this phase")

        return ObservationGuidance(
            message=message,
            action=action,
            insights=tuple(insights),
            confidence=confidence,
        )

    @staticmethod
    def _pattern_sentence(pattern) -> str | None:
        parts = []
        if pattern.top_mood:
            parts.append(f"you usually feel {pattern.top_mood}")
        if pattern.top_symptom:
            parts.append(f"you often notice {pattern.top_symptom}")
        if pattern.typical_energy:
            parts.append(f"your energy is {energy_label(pattern.typical_energy)}")
        if not parts:
            return None
        sentence = ", ".join(parts[:-1]) + (" and " if len(parts) > 1 else "") + parts[-1]
        return sentence[0].upper() + sentence[1:] + "."

    # ------------------------------------------------------------------
    # Corrections
    # ------------------------------------------------------------------

    def detect_prediction_correction(
        self,
        observed_phase: str,
        predicted_phase: str,
        signal_sink: SignalSink,
    ) -> CorrectionResult:
        """Emit a ``corrects_prediction`` signal when the user disagrees with the calendar.

        The sink is called exactly once when the phases differ and never
        when they are equal.

        Raises:
            TypeError: If either phase is not a string.
        """
        if not isinstance(observed_phase, str) or not isinstance(predicted_phase, str):
            raise TypeError("observed_phase and predicted_phase must be strings")
        if observed_phase == predicted_phase:
            return CorrectionResult(corrected=False)

        signal_sink(
            SIGNAL_CORRECTS_PREDICTION,
            {
                "observed": observed_phase,
                "predicted": predicted_phase,
                "timestamp": utc_now().isoformat(),
            },
        )
        return CorrectionResult(
            corrected=True,
            message="Thanks for the correction! I'm learning from your observations.",
        )

    # ------------------------------------------------------------------
    # Prompts & quality
    # ------------------------------------------------------------------

    @staticmethod
    def _phase_options(phase: str, category: str) -> tuple[str, ...]:
        if category == "symptoms":
            return SYMPTOM_KEYWORDS.get(phase, ())
        if category == "mood":
            return MOOD_KEYWORDS.get(phase, ())
        return tuple(ENERGY_LABELS.values())

    def get_suggested_observations(
        self, phase: str, existing_observations: Sequence[Observation] = ()
    ) -> list[ObservationPrompt]:
        """Up to two prompts for categories missing from ``existing_observations``."""
        if phase not in _PROMPTS:
            return []
        covered: set[str] = set()
        for observation in existing_observations:
            covered.add("energy")
            if observation.mood:
                covered.add("mood")
            if observation.symptoms:
                covered.add("symptoms")

        prompts = [
            ObservationPrompt(
                prompt=_PROMPTS[phase][category],
                type=category,
                options=self._phase_options(phase, category),
            )
            for category in _CATEGORY_ORDER
            if category not in covered
        ]
        return prompts[:2]

    def get_intelligent_prompts(
        self, phase: str, history: Sequence[Observation] = ()
    ) -> list[ObservationPrompt]:
        """Up to three prompts, favoring categories the user has never reported."""
        prompts = self.get_suggested_observations(phase, list(history)[:3])

        if not any(o.symptoms for o in history):
            prompts.insert(
                0,
                ObservationPrompt(
                    prompt="Do you notice any particular physical sensations?",
                    type="symptoms",
                    options=self._phase_options(phase, "symptoms"),
                    priority="high",
                ),
            )
        if not any(o.mood for o in history):
            prompts.insert(
                0,
                ObservationPrompt(
                    prompt="How would you describe your emotional state?",
                    type="mood",
                    options=self._phase_options(phase, "mood"),
                    priority="high",
                ),
            )

        seen: set[str] = set()
        unique = []
        for prompt in prompts:
            if prompt.type not in seen:
                seen.add(prompt.type)
                unique.append(prompt)
        return unique[:3]

    @staticmethod
    def analyze_observation_quality(observation: Observation) -> ObservationQuality:
        """Score how detailed an observation is (0–100)."""
        score = 0
        feedback = []
        if observation.symptoms:
            score += 30
            feedback.append("Physical details noted")
        if observation.mood:
            score += 25
            feedback.append("Emotional state captured")
        if observation.energy:
            score += 25
            feedback.append("Energy level captured")
        if observation.notes and len(observation.notes) > 10:
            score += 20
            feedback.append("Rich personal notes")

        if score > 60:
            quality = "excellent"
        elif score > 30:
            quality = "good"
        else:
            quality = "basic"

        if score > 70:
            suggestions = ("Perfect! Keep going like this",)
        else:
            suggestions = tuple(
                text
                for limit, text in (
                    (30, "Add a few details about how your body feels"),
                    (50, "Note your current mood"),
                    (70, "Describe your energy level"),
                )
                if score < limit
            )

        return ObservationQuality(
            score=score,
            quality=quality,
            feedback=tuple(feedback),
            suggestions=suggestions,
        )
