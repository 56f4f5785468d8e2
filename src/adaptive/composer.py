"""Compose the UI-facing adaptive configuration.

The composer is a pure merge.  It reads the maturity → interface table,
the persona → style table, the feature gate's evaluation, the tracker's
score and milestone, the intelligence confidence and the current
observation guidance, and produces one ``AdaptiveConfiguration``.  It never
mutates engine state.

Dynamic adjustments:

    vignette limit        min(max vignettes per phase, days used // 3 + 1)
    guidance intensity    'reduced' when intelligence confidence > 50
    effective complexity  'simplified' when the persona caps it, else the tier's
    show feature progress everywhere below autonomous
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Sequence, TypeVar

from src.adaptive.engagement import EngagementMetrics, MaturityState, Milestone
from src.adaptive.feature_gate import FeatureEvaluation, ProgressionSuggestion
from src.adaptive.observation_engine import ObservationGuidance
from src.adaptive.personas import COMPLEXITY_SIMPLIFIED, PersonaStyle, persona_style

logger = logging.getLogger("lunara.adaptive.composer")

T = TypeVar("T")

REDUCED_GUIDANCE_CONFIDENCE = 50
MAX_NEXT_STEPS = 3

_PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}


@dataclass(frozen=True)
class InterfaceConfig:
    """Interface defaults for one maturity level."""

    max_vignettes_per_phase: int
    show_progress_bar: bool
    show_guidance_hints: bool
    navigation_complexity: str
    default_view: str
    emphasize_actions: tuple[str, ...]
    hide_actions: tuple[str, ...]
    guidance_intensity: str


INTERFACE_CONFIGS: Mapping[str, InterfaceConfig] = MappingProxyType(
    {
        "discovery": InterfaceConfig(
            max_vignettes_per_phase=2,
            show_progress_bar=True,
            show_guidance_hints=True,
            navigation_complexity="simple",
            default_view="guided",
            emphasize_actions=("chat", "notebook", "explore"),
            hide_actions=("create", "analyze", "predict"),
            guidance_intensity="high",
        ),
        "learning": InterfaceConfig(
            max_vignettes_per_phase=3,
            show_progress_bar=True,
            show_guidance_hints=True,
            navigation_complexity="moderate",
            default_view="mixed",
            emphasize_actions=("track", "analyze", "plan"),
            hide_actions=("create", "mentor"),
            guidance_intensity="medium",
        ),
        "autonomous": InterfaceConfig(
            max_vignettes_per_phase=4,
            show_progress_bar=False,
            show_guidance_hints=False,
            navigation_complexity="full",
            default_view="expert",
            emphasize_actions=("create", "optimize", "share"),
            hide_actions=(),
            guidance_intensity="low",
        ),
    }
)

# Milestone gap → (step type, action, priority)
_MILESTONE_STEPS: tuple[tuple[str, str, str, str], ...] = (
    ("days", "consistency", "Come back tomorrow to keep learning", "high"),
    ("conversations", "engagement", "Ask a question about your current phase", "medium"),
    ("entries", "reflection", "Write down how you feel in your notebook", "medium"),
    ("cycles", "cycle", "Keep tracking until you complete a full cycle", "medium"),
)


@dataclass(frozen=True)
class NextStep:
    type: str
    action: str
    priority: str


@dataclass(frozen=True)
class AdaptiveConfiguration:
    """Everything the interface needs to adapt itself to one user.

    Attributes:
        maturity_level:        Current maturity level.
        persona:               Resolved persona style.
        interface:             Maturity-level interface defaults.
        vignette_limit:        Vignettes to show per phase right now.
        guidance_intensity:    'high', 'medium', 'low' or 'reduced'.
        effective_complexity:  Navigation complexity after the persona cap.
        show_feature_progress: Whether locked-feature progress is displayed.
        features:              Feature key → available.
        next_steps:            Up to three ranked suggestions.
    """

    maturity_level: str
    maturity_confidence: int
    persona: PersonaStyle
    interface: InterfaceConfig
    vignette_limit: int
    guidance_intensity: str
    effective_complexity: str
    show_feature_progress: bool
    engagement_score: int
    features: Mapping[str, bool] = field(default_factory=dict)
    feature_summary: Mapping[str, Any] = field(default_factory=dict)
    next_milestone: Milestone | None = None
    next_steps: tuple[NextStep, ...] = ()
    progression_suggestions: tuple[ProgressionSuggestion, ...] = ()
    guidance: ObservationGuidance | None = None

    @property
    def emphasized_actions(self) -> tuple[str, ...]:
        return self.interface.emphasize_actions

    @property
    def hidden_actions(self) -> tuple[str, ...]:
        return self.interface.hide_actions

    def visible_actions(self, actions: Iterable[str]) -> list[str]:
        """Filter out the action types hidden at this maturity level."""
        hidden = set(self.interface.hide_actions)
        return [a for a in actions if a not in hidden]

    def should_emphasize(self, action: str) -> bool:
        return action in self.interface.emphasize_actions

    def should_show_nav_item(self, key: str) -> bool:
        # Items that are not gated are always shown
        return self.features.get(key, True)

    def limit_vignettes(self, vignettes: Sequence[T]) -> list[T]:
        return list(vignettes[: self.vignette_limit])

    def should_show_guidance(self, kind: str) -> bool:
        """Whether a kind of guidance ('onboarding', 'hints', 'progress', ...) is shown."""
        if not self.interface.show_guidance_hints:
            return False
        if kind == "onboarding":
            return self.maturity_level == "discovery"
        if kind == "hints":
            return self.guidance_intensity != "low"
        if kind == "progress":
            return self.show_feature_progress
        return True


class AdaptiveComposer:
    """Merge engine outputs into an AdaptiveConfiguration.

    Usage::

        composer = AdaptiveComposer()
        configuration = composer.compose(
            maturity=tracker.maturity,
            metrics=tracker.metrics,
            persona_id="laure",
            evaluation=gate.evaluate_all_features(...),
            engagement_score=tracker.get_engagement_score(),
            milestone=tracker.get_next_milestone(),
            intelligence_confidence=intelligence.signals()["confidence"],
        )
    """

    def compose(
        self,
        maturity: MaturityState,
        metrics: EngagementMetrics,
        persona_id: str | None,
        evaluation: FeatureEvaluation,
        engagement_score: int,
        milestone: Milestone | None,
        intelligence_confidence: float = 0,
        guidance: ObservationGuidance | None = None,
        suggestions: Sequence[ProgressionSuggestion] = (),
    ) -> AdaptiveConfiguration:
        interface = INTERFACE_CONFIGS.get(maturity.level, INTERFACE_CONFIGS["discovery"])
        persona = persona_style(persona_id)

        days = max(0, metrics.days_used)
        vignette_limit = min(interface.max_vignettes_per_phase, days // 3 + 1)
        guidance_intensity = (
            "reduced"
            if intelligence_confidence > REDUCED_GUIDANCE_CONFIDENCE
            else interface.guidance_intensity
        )
        effective_complexity = (
            COMPLEXITY_SIMPLIFIED
            if persona.max_complexity == COMPLEXITY_SIMPLIFIED
            else interface.navigation_complexity
        )

        return AdaptiveConfiguration(
            maturity_level=maturity.level,
            maturity_confidence=maturity.confidence,
            persona=persona,
            interface=interface,
            vignette_limit=vignette_limit,
            guidance_intensity=guidance_intensity,
            effective_complexity=effective_complexity,
            show_feature_progress=maturity.level != "autonomous",
            engagement_score=engagement_score,
            features=MappingProxyType(
                {key: result.available for key, result in evaluation.features.items()}
            ),
            feature_summary=evaluation.summary,
            next_milestone=milestone,
            next_steps=tuple(self.next_steps(milestone, persona, metrics)),
            progression_suggestions=tuple(suggestions),
            guidance=guidance,
        )

    @staticmethod
    def next_steps(
        milestone: Milestone | None,
        persona: PersonaStyle,
        metrics: EngagementMetrics,
    ) -> list[NextStep]:
        """Rank, de-duplicate and cap suggestions derived from milestone gaps."""
        steps: list[NextStep] = []
        if milestone is not None:
            for gap, step_type, action, priority in _MILESTONE_STEPS:
                if milestone.missing.get(gap, 0) > 0:
                    steps.append(NextStep(step_type, action, priority))

        if len(metrics.phases_explored) < 2:
            steps.append(NextStep("exploration", persona.exploration_hint, "low"))

        seen: set[str] = set()
        unique = []
        for step in sorted(steps, key=lambda s: _PRIORITY_RANK.get(s.priority, len(_PRIORITY_RANK))):
            if step.type in seen:
                continue
            seen.add(step.type)
            unique.append(step)
        return unique[:MAX_NEXT_STEPS]
