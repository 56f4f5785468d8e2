"""Tests for persona styles and the adaptive configuration composer."""

from __future__ import annotations

import pytest

from src.adaptive.composer import INTERFACE_CONFIGS, AdaptiveComposer
from src.adaptive.config_loader import AdaptiveConfig
from src.adaptive.engagement import EngagementMetrics, MaturityState, Milestone
from src.adaptive.feature_gate import FeatureGate
from src.adaptive.observation_engine import ObservationGuidance
from src.adaptive.personas import DEFAULT_PERSONA, PERSONA_STYLES, is_known_persona, persona_style


@pytest.fixture
def compose(adaptive_config: AdaptiveConfig):
    gate = FeatureGate(adaptive_config)
    composer = AdaptiveComposer()

    def _compose(level="discovery", metrics=None, persona_id="emma", milestone=None, confidence=0, **kwargs):
        metrics = metrics or EngagementMetrics()
        return composer.compose(
            maturity=MaturityState(level=level, confidence=30),
            metrics=metrics,
            persona_id=persona_id,
            evaluation=gate.evaluate_all_features(metrics, {"confidence": confidence, "patterns": 0}, level),
            engagement_score=12,
            milestone=milestone,
            intelligence_confidence=confidence,
            **kwargs,
        )

    return _compose


class TestPersonas:
    def test_five_personas(self) -> None:
        assert set(PERSONA_STYLES) == {"emma", "laure", "clara", "sylvie", "christine"}

    def test_unknown_persona_falls_back(self) -> None:
        assert persona_style("zorro").persona_id == DEFAULT_PERSONA
        assert persona_style(None).persona_id == DEFAULT_PERSONA
        assert not is_known_persona("zorro")

    def test_table_is_read_only(self) -> None:
        with pytest.raises(TypeError):
            PERSONA_STYLES["zorro"] = PERSONA_STYLES["emma"]  # type: ignore[index]


class TestCompose:
    def test_discovery_interface(self, compose) -> None:
        configuration = compose()
        assert configuration.interface is INTERFACE_CONFIGS["discovery"]
        assert configuration.interface.default_view == "guided"
        assert configuration.emphasized_actions == ("chat", "notebook", "explore")
        assert configuration.show_feature_progress
        assert configuration.guidance_intensity == "high"
        assert configuration.engagement_score == 12

    def test_vignette_limit_grows_with_days(self, compose) -> None:
        assert compose(metrics=EngagementMetrics(days_used=0)).vignette_limit == 1
        assert compose(metrics=EngagementMetrics(days_used=3)).vignette_limit == 2
        assert compose(metrics=EngagementMetrics(days_used=30)).vignette_limit == 2
        assert compose(level="autonomous", metrics=EngagementMetrics(days_used=30)).vignette_limit == 4

    def test_high_confidence_reduces_guidance(self, compose) -> None:
        assert compose(level="learning", confidence=51).guidance_intensity == "reduced"
        assert compose(level="learning", confidence=50).guidance_intensity == "medium"

    def test_persona_caps_complexity(self, compose) -> None:
        assert compose(level="autonomous", persona_id="christine").effective_complexity == "simplified"
        assert compose(level="autonomous", persona_id="laure").effective_complexity == "full"

    def test_autonomous_hides_progress(self, compose) -> None:
        configuration = compose(level="autonomous")
        assert not configuration.show_feature_progress
        assert configuration.hidden_actions == ()

    def test_features_map(self, compose) -> None:
        configuration = compose(metrics=EngagementMetrics(days_used=3, conversations_started=1))
        assert configuration.features["calendar_view"] is True
        assert configuration.features["insight_creation"] is False
        assert configuration.feature_summary["available"] == 1

    def test_guidance_passthrough(self, compose) -> None:
        guidance = ObservationGuidance(message="Hello", action="log_mood")
        assert compose(guidance=guidance).guidance is guidance


class TestNextSteps:
    def test_ranked_and_capped(self, compose) -> None:
        milestone = Milestone("learning", {"days": 3, "conversations": 2, "entries": 1, "cycles": 0})
        steps = compose(milestone=milestone).next_steps
        assert [s.type for s in steps] == ["consistency", "engagement", "reflection"]
        assert steps[0].priority == "high"

    def test_exploration_step_uses_persona(self, compose) -> None:
        milestone = Milestone("autonomous", {"days": 0, "conversations": 0, "entries": 0, "cycles": 1})
        steps = compose(level="learning", milestone=milestone, persona_id="sylvie").next_steps
        assert [s.type for s in steps] == ["cycle", "exploration"]
        assert steps[1].action == "Take a gentle look at another phase of your cycle"

    def test_explored_phases_skip_exploration(self, compose) -> None:
        metrics = EngagementMetrics(phases_explored={"menstrual", "luteal"})
        assert compose(metrics=metrics).next_steps == ()


class TestLayoutHelpers:
    def test_visible_actions(self, compose) -> None:
        configuration = compose()
        assert configuration.visible_actions(["chat", "create", "predict", "track"]) == ["chat", "track"]
        assert configuration.should_emphasize("notebook")
        assert not configuration.should_emphasize("share")

    def test_nav_items_follow_gates(self, compose) -> None:
        configuration = compose()
        assert not configuration.should_show_nav_item("calendar_view")
        assert configuration.should_show_nav_item("home")

    def test_limit_vignettes(self, compose) -> None:
        configuration = compose(metrics=EngagementMetrics(days_used=3))
        assert configuration.limit_vignettes(["a", "b", "c", "d"]) == ["a", "b"]

    def test_should_show_guidance(self, compose) -> None:
        discovery = compose()
        assert discovery.should_show_guidance("onboarding")
        assert discovery.should_show_guidance("hints")
        assert discovery.should_show_guidance("progress")

        learning = compose(level="learning")
        assert not learning.should_show_guidance("onboarding")

        autonomous = compose(level="autonomous")
        assert not autonomous.should_show_guidance("hints")
