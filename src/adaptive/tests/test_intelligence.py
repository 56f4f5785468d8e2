"""Tests for phase patterns, autonomy signals and derived intelligence signals."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from src.adaptive.config_loader import AdaptiveConfig
from src.adaptive.intelligence import AutonomySignals, PhasePattern, UserIntelligence
from src.adaptive.tests.conftest import TEST_NOW, make_observation


@pytest.fixture
def intelligence(adaptive_config: AdaptiveConfig) -> UserIntelligence:
    return UserIntelligence(adaptive_config)


def feed(intelligence: UserIntelligence, count: int, *, phase: str = "menstrual", days_apart: int = 1, sink=None):
    for i in range(count):
        intelligence.learn_from_observation(
            make_observation(
                phase=phase,
                symptoms=("Cramps",),
                mood="Tired",
                energy=2,
                timestamp=TEST_NOW + timedelta(days=i * days_apart),
                obs_id=f"{phase}-{i}",
            ),
            signal_sink=sink,
        )


class TestPhasePattern:
    def test_add_accumulates_counts(self) -> None:
        pattern = PhasePattern()
        pattern.add(make_observation(symptoms=("Cramps", "fatigue"), mood="Tired", energy=2))
        pattern.add(make_observation(symptoms=("cramps",), mood="quiet", energy=1))
        assert pattern.occurrences == 2
        assert pattern.top_symptom == "cramps"
        assert pattern.symptom_counts["cramps"] == 2
        assert set(pattern.typical_moods) == {"tired", "quiet"}
        assert pattern.typical_energy == 1

    def test_empty_pattern(self) -> None:
        pattern = PhasePattern()
        assert pattern.top_symptom is None
        assert pattern.top_mood is None

    def test_from_dict_accepts_legacy_lists(self) -> None:
        pattern = PhasePattern.from_dict(
            {"typical_symptoms": ["cramps", "cramps", "acne"], "typical_moods": ["sad"], "occurrences": 3}
        )
        assert pattern.symptom_counts["cramps"] == 2
        assert pattern.top_mood == "sad"
        assert pattern.occurrences == 3

    def test_round_trip(self) -> None:
        pattern = PhasePattern()
        pattern.add(make_observation(symptoms=("bloating",), mood="moody", energy=3))
        assert PhasePattern.from_dict(pattern.to_dict()) == pattern


class TestSignals:
    def test_empty_confidence_is_zero(self, intelligence: UserIntelligence) -> None:
        assert intelligence.signals() == {"confidence": 0, "patterns": 0}

    def test_confidence_formula(self, intelligence: UserIntelligence) -> None:
        feed(intelligence, 3, phase="menstrual")
        feed(intelligence, 1, phase="luteal")
        intelligence.track_autonomy_signal("corrects_prediction")
        # window 4 → 16, phases 2 → 16, autonomy 1 → 5
        assert intelligence.signals() == {"confidence": 37, "patterns": 1}

    def test_confidence_components_are_capped(self, intelligence: UserIntelligence) -> None:
        for phase in ("menstrual", "follicular", "ovulatory", "luteal"):
            feed(intelligence, 8, phase=phase)
        for _ in range(10):
            intelligence.track_autonomy_signal("manual_phase_change")
        assert intelligence.signals()["confidence"] == 100

    def test_window_is_bounded(self, intelligence: UserIntelligence) -> None:
        feed(intelligence, 35)
        assert len(intelligence.window) == 30
        assert intelligence.total_observations == 35

    def test_observation_without_phase_skips_pattern(self, intelligence: UserIntelligence) -> None:
        intelligence.learn_from_observation(make_observation(phase=None))
        assert intelligence.total_observations == 1
        assert intelligence.phases_with_data() == 0


class TestAutonomySignals:
    def test_known_signal_counts(self, intelligence: UserIntelligence) -> None:
        assert intelligence.track_autonomy_signal("detailed_observation", {"observation_id": "x"})
        assert intelligence.autonomy.detailed_observations == 1
        assert intelligence.autonomy.total == 1

    def test_unknown_signal_is_ignored(self, intelligence: UserIntelligence, caplog) -> None:
        with caplog.at_level("WARNING", logger="lunara.adaptive.intelligence"):
            assert not intelligence.track_autonomy_signal("telepathy")
        assert intelligence.autonomy.total == 0
        assert "unknown autonomy signal" in caplog.text

    def test_pattern_recognition_emitted_once(self, intelligence: UserIntelligence) -> None:
        """The sink fires when a phase first exceeds 5 occurrences, then never again."""
        sink = MagicMock()
        feed(intelligence, 5, sink=sink)
        sink.assert_not_called()
        feed(intelligence, 4, sink=sink)
        sink.assert_called_once()
        signal_type, data = sink.call_args.args
        assert signal_type == "pattern_recognition"
        assert data == {"phase": "menstrual", "occurrences": 6}

    def test_pattern_recognition_without_sink_counts_locally(self, intelligence: UserIntelligence) -> None:
        feed(intelligence, 6)
        assert intelligence.autonomy.pattern_recognitions == 1

    def test_from_dict_sanitizes(self) -> None:
        signals = AutonomySignals.from_dict({"corrects_predictions": -2, "manual_phase_changes": "3"})
        assert signals.corrects_predictions == 0
        assert signals.manual_phase_changes == 3


class TestReadiness:
    def test_predictive_with_few_observations(self, intelligence: UserIntelligence) -> None:
        feed(intelligence, 4)
        assert intelligence.cycle_mode() == "predictive"

    def test_hybrid_with_consistent_logging(self, intelligence: UserIntelligence) -> None:
        feed(intelligence, 5)
        readiness = intelligence.observation_readiness()
        assert readiness.consistency == pytest.approx(1.0)
        assert readiness.ready_for_hybrid
        assert not readiness.ready_for_observation
        assert intelligence.cycle_mode() == "hybrid"

    def test_sparse_logging_stays_predictive(self, intelligence: UserIntelligence) -> None:
        """Observations every third day give consistency ≈ 0.38, below 0.4."""
        feed(intelligence, 6, days_apart=3)
        assert intelligence.consistency() == pytest.approx(6 / 16)
        assert intelligence.cycle_mode() == "predictive"

    def test_observation_mode(self, intelligence: UserIntelligence) -> None:
        feed(intelligence, 20)
        assert intelligence.cycle_mode() == "observation"


class TestStateManagement:
    def test_restore_round_trip(self, intelligence: UserIntelligence, adaptive_config: AdaptiveConfig) -> None:
        feed(intelligence, 6)
        intelligence.track_autonomy_signal("corrects_prediction")
        state = intelligence.to_dict()

        restored = UserIntelligence(adaptive_config)
        restored.restore(
            state["phase_patterns"],
            state["autonomy_signals"],
            recent_observations=list(intelligence.window),
            total_observations=state["total_observations"],
            recognized_phases=state["recognized_phases"],
        )
        assert restored.signals() == intelligence.signals()
        assert restored.autonomy == intelligence.autonomy
        assert restored.to_dict() == state

    def test_restored_phase_is_not_recognized_twice(
        self, intelligence: UserIntelligence, adaptive_config: AdaptiveConfig
    ) -> None:
        feed(intelligence, 6)
        state = intelligence.to_dict()
        restored = UserIntelligence(adaptive_config)
        restored.restore(state["phase_patterns"], state["autonomy_signals"])

        sink = MagicMock()
        feed(restored, 1, sink=sink)
        sink.assert_not_called()

    def test_reset(self, intelligence: UserIntelligence) -> None:
        feed(intelligence, 6)
        intelligence.reset()
        assert intelligence.signals() == {"confidence": 0, "patterns": 0}
        assert intelligence.total_observations == 0
