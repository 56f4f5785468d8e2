"""Tests for the adaptive session: signal routing, cycle operations and persistence."""

from __future__ import annotations

from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest

from src.adaptive.session import AdaptiveSession
from src.adaptive.store import InMemoryStore, SnapshotError
from src.adaptive.tests.conftest import TEST_DATE, FakeClock

DETAILED = {
    "feeling": 4,
    "energy": 2,
    "symptoms": ["cramps"],
    "mood": "tired",
    "notes": "Heavy first day, stayed in",
}


class TestEngagement:
    def test_track_action_persists(self, session: AdaptiveSession, store: InMemoryStore) -> None:
        session.track_action("conversation_started")
        assert store.saves == 1
        assert store.load()["metrics"]["conversations_started"] == 1

    def test_failing_store_is_logged_not_raised(self, session_factory, caplog) -> None:
        store = MagicMock()
        store.save.side_effect = OSError("read-only filesystem")
        session = session_factory(store=store)

        with caplog.at_level("WARNING", logger="lunara.adaptive.session"):
            state = session.track_action("notebook_entry")

        assert state.level == "discovery"
        assert session.metrics.notebook_entries_created == 1
        assert "Snapshot write failed" in caplog.text

    def test_session_without_store(self, session_factory) -> None:
        session = session_factory()
        session.track_action("insight_saved")
        assert session.metrics.insights_saved == 1

    def test_features_follow_metrics(self, session: AdaptiveSession, clock: FakeClock) -> None:
        assert not session.is_feature_available("calendar_view")
        for _ in range(3):
            session.track_action("conversation_started")
            clock.advance()
        assert session.is_feature_available("calendar_view")
        assert session.evaluate_feature("calendar_view").progress == 100
        assert session.evaluate_all_features().summary["available"] >= 1


class TestCycle:
    def test_start_new_cycle(self, session: AdaptiveSession) -> None:
        cycle = session.start_new_cycle()
        assert cycle.last_period_start == TEST_DATE
        assert session.current_phase() == "menstrual"
        assert session.current_day() == 1
        assert session.metrics.cycles_completed == 0

    def test_second_cycle_completes_the_first(self, session: AdaptiveSession, clock: FakeClock) -> None:
        session.start_new_cycle()
        clock.advance(28)
        session.start_new_cycle()
        assert session.metrics.cycles_completed == 1
        assert session.cycle.last_period_start == clock.today

    def test_update_cycle_validates(self, session: AdaptiveSession, caplog) -> None:
        session.start_new_cycle()
        with caplog.at_level("WARNING", logger="lunara.adaptive.session"):
            cycle, errors = session.update_cycle(cycle_length=60)
        assert errors == ["Cycle length must be between 21 and 45 days"]
        assert cycle.cycle_length == 28
        assert "Cycle update rejected" in caplog.text

        cycle, errors = session.update_cycle(cycle_length=32, period_duration=4)
        assert errors == []
        assert (cycle.cycle_length, cycle.period_duration) == (32, 4)

    def test_end_period(self, session: AdaptiveSession, clock: FakeClock) -> None:
        session.start_new_cycle()
        clock.advance(3)
        assert session.end_period().period_duration == 4

    def test_end_period_without_cycle(self, session: AdaptiveSession, store: InMemoryStore) -> None:
        cycle = session.end_period()
        assert not cycle.is_active
        assert store.saves == 0


class TestObservations:
    def test_no_active_cycle(self, session: AdaptiveSession, store: InMemoryStore) -> None:
        outcome = session.record_observation(feeling=4, energy=4)
        assert not outcome.success
        assert outcome.observation is None
        assert outcome.mode == "predictive"
        assert len(session.observations) == 0
        assert store.saves == 0

    def test_record_tracks_bookkeeping_action(self, session: AdaptiveSession) -> None:
        session.start_new_cycle()
        outcome = session.record_observation(feeling=3, energy=3)
        assert outcome.success
        assert outcome.quality.quality == "basic"
        assert session.metrics.days_used == 1
        assert session.metrics.autonomy_signals == 0
        assert session.intelligence.total_observations == 1

    def test_detailed_observation_is_an_autonomy_signal(self, session: AdaptiveSession) -> None:
        session.start_new_cycle()
        outcome = session.record_observation(**DETAILED)
        assert outcome.quality.quality == "excellent"
        assert session.intelligence.autonomy.detailed_observations == 1
        assert session.metrics.autonomy_signals == 1

    def test_pattern_recognition_reaches_tracker(self, session: AdaptiveSession) -> None:
        session.start_new_cycle()
        for _ in range(6):
            session.record_observation(energy=3)
        assert session.intelligence.autonomy.pattern_recognitions == 1
        assert session.metrics.autonomy_signals == 1

    def test_observations_drive_inference(self, session: AdaptiveSession) -> None:
        session.start_new_cycle()
        for _ in range(3):
            outcome = session.record_observation(energy=3, symptoms=["bloating"], mood="irritable")
        assert outcome.phase == "luteal"
        inference = session.infer_phase()
        assert inference.method == "observation"
        assert inference.predicted_phase == "menstrual"

    def test_guidance_and_prompts(self, session: AdaptiveSession) -> None:
        session.start_new_cycle()
        guidance = session.get_observation_guidance()
        assert guidance.action == "log_feeling"
        prompts = session.get_intelligent_prompts("menstrual")
        assert [p.type for p in prompts] == ["mood", "symptoms", "energy"]


class TestCorrections:
    def test_correction_routes_two_signals(self, session: AdaptiveSession) -> None:
        """A disagreeing correction counts both as a correction and a manual change."""
        session.start_new_cycle()
        result = session.correct_phase("luteal")
        assert result.corrected
        assert session.intelligence.autonomy.corrects_predictions == 1
        assert session.intelligence.autonomy.manual_phase_changes == 1
        assert session.metrics.autonomy_signals == 2

    def test_agreeing_correction_is_manual_change_only(self, session: AdaptiveSession) -> None:
        session.start_new_cycle()
        result = session.correct_phase("menstrual")
        assert not result.corrected
        assert session.intelligence.autonomy.corrects_predictions == 0
        assert session.metrics.autonomy_signals == 1

    def test_invalid_input(self, session: AdaptiveSession) -> None:
        with pytest.raises(TypeError):
            session.correct_phase(3)  # type: ignore[arg-type]
        with pytest.raises(ValueError, match="Unknown cycle phase"):
            session.correct_phase("winter")
        assert session.metrics.autonomy_signals == 0


class TestComposition:
    def test_compose(self, session: AdaptiveSession) -> None:
        session.track_action("conversation_started")
        configuration = session.compose()
        assert configuration.maturity_level == "discovery"
        assert configuration.persona.persona_id == "emma"
        assert configuration.guidance is not None
        assert configuration.features["calendar_view"] is False

    def test_set_persona(self, session: AdaptiveSession, store: InMemoryStore) -> None:
        assert session.set_persona("clara").persona_id == "clara"
        assert store.load()["persona"] == "clara"
        assert session.set_persona("zorro").persona_id == "emma"

    def test_unknown_persona_at_construction(self, session_factory) -> None:
        assert session_factory(persona_id="zorro").persona_id == "emma"


class TestPersistence:
    def test_snapshot_restores_into_fresh_session(
        self, session: AdaptiveSession, store: InMemoryStore, session_factory
    ) -> None:
        session.start_new_cycle(date(2026, 2, 10))
        session.track_action("phase_explored", {"phase": "follicular"})
        session.record_observation(**DETAILED)
        session.correct_phase("luteal")
        session.set_persona("laure")

        restored = AdaptiveSession.from_store(store, config=session.config, today=session._today)

        assert restored.metrics.to_dict() == session.metrics.to_dict()
        assert restored.maturity.level == session.maturity.level
        assert [o.id for o in restored.observations.entries()] == [o.id for o in session.observations.entries()]
        assert restored.intelligence.to_dict() == session.intelligence.to_dict()
        assert restored.intelligence_signals() == session.intelligence_signals()
        assert restored.cycle == session.cycle
        assert restored.persona_id == "laure"

    def test_snapshot_is_versioned(self, session: AdaptiveSession) -> None:
        assert session.snapshot()["version"] == 1

    def test_unsupported_version_raises(self, session_factory) -> None:
        store = InMemoryStore({"version": 2})
        with pytest.raises(SnapshotError):
            AdaptiveSession.from_store(store, config=session_factory().config)

    def test_restore_legacy_snapshot(self, session: AdaptiveSession) -> None:
        session.restore(
            {
                "metrics": {"daysUsed": 8, "conversationsStarted": 4, "notebookEntriesCreated": 2},
                "cycle": {"lastPeriodStart": "2026-02-01"},
                "persona": "christine",
            }
        )
        # No stored maturity: recomputed from metrics
        assert session.maturity.level == "learning"
        assert session.cycle.last_period_start == date(2026, 2, 1)
        assert session.persona_id == "christine"

    def test_restored_naive_timestamps_mix_with_new_observations(
        self, session: AdaptiveSession, store: InMemoryStore
    ) -> None:
        session.restore(
            {
                "version": 1,
                "cycle": {"last_period_start": "2026-02-20"},
                "observations": [
                    {"id": "stored", "timestamp": "2026-02-22T10:00:00", "energy": 2, "phase": "menstrual"}
                ],
            }
        )
        assert session.observations.entries()[0].timestamp.tzinfo is not None

        outcome = session.record_observation(feeling=3, energy=2)
        assert outcome.success
        assert len(session.observations) == 2
        assert store.saves == 1

    def test_restore_invalid_maturity_recomputes(self, session: AdaptiveSession) -> None:
        session.restore(
            {
                "version": 1,
                "metrics": {"days_used": 2},
                "maturity": {"level": "grandmaster", "confidence": 99},
            }
        )
        assert session.maturity.level == "discovery"
        assert session.maturity.confidence == 20

    def test_reset(self, session: AdaptiveSession, store: InMemoryStore) -> None:
        session.start_new_cycle()
        session.record_observation(**DETAILED)
        session.reset()
        assert session.metrics.days_used == 0
        assert len(session.observations) == 0
        assert not session.cycle.is_active
        assert store.load()["observations"] == []

    def test_reset_keeps_working(self, session: AdaptiveSession, clock: FakeClock) -> None:
        session.reset()
        session.start_new_cycle(clock.today - timedelta(days=2))
        assert session.current_day() == 3
