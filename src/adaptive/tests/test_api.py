"""End-to-end tests for the HTTP layer using FastAPI's TestClient."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from src.adaptive.session import AdaptiveSession
from src.config import get_settings
from src.main import create_app

API = "/api/v1/adaptive"


@pytest.fixture
def client(session: AdaptiveSession):
    with TestClient(create_app(session=session)) as test_client:
        yield test_client


@pytest.fixture
def cycling_client(client: TestClient) -> TestClient:
    response = client.put(f"{API}/cycle", json={"start_new_cycle": True, "last_period_start": "2026-02-23"})
    assert response.status_code == 200
    return client


class TestHealth:
    def test_healthy_with_session(self, client: TestClient) -> None:
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["session"] == "loaded"

    def test_missing_session(self) -> None:
        """Without the lifespan running there is no session: 503 and a degraded health check."""
        client = TestClient(create_app())
        assert client.get("/health").json()["status"] == "degraded"
        response = client.get(f"{API}/engagement")
        assert response.status_code == 503


class TestEngagementRoutes:
    def test_track_action(self, client: TestClient) -> None:
        response = client.post(f"{API}/actions", json={"action_type": "conversation_started"})
        assert response.status_code == 200
        body = response.json()
        assert body["metrics"]["conversations_started"] == 1
        assert body["maturity"]["level"] == "discovery"
        assert body["maturity"]["confidence"] == 10
        assert body["next_milestone"]["level"] == "learning"

    def test_phase_explored_metadata(self, client: TestClient) -> None:
        client.post(f"{API}/actions", json={"action_type": "phase_explored", "metadata": {"phase": "luteal"}})
        body = client.get(f"{API}/engagement").json()
        assert body["metrics"]["phases_explored"] == ["luteal"]
        assert body["engagement_score"] == 8  # (5 + 25) / 4 = 7.5

    def test_malformed_phase_metadata_keeps_session_healthy(
        self, client: TestClient, session: AdaptiveSession, store
    ) -> None:
        for phase in (1, ["menstrual"]):
            response = client.post(f"{API}/actions", json={"action_type": "phase_explored", "metadata": {"phase": phase}})
            assert response.status_code == 200
        body = client.get(f"{API}/engagement").json()
        assert body["metrics"]["phases_explored"] == []
        assert store.saves == 2

    def test_empty_action_rejected(self, client: TestClient) -> None:
        assert client.post(f"{API}/actions", json={"action_type": ""}).status_code == 422


class TestFeatureRoutes:
    def test_list_features(self, client: TestClient) -> None:
        body = client.get(f"{API}/features").json()
        assert body["summary"]["total"] == 9
        assert body["features"]["calendar_view"]["available"] is False

    def test_single_feature(self, client: TestClient) -> None:
        client.post(f"{API}/actions", json={"action_type": "vignette_engaged"})
        body = client.get(f"{API}/features/calendar_view").json()
        assert body["found"] is True
        assert body["progress"] == 17  # days 1/3 → 33%, conversations 0/1 → 0%
        assert body["next_unmet_requirement"]["metric"] == "daysUsed"

    def test_unknown_feature_404(self, client: TestClient) -> None:
        response = client.get(f"{API}/features/teleportation")
        assert response.status_code == 404
        assert response.json()["detail"] == "Feature not found"

    def test_suggestions(self, client: TestClient) -> None:
        assert client.get(f"{API}/features/suggestions").json() == []


class TestCycleRoutes:
    def test_start_cycle(self, client: TestClient) -> None:
        body = client.put(
            f"{API}/cycle", json={"start_new_cycle": True, "last_period_start": "2026-02-23", "cycle_length": 30}
        ).json()
        assert body["success"] is True
        assert body["cycle"]["active"] is True
        assert body["cycle"]["current_phase"] == "menstrual"
        assert body["cycle"]["current_day"] == 1
        assert body["cycle"]["cycle_length"] == 30

    def test_invalid_update_reports_errors(self, cycling_client: TestClient) -> None:
        body = cycling_client.put(f"{API}/cycle", json={"cycle_length": 60}).json()
        assert body["success"] is False
        assert body["errors"] == ["Cycle length must be between 21 and 45 days"]
        assert body["cycle"]["cycle_length"] == 28

    def test_end_period(self, cycling_client: TestClient) -> None:
        body = cycling_client.post(f"{API}/cycle/end-period").json()
        assert body["period_duration"] == 1

    def test_get_cycle(self, client: TestClient) -> None:
        body = client.get(f"{API}/cycle").json()
        assert body["active"] is False
        assert body["current_phase"] == "menstrual"


class TestObservationRoutes:
    def test_observation_without_cycle(self, client: TestClient) -> None:
        body = client.post(f"{API}/observations", json={"energy": 4}).json()
        assert body["success"] is False
        assert body["observation"] is None

    def test_observation_is_clamped(self, cycling_client: TestClient) -> None:
        body = cycling_client.post(
            f"{API}/observations",
            json={"energy": 10, "feeling": "great", "symptoms": ["bloating"], "mood": "irritable", "notes": "Puffy and short-tempered"},
        ).json()
        assert body["success"] is True
        assert body["observation"]["energy"] == 5
        assert body["observation"]["feeling"] == 3
        assert body["quality"]["quality"] == "excellent"

    def test_phase_and_correction(self, cycling_client: TestClient) -> None:
        phase = cycling_client.get(f"{API}/phase").json()
        assert phase["method"] == "predictive"
        assert phase["mode"] == "predictive"

        correction = cycling_client.post(f"{API}/phase/correction", json={"observed_phase": "luteal"}).json()
        assert correction["corrected"] is True
        engagement = cycling_client.get(f"{API}/engagement").json()
        assert engagement["metrics"]["autonomy_signals"] == 2

    def test_invalid_phase_rejected(self, cycling_client: TestClient) -> None:
        response = cycling_client.post(f"{API}/phase/correction", json={"observed_phase": "winter"})
        assert response.status_code == 422

    def test_guidance_and_prompts(self, cycling_client: TestClient) -> None:
        guidance = cycling_client.get(f"{API}/guidance", params={"phase": "ovulatory"}).json()
        assert guidance["action"] == "log_mood"
        prompts = cycling_client.get(f"{API}/prompts").json()
        assert [p["type"] for p in prompts] == ["mood", "symptoms", "energy"]


class TestCompositionRoutes:
    def test_configuration(self, client: TestClient) -> None:
        body = client.get(f"{API}/configuration").json()
        assert body["maturity_level"] == "discovery"
        assert body["persona"]["persona_id"] == "emma"
        assert body["default_view"] == "guided"
        assert body["features"]["calendar_view"] is False
        assert len(body["next_steps"]) <= 3

    def test_set_persona(self, client: TestClient) -> None:
        assert client.put(f"{API}/persona", json={"persona_id": "christine"}).json()["persona_id"] == "christine"
        body = client.get(f"{API}/configuration").json()
        assert body["effective_complexity"] == "simplified"


class TestAppSettings:
    def test_debug_and_title_follow_settings(self, monkeypatch) -> None:
        monkeypatch.setenv("LUNARA_DEBUG", "true")
        monkeypatch.setenv("LUNARA_APP_NAME", "Lunara Staging")
        get_settings.cache_clear()
        try:
            app = create_app()
            assert app.debug is True
            assert app.title == "Lunara Staging API"
        finally:
            get_settings.cache_clear()

    def test_debug_off_by_default(self, session: AdaptiveSession) -> None:
        assert create_app(session=session).debug is False
