"""Shared fixtures and builders for adaptive engine tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable

import pytest

from src.adaptive.config_loader import AdaptiveConfig, load_adaptive_config
from src.adaptive.cycle.calendar import CycleState
from src.adaptive.cycle.observations import Observation
from src.adaptive.engagement import EngagementTracker
from src.adaptive.session import AdaptiveSession
from src.adaptive.store import InMemoryStore

# Canonical reference date (a Monday)
TEST_DATE = date(2026, 2, 23)
TEST_NOW = datetime(2026, 2, 23, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock returning a calendar date."""

    def __init__(self, today: date = TEST_DATE) -> None:
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int = 1) -> date:
        self.today += timedelta(days=days)
        return self.today


class FakeNow:
    """Settable clock returning an aware datetime; each call moves forward one minute."""

    def __init__(self, start: datetime = TEST_NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current

    def advance(self, days: int = 1) -> None:
        self.current += timedelta(days=days)


def make_observation(
    *,
    phase: str | None = "menstrual",
    energy: int = 3,
    feeling: int = 3,
    symptoms: tuple[str, ...] = (),
    mood: str | None = None,
    notes: str = "",
    timestamp: datetime = TEST_NOW,
    obs_id: str = "obs",
) -> Observation:
    return Observation(
        id=obs_id,
        timestamp=timestamp,
        feeling=feeling,
        energy=energy,
        notes=notes,
        symptoms=symptoms,
        mood=mood,
        phase=phase,
        cycle_day=1,
    )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def adaptive_config() -> AdaptiveConfig:
    """Load the real adaptive config for tests."""
    return load_adaptive_config()


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def now() -> FakeNow:
    return FakeNow()


@pytest.fixture
def tracker(adaptive_config: AdaptiveConfig, clock: FakeClock) -> EngagementTracker:
    return EngagementTracker(adaptive_config, clock=clock)


@pytest.fixture
def active_cycle() -> CycleState:
    """Cycle that started on TEST_DATE (day 1, menstrual)."""
    return CycleState(last_period_start=TEST_DATE, cycle_length=28, period_duration=5)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def session(
    adaptive_config: AdaptiveConfig, store: InMemoryStore, clock: FakeClock, now: FakeNow
) -> AdaptiveSession:
    return AdaptiveSession(config=adaptive_config, store=store, today=clock, now=now)


@pytest.fixture
def session_factory(
    adaptive_config: AdaptiveConfig, clock: FakeClock, now: FakeNow
) -> Callable[..., AdaptiveSession]:
    def _factory(**kwargs) -> AdaptiveSession:
        kwargs.setdefault("config", adaptive_config)
        kwargs.setdefault("today", clock)
        kwargs.setdefault("now", now)
        return AdaptiveSession(**kwargs)

    return _factory
