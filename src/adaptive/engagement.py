"""Engagement metric tracking and maturity classification.

Every user action flows through ``EngagementTracker.track_action`` which runs
a fixed pipeline:

1. daily session bookkeeping (at most once per calendar day),
2. the single counter mutation for the action type,
3. maturity recomputation (a pure read of the settled metrics),
4. listener notification (persistence, logging).

Listeners must never call ``track_action`` themselves; doing so raises
``RuntimeError``.

Maturity uses a strict all-or-nothing waterfall, most advanced tier first:

    autonomous  days ≥ 21, conversations ≥ 10, entries ≥ 8, cycles ≥ 1
    learning    days ≥ 7,  conversations ≥ 3,  entries ≥ 2
    discovery   everything else
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable

from src.adaptive.base import (
    MATURITY_ORDER,
    clamp,
    is_valid_phase,
    round_half_up,
    safe_count,
    safe_int,
    utc_now,
)
from src.adaptive.config_loader import AdaptiveConfig, get_adaptive_config

logger = logging.getLogger("lunara.adaptive.engagement")

# Action types with a dedicated counter mutation
ACTION_CONVERSATION_STARTED = "conversation_started"
ACTION_CONVERSATION_COMPLETED = "conversation_completed"
ACTION_NOTEBOOK_ENTRY = "notebook_entry"
ACTION_CYCLE_DAY_TRACKED = "cycle_day_tracked"
ACTION_INSIGHT_SAVED = "insight_saved"
ACTION_VIGNETTE_ENGAGED = "vignette_engaged"
ACTION_PHASE_EXPLORED = "phase_explored"
ACTION_AUTONOMY_SIGNAL = "autonomy_signal"
ACTION_CYCLE_COMPLETED = "cycle_completed"
ACTION_SESSION_TIME = "session_time"

_COUNTER_ACTIONS: dict[str, str] = {
    ACTION_CONVERSATION_STARTED: "conversations_started",
    ACTION_CONVERSATION_COMPLETED: "conversations_completed",
    ACTION_NOTEBOOK_ENTRY: "notebook_entries_created",
    ACTION_CYCLE_DAY_TRACKED: "cycle_tracked_days",
    ACTION_INSIGHT_SAVED: "insights_saved",
    ACTION_VIGNETTE_ENGAGED: "vignettes_engaged",
    ACTION_AUTONOMY_SIGNAL: "autonomy_signals",
    ACTION_CYCLE_COMPLETED: "cycles_completed",
}

KNOWN_ACTIONS: frozenset[str] = frozenset(
    {*_COUNTER_ACTIONS, ACTION_PHASE_EXPLORED, ACTION_SESSION_TIME}
)

_COUNTER_FIELDS: tuple[str, ...] = (
    "days_used",
    "sessions_count",
    "total_time_spent",
    "conversations_started",
    "conversations_completed",
    "notebook_entries_created",
    "cycle_tracked_days",
    "insights_saved",
    "vignettes_engaged",
    "cycles_completed",
    "autonomy_signals",
)


@dataclass
class EngagementMetrics:
    """Usage counters for one user.

    Attributes:
        days_used:         Distinct calendar days with at least one action.
        sessions_count:    Sessions opened (one per active day).
        total_time_spent:  Minutes reported via ``session_time`` actions.
        phases_explored:   Distinct cycle phases the user opened.
        last_active_date:  Calendar day of the latest tracked action.
    """

    days_used: int = 0
    sessions_count: int = 0
    total_time_spent: int = 0
    conversations_started: int = 0
    conversations_completed: int = 0
    notebook_entries_created: int = 0
    cycle_tracked_days: int = 0
    insights_saved: int = 0
    vignettes_engaged: int = 0
    cycles_completed: int = 0
    autonomy_signals: int = 0
    phases_explored: set[str] = field(default_factory=set)
    last_active_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {name: getattr(self, name) for name in _COUNTER_FIELDS}
        data["phases_explored"] = sorted(self.phases_explored)
        data["last_active_date"] = (
            self.last_active_date.isoformat() if self.last_active_date else None
        )
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "EngagementMetrics":
        metrics = cls()
        for name in _COUNTER_FIELDS:
            value = safe_int(raw.get(name))
            setattr(metrics, name, max(0, value) if value is not None else 0)
        explored = raw.get("phases_explored")
        if isinstance(explored, (list, tuple, set)):
            metrics.phases_explored = {p for p in explored if is_valid_phase(p)}
        last_active = raw.get("last_active_date")
        if isinstance(last_active, date):
            metrics.last_active_date = last_active
        elif isinstance(last_active, str) and last_active:
            try:
                metrics.last_active_date = date.fromisoformat(last_active)
            except ValueError:
                logger.warning("Ignoring unparseable last_active_date %r", last_active)
        return metrics


@dataclass
class MaturityState:
    """Current maturity classification. Overwritten on every recompute."""

    level: str = "discovery"
    confidence: int = 0
    last_calculated: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "confidence": self.confidence,
            "last_calculated": self.last_calculated.isoformat() if self.last_calculated else None,
        }


@dataclass
class Milestone:
    """Gap between the current metrics and the next maturity tier."""

    level: str
    missing: dict[str, int]


MaturityListener = Callable[[EngagementMetrics, MaturityState], None]


class EngagementTracker:
    """Track engagement actions and classify maturity.

    Usage::

        tracker = EngagementTracker()
        tracker.track_action("conversation_started")
        tracker.maturity.level        # 'discovery'
        tracker.get_engagement_score()
    """

    def __init__(
        self,
        config: AdaptiveConfig | None = None,
        clock: Callable[[], date] | None = None,
    ) -> None:
        self._config = config or get_adaptive_config()
        self._clock = clock or date.today
        self.metrics = EngagementMetrics()
        self.maturity = MaturityState()
        self._listeners: list[MaturityListener] = []
        self._in_pipeline = False

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: MaturityListener) -> None:
        """Register a callback run after every recompute."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Mutation pipeline
    # ------------------------------------------------------------------

    def track_action(self, action_type: str, metadata: dict[str, Any] | None = None) -> MaturityState:
        """Apply one action, then recompute maturity and notify listeners.

        Unknown action types are accepted: they still count toward daily
        session bookkeeping but touch no other counter.

        Args:
            action_type: One of KNOWN_ACTIONS (anything else is a no-op).
            metadata:    Extra data; ``phase`` for phase_explored,
                         ``minutes`` for session_time.

        Returns:
            The freshly computed MaturityState.

        Raises:
            TypeError:    If action_type is not a string.
            RuntimeError: If called from inside a recompute listener.
        """
        if not isinstance(action_type, str):
            raise TypeError(f"action_type must be a str, got {type(action_type).__name__}")
        if self._in_pipeline:
            raise RuntimeError("track_action() must not be called from a maturity listener")

        self._in_pipeline = True
        try:
            self._apply(action_type, metadata if isinstance(metadata, dict) else {})
            state = self.calculate_maturity()
            for listener in self._listeners:
                listener(self.metrics, state)
        finally:
            self._in_pipeline = False
        return state

    def _apply(self, action_type: str, metadata: dict[str, Any]) -> None:
        metrics = self.metrics
        today = self._clock()

        phase = metadata.get("phase")
        if action_type == ACTION_PHASE_EXPLORED and phase is not None and not is_valid_phase(phase):
            logger.warning("Ignoring phase_explored with unknown phase %r", phase)
            phase = None

        if metrics.last_active_date != today:
            metrics.days_used += 1
            metrics.sessions_count += 1
            metrics.last_active_date = today

        counter = _COUNTER_ACTIONS.get(action_type)
        if counter is not None:
            setattr(metrics, counter, getattr(metrics, counter) + 1)
        elif action_type == ACTION_PHASE_EXPLORED:
            if phase is not None:
                metrics.phases_explored.add(phase)
        elif action_type == ACTION_SESSION_TIME:
            minutes = safe_int(metadata.get("minutes"))
            if minutes and minutes > 0:
                metrics.total_time_spent += minutes
        else:
            logger.debug("Untracked action type %r (session bookkeeping only)", action_type)

    # ------------------------------------------------------------------
    # Maturity
    # ------------------------------------------------------------------

    def calculate_maturity(self) -> MaturityState:
        """Classify maturity from the current metrics and store the result.

        The returned confidence is the same clamped [0, 100] value that is
        stored on ``self.maturity``.
        """
        m = self.metrics
        mc = self._config.maturity
        days = safe_count(m.days_used)
        conversations = safe_count(m.conversations_started)
        entries = safe_count(m.notebook_entries_created)
        cycles = safe_count(m.cycles_completed)

        auto = mc.autonomous
        learn = mc.learning
        if (
            days >= auto.days
            and conversations >= auto.conversations
            and entries >= auto.entries
            and cycles >= auto.cycles
        ):
            level = "autonomous"
            raw = mc.autonomous_base + safe_count(m.autonomy_signals) * mc.autonomous_per_signal
        elif days >= learn.days and conversations >= learn.conversations and entries >= learn.entries:
            level = "learning"
            raw = mc.learning_base + len(m.phases_explored) * mc.learning_per_phase
        else:
            level = "discovery"
            raw = days * mc.discovery_per_day

        previous = self.maturity.level
        self.maturity = MaturityState(
            level=level,
            confidence=int(clamp(raw, 0, 100)),
            last_calculated=utc_now(),
        )
        if previous != level:
            logger.info("Maturity level changed: %s → %s", previous, level)
        return self.maturity

    # ------------------------------------------------------------------
    # Getters
    # ------------------------------------------------------------------

    def get_engagement_score(self) -> int:
        """Composite 0–100 engagement score.

        Every input is coerced to a non-negative finite number first so the
        result stays in range even for corrupted counters.
        """
        m = self.metrics
        w = self._config.engagement_score
        total = (
            safe_count(m.days_used) * w.days_used
            + safe_count(m.conversations_completed) * w.conversations_completed
            + safe_count(len(m.phases_explored) if isinstance(m.phases_explored, (set, list, tuple)) else 0)
            * w.phases_explored
            + safe_count(m.autonomy_signals) * w.autonomy_signals
        )
        return int(clamp(round_half_up(total / w.divisor), 0, 100))

    def get_next_milestone(self) -> Milestone | None:
        """Return the counters still missing to reach the next tier, or None at the top."""
        level = self.maturity.level
        if level == "autonomous":
            return None

        next_level = "learning" if level == "discovery" else "autonomous"
        target = self._config.maturity.thresholds_for(next_level)
        m = self.metrics
        return Milestone(
            level=next_level,
            missing={
                "days": max(0, target.days - m.days_used),
                "conversations": max(0, target.conversations - m.conversations_started),
                "entries": max(0, target.entries - m.notebook_entries_created),
                "cycles": max(0, target.cycles - m.cycles_completed),
            },
        )

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def reset(self) -> None:
        self.metrics = EngagementMetrics()
        self.maturity = MaturityState()

    def to_snapshot(self) -> dict[str, Any]:
        return {"metrics": self.metrics.to_dict(), "maturity": self.maturity.to_dict()}

    def restore(self, metrics: EngagementMetrics, maturity: MaturityState | None = None) -> None:
        """Replace state from a snapshot, recomputing maturity if none was stored."""
        self.metrics = metrics
        if maturity is None or maturity.level not in MATURITY_ORDER:
            self.calculate_maturity()
        else:
            maturity.confidence = int(clamp(safe_count(maturity.confidence), 0, 100))
            self.maturity = maturity
