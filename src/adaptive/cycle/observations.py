"""Observation records and the bounded observation log.

An observation is the user's self-report for a day: overall feeling and
energy on a 1–5 scale, free-text notes, optional symptoms and mood.  Input is
never rejected for being out of range; it is clamped, truncated or defaulted
instead.  The only refusal is recording without an active cycle, which logs a
warning and stores nothing.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable
from uuid import uuid4

from src.adaptive.base import clamp, is_valid_phase, round_half_up, safe_int, utc_now
from src.adaptive.config_loader import AdaptiveConfig, get_adaptive_config
from src.adaptive.cycle.calendar import CycleState

logger = logging.getLogger("lunara.adaptive.cycle.observations")

SCALE_MIN = 1
SCALE_MAX = 5


def _scale_value(value: object, default: int) -> int:
    """Coerce a 1–5 scale value; non-numeric input falls back to ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return int(clamp(round_half_up(number), SCALE_MIN, SCALE_MAX))


def _clean_symptoms(symptoms: Iterable[Any] | None) -> tuple[str, ...]:
    if not symptoms or isinstance(symptoms, str):
        return (symptoms.strip(),) if isinstance(symptoms, str) and symptoms.strip() else ()
    return tuple(str(s).strip() for s in symptoms if s is not None and str(s).strip())


@dataclass(frozen=True)
class Observation:
    """A single stored self-report. Immutable once recorded.

    Attributes:
        id:        Random hex identifier.
        timestamp: UTC time of recording.
        feeling:   Overall feeling, 1–5.
        energy:    Energy level, 1–5.
        notes:     Free text, truncated to the configured maximum.
        symptoms:  Symptom labels as entered.
        mood:      Mood label, if given.
        phase:     Calendar-predicted phase when recorded.
        cycle_day: Calendar cycle day when recorded.
    """

    id: str
    timestamp: datetime
    feeling: int
    energy: int
    notes: str = ""
    symptoms: tuple[str, ...] = field(default_factory=tuple)
    mood: str | None = None
    phase: str | None = None
    cycle_day: int | None = None

    @property
    def observed_on(self) -> date:
        return self.timestamp.date()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "feeling": self.feeling,
            "energy": self.energy,
            "notes": self.notes,
            "symptoms": list(self.symptoms),
            "mood": self.mood,
            "phase": self.phase,
            "cycle_day": self.cycle_day,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any], notes_max_length: int = 500) -> "Observation | None":
        """Rebuild a stored observation; returns None if the timestamp is unusable."""
        ts = raw.get("timestamp")
        if isinstance(ts, datetime):
            timestamp = ts
        else:
            try:
                timestamp = datetime.fromisoformat(str(ts))
            except ValueError:
                logger.warning("Dropping stored observation with bad timestamp %r", ts)
                return None
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        phase = raw.get("phase")
        mood = raw.get("mood")
        return cls(
            id=str(raw.get("id") or uuid4().hex),
            timestamp=timestamp,
            feeling=_scale_value(raw.get("feeling"), 3),
            energy=_scale_value(raw.get("energy"), 3),
            notes=str(raw.get("notes") or "")[:notes_max_length],
            symptoms=_clean_symptoms(raw.get("symptoms")),
            mood=(str(mood).strip() or None) if mood else None,
            phase=phase if is_valid_phase(phase) else None,
            cycle_day=safe_int(raw.get("cycle_day")),
        )


class ObservationLog:
    """Bounded ring buffer of observations (oldest evicted first).

    Usage::

        log = ObservationLog()
        obs = log.record(feeling=4, energy=7, notes="good day", cycle=cycle)
        obs.energy       # 5
        log.entries()    # oldest → newest
    """

    def __init__(
        self,
        config: AdaptiveConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or get_adaptive_config()
        self._clock = clock or utc_now
        self._entries: deque[Observation] = deque(maxlen=self._config.observations.history_limit)

    @property
    def capacity(self) -> int:
        return self._config.observations.history_limit

    def record(
        self,
        feeling: object = None,
        energy: object = None,
        notes: object = "",
        symptoms: Iterable[Any] | None = None,
        mood: object = None,
        *,
        cycle: CycleState,
        as_of: date | None = None,
    ) -> Observation | None:
        """Validate, stamp and append an observation.

        Args:
            feeling:  1–5 (missing → default, out of range → clamped).
            energy:   1–5 (non-numeric → default, out of range → clamped).
            notes:    Free text; truncated, never rejected.
            symptoms: Optional symptom labels.
            mood:     Optional mood label.
            cycle:    Current cycle state; must be active.
            as_of:    Calendar date used to stamp phase and cycle day.

        Returns:
            The stored Observation, or None when no cycle is active.
        """
        if not cycle.is_active:
            logger.warning("Observation ignored: no active cycle")
            return None

        oc = self._config.observations
        now = self._clock()
        day = as_of or now.date()
        observation = Observation(
            id=uuid4().hex,
            timestamp=now,
            feeling=_scale_value(feeling, oc.default_feeling),
            energy=_scale_value(energy, oc.default_energy),
            notes=("" if notes is None else str(notes))[: oc.notes_max_length],
            symptoms=_clean_symptoms(symptoms),
            mood=(mood.strip() or None) if isinstance(mood, str) else None,
            phase=cycle.current_phase(day, self._config.cycle),
            cycle_day=cycle.current_day(day),
        )
        self._entries.append(observation)
        return observation

    def entries(self) -> list[Observation]:
        """All stored observations, oldest first."""
        return list(self._entries)

    def recent(self, limit: int) -> list[Observation]:
        """Up to ``limit`` observations, newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._entries))[:limit]

    def restore(self, observations: Iterable[Observation]) -> None:
        self._entries = deque(observations, maxlen=self.capacity)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
