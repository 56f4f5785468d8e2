"""Calendar phase prediction.

The default predictor is plain calendar arithmetic on the last period
start date:

    day = (days since last period start % cycle length) + 1

    day ≤ period duration        → menstrual
    day ≤ 40% of cycle length    → follicular
    day ≤ 60% of cycle length    → ovulatory
    otherwise                    → luteal

With no period start recorded the predictor answers ``menstrual``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Any

from src.adaptive.base import safe_int
from src.adaptive.config_loader import CycleConfig

logger = logging.getLogger("lunara.adaptive.cycle.calendar")

DEFAULT_CYCLE_LENGTH = 28
DEFAULT_PERIOD_DURATION = 5


def cycle_day(
    last_period_start: date | None,
    cycle_length: int = DEFAULT_CYCLE_LENGTH,
    as_of: date | None = None,
) -> int:
    """Day within the current cycle (1-indexed). 1 when no start date is known."""
    if last_period_start is None:
        return 1
    today = as_of or date.today()
    length = cycle_length if cycle_length and cycle_length > 0 else DEFAULT_CYCLE_LENGTH
    return (today - last_period_start).days % length + 1


def predict_phase(
    last_period_start: date | None,
    cycle_length: int = DEFAULT_CYCLE_LENGTH,
    period_duration: int = DEFAULT_PERIOD_DURATION,
    as_of: date | None = None,
    follicular_end_fraction: float = 0.4,
    ovulatory_end_fraction: float = 0.6,
) -> str:
    """Predict the cycle phase for ``as_of`` from calendar data alone.

    Args:
        last_period_start: First day of the most recent period.
        cycle_length:      Average cycle length in days.
        period_duration:   Period length in days.
        as_of:             Reference date (defaults to today).

    Returns:
        One of 'menstrual', 'follicular', 'ovulatory', 'luteal'.
    """
    if last_period_start is None:
        return "menstrual"

    length = cycle_length if cycle_length and cycle_length > 0 else DEFAULT_CYCLE_LENGTH
    day = cycle_day(last_period_start, length, as_of)

    if day <= period_duration:
        return "menstrual"
    if day <= length * follicular_end_fraction:
        return "follicular"
    if day <= length * ovulatory_end_fraction:
        return "ovulatory"
    return "luteal"


@dataclass
class CycleState:
    """The user's current cycle anchor.

    Attributes:
        last_period_start: First day of the current cycle; None means no
                           active cycle (observations are rejected).
        cycle_length:      Average cycle length in days.
        period_duration:   Period length in days.
    """

    last_period_start: date | None = None
    cycle_length: int = DEFAULT_CYCLE_LENGTH
    period_duration: int = DEFAULT_PERIOD_DURATION

    @property
    def is_active(self) -> bool:
        return self.last_period_start is not None

    def current_day(self, as_of: date | None = None) -> int:
        return cycle_day(self.last_period_start, self.cycle_length, as_of)

    def current_phase(self, as_of: date | None = None, config: CycleConfig | None = None) -> str:
        cc = config or CycleConfig()
        return predict_phase(
            self.last_period_start,
            self.cycle_length,
            self.period_duration,
            as_of,
            cc.follicular_end_fraction,
            cc.ovulatory_end_fraction,
        )

    def validate(self, config: CycleConfig | None = None) -> list[str]:
        """Return a list of human-readable problems (empty when consistent)."""
        cc = config or CycleConfig()
        errors = []
        if not (cc.min_length <= self.cycle_length <= cc.max_length):
            errors.append(f"Cycle length must be between {cc.min_length} and {cc.max_length} days")
        if not (cc.min_period_duration <= self.period_duration <= cc.max_period_duration):
            errors.append(
                f"Period duration must be between {cc.min_period_duration} "
                f"and {cc.max_period_duration} days"
            )
        if self.period_duration >= self.cycle_length:
            errors.append("Period duration must be shorter than the cycle")
        return errors

    def with_updates(self, **changes: Any) -> "CycleState":
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_period_start": self.last_period_start.isoformat() if self.last_period_start else None,
            "cycle_length": self.cycle_length,
            "period_duration": self.period_duration,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> "CycleState":
        if not raw:
            return cls()
        start = raw.get("last_period_start")
        parsed: date | None = None
        if isinstance(start, date):
            parsed = start
        elif isinstance(start, str) and start:
            try:
                parsed = date.fromisoformat(start[:10])
            except ValueError:
                logger.warning("Ignoring unparseable last_period_start %r", start)
        length = safe_int(raw.get("cycle_length"))
        duration = safe_int(raw.get("period_duration"))
        return cls(
            last_period_start=parsed,
            cycle_length=length if length and length > 0 else DEFAULT_CYCLE_LENGTH,
            period_duration=duration if duration and duration > 0 else DEFAULT_PERIOD_DURATION,
        )
