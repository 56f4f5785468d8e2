"""Shared constants and coercion helpers for the Lunara adaptive engine.

Phase names, maturity levels and the number coercion used by every
engine live here so the tracker, gate and observation engine agree on them.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone

logger = logging.getLogger("lunara.adaptive")

# Phases in cycle order
PHASES: tuple[str, ...] = ("menstrual", "follicular", "ovulatory", "luteal")

MATURITY_ORDER: tuple[str, ...] = ("discovery", "learning", "autonomous")

# Cycle modes reported alongside observations
MODE_PREDICTIVE = "predictive"
MODE_HYBRID = "hybrid"
MODE_OBSERVATION = "observation"

# Autonomy signal types
SIGNAL_CORRECTS_PREDICTION = "corrects_prediction"
SIGNAL_MANUAL_PHASE_CHANGE = "manual_phase_change"
SIGNAL_DETAILED_OBSERVATION = "detailed_observation"
SIGNAL_PATTERN_RECOGNITION = "pattern_recognition"

AUTONOMY_SIGNAL_TYPES: tuple[str, ...] = (
    SIGNAL_CORRECTS_PREDICTION,
    SIGNAL_MANUAL_PHASE_CHANGE,
    SIGNAL_DETAILED_OBSERVATION,
    SIGNAL_PATTERN_RECOGNITION,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def safe_int(value: object) -> int | None:
    """Safely coerce a value to int, returning None on failure.

    Booleans, NaN and infinities are rejected.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number)


def safe_count(value: object) -> float:
    """Coerce a counter to a non-negative finite float (0.0 on garbage)."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (not banker's rounding)."""
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def is_valid_phase(phase: object) -> bool:
    return isinstance(phase, str) and phase in PHASES
