"""Cycle state and observation intake for Lunara.

This subpackage owns the calendar side of the engine: the user's current
cycle anchor, the default calendar phase predictor, and the bounded log of
self-reported observations.

Modules:
    calendar     — Calendar phase prediction and CycleState
    observations — Observation records and the bounded ObservationLog
"""

from src.adaptive.cycle.calendar import CycleState, cycle_day, predict_phase
from src.adaptive.cycle.observations import Observation, ObservationLog

__all__ = [
    "CycleState",
    "cycle_day",
    "predict_phase",
    "Observation",
    "ObservationLog",
]
