"""Pydantic models for the adaptive engine API and its persisted snapshot."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import ConfigDict, Field

from src.models.base import LunaraBase

SNAPSHOT_VERSION = 1


# ---------- Enums ----------

class CyclePhase(str, Enum):
    menstrual = "menstrual"
    follicular = "follicular"
    ovulatory = "ovulatory"
    luteal = "luteal"


class MaturityLevel(str, Enum):
    discovery = "discovery"
    learning = "learning"
    autonomous = "autonomous"


# ---------- Engagement ----------

class TrackActionRequest(LunaraBase):
    action_type: str = Field(min_length=1, max_length=64)
    metadata: dict[str, Any] | None = None


class EngagementMetricsRead(LunaraBase):
    days_used: int
    sessions_count: int
    total_time_spent: int
    conversations_started: int
    conversations_completed: int
    notebook_entries_created: int
    cycle_tracked_days: int
    insights_saved: int
    vignettes_engaged: int
    cycles_completed: int
    autonomy_signals: int
    phases_explored: list[str]
    last_active_date: date | None = None


class MaturityRead(LunaraBase):
    level: MaturityLevel
    confidence: int = Field(ge=0, le=100)
    last_calculated: datetime | None = None


class MilestoneRead(LunaraBase):
    level: MaturityLevel
    missing: dict[str, int]


class EngagementRead(LunaraBase):
    metrics: EngagementMetricsRead
    maturity: MaturityRead
    engagement_score: int = Field(ge=0, le=100)
    next_milestone: MilestoneRead | None = None


# ---------- Features ----------

class FeatureCheckRead(LunaraBase):
    metric: str
    required: Any
    current: Any
    passed: bool


class FeatureRead(LunaraBase):
    key: str
    found: bool
    available: bool
    progress: int = Field(ge=0, le=100)
    checks: list[FeatureCheckRead] = Field(default_factory=list)
    next_unmet_requirement: FeatureCheckRead | None = None
    category: str | None = None
    description: str | None = None


class FeaturesRead(LunaraBase):
    features: dict[str, FeatureRead]
    summary: dict[str, Any]


class ProgressionSuggestionRead(LunaraBase):
    feature_key: str
    description: str
    action: str
    progress: int
    priority: str


# ---------- Cycle & observations ----------

class CycleUpdate(LunaraBase):
    """Partial update of the cycle anchor.

    ``start_new_cycle`` starts a cycle on ``last_period_start`` (or today) and
    counts the previous one as completed.
    """

    last_period_start: date | None = None
    cycle_length: int | None = Field(default=None, ge=1, le=120)
    period_duration: int | None = Field(default=None, ge=1, le=30)
    start_new_cycle: bool = False


class CycleRead(LunaraBase):
    active: bool
    last_period_start: date | None = None
    cycle_length: int
    period_duration: int
    current_phase: CyclePhase
    current_day: int


class CycleUpdateResult(LunaraBase):
    success: bool
    errors: list[str] = Field(default_factory=list)
    cycle: CycleRead


class ObservationCreate(LunaraBase):
    """Observation input; out-of-range values are clamped, not rejected."""

    feeling: Any = None
    energy: Any = None
    notes: str | None = ""
    symptoms: list[str] = Field(default_factory=list)
    mood: str | None = None


class ObservationRead(LunaraBase):
    id: str
    timestamp: datetime
    feeling: int
    energy: int
    notes: str
    symptoms: list[str]
    mood: str | None = None
    phase: CyclePhase | None = None
    cycle_day: int | None = None


class ObservationQualityRead(LunaraBase):
    score: int
    quality: str
    feedback: list[str]
    suggestions: list[str]


class ObservationRecorded(LunaraBase):
    success: bool
    quality: ObservationQualityRead | None = None
    phase: CyclePhase
    mode: str
    observation: ObservationRead | None = None


class PhaseSignalRead(LunaraBase):
    type: str
    value: str
    phase: CyclePhase


class PhaseRead(LunaraBase):
    phase: CyclePhase
    confidence: float = Field(ge=0.0, le=1.0)
    method: str
    predicted_phase: CyclePhase | None = None
    signals: list[PhaseSignalRead] = Field(default_factory=list)
    scores: dict[str, int] = Field(default_factory=dict)
    mode: str


class PhaseCorrectionRequest(LunaraBase):
    observed_phase: CyclePhase


class CorrectionRead(LunaraBase):
    corrected: bool
    message: str | None = None


class GuidanceRead(LunaraBase):
    message: str
    action: str
    insights: list[str]
    confidence: int


class ObservationPromptRead(LunaraBase):
    prompt: str
    type: str
    options: list[str]
    priority: str


# ---------- Composition ----------

class NextStepRead(LunaraBase):
    type: str
    action: str
    priority: str


class PersonaRead(LunaraBase):
    persona_id: str
    preferred_actions: list[str]
    navigation_style: str
    guidance_style: str
    max_complexity: str


class PersonaUpdate(LunaraBase):
    persona_id: str = Field(min_length=1, max_length=32)


class ConfigurationRead(LunaraBase):
    maturity_level: MaturityLevel
    maturity_confidence: int
    persona: PersonaRead
    vignette_limit: int
    max_vignettes_per_phase: int
    show_progress_bar: bool
    show_guidance_hints: bool
    default_view: str
    navigation_complexity: str
    effective_complexity: str
    emphasized_actions: list[str]
    hidden_actions: list[str]
    guidance_intensity: str
    show_feature_progress: bool
    engagement_score: int
    features: dict[str, bool]
    feature_summary: dict[str, Any]
    next_milestone: MilestoneRead | None = None
    next_steps: list[NextStepRead]
    progression_suggestions: list[ProgressionSuggestionRead]
    guidance: GuidanceRead | None = None


# ---------- Persistence ----------

class EngineSnapshot(LunaraBase):
    """Versioned persisted state of one adaptive session.

    Covers exactly the durable fields.  Derived values (gate cache, phase
    inference, engagement score) are recomputed after restore.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    version: int = SNAPSHOT_VERSION
    metrics: dict[str, Any] = Field(default_factory=dict)
    maturity: dict[str, Any] | None = None
    observations: list[dict[str, Any]] = Field(default_factory=list)
    phase_patterns: dict[str, Any] = Field(default_factory=dict)
    autonomy_signals: dict[str, Any] = Field(default_factory=dict)
    total_observations: int | None = None
    recognized_phases: list[str] = Field(default_factory=list)
    cycle: dict[str, Any] = Field(default_factory=dict)
    persona: str | None = None
