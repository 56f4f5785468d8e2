"""Adaptive engine endpoints: engagement, feature gates, cycle, observations, composition.

Handlers are synchronous; FastAPI runs them on its thread pool and the
session's lock keeps each operation atomic.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException

from src.adaptive.composer import AdaptiveConfiguration
from src.adaptive.cycle.calendar import CycleState
from src.adaptive.engagement import MaturityState, Milestone
from src.adaptive.feature_gate import FeatureEvaluationResult
from src.adaptive.observation_engine import ObservationGuidance
from src.adaptive.personas import PersonaStyle
from src.dependencies import Session
from src.models.adaptive import (
    ConfigurationRead,
    CorrectionRead,
    CycleRead,
    CycleUpdate,
    CycleUpdateResult,
    EngagementRead,
    FeatureRead,
    FeaturesRead,
    GuidanceRead,
    MaturityRead,
    MilestoneRead,
    ObservationCreate,
    ObservationPromptRead,
    ObservationRecorded,
    PersonaRead,
    PersonaUpdate,
    PhaseCorrectionRequest,
    PhaseRead,
    ProgressionSuggestionRead,
    TrackActionRequest,
)
from src.models.base import ErrorDetail

router = APIRouter(prefix="/adaptive", tags=["adaptive"])
logger = logging.getLogger("lunara.routers.adaptive")


# ---------- Conversions ----------

def _milestone(milestone: Milestone | None) -> MilestoneRead | None:
    if milestone is None:
        return None
    return MilestoneRead(level=milestone.level, missing=dict(milestone.missing))


def _feature(result: FeatureEvaluationResult) -> FeatureRead:
    return FeatureRead.model_validate(result)


def _cycle(session, cycle: CycleState) -> CycleRead:
    return CycleRead(
        active=cycle.is_active,
        last_period_start=cycle.last_period_start,
        cycle_length=cycle.cycle_length,
        period_duration=cycle.period_duration,
        current_phase=session.current_phase(),
        current_day=session.current_day(),
    )


def _guidance(guidance: ObservationGuidance | None) -> GuidanceRead | None:
    return GuidanceRead.model_validate(guidance) if guidance is not None else None


def _persona(style: PersonaStyle) -> PersonaRead:
    return PersonaRead.model_validate(style)


def _configuration(configuration: AdaptiveConfiguration) -> ConfigurationRead:
    interface = configuration.interface
    return ConfigurationRead(
        maturity_level=configuration.maturity_level,
        maturity_confidence=configuration.maturity_confidence,
        persona=_persona(configuration.persona),
        vignette_limit=configuration.vignette_limit,
        max_vignettes_per_phase=interface.max_vignettes_per_phase,
        show_progress_bar=interface.show_progress_bar,
        show_guidance_hints=interface.show_guidance_hints,
        default_view=interface.default_view,
        navigation_complexity=interface.navigation_complexity,
        effective_complexity=configuration.effective_complexity,
        emphasized_actions=list(configuration.emphasized_actions),
        hidden_actions=list(configuration.hidden_actions),
        guidance_intensity=configuration.guidance_intensity,
        show_feature_progress=configuration.show_feature_progress,
        engagement_score=configuration.engagement_score,
        features=dict(configuration.features),
        feature_summary=dict(configuration.feature_summary),
        next_milestone=_milestone(configuration.next_milestone),
        next_steps=[
            {"type": s.type, "action": s.action, "priority": s.priority}
            for s in configuration.next_steps
        ],
        progression_suggestions=[
            ProgressionSuggestionRead.model_validate(s) for s in configuration.progression_suggestions
        ],
        guidance=_guidance(configuration.guidance),
    )


def _engagement(session) -> EngagementRead:
    return EngagementRead(
        metrics=session.metrics.to_dict(),
        maturity=MaturityRead.model_validate(session.maturity),
        engagement_score=session.get_engagement_score(),
        next_milestone=_milestone(session.get_next_milestone()),
    )


# ---------- Engagement ----------

@router.post("/actions", response_model=EngagementRead)
def track_action(session: Session, body: TrackActionRequest) -> Any:
    state: MaturityState = session.track_action(body.action_type, body.metadata)
    logger.debug("Tracked %s → %s", body.action_type, state.level)
    return _engagement(session)


@router.get("/engagement", response_model=EngagementRead)
def get_engagement(session: Session) -> Any:
    return _engagement(session)


# ---------- Features ----------

@router.get("/features", response_model=FeaturesRead)
def list_features(session: Session) -> Any:
    evaluation = session.evaluate_all_features()
    return FeaturesRead(
        features={key: _feature(result) for key, result in evaluation.features.items()},
        summary=dict(evaluation.summary),
    )


@router.get("/features/suggestions", response_model=list[ProgressionSuggestionRead])
def list_suggestions(session: Session) -> Any:
    return [ProgressionSuggestionRead.model_validate(s) for s in session.get_progression_suggestions()]


@router.get("/features/{key}", response_model=FeatureRead, responses={404: {"model": ErrorDetail}})
def get_feature(key: str, session: Session) -> Any:
    result = session.evaluate_feature(key)
    if not result.found:
        raise HTTPException(status_code=404, detail="Feature not found")
    return _feature(result)


# ---------- Cycle ----------

@router.get("/cycle", response_model=CycleRead)
def get_cycle(session: Session) -> Any:
    return _cycle(session, session.cycle)


@router.put("/cycle", response_model=CycleUpdateResult)
def update_cycle(session: Session, body: CycleUpdate) -> Any:
    if body.start_new_cycle:
        cycle = session.start_new_cycle(body.last_period_start)
        errors: list[str] = []
        if body.cycle_length is not None or body.period_duration is not None:
            cycle, errors = session.update_cycle(
                cycle_length=body.cycle_length, period_duration=body.period_duration
            )
    else:
        cycle, errors = session.update_cycle(
            last_period_start=body.last_period_start,
            cycle_length=body.cycle_length,
            period_duration=body.period_duration,
        )
    return CycleUpdateResult(success=not errors, errors=errors, cycle=_cycle(session, cycle))


@router.post("/cycle/end-period", response_model=CycleRead)
def end_period(session: Session) -> Any:
    return _cycle(session, session.end_period())


# ---------- Observations & phase ----------

@router.post("/observations", response_model=ObservationRecorded)
def record_observation(session: Session, body: ObservationCreate) -> Any:
    outcome = session.record_observation(
        feeling=body.feeling,
        energy=body.energy,
        notes=body.notes,
        symptoms=body.symptoms,
        mood=body.mood,
    )
    return ObservationRecorded.model_validate(outcome)


@router.get("/phase", response_model=PhaseRead)
def get_phase(session: Session) -> Any:
    inference = session.infer_phase()
    return PhaseRead(
        phase=inference.phase,
        confidence=inference.confidence,
        method=inference.method,
        predicted_phase=inference.predicted_phase,
        signals=[{"type": s.type, "value": s.value, "phase": s.phase} for s in inference.signals],
        scores=dict(inference.scores),
        mode=session.intelligence.cycle_mode(),
    )


@router.post("/phase/correction", response_model=CorrectionRead)
def correct_phase(session: Session, body: PhaseCorrectionRequest) -> Any:
    return CorrectionRead.model_validate(session.correct_phase(body.observed_phase.value))


@router.get("/guidance", response_model=GuidanceRead)
def get_guidance(session: Session, phase: str | None = None) -> Any:
    return _guidance(session.get_observation_guidance(phase))


@router.get("/prompts", response_model=list[ObservationPromptRead])
def get_prompts(session: Session, phase: str | None = None) -> Any:
    return [ObservationPromptRead.model_validate(p) for p in session.get_intelligent_prompts(phase)]


# ---------- Composition ----------

@router.get("/configuration", response_model=ConfigurationRead)
def get_configuration(session: Session) -> Any:
    return _configuration(session.compose())


@router.put("/persona", response_model=PersonaRead)
def set_persona(session: Session, body: PersonaUpdate) -> Any:
    return _persona(session.set_persona(body.persona_id))
