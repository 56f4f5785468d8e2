"""Lunara Adaptive Intelligence Engine.

This package decides how mature a user's engagement is, which features they
have unlocked, which cycle phase they are most likely in, and how the
interface should adapt to them.

Subpackages:
    cycle/ — Calendar phase prediction, cycle state and the observation log

Core modules:
    base               — Phase / maturity constants and number coercion helpers
    config_loader      — Load/validate/hot-reload adaptive_config.yaml
    engagement         — EngagementTracker: action counters and maturity tiers
    cache              — Bounded LRU cache for gate evaluations
    feature_gate       — FeatureGate: progressive feature unlocking
    intelligence       — UserIntelligence: phase patterns and autonomy signals
    observation_engine — Observation-based phase inference and guidance
    personas           — Persona interaction styles
    composer           — AdaptiveComposer: UI-facing configuration
    store              — Durable snapshot stores and schema migration
    session            — AdaptiveSession: per-user state owner and public operations
"""

from src.adaptive.config_loader import AdaptiveConfig, get_adaptive_config
from src.adaptive.engagement import EngagementMetrics, EngagementTracker, MaturityState
from src.adaptive.feature_gate import FeatureEvaluationResult, FeatureGate
from src.adaptive.observation_engine import ObservationEngine, PhaseInferenceResult
from src.adaptive.session import AdaptiveSession
from src.adaptive.store import InMemoryStore, JsonFileStore, SnapshotError

__all__ = [
    "AdaptiveConfig",
    "get_adaptive_config",
    "EngagementMetrics",
    "EngagementTracker",
    "MaturityState",
    "FeatureGate",
    "FeatureEvaluationResult",
    "ObservationEngine",
    "PhaseInferenceResult",
    "AdaptiveSession",
    "InMemoryStore",
    "JsonFileStore",
    "SnapshotError",
]
