"""Decisioning module: next-best-action recommendations for a customer context."""

from .schema import (
    ActivityLevel,
    BehavioralProfile,
    Constraint,
    ConstraintType,
    ContextualInfo,
    CustomerContext,
    DecisionOptions,
    DecisionRequest,
    DecisionResult,
    DecisionType,
    Demographics,
    Objective,
    ObjectiveType,
    Recommendation,
    RecommendationType,
    TargetMetrics,
)
from .features import extract_features
from .constraints import apply_constraints, register_constraint_rule
from .ranking import rank_recommendations, overall_confidence
from .providers import FeatureProvider, ModelRegistry, StaticFeatureProvider, StaticModelRegistry
from .engine import DecisionEngine
from .history import DecisionHistory

__all__ = [
    "ActivityLevel",
    "BehavioralProfile",
    "Constraint",
    "ConstraintType",
    "ContextualInfo",
    "CustomerContext",
    "DecisionOptions",
    "DecisionRequest",
    "DecisionResult",
    "DecisionType",
    "Demographics",
    "Objective",
    "ObjectiveType",
    "Recommendation",
    "RecommendationType",
    "TargetMetrics",
    "extract_features",
    "apply_constraints",
    "register_constraint_rule",
    "rank_recommendations",
    "overall_confidence",
    "FeatureProvider",
    "ModelRegistry",
    "StaticFeatureProvider",
    "StaticModelRegistry",
    "DecisionEngine",
    "DecisionHistory",
]
