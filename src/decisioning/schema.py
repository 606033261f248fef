"""
Decision data models for the next-best-action engine.

Dataclass schemas for customer context, decision requests, recommendations
and decision results.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import DEFAULT_DECISION_TIMEOUT, DEFAULT_MAX_RECOMMENDATIONS, OPTION_FIELDS, option_error

logger = logging.getLogger(__name__)


class DecisionType(str, Enum):
    """Kind of decision requested."""
    NEXT_BEST_ACTION = "next_best_action"
    OFFER = "offer"
    CONTENT = "content"
    CHANNEL = "channel"
    TIMING = "timing"
    PRODUCT = "product"


class ObjectiveType(str, Enum):
    """Business objective a recommendation is scored against."""
    REVENUE = "revenue"
    ENGAGEMENT = "engagement"
    RETENTION = "retention"
    CONVERSION = "conversion"


class RecommendationType(str, Enum):
    """Recommendation category."""
    OFFER = "offer"
    CONTENT = "content"
    CHANNEL = "channel"
    TIMING = "timing"
    PRODUCT = "product"


class ConstraintType(str, Enum):
    """Hard constraint applied before ranking."""
    BUDGET = "budget"
    FREQUENCY = "frequency"
    INVENTORY = "inventory"
    COMPLIANCE = "compliance"


class ActivityLevel(str, Enum):
    """Customer activity tier."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _enum_or_raw(enum_cls, value):
    """Coerce to enum member when possible, keep the raw string otherwise."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _value(v):
    return v.value if isinstance(v, Enum) else v


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True)
class Demographics:
    age: Optional[int] = None
    country: Optional[str] = None
    segment: Optional[str] = None


@dataclass(frozen=True)
class BehavioralProfile:
    total_purchases: int = 0
    avg_order_value: float = 0.0
    lifetime_value: float = 0.0
    churn_risk: float = 0.0  # 0-1
    engagement_score: float = 0.0  # 0-100
    activity_level: ActivityLevel = ActivityLevel.LOW
    preferred_channels: List[str] = field(default_factory=list)
    last_login_date: Optional[datetime] = None


@dataclass(frozen=True)
class ContextualInfo:
    device_type: str = "desktop"
    session_duration: float = 0.0  # seconds
    page_views: int = 0
    session_id: Optional[str] = None


@dataclass(frozen=True)
class CustomerContext:
    """Caller-owned snapshot of a customer for one decision."""
    demographics: Demographics = field(default_factory=Demographics)
    behavioral: BehavioralProfile = field(default_factory=BehavioralProfile)
    contextual: ContextualInfo = field(default_factory=ContextualInfo)
    preferences: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CustomerContext":
        demo = d.get("demographics") or {}
        beh = dict(d.get("behavioral") or {})
        ctx = d.get("contextual") or {}
        if "activity_level" in beh:
            beh["activity_level"] = _enum_or_raw(ActivityLevel, beh["activity_level"])
        if "last_login_date" in beh:
            beh["last_login_date"] = _parse_datetime(beh["last_login_date"])
        return cls(
            demographics=Demographics(**demo),
            behavioral=BehavioralProfile(**beh),
            contextual=ContextualInfo(**ctx),
            preferences=dict(d.get("preferences") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        b = self.behavioral
        return {
            "demographics": {
                "age": self.demographics.age,
                "country": self.demographics.country,
                "segment": self.demographics.segment,
            },
            "behavioral": {
                "total_purchases": b.total_purchases,
                "avg_order_value": b.avg_order_value,
                "lifetime_value": b.lifetime_value,
                "churn_risk": b.churn_risk,
                "engagement_score": b.engagement_score,
                "activity_level": _value(b.activity_level),
                "preferred_channels": list(b.preferred_channels),
                "last_login_date": b.last_login_date.isoformat() if b.last_login_date else None,
            },
            "contextual": {
                "device_type": self.contextual.device_type,
                "session_duration": self.contextual.session_duration,
                "page_views": self.contextual.page_views,
                "session_id": self.contextual.session_id,
            },
            "preferences": dict(self.preferences),
        }


@dataclass(frozen=True)
class Objective:
    """One entry of the objective vector."""
    type: Any  # ObjectiveType, or a raw string for unrecognised objectives
    weight: float


@dataclass(frozen=True)
class Constraint:
    type: Any  # ConstraintType or raw string
    value: Any = None
    description: str = ""


@dataclass(frozen=True)
class DecisionOptions:
    max_recommendations: int = DEFAULT_MAX_RECOMMENDATIONS
    timeout: float = DEFAULT_DECISION_TIMEOUT  # seconds
    include_reasons: bool = False
    debug: bool = False
    parameters: Dict[str, Any] = field(default_factory=dict)

    def with_overrides(self, overrides: Dict[str, Any]) -> "DecisionOptions":
        """
        Merge variant overrides into a new options object.

        Keys naming a typed field replace that field when the value is valid
        for it; every key is also kept in `parameters` so downstream consumers
        can read it.
        """
        typed = {}
        for k, v in overrides.items():
            if k not in OPTION_FIELDS:
                continue
            error = option_error(k, v)
            if error:
                logger.warning(f"Ignoring option override: {error}")
                continue
            typed[k] = v
        params = {**self.parameters, **overrides}
        return replace(self, parameters=params, **typed)


@dataclass(frozen=True)
class DecisionRequest:
    request_id: str
    customer_id: str
    tenant_id: str
    decision_type: Any
    context: CustomerContext = field(default_factory=CustomerContext)
    objectives: List[Objective] = field(default_factory=list)
    constraints: List[Constraint] = field(default_factory=list)
    options: DecisionOptions = field(default_factory=DecisionOptions)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DecisionRequest":
        """Parse a JSON payload (snake_case keys)."""
        raw_opts = d.get("options") or {}
        opts = {k: raw_opts[k] for k in OPTION_FIELDS if k in raw_opts}
        opts["parameters"] = dict(raw_opts.get("parameters") or {})
        return cls(
            request_id=d.get("request_id") or "",
            customer_id=d.get("customer_id") or "",
            tenant_id=d.get("tenant_id") or "",
            decision_type=_enum_or_raw(DecisionType, d.get("decision_type")) if d.get("decision_type") else None,
            context=CustomerContext.from_dict(d.get("context") or {}),
            objectives=[
                Objective(type=_enum_or_raw(ObjectiveType, o.get("type")), weight=float(o.get("weight", 0)))
                for o in d.get("objectives") or []
            ],
            constraints=[
                Constraint(
                    type=_enum_or_raw(ConstraintType, c.get("type")),
                    value=c.get("value"),
                    description=c.get("description", ""),
                )
                for c in d.get("constraints") or []
            ],
            options=DecisionOptions(**opts),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "customer_id": self.customer_id,
            "tenant_id": self.tenant_id,
            "decision_type": _value(self.decision_type),
            "context": self.context.to_dict(),
            "objectives": [{"type": _value(o.type), "weight": o.weight} for o in self.objectives],
            "constraints": [
                {"type": _value(c.type), "value": c.value, "description": c.description}
                for c in self.constraints
            ],
            "options": {
                "max_recommendations": self.options.max_recommendations,
                "timeout": self.options.timeout,
                "include_reasons": self.options.include_reasons,
                "debug": self.options.debug,
                "parameters": dict(self.options.parameters),
            },
        }


@dataclass(frozen=True)
class TargetMetrics:
    expected_conversion_rate: float
    expected_revenue: float
    expected_engagement: float


@dataclass(frozen=True)
class Recommendation:
    """A single candidate action. Never mutated once generated."""
    id: str
    type: RecommendationType
    title: str
    description: str
    confidence: float
    expected_value: float
    priority: int
    target_metrics: TargetMetrics
    reasons: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": _value(self.type),
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "expected_value": self.expected_value,
            "priority": self.priority,
            "target_metrics": {
                "expected_conversion_rate": self.target_metrics.expected_conversion_rate,
                "expected_revenue": self.target_metrics.expected_revenue,
                "expected_engagement": self.target_metrics.expected_engagement,
            },
            "reasons": list(self.reasons),
            "metadata": {k: (v.isoformat() if isinstance(v, datetime) else v)
                         for k, v in self.metadata.items()},
        }


@dataclass(frozen=True)
class DecisionResult:
    """Terminal output of one decision request."""
    request_id: str
    customer_id: str
    tenant_id: str
    recommendations: List[Recommendation]
    overall_confidence: float
    execution_time_ms: float
    model_versions: Dict[str, str] = field(default_factory=dict)
    experiments_applied: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.utcnow)
    fallback_reason: Optional[str] = None
    debug_info: Optional[Dict[str, Any]] = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "customer_id": self.customer_id,
            "tenant_id": self.tenant_id,
            "timestamp": self.timestamp.isoformat(),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "overall_confidence": self.overall_confidence,
            "execution_time_ms": self.execution_time_ms,
            "model_versions": dict(self.model_versions),
            "experiments_applied": list(self.experiments_applied),
            "fallback_reason": self.fallback_reason,
            "debug_info": self.debug_info,
        }
