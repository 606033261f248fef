"""
Experiment data models for the experimentation engine.

Dataclass schemas for experiment definitions, variant assignments,
conversion events and computed results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ExperimentStatus(str, Enum):
    """Experiment lifecycle state."""
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ExperimentType(str, Enum):
    """Allocation strategy."""
    AB_TEST = "ab_test"
    MULTIVARIATE = "multivariate"
    BANDIT = "bandit"


class AssignmentMethod(str, Enum):
    HASH = "hash"
    BANDIT = "bandit"


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class VariantConfiguration:
    """Overrides a variant applies to decision requests."""
    parameters: Dict[str, Any] = field(default_factory=dict)
    model_id: Optional[str] = None


@dataclass
class ExperimentVariant:
    """One arm of an experiment."""
    id: str
    allocation: float  # fraction of eligible traffic, all variants sum to 1.0
    name: str = ""
    description: str = ""
    configuration: VariantConfiguration = field(default_factory=VariantConfiguration)


@dataclass
class TargetAudience:
    criteria: str = ""
    size: Optional[int] = None


@dataclass
class ExperimentConfiguration:
    """Statistical and traffic configuration."""
    confidence_level: float = 0.95
    minimum_detectable_effect: float = 0.05  # relative
    traffic_allocation: float = 1.0  # fraction of customers eligible
    randomization_unit: str = "customer"
    min_sample_size: int = 30  # per arm, before significance is computed


@dataclass
class ExperimentMetrics:
    primary: str
    secondary: List[str] = field(default_factory=list)


@dataclass
class VariantResult:
    """Aggregates for one variant, recomputed from the event log."""
    variant_id: str
    participants: int
    conversions: int
    conversion_rate: float
    revenue: float
    revenue_per_user: float
    significance: float = 0.0
    confidence_interval: Tuple[float, float] = (0.0, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "participants": self.participants,
            "conversions": self.conversions,
            "conversion_rate": self.conversion_rate,
            "revenue": self.revenue,
            "revenue_per_user": self.revenue_per_user,
            "significance": self.significance,
            "confidence_interval": list(self.confidence_interval),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VariantResult":
        ci = d.get("confidence_interval") or (0.0, 0.0)
        return cls(
            variant_id=d["variant_id"],
            participants=int(d["participants"]),
            conversions=int(d["conversions"]),
            conversion_rate=float(d["conversion_rate"]),
            revenue=float(d["revenue"]),
            revenue_per_user=float(d["revenue_per_user"]),
            significance=float(d.get("significance", 0.0)),
            confidence_interval=(float(ci[0]), float(ci[1])),
        )


@dataclass
class ExperimentResults:
    """Complete experiment analysis result."""
    experiment_id: str
    status: ExperimentStatus = ExperimentStatus.RUNNING
    confidence: float = 0.0
    results: Dict[str, VariantResult] = field(default_factory=dict)
    winner: Optional[str] = None
    control_variant_id: Optional[str] = None

    # SRM
    srm_passed: bool = True
    srm_p_value: Optional[float] = None

    # Power
    required_sample_size: Optional[int] = None

    insights: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    computed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "experiment_id": self.experiment_id,
            "status": self.status.value,
            "confidence": self.confidence,
            "winner": self.winner,
            "control_variant_id": self.control_variant_id,
            "results": {vid: r.to_dict() for vid, r in self.results.items()},
            "srm_passed": self.srm_passed,
            "srm_p_value": self.srm_p_value,
            "required_sample_size": self.required_sample_size,
            "insights": list(self.insights),
            "recommendations": list(self.recommendations),
            "computed_at": self.computed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExperimentResults":
        return cls(
            experiment_id=d["experiment_id"],
            status=ExperimentStatus(d.get("status", "running")),
            confidence=float(d.get("confidence", 0.0)),
            results={vid: VariantResult.from_dict(r) for vid, r in (d.get("results") or {}).items()},
            winner=d.get("winner"),
            control_variant_id=d.get("control_variant_id"),
            srm_passed=bool(d.get("srm_passed", True)),
            srm_p_value=d.get("srm_p_value"),
            required_sample_size=d.get("required_sample_size"),
            insights=list(d.get("insights") or []),
            recommendations=list(d.get("recommendations") or []),
            computed_at=_parse_dt(d.get("computed_at")) or datetime.utcnow(),
        )


@dataclass
class Experiment:
    """Experiment definition. Identity fields never change after creation."""
    id: str
    name: str
    variants: List[ExperimentVariant]
    metrics: ExperimentMetrics
    type: ExperimentType = ExperimentType.AB_TEST
    configuration: ExperimentConfiguration = field(default_factory=ExperimentConfiguration)
    target_audience: TargetAudience = field(default_factory=TargetAudience)
    description: str = ""
    control_variant_id: Optional[str] = None
    status: ExperimentStatus = ExperimentStatus.DRAFT
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    stop_reason: Optional[str] = None
    results: Optional[ExperimentResults] = None

    @property
    def control_id(self) -> str:
        """Explicit control variant, else the first variant."""
        return self.control_variant_id or self.variants[0].id

    def get_variant(self, variant_id: str) -> Optional[ExperimentVariant]:
        for v in self.variants:
            if v.id == variant_id:
                return v
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "status": self.status.value,
            "control_variant_id": self.control_variant_id,
            "variants": [
                {
                    "id": v.id,
                    "name": v.name,
                    "description": v.description,
                    "allocation": v.allocation,
                    "configuration": {
                        "parameters": dict(v.configuration.parameters),
                        "model_id": v.configuration.model_id,
                    },
                }
                for v in self.variants
            ],
            "metrics": {"primary": self.metrics.primary, "secondary": list(self.metrics.secondary)},
            "configuration": {
                "confidence_level": self.configuration.confidence_level,
                "minimum_detectable_effect": self.configuration.minimum_detectable_effect,
                "traffic_allocation": self.configuration.traffic_allocation,
                "randomization_unit": self.configuration.randomization_unit,
                "min_sample_size": self.configuration.min_sample_size,
            },
            "target_audience": {"criteria": self.target_audience.criteria, "size": self.target_audience.size},
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "stop_reason": self.stop_reason,
            "results": self.results.to_dict() if self.results else None,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Experiment":
        variants = [
            ExperimentVariant(
                id=v["id"],
                allocation=float(v["allocation"]),
                name=v.get("name", ""),
                description=v.get("description", ""),
                configuration=VariantConfiguration(**(v.get("configuration") or {})),
            )
            for v in d.get("variants") or []
        ]
        metrics = d.get("metrics") or {}
        return cls(
            id=d.get("id") or "",
            name=d.get("name") or "",
            description=d.get("description", ""),
            type=ExperimentType(d.get("type", ExperimentType.AB_TEST.value)),
            status=ExperimentStatus(d.get("status", ExperimentStatus.DRAFT.value)),
            control_variant_id=d.get("control_variant_id"),
            variants=variants,
            metrics=ExperimentMetrics(
                primary=metrics.get("primary", "conversion"),
                secondary=list(metrics.get("secondary") or []),
            ),
            configuration=ExperimentConfiguration(**(d.get("configuration") or {})),
            target_audience=TargetAudience(**(d.get("target_audience") or {})),
            start_date=_parse_dt(d.get("start_date")),
            end_date=_parse_dt(d.get("end_date")),
            stop_reason=d.get("stop_reason"),
            results=ExperimentResults.from_dict(d["results"]) if d.get("results") else None,
        )


@dataclass
class VariantAssignment:
    """Permanent (tenant, customer, experiment) -> variant mapping."""
    experiment_id: str
    customer_id: str
    tenant_id: str
    variant_id: str
    assigned_at: datetime = field(default_factory=datetime.utcnow)
    method: AssignmentMethod = AssignmentMethod.HASH


@dataclass
class ConversionEvent:
    """Event recording a tracked metric for an assigned customer."""
    experiment_id: str
    customer_id: str
    tenant_id: str
    variant_id: str
    metric: str
    value: float
    timestamp: datetime = field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)
