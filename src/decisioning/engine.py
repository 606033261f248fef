"""
Next-best-action decision engine.

Pipeline per request: validate -> extract features -> generate candidates ->
filter by constraints -> rank by weighted objectives -> cap. Any failure or
timeout after validation yields a single low-confidence fallback result so
callers are never blocked.
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..config import EngineConfig, option_error
from ..errors import DecisionFailure, ValidationError
from .constraints import apply_constraints
from .features import extract_features
from .providers import FeatureProvider, ModelRegistry, StaticModelRegistry
from .ranking import overall_confidence, rank_recommendations
from .schema import (
    DecisionRequest,
    DecisionResult,
    Recommendation,
    RecommendationType,
    TargetMetrics,
)

logger = logging.getLogger(__name__)

CHURN_RISK_THRESHOLD = 0.7
RETENTION_SUCCESS_RATE = 0.6
UPSELL_PROPENSITY_THRESHOLD = 0.6
UPSELL_ENGAGEMENT_THRESHOLD = 70
CHANNEL_CONFIDENCE_THRESHOLD = 0.5

# channel -> (confidence, lift, conversion rate, engagement)
CHANNEL_TABLE = {
    "email": (0.8, 1.2, 0.15, 75),
    "sms": (0.9, 1.4, 0.22, 85),
    "push": (0.7, 1.1, 0.12, 65),
    "web": (0.6, 1.0, 0.08, 55),
}

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

FALLBACK_CONFIDENCE = 0.3


# ---------------------------------------------------------------------------
# Candidate generators: each returns one Recommendation or None.
# ---------------------------------------------------------------------------


def churn_prevention_candidate(features: Dict[str, Any], request: DecisionRequest,
                               now: datetime) -> Optional[Recommendation]:
    churn_risk = features["churn_risk"]
    if churn_risk <= CHURN_RISK_THRESHOLD:
        return None
    ltv = features["lifetime_value"]
    return Recommendation(
        id=f"churn_prevention_{request.request_id}",
        type=RecommendationType.OFFER,
        title="Retention Offer - Special Discount",
        description="High-value customer at risk of churning - offer 20% discount",
        confidence=churn_risk,
        expected_value=ltv * RETENTION_SUCCESS_RATE,
        priority=9,
        target_metrics=TargetMetrics(
            expected_conversion_rate=0.35,
            expected_revenue=features["avg_order_value"] * 0.8,
            expected_engagement=85,
        ),
        reasons=[
            f"High churn risk detected ({churn_risk * 100:.1f}%)",
            f"Customer lifetime value: ${ltv:.2f}",
            "Retention offers have 60% success rate for this segment",
        ],
        metadata={"offer_type": "discount", "discount": 20, "valid_until": now + timedelta(days=7)},
    )


def upsell_candidate(features: Dict[str, Any], request: DecisionRequest,
                     now: datetime) -> Optional[Recommendation]:
    propensity = features["propensity_to_buy"]
    engagement = features["engagement_score"]
    if not (propensity > UPSELL_PROPENSITY_THRESHOLD and engagement > UPSELL_ENGAGEMENT_THRESHOLD):
        return None
    value = features["avg_order_value"] * 1.4
    return Recommendation(
        id=f"upsell_{request.request_id}",
        type=RecommendationType.PRODUCT,
        title="Premium Product Recommendation",
        description="Customer shows high purchase intent for premium products",
        confidence=propensity,
        expected_value=value,
        priority=7,
        target_metrics=TargetMetrics(0.25, value, 75),
        reasons=[
            f"High purchase propensity ({propensity * 100:.1f}%)",
            f"Strong engagement score ({engagement})",
        ],
        metadata={"offer_type": "upsell"},
    )


def channel_candidate(features: Dict[str, Any], request: DecisionRequest,
                      now: datetime) -> Optional[Recommendation]:
    channel = features["preferred_channel"]
    confidence, lift, conversion_rate, engagement = CHANNEL_TABLE.get(channel, CHANNEL_TABLE["email"])
    if confidence <= CHANNEL_CONFIDENCE_THRESHOLD:
        return None
    value = features["avg_order_value"] * lift
    return Recommendation(
        id=f"channel_opt_{request.request_id}",
        type=RecommendationType.CHANNEL,
        title=f"Optimize for {channel}",
        description=f"Customer responds best to {channel} communications",
        confidence=confidence,
        expected_value=value,
        priority=6,
        target_metrics=TargetMetrics(conversion_rate, value, engagement),
        reasons=[
            f"{channel} shows {(lift - 1) * 100:.1f}% lift",
            f"Historical conversion rate: {conversion_rate * 100:.1f}%",
        ],
        metadata={"channel": channel},
    )


def timing_candidate(features: Dict[str, Any], request: DecisionRequest,
                     now: datetime) -> Optional[Recommendation]:
    hour = features["time_of_day"]
    day = features["day_of_week"]
    if 9 <= hour <= 11:
        best_hour, confidence = hour, 0.8
    elif 14 <= hour <= 16:
        best_hour, confidence = hour, 0.7
    else:
        best_hour, confidence = 10, 0.6
    best_day = DAY_NAMES[day] if 1 <= day <= 4 else "Tuesday"
    lift = 1.15
    value = features["avg_order_value"] * lift
    return Recommendation(
        id=f"timing_opt_{request.request_id}",
        type=RecommendationType.TIMING,
        title=f"Send at {best_hour}:00",
        description=f"Customer engagement peaks at {best_hour}:00 on {best_day}",
        confidence=confidence,
        expected_value=value,
        priority=5,
        target_metrics=TargetMetrics(0.18, value, 80),
        reasons=[
            "Peak engagement time based on historical data",
            f"{(lift - 1) * 100:.1f}% higher response rate",
        ],
        metadata={"send_hour": best_hour, "send_day": best_day},
    )


# tier -> (title, description, confidence, lift, conversion rate, engagement, reasons)
CONTENT_TIERS = {
    "vip": ("VIP Exclusive Content", "Premium content tailored for high-value customers",
            0.85, 1.3, 0.25, 90,
            ["High lifetime value customer", "Strong engagement history",
             "VIP content shows 30% higher conversion"]),
    "personalized": ("Personalized Recommendations", "Content based on browsing and purchase history",
                     0.7, 1.15, 0.18, 75,
                     ["Good engagement history", "Personalization improves relevance"]),
    "re_engagement": ("Re-engagement Content", "Educational content to rebuild engagement",
                      0.5, 1.05, 0.10, 60,
                      ["Low engagement detected", "Gradual re-engagement strategy"]),
}


def content_tier(lifetime_value: float, engagement_score: float) -> str:
    if lifetime_value > 1000 and engagement_score > 80:
        return "vip"
    if engagement_score > 60:
        return "personalized"
    return "re_engagement"


def content_candidate(features: Dict[str, Any], request: DecisionRequest,
                      now: datetime) -> Optional[Recommendation]:
    tier = content_tier(features["lifetime_value"], features["engagement_score"])
    title, description, confidence, lift, conversion_rate, engagement, reasons = CONTENT_TIERS[tier]
    value = features["avg_order_value"] * lift
    return Recommendation(
        id=f"content_{request.request_id}",
        type=RecommendationType.CONTENT,
        title=title,
        description=description,
        confidence=confidence,
        expected_value=value,
        priority=4,
        target_metrics=TargetMetrics(conversion_rate, value, engagement),
        reasons=list(reasons),
        metadata={"content_tier": tier},
    )


CandidateGenerator = Callable[[Dict[str, Any], DecisionRequest, datetime], Optional[Recommendation]]

CANDIDATE_GENERATORS: List[Tuple[str, CandidateGenerator]] = [
    ("churn_prevention_rule", churn_prevention_candidate),
    ("upsell_rule", upsell_candidate),
    ("channel_optimization_rule", channel_candidate),
    ("timing_optimization_rule", timing_candidate),
    ("content_personalization_rule", content_candidate),
]


class DecisionEngine:
    """
    Stateless decision pipeline; safe to call from many threads.

    Usage:
        engine = DecisionEngine(feature_provider=provider)
        result = engine.make_decision(request)
    """

    def __init__(
        self,
        feature_provider: Optional[FeatureProvider] = None,
        model_registry: Optional[ModelRegistry] = None,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        generators: Optional[Sequence[Tuple[str, CandidateGenerator]]] = None,
    ):
        self.config = config or EngineConfig()
        self.feature_provider = feature_provider
        self.model_registry = model_registry or StaticModelRegistry()
        self.generators = list(generators or CANDIDATE_GENERATORS)
        self._clock = clock or datetime.utcnow
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.decision_workers,
            thread_name_prefix="decision",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def validate_request(self, request: DecisionRequest) -> None:
        """Raise ValidationError for malformed requests."""
        if not request.customer_id:
            raise ValidationError("Customer ID is required")
        if not request.tenant_id:
            raise ValidationError("Tenant ID is required")
        if not request.decision_type:
            raise ValidationError("Decision type is required")
        if not request.objectives:
            raise ValidationError("At least one objective is required")

        total = 0.0
        for obj in request.objectives:
            w = obj.weight
            if not isinstance(w, (int, float)) or isinstance(w, bool) or not math.isfinite(w) or w < 0:
                raise ValidationError(f"Invalid objective weight: {w!r}")
            total += w
        if abs(total - 1.0) > self.config.weight_tolerance:
            raise ValidationError(f"Objective weights must sum to 1.0 (got {total:.4f})")

        opts = request.options
        error = option_error("max_recommendations", opts.max_recommendations)
        if error:
            raise ValidationError(error)
        # non-positive timeouts fall back to the configured default
        if (isinstance(opts.timeout, bool) or not isinstance(opts.timeout, (int, float))
                or not math.isfinite(opts.timeout)):
            raise ValidationError(f"timeout must be a number of seconds, got {opts.timeout!r}")

    def make_decision(
        self,
        request: DecisionRequest,
        experiments_applied: Optional[List[str]] = None,
    ) -> DecisionResult:
        """
        Produce ranked recommendations for one request.

        Args:
            request: Decision request (already rewritten by experiments, if any)
            experiments_applied: Experiment ids echoed into the result

        Returns:
            DecisionResult; a fallback result on internal error or timeout

        Raises:
            ValidationError: request is malformed (never converted to fallback)
        """
        self.validate_request(request)
        start = time.perf_counter()
        logger.info(f"Processing decision request {request.request_id}")

        timeout = request.options.timeout
        if not timeout or timeout <= 0:
            timeout = self.config.decision_timeout

        future = self._executor.submit(self._run_pipeline, request)
        try:
            ranked, features, rules_applied = future.result(timeout=timeout)
        except FuturesTimeoutError:
            future.cancel()
            return self._fallback_result(request, start, f"Decision timed out after {timeout}s")
        except Exception as e:
            return self._fallback_result(request, start, str(e) or type(e).__name__)

        cap = request.options.max_recommendations
        recommendations = [rec for rec, _ in ranked[:cap]]

        debug_info = None
        if request.options.include_reasons or request.options.debug:
            debug_info = {
                "feature_values": features,
                "scores": {rec.id: score for rec, score in ranked},
                "rules_applied": rules_applied,
            }

        result = DecisionResult(
            request_id=request.request_id,
            customer_id=request.customer_id,
            tenant_id=request.tenant_id,
            timestamp=self._clock(),
            recommendations=recommendations,
            overall_confidence=overall_confidence(recommendations),
            execution_time_ms=(time.perf_counter() - start) * 1000,
            model_versions=self._model_versions(),
            experiments_applied=list(experiments_applied or []),
            debug_info=debug_info,
        )
        logger.info(
            f"Decision {result.request_id}: {len(recommendations)} recommendations, "
            f"confidence={result.overall_confidence:.3f}, {result.execution_time_ms:.1f}ms"
        )
        return result

    def _run_pipeline(self, request: DecisionRequest):
        now = self._clock()
        features = self._features(request, now)
        candidates, rules_applied = self._generate(features, request, now)
        filtered = apply_constraints(candidates, request.constraints)
        ranked = rank_recommendations(filtered, request.objectives)
        return ranked, features, rules_applied

    def _features(self, request: DecisionRequest, now: datetime) -> Dict[str, Any]:
        features = extract_features(request.context, now)
        if self.feature_provider is not None:
            try:
                provided = self.feature_provider.get_features(request.customer_id, request.tenant_id)
            except Exception as e:
                raise DecisionFailure(f"Feature provider failed: {e}") from e
            features.update(provided or {})
        return features

    def _generate(self, features: Dict[str, Any], request: DecisionRequest, now: datetime):
        candidates = []
        rules_applied = []
        for name, generator in self.generators:
            rec = generator(features, request, now)
            if rec is None:
                continue
            rules_applied.append(name)
            if rec.confidence <= self.config.confidence_floor:
                logger.debug(f"Dropping {rec.id}: confidence {rec.confidence:.2f} at or below floor")
                continue
            candidates.append(rec)
        return candidates, rules_applied

    def _model_versions(self) -> Dict[str, str]:
        try:
            return dict(self.model_registry.get_deployed_model_versions())
        except Exception as e:
            logger.warning(f"Model registry unavailable, omitting versions: {e}")
            return {}

    def _fallback_result(self, request: DecisionRequest, start: float, reason: str) -> DecisionResult:
        logger.warning(f"Decision {request.request_id} fell back: {reason}")
        fallback = Recommendation(
            id="fallback_recommendation",
            type=RecommendationType.CONTENT,
            title="Default Recommendation",
            description="Fallback recommendation due to processing error",
            confidence=FALLBACK_CONFIDENCE,
            expected_value=0.0,
            priority=1,
            target_metrics=TargetMetrics(0.05, 0.0, 30),
            reasons=["Fallback due to system error"],
        )
        return DecisionResult(
            request_id=request.request_id,
            customer_id=request.customer_id,
            tenant_id=request.tenant_id,
            timestamp=self._clock(),
            recommendations=[fallback],
            overall_confidence=FALLBACK_CONFIDENCE,
            execution_time_ms=(time.perf_counter() - start) * 1000,
            fallback_reason=reason,
        )
