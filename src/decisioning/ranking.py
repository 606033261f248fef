"""
Multi-objective ranking of candidate recommendations.

Each objective maps a recommendation to a [0, 1] sub-score; the weighted sum
orders the candidates. Sorting is stable so equal scores keep generation order.
"""

from typing import Callable, Dict, List, Sequence, Tuple

from .schema import Objective, ObjectiveType, Recommendation

REVENUE_NORMALIZER = 1000.0


def _revenue(rec: Recommendation) -> float:
    return min(rec.expected_value / REVENUE_NORMALIZER, 1.0)


def _engagement(rec: Recommendation) -> float:
    return rec.target_metrics.expected_engagement / 100


def _retention(rec: Recommendation) -> float:
    return rec.confidence


def _conversion(rec: Recommendation) -> float:
    return rec.target_metrics.expected_conversion_rate


OBJECTIVE_SCORERS: Dict[str, Callable[[Recommendation], float]] = {
    ObjectiveType.REVENUE.value: _revenue,
    ObjectiveType.ENGAGEMENT.value: _engagement,
    ObjectiveType.RETENTION.value: _retention,
    ObjectiveType.CONVERSION.value: _conversion,
}


def objective_score(rec: Recommendation, objective_type) -> float:
    """Sub-score for one objective; unknown objectives fall back to confidence."""
    key = objective_type.value if isinstance(objective_type, ObjectiveType) else str(objective_type)
    return OBJECTIVE_SCORERS.get(key, _retention)(rec)


def weighted_score(rec: Recommendation, objectives: Sequence[Objective]) -> float:
    return sum(o.weight * objective_score(rec, o.type) for o in objectives)


def rank_recommendations(
    recommendations: Sequence[Recommendation],
    objectives: Sequence[Objective],
) -> List[Tuple[Recommendation, float]]:
    """
    Score and sort candidates by weighted objective score, best first.

    Returns:
        List of (recommendation, score) pairs
    """
    scored = [(rec, weighted_score(rec, objectives)) for rec in recommendations]
    # sorted() is stable: ties keep generation order
    return sorted(scored, key=lambda pair: pair[1], reverse=True)


def overall_confidence(recommendations: Sequence[Recommendation]) -> float:
    """Mean confidence plus a diversity bonus of min(n/5, 0.2), capped at 1."""
    if not recommendations:
        return 0.0
    avg = sum(r.confidence for r in recommendations) / len(recommendations)
    diversity_bonus = min(len(recommendations) / 5, 0.2)
    return min(avg + diversity_bonus, 1.0)
