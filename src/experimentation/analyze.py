"""
Experiment analysis.

Input: an experiment definition and its full conversion-event log.
Output: ExperimentResults with per-variant aggregates, z-test significance
against control, winner, SRM check, required sample size, and insight text.
Aggregates are recomputed from scratch on every call.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from ..config import DEFAULT_ARTIFACTS_DIR, DEFAULT_SRM_ALPHA
from .schema import Experiment, ExperimentResults, ExperimentStatus, VariantResult
from .stats import (
    check_srm,
    power_proportion,
    proportion_confidence_interval,
    sample_size_proportion,
    significance_confidence,
)

logger = logging.getLogger(__name__)

SMALL_SAMPLE_THRESHOLD = 1000
STRONG_TREND_CONFIDENCE = 0.8


def _distinct_customers(df: pd.DataFrame) -> int:
    if df.empty:
        return 0
    return int(df[["tenant_id", "customer_id"]].drop_duplicates().shape[0])


def compute_variant_results(
    experiment: Experiment,
    events: pd.DataFrame,
) -> Dict[str, VariantResult]:
    """
    Per-variant aggregates from the event log.

    participants = distinct customers with any event in the variant
    conversions  = distinct customers with a primary-metric event
    revenue      = sum of primary-metric values

    Returns:
        Dict variant_id -> VariantResult, in variant order
    """
    primary = experiment.metrics.primary
    ci_level = experiment.configuration.confidence_level
    results = {}

    for variant in experiment.variants:
        ve = events[events["variant_id"] == variant.id] if not events.empty else events
        pe = ve[ve["metric"] == primary] if not ve.empty else ve

        participants = _distinct_customers(ve)
        conversions = _distinct_customers(pe)
        revenue = float(pe["value"].sum()) if not pe.empty else 0.0

        results[variant.id] = VariantResult(
            variant_id=variant.id,
            participants=participants,
            conversions=conversions,
            conversion_rate=conversions / participants if participants > 0 else 0.0,
            revenue=revenue,
            revenue_per_user=revenue / participants if participants > 0 else 0.0,
            confidence_interval=proportion_confidence_interval(participants, conversions, ci_level),
        )
    return results


def run_analysis(
    experiment: Experiment,
    events: pd.DataFrame,
    srm_alpha: float = DEFAULT_SRM_ALPHA,
) -> ExperimentResults:
    """
    Run full experiment analysis.

    Args:
        experiment: Experiment definition (control = explicit id or first variant)
        events: Conversion events for this experiment (EVENT_COLUMNS)
        srm_alpha: Significance threshold for the sample-ratio check

    Returns:
        ExperimentResults
    """
    control_id = experiment.control_id

    if events.empty:
        zeroed = compute_variant_results(experiment, events)
        return ExperimentResults(
            experiment_id=experiment.id,
            status=ExperimentStatus.RUNNING,
            confidence=0.0,
            results=zeroed,
            control_variant_id=control_id,
            insights=["No data collected yet"],
            recommendations=["Wait for more data before drawing conclusions"],
        )

    cfg = experiment.configuration
    results = compute_variant_results(experiment, events)
    control = results[control_id]

    best_id: Optional[str] = None
    best_rate = control.conversion_rate
    best_confidence = 0.0
    for vid, r in results.items():
        if vid == control_id:
            continue
        r.significance = significance_confidence(
            control.participants, control.conversions,
            r.participants, r.conversions,
            min_sample_size=cfg.min_sample_size,
        )
        if r.conversion_rate > best_rate and r.significance > best_confidence:
            best_id = vid
            best_rate = r.conversion_rate
            best_confidence = r.significance

    winner = best_id if best_confidence > cfg.confidence_level else None

    observed = [results[v.id].participants for v in experiment.variants]
    srm_passed, _, srm_p = check_srm(observed, [v.allocation for v in experiment.variants], srm_alpha)

    required = None
    if 0 < control.conversion_rate < 1:
        required = sample_size_proportion(
            control.conversion_rate,
            cfg.minimum_detectable_effect,
            alpha=1 - cfg.confidence_level,
        )

    analysis = ExperimentResults(
        experiment_id=experiment.id,
        status=ExperimentStatus.COMPLETED if winner else ExperimentStatus.RUNNING,
        confidence=best_confidence,
        results=results,
        winner=winner,
        control_variant_id=control_id,
        srm_passed=srm_passed,
        srm_p_value=srm_p,
        required_sample_size=required,
    )
    analysis.insights = generate_insights(experiment, analysis)
    analysis.recommendations = generate_recommendations(experiment, analysis)

    logger.info(
        f"Analysis {experiment.id}: confidence={best_confidence:.4f}, winner={winner}, "
        f"srm_passed={srm_passed}"
    )
    return analysis


def generate_insights(experiment: Experiment, analysis: ExperimentResults) -> List[str]:
    """Human-readable observations about the current results."""
    insights = []
    results = analysis.results
    control = results[analysis.control_variant_id]

    best_id = max(results, key=lambda vid: results[vid].conversion_rate)
    best = results[best_id]
    if best_id != analysis.control_variant_id and control.conversion_rate > 0:
        improvement = (best.conversion_rate - control.conversion_rate) / control.conversion_rate * 100
        insights.append(f"Variant {best_id} shows {improvement:.1f}% improvement over control")

    total = sum(r.participants for r in results.values())
    if total < SMALL_SAMPLE_THRESHOLD:
        insights.append("Small sample size - results may not be statistically reliable")

    if control.revenue_per_user > 0 and best.revenue_per_user > control.revenue_per_user * 1.1:
        lift = (best.revenue_per_user - control.revenue_per_user) / control.revenue_per_user * 100
        insights.append(f"Revenue per user increased by {lift:.1f}%")

    if not analysis.srm_passed:
        insights.append(
            f"Sample ratio mismatch (p={analysis.srm_p_value:.4f}): "
            "participant split deviates from configured allocations"
        )

    if analysis.required_sample_size:
        cfg = experiment.configuration
        achieved = power_proportion(
            control.conversion_rate,
            cfg.minimum_detectable_effect,
            control.participants,
            alpha=1 - cfg.confidence_level,
        )
        insights.append(
            f"Detecting a {cfg.minimum_detectable_effect * 100:.0f}% lift needs "
            f"~{analysis.required_sample_size} participants per arm "
            f"(current power {achieved:.0%})"
        )
    return insights


def generate_recommendations(experiment: Experiment, analysis: ExperimentResults) -> List[str]:
    """Next-step guidance for the experiment owner."""
    recs = []
    if analysis.winner:
        recs.append(
            f"Experiment has reached statistical significance - consider implementing variant {analysis.winner}"
        )
    elif analysis.confidence > STRONG_TREND_CONFIDENCE:
        recs.append("Strong trend detected - continue running for higher confidence")
    else:
        recs.append("Continue running experiment to gather more data")

    total = sum(r.participants for r in analysis.results.values())
    if total < SMALL_SAMPLE_THRESHOLD:
        recs.append("Increase traffic allocation to reach minimum sample size faster")

    if not analysis.srm_passed:
        recs.append("Investigate assignment and tracking before trusting these results")
    return recs


def save_results(
    analysis: ExperimentResults,
    artifacts_dir: str = DEFAULT_ARTIFACTS_DIR,
) -> Path:
    """Write results.json to artifacts/experiments/<experiment_id>/."""
    out_dir = Path(artifacts_dir) / analysis.experiment_id
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / "results.json"
    with open(path, "w") as f:
        json.dump(analysis.to_dict(), f, indent=2)
    logger.info(f"Results saved to {path}")
    return path
