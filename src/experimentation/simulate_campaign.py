"""
Campaign traffic simulator.

Drives synthetic customers through a running experiment: each customer is
assigned through the engine, records an exposure event, and converts on the
primary metric with the true rate configured for their variant. Useful for
demos, load checks of the assignment path, and end-to-end tests.
"""

import logging
from typing import Dict, List, Optional

import numpy as np

from .engine import ExperimentationEngine
from .schema import ExperimentType

logger = logging.getLogger(__name__)

SIMULATOR_SEED = 42
EXPOSURE_METRIC = "exposure"


def make_customer_ids(n_customers: int, prefix: str = "cust") -> List[str]:
    return [f"{prefix}_{i:06d}" for i in range(n_customers)]


def run_campaign_simulation(
    engine: ExperimentationEngine,
    experiment_id: str,
    true_rates: Dict[str, float],
    n_customers: int = 1000,
    tenant_id: str = "tenant_demo",
    revenue_mean: float = 50.0,
    revenue_std: float = 10.0,
    random_seed: int = SIMULATOR_SEED,
    customer_ids: Optional[List[str]] = None,
) -> Dict:
    """
    Simulate traffic for a running experiment.

    Args:
        engine: Engine holding the experiment
        experiment_id: Running experiment to drive
        true_rates: variant_id -> true conversion probability
        n_customers: Number of synthetic customers (ignored if customer_ids given)
        tenant_id: Tenant for every simulated customer
        revenue_mean: Mean primary-metric value for a conversion
        revenue_std: Std of the conversion value
        random_seed: Seed for outcome draws
        customer_ids: Explicit customer ids to simulate

    Returns:
        Dict with n_customers, n_assigned, n_converted and per-variant counts
    """
    experiment = engine.get_experiment(experiment_id)
    if experiment is None:
        raise ValueError(f"Unknown experiment: {experiment_id}")
    missing = [v.id for v in experiment.variants if v.id not in true_rates]
    if missing:
        raise ValueError(f"true_rates missing variants: {missing}")

    rng = np.random.default_rng(random_seed)
    primary = experiment.metrics.primary
    ids = customer_ids if customer_ids is not None else make_customer_ids(n_customers)

    assigned = {v.id: 0 for v in experiment.variants}
    converted = {v.id: 0 for v in experiment.variants}

    for customer_id in ids:
        if experiment.type == ExperimentType.BANDIT:
            variant_id = engine.optimize_with_bandit(experiment_id, customer_id, tenant_id)
        else:
            variant_id = engine.get_variant_assignment(experiment_id, customer_id, tenant_id)
        if variant_id is None:
            continue

        assigned[variant_id] += 1
        engine.track_conversion(experiment_id, customer_id, tenant_id, EXPOSURE_METRIC, 1.0)

        p = float(np.clip(true_rates[variant_id], 0.0, 1.0))
        if rng.random() < p:
            value = max(float(rng.normal(revenue_mean, revenue_std)), 0.0)
            engine.track_conversion(experiment_id, customer_id, tenant_id, primary, value)
            converted[variant_id] += 1

    summary = {
        "experiment_id": experiment_id,
        "n_customers": len(ids),
        "n_assigned": sum(assigned.values()),
        "n_converted": sum(converted.values()),
        "assigned": assigned,
        "converted": converted,
        "random_seed": random_seed,
    }
    logger.info(f"Simulation complete: {summary}")
    return summary
