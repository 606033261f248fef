"""
Deterministic experiment assignment.

Uses hashing of (tenant_id, customer_id, experiment_id) for eligibility
sampling and of (customer_id, experiment_id) for variant bucketing, so the
same inputs map to the same variant across processes and restarts.
"""

import hashlib
import logging
from collections import Counter
from typing import Dict, List, Optional

from .schema import Experiment

logger = logging.getLogger(__name__)

BUCKETS = 10000


def _hash_to_bucket(*parts: str) -> int:
    """
    Deterministic hash to [0, 9999] bucket.

    Same parts in the same order always map to the same bucket.
    """
    key = ":".join(parts)
    h = hashlib.sha256(key.encode()).hexdigest()
    return int(h[:8], 16) % BUCKETS


def hash_to_unit(*parts: str) -> float:
    """Deterministic hash to [0, 1)."""
    return _hash_to_bucket(*parts) / BUCKETS


def is_eligible(experiment: Experiment, customer_id: str, tenant_id: str) -> bool:
    """
    Traffic-allocation sampling.

    A customer is eligible when the (tenant, customer, experiment) hash falls
    below the experiment's traffic allocation.
    """
    value = hash_to_unit(tenant_id, customer_id, experiment.id)
    return value < experiment.configuration.traffic_allocation


def bucket_variant(experiment: Experiment, customer_id: str) -> str:
    """
    Pick a variant by walking cumulative allocations.

    Args:
        experiment: Experiment with at least one variant
        customer_id: Customer identifier

    Returns:
        Id of the first variant whose cumulative allocation exceeds the hash;
        the first variant when float rounding leaves a gap
    """
    value = hash_to_unit(customer_id, experiment.id)
    cumulative = 0.0
    for variant in experiment.variants:
        cumulative += variant.allocation
        if value < cumulative:
            return variant.id
    return experiment.variants[0].id


def assign_entities(
    customer_ids: List[str],
    experiment: Experiment,
    tenant_id: str,
) -> Dict[str, Optional[str]]:
    """
    Preview assignments for many customers without persisting them.

    Args:
        customer_ids: Customer identifiers
        experiment: Experiment definition
        tenant_id: Tenant of all customers

    Returns:
        Dict customer_id -> variant_id, None for ineligible customers
    """
    assignments = {}
    for cid in customer_ids:
        if is_eligible(experiment, cid, tenant_id):
            assignments[cid] = bucket_variant(experiment, cid)
        else:
            assignments[cid] = None

    counts = Counter(v for v in assignments.values() if v is not None)
    n_ineligible = sum(1 for v in assignments.values() if v is None)
    logger.info(
        f"Assignment preview: {len(assignments)} customers -> "
        f"{dict(counts)}, ineligible={n_ineligible}"
    )
    return assignments
