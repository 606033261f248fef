"""
Thompson sampling over Beta posteriors for bandit experiments.
"""

from typing import Dict, Optional, Tuple

import numpy as np


def beta_posterior(conversions: int, participants: int) -> Tuple[float, float]:
    """Beta(conversions + 1, failures + 1) parameters under a uniform prior."""
    failures = max(participants - conversions, 0)
    return conversions + 1.0, failures + 1.0


def thompson_sample(
    arms: Dict[str, Tuple[int, int]],
    rng: Optional[np.random.Generator] = None,
) -> Tuple[str, Dict[str, float]]:
    """
    Select an arm by drawing once from each arm's posterior.

    Args:
        arms: Ordered mapping arm_id -> (conversions, participants)
        rng: Seedable generator; a fresh default_rng() when omitted

    Returns:
        Tuple of (chosen arm_id, draws per arm). Ties go to the earlier arm.
    """
    if not arms:
        raise ValueError("thompson_sample needs at least one arm")
    rng = rng or np.random.default_rng()

    draws = {}
    for arm_id, (conversions, participants) in arms.items():
        a, b = beta_posterior(conversions, participants)
        draws[arm_id] = float(rng.beta(a, b))

    best = max(draws, key=lambda arm_id: draws[arm_id])
    return best, draws
