"""
Power analysis and MDE (Minimum Detectable Effect) calculator.

Required sample size per arm and achieved power for conversion-rate tests.
"""

import numpy as np
from scipy import stats


def sample_size_proportion(
    baseline: float,
    mde_relative: float,
    alpha: float = 0.05,
    power: float = 0.8,
) -> int:
    """
    Sample size per arm for a two-proportion test with equal allocation.

    Args:
        baseline: Baseline conversion rate (e.g. 0.10)
        mde_relative: Minimum detectable effect as relative lift (0.05 = 5%)
        alpha: Type I error rate
        power: Statistical power (1 - Type II)

    Returns:
        Participants needed in each arm
    """
    p1 = baseline
    p2 = min(baseline * (1 + mde_relative), 0.9999)
    effect = abs(p2 - p1)
    if effect == 0 or not 0 < p1 < 1:
        return 0

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)

    p_pool = (p1 + p2) / 2
    se = np.sqrt(2 * p_pool * (1 - p_pool))

    n_per_arm = ((z_alpha + z_beta) * se / effect) ** 2
    return int(np.ceil(n_per_arm))


def power_proportion(
    baseline: float,
    effect_relative: float,
    n_per_arm: int,
    alpha: float = 0.05,
) -> float:
    """
    Achieved power for a given relative lift and sample size per arm.

    Returns:
        Statistical power (0-1)
    """
    if n_per_arm <= 0:
        return 0.0
    p1 = baseline
    p2 = min(baseline * (1 + effect_relative), 0.9999)

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    p_pool = (p1 + p2) / 2
    se = np.sqrt(2 * p_pool * (1 - p_pool) / n_per_arm)
    effect = abs(p2 - p1)

    if se == 0:
        return 0.0

    z_crit = effect / se
    power = 1 - stats.norm.cdf(z_alpha - z_crit) + stats.norm.cdf(-z_alpha - z_crit)
    return float(np.clip(power, 0, 1))
