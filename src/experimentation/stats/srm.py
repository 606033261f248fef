"""
Sample Ratio Mismatch (SRM) chi-square test.

Detects if observed per-variant participant counts deviate significantly from
the configured allocations.
"""

from typing import Sequence, Tuple

import numpy as np
from scipy import stats


def srm_chi_square(
    observed: Sequence[int],
    expected_fracs: Sequence[float],
) -> Tuple[float, float]:
    """
    Chi-square goodness-of-fit test for sample ratio mismatch.

    H0: participants are split according to expected_fracs

    Args:
        observed: Participants per variant
        expected_fracs: Allocation per variant, same order (sums to ~1)

    Returns:
        Tuple of (chi2_statistic, p_value)
    """
    observed = np.asarray(observed, dtype=float)
    n_total = observed.sum()
    if n_total == 0 or len(observed) < 2:
        return 0.0, 1.0

    fracs = np.asarray(expected_fracs, dtype=float)
    fracs = fracs / fracs.sum()
    expected = n_total * fracs

    # Avoid division by zero
    expected = np.where(expected == 0, 1e-10, expected)

    chi2 = np.sum((observed - expected) ** 2 / expected)
    p_value = stats.chi2.sf(chi2, df=len(observed) - 1)
    return float(chi2), float(p_value)


def check_srm(
    observed: Sequence[int],
    expected_fracs: Sequence[float],
    alpha: float = 0.01,
) -> Tuple[bool, float, float]:
    """
    Check for sample ratio mismatch.

    Returns:
        Tuple of (srm_passed, chi2_statistic, p_value)
    """
    chi2, p_value = srm_chi_square(observed, expected_fracs)
    return p_value >= alpha, chi2, p_value
