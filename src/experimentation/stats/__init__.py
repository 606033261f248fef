"""Experiment statistics module."""

from .srm import srm_chi_square, check_srm
from .power import sample_size_proportion, power_proportion
from .hypothesis_tests import (
    proportions_z_test,
    significance_confidence,
    proportion_confidence_interval,
)
from .bandit import beta_posterior, thompson_sample

__all__ = [
    "srm_chi_square",
    "check_srm",
    "sample_size_proportion",
    "power_proportion",
    "proportions_z_test",
    "significance_confidence",
    "proportion_confidence_interval",
    "beta_posterior",
    "thompson_sample",
]
