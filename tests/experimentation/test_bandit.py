"""Tests for Thompson sampling."""
import numpy as np
import pytest
from src.experimentation.stats.bandit import beta_posterior, thompson_sample


def test_beta_posterior_uniform_prior():
    assert beta_posterior(0, 0) == (1.0, 1.0)
    assert beta_posterior(3, 10) == (4.0, 8.0)


def test_thompson_sample_seeded_reproducible():
    arms = {"A": (10, 100), "B": (12, 100)}
    first = thompson_sample(arms, np.random.default_rng(1))
    second = thompson_sample(arms, np.random.default_rng(1))
    assert first == second


def test_thompson_sample_prefers_better_arm():
    """A clearly better arm wins the large majority of draws."""
    rng = np.random.default_rng(3)
    arms = {"A": (50, 1000), "B": (150, 1000)}
    wins = sum(thompson_sample(arms, rng)[0] == "B" for _ in range(500))
    assert wins > 480


def test_thompson_sample_returns_draws():
    best, draws = thompson_sample({"A": (1, 2), "B": (1, 2)}, np.random.default_rng(0))
    assert set(draws) == {"A", "B"}
    assert all(0 <= d <= 1 for d in draws.values())
    assert draws[best] == max(draws.values())


def test_thompson_sample_needs_arms():
    with pytest.raises(ValueError):
        thompson_sample({})
