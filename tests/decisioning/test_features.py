"""Tests for feature extraction."""
from datetime import timedelta

import pytest
from src.decisioning.features import (
    extract_features,
    frequency_score,
    propensity_to_buy,
    recency_score,
)
from src.decisioning.schema import (
    ActivityLevel,
    BehavioralProfile,
    ContextualInfo,
    CustomerContext,
    Demographics,
)


def test_defaults_for_empty_context(fixed_now):
    f = extract_features(CustomerContext(), fixed_now)
    assert f["age"] == 35
    assert f["location"] == "US"
    assert f["segment"] == "standard"
    assert f["preferred_channel"] == "email"
    assert f["activity_level"] == "low"
    assert f["recency"] == 0.0
    assert f["rfm_score"] == 0.0


def test_time_features_sunday_zero(fixed_now):
    """2024-03-05 10:30 is a Tuesday -> day 2 with Sunday = 0."""
    f = extract_features(CustomerContext(), fixed_now)
    assert f["time_of_day"] == 10
    assert f["day_of_week"] == 2
    sunday = extract_features(CustomerContext(), fixed_now - timedelta(days=2))
    assert sunday["day_of_week"] == 0


def test_demographics_pass_through(fixed_now):
    ctx = CustomerContext(demographics=Demographics(age=52, country="DE", segment="premium"))
    f = extract_features(ctx, fixed_now)
    assert (f["age"], f["location"], f["segment"]) == (52, "DE", "premium")


def test_propensity_base_score():
    assert propensity_to_buy(CustomerContext()) == pytest.approx(0.4)


def test_propensity_capped_at_one():
    ctx = CustomerContext(
        behavioral=BehavioralProfile(
            total_purchases=6, avg_order_value=150, engagement_score=80, activity_level=ActivityLevel.HIGH,
        ),
        contextual=ContextualInfo(session_duration=400, page_views=5),
    )
    assert propensity_to_buy(ctx) == 1.0


def test_propensity_accepts_raw_activity_string():
    ctx = CustomerContext(behavioral=BehavioralProfile(activity_level="medium"))
    assert propensity_to_buy(ctx) == pytest.approx(0.5)


def test_recency_decays_over_thirty_days(fixed_now):
    assert recency_score(fixed_now, fixed_now) == pytest.approx(1.0)
    assert recency_score(fixed_now - timedelta(days=15), fixed_now) == pytest.approx(0.5)
    assert recency_score(fixed_now - timedelta(days=45), fixed_now) == 0.0
    assert recency_score(None, fixed_now) == 0.0


def test_frequency_capped():
    assert frequency_score(5) == pytest.approx(0.5)
    assert frequency_score(50) == 1.0


def test_rfm_score_and_preferred_channel(fixed_now):
    ctx = CustomerContext(behavioral=BehavioralProfile(
        total_purchases=10,
        avg_order_value=250,
        preferred_channels=["sms", "email"],
        last_login_date=fixed_now,
    ))
    f = extract_features(ctx, fixed_now)
    assert f["preferred_channel"] == "sms"
    assert f["monetary"] == 250
    assert f["rfm_score"] == pytest.approx((1.0 + 1.0 + 0.5) / 3)
