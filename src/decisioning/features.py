"""
Feature extraction for decision requests.

Flattens a CustomerContext into a named-value map: demographic, behavioral and
contextual fields plus derived propensity and RFM-style scores.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from .schema import ActivityLevel, CustomerContext

DEFAULT_AGE = 35
DEFAULT_COUNTRY = "US"
DEFAULT_SEGMENT = "standard"
DEFAULT_CHANNEL = "email"

ACTIVITY_TIER_WEIGHTS = {
    ActivityLevel.LOW.value: 0.1,
    ActivityLevel.MEDIUM.value: 0.2,
    ActivityLevel.HIGH.value: 0.3,
}

RECENCY_DECAY_DAYS = 30
FREQUENCY_NORMALIZER = 10
MONETARY_NORMALIZER = 500.0


def _activity_key(level) -> str:
    return level.value if isinstance(level, ActivityLevel) else str(level)


def propensity_to_buy(context: CustomerContext) -> float:
    """
    Heuristic purchase propensity in [0, 1].

    0.3 base, plus engagement (up to 0.3), activity tier (0.1-0.3), and 0.1 for
    each of: session > 5 minutes, more than 3 page views, more than 5
    purchases, average order above 100.
    """
    b = context.behavioral
    c = context.contextual

    score = 0.3
    score += (b.engagement_score / 100) * 0.3
    score += ACTIVITY_TIER_WEIGHTS.get(_activity_key(b.activity_level), 0.1)
    if c.session_duration > 300:
        score += 0.1
    if c.page_views > 3:
        score += 0.1
    if b.total_purchases > 5:
        score += 0.1
    if b.avg_order_value > 100:
        score += 0.1
    return min(score, 1.0)


def recency_score(last_login: Optional[datetime], now: datetime) -> float:
    """1.0 for a login right now, decaying linearly to 0 over 30 days."""
    if last_login is None:
        return 0.0
    days_since = (now - last_login).total_seconds() / 86400
    return max(0.0, 1 - days_since / RECENCY_DECAY_DAYS)


def frequency_score(total_purchases: int) -> float:
    return min(total_purchases / FREQUENCY_NORMALIZER, 1.0)


def extract_features(context: CustomerContext, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Map a customer context to a flat feature dict.

    Args:
        context: Customer snapshot for the request
        now: Reference time for time-of-day and recency (default: utcnow)

    Returns:
        Dict of feature name -> value
    """
    now = now or datetime.utcnow()
    d = context.demographics
    b = context.behavioral
    c = context.contextual

    recency = recency_score(b.last_login_date, now)
    frequency = frequency_score(b.total_purchases)
    monetary = b.avg_order_value

    return {
        # demographic
        "age": d.age or DEFAULT_AGE,
        "location": d.country or DEFAULT_COUNTRY,
        "segment": d.segment or DEFAULT_SEGMENT,
        # behavioral
        "total_purchases": b.total_purchases,
        "avg_order_value": b.avg_order_value,
        "lifetime_value": b.lifetime_value,
        "churn_risk": b.churn_risk,
        "engagement_score": b.engagement_score,
        "activity_level": _activity_key(b.activity_level),
        # contextual
        "device_type": c.device_type,
        "time_of_day": now.hour,
        "day_of_week": (now.weekday() + 1) % 7,  # 0 = Sunday
        "session_duration": c.session_duration,
        "page_views": c.page_views,
        # derived
        "propensity_to_buy": propensity_to_buy(context),
        "preferred_channel": b.preferred_channels[0] if b.preferred_channels else DEFAULT_CHANNEL,
        "recency": recency,
        "frequency": frequency,
        "monetary": monetary,
        "rfm_score": (recency + frequency + min(monetary / MONETARY_NORMALIZER, 1.0)) / 3,
    }
