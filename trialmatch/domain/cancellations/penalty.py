"""
Cancellation penalty policy

    notice_factor = clamp(1 - notice_hours / window, 0, 1)
    penalty       = base + (max - base) * notice_factor * (1 - sentiment)

The penalty never increases as notice grows or as the reason reads more like
a genuine emergency. Cancelling at or after the lesson start gives the full
notice factor. Results are rounded to two decimals so stored values match
what admins see.

A positive penalty is subtracted from the tutor's reliability score; a
negative value (admin override) is a bonus.
"""

from datetime import datetime

from ...config import PENALTY_BASE, PENALTY_MAX, PENALTY_NOTICE_WINDOW_HOURS

LOW_PENALTY_MAX = 1.0
MEDIUM_PENALTY_MAX = 3.0


def notice_hours_between(scheduled_at: datetime, cancelled_at: datetime) -> float:
    """Hours of notice given; negative when cancelled after the lesson started"""
    return (scheduled_at - cancelled_at).total_seconds() / 3600.0


def notice_factor(notice_hours: float, window_hours: float = PENALTY_NOTICE_WINDOW_HOURS) -> float:
    return max(0.0, min(1.0, 1.0 - notice_hours / window_hours))


def calculate_penalty(
    notice_hours: float,
    sentiment_score: float,
    *,
    base: float = PENALTY_BASE,
    maximum: float = PENALTY_MAX,
    window_hours: float = PENALTY_NOTICE_WINDOW_HOURS,
) -> float:
    sentiment = max(0.0, min(1.0, sentiment_score))
    factor = notice_factor(notice_hours, window_hours)
    return round(base + (maximum - base) * factor * (1.0 - sentiment), 2)


def penalty_severity(penalty: float) -> str:
    if penalty <= LOW_PENALTY_MAX:
        return "low"
    if penalty <= MEDIUM_PENALTY_MAX:
        return "medium"
    return "high"
