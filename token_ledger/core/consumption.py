"""
Consumption trend over recent weeks.

Compares tokens consumed in the last seven days against the seven days
before, based on when contributions were recorded.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Sequence

from token_ledger.storage.models import Contribution
from .clock import now_for
from .fair_share import round_money


class TrendDirection(Enum):
    """Direction of a value over time."""
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass(frozen=True)
class ConsumptionTrend:
    """Week-over-week consumption and contribution totals."""
    last_week_consumption: float
    previous_week_consumption: float
    last_week_contributed: float
    previous_week_contributed: float
    average_daily: float
    trend: TrendDirection
    trend_percentage: float


def consumption_trend(
    contributions: Sequence[Contribution],
    now: Optional[datetime] = None,
    stable_band: float = 10.0,
) -> ConsumptionTrend:
    """Compute the week-over-week consumption trend.

    Args:
        contributions: Contributions to consider, any order
        now: Reference time (defaults to the current time in the zone of
            the contribution timestamps)
        stable_band: Weekly change in percent below which the trend is stable

    Returns:
        ConsumptionTrend. Average daily consumption covers the last 30 days.
    """
    now = now or now_for(c.created_at for c in contributions)
    week_ago = now - timedelta(days=7)
    two_weeks_ago = now - timedelta(days=14)
    month_ago = now - timedelta(days=30)

    last_week = [c for c in contributions if week_ago <= c.created_at <= now]
    previous_week = [c for c in contributions if two_weeks_ago <= c.created_at < week_ago]
    last_month = [c for c in contributions if month_ago <= c.created_at <= now]

    last_week_consumption = sum(c.tokens_consumed for c in last_week)
    previous_week_consumption = sum(c.tokens_consumed for c in previous_week)

    trend = TrendDirection.STABLE
    percentage = 0.0
    if previous_week_consumption > 0:
        percentage = (
            (last_week_consumption - previous_week_consumption)
            / previous_week_consumption * 100
        )
        if abs(percentage) < stable_band:
            trend = TrendDirection.STABLE
        elif percentage > 0:
            trend = TrendDirection.INCREASING
        else:
            trend = TrendDirection.DECREASING
    elif last_week_consumption > 0:
        trend = TrendDirection.INCREASING
        percentage = 100.0

    return ConsumptionTrend(
        last_week_consumption=last_week_consumption,
        previous_week_consumption=previous_week_consumption,
        last_week_contributed=round_money(sum(c.contribution_amount for c in last_week)),
        previous_week_contributed=round_money(sum(c.contribution_amount for c in previous_week)),
        average_daily=sum(c.tokens_consumed for c in last_month) / 30,
        trend=trend,
        trend_percentage=round_money(percentage),
    )
