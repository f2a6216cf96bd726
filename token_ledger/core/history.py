"""
Historical receipt analysis.

Combines monthly trends, anomaly detection and seasonal patterns into a
single result with purchase-timing recommendations.

The analysis is read-only and deterministic: receipts are sorted internally,
time-dependent rules use an explicit ``now``, and insufficient data yields
empty sections instead of errors.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from token_ledger.logging_setup import get_logger
from token_ledger.storage.models import Receipt
from .anomaly import Anomaly, AnomalySeverity, detect_anomalies
from .clock import now_for
from .consumption import TrendDirection
from .trends import (
    DEFAULT_THRESHOLDS,
    AnalysisThresholds,
    PriceTrend,
    SeasonalPattern,
    analyze_price_trends,
    calculate_seasonal_patterns,
    overall_trend,
    sort_receipts,
    usd_per_kwh,
    zwg_per_kwh,
)

logger = get_logger(__name__)

NO_DATA_RECOMMENDATION = (
    "No receipt data available. Import your historical receipts to get insights."
)
NEED_MORE_DATA_RECOMMENDATION = (
    "Import more historical receipts to get personalized insights and recommendations."
)


@dataclass(frozen=True)
class ReceiptSummary:
    """Totals and averages over the analysed receipts."""
    total_receipts: int
    date_range: Optional[Tuple[datetime, datetime]]
    avg_zwg_per_kwh: float
    min_zwg_per_kwh: float
    max_zwg_per_kwh: float
    total_kwh_purchased: float
    total_zwg_spent: float
    total_usd_spent: float
    avg_usd_per_kwh: float
    implied_exchange_rate: float  # ZWG per USD


@dataclass(frozen=True)
class TrendSummary:
    """Overall direction plus the monthly breakdown."""
    overall: TrendDirection
    percentage_change: float
    monthly_trends: List[PriceTrend] = field(default_factory=list)


@dataclass(frozen=True)
class VarianceSummary:
    """USD paid against the ZWG value at the implied exchange rate."""
    usd_vs_zwg: float
    overpayment_percentage: float


@dataclass(frozen=True)
class AnalysisResult:
    """Complete historical receipt analysis."""
    summary: ReceiptSummary
    trends: TrendSummary
    anomalies: List[Anomaly]
    seasonal: List[SeasonalPattern]
    recommendations: List[str]
    variance: VarianceSummary


def generate_recommendations(
    trends: Sequence[PriceTrend],
    anomalies: Sequence[Anomaly],
    avg_rate: float,
    now: Optional[datetime] = None,
    thresholds: AnalysisThresholds = DEFAULT_THRESHOLDS,
) -> List[str]:
    """Turn trends and anomalies into purchase-timing advice.

    Rules (defaults):
    - Latest month moved more than 10% from the month before: rising or
      falling rate advisory
    - Latest month more than 15% above or below ``avg_rate``: wait or buy
      advisory
    - HIGH severity anomalies in the last 30 days: review advisory
    - No trend data at all: ask for more receipts

    Args:
        trends: Monthly trends, oldest first
        anomalies: Detected anomalies
        avg_rate: Overall average ZWG per kWh
        now: Reference time for "recent" (defaults to the current time in
            the zone of the anomaly dates)
        thresholds: Analysis thresholds

    Returns:
        Recommendation strings in rule order
    """
    now = now or now_for(a.date for a in anomalies)
    recommendations = []

    if len(trends) >= 2:
        recent = trends[-1]
        previous = trends[-2]
        if previous.avg_zwg_per_kwh != 0:
            change = (recent.avg_zwg_per_kwh - previous.avg_zwg_per_kwh) / previous.avg_zwg_per_kwh * 100
            if change > thresholds.trend_change_threshold:
                recommendations.append(
                    f"Electricity rates are rising ({change:.1f}% increase). "
                    "Consider purchasing larger amounts when rates are lower."
                )
            elif change < -thresholds.trend_change_threshold:
                recommendations.append(
                    f"Electricity rates are decreasing ({abs(change):.1f}% drop). "
                    "Good time to purchase tokens."
                )

        band = thresholds.rate_deviation_threshold / 100
        if recent.avg_zwg_per_kwh > avg_rate * (1 + band):
            recommendations.append(
                f"Current rate ({recent.avg_zwg_per_kwh:.2f} ZWG/kWh) is "
                f"{thresholds.rate_deviation_threshold:g}%+ above your average. "
                "Wait for better rates if possible."
            )
        elif recent.avg_zwg_per_kwh < avg_rate * (1 - band):
            recommendations.append(
                f"Current rate ({recent.avg_zwg_per_kwh:.2f} ZWG/kWh) is "
                f"{thresholds.rate_deviation_threshold:g}%+ below your average. "
                "Excellent time to purchase."
            )

    window = timedelta(days=thresholds.recent_anomaly_days)
    recent_high = [
        a for a in anomalies
        if a.severity == AnomalySeverity.HIGH and now - a.date <= window
    ]
    if recent_high:
        noun = "anomaly" if len(recent_high) == 1 else "anomalies"
        recommendations.append(
            f"{len(recent_high)} unusual price {noun} detected in the last "
            f"{thresholds.recent_anomaly_days} days. Review your recent purchases."
        )

    if not trends:
        recommendations.append(NEED_MORE_DATA_RECOMMENDATION)

    return recommendations


def _empty_result() -> AnalysisResult:
    return AnalysisResult(
        summary=ReceiptSummary(
            total_receipts=0,
            date_range=None,
            avg_zwg_per_kwh=0.0,
            min_zwg_per_kwh=0.0,
            max_zwg_per_kwh=0.0,
            total_kwh_purchased=0.0,
            total_zwg_spent=0.0,
            total_usd_spent=0.0,
            avg_usd_per_kwh=0.0,
            implied_exchange_rate=0.0,
        ),
        trends=TrendSummary(overall=TrendDirection.STABLE, percentage_change=0.0),
        anomalies=[],
        seasonal=[],
        recommendations=[NO_DATA_RECOMMENDATION],
        variance=VarianceSummary(usd_vs_zwg=0.0, overpayment_percentage=0.0),
    )


def analyze_historical_receipts(
    receipts: Sequence[Receipt],
    now: Optional[datetime] = None,
    thresholds: AnalysisThresholds = DEFAULT_THRESHOLDS,
) -> AnalysisResult:
    """Analyse the receipt history end to end.

    Steps:
    1. Summary statistics and the implied ZWG/USD exchange rate
    2. Monthly trends and the overall direction
    3. Anomalies (needs 3+ receipts) and seasonal patterns (needs 12+)
    4. USD vs ZWG variance at the implied exchange rate
    5. Recommendations

    Args:
        receipts: Receipts with their owning purchases, any order
        now: Reference time for recent-anomaly advice
        thresholds: Analysis thresholds

    Returns:
        AnalysisResult. An empty history gives a zeroed result with a single
        recommendation explaining that no data is available.
    """
    if not receipts:
        logger.debug("No receipts to analyse")
        return _empty_result()

    ordered = sort_receipts(receipts)
    zwg_rates = [zwg_per_kwh(r) for r in ordered]
    usd_rates = [usd_per_kwh(r) for r in ordered]
    avg_zwg = sum(zwg_rates) / len(zwg_rates)
    total_kwh = sum(r.kwh_purchased for r in ordered)
    total_zwg = sum(r.total_amount_zwg for r in ordered)
    total_usd = sum(r.purchase.total_payment for r in ordered)
    implied_rate = total_zwg / total_usd if total_usd > 0 else 0.0

    monthly = analyze_price_trends(ordered)
    direction, change = overall_trend(monthly, thresholds)
    anomalies = detect_anomalies(ordered, thresholds)
    seasonal = calculate_seasonal_patterns(ordered, thresholds)

    # Positive variance: more USD was paid than the ZWG amount is worth.
    zwg_in_usd = total_zwg / implied_rate if implied_rate > 0 else 0.0
    variance = total_usd - zwg_in_usd
    overpayment_pct = variance / zwg_in_usd * 100 if zwg_in_usd > 0 else 0.0

    logger.debug(
        "Analysed %d receipts: %d months, %d anomalies, %d seasonal buckets",
        len(ordered), len(monthly), len(anomalies), len(seasonal),
    )

    return AnalysisResult(
        summary=ReceiptSummary(
            total_receipts=len(ordered),
            date_range=(ordered[0].purchase.purchase_date, ordered[-1].purchase.purchase_date),
            avg_zwg_per_kwh=avg_zwg,
            min_zwg_per_kwh=min(zwg_rates),
            max_zwg_per_kwh=max(zwg_rates),
            total_kwh_purchased=total_kwh,
            total_zwg_spent=total_zwg,
            total_usd_spent=total_usd,
            avg_usd_per_kwh=sum(usd_rates) / len(usd_rates),
            implied_exchange_rate=implied_rate,
        ),
        trends=TrendSummary(overall=direction, percentage_change=change, monthly_trends=monthly),
        anomalies=anomalies,
        seasonal=seasonal,
        recommendations=generate_recommendations(monthly, anomalies, avg_zwg, now, thresholds),
        variance=VarianceSummary(usd_vs_zwg=variance, overpayment_percentage=overpayment_pct),
    )
