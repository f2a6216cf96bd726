"""
Price trends over the receipt history.

Per-receipt rates, month-by-month aggregation and seasonal patterns of the
ZWG cost per kWh.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Sequence, Tuple

from token_ledger.logging_setup import get_logger
from token_ledger.storage.models import Receipt
from .consumption import TrendDirection

logger = get_logger(__name__)


@dataclass(frozen=True)
class AnalysisThresholds:
    """Thresholds for historical receipt analysis.

    Percentages are deviations from an average, e.g. 20.0 means 20%.
    """
    anomaly_threshold: float = 20.0
    medium_severity_threshold: float = 30.0
    high_severity_threshold: float = 40.0
    min_receipts_for_anomalies: int = 3
    min_receipts_for_seasonal: int = 12
    trend_change_threshold: float = 10.0
    rate_deviation_threshold: float = 15.0
    recent_anomaly_days: int = 30
    overall_trend_threshold: float = 5.0

    def __post_init__(self):
        """Validate thresholds are positive and ordered."""
        if self.anomaly_threshold <= 0:
            raise ValueError("anomaly_threshold must be > 0")
        if not (self.anomaly_threshold <= self.medium_severity_threshold <= self.high_severity_threshold):
            raise ValueError(
                "severity thresholds must satisfy anomaly <= medium <= high"
            )
        if self.min_receipts_for_anomalies < 1:
            raise ValueError("min_receipts_for_anomalies must be >= 1")
        if self.min_receipts_for_seasonal < 1:
            raise ValueError("min_receipts_for_seasonal must be >= 1")
        if self.recent_anomaly_days < 0:
            raise ValueError("recent_anomaly_days cannot be negative")
        if self.trend_change_threshold <= 0:
            raise ValueError("trend_change_threshold must be > 0")
        if self.rate_deviation_threshold <= 0:
            raise ValueError("rate_deviation_threshold must be > 0")
        if self.overall_trend_threshold <= 0:
            raise ValueError("overall_trend_threshold must be > 0")


DEFAULT_THRESHOLDS = AnalysisThresholds()


def zwg_per_kwh(receipt: Receipt) -> float:
    """ZWG paid per kWh, 0.0 when the receipt has no kWh."""
    if receipt.kwh_purchased == 0:
        return 0.0
    return receipt.total_amount_zwg / receipt.kwh_purchased


def usd_per_kwh(receipt: Receipt) -> float:
    """USD paid per kWh, 0.0 when the receipt has no kWh."""
    if receipt.kwh_purchased == 0:
        return 0.0
    return receipt.purchase.total_payment / receipt.kwh_purchased


def sort_receipts(receipts: Sequence[Receipt]) -> List[Receipt]:
    """Copy of ``receipts`` in purchase-date order, ties broken by id."""
    return sorted(receipts, key=lambda r: (r.purchase.purchase_date, r.id))


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


@dataclass(frozen=True)
class PriceTrend:
    """Rate statistics for one calendar month."""
    period: str  # YYYY-MM
    date: datetime  # earliest purchase date in the month
    avg_zwg_per_kwh: float
    min_zwg_per_kwh: float
    max_zwg_per_kwh: float
    total_kwh: float
    purchase_count: int


def analyze_price_trends(receipts: Sequence[Receipt]) -> List[PriceTrend]:
    """Aggregate receipt rates per calendar month.

    Args:
        receipts: Receipts with their owning purchases, any order

    Returns:
        One PriceTrend per month with receipts, oldest first
    """
    if not receipts:
        return []

    groups: Dict[Tuple[int, int], List[Receipt]] = {}
    for receipt in sort_receipts(receipts):
        date = receipt.purchase.purchase_date
        groups.setdefault((date.year, date.month), []).append(receipt)

    trends = []
    for (year, month) in sorted(groups):
        month_receipts = groups[(year, month)]
        rates = [zwg_per_kwh(r) for r in month_receipts]
        trends.append(PriceTrend(
            period=f"{year:04d}-{month:02d}",
            date=month_receipts[0].purchase.purchase_date,
            avg_zwg_per_kwh=_mean(rates),
            min_zwg_per_kwh=min(rates),
            max_zwg_per_kwh=max(rates),
            total_kwh=sum(r.kwh_purchased for r in month_receipts),
            purchase_count=len(month_receipts),
        ))

    return trends


def overall_trend(
    monthly_trends: Sequence[PriceTrend],
    thresholds: AnalysisThresholds = DEFAULT_THRESHOLDS,
) -> Tuple[TrendDirection, float]:
    """Compare the first and last quarter of the monthly averages.

    Each "quarter" is up to three months from either end of the history.
    At least two months are needed for a direction.

    Returns:
        Tuple of direction and percentage change
    """
    if len(monthly_trends) < 2:
        return TrendDirection.STABLE, 0.0

    window = min(3, len(monthly_trends))
    first_avg = _mean([t.avg_zwg_per_kwh for t in monthly_trends[:window]])
    last_avg = _mean([t.avg_zwg_per_kwh for t in monthly_trends[-window:]])
    if first_avg == 0:
        return TrendDirection.STABLE, 0.0

    change = (last_avg - first_avg) / first_avg * 100
    if change > thresholds.overall_trend_threshold:
        return TrendDirection.INCREASING, change
    if change < -thresholds.overall_trend_threshold:
        return TrendDirection.DECREASING, change
    return TrendDirection.STABLE, change


@dataclass(frozen=True)
class SeasonalPattern:
    """Average rate for a month of the year across all years."""
    month: int  # 0 = January, 11 = December
    avg_zwg_per_kwh: float
    purchase_count: int
    total_kwh: float


def calculate_seasonal_patterns(
    receipts: Sequence[Receipt],
    thresholds: AnalysisThresholds = DEFAULT_THRESHOLDS,
) -> List[SeasonalPattern]:
    """Bucket receipt rates by month of year.

    Returns an empty list until ``min_receipts_for_seasonal`` receipts exist.
    Months without receipts are omitted.
    """
    if len(receipts) < thresholds.min_receipts_for_seasonal:
        logger.debug(
            "Seasonal analysis skipped: %d receipts, %d required",
            len(receipts), thresholds.min_receipts_for_seasonal,
        )
        return []

    buckets: Dict[int, List[Receipt]] = {}
    for receipt in sort_receipts(receipts):
        buckets.setdefault(receipt.purchase.purchase_date.month - 1, []).append(receipt)

    return [
        SeasonalPattern(
            month=month,
            avg_zwg_per_kwh=_mean([zwg_per_kwh(r) for r in buckets[month]]),
            purchase_count=len(buckets[month]),
            total_kwh=sum(r.kwh_purchased for r in buckets[month]),
        )
        for month in sorted(buckets)
    ]
