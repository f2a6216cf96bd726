"""
Unit tests for price trends and seasonal patterns.
"""

from datetime import datetime

import pytest

from token_ledger.core.consumption import TrendDirection
from token_ledger.core.trends import (
    AnalysisThresholds,
    PriceTrend,
    analyze_price_trends,
    calculate_seasonal_patterns,
    overall_trend,
    sort_receipts,
    usd_per_kwh,
    zwg_per_kwh,
)
from token_ledger.storage.models import Purchase, Receipt


def make_receipt(rid: str, date: datetime, kwh: float = 100.0, zwg: float = 270.0, usd: float = 10.0) -> Receipt:
    purchase = Purchase(
        id=f"p-{rid}",
        purchase_date=date,
        total_tokens=kwh,
        total_payment=usd,
    )
    return Receipt(
        id=rid,
        purchase=purchase,
        kwh_purchased=kwh,
        total_amount_zwg=zwg,
        transaction_datetime=date,
    )


def make_trend(period: str, avg: float) -> PriceTrend:
    year, month = (int(part) for part in period.split("-"))
    return PriceTrend(
        period=period,
        date=datetime(year, month, 1),
        avg_zwg_per_kwh=avg,
        min_zwg_per_kwh=avg,
        max_zwg_per_kwh=avg,
        total_kwh=100.0,
        purchase_count=1,
    )


class TestRates:
    """Test per-receipt rates."""

    def test_zwg_rate(self):
        """Verify ZWG per kWh."""
        assert zwg_per_kwh(make_receipt("r1", datetime(2024, 1, 1), kwh=200, zwg=540)) == 2.7

    def test_usd_rate(self):
        """Verify USD per kWh comes from the owning purchase."""
        assert usd_per_kwh(make_receipt("r1", datetime(2024, 1, 1), kwh=200, usd=20)) == 0.1

    def test_zero_kwh_guarded(self):
        """Verify a receipt without kWh has zero rates."""
        receipt = make_receipt("r1", datetime(2024, 1, 1), kwh=0)
        assert zwg_per_kwh(receipt) == 0.0
        assert usd_per_kwh(receipt) == 0.0

    def test_sort_by_date_then_id(self):
        """Verify receipts sort chronologically with ids breaking ties."""
        receipts = [
            make_receipt("b", datetime(2024, 2, 1)),
            make_receipt("c", datetime(2024, 1, 1)),
            make_receipt("a", datetime(2024, 2, 1)),
        ]
        assert [r.id for r in sort_receipts(receipts)] == ["c", "a", "b"]
        assert [r.id for r in receipts] == ["b", "c", "a"]


class TestPriceTrends:
    """Test monthly aggregation."""

    def test_empty(self):
        """Verify no receipts gives no trends."""
        assert analyze_price_trends([]) == []

    def test_monthly_grouping(self):
        """Verify receipts are grouped per calendar month in order."""
        receipts = [
            make_receipt("r3", datetime(2024, 2, 10), kwh=100, zwg=250),
            make_receipt("r2", datetime(2024, 1, 20), kwh=100, zwg=300),
            make_receipt("r1", datetime(2024, 1, 5), kwh=50, zwg=100),
        ]
        trends = analyze_price_trends(receipts)

        assert [t.period for t in trends] == ["2024-01", "2024-02"]
        january = trends[0]
        assert january.date == datetime(2024, 1, 5)
        assert january.avg_zwg_per_kwh == pytest.approx(2.5)
        assert january.min_zwg_per_kwh == 2.0
        assert january.max_zwg_per_kwh == 3.0
        assert january.total_kwh == 150
        assert january.purchase_count == 2
        assert trends[1].avg_zwg_per_kwh == 2.5

    def test_same_month_different_years(self):
        """Verify months in different years stay separate."""
        trends = analyze_price_trends([
            make_receipt("r1", datetime(2023, 3, 1)),
            make_receipt("r2", datetime(2024, 3, 1)),
        ])
        assert [t.period for t in trends] == ["2023-03", "2024-03"]


class TestOverallTrend:
    """Test the first-versus-last comparison."""

    def test_single_month_is_stable(self):
        """Verify one month cannot give a direction."""
        assert overall_trend([make_trend("2024-01", 2.0)]) == (TrendDirection.STABLE, 0.0)

    def test_increasing(self):
        """Verify a doubling of rates is increasing."""
        monthly = [make_trend(f"2024-{m:02d}", 1.0 if m <= 3 else 2.0) for m in range(1, 7)]
        direction, change = overall_trend(monthly)
        assert direction == TrendDirection.INCREASING
        assert change == pytest.approx(100.0)

    def test_decreasing(self):
        """Verify a 20% fall is decreasing."""
        monthly = [make_trend(f"2024-{m:02d}", 10.0 if m <= 3 else 8.0) for m in range(1, 7)]
        direction, change = overall_trend(monthly)
        assert direction == TrendDirection.DECREASING
        assert change == pytest.approx(-20.0)

    def test_small_change_is_stable(self):
        """Verify changes within 5% are stable."""
        monthly = [make_trend(f"2024-{m:02d}", avg) for m, avg in enumerate([10.0, 10.0, 10.0, 9.0], start=1)]
        direction, change = overall_trend(monthly)
        assert direction == TrendDirection.STABLE
        assert change == pytest.approx(-10 / 3)

    def test_zero_first_average_guarded(self):
        """Verify a zero starting rate does not divide by zero."""
        monthly = [make_trend("2024-01", 0.0), make_trend("2024-02", 0.0)]
        assert overall_trend(monthly) == (TrendDirection.STABLE, 0.0)


class TestSeasonalPatterns:
    """Test month-of-year buckets."""

    def test_needs_twelve_receipts(self):
        """Verify fewer than 12 receipts gives no seasonal data."""
        receipts = [make_receipt(f"r{m}", datetime(2024, m, 1)) for m in range(1, 12)]
        assert calculate_seasonal_patterns(receipts) == []

    def test_full_year(self):
        """Verify a year of receipts fills every month bucket."""
        receipts = [make_receipt(f"r{m:02d}", datetime(2024, m, 1)) for m in range(1, 13)]
        patterns = calculate_seasonal_patterns(receipts)

        assert [p.month for p in patterns] == list(range(12))
        assert all(p.purchase_count == 1 for p in patterns)
        assert patterns[0].avg_zwg_per_kwh == 2.7

    def test_months_across_years_combine(self):
        """Verify the same month in two years shares a bucket."""
        receipts = [make_receipt(f"r{m:02d}", datetime(2024, m, 1)) for m in range(1, 13)]
        receipts.append(make_receipt("r13", datetime(2025, 1, 1), zwg=330))
        january = calculate_seasonal_patterns(receipts)[0]

        assert january.month == 0
        assert january.purchase_count == 2
        assert january.avg_zwg_per_kwh == pytest.approx(3.0)
        assert january.total_kwh == 200

    def test_custom_minimum(self):
        """Verify the minimum comes from thresholds."""
        thresholds = AnalysisThresholds(min_receipts_for_seasonal=2)
        receipts = [make_receipt("r1", datetime(2024, 5, 1)), make_receipt("r2", datetime(2024, 7, 1))]
        assert [p.month for p in calculate_seasonal_patterns(receipts, thresholds)] == [4, 6]


class TestAnalysisThresholds:
    """Test threshold validation."""

    def test_defaults(self):
        """Verify default thresholds."""
        thresholds = AnalysisThresholds()
        assert thresholds.anomaly_threshold == 20
        assert thresholds.high_severity_threshold == 40
        assert thresholds.min_receipts_for_anomalies == 3

    def test_unordered_severity_rejected(self):
        """Verify severity thresholds must be ordered."""
        with pytest.raises(ValueError, match="severity thresholds"):
            AnalysisThresholds(medium_severity_threshold=50.0, high_severity_threshold=45.0)

    def test_non_positive_anomaly_threshold_rejected(self):
        """Verify the anomaly threshold must be positive."""
        with pytest.raises(ValueError, match="anomaly_threshold"):
            AnalysisThresholds(anomaly_threshold=0.0)

    def test_non_positive_trend_change_threshold_rejected(self):
        """Verify the month-over-month advisory threshold must be positive."""
        with pytest.raises(ValueError, match="trend_change_threshold"):
            AnalysisThresholds(trend_change_threshold=0.0)

    def test_negative_rate_deviation_threshold_rejected(self):
        """Verify the average-rate band must be positive."""
        with pytest.raises(ValueError, match="rate_deviation_threshold"):
            AnalysisThresholds(rate_deviation_threshold=-15.0)

    def test_non_positive_overall_trend_threshold_rejected(self):
        """Verify the overall trend band must be positive."""
        with pytest.raises(ValueError, match="overall_trend_threshold"):
            AnalysisThresholds(overall_trend_threshold=0.0)
