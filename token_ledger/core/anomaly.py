"""
Anomaly detection for receipt pricing.

Identifies receipts priced unusually far from the historical average.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Sequence

from token_ledger.logging_setup import get_logger
from token_ledger.storage.models import Receipt
from .trends import DEFAULT_THRESHOLDS, AnalysisThresholds, sort_receipts, zwg_per_kwh

logger = get_logger(__name__)


class AnomalyType(Enum):
    """Direction of an anomalous rate."""
    SPIKE = "spike"  # priced above the average
    DROP = "drop"  # priced below the average


class AnomalySeverity(Enum):
    """Severity levels for detected anomalies."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Anomaly:
    """Receipt whose rate deviates from the average beyond the threshold."""
    receipt_id: str
    date: datetime
    zwg_per_kwh: float
    deviation: float  # percent, negative for drops
    type: AnomalyType
    severity: AnomalySeverity


def classify_severity(
    deviation: float,
    thresholds: AnalysisThresholds = DEFAULT_THRESHOLDS,
) -> AnomalySeverity:
    """Severity of a deviation, symmetric for spikes and drops."""
    magnitude = abs(deviation)
    if magnitude > thresholds.high_severity_threshold:
        return AnomalySeverity.HIGH
    if magnitude > thresholds.medium_severity_threshold:
        return AnomalySeverity.MEDIUM
    return AnomalySeverity.LOW


def detect_anomalies(
    receipts: Sequence[Receipt],
    thresholds: AnalysisThresholds = DEFAULT_THRESHOLDS,
) -> List[Anomaly]:
    """Detect receipts priced far from the dataset average.

    Rules (defaults):
    - SPIKE: rate more than 20% above the average
    - DROP: rate more than 20% below the average
    - Severity LOW up to 30%, MEDIUM above 30%, HIGH above 40%

    Args:
        receipts: Receipts with their owning purchases, any order
        thresholds: Analysis thresholds

    Returns:
        Anomalies ordered by purchase date, empty when fewer than
        ``min_receipts_for_anomalies`` receipts are given
    """
    if len(receipts) < thresholds.min_receipts_for_anomalies:
        logger.debug(
            "Anomaly detection skipped: %d receipts, %d required",
            len(receipts), thresholds.min_receipts_for_anomalies,
        )
        return []

    ordered = sort_receipts(receipts)
    rates = [zwg_per_kwh(r) for r in ordered]
    avg_rate = sum(rates) / len(rates)
    if avg_rate == 0:
        return []

    anomalies = []
    for receipt, rate in zip(ordered, rates):
        deviation = (rate - avg_rate) / avg_rate * 100

        if deviation > thresholds.anomaly_threshold:
            anomaly_type = AnomalyType.SPIKE
        elif deviation < -thresholds.anomaly_threshold:
            anomaly_type = AnomalyType.DROP
        else:
            continue

        anomalies.append(Anomaly(
            receipt_id=receipt.id,
            date=receipt.purchase.purchase_date,
            zwg_per_kwh=rate,
            deviation=deviation,
            type=anomaly_type,
            severity=classify_severity(deviation, thresholds),
        ))

    logger.debug("Detected %d anomalies in %d receipts", len(anomalies), len(ordered))
    return anomalies
