"""
Running account balance and anticipated payments.

Sign convention used throughout the package: a positive balance is credit
(the scope paid more than its fair share), a negative balance is debt.

Balance rules:
1. Contributions are walked in purchase-date order (ties by creation time,
   then id). The input is never mutated.
2. Contributions against the globally earliest purchase count as zero
   consumption, since no meter baseline exists before that purchase.
3. Each contribution moves the balance by ``amount - fair share``.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

from token_ledger.logging_setup import get_logger
from token_ledger.storage.models import Contribution
from .fair_share import proportional_cost, round_money

logger = get_logger(__name__)


class BalanceStatus(Enum):
    """Health of a balance, from credit to significant debt."""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class BalanceThresholds:
    """Balance levels at which the status degrades.

    Defaults: any debt is a warning, debt deeper than 20 USD is critical.
    """
    warning_below: float = 0.0
    critical_below: float = -20.0

    def __post_init__(self):
        """Validate thresholds are ordered."""
        if self.critical_below > self.warning_below:
            raise ValueError("critical_below must not be above warning_below")


@dataclass(frozen=True)
class BalanceEntry:
    """One step of the running balance walk."""
    contribution_id: str
    purchase_id: str
    is_first_purchase: bool
    effective_tokens_consumed: float
    fair_share: float
    balance_change: float
    running_balance: float


def _ordered(contributions: Sequence[Contribution]) -> List[Contribution]:
    return sorted(
        contributions,
        key=lambda c: (c.purchase.purchase_date, c.created_at, c.id),
    )


def balance_ledger(
    contributions: Sequence[Contribution],
    earliest_purchase_date: Optional[datetime] = None,
) -> List[BalanceEntry]:
    """Walk contributions in purchase order and record each balance step.

    Args:
        contributions: Contributions with their owning purchases, any order
        earliest_purchase_date: Date of the earliest purchase in the whole
            dataset. Derived from ``contributions`` when omitted, which is
            only correct for system-wide streams.

    Returns:
        One BalanceEntry per contribution, in processing order. Values are
        not rounded.
    """
    if not contributions:
        return []

    ordered = _ordered(contributions)
    if earliest_purchase_date is None:
        earliest_purchase_date = ordered[0].purchase.purchase_date

    entries = []
    running_balance = 0.0
    for contribution in ordered:
        purchase = contribution.purchase
        is_first_purchase = purchase.purchase_date == earliest_purchase_date
        effective_tokens = 0.0 if is_first_purchase else contribution.tokens_consumed

        fair_share = proportional_cost(effective_tokens, purchase.total_tokens, purchase.total_payment)
        balance_change = contribution.contribution_amount - fair_share
        running_balance += balance_change

        entries.append(BalanceEntry(
            contribution_id=contribution.id,
            purchase_id=purchase.id,
            is_first_purchase=is_first_purchase,
            effective_tokens_consumed=effective_tokens,
            fair_share=fair_share,
            balance_change=balance_change,
            running_balance=running_balance,
        ))

    return entries


def calculate_account_balance(
    contributions: Sequence[Contribution],
    earliest_purchase_date: Optional[datetime] = None,
) -> float:
    """Final running balance of a contribution stream, rounded to cents.

    An empty stream has a balance of 0.0.
    """
    entries = balance_ledger(contributions, earliest_purchase_date)
    if not entries:
        return 0.0
    balance = round_money(entries[-1].running_balance)
    logger.debug("Running balance %.2f over %d contributions", balance, len(entries))
    return balance


def classify_balance(
    balance: float,
    thresholds: BalanceThresholds = BalanceThresholds(),
) -> BalanceStatus:
    """Map a balance onto a status using the configured thresholds."""
    if balance < thresholds.critical_below:
        return BalanceStatus.CRITICAL
    if balance < thresholds.warning_below:
        return BalanceStatus.WARNING
    return BalanceStatus.HEALTHY


@dataclass(frozen=True)
class AnticipatedPaymentResult:
    """Projection of a balance once unreported consumption is settled.

    Negative amounts are money owed. ``anticipated_others_payment`` is the
    share other contributors are expected to cover for the same
    consumption and is 0.0 for system-wide projections.
    """
    tokens_consumed_since_last_contribution: float
    estimated_cost_since_last_contribution: float
    anticipated_payment: float
    anticipated_others_payment: float
    anticipated_token_purchase: float
    historical_cost_per_kwh: float
    status: BalanceStatus


def project_anticipated_payment(
    running_balance: float,
    latest_reading: Optional[float],
    baseline_reading: Optional[float],
    total_true_cost: float,
    total_tokens_used: float,
    user_purchase_total_cost: Optional[float] = None,
    user_fair_share: Optional[float] = None,
    thresholds: BalanceThresholds = BalanceThresholds(),
) -> AnticipatedPaymentResult:
    """Project what a scope will owe once consumption since its last
    contribution is paid for.

    Consumption since the last contribution is priced at the historical
    fair-share rate ``total_true_cost / total_tokens_used``.

    Args:
        running_balance: Current balance of the scope
        latest_reading: Most recent meter reading across the system
        baseline_reading: Meter reading of the scope's last contribution
        total_true_cost: System-wide fair-share cost
        total_tokens_used: System-wide tokens consumed
        user_purchase_total_cost: For a user scope, total payment of the
            purchases the user contributed to
        user_fair_share: For a user scope, the user's fair-share cost
        thresholds: Status thresholds applied to ``running_balance``

    Returns:
        AnticipatedPaymentResult. Missing readings yield zero consumption
        rather than an error.
    """
    tokens_since = 0.0
    if latest_reading is None or baseline_reading is None:
        logger.debug("No meter reading baseline available, projecting zero consumption")
    else:
        tokens_since = max(0.0, latest_reading - baseline_reading)

    historical_rate = 0.0
    if total_tokens_used != 0:
        historical_rate = total_true_cost / total_tokens_used

    estimated_cost = -(tokens_since * historical_rate)
    anticipated_payment = running_balance + estimated_cost

    others_payment = 0.0
    if user_purchase_total_cost is not None and user_fair_share is not None:
        others_ratio = 0.0
        if user_fair_share != 0:
            others_ratio = (user_purchase_total_cost - user_fair_share) / user_fair_share
        others_payment = estimated_cost * others_ratio

    return AnticipatedPaymentResult(
        tokens_consumed_since_last_contribution=tokens_since,
        estimated_cost_since_last_contribution=round_money(estimated_cost),
        anticipated_payment=round_money(anticipated_payment),
        anticipated_others_payment=round_money(others_payment),
        anticipated_token_purchase=round_money(anticipated_payment + others_payment),
        historical_cost_per_kwh=historical_rate,
        status=classify_balance(running_balance, thresholds),
    )
