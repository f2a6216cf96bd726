"""
Account summaries for a scope.

Pulls records from the repository and runs them through the engines. This is
the call site reports and the CLI use; nothing downstream recomputes the
formulas.

A scope is either the whole system (``user_id=None``) or a single user.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from token_ledger.config.loader import DEFAULT_CONFIG, LedgerConfig
from token_ledger.logging_setup import get_logger
from token_ledger.storage.repository import LedgerRepository
from .balance import AnticipatedPaymentResult, calculate_account_balance, project_anticipated_payment
from .consumption import ConsumptionTrend, consumption_trend
from .fair_share import TrueCostSummary, fair_share_totals, true_cost_summary
from .history import AnalysisResult, analyze_historical_receipts

logger = get_logger(__name__)

SYSTEM_SCOPE = "system"


@dataclass(frozen=True)
class AccountSummary:
    """Balance, cost and projection for one scope."""
    scope: str
    cost_summary: TrueCostSummary
    running_balance: float
    projection: AnticipatedPaymentResult
    consumption: ConsumptionTrend


def summarize_account(
    repository: LedgerRepository,
    user_id: Optional[str] = None,
    config: LedgerConfig = DEFAULT_CONFIG,
    now: Optional[datetime] = None,
) -> AccountSummary:
    """Build the account summary for the system or a single user.

    The historical cost per kWh always comes from system-wide contributions,
    and consumption since the last contribution is measured against the
    latest meter reading anywhere in the system.

    Args:
        repository: Source of ledger records
        user_id: Optional user scope; system-wide when None
        config: Threshold configuration
        now: Reference time for the consumption trend

    Returns:
        AccountSummary for the scope
    """
    global_contributions = repository.list_contributions()
    if user_id is None:
        scope_contributions = global_contributions
    else:
        scope_contributions = repository.list_contributions(user_id)

    earliest = repository.earliest_purchase()
    earliest_date = earliest.purchase_date if earliest else None

    scope_summary = true_cost_summary(scope_contributions)
    running_balance = calculate_account_balance(scope_contributions, earliest_date)

    latest_reading = repository.latest_meter_reading()
    latest_contribution = repository.latest_contribution(user_id)

    # Rates and ratios are derived from unrounded totals
    global_tokens, global_true_cost = fair_share_totals(global_contributions)

    user_purchase_total_cost = None
    user_fair_share = None
    if user_id is not None:
        purchases = {c.purchase_id: c.purchase for c in scope_contributions}
        user_purchase_total_cost = sum(p.total_payment for p in purchases.values())
        _, user_fair_share = fair_share_totals(scope_contributions)

    projection = project_anticipated_payment(
        running_balance=running_balance,
        latest_reading=latest_reading.reading if latest_reading else None,
        baseline_reading=latest_contribution.meter_reading if latest_contribution else None,
        total_true_cost=global_true_cost,
        total_tokens_used=global_tokens,
        user_purchase_total_cost=user_purchase_total_cost,
        user_fair_share=user_fair_share,
        thresholds=config.balance,
    )

    scope = user_id if user_id is not None else SYSTEM_SCOPE
    logger.debug("Account summary for %s: balance %.2f", scope, running_balance)

    return AccountSummary(
        scope=scope,
        cost_summary=scope_summary,
        running_balance=running_balance,
        projection=projection,
        consumption=consumption_trend(
            scope_contributions, now=now, stable_band=config.consumption_stable_band
        ),
    )


def analyze_receipts(
    repository: LedgerRepository,
    user_id: Optional[str] = None,
    config: LedgerConfig = DEFAULT_CONFIG,
    now: Optional[datetime] = None,
) -> AnalysisResult:
    """Historical receipt analysis for the system or a single user."""
    receipts = repository.list_receipts(user_id)
    return analyze_historical_receipts(receipts, now=now, thresholds=config.analysis)
