"""
Fair-share cost calculations.

This is the single home of the proportional cost formula. Every other module
(balance, projections, reports, the CLI) imports it instead of recomputing
costs inline.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from token_ledger.logging_setup import get_logger
from token_ledger.storage.models import Contribution, Purchase, Receipt

logger = get_logger(__name__)


def round_money(value: float) -> float:
    """Round to 2 decimal places, half away from zero."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _safe_ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return 0.0
    return numerator / denominator


def proportional_cost(tokens_consumed: float, total_tokens: float, total_payment: float) -> float:
    """Proportional cost of consumed tokens at the purchase's rate.

    Args:
        tokens_consumed: Tokens used by the contributor
        total_tokens: Tokens bought in the purchase
        total_payment: Amount paid for the purchase

    Returns:
        ``tokens_consumed / total_tokens * total_payment``, or 0.0 when the
        purchase holds no tokens. Not rounded.
    """
    if total_tokens == 0:
        return 0.0
    return (tokens_consumed / total_tokens) * total_payment


def contribution_fair_share(contribution: Contribution) -> float:
    """Fair share of a contribution at its owning purchase's rate."""
    purchase = contribution.purchase
    return proportional_cost(
        contribution.tokens_consumed,
        purchase.total_tokens,
        purchase.total_payment,
    )


def fair_share_totals(contributions: Sequence[Contribution]) -> Tuple[float, float]:
    """Unrounded tokens consumed and fair-share cost of a stream.

    Rates derived from these totals (cost per kWh, ratios) must use this
    instead of the rounded ``TrueCostSummary`` fields.

    Returns:
        Tuple of (total tokens consumed, total fair-share cost)
    """
    total_tokens = 0.0
    total_cost = 0.0
    for contribution in contributions:
        total_tokens += contribution.tokens_consumed
        total_cost += contribution_fair_share(contribution)
    return total_tokens, total_cost


@dataclass(frozen=True)
class TrueCostSummary:
    """Aggregate of contributions against their fair-share cost.

    ``overpayment`` is positive when more was paid than the fair share.
    """
    total_tokens_used: float
    total_amount_paid: float
    total_true_cost: float
    efficiency: float
    overpayment: float
    average_cost_per_kwh: float
    emergency_premium: float
    regular_cost_per_kwh: float
    emergency_cost_per_kwh: float


EMPTY_SUMMARY = TrueCostSummary(
    total_tokens_used=0.0,
    total_amount_paid=0.0,
    total_true_cost=0.0,
    efficiency=0.0,
    overpayment=0.0,
    average_cost_per_kwh=0.0,
    emergency_premium=0.0,
    regular_cost_per_kwh=0.0,
    emergency_cost_per_kwh=0.0,
)


def true_cost_summary(contributions: Sequence[Contribution]) -> TrueCostSummary:
    """Summarize what was paid against what should have been paid.

    Emergency premium is the difference between the per-token true cost of
    emergency and regular contributions, and 0.0 unless both groups are
    present.

    Args:
        contributions: Contributions with their owning purchases

    Returns:
        TrueCostSummary rounded to 2 decimal places
    """
    if not contributions:
        return EMPTY_SUMMARY

    total_tokens = 0.0
    total_paid = 0.0
    total_true_cost = 0.0
    regular_tokens = 0.0
    regular_cost = 0.0
    regular_count = 0
    emergency_tokens = 0.0
    emergency_cost = 0.0
    emergency_count = 0

    for contribution in contributions:
        fair_share = contribution_fair_share(contribution)
        total_tokens += contribution.tokens_consumed
        total_paid += contribution.contribution_amount
        total_true_cost += fair_share

        if contribution.purchase.is_emergency:
            emergency_tokens += contribution.tokens_consumed
            emergency_cost += fair_share
            emergency_count += 1
        else:
            regular_tokens += contribution.tokens_consumed
            regular_cost += fair_share
            regular_count += 1

    regular_rate = _safe_ratio(regular_cost, regular_tokens)
    emergency_rate = _safe_ratio(emergency_cost, emergency_tokens)
    premium = 0.0
    if regular_count and emergency_count:
        premium = emergency_rate - regular_rate

    return TrueCostSummary(
        total_tokens_used=round_money(total_tokens),
        total_amount_paid=round_money(total_paid),
        total_true_cost=round_money(total_true_cost),
        efficiency=round_money(_safe_ratio(total_true_cost, total_paid) * 100),
        overpayment=round_money(total_paid - total_true_cost),
        average_cost_per_kwh=round_money(_safe_ratio(total_true_cost, total_tokens)),
        emergency_premium=round_money(premium),
        regular_cost_per_kwh=round_money(regular_rate),
        emergency_cost_per_kwh=round_money(emergency_rate),
    )


def cost_per_kwh(purchase: Purchase, receipt: Optional[Receipt] = None) -> float:
    """Cost per kWh of a purchase.

    Prefers the official receipt (ZWG) when one with kWh is supplied and
    falls back to the USD purchase data otherwise.
    """
    if receipt is not None and receipt.kwh_purchased > 0:
        return receipt.total_amount_zwg / receipt.kwh_purchased
    return _safe_ratio(purchase.total_payment, purchase.total_tokens)


@dataclass(frozen=True)
class DualRate:
    """USD and ZWG cost per kWh for one purchase."""
    usd: float
    zwg: Optional[float]
    has_receipt_data: bool


def cost_per_kwh_dual(purchase: Purchase, receipt: Optional[Receipt] = None) -> DualRate:
    """Cost per kWh in both currencies, ZWG only when receipt data exists."""
    usd = _safe_ratio(purchase.total_payment, purchase.total_tokens)
    zwg = None
    if receipt is not None and receipt.kwh_purchased > 0:
        zwg = round_money(receipt.total_amount_zwg / receipt.kwh_purchased)
    return DualRate(usd=round_money(usd), zwg=zwg, has_receipt_data=zwg is not None)


@dataclass(frozen=True)
class OptimalContribution:
    """Suggested contribution for a given consumption."""
    base_contribution: float
    emergency_penalty: float
    total_optimal_contribution: float
    cost_per_kwh: float


def optimal_contribution(
    tokens_consumed: float,
    purchase: Purchase,
    include_emergency_penalty: bool = True,
    emergency_penalty_rate: float = 0.10,
) -> OptimalContribution:
    """Contribution that would exactly cover a consumption's fair share.

    Emergency purchases add ``emergency_penalty_rate`` of the base amount
    when ``include_emergency_penalty`` is set.
    """
    base = proportional_cost(tokens_consumed, purchase.total_tokens, purchase.total_payment)
    penalty = 0.0
    if purchase.is_emergency and include_emergency_penalty:
        penalty = base * emergency_penalty_rate

    return OptimalContribution(
        base_contribution=round_money(base),
        emergency_penalty=round_money(penalty),
        total_optimal_contribution=round_money(base + penalty),
        cost_per_kwh=round_money(cost_per_kwh(purchase)),
    )


@dataclass(frozen=True)
class UserCostSummary:
    """Cost summary for one user within a period."""
    user_id: str
    summary: TrueCostSummary
    contribution_count: int
    purchase_ids: List[str]


@dataclass(frozen=True)
class EmergencyImpact:
    """Effect of emergency purchases on what the account pays per kWh."""
    regular_purchases: int
    emergency_purchases: int
    additional_cost_due_to_emergency: float
    percentage_increase: float


@dataclass(frozen=True)
class PeriodCostAnalysis:
    """Per-user and overall costs for a period."""
    start: Optional[datetime]
    end: Optional[datetime]
    users: List[UserCostSummary]
    total: TrueCostSummary
    emergency_impact: EmergencyImpact


def _in_period(moment: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and moment < start:
        return False
    if end is not None and moment > end:
        return False
    return True


def _mean_rate(purchases: List[Purchase]) -> float:
    if not purchases:
        return 0.0
    return sum(cost_per_kwh(p) for p in purchases) / len(purchases)


def period_cost_analysis(
    purchases: Sequence[Purchase],
    contributions: Sequence[Contribution],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> PeriodCostAnalysis:
    """Break down costs per user for a period.

    Contributions are filtered on ``created_at`` and purchases on
    ``purchase_date``; both bounds are inclusive and optional.

    Args:
        purchases: All purchases to consider for the emergency impact
        contributions: Contributions with their owning purchases
        start: Optional start of the period
        end: Optional end of the period

    Returns:
        PeriodCostAnalysis with users ordered by ``user_id``
    """
    period_contributions = [c for c in contributions if _in_period(c.created_at, start, end)]
    period_purchases = [p for p in purchases if _in_period(p.purchase_date, start, end)]

    by_user: Dict[str, List[Contribution]] = {}
    for contribution in period_contributions:
        by_user.setdefault(contribution.user_id, []).append(contribution)

    users = []
    for user_id in sorted(by_user):
        user_contributions = by_user[user_id]
        purchase_ids = sorted({c.purchase_id for c in user_contributions})
        users.append(UserCostSummary(
            user_id=user_id,
            summary=true_cost_summary(user_contributions),
            contribution_count=len(user_contributions),
            purchase_ids=purchase_ids,
        ))

    regular = [p for p in period_purchases if not p.is_emergency]
    emergency = [p for p in period_purchases if p.is_emergency]
    regular_rate = _mean_rate(regular)
    emergency_rate = _mean_rate(emergency)

    emergency_tokens = sum(
        c.tokens_consumed for c in period_contributions if c.purchase.is_emergency
    )
    additional_cost = 0.0
    if emergency_tokens > 0 and regular_rate > 0:
        additional_cost = emergency_tokens * (emergency_rate - regular_rate)
    percentage_increase = 0.0
    if regular_rate > 0:
        percentage_increase = (emergency_rate - regular_rate) / regular_rate * 100

    logger.debug(
        "Period cost analysis over %d contributions for %d users",
        len(period_contributions), len(users),
    )

    return PeriodCostAnalysis(
        start=start,
        end=end,
        users=users,
        total=true_cost_summary(period_contributions),
        emergency_impact=EmergencyImpact(
            regular_purchases=len(regular),
            emergency_purchases=len(emergency),
            additional_cost_due_to_emergency=round_money(additional_cost),
            percentage_increase=round_money(percentage_increase),
        ),
    )


class EfficiencyRating(Enum):
    """How closely payments track the fair-share cost."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


@dataclass(frozen=True)
class CostAdvice:
    """Efficiency rating with advisories for a contributor."""
    rating: EfficiencyRating
    recommendations: List[str]
    potential_savings: float


def rate_cost_efficiency(summary: TrueCostSummary) -> CostAdvice:
    """Rate a cost summary and suggest how to bring payments in line.

    Ratings by efficiency: >= 95 excellent, >= 85 good, >= 70 fair,
    otherwise poor. Fair and poor ratings estimate savings as 50% and 80%
    of the absolute overpayment.
    """
    recommendations = []
    savings = 0.0

    if summary.efficiency >= 95:
        rating = EfficiencyRating.EXCELLENT
        recommendations.append("You are paying very close to your true usage cost.")
    elif summary.efficiency >= 85:
        rating = EfficiencyRating.GOOD
        recommendations.append("Your payments are reasonably aligned with your usage.")
    elif summary.efficiency >= 70:
        rating = EfficiencyRating.FAIR
        recommendations.append(
            "Consider adjusting your contribution amounts to better match your usage."
        )
        savings = abs(summary.overpayment) * 0.5
    else:
        rating = EfficiencyRating.POOR
        recommendations.append(
            "Your payments are significantly misaligned with your actual usage."
        )
        savings = abs(summary.overpayment) * 0.8

    if summary.emergency_premium > 0 and summary.regular_cost_per_kwh > 0:
        impact = summary.emergency_premium / summary.regular_cost_per_kwh * 100
        if impact > 20:
            recommendations.append(
                f"Emergency purchases cost {impact:.1f}% more per kWh. "
                "Plan ahead to avoid emergency rates."
            )

    margin = summary.total_true_cost * 0.1
    if summary.overpayment > margin:
        recommendations.append(
            f"You are overpaying by ${summary.overpayment:.2f}. "
            "Consider reducing your contribution amounts."
        )
    elif summary.overpayment < -margin:
        recommendations.append(
            f"You are underpaying by ${abs(summary.overpayment):.2f}. "
            "Consider increasing your contribution amounts."
        )

    return CostAdvice(
        rating=rating,
        recommendations=recommendations,
        potential_savings=round_money(savings),
    )
