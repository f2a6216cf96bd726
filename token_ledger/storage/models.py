"""
Data models for storage layer.

Defines the records supplied by the repository to the ledger core.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Purchase:
    """Immutable record of a single token purchase.

    Amounts are in USD. Zero quantities are tolerated here so that the
    division guards of the core stay reachable; the write path is expected
    to reject them.
    """
    id: str
    purchase_date: datetime
    total_tokens: float
    total_payment: float
    is_emergency: bool = False

    def __post_init__(self):
        """Validate quantities are not negative."""
        if self.total_tokens < 0:
            raise ValueError("total_tokens cannot be negative")
        if self.total_payment < 0:
            raise ValueError("total_payment cannot be negative")


@dataclass(frozen=True)
class Contribution:
    """One user's payment and reported consumption against a purchase.

    ``meter_reading`` is the cumulative reading at the time the
    contribution was recorded.
    """
    id: str
    purchase: Purchase
    user_id: str
    meter_reading: float
    tokens_consumed: float
    contribution_amount: float
    created_at: datetime

    def __post_init__(self):
        """Validate quantities are not negative."""
        if self.tokens_consumed < 0:
            raise ValueError("tokens_consumed cannot be negative")
        if self.contribution_amount < 0:
            raise ValueError("contribution_amount cannot be negative")

    @property
    def purchase_id(self) -> str:
        """Identifier of the owning purchase."""
        return self.purchase.id


@dataclass(frozen=True)
class Receipt:
    """Official ZWG receipt for a purchase.

    All ``*_zwg`` amounts are in ZWG; the owning purchase carries the USD
    payment.
    """
    id: str
    purchase: Purchase
    kwh_purchased: float
    total_amount_zwg: float
    transaction_datetime: datetime
    energy_cost_zwg: float = 0.0
    debt_zwg: float = 0.0
    rea_zwg: float = 0.0  # Regulatory Energy Authority levy
    vat_zwg: float = 0.0

    def __post_init__(self):
        """Validate quantities are not negative."""
        if self.kwh_purchased < 0:
            raise ValueError("kwh_purchased cannot be negative")
        if self.total_amount_zwg < 0:
            raise ValueError("total_amount_zwg cannot be negative")

    @property
    def purchase_id(self) -> str:
        """Identifier of the owning purchase."""
        return self.purchase.id


@dataclass(frozen=True)
class MeterReading:
    """A cumulative meter reading taken at a point in time."""
    reading: float
    reading_date: datetime
    user_id: Optional[str] = None
