# token_ledger/demo/seed_demo_data.py

from datetime import datetime, timedelta
from typing import Optional

from token_ledger.storage.db import DEFAULT_DB_PATH
from token_ledger.storage.models import Contribution, MeterReading, Purchase, Receipt
from token_ledger.storage.repository import initialize_schema, insert_ledger_records

DEMO_USERS = ("alice", "bob")

# (tokens, usd, zwg, emergency) per monthly purchase; month 9 is a price spike
_PURCHASES = [
    (500, 50.0, 1350.0, False),
    (520, 52.0, 1400.4, False),
    (480, 48.0, 1300.8, False),
    (500, 50.0, 1362.5, False),
    (510, 51.0, 1397.4, False),
    (300, 45.0, 1215.0, True),
    (500, 50.0, 1375.0, False),
    (505, 50.5, 1393.8, False),
    (495, 49.5, 2079.0, False),
    (500, 50.0, 1390.0, False),
    (510, 51.0, 1423.0, False),
    (500, 50.0, 1400.0, False),
    (490, 49.0, 1381.8, False),
]


def seed_demo_data(db_path: str = DEFAULT_DB_PATH, now: Optional[datetime] = None) -> int:
    """Insert a year of monthly purchases shared by two users.

    All records are written in one transaction, so a failure leaves the
    database as it was.

    Args:
        db_path: Path to SQLite database file
        now: Anchor for the most recent purchase (defaults to now)

    Returns:
        Number of purchases inserted
    """
    now = now or datetime.now()
    initialize_schema(db_path)

    purchases = []
    contributions = []
    receipts = []
    reading = 1000.0
    count = len(_PURCHASES)
    for index, (tokens, usd, zwg, emergency) in enumerate(_PURCHASES):
        purchase_date = now - timedelta(days=30 * (count - 1 - index))
        purchase = Purchase(
            id=f"demo-p{index + 1:02d}",
            purchase_date=purchase_date,
            total_tokens=tokens,
            total_payment=usd,
            is_emergency=emergency,
        )
        purchases.append(purchase)
        receipts.append(Receipt(
            id=f"demo-r{index + 1:02d}",
            purchase=purchase,
            kwh_purchased=tokens,
            total_amount_zwg=zwg,
            transaction_datetime=purchase_date,
        ))

        # Each user reports roughly 40% and 35% of the previous purchase
        for offset, (user_id, share, paid) in enumerate(
            zip(DEMO_USERS, (0.40, 0.35), (usd * 0.5, usd * 0.4))
        ):
            consumed = round(tokens * share, 1)
            reading += consumed
            contributions.append(Contribution(
                id=f"demo-c{index + 1:02d}-{user_id}",
                purchase=purchase,
                user_id=user_id,
                meter_reading=reading,
                tokens_consumed=consumed,
                contribution_amount=round(paid, 2),
                created_at=purchase_date + timedelta(hours=offset + 1),
            ))

    insert_ledger_records(
        purchases=purchases,
        contributions=contributions,
        receipts=receipts,
        meter_readings=[MeterReading(reading=reading + 42.0, reading_date=now)],
        db_path=db_path,
    )
    return count
