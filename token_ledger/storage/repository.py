"""
Repository pattern for data access.

Supplies purchases, contributions, receipts and meter readings to the ledger
core. Records are read-only from the core's point of view.
"""

import sqlite3
from datetime import datetime
from typing import List, Optional, Sequence

from token_ledger.logging_setup import get_logger
from .db import DEFAULT_DB_PATH, get_connection
from .models import Contribution, MeterReading, Purchase, Receipt

logger = get_logger(__name__)

_PURCHASE_COLUMNS = "p.id, p.purchase_date, p.total_tokens, p.total_payment, p.is_emergency"

_CONTRIBUTION_SELECT = f"""
    SELECT c.id, c.user_id, c.meter_reading, c.tokens_consumed,
           c.contribution_amount, c.created_at, {_PURCHASE_COLUMNS}
    FROM contribution c
    JOIN purchase p ON p.id = c.purchase_id
"""

_RECEIPT_SELECT = f"""
    SELECT r.id, r.kwh_purchased, r.total_amount_zwg, r.transaction_datetime,
           r.energy_cost_zwg, r.debt_zwg, r.rea_zwg, r.vat_zwg, {_PURCHASE_COLUMNS}
    FROM receipt r
    JOIN purchase p ON p.id = r.purchase_id
"""


def _purchase_from_row(row: Sequence) -> Purchase:
    return Purchase(
        id=row[0],
        purchase_date=datetime.fromisoformat(row[1]),
        total_tokens=row[2],
        total_payment=row[3],
        is_emergency=bool(row[4]),
    )


def _contribution_from_row(row: Sequence) -> Contribution:
    return Contribution(
        id=row[0],
        purchase=_purchase_from_row(row[6:11]),
        user_id=row[1],
        meter_reading=row[2],
        tokens_consumed=row[3],
        contribution_amount=row[4],
        created_at=datetime.fromisoformat(row[5]),
    )


def _receipt_from_row(row: Sequence) -> Receipt:
    return Receipt(
        id=row[0],
        purchase=_purchase_from_row(row[8:13]),
        kwh_purchased=row[1],
        total_amount_zwg=row[2],
        transaction_datetime=datetime.fromisoformat(row[3]),
        energy_cost_zwg=row[4],
        debt_zwg=row[5],
        rea_zwg=row[6],
        vat_zwg=row[7],
    )


class LedgerRepository:
    """Repository for reading ledger records.

    Every method opens its own connection and closes it before returning,
    so instances can be shared freely.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def list_purchases(self) -> List[Purchase]:
        """All purchases ordered by purchase date (oldest first)."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_PURCHASE_COLUMNS} FROM purchase p ORDER BY p.purchase_date, p.id"
            )
            return [_purchase_from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def list_contributions(self, user_id: Optional[str] = None) -> List[Contribution]:
        """Contributions with their purchases, oldest purchase first.

        Args:
            user_id: Optional filter for a single user; all users when None

        Returns:
            List of contributions ordered by purchase date, then creation time
        """
        conn = get_connection(self.db_path)
        try:
            query = _CONTRIBUTION_SELECT
            params = []
            if user_id is not None:
                query += " WHERE c.user_id = ?"
                params.append(user_id)
            query += " ORDER BY p.purchase_date, c.created_at, c.id"

            cursor = conn.execute(query, params)
            contributions = [_contribution_from_row(row) for row in cursor.fetchall()]
            logger.debug("Loaded %d contributions (user=%s)", len(contributions), user_id)
            return contributions
        finally:
            conn.close()

    def earliest_purchase(self) -> Optional[Purchase]:
        """The earliest purchase in the whole dataset, if any."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_PURCHASE_COLUMNS} FROM purchase p "
                "ORDER BY p.purchase_date, p.id LIMIT 1"
            )
            row = cursor.fetchone()
            return _purchase_from_row(row) if row else None
        finally:
            conn.close()

    def latest_meter_reading(self) -> Optional[MeterReading]:
        """The most recent meter reading across the system, if any."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT reading, reading_date, user_id FROM meter_reading "
                "ORDER BY reading_date DESC, id DESC LIMIT 1"
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return MeterReading(
                reading=row[0],
                reading_date=datetime.fromisoformat(row[1]),
                user_id=row[2],
            )
        finally:
            conn.close()

    def latest_contribution(self, user_id: Optional[str] = None) -> Optional[Contribution]:
        """The most recently recorded contribution, optionally for one user."""
        conn = get_connection(self.db_path)
        try:
            query = _CONTRIBUTION_SELECT
            params = []
            if user_id is not None:
                query += " WHERE c.user_id = ?"
                params.append(user_id)
            query += " ORDER BY c.created_at DESC, c.id DESC LIMIT 1"

            row = conn.execute(query, params).fetchone()
            return _contribution_from_row(row) if row else None
        finally:
            conn.close()

    def list_receipts(self, user_id: Optional[str] = None) -> List[Receipt]:
        """Receipts with their purchases, oldest purchase first.

        Args:
            user_id: Optional filter; only receipts of purchases the user
                contributed to

        Returns:
            List of receipts ordered by purchase date
        """
        conn = get_connection(self.db_path)
        try:
            query = _RECEIPT_SELECT
            params = []
            if user_id is not None:
                query += """
                    WHERE EXISTS (
                        SELECT 1 FROM contribution c
                        WHERE c.purchase_id = r.purchase_id AND c.user_id = ?
                    )
                """
                params.append(user_id)
            query += " ORDER BY p.purchase_date, r.id"

            cursor = conn.execute(query, params)
            return [_receipt_from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()


# Global repository instance
_default_repository: Optional[LedgerRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH) -> LedgerRepository:
    """Get a shared repository instance.

    The instance is replaced when a different ``db_path`` is requested.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of LedgerRepository
    """
    global _default_repository
    if _default_repository is None or _default_repository.db_path != db_path:
        _default_repository = LedgerRepository(db_path)
    return _default_repository


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS purchase (
                id TEXT PRIMARY KEY,
                purchase_date TEXT NOT NULL,
                total_tokens REAL NOT NULL,
                total_payment REAL NOT NULL,
                is_emergency INTEGER NOT NULL DEFAULT 0
            );
            CREATE TABLE IF NOT EXISTS contribution (
                id TEXT PRIMARY KEY,
                purchase_id TEXT NOT NULL REFERENCES purchase(id) ON DELETE CASCADE,
                user_id TEXT NOT NULL,
                meter_reading REAL NOT NULL,
                tokens_consumed REAL NOT NULL,
                contribution_amount REAL NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS receipt (
                id TEXT PRIMARY KEY,
                purchase_id TEXT NOT NULL UNIQUE REFERENCES purchase(id) ON DELETE CASCADE,
                kwh_purchased REAL NOT NULL,
                total_amount_zwg REAL NOT NULL,
                transaction_datetime TEXT NOT NULL,
                energy_cost_zwg REAL NOT NULL DEFAULT 0,
                debt_zwg REAL NOT NULL DEFAULT 0,
                rea_zwg REAL NOT NULL DEFAULT 0,
                vat_zwg REAL NOT NULL DEFAULT 0
            );
            CREATE TABLE IF NOT EXISTS meter_reading (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                reading REAL NOT NULL,
                reading_date TEXT NOT NULL,
                user_id TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_contribution_user ON contribution(user_id);
            CREATE INDEX IF NOT EXISTS idx_purchase_date ON purchase(purchase_date);
        """)
        conn.commit()
    finally:
        conn.close()


def _write_purchase(conn: sqlite3.Connection, purchase: Purchase) -> None:
    conn.execute("""
        INSERT INTO purchase (id, purchase_date, total_tokens, total_payment, is_emergency)
        VALUES (?, ?, ?, ?, ?)
    """, (
        purchase.id,
        purchase.purchase_date.isoformat(),
        purchase.total_tokens,
        purchase.total_payment,
        int(purchase.is_emergency),
    ))


def _write_contribution(conn: sqlite3.Connection, contribution: Contribution) -> None:
    conn.execute("""
        INSERT INTO contribution
        (id, purchase_id, user_id, meter_reading, tokens_consumed,
         contribution_amount, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """, (
        contribution.id,
        contribution.purchase_id,
        contribution.user_id,
        contribution.meter_reading,
        contribution.tokens_consumed,
        contribution.contribution_amount,
        contribution.created_at.isoformat(),
    ))


def _write_receipt(conn: sqlite3.Connection, receipt: Receipt) -> None:
    conn.execute("""
        INSERT INTO receipt
        (id, purchase_id, kwh_purchased, total_amount_zwg, transaction_datetime,
         energy_cost_zwg, debt_zwg, rea_zwg, vat_zwg)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        receipt.id,
        receipt.purchase_id,
        receipt.kwh_purchased,
        receipt.total_amount_zwg,
        receipt.transaction_datetime.isoformat(),
        receipt.energy_cost_zwg,
        receipt.debt_zwg,
        receipt.rea_zwg,
        receipt.vat_zwg,
    ))


def _write_meter_reading(conn: sqlite3.Connection, reading: MeterReading) -> None:
    conn.execute(
        "INSERT INTO meter_reading (reading, reading_date, user_id) VALUES (?, ?, ?)",
        (reading.reading, reading.reading_date.isoformat(), reading.user_id),
    )


def insert_purchase(purchase: Purchase, db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert a single purchase."""
    conn = get_connection(db_path)
    try:
        _write_purchase(conn, purchase)
        conn.commit()
    finally:
        conn.close()


def insert_contribution(contribution: Contribution, db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert a single contribution. Its purchase must already exist."""
    conn = get_connection(db_path)
    try:
        _write_contribution(conn, contribution)
        conn.commit()
    finally:
        conn.close()


def insert_receipt(receipt: Receipt, db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert a single receipt. Its purchase must already exist."""
    conn = get_connection(db_path)
    try:
        _write_receipt(conn, receipt)
        conn.commit()
    finally:
        conn.close()


def insert_meter_reading(reading: MeterReading, db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert a single meter reading."""
    conn = get_connection(db_path)
    try:
        _write_meter_reading(conn, reading)
        conn.commit()
    finally:
        conn.close()


def insert_ledger_records(
    purchases: Sequence[Purchase] = (),
    contributions: Sequence[Contribution] = (),
    receipts: Sequence[Receipt] = (),
    meter_readings: Sequence[MeterReading] = (),
    db_path: str = DEFAULT_DB_PATH,
) -> None:
    """Insert a batch of ledger records atomically.

    Everything is written in a single transaction: either all records are
    stored or, on any error, none are. Purchases are written first so the
    other records can reference them.

    Args:
        purchases: Purchases to insert
        contributions: Contributions against inserted or existing purchases
        receipts: Receipts against inserted or existing purchases
        meter_readings: Meter readings to insert
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        for purchase in purchases:
            _write_purchase(conn, purchase)
        for contribution in contributions:
            _write_contribution(conn, contribution)
        for receipt in receipts:
            _write_receipt(conn, receipt)
        for reading in meter_readings:
            _write_meter_reading(conn, reading)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

    logger.debug(
        "Inserted %d purchases, %d contributions, %d receipts, %d readings",
        len(purchases), len(contributions), len(receipts), len(meter_readings),
    )
