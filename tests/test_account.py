"""
Tests for account summaries and the demo dataset.

Runs the engines against a temporary SQLite database.
"""

import os
import sqlite3
import tempfile
from datetime import datetime, timedelta

import pytest

from token_ledger.config.loader import LedgerConfig
from token_ledger.core.account import SYSTEM_SCOPE, analyze_receipts, summarize_account
from token_ledger.core.anomaly import AnomalySeverity
from token_ledger.core.balance import BalanceStatus, BalanceThresholds
from token_ledger.core.consumption import TrendDirection
from token_ledger.demo.seed_demo_data import DEMO_USERS, seed_demo_data
from token_ledger.storage.models import Contribution, MeterReading, Purchase, Receipt
from token_ledger.storage.repository import (
    LedgerRepository,
    initialize_schema,
    insert_contribution,
    insert_meter_reading,
    insert_purchase,
    insert_receipt,
)

NOW = datetime(2024, 2, 5)


@pytest.fixture
def db_path():
    """Temporary database with two purchases shared by alice and bob."""
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "ledger.db")
        initialize_schema(path)

        first = Purchase(id="p1", purchase_date=datetime(2024, 1, 1), total_tokens=1000.0, total_payment=100.0)
        second = Purchase(id="p2", purchase_date=datetime(2024, 2, 1), total_tokens=500.0, total_payment=50.0)
        for purchase in (first, second):
            insert_purchase(purchase, path)
            insert_receipt(Receipt(
                id=f"r-{purchase.id}",
                purchase=purchase,
                kwh_purchased=purchase.total_tokens,
                total_amount_zwg=purchase.total_tokens * 2.7,
                transaction_datetime=purchase.purchase_date,
            ), path)

        # (id, purchase, user, reading, consumed, paid, hours after purchase)
        rows = [
            ("c1", first, "alice", 1300.0, 300.0, 40.0, 1),
            ("c2", first, "bob", 1500.0, 200.0, 20.0, 2),
            ("c3", second, "alice", 1600.0, 200.0, 25.0, 1),
            ("c4", second, "bob", 1800.0, 300.0, 25.0, 2),
        ]
        for cid, purchase, user, reading, consumed, paid, hours in rows:
            insert_contribution(Contribution(
                id=cid,
                purchase=purchase,
                user_id=user,
                meter_reading=reading,
                tokens_consumed=consumed,
                contribution_amount=paid,
                created_at=purchase.purchase_date + timedelta(hours=hours),
            ), path)

        yield path


class TestSummarizeAccount:
    """Test system and user account summaries."""

    def test_system_summary_without_reading(self, db_path):
        """Verify the system balance and a zero projection without meter readings."""
        summary = summarize_account(LedgerRepository(db_path), now=NOW)

        assert summary.scope == SYSTEM_SCOPE
        assert summary.cost_summary.total_tokens_used == 1000
        assert summary.cost_summary.total_true_cost == 100
        assert summary.cost_summary.total_amount_paid == 110
        # first purchase fully credited (40 + 20), then 5 and -5
        assert summary.running_balance == 60
        assert summary.projection.tokens_consumed_since_last_contribution == 0
        assert summary.projection.anticipated_payment == 60
        assert summary.projection.anticipated_others_payment == 0
        assert summary.projection.status == BalanceStatus.HEALTHY

    def test_system_projection(self, db_path):
        """Verify consumption since the latest contribution is projected."""
        insert_meter_reading(MeterReading(reading=1900.0, reading_date=datetime(2024, 2, 4)), db_path)
        projection = summarize_account(LedgerRepository(db_path), now=NOW).projection

        assert projection.tokens_consumed_since_last_contribution == 100
        assert projection.historical_cost_per_kwh == pytest.approx(0.1)
        assert projection.estimated_cost_since_last_contribution == -10
        assert projection.anticipated_payment == 50
        assert projection.anticipated_token_purchase == 50

    def test_user_summary(self, db_path):
        """Verify a user scope uses the global first purchase and the others' share."""
        insert_meter_reading(MeterReading(reading=1900.0, reading_date=datetime(2024, 2, 4)), db_path)
        summary = summarize_account(LedgerRepository(db_path), user_id="alice", now=NOW)

        assert summary.scope == "alice"
        assert summary.cost_summary.total_true_cost == 50
        assert summary.cost_summary.overpayment == 15
        assert summary.running_balance == 45

        projection = summary.projection
        # baseline is alice's last reading
        assert projection.tokens_consumed_since_last_contribution == 300
        assert projection.estimated_cost_since_last_contribution == -30
        assert projection.anticipated_payment == 15
        # purchases alice joined cost 150, her share is 50: others cover 2x
        assert projection.anticipated_others_payment == -60
        assert projection.anticipated_token_purchase == -45

    def test_user_consumption_trend(self, db_path):
        """Verify the consumption trend only covers the user's contributions."""
        consumption = summarize_account(LedgerRepository(db_path), user_id="bob", now=NOW).consumption

        assert consumption.last_week_consumption == 300
        assert consumption.previous_week_consumption == 0
        assert consumption.trend == TrendDirection.INCREASING

    def test_unknown_user(self, db_path):
        """Verify a user without contributions has an empty summary."""
        summary = summarize_account(LedgerRepository(db_path), user_id="carol", now=NOW)
        assert summary.running_balance == 0
        assert summary.cost_summary.total_true_cost == 0
        assert summary.projection.anticipated_others_payment == 0

    def test_status_uses_config(self, db_path):
        """Verify balance thresholds come from the configuration."""
        config = LedgerConfig(balance=BalanceThresholds(warning_below=100.0, critical_below=50.0))
        summary = summarize_account(LedgerRepository(db_path), user_id="bob", config=config, now=NOW)
        assert summary.running_balance == 15
        assert summary.projection.status == BalanceStatus.CRITICAL

    def test_empty_database(self):
        """Verify an empty ledger summarises to zeros."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, "empty.db")
            initialize_schema(path)
            summary = summarize_account(LedgerRepository(path), now=NOW)

            assert summary.running_balance == 0
            assert summary.projection.anticipated_payment == 0
            assert summary.consumption.trend == TrendDirection.STABLE


class TestAwkwardPurchaseRate:
    """Test projections when the purchase rate does not divide evenly."""

    def setup_method(self):
        """Set up a single purchase of 3 tokens for $1."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "ledger.db")
        initialize_schema(self.db_path)

        purchase = Purchase(id="p1", purchase_date=datetime(2024, 1, 1), total_tokens=3.0, total_payment=1.0)
        insert_purchase(purchase, self.db_path)
        insert_contribution(Contribution(
            id="c1",
            purchase=purchase,
            user_id="alice",
            meter_reading=100.0,
            tokens_consumed=1.0,
            contribution_amount=0.5,
            created_at=datetime(2024, 1, 1, 1),
        ), self.db_path)
        insert_meter_reading(MeterReading(reading=1100.0, reading_date=datetime(2024, 1, 20)), self.db_path)

    def teardown_method(self):
        """Clean up test environment."""
        self.temp_dir.cleanup()

    def test_system_rate_is_not_rounded(self):
        """Verify the historical rate is the exact fair-share cost per token."""
        summary = summarize_account(LedgerRepository(self.db_path), now=NOW)
        projection = summary.projection

        # the summary itself is still rounded for display
        assert summary.cost_summary.total_true_cost == pytest.approx(0.33)
        assert projection.tokens_consumed_since_last_contribution == 1000
        assert projection.historical_cost_per_kwh == pytest.approx(1 / 3)
        assert projection.estimated_cost_since_last_contribution == pytest.approx(-333.33)
        assert projection.anticipated_payment == pytest.approx(-332.83)

    def test_user_others_ratio_is_not_rounded(self):
        """Verify the others' share uses the exact fair-share cost."""
        projection = summarize_account(LedgerRepository(self.db_path), user_id="alice", now=NOW).projection

        # alice's fair share is a third of the purchase, others cover 2x
        assert projection.anticipated_others_payment == pytest.approx(-666.67)
        assert projection.anticipated_token_purchase == pytest.approx(-999.5)


class TestAnalyzeReceipts:
    """Test receipt analysis through the repository."""

    def test_system_receipts(self, db_path):
        """Verify every receipt is analysed."""
        result = analyze_receipts(LedgerRepository(db_path), now=NOW)
        assert result.summary.total_receipts == 2
        assert result.summary.avg_zwg_per_kwh == pytest.approx(2.7)

    def test_user_receipts(self, db_path):
        """Verify the user filter follows contributions."""
        result = analyze_receipts(LedgerRepository(db_path), user_id="carol", now=NOW)
        assert result.summary.total_receipts == 0
        assert len(result.recommendations) == 1


class TestDemoData:
    """Test the demo dataset."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "demo.db")
        self.now = datetime(2024, 12, 15)

    def teardown_method(self):
        """Clean up test environment."""
        self.temp_dir.cleanup()

    def test_seed_counts(self):
        """Verify a year of purchases shared by both demo users is inserted."""
        assert seed_demo_data(self.db_path, now=self.now) == 13

        repository = LedgerRepository(self.db_path)
        assert len(repository.list_purchases()) == 13
        assert len(repository.list_receipts()) == 13
        assert len(repository.list_contributions()) == 13 * len(DEMO_USERS)
        assert repository.latest_meter_reading() is not None

    def test_seed_twice_fails(self):
        """Verify reseeding hits the primary key constraint and changes nothing."""
        seed_demo_data(self.db_path, now=self.now)
        with pytest.raises(sqlite3.IntegrityError):
            seed_demo_data(self.db_path, now=self.now + timedelta(days=1))

        repository = LedgerRepository(self.db_path)
        assert len(repository.list_purchases()) == 13
        assert len(repository.list_contributions()) == 13 * len(DEMO_USERS)
        assert repository.latest_meter_reading().reading_date == self.now

    def test_demo_anomalies(self):
        """Verify the emergency purchase and the price spike stand out."""
        seed_demo_data(self.db_path, now=self.now)
        result = analyze_receipts(LedgerRepository(self.db_path), now=self.now)

        flagged = {a.receipt_id: a.severity for a in result.anomalies}
        assert flagged == {
            "demo-r06": AnomalySeverity.MEDIUM,
            "demo-r09": AnomalySeverity.HIGH,
        }
        assert result.seasonal

    def test_demo_balance(self):
        """Verify the demo projection picks up the final meter reading."""
        seed_demo_data(self.db_path, now=self.now)
        summary = summarize_account(LedgerRepository(self.db_path), now=self.now)

        assert summary.projection.tokens_consumed_since_last_contribution == pytest.approx(42.0)
        assert summary.projection.estimated_cost_since_last_contribution < 0
