"""
Tests for analytics summaries and the TTL cache
"""

import pytest
from decimal import Decimal
from unittest.mock import patch

from quickpe.analytics import AnalyticsService, TTLCache
from quickpe.audit import AuditTrail
from quickpe.config import WalletConfig
from quickpe.currency import Currency, Money
from quickpe.errors import NotFoundError, ValidationError
from quickpe.notifications import NotificationService
from quickpe.storage import InMemoryStorage
from quickpe.transactions import TransferService
from quickpe.users import UserManager


class TestTTLCache:

    def test_entries_expire(self):
        cache = TTLCache(ttl_seconds=300, max_size=10)
        with patch("quickpe.analytics.time.monotonic", return_value=1000.0):
            cache.set(("u1", "month"), {"x": 1})
        with patch("quickpe.analytics.time.monotonic", return_value=1200.0):
            assert cache.get(("u1", "month")) == {"x": 1}
        with patch("quickpe.analytics.time.monotonic", return_value=1301.0):
            assert cache.get(("u1", "month")) is None

    def test_oldest_entry_evicted(self):
        cache = TTLCache(ttl_seconds=300, max_size=2)
        cache.set(("u1", "week"), 1)
        cache.set(("u2", "week"), 2)
        cache.set(("u3", "week"), 3)

        assert len(cache) == 2
        assert cache.get(("u1", "week")) is None
        assert cache.get(("u3", "week")) == 3

    def test_delete_matching_user(self):
        cache = TTLCache()
        cache.set(("u1", "week"), 1)
        cache.set(("u1", "month"), 2)
        cache.set(("u2", "week"), 3)

        assert cache.delete_matching("u1") == 2
        assert len(cache) == 1


class TestAnalyticsService:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.config = WalletConfig(database_url="memory://")
        self.user_manager = UserManager(self.storage, self.audit_trail, self.config)
        self.notification_service = NotificationService(self.storage, providers=[])
        self.transfer_service = TransferService(
            self.storage, self.audit_trail, self.user_manager,
            self.notification_service, self.config
        )
        self.analytics = AnalyticsService(self.transfer_service, self.user_manager, self.config)

        self.alice = self.user_manager.create_user(
            "Alice", "Sharma", "alice@example.com", "secret123",
            initial_balance=Money(Decimal("1000"), Currency.INR)
        )
        self.bob = self.user_manager.create_user("Bob", "Rao", "bob@example.com", "secret123")

        self.transfer_service.transfer(self.alice.id, "300", recipient_id=self.bob.id)
        self.transfer_service.transfer(self.alice.id, "100", recipient_id=self.bob.id)
        self.transfer_service.add_money(self.alice.id, "500")

    def test_summary_totals(self):
        summary = self.analytics.get_summary(self.alice.id, "month")

        assert summary["total_income"] == "500.00"
        assert summary["total_spending"] == "400.00"
        assert summary["net_amount"] == "100.00"
        assert summary["transaction_count"] == 3
        assert summary["average_transaction"] == "300.00"
        assert summary["current_balance"] == "1100.00"

    def test_category_breakdown(self):
        summary = self.analytics.get_summary(self.alice.id, "month")
        rows = {(r["category"], r["type"]): r for r in summary["categories"]}

        assert rows[("Transfer", "debit")]["total"] == "400.00"
        assert rows[("Transfer", "debit")]["count"] == 2
        assert rows[("Deposit", "credit")]["total"] == "500.00"

    def test_monthly_trend_has_six_months(self):
        trend = self.analytics.get_summary(self.alice.id, "year")["monthly_trend"]
        assert len(trend) == 6
        assert trend[-1]["spending"] == "400.00"
        months = [row["month"] for row in trend]
        assert months == sorted(months)

    def test_previous_period_comparison(self):
        summary = self.analytics.get_summary(self.alice.id, "week")
        assert summary["comparison"]["previous_spending"] == "0.00"
        assert summary["comparison"]["spending_change_percent"] is None

        assert self.analytics.get_summary(self.alice.id, "all")["comparison"] is None

    def test_cache_cleared_on_balance_change(self):
        first = self.analytics.get_summary(self.alice.id, "month")
        assert self.analytics.get_summary(self.alice.id, "month") is first

        self.transfer_service.transfer(self.alice.id, "50", recipient_id=self.bob.id)

        refreshed = self.analytics.get_summary(self.alice.id, "month")
        assert refreshed is not first
        assert refreshed["total_spending"] == "450.00"

    def test_invalid_period_and_user(self):
        with pytest.raises(ValidationError):
            self.analytics.get_summary(self.alice.id, "decade")
        with pytest.raises(NotFoundError):
            self.analytics.get_summary("missing", "month")
