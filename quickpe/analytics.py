"""
Analytics Module

Per-user spending and income summaries computed from transaction legs, with a
small in-process TTL cache that is cleared whenever the user's balance changes.
"""

import time
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .config import WalletConfig, get_config
from .currency import Money
from .errors import NotFoundError, ValidationError
from .logging_config import get_logger
from .transactions import Transaction, TransactionStatus, TransferService
from .users import UserManager


PERIOD_DAYS = {
    "week": 7,
    "month": 30,
    "quarter": 90,
    "year": 365,
    "all": None,
}

TREND_MONTHS = 6


class TTLCache:
    """Bounded cache whose entries expire after a fixed number of seconds"""

    def __init__(self, ttl_seconds: int = 300, max_size: int = 100):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._entries: "OrderedDict[Tuple, Tuple[float, Any]]" = OrderedDict()

    def get(self, key: Tuple) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if time.monotonic() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def set(self, key: Tuple, value: Any) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (time.monotonic(), value)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def delete_matching(self, user_id: str) -> int:
        keys = [key for key in self._entries if key[0] == user_id]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _month_start(moment: datetime, months_back: int = 0) -> datetime:
    index = moment.year * 12 + (moment.month - 1) - months_back
    year, month = divmod(index, 12)
    month += 1
    return moment.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)


def _percent_change(current: Decimal, previous: Decimal) -> Optional[str]:
    if previous == 0:
        return None
    change = (current - previous) / previous * Decimal("100")
    return str(change.quantize(Decimal("0.01")))


class AnalyticsService:
    """
    Computes per-user financial summaries
    """

    def __init__(self, transfer_service: TransferService, user_manager: UserManager,
                 config: Optional[WalletConfig] = None):
        self.transfer_service = transfer_service
        self.user_manager = user_manager
        self.config = config or get_config()
        self.currency = transfer_service.currency
        self.cache = TTLCache(
            ttl_seconds=self.config.analytics_cache_ttl_seconds,
            max_size=self.config.analytics_cache_max_size
        )
        self.logger = get_logger("quickpe.analytics")

        transfer_service.add_balance_listener(self.clear_cache)

    def clear_cache(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self.cache.clear()
        else:
            removed = self.cache.delete_matching(user_id)
            if removed:
                self.logger.debug(f"Cleared {removed} analytics cache entries for {user_id}")

    def get_summary(self, user_id: str, period: str = "month") -> Dict[str, Any]:
        """
        Income, spending, category breakdown and monthly trend for a user

        Args:
            user_id: User to summarize
            period: week, month, quarter, year or all

        Returns:
            Summary dictionary; amounts are Decimal strings
        """
        if period not in PERIOD_DAYS:
            raise ValidationError(f"Invalid period: {period}", code="INVALID_PERIOD")

        cached = self.cache.get((user_id, period))
        if cached is not None:
            return cached

        user = self.user_manager.get_user(user_id)
        if not user:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")

        now = datetime.now(timezone.utc)
        legs = [
            t for t in self.transfer_service.list_user_transactions(user_id)
            if t.status == TransactionStatus.COMPLETED
        ]

        days = PERIOD_DAYS[period]
        if days is None:
            current = legs
            previous = None
        else:
            period_start = now - timedelta(days=days)
            previous_start = period_start - timedelta(days=days)
            current = [t for t in legs if t.created_at >= period_start]
            previous = [t for t in legs if previous_start <= t.created_at < period_start]

        totals = self._totals(current)
        summary = {
            "period": period,
            "generated_at": now.isoformat(),
            "current_balance": str(user.balance.amount),
            "currency": user.balance.currency.code,
            "total_income": str(totals["income"].amount),
            "total_spending": str(totals["spending"].amount),
            "net_amount": str((totals["income"] - totals["spending"]).amount),
            "transaction_count": len(current),
            "average_transaction": str(self._average(current).amount),
            "categories": self._category_breakdown(current),
            "monthly_trend": self._monthly_trend(legs, now),
            "comparison": None
        }

        if previous is not None:
            previous_totals = self._totals(previous)
            summary["comparison"] = {
                "previous_income": str(previous_totals["income"].amount),
                "previous_spending": str(previous_totals["spending"].amount),
                "income_change_percent": _percent_change(
                    totals["income"].amount, previous_totals["income"].amount
                ),
                "spending_change_percent": _percent_change(
                    totals["spending"].amount, previous_totals["spending"].amount
                )
            }

        self.cache.set((user_id, period), summary)
        return summary

    def _totals(self, legs: List[Transaction]) -> Dict[str, Money]:
        income = Money.zero(self.currency)
        spending = Money.zero(self.currency)
        for t in legs:
            if t.is_credit:
                income = income + t.amount
            else:
                spending = spending + t.amount
        return {"income": income, "spending": spending}

    def _average(self, legs: List[Transaction]) -> Money:
        if not legs:
            return Money.zero(self.currency)
        total = sum((t.amount.amount for t in legs), Decimal("0"))
        return Money(total / len(legs), self.currency)

    def _category_breakdown(self, legs: List[Transaction]) -> List[Dict[str, Any]]:
        buckets: Dict[Tuple[str, str], Dict[str, Any]] = {}
        for t in legs:
            key = (t.category.value, t.transaction_type.value)
            bucket = buckets.setdefault(key, {
                "category": t.category.value,
                "type": t.transaction_type.value,
                "count": 0,
                "total": Decimal("0")
            })
            bucket["count"] += 1
            bucket["total"] += t.amount.amount

        rows = sorted(buckets.values(), key=lambda b: b["total"], reverse=True)
        for row in rows:
            row["total"] = str(Money(row["total"], self.currency).amount)
        return rows

    def _monthly_trend(self, legs: List[Transaction], now: datetime) -> List[Dict[str, Any]]:
        trend = []
        for months_back in range(TREND_MONTHS - 1, -1, -1):
            start = _month_start(now, months_back)
            end = _month_start(now, months_back - 1) if months_back > 0 else None
            in_month = [
                t for t in legs
                if t.created_at >= start and (end is None or t.created_at < end)
            ]
            totals = self._totals(in_month)
            trend.append({
                "month": start.strftime("%Y-%m"),
                "income": str(totals["income"].amount),
                "spending": str(totals["spending"].amount),
                "count": len(in_month)
            })
        return trend
