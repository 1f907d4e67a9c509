"""
Transactions Module

Moves money between wallets. A transfer debits the sender, credits the
recipient and writes one Transaction leg per side, all inside a single storage
transaction: either every record changes or none does. Notifications, audit
events and cache invalidation happen after commit.
"""

import secrets
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .config import WalletConfig, get_config
from .currency import Currency, Money, currency_from_code, parse_amount
from .errors import (
    ConflictError, InactiveAccountError, InsufficientFundsError,
    LimitExceededError, NotFoundError, ValidationError
)
from .logging_config import get_logger, log_action
from .notifications import NotificationService, NotificationType
from .storage import StorageInterface, StorageRecord
from .users import User, UserManager


class TransactionType(Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransactionCategory(Enum):
    TRANSFER = "Transfer"
    DEPOSIT = "Deposit"


DATE_FILTER_DAYS = {
    "week": 7,
    "month": 30,
    "3months": 90,
}

STATS_RANGE_DAYS = {
    "week": 7,
    "month": 30,
    "quarter": 90,
    "year": 365,
}


def generate_transaction_id() -> str:
    """Human-readable transaction ID, e.g. TXN18F3A2B4C1D9E2F0"""
    return f"TXN{int(time.time() * 1000):X}{secrets.token_hex(3).upper()}"


def ensure_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC"""
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def start_of_day(moment: Optional[datetime] = None) -> datetime:
    """Midnight UTC of the given moment (now by default)"""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass
class Transaction(StorageRecord):
    """One leg (debit or credit) of a money movement, owned by a single user"""
    transaction_id: str
    user_id: str
    transaction_type: TransactionType
    amount: Money
    status: TransactionStatus
    description: str
    category: TransactionCategory
    balance_after: Money
    counterparty_id: Optional[str] = None
    counterparty_name: Optional[str] = None
    counterparty_quickpe_id: Optional[str] = None
    transfer_id: Optional[str] = None  # Shared by both legs of a transfer
    idempotency_key: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_credit(self) -> bool:
        return self.transaction_type == TransactionType.CREDIT

    @property
    def is_debit(self) -> bool:
        return self.transaction_type == TransactionType.DEBIT

    def to_response(self) -> Dict[str, Any]:
        """Shape returned by the API"""
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "type": self.transaction_type.value,
            "amount": str(self.amount.amount),
            "currency": self.amount.currency.code,
            "status": self.status.value,
            "description": self.description,
            "category": self.category.value,
            "balance_after": str(self.balance_after.amount),
            "counterparty_id": self.counterparty_id,
            "counterparty_name": self.counterparty_name,
            "counterparty_quickpe_id": self.counterparty_quickpe_id,
            "transfer_id": self.transfer_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class TransferResult:
    """Outcome of a completed transfer"""
    transfer_id: str
    debit: Transaction
    credit: Transaction
    sender_balance: Money
    recipient_balance: Money
    duplicate: bool = False  # True when replayed from an idempotency key

    @property
    def amount(self) -> Money:
        return self.debit.amount

    def to_response(self) -> Dict[str, Any]:
        return {
            "transfer_id": self.transfer_id,
            "transaction_id": self.debit.transaction_id,
            "amount": str(self.amount.amount),
            "new_balance": str(self.sender_balance.amount),
            "recipient": {
                "id": self.credit.user_id,
                "name": self.debit.counterparty_name,
                "quickpe_id": self.debit.counterparty_quickpe_id,
            },
            "debit": self.debit.to_response(),
            "credit": self.credit.to_response(),
            "duplicate": self.duplicate,
        }


class TransferService:
    """
    Executes transfers and deposits and answers transaction history queries
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        user_manager: UserManager,
        notification_service: NotificationService,
        config: Optional[WalletConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.user_manager = user_manager
        self.notification_service = notification_service
        self.config = config or get_config()
        self.currency = currency_from_code(self.config.currency)
        self.table_name = "transactions"
        self.limits_table = "add_money_limits"
        self.logger = get_logger("quickpe.transactions")

        # Called with a user ID after every committed balance change
        self._balance_listeners: List[Callable[[str], None]] = []

    def add_balance_listener(self, callback: Callable[[str], None]) -> None:
        self._balance_listeners.append(callback)

    def _money(self, value: str) -> Money:
        return Money(Decimal(value), self.currency)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def transfer(
        self,
        sender_id: str,
        amount: Any,
        recipient_id: Optional[str] = None,
        recipient_quickpe_id: Optional[str] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TransferResult:
        """
        Transfer money from one wallet to another

        Args:
            sender_id: Paying user ID
            amount: Amount as Money, Decimal, int or string
            recipient_id: Receiving user ID
            recipient_quickpe_id: Receiving user's QuickPe ID (alternative to recipient_id)
            description: Free text shown on both legs
            idempotency_key: Replaying the same key returns the first result
            metadata: Extra data stored on both legs

        Returns:
            TransferResult with both legs and the new balances

        Raises:
            ValidationError, NotFoundError, InactiveAccountError,
            InsufficientFundsError, LimitExceededError, ConflictError
        """
        money = self.validate_transfer_amount(amount)
        recipient = self._resolve_recipient(recipient_id, recipient_quickpe_id)

        if idempotency_key:
            existing = self._find_by_idempotency_key(idempotency_key)
            if existing:
                return self._replay(existing, sender_id, recipient.id, money)

        try:
            with self.storage.atomic():
                result = self.execute_transfer(
                    sender_id=sender_id,
                    recipient_id=recipient.id,
                    amount=money,
                    description=description,
                    idempotency_key=idempotency_key,
                    metadata=metadata
                )
        except (InsufficientFundsError, LimitExceededError) as e:
            self.record_failure(sender_id, recipient.id, money, e)
            raise

        if not result.duplicate:
            self.publish_transfer(result)
        return result

    def validate_transfer_amount(self, amount: Any) -> Money:
        money = amount if isinstance(amount, Money) else parse_amount(amount, self.currency)
        if not money.is_positive():
            raise ValidationError("Valid amount is required", code="INVALID_AMOUNT")

        minimum = self._money(self.config.min_transfer_amount)
        maximum = self._money(self.config.max_transfer_amount)
        if money < minimum:
            raise ValidationError(
                f"Minimum transfer amount is {minimum.to_string()}", code="AMOUNT_TOO_SMALL"
            )
        if money > maximum:
            raise ValidationError(
                f"Maximum transfer amount is {maximum.to_string()}", code="AMOUNT_EXCEEDS_MAX"
            )
        return money

    def execute_transfer(
        self,
        sender_id: str,
        recipient_id: str,
        amount: Money,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TransferResult:
        """
        Move money and write both legs. Must run inside storage.atomic();
        callers that need more records in the same transaction (money request
        approval) open the block themselves and call this directly.
        """
        if not self.storage.in_transaction:
            raise RuntimeError("execute_transfer must run inside storage.atomic()")

        if sender_id == recipient_id:
            raise ValidationError("Cannot transfer money to yourself", code="SELF_TRANSFER")

        # Re-check under the storage lock
        if idempotency_key:
            existing = self._find_by_idempotency_key(idempotency_key)
            if existing:
                return self._replay(existing, sender_id, recipient_id, amount)

        sender = self._load_active_user(sender_id, "Sender", "SENDER_NOT_FOUND")
        recipient = self._load_active_user(recipient_id, "Recipient", "RECIPIENT_NOT_FOUND")

        if sender.balance < amount:
            raise InsufficientFundsError(
                "Insufficient balance",
                details={
                    "current_balance": str(sender.balance.amount),
                    "required_amount": str(amount.amount)
                }
            )

        daily_limit = self._money(self.config.max_daily_transfer_amount)
        sent_today = self.get_daily_transfer_total(sender.id)
        if sent_today + amount > daily_limit:
            raise LimitExceededError(
                "Daily transfer limit exceeded",
                code="DAILY_LIMIT_EXCEEDED",
                details={
                    "daily_limit": str(daily_limit.amount),
                    "sent_today": str(sent_today.amount),
                    "remaining": str((daily_limit - sent_today).amount)
                }
            )

        now = datetime.now(timezone.utc)
        sender.balance = sender.balance - amount
        sender.updated_at = now
        recipient.balance = recipient.balance + amount
        recipient.updated_at = now
        self.user_manager.save_user(sender)
        self.user_manager.save_user(recipient)

        transfer_id = str(uuid.uuid4())
        debit = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_id=generate_transaction_id(),
            user_id=sender.id,
            transaction_type=TransactionType.DEBIT,
            amount=amount,
            status=TransactionStatus.COMPLETED,
            description=description or f"Transfer to {recipient.full_name}",
            category=TransactionCategory.TRANSFER,
            balance_after=sender.balance,
            counterparty_id=recipient.id,
            counterparty_name=recipient.full_name,
            counterparty_quickpe_id=recipient.quickpe_id,
            transfer_id=transfer_id,
            idempotency_key=idempotency_key,
            metadata=metadata or {}
        )
        credit = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_id=generate_transaction_id(),
            user_id=recipient.id,
            transaction_type=TransactionType.CREDIT,
            amount=amount,
            status=TransactionStatus.COMPLETED,
            description=description or f"Transfer from {sender.full_name}",
            category=TransactionCategory.TRANSFER,
            balance_after=recipient.balance,
            counterparty_id=sender.id,
            counterparty_name=sender.full_name,
            counterparty_quickpe_id=sender.quickpe_id,
            transfer_id=transfer_id,
            metadata=metadata or {}
        )
        self._save_transaction(debit)
        self._save_transaction(credit)

        return TransferResult(
            transfer_id=transfer_id,
            debit=debit,
            credit=credit,
            sender_balance=sender.balance,
            recipient_balance=recipient.balance
        )

    def publish_transfer(self, result: TransferResult) -> None:
        """Notifications, audit events and cache invalidation for a committed transfer"""
        debit, credit = result.debit, result.credit
        amount_text = result.amount.to_string()

        log_action(
            self.logger, "info", "Transfer completed",
            user_id=debit.user_id, action="transfer",
            resource=f"transfer:{result.transfer_id}",
            extra={
                "amount": amount_text,
                "recipient_id": credit.user_id,
                "debit_transaction": debit.transaction_id,
                "credit_transaction": credit.transaction_id
            }
        )

        self._safely(
            "audit", self.audit_trail.log_event,
            event_type=AuditEventType.MONEY_SENT,
            entity_type="transaction",
            entity_id=debit.transaction_id,
            user_id=debit.user_id,
            metadata={
                "amount": str(result.amount.amount),
                "recipient_id": credit.user_id,
                "recipient_quickpe_id": debit.counterparty_quickpe_id,
                "transfer_id": result.transfer_id,
                "balance_after": str(result.sender_balance.amount)
            }
        )
        self._safely(
            "audit", self.audit_trail.log_event,
            event_type=AuditEventType.MONEY_RECEIVED,
            entity_type="transaction",
            entity_id=credit.transaction_id,
            user_id=credit.user_id,
            metadata={
                "amount": str(result.amount.amount),
                "sender_id": debit.user_id,
                "sender_quickpe_id": credit.counterparty_quickpe_id,
                "transfer_id": result.transfer_id,
                "balance_after": str(result.recipient_balance.amount)
            }
        )

        self._safely(
            "notification", self.notification_service.create_notification,
            user_id=debit.user_id,
            notification_type=NotificationType.TRANSFER_SENT,
            title="Money Sent",
            message=f"You sent {amount_text} to {debit.counterparty_name}",
            data={
                "amount": str(result.amount.amount),
                "transaction_id": debit.transaction_id,
                "recipient_id": credit.user_id,
                "recipient_name": debit.counterparty_name,
                "new_balance": str(result.sender_balance.amount)
            }
        )
        self._safely(
            "notification", self.notification_service.create_notification,
            user_id=credit.user_id,
            notification_type=NotificationType.TRANSFER_RECEIVED,
            title="Money Received",
            message=f"You received {amount_text} from {credit.counterparty_name}",
            data={
                "amount": str(result.amount.amount),
                "transaction_id": credit.transaction_id,
                "sender_id": debit.user_id,
                "sender_name": credit.counterparty_name,
                "new_balance": str(result.recipient_balance.amount)
            }
        )
        self._check_low_balance(debit.user_id, result.sender_balance)

        self._notify_balance_change(debit.user_id)
        self._notify_balance_change(credit.user_id)

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    def add_money(self, user_id: str, amount: Any, description: Optional[str] = None) -> Transaction:
        """
        Credit a user's wallet from an external source

        Limited by min/max amount and a number of attempts per UTC day.
        Returns the credit leg.
        """
        money = amount if isinstance(amount, Money) else parse_amount(amount, self.currency)
        minimum = self._money(self.config.min_add_money_amount)
        maximum = self._money(self.config.max_add_money_amount)
        if money < minimum:
            raise ValidationError(
                f"Minimum amount is {minimum.to_string()}", code="AMOUNT_TOO_SMALL"
            )
        if money > maximum:
            raise ValidationError(
                f"Maximum amount is {maximum.to_string()}", code="AMOUNT_EXCEEDS_MAX"
            )

        with self.storage.atomic():
            user = self._load_active_user(user_id, "User", "USER_NOT_FOUND")

            limit_id = f"{user.id}:{start_of_day().date().isoformat()}"
            limit_record = self.storage.load(self.limits_table, limit_id) or {
                "id": limit_id,
                "user_id": user.id,
                "date": start_of_day().date().isoformat(),
                "attempts": 0,
                "total_amount": "0"
            }
            if limit_record["attempts"] >= self.config.max_daily_add_money_attempts:
                raise LimitExceededError(
                    f"Daily limit reached. You can add money {self.config.max_daily_add_money_attempts} times per day",
                    code="DAILY_ATTEMPTS_EXCEEDED",
                    details={"attempts_used": limit_record["attempts"]}
                )

            now = datetime.now(timezone.utc)
            user.balance = user.balance + money
            user.updated_at = now
            self.user_manager.save_user(user)

            limit_record["attempts"] += 1
            limit_record["total_amount"] = str(Decimal(limit_record["total_amount"]) + money.amount)
            self.storage.save(self.limits_table, limit_id, limit_record)

            credit = Transaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                transaction_id=generate_transaction_id(),
                user_id=user.id,
                transaction_type=TransactionType.CREDIT,
                amount=money,
                status=TransactionStatus.COMPLETED,
                description=description or "Added money to wallet",
                category=TransactionCategory.DEPOSIT,
                balance_after=user.balance
            )
            self._save_transaction(credit)

        log_action(
            self.logger, "info", "Money added",
            user_id=user.id, action="add_money",
            resource=f"transaction:{credit.transaction_id}",
            extra={"amount": money.to_string()}
        )
        self._safely(
            "audit", self.audit_trail.log_event,
            event_type=AuditEventType.MONEY_ADDED,
            entity_type="transaction",
            entity_id=credit.transaction_id,
            user_id=user.id,
            metadata={
                "amount": str(money.amount),
                "balance_after": str(user.balance.amount)
            }
        )
        self._safely(
            "notification", self.notification_service.create_notification,
            user_id=user.id,
            notification_type=NotificationType.MONEY_ADDED,
            title="Money Added",
            message=f"{money.to_string()} added to your wallet",
            data={
                "amount": str(money.amount),
                "transaction_id": credit.transaction_id,
                "new_balance": str(user.balance.amount)
            }
        )
        self._notify_balance_change(user.id)
        return credit

    def get_add_money_attempts(self, user_id: str) -> int:
        """Deposits made today"""
        limit_id = f"{user_id}:{start_of_day().date().isoformat()}"
        record = self.storage.load(self.limits_table, limit_id)
        return record["attempts"] if record else 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_transactions(
        self,
        user_id: str,
        transaction_type: Optional[str] = None,
        date_filter: Optional[str] = None,
        search: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10
    ) -> Dict[str, Any]:
        """
        A user's transaction legs, newest first, with pagination metadata

        Args:
            transaction_type: "credit", "debit" or None/"all"
            date_filter: "today", "week", "month" or "3months"
            search: Case-insensitive match on description, counterparty or transaction ID
            start_date / end_date: Explicit range (inclusive)
        """
        transactions = self.list_user_transactions(user_id)

        if transaction_type and transaction_type != "all":
            try:
                wanted = TransactionType(transaction_type)
            except ValueError:
                raise ValidationError(f"Invalid transaction type: {transaction_type}", code="INVALID_FILTER")
            transactions = [t for t in transactions if t.transaction_type == wanted]

        if date_filter and date_filter != "all":
            if date_filter == "today":
                since = start_of_day()
            elif date_filter in DATE_FILTER_DAYS:
                since = datetime.now(timezone.utc) - timedelta(days=DATE_FILTER_DAYS[date_filter])
            else:
                raise ValidationError(f"Invalid date filter: {date_filter}", code="INVALID_FILTER")
            transactions = [t for t in transactions if t.created_at >= since]

        start_date, end_date = ensure_utc(start_date), ensure_utc(end_date)
        if start_date:
            transactions = [t for t in transactions if t.created_at >= start_date]
        if end_date:
            transactions = [t for t in transactions if t.created_at <= end_date]

        if search:
            needle = search.strip().lower()
            transactions = [
                t for t in transactions
                if needle in " ".join([
                    t.description or "",
                    t.counterparty_name or "",
                    t.counterparty_quickpe_id or "",
                    t.transaction_id
                ]).lower()
            ]

        transactions.sort(key=lambda t: t.created_at, reverse=True)

        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        total = len(transactions)
        total_pages = (total + limit - 1) // limit
        offset = (page - 1) * limit

        return {
            "transactions": transactions[offset:offset + limit],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": total_pages,
                "has_next": page < total_pages,
                "has_prev": page > 1
            }
        }

    def get_transaction(self, transaction_id: str, user_id: str) -> Transaction:
        """Look up one leg by its TXN ID (or record ID); only the owner may see it"""
        matches = self.storage.find(self.table_name, {"transaction_id": transaction_id})
        data = matches[0] if matches else self.storage.load(self.table_name, transaction_id)
        if not data or data.get("user_id") != user_id:
            raise NotFoundError("Transaction not found", code="TRANSACTION_NOT_FOUND")
        return self._transaction_from_dict(data)

    def get_transaction_stats(self, user_id: str, time_range: str = "month") -> Dict[str, Any]:
        if time_range not in STATS_RANGE_DAYS:
            raise ValidationError(f"Invalid time range: {time_range}", code="INVALID_FILTER")

        since = datetime.now(timezone.utc) - timedelta(days=STATS_RANGE_DAYS[time_range])
        transactions = [
            t for t in self.list_user_transactions(user_id)
            if t.created_at >= since and t.status == TransactionStatus.COMPLETED
        ]

        received = Money.zero(self.currency)
        sent = Money.zero(self.currency)
        for t in transactions:
            if t.is_credit:
                received = received + t.amount
            else:
                sent = sent + t.amount

        return {
            "time_range": time_range,
            "total_received": str(received.amount),
            "total_sent": str(sent.amount),
            "net_amount": str((received - sent).amount),
            "credit_count": sum(1 for t in transactions if t.is_credit),
            "debit_count": sum(1 for t in transactions if t.is_debit),
            "transaction_count": len(transactions)
        }

    def get_daily_transfer_total(self, user_id: str) -> Money:
        """Sum of today's completed outgoing transfers (UTC day)"""
        since = start_of_day()
        total = Money.zero(self.currency)
        for data in self.storage.find(self.table_name, {
            "user_id": user_id,
            "transaction_type": TransactionType.DEBIT.value,
            "category": TransactionCategory.TRANSFER.value,
            "status": TransactionStatus.COMPLETED.value
        }):
            if datetime.fromisoformat(data["created_at"]) >= since:
                total = total + self._money(data["amount"])
        return total

    def get_transfer_legs(self, transfer_id: str) -> List[Transaction]:
        return [
            self._transaction_from_dict(data)
            for data in self.storage.find(self.table_name, {"transfer_id": transfer_id})
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_recipient(self, recipient_id: Optional[str], recipient_quickpe_id: Optional[str]) -> User:
        if recipient_id:
            recipient = self.user_manager.get_user(recipient_id)
        elif recipient_quickpe_id:
            recipient = self.user_manager.get_user_by_quickpe_id(recipient_quickpe_id)
        else:
            raise ValidationError("Recipient is required", code="RECIPIENT_REQUIRED")

        if not recipient:
            raise NotFoundError("Recipient not found", code="RECIPIENT_NOT_FOUND")
        if not recipient.is_active:
            raise InactiveAccountError("Recipient account is inactive", code="RECIPIENT_INACTIVE")
        return recipient

    def _load_active_user(self, user_id: str, label: str, not_found_code: str) -> User:
        user = self.user_manager.get_user(user_id)
        if not user:
            raise NotFoundError(f"{label} not found", code=not_found_code)
        if not user.is_active:
            raise InactiveAccountError(f"{label} account is inactive", code=f"{label.upper()}_INACTIVE")
        return user

    def _find_by_idempotency_key(self, idempotency_key: str) -> Optional[Transaction]:
        """Find the debit leg written under an idempotency key"""
        transactions = self.storage.find(self.table_name, {
            "idempotency_key": idempotency_key,
            "transaction_type": TransactionType.DEBIT.value
        })
        if transactions:
            return self._transaction_from_dict(transactions[0])
        return None

    def _replay(self, debit: Transaction, sender_id: str, recipient_id: str, amount: Money) -> TransferResult:
        if debit.user_id != sender_id or debit.counterparty_id != recipient_id or debit.amount != amount:
            raise ConflictError(
                "Idempotency key was already used for a different transfer",
                code="IDEMPOTENCY_KEY_REUSED"
            )

        credit = next(
            leg for leg in self.get_transfer_legs(debit.transfer_id) if leg.is_credit
        )
        self.logger.info(f"Replayed transfer {debit.transfer_id} for idempotency key")
        return TransferResult(
            transfer_id=debit.transfer_id,
            debit=debit,
            credit=credit,
            sender_balance=debit.balance_after,
            recipient_balance=credit.balance_after,
            duplicate=True
        )

    def record_failure(self, sender_id: str, recipient_id: str, amount: Money, error: Exception) -> None:
        """Log and audit a transfer refused for balance or limit reasons"""
        log_action(
            self.logger, "warning", f"Transfer failed: {error}",
            user_id=sender_id, action="transfer_failed", resource=f"user:{recipient_id}",
            extra={"amount": amount.to_string()}
        )
        self._safely(
            "audit", self.audit_trail.log_event,
            event_type=AuditEventType.TRANSFER_FAILED,
            entity_type="user",
            entity_id=sender_id,
            user_id=sender_id,
            metadata={
                "amount": str(amount.amount),
                "recipient_id": recipient_id,
                "reason": getattr(error, "code", type(error).__name__)
            }
        )

    def _check_low_balance(self, user_id: str, balance: Money) -> None:
        threshold = self._money(self.config.low_balance_threshold)
        if balance < threshold:
            self._safely(
                "notification", self.notification_service.create_notification,
                user_id=user_id,
                notification_type=NotificationType.BALANCE_LOW,
                title="Low Balance",
                message=f"Your balance is {balance.to_string()}, below {threshold.to_string()}",
                data={"balance": str(balance.amount), "threshold": str(threshold.amount)}
            )

    def _notify_balance_change(self, user_id: str) -> None:
        for callback in self._balance_listeners:
            self._safely("balance listener", callback, user_id)

    def _safely(self, what: str, func: Callable, *args, **kwargs) -> Any:
        """Run a post-commit side effect; failures are logged, never raised"""
        try:
            return func(*args, **kwargs)
        except Exception:
            self.logger.exception(f"Post-commit {what} failed")
            return None

    def list_user_transactions(self, user_id: str) -> List[Transaction]:
        return [
            self._transaction_from_dict(data)
            for data in self.storage.find(self.table_name, {"user_id": user_id})
        ]

    def _save_transaction(self, transaction: Transaction) -> None:
        self.storage.save(self.table_name, transaction.id, self._transaction_to_dict(transaction))

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        result = transaction.to_dict()
        result['transaction_type'] = transaction.transaction_type.value
        result['status'] = transaction.status.value
        result['category'] = transaction.category.value
        result['amount'] = str(transaction.amount.amount)
        result['currency'] = transaction.amount.currency.code
        result['balance_after'] = str(transaction.balance_after.amount)
        return result

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        currency = Currency[data.get('currency', self.currency.code)]
        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            transaction_id=data['transaction_id'],
            user_id=data['user_id'],
            transaction_type=TransactionType(data['transaction_type']),
            amount=Money(Decimal(data['amount']), currency),
            status=TransactionStatus(data['status']),
            description=data.get('description', ""),
            category=TransactionCategory(data['category']),
            balance_after=Money(Decimal(data['balance_after']), currency),
            counterparty_id=data.get('counterparty_id'),
            counterparty_name=data.get('counterparty_name'),
            counterparty_quickpe_id=data.get('counterparty_quickpe_id'),
            transfer_id=data.get('transfer_id'),
            idempotency_key=data.get('idempotency_key'),
            metadata=data.get('metadata') or {}
        )
