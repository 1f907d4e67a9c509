"""
Money Requests Module

User A asks user B for money. B approves (money moves B -> A), rejects, or
lets the request expire after 24 hours; A may cancel while it is pending.
Only pending requests change state, and approval moves money at most once.
"""

import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .config import WalletConfig, get_config
from .currency import Currency, Money, currency_from_code, parse_amount
from .errors import (
    InactiveAccountError, InsufficientFundsError, InvalidStateError,
    LimitExceededError, NotFoundError, PermissionDeniedError, ValidationError
)
from .logging_config import get_logger, log_action
from .notifications import NotificationService, NotificationType
from .storage import StorageInterface, StorageRecord
from .transactions import TransferService, start_of_day
from .users import UserManager


DESCRIPTION_MAX_LENGTH = 500
REJECTION_REASON_MAX_LENGTH = 200
DEFAULT_REJECTION_REASON = "No reason provided"


class MoneyRequestStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


def generate_request_id() -> str:
    return f"REQ{int(time.time() * 1000):X}{secrets.token_hex(3).upper()}"


@dataclass
class MoneyRequest(StorageRecord):
    """A request for payment from requester to requestee"""
    request_id: str
    requester_id: str
    requester_name: str
    requester_quickpe_id: str
    requestee_id: str
    requestee_name: str
    requestee_quickpe_id: str
    amount: Money
    description: str
    status: MoneyRequestStatus
    expires_at: datetime
    transaction_id: Optional[str] = None
    responded_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == MoneyRequestStatus.PENDING

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) > self.expires_at

    def can_respond(self, now: Optional[datetime] = None) -> bool:
        return self.is_pending and not self.is_expired(now)

    @property
    def time_remaining(self) -> timedelta:
        remaining = self.expires_at - datetime.now(timezone.utc)
        return max(remaining, timedelta(0))

    @property
    def hours_remaining(self) -> int:
        return int(self.time_remaining.total_seconds() // 3600)

    def to_response(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "requester": {
                "id": self.requester_id,
                "name": self.requester_name,
                "quickpe_id": self.requester_quickpe_id,
            },
            "requestee": {
                "id": self.requestee_id,
                "name": self.requestee_name,
                "quickpe_id": self.requestee_quickpe_id,
            },
            "amount": str(self.amount.amount),
            "currency": self.amount.currency.code,
            "description": self.description,
            "status": self.status.value,
            "transaction_id": self.transaction_id,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "rejection_reason": self.rejection_reason,
            "expires_at": self.expires_at.isoformat(),
            "hours_remaining": self.hours_remaining if self.is_pending else 0,
            "created_at": self.created_at.isoformat(),
        }


class MoneyRequestManager:
    """
    Manages the money request lifecycle
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        user_manager: UserManager,
        transfer_service: TransferService,
        notification_service: NotificationService,
        config: Optional[WalletConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.user_manager = user_manager
        self.transfer_service = transfer_service
        self.notification_service = notification_service
        self.config = config or get_config()
        self.currency = currency_from_code(self.config.currency)
        self.table_name = "money_requests"
        self.logger = get_logger("quickpe.money_requests")

    def create_request(
        self,
        requester_id: str,
        to_quickpe_id: str,
        amount: Any,
        description: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> MoneyRequest:
        """
        Ask another user for money

        Args:
            requester_id: User asking for money
            to_quickpe_id: QuickPe ID of the user being asked
            amount: Requested amount (at most the configured per-request maximum)
            description: Optional note, up to 500 characters

        Returns:
            Created MoneyRequest in pending state

        Raises:
            ValidationError, NotFoundError, InactiveAccountError, LimitExceededError
        """
        if not to_quickpe_id or not to_quickpe_id.strip():
            raise ValidationError("Recipient QuickPe ID is required", code="QUICKPE_ID_REQUIRED")

        money = amount if isinstance(amount, Money) else parse_amount(amount, self.currency)
        minimum = Money(Decimal(self.config.min_request_amount), self.currency)
        maximum = Money(Decimal(self.config.max_request_amount), self.currency)
        if not money.is_positive():
            raise ValidationError("Valid amount is required", code="INVALID_AMOUNT")
        if money < minimum:
            raise ValidationError(
                f"Minimum request amount is {minimum.to_string()}",
                code="AMOUNT_TOO_SMALL",
                details={"min_amount": str(minimum.amount)}
            )
        if money > maximum:
            raise ValidationError(
                f"Maximum request amount is {maximum.to_string()}",
                code="AMOUNT_EXCEEDS_MAX",
                details={"max_amount": str(maximum.amount)}
            )

        description = (description or "").strip()
        if len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters",
                code="DESCRIPTION_TOO_LONG"
            )

        requester = self.user_manager.get_user(requester_id)
        if not requester:
            raise NotFoundError("Requester not found", code="REQUESTER_NOT_FOUND")
        requestee = self.user_manager.get_user_by_quickpe_id(to_quickpe_id)
        if not requestee:
            raise NotFoundError("User not found with this QuickPe ID", code="REQUESTEE_NOT_FOUND")
        if requestee.id == requester.id:
            raise ValidationError("Cannot request money from yourself", code="SELF_REQUEST_NOT_ALLOWED")
        if not requestee.is_active:
            raise InactiveAccountError("Recipient account is inactive", code="REQUESTEE_INACTIVE")

        with self.storage.atomic():
            limit = self.check_daily_limit(requester.id, requestee.id, money)
            if not limit["allowed"]:
                raise LimitExceededError(
                    "Daily request limit exceeded for this user",
                    code="DAILY_REQUEST_LIMIT_EXCEEDED",
                    details={
                        "current_total": limit["current_total"],
                        "limit": limit["limit"],
                        "remaining": limit["remaining"]
                    }
                )

            now = datetime.now(timezone.utc)
            request = MoneyRequest(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                request_id=generate_request_id(),
                requester_id=requester.id,
                requester_name=requester.full_name,
                requester_quickpe_id=requester.quickpe_id,
                requestee_id=requestee.id,
                requestee_name=requestee.full_name,
                requestee_quickpe_id=requestee.quickpe_id,
                amount=money,
                description=description,
                status=MoneyRequestStatus.PENDING,
                expires_at=now + timedelta(hours=self.config.request_expiry_hours),
                ip_address=ip_address,
                user_agent=user_agent
            )
            self._save_request(request)

        log_action(
            self.logger, "info", "Money request created",
            user_id=requester.id, action="create_money_request",
            resource=f"money_request:{request.request_id}",
            extra={"amount": money.to_string(), "requestee_id": requestee.id}
        )
        self._safely(
            self.audit_trail.log_event,
            event_type=AuditEventType.MONEY_REQUESTED,
            entity_type="money_request",
            entity_id=request.request_id,
            user_id=requester.id,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={
                "amount": str(money.amount),
                "requestee_id": requestee.id,
                "requestee_quickpe_id": requestee.quickpe_id
            }
        )
        self._safely(
            self.notification_service.create_notification,
            user_id=requestee.id,
            notification_type=NotificationType.MONEY_REQUEST_RECEIVED,
            title="Money Request",
            message=f"{requester.full_name} requested {money.to_string()}",
            data={
                "request_id": request.request_id,
                "amount": str(money.amount),
                "requester_id": requester.id,
                "requester_name": requester.full_name,
                "requester_quickpe_id": requester.quickpe_id,
                "description": description
            }
        )
        return request

    def approve_request(self, request_id: str, user_id: str) -> Dict[str, Any]:
        """
        Approve a pending request: pay the requester from the requestee's wallet

        The transfer and the status change commit together; a retried approval
        finds the request already approved and moves no money.

        Returns:
            {"request": MoneyRequest, "transfer": TransferResult}
        """
        self.expire_stale_requests()

        try:
            with self.storage.atomic():
                request = self._load_request(request_id)
                if request.requestee_id != user_id:
                    raise PermissionDeniedError(
                        "Only the requested user can approve this request", code="NOT_AUTHORIZED"
                    )
                self._ensure_can_respond(request)

                result = self.transfer_service.execute_transfer(
                    sender_id=request.requestee_id,
                    recipient_id=request.requester_id,
                    amount=request.amount,
                    description=f"Money request payment: {request.description or request.request_id}",
                    idempotency_key=f"money-request:{request.request_id}",
                    metadata={"money_request_id": request.request_id}
                )

                now = datetime.now(timezone.utc)
                request.status = MoneyRequestStatus.APPROVED
                request.transaction_id = result.debit.transaction_id
                request.responded_at = now
                request.updated_at = now
                self._save_request(request)
        except (InsufficientFundsError, LimitExceededError) as e:
            self.transfer_service.record_failure(request.requestee_id, request.requester_id, request.amount, e)
            raise

        if not result.duplicate:
            self.transfer_service.publish_transfer(result)

        log_action(
            self.logger, "info", "Money request approved",
            user_id=user_id, action="approve_money_request",
            resource=f"money_request:{request.request_id}",
            extra={"transaction_id": request.transaction_id}
        )
        self._safely(
            self.audit_trail.log_event,
            event_type=AuditEventType.MONEY_REQUEST_APPROVED,
            entity_type="money_request",
            entity_id=request.request_id,
            user_id=user_id,
            metadata={
                "amount": str(request.amount.amount),
                "requester_id": request.requester_id,
                "transaction_id": request.transaction_id
            }
        )
        self._safely(
            self.notification_service.create_notification,
            user_id=request.requester_id,
            notification_type=NotificationType.MONEY_REQUEST_APPROVED,
            title="Request Approved",
            message=f"{request.requestee_name} approved your request for {request.amount.to_string()}",
            data={
                "request_id": request.request_id,
                "amount": str(request.amount.amount),
                "transaction_id": request.transaction_id
            }
        )
        return {"request": request, "transfer": result}

    def reject_request(self, request_id: str, user_id: str, reason: Optional[str] = None) -> MoneyRequest:
        self.expire_stale_requests()

        reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
        if len(reason) > REJECTION_REASON_MAX_LENGTH:
            raise ValidationError(
                f"Reason cannot exceed {REJECTION_REASON_MAX_LENGTH} characters",
                code="REASON_TOO_LONG"
            )

        with self.storage.atomic():
            request = self._load_request(request_id)
            if request.requestee_id != user_id:
                raise PermissionDeniedError(
                    "Only the requested user can reject this request", code="NOT_AUTHORIZED"
                )
            self._ensure_can_respond(request)

            now = datetime.now(timezone.utc)
            request.status = MoneyRequestStatus.REJECTED
            request.rejection_reason = reason
            request.responded_at = now
            request.updated_at = now
            self._save_request(request)

        self._safely(
            self.audit_trail.log_event,
            event_type=AuditEventType.MONEY_REQUEST_REJECTED,
            entity_type="money_request",
            entity_id=request.request_id,
            user_id=user_id,
            metadata={"amount": str(request.amount.amount), "reason": reason}
        )
        self._safely(
            self.notification_service.create_notification,
            user_id=request.requester_id,
            notification_type=NotificationType.MONEY_REQUEST_REJECTED,
            title="Request Declined",
            message=f"{request.requestee_name} declined your request for {request.amount.to_string()}",
            data={
                "request_id": request.request_id,
                "amount": str(request.amount.amount),
                "reason": reason
            }
        )
        return request

    def cancel_request(self, request_id: str, user_id: str) -> MoneyRequest:
        self.expire_stale_requests()

        with self.storage.atomic():
            request = self._load_request(request_id)
            if request.requester_id != user_id:
                raise PermissionDeniedError(
                    "Only the requester can cancel this request", code="NOT_AUTHORIZED"
                )
            if not request.is_pending:
                raise InvalidStateError(
                    f"Request is already {request.status.value}", code="CANNOT_CANCEL"
                )

            now = datetime.now(timezone.utc)
            request.status = MoneyRequestStatus.CANCELLED
            request.responded_at = now
            request.updated_at = now
            self._save_request(request)

        self._safely(
            self.audit_trail.log_event,
            event_type=AuditEventType.MONEY_REQUEST_CANCELLED,
            entity_type="money_request",
            entity_id=request.request_id,
            user_id=user_id,
            metadata={"amount": str(request.amount.amount)}
        )
        self._safely(
            self.notification_service.create_notification,
            user_id=request.requestee_id,
            notification_type=NotificationType.MONEY_REQUEST_CANCELLED,
            title="Request Cancelled",
            message=f"{request.requester_name} cancelled their request for {request.amount.to_string()}",
            data={"request_id": request.request_id, "amount": str(request.amount.amount)}
        )
        return request

    def expire_stale_requests(self, now: Optional[datetime] = None) -> int:
        """Move pending requests past their expiry to expired; returns how many changed"""
        now = now or datetime.now(timezone.utc)
        expired = []

        with self.storage.atomic():
            for data in self.storage.find(self.table_name, {"status": MoneyRequestStatus.PENDING.value}):
                request = self._request_from_dict(data)
                if request.is_expired(now):
                    request.status = MoneyRequestStatus.EXPIRED
                    request.updated_at = now
                    self._save_request(request)
                    expired.append(request)

        for request in expired:
            self._safely(
                self.audit_trail.log_event,
                event_type=AuditEventType.MONEY_REQUEST_EXPIRED,
                entity_type="money_request",
                entity_id=request.request_id,
                user_id=request.requester_id,
                metadata={"amount": str(request.amount.amount)}
            )
        if expired:
            self.logger.info(f"Expired {len(expired)} money requests")
        return len(expired)

    def get_request(self, request_id: str, user_id: str) -> MoneyRequest:
        """Either party may view a request"""
        self.expire_stale_requests()
        request = self._load_request(request_id)
        if user_id not in (request.requester_id, request.requestee_id):
            raise NotFoundError("Money request not found", code="REQUEST_NOT_FOUND")
        return request

    def list_received(self, user_id: str, status: str = "pending",
                      page: int = 1, limit: int = 20) -> Dict[str, Any]:
        return self._list(user_id, "requestee_id", status, page, limit)

    def list_sent(self, user_id: str, status: str = "all",
                  page: int = 1, limit: int = 20) -> Dict[str, Any]:
        return self._list(user_id, "requester_id", status, page, limit)

    def _list(self, user_id: str, field_name: str, status: str, page: int, limit: int) -> Dict[str, Any]:
        self.expire_stale_requests()

        filters = {field_name: user_id}
        if status and status != "all":
            try:
                filters["status"] = MoneyRequestStatus(status).value
            except ValueError:
                raise ValidationError(f"Invalid status filter: {status}", code="INVALID_FILTER")

        requests_ = [self._request_from_dict(d) for d in self.storage.find(self.table_name, filters)]
        requests_.sort(key=lambda r: r.created_at, reverse=True)

        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        total = len(requests_)
        offset = (page - 1) * limit
        return {
            "requests": requests_[offset:offset + limit],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": (total + limit - 1) // limit
            }
        }

    def get_daily_total(self, requester_id: str, requestee_id: str) -> Money:
        """Pending and approved amounts requested from one user since UTC midnight"""
        since = start_of_day()
        total = Money.zero(self.currency)
        for data in self.storage.find(self.table_name, {
            "requester_id": requester_id,
            "requestee_id": requestee_id
        }):
            if data["status"] not in (MoneyRequestStatus.PENDING.value, MoneyRequestStatus.APPROVED.value):
                continue
            if datetime.fromisoformat(data["created_at"]) < since:
                continue
            total = total + Money(Decimal(data["amount"]), self.currency)
        return total

    def check_daily_limit(self, requester_id: str, requestee_id: str, amount: Any) -> Dict[str, Any]:
        money = amount if isinstance(amount, Money) else parse_amount(amount, self.currency)
        limit = Money(Decimal(self.config.max_daily_request_amount), self.currency)
        current = self.get_daily_total(requester_id, requestee_id)
        remaining = limit - current
        if remaining.is_negative():
            remaining = Money.zero(self.currency)

        return {
            "allowed": current + money <= limit,
            "current_total": str(current.amount),
            "requested_amount": str(money.amount),
            "limit": str(limit.amount),
            "remaining": str(remaining.amount)
        }

    def _ensure_can_respond(self, request: MoneyRequest) -> None:
        if request.can_respond():
            return
        if request.is_pending or request.status == MoneyRequestStatus.EXPIRED:
            raise InvalidStateError("Money request has expired", code="REQUEST_EXPIRED")
        raise InvalidStateError(
            f"Money request already {request.status.value}", code="ALREADY_RESPONDED"
        )

    def _load_request(self, request_id: str) -> MoneyRequest:
        matches = self.storage.find(self.table_name, {"request_id": request_id})
        data = matches[0] if matches else self.storage.load(self.table_name, request_id)
        if not data:
            raise NotFoundError("Money request not found", code="REQUEST_NOT_FOUND")
        return self._request_from_dict(data)

    def _safely(self, func, *args, **kwargs) -> None:
        try:
            func(*args, **kwargs)
        except Exception:
            self.logger.exception("Post-commit side effect failed")

    def _save_request(self, request: MoneyRequest) -> None:
        self.storage.save(self.table_name, request.id, self._request_to_dict(request))

    def _request_to_dict(self, request: MoneyRequest) -> Dict:
        result = request.to_dict()
        result['amount'] = str(request.amount.amount)
        result['currency'] = request.amount.currency.code
        result['status'] = request.status.value
        result['expires_at'] = request.expires_at.isoformat()
        result['responded_at'] = request.responded_at.isoformat() if request.responded_at else None
        return result

    def _request_from_dict(self, data: Dict) -> MoneyRequest:
        currency = Currency[data.get('currency', self.currency.code)]
        responded_at = None
        if data.get('responded_at'):
            responded_at = datetime.fromisoformat(data['responded_at'])

        return MoneyRequest(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            request_id=data['request_id'],
            requester_id=data['requester_id'],
            requester_name=data['requester_name'],
            requester_quickpe_id=data['requester_quickpe_id'],
            requestee_id=data['requestee_id'],
            requestee_name=data['requestee_name'],
            requestee_quickpe_id=data['requestee_quickpe_id'],
            amount=Money(Decimal(data['amount']), currency),
            description=data.get('description', ""),
            status=MoneyRequestStatus(data['status']),
            expires_at=datetime.fromisoformat(data['expires_at']),
            transaction_id=data.get('transaction_id'),
            responded_at=responded_at,
            rejection_reason=data.get('rejection_reason'),
            ip_address=data.get('ip_address'),
            user_agent=data.get('user_agent')
        )
