"""
Account Statements

CSV export of a user's transaction legs over a date range.
"""

import csv
import io
from datetime import datetime, timedelta, timezone
from typing import Optional

from .audit import AuditTrail, AuditEventType
from .errors import NotFoundError, ValidationError
from .logging_config import get_logger
from .transactions import TransferService, ensure_utc
from .users import UserManager


STATEMENT_FIELDS = [
    "date",
    "transaction_id",
    "type",
    "category",
    "description",
    "counterparty",
    "counterparty_quickpe_id",
    "amount",
    "balance_after",
    "status",
]

DEFAULT_STATEMENT_DAYS = 30


class StatementService:
    """Builds downloadable statements"""

    def __init__(self, transfer_service: TransferService, user_manager: UserManager,
                 audit_trail: AuditTrail):
        self.transfer_service = transfer_service
        self.user_manager = user_manager
        self.audit_trail = audit_trail
        self.logger = get_logger("quickpe.statements")

    def export_csv(self, user_id: str, start_date: Optional[datetime] = None,
                   end_date: Optional[datetime] = None) -> str:
        """
        Render the user's transactions between start_date and end_date as CSV,
        oldest first. Defaults to the last 30 days.
        """
        user = self.user_manager.get_user(user_id)
        if not user:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")

        end_date = ensure_utc(end_date) or datetime.now(timezone.utc)
        start_date = ensure_utc(start_date) or end_date - timedelta(days=DEFAULT_STATEMENT_DAYS)
        if start_date > end_date:
            raise ValidationError("Start date must be before end date", code="INVALID_DATE_RANGE")

        transactions = [
            t for t in self.transfer_service.list_user_transactions(user_id)
            if start_date <= t.created_at <= end_date
        ]
        transactions.sort(key=lambda t: t.created_at)

        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=STATEMENT_FIELDS)
        writer.writeheader()
        for t in transactions:
            writer.writerow({
                "date": t.created_at.isoformat(),
                "transaction_id": t.transaction_id,
                "type": t.transaction_type.value,
                "category": t.category.value,
                "description": t.description,
                "counterparty": t.counterparty_name or "",
                "counterparty_quickpe_id": t.counterparty_quickpe_id or "",
                "amount": str(t.amount.amount),
                "balance_after": str(t.balance_after.amount),
                "status": t.status.value,
            })

        csv_content = output.getvalue()
        output.close()

        self.audit_trail.log_event(
            event_type=AuditEventType.STATEMENT_EXPORTED,
            entity_type="statement",
            entity_id=user.id,
            user_id=user.id,
            metadata={
                "format": "csv",
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "row_count": len(transactions)
            }
        )
        self.logger.info(f"Exported statement with {len(transactions)} rows")
        return csv_content
