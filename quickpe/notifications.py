"""
Notification Module

In-app notifications for wallet events (transfers, deposits, money requests,
security alerts). Every notification is persisted and then pushed to the
registered channel providers; a provider failure never fails the operation
that triggered it.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

from .errors import NotFoundError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


class NotificationType(Enum):
    """Types of wallet notifications"""
    TRANSFER_SENT = "TRANSFER_SENT"
    TRANSFER_RECEIVED = "TRANSFER_RECEIVED"
    MONEY_ADDED = "MONEY_ADDED"
    BALANCE_LOW = "BALANCE_LOW"
    MONEY_REQUEST_RECEIVED = "MONEY_REQUEST_RECEIVED"
    MONEY_REQUEST_APPROVED = "MONEY_REQUEST_APPROVED"
    MONEY_REQUEST_REJECTED = "MONEY_REQUEST_REJECTED"
    MONEY_REQUEST_CANCELLED = "MONEY_REQUEST_CANCELLED"
    SECURITY_ALERT = "SECURITY_ALERT"
    SYSTEM_UPDATE = "SYSTEM_UPDATE"


@dataclass
class Notification(StorageRecord):
    """In-app notification for one user"""
    user_id: str
    notification_type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    read: bool = False
    read_at: Optional[datetime] = None


class ChannelProvider(ABC):
    """Abstract base class for notification channel providers"""

    @abstractmethod
    def send(self, notification: Notification) -> bool:
        """Push notification via this channel. Returns True if delivered."""
        pass


class LogChannelProvider(ChannelProvider):
    """Writes notifications to the application log"""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("quickpe.notifications.channel")

    def send(self, notification: Notification) -> bool:
        log_action(
            self.logger, "info", f"{notification.title}: {notification.message}",
            user_id=notification.user_id,
            action="notify",
            resource=f"notification:{notification.id}",
            extra={"type": notification.notification_type.value}
        )
        return True


class WebhookChannelProvider(ChannelProvider):
    """Webhook channel provider for external integrations"""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout
        self.logger = get_logger("quickpe.notifications.webhook")

    def send(self, notification: Notification) -> bool:
        """Send notification via webhook POST"""
        payload = {
            "notification_id": notification.id,
            "type": notification.notification_type.value,
            "user_id": notification.user_id,
            "title": notification.title,
            "message": notification.message,
            "data": notification.data,
            "timestamp": notification.created_at.isoformat()
        }
        try:
            response = requests.post(
                self.url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"}
            )
        except requests.RequestException as e:
            self.logger.warning(f"Webhook send failed: {e}")
            return False

        if response.status_code >= 300:
            self.logger.warning(f"Webhook returned HTTP {response.status_code}")
            return False
        return True


class NotificationService:
    """
    Stores notifications and fans them out to channel providers
    """

    DEFAULT_LIMIT = 50

    def __init__(self, storage: StorageInterface, providers: Optional[List[ChannelProvider]] = None):
        self.storage = storage
        self.table_name = "notifications"
        self.providers: List[ChannelProvider] = list(providers) if providers is not None else [LogChannelProvider()]
        self.logger = get_logger("quickpe.notifications")

    def register_provider(self, provider: ChannelProvider) -> None:
        self.providers.append(provider)

    def create_notification(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """
        Persist a notification and push it to every provider

        Args:
            user_id: Recipient user ID
            notification_type: Type of notification
            title: Short title
            message: Human-readable body
            data: Structured payload (amounts, counterparty, request ids)

        Returns:
            Created Notification
        """
        now = datetime.now(timezone.utc)
        notification = Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data or {}
        )
        self._save_notification(notification)
        self._push(notification)
        return notification

    def _push(self, notification: Notification) -> None:
        for provider in self.providers:
            try:
                delivered = provider.send(notification)
            except Exception:
                self.logger.exception(
                    f"Notification provider {type(provider).__name__} failed"
                )
                continue
            if not delivered:
                self.logger.warning(
                    f"Notification {notification.id} not delivered by {type(provider).__name__}"
                )

    def get_notifications(self, user_id: str, unread_only: bool = False,
                          limit: int = DEFAULT_LIMIT) -> List[Notification]:
        """Get a user's notifications, newest first"""
        filters: Dict[str, Any] = {"user_id": user_id}
        if unread_only:
            filters["read"] = False

        notifications = [
            self._notification_from_dict(data)
            for data in self.storage.find(self.table_name, filters)
        ]
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return notifications[:limit]

    def get_notification(self, notification_id: str, user_id: str) -> Notification:
        data = self.storage.load(self.table_name, notification_id)
        if not data or data.get("user_id") != user_id:
            raise NotFoundError("Notification not found", code="NOTIFICATION_NOT_FOUND")
        return self._notification_from_dict(data)

    def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        notification = self.get_notification(notification_id, user_id)
        if not notification.read:
            notification.read = True
            notification.read_at = datetime.now(timezone.utc)
            notification.updated_at = notification.read_at
            self._save_notification(notification)
        return notification

    def mark_all_as_read(self, user_id: str) -> int:
        """Mark every unread notification as read; returns how many changed"""
        now = datetime.now(timezone.utc)
        unread = self.storage.find(self.table_name, {"user_id": user_id, "read": False})
        with self.storage.atomic():
            for data in unread:
                notification = self._notification_from_dict(data)
                notification.read = True
                notification.read_at = now
                notification.updated_at = now
                self._save_notification(notification)
        return len(unread)

    def delete_notification(self, notification_id: str, user_id: str) -> None:
        self.get_notification(notification_id, user_id)
        self.storage.delete(self.table_name, notification_id)

    def get_unread_count(self, user_id: str) -> int:
        return len(self.storage.find(self.table_name, {"user_id": user_id, "read": False}))

    def _save_notification(self, notification: Notification) -> None:
        self.storage.save(self.table_name, notification.id, self._notification_to_dict(notification))

    def _notification_to_dict(self, notification: Notification) -> Dict:
        result = notification.to_dict()
        result['notification_type'] = notification.notification_type.value
        result['read_at'] = notification.read_at.isoformat() if notification.read_at else None
        return result

    def _notification_from_dict(self, data: Dict) -> Notification:
        read_at = None
        if data.get('read_at'):
            read_at = datetime.fromisoformat(data['read_at'])

        return Notification(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            notification_type=NotificationType(data['notification_type']),
            title=data['title'],
            message=data['message'],
            data=data.get('data') or {},
            read=data.get('read', False),
            read_at=read_at
        )
