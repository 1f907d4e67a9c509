"""
Wallet system wiring and authentication dependencies
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..analytics import AnalyticsService
from ..audit import AuditTrail
from ..config import WalletConfig, get_config
from ..errors import AuthenticationError, InactiveAccountError, PermissionDeniedError
from ..money_requests import MoneyRequestManager
from ..notifications import LogChannelProvider, NotificationService, WebhookChannelProvider
from ..statements import StatementService
from ..storage import StorageInterface, create_storage
from ..transactions import TransferService
from ..users import User, UserManager


class WalletSystem:
    """Wallet system with all components initialized"""

    def __init__(self, config: Optional[WalletConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.user_manager = UserManager(self.storage, self.audit_trail, self.config)
        self.notification_service = NotificationService(
            self.storage, providers=self._create_providers()
        )
        self.transfer_service = TransferService(
            self.storage, self.audit_trail, self.user_manager,
            self.notification_service, self.config
        )
        self.money_request_manager = MoneyRequestManager(
            self.storage, self.audit_trail, self.user_manager,
            self.transfer_service, self.notification_service, self.config
        )
        self.analytics_service = AnalyticsService(
            self.transfer_service, self.user_manager, self.config
        )
        self.statement_service = StatementService(
            self.transfer_service, self.user_manager, self.audit_trail
        )

    def _create_providers(self):
        providers = [LogChannelProvider()]
        if self.config.enable_webhook_notifications and self.config.notification_webhook_url:
            providers.append(WebhookChannelProvider(
                url=self.config.notification_webhook_url,
                timeout=self.config.notification_webhook_timeout
            ))
        return providers

    def close(self) -> None:
        self.storage.close()


_wallet_system: Optional[WalletSystem] = None


def get_wallet_system() -> WalletSystem:
    """Dependency returning the process-wide wallet system, built on first use"""
    global _wallet_system
    if _wallet_system is None:
        _wallet_system = WalletSystem()
    return _wallet_system


security = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, config: Optional[WalletConfig] = None) -> str:
    config = config or get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(hours=config.jwt_expiry_hours),
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def decode_access_token(token: str, config: Optional[WalletConfig] = None) -> str:
    """Validate a token and return the user ID it was issued for"""
    config = config or get_config()
    try:
        payload = jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired", code="TOKEN_EXPIRED")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token", code="INVALID_TOKEN")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token", code="INVALID_TOKEN")
    return user_id


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    system: WalletSystem = Depends(get_wallet_system)
) -> User:
    """Dependency that validates the Bearer JWT and returns the active user"""
    if not credentials:
        raise AuthenticationError("Authentication required", code="AUTH_REQUIRED")

    user_id = decode_access_token(credentials.credentials, system.config)
    user = system.user_manager.get_user(user_id)
    if not user:
        raise AuthenticationError("User not found", code="INVALID_TOKEN")
    if not user.is_active:
        raise InactiveAccountError("Account is deactivated")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise PermissionDeniedError("Admin access required", code="ADMIN_REQUIRED")
    return user


def client_info(request: Request) -> dict:
    """Caller address and user agent, for audit records"""
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
