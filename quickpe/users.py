"""
User Management Module

Manages wallet users: registration with QuickPe ID assignment, credential
checks, profile updates and directory search. The wallet balance lives on the
user record; only the transactions module mutates it.
"""

import hashlib
import random
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .config import WalletConfig, get_config
from .currency import Currency, Money, currency_from_code
from .errors import (
    AuthenticationError, ConflictError, InactiveAccountError,
    NotFoundError, ValidationError
)
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


EMAIL_PATTERN = re.compile(r"^[\w.+-]+@[\w-]+(\.[\w-]+)*\.[A-Za-z]{2,}$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")
QUICKPE_ID_PATTERN = re.compile(r"^QP\d{6}$")
NAME_MAX_LENGTH = 50


class UserRole(Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass
class User(StorageRecord):
    """Wallet user with embedded balance"""
    first_name: str
    last_name: str
    email: str
    balance: Money
    quickpe_id: Optional[str] = None
    phone: Optional[str] = None
    role: UserRole = UserRole.USER
    is_active: bool = True
    password_hash: str = ""
    password_salt: str = ""
    last_login: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def username(self) -> str:
        return self.email

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def public_profile(self) -> Dict:
        """Fields safe to show to other users"""
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "quickpe_id": self.quickpe_id,
        }


def generate_quickpe_id() -> str:
    """Random QuickPe ID in the form QPxxxxxx"""
    return f"QP{random.randint(1, 999999):06d}"


class UserManager:
    """
    Manages user lifecycle and credentials
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 config: Optional[WalletConfig] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.currency = currency_from_code(self.config.currency)
        self.table_name = "users"
        self.logger = get_logger("quickpe.users")

    def create_user(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        phone: Optional[str] = None,
        role: UserRole = UserRole.USER,
        initial_balance: Optional[Money] = None
    ) -> User:
        """
        Register a new user and assign a QuickPe ID

        Args:
            first_name: First name (max 50 characters)
            last_name: Last name (max 50 characters)
            email: Email address, used as the login name
            password: Plain-text password, stored as a scrypt hash
            phone: Optional phone number
            role: User role
            initial_balance: Opening balance; defaults to the configured signup bonus

        Returns:
            Created User

        Raises:
            ValidationError: On malformed input
            ConflictError: If the email or phone is already registered
        """
        first_name = self._validate_name(first_name, "first_name")
        last_name = self._validate_name(last_name, "last_name")
        email = self._normalize_email(email)
        self._validate_password(password)
        if phone is not None:
            phone = self._validate_phone(phone)

        if self.get_user_by_email(email):
            raise ConflictError("User with this email already exists", code="EMAIL_TAKEN")
        if phone and self.storage.find(self.table_name, {"phone": phone}):
            raise ConflictError("User with this phone number already exists", code="PHONE_TAKEN")

        if initial_balance is None:
            initial_balance = Money(Decimal(self.config.signup_bonus), self.currency)
        if initial_balance.is_negative():
            raise ValidationError("Initial balance cannot be negative", code="INVALID_AMOUNT")

        now = datetime.now(timezone.utc)
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            role=role,
            balance=initial_balance
        )
        self._set_password(user, password)
        self._save_user(user)

        self.audit_trail.log_event(
            event_type=AuditEventType.USER_CREATED,
            entity_type="user",
            entity_id=user.id,
            user_id=user.id,
            metadata={
                "email": email,
                "full_name": user.full_name,
                "initial_balance": str(initial_balance.amount)
            }
        )

        self.assign_quickpe_id(user.id)

        log_action(
            self.logger, "info", "User registered",
            user_id=user.id, action="create_user", resource=f"user:{user.id}"
        )
        return self.get_user(user.id)

    def assign_quickpe_id(self, user_id: str) -> str:
        """Assign a unique QuickPe ID; returns the existing one if already set"""
        user = self._require_user(user_id)
        if user.quickpe_id:
            return user.quickpe_id

        quickpe_id = generate_quickpe_id()
        while self.get_user_by_quickpe_id(quickpe_id):
            quickpe_id = generate_quickpe_id()

        user.quickpe_id = quickpe_id
        user.updated_at = datetime.now(timezone.utc)
        self._save_user(user)

        self.audit_trail.log_event(
            event_type=AuditEventType.QUICKPE_ID_ASSIGNED,
            entity_type="user",
            entity_id=user.id,
            user_id=user.id,
            metadata={"quickpe_id": quickpe_id}
        )
        return quickpe_id

    def get_user(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        data = self.storage.load(self.table_name, user_id)
        if data:
            return self._user_from_dict(data)
        return None

    def get_user_by_email(self, email: str) -> Optional[User]:
        users = self.storage.find(self.table_name, {"email": email.strip().lower()})
        if users:
            return self._user_from_dict(users[0])
        return None

    def get_user_by_quickpe_id(self, quickpe_id: str) -> Optional[User]:
        users = self.storage.find(self.table_name, {"quickpe_id": quickpe_id.strip().upper()})
        if users:
            return self._user_from_dict(users[0])
        return None

    def authenticate(self, email: str, password: str, ip_address: Optional[str] = None,
                     user_agent: Optional[str] = None) -> User:
        """
        Check credentials and record the login

        Raises:
            AuthenticationError: On unknown email or wrong password
            InactiveAccountError: If the account has been deactivated
        """
        user = self.get_user_by_email(email)
        if not user or not self._verify_password(user, password):
            self.audit_trail.log_event(
                event_type=AuditEventType.LOGIN_FAILED,
                entity_type="user",
                entity_id=user.id if user else "unknown",
                user_id=user.id if user else None,
                metadata={"email": email.strip().lower()},
                ip_address=ip_address,
                user_agent=user_agent
            )
            log_action(self.logger, "warning", "Authentication failed",
                       action="login_failed", resource="auth")
            raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")

        if not user.is_active:
            raise InactiveAccountError("Account is deactivated")

        user.last_login = datetime.now(timezone.utc)
        self._save_user(user)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOGIN,
            entity_type="user",
            entity_id=user.id,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent
        )
        return user

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self._require_user(user_id)
        if not self._verify_password(user, current_password):
            raise AuthenticationError("Current password is incorrect", code="INVALID_CREDENTIALS")
        self._validate_password(new_password)

        # Fresh salt on every change
        user.password_salt = ""
        self._set_password(user, new_password)
        user.updated_at = datetime.now(timezone.utc)
        self._save_user(user)

        self.audit_trail.log_event(
            event_type=AuditEventType.PASSWORD_CHANGED,
            entity_type="user",
            entity_id=user.id,
            user_id=user.id
        )

    def update_profile(self, user_id: str, first_name: Optional[str] = None,
                       last_name: Optional[str] = None, phone: Optional[str] = None) -> User:
        """Update name and phone; returns the updated user"""
        user = self._require_user(user_id)
        changes = {}

        if first_name is not None:
            user.first_name = self._validate_name(first_name, "first_name")
            changes["first_name"] = user.first_name
        if last_name is not None:
            user.last_name = self._validate_name(last_name, "last_name")
            changes["last_name"] = user.last_name
        if phone is not None:
            phone = self._validate_phone(phone)
            for other in self.storage.find(self.table_name, {"phone": phone}):
                if other["id"] != user.id:
                    raise ConflictError("User with this phone number already exists", code="PHONE_TAKEN")
            user.phone = phone
            changes["phone"] = phone

        if changes:
            user.updated_at = datetime.now(timezone.utc)
            self._save_user(user)
            self.audit_trail.log_event(
                event_type=AuditEventType.USER_UPDATED,
                entity_type="user",
                entity_id=user.id,
                user_id=user.id,
                metadata={"changes": changes}
            )
        return user

    def deactivate_user(self, user_id: str, reason: str = "") -> User:
        user = self._require_user(user_id)
        user.is_active = False
        user.updated_at = datetime.now(timezone.utc)
        self._save_user(user)

        self.audit_trail.log_event(
            event_type=AuditEventType.USER_DEACTIVATED,
            entity_type="user",
            entity_id=user.id,
            user_id=user.id,
            metadata={"reason": reason}
        )
        return user

    def search_users(self, query: str = "", exclude_user_id: Optional[str] = None,
                     limit: int = 20) -> List[User]:
        """
        Directory search over active users by name, email or QuickPe ID
        (case-insensitive substring match)
        """
        needle = query.strip().lower()
        results = []
        for data in self.storage.load_all(self.table_name):
            user = self._user_from_dict(data)
            if not user.is_active or user.id == exclude_user_id:
                continue
            haystack = " ".join([
                user.first_name, user.last_name, user.email, user.quickpe_id or ""
            ]).lower()
            if needle in haystack:
                results.append(user)

        results.sort(key=lambda u: (u.first_name.lower(), u.last_name.lower()))
        return results[:limit]

    def save_user(self, user: User) -> None:
        """Persist a user record (used by the transfer procedure)"""
        self._save_user(user)

    def _require_user(self, user_id: str) -> User:
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        return user

    def _validate_name(self, value: str, field_name: str) -> str:
        value = (value or "").strip()
        if not value or len(value) > NAME_MAX_LENGTH:
            raise ValidationError(
                f"{field_name} must be between 1 and {NAME_MAX_LENGTH} characters",
                code="INVALID_NAME"
            )
        return value

    def _normalize_email(self, email: str) -> str:
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Please enter a valid email", code="INVALID_EMAIL")
        return email

    def _validate_phone(self, phone: str) -> str:
        phone = phone.strip().replace(" ", "")
        if not PHONE_PATTERN.match(phone):
            raise ValidationError("Please enter a valid phone number", code="INVALID_PHONE")
        return phone

    def _validate_password(self, password: str) -> None:
        if not password or len(password) < self.config.password_min_length:
            raise ValidationError(
                f"Password must be at least {self.config.password_min_length} characters long",
                code="WEAK_PASSWORD"
            )

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _set_password(self, user: User, password: str) -> None:
        if not user.password_salt:
            user.password_salt = secrets.token_hex(16)
        user.password_hash = self._hash_password(password, user.password_salt)

    def _verify_password(self, user: User, password: str) -> bool:
        if not user.password_hash or not user.password_salt:
            return False
        expected = self._hash_password(password or "", user.password_salt)
        return secrets.compare_digest(expected, user.password_hash)

    def _save_user(self, user: User) -> None:
        self.storage.save(self.table_name, user.id, self._user_to_dict(user))

    def _user_to_dict(self, user: User) -> Dict:
        result = user.to_dict()
        result['balance'] = str(user.balance.amount)
        result['currency'] = user.balance.currency.code
        result['role'] = user.role.value
        result['last_login'] = user.last_login.isoformat() if user.last_login else None
        return result

    def _user_from_dict(self, data: Dict) -> User:
        currency = Currency[data.get('currency', self.currency.code)]
        last_login = None
        if data.get('last_login'):
            last_login = datetime.fromisoformat(data['last_login'])

        return User(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            first_name=data['first_name'],
            last_name=data['last_name'],
            email=data['email'],
            balance=Money(Decimal(data['balance']), currency),
            quickpe_id=data.get('quickpe_id'),
            phone=data.get('phone'),
            role=UserRole(data.get('role', UserRole.USER.value)),
            is_active=data.get('is_active', True),
            password_hash=data.get('password_hash', ""),
            password_salt=data.get('password_salt', ""),
            last_login=last_login
        )
