"""
Tests for user registration, authentication and profiles
"""

import re
import pytest
from decimal import Decimal

from quickpe.audit import AuditTrail, AuditEventType
from quickpe.config import WalletConfig
from quickpe.currency import Currency, Money
from quickpe.errors import (
    AuthenticationError, ConflictError, InactiveAccountError,
    NotFoundError, ValidationError
)
from quickpe.storage import InMemoryStorage
from quickpe.users import UserManager, UserRole


class TestUserManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.config = WalletConfig(database_url="memory://", signup_bonus="0.00")
        self.user_manager = UserManager(self.storage, self.audit_trail, self.config)

        self.alice = self.user_manager.create_user(
            first_name="Alice",
            last_name="Sharma",
            email="Alice@Example.com",
            password="secret123",
            phone="+919876543210"
        )

    def test_create_user_assigns_quickpe_id(self):
        assert re.match(r"^QP\d{6}$", self.alice.quickpe_id)
        assert self.alice.email == "alice@example.com"
        assert self.alice.username == "alice@example.com"
        assert self.alice.balance == Money.zero(Currency.INR)
        assert self.alice.role == UserRole.USER
        assert self.alice.password_hash and self.alice.password_hash != "secret123"

    def test_create_user_audits_creation_and_id(self):
        events = self.audit_trail.get_events_for_entity("user", self.alice.id)
        types = [e.event_type for e in events]
        assert types == [AuditEventType.USER_CREATED, AuditEventType.QUICKPE_ID_ASSIGNED]

    def test_signup_bonus_from_config(self):
        config = WalletConfig(database_url="memory://", signup_bonus="50.00")
        manager = UserManager(self.storage, self.audit_trail, config)
        user = manager.create_user("Bob", "Rao", "bob@example.com", "secret123")
        assert user.balance.amount == Decimal("50.00")

    def test_duplicate_email_rejected(self):
        with pytest.raises(ConflictError) as exc_info:
            self.user_manager.create_user("Other", "Person", "alice@example.com", "secret123")
        assert exc_info.value.code == "EMAIL_TAKEN"

    def test_duplicate_phone_rejected(self):
        with pytest.raises(ConflictError):
            self.user_manager.create_user(
                "Other", "Person", "other@example.com", "secret123", phone="+919876543210"
            )

    @pytest.mark.parametrize("kwargs,code", [
        ({"email": "not-an-email"}, "INVALID_EMAIL"),
        ({"password": "123"}, "WEAK_PASSWORD"),
        ({"first_name": ""}, "INVALID_NAME"),
        ({"last_name": "x" * 51}, "INVALID_NAME"),
        ({"phone": "abc"}, "INVALID_PHONE"),
    ])
    def test_validation(self, kwargs, code):
        params = {
            "first_name": "Carol",
            "last_name": "Iyer",
            "email": "carol@example.com",
            "password": "secret123",
        }
        params.update(kwargs)
        with pytest.raises(ValidationError) as exc_info:
            self.user_manager.create_user(**params)
        assert exc_info.value.code == code

    def test_lookup_by_email_and_quickpe_id(self):
        assert self.user_manager.get_user_by_email("ALICE@example.com").id == self.alice.id
        assert self.user_manager.get_user_by_quickpe_id(self.alice.quickpe_id.lower()).id == self.alice.id
        assert self.user_manager.get_user("missing") is None

    def test_authenticate(self):
        user = self.user_manager.authenticate("alice@example.com", "secret123")
        assert user.id == self.alice.id
        assert self.user_manager.get_user(self.alice.id).last_login is not None

        login_events = self.audit_trail.get_events_by_type(AuditEventType.LOGIN)
        assert len(login_events) == 1

    def test_authenticate_wrong_password(self):
        with pytest.raises(AuthenticationError):
            self.user_manager.authenticate("alice@example.com", "wrong-password")
        with pytest.raises(AuthenticationError):
            self.user_manager.authenticate("nobody@example.com", "secret123")

        failed = self.audit_trail.get_events_by_type(AuditEventType.LOGIN_FAILED)
        assert len(failed) == 2

    def test_inactive_user_cannot_sign_in(self):
        self.user_manager.deactivate_user(self.alice.id, reason="fraud review")
        with pytest.raises(InactiveAccountError):
            self.user_manager.authenticate("alice@example.com", "secret123")

    def test_change_password(self):
        self.user_manager.change_password(self.alice.id, "secret123", "newsecret456")
        with pytest.raises(AuthenticationError):
            self.user_manager.authenticate("alice@example.com", "secret123")
        assert self.user_manager.authenticate("alice@example.com", "newsecret456").id == self.alice.id

    def test_change_password_requires_current(self):
        with pytest.raises(AuthenticationError):
            self.user_manager.change_password(self.alice.id, "wrong", "newsecret456")

    def test_update_profile(self):
        updated = self.user_manager.update_profile(self.alice.id, first_name="Alicia", phone="+919000000001")
        assert updated.first_name == "Alicia"
        assert updated.phone == "+919000000001"

        events = self.audit_trail.get_events_by_type(AuditEventType.USER_UPDATED)
        assert events[0].metadata["changes"]["first_name"] == "Alicia"

    def test_update_profile_unknown_user(self):
        with pytest.raises(NotFoundError):
            self.user_manager.update_profile("missing", first_name="X")

    def test_assign_quickpe_id_is_idempotent(self):
        assert self.user_manager.assign_quickpe_id(self.alice.id) == self.alice.quickpe_id

    def test_search_users(self):
        bob = self.user_manager.create_user("Bob", "Sharma", "bob@example.com", "secret123")
        carol = self.user_manager.create_user("Carol", "Iyer", "carol@example.com", "secret123")
        self.user_manager.deactivate_user(carol.id)

        results = self.user_manager.search_users("sharma", exclude_user_id=self.alice.id)
        assert [u.id for u in results] == [bob.id]

        by_id = self.user_manager.search_users(bob.quickpe_id)
        assert [u.id for u in by_id] == [bob.id]

        everyone = self.user_manager.search_users("")
        assert {u.id for u in everyone} == {self.alice.id, bob.id}
