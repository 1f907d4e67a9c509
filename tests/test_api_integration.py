"""
Integration tests for the QuickPe REST API
Tests end-to-end workflows using FastAPI TestClient
"""

import csv
import io
import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

from quickpe.api import create_app
from quickpe.api.auth import WalletSystem, create_access_token, get_wallet_system
from quickpe.config import WalletConfig
from quickpe.currency import Currency, Money
from quickpe.storage import InMemoryStorage
from quickpe.users import UserRole


@pytest.fixture
def system():
    """Wallet system on in-memory storage"""
    config = WalletConfig(database_url="memory://", jwt_secret="test-secret")
    return WalletSystem(config=config, storage=InMemoryStorage())


@pytest.fixture
def client(system):
    app = create_app()
    app.dependency_overrides[get_wallet_system] = lambda: system
    return TestClient(app)


def signup(client, first_name, email, password="secret123"):
    r = client.post("/api/v1/user/signup", json={
        "firstName": first_name,
        "lastName": "Tester",
        "email": email,
        "password": password
    })
    assert r.status_code == 201, r.text
    data = r.json()
    return data["user"], {"Authorization": f"Bearer {data['token']}"}


def fund(system, user_id, amount):
    user = system.user_manager.get_user(user_id)
    user.balance = Money(Decimal(amount), Currency.INR)
    system.user_manager.save_user(user)


class TestHealthEndpoints:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert "endpoints" in r.json()


class TestUserEndpoints:

    def test_signup_and_signin(self, client):
        user, _ = signup(client, "Alice", "alice@example.com")
        assert user["quickpe_id"].startswith("QP")
        assert user["balance"] == "0.00"

        r = client.post("/api/v1/user/signin", json={"email": "alice@example.com", "password": "secret123"})
        assert r.status_code == 200
        assert r.json()["token"]

    def test_signin_wrong_password(self, client):
        signup(client, "Alice", "alice@example.com")
        r = client.post("/api/v1/user/signin", json={"email": "alice@example.com", "password": "nope"})
        assert r.status_code == 401
        assert r.json() == {
            "success": False,
            "message": "Invalid email or password",
            "code": "INVALID_CREDENTIALS"
        }

    def test_duplicate_signup(self, client):
        signup(client, "Alice", "alice@example.com")
        r = client.post("/api/v1/user/signup", json={
            "firstName": "Alice", "lastName": "Again", "email": "alice@example.com", "password": "secret123"
        })
        assert r.status_code == 409
        assert r.json()["code"] == "EMAIL_TAKEN"

    def test_profile_requires_token(self, client):
        r = client.get("/api/v1/user/profile")
        assert r.status_code == 401
        assert r.json()["code"] == "AUTH_REQUIRED"

        r = client.get("/api/v1/user/profile", headers={"Authorization": "Bearer garbage"})
        assert r.status_code == 401
        assert r.json()["code"] == "INVALID_TOKEN"

    def test_profile_update_and_password_change(self, client):
        _, headers = signup(client, "Alice", "alice@example.com")

        r = client.put("/api/v1/user/profile", json={"firstName": "Alicia"}, headers=headers)
        assert r.status_code == 200
        assert r.json()["user"]["first_name"] == "Alicia"

        r = client.post("/api/v1/user/change-password", json={
            "currentPassword": "secret123", "newPassword": "better456"
        }, headers=headers)
        assert r.status_code == 200

        r = client.post("/api/v1/user/signin", json={"email": "alice@example.com", "password": "better456"})
        assert r.status_code == 200

    def test_deactivated_user_token_refused(self, client, system):
        user, headers = signup(client, "Alice", "alice@example.com")
        system.user_manager.deactivate_user(user["id"])

        r = client.get("/api/v1/user/profile", headers=headers)
        assert r.status_code == 403
        assert r.json()["code"] == "ACCOUNT_INACTIVE"

    def test_bulk_search_excludes_caller(self, client):
        _, headers = signup(client, "Alice", "alice@example.com")
        bob, _ = signup(client, "Bob", "bob@example.com")

        r = client.get("/api/v1/user/bulk", params={"filter": ""}, headers=headers)
        assert r.status_code == 200
        assert [u["id"] for u in r.json()["users"]] == [bob["id"]]
        assert "email" not in r.json()["users"][0]


class TestAccountEndpoints:

    def test_add_money_and_balance(self, client):
        _, headers = signup(client, "Alice", "alice@example.com")

        r = client.post("/api/v1/account/add-money", json={"amount": 2500}, headers=headers)
        assert r.status_code == 200
        assert r.json()["new_balance"] == "2500.00"

        r = client.get("/api/v1/account/balance", headers=headers)
        assert r.json()["balance"] == "2500.00"
        assert r.json()["formatted"] == "₹2,500.00"

    def test_transfer_flow(self, client, system):
        alice, alice_headers = signup(client, "Alice", "alice@example.com")
        bob, bob_headers = signup(client, "Bob", "bob@example.com")
        fund(system, alice["id"], "1000.00")

        r = client.post("/api/v1/account/transfer", json={
            "toQuickpeId": bob["quickpe_id"], "amount": "250.00", "description": "Lunch"
        }, headers=alice_headers)
        assert r.status_code == 200, r.text
        assert r.json()["new_balance"] == "750.00"
        transaction_id = r.json()["transaction_id"]

        r = client.get("/api/v1/account/balance", headers=bob_headers)
        assert r.json()["balance"] == "250.00"

        r = client.get("/api/v1/account/transactions", params={"type": "debit"}, headers=alice_headers)
        body = r.json()
        assert body["pagination"]["total"] == 1
        assert body["transactions"][0]["transaction_id"] == transaction_id

        r = client.get(f"/api/v1/account/transactions/{transaction_id}", headers=alice_headers)
        assert r.status_code == 200
        r = client.get(f"/api/v1/account/transactions/{transaction_id}", headers=bob_headers)
        assert r.status_code == 404

    def test_transfer_insufficient_balance(self, client, system):
        _, alice_headers = signup(client, "Alice", "alice@example.com")
        bob, _ = signup(client, "Bob", "bob@example.com")

        r = client.post("/api/v1/account/transfer", json={
            "to": bob["id"], "amount": "10"
        }, headers=alice_headers)
        assert r.status_code == 400
        assert r.json()["code"] == "INSUFFICIENT_BALANCE"
        assert r.json()["current_balance"] == "0.00"

    def test_transfer_invalid_amount(self, client):
        _, headers = signup(client, "Alice", "alice@example.com")
        bob, _ = signup(client, "Bob", "bob@example.com")

        r = client.post("/api/v1/account/transfer", json={"to": bob["id"], "amount": "abc"}, headers=headers)
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_AMOUNT"

    @pytest.mark.parametrize("amount", ["1e30", "9" * 29])
    def test_oversized_amount_is_a_validation_error(self, client, amount):
        _, headers = signup(client, "Alice", "alice@example.com")
        bob, _ = signup(client, "Bob", "bob@example.com")

        r = client.post("/api/v1/account/add-money", json={"amount": amount}, headers=headers)
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_AMOUNT"

        r = client.post("/api/v1/account/transfer", json={"to": bob["id"], "amount": amount}, headers=headers)
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_AMOUNT"

        r = client.get(
            f"/api/v1/money-requests/daily-limit/{bob['quickpe_id']}",
            params={"amount": amount}, headers=headers
        )
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_AMOUNT"

    def test_stats_and_statement(self, client):
        _, headers = signup(client, "Alice", "alice@example.com")
        client.post("/api/v1/account/add-money", json={"amount": "100"}, headers=headers)

        r = client.get("/api/v1/account/stats", params={"time_range": "week"}, headers=headers)
        assert r.json()["stats"]["total_received"] == "100.00"

        r = client.get("/api/v1/account/statement", headers=headers)
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        rows = list(csv.DictReader(io.StringIO(r.text)))
        assert rows[0]["amount"] == "100.00"


class TestMoneyRequestEndpoints:

    def test_request_and_approve(self, client, system):
        alice, alice_headers = signup(client, "Alice", "alice@example.com")
        bob, bob_headers = signup(client, "Bob", "bob@example.com")
        fund(system, bob["id"], "5000.00")

        r = client.post("/api/v1/money-requests/create", json={
            "toQuickpeId": bob["quickpe_id"], "amount": 1200, "description": "Trip"
        }, headers=alice_headers)
        assert r.status_code == 201, r.text
        request_id = r.json()["request"]["request_id"]

        r = client.get("/api/v1/money-requests/received", headers=bob_headers)
        assert [req["request_id"] for req in r.json()["requests"]] == [request_id]

        r = client.post(f"/api/v1/money-requests/{request_id}/approve", headers=bob_headers)
        assert r.status_code == 200, r.text
        assert r.json()["request"]["status"] == "approved"
        assert r.json()["new_balance"] == "3800.00"

        r = client.post(f"/api/v1/money-requests/{request_id}/approve", headers=bob_headers)
        assert r.status_code == 400
        assert r.json()["code"] == "ALREADY_RESPONDED"

        r = client.get("/api/v1/account/balance", headers=alice_headers)
        assert r.json()["balance"] == "1200.00"

    def test_reject_without_body(self, client):
        _, alice_headers = signup(client, "Alice", "alice@example.com")
        bob, bob_headers = signup(client, "Bob", "bob@example.com")

        r = client.post("/api/v1/money-requests/create", json={
            "toQuickpeId": bob["quickpe_id"], "amount": "10"
        }, headers=alice_headers)
        request_id = r.json()["request"]["request_id"]

        r = client.post(f"/api/v1/money-requests/{request_id}/reject", headers=bob_headers)
        assert r.status_code == 200
        assert r.json()["request"]["rejection_reason"] == "No reason provided"

    def test_requester_cannot_approve(self, client):
        _, alice_headers = signup(client, "Alice", "alice@example.com")
        bob, _ = signup(client, "Bob", "bob@example.com")

        r = client.post("/api/v1/money-requests/create", json={
            "toQuickpeId": bob["quickpe_id"], "amount": "10"
        }, headers=alice_headers)
        request_id = r.json()["request"]["request_id"]

        r = client.post(f"/api/v1/money-requests/{request_id}/approve", headers=alice_headers)
        assert r.status_code == 403

        r = client.post(f"/api/v1/money-requests/{request_id}/cancel", headers=alice_headers)
        assert r.json()["request"]["status"] == "cancelled"

    def test_daily_limit_endpoint(self, client):
        _, alice_headers = signup(client, "Alice", "alice@example.com")
        bob, _ = signup(client, "Bob", "bob@example.com")

        r = client.get(f"/api/v1/money-requests/daily-limit/{bob['quickpe_id']}", headers=alice_headers)
        assert r.status_code == 200
        assert r.json()["remaining"] == "80000.00"
        assert r.json()["allowed"] is True


class TestNotificationAndAuditEndpoints:

    def test_notifications(self, client):
        _, headers = signup(client, "Alice", "alice@example.com")
        client.post("/api/v1/account/add-money", json={"amount": "100"}, headers=headers)

        r = client.get("/api/v1/notifications", headers=headers)
        notifications = r.json()["notifications"]
        assert notifications[0]["type"] == "MONEY_ADDED"
        assert r.json()["unread_count"] == 1

        r = client.put(f"/api/v1/notifications/{notifications[0]['id']}/read", headers=headers)
        assert r.json()["notification"]["read"] is True

        r = client.get("/api/v1/notifications/unread-count", headers=headers)
        assert r.json()["count"] == 0

        r = client.delete(f"/api/v1/notifications/{notifications[0]['id']}", headers=headers)
        assert r.status_code == 200

    def test_audit_log(self, client):
        _, headers = signup(client, "Alice", "alice@example.com")
        client.post("/api/v1/account/add-money", json={"amount": "100"}, headers=headers)

        r = client.get("/api/v1/audit", headers=headers)
        actions = [log["action"] for log in r.json()["logs"]]
        assert actions[0] == "money_added"
        assert "user_created" in actions

        r = client.get("/api/v1/audit", params={"action": "money_added"}, headers=headers)
        assert r.json()["pagination"]["total"] == 1

    def test_integrity_requires_admin(self, client, system):
        _, headers = signup(client, "Alice", "alice@example.com")
        r = client.get("/api/v1/audit/integrity", headers=headers)
        assert r.status_code == 403

        admin = system.user_manager.create_user(
            "Root", "Admin", "admin@example.com", "secret123", role=UserRole.ADMIN
        )
        admin_headers = {"Authorization": f"Bearer {create_access_token(admin.id, system.config)}"}
        r = client.get("/api/v1/audit/integrity", headers=admin_headers)
        assert r.status_code == 200
        assert r.json()["valid"] is True

    def test_analytics_summary(self, client):
        _, headers = signup(client, "Alice", "alice@example.com")
        client.post("/api/v1/account/add-money", json={"amount": "100"}, headers=headers)

        r = client.get("/api/v1/analytics/summary", params={"period": "week"}, headers=headers)
        assert r.status_code == 200
        assert r.json()["summary"]["total_income"] == "100.00"

        r = client.get("/api/v1/analytics/summary", params={"period": "decade"}, headers=headers)
        assert r.status_code == 400


class TestWalletSystemConfig:

    def test_audit_logging_can_be_disabled(self):
        config = WalletConfig(database_url="memory://", jwt_secret="test-secret", enable_audit_logging=False)
        system = WalletSystem(config=config, storage=InMemoryStorage())

        system.user_manager.create_user("Alice", "Sharma", "alice@example.com", "secret123")
        system.user_manager.create_user("Bob", "Rao", "bob@example.com", "secret123")

        assert system.audit_trail.count_events() == 0
