"""
Tests for configuration, structured logging and the error envelope
"""

import json
import logging

from quickpe.config import WalletConfig, reload_config
from quickpe.errors import InsufficientFundsError, NotFoundError, WalletError
from quickpe.logging_config import JSONFormatter, TextFormatter, log_action, setup_logging


class TestConfig:

    def test_defaults(self):
        config = WalletConfig()
        assert config.currency == "INR"
        assert config.max_request_amount == "80000.00"
        assert config.request_expiry_hours == 24
        assert config.max_daily_add_money_attempts == 5

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("QUICKPE_API_PORT", "6001")
        monkeypatch.setenv("QUICKPE_MAX_TRANSFER_AMOUNT", "5000.00")
        config = reload_config()
        assert config.api_port == 6001
        assert config.max_transfer_amount == "5000.00"

        monkeypatch.delenv("QUICKPE_API_PORT")
        monkeypatch.delenv("QUICKPE_MAX_TRANSFER_AMOUNT")
        reload_config()


class TestLogging:

    def test_json_formatter_includes_structured_fields(self):
        record = logging.LogRecord("quickpe.test", logging.INFO, __file__, 1, "Transfer completed", (), None)
        record.user_id = "u1"
        record.action = "transfer"

        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Transfer completed"
        assert entry["user_id"] == "u1"
        assert entry["action"] == "transfer"
        assert "resource" not in entry

    def test_log_action_emits_record(self, caplog):
        logger = logging.getLogger("quickpe.test.log_action")
        with caplog.at_level(logging.INFO, logger="quickpe.test.log_action"):
            log_action(logger, "info", "Money added", user_id="u1", action="add_money",
                       extra={"amount": "₹10.00"})

        assert caplog.records[0].action == "add_money"
        assert caplog.records[0].extra == {"amount": "₹10.00"}

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging(level="DEBUG", logger_name="quickpe.test.setup")
        setup_logging(level="DEBUG", logger_name="quickpe.test.setup")
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.DEBUG

    def test_text_formatter_appends_wallet_fields(self):
        record = logging.LogRecord("quickpe.test", logging.WARNING, __file__, 1, "Transfer failed", (), None)
        record.user_id = "u1"
        record.extra = {"amount": "₹600.00"}

        line = TextFormatter().format(record)
        assert "WARNING" in line
        assert "quickpe.test: Transfer failed" in line
        assert line.endswith("user_id=u1 amount=₹600.00")

    def test_setup_logging_text_format(self):
        logger = setup_logging(level="info", logger_name="quickpe.test.text", log_format="text")
        assert isinstance(logger.handlers[0].formatter, TextFormatter)
        assert logger.level == logging.INFO


class TestErrors:

    def test_error_envelope(self):
        error = InsufficientFundsError("Insufficient balance", details={"current_balance": "5.00"})
        assert error.status_code == 400
        assert error.to_response() == {
            "success": False,
            "message": "Insufficient balance",
            "code": "INSUFFICIENT_BALANCE",
            "current_balance": "5.00"
        }

    def test_errors_are_value_errors(self):
        error = NotFoundError("User not found", code="USER_NOT_FOUND")
        assert isinstance(error, WalletError)
        assert isinstance(error, ValueError)
        assert error.status_code == 404
        assert error.code == "USER_NOT_FOUND"
