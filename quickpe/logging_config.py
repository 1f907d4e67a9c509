"""
Structured Logging Configuration Module

Wallet services log through log_action so every line carries the acting
user, the action name and the resource it touched. JSON output is the
default; a key=value text format is available for local development.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Record attributes attached by log_action
WALLET_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def wallet_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Structured wallet fields present on a record"""
    fields = {}
    for name in WALLET_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            fields[name] = value
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line"""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(wallet_fields(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human readable line followed by key=value wallet fields"""

    def __init__(self):
        super().__init__(TEXT_FORMAT)

    def formatMessage(self, record):
        line = super().formatMessage(record)
        fields = wallet_fields(record)
        extra = fields.pop("extra", None) or {}
        fields.update(extra)
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


def setup_logging(level: str = "INFO", logger_name: str = "quickpe",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the application logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the root application logger
        log_format: "json" or "text"
        log_file: Write to this file instead of stderr

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Calling twice must not duplicate output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())

    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False
    return logger


def get_logger(name: str = "quickpe") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log a wallet action with structured fields.

    Args:
        logger: Logger instance
        level: Level name (info, warning, error, ...)
        message: Log message
        user_id: Acting user
        action: Short action name, e.g. "transfer" or "add_money"
        resource: What was acted on, e.g. "money_request:REQ..."
        correlation_id: Request correlation ID
        extra: Additional structured data
    """
    fields = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    logger.log(
        logging.getLevelName(level.upper()),
        message,
        extra={key: value for key, value in fields.items() if value}
    )
