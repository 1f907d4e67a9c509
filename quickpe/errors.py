"""
Wallet Error Hierarchy

Every business-rule failure raised by the services is a WalletError carrying a
stable machine-readable code and the HTTP status the API should answer with.
WalletError derives from ValueError so callers that only expect ValueError keep
working.
"""

from typing import Any, Dict, Optional


class WalletError(ValueError):
    """Base class for all wallet domain errors"""

    status_code = 400
    default_code = "WALLET_ERROR"

    def __init__(self, message: str, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_response(self) -> Dict[str, Any]:
        """Render the error as the API error envelope"""
        body = {
            "success": False,
            "message": self.message,
            "code": self.code,
        }
        for key, value in self.details.items():
            body.setdefault(key, value)
        return body


class ValidationError(WalletError):
    """Malformed or out-of-range input"""
    default_code = "VALIDATION_ERROR"


class NotFoundError(WalletError):
    status_code = 404
    default_code = "NOT_FOUND"


class AuthenticationError(WalletError):
    status_code = 401
    default_code = "AUTHENTICATION_FAILED"


class PermissionDeniedError(WalletError):
    status_code = 403
    default_code = "FORBIDDEN"


class InactiveAccountError(WalletError):
    status_code = 403
    default_code = "ACCOUNT_INACTIVE"


class InsufficientFundsError(WalletError):
    default_code = "INSUFFICIENT_BALANCE"


class LimitExceededError(WalletError):
    default_code = "LIMIT_EXCEEDED"


class InvalidStateError(WalletError):
    """Operation not allowed in the entity's current state"""
    default_code = "INVALID_STATE"


class ConflictError(WalletError):
    status_code = 409
    default_code = "CONFLICT"
