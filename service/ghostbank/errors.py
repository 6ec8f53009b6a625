"""
Error taxonomy shared by the login and deposit flows.

"Chat not found yet" is not an error: BotVerificationService.locate_chat_by_handle
returns None and the login flow keeps polling.
"""

from typing import Optional


class GhostBankError(Exception):
    """Base error with a user-facing message."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConnectivityError(GhostBankError):
    """Every relay strategy failed at the transport level."""

    def __init__(self, message: str = "Connection failed", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ServiceUnavailable(GhostBankError):
    def __init__(self, message: str = "Authentication service is unavailable right now"):
        super().__init__(message)


class TokenInvalid(GhostBankError):
    def __init__(self, message: str = "Authorization failed: invalid API keys (x-public-key / x-secret-key)"):
        super().__init__(message)


class GatewayError(GhostBankError):
    def __init__(self, message: str = "Unknown payment gateway error"):
        super().__init__(message)


class ValidationError(GhostBankError):
    pass


class InsufficientFunds(ValidationError):
    def __init__(self, total_due):
        super().__init__(f"Insufficient balance. You need R$ {total_due:.2f}")
        self.total_due = total_due


class OtpExpired(ValidationError):
    def __init__(self, message: str = "Code expired. Request a new one."):
        super().__init__(message)


class PersistenceError(GhostBankError):
    pass


class NotAuthenticated(GhostBankError):
    def __init__(self, message: str = "No authenticated user"):
        super().__init__(message)
