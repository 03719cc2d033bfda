"""
Application exceptions.

Each exception carries the HTTP status it maps to; the handlers registered in
main.py turn them into the standard ``{"success": false, "message": ...}``
envelope.
"""


class FinanceTrackerError(Exception):
    """Base exception for the finance tracker"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FinanceTrackerError):
    """Missing or malformed input"""

    status_code = 400


class AuthError(FinanceTrackerError):
    """Bad credentials or missing session"""

    status_code = 401


class ConflictError(FinanceTrackerError):
    """Duplicate unique key or a referential-integrity block"""

    status_code = 400


class TokenError(FinanceTrackerError):
    """Password reset token unknown, consumed or expired"""

    status_code = 400


class NotFoundError(FinanceTrackerError):
    """Resource missing or owned by another user"""

    status_code = 404


class DeliveryError(FinanceTrackerError):
    """Notification could not be sent"""

    status_code = 500


class StorageError(FinanceTrackerError):
    """Unexpected persistence failure"""

    status_code = 500
