"""
shared/utils/exceptions.py
Domain error taxonomy. Services raise these; main.py maps them to HTTP.
"""

from typing import Optional


class TrokazzError(Exception):
    """Base class for errors that are safe to show to the caller."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(TrokazzError):
    status_code = 422
    code = "validation_error"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class InsufficientCredits(TrokazzError):
    status_code = 402
    code = "insufficient_credits"

    def __init__(self, balance: int, required: int):
        super().__init__(f"Insufficient credits: balance {balance}, required {required}")
        self.balance = balance
        self.required = required


class NotFound(TrokazzError):
    status_code = 404
    code = "not_found"


class PermissionDenied(TrokazzError):
    status_code = 403
    code = "permission_denied"


class Conflict(TrokazzError):
    status_code = 409
    code = "conflict"


class AlreadyBoosted(Conflict):
    code = "already_boosted"


class InvalidTransition(Conflict):
    code = "invalid_transition"


class RenewalNotAllowed(Conflict):
    code = "renewal_not_allowed"


class ConcurrentModification(Conflict):
    """A compare-and-swap lost the race: the row changed since it was read."""
    code = "concurrent_modification"


class TransientNetworkError(TrokazzError):
    status_code = 503
    code = "transient_network_error"
