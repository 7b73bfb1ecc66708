"""Error taxonomy shared by the lifecycle, transfer and sponsorship services."""

from typing import Optional


class OriaError(Exception):
    """Base class. ``code`` is a stable machine-readable reason."""

    code = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def __str__(self) -> str:
        return self.message


class ValidationError(OriaError):
    code = "validation_error"


class NotFoundError(OriaError):
    code = "not_found"


class OwnershipError(OriaError):
    code = "not_owner"


class StateConflictError(OriaError):
    code = "invalid_status"


class RemoteTransientError(OriaError):
    """Network failure or a known propagation race. Retried before it surfaces."""

    code = "remote_transient"


class RemoteRejectedError(OriaError):
    """The ledger refused the request or answered with an unusable payload."""

    code = "remote_rejected"


class BudgetExceededError(OriaError):
    """Sponsorship denied. Never fails the user's own operation."""

    code = "budget_exceeded"
