"""
Domain errors raised by the settlement core.

Every error carries a human readable message plus a ``context`` dict with the
ids and numeric values involved, so the API layer can surface them verbatim.
"""
from typing import Any, Dict, Optional


class SettlementError(Exception):
    """Base class for all settlement domain errors"""

    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "error": type(self).__name__,
            "context": {key: str(value) for key, value in self.context.items()},
        }


class ValidationError(SettlementError):
    """Malformed or out-of-range input"""

    status_code = 400


class NotFoundError(SettlementError):
    status_code = 404


class AuthorizationError(SettlementError):
    status_code = 403


class InvalidTransitionError(SettlementError):
    """Requested status change is not allowed from the current status"""

    status_code = 409

    def __init__(self, current_status: str, requested_status: str, message: Optional[str] = None, **context: Any):
        super().__init__(
            message or f"Invalid status transition from {current_status} to {requested_status}",
            current_status=current_status,
            requested_status=requested_status,
            **context
        )
        self.current_status = current_status
        self.requested_status = requested_status


class ConcurrencyConflictError(SettlementError):
    """An optimistic update lost a race; the caller must retry with fresh data"""

    status_code = 409


class StoreError(SettlementError):
    """Infrastructure failure in the ledger store"""

    status_code = 503
