"""
Error taxonomy for the marketplace.

Routers and domain helpers raise these; the handlers registered in main.py
render them as {"error": {"code", "message", "details"}} with the status
code carried by each class.
"""
from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Base class for all expected, user-facing failures."""
    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "An internal server error occurred"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}


class NotAuthenticated(MarketplaceError):
    status_code = 401
    code = "NOT_AUTHENTICATED"
    default_message = "Authentication required"


class NotAuthorized(MarketplaceError):
    """Role mismatch or acting on somebody else's data."""
    status_code = 403
    code = "NOT_AUTHORIZED"
    default_message = "User not authorized to perform this action"


class ValidationFailed(MarketplaceError):
    status_code = 422
    code = "VALIDATION_FAILED"
    default_message = "Request validation failed"


class NotFound(MarketplaceError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class SlotTaken(MarketplaceError):
    """The requested interval overlaps an active booking of the tutor."""
    status_code = 409
    code = "SLOT_TAKEN"
    default_message = "This time slot is no longer available. Please choose another time."


class InvalidTransition(MarketplaceError):
    status_code = 409
    code = "INVALID_TRANSITION"
    default_message = "Booking cannot move to the requested status"


class DuplicateEntry(MarketplaceError):
    status_code = 409
    code = "DUPLICATE_ENTRY"
    default_message = "Entry already exists"


class RemoteCallFailed(MarketplaceError):
    """The data store or cache failed; nothing is retried automatically."""
    status_code = 503
    code = "REMOTE_CALL_FAILED"
    default_message = "A backend service is unavailable, please try again"
