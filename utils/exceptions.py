"""
utils/exceptions.py  –  Error taxonomy shared by the services and the API

Every error carries a stable ``code`` for API clients and the HTTP status
the global handler in app.py answers with.
"""

from typing import Any, Dict, Optional


class DispatchError(Exception):
    code = "dispatch_error"
    status_code = 400
    default_message = "Request could not be completed"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"success": False, "message": self.message, "error": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidTransition(DispatchError):
    code = "invalid_transition"
    status_code = 409
    default_message = "Status transition is not allowed"


class ValidationError(DispatchError):
    code = "validation_error"
    status_code = 422
    default_message = "Invalid or missing field"


class PermissionDenied(DispatchError):
    code = "permission_denied"
    status_code = 403
    default_message = "You do not have permission to perform this action"


class NothingToSettle(DispatchError):
    code = "nothing_to_settle"
    status_code = 409
    default_message = "Driver has no outstanding orders or daily entries"


class ActiveOrdersPresent(DispatchError):
    code = "active_orders_present"
    status_code = 409
    default_message = "Driver still has deliveries in progress"


class NotFound(DispatchError):
    code = "not_found"
    status_code = 404
    default_message = "Record not found"


class StoreUnavailable(DispatchError):
    """Transient infrastructure failure, safe to retry."""

    code = "store_unavailable"
    status_code = 503
    default_message = "Data store is temporarily unavailable"


class ConflictRetryExhausted(DispatchError):
    code = "conflict_retry_exhausted"
    status_code = 409
    default_message = "Record was modified concurrently, please retry"
