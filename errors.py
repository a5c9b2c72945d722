"""
Error taxonomy for the Bistro API.

Every error carries the HTTP status it is rendered with and a short message.
Extra keyword arguments are kept as ``details`` and merged into the response
body by the exception handler in main.py.
"""

from typing import Any, Dict, Optional


class BistroError(Exception):
    status_code = 500
    message = "internal error"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": True, "message": self.message, **self.details}


class Unauthenticated(BistroError):
    status_code = 401
    message = "unauthorized access"


class Forbidden(BistroError):
    status_code = 403
    message = "forbidden access"


class NotFound(BistroError):
    status_code = 404
    message = "not found"


class InvalidRequest(BistroError):
    status_code = 400
    message = "invalid request"


class StorageError(BistroError):
    status_code = 500
    message = "storage operation failed"


class PartialSettlement(BistroError):
    """Payment was recorded but its cart items were not all removed."""

    status_code = 409
    message = "payment recorded but cart reconciliation failed"


class UpstreamPaymentError(BistroError):
    status_code = 502
    message = "payment provider error"
