"""
Order domain error kinds.

Each error carries the HTTP status the API layer answers with, so the
exception handlers in ``main.py`` stay a single mapping.
"""

from typing import Any, Dict, Optional


class OrderError(Exception):
    """Base class for order lifecycle failures"""

    status_code: int = 400
    code: str = "order_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(OrderError):
    """Empty items, negative price or quantity, notes too long. Never retried."""
    status_code = 400
    code = "validation_error"


class InsufficientStockError(ValidationError):
    code = "insufficient_stock"


class InvalidTransitionError(OrderError):
    """Illegal status move; caller must re-fetch before retrying"""
    status_code = 409
    code = "invalid_transition"

    def __init__(self, dimension: str, current: str, target: str):
        super().__init__(
            f"Cannot move {dimension} from '{current}' to '{target}'",
            {"dimension": dimension, "current": current, "target": target},
        )
        self.current = current
        self.target = target


class ConstraintError(OrderError):
    """Persistence invariant violated (unique payment intent, empty items, ...)"""
    status_code = 409
    code = "constraint_violation"


class ConflictError(OrderError):
    """Concurrent write detected; safe to retry after re-reading"""
    status_code = 409
    code = "conflict"


class NotFoundError(OrderError):
    status_code = 404
    code = "not_found"


class CatalogUnavailableError(OrderError):
    status_code = 503
    code = "catalog_unavailable"


class NotificationError(OrderError):
    """Email delivery failed. Never propagated past the service layer."""
    status_code = 502
    code = "notification_failed"
