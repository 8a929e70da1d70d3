"""
Reorder engine error taxonomy.

Raised by the forecasting and reorder services; the API layer maps each class
to an HTTP status in api/main.py.
"""


class ReorderError(Exception):
    """Base class for caller-visible reorder engine errors."""

    status_code = 400
    code = "reorder_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ReorderError):
    """Bad scope, action, or policy parameters. Caller-fixable."""

    status_code = 422
    code = "validation_error"


class NotFoundError(ReorderError):
    """Unknown product, supplier, category, suggestion, policy, or job."""

    status_code = 404
    code = "not_found"


class ConflictError(ReorderError):
    """Action attempted on a suggestion that is no longer pending."""

    status_code = 409
    code = "conflict"
