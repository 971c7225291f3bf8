"""
Domain Exceptions

Every error the order pipeline raises on purpose derives from
``OrderFlowError`` and carries the HTTP status the API maps it to.
Payment declines are not exceptions: they are an expected outcome that
produces a Failed order.
"""

from typing import Optional


class OrderFlowError(Exception):
    """Base class for expected, user-facing pipeline errors."""

    status_code: int = 500
    error: str = "Internal Server Error"

    def __init__(self, detail: str, *, status_code: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"success": False, "error": self.error, "detail": self.detail}


class ValidationFailed(OrderFlowError):
    status_code = 400
    error = "Validation Error"


class Unauthorized(OrderFlowError):
    status_code = 401
    error = "Unauthorized"


class Forbidden(OrderFlowError):
    status_code = 403
    error = "Forbidden"


class NotFound(OrderFlowError):
    status_code = 404
    error = "Not Found"


class InsufficientStock(OrderFlowError):
    """A reservation line could not be satisfied; no order row exists."""

    status_code = 400
    error = "Insufficient Stock"

    def __init__(self, item_name: str):
        super().__init__(f'Insufficient stock for item "{item_name}"')
        self.item_name = item_name


class AlreadyFinal(OrderFlowError):
    status_code = 400
    error = "Already Final"


class ConcurrentUpdate(OrderFlowError):
    status_code = 409
    error = "Conflict"
