"""
Error taxonomy of the fulfillment core.

Every error carries a stable ``code``, a human readable ``message`` and a
structured ``details`` mapping. Errors are never recovered inside the core:
raising one aborts the surrounding unit of work and the caller decides how
to present it.
"""
import enum
from typing import Any, Dict, Iterable, Optional, Type, TypeVar

E = TypeVar("E", bound=enum.Enum)


class FulfillmentError(Exception):
    code = "INTERNAL_SERVER_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(FulfillmentError):
    code = "VALIDATION_ERROR"
    http_status = 422


class AuthorizationError(FulfillmentError):
    code = "AUTHORIZATION_ERROR"
    http_status = 403


class NotFound(FulfillmentError):
    code = "NOT_FOUND"
    http_status = 404


class InsufficientStock(FulfillmentError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for product {product_id}",
            {"product_id": product_id, "available": available, "requested": requested},
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class AlreadyExists(FulfillmentError):
    code = "ALREADY_EXISTS"
    http_status = 409


class DatabaseError(FulfillmentError):
    """Wraps an unexpected persistence failure; the original is kept as __cause__."""
    code = "DATABASE_ERROR"
    http_status = 500


def validate_enum(enum_cls: Type[E], value: Any, field: str, allowed: Optional[Iterable[E]] = None) -> E:
    """Coerce ``value`` to ``enum_cls`` or raise ValidationError listing the accepted values."""
    choices = list(allowed) if allowed is not None else list(enum_cls)
    try:
        member = enum_cls(value)
    except ValueError:
        member = None
    if member is None or member not in choices:
        raise ValidationError(
            f"Invalid value for {field}: {value!r}",
            {"field": field, "value": value, "expected": [c.value for c in choices]},
        )
    return member
