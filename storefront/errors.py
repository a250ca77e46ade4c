"""Domain exceptions.

Raised by the service modules when a business rule is violated. Routers
translate them into HTTP responses; nothing here knows about HTTP except the
``kind`` used to pick a status code.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

INPUT = "input"
CONFLICT = "conflict"
NOT_FOUND = "not_found"


class StorefrontError(Exception):
    kind = INPUT
    code = "STOREFRONT_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.details}


# -----------------------------
# Input errors
# -----------------------------


class EmptyOrderError(StorefrontError):
    code = "EMPTY_ORDER"

    def __init__(self) -> None:
        super().__init__("Order must have at least one item", fields=["items"])


class CategoryInUseError(StorefrontError):
    code = "CATEGORY_IN_USE"


class InvalidDiscountError(StorefrontError):
    code = "INVALID_DISCOUNT"


class InvalidStatusError(StorefrontError):
    code = "INVALID_STATUS"

    def __init__(self, status: Any, valid_statuses: List[str]) -> None:
        super().__init__(
            "Invalid status value",
            status=status,
            valid_statuses=list(valid_statuses),
            fields=["status"],
        )
        self.valid_statuses = list(valid_statuses)


# -----------------------------
# Conflict errors
# -----------------------------


class OrderCreationError(StorefrontError):
    """The order could not be placed; ``line_errors`` lists the offending cart lines."""

    kind = CONFLICT
    code = "ORDER_REJECTED"

    def __init__(self, line_errors: List[Dict[str, Any]]) -> None:
        self.line_errors = list(line_errors)
        first = self.line_errors[0] if self.line_errors else {}
        if self.line_errors and all(e.get("code") == "INVALID_QUANTITY" for e in self.line_errors):
            self.kind = INPUT
        super().__init__(
            first.get("message") or "Order could not be placed",
            code=first.get("code") or self.code,
            errors=self.line_errors,
        )


class OrderAlreadyProcessingError(StorefrontError):
    kind = CONFLICT
    code = "ORDER_ALREADY_PROCESSING"

    def __init__(self, order_number: str, status: str) -> None:
        super().__init__("Order already being processed", order_number=order_number, status=status)


class TransitionNotAllowedError(StorefrontError):
    kind = CONFLICT
    code = "TRANSITION_NOT_ALLOWED"

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(
            f"Cannot change status from {from_status} to {to_status}",
            from_status=from_status,
            to_status=to_status,
        )


class DuplicateNameError(StorefrontError):
    kind = CONFLICT
    code = "DUPLICATE_NAME"


class StatusConflictError(StorefrontError):
    """The order changed under us more times than we were willing to retry."""

    kind = CONFLICT
    code = "STATUS_CONFLICT"


# -----------------------------
# Not-found errors
# -----------------------------


class NotFoundError(StorefrontError):
    kind = NOT_FOUND
    code = "NOT_FOUND"


class OrderNotFoundError(NotFoundError):
    code = "ORDER_NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    code = "PRODUCT_NOT_FOUND"


class VariantNotFoundError(NotFoundError):
    code = "VARIANT_NOT_FOUND"


class CategoryNotFoundError(NotFoundError):
    code = "CATEGORY_NOT_FOUND"
