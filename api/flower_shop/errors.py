# flower_shop/errors.py
"""
Error taxonomy for the order engine.

Validation and business-rule errors are raised before (or instead of) any
mutation and are turned into structured 4xx responses. Infrastructure errors
surface as 500-class responses with the detail kept in the logs.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional


class ShopError(Exception):
    """Base class for errors that map onto an API response."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def is_client_error(self) -> bool:
        return self.status_code < 500

    def to_response(self, expose_details: bool = False) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message, "code": self.code}
        if self.is_client_error or expose_details:
            if self.details:
                body["details"] = self.details
        return body


# ============================================================================
# Validation
# ============================================================================

class OrderValidationError(ShopError):
    status_code = 400
    code = "VALIDATION_FAILED"

    def __init__(self, errors: List[Dict[str, str]], message: str = "Validation failed"):
        super().__init__(message)
        self.errors = errors

    def to_response(self, expose_details: bool = False) -> Dict[str, Any]:
        body = super().to_response(expose_details)
        body["errors"] = self.errors
        return body


# ============================================================================
# Business rules
# ============================================================================

class ProductNotFoundError(ShopError):
    status_code = 404
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: int, item_index: Optional[int] = None):
        where = f" (item {item_index + 1})" if item_index is not None else ""
        super().__init__(
            f"Product with ID {product_id} not found{where}",
            {"product_id": product_id},
        )
        self.product_id = product_id


class ProductInactiveError(ShopError):
    status_code = 400
    code = "PRODUCT_INACTIVE"

    def __init__(self, product_id: int, product_name: str):
        super().__init__(
            f'Product "{product_name}" is no longer active and cannot be ordered',
            {"product_id": product_id},
        )
        self.product_id = product_id


class InsufficientStockError(ShopError):
    status_code = 400
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: int, product_name: str, available: int, requested: int):
        super().__init__(
            f'Insufficient stock for "{product_name}". Available: {available}, Requested: {requested}',
            {"product_id": product_id, "available": available, "requested": requested},
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class PaymentMethodNotFoundError(ShopError):
    status_code = 404
    code = "PAYMENT_METHOD_NOT_FOUND"

    def __init__(self, payment_method_id: int):
        super().__init__(
            f"Payment method with ID {payment_method_id} not found",
            {"payment_method_id": payment_method_id},
        )
        self.payment_method_id = payment_method_id


class UserNotFoundError(ShopError):
    status_code = 404
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: int):
        super().__init__(f"User with ID {user_id} not found", {"user_id": user_id})
        self.user_id = user_id


class OrderNotFoundError(ShopError):
    status_code = 404
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: int):
        super().__init__("Order not found", {"order_id": order_id})
        self.order_id = order_id


class InvalidStatusTransitionError(ShopError):
    status_code = 409
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot change order status from {current} to {requested}",
            {"current_status": current, "requested_status": requested},
        )
        self.current = current
        self.requested = requested


class OrderNotDeletableError(ShopError):
    status_code = 400
    code = "ORDER_NOT_DELETABLE"

    def __init__(self, order_id: int, status: str):
        super().__init__(
            "Cannot delete delivered orders",
            {
                "order_id": order_id,
                "current_status": status,
                "reason": "Delivered orders are kept for record-keeping",
            },
        )


# ============================================================================
# Infrastructure
# ============================================================================

class DataAccessError(ShopError):
    status_code = 500
    code = "DATA_ACCESS_ERROR"

    def __init__(
        self,
        message: str = "Database operation failed",
        table: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        # driver text (SQL, bound parameters) only goes into details,
        # which 500-class responses expose in development only
        details: Dict[str, Any] = {}
        if table:
            details["table"] = table
        if cause is not None:
            details["error"] = str(cause)
        super().__init__(message, details)
        self.table = table


class TransactionTimeoutError(ShopError):
    status_code = 500
    code = "TRANSACTION_TIMEOUT"

    def __init__(self, timeout: float, phase: str = "execution"):
        super().__init__(
            f"Transaction {phase} exceeded {timeout:g}s",
            {"timeout": timeout, "phase": phase},
        )


class OrderNumberConflictError(ShopError):
    status_code = 500
    code = "ORDER_NUMBER_CONFLICT"

    def __init__(self, order_number: str):
        super().__init__(f"Order number {order_number} already exists", {"order_number": order_number})
        self.order_number = order_number


# ============================================================================
# Schema (programming errors, raised immediately)
# ============================================================================

class SchemaError(LookupError):
    pass


class UnknownTableError(SchemaError):
    def __init__(self, table: str, available: List[str]):
        super().__init__(
            f"Table '{table}' is not part of the shop schema. Available tables: {', '.join(available)}"
        )
        self.table = table


class UnknownColumnError(SchemaError):
    def __init__(self, table: str, column: str):
        super().__init__(f"Column '{column}' does not exist on table '{table}'")
        self.table = table
        self.column = column
