from __future__ import annotations
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple
import re

from pydantic import BaseModel, Field, StrictInt, ValidationError, ValidationInfo, field_validator
from pydantic_core import PydanticCustomError

from flower_shop.db_models import OrderStatus
from flower_shop.errors import OrderValidationError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?[\d\s\-()]{10,}$")

# pydantic error type -> API error code
ERROR_CODES = {
    "missing": "REQUIRED_FIELD",
    "required_field": "REQUIRED_FIELD",
    "string_type": "INVALID_TYPE",
    "int_type": "INVALID_TYPE",
    "int_parsing": "INVALID_TYPE",
    "int_from_float": "INVALID_TYPE",
    "list_type": "INVALID_TYPE",
    "model_type": "INVALID_TYPE",
    "dict_type": "INVALID_TYPE",
    "greater_than": "INVALID_VALUE",
    "invalid_value": "INVALID_VALUE",
    "enum": "INVALID_VALUE",
    "invalid_format": "INVALID_FORMAT",
    "date_parsing": "INVALID_FORMAT",
    "date_from_datetime_parsing": "INVALID_FORMAT",
}

FIELD_MESSAGES = {
    ("product_id", "INVALID_TYPE"): "Product ID is required and must be an integer",
    ("product_id", "REQUIRED_FIELD"): "Product ID is required and must be an integer",
    ("quantity", "INVALID_TYPE"): "Quantity must be a positive integer",
    ("quantity", "INVALID_VALUE"): "Quantity must be a positive integer",
    ("quantity", "REQUIRED_FIELD"): "Quantity must be a positive integer",
}


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class OrderItemIn(BaseModel):
    # "3", 2.0 and true are not item ids or quantities
    product_id: StrictInt
    quantity: StrictInt = Field(..., gt=0)


class OrderCreate(BaseModel):
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_city: Optional[str] = None
    delivery_state: Optional[str] = None
    delivery_zip: Optional[str] = None
    delivery_date: Optional[date] = None
    delivery_time_slot: Optional[str] = None
    delivery_notes: Optional[str] = None
    payment_method_id: Optional[int] = None
    user_id: Optional[int] = None
    notes: Optional[str] = None
    items: List[OrderItemIn]

    @field_validator("customer_name", "customer_email", mode="before")
    @classmethod
    def _not_null(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            label = info.field_name.replace("_", " ").capitalize()
            raise PydanticCustomError("required_field", "{label} is required", {"label": label})
        return v

    @field_validator("customer_name")
    @classmethod
    def _name_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise PydanticCustomError("required_field", "Customer name is required and cannot be empty")
        return v

    @field_validator("customer_email")
    @classmethod
    def _email_format(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise PydanticCustomError("required_field", "Customer email is required")
        if not EMAIL_RE.match(v):
            raise PydanticCustomError("invalid_format", "Invalid email format")
        return v

    @field_validator("customer_phone")
    @classmethod
    def _phone_format(cls, v: Optional[str]) -> Optional[str]:
        v = _strip_or_none(v)
        if v is not None and not PHONE_RE.match(v):
            raise PydanticCustomError("invalid_format", "Invalid phone number format")
        return v

    @field_validator(
        "delivery_address", "delivery_city", "delivery_state", "delivery_zip",
        "delivery_time_slot", "delivery_notes", "notes",
    )
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)

    @field_validator("items", mode="before")
    @classmethod
    def _items_required(cls, v: Any) -> Any:
        if v is None or (isinstance(v, list) and not v):
            raise PydanticCustomError("required_field", "Order must contain at least one item")
        return v


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None
    changed_by: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


# ---------------------------------------------------------
# pydantic errors -> [{field, message, code}]
# ---------------------------------------------------------

def _field_path(loc: Tuple[Any, ...]) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


def field_errors(exc: ValidationError) -> List[Dict[str, str]]:
    errors: List[Dict[str, str]] = []
    for err in exc.errors():
        field = _field_path(err["loc"])
        code = ERROR_CODES.get(err["type"], err["type"].upper())
        last = next((p for p in reversed(err["loc"]) if isinstance(p, str)), field)
        message = FIELD_MESSAGES.get((last, code), err["msg"])
        if err["type"] == "missing" and last in ("customer_name", "customer_email"):
            message = f"{last.replace('_', ' ').capitalize()} is required"
        errors.append({"field": field, "message": message, "code": code})
    return errors


def validate_order_payload(payload: Mapping[str, Any]) -> OrderCreate:
    """Parse an order creation payload or raise OrderValidationError."""
    try:
        return OrderCreate.model_validate(payload)
    except ValidationError as e:
        raise OrderValidationError(field_errors(e)) from None


def validate_status_payload(payload: Mapping[str, Any]) -> OrderStatusUpdate:
    try:
        return OrderStatusUpdate.model_validate(payload)
    except ValidationError as e:
        raise OrderValidationError(field_errors(e)) from None
