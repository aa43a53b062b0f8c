from __future__ import annotations
from datetime import time

from dataclasses import dataclass
from typing import Any, Sequence

from sqlalchemy import Boolean, Integer, String, Text, Time
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .models import PAYMENT_METHODS


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999
MAX_LINE_QUANTITY = 1_000_000


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


@dataclass(frozen=True)
class LineRequest:
    inventory_item_id: int
    quantity: int


@dataclass(frozen=True)
class CustomerInfo:
    name: str | None = None
    phone: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class SaleRequest:
    items: tuple[LineRequest, ...]
    payment_method: str
    customer: CustomerInfo
    device_push_token: str | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    if isinstance(coltype, Time):
        return parse_alert_time(value, key=col.key)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise ValidationError(f"{col.key} must be a string")
        return value.strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_inventory_item(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in ("unit_cost_cents", "selling_price_cents"):
        if key in patch and patch[key] is not None:
            price = patch[key]
            if price < 0:
                raise ValidationError(f"{key} must be >= 0")
            if price > MAX_PRICE_CENTS:
                raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")

    if patch.get("selling_price_cents") == 0:
        raise ValidationError("selling_price_cents must be > 0")

    for key in ("quantity", "minimum_stock"):
        if key in patch and patch[key] is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")

    # Blank barcodes would collide on the unique index
    if patch.get("barcode") == "":
        patch["barcode"] = None


def parse_alert_time(value: Any, *, key: str = "low_stock_alert_time") -> time:
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"{key} must be HH:MM or HH:MM:SS")


def normalize_lines(items: Sequence) -> tuple[LineRequest, ...]:
    """
    Accept LineRequest objects, (item_id, quantity) pairs or
    {"inventory_item_id", "quantity"} dicts. Order is preserved.
    """
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a non-empty list")

    lines: list[LineRequest] = []
    for index, raw in enumerate(items):
        if isinstance(raw, LineRequest):
            item_id, quantity = raw.inventory_item_id, raw.quantity
        elif isinstance(raw, dict):
            if "inventory_item_id" not in raw or "quantity" not in raw:
                raise ValidationError(
                    "Each item needs inventory_item_id and quantity",
                    details={"index": index},
                )
            item_id, quantity = raw["inventory_item_id"], raw["quantity"]
        elif isinstance(raw, (tuple, list)) and len(raw) == 2:
            item_id, quantity = raw
        else:
            raise ValidationError("Malformed sale item", details={"index": index})

        item_id = _coerce_int("inventory_item_id", item_id)
        quantity = _coerce_int("quantity", quantity)
        if item_id <= 0:
            raise ValidationError("inventory_item_id must be positive", details={"index": index})
        if quantity <= 0:
            raise ValidationError(
                "quantity must be greater than zero",
                details={"index": index, "inventory_item_id": item_id},
            )
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(
                f"quantity cannot exceed {MAX_LINE_QUANTITY}",
                details={"index": index, "inventory_item_id": item_id},
            )
        lines.append(LineRequest(inventory_item_id=item_id, quantity=quantity))

    if not lines:
        raise ValidationError("No items provided")
    return tuple(lines)


def validate_payment_method(value: Any) -> str:
    method = (value or "cash")
    if not isinstance(method, str) or method.strip().lower() not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": value},
        )
    return method.strip().lower()


def _optional_str(payload: dict, key: str, max_len: int | None) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    if max_len is not None and len(value) > max_len:
        raise ValidationError(f"{key} exceeds max length {max_len}")
    return value or None


def parse_push_token(payload: dict) -> str:
    token = _optional_str(payload, "push_token", 255)
    if not token:
        raise ValidationError("Push token is required")
    return token


def parse_test_message(payload: dict) -> tuple[str | None, str | None]:
    return _optional_str(payload, "title", 100), _optional_str(payload, "body", 500)


def parse_customer(payload: dict) -> CustomerInfo:
    return CustomerInfo(
        name=_optional_str(payload, "customer_name", 100),
        phone=_optional_str(payload, "customer_phone", 20),
        notes=_optional_str(payload, "notes", None),
    )


SALE_REQUEST_FIELDS = {
    "items", "payment_method", "customer_name", "customer_phone", "notes", "device_push_token",
}


def parse_sale_request(payload: dict, *, for_update: bool = False) -> SaleRequest:
    """
    Validate a sale JSON body before anything touches the database.

    Edits cannot switch the payment method; a credit sale becomes paid only
    through mark-as-paid.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    unknown = sorted(set(payload) - SALE_REQUEST_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    if for_update:
        if "payment_method" in payload:
            raise ValidationError("payment_method cannot be changed on an existing sale")
        payment_method = ""
    else:
        payment_method = validate_payment_method(payload.get("payment_method"))

    return SaleRequest(
        items=normalize_lines(payload.get("items")),
        payment_method=payment_method,
        customer=parse_customer(payload),
        device_push_token=_optional_str(payload, "device_push_token", 255),
    )
