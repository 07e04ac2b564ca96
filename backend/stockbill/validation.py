from __future__ import annotations
from datetime import date, datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .time_utils import parse_iso_datetime, parse_iso_date


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Longest installment plan accepted from clients
MAX_INSTALLMENTS = 72

PAYMENT_METHODS = ("CARD", "CASH", "TRANSFER")
TRANSACTION_DIRECTIONS = ("EXPENSE", "INCOME")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, name: str) -> int:
    """
    Strict integer coercion for JSON input.

    Rejects bools, floats, decimals in strings and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer") from None
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def coerce_date(value: Any, name: str) -> date:
    try:
        d = parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date") from None
    if d is None:
        raise ValidationError(f"{name} must be an ISO-8601 date")
    return d


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime") from None
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Calendar dates
    if isinstance(coltype, Date):
        return coerce_date(value, col.key)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
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

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    for key in ("cost_cents", "price_cents"):
        if patch.get(key) is not None:
            if patch[key] < 0:
                raise ValidationError(f"{key} must be >= 0")
            if patch[key] > MAX_PRICE_CENTS:
                raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")

    if patch.get("min_stock") is not None and patch["min_stock"] < 0:
        raise ValidationError("min_stock must be >= 0")


def enforce_rules_stock_replenish(patch: dict) -> None:
    # Restock requires qty > 0 and unit_cost_cents present and >= 0
    if patch.get("quantity") is None or patch["quantity"] <= 0:
        raise ValidationError("quantity must be > 0")

    if patch.get("unit_cost_cents") is None:
        raise ValidationError("unit_cost_cents is required")

    if patch["unit_cost_cents"] < 0:
        raise ValidationError("unit_cost_cents must be >= 0")
    if patch["unit_cost_cents"] > MAX_PRICE_CENTS:
        raise ValidationError(f"unit_cost_cents cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_stock_allocate(patch: dict) -> None:
    if patch.get("quantity") is None or patch["quantity"] <= 0:
        raise ValidationError("quantity must be > 0")


def enforce_rules_card(patch: dict) -> None:
    for key in ("closing_day", "due_day"):
        if key in patch and patch[key] is not None:
            if patch[key] < 1 or patch[key] > 31:
                raise ValidationError(f"{key} must be between 1 and 31")


def enforce_rules_transaction(data: dict) -> None:
    """
    Cross-field rules for transaction registration payloads (already coerced).
    """
    if data["method"] not in PAYMENT_METHODS:
        raise ValidationError(f"method must be one of {', '.join(PAYMENT_METHODS)}")

    if data["direction"] not in TRANSACTION_DIRECTIONS:
        raise ValidationError(f"direction must be one of {', '.join(TRANSACTION_DIRECTIONS)}")

    if data["amount_cents"] <= 0:
        raise ValidationError("amount_cents must be > 0")
    if data["amount_cents"] > MAX_PRICE_CENTS:
        raise ValidationError(f"amount_cents cannot exceed {MAX_PRICE_CENTS}")

    if data["method"] == "CARD" and not data.get("card_id"):
        raise ValidationError("card_id is required for CARD payments")

    count = data.get("installment_count", 1)
    if count < 1 or count > MAX_INSTALLMENTS:
        raise ValidationError(f"installment_count must be between 1 and {MAX_INSTALLMENTS}")
    if count > 1 and data["method"] != "CARD":
        raise ValidationError("installments are only available for CARD payments")

    quantity = data.get("quantity")
    if quantity is not None and quantity < 0:
        raise ValidationError("quantity must be >= 0")

    unit_cost = data.get("unit_cost_cents")
    if unit_cost is not None and unit_cost < 0:
        raise ValidationError("unit_cost_cents must be >= 0")
