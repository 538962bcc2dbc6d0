"""
Request payload validation for products, stock movements and sales.

Routes describe what a client may send with a ModelValidationPolicy and
let the model's column metadata drive type coercion, nullability and
length checks. Rules the columns cannot express (price ranges, movement
direction) live in the enforce_rules_* functions below.

Every failure raises posledger.errors.ValidationError so the route can
hand it straight to ActionResult.from_error().
"""

from __future__ import annotations
from datetime import datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# Maximum price: $9,999,999.99 (999,999,999 cents)
# Applies to product prices and sale line unit prices
MAX_PRICE_CENTS = 999_999_999


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    What a client may send for one model:
    - writable_fields: allowlist; current_stock is never in it
    - required_on_create: fields required when partial=False
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    return {c.key: c for c in model.__mapper__.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Ids, cents and quantities. JSON floats and "1e3"-style strings are
    # rejected rather than truncated; a leading minus is kept for signed
    # ADJUSTMENT quantities.
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an integer")

    text = value.strip()
    if "e" in text.lower():
        raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
    if "." in text:
        raise ValidationError(f"{key} must be an integer (no decimals)")
    try:
        return int(text)
    except ValueError:
        raise ValidationError(f"{key} must be an integer")


def _coerce_datetime(key: str, value: Any) -> datetime:
    # sale_date / due_date arrive as ISO-8601 strings, normalized to UTC
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a datetime")
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    return parsed


def _coerce_value(col, value: Any):
    if isinstance(col.type, Integer):
        return _coerce_int(col.key, value)
    if isinstance(col.type, DateTime):
        return _coerce_datetime(col.key, value)
    if isinstance(col.type, (String, Text)):
        return str(value).strip()
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validate and normalize a JSON object for `model`.

    partial=False is create semantics (required_on_create enforced);
    partial=True validates only the keys present. Returns a dict holding
    only allowlisted, coerced fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in (policy.required_on_create or set()) if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Allowlist first, so a client probing current_stock learns nothing else
    for key in payload:
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        if key not in cols:
            raise ValidationError(f"Unknown field: {key}")

    cleaned: dict = {}
    for key, raw in payload.items():
        col = cols[key]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            cleaned[key] = None
            continue

        value = _coerce_value(col, raw)

        if isinstance(value, str):
            if value == "" and not col.nullable:
                raise ValidationError(f"{key} cannot be blank")
            # Max length for String(n)
            length = getattr(col.type, "length", None)
            if length and len(value) > length:
                raise ValidationError(f"{key} exceeds max length {length}")

        cleaned[key] = value

    return cleaned


def validate_payload_list(
    *,
    model: DeclarativeMeta,
    payload,
    policy: ModelValidationPolicy,
    field: str,
) -> list[dict]:
    """validate_payload() for each element of a JSON array field (sale items, payments)."""
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ValidationError(f"{field} must be a list")

    cleaned = []
    for index, entry in enumerate(payload):
        try:
            cleaned.append(validate_payload(model=model, payload=entry, policy=policy, partial=False))
        except ValidationError as e:
            raise ValidationError(f"{field}[{index}]: {e.message}")
    return cleaned


def enforce_rules_product(patch: dict) -> None:
    """Price range and min_stock checks for product create/update."""
    for key in ("sale_price_cents", "cost_price_cents"):
        price = patch.get(key)
        if price is None:
            continue
        if price < 0:
            raise ValidationError(f"{key} must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")

    if (patch.get("min_stock") or 0) < 0:
        raise ValidationError("min_stock must be >= 0")


def enforce_rules_stock_movement(patch: dict) -> None:
    # IN/OUT carry direction in the type, so quantity > 0;
    # ADJUSTMENT is a signed non-zero delta
    movement_type = patch.get("type")
    quantity = patch.get("quantity")

    if movement_type in ("IN", "OUT") and (quantity is None or quantity <= 0):
        raise ValidationError(f"quantity must be > 0 for {movement_type}")

    if movement_type == "ADJUSTMENT" and not quantity:
        raise ValidationError("quantity must be non-zero for ADJUSTMENT")
