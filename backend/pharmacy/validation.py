from __future__ import annotations
from datetime import date, datetime
from pharmacy.time_utils import parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Date, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Maximum on-hand quantity for a single medicine
MAX_QUANTITY = 10_000_000

MAX_ACTOR_ID_LENGTH = 128


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for create
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    # Calendar dates (accept "YYYY-MM-DD")
    if isinstance(coltype, Date):
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                parsed = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date (YYYY-MM-DD)")
            return parsed
        raise ValidationError(f"{col.key} must be a date")

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
    Validates + normalizes incoming fields against:
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
        raise ValidationError("Invalid payload")

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


def enforce_rules_medicine(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "quantity" in patch:
        quantity = patch["quantity"]
        if quantity < 0:
            raise ValidationError("quantity must be >= 0")
        if quantity > MAX_QUANTITY:
            raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}")

    if "price_cents" in patch:
        price = patch["price_cents"]
        if price < 0:
            raise ValidationError("price must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price cannot exceed {MAX_PRICE_CENTS / 100:,.2f}")


def require_actor_id(actor_id: Any) -> str:
    """Actor ids are opaque strings issued elsewhere; only presence and length are checked."""
    if not isinstance(actor_id, str) or not actor_id.strip():
        raise ValidationError("actor_id is required")
    actor_id = actor_id.strip()
    if len(actor_id) > MAX_ACTOR_ID_LENGTH:
        raise ValidationError(f"actor_id exceeds max length {MAX_ACTOR_ID_LENGTH}")
    return actor_id
