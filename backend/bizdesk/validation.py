from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .time_utils import parse_iso_datetime


# Maximum money amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

# 10000 basis points = 100%
MAX_BPS = 10_000

PAYMENT_METHODS = (
    "cash",
    "tng",
    "public_bank",
    "hong_leong",
    "cheque",
    "bank_transfer",
    "other",
)


class ValidationError(ValueError):
    """400-level input problem. Raised before anything is written."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU or active invoice number)."""


def coerce_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion for request and draft values.

    Rejects floats, booleans, decimals in strings and scientific notation so
    that a cents amount can never silently lose precision.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} cannot exceed {maximum}")
    return result


def coerce_cents(value: Any, field: str, *, allow_zero: bool = True) -> int:
    return coerce_int(value, field, minimum=0 if allow_zero else 1, maximum=MAX_AMOUNT_CENTS)


def coerce_bps(value: Any, field: str) -> int:
    return coerce_int(value, field, minimum=0, maximum=MAX_BPS)


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} is required")
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text[:max_length]


def coerce_payment_method(value: Any) -> str:
    if value is None or str(value).strip() == "":
        raise ValidationError("payment_method is required when a payment is recorded")
    method = str(value).strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {value}. Must be one of {list(PAYMENT_METHODS)}")
    return method


def optional_datetime(value: Any, field: str) -> datetime | None:
    """ISO-8601 string (or blank / None) to a UTC-naive datetime."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 string")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} is not a valid ISO-8601 timestamp: {value}")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns a client may set on a model, and which must be present
    when a row is created. Anything outside writable_fields is rejected
    rather than ignored.
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()


def _clean_column_value(column, raw: Any):
    """Coerce one raw JSON value to the column's type and check its limits."""
    if raw is None:
        if not column.nullable:
            raise ValidationError(f"{column.key} cannot be null")
        return None

    column_type = column.type
    if isinstance(column_type, Boolean):
        return raw if isinstance(raw, bool) else bool(raw)
    if isinstance(column_type, Integer):
        return coerce_int(raw, column.key)
    if not isinstance(column_type, (String, Text)):
        return raw

    text = str(raw).strip()
    if not text and not column.nullable:
        raise ValidationError(f"{column.key} cannot be blank")
    max_length = getattr(column_type, "length", None)
    if max_length and len(text) > max_length:
        raise ValidationError(f"{column.key} exceeds max length {max_length}")
    return text


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Turn a JSON object into a dict of column values for model.

    Keys must be in the policy allowlist and be real columns; values are
    coerced from column metadata. partial=True validates only the keys given
    (update); partial=False also enforces required_on_create (create).
    """
    payload = payload if payload is not None else {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(policy.required_on_create - payload.keys())
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    cleaned: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        if key not in columns:
            raise ValidationError(f"Unknown field: {key}")
        cleaned[key] = _clean_column_value(columns[key], raw)
    return cleaned


def enforce_rules_product(patch: dict) -> None:
    """Price and stock-threshold rules not captured by column metadata."""
    for key in ("selling_price_cents", "cost_price_cents"):
        if key in patch and patch[key] is not None:
            price = patch[key]
            if price < 0:
                raise ValidationError(f"{key} must be >= 0")
            if price > MAX_AMOUNT_CENTS:
                raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_CENTS}")

    if "min_stock" in patch and patch["min_stock"] is not None and patch["min_stock"] < 0:
        raise ValidationError("min_stock must be >= 0")
