from __future__ import annotations
from decimal import Decimal
from adega.money_utils import to_money

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: R$ 99,999,999.99 (Numeric(10, 2))
MAX_MONEY = 99_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(LookupError):
    """404-level: referenced id does not resolve."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate courier WhatsApp)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: JSON keys clients are allowed to set (security boundary)
    - required_on_create: JSON keys required for POST
    - field_map: JSON key (camelCase) -> model attribute (snake_case)
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    field_map: dict[str, str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any, label: str):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{label} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{label} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{label} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{label} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{label} must be an integer, not a decimal")
        raise ValidationError(f"{label} must be an integer")

    # Money (Numeric columns): accept numbers or numeric strings, 2 places
    if isinstance(coltype, Numeric):
        return require_money(value, label)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, (String, Text)):
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
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by MODEL attribute names.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    field_map = policy.field_map or {}
    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if field_map.get(k, k) not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        attr = field_map.get(k, k)
        col = cols[attr]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[attr] = None
            continue

        val = _coerce_value(col, raw, k)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[attr] = val

    return patch


def require_positive_int(value: Any, label: str) -> int:
    """Quantities: strict positive integers (no bools, floats or blanks)."""
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a positive integer")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.isdigit():
            raise ValidationError(f"{label} must be a positive integer")
        value = int(stripped)
    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{label} must be a positive integer")
    return value


def require_money(value: Any, label: str) -> Decimal:
    try:
        dec = to_money(value)
    except ValueError:
        raise ValidationError(f"{label} must be a number")
    if dec < 0:
        raise ValidationError(f"{label} must be >= 0")
    if dec > MAX_MONEY:
        raise ValidationError(f"{label} cannot exceed {MAX_MONEY}")
    return dec


def require_optional_str(value: Any, label: str, max_length: int | None = None) -> str | None:
    """Free-text and id fields: a string or null. Blank strings become None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{label} exceeds max length {max_length}")
    return value or None


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "stock" in patch and patch["stock"] is not None and patch["stock"] < 0:
        raise ValidationError("stock must be >= 0")
    if "profit_margin" in patch and patch["profit_margin"] is not None:
        if patch["profit_margin"] > 999:
            raise ValidationError("profitMargin cannot exceed 999")


def enforce_rules_courier(patch: dict) -> None:
    whatsapp = patch.get("whatsapp")
    if whatsapp is not None:
        digits = "".join(ch for ch in whatsapp if ch.isdigit())
        if len(digits) < 8:
            raise ValidationError("whatsapp must contain at least 8 digits")
