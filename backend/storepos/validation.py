from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Largest value a signed 64-bit INTEGER column holds
MAX_DB_INTEGER = 2**63 - 1

# Units per sale line, and the ceiling for a product's stock counter
MAX_QUANTITY = 1_000_000
MAX_STOCK = 2**31 - 1

# ASCII digits only; the length cap keeps int() clear of its digit limit
_PLAIN_INT = re.compile(r"-?[0-9]{1,19}")

PRICE_FIELDS = (
    "sale_price_cents",
    "discount_price_cents",
    "purchase_price_cents",
    "wholesale_price_cents",
)


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
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def parse_plain_int(value: Any) -> int | None:
    """
    Integers, or strings of ASCII digits with an optional leading minus.

    Returns None for anything else (bools, floats, "--1", "²", "1e3", ...),
    so callers decide which error to raise.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if _PLAIN_INT.fullmatch(stripped):
            return int(stripped)
    return None


def _coerce_value(col, value: Any):
    # Products only carry integer and text columns
    if isinstance(col.type, Integer):
        parsed = parse_plain_int(value)
        if parsed is None:
            if isinstance(value, float):
                raise ValidationError(f"{col.key} must be an integer, not a decimal")
            raise ValidationError(f"{col.key} must be an integer")
        if abs(parsed) > MAX_DB_INTEGER:
            raise ValidationError(f"{col.key} is out of range")
        return parsed

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

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

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

        # Optional text fields: blank means "not set"
        if isinstance(val, str) and val == "" and col.nullable:
            val = None

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in PRICE_FIELDS:
        price = patch.get(key)
        if price is None:
            continue
        if price < 0:
            raise ValidationError(f"{key} must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")

    if "stock" in patch:
        stock = patch["stock"]
        if stock is None or stock < 0:
            raise ValidationError("stock must be an integer >= 0")
        if stock > MAX_STOCK:
            raise ValidationError(f"stock cannot exceed {MAX_STOCK}")
