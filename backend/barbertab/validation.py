# Overview: Request validation helpers; strict integer cents, quantities, ISO days and column-aware payload checks.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from barbertab.errors import ValidationError
from barbertab.time_utils import parse_iso_date


# Upper bound for a single line quantity
MAX_QUANTITY = 10_000

# BIGINT column range
MAX_DISCOUNT_CENTS = 2**63 - 1


@dataclass(frozen=True)
class ModelValidationPolicy:
    """Which model columns a JSON body may set, and which it must carry on create."""
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def coerce_int(name: str, value: Any) -> int:
    """
    Strict integer coercion for JSON input.

    Rejects booleans, floats, decimals and scientific notation so that money
    (always cents) and ids can never be silently truncated.
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
            raise ValidationError(f"{name} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def _normalize(column, value: Any):
    """Coerce one JSON value to what the column stores."""
    kind = column.type
    if isinstance(kind, Integer):
        return coerce_int(column.key, value)
    if isinstance(kind, Boolean):
        if not isinstance(value, bool):
            raise ValidationError(f"{column.key} must be true or false")
        return value
    if isinstance(kind, (String, Text)):
        text = str(value).strip()
        if not text and not column.nullable:
            raise ValidationError(f"{column.key} cannot be blank")
        limit = getattr(kind, "length", None)
        if limit and len(text) > limit:
            raise ValidationError(f"{column.key} exceeds max length {limit}")
        return text
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict | None,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Check a JSON body against a model's columns and a field allowlist.

    Unknown or non-writable keys are rejected outright. With partial=False
    every field in policy.required_on_create must be present and non-empty.
    Returns only the cleaned, writable fields.
    """
    body = require_fields(payload, *([] if partial else sorted(policy.required_on_create)))
    columns = {c.key: c for c in model.__mapper__.columns}

    cleaned: dict = {}
    for key, raw in body.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        column = columns.get(key)
        if column is None:
            raise ValidationError(f"Unknown field: {key}")
        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{key} cannot be null")
            cleaned[key] = None
        else:
            cleaned[key] = _normalize(column, raw)
    return cleaned


def require_fields(payload: dict | None, *names: str) -> dict:
    """Ensure the JSON body is an object carrying every named key."""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    missing = [n for n in names if payload.get(n) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return payload


def validate_discount(value: Any) -> int:
    discount = coerce_int("discount_cents", value)
    if discount < 0:
        raise ValidationError("discount_cents must be >= 0")
    if discount > MAX_DISCOUNT_CENTS:
        raise ValidationError("discount_cents is out of range")
    return discount


def validate_quantity(value: Any) -> int:
    qty = coerce_int("quantity", value)
    if qty < 1:
        raise ValidationError("quantity must be >= 1")
    if qty > MAX_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}")
    return qty


def validate_day(name: str, value: Any) -> date:
    try:
        day = parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date (YYYY-MM-DD)")
    if day is None:
        raise ValidationError(f"{name} is required")
    return day
