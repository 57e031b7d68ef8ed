from __future__ import annotations
from datetime import datetime
from shopledger.time_utils import parse_iso_datetime

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .numeric import QTY_PLACES, fits_scale, to_decimal


# Upper bound for money and quantities; NUMERIC(14, x) overflows beyond this
MAX_AMOUNT = Decimal("99999999999")

LOSS_REASONS = ("SPOILAGE", "MISHANDLING")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., insufficient stock)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(LookupError):
    """404-level missing record."""


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


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Decimals (quantities, money). Checked before Integer: NUMERIC is not an Integer.
    if isinstance(coltype, Numeric):
        try:
            d = to_decimal(value)
        except ValueError:
            raise ValidationError(f"{col.key} must be a number")
        if coltype.scale is not None and not fits_scale(d, coltype.scale):
            raise ValidationError(f"{col.key} allows at most {coltype.scale} decimal places")
        return d

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or not stripped.lstrip("-").isdigit():
                raise ValidationError(f"{col.key} must be an integer")
            return int(stripped)
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Strings / Text
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

        # Blank string check for required text fields
        if isinstance(col.type, (String, Text)) and k in required:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _require_positive(patch: dict, field: str) -> None:
    value = patch.get(field)
    if value is None or value <= 0:
        raise ValidationError(f"{field} must be > 0")
    if value > MAX_AMOUNT:
        raise ValidationError(f"{field} is too large")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "reorder_level" in patch and patch["reorder_level"] is not None:
        if patch["reorder_level"] < 0:
            raise ValidationError("reorder_level must be >= 0")
    if "unit" in patch and not patch["unit"]:
        patch["unit"] = "pcs"


def enforce_rules_movement(patch: dict) -> None:
    # type must be IN or OUT (case-insensitive on input), qty strictly positive
    movement_type = (patch.get("type") or "").upper()
    if movement_type not in ("IN", "OUT"):
        raise ValidationError("type must be IN or OUT")
    patch["type"] = movement_type
    _require_positive(patch, "qty")


def enforce_rules_money(patch: dict) -> None:
    # Sales and expenses: amount > 0 and a non-empty description
    if "amount" in patch:
        _require_positive(patch, "amount")
    if "description" in patch and not patch["description"]:
        raise ValidationError("description cannot be blank")


def parse_initial_qty(raw) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0")
    try:
        qty = to_decimal(raw)
    except ValueError:
        raise ValidationError("initial_qty must be a number")
    if not fits_scale(qty, QTY_PLACES):
        raise ValidationError(f"initial_qty allows at most {QTY_PLACES} decimal places")
    if qty < 0:
        raise ValidationError("initial_qty must be >= 0")
    if qty > MAX_AMOUNT:
        raise ValidationError("initial_qty is too large")
    return qty


def parse_loss_reason(raw) -> str:
    reason = str(raw or "").strip().upper()
    if reason not in LOSS_REASONS:
        raise ValidationError(f"reason must be one of {', '.join(LOSS_REASONS)}")
    return reason


def parse_sale_items(raw) -> list[tuple[int, Decimal]]:
    """
    Normalize a sale's `items` list into (product_id, qty_used) pairs.

    Absent/null items mean "no stock consumed".
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("items must be a list")

    parsed: list[tuple[int, Decimal]] = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValidationError("Invalid item in items")

        pid = entry.get("product_id")
        if isinstance(pid, str) and pid.strip().isdigit():
            pid = int(pid.strip())
        if not isinstance(pid, int) or isinstance(pid, bool) or pid <= 0:
            raise ValidationError("Invalid product_id in items")

        try:
            qty = to_decimal(entry.get("qty_used"))
        except ValueError:
            raise ValidationError("qty_used must be > 0 in items")
        if not fits_scale(qty, QTY_PLACES):
            raise ValidationError(f"qty_used allows at most {QTY_PLACES} decimal places in items")
        if qty <= 0:
            raise ValidationError("qty_used must be > 0 in items")
        if qty > MAX_AMOUNT:
            raise ValidationError("qty_used is too large in items")

        parsed.append((pid, qty))
    return parsed
