from __future__ import annotations
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from washbay.time_utils import parse_iso_datetime, parse_iso_date, parse_clock_time

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, String, Text, DateTime, Time
from sqlalchemy.orm import DeclarativeMeta


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate phone number)."""


class AlreadyExists(ConflictError):
    """A row with the same natural key already exists (e.g., customer phone, service name)."""


class NotFoundError(LookupError):
    """404-level: the referenced row does not exist in the caller's tenant."""


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

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "e" in stripped.lower() or "." in stripped:
                raise ValidationError(f"{col.key} must be a plain integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    # Booleans
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

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        try:
            parsed = parse_iso_date(str(value))
        except ValueError:
            raise ValidationError(f"{col.key} must be an ISO-8601 date")
        if parsed is None:
            raise ValidationError(f"{col.key} must be an ISO-8601 date")
        return parsed

    if isinstance(coltype, Time):
        if isinstance(value, time):
            return value
        try:
            parsed = parse_clock_time(str(value))
        except ValueError:
            raise ValidationError(f"{col.key} must be a HH:MM time")
        if parsed is None:
            raise ValidationError(f"{col.key} must be a HH:MM time")
        return parsed

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is (JSON columns are validated by the owning service)
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
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
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

        patch[k] = val

    return patch


def parse_money_cents(value: Any, field: str = "amount") -> int:
    """
    Convert a major-unit amount (300, "300.50", 12.5) into integer cents.

    Rounds half-up to the cent. Rejects booleans, negatives and values above
    MAX_PRICE_CENTS.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return require_cents(cents, field)


def require_cents(value: Any, field: str) -> int:
    """Validate an integer cents amount (>= 0, <= MAX_PRICE_CENTS)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer number of cents")
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    return value


def require_bool(value: Any, field: str) -> bool:
    """Accept only JSON true/false."""
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false")
    return value


def _entry_cents(entry: dict, field_prefix: str) -> int:
    if entry.get("price_cents") is not None:
        return require_cents(entry["price_cents"], f"{field_prefix}.price_cents")
    if entry.get("price") is not None:
        return parse_money_cents(entry["price"], f"{field_prefix}.price")
    raise ValidationError(f"{field_prefix} requires price or price_cents")


def normalize_service_entries(raw: Any) -> list[dict]:
    """
    Normalize a services-on-job list into [{id, name, price_cents, duration_minutes}].

    Element order is preserved; it decides which service's lifecycle applies.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("services must be a list")

    entries = []
    for i, entry in enumerate(raw):
        prefix = f"services[{i}]"
        if not isinstance(entry, dict):
            raise ValidationError(f"{prefix} must be an object")

        name = str(entry.get("name") or "").strip()
        if not name:
            raise ValidationError(f"{prefix}.name is required")

        service_id = entry.get("id")
        if service_id is not None:
            if isinstance(service_id, bool):
                raise ValidationError(f"{prefix}.id must be an integer")
            try:
                service_id = int(service_id)
            except (TypeError, ValueError):
                raise ValidationError(f"{prefix}.id must be an integer")

        duration = entry.get("duration_minutes", entry.get("duration"))
        if duration is not None:
            if isinstance(duration, bool) or not isinstance(duration, int) or duration < 0:
                raise ValidationError(f"{prefix}.duration_minutes must be a non-negative integer")

        entries.append({
            "id": service_id,
            "name": name,
            "price_cents": _entry_cents(entry, prefix),
            "duration_minutes": duration,
        })
    return entries


def normalize_invoice_items(raw: Any) -> list[dict]:
    """Normalize invoice line items into [{name, price_cents, service_id?}]."""
    if not isinstance(raw, list):
        raise ValidationError("items must be a list")

    items = []
    for i, entry in enumerate(raw):
        prefix = f"items[{i}]"
        if not isinstance(entry, dict):
            raise ValidationError(f"{prefix} must be an object")
        name = str(entry.get("name") or "").strip()
        if not name:
            raise ValidationError(f"{prefix}.name is required")
        item = {"name": name, "price_cents": _entry_cents(entry, prefix)}
        if entry.get("service_id") is not None:
            item["service_id"] = entry["service_id"]
        items.append(item)
    return items
