from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from .errors import ValidationError


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Largest value a db.Integer column holds on every supported backend
MAX_DB_INT = 2**31 - 1

_CENT = Decimal("0.01")


def coerce_int(
    value: Any,
    field: str,
    *,
    minimum: int | None = None,
    maximum: int | None = MAX_DB_INT,
    allow_none: bool = False,
) -> int | None:
    """
    Strict integer coercion for JSON/CLI input.

    Rejects bools, floats, decimals and scientific notation; accepts ints and
    plain digit strings. Values above `maximum` (default: the db.Integer
    range) are rejected.
    """
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")

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
        raise ValidationError(f"{field} must be <= {maximum}")
    return result


def parse_money_cents(value: Any, field: str) -> int:
    """
    Convert a decimal amount ("12.50", 12.5, Decimal) to integer cents.

    Uses Decimal end to end so there is no binary floating-point drift;
    more than two decimal places is rejected rather than rounded away silently.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal amount")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a decimal amount")
    if amount != amount.quantize(_CENT):
        raise ValidationError(f"{field} cannot have more than two decimal places")
    cents = int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))
    if cents < 0:
        raise ValidationError(f"{field} cannot be negative")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed value")
    return cents


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(_CENT)


def require_fields(payload: dict, fields: Iterable[str]) -> None:
    missing = [f for f in fields if payload.get(f) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(sorted(missing))}")


def reject_unknown_fields(payload: dict, allowed: Iterable[str]) -> None:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be an object")
    unknown = set(payload) - set(allowed)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
