# Overview: Input coercion helpers (money, quantities, dimensions, reasons).

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from .errors import ValidationError


TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")

# Maximum amount: 9,999,999,999.99 (fits Numeric(12, 2))
MAX_AMOUNT = Decimal("9999999999.99")


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """
    Parse a number into an exact Decimal without rounding.

    Floats go through str() so 0.1 stays 0.1. Booleans, NaN and infinities
    are rejected.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={"field": field})
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be a number", details={"field": field, "value": str(value)})
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", details={"field": field})
    return result


def round_money(value: Decimal) -> Decimal:
    """Half-up rounding to cents. Only call at a final figure."""
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def to_money(value: Any, field: str = "amount", *, allow_negative: bool = False) -> Decimal:
    amount = to_decimal(value, field)
    if amount != round_money(amount):
        raise ValidationError(f"{field} cannot have more than 2 decimal places", details={"field": field})
    if not allow_negative and amount < 0:
        raise ValidationError(f"{field} cannot be negative", details={"field": field})
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds maximum allowed", details={"field": field})
    return round_money(amount)


def money_str(value: Decimal | None) -> str | None:
    """JSON-safe representation of a money value."""
    if value is None:
        return None
    return str(round_money(Decimal(value)))


def to_quantity(value: Any, field: str = "quantity") -> int:
    """Quantities are whole units, at least 1."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if isinstance(value, int):
        qty = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        qty = int(value.strip())
    elif isinstance(value, (float, Decimal)):
        number = to_decimal(value, field)
        if number != number.to_integral_value():
            raise ValidationError(f"{field} must be an integer", details={"field": field, "value": str(value)})
        qty = int(number)
    else:
        raise ValidationError(f"{field} must be an integer", details={"field": field, "value": str(value)})
    if qty < 1:
        raise ValidationError(f"{field} must be at least 1", details={"field": field, "value": qty})
    return qty


def require_choice(value: Any, choices: Iterable[str], field: str) -> str:
    allowed = list(choices)
    if value not in allowed:
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {', '.join(allowed)}",
            details={"field": field, "value": value, "allowed": allowed},
        )
    return value


def require_reason(reason: str | None, field: str = "reason") -> str:
    """Reasons/notes that gate an action must contain real text."""
    text = (reason or "").strip()
    if not text:
        raise ValidationError(f"{field} is required", details={"field": field})
    return text


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None
