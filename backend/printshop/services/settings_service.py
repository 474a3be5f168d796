# Overview: Runtime settings with Flask config fallback (tax rate).

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Setting
from ..validation import to_decimal
from ..errors import ValidationError


TAX_RATE_KEY = "tax_rate"


def get_setting(key: str, default: str | None = None) -> str | None:
    row = db.session.query(Setting).filter_by(key=key).first()
    if row is None or row.value is None:
        return default
    return row.value


def set_setting(key: str, value: str, user_id: int | None = None) -> Setting:
    """Upsert a setting inside the caller's unit of work."""
    row = db.session.query(Setting).filter_by(key=key).first()
    if row is None:
        row = Setting(key=key)
        db.session.add(row)
    row.value = value
    row.updated_by_user_id = user_id
    db.session.flush()
    return row


def get_tax_rate_percent() -> Decimal:
    default = str(current_app.config.get("TAX_RATE_PERCENT", "0"))
    percent = to_decimal(get_setting(TAX_RATE_KEY, default), TAX_RATE_KEY)
    if percent < 0 or percent > 100:
        raise ValidationError("tax_rate must be between 0 and 100", details={"tax_rate": str(percent)})
    return percent


def get_tax_rate() -> Decimal:
    """Tax rate as a fraction (10% -> Decimal('0.1'))."""
    return get_tax_rate_percent() / Decimal(100)


def get_discount_threshold_percent() -> Decimal:
    return to_decimal(current_app.config.get("DISCOUNT_APPROVAL_THRESHOLD_PERCENT", "15"), "threshold")
