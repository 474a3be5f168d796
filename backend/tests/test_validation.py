"""
Input coercion tests.

Verifies:
- Quantities accept whole numbers in any numeric form
- Fractional, non-finite and non-numeric quantities raise ValidationError
- ISO parsing and Z serialization of UTC datetimes
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from printshop.errors import ValidationError
from printshop.time_utils import days_from, parse_iso_datetime, to_utc_z
from printshop.validation import to_money, to_quantity


class TestToQuantity:

    @pytest.mark.parametrize(
        "value,expected",
        [
            (3, 3),
            ("12", 12),
            (" 7 ", 7),
            (5.0, 5),
            (Decimal("250"), 250),
            (Decimal("4.000"), 4),
        ],
    )
    def test_whole_numbers(self, value, expected):
        assert to_quantity(value) == expected

    @pytest.mark.parametrize(
        "value",
        [
            float("nan"),
            float("inf"),
            float("-inf"),
            Decimal("NaN"),
            Decimal("Infinity"),
            2.5,
            Decimal("1.01"),
            "1.5",
            "ten",
            None,
            True,
            [3],
        ],
    )
    def test_rejected(self, value):
        with pytest.raises(ValidationError):
            to_quantity(value)

    @pytest.mark.parametrize("value", [0, -1, "-4", 0.0])
    def test_below_one(self, value):
        with pytest.raises(ValidationError) as exc:
            to_quantity(value)
        assert "at least 1" in str(exc.value)

    def test_field_name_in_details(self):
        with pytest.raises(ValidationError) as exc:
            to_quantity(float("nan"), "copies")
        assert exc.value.details["field"] == "copies"


class TestToMoney:

    def test_rejects_non_finite(self):
        with pytest.raises(ValidationError):
            to_money(float("inf"))

    def test_rejects_sub_cent(self):
        with pytest.raises(ValidationError):
            to_money("1.005")


class TestTimeUtils:

    def test_offsets_normalized_to_utc_naive(self):
        assert parse_iso_datetime("2026-03-01T12:00:00+02:00") == datetime(2026, 3, 1, 10, 0)
        assert parse_iso_datetime("2026-03-01T12:00:00Z") == datetime(2026, 3, 1, 12, 0)
        assert parse_iso_datetime("2026-03-01") == datetime(2026, 3, 1)

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_blank_is_none(self, value):
        assert parse_iso_datetime(value) is None

    def test_malformed_raises_value_error(self):
        with pytest.raises(ValueError):
            parse_iso_datetime("next tuesday")

    def test_serialization(self):
        assert to_utc_z(datetime(2026, 3, 1, 10, 0, 5, 999)) == "2026-03-01T10:00:05Z"
        assert to_utc_z(date(2026, 3, 1)) == "2026-03-01"
        assert to_utc_z(None) is None

    def test_days_from(self):
        assert days_from(datetime(2026, 12, 15), 30) == datetime(2027, 1, 14)
