"""
Unit tests for decimal handling and currency validation.

Verifies:
- Rounding determinism (ROUND_HALF_UP at ledger scale)
- Float prohibition at the input boundary
- ISO 4217 validation
- Amount checks shared by all services
"""

from decimal import Decimal

import pytest

from gst_kernel.db.types import (
    InvalidCurrencyError,
    has_money_scale,
    round_money,
    to_decimal,
    validate_currency,
)
from gst_kernel.exceptions import LedgerValidationError
from gst_kernel.services.base import require_amount


class TestRoundMoney:

    def test_round_half_up(self):
        assert round_money(Decimal("10.555")) == Decimal("10.56")

    def test_round_down(self):
        assert round_money(Decimal("10.554")) == Decimal("10.55")

    def test_negative_half_rounds_away_from_zero(self):
        assert round_money(Decimal("-10.555")) == Decimal("-10.56")

    def test_deterministic(self):
        value = Decimal("123.456789")
        assert len({round_money(value) for _ in range(100)}) == 1


class TestToDecimal:

    def test_string(self):
        assert to_decimal("100.50") == Decimal("100.50")

    def test_int(self):
        assert to_decimal(5) == Decimal("5")

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            to_decimal(0.1)

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            to_decimal("not a number")


class TestHasMoneyScale:

    def test_two_places(self):
        assert has_money_scale(Decimal("10.05"))

    def test_three_places(self):
        assert not has_money_scale(Decimal("10.005"))


class TestValidateCurrency:

    def test_valid_codes(self):
        for code in ["BTN", "USD", "INR", "EUR"]:
            assert validate_currency(code) == code

    def test_normalized(self):
        assert validate_currency(" btn ") == "BTN"

    @pytest.mark.parametrize("code", ["XXY", "US", "USDD", ""])
    def test_invalid(self, code):
        with pytest.raises(InvalidCurrencyError, match="Invalid ISO 4217 currency code"):
            validate_currency(code)


class TestRequireAmount:

    def test_positive(self):
        assert require_amount("amount", "12.30") == Decimal("12.30")

    def test_zero_rejected_by_default(self):
        with pytest.raises(LedgerValidationError) as exc_info:
            require_amount("amount", Decimal("0"))
        assert exc_info.value.code == "VALIDATION_FAILED"
        assert exc_info.value.field == "amount"

    def test_zero_allowed(self):
        assert require_amount("amount", Decimal("0"), allow_zero=True) == Decimal("0")

    def test_negative_rejected(self):
        with pytest.raises(LedgerValidationError):
            require_amount("amount", Decimal("-1.00"))

    def test_negative_allowed(self):
        assert require_amount("amount", Decimal("-1.00"), allow_negative=True) == Decimal("-1.00")

    def test_sub_cent_rejected(self):
        with pytest.raises(LedgerValidationError, match="more than 2 decimal places"):
            require_amount("amount", Decimal("10.005"))

    def test_float_rejected(self):
        with pytest.raises(LedgerValidationError):
            require_amount("amount", 10.5)

    def test_nan_rejected(self):
        with pytest.raises(LedgerValidationError):
            require_amount("amount", Decimal("NaN"))
