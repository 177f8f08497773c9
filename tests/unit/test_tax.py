"""
Unit tests for line-item GST arithmetic.

Verifies:
- Line subtotal, discount, taxable amount and tax at ledger scale
- Classification rules (explicit, exempt, zero-rated, standard)
- Document totals equal the sum of rounded lines
- Payment status derivation
"""

from decimal import Decimal

import pytest

from gst_kernel.db.types import ZERO
from gst_kernel.domain.enums import PaymentStatus, TaxClassification
from gst_kernel.domain.tax import classify, compute_line, derive_payment_status, sum_lines


class TestClassify:

    def test_nonzero_rate_is_standard(self):
        assert classify(Decimal("7")) is TaxClassification.STANDARD

    def test_zero_rate_is_zero_rated(self):
        assert classify(Decimal("0")) is TaxClassification.ZERO_RATED

    def test_exempt_flag_wins_over_rate(self):
        assert classify(Decimal("7"), is_exempt=True) is TaxClassification.EXEMPT

    def test_explicit_classification_wins(self):
        result = classify(Decimal("0"), classification=TaxClassification.EXEMPT)
        assert result is TaxClassification.EXEMPT


class TestComputeLine:

    def test_standard_line(self):
        """2 x 150.00 at 10% discount and 7% GST."""
        line = compute_line(
            quantity=Decimal("2"),
            unit_price=Decimal("150.00"),
            tax_rate=Decimal("7"),
            discount_percent=Decimal("10"),
        )
        assert line.subtotal == Decimal("300.00")
        assert line.discount_amount == Decimal("30.00")
        assert line.taxable_amount == Decimal("270.00")
        assert line.tax_amount == Decimal("18.90")
        assert line.total == Decimal("288.90")
        assert line.classification is TaxClassification.STANDARD

    def test_tax_rounds_half_up(self):
        # 0.50 * 5% = 0.025 -> 0.03
        line = compute_line(Decimal("1"), Decimal("0.50"), Decimal("5"))
        assert line.tax_amount == Decimal("0.03")

    def test_fractional_quantity_rounds_subtotal(self):
        line = compute_line(Decimal("0.333"), Decimal("10.00"), Decimal("0"))
        assert line.subtotal == Decimal("3.33")

    def test_exempt_line_carries_no_tax(self):
        line = compute_line(Decimal("1"), Decimal("100.00"), Decimal("7"), is_exempt=True)
        assert line.tax_amount == ZERO
        assert line.taxable_amount == Decimal("100.00")
        assert line.classification is TaxClassification.EXEMPT

    def test_zero_rated_line_carries_no_tax(self):
        line = compute_line(Decimal("3"), Decimal("10.00"), Decimal("0"))
        assert line.tax_amount == ZERO
        assert line.classification is TaxClassification.ZERO_RATED

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"quantity": Decimal("-1")},
            {"unit_price": Decimal("-0.01")},
            {"tax_rate": Decimal("101")},
            {"discount_percent": Decimal("-5")},
        ],
    )
    def test_invalid_inputs_raise(self, kwargs):
        args = {
            "quantity": Decimal("1"),
            "unit_price": Decimal("10.00"),
            "tax_rate": Decimal("7"),
        }
        args.update(kwargs)
        with pytest.raises(ValueError):
            compute_line(**args)


class TestSumLines:

    def test_totals_are_sum_of_rounded_lines(self):
        """Three lines whose unrounded tax would sum differently."""
        lines = [compute_line(Decimal("1"), Decimal("0.50"), Decimal("5")) for _ in range(3)]
        totals = sum_lines(lines)
        assert totals.tax_total == Decimal("0.09")
        assert totals.subtotal == Decimal("1.50")
        assert totals.total == Decimal("1.59")

    def test_discount_total(self):
        lines = [
            compute_line(Decimal("1"), Decimal("100.00"), Decimal("7"), Decimal("10")),
            compute_line(Decimal("1"), Decimal("50.00"), Decimal("0"), Decimal("20")),
        ]
        totals = sum_lines(lines)
        assert totals.discount_total == Decimal("20.00")
        assert totals.subtotal == Decimal("130.00")
        assert totals.tax_total == Decimal("6.30")

    def test_empty(self):
        totals = sum_lines([])
        assert totals.total == ZERO


class TestDerivePaymentStatus:

    @pytest.mark.parametrize(
        "paid,total,expected",
        [
            ("0.00", "500.00", PaymentStatus.UNPAID),
            ("0.01", "500.00", PaymentStatus.PARTIAL),
            ("450.00", "500.00", PaymentStatus.PARTIAL),
            ("500.00", "500.00", PaymentStatus.PAID),
            ("0.00", "0.00", PaymentStatus.PAID),
        ],
    )
    def test_status(self, paid, total, expected):
        assert derive_payment_status(Decimal(paid), Decimal(total)) is expected
