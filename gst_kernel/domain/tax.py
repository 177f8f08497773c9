"""
Tax -- line-item GST arithmetic and payment status derivation.

Responsibility:
    Pure functions that turn a line item (quantity, unit price, discount
    percent, tax rate, exemption) into persisted amounts, sum them into
    document totals, and derive the payment status from two balances.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Every amount leaving this module is at ledger scale (2 places,
      round-half-up).  Document totals are sums of already-rounded lines,
      so a document always equals the sum of what its lines show.
    - Payment status is a pure function of (amount_paid, total_amount).

Failure modes:
    - ValueError on negative quantity or price, or a percentage outside
      0..100.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from gst_kernel.db.types import ZERO, round_money
from gst_kernel.domain.enums import PaymentStatus, TaxClassification

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineAmounts:
    """Computed, rounded amounts for one line item."""

    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    classification: TaxClassification

    @property
    def total(self) -> Decimal:
        return self.taxable_amount + self.tax_amount


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax_total


def classify(
    tax_rate: Decimal,
    is_exempt: bool = False,
    classification: TaxClassification | None = None,
) -> TaxClassification:
    """
    Tax classification of a line.

    An explicit classification wins.  Otherwise exempt if flagged,
    zero-rated at a 0% rate, standard at any other rate.
    """
    if classification is not None:
        return TaxClassification(classification)
    if is_exempt:
        return TaxClassification.EXEMPT
    if tax_rate == 0:
        return TaxClassification.ZERO_RATED
    return TaxClassification.STANDARD


def compute_line(
    quantity: Decimal,
    unit_price: Decimal,
    tax_rate: Decimal,
    discount_percent: Decimal = ZERO,
    is_exempt: bool = False,
    classification: TaxClassification | None = None,
) -> LineAmounts:
    """
    Compute the persisted amounts of one line item.

    subtotal = qty * price, discount = subtotal * pct / 100,
    taxable = subtotal - discount, tax = taxable * rate / 100.
    Exempt and zero-rated lines carry no tax.
    """
    if quantity < 0:
        raise ValueError(f"Quantity must not be negative: {quantity}")
    if unit_price < 0:
        raise ValueError(f"Unit price must not be negative: {unit_price}")
    if not ZERO <= discount_percent <= HUNDRED:
        raise ValueError(f"Discount percent must be within 0..100: {discount_percent}")
    if not ZERO <= tax_rate <= HUNDRED:
        raise ValueError(f"Tax rate must be within 0..100: {tax_rate}")

    line_class = classify(tax_rate, is_exempt, classification)

    subtotal = round_money(quantity * unit_price)
    discount_amount = round_money(subtotal * discount_percent / HUNDRED)
    taxable_amount = subtotal - discount_amount
    if line_class is TaxClassification.STANDARD:
        tax_amount = round_money(taxable_amount * tax_rate / HUNDRED)
    else:
        tax_amount = ZERO

    return LineAmounts(
        subtotal=subtotal,
        discount_amount=discount_amount,
        taxable_amount=taxable_amount,
        tax_amount=tax_amount,
        classification=line_class,
    )


def sum_lines(lines: Iterable[LineAmounts]) -> DocumentTotals:
    subtotal = discount_total = tax_total = ZERO
    for line in lines:
        subtotal += line.taxable_amount
        discount_total += line.discount_amount
        tax_total += line.tax_amount
    return DocumentTotals(
        subtotal=subtotal,
        discount_total=discount_total,
        tax_total=tax_total,
    )


def derive_payment_status(amount_paid: Decimal, total_amount: Decimal) -> PaymentStatus:
    """paid iff amount_paid >= total; partial iff 0 < paid < total; else unpaid."""
    if amount_paid >= total_amount:
        return PaymentStatus.PAID
    if amount_paid > 0:
        return PaymentStatus.PARTIAL
    return PaymentStatus.UNPAID
