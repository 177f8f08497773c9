"""
Hypothesis-based fuzzing.

Property-based tests that generate amounts, rates and operation sequences
and check the ledger's invariants after every step.

Boundaries fuzzed here:
- Line arithmetic: quantity, price, discount and rate at 2dp/4dp scale
- Period arithmetic: calendar bounds round-trip through inference
- Document balances: arbitrary payment and reversal sequences, mixed with
  allocations and their reversals
- Advances: arbitrary allocation splits

Ledger-level properties share one database per test function, so each
example runs under a fresh tenant.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

from hypothesis import HealthCheck, assume, given, settings
from hypothesis import strategies as st

from gst_kernel.db.types import ZERO, has_money_scale
from gst_kernel.domain.dtos import ActorContext, AllocationTarget
from gst_kernel.domain.enums import (
    ActorRole,
    PaymentDirection,
    PaymentStatus,
    PeriodType,
    TaxClassification,
)
from gst_kernel.domain.periods import infer_period_type, period_bounds
from gst_kernel.domain.tax import compute_line, derive_payment_status
from tests.conftest import draft, line

money = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("99999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
quantities = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("1000"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)
percentages = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("100"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

LEDGER_SETTINGS = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
)


def fresh_owner() -> ActorContext:
    return ActorContext(tenant_id=uuid4(), actor_id=uuid4(), role=ActorRole.OWNER)


# =========================================================================
# Pure arithmetic
# =========================================================================


class TestLineArithmetic:

    @given(quantity=quantities, unit_price=money, discount=percentages, rate=percentages)
    @settings(max_examples=300)
    def test_line_amounts_are_consistent(self, quantity, unit_price, discount, rate):
        amounts = compute_line(quantity, unit_price, rate, discount)

        for value in (
            amounts.subtotal,
            amounts.discount_amount,
            amounts.taxable_amount,
            amounts.tax_amount,
        ):
            assert has_money_scale(value)
            assert value >= ZERO
        assert amounts.taxable_amount + amounts.discount_amount == amounts.subtotal
        assert amounts.total == amounts.taxable_amount + amounts.tax_amount
        # Rounding moves tax by at most half a cent.
        exact_tax = amounts.taxable_amount * rate / Decimal("100")
        assert abs(amounts.tax_amount - exact_tax) <= Decimal("0.005")

    @given(quantity=quantities, unit_price=money, rate=percentages)
    def test_exempt_lines_never_taxed(self, quantity, unit_price, rate):
        amounts = compute_line(quantity, unit_price, rate, is_exempt=True)
        assert amounts.classification is TaxClassification.EXEMPT
        assert amounts.tax_amount == ZERO

    @given(paid=money, total=money)
    def test_payment_status_matches_balance(self, paid, total):
        status = derive_payment_status(paid, total)
        if paid >= total:
            assert status is PaymentStatus.PAID
        else:
            assert status is PaymentStatus.PARTIAL
        assert derive_payment_status(ZERO, total) is PaymentStatus.UNPAID


class TestPeriodArithmetic:

    @given(
        period_type=st.sampled_from(
            [PeriodType.MONTHLY, PeriodType.QUARTERLY, PeriodType.ANNUAL]
        ),
        year=st.integers(min_value=2000, max_value=2100),
        index=st.integers(min_value=1, max_value=12),
    )
    def test_calendar_bounds_infer_back(self, period_type, year, index):
        if period_type is PeriodType.QUARTERLY:
            assume(index <= 4)
        start, end = period_bounds(period_type, year, index)
        assert start <= end
        assert infer_period_type(start, end) is period_type


# =========================================================================
# Document balances
# =========================================================================


class TestDocumentBalanceFuzzing:

    @given(
        total=money,
        steps=st.lists(
            st.tuples(st.booleans(), money),
            min_size=1,
            max_size=8,
        ),
    )
    @LEDGER_SETTINGS
    def test_balance_invariant_holds_after_any_sequence(self, core, customer_id, total, steps):
        """
        Property: amount_due == total - amount_paid and 0 <= amount_paid <= total
        after every apply/reverse, accepted or rejected.
        """
        owner = fresh_owner()
        doc = core.create_ledger_document(owner, draft(customer_id, line(total))).unwrap()

        paid = ZERO
        for is_reversal, amount in steps:
            if is_reversal:
                result = core.reverse_payment(owner, doc.id, amount, date(2026, 3, 12))
                expected_ok = amount <= paid
            else:
                result = core.apply_payment(owner, doc.id, amount, date(2026, 3, 12))
                expected_ok = paid + amount <= total

            assert result.is_success is expected_ok
            if expected_ok:
                paid = paid + amount if not is_reversal else paid - amount
            else:
                assert result.error_code == "EXCEEDS_BALANCE"

            after = core.get_document(owner, doc.id).unwrap()
            assert after.amount_paid == paid
            assert after.amount_due == after.total_amount - after.amount_paid
            assert ZERO <= after.amount_paid <= after.total_amount
            assert after.payment_status is derive_payment_status(paid, after.total_amount)

    @given(
        total=st.decimals(
            min_value=Decimal("1.00"),
            max_value=Decimal("1000.00"),
            places=2,
            allow_nan=False,
            allow_infinity=False,
        ),
        steps=st.lists(
            st.tuples(
                st.sampled_from(["apply", "reverse", "allocate", "unallocate"]),
                st.decimals(
                    min_value=Decimal("0.01"),
                    max_value=Decimal("500.00"),
                    places=2,
                    allow_nan=False,
                    allow_infinity=False,
                ),
            ),
            min_size=1,
            max_size=10,
        ),
    )
    @LEDGER_SETTINGS
    def test_direct_and_allocated_money_stay_separate(self, core, customer_id, total, steps):
        """
        Property: amount_paid == direct + sum(allocations) >= sum(allocations)
        whatever the mix of direct payments, allocations and reversals.
        """
        owner = fresh_owner()
        doc = core.create_ledger_document(owner, draft(customer_id, line(total))).unwrap()
        advance = core.record_advance(
            owner, PaymentDirection.CUSTOMER, customer_id, Decimal("100000.00"), date(2026, 3, 11)
        ).unwrap()

        direct = ZERO
        allocated: list[tuple] = []
        for op, amount in steps:
            outstanding = total - direct - sum((a for _, a in allocated), ZERO)
            if op == "apply":
                result = core.apply_payment(owner, doc.id, amount, date(2026, 3, 12))
                expected_ok = amount <= outstanding
                if expected_ok:
                    direct += amount
            elif op == "reverse":
                result = core.reverse_payment(owner, doc.id, amount, date(2026, 3, 12))
                expected_ok = amount <= direct
                if expected_ok:
                    direct -= amount
            elif op == "allocate":
                result = core.allocate(owner, advance.id, [AllocationTarget(doc.id, amount)])
                expected_ok = amount <= outstanding
                if expected_ok:
                    (allocation,) = result.value
                    allocated.append((allocation.id, amount))
            else:
                if not allocated:
                    continue
                allocation_id, _ = allocated.pop(0)
                result = core.reverse_allocation(owner, allocation_id)
                expected_ok = True

            assert result.is_success is expected_ok
            if not expected_ok:
                assert result.error_code == "EXCEEDS_BALANCE"

            after = core.get_document(owner, doc.id).unwrap()
            live = core.allocations_for_document(owner, doc.id).unwrap()
            live_total = sum((a.amount for a in live), ZERO)
            assert live_total == sum((a for _, a in allocated), ZERO)
            assert after.amount_paid == direct + live_total
            assert after.amount_paid >= live_total
            assert after.amount_due == after.total_amount - after.amount_paid


# =========================================================================
# Advances
# =========================================================================


class TestAllocationFuzzing:

    @given(
        advance_amount=money,
        splits=st.lists(money, min_size=1, max_size=4),
    )
    @LEDGER_SETTINGS
    def test_allocations_never_exceed_advance(self, core, customer_id, advance_amount, splits):
        """
        Property: allocated + unallocated == source amount, and a batch that
        does not fit is rejected whole.
        """
        owner = fresh_owner()
        advance = core.record_advance(
            owner, PaymentDirection.CUSTOMER, customer_id, advance_amount, date(2026, 3, 11)
        ).unwrap()
        targets = []
        for split in splits:
            doc = core.create_ledger_document(owner, draft(customer_id, line(split))).unwrap()
            targets.append(AllocationTarget(doc.id, split))

        result = core.allocate(owner, advance.id, targets)
        requested = sum(splits, ZERO)

        after = core.get_payment(owner, advance.id).unwrap()
        assert after.allocated_amount + after.unallocated_amount == after.source_amount
        if requested <= advance_amount:
            assert result.is_success
            assert after.allocated_amount == requested
        else:
            assert result.error_code == "EXCEEDS_BALANCE"
            assert after.allocated_amount == ZERO
            for target in targets:
                assert core.get_document(owner, target.document_id).unwrap().amount_paid == ZERO
