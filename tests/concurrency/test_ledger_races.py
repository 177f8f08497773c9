"""
Race tests with real threads against one database.

Each thread goes through LedgerCore, so every call is its own transaction
on its own connection.  A Barrier releases the threads together.  On SQLite
writers queue behind BEGIN IMMEDIATE; on PostgreSQL they queue behind row
locks.

Tests cover:
- Parallel number issuance yields exactly 1..N with no duplicates or gaps
- Parallel invoice creation yields consecutive document numbers
- Competing allocations into one document never overdraw it
- Competing allocations out of one advance never overdraw it
- A period lock racing a payment either blocks it or lets it land first

Run with: pytest tests/concurrency -v
Skip with: pytest -m "not slow_locks"
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier

import pytest

from gst_kernel.domain.dtos import AllocationTarget
from gst_kernel.domain.enums import DocumentType
from gst_kernel.ledger import OperationResult, OperationStatus
from tests.conftest import draft, line

pytestmark = pytest.mark.slow_locks


def run_together(num_threads: int, fn) -> list[OperationResult]:
    """Run fn(i) on num_threads threads released by one barrier."""
    barrier = Barrier(num_threads, timeout=30)

    def _worker(i: int):
        barrier.wait()
        return fn(i)

    with ThreadPoolExecutor(max_workers=num_threads) as pool:
        return list(pool.map(_worker, range(num_threads)))


# =========================================================================
# Sequences
# =========================================================================


class TestSequenceRaces:

    def test_parallel_issuance_is_gap_free(self, core, owner):
        num_threads = 10
        calls_per_thread = 5

        def issue_many(_):
            return [
                core.issue_document_number(owner, DocumentType.INVOICE, 2026)
                for _ in range(calls_per_thread)
            ]

        batches = run_together(num_threads, issue_many)
        results = [r for batch in batches for r in batch]

        assert all(r.is_success for r in results)
        values = sorted(r.value.sequence_value for r in results)
        assert values == list(range(1, num_threads * calls_per_thread + 1))
        assert core.current_sequence_value(owner, DocumentType.INVOICE, 2026).unwrap() == 50

    def test_parallel_invoices_are_consecutive(self, core, owner, customer_id):
        num_threads = 20

        results = run_together(
            num_threads,
            lambda i: core.create_ledger_document(
                owner, draft(customer_id, line(f"{i + 1}.00"))
            ),
        )

        assert all(r.is_success for r in results)
        numbers = sorted(r.value.document_number for r in results)
        assert numbers == [f"INV-2026-{n:04d}" for n in range(1, num_threads + 1)]

    def test_independent_years_do_not_interfere(self, core, owner):
        results = run_together(
            8,
            lambda i: core.issue_document_number(owner, DocumentType.INVOICE, 2025 + i % 2),
        )

        by_year: dict[int, list[int]] = {}
        for r in results:
            by_year.setdefault(r.value.year, []).append(r.value.sequence_value)
        assert {year: sorted(v) for year, v in by_year.items()} == {
            2025: [1, 2, 3, 4],
            2026: [1, 2, 3, 4],
        }


# =========================================================================
# Allocations
# =========================================================================


class TestAllocationRaces:

    def test_one_document_never_overdrawn(self, core, owner, issue_invoice, record_advance):
        """Five 150.00 advances race into a 500.00 invoice; three fit."""
        invoice = issue_invoice("500.00")
        advances = [record_advance("150.00") for _ in range(5)]

        results = run_together(
            len(advances),
            lambda i: core.allocate(
                owner, advances[i].id, [AllocationTarget(invoice.id, Decimal("150.00"))]
            ),
        )

        succeeded = [r for r in results if r.is_success]
        rejected = [r for r in results if not r.is_success]
        assert len(succeeded) == 3
        assert {r.error_code for r in rejected} == {"EXCEEDS_BALANCE"}

        after = core.get_document(owner, invoice.id).unwrap()
        assert after.amount_paid == Decimal("450.00")
        assert after.amount_due == Decimal("50.00")
        allocations = core.allocations_for_document(owner, invoice.id).unwrap()
        assert sum((a.amount for a in allocations), Decimal("0")) == Decimal("450.00")

    def test_one_advance_never_overdrawn(self, core, owner, issue_invoice, record_advance):
        """A 300.00 advance is split across five 100.00 invoices at once; three fit."""
        advance = record_advance("300.00")
        invoices = [issue_invoice("100.00") for _ in range(5)]

        results = run_together(
            len(invoices),
            lambda i: core.allocate(
                owner, advance.id, [AllocationTarget(invoices[i].id, Decimal("100.00"))]
            ),
        )

        assert sum(1 for r in results if r.is_success) == 3
        assert {r.error_code for r in results if not r.is_success} == {"EXCEEDS_BALANCE"}

        source = core.get_payment(owner, advance.id).unwrap()
        assert source.allocated_amount == Decimal("300.00")
        assert source.unallocated_amount == Decimal("0.00")

    def test_mixed_operations_keep_document_consistent(
        self, core, owner, issue_invoice, record_advance
    ):
        invoice = issue_invoice("1000.00")
        advance = record_advance("500.00")

        def step(i: int):
            if i % 2:
                return core.apply_payment(owner, invoice.id, Decimal("100.00"), date(2026, 3, 12))
            return core.allocate(
                owner, advance.id, [AllocationTarget(invoice.id, Decimal("100.00"))]
            )

        results = run_together(10, step)
        assert all(r.is_success for r in results)

        after = core.get_document(owner, invoice.id).unwrap()
        assert after.amount_paid == Decimal("1000.00")
        assert after.amount_due == Decimal("0.00")
        assert after.amount_due == after.total_amount - after.amount_paid


# =========================================================================
# Period lock vs payment
# =========================================================================


class TestLockRaces:

    @pytest.mark.parametrize("round_", range(3))
    def test_lock_racing_payment(self, core, owner, issue_invoice, round_):
        invoice = issue_invoice("100.00", document_date=date(2026, 2, 1))

        def step(i: int):
            if i == 0:
                return core.lock_period(owner, date(2026, 1, 1), date(2026, 1, 31))
            return core.record_payment(owner, invoice.id, Decimal("10.00"), date(2026, 1, 20))

        lock_result, payment_result = run_together(2, step)

        assert lock_result.is_success
        assert payment_result.status in (OperationStatus.SUCCEEDED, OperationStatus.REJECTED)
        paid = core.get_document(owner, invoice.id).unwrap().amount_paid
        if payment_result.is_success:
            assert paid == Decimal("10.00")
        else:
            assert payment_result.error_code == "PERIOD_LOCKED"
            assert paid == Decimal("0.00")

        # Once the lock is visible, the next payment is always refused.
        late = core.record_payment(owner, invoice.id, Decimal("10.00"), date(2026, 1, 21))
        assert late.error_code == "PERIOD_LOCKED"
