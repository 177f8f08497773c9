"""
LedgerCore transaction boundary tests.

Tests cover:
- Rejections become OperationResult(REJECTED) and roll back
- Lost races (busy database, deadlock) are retried with bounded backoff
- Retry budget exhaustion becomes CONCURRENCY_CONFLICT
- Non-retryable errors propagate after rollback
- Request-scoped log context
- bootstrap() from a LedgerConfig
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from gst_kernel.config import LedgerConfig
from gst_kernel.db.engine import reset_engine
from gst_kernel.domain.enums import DocumentType
from gst_kernel.exceptions import ConcurrencyConflictError, DocumentNotFoundError
from gst_kernel.ledger import LedgerCore, OperationResult, OperationStatus, bootstrap
from tests.conftest import draft, line


def busy_error(message: str = "database is locked") -> OperationalError:
    return OperationalError("UPDATE document_sequences", {}, Exception(message))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry_core(session_factory, clock, database_url, sleeps):
    """A core with 3 attempts, recorded sleeps and a fixed jitter factor."""
    config = LedgerConfig(
        database_url=database_url,
        retry_attempts=3,
        retry_base_delay=0.1,
        retry_max_delay=0.15,
    )
    return LedgerCore(
        session_factory, config=config, clock=clock, sleep=sleeps.append, rng=lambda: 1.0
    )


# =========================================================================
# OperationResult
# =========================================================================


class TestOperationResult:

    def test_succeeded(self):
        result = OperationResult.succeeded(42, attempts=2)
        assert result.is_success
        assert result.status is OperationStatus.SUCCEEDED
        assert result.unwrap() == 42
        assert result.attempts == 2

    def test_rejected_carries_code(self):
        error = DocumentNotFoundError("abc")
        result = OperationResult.rejected(error)
        assert not result.is_success
        assert result.error_code == "NOT_FOUND"
        assert "abc" in result.message
        with pytest.raises(DocumentNotFoundError):
            result.unwrap()


# =========================================================================
# Rejection and rollback
# =========================================================================


class TestRejection:

    def test_rejection_rolls_back_earlier_work(self, core, owner):
        """Work flushed before the error is discarded with it."""

        def issue_then_fail(services):
            services.sequences.next_number(owner.tenant_id, DocumentType.INVOICE, 2026)
            raise DocumentNotFoundError("missing")

        result = core._run("issue_then_fail", owner, issue_then_fail)
        assert result.error_code == "NOT_FOUND"
        assert core.current_sequence_value(owner, DocumentType.INVOICE, 2026).unwrap() == 0

    def test_rejection_logged_with_context(self, core, owner, captured_logs):
        core.apply_payment(owner, uuid4(), Decimal("1.00"), date(2026, 3, 1))

        (record,) = [r for r in captured_logs() if r["message"] == "operation_rejected"]
        assert record["operation"] == "apply_payment"
        assert record["error_code"] == "NOT_FOUND"
        assert record["tenant_id"] == str(owner.tenant_id)
        assert record["actor_id"] == str(owner.actor_id)
        assert "correlation_id" in record

    def test_programming_error_propagates(self, core, owner, captured_logs):
        def broken(services):
            raise ZeroDivisionError("boom")

        with pytest.raises(ZeroDivisionError):
            core._run("broken", owner, broken)
        assert any(r["message"] == "operation_failed" for r in captured_logs())


# =========================================================================
# Retry
# =========================================================================


class TestRetry:

    def test_retry_then_succeed(self, retry_core, owner, sleeps, captured_logs):
        calls = []

        def flaky(services):
            calls.append(1)
            if len(calls) == 1:
                raise busy_error()
            return services.sequences.next_number(owner.tenant_id, DocumentType.INVOICE, 2026)

        result = retry_core._run("flaky", owner, flaky)

        assert result.is_success
        assert result.attempts == 2
        assert result.value.sequence_value == 1
        assert sleeps == [0.1]
        retries = [r for r in captured_logs() if r["message"] == "transaction_retry"]
        assert len(retries) == 1
        assert retries[0]["reason"] == "database is locked"

    def test_exhausted_budget_is_concurrency_conflict(self, retry_core, owner, sleeps):
        def always_busy(services):
            raise busy_error("deadlock detected")

        result = retry_core._run("always_busy", owner, always_busy)

        assert result.error_code == "CONCURRENCY_CONFLICT"
        assert result.attempts == 3
        assert isinstance(result.error, ConcurrencyConflictError)
        assert result.error.operation == "always_busy"
        # 0.1, then 0.2 capped at 0.15
        assert sleeps == [0.1, 0.15]

    def test_failed_attempt_leaves_no_number(self, retry_core, owner):
        calls = []

        def issue_then_busy(services):
            calls.append(1)
            issued = services.sequences.next_number(owner.tenant_id, DocumentType.INVOICE, 2026)
            if len(calls) == 1:
                raise busy_error()
            return issued

        result = retry_core._run("issue_then_busy", owner, issue_then_busy)
        assert result.value.sequence_value == 1

    def test_non_retryable_operational_error_propagates(self, retry_core, owner, sleeps):
        def missing_table(services):
            raise OperationalError("SELECT", {}, Exception("no such table: ledger_documents"))

        with pytest.raises(OperationalError):
            retry_core._run("missing_table", owner, missing_table)
        assert sleeps == []

    def test_backoff_uses_jitter(self, session_factory, clock, database_url):
        config = LedgerConfig(database_url=database_url, retry_base_delay=0.2, retry_max_delay=1.0)
        core = LedgerCore(session_factory, config=config, clock=clock, rng=lambda: 0.5)
        assert core._backoff(1) == pytest.approx(0.1)
        assert core._backoff(3) == pytest.approx(0.4)
        assert core._backoff(10) == pytest.approx(0.5)


# =========================================================================
# Bootstrap
# =========================================================================


def test_bootstrap(tmp_path, clock, owner, customer_id):
    config = LedgerConfig(database_url=f"sqlite:///{tmp_path / 'boot.db'}")
    try:
        core = bootstrap(config, clock=clock)
        doc = core.create_ledger_document(owner, draft(customer_id, line("10.00"))).unwrap()
        assert doc.document_number == "INV-2026-0001"
        assert core.preview_document_number(owner, DocumentType.INVOICE, 2026).unwrap() == (
            "INV-2026-0002"
        )
    finally:
        reset_engine()
