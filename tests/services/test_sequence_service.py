"""
SequenceService unit tests.

Tests cover:
- First value and strictly increasing, gap-free issuance
- Key independence: document type, year, tenant
- Rollback returns the value to the counter
- Preview and current value do not consume
- Tenant prefixes: configurable types only, counter never reset
"""

from uuid import uuid4

import pytest

from gst_kernel.domain.enums import DocumentType
from gst_kernel.exceptions import LedgerValidationError
from gst_kernel.services.sequence_service import SequenceService, format_number


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture
def sequences(session, clock):
    """Provide a SequenceService on the test session."""
    return SequenceService(session, clock)


# =========================================================================
# Issuance
# =========================================================================


class TestNextNumber:

    def test_first_value_is_one(self, sequences, tenant_id):
        issued = sequences.next_number(tenant_id, DocumentType.INVOICE, 2026)
        assert issued.sequence_value == 1
        assert issued.formatted_number == "INV-2026-0001"
        assert str(issued) == "INV-2026-0001"

    def test_values_are_consecutive(self, sequences, tenant_id):
        values = [
            sequences.next_number(tenant_id, DocumentType.INVOICE, 2026).sequence_value
            for _ in range(5)
        ]
        assert values == [1, 2, 3, 4, 5]

    def test_years_are_independent(self, sequences, tenant_id):
        sequences.next_number(tenant_id, DocumentType.INVOICE, 2026)
        sequences.next_number(tenant_id, DocumentType.INVOICE, 2026)
        issued = sequences.next_number(tenant_id, DocumentType.INVOICE, 2027)
        assert issued.formatted_number == "INV-2027-0001"

    def test_types_are_independent(self, sequences, tenant_id):
        sequences.next_number(tenant_id, DocumentType.INVOICE, 2026)
        bill = sequences.next_number(tenant_id, DocumentType.SUPPLIER_BILL, 2026)
        advance = sequences.next_number(tenant_id, DocumentType.CUSTOMER_ADVANCE, 2026)
        receipt = sequences.next_number(tenant_id, DocumentType.CUSTOMER_RECEIPT, 2026)
        assert bill.formatted_number == "BILL-2026-0001"
        assert advance.formatted_number == "ADV-C-2026-0001"
        assert receipt.formatted_number == "RCP-2026-0001"

    def test_tenants_are_independent(self, sequences):
        tenant_a, tenant_b = uuid4(), uuid4()
        sequences.next_number(tenant_a, DocumentType.INVOICE, 2026)
        sequences.next_number(tenant_a, DocumentType.INVOICE, 2026)
        assert sequences.next_number(tenant_b, DocumentType.INVOICE, 2026).sequence_value == 1

    def test_rollback_returns_value(self, session, sequences, tenant_id):
        """A number minted in a rolled-back transaction is issued again."""
        sequences.next_number(tenant_id, DocumentType.INVOICE, 2026)
        session.commit()
        sequences.next_number(tenant_id, DocumentType.INVOICE, 2026)
        session.rollback()

        issued = sequences.next_number(tenant_id, DocumentType.INVOICE, 2026)
        assert issued.sequence_value == 2

    def test_configured_invoice_prefix(self, session, clock, tenant_id):
        service = SequenceService(session, clock, invoice_prefix="TAX", padding=6)
        assert service.next_number(tenant_id, DocumentType.INVOICE, 2026).formatted_number == (
            "TAX-2026-000001"
        )


class TestPreviewAndCurrent:

    def test_preview_does_not_consume(self, sequences, tenant_id):
        assert sequences.preview_number(tenant_id, DocumentType.INVOICE, 2026) == "INV-2026-0001"
        assert sequences.preview_number(tenant_id, DocumentType.INVOICE, 2026) == "INV-2026-0001"
        assert sequences.next_number(tenant_id, DocumentType.INVOICE, 2026).sequence_value == 1

    def test_current_value(self, sequences, tenant_id):
        assert sequences.current_value(tenant_id, DocumentType.INVOICE, 2026) == 0
        sequences.next_number(tenant_id, DocumentType.INVOICE, 2026)
        sequences.next_number(tenant_id, DocumentType.INVOICE, 2026)
        assert sequences.current_value(tenant_id, DocumentType.INVOICE, 2026) == 2


# =========================================================================
# Prefixes
# =========================================================================


class TestSetPrefix:

    def test_prefix_applies_from_next_issuance(self, sequences, tenant_id):
        sequences.next_number(tenant_id, DocumentType.INVOICE, 2026)
        assert sequences.set_prefix(tenant_id, uuid4(), DocumentType.INVOICE, " tax ") == "TAX"

        issued = sequences.next_number(tenant_id, DocumentType.INVOICE, 2026)
        assert issued.formatted_number == "TAX-2026-0002"

    def test_prefix_can_be_changed_again(self, sequences, tenant_id):
        actor_id = uuid4()
        sequences.set_prefix(tenant_id, actor_id, DocumentType.INVOICE, "A")
        sequences.set_prefix(tenant_id, actor_id, DocumentType.INVOICE, "B")
        assert sequences.resolve_prefix(tenant_id, DocumentType.INVOICE) == "B"

    def test_fixed_prefix_type_rejected(self, sequences, tenant_id):
        with pytest.raises(LedgerValidationError) as exc_info:
            sequences.set_prefix(tenant_id, uuid4(), DocumentType.SUPPLIER_BILL, "PB")
        assert exc_info.value.field == "document_type"

    @pytest.mark.parametrize("prefix", ["", "   ", "INV/2026", "X" * 21])
    def test_invalid_prefix_rejected(self, sequences, tenant_id, prefix):
        with pytest.raises(LedgerValidationError):
            sequences.set_prefix(tenant_id, uuid4(), DocumentType.INVOICE, prefix)


def test_format_number_keeps_all_digits():
    assert format_number("INV", 2026, 12345) == "INV-2026-12345"
    assert format_number("INV", 2026, 7, padding=3) == "INV-2026-007"
