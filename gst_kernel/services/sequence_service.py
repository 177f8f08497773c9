"""
SequenceService -- gap-free document numbering via locked counter rows.

Responsibility:
    Issues strictly increasing, gap-free sequence values per (tenant,
    document type, calendar year) and formats them as PREFIX-YYYY-NNNN.
    Uses a dedicated counter row per key with row-level locking
    (``SELECT ... FOR UPDATE``) to guarantee uniqueness and ordering under
    concurrent callers.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by DocumentService (invoices, bills) and AllocationService
    (advances, receipts).

Invariants enforced:
    - For a key, the issued values are exactly 1..next_value-1.  The
      aggregate-max-plus-one anti-pattern is FORBIDDEN -- the locked
      counter row is the sole source of truth.
    - Transactional: the increment becomes visible only when the enclosing
      document-creation transaction commits.  If that transaction rolls
      back, the value is returned to the counter and reissued, so no
      number is ever lost.

Failure modes:
    - IntegrityError when two transactions create the same counter row
      concurrently: handled internally by a savepoint and re-lock.
    - OperationalError on lock timeout or deadlock: propagated; LedgerCore
      retries the whole transaction.
    - LedgerValidationError on a prefix for a fixed-prefix type.

Audit relevance:
    Tax authorities expect invoice numbers without gaps.  A gap would look
    like a suppressed document.
"""

import re

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gst_kernel.domain.clock import Clock
from gst_kernel.domain.dtos import IssuedNumber
from gst_kernel.domain.enums import DocumentType
from gst_kernel.exceptions import LedgerValidationError
from gst_kernel.logging_config import get_logger
from gst_kernel.models.sequence import DocumentSequence, TenantNumbering
from gst_kernel.services.base import BaseService

logger = get_logger("services.sequence")

_PREFIX_PATTERN = re.compile(r"^[A-Z0-9][A-Z0-9-]{0,19}$")


def format_number(prefix: str, year: int, value: int, padding: int = 4) -> str:
    """PREFIX-YYYY-NNNN; values wider than the padding keep all their digits."""
    return f"{prefix}-{year}-{value:0{padding}d}"


class SequenceService(BaseService[DocumentSequence]):
    """
    Gap-free sequence issuance.

    Contract:
        ``next_number()`` returns a value strictly greater than every value
        previously issued for the same key, with no gaps and no two callers
        ever receiving the same value.

    Usage:
        with session.begin():
            issued = sequence_service.next_number(tenant_id, DocumentType.INVOICE, 2026)
            # insert the document in the same transaction
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        invoice_prefix: str = "INV",
        padding: int = 4,
    ):
        super().__init__(session, clock)
        self._invoice_prefix = invoice_prefix
        self._padding = padding

    def next_number(self, tenant_id, document_type: DocumentType, year: int) -> IssuedNumber:
        """
        Issue the next number for (tenant, type, year).

        Preconditions:
            - The caller is within an active database transaction and will
              insert the numbered record in that same transaction.

        Postconditions:
            - The counter row is locked until the transaction completes.
        """
        document_type = DocumentType(document_type)
        prefix = self.resolve_prefix(tenant_id, document_type)

        counter = self._lock_counter(tenant_id, document_type, year)
        if counter is None:
            counter = self._create_counter(tenant_id, document_type, year, prefix)

        value = counter.next_value
        assert value > 0, "sequence value must be strictly positive"
        counter.next_value = value + 1
        counter.prefix = prefix
        self.session.flush()

        issued = IssuedNumber(
            document_type=document_type.value,
            year=year,
            sequence_value=value,
            formatted_number=format_number(prefix, year, value, self._padding),
        )
        logger.debug(
            "sequence_allocated",
            extra={
                "document_type": document_type.value,
                "year": year,
                "value": value,
                "number": issued.formatted_number,
            },
        )
        return issued

    def preview_number(self, tenant_id, document_type: DocumentType, year: int) -> str:
        """The number the next issuance would produce, without consuming it."""
        document_type = DocumentType(document_type)
        prefix = self.resolve_prefix(tenant_id, document_type)
        return format_number(
            prefix, year, self.current_value(tenant_id, document_type, year) + 1,
            self._padding,
        )

    def current_value(self, tenant_id, document_type: DocumentType, year: int) -> int:
        """Last issued value for the key, 0 if nothing has been issued."""
        next_value = self.session.execute(
            select(DocumentSequence.next_value).where(
                DocumentSequence.tenant_id == tenant_id,
                DocumentSequence.document_type == DocumentType(document_type),
                DocumentSequence.year == year,
            )
        ).scalar_one_or_none()
        return 0 if next_value is None else next_value - 1

    def resolve_prefix(self, tenant_id, document_type: DocumentType) -> str:
        if not document_type.prefix_configurable:
            return document_type.default_prefix
        custom = self.session.execute(
            select(TenantNumbering.prefix).where(
                TenantNumbering.tenant_id == tenant_id,
                TenantNumbering.document_type == document_type,
            )
        ).scalar_one_or_none()
        if custom:
            return custom
        if document_type is DocumentType.INVOICE:
            return self._invoice_prefix
        return document_type.default_prefix

    def set_prefix(self, tenant_id, actor_id, document_type: DocumentType, prefix: str) -> str:
        """
        Set a tenant prefix for a configurable type.

        Takes effect from the next issuance; values already issued keep
        their numbers and the counter is not reset.
        """
        document_type = DocumentType(document_type)
        if not document_type.prefix_configurable:
            raise LedgerValidationError(
                "document_type",
                f"{document_type.value} uses the fixed prefix "
                f"{document_type.default_prefix}",
            )
        normalized = (prefix or "").strip().upper()
        if not _PREFIX_PATTERN.match(normalized):
            raise LedgerValidationError(
                "prefix", f"must be 1-20 characters of A-Z, 0-9 or '-': {prefix!r}"
            )

        row = self.session.execute(
            select(TenantNumbering)
            .where(
                TenantNumbering.tenant_id == tenant_id,
                TenantNumbering.document_type == document_type,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if row is None:
            row = TenantNumbering(
                tenant_id=tenant_id,
                document_type=document_type,
                prefix=normalized,
                created_by_id=actor_id,
            )
            self.session.add(row)
        else:
            row.prefix = normalized
            row.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "numbering_prefix_set",
            extra={"document_type": document_type.value, "prefix": normalized},
        )
        return normalized

    def _lock_counter(self, tenant_id, document_type: DocumentType, year: int):
        return self.session.execute(
            select(DocumentSequence)
            .where(
                DocumentSequence.tenant_id == tenant_id,
                DocumentSequence.document_type == document_type,
                DocumentSequence.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create_counter(self, tenant_id, document_type: DocumentType, year: int, prefix: str):
        """
        Create the counter row on first use of a key.

        Another transaction may create it at the same time; the savepoint
        keeps the rest of our transaction intact when our insert loses.
        """
        savepoint = self.session.begin_nested()
        try:
            counter = DocumentSequence(
                tenant_id=tenant_id,
                document_type=document_type,
                year=year,
                next_value=1,
                prefix=prefix,
            )
            self.session.add(counter)
            self.session.flush()
            savepoint.commit()
            logger.debug(
                "sequence_counter_created",
                extra={"document_type": document_type.value, "year": year},
            )
            return counter
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"document_type": document_type.value, "year": year},
            )
            savepoint.rollback()
            counter = self._lock_counter(tenant_id, document_type, year)
            if counter is None:
                raise
            return counter
