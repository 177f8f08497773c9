"""
Enumerations shared by the domain, the ORM models and the services.

All are ``str`` enums so that they compare equal to the plain strings stored
in String columns and serialise directly into log payloads.
"""

from enum import Enum


class DocumentType(str, Enum):
    """
    Numbered document types.  Each has its own gap-free sequence per
    tenant and calendar year.
    """

    INVOICE = "invoice"
    SUPPLIER_BILL = "supplier_bill"
    CUSTOMER_ADVANCE = "customer_advance"
    SUPPLIER_ADVANCE = "supplier_advance"
    CUSTOMER_RECEIPT = "customer_receipt"

    @property
    def default_prefix(self) -> str:
        return _DEFAULT_PREFIXES[self]

    @property
    def prefix_configurable(self) -> bool:
        """Only tenant-facing types accept a tenant prefix."""
        return self is DocumentType.INVOICE


_DEFAULT_PREFIXES = {
    DocumentType.INVOICE: "INV",
    DocumentType.SUPPLIER_BILL: "BILL",
    DocumentType.CUSTOMER_ADVANCE: "ADV-C",
    DocumentType.SUPPLIER_ADVANCE: "ADV-S",
    DocumentType.CUSTOMER_RECEIPT: "RCP",
}


class DocumentKind(str, Enum):
    """Ledger document kinds: sales side and purchase side."""

    SALES_INVOICE = "sales_invoice"
    SUPPLIER_BILL = "supplier_bill"

    @property
    def document_type(self) -> DocumentType:
        if self is DocumentKind.SALES_INVOICE:
            return DocumentType.INVOICE
        return DocumentType.SUPPLIER_BILL

    @property
    def payment_direction(self) -> "PaymentDirection":
        if self is DocumentKind.SALES_INVOICE:
            return PaymentDirection.CUSTOMER
        return PaymentDirection.SUPPLIER


class DocumentStatus(str, Enum):
    """
    Document lifecycle.

    DRAFT and SENT are open.  PAID follows the payment status.  CANCELLED is
    terminal and only reachable while nothing has been paid.
    """

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Derived from amount_paid vs total_amount, never set directly."""

    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class TaxClassification(str, Enum):
    STANDARD = "standard"
    ZERO_RATED = "zero_rated"
    EXEMPT = "exempt"


class PeriodType(str, Enum):
    """
    Period granularity for locks and GST returns.

    CUSTOM covers manual locks over a range that is not a calendar
    month, quarter or year.  Returns never use it.
    """

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    CUSTOM = "custom"


class ReturnStatus(str, Enum):
    """
    GST return lifecycle: DRAFT -> FILED -> APPROVED, and FILED/APPROVED ->
    AMENDED.  Only DRAFT returns may be deleted.
    """

    DRAFT = "draft"
    FILED = "filed"
    APPROVED = "approved"
    AMENDED = "amended"


class PaymentDirection(str, Enum):
    """CUSTOMER money is received against sales invoices; SUPPLIER money is paid against bills."""

    CUSTOMER = "customer"
    SUPPLIER = "supplier"

    @property
    def document_kind(self) -> DocumentKind:
        if self is PaymentDirection.CUSTOMER:
            return DocumentKind.SALES_INVOICE
        return DocumentKind.SUPPLIER_BILL

    @property
    def advance_document_type(self) -> DocumentType:
        if self is PaymentDirection.CUSTOMER:
            return DocumentType.CUSTOMER_ADVANCE
        return DocumentType.SUPPLIER_ADVANCE


class SourceType(str, Enum):
    """A payment is tied to documents when recorded; an advance starts unallocated."""

    PAYMENT = "payment"
    ADVANCE = "advance"


class AdjustmentType(str, Enum):
    DISCOUNT = "discount"
    LATE_FEE = "late_fee"
    CREDIT_NOTE = "credit_note"
    DEBIT_NOTE = "debit_note"
    BANK_CHARGES = "bank_charges"
    OTHER = "other"


class ActorRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"

    @property
    def can_manage_periods(self) -> bool:
        """Lock, unlock, file, approve and amend."""
        return self in (ActorRole.OWNER, ActorRole.ADMIN)
