"""
Module: gst_kernel.db.types
Responsibility: Column types and helpers for financial-grade values.  Centralizes
    precision, rounding, and currency validation so that every model and service
    uses identical definitions.
Architecture position: Kernel > DB.  Leaf module; may be imported by every other
    layer.  MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Fixed scale: every monetary column stores exactly MONEY_DECIMAL_PLACES
      places.  round_money() is the ONLY sanctioned rounding function and it
      rounds half-up.
    - No floats: FixedScaleDecimal columns refuse float binds outright.
    - ISO 4217: validate_currency() rejects unknown codes.

Failure modes:
    - TypeError when a float is bound to a fixed-scale column.
    - InvalidCurrencyError on an invalid ISO 4217 code.

Audit relevance:
    Every amount in the ledger (totals, balances, allocations, GST figures)
    goes through MoneyType, so stored numbers are identical across backends.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum

from sqlalchemy import Enum as SAEnum, Numeric, String
from sqlalchemy.types import TypeDecorator

MONEY_DECIMAL_PLACES = 2
RATE_DECIMAL_PLACES = 4
QUANTITY_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0.00")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the ledger scale.

    This is the ONLY sanctioned rounding function for financial values.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_decimal(value: Decimal | str | int) -> Decimal:
    """
    Coerce an incoming amount to Decimal.

    Floats are rejected: a binary float has already lost the exact value.

    Raises:
        TypeError: If value is a float.
        ValueError: If value is not numeric.
    """
    if isinstance(value, float):
        raise TypeError(f"Monetary amounts must not be float: {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def has_money_scale(value: Decimal) -> bool:
    """True if value needs no rounding to fit the ledger scale."""
    return round_money(value) == value


class FixedScaleDecimal(TypeDecorator):
    """
    Decimal column with a fixed number of fractional places.

    Contract:
        PostgreSQL stores NUMERIC(precision, places).  Other dialects (SQLite)
        store the canonical decimal string so the value never passes through
        a binary float.  Reads always return a Decimal at the column's scale.

    Guarantees:
        - Binding rounds half-up to ``places`` (the persistence boundary).
        - Floats are rejected.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, places: int, precision: int = 38):
        super().__init__()
        self.places = places
        self.precision = precision

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(self.precision, self.places))
        return dialect.type_descriptor(String(self.precision + 8))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        scaled = round_money(to_decimal(value), self.places)
        if dialect.name == "postgresql":
            return scaled
        return str(scaled)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return round_money(Decimal(str(value)), self.places)


class MoneyType(FixedScaleDecimal):
    """Monetary column: NUMERIC(38, 2) on PostgreSQL."""

    cache_ok = True

    def __init__(self):
        super().__init__(MONEY_DECIMAL_PLACES)


class RateType(FixedScaleDecimal):
    """Percentage column (tax rate, discount percent), 4 places."""

    cache_ok = True

    def __init__(self):
        super().__init__(RATE_DECIMAL_PLACES, precision=9)


class QuantityType(FixedScaleDecimal):
    """Line quantity, 4 places."""

    cache_ok = True

    def __init__(self):
        super().__init__(QUANTITY_DECIMAL_PLACES, precision=18)


def enum_column(enum_cls: type[Enum]) -> SAEnum:
    """
    String column for a str Enum, storing member values (not names).

    Non-native so the same DDL works on PostgreSQL and SQLite; loads return
    enum members.
    """
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=30,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ISO 4217 Currency Codes
ISO_4217_CURRENCIES: set[str] = {
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "AED", "AFN", "ALL", "AMD", "ANG", "AOA", "ARS", "AWG", "AZN",
    "BAM", "BBD", "BDT", "BGN", "BHD", "BIF", "BMD", "BND", "BOB", "BOV", "BRL", "BSD", "BTN", "BWP", "BYN", "BZD",
    "CDF", "CHE", "CHW", "CLF", "CLP", "CNY", "COP", "COU", "CRC", "CUC", "CUP", "CVE", "CZK",
    "DJF", "DKK", "DOP", "DZD",
    "EGP", "ERN", "ETB",
    "FJD", "FKP",
    "GEL", "GHS", "GIP", "GMD", "GNF", "GTQ", "GYD",
    "HKD", "HNL", "HRK", "HTG", "HUF",
    "IDR", "ILS", "INR", "IQD", "IRR", "ISK",
    "JMD", "JOD",
    "KES", "KGS", "KHR", "KMF", "KPW", "KRW", "KWD", "KYD", "KZT",
    "LAK", "LBP", "LKR", "LRD", "LSL", "LYD",
    "MAD", "MDL", "MGA", "MKD", "MMK", "MNT", "MOP", "MRU", "MUR", "MVR", "MWK", "MXN", "MXV", "MYR", "MZN",
    "NAD", "NGN", "NIO", "NOK", "NPR",
    "OMR",
    "PAB", "PEN", "PGK", "PHP", "PKR", "PLN", "PYG",
    "QAR",
    "RON", "RSD", "RUB", "RWF",
    "SAR", "SBD", "SCR", "SDG", "SEK", "SGD", "SHP", "SLE", "SLL", "SOS", "SRD", "SSP", "STN", "SVC", "SYP", "SZL",
    "THB", "TJS", "TMT", "TND", "TOP", "TRY", "TTD", "TWD", "TZS",
    "UAH", "UGX", "USN", "UYI", "UYU", "UYW", "UZS",
    "VED", "VES", "VND", "VUV",
    "WST",
    "XAF", "XAG", "XAU", "XBA", "XBB", "XBC", "XBD", "XCD", "XDR", "XOF", "XPD", "XPF", "XPT", "XSU", "XTS", "XUA", "XXX",
    "YER",
    "ZAR", "ZMW", "ZWL",
}


class InvalidCurrencyError(ValueError):
    """Raised when an invalid ISO 4217 currency code is provided."""

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


def validate_currency(currency: str) -> str:
    """
    Validate that a currency code is a valid ISO 4217 code.

    Returns:
        The validated currency code (uppercase).

    Raises:
        InvalidCurrencyError: If the currency code is not valid.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()

    if len(normalized) != 3 or normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)

    return normalized
