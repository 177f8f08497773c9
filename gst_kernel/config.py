"""
Ledger configuration (``gst_kernel.config``).

Responsibility
--------------
Defines ``LedgerConfig``, the frozen settings object the ledger core is
built from, and ``load_config()``, which reads it from a YAML file and
overlays environment variables.

Invariants enforced
-------------------
* Every ``LedgerConfig`` is validated in ``__post_init__``; an impossible
  value (no retry attempts, negative delays, an unknown currency) raises
  ``ValueError`` at load time rather than at first use.
* Unknown YAML keys are rejected so a misspelt setting never silently falls
  back to its default.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or invalid value  -> ``ValueError``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from gst_kernel.db.types import InvalidCurrencyError, validate_currency

DATABASE_URL_ENV = "GST_LEDGER_DATABASE_URL"
FALLBACK_DATABASE_URL_ENV = "DATABASE_URL"
LOG_LEVEL_ENV = "GST_LEDGER_LOG_LEVEL"


@dataclass(frozen=True)
class LedgerConfig:
    """
    Settings for one ledger core instance.

    Attributes:
        database_url: PostgreSQL (production) or SQLite (embedded, tests).
        lock_timeout_ms: Longest wait for a row lock or the SQLite write
            lock before the attempt fails with a retryable error.
        retry_attempts: Total attempts for a transaction that lost a race.
        retry_base_delay / retry_max_delay: Exponential backoff bounds in
            seconds; the actual sleep is drawn uniformly below the bound.
        filing_due_day: Day of the month after the period end on which a
            return is due.
    """

    database_url: str = "sqlite:///gst_ledger.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    lock_timeout_ms: int = 15000
    retry_attempts: int = 3
    retry_base_delay: float = 0.05
    retry_max_delay: float = 1.0
    default_currency: str = "BTN"
    invoice_prefix: str = "INV"
    number_padding: int = 4
    filing_due_day: int = 20
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if self.pool_size < 1 or self.max_overflow < 0 or self.pool_timeout < 1:
            raise ValueError("pool_size >= 1, max_overflow >= 0 and pool_timeout >= 1 required")
        if self.lock_timeout_ms < 1:
            raise ValueError(f"lock_timeout_ms must be positive: {self.lock_timeout_ms}")
        if self.retry_attempts < 1:
            raise ValueError(f"retry_attempts must be at least 1: {self.retry_attempts}")
        if self.retry_base_delay < 0 or self.retry_max_delay < self.retry_base_delay:
            raise ValueError(
                "retry delays must satisfy 0 <= retry_base_delay <= retry_max_delay"
            )
        try:
            validate_currency(self.default_currency)
        except InvalidCurrencyError as e:
            raise ValueError(str(e)) from e
        if not self.invoice_prefix:
            raise ValueError("invoice_prefix must not be empty")
        if not 1 <= self.number_padding <= 12:
            raise ValueError(f"number_padding must be within 1..12: {self.number_padding}")
        if not 1 <= self.filing_due_day <= 31:
            raise ValueError(f"filing_due_day must be within 1..31: {self.filing_due_day}")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LedgerConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown ledger config keys: {', '.join(unknown)}")
        return cls(**dict(data))


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML mapping.  A ``ledger:`` top-level section is unwrapped if
    present so the settings can live in a shared application file.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    section = data.get("ledger", data)
    if not isinstance(section, dict):
        raise ValueError(f"{path}: 'ledger' must be a mapping")
    return section


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerConfig:
    """
    Build a LedgerConfig from defaults, an optional YAML file, then the
    environment (highest precedence).
    """
    environ = os.environ if environ is None else environ
    config = LedgerConfig.from_dict(load_yaml_file(Path(path))) if path else LedgerConfig()

    overrides: dict[str, Any] = {}
    database_url = environ.get(DATABASE_URL_ENV) or environ.get(FALLBACK_DATABASE_URL_ENV)
    if database_url:
        overrides["database_url"] = database_url
    if environ.get(LOG_LEVEL_ENV):
        overrides["log_level"] = environ[LOG_LEVEL_ENV]
    return replace(config, **overrides) if overrides else config
