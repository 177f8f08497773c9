"""Database layer - engine, declarative base, and fixed-scale column types."""

from gst_kernel.db.base import Base, TenantScoped, TrackedBase, UUIDString
from gst_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
)
from gst_kernel.db.types import MoneyType, QuantityType, RateType

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "create_tables",
    "Base",
    "TenantScoped",
    "TrackedBase",
    "UUIDString",
    "MoneyType",
    "RateType",
    "QuantityType",
]
