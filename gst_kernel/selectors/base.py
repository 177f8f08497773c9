"""
Module: gst_kernel.selectors.base
Responsibility: Shared plumbing for the read-only selectors: tenant-scoped
    lookups and tenant-filtered queries.
Architecture position: Kernel > Selectors.  May import from db/, domain/ and
    models/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - Tenant scoping: a row belonging to another tenant is reported exactly
      like a missing row, so ids cannot be probed across tenants.
    - Selectors return frozen DTOs, never ORM instances.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from gst_kernel.db.base import Base
from gst_kernel.exceptions import NotFoundError

ModelType = TypeVar("ModelType", bound=Base)
RowType = TypeVar("RowType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Base for selectors; the caller owns the session and its transaction."""

    def __init__(self, session: Session):
        self.session = session

    def _get_owned(
        self,
        model: type[RowType],
        row_id: UUID,
        tenant_id: UUID,
        not_found: type[NotFoundError],
    ) -> RowType:
        row = self.session.get(model, row_id)
        if row is None or row.tenant_id != tenant_id:
            raise not_found(str(row_id))
        return row

    @staticmethod
    def _for_tenant(model: type[RowType], tenant_id: UUID) -> Select:
        return select(model).where(model.tenant_id == tenant_id)
