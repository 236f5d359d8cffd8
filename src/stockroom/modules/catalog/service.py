from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockroom.modules.catalog.models import MenuItem, Product
from stockroom.modules.imports.models import ImportKind


@dataclass(frozen=True)
class CatalogEntry:
    id: uuid.UUID
    name: str
    price: Decimal | None = None
    unit: str | None = None


def _model_for(kind: ImportKind) -> type[Product] | type[MenuItem]:
    return Product if kind == ImportKind.INVOICE else MenuItem


class CatalogReader:
    """Read-only view of the active catalog a document kind matches against.

    Invoices resolve to products, sales reports to menu items.
    """

    def __init__(self, session: Session, *, tenant_id: uuid.UUID):
        self.session = session
        self.tenant_id = tenant_id

    def list_active(self, kind: ImportKind) -> list[CatalogEntry]:
        model = _model_for(kind)
        rows = self.session.scalars(
            select(model)
            .where(model.tenant_id == self.tenant_id, model.is_active.is_(True))
            .order_by(model.name)
        )
        return [_to_entry(row) for row in rows]

    def get_active(self, kind: ImportKind, entity_id: uuid.UUID) -> CatalogEntry | None:
        model = _model_for(kind)
        row = self.session.scalar(
            select(model).where(
                model.id == entity_id,
                model.tenant_id == self.tenant_id,
                model.is_active.is_(True),
            )
        )
        return _to_entry(row) if row else None


def _to_entry(row: Product | MenuItem) -> CatalogEntry:
    if isinstance(row, MenuItem):
        return CatalogEntry(id=row.id, name=row.name, price=row.price)
    return CatalogEntry(id=row.id, name=row.name, unit=row.unit)
