from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from stockroom.core.errors import NotFound
from stockroom.modules.imports.models import (
    BatchStatus,
    ImportBatch,
    ImportKind,
    LineItem,
)
from stockroom.modules.imports.state import ensure_transition


class ImportBatchRepository:
    """Batch and line access for a single tenant.

    Every query is filtered on the tenant the repository was built for, so a
    caller cannot reach another tenant's rows by id.
    """

    def __init__(self, session: Session, *, tenant_id: uuid.UUID):
        self.session = session
        self.tenant_id = tenant_id

    def add(self, batch: ImportBatch) -> ImportBatch:
        if batch.tenant_id != self.tenant_id:
            raise ValueError("Batch belongs to another tenant")
        self.session.add(batch)
        return batch

    def get(self, batch_id: uuid.UUID, *, kind: ImportKind | None = None) -> ImportBatch | None:
        stmt = select(ImportBatch).where(
            ImportBatch.id == batch_id, ImportBatch.tenant_id == self.tenant_id
        )
        if kind is not None:
            stmt = stmt.where(ImportBatch.kind == kind)
        return self.session.scalar(stmt)

    def require(self, batch_id: uuid.UUID, *, kind: ImportKind | None = None) -> ImportBatch:
        batch = self.get(batch_id, kind=kind)
        if not batch:
            raise NotFound("Import not found")
        return batch

    def list(
        self, *, kind: ImportKind, limit: int, offset: int
    ) -> tuple[list[ImportBatch], int]:
        where = (ImportBatch.tenant_id == self.tenant_id, ImportBatch.kind == kind)
        total = self.session.scalar(select(func.count()).select_from(ImportBatch).where(*where))
        items = list(
            self.session.scalars(
                select(ImportBatch)
                .where(*where)
                .order_by(ImportBatch.created_at.desc(), ImportBatch.id)
                .limit(limit)
                .offset(offset)
            )
        )
        return items, int(total or 0)

    def status_counts(self, *, kind: ImportKind) -> dict[str, int]:
        rows = self.session.execute(
            select(ImportBatch.status, func.count())
            .where(ImportBatch.tenant_id == self.tenant_id, ImportBatch.kind == kind)
            .group_by(ImportBatch.status)
        ).all()
        counts = {s.value: 0 for s in BatchStatus}
        for status, count in rows:
            counts[status.value] = int(count)
        counts["total"] = sum(counts.values())
        return counts

    def lines(self, batch_id: uuid.UUID) -> list[LineItem]:
        return list(
            self.session.scalars(
                select(LineItem)
                .where(LineItem.batch_id == batch_id, LineItem.tenant_id == self.tenant_id)
                .order_by(LineItem.line_number)
            )
        )

    def get_line(self, batch_id: uuid.UUID, line_id: uuid.UUID) -> LineItem:
        line = self.session.scalar(
            select(LineItem).where(
                LineItem.id == line_id,
                LineItem.batch_id == batch_id,
                LineItem.tenant_id == self.tenant_id,
            )
        )
        if not line:
            raise NotFound("Line not found")
        return line

    def add_lines(self, lines: list[LineItem]) -> None:
        for line in lines:
            if line.tenant_id != self.tenant_id:
                raise ValueError("Line belongs to another tenant")
        self.session.add_all(lines)

    def transition(
        self, batch: ImportBatch, target: BatchStatus, **values: Any
    ) -> bool:
        """Move ``batch`` to ``target`` only if its stored status still allows it.

        Returns False when a concurrent writer got there first.
        """
        ensure_transition(batch.status, target)
        result = self.session.execute(
            update(ImportBatch)
            .where(
                ImportBatch.id == batch.id,
                ImportBatch.tenant_id == self.tenant_id,
                ImportBatch.status == batch.status,
            )
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return False
        self.session.refresh(batch)
        return True
