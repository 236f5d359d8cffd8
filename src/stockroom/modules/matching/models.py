from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from stockroom.core.models import Base, TenantScoped, UUIDPrimaryKey, utcnow
from stockroom.modules.imports.models import ImportKind


class MatchHistory(UUIDPrimaryKey, TenantScoped, Base):
    """Append-only record of a reviewer tying a description to a catalog entity."""

    __tablename__ = "matching_history"
    __table_args__ = (
        Index("ix_matching_history_lookup", "tenant_id", "kind", "normalized_description"),
    )

    kind: Mapped[ImportKind] = mapped_column(Enum(ImportKind, native_enum=False))
    normalized_description: Mapped[str] = mapped_column(String(500))
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True))
    confidence: Mapped[int] = mapped_column(Integer, default=100)
    confirmed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
