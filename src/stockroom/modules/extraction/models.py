from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from stockroom.core.models import Base, TenantScoped, UUIDPrimaryKey, utcnow


class ProcessingMetric(UUIDPrimaryKey, TenantScoped, Base):
    __tablename__ = "extraction_processing_metric"

    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("imports_batch.id"), index=True
    )
    attempt: Mapped[int] = mapped_column(Integer, default=1)
    # ai | regex-fallback | failed
    method: Mapped[str] = mapped_column(String(32), index=True)
    success: Mapped[bool] = mapped_column(Boolean)
    provider_unavailable: Mapped[bool] = mapped_column(Boolean, default=False)
    duration_ms: Mapped[int] = mapped_column(Integer)
    items_extracted: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
