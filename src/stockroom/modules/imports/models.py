from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockroom.core.models import Base, TenantScoped, Timestamped, UUIDPrimaryKey


class ImportKind(str, enum.Enum):
    INVOICE = "invoice"
    SALES_REPORT = "sales_report"


class BatchStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    REVIEWING = "reviewing"
    APPROVED = "approved"
    REJECTED = "rejected"
    ERROR = "error"


class LineStatus(str, enum.Enum):
    PENDING = "pending"
    MATCHED = "matched"
    APPROVED = "approved"


class ImportBatch(UUIDPrimaryKey, TenantScoped, Timestamped, Base):
    __tablename__ = "imports_batch"

    kind: Mapped[ImportKind] = mapped_column(Enum(ImportKind, native_enum=False), index=True)
    uploaded_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True))

    filename: Mapped[str] = mapped_column(String(512))
    source_url: Mapped[str] = mapped_column(String(1024))
    mime_type: Mapped[str] = mapped_column(String(100))
    byte_size: Mapped[int] = mapped_column(Integer)
    sha256: Mapped[str] = mapped_column(String(64), index=True)

    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus, native_enum=False), default=BatchStatus.PENDING, index=True
    )
    header_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    raw_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    extraction_method: Mapped[str | None] = mapped_column(String(32), nullable=True)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_suggested: Mapped[bool] = mapped_column(Boolean, default=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0)

    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    created_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    matched_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    unmatched_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    partial: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    lines = relationship(
        "LineItem",
        back_populates="batch",
        order_by="LineItem.line_number",
        cascade="all, delete-orphan",
    )


class LineItem(UUIDPrimaryKey, TenantScoped, Timestamped, Base):
    __tablename__ = "imports_line_item"
    __table_args__ = (
        UniqueConstraint("batch_id", "line_number", name="uq_imports_line_item_number"),
        CheckConstraint(
            "(confidence IS NULL) OR (matched_entity_id IS NOT NULL "
            "AND confidence >= 0 AND confidence <= 100)",
            name="ck_imports_line_item_confidence",
        ),
    )

    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("imports_batch.id"), index=True
    )
    line_number: Mapped[int] = mapped_column(Integer)

    description_original: Mapped[str] = mapped_column(Text)
    description_clean: Mapped[str] = mapped_column(Text)
    normalized_description: Mapped[str] = mapped_column(String(500), index=True)

    quantity: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    total_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    tax_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    matched_entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[LineStatus] = mapped_column(
        Enum(LineStatus, native_enum=False), default=LineStatus.PENDING, index=True
    )
    version: Mapped[int] = mapped_column(Integer, default=1)
    metadata_json: Mapped[dict] = mapped_column(JSON, default=dict)

    batch = relationship("ImportBatch", back_populates="lines")
