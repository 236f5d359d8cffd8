from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockroom.core.models import Base, TenantScoped, Timestamped, UUIDPrimaryKey


class Purchase(UUIDPrimaryKey, TenantScoped, Timestamped, Base):
    __tablename__ = "ledger_purchase"

    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("imports_batch.id"), unique=True
    )
    supplier_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    supplier_tax_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_net: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    total_tax: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    total_gross: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    lines = relationship("PurchaseLine", back_populates="purchase")


class PurchaseLine(UUIDPrimaryKey, TenantScoped, Timestamped, Base):
    __tablename__ = "ledger_purchase_line"

    purchase_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("ledger_purchase.id"), index=True
    )
    source_line_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("imports_line_item.id"), unique=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), index=True)
    description: Mapped[str] = mapped_column(Text)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    total_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    purchase = relationship("Purchase", back_populates="lines")


class SaleRecord(UUIDPrimaryKey, TenantScoped, Timestamped, Base):
    __tablename__ = "ledger_sale"

    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("imports_batch.id"), index=True
    )
    source_line_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("imports_line_item.id"), unique=True
    )
    menu_item_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), index=True)
    sale_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str] = mapped_column(Text)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    total_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
