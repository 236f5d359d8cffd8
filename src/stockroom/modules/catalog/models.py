from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from stockroom.core.models import Base, TenantScoped, Timestamped, UUIDPrimaryKey


class Product(UUIDPrimaryKey, TenantScoped, Timestamped, Base):
    __tablename__ = "catalog_product"

    name: Mapped[str] = mapped_column(String(300))
    code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)


class MenuItem(UUIDPrimaryKey, TenantScoped, Timestamped, Base):
    __tablename__ = "catalog_menu_item"

    name: Mapped[str] = mapped_column(String(300))
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
