from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockroom.core.cache import get_cache
from stockroom.modules.imports.models import ImportBatch, LineItem
from stockroom.modules.imports.schemas import InvoiceHeader, SalesReportHeader
from stockroom.modules.ledger.models import Purchase, PurchaseLine, SaleRecord


def create_purchase(
    session: Session,
    *,
    batch: ImportBatch,
    header: InvoiceHeader,
    lines: list[LineItem],
    created_by: uuid.UUID,
) -> int:
    purchase = Purchase(
        tenant_id=batch.tenant_id,
        batch_id=batch.id,
        supplier_name=header.supplier_name,
        supplier_tax_id=header.supplier_tax_id,
        invoice_number=header.invoice_number,
        invoice_date=header.invoice_date,
        total_net=header.total_net,
        total_tax=header.total_tax,
        total_gross=header.total_gross,
        created_by=created_by,
    )
    session.add(purchase)
    session.flush()
    session.add_all(
        [
            PurchaseLine(
                tenant_id=batch.tenant_id,
                purchase_id=purchase.id,
                source_line_id=line.id,
                product_id=line.matched_entity_id,
                description=line.description_clean,
                quantity=line.quantity,
                unit=line.unit,
                unit_price=line.unit_price,
                total_price=line.total_price,
                tax_rate=line.tax_rate,
            )
            for line in lines
        ]
    )
    return len(lines)


def create_sales(
    session: Session,
    *,
    batch: ImportBatch,
    header: SalesReportHeader,
    lines: list[LineItem],
    created_by: uuid.UUID,
) -> int:
    session.add_all(
        [
            SaleRecord(
                tenant_id=batch.tenant_id,
                batch_id=batch.id,
                source_line_id=line.id,
                menu_item_id=line.matched_entity_id,
                sale_date=header.sale_date,
                description=line.description_clean,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
                created_by=created_by,
            )
            for line in lines
        ]
    )
    return len(lines)


def tenant_totals(session: Session, *, tenant_id: uuid.UUID) -> dict[str, str | int]:
    def compute() -> dict[str, str | int]:
        purchases = session.execute(
            select(
                func.count(PurchaseLine.id),
                func.coalesce(func.sum(PurchaseLine.total_price), 0),
            ).where(PurchaseLine.tenant_id == tenant_id)
        ).one()
        sales = session.execute(
            select(
                func.count(SaleRecord.id),
                func.coalesce(func.sum(SaleRecord.total_price), 0),
            ).where(SaleRecord.tenant_id == tenant_id)
        ).one()
        return {
            "purchase_lines": int(purchases[0]),
            "purchases_total": str(Decimal(str(purchases[1])).quantize(Decimal("0.01"))),
            "sale_lines": int(sales[0]),
            "sales_total": str(Decimal(str(sales[1])).quantize(Decimal("0.01"))),
        }

    return get_cache().get_or_compute(
        namespace="ledger", tenant_id=tenant_id, name="totals", compute=compute
    )
