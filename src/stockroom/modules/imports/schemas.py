from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

from stockroom.modules.imports.models import BatchStatus, ImportKind, LineStatus


class InvoiceHeader(BaseModel):
    kind: Literal["invoice"] = "invoice"
    supplier_name: str | None = None
    supplier_tax_id: str | None = None
    invoice_number: str | None = None
    invoice_date: date | None = None
    total_net: Decimal | None = None
    total_tax: Decimal | None = None
    total_gross: Decimal | None = None

    def has_data(self) -> bool:
        return any(
            v is not None
            for v in (self.invoice_date, self.total_net, self.total_tax, self.total_gross)
        )


class TaxBand(BaseModel):
    rate: Decimal
    base: Decimal | None = None
    amount: Decimal | None = None


class Payments(BaseModel):
    cash: Decimal | None = None
    card: Decimal | None = None
    other: Decimal | None = None


class SalesReportHeader(BaseModel):
    kind: Literal["sales_report"] = "sales_report"
    sale_date: date | None = None
    gross_total: Decimal | None = None
    net_total: Decimal | None = None
    tax_bands: list[TaxBand] = Field(default_factory=list)
    payments: Payments = Field(default_factory=Payments)

    def has_data(self) -> bool:
        return any(v is not None for v in (self.sale_date, self.gross_total, self.net_total))


ImportHeader = Annotated[InvoiceHeader | SalesReportHeader, Field(discriminator="kind")]
_header_adapter: TypeAdapter[InvoiceHeader | SalesReportHeader] = TypeAdapter(ImportHeader)


def load_header(raw: dict[str, Any] | None) -> InvoiceHeader | SalesReportHeader | None:
    if not raw:
        return None
    return _header_adapter.validate_python(raw)


def empty_header(kind: ImportKind) -> InvoiceHeader | SalesReportHeader:
    return InvoiceHeader() if kind == ImportKind.INVOICE else SalesReportHeader()


class UploadAccepted(BaseModel):
    id: uuid.UUID
    status: BatchStatus


class LineItemOut(BaseModel):
    id: uuid.UUID
    batch_id: uuid.UUID
    line_number: int
    description_original: str
    description_clean: str
    quantity: Decimal | None
    unit: str | None
    unit_price: Decimal | None
    total_price: Decimal | None
    tax_rate: Decimal | None
    tax_amount: Decimal | None
    matched_entity_id: uuid.UUID | None
    confidence: int | None
    status: LineStatus
    version: int
    metadata_json: dict


class BatchOut(BaseModel):
    id: uuid.UUID
    kind: ImportKind
    filename: str
    mime_type: str
    byte_size: int
    status: BatchStatus
    header: ImportHeader | None = None
    extraction_method: str | None
    error_message: str | None
    retry_suggested: bool
    attempts: int
    created_count: int | None
    matched_count: int | None
    unmatched_count: int | None
    partial: bool | None
    created_at: datetime
    processed_at: datetime | None
    approved_at: datetime | None


class BatchDetailOut(BatchOut):
    lines: list[LineItemOut]


class BatchPage(BaseModel):
    items: list[BatchOut]
    total: int
    limit: int
    offset: int


class MatchRequest(BaseModel):
    entity_id: uuid.UUID
    version: int


class SuggestionOut(BaseModel):
    entity_id: uuid.UUID
    name: str
    confidence: int
    reason: str


class ApprovalResult(BaseModel):
    created_count: int
    matched_count: int
    unmatched_count: int
    partial: bool
