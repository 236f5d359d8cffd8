from __future__ import annotations

import re
import unicodedata
from decimal import Decimal

from stockroom.core.config import settings
from stockroom.modules.extraction.values import (
    DATE_RE,
    parse_date_any,
    parse_decimal_amount,
)
from stockroom.modules.imports.models import ImportKind
from stockroom.modules.imports.schemas import InvoiceHeader, SalesReportHeader

_AMOUNT_RE = re.compile(r"-?\d{1,3}(?:[.\s]\d{3})+[.,]\d{2}\b|-?\d+[.,]\d{2}\b")
_NIF_RE = re.compile(r"\bNIF[:\s.]*(?:PT)?\s*(\d{9})\b", re.I)
_INVOICE_NUMBER_RE = re.compile(
    r"\b(?:Fatura|Factura|Invoice|FT)\s*(?:n\.?\s*[oº°]?|no\.?|#)?\s*[:.]?\s*"
    r"([A-Z0-9][A-Z0-9/ -]{2,30}[0-9])",
    re.I,
)


def _fold(text: str) -> str:
    s = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in s if unicodedata.category(ch) != "Mn")


def _amount_after_label(lines: list[str], labels: tuple[str, ...]) -> Decimal | None:
    """First amount following any label, on the same line or the next one."""
    folded_labels = sorted((_fold(label) for label in labels), key=len, reverse=True)
    for i, line in enumerate(lines):
        folded = _fold(line)
        for label in folded_labels:
            pos = folded.find(label)
            if pos < 0:
                continue
            # Folding drops combining marks, so offsets only hold in the folded text.
            tail = folded[pos + len(label) :]
            m = _AMOUNT_RE.search(tail)
            if not m and i + 1 < len(lines):
                m = _AMOUNT_RE.search(lines[i + 1])
            if m:
                amount = parse_decimal_amount(m.group(0))
                if amount is not None:
                    return amount
    return None


def _first_date(text: str):
    for m in DATE_RE.finditer(text):
        d = parse_date_any(m.group(1))
        if d:
            return d
    return None


def extract_header(kind: ImportKind, raw_text: str) -> InvoiceHeader | SalesReportHeader:
    """Keyword extraction of header fields from raw document text.

    Line items are never produced here; layouts vary too much for a generic regex.
    """
    text = raw_text or ""
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]

    if kind == ImportKind.SALES_REPORT:
        return SalesReportHeader(
            sale_date=_first_date(text),
            gross_total=_amount_after_label(lines, settings.fallback_sales_gross_labels),
            net_total=_amount_after_label(lines, settings.fallback_sales_net_labels),
        )

    nif = _NIF_RE.search(text)
    number = _INVOICE_NUMBER_RE.search(text)
    return InvoiceHeader(
        supplier_tax_id=nif.group(1) if nif else None,
        invoice_number=number.group(1).strip() if number else None,
        invoice_date=_first_date(text),
        total_net=_amount_after_label(lines, settings.fallback_invoice_net_labels),
        total_tax=_amount_after_label(lines, settings.fallback_invoice_tax_labels),
        total_gross=_amount_after_label(lines, settings.fallback_invoice_gross_labels),
    )
