from __future__ import annotations

import unicodedata
from datetime import date
from decimal import Decimal

import pytest

from stockroom.modules.extraction.fallback import extract_header
from stockroom.modules.extraction.values import parse_date_any, parse_decimal_amount
from stockroom.modules.imports.models import ImportKind


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("12,50", Decimal("12.50")),
        ("1.234", Decimal("1234.00")),
        ("-3,10", Decimal("-3.10")),
        ("EUR 1 234,00", Decimal("1234.00")),
        ("abc", None),
    ],
)
def test_parse_decimal_amount(raw, expected):
    assert parse_decimal_amount(raw) == expected


def test_parse_date_any_accepts_day_first_and_iso():
    assert parse_date_any("2025-03-14") == date(2025, 3, 14)
    assert parse_date_any("14/03/2025") == date(2025, 3, 14)
    assert parse_date_any("14.03.2025") == date(2025, 3, 14)
    assert parse_date_any("31/02/2025") is None
    assert parse_date_any("01/01/1990") is None


def test_sales_header_from_z_report_text():
    text = "\n".join(
        [
            "RESTAURANTE O PATIO",
            "Relatorio de Vendas  15-03-2025",
            "TOTAL GERAL ........ 2.045,30",
            "Total Líquido 1.662,85",
        ]
    )
    header = extract_header(ImportKind.SALES_REPORT, text)
    assert header.kind == "sales_report"
    assert header.sale_date == date(2025, 3, 15)
    assert header.gross_total == Decimal("2045.30")
    assert header.net_total == Decimal("1662.85")
    assert header.has_data()


def test_invoice_header_from_text():
    text = "\n".join(
        [
            "Distribuidora Norte, S.A.",
            "NIF: PT 509876543",
            "Fatura FT A/2025/77",
            "Data 02/04/2025",
            "Total s/ IVA 200,00",
            "Total IVA 46,00",
            "Total c/ IVA",
            "246,00",
        ]
    )
    header = extract_header(ImportKind.INVOICE, text)
    assert header.supplier_tax_id == "509876543"
    assert header.invoice_number == "FT A/2025/77"
    assert header.invoice_date == date(2025, 4, 2)
    assert header.total_net == Decimal("200.00")
    assert header.total_tax == Decimal("46.00")
    assert header.total_gross == Decimal("246.00")


def test_header_without_labels_has_no_data():
    header = extract_header(ImportKind.SALES_REPORT, "nothing useful here")
    assert not header.has_data()


def test_amount_after_label_in_decomposed_text():
    # Every accent is a separate combining mark, so folding shortens the line.
    line = unicodedata.normalize("NFD", "é" * 21 + " 7,00 Total Líquido 12,50")
    header = extract_header(ImportKind.SALES_REPORT, line)
    assert header.net_total == Decimal("12.50")
