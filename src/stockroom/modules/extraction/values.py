from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

_DATE_PATTERNS = (
    r"[0-9]{4}-[0-9]{2}-[0-9]{2}",  # 2025-03-14
    r"[0-9]{1,2}/[0-9]{1,2}/[0-9]{4}",  # 14/03/2025
    r"[0-9]{1,2}-[0-9]{1,2}-[0-9]{4}",  # 14-03-2025
    r"[0-9]{1,2}\.[0-9]{1,2}\.[0-9]{4}",  # 14.03.2025
)
DATE_RE = re.compile(r"\b(" + "|".join(_DATE_PATTERNS) + r")\b")


def _is_plausible_document_date(d: date) -> bool:
    return 2000 <= d.year <= date.today().year + 1


def parse_date_any(s: str | None) -> date | None:
    """Parse ISO or day-first dates as printed on Portuguese invoices and Z reports."""
    if not s:
        return None
    raw = str(s).strip()
    for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y"):
        try:
            d = datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
        return d if _is_plausible_document_date(d) else None
    return None


def parse_decimal_amount(raw: str) -> Decimal | None:
    s = str(raw or "").strip()
    if not s:
        return None
    s = s.replace(" ", " ").replace("\xa0", " ")
    negative = s.startswith("-")
    s = re.sub(r"[^0-9,.' ]", "", s)
    s = s.replace(" ", "").replace("'", "")
    if not s or not any(ch.isdigit() for ch in s):
        return None

    if "," in s and "." in s:
        decimal_sep = "," if s.rfind(",") > s.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        normalized = s.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif "," in s or "." in s:
        sep = "," if "," in s else "."
        if s.count(sep) > 1:
            normalized = s.replace(sep, "")
        else:
            idx = s.rfind(sep)
            digits_after = len(s) - idx - 1
            if digits_after == 3 and len(s[:idx]) <= 3:
                normalized = s.replace(sep, "")
            else:
                normalized = s.replace(sep, ".")
    else:
        normalized = s

    try:
        value = Decimal(normalized).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None
    return -value if negative else value


def to_decimal(value: Any) -> Decimal | None:
    """Coerce a model-produced number (int, float or locale string) to Decimal."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None
    if isinstance(value, str):
        return parse_decimal_amount(value)
    return None
