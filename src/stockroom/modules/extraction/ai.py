from __future__ import annotations

import base64
import json
import re
import time
from typing import Any

import httpx
from pydantic import ValidationError

from stockroom.core.config import settings
from stockroom.core.logging import get_logger, log_event, monotonic_ms
from stockroom.core.ratelimit import get_provider_limiter
from stockroom.modules.extraction.schemas import ExtractedLine, ParsedDocument
from stockroom.modules.extraction.values import parse_date_any, to_decimal
from stockroom.modules.imports.models import ImportKind
from stockroom.modules.imports.schemas import (
    InvoiceHeader,
    Payments,
    SalesReportHeader,
    TaxBand,
)

logger = get_logger(__name__)

_TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}

_INVOICE_PROMPT = """\
You read Portuguese supplier invoices (faturas) for a restaurant.
Extract the document and return ONLY a JSON object with this exact shape:
{
  "supplier_name": string|null,
  "supplier_tax_id": string|null,        // NIF, 9 digits
  "invoice_number": string|null,
  "invoice_date": "YYYY-MM-DD"|null,
  "total_net": number|null,              // total sem IVA
  "total_tax": number|null,              // total IVA
  "total_gross": number|null,            // total com IVA
  "lines": [
    {
      "description": string,             // exactly as printed
      "clean_description": string,       // product name without codes or packaging noise
      "quantity": number|null,
      "unit": string|null,               // KG, UN, LT, CX ...
      "unit_price": number|null,
      "total_price": number|null,
      "tax_rate": number|null,           // 6, 13 or 23
      "tax_amount": number|null
    }
  ]
}
Use numbers with a dot as decimal separator. Only use values present in the document.
"""

_SALES_PROMPT = """\
You read point-of-sale sales reports (Z reports, relatorios de vendas) for a restaurant.
Extract the document and return ONLY a JSON object with this exact shape:
{
  "sale_date": "YYYY-MM-DD"|null,
  "gross_total": number|null,            // Total Bruto / Total Geral
  "net_total": number|null,              // Total Liquido
  "tax": [ {"rate": number, "base": number|null, "amount": number|null} ],
  "payments": {"cash": number|null, "card": number|null, "other": number|null},
  "items": [
    {
      "description": string,
      "quantity": number|null,
      "unit_price": number|null,
      "total_price": number|null
    }
  ]
}
If the report has only totals and no item list, return "items": [].
Use numbers with a dot as decimal separator. Only use values present in the document.
"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.I)


class StrategyError(Exception):
    """An extraction strategy could not produce a document."""

    transient = False


class ProviderError(StrategyError):
    pass


class TransientProviderError(ProviderError):
    """Provider overloaded, rate limited or unreachable; worth trying again later."""

    transient = True


class FatalProviderError(ProviderError):
    pass


class MalformedResponseError(FatalProviderError):
    pass


def provider_configured() -> bool:
    return bool(settings.gemini_api_key)


class GeminiExtractionProvider:
    method = "ai"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout_s: float | None = None,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key or settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.timeout_s = timeout_s or settings.gemini_timeout_seconds
        self._client = client

    def extract(
        self, *, kind: ImportKind, body: bytes, mime_type: str, raw_text: str
    ) -> ParsedDocument:
        prompt = _INVOICE_PROMPT if kind == ImportKind.INVOICE else _SALES_PROMPT
        content = self.generate(body=body, mime_type=mime_type, prompt=prompt)
        obj = parse_json_object(content)
        if not isinstance(obj, dict):
            raise MalformedResponseError("Provider response is not a JSON object")
        try:
            if kind == ImportKind.INVOICE:
                return _invoice_document(obj)
            return _sales_document(obj)
        except (ValidationError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Provider response failed validation: {e}") from e

    def generate(self, *, body: bytes, mime_type: str, prompt: str) -> str:
        if not self.api_key:
            raise FatalProviderError("Extraction provider is not configured")
        limiter = get_provider_limiter()
        if not limiter.acquire(max_wait_s=settings.provider_rate_limit_max_wait_seconds):
            raise TransientProviderError("Provider rate limit exhausted")

        url = f"{self.base_url}/models/{self.model}:generateContent"
        payload = {
            "contents": [
                {
                    "parts": [
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(body).decode("ascii"),
                            }
                        },
                        {"text": prompt},
                    ]
                }
            ],
            "generationConfig": {"temperature": 0, "responseMimeType": "application/json"},
        }
        start = time.monotonic()
        try:
            resp = self._post(url, payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            log_event(
                logger,
                "extraction.provider.http_error",
                model=self.model,
                status_code=status_code,
                duration_ms=monotonic_ms(start),
            )
            if status_code in _TRANSIENT_STATUS_CODES:
                raise TransientProviderError(f"Provider returned HTTP {status_code}") from e
            raise FatalProviderError(f"Provider returned HTTP {status_code}") from e
        except (httpx.TimeoutException, httpx.TransportError) as e:
            log_event(
                logger,
                "extraction.provider.unreachable",
                model=self.model,
                error_type=type(e).__name__,
                duration_ms=monotonic_ms(start),
            )
            raise TransientProviderError(f"Provider unreachable: {type(e).__name__}") from e

        log_event(
            logger,
            "extraction.provider.success",
            model=self.model,
            byte_size=len(body),
            duration_ms=monotonic_ms(start),
        )
        try:
            raw = resp.json()
            parts = raw["candidates"][0]["content"]["parts"]
            text = "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict))
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError("Provider response has no candidates") from e
        if not text.strip():
            raise MalformedResponseError("Provider returned an empty response")
        return text

    def _post(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        headers = {"x-goog-api-key": str(self.api_key), "Content-Type": "application/json"}
        if self._client is not None:
            return self._client.post(url, headers=headers, json=payload, timeout=self.timeout_s)
        return httpx.post(
            url, headers=headers, json=payload, timeout=self.timeout_s, follow_redirects=True
        )


def parse_json_object(content: str) -> Any:
    c = _FENCE_RE.sub("", (content or "").strip()).strip()
    if not c:
        return None
    try:
        return json.loads(c)
    except json.JSONDecodeError:
        pass

    # Fallback: extract the first {...} block.
    m = re.search(r"\{.*\}", c, re.S)
    if not m:
        return None
    try:
        return json.loads(m.group(0))
    except json.JSONDecodeError:
        return None


def _clean_str(value: Any, *, max_len: int = 300) -> str | None:
    if value is None:
        return None
    s = " ".join(str(value).split())
    return s[:max_len] or None


def _lines(items: Any, *, with_tax: bool) -> list[ExtractedLine]:
    out: list[ExtractedLine] = []
    if not isinstance(items, list):
        return out
    for item in items:
        if not isinstance(item, dict):
            continue
        description = _clean_str(item.get("description"), max_len=1000)
        if not description:
            continue
        out.append(
            ExtractedLine(
                line_number=len(out) + 1,
                description_original=description,
                description_clean=_clean_str(item.get("clean_description")) or description,
                quantity=to_decimal(item.get("quantity")),
                unit=_clean_str(item.get("unit"), max_len=32),
                unit_price=to_decimal(item.get("unit_price")),
                total_price=to_decimal(item.get("total_price")),
                tax_rate=to_decimal(item.get("tax_rate")) if with_tax else None,
                tax_amount=to_decimal(item.get("tax_amount")) if with_tax else None,
            )
        )
    return out


def _invoice_document(obj: dict[str, Any]) -> ParsedDocument:
    header = InvoiceHeader(
        supplier_name=_clean_str(obj.get("supplier_name")),
        supplier_tax_id=_clean_str(obj.get("supplier_tax_id"), max_len=32),
        invoice_number=_clean_str(obj.get("invoice_number"), max_len=100),
        invoice_date=parse_date_any(obj.get("invoice_date")),
        total_net=to_decimal(obj.get("total_net")),
        total_tax=to_decimal(obj.get("total_tax")),
        total_gross=to_decimal(obj.get("total_gross")),
    )
    lines = _lines(obj.get("lines"), with_tax=True)
    if not lines and not header.has_data():
        raise ValueError("no header fields and no lines")
    return ParsedDocument(header=header, lines=lines)


def _sales_document(obj: dict[str, Any]) -> ParsedDocument:
    bands: list[TaxBand] = []
    for band in obj.get("tax") or []:
        if not isinstance(band, dict):
            continue
        rate = to_decimal(band.get("rate"))
        if rate is None:
            continue
        bands.append(
            TaxBand(
                rate=rate,
                base=to_decimal(band.get("base")),
                amount=to_decimal(band.get("amount")),
            )
        )
    payments_raw = obj.get("payments") if isinstance(obj.get("payments"), dict) else {}
    header = SalesReportHeader(
        sale_date=parse_date_any(obj.get("sale_date")),
        gross_total=to_decimal(obj.get("gross_total")),
        net_total=to_decimal(obj.get("net_total")),
        tax_bands=bands,
        payments=Payments(
            cash=to_decimal(payments_raw.get("cash")),
            card=to_decimal(payments_raw.get("card")),
            other=to_decimal(payments_raw.get("other")),
        ),
    )
    lines = _lines(obj.get("items"), with_tax=False)
    if not lines and not header.has_data():
        raise ValueError("no header fields and no items")
    return ParsedDocument(header=header, lines=lines)
