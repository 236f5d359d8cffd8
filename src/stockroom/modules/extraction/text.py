from __future__ import annotations

from io import BytesIO

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from stockroom.core.config import settings
from stockroom.core.logging import get_logger, log_event

logger = get_logger(__name__)


def extract_raw_text(body: bytes, mime_type: str) -> str:
    """Text layer of a PDF, with OCR for scanned pages and image uploads."""
    if mime_type == "application/pdf":
        pages, ocr_pages = _extract_pdf_pages(body)
        log_event(logger, "extraction.raw_text", pages=len(pages), ocr_pages=ocr_pages)
        return "\n\n".join(pages).strip()
    try:
        image = Image.open(BytesIO(body))
        image.load()
    except (UnidentifiedImageError, OSError):
        return ""
    return _ocr_image(image).strip()


def _extract_pdf_pages(body: bytes) -> tuple[list[str], int]:
    try:
        reader = PdfReader(BytesIO(body))
    except PdfReadError:
        return [], 0
    pages: list[str] = []
    ocr_pages = 0
    for page in reader.pages:
        text = (page.extract_text() or "").replace(" ", " ").replace("\xa0", " ")
        if not text.strip():
            ocr_pages += 1
            text = _ocr_pdf_page(page) or text
        pages.append(text)
    return pages, ocr_pages


def _ocr_pdf_page(page) -> str:
    # Scanned pages carry the scan as one large embedded image.
    best_image = None
    best_area = 0
    try:
        for image_file in page.images:
            image = image_file.image
            if image is None:
                continue
            area = image.width * image.height
            if area > best_area:
                best_area = area
                best_image = image
    except (PdfReadError, OSError, ValueError):
        return ""
    if best_image is None:
        return ""
    return _ocr_image(best_image)


def _ocr_image(image: Image.Image) -> str:
    try:
        import pytesseract
    except ImportError:
        return ""

    if image.mode not in {"RGB", "L"}:
        image = image.convert("RGB")
    try:
        return pytesseract.image_to_string(image, lang=settings.tesseract_lang) or ""
    except pytesseract.TesseractError:
        log_event(logger, "extraction.ocr.failed", width=image.width, height=image.height)
        return ""
    except pytesseract.TesseractNotFoundError:
        return ""
