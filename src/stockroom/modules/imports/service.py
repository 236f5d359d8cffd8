from __future__ import annotations

import hashlib
import mimetypes
import uuid
from dataclasses import dataclass
from io import BytesIO
from pathlib import PurePath

from PIL import Image, UnidentifiedImageError
from sqlalchemy.orm import Session

from stockroom.core.cache import get_cache
from stockroom.core.config import settings
from stockroom.core.errors import UploadValidationError
from stockroom.core.logging import get_logger, log_event
from stockroom.core.storage import get_storage
from stockroom.modules.audit.service import record_event
from stockroom.modules.imports.models import BatchStatus, ImportBatch, ImportKind
from stockroom.modules.imports.repository import ImportBatchRepository

logger = get_logger(__name__)

PDF_MIME = "application/pdf"
_MIME_ALIASES = {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg"}


@dataclass(frozen=True)
class UploadPart:
    filename: str
    content_type: str | None
    body: bytes


@dataclass(frozen=True)
class StoredUpload:
    batch: ImportBatch
    body: bytes


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _sanitize_filename(name: str) -> str:
    name = name.replace("\\", "/").split("/")[-1].strip()
    return " ".join(name.split())


def normalize_mime(*, content_type: str | None, filename: str) -> str | None:
    mime = (content_type or "").split(";")[0].strip().lower()
    if not mime or mime == "application/octet-stream":
        mime = (mimetypes.guess_type(filename)[0] or "").lower()
    mime = _MIME_ALIASES.get(mime, mime)
    return mime or None


def validate_upload(parts: list[UploadPart]) -> list[str]:
    """Check every part against the allow-list and size caps; return their mime types."""
    if not parts:
        raise UploadValidationError("No file uploaded")
    max_bytes = settings.upload_max_bytes
    allowed = set(settings.upload_allowed_mime_types)
    mimes: list[str] = []
    total = 0
    for part in parts:
        if not part.body:
            raise UploadValidationError(f"{part.filename or 'upload'} is empty")
        if len(part.body) > max_bytes:
            raise UploadValidationError(
                f"{part.filename or 'upload'} exceeds the {max_bytes // (1024 * 1024)} MB limit"
            )
        mime = normalize_mime(content_type=part.content_type, filename=part.filename)
        if mime not in allowed:
            raise UploadValidationError(
                f"Unsupported file type {mime or 'unknown'}; upload a PDF or JPEG/PNG/WebP image"
            )
        total += len(part.body)
        mimes.append(mime)
    if total > max_bytes:
        raise UploadValidationError(
            f"Upload exceeds the {max_bytes // (1024 * 1024)} MB limit"
        )
    if len(parts) > 1 and PDF_MIME in mimes:
        raise UploadValidationError("Only images can be combined into one document")
    return mimes


def merge_images_to_pdf(parts: list[UploadPart]) -> bytes:
    """One PDF page per decodable image, each page at the image's pixel size."""
    pages: list[Image.Image] = []
    for part in parts:
        try:
            image = Image.open(BytesIO(part.body))
            image.load()
        except (UnidentifiedImageError, OSError):
            log_event(logger, "upload.image.skipped", filename=part.filename)
            continue
        pages.append(image.convert("RGB") if image.mode != "RGB" else image)
    if not pages:
        raise UploadValidationError("None of the uploaded images could be read")
    out = BytesIO()
    pages[0].save(out, format="PDF", save_all=True, append_images=pages[1:], resolution=72.0)
    return out.getvalue()


def create_import(
    session: Session,
    *,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    kind: ImportKind,
    parts: list[UploadPart],
) -> StoredUpload:
    mimes = validate_upload(parts)
    if len(parts) == 1:
        part = parts[0]
        filename = _sanitize_filename(part.filename) or "upload.bin"
        body = part.body
        mime = mimes[0]
    else:
        stem = PurePath(_sanitize_filename(parts[0].filename) or "scan").stem
        filename = f"{stem}-merged.pdf"
        body = merge_images_to_pdf(parts)
        mime = PDF_MIME

    stored = get_storage().put(
        body=body, name=filename, folder=f"imports/{kind.value}/tenant_{tenant_id}"
    )
    batch = ImportBatch(
        tenant_id=tenant_id,
        kind=kind,
        uploaded_by=user_id,
        filename=filename,
        source_url=stored.url,
        mime_type=mime,
        byte_size=stored.byte_size,
        sha256=_sha256_hex(body),
        status=BatchStatus.PENDING,
        attempts=0,
        retry_suggested=False,
    )
    ImportBatchRepository(session, tenant_id=tenant_id).add(batch)
    session.flush()
    record_event(
        session,
        tenant_id=tenant_id,
        batch_id=batch.id,
        actor_user_id=user_id,
        event_type="import.uploaded",
        payload={"filename": filename, "parts": len(parts), "byte_size": stored.byte_size},
    )
    session.commit()
    session.refresh(batch)
    get_cache().invalidate_tenant(tenant_id)
    log_event(
        logger,
        "upload.stored",
        batch_id=str(batch.id),
        kind=kind.value,
        parts=len(parts),
        mime_type=mime,
        byte_size=stored.byte_size,
    )
    return StoredUpload(batch=batch, body=body)


def import_stats(session: Session, *, tenant_id: uuid.UUID, kind: ImportKind) -> dict[str, int]:
    repo = ImportBatchRepository(session, tenant_id=tenant_id)
    return get_cache().get_or_compute(
        namespace="imports",
        tenant_id=tenant_id,
        name=f"stats:{kind.value}",
        compute=lambda: repo.status_counts(kind=kind),
    )
