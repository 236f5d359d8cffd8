from __future__ import annotations

import os
import tempfile
import time
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stockroom.core.cache import get_cache
from stockroom.core.config import settings
from stockroom.core.db import SessionLocal
from stockroom.core.logging import get_logger, log_event, log_exception, monotonic_ms
from stockroom.core.storage import StorageError, get_storage
from stockroom.modules.audit.service import record_event
from stockroom.modules.extraction.ai import GeminiExtractionProvider, StrategyError
from stockroom.modules.extraction.fallback import extract_header
from stockroom.modules.extraction.models import ProcessingMetric
from stockroom.modules.extraction.results import (
    Completed,
    FatalError,
    ParseOutcome,
    Parsed,
    ProcessingOutcome,
    RetryableError,
    Skipped,
)
from stockroom.modules.extraction.schemas import ParsedDocument
from stockroom.modules.extraction.text import extract_raw_text
from stockroom.modules.imports.models import BatchStatus, ImportBatch, ImportKind, LineItem
from stockroom.modules.imports.repository import ImportBatchRepository
from stockroom.modules.matching.service import auto_match_lines, normalize_description

logger = get_logger(__name__)

METHOD_FAILED = "failed"


class ExtractionStrategy(Protocol):
    method: str

    def extract(
        self, *, kind: ImportKind, body: bytes, mime_type: str, raw_text: str
    ) -> ParsedDocument: ...


class RegexFallbackStrategy:
    method = "regex-fallback"

    def extract(
        self, *, kind: ImportKind, body: bytes, mime_type: str, raw_text: str
    ) -> ParsedDocument:
        header = extract_header(kind, raw_text)
        if not header.has_data():
            raise StrategyError("no date or totals found in document text")
        return ParsedDocument(header=header, lines=[])


class ParserCascade:
    """Tries each strategy in order; the first document produced wins."""

    def __init__(self, strategies: Sequence[ExtractionStrategy] | None = None):
        self.strategies = list(strategies or default_strategies())

    def parse(
        self, *, kind: ImportKind, body: bytes, mime_type: str, raw_text: str
    ) -> ParseOutcome:
        provider_unavailable = False
        failures: list[str] = []
        for strategy in self.strategies:
            try:
                document = strategy.extract(
                    kind=kind, body=body, mime_type=mime_type, raw_text=raw_text
                )
            except StrategyError as e:
                provider_unavailable = provider_unavailable or e.transient
                failures.append(f"{strategy.method}: {e}")
                log_event(
                    logger,
                    "extraction.strategy.failed",
                    method=strategy.method,
                    kind=kind.value,
                    transient=e.transient,
                    reason=str(e),
                )
                continue
            if document.header.kind != kind.value:
                failures.append(f"{strategy.method}: produced a {document.header.kind} header")
                continue
            return Parsed(
                document=document,
                method=strategy.method,
                provider_unavailable=provider_unavailable,
            )

        message = "Could not extract the document. " + "; ".join(failures)
        if provider_unavailable:
            return RetryableError(message)
        return FatalError(message)


def default_strategies() -> list[ExtractionStrategy]:
    return [GeminiExtractionProvider(), RegexFallbackStrategy()]


@contextmanager
def scratch_document(*, batch: ImportBatch, inline_body: bytes | None) -> Iterator[Path]:
    """Stage the batch document in a private temp file, removed on every exit path."""
    body = inline_body if inline_body is not None else get_storage().get(url=batch.source_url)
    suffix = Path(batch.filename).suffix or ".bin"
    scratch_dir = str(settings.scratch_dir) if settings.scratch_dir else None
    fd, name = tempfile.mkstemp(prefix=f"import-{batch.id}-", suffix=suffix, dir=scratch_dir)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(body)
        yield path
    finally:
        path.unlink(missing_ok=True)


def process_import_batch(
    *,
    batch_id: str,
    inline_body: bytes | None = None,
    cascade: ParserCascade | None = None,
) -> ProcessingOutcome:
    with SessionLocal() as session:
        batch = session.scalar(select(ImportBatch).where(ImportBatch.id == uuid.UUID(batch_id)))
        if not batch:
            return Skipped(batch_id=uuid.UUID(batch_id), reason="missing")

        log_event(
            logger,
            "extraction.start",
            batch_id=str(batch.id),
            tenant_id=str(batch.tenant_id),
            kind=batch.kind.value,
            mime_type=batch.mime_type,
            byte_size=batch.byte_size,
            batch_status=batch.status.value,
        )

        if batch.status not in {BatchStatus.PENDING, BatchStatus.PROCESSING}:
            return Skipped(batch_id=batch.id, reason=f"already {batch.status.value}")

        if not _try_claim_batch(session=session, batch=batch):
            return Skipped(batch_id=batch.id, reason="claimed by another worker")

        cascade = cascade or ParserCascade()
        start = time.monotonic()
        raw_text: str | None = None
        try:
            with scratch_document(batch=batch, inline_body=inline_body) as path:
                body = path.read_bytes()
                raw_text = extract_raw_text(body, batch.mime_type)
                outcome: ParseOutcome = cascade.parse(
                    kind=batch.kind, body=body, mime_type=batch.mime_type, raw_text=raw_text
                )
        except StorageError as e:
            outcome = RetryableError(f"Document download failed: {e}")
        except Exception as e:  # noqa: BLE001
            log_exception(logger, "extraction.error", batch_id=str(batch.id))
            outcome = FatalError(f"Processing failed: {type(e).__name__}: {e}")

        if isinstance(outcome, Parsed):
            try:
                return _persist_parsed(
                    session=session,
                    batch=batch,
                    parsed=outcome,
                    raw_text=raw_text,
                    duration_ms=monotonic_ms(start),
                )
            except Exception as e:  # noqa: BLE001
                session.rollback()
                log_exception(logger, "extraction.persist.error", batch_id=str(batch.id))
                outcome = FatalError(f"Could not store extracted lines: {type(e).__name__}: {e}")

        _record_failure(
            session=session,
            batch=batch,
            outcome=outcome,
            raw_text=raw_text,
            duration_ms=monotonic_ms(start),
        )
        return outcome


def _try_claim_batch(*, session: Session, batch: ImportBatch) -> bool:
    now = datetime.now(UTC)
    stale_before = now - timedelta(minutes=settings.processing_stale_minutes)
    result = session.execute(
        update(ImportBatch)
        .where(
            ImportBatch.id == batch.id,
            (
                (ImportBatch.status == BatchStatus.PENDING)
                | (
                    (ImportBatch.status == BatchStatus.PROCESSING)
                    & (ImportBatch.processing_started_at < stale_before)
                )
            ),
        )
        .values(
            status=BatchStatus.PROCESSING,
            processing_started_at=now,
            attempts=ImportBatch.attempts + 1,
            error_message=None,
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return False
    session.commit()
    session.refresh(batch)
    return True


def _persist_parsed(
    *,
    session: Session,
    batch: ImportBatch,
    parsed: Parsed,
    raw_text: str | None,
    duration_ms: int,
) -> Completed:
    repo = ImportBatchRepository(session, tenant_id=batch.tenant_id)

    # Header first, so lines never exist without one.
    batch.header_json = parsed.document.header.model_dump(mode="json")
    batch.raw_text = raw_text
    batch.extraction_method = parsed.method
    batch.retry_suggested = parsed.provider_unavailable
    session.flush()

    lines = [
        LineItem(
            tenant_id=batch.tenant_id,
            batch_id=batch.id,
            line_number=extracted.line_number,
            description_original=extracted.description_original,
            description_clean=extracted.description_clean or extracted.description_original,
            normalized_description=normalize_description(
                extracted.description_clean or extracted.description_original
            ),
            quantity=extracted.quantity,
            unit=extracted.unit,
            unit_price=extracted.unit_price,
            total_price=extracted.total_price,
            tax_rate=extracted.tax_rate,
            tax_amount=extracted.tax_amount,
            metadata_json={},
        )
        for extracted in parsed.document.lines
    ]
    repo.add_lines(lines)
    session.flush()

    matched = auto_match_lines(session, tenant_id=batch.tenant_id, kind=batch.kind, lines=lines)
    session.flush()

    if not repo.transition(batch, BatchStatus.REVIEWING, processed_at=datetime.now(UTC)):
        raise RuntimeError("Batch left processing while it was being extracted")

    _record_metric(
        session,
        batch=batch,
        method=parsed.method,
        success=True,
        provider_unavailable=parsed.provider_unavailable,
        duration_ms=duration_ms,
        items_extracted=len(lines),
    )
    session.commit()
    get_cache().invalidate_tenant(batch.tenant_id)
    log_event(
        logger,
        "extraction.finish",
        batch_id=str(batch.id),
        status="reviewing",
        method=parsed.method,
        provider_unavailable=parsed.provider_unavailable,
        items_extracted=len(lines),
        items_matched=matched,
        duration_ms=duration_ms,
    )
    return Completed(
        batch_id=batch.id,
        method=parsed.method,
        items_extracted=len(lines),
        items_matched=matched,
        provider_unavailable=parsed.provider_unavailable,
    )


def _record_failure(
    *,
    session: Session,
    batch: ImportBatch,
    outcome: RetryableError | FatalError,
    raw_text: str | None,
    duration_ms: int,
) -> None:
    session.refresh(batch)
    retryable = isinstance(outcome, RetryableError)
    repo = ImportBatchRepository(session, tenant_id=batch.tenant_id)
    if batch.status != BatchStatus.PROCESSING or not repo.transition(
        batch,
        BatchStatus.ERROR,
        error_message=outcome.message[:4000],
        retry_suggested=retryable,
        raw_text=raw_text,
        processed_at=datetime.now(UTC),
    ):
        log_event(
            logger,
            "extraction.failure.unrecorded",
            batch_id=str(batch.id),
            batch_status=batch.status.value,
        )
        session.rollback()
        return

    _record_metric(
        session,
        batch=batch,
        method=METHOD_FAILED,
        success=False,
        provider_unavailable=retryable,
        duration_ms=duration_ms,
        items_extracted=0,
        error_message=outcome.message,
    )
    record_event(
        session,
        tenant_id=batch.tenant_id,
        batch_id=batch.id,
        event_type="import.failed",
        payload={"message": outcome.message, "retryable": retryable, "attempt": batch.attempts},
    )
    session.commit()
    get_cache().invalidate_tenant(batch.tenant_id)
    log_event(
        logger,
        "extraction.finish",
        batch_id=str(batch.id),
        status="error",
        retryable=retryable,
        error=outcome.message,
        duration_ms=duration_ms,
    )


def _record_metric(
    session: Session,
    *,
    batch: ImportBatch,
    method: str,
    success: bool,
    provider_unavailable: bool,
    duration_ms: int,
    items_extracted: int,
    error_message: str | None = None,
) -> None:
    session.add(
        ProcessingMetric(
            tenant_id=batch.tenant_id,
            batch_id=batch.id,
            attempt=batch.attempts,
            method=method,
            success=success,
            provider_unavailable=provider_unavailable,
            duration_ms=duration_ms,
            items_extracted=items_extracted,
            error_message=error_message,
        )
    )
