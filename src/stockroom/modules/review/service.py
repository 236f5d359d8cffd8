from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from stockroom.core.cache import get_cache
from stockroom.core.db import SessionLocal
from stockroom.core.errors import ConcurrencyConflict, InvalidTransition
from stockroom.core.logging import get_logger, log_event
from stockroom.modules.audit.service import record_event
from stockroom.modules.imports.models import BatchStatus, ImportBatch, LineItem, LineStatus
from stockroom.modules.imports.repository import ImportBatchRepository
from stockroom.modules.imports.schemas import (
    ApprovalResult,
    InvoiceHeader,
    empty_header,
    load_header,
)
from stockroom.modules.ledger.service import create_purchase, create_sales

logger = get_logger(__name__)


def _stored_result(batch: ImportBatch) -> ApprovalResult:
    return ApprovalResult(
        created_count=batch.created_count or 0,
        matched_count=batch.matched_count or 0,
        unmatched_count=batch.unmatched_count or 0,
        partial=bool(batch.partial),
    )


def approve_import(
    session: Session, *, batch: ImportBatch, user_id: uuid.UUID
) -> ApprovalResult:
    """Commit every matched line as a downstream record and close the batch.

    Lines without an entity are skipped and counted; a repeated call returns the
    stored summary without creating anything.
    """
    if batch.status == BatchStatus.APPROVED:
        return _stored_result(batch)
    if batch.status != BatchStatus.REVIEWING:
        raise InvalidTransition(current=batch.status.value, target=BatchStatus.APPROVED.value)

    repo = ImportBatchRepository(session, tenant_id=batch.tenant_id)
    lines = repo.lines(batch.id)
    matched = [
        line
        for line in lines
        if line.status == LineStatus.MATCHED and line.matched_entity_id is not None
    ]
    unmatched_count = len(lines) - len(matched)
    partial = unmatched_count > 0

    claimed = repo.transition(
        batch,
        BatchStatus.APPROVED,
        approved_at=datetime.now(UTC),
        approved_by=user_id,
        matched_count=len(matched),
        unmatched_count=unmatched_count,
        created_count=len(matched),
        partial=partial,
    )
    if not claimed:
        session.rollback()
        session.refresh(batch)
        if batch.status == BatchStatus.APPROVED:
            return _stored_result(batch)
        raise InvalidTransition(current=batch.status.value, target=BatchStatus.APPROVED.value)

    header = load_header(batch.header_json) or empty_header(batch.kind)
    if isinstance(header, InvoiceHeader):
        created = create_purchase(
            session, batch=batch, header=header, lines=matched, created_by=user_id
        )
    else:
        created = create_sales(
            session, batch=batch, header=header, lines=matched, created_by=user_id
        )

    if matched:
        session.execute(
            update(LineItem)
            .where(
                LineItem.id.in_([line.id for line in matched]),
                LineItem.status == LineStatus.MATCHED,
            )
            .values(status=LineStatus.APPROVED, version=LineItem.version + 1)
            .execution_options(synchronize_session=False)
        )

    result = ApprovalResult(
        created_count=created,
        matched_count=len(matched),
        unmatched_count=unmatched_count,
        partial=partial,
    )
    record_event(
        session,
        tenant_id=batch.tenant_id,
        batch_id=batch.id,
        actor_user_id=user_id,
        event_type="import.approved",
        payload=result.model_dump(),
    )
    session.commit()
    session.refresh(batch)
    get_cache().invalidate_tenant(batch.tenant_id)
    log_event(
        logger,
        "review.approved",
        batch_id=str(batch.id),
        kind=batch.kind.value,
        **result.model_dump(),
    )
    return result


def reject_import(session: Session, *, batch: ImportBatch, user_id: uuid.UUID) -> ImportBatch:
    if batch.status == BatchStatus.REJECTED:
        return batch
    repo = ImportBatchRepository(session, tenant_id=batch.tenant_id)
    previous = batch.status
    if not repo.transition(batch, BatchStatus.REJECTED):
        session.rollback()
        session.refresh(batch)
        raise InvalidTransition(current=batch.status.value, target=BatchStatus.REJECTED.value)
    record_event(
        session,
        tenant_id=batch.tenant_id,
        batch_id=batch.id,
        actor_user_id=user_id,
        event_type="import.rejected",
        payload={"from_status": previous.value},
    )
    session.commit()
    session.refresh(batch)
    get_cache().invalidate_tenant(batch.tenant_id)
    log_event(logger, "review.rejected", batch_id=str(batch.id), from_status=previous.value)
    return batch


def retry_import(
    session: Session, *, batch: ImportBatch, user_id: uuid.UUID | None
) -> ImportBatch:
    """Explicit ``error -> pending`` move; the caller enqueues the job again."""
    if batch.status != BatchStatus.ERROR:
        raise InvalidTransition(current=batch.status.value, target=BatchStatus.PENDING.value)
    repo = ImportBatchRepository(session, tenant_id=batch.tenant_id)
    if not repo.transition(batch, BatchStatus.PENDING, processing_started_at=None):
        session.rollback()
        session.refresh(batch)
        raise InvalidTransition(current=batch.status.value, target=BatchStatus.PENDING.value)
    record_event(
        session,
        tenant_id=batch.tenant_id,
        batch_id=batch.id,
        actor_user_id=user_id,
        event_type="import.retry",
        payload={"attempts": batch.attempts, "automatic": user_id is None},
    )
    session.commit()
    session.refresh(batch)
    get_cache().invalidate_tenant(batch.tenant_id)
    log_event(
        logger,
        "review.retry",
        batch_id=str(batch.id),
        attempts=batch.attempts,
        automatic=user_id is None,
    )
    return batch


def reprocess_import(
    session: Session, *, batch: ImportBatch, user_id: uuid.UUID
) -> ImportBatch:
    """Send a fallback-only extraction back to ``pending`` so the provider runs again.

    Only a reviewing batch flagged ``retry_suggested`` qualifies, and only while no
    line has been matched, so no reviewer decision is discarded. The caller enqueues.
    """
    if batch.status != BatchStatus.REVIEWING or not batch.retry_suggested:
        raise InvalidTransition(current=batch.status.value, target=BatchStatus.PENDING.value)

    repo = ImportBatchRepository(session, tenant_id=batch.tenant_id)
    previous_method = batch.extraction_method
    session.execute(
        delete(LineItem)
        .where(
            LineItem.batch_id == batch.id,
            LineItem.tenant_id == batch.tenant_id,
            LineItem.status == LineStatus.PENDING,
            LineItem.matched_entity_id.is_(None),
        )
        .execution_options(synchronize_session=False)
    )
    if repo.lines(batch.id):
        session.rollback()
        raise ConcurrencyConflict("Import already has matched lines; approve or reject it")
    if not repo.transition(
        batch,
        BatchStatus.PENDING,
        header_json=None,
        raw_text=None,
        extraction_method=None,
        retry_suggested=False,
        processing_started_at=None,
        processed_at=None,
    ):
        session.rollback()
        session.refresh(batch)
        raise InvalidTransition(current=batch.status.value, target=BatchStatus.PENDING.value)
    record_event(
        session,
        tenant_id=batch.tenant_id,
        batch_id=batch.id,
        actor_user_id=user_id,
        event_type="import.reprocess",
        payload={"previous_method": previous_method, "attempts": batch.attempts},
    )
    session.commit()
    session.refresh(batch)
    get_cache().invalidate_tenant(batch.tenant_id)
    log_event(
        logger,
        "review.reprocess",
        batch_id=str(batch.id),
        previous_method=previous_method,
        attempts=batch.attempts,
    )
    return batch


def requeue_for_retry(*, batch_id: str) -> bool:
    """Queue-runner path: only batches that failed with a retryable error move back."""
    with SessionLocal() as session:
        batch = session.scalar(select(ImportBatch).where(ImportBatch.id == uuid.UUID(batch_id)))
        if not batch or batch.status != BatchStatus.ERROR or not batch.retry_suggested:
            return False
        try:
            retry_import(session, batch=batch, user_id=None)
        except InvalidTransition:
            return False
        return True
