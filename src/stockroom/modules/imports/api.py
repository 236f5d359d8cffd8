from __future__ import annotations

import base64
import uuid

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.orm import Session

from stockroom.api.deps import Principal, get_principal
from stockroom.core.config import settings
from stockroom.core.db import db_session
from stockroom.core.logging import get_logger, log_event
from stockroom.modules.imports.models import ImportBatch, ImportKind
from stockroom.modules.imports.repository import ImportBatchRepository
from stockroom.modules.imports.schemas import (
    ApprovalResult,
    BatchDetailOut,
    BatchOut,
    BatchPage,
    LineItemOut,
    MatchRequest,
    SuggestionOut,
    UploadAccepted,
    load_header,
)
from stockroom.modules.imports.service import UploadPart, create_import, import_stats
from stockroom.modules.matching.service import confirm_line_match, search_catalog, suggest
from stockroom.modules.review.service import (
    approve_import,
    reject_import,
    reprocess_import,
    retry_import,
)
from stockroom.worker.tasks import process_import_batch_task

logger = get_logger(__name__)


def batch_out(batch: ImportBatch) -> BatchOut:
    out = BatchOut.model_validate(batch, from_attributes=True)
    out.header = load_header(batch.header_json)
    return out


def batch_detail_out(batch: ImportBatch, lines) -> BatchDetailOut:
    return BatchDetailOut(
        **batch_out(batch).model_dump(),
        lines=[LineItemOut.model_validate(line, from_attributes=True) for line in lines],
    )


def enqueue_processing(batch: ImportBatch, *, body: bytes | None = None) -> None:
    inline_payload = None
    if settings.queue_inline_payload and body is not None:
        inline_payload = base64.b64encode(body).decode("ascii")
    async_result = process_import_batch_task.delay(str(batch.id), inline_payload)
    log_event(
        logger,
        "celery.task.enqueued",
        task_name="process_import_batch",
        celery_task_id=async_result.id,
        batch_id=str(batch.id),
        inline_payload=inline_payload is not None,
    )


def build_import_router(kind: ImportKind) -> APIRouter:
    """Same review surface for invoices and sales reports, bound to one kind."""
    router = APIRouter(tags=[kind.value])

    @router.post("", response_model=UploadAccepted, status_code=status.HTTP_202_ACCEPTED)
    async def upload(
        files: list[UploadFile] = File(...),
        session: Session = Depends(db_session),
        principal: Principal = Depends(get_principal),
    ) -> UploadAccepted:
        parts: list[UploadPart] = []
        for upload_file in files:
            body = await upload_file.read()
            log_event(
                logger,
                "upload.received",
                kind=kind.value,
                filename=upload_file.filename or "upload.bin",
                content_type=upload_file.content_type,
                byte_size=len(body),
            )
            parts.append(
                UploadPart(
                    filename=upload_file.filename or "upload.bin",
                    content_type=upload_file.content_type,
                    body=body,
                )
            )
        stored = create_import(
            session,
            tenant_id=principal.tenant_id,
            user_id=principal.user_id,
            kind=kind,
            parts=parts,
        )
        enqueue_processing(stored.batch, body=stored.body)
        return UploadAccepted(id=stored.batch.id, status=stored.batch.status)

    @router.get("", response_model=BatchPage)
    def list_imports(
        limit: int = Query(20, ge=1, le=100),
        offset: int = Query(0, ge=0),
        session: Session = Depends(db_session),
        principal: Principal = Depends(get_principal),
    ) -> BatchPage:
        repo = ImportBatchRepository(session, tenant_id=principal.tenant_id)
        items, total = repo.list(kind=kind, limit=limit, offset=offset)
        return BatchPage(
            items=[batch_out(b) for b in items], total=total, limit=limit, offset=offset
        )

    @router.get("/stats")
    def stats(
        session: Session = Depends(db_session),
        principal: Principal = Depends(get_principal),
    ) -> dict[str, int]:
        return import_stats(session, tenant_id=principal.tenant_id, kind=kind)

    @router.get("/{batch_id}", response_model=BatchDetailOut)
    def get_import(
        batch_id: uuid.UUID,
        session: Session = Depends(db_session),
        principal: Principal = Depends(get_principal),
    ) -> BatchDetailOut:
        repo = ImportBatchRepository(session, tenant_id=principal.tenant_id)
        batch = repo.require(batch_id, kind=kind)
        return batch_detail_out(batch, repo.lines(batch.id))

    @router.get("/{batch_id}/lines/{line_id}/suggestions", response_model=list[SuggestionOut])
    def line_suggestions(
        batch_id: uuid.UUID,
        line_id: uuid.UUID,
        session: Session = Depends(db_session),
        principal: Principal = Depends(get_principal),
    ) -> list[SuggestionOut]:
        repo = ImportBatchRepository(session, tenant_id=principal.tenant_id)
        batch = repo.require(batch_id, kind=kind)
        line = repo.get_line(batch.id, line_id)
        suggestions = suggest(
            session,
            tenant_id=principal.tenant_id,
            kind=kind,
            description=line.description_clean,
        )
        return [SuggestionOut.model_validate(s, from_attributes=True) for s in suggestions]

    @router.get("/{batch_id}/catalog-search", response_model=list[SuggestionOut])
    def catalog_search(
        batch_id: uuid.UUID,
        q: str = Query(..., min_length=1, max_length=200),
        session: Session = Depends(db_session),
        principal: Principal = Depends(get_principal),
    ) -> list[SuggestionOut]:
        ImportBatchRepository(session, tenant_id=principal.tenant_id).require(batch_id, kind=kind)
        results = search_catalog(session, tenant_id=principal.tenant_id, kind=kind, query=q)
        return [SuggestionOut.model_validate(s, from_attributes=True) for s in results]

    @router.post("/{batch_id}/lines/{line_id}/match", response_model=LineItemOut)
    def match_line(
        batch_id: uuid.UUID,
        line_id: uuid.UUID,
        payload: MatchRequest,
        session: Session = Depends(db_session),
        principal: Principal = Depends(get_principal),
    ) -> LineItemOut:
        batch = ImportBatchRepository(session, tenant_id=principal.tenant_id).require(
            batch_id, kind=kind
        )
        line = confirm_line_match(
            session,
            batch=batch,
            line_id=line_id,
            entity_id=payload.entity_id,
            version=payload.version,
            user_id=principal.user_id,
        )
        return LineItemOut.model_validate(line, from_attributes=True)

    @router.post("/{batch_id}/approve", response_model=ApprovalResult)
    def approve(
        batch_id: uuid.UUID,
        session: Session = Depends(db_session),
        principal: Principal = Depends(get_principal),
    ) -> ApprovalResult:
        batch = ImportBatchRepository(session, tenant_id=principal.tenant_id).require(
            batch_id, kind=kind
        )
        return approve_import(session, batch=batch, user_id=principal.user_id)

    @router.post("/{batch_id}/retry", response_model=BatchOut)
    def retry(
        batch_id: uuid.UUID,
        session: Session = Depends(db_session),
        principal: Principal = Depends(get_principal),
    ) -> BatchOut:
        batch = ImportBatchRepository(session, tenant_id=principal.tenant_id).require(
            batch_id, kind=kind
        )
        batch = retry_import(session, batch=batch, user_id=principal.user_id)
        enqueue_processing(batch)
        return batch_out(batch)

    @router.post("/{batch_id}/reprocess", response_model=BatchOut)
    def reprocess(
        batch_id: uuid.UUID,
        session: Session = Depends(db_session),
        principal: Principal = Depends(get_principal),
    ) -> BatchOut:
        batch = ImportBatchRepository(session, tenant_id=principal.tenant_id).require(
            batch_id, kind=kind
        )
        batch = reprocess_import(session, batch=batch, user_id=principal.user_id)
        enqueue_processing(batch)
        return batch_out(batch)

    @router.delete("/{batch_id}", response_model=BatchOut)
    def reject(
        batch_id: uuid.UUID,
        session: Session = Depends(db_session),
        principal: Principal = Depends(get_principal),
    ) -> BatchOut:
        batch = ImportBatchRepository(session, tenant_id=principal.tenant_id).require(
            batch_id, kind=kind
        )
        return batch_out(reject_import(session, batch=batch, user_id=principal.user_id))

    return router


invoices_router = build_import_router(ImportKind.INVOICE)
sales_reports_router = build_import_router(ImportKind.SALES_REPORT)
