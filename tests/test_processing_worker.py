from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from stockroom.core.config import settings
from stockroom.core.db import SessionLocal
from stockroom.core.storage import get_storage
from stockroom.modules.audit.service import list_events
from stockroom.modules.extraction import service as extraction_service
from stockroom.modules.extraction.ai import TransientProviderError
from stockroom.modules.extraction.models import ProcessingMetric
from stockroom.modules.extraction.results import Completed, FatalError, RetryableError, Skipped
from stockroom.modules.extraction.schemas import ExtractedLine, ParsedDocument
from stockroom.modules.extraction.service import (
    ParserCascade,
    RegexFallbackStrategy,
    process_import_batch,
)
from stockroom.modules.imports.models import BatchStatus, ImportBatch, ImportKind, LineStatus
from stockroom.modules.imports.schemas import InvoiceHeader
from stockroom.modules.ledger.models import Purchase, PurchaseLine
from stockroom.modules.matching.service import NORMALIZED_MAX_LEN
from stockroom.modules.review.service import approve_import

_Z_REPORT = "Relatorio Z\n16/03/2025\nTotal Bruto 812,40\nTotal Liquido 660,49\n"


class _StaticStrategy:
    method = "ai"

    def __init__(self, document: ParsedDocument | None = None, error: Exception | None = None):
        self.document = document
        self.error = error
        self.bodies: list[bytes] = []

    def extract(self, *, kind, body, mime_type, raw_text):
        self.bodies.append(body)
        if self.error is not None:
            raise self.error
        return self.document


def _invoice_document() -> ParsedDocument:
    return ParsedDocument(
        header=InvoiceHeader(
            supplier_name="Hortofruticola Lda",
            invoice_date="2025-03-10",
            total_gross=Decimal("15.99"),
        ),
        lines=[
            ExtractedLine(
                line_number=1,
                description_original="TOMATE CHERRY CX 250G",
                description_clean="Tomate Cherry",
                quantity=Decimal("2"),
                unit_price=Decimal("3.20"),
                total_price=Decimal("6.40"),
            ),
            ExtractedLine(
                line_number=2,
                description_original="ARTIGO DESCONHECIDO 99",
                quantity=Decimal("1"),
                total_price=Decimal("9.59"),
            ),
        ],
    )


@pytest.fixture(autouse=True)
def _raw_text(monkeypatch):
    monkeypatch.setattr(extraction_service, "extract_raw_text", lambda body, mime: "")


def _batch(batch_id: uuid.UUID) -> ImportBatch:
    with SessionLocal() as session:
        batch = session.scalar(select(ImportBatch).where(ImportBatch.id == batch_id))
        assert batch
        session.expunge(batch)
        return batch


def test_invoice_is_extracted_matched_and_left_for_review(upload_import, seed_catalog):
    ids = seed_catalog(products=["Tomate Cherry", "Cebola Roxa"])
    batch_id = upload_import(ImportKind.INVOICE)
    strategy = _StaticStrategy(_invoice_document())

    outcome = process_import_batch(batch_id=str(batch_id), cascade=ParserCascade([strategy]))

    assert isinstance(outcome, Completed)
    assert outcome.items_extracted == 2
    assert outcome.items_matched == 1
    assert strategy.bodies == [b"%PDF-1.4 test document"]

    with SessionLocal() as session:
        batch = session.scalar(select(ImportBatch).where(ImportBatch.id == batch_id))
        assert batch.status == BatchStatus.REVIEWING
        assert batch.attempts == 1
        assert batch.extraction_method == "ai"
        assert batch.retry_suggested is False
        assert batch.header_json["kind"] == "invoice"
        assert batch.header_json["supplier_name"] == "Hortofruticola Lda"

        lines = sorted(batch.lines, key=lambda ln: ln.line_number)
        assert [ln.line_number for ln in lines] == [1, 2]
        assert lines[0].matched_entity_id == ids["Tomate Cherry"]
        assert lines[0].status == LineStatus.MATCHED
        assert lines[0].normalized_description == "tomate cherry"
        assert lines[1].status == LineStatus.PENDING
        assert lines[1].description_clean == "ARTIGO DESCONHECIDO 99"

        metric = session.scalar(select(ProcessingMetric))
        assert metric.success is True
        assert metric.method == "ai"
        assert metric.items_extracted == 2


def test_redelivered_job_does_not_duplicate_lines(upload_import):
    batch_id = upload_import(ImportKind.INVOICE)
    cascade = ParserCascade([_StaticStrategy(_invoice_document())])

    first = process_import_batch(batch_id=str(batch_id), cascade=cascade)
    second = process_import_batch(batch_id=str(batch_id), cascade=cascade)

    assert isinstance(first, Completed)
    assert isinstance(second, Skipped)
    assert second.reason == "already reviewing"
    with SessionLocal() as session:
        batch = session.scalar(select(ImportBatch).where(ImportBatch.id == batch_id))
        assert len(batch.lines) == 2
        assert batch.attempts == 1


def test_sales_report_falls_back_to_header_only_when_provider_overloaded(
    upload_import, monkeypatch
):
    monkeypatch.setattr(extraction_service, "extract_raw_text", lambda body, mime: _Z_REPORT)
    batch_id = upload_import(ImportKind.SALES_REPORT, filename="z.pdf")
    cascade = ParserCascade(
        [_StaticStrategy(error=TransientProviderError("HTTP 503")), RegexFallbackStrategy()]
    )

    outcome = process_import_batch(batch_id=str(batch_id), cascade=cascade)

    assert isinstance(outcome, Completed)
    assert outcome.method == "regex-fallback"
    assert outcome.items_extracted == 0
    batch = _batch(batch_id)
    assert batch.status == BatchStatus.REVIEWING
    assert batch.retry_suggested is True
    assert batch.raw_text == _Z_REPORT
    assert batch.header_json["gross_total"] == "812.40"
    assert batch.header_json["sale_date"] == "2025-03-16"


def test_transient_failure_marks_batch_retryable(upload_import):
    batch_id = upload_import(ImportKind.INVOICE)
    cascade = ParserCascade(
        [_StaticStrategy(error=TransientProviderError("HTTP 429")), RegexFallbackStrategy()]
    )

    outcome = process_import_batch(batch_id=str(batch_id), cascade=cascade)

    assert isinstance(outcome, RetryableError)
    batch = _batch(batch_id)
    assert batch.status == BatchStatus.ERROR
    assert batch.retry_suggested is True
    assert "HTTP 429" in batch.error_message
    with SessionLocal() as session:
        metric = session.scalar(select(ProcessingMetric))
        assert metric.success is False
        assert metric.method == "failed"
        assert metric.provider_unavailable is True
        events = list_events(session, tenant_id=batch.tenant_id, batch_id=batch_id)
        assert [e.event_type for e in events] == ["import.uploaded", "import.failed"]


def test_unexpected_error_is_fatal_and_scratch_file_is_removed(
    upload_import, monkeypatch, tmp_path
):
    monkeypatch.setattr(settings, "scratch_dir", tmp_path)
    batch_id = upload_import(ImportKind.INVOICE)
    cascade = ParserCascade([_StaticStrategy(error=RuntimeError("boom"))])

    outcome = process_import_batch(batch_id=str(batch_id), cascade=cascade)

    assert isinstance(outcome, FatalError)
    assert "RuntimeError" in outcome.message
    assert list(tmp_path.iterdir()) == []
    batch = _batch(batch_id)
    assert batch.status == BatchStatus.ERROR
    assert batch.retry_suggested is False


def test_missing_document_is_retryable_unless_bytes_ride_inline(upload_import):
    batch_id = upload_import(ImportKind.INVOICE)
    get_storage().delete(url=_batch(batch_id).source_url)
    strategy = _StaticStrategy(_invoice_document())

    outcome = process_import_batch(batch_id=str(batch_id), cascade=ParserCascade([strategy]))
    assert isinstance(outcome, RetryableError)
    assert strategy.bodies == []

    other_id = upload_import(ImportKind.INVOICE)
    get_storage().delete(url=_batch(other_id).source_url)
    outcome = process_import_batch(
        batch_id=str(other_id), inline_body=b"inline bytes", cascade=ParserCascade([strategy])
    )
    assert isinstance(outcome, Completed)
    assert strategy.bodies == [b"inline bytes"]


def test_claim_skips_live_processing_but_recovers_stale_batches(upload_import):
    batch_id = upload_import(ImportKind.INVOICE)
    cascade = ParserCascade([_StaticStrategy(_invoice_document())])
    with SessionLocal() as session:
        batch = session.scalar(select(ImportBatch).where(ImportBatch.id == batch_id))
        batch.status = BatchStatus.PROCESSING
        batch.processing_started_at = datetime.now(UTC)
        session.commit()

    outcome = process_import_batch(batch_id=str(batch_id), cascade=cascade)
    assert isinstance(outcome, Skipped)
    assert outcome.reason == "claimed by another worker"

    with SessionLocal() as session:
        batch = session.scalar(select(ImportBatch).where(ImportBatch.id == batch_id))
        batch.processing_started_at = datetime.now(UTC) - timedelta(
            minutes=settings.processing_stale_minutes + 1
        )
        session.commit()

    outcome = process_import_batch(batch_id=str(batch_id), cascade=cascade)
    assert isinstance(outcome, Completed)


def test_unknown_batch_is_skipped():
    outcome = process_import_batch(batch_id=str(uuid.uuid4()))
    assert isinstance(outcome, Skipped)
    assert outcome.reason == "missing"


def test_redelivered_job_after_approval_changes_nothing(upload_import, seed_catalog, user_id):
    seed_catalog(products=["Tomate Cherry"])
    batch_id = upload_import(ImportKind.INVOICE)
    cascade = ParserCascade([_StaticStrategy(_invoice_document())])
    assert isinstance(process_import_batch(batch_id=str(batch_id), cascade=cascade), Completed)

    with SessionLocal() as session:
        batch = session.scalar(select(ImportBatch).where(ImportBatch.id == batch_id))
        result = approve_import(session, batch=batch, user_id=user_id)
        assert result.created_count == 1

    outcome = process_import_batch(batch_id=str(batch_id), cascade=cascade)

    assert isinstance(outcome, Skipped)
    assert outcome.reason == "already approved"
    with SessionLocal() as session:
        batch = session.scalar(select(ImportBatch).where(ImportBatch.id == batch_id))
        assert batch.status == BatchStatus.APPROVED
        assert batch.attempts == 1
        assert len(batch.lines) == 2
        assert session.scalar(select(func.count()).select_from(Purchase)) == 1
        assert session.scalar(select(func.count()).select_from(PurchaseLine)) == 1


def test_long_descriptions_are_stored_with_a_bounded_normalized_key(upload_import):
    batch_id = upload_import(ImportKind.INVOICE)
    description = "Queijo da serra amanteigado DOP " * 31
    document = ParsedDocument(
        header=InvoiceHeader(total_gross=Decimal("40.00")),
        lines=[ExtractedLine(line_number=1, description_original=description)],
    )

    outcome = process_import_batch(
        batch_id=str(batch_id), cascade=ParserCascade([_StaticStrategy(document)])
    )

    assert isinstance(outcome, Completed)
    with SessionLocal() as session:
        line = session.scalar(select(ImportBatch).where(ImportBatch.id == batch_id)).lines[0]
        assert len(line.description_clean) > NORMALIZED_MAX_LEN
        assert len(line.normalized_description) <= NORMALIZED_MAX_LEN
