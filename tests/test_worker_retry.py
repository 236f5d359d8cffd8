from __future__ import annotations

from stockroom.core.config import settings
from stockroom.modules.extraction import service as extraction_service
from stockroom.modules.extraction.results import Completed, FatalError, RetryableError
from stockroom.worker.tasks import process_import_batch_task, retry_countdown


def test_retry_countdown_backs_off_exponentially_until_attempts_run_out(monkeypatch):
    monkeypatch.setattr(settings, "job_max_attempts", 3)
    monkeypatch.setattr(settings, "job_backoff_base_seconds", 2.0)

    assert retry_countdown(0) == 2.0
    assert retry_countdown(1) == 4.0
    assert retry_countdown(2) is None


def test_task_reports_outcome(monkeypatch):
    import uuid

    batch_id = str(uuid.uuid4())
    seen: dict[str, object] = {}

    def _process(*, batch_id, inline_body=None):
        seen["inline_body"] = inline_body
        return Completed(
            batch_id=uuid.UUID(batch_id), method="ai", items_extracted=3, items_matched=1
        )

    monkeypatch.setattr(extraction_service, "process_import_batch", _process)
    assert process_import_batch_task.run(batch_id, "aGVsbG8=") == "completed"
    assert seen["inline_body"] == b"hello"

    monkeypatch.setattr(
        extraction_service, "process_import_batch", lambda **_: FatalError("unreadable")
    )
    assert process_import_batch_task.run(batch_id) == "fatalerror"


def test_task_gives_up_when_attempts_are_exhausted(monkeypatch):
    monkeypatch.setattr(settings, "job_max_attempts", 1)
    monkeypatch.setattr(
        extraction_service, "process_import_batch", lambda **_: RetryableError("HTTP 503")
    )
    assert process_import_batch_task.run("00000000-0000-0000-0000-000000000000") == (
        "retryableerror"
    )
