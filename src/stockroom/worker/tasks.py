from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import stockroom.models  # noqa: F401
# isort: on

import base64
import time

from stockroom.core.config import settings
from stockroom.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_task_context,
    set_task_context,
)
from stockroom.worker.celery_app import celery_app

logger = get_logger(__name__)


def retry_countdown(retries: int) -> float | None:
    """Backoff before the next attempt, or None once attempts are exhausted."""
    if retries + 1 >= settings.job_max_attempts:
        return None
    return settings.job_backoff_base_seconds * (2**retries)


@celery_app.task(name="process_import_batch", bind=True, max_retries=None)
def process_import_batch_task(self, batch_id: str, inline_payload: str | None = None) -> str:
    from stockroom.modules.extraction.results import Completed, RetryableError
    from stockroom.modules.extraction.service import process_import_batch
    from stockroom.modules.review.service import requeue_for_retry

    task_id = getattr(self.request, "id", None)
    retries = int(getattr(self.request, "retries", 0) or 0)
    token = set_task_context(task_id)
    start = time.monotonic()
    log_event(
        logger,
        "celery.task.start",
        task_name="process_import_batch",
        celery_task_id=task_id,
        batch_id=batch_id,
        retries=retries,
    )
    try:
        inline_body = base64.b64decode(inline_payload) if inline_payload else None
        outcome = process_import_batch(batch_id=batch_id, inline_body=inline_body)
        log_event(
            logger,
            "celery.task.finish",
            task_name="process_import_batch",
            celery_task_id=task_id,
            batch_id=batch_id,
            outcome=type(outcome).__name__,
            duration_ms=monotonic_ms(start),
        )
    except Exception:
        log_exception(
            logger,
            "celery.task.error",
            task_name="process_import_batch",
            celery_task_id=task_id,
            batch_id=batch_id,
            duration_ms=monotonic_ms(start),
        )
        raise
    finally:
        reset_task_context(token)

    if isinstance(outcome, RetryableError):
        countdown = retry_countdown(retries)
        if countdown is not None and requeue_for_retry(batch_id=batch_id):
            log_event(
                logger,
                "celery.task.retry",
                task_name="process_import_batch",
                celery_task_id=task_id,
                batch_id=batch_id,
                retries=retries + 1,
                countdown_s=countdown,
            )
            raise self.retry(countdown=countdown)
    if isinstance(outcome, Completed):
        return "completed"
    return type(outcome).__name__.lower()
