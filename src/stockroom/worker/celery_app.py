from __future__ import annotations

from celery import Celery
from celery.signals import task_failure, worker_init

from stockroom.core.config import settings
from stockroom.core.logging import get_logger, log_event

logger = get_logger(__name__)


def make_celery() -> Celery:
    app = Celery("stockroom", broker=settings.redis_url, backend=settings.redis_url)
    app.conf.update(
        task_always_eager=settings.environment == "dev",
        task_eager_propagates=True,
        task_track_started=True,
        # Redelivered after a worker crash; the batch claim keeps this at-least-once safe.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=settings.worker_concurrency,
        broker_transport_options={"visibility_timeout": settings.processing_stale_minutes * 60},
    )
    app.autodiscover_tasks(["stockroom.worker.tasks"])
    return app


celery_app = make_celery()


def check_worker_coordination(*, concurrency: int) -> None:
    """Refuse to start a multi-process pool whose processes would not share a rate limit."""
    if concurrency > 1 and settings.coordination == "memory":
        raise RuntimeError(
            "COORDINATION_BACKEND=memory gives each worker process its own provider limit; "
            "use redis or run with --concurrency=1"
        )


@worker_init.connect
def _check_coordination(sender=None, **_kwargs) -> None:
    concurrency = getattr(sender, "concurrency", None) or settings.worker_concurrency
    check_worker_coordination(concurrency=concurrency)


@task_failure.connect
def _log_task_failure(sender=None, task_id=None, exception=None, **_kwargs) -> None:
    log_event(
        logger,
        "celery.task.failure",
        task_name=getattr(sender, "name", None),
        celery_task_id=task_id,
        error_type=type(exception).__name__ if exception else None,
        error=str(exception) if exception else None,
    )
