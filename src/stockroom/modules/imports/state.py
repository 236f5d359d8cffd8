from __future__ import annotations

from stockroom.core.errors import InvalidTransition
from stockroom.modules.imports.models import BatchStatus

ALLOWED_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PENDING: frozenset({BatchStatus.PROCESSING}),
    BatchStatus.PROCESSING: frozenset({BatchStatus.REVIEWING, BatchStatus.ERROR}),
    # reviewing -> pending is the reprocess action for fallback-only extractions.
    BatchStatus.REVIEWING: frozenset(
        {BatchStatus.APPROVED, BatchStatus.REJECTED, BatchStatus.PENDING}
    ),
    BatchStatus.ERROR: frozenset({BatchStatus.PENDING, BatchStatus.REJECTED}),
    BatchStatus.APPROVED: frozenset(),
    BatchStatus.REJECTED: frozenset(),
}


def can_transition(current: BatchStatus, target: BatchStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: BatchStatus, target: BatchStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(current=current.value, target=target.value)
