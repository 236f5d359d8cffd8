from __future__ import annotations

import pytest
from sqlalchemy import select, update

from stockroom.core.db import SessionLocal
from stockroom.core.errors import InvalidTransition
from stockroom.modules.imports.models import BatchStatus, ImportBatch
from stockroom.modules.imports.repository import ImportBatchRepository
from stockroom.modules.imports.state import can_transition, ensure_transition


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (BatchStatus.PENDING, BatchStatus.PROCESSING),
        (BatchStatus.PROCESSING, BatchStatus.REVIEWING),
        (BatchStatus.PROCESSING, BatchStatus.ERROR),
        (BatchStatus.REVIEWING, BatchStatus.APPROVED),
        (BatchStatus.REVIEWING, BatchStatus.REJECTED),
        (BatchStatus.REVIEWING, BatchStatus.PENDING),
        (BatchStatus.ERROR, BatchStatus.PENDING),
        (BatchStatus.ERROR, BatchStatus.REJECTED),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (BatchStatus.PENDING, BatchStatus.REVIEWING),
        (BatchStatus.REVIEWING, BatchStatus.PROCESSING),
        (BatchStatus.APPROVED, BatchStatus.REVIEWING),
        (BatchStatus.APPROVED, BatchStatus.REJECTED),
        (BatchStatus.REJECTED, BatchStatus.PENDING),
    ],
)
def test_forbidden_transitions(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransition):
        ensure_transition(current, target)


def test_transition_loses_to_concurrent_writer(upload_import, tenant_id):
    batch_id = upload_import()
    with SessionLocal() as session:
        batch = session.scalar(select(ImportBatch).where(ImportBatch.id == batch_id))
        repo = ImportBatchRepository(session, tenant_id=tenant_id)

        # Another worker claims the batch after we loaded it.
        session.execute(
            update(ImportBatch)
            .where(ImportBatch.id == batch_id)
            .values(status=BatchStatus.PROCESSING)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        batch.status = BatchStatus.PENDING

        assert repo.transition(batch, BatchStatus.PROCESSING) is False


def test_repository_hides_other_tenants(upload_import):
    import uuid

    from stockroom.core.errors import NotFound

    batch_id = upload_import()
    with SessionLocal() as session:
        other = ImportBatchRepository(session, tenant_id=uuid.uuid4())
        assert other.get(batch_id) is None
        with pytest.raises(NotFound):
            other.require(batch_id)
