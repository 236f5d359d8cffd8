from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockroom.modules.audit.models import AuditEvent


def record_event(
    session: Session,
    *,
    tenant_id: uuid.UUID,
    event_type: str,
    batch_id: uuid.UUID | None = None,
    actor_user_id: uuid.UUID | None = None,
    payload: dict[str, Any] | None = None,
) -> AuditEvent:
    """Stage an audit row on the session; the caller's commit persists it."""
    event = AuditEvent(
        tenant_id=tenant_id,
        batch_id=batch_id,
        actor_user_id=actor_user_id,
        event_type=event_type,
        payload_json=payload or {},
    )
    session.add(event)
    return event


def list_events(
    session: Session, *, tenant_id: uuid.UUID, batch_id: uuid.UUID
) -> list[AuditEvent]:
    return list(
        session.scalars(
            select(AuditEvent)
            .where(AuditEvent.tenant_id == tenant_id, AuditEvent.batch_id == batch_id)
            .order_by(AuditEvent.occurred_at)
        )
    )
