from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockroom.api.deps import Principal, get_principal
from stockroom.core.db import db_session
from stockroom.modules.ledger.service import tenant_totals

router = APIRouter(tags=["ledger"])


@router.get("/ledger/totals")
def ledger_totals(
    session: Session = Depends(db_session),
    principal: Principal = Depends(get_principal),
) -> dict[str, str | int]:
    return tenant_totals(session, tenant_id=principal.tenant_id)
