from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from stockroom.core.storage import diagnose_storage
from stockroom.modules.imports.api import invoices_router, sales_reports_router
from stockroom.modules.ledger.api import router as ledger_router

router = APIRouter()

router.include_router(invoices_router, prefix="/api/invoices")
router.include_router(sales_reports_router, prefix="/api/sales-reports")
router.include_router(ledger_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz/storage")
def healthz_storage(*, write_test: bool = False) -> JSONResponse:
    result = diagnose_storage(write_test=write_test)
    status_code = 200 if result.get("ok") else 503
    return JSONResponse(status_code=status_code, content=result)
