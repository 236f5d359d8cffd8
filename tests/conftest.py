from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path

import pytest

# Set env before any stockroom imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.stockroom_test.db")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", ".tmp_storage_test")
os.environ.setdefault("COORDINATION_BACKEND", "memory")
os.environ["GEMINI_API_KEY"] = ""


@pytest.fixture(autouse=True)
def _reset_db_and_storage() -> None:
    import stockroom.models  # noqa: F401
    import stockroom.core.cache as cache_mod
    import stockroom.core.ratelimit as ratelimit_mod
    import stockroom.core.storage as storage_mod
    from stockroom.core.db import engine
    from stockroom.core.models import Base

    storage_mod._storage = None
    cache_mod._cache = None
    ratelimit_mod._provider_limiter = None

    storage_path = Path(os.environ["LOCAL_STORAGE_PATH"])
    if storage_path.exists():
        shutil.rmtree(storage_path)

    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def upload_import(tenant_id, user_id):
    """Store a single-file import and return the pending batch id."""
    from stockroom.core.db import SessionLocal
    from stockroom.modules.imports.models import ImportKind
    from stockroom.modules.imports.service import UploadPart, create_import

    def _upload(
        kind: ImportKind = ImportKind.INVOICE,
        *,
        filename: str = "fatura.pdf",
        body: bytes = b"%PDF-1.4 test document",
    ) -> uuid.UUID:
        with SessionLocal() as session:
            stored = create_import(
                session,
                tenant_id=tenant_id,
                user_id=user_id,
                kind=kind,
                parts=[UploadPart(filename=filename, content_type=None, body=body)],
            )
            return stored.batch.id

    return _upload


@pytest.fixture
def seed_catalog(tenant_id):
    """Insert catalog rows; returns name -> id."""
    from stockroom.core.db import SessionLocal
    from stockroom.modules.catalog.models import MenuItem, Product

    def _seed(*, products=(), menu_items=(), inactive=()) -> dict[str, uuid.UUID]:
        ids: dict[str, uuid.UUID] = {}
        with SessionLocal() as session:
            rows: list = [
                Product(tenant_id=tenant_id, name=name, is_active=name not in inactive)
                for name in products
            ]
            rows += [
                MenuItem(
                    tenant_id=tenant_id, name=name, price=price, is_active=name not in inactive
                )
                for name, price in menu_items
            ]
            session.add_all(rows)
            session.commit()
            for row in rows:
                ids[row.name] = row.id
        return ids

    return _seed
