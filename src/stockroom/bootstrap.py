from __future__ import annotations

import stockroom.models  # noqa: F401
from stockroom.core.config import settings
from stockroom.core.db import engine
from stockroom.core.models import Base


def bootstrap() -> None:
    if settings.environment == "dev" and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)
