"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

from stockroom.modules.imports.models import ImportBatch, LineItem  # noqa: F401

from stockroom.modules.audit.models import AuditEvent  # noqa: F401
from stockroom.modules.catalog.models import MenuItem, Product  # noqa: F401
from stockroom.modules.extraction.models import ProcessingMetric  # noqa: F401
from stockroom.modules.ledger.models import Purchase, PurchaseLine, SaleRecord  # noqa: F401
from stockroom.modules.matching.models import MatchHistory  # noqa: F401
