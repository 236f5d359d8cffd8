from __future__ import annotations

import re
import unicodedata
import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from rapidfuzz import fuzz, process
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from stockroom.core.config import settings
from stockroom.core.errors import ConcurrencyConflict, InvalidTransition, NotFound
from stockroom.core.logging import get_logger, log_event
from stockroom.modules.audit.service import record_event
from stockroom.modules.catalog.service import CatalogEntry, CatalogReader
from stockroom.modules.imports.models import (
    BatchStatus,
    ImportBatch,
    ImportKind,
    LineItem,
    LineStatus,
)
from stockroom.modules.imports.repository import ImportBatchRepository
from stockroom.modules.matching.models import MatchHistory

logger = get_logger(__name__)

REASON_LEARNED = "learned match"
REASON_HIGH = "high confidence"
REASON_REVIEW = "needs review"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
# Width of the normalized_description columns.
NORMALIZED_MAX_LEN = 500


@dataclass(frozen=True)
class Suggestion:
    entity_id: uuid.UUID
    name: str
    confidence: int
    reason: str


def normalize_description(text: str | None) -> str:
    s = unicodedata.normalize("NFD", (text or "").lower())
    s = "".join(ch for ch in s if unicodedata.category(ch) != "Mn")
    s = _NON_ALNUM_RE.sub("", s)
    return " ".join(s.split())[:NORMALIZED_MAX_LEN].rstrip()


class MatchHistoryRepository:
    def __init__(self, session: Session, *, tenant_id: uuid.UUID):
        self.session = session
        self.tenant_id = tenant_id

    def learned_entities(self, *, kind: ImportKind, normalized: str) -> list[uuid.UUID]:
        """Entities confirmed for this description, most frequent first, then most recent."""
        if not normalized:
            return []
        rows = self.session.execute(
            select(
                MatchHistory.entity_id,
                func.count().label("uses"),
                func.max(MatchHistory.created_at).label("last_used"),
            )
            .where(
                MatchHistory.tenant_id == self.tenant_id,
                MatchHistory.kind == kind,
                MatchHistory.normalized_description == normalized,
            )
            .group_by(MatchHistory.entity_id)
            .order_by(func.count().desc(), func.max(MatchHistory.created_at).desc())
        ).all()
        return [row.entity_id for row in rows]

    def record(
        self,
        *,
        kind: ImportKind,
        normalized: str,
        entity_id: uuid.UUID,
        confirmed_by: uuid.UUID | None,
    ) -> MatchHistory:
        entry = MatchHistory(
            tenant_id=self.tenant_id,
            kind=kind,
            normalized_description=normalized,
            entity_id=entity_id,
            confidence=100,
            confirmed_by=confirmed_by,
        )
        self.session.add(entry)
        return entry


def fuzzy_search(
    query: str,
    entries: list[CatalogEntry],
    *,
    limit: int | None = None,
    max_distance: float | None = None,
) -> list[Suggestion]:
    if not entries or not normalize_description(query):
        return []
    limit = limit or settings.match_suggestion_limit
    if max_distance is None:
        max_distance = settings.match_distance_threshold
    by_id = {entry.id: entry for entry in entries}
    results = process.extract(
        query,
        {entry.id: entry.name for entry in entries},
        scorer=fuzz.WRatio,
        processor=normalize_description,
        score_cutoff=(1.0 - max_distance) * 100.0,
        limit=limit,
    )
    out: list[Suggestion] = []
    for _, score, entity_id in results:
        distance = 1.0 - score / 100.0
        confidence = int(round((1.0 - distance) * 100))
        reason = REASON_HIGH if confidence >= settings.high_confidence_floor else REASON_REVIEW
        out.append(
            Suggestion(
                entity_id=entity_id,
                name=by_id[entity_id].name,
                confidence=confidence,
                reason=reason,
            )
        )
    return out


def suggest(
    session: Session, *, tenant_id: uuid.UUID, kind: ImportKind, description: str
) -> list[Suggestion]:
    catalog = CatalogReader(session, tenant_id=tenant_id)
    history = MatchHistoryRepository(session, tenant_id=tenant_id)

    learned = history.learned_entities(kind=kind, normalized=normalize_description(description))
    if learned:
        active = {entry.id: entry for entry in catalog.list_active(kind) if entry.id in learned}
        suggestions = [
            Suggestion(
                entity_id=entity_id,
                name=active[entity_id].name,
                confidence=100,
                reason=REASON_LEARNED,
            )
            for entity_id in learned
            if entity_id in active
        ]
        if suggestions:
            return suggestions

    return fuzzy_search(description, catalog.list_active(kind))


def search_catalog(
    session: Session, *, tenant_id: uuid.UUID, kind: ImportKind, query: str
) -> list[Suggestion]:
    return fuzzy_search(query, CatalogReader(session, tenant_id=tenant_id).list_active(kind))


def auto_match_lines(
    session: Session, *, tenant_id: uuid.UUID, kind: ImportKind, lines: list[LineItem]
) -> int:
    """Attach the top suggestion to each fresh line when it clears the auto-match bar.

    Does not commit; runs inside the worker's processing transaction.
    """
    catalog = CatalogReader(session, tenant_id=tenant_id)
    entries = catalog.list_active(kind)
    by_id = {entry.id: entry for entry in entries}
    matched = 0
    for line in lines:
        if line.status != LineStatus.PENDING or line.matched_entity_id is not None:
            continue
        suggestions = suggest(
            session, tenant_id=tenant_id, kind=kind, description=line.description_clean
        )
        if not suggestions:
            continue
        top = suggestions[0]
        if top.confidence < settings.auto_match_confidence:
            continue
        line.matched_entity_id = top.entity_id
        line.confidence = top.confidence
        line.status = LineStatus.MATCHED
        if kind == ImportKind.SALES_REPORT and top.entity_id in by_id:
            _apply_menu_price_checks(line, by_id[top.entity_id])
        matched += 1
    log_event(
        logger,
        "matching.auto_match",
        kind=kind.value,
        lines=len(lines),
        matched=matched,
        catalog_size=len(entries),
    )
    return matched


def _apply_menu_price_checks(line: LineItem, entry: CatalogEntry) -> None:
    price = entry.price
    if price is None or price <= 0:
        return
    total = line.total_price or Decimal("0")
    original_qty = line.quantity
    final_qty = original_qty
    inferred = False
    reason = None

    if not original_qty or (original_qty == 1 and not line.unit_price):
        final_qty = Decimal("1")
        if total > 0:
            calculated = total / price
            rounded = calculated.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            if abs(calculated - rounded) < Decimal("0.1") and rounded > 0:
                final_qty = rounded
                inferred = True
                reason = f"Inferred from total ({total:.2f} / {price:.2f})"

    if line.unit_price and line.unit_price > 0:
        file_price = line.unit_price
    elif final_qty:
        file_price = total / final_qty
    else:
        file_price = Decimal("0")

    line.quantity = final_qty
    line.metadata_json = {
        **(line.metadata_json or {}),
        "inferred_quantity": inferred,
        "inference_reason": reason,
        "price_mismatch": abs(file_price - price) > Decimal("0.05"),
        "catalog_price": str(price),
        "file_price": str(file_price.quantize(Decimal("0.01"))),
        "original_quantity": str(original_qty) if original_qty is not None else None,
    }


def confirm_line_match(
    session: Session,
    *,
    batch: ImportBatch,
    line_id: uuid.UUID,
    entity_id: uuid.UUID,
    version: int,
    user_id: uuid.UUID,
) -> LineItem:
    if batch.status != BatchStatus.REVIEWING:
        raise InvalidTransition(current=batch.status.value, target="matched line")

    repo = ImportBatchRepository(session, tenant_id=batch.tenant_id)
    line = repo.get_line(batch.id, line_id)
    if line.status == LineStatus.APPROVED:
        raise ConcurrencyConflict("Line already approved")

    entry = CatalogReader(session, tenant_id=batch.tenant_id).get_active(batch.kind, entity_id)
    if not entry:
        raise NotFound("Catalog entry not found or inactive")

    result = session.execute(
        update(LineItem)
        .where(
            LineItem.id == line.id,
            LineItem.tenant_id == batch.tenant_id,
            LineItem.version == version,
            LineItem.status != LineStatus.APPROVED,
        )
        .values(
            matched_entity_id=entry.id,
            confidence=100,
            status=LineStatus.MATCHED,
            version=LineItem.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        session.rollback()
        log_event(
            logger,
            "matching.manual.conflict",
            batch_id=str(batch.id),
            line_id=str(line.id),
            expected_version=version,
        )
        raise ConcurrencyConflict()

    MatchHistoryRepository(session, tenant_id=batch.tenant_id).record(
        kind=batch.kind,
        normalized=line.normalized_description,
        entity_id=entry.id,
        confirmed_by=user_id,
    )
    record_event(
        session,
        tenant_id=batch.tenant_id,
        batch_id=batch.id,
        actor_user_id=user_id,
        event_type="line.matched",
        payload={"line_id": str(line.id), "entity_id": str(entry.id), "version": version + 1},
    )
    session.commit()
    session.refresh(line)
    log_event(
        logger,
        "matching.manual.confirmed",
        batch_id=str(batch.id),
        line_id=str(line.id),
        entity_id=str(entry.id),
        version=line.version,
    )
    return line
