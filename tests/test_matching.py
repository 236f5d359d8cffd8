from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from stockroom.core.db import SessionLocal
from stockroom.core.errors import ConcurrencyConflict, InvalidTransition, NotFound
from stockroom.modules.catalog.service import CatalogEntry
from stockroom.modules.imports.models import (
    BatchStatus,
    ImportBatch,
    ImportKind,
    LineItem,
    LineStatus,
)
from stockroom.modules.matching.models import MatchHistory
from stockroom.modules.matching.service import (
    NORMALIZED_MAX_LEN,
    REASON_HIGH,
    REASON_LEARNED,
    MatchHistoryRepository,
    auto_match_lines,
    confirm_line_match,
    fuzzy_search,
    normalize_description,
    suggest,
)


def _line(tenant_id, *, description: str, **values) -> LineItem:
    return LineItem(
        tenant_id=tenant_id,
        batch_id=uuid.uuid4(),
        line_number=1,
        description_original=description,
        description_clean=description,
        normalized_description=normalize_description(description),
        status=LineStatus.PENDING,
        metadata_json={},
        **values,
    )


def test_normalize_description_folds_accents_and_punctuation():
    assert normalize_description("  Pão  de Forma, 500g! ") == "pao de forma 500g"
    assert normalize_description("CAFÉ-Expresso") == "cafeexpresso"
    assert normalize_description(None) == ""


def test_normalize_description_fits_the_column():
    long_text = "Farinha de trigo tipo 65 " * 60
    normalized = normalize_description(long_text)
    assert len(normalized) <= NORMALIZED_MAX_LEN
    assert normalized.startswith("farinha de trigo tipo 65 farinha")
    assert not normalized.endswith(" ")


def test_fuzzy_search_with_empty_catalog_returns_nothing():
    assert fuzzy_search("tomate", []) == []


def test_fuzzy_search_ranks_and_applies_distance_threshold():
    entries = [
        CatalogEntry(id=uuid.uuid4(), name="Tomate Cherry"),
        CatalogEntry(id=uuid.uuid4(), name="Tomate Pelado Lata"),
        CatalogEntry(id=uuid.uuid4(), name="Bacalhau Demolhado"),
    ]
    results = fuzzy_search("TOMATE CHERRY", entries)
    assert results[0].name == "Tomate Cherry"
    assert results[0].confidence == 100
    assert results[0].reason == REASON_HIGH
    assert "Bacalhau Demolhado" not in [r.name for r in results]
    assert all(r.confidence >= 60 for r in results)


def test_suggest_prefers_learned_history_and_skips_inactive_entities(
    tenant_id, user_id, seed_catalog
):
    ids = seed_catalog(
        products=["Farinha T65", "Farinha T55", "Farinha Antiga"], inactive=["Farinha Antiga"]
    )
    with SessionLocal() as session:
        history = MatchHistoryRepository(session, tenant_id=tenant_id)
        normalized = normalize_description("FARINHA TIPO 65 KG")
        for _ in range(2):
            history.record(
                kind=ImportKind.INVOICE,
                normalized=normalized,
                entity_id=ids["Farinha T65"],
                confirmed_by=user_id,
            )
        history.record(
            kind=ImportKind.INVOICE,
            normalized=normalized,
            entity_id=ids["Farinha T55"],
            confirmed_by=user_id,
        )
        history.record(
            kind=ImportKind.INVOICE,
            normalized=normalized,
            entity_id=ids["Farinha Antiga"],
            confirmed_by=user_id,
        )
        session.commit()

        results = suggest(
            session, tenant_id=tenant_id, kind=ImportKind.INVOICE, description="Farinha tipo 65 kg"
        )
        assert [r.entity_id for r in results] == [ids["Farinha T65"], ids["Farinha T55"]]
        assert all(r.confidence == 100 and r.reason == REASON_LEARNED for r in results)


def test_history_is_scoped_by_tenant(tenant_id, user_id, seed_catalog):
    ids = seed_catalog(products=["Leite Meio Gordo"])
    with SessionLocal() as session:
        MatchHistoryRepository(session, tenant_id=uuid.uuid4()).record(
            kind=ImportKind.INVOICE,
            normalized="lmg 1l",
            entity_id=ids["Leite Meio Gordo"],
            confirmed_by=user_id,
        )
        session.commit()
        learned = MatchHistoryRepository(session, tenant_id=tenant_id).learned_entities(
            kind=ImportKind.INVOICE, normalized="lmg 1l"
        )
        assert learned == []


def test_auto_match_infers_sales_quantity_from_menu_price(tenant_id, seed_catalog):
    ids = seed_catalog(menu_items=[("Bitoque", Decimal("9.50")), ("Sopa do Dia", Decimal("2.50"))])
    lines = [
        _line(tenant_id, description="Bitoque", quantity=None, total_price=Decimal("28.50")),
        _line(
            tenant_id,
            description="Sopa do dia",
            quantity=Decimal("4"),
            unit_price=Decimal("3.00"),
            total_price=Decimal("12.00"),
        ),
        _line(tenant_id, description="Completely unrelated", total_price=Decimal("5.00")),
    ]
    with SessionLocal() as session:
        matched = auto_match_lines(
            session, tenant_id=tenant_id, kind=ImportKind.SALES_REPORT, lines=lines
        )

    assert matched == 2
    bitoque, sopa, unrelated = lines
    assert bitoque.matched_entity_id == ids["Bitoque"]
    assert bitoque.status == LineStatus.MATCHED
    assert bitoque.quantity == Decimal("3")
    assert bitoque.metadata_json["inferred_quantity"] is True
    assert bitoque.metadata_json["price_mismatch"] is False

    assert sopa.quantity == Decimal("4")
    assert sopa.metadata_json["inferred_quantity"] is False
    assert sopa.metadata_json["price_mismatch"] is True

    assert unrelated.status == LineStatus.PENDING
    assert unrelated.matched_entity_id is None
    assert unrelated.confidence is None


def _reviewing_batch_with_line(session, tenant_id, user_id) -> tuple[ImportBatch, LineItem]:
    batch = ImportBatch(
        tenant_id=tenant_id,
        kind=ImportKind.INVOICE,
        uploaded_by=user_id,
        filename="fatura.pdf",
        source_url="local://x",
        mime_type="application/pdf",
        byte_size=1,
        sha256="0" * 64,
        status=BatchStatus.REVIEWING,
    )
    session.add(batch)
    session.flush()
    line = _line(tenant_id, description="Oleo Girassol 5L")
    line.batch_id = batch.id
    session.add(line)
    session.commit()
    return batch, line


def test_confirm_line_match_records_history_and_bumps_version(tenant_id, user_id, seed_catalog):
    ids = seed_catalog(products=["Oleo de Girassol"])
    with SessionLocal() as session:
        batch, line = _reviewing_batch_with_line(session, tenant_id, user_id)
        updated = confirm_line_match(
            session,
            batch=batch,
            line_id=line.id,
            entity_id=ids["Oleo de Girassol"],
            version=1,
            user_id=user_id,
        )
        assert updated.version == 2
        assert updated.confidence == 100
        assert updated.status == LineStatus.MATCHED

        history = list(session.scalars(select(MatchHistory)))
        assert len(history) == 1
        assert history[0].normalized_description == "oleo girassol 5l"
        assert history[0].confirmed_by == user_id

        # Stale version from a second reviewer.
        with pytest.raises(ConcurrencyConflict) as exc:
            confirm_line_match(
                session,
                batch=batch,
                line_id=line.id,
                entity_id=ids["Oleo de Girassol"],
                version=1,
                user_id=uuid.uuid4(),
            )
        assert exc.value.status_code == 409


def test_confirm_line_match_rejects_inactive_entity_and_closed_batch(
    tenant_id, user_id, seed_catalog
):
    ids = seed_catalog(products=["Sal Grosso"], inactive=["Sal Grosso"])
    with SessionLocal() as session:
        batch, line = _reviewing_batch_with_line(session, tenant_id, user_id)
        with pytest.raises(NotFound):
            confirm_line_match(
                session,
                batch=batch,
                line_id=line.id,
                entity_id=ids["Sal Grosso"],
                version=1,
                user_id=user_id,
            )

        batch.status = BatchStatus.APPROVED
        session.commit()
        with pytest.raises(InvalidTransition):
            confirm_line_match(
                session,
                batch=batch,
                line_id=line.id,
                entity_id=ids["Sal Grosso"],
                version=1,
                user_id=user_id,
            )
