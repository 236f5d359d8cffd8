"""create import pipeline tables

Revision ID: 3b7e1c9a4d20
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e1c9a4d20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False)


def _tenant() -> sa.Column:
    return sa.Column("tenant_id", sa.Uuid(as_uuid=True), nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "catalog_product",
        _id(),
        _tenant(),
        *_timestamps(),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=True),
        sa.Column("unit", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_catalog_product_tenant_id", "catalog_product", ["tenant_id"])
    op.create_index("ix_catalog_product_is_active", "catalog_product", ["is_active"])

    op.create_table(
        "catalog_menu_item",
        _id(),
        _tenant(),
        *_timestamps(),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_catalog_menu_item_tenant_id", "catalog_menu_item", ["tenant_id"])
    op.create_index("ix_catalog_menu_item_is_active", "catalog_menu_item", ["is_active"])

    op.create_table(
        "imports_batch",
        _id(),
        _tenant(),
        *_timestamps(),
        sa.Column("kind", sa.String(length=12), nullable=False),
        sa.Column("uploaded_by", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("filename", sa.String(length=512), nullable=False),
        sa.Column("source_url", sa.String(length=1024), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column("byte_size", sa.Integer(), nullable=False),
        sa.Column("sha256", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("header_json", sa.JSON(), nullable=True),
        sa.Column("raw_text", sa.Text(), nullable=True),
        sa.Column("extraction_method", sa.String(length=32), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_suggested", sa.Boolean(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("created_count", sa.Integer(), nullable=True),
        sa.Column("matched_count", sa.Integer(), nullable=True),
        sa.Column("unmatched_count", sa.Integer(), nullable=True),
        sa.Column("partial", sa.Boolean(), nullable=True),
    )
    op.create_index("ix_imports_batch_tenant_id", "imports_batch", ["tenant_id"])
    op.create_index("ix_imports_batch_kind", "imports_batch", ["kind"])
    op.create_index("ix_imports_batch_status", "imports_batch", ["status"])
    op.create_index("ix_imports_batch_sha256", "imports_batch", ["sha256"])

    op.create_table(
        "imports_line_item",
        _id(),
        _tenant(),
        *_timestamps(),
        sa.Column(
            "batch_id", sa.Uuid(as_uuid=True), sa.ForeignKey("imports_batch.id"), nullable=False
        ),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("description_original", sa.Text(), nullable=False),
        sa.Column("description_clean", sa.Text(), nullable=False),
        sa.Column("normalized_description", sa.String(length=500), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 4), nullable=True),
        sa.Column("unit", sa.String(length=32), nullable=True),
        sa.Column("unit_price", sa.Numeric(14, 4), nullable=True),
        sa.Column("total_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("tax_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("matched_entity_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("confidence", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=8), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        sa.UniqueConstraint("batch_id", "line_number", name="uq_imports_line_item_number"),
        sa.CheckConstraint(
            "(confidence IS NULL) OR (matched_entity_id IS NOT NULL "
            "AND confidence >= 0 AND confidence <= 100)",
            name="ck_imports_line_item_confidence",
        ),
    )
    op.create_index("ix_imports_line_item_tenant_id", "imports_line_item", ["tenant_id"])
    op.create_index("ix_imports_line_item_batch_id", "imports_line_item", ["batch_id"])
    op.create_index("ix_imports_line_item_status", "imports_line_item", ["status"])
    op.create_index(
        "ix_imports_line_item_normalized_description",
        "imports_line_item",
        ["normalized_description"],
    )

    op.create_table(
        "matching_history",
        _id(),
        _tenant(),
        sa.Column("kind", sa.String(length=12), nullable=False),
        sa.Column("normalized_description", sa.String(length=500), nullable=False),
        sa.Column("entity_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("confirmed_by", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_matching_history_tenant_id", "matching_history", ["tenant_id"])
    op.create_index(
        "ix_matching_history_lookup",
        "matching_history",
        ["tenant_id", "kind", "normalized_description"],
    )

    op.create_table(
        "extraction_processing_metric",
        _id(),
        _tenant(),
        sa.Column(
            "batch_id", sa.Uuid(as_uuid=True), sa.ForeignKey("imports_batch.id"), nullable=False
        ),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(length=32), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("provider_unavailable", sa.Boolean(), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("items_extracted", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_extraction_processing_metric_tenant_id", "extraction_processing_metric", ["tenant_id"]
    )
    op.create_index(
        "ix_extraction_processing_metric_batch_id", "extraction_processing_metric", ["batch_id"]
    )
    op.create_index(
        "ix_extraction_processing_metric_method", "extraction_processing_metric", ["method"]
    )

    op.create_table(
        "audit_event",
        _id(),
        _tenant(),
        sa.Column(
            "batch_id", sa.Uuid(as_uuid=True), sa.ForeignKey("imports_batch.id"), nullable=True
        ),
        sa.Column("actor_user_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_event_tenant_id", "audit_event", ["tenant_id"])
    op.create_index("ix_audit_event_batch_id", "audit_event", ["batch_id"])
    op.create_index("ix_audit_event_actor_user_id", "audit_event", ["actor_user_id"])
    op.create_index("ix_audit_event_event_type", "audit_event", ["event_type"])

    op.create_table(
        "ledger_purchase",
        _id(),
        _tenant(),
        *_timestamps(),
        sa.Column(
            "batch_id", sa.Uuid(as_uuid=True), sa.ForeignKey("imports_batch.id"), nullable=False
        ),
        sa.Column("supplier_name", sa.String(length=300), nullable=True),
        sa.Column("supplier_tax_id", sa.String(length=32), nullable=True),
        sa.Column("invoice_number", sa.String(length=100), nullable=True),
        sa.Column("invoice_date", sa.Date(), nullable=True),
        sa.Column("total_net", sa.Numeric(14, 2), nullable=True),
        sa.Column("total_tax", sa.Numeric(14, 2), nullable=True),
        sa.Column("total_gross", sa.Numeric(14, 2), nullable=True),
        sa.Column("created_by", sa.Uuid(as_uuid=True), nullable=True),
        sa.UniqueConstraint("batch_id", name="uq_ledger_purchase_batch_id"),
    )
    op.create_index("ix_ledger_purchase_tenant_id", "ledger_purchase", ["tenant_id"])

    op.create_table(
        "ledger_purchase_line",
        _id(),
        _tenant(),
        *_timestamps(),
        sa.Column(
            "purchase_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("ledger_purchase.id"),
            nullable=False,
        ),
        sa.Column(
            "source_line_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("imports_line_item.id"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 4), nullable=True),
        sa.Column("unit", sa.String(length=32), nullable=True),
        sa.Column("unit_price", sa.Numeric(14, 4), nullable=True),
        sa.Column("total_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=True),
        sa.UniqueConstraint("source_line_id", name="uq_ledger_purchase_line_source_line_id"),
    )
    op.create_index("ix_ledger_purchase_line_tenant_id", "ledger_purchase_line", ["tenant_id"])
    op.create_index("ix_ledger_purchase_line_purchase_id", "ledger_purchase_line", ["purchase_id"])
    op.create_index("ix_ledger_purchase_line_product_id", "ledger_purchase_line", ["product_id"])

    op.create_table(
        "ledger_sale",
        _id(),
        _tenant(),
        *_timestamps(),
        sa.Column(
            "batch_id", sa.Uuid(as_uuid=True), sa.ForeignKey("imports_batch.id"), nullable=False
        ),
        sa.Column(
            "source_line_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("imports_line_item.id"),
            nullable=False,
        ),
        sa.Column("menu_item_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("sale_date", sa.Date(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 4), nullable=True),
        sa.Column("unit_price", sa.Numeric(14, 4), nullable=True),
        sa.Column("total_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("created_by", sa.Uuid(as_uuid=True), nullable=True),
        sa.UniqueConstraint("source_line_id", name="uq_ledger_sale_source_line_id"),
    )
    op.create_index("ix_ledger_sale_tenant_id", "ledger_sale", ["tenant_id"])
    op.create_index("ix_ledger_sale_batch_id", "ledger_sale", ["batch_id"])
    op.create_index("ix_ledger_sale_menu_item_id", "ledger_sale", ["menu_item_id"])


def downgrade() -> None:
    for table in (
        "ledger_sale",
        "ledger_purchase_line",
        "ledger_purchase",
        "audit_event",
        "extraction_processing_metric",
        "matching_history",
        "imports_line_item",
        "imports_batch",
        "catalog_menu_item",
        "catalog_product",
    ):
        op.drop_table(table)
