"""stores (config blob + version) and invoices

Revision ID: a1c3e5f70001
Revises:
Create Date: 2026-10-19 09:30:00
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "a1c3e5f70001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "stores",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("blob", sa.JSON, nullable=False),
        sa.Column("blob_version", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "store_id",
            sa.String(64),
            sa.ForeignKey("stores.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("order_id", sa.String(256), nullable=True),
        sa.Column("price", sa.Numeric(28, 8), nullable=False),
        sa.Column("currency", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("internal_tags", sa.JSON, nullable=False),
        sa.Column("metadata", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_invoices_store_id", "invoices", ["store_id"])
    op.create_index("ix_invoices_store_order", "invoices", ["store_id", "order_id"])


def downgrade():
    op.drop_index("ix_invoices_store_order", table_name="invoices")
    op.drop_index("ix_invoices_store_id", table_name="invoices")
    op.drop_table("invoices")
    op.drop_table("stores")
