"""document_changes feed

Revision ID: 20260615_0002
Revises: 20260601_0001
Create Date: 2026-06-15 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

revision = "20260615_0002"
down_revision = "20260601_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "document_changes",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("collection", sa.String(length=64), nullable=False),
        sa.Column("doc_id", sa.String(length=64), nullable=False),
        sa.Column("op", sa.String(length=16), nullable=False),
        sa.Column("origin", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_document_changes"),
    )
    op.create_index("ix_document_changes_created_at", "document_changes", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_document_changes_created_at", table_name="document_changes")
    op.drop_table("document_changes")
