"""ledger documents table

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ledger_documents",
        sa.Column("path", sa.String(length=512), primary_key=True),
        sa.Column("parent", sa.String(length=512), nullable=False),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_ledger_documents_parent", "ledger_documents", ["parent"])
    op.create_index("ix_ledger_documents_parent_key", "ledger_documents", ["parent", "key"])


def downgrade() -> None:
    op.drop_index("ix_ledger_documents_parent_key", table_name="ledger_documents")
    op.drop_index("ix_ledger_documents_parent", table_name="ledger_documents")
    op.drop_table("ledger_documents")
