"""create taxonomy_nodes table

Revision ID: a3f1c9d2e7b4
Revises:
Create Date: 2025-01-02
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "a3f1c9d2e7b4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "taxonomy_nodes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column(
            "parent_id", sa.Integer(),
            sa.ForeignKey("taxonomy_nodes.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("depth", sa.SmallInteger(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_taxonomy_nodes_account_id", "taxonomy_nodes", ["account_id"])
    op.create_index("ix_taxonomy_nodes_parent_id", "taxonomy_nodes", ["parent_id"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_taxonomy_nodes_parent_id", table_name="taxonomy_nodes")
    op.drop_index("ix_taxonomy_nodes_account_id", table_name="taxonomy_nodes")
    op.drop_table("taxonomy_nodes")
