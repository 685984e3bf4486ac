"""node-centric model: opportunity columns, node_metrics, opportunities

Revision ID: b8e2d4f6a1c3
Revises: a3f1c9d2e7b4
Create Date: 2025-01-03

Downgrade is destructive: every node_metrics and opportunities row and the
node summary columns are dropped.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "b8e2d4f6a1c3"
down_revision: Union[str, Sequence[str], None] = "a3f1c9d2e7b4"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")

SUMMARY_COLUMNS = (
    "opportunity_score",
    "revenue_potential",
    "optimization_status",
    "last_scored_at",
    "metrics_updated_at",
    "last_failed_metric_id",
)

NODE_INDEXES = (
    ("idx_taxonomy_nodes_score", "opportunity_score"),
    ("idx_taxonomy_nodes_status", "optimization_status"),
    ("idx_taxonomy_nodes_revenue", "revenue_potential"),
)

RLS_TABLES = ("node_metrics", "opportunities")


def _is_postgres() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def upgrade() -> None:
    """Upgrade schema."""
    # 1. Summary and bookkeeping columns on taxonomy_nodes (nullable, non-breaking)
    op.add_column("taxonomy_nodes", sa.Column("opportunity_score", sa.Numeric(6, 2), nullable=True))
    op.add_column("taxonomy_nodes", sa.Column("revenue_potential", sa.Numeric(12, 2), nullable=True))
    op.add_column("taxonomy_nodes", sa.Column("optimization_status", sa.String(20), nullable=True))
    op.add_column("taxonomy_nodes", sa.Column("last_scored_at", sa.TIMESTAMP(timezone=True), nullable=True))
    op.add_column("taxonomy_nodes", sa.Column("metrics_updated_at", sa.TIMESTAMP(timezone=True), nullable=True))
    op.add_column("taxonomy_nodes", sa.Column("last_failed_metric_id", sa.Integer(), nullable=True))

    # SQLite cannot add a CHECK to an existing table without a rebuild
    if _is_postgres():
        op.create_check_constraint(
            "chk_optimization_status",
            "taxonomy_nodes",
            "optimization_status IS NULL OR optimization_status IN "
            "('unscored', 'declining', 'needs_attention', 'optimized')",
        )

    for index_name, column in NODE_INDEXES:
        op.create_index(index_name, "taxonomy_nodes", [column])

    # 2. node_metrics (append-only ledger)
    op.create_table(
        "node_metrics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "node_id", sa.Integer(),
            sa.ForeignKey("taxonomy_nodes.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("metric_timestamp", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("source", sa.String(20), nullable=True),
        sa.Column("measures", JSON_TYPE, nullable=False),
        sa.Column("recorded_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "source IS NULL OR source IN ('gsc', 'ga4', 'shopify', 'manual')",
            name="chk_node_metrics_source",
        ),
    )
    op.create_index("ix_node_metrics_node_id", "node_metrics", ["node_id"])
    op.create_index("ix_node_metrics_metric_timestamp", "node_metrics", ["metric_timestamp"])
    op.create_index("idx_node_metrics_node_ts", "node_metrics", ["node_id", "metric_timestamp"])

    # 3. opportunities (one active row per node)
    op.create_table(
        "opportunities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "node_id", sa.Integer(),
            sa.ForeignKey("taxonomy_nodes.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("score", sa.Numeric(6, 2), nullable=False),
        sa.Column("revenue_potential", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("priority", sa.SmallInteger(), nullable=True),
        sa.Column("factors", JSON_TYPE, nullable=False),
        sa.Column("recommendations", JSON_TYPE, nullable=False),
        sa.Column("computed_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("valid_until", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("window_start", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("window_end", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("window_metric_count", sa.Integer(), nullable=False),
        sa.Column("ledger_metric_count", sa.Integer(), nullable=False),
        sa.Column("ledger_last_metric_id", sa.Integer(), nullable=False),
        sa.CheckConstraint("priority IS NULL OR priority BETWEEN 1 AND 5", name="chk_opportunity_priority"),
    )
    op.create_index("ix_opportunities_node_id", "opportunities", ["node_id"], unique=True)
    op.create_index("ix_opportunities_valid_until", "opportunities", ["valid_until"])
    op.create_index("idx_opportunities_score", "opportunities", ["score"])

    # 4. Row-level security: rows visible only to the owning account
    if _is_postgres():
        for table in RLS_TABLES:
            op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
            op.execute(
                f"CREATE POLICY {table}_account_isolation ON {table} FOR ALL "
                f"USING (EXISTS (SELECT 1 FROM taxonomy_nodes tn "
                f"WHERE tn.id = {table}.node_id "
                f"AND tn.account_id = NULLIF(current_setting('app.current_account', true), '')::int))"
            )


def downgrade() -> None:
    """Downgrade schema."""
    if _is_postgres():
        for table in RLS_TABLES:
            op.execute(f"DROP POLICY IF EXISTS {table}_account_isolation ON {table}")

    op.drop_index("idx_opportunities_score", table_name="opportunities")
    op.drop_index("ix_opportunities_valid_until", table_name="opportunities")
    op.drop_index("ix_opportunities_node_id", table_name="opportunities")
    op.drop_table("opportunities")

    op.drop_index("idx_node_metrics_node_ts", table_name="node_metrics")
    op.drop_index("ix_node_metrics_metric_timestamp", table_name="node_metrics")
    op.drop_index("ix_node_metrics_node_id", table_name="node_metrics")
    op.drop_table("node_metrics")

    for index_name, _column in NODE_INDEXES:
        op.drop_index(index_name, table_name="taxonomy_nodes")

    if _is_postgres():
        op.drop_constraint("chk_optimization_status", "taxonomy_nodes", type_="check")

    with op.batch_alter_table("taxonomy_nodes") as batch_op:
        for column in SUMMARY_COLUMNS:
            batch_op.drop_column(column)
