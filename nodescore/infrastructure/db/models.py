"""
SQLAlchemy ORM models (taxonomy store, metrics ledger, opportunities)
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    String, Integer, SmallInteger, Text, ForeignKey, Numeric, CheckConstraint, Index, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nodescore.infrastructure.db.session import Base
from nodescore.infrastructure.db.types import JSONType, UTCDateTime

OPTIMIZATION_STATUS_VALUES = ("unscored", "declining", "needs_attention", "optimized")
METRIC_SOURCE_VALUES = ("gsc", "ga4", "shopify", "manual")


def _nullable_in(column: str, values: tuple[str, ...]) -> str:
    allowed = ", ".join(f"'{v}'" for v in values)
    return f"{column} IS NULL OR {column} IN ({allowed})"


class TaxonomyNode(Base):
    """
    Taxonomy node (existing hierarchical category entity)

    The summary columns (opportunity_score ... metrics_updated_at) are
    denormalized from the active Opportunity and the metrics ledger.
    """
    __tablename__ = "taxonomy_nodes"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("taxonomy_nodes.id", ondelete="CASCADE"), nullable=True, index=True
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    depth: Mapped[int] = mapped_column(SmallInteger, nullable=False, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )

    # Node-centric summary columns
    opportunity_score: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
    revenue_potential: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    optimization_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_scored_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    metrics_updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Ledger high-water mark (max metric id) of the last window the strategy
    # rejected; pending rescoring skips the node until the ledger moves past it
    last_failed_metric_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    children: Mapped[list["TaxonomyNode"]] = relationship(
        cascade="all, delete-orphan", passive_deletes=True
    )
    metrics: Mapped[list["NodeMetric"]] = relationship(
        back_populates="node", cascade="all, delete-orphan", passive_deletes=True
    )
    opportunity: Mapped["Opportunity | None"] = relationship(
        back_populates="node", cascade="all, delete-orphan", passive_deletes=True,
        uselist=False,
    )

    __table_args__ = (
        CheckConstraint(
            _nullable_in("optimization_status", OPTIMIZATION_STATUS_VALUES),
            name="chk_optimization_status",
        ),
        Index("idx_taxonomy_nodes_score", "opportunity_score"),
        Index("idx_taxonomy_nodes_status", "optimization_status"),
        Index("idx_taxonomy_nodes_revenue", "revenue_potential"),
    )


class NodeMetric(Base):
    """
    Metrics ledger: one observation snapshot for a node (append-only)

    measures: {"traffic": 1200.0, "conversion": 0.031, ...}
    """
    __tablename__ = "node_metrics"

    id: Mapped[int] = mapped_column(primary_key=True)
    node_id: Mapped[int] = mapped_column(
        ForeignKey("taxonomy_nodes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    metric_timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    source: Mapped[str | None] = mapped_column(String(20), nullable=True)
    measures: Mapped[dict] = mapped_column(JSONType, nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )

    node: Mapped[TaxonomyNode] = relationship(back_populates="metrics")

    __table_args__ = (
        Index("idx_node_metrics_node_ts", "node_id", "metric_timestamp"),
        CheckConstraint(
            _nullable_in("source", METRIC_SOURCE_VALUES),
            name="chk_node_metrics_source",
        ),
    )


class Opportunity(Base):
    """
    Active opportunity for a node (at most one per node, upserted on rescoring)

    window_* columns record which slice of the ledger produced the score.
    """
    __tablename__ = "opportunities"

    id: Mapped[int] = mapped_column(primary_key=True)
    node_id: Mapped[int] = mapped_column(
        ForeignKey("taxonomy_nodes.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )

    score: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    revenue_potential: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)

    factors: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    recommendations: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    computed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    valid_until: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    # Metric window bounds
    window_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    window_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    window_metric_count: Mapped[int] = mapped_column(Integer, nullable=False)

    # Ledger high-water mark at capture time (staleness check)
    ledger_metric_count: Mapped[int] = mapped_column(Integer, nullable=False)
    ledger_last_metric_id: Mapped[int] = mapped_column(Integer, nullable=False)

    node: Mapped[TaxonomyNode] = relationship(back_populates="opportunity")

    __table_args__ = (
        CheckConstraint("priority IS NULL OR priority BETWEEN 1 AND 5", name="chk_opportunity_priority"),
        Index("idx_opportunities_score", "score"),
    )
