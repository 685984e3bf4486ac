"""
Metrics ledger - append-only log of performance observations per node

Source of truth for scoring inputs. Writers only ever INSERT NodeMetric rows
and advance taxonomy_nodes.metrics_updated_at; nothing here updates or
deletes a metric.
"""
import logging
from datetime import datetime
from typing import Any, Iterable, Iterator, Mapping

from sqlalchemy import case, literal, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from nodescore.domain.errors import InvalidInputError, NodeNotFoundError
from nodescore.domain.measures import normalize_measures
from nodescore.infrastructure.db.models import METRIC_SOURCE_VALUES, NodeMetric, TaxonomyNode
from nodescore.infrastructure.db.types import UTCDateTime
from nodescore.utils.time import as_utc

logger = logging.getLogger(__name__)


class MetricWindow:
    """
    Lazy, finite, restartable view over a node's metrics

    Every iteration runs a fresh query (ascending by metric timestamp, ties
    by ingestion order) and streams rows in batches, so iterating twice sees
    metrics appended in between.
    """

    def __init__(
        self,
        db: Session,
        node_id: int,
        since: datetime | None = None,
        batch_size: int = 500,
    ):
        self.db = db
        self.node_id = node_id
        self.since = as_utc(since) if since is not None else None
        self.batch_size = batch_size

    def _query(self) -> Query:
        query = self.db.query(NodeMetric).filter(NodeMetric.node_id == self.node_id)
        if self.since is not None:
            query = query.filter(NodeMetric.metric_timestamp >= self.since)
        return query.order_by(NodeMetric.metric_timestamp.asc(), NodeMetric.id.asc())

    def __iter__(self) -> Iterator[NodeMetric]:
        return iter(self._query().yield_per(self.batch_size))

    def count(self) -> int:
        return self._query().order_by(None).count()


class MetricsLedger:
    """
    Push-only ingestion API plus windowed reads

    Example:
        >>> ledger = MetricsLedger(db)
        >>> ledger.record(node_id=7, timestamp=datetime(2025, 1, 3), measures={"traffic": 1200})
        >>> [m.measures for m in ledger.metrics_since(7)]
        [{'traffic': 1200.0}]
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        node_id: int,
        timestamp: datetime,
        measures: Mapping[str, Any],
        source: str | None = None,
    ) -> NodeMetric:
        """
        Append one metric snapshot

        Args:
            node_id: taxonomy node
            timestamp: observation time (naive = UTC)
            measures: {name: number}, non-empty
            source: gsc | ga4 | shopify | manual (optional)

        Returns:
            The stored NodeMetric

        Raises:
            NodeNotFoundError: node does not exist
            InvalidMeasureError: empty mapping or non-numeric value
            InvalidInputError: bad timestamp or source
        """
        row = self._validate(timestamp, measures, source)
        self._require_node(node_id)

        metric = self._append(node_id, *row)
        self._commit(node_id)
        return metric

    def record_many(
        self,
        node_id: int,
        rows: Iterable[tuple[datetime, Mapping[str, Any]]],
        source: str | None = None,
    ) -> list[NodeMetric]:
        """
        Append several snapshots in one transaction

        All rows are validated before anything is written; one bad row
        rejects the whole batch.
        """
        validated = [self._validate(ts, measures, source) for ts, measures in rows]
        if not validated:
            raise InvalidInputError("No metric rows to record")
        self._require_node(node_id)

        metrics = [self._append(node_id, *row) for row in validated]
        self._commit(node_id)
        logger.info("Recorded %d metric(s) for node %d", len(metrics), node_id)
        return metrics

    def metrics_since(self, node_id: int, since: datetime | None = None) -> MetricWindow:
        """
        Metrics of a node with timestamp >= since (all when since is None)

        Raises:
            NodeNotFoundError: node does not exist (checked now, not on iteration)
        """
        self._require_node(node_id)
        return MetricWindow(self.db, node_id, since=since)

    def latest(self, node_id: int) -> NodeMetric | None:
        self._require_node(node_id)
        return (
            self.db.query(NodeMetric)
            .filter(NodeMetric.node_id == node_id)
            .order_by(NodeMetric.metric_timestamp.desc(), NodeMetric.id.desc())
            .first()
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(self, timestamp, measures, source) -> tuple[datetime, dict[str, float], str | None]:
        if not isinstance(timestamp, datetime):
            raise InvalidInputError(f"Metric timestamp must be a datetime, got {timestamp!r}")
        if source is not None and source not in METRIC_SOURCE_VALUES:
            raise InvalidInputError(
                f"Unknown metric source: {source!r}. Use one of {', '.join(METRIC_SOURCE_VALUES)}"
            )
        return as_utc(timestamp), normalize_measures(measures), source

    def _require_node(self, node_id: int) -> None:
        exists = self.db.query(TaxonomyNode.id).filter(TaxonomyNode.id == node_id).first()
        if exists is None:
            raise NodeNotFoundError(node_id)

    def _append(
        self, node_id: int, timestamp: datetime, measures: dict[str, float], source: str | None
    ) -> NodeMetric:
        metric = NodeMetric(
            node_id=node_id,
            metric_timestamp=timestamp,
            measures=measures,
            source=source,
        )
        self.db.add(metric)

        # metrics_updated_at = max(current, timestamp), evaluated in SQL so
        # concurrent appends cannot move it backwards
        ts = literal(timestamp, UTCDateTime())
        current = TaxonomyNode.metrics_updated_at
        self.db.execute(
            update(TaxonomyNode)
            .where(TaxonomyNode.id == node_id)
            .values(metrics_updated_at=case((or_(current.is_(None), current < ts), ts), else_=current))
            .execution_options(synchronize_session=False)
        )
        return metric

    def _commit(self, node_id: int) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            # FK violation: node deleted between the existence check and the insert
            raise NodeNotFoundError(node_id) from exc
