"""
Opportunity engine - scores taxonomy nodes from their metrics window.

One scoring pass (rescore_node):
1. Serialize on the node (in-process lock + PostgreSQL advisory lock)
2. Snapshot the ledger: high-water mark (count, max id) and the window rows
3. Skip if the high-water mark equals the one the active opportunity was
   computed from (stale: nothing new since the last successful scoring)
4. Run the scoring strategy on the window
5. Upsert the node's opportunity and refresh the node summary columns in one
   transaction
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from nodescore.config import Settings, get_settings
from nodescore.domain.errors import (
    NodeNotFoundError,
    OpportunityConflictError,
    ScoringPolicyError,
    StaleMetricsError,
)
from nodescore.domain.optimization_status import OptimizationStatus
from nodescore.domain.scoring import ScoringResult, ScoringStrategy, build_strategy
from nodescore.infrastructure.db.models import NodeMetric, Opportunity, TaxonomyNode
from nodescore.infrastructure.locks import NodeLockRegistry, acquire_advisory_lock
from nodescore.utils.time import utcnow

logger = logging.getLogger(__name__)

OUTCOME_SCORED = "scored"
OUTCOME_STALE = "stale"
OUTCOME_FAILED = "failed"

# Column limits: Numeric(6, 2) / Numeric(12, 2)
MAX_SCORE = Decimal("9999.99")
MAX_REVENUE = Decimal("9999999999.99")

# Shared by every engine in the process: sessions are per request, the
# per-node critical section is not.
_node_locks = NodeLockRegistry()


@dataclass(frozen=True)
class WindowSnapshot:
    """Metric window captured by one scoring pass"""
    measures: list[dict[str, float]]
    start: datetime
    end: datetime
    ledger_count: int
    ledger_last_id: int

    @property
    def size(self) -> int:
        return len(self.measures)


@dataclass
class RescoreOutcome:
    node_id: int
    status: str
    opportunity: Opportunity | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.status != OUTCOME_FAILED


@dataclass
class BatchRescoreReport:
    outcomes: list[RescoreOutcome] = field(default_factory=list)

    def _with_status(self, status: str) -> list[RescoreOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def scored(self) -> list[RescoreOutcome]:
        return self._with_status(OUTCOME_SCORED)

    @property
    def stale(self) -> list[RescoreOutcome]:
        return self._with_status(OUTCOME_STALE)

    @property
    def failed(self) -> list[RescoreOutcome]:
        return self._with_status(OUTCOME_FAILED)

    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.outcomes),
            OUTCOME_SCORED: len(self.scored),
            OUTCOME_STALE: len(self.stale),
            OUTCOME_FAILED: len(self.failed),
        }


@dataclass
class NodeOpportunity:
    """Node read together with its active opportunity"""
    node: TaxonomyNode
    opportunity: Opportunity | None

    @property
    def status(self) -> OptimizationStatus:
        return OptimizationStatus.from_column(self.node.optimization_status)


class OpportunityEngine:
    """
    Example:
        >>> engine = OpportunityEngine(db, strategy=AverageMeasureStrategy("x"))
        >>> engine.rescore_node(7).status
        'scored'
        >>> engine.rescore_node(7).status  # no new metrics
        'stale'
    """

    def __init__(
        self,
        db: Session,
        strategy: ScoringStrategy | None = None,
        settings: Settings | None = None,
        locks: NodeLockRegistry | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.strategy = strategy or build_strategy(self.settings)
        self.locks = locks or _node_locks

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def rescore_node(self, node_id: int, account_id: int | None = None) -> RescoreOutcome:
        """
        Rescore one node (optionally only if it belongs to account_id)

        Returns:
            RescoreOutcome with status "scored" or "stale"

        Raises:
            NodeNotFoundError: node does not exist
            ScoringPolicyError: strategy failed or returned a malformed result
            OpportunityConflictError: concurrent writer created the opportunity first
        """
        with self.locks.hold(node_id):
            try:
                opportunity = self._rescore_locked(node_id, account_id)
            except StaleMetricsError:
                self.db.rollback()
                logger.debug("Node %d: no new metrics, rescoring skipped", node_id)
                return RescoreOutcome(node_id=node_id, status=OUTCOME_STALE)
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            "Rescored node %d: score=%s revenue_potential=%s status=%s window=%d metric(s)",
            node_id, opportunity.score, opportunity.revenue_potential,
            opportunity.status, opportunity.window_metric_count,
        )
        return RescoreOutcome(node_id=node_id, status=OUTCOME_SCORED, opportunity=opportunity)

    def rescore_all(self, node_ids: Iterable[int], account_id: int | None = None) -> BatchRescoreReport:
        """
        Rescore each node independently; one failure never stops the batch
        """
        report = BatchRescoreReport()
        for node_id in node_ids:
            try:
                report.outcomes.append(self.rescore_node(node_id, account_id=account_id))
            except Exception as exc:
                logger.exception("Rescoring failed for node_id=%s", node_id)
                report.outcomes.append(
                    RescoreOutcome(node_id=node_id, status=OUTCOME_FAILED, error=exc)
                )

        logger.info(
            "Batch rescoring: %d scored, %d stale, %d failed",
            len(report.scored), len(report.stale), len(report.failed),
        )
        return report

    def rescore_pending(self, account_id: int | None = None, limit: int | None = None) -> BatchRescoreReport:
        """
        Rescore every node whose ledger moved past its active opportunity

        Nodes whose current window was rejected by the strategy are skipped
        until new metrics arrive, so they cannot crowd a limited batch.
        """
        node_ids = self.pending_node_ids(account_id=account_id, limit=limit)
        if not node_ids:
            logger.info("Pending rescoring: nothing to do")
        return self.rescore_all(node_ids, account_id=account_id)

    def pending_node_ids(self, account_id: int | None = None, limit: int | None = None) -> list[int]:
        ledger = (
            self.db.query(
                NodeMetric.node_id.label("node_id"),
                func.count(NodeMetric.id).label("metric_count"),
                func.max(NodeMetric.id).label("last_id"),
            )
            .group_by(NodeMetric.node_id)
            .subquery()
        )
        query = (
            self.db.query(ledger.c.node_id)
            .join(TaxonomyNode, TaxonomyNode.id == ledger.c.node_id)
            .outerjoin(Opportunity, Opportunity.node_id == ledger.c.node_id)
            .filter(
                or_(
                    Opportunity.id.is_(None),
                    Opportunity.ledger_metric_count != ledger.c.metric_count,
                    Opportunity.ledger_last_metric_id != ledger.c.last_id,
                ),
                # a window the strategy rejected stays rejected until new metrics arrive
                or_(
                    TaxonomyNode.last_failed_metric_id.is_(None),
                    TaxonomyNode.last_failed_metric_id != ledger.c.last_id,
                ),
            )
        )
        if account_id is not None:
            query = query.filter(TaxonomyNode.account_id == account_id)
        query = query.order_by(ledger.c.node_id.asc())
        if limit is not None:
            query = query.limit(limit)
        return [row.node_id for row in query.all()]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_opportunity(self, node_id: int) -> Opportunity | None:
        return self.db.query(Opportunity).filter(Opportunity.node_id == node_id).first()

    def get_node_opportunity(self, node_id: int, account_id: int | None = None) -> NodeOpportunity:
        query = self.db.query(TaxonomyNode).filter(TaxonomyNode.id == node_id)
        if account_id is not None:
            query = query.filter(TaxonomyNode.account_id == account_id)
        node = query.first()
        if node is None:
            raise NodeNotFoundError(node_id)
        return NodeOpportunity(node=node, opportunity=self.get_opportunity(node_id))

    def top_opportunities(
        self,
        account_id: int,
        limit: int = 20,
        status: OptimizationStatus | None = None,
        include_expired: bool = False,
    ) -> list[NodeOpportunity]:
        """Highest-scoring opportunities of an account (score desc, revenue desc)"""
        query = (
            self.db.query(TaxonomyNode, Opportunity)
            .join(Opportunity, Opportunity.node_id == TaxonomyNode.id)
            .filter(TaxonomyNode.account_id == account_id)
        )
        if status is not None:
            query = query.filter(Opportunity.status == OptimizationStatus(status).value)
        if not include_expired:
            query = query.filter(Opportunity.valid_until > utcnow())
        rows = (
            query.order_by(Opportunity.score.desc(), Opportunity.revenue_potential.desc(), TaxonomyNode.id.asc())
            .limit(limit)
            .all()
        )
        return [NodeOpportunity(node=node, opportunity=opp) for node, opp in rows]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _rescore_locked(self, node_id: int, account_id: int | None) -> Opportunity:
        if self.settings.ENABLE_ADVISORY_LOCKS:
            acquire_advisory_lock(self.db, node_id)

        query = self.db.query(TaxonomyNode).filter(TaxonomyNode.id == node_id)
        if account_id is not None:
            query = query.filter(TaxonomyNode.account_id == account_id)
        node = query.first()
        if node is None:
            raise NodeNotFoundError(node_id)

        opportunity = self.get_opportunity(node_id)
        window = self._capture_window(node_id)

        if opportunity is not None and (
            opportunity.ledger_metric_count == window.ledger_count
            and opportunity.ledger_last_metric_id == window.ledger_last_id
        ):
            raise StaleMetricsError(node_id)

        try:
            result = self._compute(node_id, window)
        except ScoringPolicyError:
            self.db.rollback()
            self._mark_failed(node_id, window.ledger_last_id)
            raise
        computed_at = utcnow()

        if opportunity is None:
            opportunity = Opportunity(node_id=node_id)
            self.db.add(opportunity)
        self._fill_opportunity(opportunity, result, window, computed_at)

        node.opportunity_score = opportunity.score
        node.revenue_potential = opportunity.revenue_potential
        node.optimization_status = opportunity.status
        node.last_scored_at = computed_at
        node.last_failed_metric_id = None

        try:
            self.db.commit()
        except IntegrityError as exc:
            raise OpportunityConflictError(
                f"Active opportunity for node #{node_id} was written concurrently"
            ) from exc
        return opportunity

    def _mark_failed(self, node_id: int, ledger_last_id: int) -> None:
        try:
            self.db.execute(
                update(TaxonomyNode)
                .where(TaxonomyNode.id == node_id)
                .values(last_failed_metric_id=ledger_last_id)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Could not record rejected metric window for node %d", node_id)

    def _capture_window(self, node_id: int) -> WindowSnapshot:
        ledger_count, ledger_last_id = (
            self.db.query(func.count(NodeMetric.id), func.max(NodeMetric.id))
            .filter(NodeMetric.node_id == node_id)
            .one()
        )
        if not ledger_count:
            raise StaleMetricsError(node_id)

        # Rows past the high-water mark belong to the next pass
        rows = (
            self.db.query(NodeMetric.metric_timestamp, NodeMetric.measures)
            .filter(and_(NodeMetric.node_id == node_id, NodeMetric.id <= ledger_last_id))
            .order_by(NodeMetric.metric_timestamp.asc(), NodeMetric.id.asc())
            .all()
        )
        if self.settings.SCORING_WINDOW_DAYS:
            cutoff = rows[-1].metric_timestamp - timedelta(days=self.settings.SCORING_WINDOW_DAYS)
            rows = [row for row in rows if row.metric_timestamp >= cutoff]

        return WindowSnapshot(
            measures=[dict(row.measures) for row in rows],
            start=rows[0].metric_timestamp,
            end=rows[-1].metric_timestamp,
            ledger_count=ledger_count,
            ledger_last_id=ledger_last_id,
        )

    def _compute(self, node_id: int, window: WindowSnapshot) -> ScoringResult:
        try:
            result = self.strategy.compute_opportunity(window.measures)
        except ScoringPolicyError:
            raise
        except Exception as exc:
            raise ScoringPolicyError(f"Scoring strategy failed for node #{node_id}: {exc}") from exc

        if not isinstance(result, ScoringResult):
            raise ScoringPolicyError(
                f"Scoring strategy returned {type(result).__name__}, expected ScoringResult"
            )
        if not isinstance(result.status, OptimizationStatus) or result.status is OptimizationStatus.UNSCORED:
            raise ScoringPolicyError(f"Scoring strategy returned invalid status {result.status!r}")
        for name, value, limit in (
            ("score", result.score, MAX_SCORE),
            ("revenue_potential", result.revenue_potential, MAX_REVENUE),
        ):
            if not isinstance(value, (int, float, Decimal)) or not math.isfinite(float(value)):
                raise ScoringPolicyError(f"Scoring strategy returned non-numeric {name}: {value!r}")
            if abs(_to_decimal(value)) > limit:
                raise ScoringPolicyError(f"Scoring strategy returned out-of-range {name}: {value!r}")
        if result.priority is not None and not 1 <= result.priority <= 5:
            raise ScoringPolicyError(f"Scoring strategy returned priority {result.priority!r}, expected 1-5")
        return result

    def _fill_opportunity(
        self,
        opportunity: Opportunity,
        result: ScoringResult,
        window: WindowSnapshot,
        computed_at: datetime,
    ) -> None:
        opportunity.score = _to_decimal(result.score)
        opportunity.revenue_potential = _to_decimal(result.revenue_potential)
        opportunity.status = result.status.value
        opportunity.priority = result.priority
        opportunity.factors = dict(result.factors)
        opportunity.recommendations = list(result.recommendations)
        opportunity.computed_at = computed_at
        opportunity.valid_until = computed_at + timedelta(days=self.settings.OPPORTUNITY_TTL_DAYS)
        opportunity.window_start = window.start
        opportunity.window_end = window.end
        opportunity.window_metric_count = window.size
        opportunity.ledger_metric_count = window.ledger_count
        opportunity.ledger_last_metric_id = window.ledger_last_id


def _to_decimal(value) -> Decimal:
    return Decimal(str(round(float(value), 2)))
