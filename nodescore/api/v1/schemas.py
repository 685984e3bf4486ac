"""
Response models shared by the v1 routers
"""
from datetime import datetime

from pydantic import BaseModel

from nodescore.application.opportunity_engine import NodeOpportunity
from nodescore.infrastructure.db.models import NodeMetric, Opportunity, TaxonomyNode


class OpportunityResponse(BaseModel):
    score: str  # Decimal as string
    revenue_potential: str
    status: str
    priority: int | None
    factors: dict
    recommendations: list
    computed_at: datetime
    valid_until: datetime
    window_start: datetime
    window_end: datetime
    window_metric_count: int


class NodeResponse(BaseModel):
    node_id: int
    parent_id: int | None
    title: str
    path: str
    url: str | None
    depth: int
    opportunity_score: str | None
    revenue_potential: str | None
    optimization_status: str
    last_scored_at: datetime | None
    metrics_updated_at: datetime | None
    opportunity: OpportunityResponse | None = None


class MetricResponse(BaseModel):
    metric_id: int
    node_id: int
    timestamp: datetime
    source: str | None
    measures: dict[str, float]


def _decimal_str(value) -> str | None:
    return None if value is None else str(value)


def opportunity_response(opportunity: Opportunity | None) -> OpportunityResponse | None:
    if opportunity is None:
        return None
    return OpportunityResponse(
        score=str(opportunity.score),
        revenue_potential=str(opportunity.revenue_potential),
        status=opportunity.status,
        priority=opportunity.priority,
        factors=opportunity.factors,
        recommendations=opportunity.recommendations,
        computed_at=opportunity.computed_at,
        valid_until=opportunity.valid_until,
        window_start=opportunity.window_start,
        window_end=opportunity.window_end,
        window_metric_count=opportunity.window_metric_count,
    )


def node_response(node: TaxonomyNode, opportunity: Opportunity | None = None) -> NodeResponse:
    return NodeResponse(
        node_id=node.id,
        parent_id=node.parent_id,
        title=node.title,
        path=node.path,
        url=node.url,
        depth=node.depth,
        opportunity_score=_decimal_str(node.opportunity_score),
        revenue_potential=_decimal_str(node.revenue_potential),
        optimization_status=node.optimization_status or "unscored",
        last_scored_at=node.last_scored_at,
        metrics_updated_at=node.metrics_updated_at,
        opportunity=opportunity_response(opportunity),
    )


def node_opportunity_response(item: NodeOpportunity) -> NodeResponse:
    return node_response(item.node, item.opportunity)


def metric_response(metric: NodeMetric) -> MetricResponse:
    return MetricResponse(
        metric_id=metric.id,
        node_id=metric.node_id,
        timestamp=metric.metric_timestamp,
        source=metric.source,
        measures=metric.measures,
    )
