"""
Metrics ingestion API endpoints
"""
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from nodescore.api.deps import get_account_db, get_account_id
from nodescore.api.v1.errors import to_http
from nodescore.api.v1.schemas import MetricResponse, metric_response
from nodescore.application.metrics_ledger import MetricsLedger
from nodescore.application.taxonomy import TaxonomyStore
from nodescore.domain.errors import NodeScoreError


router = APIRouter(prefix="/api/v1/nodes", tags=["metrics"])


class RecordMetricRequest(BaseModel):
    timestamp: datetime
    measures: dict[str, Any]  # validated by the ledger (numbers only)
    source: str | None = None  # gsc, ga4, shopify, manual


@router.post("/{node_id}/metrics", response_model=MetricResponse, status_code=201)
def record_metric(
    node_id: int,
    req: RecordMetricRequest,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_account_db),
):
    """Push one metric snapshot for a node"""
    try:
        TaxonomyStore(db).get_node(node_id, account_id=account_id)
        metric = MetricsLedger(db).record(
            node_id=node_id,
            timestamp=req.timestamp,
            measures=req.measures,
            source=req.source,
        )
    except NodeScoreError as e:
        raise to_http(e)
    return metric_response(metric)


@router.get("/{node_id}/metrics", response_model=list[MetricResponse])
def list_metrics(
    node_id: int,
    since: datetime | None = None,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_account_db),
):
    """Metrics of a node from `since` (inclusive), oldest first"""
    try:
        TaxonomyStore(db).get_node(node_id, account_id=account_id)
        window = MetricsLedger(db).metrics_since(node_id, since=since)
    except NodeScoreError as e:
        raise to_http(e)
    return [metric_response(metric) for metric in window]
