"""
Opportunity API endpoints (ranking, batch rescoring)
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from nodescore.api.deps import get_account_db, get_account_id
from nodescore.api.v1.schemas import NodeResponse, node_opportunity_response
from nodescore.application.opportunity_engine import OpportunityEngine
from nodescore.domain.optimization_status import OptimizationStatus


router = APIRouter(prefix="/api/v1/opportunities", tags=["opportunities"])


class BatchRescoreRequest(BaseModel):
    node_ids: list[int] | None = None  # None = every node with new metrics


class RescoreOutcomeResponse(BaseModel):
    node_id: int
    status: str  # scored, stale, failed
    error: str | None = None


class BatchRescoreResponse(BaseModel):
    summary: dict[str, int]
    outcomes: list[RescoreOutcomeResponse]


@router.get("/", response_model=list[NodeResponse])
def list_top_opportunities(
    limit: int = Query(20, ge=1, le=200),
    status: OptimizationStatus | None = None,
    include_expired: bool = False,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_account_db),
):
    """Highest-scoring nodes of the caller's account"""
    items = OpportunityEngine(db).top_opportunities(
        account_id=account_id,
        limit=limit,
        status=status,
        include_expired=include_expired,
    )
    return [node_opportunity_response(item) for item in items]


@router.post("/rescore", response_model=BatchRescoreResponse)
def rescore_batch(
    req: BatchRescoreRequest,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_account_db),
):
    """Rescore several nodes; failures are reported per node and never abort the batch"""
    engine = OpportunityEngine(db)
    if req.node_ids is None:
        report = engine.rescore_pending(account_id=account_id)
    else:
        report = engine.rescore_all(req.node_ids, account_id=account_id)

    return BatchRescoreResponse(
        summary=report.summary(),
        outcomes=[
            RescoreOutcomeResponse(
                node_id=o.node_id,
                status=o.status,
                error=str(o.error) if o.error is not None else None,
            )
            for o in report.outcomes
        ],
    )
