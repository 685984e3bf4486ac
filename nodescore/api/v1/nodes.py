"""
Taxonomy node API endpoints
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from nodescore.api.deps import get_account_db, get_account_id
from nodescore.api.v1.errors import to_http
from nodescore.api.v1.schemas import NodeResponse, node_opportunity_response, node_response
from nodescore.application.opportunity_engine import OpportunityEngine
from nodescore.application.taxonomy import TaxonomyStore
from nodescore.domain.errors import NodeScoreError


router = APIRouter(prefix="/api/v1/nodes", tags=["nodes"])


# === Request models ===

class CreateNodeRequest(BaseModel):
    title: str
    path: str  # /shoes/running
    url: str | None = None
    parent_id: int | None = None


# === Endpoints ===

@router.post("/", response_model=NodeResponse, status_code=201)
def create_node(
    req: CreateNodeRequest,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_account_db),
):
    """Create a taxonomy node"""
    try:
        node = TaxonomyStore(db).create_node(
            account_id=account_id,
            title=req.title,
            path=req.path,
            url=req.url,
            parent_id=req.parent_id,
        )
    except NodeScoreError as e:
        raise to_http(e)
    return node_response(node)


@router.get("/{node_id}", response_model=NodeResponse)
def get_node(
    node_id: int,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_account_db),
):
    """Node with its active opportunity"""
    try:
        item = OpportunityEngine(db).get_node_opportunity(node_id, account_id=account_id)
    except NodeScoreError as e:
        raise to_http(e)
    return node_opportunity_response(item)


@router.get("/{node_id}/children", response_model=list[NodeResponse])
def list_children(
    node_id: int,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_account_db),
):
    store = TaxonomyStore(db)
    try:
        store.get_node(node_id, account_id=account_id)
        children = store.list_children(node_id)
    except NodeScoreError as e:
        raise to_http(e)
    return [node_response(child) for child in children]


@router.delete("/{node_id}", status_code=204)
def delete_node(
    node_id: int,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_account_db),
):
    """Delete a node with its subtree, metrics and opportunities"""
    try:
        TaxonomyStore(db).delete_node(node_id, account_id=account_id)
    except NodeScoreError as e:
        raise to_http(e)
    return None


@router.post("/{node_id}/rescore")
def rescore_node(
    node_id: int,
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_account_db),
):
    """
    Rescore one node

    "stale" (no new metrics since the last scoring) is a 200, not an error.
    """
    engine = OpportunityEngine(db)
    try:
        outcome = engine.rescore_node(node_id, account_id=account_id)
        item = engine.get_node_opportunity(node_id, account_id=account_id)
    except NodeScoreError as e:
        raise to_http(e)

    return {
        "node_id": node_id,
        "status": outcome.status,
        "node": node_opportunity_response(item).model_dump(mode="json"),
    }
