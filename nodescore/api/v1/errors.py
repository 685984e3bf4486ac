"""
Domain error -> HTTP status mapping shared by the v1 routers
"""
from fastapi import HTTPException

from nodescore.domain.errors import (
    InvalidInputError,
    NodeNotFoundError,
    NodeScoreError,
    OpportunityConflictError,
    ScoringPolicyError,
)

STATUS_BY_ERROR = (
    (NodeNotFoundError, 404),
    (InvalidInputError, 422),
    (ScoringPolicyError, 422),
    (OpportunityConflictError, 409),
)


def to_http(exc: NodeScoreError) -> HTTPException:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
