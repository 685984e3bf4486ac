"""
FastAPI dependencies (DB session, caller account)
"""
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from nodescore.infrastructure.db.session import get_db as _get_db, set_current_account


# Re-export get_db for routers
get_db = _get_db


def get_account_id(request: Request) -> int:
    """
    Account of the logged-in caller (session cookie)

    Raises:
        HTTPException(401): not logged in
    """
    account_id = request.session.get("account_id")
    if not account_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return int(account_id)


def get_account_db(
    account_id: int = Depends(get_account_id),
    db: Session = Depends(get_db),
) -> Session:
    """DB session bound to the caller's account (row-level security on PostgreSQL)"""
    set_current_account(db, account_id)
    return db
