"""
Database session management (SQLAlchemy)
"""
import psycopg
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from nodescore.config import get_settings


class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base for all ORM models
    """
    pass


# Singleton engine and session factory
_engine = None
_SessionLocal = None


def get_engine():
    """Get or create SQLAlchemy engine (singleton)"""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = settings.get_sqlalchemy_url()
        _engine = create_engine(url, pool_pre_ping=True)
    return _engine


def get_session_factory():
    """Get or create session factory (singleton)"""
    global _SessionLocal
    if _SessionLocal is None:
        engine = get_engine()
        _SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    return _SessionLocal


def get_db() -> Session:
    """
    FastAPI dependency: opens a session and always closes it

    Usage:
        @app.get("/nodes")
        def list_nodes(db: Session = Depends(get_db)):
            ...
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


_SET_ACCOUNT_SQL = text("SELECT set_config('app.current_account', :account_id, true)")


def set_current_account(db: Session, account_id: int) -> None:
    """
    Bind the caller's account to the session for row-level security.

    The node-centric revision installs RLS policies on PostgreSQL that compare
    rows against ``current_setting('app.current_account')``. The setting is
    transaction-local, so it is re-applied at the start of every transaction
    the session opens. Other dialects have no RLS; there scoping relies on
    the account filters in the queries.
    """
    db.info["account_id"] = account_id
    if db.in_transaction():
        _apply_current_account(db, None, db.connection())


@event.listens_for(Session, "after_begin")
def _apply_current_account(session, transaction, connection) -> None:
    account_id = session.info.get("account_id")
    if account_id is None or connection.dialect.name != "postgresql":
        return
    connection.execute(_SET_ACCOUNT_SQL, {"account_id": str(account_id)})


def check_db_connection() -> None:
    """
    Health check against PostgreSQL (raw psycopg)

    Raises:
        psycopg.OperationalError: database unreachable
    """
    settings = get_settings()
    with psycopg.connect(settings.DATABASE_URL, connect_timeout=3) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1;")
            cur.fetchone()
