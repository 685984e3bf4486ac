"""
Per-node mutual exclusion for the read-aggregate-write scoring sequence
"""
import threading
from contextlib import contextmanager
from typing import Iterator
from weakref import WeakValueDictionary

from sqlalchemy import text
from sqlalchemy.orm import Session

# Namespace for pg_advisory_xact_lock(int, int) so node locks never collide
# with advisory locks taken by other code on the same database.
ADVISORY_LOCK_NAMESPACE = 0x6E6F6465  # "node"


class NodeLockRegistry:
    """
    In-process lock per node id

    Locks are created on demand and dropped once no caller holds a reference,
    so the registry does not grow with the number of nodes ever scored.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: WeakValueDictionary[int, threading.Lock] = WeakValueDictionary()

    def _lock_for(self, node_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(node_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[node_id] = lock
            return lock

    @contextmanager
    def hold(self, node_id: int) -> Iterator[None]:
        lock = self._lock_for(node_id)
        with lock:
            yield


def acquire_advisory_lock(db: Session, node_id: int) -> bool:
    """
    Take a transaction-scoped PostgreSQL advisory lock for the node

    Serializes scoring passes across processes without locking the
    taxonomy_nodes row, so ledger appends keep flowing. Released on
    commit/rollback.

    Returns:
        True if a lock was taken, False on dialects without advisory locks
    """
    if db.get_bind().dialect.name != "postgresql":
        return False
    db.execute(
        text("SELECT pg_advisory_xact_lock(:namespace, :node_id)"),
        {"namespace": ADVISORY_LOCK_NAMESPACE, "node_id": node_id},
    )
    return True
