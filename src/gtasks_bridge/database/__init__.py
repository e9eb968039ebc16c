"""Correlation persistence."""

from gtasks_bridge.database.models import Base, Correlation
from gtasks_bridge.database.session import cleanup_db_connections, get_db_session, init_db
from gtasks_bridge.database.store import CorrelationIndex, CorrelationStore, DuplicateCorrelationError

__all__ = [
    "Base",
    "Correlation",
    "CorrelationIndex",
    "CorrelationStore",
    "DuplicateCorrelationError",
    "cleanup_db_connections",
    "get_db_session",
    "init_db",
]
