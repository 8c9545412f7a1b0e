"""
Database module for the AI Controller

Provides SQLAlchemy models, CRUD operations and the user-scoped chain store.
"""

from .models import ChainConfigurationRecord, ExecutionHistoryRecord, Base
from .session import create_db_engine, create_session_factory, get_session, init_db
from .store import ChainStore, clamp_limit

__all__ = [
    # Models
    "ChainConfigurationRecord",
    "ExecutionHistoryRecord",
    "Base",
    # Session
    "create_db_engine",
    "create_session_factory",
    "get_session",
    "init_db",
    # Store
    "ChainStore",
    "clamp_limit",
]
