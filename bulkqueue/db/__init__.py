"""
Database module.
Contains database connection, models, and repository implementations.
"""

from bulkqueue.db.connection import (
    close_db,
    create_engine_for,
    create_schema,
    create_session_factory,
    get_engine,
    get_session_factory,
    init_db,
)
from bulkqueue.db.models import Base, JobRecordModel

__all__ = [
    "get_engine",
    "create_engine_for",
    "get_session_factory",
    "create_session_factory",
    "create_schema",
    "init_db",
    "close_db",
    "JobRecordModel",
    "Base",
]
