"""
Database module.
Contains database connection, models, and repository implementations.
"""

from jobqueue.db.connection import (
    close_db,
    create_schema,
    create_session_factory,
    get_async_session,
    get_engine,
    get_session_context,
    get_session_factory,
    init_db,
)
from jobqueue.db.models import Base, Job, JobFailure

__all__ = [
    "get_async_session",
    "get_session_context",
    "get_session_factory",
    "create_session_factory",
    "create_schema",
    "get_engine",
    "init_db",
    "close_db",
    "Job",
    "JobFailure",
    "Base",
]
