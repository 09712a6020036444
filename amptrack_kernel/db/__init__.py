"""Database layer - engine, base classes and column types."""

from amptrack_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from amptrack_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from amptrack_kernel.db.types import MAX_MONEY, MAX_QUANTITY, UTCDateTime

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
    "MAX_MONEY",
    "MAX_QUANTITY",
]
