"""Database package: shared engine, session factory, and models."""

from commerce_api.db.base import Base, close_db, get_session_factory, init_db

__all__ = [
    "Base",
    "close_db",
    "get_session_factory",
    "init_db",
]
