"""Database package exposing session utilities for the purge ledger."""

from .init_db import (
    get_engine,
    get_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_db",
    "session_scope",
]
