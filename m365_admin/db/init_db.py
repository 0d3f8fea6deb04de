"""Database initialization and session management for the purge ledger."""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from m365_admin.config import AdminConfig, load_config
from m365_admin.utils.error_handling import format_connection_error, format_database_error

from .models import Base

_ENGINE: Engine | None = None
_SESSION_FACTORY: sessionmaker[Session] | None = None


def _validate_database_accessibility(db_url: str) -> tuple[bool, Optional[str]]:
    """Validate that a SQLite database file can be created or written.

    Returns:
        Tuple of (is_accessible, error_message)
    """
    if not db_url.startswith("sqlite:///"):
        return True, None

    db_file = Path(db_url[len("sqlite:///"):])
    db_dir = db_file.parent

    if db_dir.exists():
        if not os.access(db_dir, os.W_OK):
            return False, f"Database directory is not writable: {db_dir}"
    else:
        try:
            db_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return False, f"Cannot create database directory: {exc}"

    if db_file.exists() and not os.access(db_file, os.R_OK | os.W_OK):
        return False, f"Database file is not readable and writable: {db_file}"

    return True, None


def get_engine(database_url: Optional[str] = None, *, config: Optional[AdminConfig] = None) -> Engine:
    """Get or create the database engine.

    Raises:
        OperationalError: If the database cannot be reached
    """
    global _ENGINE, _SESSION_FACTORY

    cfg = config or load_config()
    db_url = database_url or cfg.database_url

    is_accessible, error_msg = _validate_database_accessibility(db_url)
    if not is_accessible:
        logger.error("Database accessibility check failed: {}", error_msg)
        raise OperationalError(error_msg or "Database is not accessible", None, None)

    try:
        if _ENGINE is None or str(_ENGINE.url) != db_url:
            if _ENGINE is not None:
                _ENGINE.dispose()
                _SESSION_FACTORY = None
            _ENGINE = create_engine(db_url, echo=False, future=True)
    except SQLAlchemyError as exc:
        logger.error("Failed to create database engine: {}", exc)
        raise OperationalError(format_connection_error(exc, db_url), None, None) from exc

    return _ENGINE


def _build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def get_session_factory(config: Optional[AdminConfig] = None) -> sessionmaker[Session]:
    global _SESSION_FACTORY
    engine = get_engine(config=config)
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = _build_session_factory(engine)
    return _SESSION_FACTORY


def init_db(*, engine: Optional[Engine] = None, config: Optional[AdminConfig] = None) -> None:
    cfg = config or load_config()
    cfg.output_dir.mkdir(parents=True, exist_ok=True)
    cfg.log_dir.mkdir(parents=True, exist_ok=True)

    if engine is None:
        engine = get_engine(config=cfg)

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(config: Optional[AdminConfig] = None) -> Iterator[Session]:
    """Context manager yielding a session that commits on success and rolls back on error.

    Raises:
        OperationalError: If the session cannot be created
        SQLAlchemyError: For other database-related errors
    """
    session_factory = get_session_factory(config)
    session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Database operation failed, rolling back transaction: {}", exc)
        raise
    except Exception as exc:
        session.rollback()
        logger.warning("Rolling back ledger transaction after error: {}", format_database_error(exc, "ledger update"))
        raise
    finally:
        session.close()
