"""
clubdocs Database Session Management.

init_db() is the single entry point for database initialisation (service
boot, ``clubdocs init-db``, tests); session_scope() is the unit of work
every operation runs in.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.orm import Session, sessionmaker

from clubdocs.db.base import Base, engine_registry

logger = logging.getLogger("clubdocs.db.session")

ENGINE_NAME = "clubdocs"

_session_factory: Optional[sessionmaker] = None


def init_db(
    db_url: str,
    create_tables: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> sessionmaker:
    """
    Register the "clubdocs" engine and build its session factory.

    Args:
        db_url:        SQLAlchemy URL (sqlite:///clubdocs.db, postgresql://...).
        create_tables: Run Base.metadata.create_all(). Dev, CLI and tests only.

    Returns:
        The sessionmaker bound to the engine; also stored as the module default.
    """
    global _session_factory

    # Model classes must be imported before create_all sees their tables.
    from clubdocs.db import models  # noqa: F401

    engine = engine_registry.register(
        ENGINE_NAME, db_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        echo=echo,
    )
    if create_tables:
        Base.metadata.create_all(engine)
        logger.info(f"Tables created on {engine.url.render_as_string(hide_password=True)}")

    _session_factory = engine_registry.get_session_factory(ENGINE_NAME)
    return _session_factory


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Unit of work: commit on success, rollback on any error, always close.

    Usage:
        with session_scope(factory) as session:
            session.add(doc)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_all_sessions() -> None:
    """Dispose all engines. Used during shutdown."""
    global _session_factory
    _session_factory = None
    engine_registry.dispose()
