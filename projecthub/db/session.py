"""
Database initialisation and scripted session access.

``init_db`` is called once by the CLI or the API factory. Request handlers
get sessions from the API dependency; ``session_scope`` is for CLI jobs
that want commit-or-rollback around a block.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from projecthub.db.base import Base, engine_registry

logger = logging.getLogger("projecthub.db.session")

ENGINE_NAME = "projecthub"

_session_factory: Optional[sessionmaker] = None


def _pin_schema(engine: Engine, schema: str) -> None:
    """Create *schema* if needed and put it first on every connection's search_path."""
    with engine.begin() as conn:
        conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))

    @event.listens_for(engine, "connect")
    def _set_search_path(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute(f'SET search_path TO "{schema}", public')
        finally:
            cursor.close()


def init_db(
    db_url: str,
    schema: Optional[str] = None,
    create_tables: bool = False,
    **pool_options: Any,
) -> sessionmaker:
    """
    Register the ProjectHub engine and return its session factory.

    ``schema`` only applies to PostgreSQL. ``create_tables`` runs
    ``create_all`` (used by ``projecthub init`` and the tests).
    """
    global _session_factory

    from projecthub.db import models  # noqa: F401  (populate Base.metadata)

    engine = engine_registry.register(ENGINE_NAME, db_url, **pool_options)
    if schema and engine.dialect.name == "postgresql":
        _pin_schema(engine, schema)

    if create_tables:
        Base.metadata.create_all(engine)
        logger.info("Database tables created on %s", engine.url.render_as_string(hide_password=True))

    _session_factory = engine_registry.get_session_factory(ENGINE_NAME)
    return _session_factory


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@contextmanager
def session_scope() -> Iterator[Session]:
    """Commit on success, roll back and re-raise on any error, always close."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_all_sessions() -> None:
    """Forget the session factory and dispose every engine."""
    global _session_factory
    _session_factory = None
    engine_registry.dispose()
