"""
Declarative base, shared column mixins and the engine registry.

PostgreSQL is the deployment database; the test-suite and ``projecthub init
--db-url sqlite:///...`` run the same models on SQLite.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from sqlalchemy import Column, DateTime, Integer, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, declared_attr, sessionmaker
from sqlalchemy.pool import StaticPool

from projecthub.utilities.utils import utc_now


class Base(DeclarativeBase):
    pass


class AuditMixin:
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class VersionedMixin:
    """
    Optimistic concurrency: every UPDATE checks and bumps version_id, so two
    sessions racing on the same row make the loser fail with StaleDataError
    instead of silently overwriting counters.
    """
    version_id = Column(Integer, nullable=False, default=1)

    @declared_attr.directive
    def __mapper_args__(cls) -> Dict[str, Any]:
        return {"version_id_col": cls.version_id}


POOL_DEFAULTS: Dict[str, Any] = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}


def _engine_options(url: str, pool_options: Dict[str, Any]) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # Single shared connection: an in-memory database must outlive each session
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    options = dict(POOL_DEFAULTS)
    options.update(pool_options)
    return options


class EngineRegistry:
    """
    Engines and their session factories, keyed by name.

    ``register`` with a name that is already taken disposes the old engine
    first, so re-initialising (tests, CLI re-runs) never leaks pools.
    """

    def __init__(self):
        self._entries: Dict[str, Tuple[Engine, sessionmaker]] = {}

    def register(self, name: str, url: str, **pool_options: Any) -> Engine:
        self.dispose(name)
        engine = create_engine(url, **_engine_options(url, pool_options))
        self._entries[name] = (engine, sessionmaker(bind=engine, expire_on_commit=False))
        return engine

    def _entry(self, name: str) -> Tuple[Engine, sessionmaker]:
        try:
            return self._entries[name]
        except KeyError:
            raise KeyError(f"Engine '{name}' not registered (have: {sorted(self._entries)})") from None

    def get(self, name: str) -> Engine:
        return self._entry(name)[0]

    def get_session_factory(self, name: str) -> sessionmaker:
        return self._entry(name)[1]

    def dispose(self, name: Optional[str] = None) -> None:
        """Close the pool of one engine, or of all of them when *name* is None."""
        names = [name] if name is not None else list(self._entries)
        for key in names:
            entry = self._entries.pop(key, None)
            if entry is not None:
                entry[0].dispose()

    def health_check(self, name: str) -> bool:
        try:
            with self.get(name).connect() as conn:
                conn.execute(text("SELECT 1"))
        except (KeyError, SQLAlchemyError):
            return False
        return True


engine_registry = EngineRegistry()
