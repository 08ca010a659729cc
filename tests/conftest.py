"""
ProjectHub Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v

Unit and API tests run against an in-memory SQLite database and an in-memory
session store; no Redis or PostgreSQL is needed.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Set

import pytest

from projecthub.db.models import Project, Task, User
from projecthub.engine.config import PlatformConfig, SecurityConfig
from projecthub.engine.context import ExecutionContext, clear_execution_context
from projecthub.engine.security import hash_password

TEST_PASSWORD = "correct-horse"


@pytest.fixture
def password():
    """Plain-text password of every user made by make_user."""
    return TEST_PASSWORD


# ---------------------------------------------------------------------------
# Environment setup — reset global singletons between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    import projecthub.engine.config as cfg_mod
    import projecthub.engine.logging as log_mod

    cfg_mod._platform_config = None
    log_mod._global_queue = None
    clear_execution_context()
    yield
    cfg_mod._platform_config = None
    log_mod._global_queue = None
    clear_execution_context()


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FrozenClock:
    """Callable clock for services; ``advance()`` moves it forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


class InMemorySessionStore:
    """Dict-backed stand-in for the Redis session store (RedisCache API subset)."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.sets: Dict[str, Set[str]] = {}

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.values.get(key)
        return json.loads(raw) if raw is not None else None

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        self.values[key] = json.dumps(value, default=str)
        return True

    def delete(self, key: str) -> bool:
        self.values.pop(key, None)
        return True

    def sadd(self, key: str, *values: str) -> bool:
        self.sets.setdefault(key, set()).update(values)
        return True

    def srem(self, key: str, *values: str) -> bool:
        self.sets.setdefault(key, set()).difference_update(values)
        return True

    def smembers(self, key: str) -> Set[str]:
        return set(self.sets.get(key, set()))

    def scard(self, key: str) -> int:
        return len(self.sets.get(key, set()))

    def ping(self) -> bool:
        return True


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _context_for(user: User) -> ExecutionContext:
    return ExecutionContext(
        user_id=user.id,
        email=user.email,
        role=user.role,
        permissions=set(user.permissions or []),
        name=user.name,
    )


@pytest.fixture
def ctx_for():
    """ctx_for(user) → ExecutionContext as the API would build it from a session."""
    return _context_for


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database with all tables."""
    from projecthub.db.session import close_all_sessions, init_db

    factory = init_db("sqlite://", create_tables=True)
    yield factory
    close_all_sessions()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock(utc(2024, 1, 10, 9, 0))


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def make_user(db_session):
    """Factory: make_user("Ann", role="admin") → persisted User."""
    counter = {"n": 0}

    def _make(
        name: str = "User",
        role: str = "employee",
        email: Optional[str] = None,
        department: str = "Other",
        permissions=None,
        **fields,
    ) -> User:
        counter["n"] += 1
        user = User(
            name=name,
            email=email or f"{name.lower().replace(' ', '.')}.{counter['n']}@example.com",
            password_hash=hash_password(TEST_PASSWORD, rounds=4),
            role=role,
            department=department,
            permissions=list(permissions or []),
            reward_points=fields.pop("reward_points", 0),
            current_streak=fields.pop("current_streak", 0),
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("Admin", role="admin", department="Administration")


@pytest.fixture
def employee(make_user):
    return make_user("Erin", role="employee", department="Design")


@pytest.fixture
def project(db_session, admin):
    project = Project(
        name="Website Redesign",
        description="New marketing site",
        client_name="Acme",
        client_email="ops@acme.test",
        start_date=utc(2024, 1, 1),
        end_date=utc(2024, 3, 1),
        status="planning",
        budget=12000.0,
        project_manager_id=admin.id,
    )
    db_session.add(project)
    db_session.commit()
    return project


@pytest.fixture
def make_task(db_session, project, admin, employee):
    """Factory: make_task(priority="high", due_date=...) → persisted pending Task."""

    def _make(
        title: str = "Draft homepage",
        priority: str = "medium",
        due_date: Optional[datetime] = None,
        assigned_to: Optional[User] = None,
        created_by: Optional[User] = None,
        status: str = "pending",
        **fields,
    ) -> Task:
        task = Task(
            title=title,
            description="Task description",
            project_id=project.id,
            assigned_to_id=(assigned_to or employee).id,
            created_by_id=(created_by or admin).id,
            priority=priority,
            status=status,
            due_date=due_date or utc(2024, 1, 10),
            **fields,
        )
        db_session.add(task)
        db_session.commit()
        return task

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def app_config():
    return PlatformConfig(security=SecurityConfig(bcrypt_rounds=4))


@pytest.fixture
def client(app_config, session_factory, session_store, clock):
    from fastapi.testclient import TestClient

    from projecthub.api.app import create_app

    app = create_app(app_config, session_factory=session_factory, session_store=session_store, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def login(client):
    """login(user) → Authorization headers for that user."""

    def _login(user: User, password: str = TEST_PASSWORD) -> Dict[str, str]:
        response = client.post("/api/auth/login", json={"email": user.email, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return _login
