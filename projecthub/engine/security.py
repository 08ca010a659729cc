"""
ProjectHub Security Engine — passwords, sessions and role checks.

Implements:
- bcrypt password hashing
- Session-based authentication (Redis DB 4, bearer tokens)
- Concurrent session limit with oldest-first eviction
- Role / assignment / membership guards raising ProjectHubSecurityError
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

import bcrypt
from sqlalchemy.orm import Session

from projecthub.db.models import User
from projecthub.engine.cache import RedisCache
from projecthub.engine.context import ExecutionContext
from projecthub.engine.errors import ProjectHubSecurityError, ProjectHubSessionError
from projecthub.engine.logging import log, log_security_event

logger = logging.getLogger("projecthub.engine.security")


class AuthService:
    """
    Session-based authentication with a Redis-backed session store.

    Flow:
    1. User logs in with email + password → server creates a session in Redis
    2. Session token returned to the client, sent back as ``Authorization: Bearer``
    3. Each request → session lookup → ExecutionContext
    4. Logout/timeout → session deleted
    """

    def __init__(
        self,
        session_store: RedisCache,
        db_session_factory,
        session_timeout: int = 3600,
        max_concurrent_sessions: int = 5,
    ):
        self._sessions = session_store
        self._db_session_factory = db_session_factory
        self._session_timeout = session_timeout
        self._max_concurrent = max_concurrent_sessions

    def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        """
        Authenticate a user and create a session.

        Returns:
            Dict with token and the user's public profile.

        Raises:
            ProjectHubSessionError on invalid credentials.
        """
        email = (email or "").strip().lower()
        session: Session = self._db_session_factory()
        try:
            user = session.query(User).filter_by(email=email).first()

            if user is None or not verify_password(password or "", user.password_hash):
                log(log_security_event(
                    "login_failed", "users",
                    user_id=user.id if user else email,
                ))
                raise ProjectHubSessionError("Invalid credentials", user_id=email)

            token = secrets.token_urlsafe(32)
            session_data = {
                "user_id": user.id,
                "email": user.email,
                "name": user.name,
                "role": user.role,
                "permissions": list(user.permissions or []),
                "login_at": datetime.now(timezone.utc).isoformat(),
            }

            self._enforce_session_limit(user.id)
            self._sessions.set_json(token, session_data, ttl=self._session_timeout)
            self._sessions.sadd(f"user_sessions:{user.id}", token)

            log(log_security_event("login", "users", user_id=user.id, role=user.role, level="INFO"))
            logger.info(f"User '{user.email}' authenticated (session: {token[:8]}...)")

            return {"token": token, "user": user.to_dict()}
        finally:
            session.close()

    def validate_session(self, token: str) -> Optional[ExecutionContext]:
        """
        Validate a session token and return an ExecutionContext.

        Returns:
            ExecutionContext if the session is live, None otherwise.
        """
        if not token:
            return None

        session_data = self._sessions.get_json(token)
        if session_data is None:
            return None

        return ExecutionContext(
            user_id=session_data["user_id"],
            email=session_data["email"],
            role=session_data["role"],
            permissions=set(session_data.get("permissions", [])),
            name=session_data.get("name", ""),
            session_id=token,
        )

    def logout(self, token: str) -> bool:
        """Destroy a session."""
        session_data = self._sessions.get_json(token)
        if session_data:
            user_id = session_data.get("user_id")
            if user_id:
                self._sessions.srem(f"user_sessions:{user_id}", token)
        self._sessions.delete(token)
        logger.info(f"Session destroyed: {token[:8]}...")
        return True

    def _enforce_session_limit(self, user_id: int) -> None:
        """Log out the oldest live sessions so the new login fits under the limit."""
        index = f"user_sessions:{user_id}"
        if self._sessions.scard(index) < self._max_concurrent:
            return

        live: Dict[str, str] = {}
        for sid in self._sessions.smembers(index):
            data = self._sessions.get_json(sid)
            if data is None:
                # expired in Redis, drop the stale index entry
                self._sessions.srem(index, sid)
            else:
                live[sid] = data.get("login_at", "")

        excess = len(live) - self._max_concurrent + 1
        for sid in sorted(live, key=live.get)[:max(excess, 0)]:
            self.logout(sid)


# ---------------------------------------------------------------------------
# Passwords (bcrypt)
# ---------------------------------------------------------------------------

def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


# ---------------------------------------------------------------------------
# Access Guards
# ---------------------------------------------------------------------------

def _deny(ctx: ExecutionContext, message: str, object_type: str, record_id: Any, needed: str) -> None:
    log(log_security_event(
        "access_denied", object_type,
        user_id=ctx.user_id,
        role=ctx.role,
        record_id=record_id,
        permission_needed=needed,
        execution_id=ctx.execution_id,
    ))
    raise ProjectHubSecurityError(
        message,
        user_id=ctx.user_id,
        role=ctx.role,
        required_permission=needed,
        record_type=object_type,
        record_id=record_id,
        execution_id=ctx.execution_id,
    )


def require_admin(ctx: ExecutionContext, object_type: str = "system", record_id: Any = None) -> None:
    """Raise ProjectHubSecurityError unless the actor is an admin."""
    if not ctx.is_admin:
        _deny(ctx, "Admin access required", object_type, record_id, "admin")


def require_actor_in(
    ctx: ExecutionContext,
    allowed_user_ids: Iterable[Optional[int]],
    object_type: str,
    record_id: Any = None,
    message: str = "Not authorized to access this record",
    allow_admin: bool = True,
) -> None:
    """
    Raise ProjectHubSecurityError unless the actor is one of ``allowed_user_ids``
    (or an admin, when ``allow_admin``). Used for assignee/creator, team/manager
    and recipient checks.
    """
    if allow_admin and ctx.is_admin:
        return
    if ctx.user_id in {uid for uid in allowed_user_ids if uid is not None}:
        return
    _deny(ctx, message, object_type, record_id, "member")
