"""
FastAPI dependencies — DB session per request and bearer-token authentication.
"""

from __future__ import annotations

from typing import Generator, Optional

from fastapi import Header, Request
from sqlalchemy.orm import Session

from projecthub.engine.config import PlatformConfig
from projecthub.engine.context import ExecutionContext, set_execution_context
from projecthub.engine.errors import ProjectHubSessionError
from projecthub.engine.security import AuthService


def get_db(request: Request) -> Generator[Session, None, None]:
    session: Session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


def get_config(request: Request) -> PlatformConfig:
    return request.app.state.config


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_context(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> ExecutionContext:
    """
    Resolve the bearer token to an ExecutionContext.

    Declared async so the ContextVar is set in the request task itself;
    sync endpoints run in a threadpool copy of that context and so see it.
    The context is also kept on ``request.state`` for the logging middleware
    and the error handlers.
    """
    token = bearer_token(authorization)
    ctx = get_auth_service(request).validate_session(token) if token else None
    if ctx is None:
        raise ProjectHubSessionError("Authentication required")
    request.state.execution_context = ctx
    set_execution_context(ctx)
    return ctx
