"""
ProjectHub API — FastAPI application factory.

Run:
    projecthub run

Or:
    uvicorn projecthub.api.app:create_app --factory --port 8000

Error mapping: every ProjectHubError carries its HTTP status
(validation 400, session 401, security 403, not found 404, conflict 409,
persistence 500). Request body validation failures are reported as 400.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from projecthub import __version__
from projecthub.api.routes import auth, notifications, projects, tasks
from projecthub.db.base import engine_registry
from projecthub.db.session import ENGINE_NAME, init_db
from projecthub.engine.cache import RedisCache, create_session_store
from projecthub.engine.config import PlatformConfig, get_platform_config
from projecthub.engine.context import clear_execution_context
from projecthub.engine.errors import ProjectHubError
from projecthub.engine.logging import log, log_web_api_request
from projecthub.engine.security import AuthService
from projecthub.utilities.utils import utc_now

logger = logging.getLogger("projecthub.api")


def _error_body(exc: ProjectHubError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"message": exc.message, "error_type": exc.error_type}
    if exc.execution_id:
        body["execution_id"] = exc.execution_id
    validation_errors = getattr(exc, "validation_errors", None)
    if validation_errors:
        body["errors"] = validation_errors
    return body


def create_app(
    config: Optional[PlatformConfig] = None,
    session_factory: Optional[sessionmaker] = None,
    session_store: Optional[RedisCache] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """
    Build the API.

    Anything not passed in is created from ``config``: the database engine
    from ``config.database`` and the Redis session store from ``config.redis``.
    """
    config = config or get_platform_config()

    if session_factory is None:
        db = config.database
        session_factory = init_db(
            db.url,
            schema=db.db_schema,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
            pool_pre_ping=db.pool_pre_ping,
        )
    if session_store is None:
        session_store = create_session_store(
            config.redis.url,
            ttl=config.security.session_timeout,
            db=config.redis.session_db,
        )

    app = FastAPI(
        title=config.name,
        description="Projects, tasks, notifications and on-time completion rewards",
        version=__version__,
    )
    app.state.config = config
    app.state.clock = clock
    app.state.session_factory = session_factory
    app.state.session_store = session_store
    app.state.auth_service = AuthService(
        session_store,
        session_factory,
        session_timeout=config.security.session_timeout,
        max_concurrent_sessions=config.security.max_concurrent_sessions,
    )

    if config.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.api.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # ── Error handlers ──

    @app.exception_handler(ProjectHubError)
    async def handle_projecthub_error(request: Request, exc: ProjectHubError):
        ctx = getattr(request.state, "execution_context", None)
        if exc.execution_id is None and ctx is not None:
            exc.execution_id = ctx.execution_id
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
                "message": err.get("msg", "invalid"),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"message": "Validation error", "error_type": "RequestValidationError", "errors": errors},
        )

    # ── Request logging ──

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        ctx = getattr(request.state, "execution_context", None)
        log(log_web_api_request(
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            user_id=ctx.user_id if ctx else None,
            execution_id=ctx.execution_id if ctx else None,
            client_ip=request.client.host if request.client else None,
        ))
        clear_execution_context()
        return response

    # ── Routes ──

    @app.get("/health")
    def health_check():
        """Public health check — no auth required."""
        database_ok = engine_registry.health_check(ENGINE_NAME)
        sessions_ok = session_store.ping()
        return {
            "status": "healthy" if database_ok and sessions_ok else "degraded",
            "version": __version__,
            "database": database_ok,
            "sessions": sessions_ok,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    for module in (auth, tasks, projects, notifications):
        app.include_router(module.router, prefix="/api")

    logger.info(f"{config.name} API ready ({config.environment})")
    return app
