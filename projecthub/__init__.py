"""
ProjectHub — project and task management backend with on-time rewards.

Packages:
    engine      — configuration, errors, logging, execution context, security
    db          — SQLAlchemy models, session management, repositories
    rules       — reward/streak business rules (pure functions)
    services    — task, project, notification, user and reward operations
    api         — FastAPI application and routers
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "rules", "services", "api"]
