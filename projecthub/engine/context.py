"""
Who is acting on the current request.

The API's auth dependency builds an ExecutionContext from the validated
session and hands it to the services explicitly; it is also published in a
ContextVar so repositories and log builders can pick up the execution id
without threading it through every call.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from projecthub.engine.errors import ProjectHubSessionError


def _new_execution_id() -> str:
    return "exec_" + uuid.uuid4().hex[:12]


@dataclass
class ExecutionContext:
    user_id: int
    email: str
    role: str  # admin | designer | project_manager | sales_representative | employee
    permissions: Set[str] = field(default_factory=set)
    name: str = ""
    session_id: Optional[str] = None
    execution_id: str = field(default_factory=_new_execution_id)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "user_id": self.user_id,
            "email": self.email,
            "role": self.role,
            "permissions": sorted(self.permissions),
        }


_current: ContextVar[Optional[ExecutionContext]] = ContextVar("projecthub_execution_context", default=None)


def set_execution_context(ctx: ExecutionContext) -> None:
    _current.set(ctx)


def get_execution_context() -> Optional[ExecutionContext]:
    return _current.get()


def clear_execution_context() -> None:
    _current.set(None)


def require_execution_context() -> ExecutionContext:
    """Like get_execution_context, but an unauthenticated caller is an error."""
    ctx = _current.get()
    if ctx is None:
        raise ProjectHubSessionError("Not authenticated")
    return ctx


def current_execution_id() -> Optional[str]:
    ctx = _current.get()
    return None if ctx is None else ctx.execution_id
