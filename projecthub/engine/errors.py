"""
ProjectHub Error Hierarchy — Structured exceptions carried up to the API layer.

All errors include execution_id (when raised inside a request) so a failure
reported to a client can be matched with the structured log entries.

Hierarchy:
    ProjectHubError
    ├── ProjectHubValidationError   — Missing / invalid input        (400)
    ├── ProjectHubNotFoundError     — Referenced record absent       (404)
    ├── ProjectHubSecurityError     — Actor lacks role / membership  (403)
    ├── ProjectHubSessionError      — Not authenticated              (401)
    ├── ProjectHubConflictError     — State conflict / stale write   (409)
    ├── ProjectHubPersistenceError  — Record store failure           (500)
    └── ProjectHubConfigError       — Invalid projecthub.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class ProjectHubError(Exception):
    """
    Base error for all ProjectHub failures.
    All context is serializable to JSON for the structured logs.
    """

    status_code: int = 500

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.execution_id: Optional[str] = context.get("execution_id")
        self.record_type: Optional[str] = context.get("record_type")
        self.record_id: Optional[Any] = context.get("record_id")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for logging and responses."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "execution_id": self.execution_id,
            "record_type": self.record_type,
            "record_id": self.record_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("execution_id", "record_type", "record_id")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.record_type:
            parts.append(f"record={self.record_type}:{self.record_id}")
        if self.execution_id:
            parts.append(f"execution_id={self.execution_id}")
        return " | ".join(parts)


class ProjectHubValidationError(ProjectHubError):
    """
    Input validation failed (missing field, bad enum value, bad date).
    Includes field-level error details when available.
    """

    status_code = 400

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Optional[List[Dict[str, Any]]] = context.get("validation_errors")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class ProjectHubNotFoundError(ProjectHubError):
    """Referenced task, user, project, milestone or notification is absent."""

    status_code = 404


class ProjectHubSecurityError(ProjectHubError):
    """
    Access denied — the actor lacks the role, assignment or membership.
    Includes user_id, role and the permission that was required.
    """

    status_code = 403

    def __init__(self, message: str, **context: Any):
        self.user_id: Optional[Any] = context.get("user_id")
        self.role: Optional[str] = context.get("role")
        self.required_permission: Optional[str] = context.get("required_permission")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["user_id"] = self.user_id
        d["role"] = self.role
        d["required_permission"] = self.required_permission
        return d


class ProjectHubSessionError(ProjectHubError):
    """Missing, invalid or expired session token."""

    status_code = 401


class ProjectHubConflictError(ProjectHubError):
    """
    Operation conflicts with current record state: re-completing a completed
    task, a concurrent write detected by the version counter, a duplicate
    email, or a second open extension request.
    """

    status_code = 409


class ProjectHubPersistenceError(ProjectHubError):
    """Record store operation failed (add, commit, query)."""

    status_code = 500

    def __init__(self, message: str, **context: Any):
        self.operation: Optional[str] = context.get("operation")
        super().__init__(message, **context)


class ProjectHubConfigError(ProjectHubError):
    """Configuration error — invalid projecthub.yaml."""
    pass
