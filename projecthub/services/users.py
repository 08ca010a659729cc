"""
ProjectHub User Service — registration, admin user management and gifts.

Security:
- register() — public, always creates an employee
- get_me() — any authenticated user
- create_user(), gift() — admin required
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from projecthub.db.models import DEPARTMENTS, PERMISSIONS, ROLES, RewardEntry, User
from projecthub.db.repositories import UserRepository
from projecthub.engine.config import SecurityConfig
from projecthub.engine.context import ExecutionContext
from projecthub.engine.errors import ProjectHubConflictError, ProjectHubValidationError
from projecthub.engine.logging import log, log_record_operation, log_reward_awarded
from projecthub.engine.security import hash_password, require_admin
from projecthub.utilities.utils import utc_now

logger = logging.getLogger("projecthub.services.users")


class UserService:

    def __init__(self, session: Session, security: Optional[SecurityConfig] = None):
        self.users = UserRepository(session)
        self._security = security or SecurityConfig()

    def register(self, name: str, email: str, password: str, department: str) -> User:
        """Public sign-up. Role is always employee, whatever the caller sends."""
        return self._create(name, email, password, department, role="employee", permissions=[])

    def create_user(
        self,
        ctx: ExecutionContext,
        name: str,
        email: str,
        password: str,
        department: str,
        role: str = "employee",
        permissions: Optional[List[str]] = None,
    ) -> User:
        require_admin(ctx, "users")
        user = self._create(name, email, password, department, role, permissions or [])
        log(log_record_operation("users", "create", user.id, ctx.user_id, ctx.execution_id))
        return user

    def get_me(self, ctx: ExecutionContext) -> User:
        return self.users.get_or_raise(ctx.user_id)

    def list_users(self, ctx: ExecutionContext) -> List[User]:
        require_admin(ctx, "users")
        return self.users.session.query(User).order_by(User.id).all()

    def gift(self, ctx: ExecutionContext, user_id: int, value: int, description: str) -> User:
        """
        Append a gift to a user's reward log. Gifts never change rewardPoints,
        which stays the sum of the points entries.
        """
        require_admin(ctx, "users", user_id)
        if value <= 0:
            raise ProjectHubValidationError("Gift value must be positive", record_type="user", record_id=user_id)
        if not (description or "").strip():
            raise ProjectHubValidationError("Gift description is required", record_type="user", record_id=user_id)

        user = self.users.get_or_raise(user_id)
        user.rewards.append(RewardEntry(
            type="gift",
            value=value,
            description=description.strip(),
            awarded_at=utc_now(),
        ))
        self.users.save(user)

        log(log_reward_awarded(
            user.id, None, "gift", value, description.strip(),
            total_points=user.reward_points,
            current_streak=user.current_streak,
            execution_id=ctx.execution_id,
        ))
        return user

    def _create(
        self,
        name: str,
        email: str,
        password: str,
        department: str,
        role: str,
        permissions: List[str],
    ) -> User:
        errors = self._validate(name, email, password, department, role, permissions)
        if errors:
            raise ProjectHubValidationError(
                "Invalid user data",
                record_type="user",
                validation_errors=errors,
            )

        email = email.strip().lower()
        if self.users.get_by_email(email) is not None:
            raise ProjectHubConflictError(
                f"User already exists with email '{email}'",
                record_type="user",
            )

        user = User(
            name=name.strip(),
            email=email,
            password_hash=hash_password(password, rounds=self._security.bcrypt_rounds),
            role=role,
            department=department,
            permissions=sorted(set(permissions)),
            reward_points=0,
            current_streak=0,
        )
        self.users.save(user)
        logger.info(f"Created user: {email} (role: {role})")
        return user

    def _validate(
        self,
        name: str,
        email: str,
        password: str,
        department: str,
        role: str,
        permissions: List[str],
    ) -> List[Dict[str, Any]]:
        errors: List[Dict[str, Any]] = []
        if not (name or "").strip():
            errors.append({"field": "name", "message": "Name is required"})
        if "@" not in (email or ""):
            errors.append({"field": "email", "message": "Valid email is required"})
        if len(password or "") < self._security.password_min_length:
            errors.append({
                "field": "password",
                "message": f"Password must be at least {self._security.password_min_length} characters",
            })
        if department not in DEPARTMENTS:
            errors.append({"field": "department", "message": f"Department must be one of {list(DEPARTMENTS)}"})
        if role not in ROLES:
            errors.append({"field": "role", "message": f"Role must be one of {list(ROLES)}"})
        unknown = [p for p in permissions if p not in PERMISSIONS]
        if unknown:
            errors.append({"field": "permissions", "message": f"Unknown permissions: {unknown}"})
        return errors
