"""
ProjectHub Models — All SQLAlchemy models for the projecthub database.

Tables defined here:
1.  users               — Accounts with role, permissions and reward/streak state
2.  reward_entries      — Append-only reward log (points / gift)
3.  projects            — Project container with client info
4.  project_members     — Project ↔ User team junction
5.  project_documents   — Append-only project document log
6.  project_milestones  — Project milestones
7.  tasks               — Work items with completion + extension request state
8.  task_comments       — Append-only comment log
9.  task_attachments    — Append-only attachment log
10. notifications       — Per-recipient task lifecycle events
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from projecthub.db.base import AuditMixin, Base, VersionedMixin
from projecthub.utilities.utils import ensure_utc, isoformat

ROLES = ("admin", "designer", "project_manager", "sales_representative", "employee")
DEPARTMENTS = ("Design", "Project Management", "Sales", "Administration", "Other")
PERMISSIONS = (
    "create_project",
    "edit_project",
    "delete_project",
    "view_all_tasks",
    "manage_users",
    "view_reports",
)
REWARD_TYPES = ("points", "gift")

TASK_STATUSES = ("pending", "in_progress", "completed", "overdue")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
EXTENSION_STATUSES = ("pending", "approved", "rejected")

PROJECT_STATUSES = ("planning", "in-progress", "review", "completed", "on-hold")

NOTIFICATION_TYPES = ("comment", "extension_request", "extension_response", "task_assigned")

DASHBOARD_ROUTES = {
    "admin": "/admin/dashboard",
    "designer": "/design/dashboard",
    "project_manager": "/projects/dashboard",
    "sales_representative": "/sales/dashboard",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _in_check(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ---------------------------------------------------------------------------
# 1. Users
# ---------------------------------------------------------------------------

class User(Base, AuditMixin, VersionedMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(30), default="employee", nullable=False, index=True)
    department = Column(String(50), nullable=False)
    permissions = Column(JSON, default=list, nullable=False)
    reward_points = Column(Integer, default=0, nullable=False)
    current_streak = Column(Integer, default=0, nullable=False)
    last_task_completion = Column(DateTime(timezone=True), nullable=True)

    rewards = relationship(
        "RewardEntry",
        back_populates="user",
        order_by="RewardEntry.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(_in_check("role", ROLES), name="ck_users_role"),
        CheckConstraint(_in_check("department", DEPARTMENTS), name="ck_users_department"),
        CheckConstraint("reward_points >= 0", name="ck_users_reward_points"),
        CheckConstraint("current_streak >= 0", name="ck_users_current_streak"),
    )

    def has_permission(self, permission: str) -> bool:
        return permission in (self.permissions or [])

    @property
    def dashboard_route(self) -> str:
        return DASHBOARD_ROUTES.get(self.role, "/tasks")

    def summary(self) -> Dict[str, Any]:
        """Compact form used when a user is embedded in another record."""
        return {"id": self.id, "name": self.name, "email": self.email}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "department": self.department,
            "permissions": list(self.permissions or []),
            "rewardPoints": self.reward_points,
            "currentStreak": self.current_streak,
            "lastTaskCompletion": isoformat(self.last_task_completion),
            "dashboardRoute": self.dashboard_route,
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


# ---------------------------------------------------------------------------
# 2. Reward entries
# ---------------------------------------------------------------------------

class RewardEntry(Base):
    __tablename__ = "reward_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    type = Column(String(20), nullable=False)
    value = Column(Integer, nullable=False)
    description = Column(String(500), nullable=True)
    awarded_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    user = relationship("User", back_populates="rewards")

    __table_args__ = (
        CheckConstraint(_in_check("type", REWARD_TYPES), name="ck_reward_entries_type"),
        Index("idx_reward_entries_user_id", "user_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "value": self.value,
            "description": self.description,
            "taskId": self.task_id,
            "date": isoformat(self.awarded_at),
        }


# ---------------------------------------------------------------------------
# 3. Projects
# ---------------------------------------------------------------------------

class Project(Base, AuditMixin):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    client_name = Column(String(200), nullable=True)
    client_email = Column(String(255), nullable=True)
    client_phone = Column(String(50), nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), default="planning", nullable=False, index=True)
    budget = Column(Float, nullable=False)
    project_manager_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    project_manager = relationship("User", foreign_keys=[project_manager_id], lazy="joined")
    team = relationship(
        "User",
        secondary="project_members",
        order_by="User.id",
        lazy="selectin",
    )
    documents = relationship(
        "ProjectDocument",
        order_by="ProjectDocument.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    milestones = relationship(
        "Milestone",
        order_by="Milestone.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(_in_check("status", PROJECT_STATUSES), name="ck_projects_status"),
    )

    def is_member(self, user_id: int) -> bool:
        """Team member or project manager."""
        return self.project_manager_id == user_id or any(u.id == user_id for u in self.team)

    @property
    def client(self) -> Dict[str, Optional[str]]:
        return {"name": self.client_name, "email": self.client_email, "phone": self.client_phone}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "client": self.client,
            "startDate": isoformat(self.start_date),
            "endDate": isoformat(self.end_date),
            "status": self.status,
            "budget": self.budget,
            "projectManager": self.project_manager.summary() if self.project_manager else None,
            "team": [u.summary() for u in self.team],
            "documents": [d.to_dict() for d in self.documents],
            "milestones": [m.to_dict() for m in self.milestones],
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name='{self.name}')>"


# ---------------------------------------------------------------------------
# 4. Project members junction
# ---------------------------------------------------------------------------

class ProjectMember(Base):
    __tablename__ = "project_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    added_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
        Index("idx_pm_project_id", "project_id"),
        Index("idx_pm_user_id", "user_id"),
    )


# ---------------------------------------------------------------------------
# 5. Project documents
# ---------------------------------------------------------------------------

class ProjectDocument(Base):
    __tablename__ = "project_documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    url = Column(String(1000), nullable=False)
    type = Column(String(100), nullable=True)
    uploaded_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "type": self.type,
            "uploadedBy": self.uploaded_by_id,
            "uploadedAt": isoformat(self.uploaded_at),
        }


# ---------------------------------------------------------------------------
# 6. Milestones
# ---------------------------------------------------------------------------

class Milestone(Base):
    __tablename__ = "project_milestones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "dueDate": isoformat(self.due_date),
            "completed": self.completed,
            "completedAt": isoformat(self.completed_at),
        }


# ---------------------------------------------------------------------------
# 7. Tasks
# ---------------------------------------------------------------------------

class Task(Base, AuditMixin, VersionedMixin):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String(20), default="pending", nullable=False, index=True)
    priority = Column(String(20), default="medium", nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False)
    completion_date = Column(DateTime(timezone=True), nullable=True)
    is_completed_on_time = Column(Boolean, default=False, nullable=False)
    reward_points = Column(Integer, default=0, nullable=False)

    # Extension request — a single open request, no history
    extension_requested = Column(Boolean, default=False, nullable=False)
    extension_status = Column(String(20), default="pending", nullable=False)
    extension_requested_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    extension_requested_at = Column(DateTime(timezone=True), nullable=True)
    extension_reason = Column(Text, nullable=True)
    extension_new_due_date = Column(DateTime(timezone=True), nullable=True)
    extension_approved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    extension_approved_at = Column(DateTime(timezone=True), nullable=True)

    project = relationship("Project", lazy="joined")
    assigned_to = relationship("User", foreign_keys=[assigned_to_id], lazy="joined")
    created_by = relationship("User", foreign_keys=[created_by_id], lazy="joined")
    comments = relationship(
        "TaskComment",
        order_by="TaskComment.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    attachments = relationship(
        "TaskAttachment",
        order_by="TaskAttachment.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(_in_check("status", TASK_STATUSES), name="ck_tasks_status"),
        CheckConstraint(_in_check("priority", TASK_PRIORITIES), name="ck_tasks_priority"),
        CheckConstraint(_in_check("extension_status", EXTENSION_STATUSES), name="ck_tasks_extension_status"),
        CheckConstraint("reward_points >= 0", name="ck_tasks_reward_points"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def has_open_extension(self) -> bool:
        return bool(self.extension_requested) and self.extension_status == "pending"

    @property
    def extension_request(self) -> Dict[str, Any]:
        return {
            "requested": bool(self.extension_requested),
            "status": self.extension_status,
            "requestedBy": self.extension_requested_by_id,
            "requestedAt": isoformat(self.extension_requested_at),
            "reason": self.extension_reason,
            "newDueDate": isoformat(self.extension_new_due_date),
            "approvedBy": self.extension_approved_by_id,
            "approvedAt": isoformat(self.extension_approved_at),
        }

    def due_date_utc(self) -> datetime:
        return ensure_utc(self.due_date)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "project": {"id": self.project.id, "name": self.project.name} if self.project else None,
            "assignedTo": self.assigned_to.summary() if self.assigned_to else None,
            "createdBy": self.created_by.summary() if self.created_by else None,
            "status": self.status,
            "priority": self.priority,
            "dueDate": isoformat(self.due_date),
            "completionDate": isoformat(self.completion_date),
            "isCompletedOnTime": bool(self.is_completed_on_time),
            "rewardPoints": self.reward_points,
            "extensionRequest": self.extension_request,
            "comments": [c.to_dict() for c in self.comments],
            "attachments": [a.to_dict() for a in self.attachments],
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, title='{self.title}', status='{self.status}')>"


# ---------------------------------------------------------------------------
# 8. Task comments
# ---------------------------------------------------------------------------

class TaskComment(Base):
    __tablename__ = "task_comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    posted_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    posted_by = relationship("User", lazy="joined")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "postedBy": self.posted_by.summary() if self.posted_by else None,
            "createdAt": isoformat(self.created_at),
        }


# ---------------------------------------------------------------------------
# 9. Task attachments
# ---------------------------------------------------------------------------

class TaskAttachment(Base):
    __tablename__ = "task_attachments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    url = Column(String(1000), nullable=False)
    type = Column(String(100), nullable=True)
    uploaded_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "type": self.type,
            "uploadedBy": self.uploaded_by_id,
            "uploadedAt": isoformat(self.uploaded_at),
        }


# ---------------------------------------------------------------------------
# 10. Notifications
# ---------------------------------------------------------------------------

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True)
    type = Column(String(30), nullable=False)
    message = Column(String(1000), nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    actor = relationship("User", foreign_keys=[actor_id], lazy="joined")
    task = relationship("Task", lazy="joined")

    __table_args__ = (
        CheckConstraint(_in_check("type", NOTIFICATION_TYPES), name="ck_notifications_type"),
        Index("idx_notifications_recipient_read", "recipient_id", "is_read"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "recipient": self.recipient_id,
            "actor": self.actor.summary() if self.actor else None,
            "task": {"id": self.task.id, "title": self.task.title} if self.task else None,
            "type": self.type,
            "message": self.message,
            "isRead": bool(self.is_read),
            "createdAt": isoformat(self.created_at),
        }
