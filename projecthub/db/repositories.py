"""
ProjectHub Repositories — load/save-by-id access to the record store.

Services receive repositories instead of reaching for module-level sessions,
so tests can run them against an in-memory SQLite database.

Every ``save()`` commits. Commit failures are rolled back and re-raised as:
- ProjectHubConflictError    — version counter mismatch (concurrent write)
- ProjectHubPersistenceError — any other SQLAlchemy failure
"""

from __future__ import annotations

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from projecthub.db.models import (
    Notification,
    Project,
    ProjectMember,
    Task,
    User,
)
from projecthub.engine.context import current_execution_id
from projecthub.engine.errors import (
    ProjectHubConflictError,
    ProjectHubNotFoundError,
    ProjectHubPersistenceError,
)

logger = logging.getLogger("projecthub.db.repositories")

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """Common get/save/delete for a single model class."""

    model: Type[ModelT]
    record_type: str = "record"

    def __init__(self, session: Session):
        self.session = session

    def get(self, record_id: Any) -> Optional[ModelT]:
        if record_id is None:
            return None
        return self.session.get(self.model, record_id)

    def get_or_raise(self, record_id: Any) -> ModelT:
        record = self.get(record_id)
        if record is None:
            raise ProjectHubNotFoundError(
                f"{self.record_type.capitalize()} not found",
                record_type=self.record_type,
                record_id=record_id,
                execution_id=current_execution_id(),
            )
        return record

    def save(self, record: ModelT) -> ModelT:
        self.session.add(record)
        self._commit("save", getattr(record, "id", None))
        return record

    def delete(self, record: ModelT) -> None:
        record_id = getattr(record, "id", None)
        self.session.delete(record)
        self._commit("delete", record_id)

    def _commit(self, operation: str, record_id: Any) -> None:
        try:
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            logger.warning(f"Stale {self.record_type} {record_id} on {operation}: {e}")
            raise ProjectHubConflictError(
                f"{self.record_type.capitalize()} was modified concurrently, retry the request",
                record_type=self.record_type,
                record_id=record_id,
                execution_id=current_execution_id(),
            ) from e
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(f"Integrity error on {self.record_type} {operation}: {e.orig}")
            raise ProjectHubConflictError(
                f"{self.record_type.capitalize()} conflicts with an existing record",
                record_type=self.record_type,
                record_id=record_id,
                execution_id=current_execution_id(),
            ) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to {operation} {self.record_type} {record_id}: {e}")
            raise ProjectHubPersistenceError(
                f"Failed to {operation} {self.record_type}",
                operation=operation,
                record_type=self.record_type,
                record_id=record_id,
                execution_id=current_execution_id(),
            ) from e


class UserRepository(BaseRepository[User]):
    model = User
    record_type = "user"

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.query(User).filter_by(email=email.strip().lower()).first()

    def list_admins(self) -> List[User]:
        return self.session.query(User).filter_by(role="admin").order_by(User.id).all()

    def leaderboard(self, limit: int = 10) -> List[User]:
        return (
            self.session.query(User)
            .filter(User.role != "admin")
            .order_by(User.reward_points.desc(), User.id)
            .limit(limit)
            .all()
        )


class TaskRepository(BaseRepository[Task]):
    model = Task
    record_type = "task"

    def list_all(self) -> List[Task]:
        return self.session.query(Task).order_by(Task.created_at.desc(), Task.id.desc()).all()

    def list_assigned_to(self, user_id: int) -> List[Task]:
        return (
            self.session.query(Task)
            .filter_by(assigned_to_id=user_id)
            .order_by(Task.due_date, Task.id)
            .all()
        )

    def list_for_project(self, project_id: int) -> List[Task]:
        return self.session.query(Task).filter_by(project_id=project_id).order_by(Task.id).all()

    def list_open(self) -> List[Task]:
        """Tasks an overdue scan should look at."""
        return (
            self.session.query(Task)
            .filter(Task.status.in_(("pending", "in_progress")))
            .order_by(Task.id)
            .all()
        )

    def count_by_status(self, project_id: int) -> dict:
        rows = (
            self.session.query(Task.status, func.count(Task.id))
            .filter(Task.project_id == project_id)
            .group_by(Task.status)
            .all()
        )
        return {status: count for status, count in rows}

    def save_all(self, tasks: List[Task]) -> None:
        for task in tasks:
            self.session.add(task)
        self._commit("save", [t.id for t in tasks])

    def delete_for_project(self, project_id: int) -> int:
        """Delete a project's tasks through the ORM so child rows cascade."""
        tasks = self.list_for_project(project_id)
        for task in tasks:
            self.session.delete(task)
        return len(tasks)


class ProjectRepository(BaseRepository[Project]):
    model = Project
    record_type = "project"

    def list_all(self) -> List[Project]:
        return self.session.query(Project).order_by(Project.created_at.desc(), Project.id.desc()).all()

    def list_for_member(self, user_id: int) -> List[Project]:
        member_ids = self.session.query(ProjectMember.project_id).filter(ProjectMember.user_id == user_id)
        return (
            self.session.query(Project)
            .filter(or_(Project.project_manager_id == user_id, Project.id.in_(member_ids)))
            .order_by(Project.created_at.desc(), Project.id.desc())
            .all()
        )


class NotificationRepository(BaseRepository[Notification]):
    model = Notification
    record_type = "notification"

    def add_all(self, notifications: List[Notification]) -> None:
        if not notifications:
            return
        self.session.add_all(notifications)
        self._commit("create", None)

    def list_for_recipient(self, user_id: int) -> List[Notification]:
        return (
            self.session.query(Notification)
            .filter_by(recipient_id=user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .all()
        )

    def list_unread(self, user_id: int) -> List[Notification]:
        return self.session.query(Notification).filter_by(recipient_id=user_id, is_read=False).all()

    def unread_count(self, user_id: int) -> int:
        return (
            self.session.query(func.count(Notification.id))
            .filter(Notification.recipient_id == user_id, Notification.is_read.is_(False))
            .scalar()
        ) or 0
