"""
ProjectHub Task Service — task lifecycle, comments, extensions and rewards.

Security:
- create / update / delete / resolve extension — admin
- change status — assignee or admin
- add attachment, view extension — assignee, creator or admin
- request extension — assignee only
- everything else — any authenticated user

Completion is routed through the RewardEngine; completed is terminal.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from projecthub.db.models import (
    TASK_PRIORITIES,
    TASK_STATUSES,
    Task,
    TaskAttachment,
    TaskComment,
)
from projecthub.db.repositories import ProjectRepository, TaskRepository, UserRepository
from projecthub.engine.config import RewardsConfig
from projecthub.engine.context import ExecutionContext
from projecthub.engine.errors import (
    ProjectHubConflictError,
    ProjectHubNotFoundError,
    ProjectHubValidationError,
)
from projecthub.engine.logging import log, log_system_event, log_task_event
from projecthub.engine.security import require_actor_in, require_admin
from projecthub.rules.rewards import is_completed_on_time
from projecthub.services.notifications import NotificationService
from projecthub.services.rewards import RewardEngine
from projecthub.utilities.utils import ensure_utc, utc_now

logger = logging.getLogger("projecthub.services.tasks")

UPDATABLE_FIELDS = {
    "title",
    "description",
    "project_id",
    "assigned_to_id",
    "priority",
    "due_date",
    "status",
}


class TaskService:

    def __init__(
        self,
        session: Session,
        rewards: Optional[RewardsConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.tasks = TaskRepository(session)
        self.users = UserRepository(session)
        self.projects = ProjectRepository(session)
        self.notifications = NotificationService(session)
        self.engine = RewardEngine(self.tasks, self.users, rewards, clock)
        self._clock = clock

    # ── CRUD ──

    def create(
        self,
        ctx: ExecutionContext,
        title: str,
        description: str,
        project_id: int,
        assigned_to_id: int,
        due_date: datetime,
        priority: str = "medium",
        status: str = "pending",
        created_by_id: Optional[int] = None,
    ) -> Task:
        require_admin(ctx, "tasks")
        self._validate_fields({"title": title, "description": description, "priority": priority, "status": status})
        if status == "completed":
            raise ProjectHubValidationError("Tasks cannot be created as completed", record_type="task")

        self.projects.get_or_raise(project_id)
        assignee = self.users.get(assigned_to_id)
        if assignee is None:
            raise ProjectHubNotFoundError("Assigned user not found", record_type="user", record_id=assigned_to_id)

        creator_id = ctx.user_id
        if created_by_id is not None:
            if self.users.get(created_by_id) is not None:
                creator_id = created_by_id
            else:
                logger.warning(f"createdBy {created_by_id} does not exist, using actor {ctx.user_id}")

        task = Task(
            title=title.strip(),
            description=description.strip(),
            project_id=project_id,
            assigned_to_id=assigned_to_id,
            created_by_id=creator_id,
            priority=priority,
            status=status,
            due_date=ensure_utc(due_date),
        )
        self.tasks.save(task)

        log(log_task_event("created", task.id, ctx.user_id, ctx.execution_id, to_status=task.status))
        logger.info(f"Task {task.id} created by {ctx.user_id}, assigned to {assigned_to_id}")

        self.notifications.notify(
            [assigned_to_id], "task_assigned",
            f"You have been assigned a new task: {task.title}",
            task=task, actor_id=ctx.user_id, exclude=[ctx.user_id],
        )
        return task

    def list_all(self, ctx: ExecutionContext) -> List[Task]:
        return self.tasks.list_all()

    def assigned_to_me(self, ctx: ExecutionContext) -> List[Task]:
        return self.tasks.list_assigned_to(ctx.user_id)

    def get(self, ctx: ExecutionContext, task_id: int) -> Task:
        return self.tasks.get_or_raise(task_id)

    def update(self, ctx: ExecutionContext, task_id: int, fields: Dict[str, Any]) -> Task:
        """
        Admin edit of whitelisted fields. Reward and completion fields are never
        writable here, and moving into completed must go through change_status().
        """
        require_admin(ctx, "tasks", task_id)
        task = self.tasks.get_or_raise(task_id)

        rejected = sorted(set(fields) - UPDATABLE_FIELDS)
        if rejected:
            raise ProjectHubValidationError(
                f"Invalid updates: {rejected}",
                record_type="task",
                record_id=task_id,
            )
        self._validate_fields(fields)
        if "status" in fields and fields["status"] != task.status:
            if task.is_completed or fields["status"] == "completed":
                raise ProjectHubConflictError(
                    "Completion status can only change through the status endpoint",
                    record_type="task",
                    record_id=task_id,
                )
        if "project_id" in fields:
            self.projects.get_or_raise(fields["project_id"])

        reassigned_to = None
        if "assigned_to_id" in fields and fields["assigned_to_id"] != task.assigned_to_id:
            if self.users.get(fields["assigned_to_id"]) is None:
                raise ProjectHubNotFoundError(
                    "Assigned user not found", record_type="user", record_id=fields["assigned_to_id"],
                )
            reassigned_to = fields["assigned_to_id"]

        for key, value in fields.items():
            if key == "due_date":
                value = ensure_utc(value)
            elif key in ("title", "description"):
                value = value.strip()
            setattr(task, key, value)
        self.tasks.save(task)

        log(log_task_event("updated", task.id, ctx.user_id, ctx.execution_id, fields_changed=sorted(fields)))

        if reassigned_to is not None:
            self.notifications.notify(
                [reassigned_to], "task_assigned",
                f"You have been assigned a new task: {task.title}",
                task=task, actor_id=ctx.user_id, exclude=[ctx.user_id],
            )
        return task

    def delete(self, ctx: ExecutionContext, task_id: int) -> None:
        require_admin(ctx, "tasks", task_id)
        task = self.tasks.get_or_raise(task_id)
        self.tasks.delete(task)
        log(log_task_event("deleted", task_id, ctx.user_id, ctx.execution_id))

    # ── Comments & attachments ──

    def add_comment(self, ctx: ExecutionContext, task_id: int, text: str) -> Task:
        """
        Append a comment, then notify the creator, the assignee and every admin,
        once each and never the commenter.
        """
        if not (text or "").strip():
            raise ProjectHubValidationError("Comment text is required", record_type="task", record_id=task_id)
        task = self.tasks.get_or_raise(task_id)

        task.comments.append(TaskComment(text=text.strip(), posted_by_id=ctx.user_id, created_at=self._clock()))
        self.tasks.save(task)

        commenter = self.users.get(ctx.user_id)
        commenter_name = commenter.name if commenter else "unknown"
        recipients = [task.created_by_id, task.assigned_to_id]
        recipients += [admin.id for admin in self.users.list_admins()]
        self.notifications.notify(
            recipients, "comment",
            f'New comment on task "{task.title}" by {commenter_name}',
            task=task, actor_id=ctx.user_id, exclude=[ctx.user_id],
        )
        return task

    def add_attachment(
        self,
        ctx: ExecutionContext,
        task_id: int,
        name: str,
        url: str,
        attachment_type: Optional[str] = None,
    ) -> Task:
        task = self.tasks.get_or_raise(task_id)
        require_actor_in(ctx, [task.assigned_to_id, task.created_by_id], "tasks", task_id)
        if not (name or "").strip() or not (url or "").strip():
            raise ProjectHubValidationError("Attachment name and url are required", record_type="task", record_id=task_id)

        task.attachments.append(TaskAttachment(
            name=name.strip(),
            url=url.strip(),
            type=attachment_type,
            uploaded_by_id=ctx.user_id,
            uploaded_at=self._clock(),
        ))
        self.tasks.save(task)
        return task

    # ── Status & rewards ──

    def change_status(
        self,
        ctx: ExecutionContext,
        task_id: int,
        status: Optional[str],
    ) -> Tuple[Task, Optional[Dict[str, Any]]]:
        """
        Move a task to ``status``. Returns ``(task, reward_info)``; reward_info
        is only set when the task was completed with an existing assignee.
        """
        if not status:
            raise ProjectHubValidationError("Status is required", record_type="task", record_id=task_id)
        if status not in TASK_STATUSES:
            raise ProjectHubValidationError(
                f"Invalid status value. Must be one of: {', '.join(TASK_STATUSES)}",
                record_type="task",
                record_id=task_id,
            )

        task = self.tasks.get_or_raise(task_id)
        require_actor_in(
            ctx, [task.assigned_to_id], "tasks", task_id,
            message="You are not authorized to update this task status",
        )

        if status == "completed":
            result = self.engine.complete_task(task)
            return result.task, result.reward_info

        if task.is_completed:
            raise ProjectHubConflictError(
                "Completed tasks cannot change status",
                record_type="task",
                record_id=task_id,
            )

        previous = task.status
        task.status = status
        self.tasks.save(task)
        log(log_task_event("status_changed", task.id, ctx.user_id, ctx.execution_id,
                           from_status=previous, to_status=status))
        return task, None

    def my_rewards(self, ctx: ExecutionContext) -> Dict[str, Any]:
        user = self.users.get_or_raise(ctx.user_id)
        return {
            "rewardPoints": user.reward_points,
            "currentStreak": user.current_streak,
            "rewards": [r.to_dict() for r in user.rewards],
        }

    def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [
            {
                "id": u.id,
                "name": u.name,
                "email": u.email,
                "rewardPoints": u.reward_points,
                "currentStreak": u.current_streak,
            }
            for u in self.users.leaderboard(limit)
        ]

    # ── Extension requests ──

    def request_extension(
        self,
        ctx: ExecutionContext,
        task_id: int,
        reason: Optional[str],
        new_due_date: Optional[datetime],
    ) -> Task:
        task = self.tasks.get_or_raise(task_id)
        require_actor_in(
            ctx, [task.assigned_to_id], "tasks", task_id,
            message="You are not assigned to this task",
            allow_admin=False,
        )
        if not (reason or "").strip() or new_due_date is None:
            raise ProjectHubValidationError(
                "Reason and new due date are required", record_type="task", record_id=task_id,
            )
        if task.is_completed:
            raise ProjectHubConflictError(
                "Cannot request an extension for a completed task", record_type="task", record_id=task_id,
            )
        if task.has_open_extension:
            raise ProjectHubConflictError(
                "An extension request is already pending", record_type="task", record_id=task_id,
            )
        proposed = ensure_utc(new_due_date)
        if proposed <= task.due_date_utc():
            raise ProjectHubValidationError(
                "New due date must be after current due date", record_type="task", record_id=task_id,
            )

        task.extension_requested = True
        task.extension_status = "pending"
        task.extension_requested_by_id = ctx.user_id
        task.extension_requested_at = self._clock()
        task.extension_reason = reason.strip()
        task.extension_new_due_date = proposed
        task.extension_approved_by_id = None
        task.extension_approved_at = None
        self.tasks.save(task)

        log(log_task_event("extension_requested", task.id, ctx.user_id, ctx.execution_id))
        self.notifications.notify(
            [task.created_by_id], "extension_request",
            f"Extension requested for task: {task.title}",
            task=task, actor_id=ctx.user_id, exclude=[ctx.user_id],
        )
        return task

    def resolve_extension(
        self,
        ctx: ExecutionContext,
        task_id: int,
        status: Optional[str],
        new_due_date: Optional[datetime] = None,
    ) -> Task:
        """
        Approve or reject the open request. Approval moves dueDate to
        ``new_due_date`` when given, otherwise to the proposed date.
        """
        require_admin(ctx, "tasks", task_id)
        task = self.tasks.get_or_raise(task_id)

        if not task.extension_requested:
            raise ProjectHubValidationError(
                "No extension request found for this task", record_type="task", record_id=task_id,
            )
        if status not in ("approved", "rejected"):
            raise ProjectHubValidationError(
                "Valid status (approved/rejected) is required", record_type="task", record_id=task_id,
            )
        if task.is_completed:
            raise ProjectHubConflictError(
                "Cannot resolve an extension for a completed task", record_type="task", record_id=task_id,
            )
        if task.extension_status != "pending":
            raise ProjectHubConflictError(
                f"Extension request already {task.extension_status}", record_type="task", record_id=task_id,
            )

        now = self._clock()
        if status == "approved":
            approved_date = ensure_utc(new_due_date) if new_due_date else ensure_utc(task.extension_new_due_date)
            if approved_date is None or approved_date <= task.due_date_utc():
                raise ProjectHubValidationError(
                    "New due date must be after current due date", record_type="task", record_id=task_id,
                )
            task.due_date = approved_date
            task.extension_new_due_date = approved_date
        task.extension_status = status
        task.extension_approved_by_id = ctx.user_id
        task.extension_approved_at = now
        self.tasks.save(task)

        log(log_task_event(f"extension_{status}", task.id, ctx.user_id, ctx.execution_id))
        self.notifications.notify(
            [task.assigned_to_id], "extension_response",
            f'Your extension request for task "{task.title}" has been {status}',
            task=task, actor_id=ctx.user_id, exclude=[ctx.user_id],
        )
        return task

    def get_extension(self, ctx: ExecutionContext, task_id: int) -> Dict[str, Any]:
        task = self.tasks.get_or_raise(task_id)
        require_actor_in(
            ctx, [task.assigned_to_id, task.created_by_id], "tasks", task_id,
            message="You are not authorized to view this extension request",
        )
        return task.extension_request

    # ── Maintenance ──

    def mark_overdue(self, now: Optional[datetime] = None) -> List[int]:
        """
        Flip pending / in_progress tasks whose due day has ended to overdue.
        Returns the affected task ids.
        """
        now = now or self._clock()
        overdue = [t for t in self.tasks.list_open() if not is_completed_on_time(t.due_date, now)]
        previous = {t.id: t.status for t in overdue}
        for task in overdue:
            task.status = "overdue"
        if overdue:
            self.tasks.save_all(overdue)
            for task in overdue:
                log(log_task_event(
                    "marked_overdue", task.id, from_status=previous[task.id], to_status="overdue",
                ))

        ids = [t.id for t in overdue]
        log(log_system_event("overdue_scan", details={"marked": len(ids), "at": now.isoformat()}))
        logger.info(f"Overdue scan marked {len(ids)} task(s)")
        return ids

    @staticmethod
    def _validate_fields(fields: Dict[str, Any]) -> None:
        errors = []
        for key in ("title", "description"):
            if key in fields and not (fields[key] or "").strip():
                errors.append({"field": key, "message": f"{key.capitalize()} is required"})
        if "priority" in fields and fields["priority"] not in TASK_PRIORITIES:
            errors.append({"field": "priority", "message": f"Priority must be one of {list(TASK_PRIORITIES)}"})
        if "status" in fields and fields["status"] not in TASK_STATUSES:
            errors.append({"field": "status", "message": f"Status must be one of {list(TASK_STATUSES)}"})
        if "due_date" in fields and fields["due_date"] is None:
            errors.append({"field": "due_date", "message": "Due date is required"})
        if errors:
            raise ProjectHubValidationError("Invalid task data", record_type="task", validation_errors=errors)
