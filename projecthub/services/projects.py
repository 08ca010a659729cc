"""
ProjectHub Project Service — projects, team membership, milestones, documents.

Security:
- create / delete / team changes — admin
- get / update / milestones / documents — admin, team member or project manager
- list — admins see all, others see projects they belong to
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from projecthub.db.models import PROJECT_STATUSES, Milestone, Project, ProjectDocument
from projecthub.db.repositories import ProjectRepository, TaskRepository, UserRepository
from projecthub.engine.context import ExecutionContext
from projecthub.engine.errors import ProjectHubNotFoundError, ProjectHubValidationError
from projecthub.engine.logging import log, log_record_operation
from projecthub.engine.security import require_actor_in, require_admin
from projecthub.utilities.utils import ensure_utc, utc_now

logger = logging.getLogger("projecthub.services.projects")

UPDATABLE_FIELDS = {"name", "description", "client", "start_date", "end_date", "budget", "status"}
CLIENT_FIELDS = {"name", "email", "phone"}


class ProjectService:

    def __init__(self, session: Session, clock: Callable[[], datetime] = utc_now):
        self.projects = ProjectRepository(session)
        self.tasks = TaskRepository(session)
        self.users = UserRepository(session)
        self._clock = clock

    def list_for(self, ctx: ExecutionContext) -> List[Project]:
        if ctx.is_admin:
            return self.projects.list_all()
        return self.projects.list_for_member(ctx.user_id)

    def create(
        self,
        ctx: ExecutionContext,
        name: str,
        description: str,
        client: Dict[str, Optional[str]],
        start_date: datetime,
        end_date: datetime,
        budget: float,
        project_manager_id: int,
        status: str = "planning",
        team: Optional[List[int]] = None,
    ) -> Project:
        require_admin(ctx, "projects")
        client = client or {}
        errors = self._validate({
            "name": name,
            "description": description,
            "client": client,
            "start_date": start_date,
            "end_date": end_date,
            "budget": budget,
            "status": status,
        }, creating=True)
        if errors:
            raise ProjectHubValidationError("Invalid project data", record_type="project", validation_errors=errors)

        manager = self.users.get(project_manager_id)
        if manager is None:
            raise ProjectHubNotFoundError("Project manager not found", record_type="user", record_id=project_manager_id)

        project = Project(
            name=name.strip(),
            description=description.strip(),
            client_name=(client.get("name") or "").strip(),
            client_email=client.get("email"),
            client_phone=client.get("phone"),
            start_date=ensure_utc(start_date),
            end_date=ensure_utc(end_date),
            budget=float(budget),
            status=status,
            project_manager_id=project_manager_id,
        )
        project.team = [self._get_user(uid) for uid in dict.fromkeys(team or [])]
        self.projects.save(project)

        log(log_record_operation("projects", "create", project.id, ctx.user_id, ctx.execution_id))
        logger.info(f"Project {project.id} '{project.name}' created by {ctx.user_id}")
        return project

    def get(self, ctx: ExecutionContext, project_id: int) -> Project:
        project = self.projects.get_or_raise(project_id)
        self._require_member(ctx, project)
        return project

    def statistics(self, project: Project) -> Dict[str, Any]:
        counts = self.tasks.count_by_status(project.id)
        total = sum(counts.values())
        completed = counts.get("completed", 0)
        return {
            "totalTasks": total,
            "completedTasks": completed,
            "overdueTasks": counts.get("overdue", 0),
            "completionRate": (completed / total) * 100 if total > 0 else 0,
        }

    def update(self, ctx: ExecutionContext, project_id: int, fields: Dict[str, Any]) -> Project:
        project = self.projects.get_or_raise(project_id)
        self._require_member(ctx, project)

        rejected = sorted(set(fields) - UPDATABLE_FIELDS)
        if rejected:
            raise ProjectHubValidationError(f"Invalid updates: {rejected}", record_type="project", record_id=project_id)
        errors = self._validate(fields, creating=False)
        if errors:
            raise ProjectHubValidationError("Invalid project data", record_type="project", validation_errors=errors)

        for key, value in fields.items():
            if key == "client":
                # Merge: omitted client keys keep their stored values
                for client_key, client_value in (value or {}).items():
                    setattr(project, f"client_{client_key}", client_value)
            elif key in ("start_date", "end_date"):
                setattr(project, key, ensure_utc(value))
            elif key in ("name", "description"):
                setattr(project, key, value.strip())
            else:
                setattr(project, key, value)
        self.projects.save(project)

        log(log_record_operation(
            "projects", "update", project.id, ctx.user_id, ctx.execution_id, fields_changed=sorted(fields),
        ))
        return project

    def delete(self, ctx: ExecutionContext, project_id: int) -> int:
        """Delete a project and every task in it. Returns the number of tasks removed."""
        require_admin(ctx, "projects", project_id)
        project = self.projects.get_or_raise(project_id)
        removed = self.tasks.delete_for_project(project.id)
        self.projects.delete(project)

        log(log_record_operation("projects", "delete", project_id, ctx.user_id, ctx.execution_id))
        logger.info(f"Project {project_id} deleted with {removed} task(s)")
        return removed

    # ── Team ──

    def add_team_member(self, ctx: ExecutionContext, project_id: int, user_id: int) -> Project:
        require_admin(ctx, "projects", project_id)
        project = self.projects.get_or_raise(project_id)
        user = self._get_user(user_id)
        if user not in project.team:
            project.team.append(user)
            self.projects.save(project)
            log(log_record_operation(
                "projects", "add_member", project.id, ctx.user_id, ctx.execution_id, fields_changed=["team"],
            ))
        return project

    def remove_team_member(self, ctx: ExecutionContext, project_id: int, user_id: int) -> Project:
        require_admin(ctx, "projects", project_id)
        project = self.projects.get_or_raise(project_id)
        remaining = [u for u in project.team if u.id != user_id]
        if len(remaining) != len(project.team):
            project.team = remaining
            self.projects.save(project)
            log(log_record_operation(
                "projects", "remove_member", project.id, ctx.user_id, ctx.execution_id, fields_changed=["team"],
            ))
        return project

    # ── Milestones & documents ──

    def add_milestone(
        self,
        ctx: ExecutionContext,
        project_id: int,
        title: str,
        description: str,
        due_date: datetime,
    ) -> Project:
        project = self.projects.get_or_raise(project_id)
        self._require_member(ctx, project)
        errors = []
        if not (title or "").strip():
            errors.append({"field": "title", "message": "Milestone title is required"})
        if not (description or "").strip():
            errors.append({"field": "description", "message": "Description is required"})
        if due_date is None:
            errors.append({"field": "due_date", "message": "Valid due date is required"})
        if errors:
            raise ProjectHubValidationError("Invalid milestone data", record_type="project", validation_errors=errors)

        project.milestones.append(Milestone(
            title=title.strip(),
            description=description.strip(),
            due_date=ensure_utc(due_date),
        ))
        self.projects.save(project)
        return project

    def set_milestone_completed(
        self,
        ctx: ExecutionContext,
        project_id: int,
        milestone_id: int,
        completed: bool,
    ) -> Project:
        project = self.projects.get_or_raise(project_id)
        milestone = next((m for m in project.milestones if m.id == milestone_id), None)
        if milestone is None:
            raise ProjectHubNotFoundError("Milestone not found", record_type="milestone", record_id=milestone_id)
        self._require_member(ctx, project)

        milestone.completed = bool(completed)
        if completed:
            milestone.completed_at = self._clock()
        self.projects.save(project)
        return project

    def add_document(
        self,
        ctx: ExecutionContext,
        project_id: int,
        name: str,
        url: str,
        type: Optional[str] = None,
    ) -> Project:
        project = self.projects.get_or_raise(project_id)
        self._require_member(ctx, project)
        if not (name or "").strip() or not (url or "").strip():
            raise ProjectHubValidationError("Document name and url are required", record_type="project", record_id=project_id)

        project.documents.append(ProjectDocument(
            name=name.strip(),
            url=url.strip(),
            type=type,
            uploaded_by_id=ctx.user_id,
            uploaded_at=self._clock(),
        ))
        self.projects.save(project)
        return project

    # ── Helpers ──

    def _require_member(self, ctx: ExecutionContext, project: Project) -> None:
        require_actor_in(
            ctx,
            [project.project_manager_id] + [u.id for u in project.team],
            "projects", project.id,
            message="Access denied",
        )

    def _get_user(self, user_id: int):
        user = self.users.get(user_id)
        if user is None:
            raise ProjectHubNotFoundError("User not found", record_type="user", record_id=user_id)
        return user

    @staticmethod
    def _validate(fields: Dict[str, Any], creating: bool) -> List[Dict[str, Any]]:
        errors: List[Dict[str, Any]] = []
        for key in ("name", "description"):
            if key in fields and not (fields[key] or "").strip():
                errors.append({"field": key, "message": f"Project {key} is required"})

        client = fields.get("client")
        if client is not None:
            unknown = sorted(set(client) - CLIENT_FIELDS)
            if unknown:
                errors.append({"field": "client", "message": f"Unknown client fields: {unknown}"})
            if (creating or "name" in client) and not (client.get("name") or "").strip():
                errors.append({"field": "client.name", "message": "Client name is required"})
            if (creating or "email" in client) and "@" not in (client.get("email") or ""):
                errors.append({"field": "client.email", "message": "Valid client email is required"})

        for key in ("start_date", "end_date"):
            if key in fields and fields[key] is None:
                errors.append({"field": key, "message": f"Valid {key.replace('_', ' ')} is required"})
        start, end = fields.get("start_date"), fields.get("end_date")
        if start is not None and end is not None and ensure_utc(end) < ensure_utc(start):
            errors.append({"field": "end_date", "message": "End date must not be before start date"})

        if "budget" in fields:
            budget = fields["budget"]
            if isinstance(budget, bool) or not isinstance(budget, (int, float)):
                errors.append({"field": "budget", "message": "Budget must be a number"})
        if "status" in fields and fields["status"] not in PROJECT_STATUSES:
            errors.append({"field": "status", "message": "Invalid status"})
        return errors
