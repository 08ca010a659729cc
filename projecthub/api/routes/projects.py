"""Project endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from projecthub.api.deps import get_current_context, get_db
from projecthub.api.schemas import (
    DocumentRequest,
    MilestoneRequest,
    MilestoneUpdateRequest,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    TeamMemberRequest,
)
from projecthub.engine.context import ExecutionContext
from projecthub.services.projects import ProjectService

router = APIRouter(prefix="/projects", tags=["projects"])


def project_service(request: Request, db: Session = Depends(get_db)) -> ProjectService:
    return ProjectService(db, request.app.state.clock)


@router.get("")
def list_projects(ctx: ExecutionContext = Depends(get_current_context), service: ProjectService = Depends(project_service)):
    return [p.to_dict() for p in service.list_for(ctx)]


@router.post("", status_code=201)
def create_project(
    body: ProjectCreateRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    service: ProjectService = Depends(project_service),
):
    project = service.create(
        ctx,
        name=body.name,
        description=body.description,
        client=body.client.model_dump(),
        start_date=body.start_date,
        end_date=body.end_date,
        budget=body.budget,
        project_manager_id=body.project_manager,
        status=body.status,
        team=body.team,
    )
    return project.to_dict()


@router.get("/{project_id}")
def get_project(
    project_id: int,
    ctx: ExecutionContext = Depends(get_current_context),
    service: ProjectService = Depends(project_service),
):
    project = service.get(ctx, project_id)
    return {**project.to_dict(), "statistics": service.statistics(project)}


@router.put("/{project_id}")
def update_project(
    project_id: int,
    body: ProjectUpdateRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    service: ProjectService = Depends(project_service),
):
    return service.update(ctx, project_id, body.to_fields()).to_dict()


@router.delete("/{project_id}")
def delete_project(
    project_id: int,
    ctx: ExecutionContext = Depends(get_current_context),
    service: ProjectService = Depends(project_service),
):
    removed = service.delete(ctx, project_id)
    return {
        "message": "Project and associated tasks deleted successfully",
        "deletedProjectId": project_id,
        "deletedTasks": removed,
    }


@router.post("/{project_id}/team")
def add_team_member(
    project_id: int,
    body: TeamMemberRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    service: ProjectService = Depends(project_service),
):
    return service.add_team_member(ctx, project_id, body.user_id).to_dict()


@router.delete("/{project_id}/team/{user_id}")
def remove_team_member(
    project_id: int,
    user_id: int,
    ctx: ExecutionContext = Depends(get_current_context),
    service: ProjectService = Depends(project_service),
):
    return service.remove_team_member(ctx, project_id, user_id).to_dict()


@router.post("/{project_id}/milestones")
def add_milestone(
    project_id: int,
    body: MilestoneRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    service: ProjectService = Depends(project_service),
):
    return service.add_milestone(ctx, project_id, body.title, body.description, body.due_date).to_dict()


@router.put("/{project_id}/milestones/{milestone_id}")
def update_milestone(
    project_id: int,
    milestone_id: int,
    body: MilestoneUpdateRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    service: ProjectService = Depends(project_service),
):
    return service.set_milestone_completed(ctx, project_id, milestone_id, body.completed).to_dict()


@router.post("/{project_id}/documents")
def add_document(
    project_id: int,
    body: DocumentRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    service: ProjectService = Depends(project_service),
):
    return service.add_document(ctx, project_id, body.name, body.url, body.type).to_dict()
