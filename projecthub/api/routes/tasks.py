"""
Task endpoints.

Static paths (``/tasks/assigned-to-me``, ``/tasks/rewards/...``) are declared
before ``/tasks/{task_id}`` so they are not captured by it.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from projecthub.api.deps import get_current_context, get_db
from projecthub.api.schemas import (
    AttachmentRequest,
    CommentRequest,
    ExtensionRequestBody,
    ExtensionResolveBody,
    StatusRequest,
    TaskCreateRequest,
    TaskUpdateRequest,
)
from projecthub.engine.context import ExecutionContext
from projecthub.services.tasks import TaskService

router = APIRouter(prefix="/tasks", tags=["tasks"])


def task_service(request: Request, db: Session = Depends(get_db)) -> TaskService:
    return TaskService(db, request.app.state.config.rewards, request.app.state.clock)


@router.post("", status_code=201)
def create_task(
    body: TaskCreateRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    service: TaskService = Depends(task_service),
):
    task = service.create(
        ctx,
        title=body.title,
        description=body.description,
        project_id=body.project,
        assigned_to_id=body.assigned_to,
        due_date=body.due_date,
        priority=body.priority,
        status=body.status,
        created_by_id=body.created_by,
    )
    return task.to_dict()


@router.get("")
def list_tasks(ctx: ExecutionContext = Depends(get_current_context), service: TaskService = Depends(task_service)):
    return [t.to_dict() for t in service.list_all(ctx)]


@router.get("/assigned-to-me")
def assigned_to_me(ctx: ExecutionContext = Depends(get_current_context), service: TaskService = Depends(task_service)):
    return [t.to_dict() for t in service.assigned_to_me(ctx)]


@router.get("/rewards/me")
def my_rewards(ctx: ExecutionContext = Depends(get_current_context), service: TaskService = Depends(task_service)):
    return service.my_rewards(ctx)


@router.get("/rewards/leaderboard")
def leaderboard(
    request: Request,
    ctx: ExecutionContext = Depends(get_current_context),
    service: TaskService = Depends(task_service),
):
    return service.leaderboard(request.app.state.config.api.leaderboard_size)


@router.get("/{task_id}")
def get_task(task_id: int, ctx: ExecutionContext = Depends(get_current_context), service: TaskService = Depends(task_service)):
    return service.get(ctx, task_id).to_dict()


@router.put("/{task_id}")
def update_task(
    task_id: int,
    body: TaskUpdateRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    service: TaskService = Depends(task_service),
):
    return service.update(ctx, task_id, body.to_fields()).to_dict()


@router.delete("/{task_id}")
def delete_task(task_id: int, ctx: ExecutionContext = Depends(get_current_context), service: TaskService = Depends(task_service)):
    service.delete(ctx, task_id)
    return {"message": "Task deleted successfully"}


@router.post("/{task_id}/comments")
def add_comment(
    task_id: int,
    body: CommentRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    service: TaskService = Depends(task_service),
):
    return service.add_comment(ctx, task_id, body.text).to_dict()


@router.post("/{task_id}/attachments")
def add_attachment(
    task_id: int,
    body: AttachmentRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    service: TaskService = Depends(task_service),
):
    return service.add_attachment(ctx, task_id, body.name, body.url, body.type).to_dict()


@router.patch("/{task_id}/status")
def change_status(
    task_id: int,
    body: StatusRequest,
    ctx: ExecutionContext = Depends(get_current_context),
    service: TaskService = Depends(task_service),
):
    task, reward_info = service.change_status(ctx, task_id, body.status)
    return {"task": task.to_dict(), "rewardInfo": reward_info}


@router.post("/{task_id}/extension-request")
def request_extension(
    task_id: int,
    body: ExtensionRequestBody,
    ctx: ExecutionContext = Depends(get_current_context),
    service: TaskService = Depends(task_service),
):
    task = service.request_extension(ctx, task_id, body.reason, body.new_due_date)
    return {"message": "Extension request submitted successfully", "task": task.to_dict()}


@router.patch("/{task_id}/extension-request")
def resolve_extension(
    task_id: int,
    body: ExtensionResolveBody,
    ctx: ExecutionContext = Depends(get_current_context),
    service: TaskService = Depends(task_service),
):
    task = service.resolve_extension(ctx, task_id, body.status, body.new_due_date)
    return {"message": f"Extension request {body.status} successfully", "task": task.to_dict()}


@router.get("/{task_id}/extension-request")
def get_extension(
    task_id: int,
    ctx: ExecutionContext = Depends(get_current_context),
    service: TaskService = Depends(task_service),
):
    return {"extensionRequest": service.get_extension(ctx, task_id)}
