"""Notification endpoints for the current user."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from projecthub.api.deps import get_current_context, get_db
from projecthub.engine.context import ExecutionContext
from projecthub.services.notifications import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


def notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


@router.get("")
def list_notifications(
    ctx: ExecutionContext = Depends(get_current_context),
    service: NotificationService = Depends(notification_service),
):
    return service.list_for(ctx)


@router.patch("/read-all")
def mark_all_read(
    ctx: ExecutionContext = Depends(get_current_context),
    service: NotificationService = Depends(notification_service),
):
    count = service.mark_all_read(ctx)
    return {"message": "All notifications marked as read", "modifiedCount": count}


@router.get("/unread/count")
def unread_count(
    ctx: ExecutionContext = Depends(get_current_context),
    service: NotificationService = Depends(notification_service),
):
    return {"count": service.unread_count(ctx)}


@router.patch("/{notification_id}/read")
def mark_read(
    notification_id: int,
    ctx: ExecutionContext = Depends(get_current_context),
    service: NotificationService = Depends(notification_service),
):
    return service.mark_read(ctx, notification_id)
