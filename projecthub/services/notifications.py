"""
ProjectHub Notification Service — per-recipient task lifecycle events.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from projecthub.db.models import NOTIFICATION_TYPES, Notification, Task
from projecthub.db.repositories import NotificationRepository
from projecthub.engine.context import ExecutionContext
from projecthub.engine.errors import ProjectHubNotFoundError, ProjectHubValidationError
from projecthub.engine.logging import log, log_record_operation
from projecthub.engine.security import require_actor_in

logger = logging.getLogger("projecthub.services.notifications")


class NotificationService:

    def __init__(self, session: Session):
        self.notifications = NotificationRepository(session)

    def notify(
        self,
        recipient_ids: Iterable[int],
        notification_type: str,
        message: str,
        task: Optional[Task] = None,
        actor_id: Optional[int] = None,
        exclude: Iterable[Optional[int]] = (),
    ) -> List[Notification]:
        """
        Create one notification per distinct recipient, skipping ``exclude``.
        Recipient order is kept.
        """
        if notification_type not in NOTIFICATION_TYPES:
            raise ProjectHubValidationError(f"Invalid notification type: {notification_type}")

        skip = {uid for uid in exclude if uid is not None}
        created: List[Notification] = []
        for recipient_id in recipient_ids:
            if recipient_id is None or recipient_id in skip:
                continue
            skip.add(recipient_id)
            created.append(Notification(
                recipient_id=recipient_id,
                actor_id=actor_id,
                task_id=task.id if task is not None else None,
                type=notification_type,
                message=message,
            ))

        self.notifications.add_all(created)
        if created:
            logger.debug(f"{notification_type} notification sent to {[n.recipient_id for n in created]}")
        return created

    def list_for(self, ctx: ExecutionContext) -> List[Dict[str, Any]]:
        return [n.to_dict() for n in self.notifications.list_for_recipient(ctx.user_id)]

    def mark_read(self, ctx: ExecutionContext, notification_id: int) -> Dict[str, Any]:
        notification = self.notifications.get_or_raise(notification_id)
        require_actor_in(
            ctx, [notification.recipient_id], "notifications", notification_id,
            message="Not authorized to mark this notification as read",
            allow_admin=False,
        )
        notification.is_read = True
        self.notifications.save(notification)
        return notification.to_dict()

    def mark_all_read(self, ctx: ExecutionContext) -> int:
        unread = self.notifications.list_unread(ctx.user_id)
        if not unread:
            raise ProjectHubNotFoundError(
                "No unread notifications found",
                record_type="notification",
                execution_id=ctx.execution_id,
            )
        for notification in unread:
            notification.is_read = True
        self.notifications.add_all(unread)
        log(log_record_operation(
            "notifications", "mark_all_read",
            user_id=ctx.user_id,
            execution_id=ctx.execution_id,
            fields_changed=["is_read"],
        ))
        return len(unread)

    def unread_count(self, ctx: ExecutionContext) -> int:
        return self.notifications.unread_count(ctx.user_id)
