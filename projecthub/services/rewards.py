"""
ProjectHub Reward Engine — applies completion rewards to a task and its assignee.

Load → compute (projecthub.rules.rewards) → persist. Two commits:

1. The task (status, completionDate, isCompletedOnTime, rewardPoints)
2. The assignee (rewardPoints, reward log, streak, lastTaskCompletion)

The task commit is not undone when the user commit fails; the failure is
logged and re-raised to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from projecthub.db.models import RewardEntry, Task, User
from projecthub.db.repositories import TaskRepository, UserRepository
from projecthub.engine.config import RewardsConfig
from projecthub.engine.context import current_execution_id
from projecthub.engine.errors import ProjectHubConflictError, ProjectHubError
from projecthub.engine.logging import log, log_reward_awarded, log_task_event
from projecthub.rules.rewards import (
    COMPLETION_DESCRIPTION,
    STREAK_DESCRIPTION,
    compute_task_reward,
    is_completed_on_time,
    next_streak,
    streak_bonus,
)
from projecthub.utilities.utils import utc_now

logger = logging.getLogger("projecthub.services.rewards")


@dataclass
class CompletionResult:
    task: Task
    user: Optional[User]
    points_earned: int
    streak_bonus: int = 0

    @property
    def reward_info(self) -> Optional[Dict[str, Any]]:
        """Summary reported back to the HTTP caller; None without an assignee."""
        if self.user is None:
            return None
        return {
            "pointsEarned": self.points_earned,
            "totalPoints": self.user.reward_points,
            "currentStreak": self.user.current_streak,
            "isCompletedOnTime": bool(self.task.is_completed_on_time),
        }


class RewardEngine:
    """
    Completion rewards and streak bookkeeping.

    Usage:
        engine = RewardEngine(TaskRepository(session), UserRepository(session))
        result = engine.complete_task(task)
        result.reward_info  # {"pointsEarned": 80, "totalPoints": ..., ...}
    """

    def __init__(
        self,
        tasks: TaskRepository,
        users: UserRepository,
        config: Optional[RewardsConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._tasks = tasks
        self._users = users
        self._config = config or RewardsConfig()
        self._clock = clock

    def complete_task(self, task: Task) -> CompletionResult:
        """
        Move ``task`` to completed and award its assignee.

        Raises:
            ProjectHubConflictError: the task is already completed.
            ProjectHubPersistenceError / ProjectHubConflictError: either save failed.
        """
        if task.is_completed:
            raise ProjectHubConflictError(
                "Task is already completed",
                record_type="task",
                record_id=task.id,
                execution_id=current_execution_id(),
            )

        now = self._clock()
        previous_status = task.status
        on_time = is_completed_on_time(task.due_date, now)
        user = self._users.get(task.assigned_to_id)
        reward = compute_task_reward(task.priority, on_time, self._config) if user else 0

        task.status = "completed"
        task.completion_date = now
        task.is_completed_on_time = on_time
        task.reward_points = reward
        self._tasks.save(task)

        log(log_task_event(
            "completed", task.id,
            user_id=task.assigned_to_id,
            execution_id=current_execution_id(),
            from_status=previous_status,
            to_status="completed",
        ))

        if user is None:
            logger.error(f"Task {task.id} completed but assignee {task.assigned_to_id} does not exist")
            log(log_task_event(
                "reward_skipped", task.id,
                execution_id=current_execution_id(),
                error=f"assignee {task.assigned_to_id} not found",
            ))
            return CompletionResult(task=task, user=None, points_earned=0)

        if not on_time:
            logger.info(f"Task {task.id} completed late, no reward for user {user.id}")
            return CompletionResult(task=task, user=user, points_earned=0)

        bonus = self._apply_user_rewards(user, task, reward, now)
        return CompletionResult(task=task, user=user, points_earned=reward, streak_bonus=bonus)

    def _apply_user_rewards(self, user: User, task: Task, reward: int, now: datetime) -> int:
        """Points, streak and streak bonus in one user save. Returns the bonus."""
        self._add_points(user, reward, COMPLETION_DESCRIPTION.format(title=task.title), task.id, now)

        previous_streak = user.current_streak or 0
        user.current_streak = next_streak(previous_streak, user.last_task_completion, now)
        user.last_task_completion = now

        bonus = streak_bonus(previous_streak, user.current_streak, self._config)
        if bonus:
            self._add_points(
                user, bonus,
                STREAK_DESCRIPTION.format(streak=user.current_streak),
                task.id, now,
            )

        try:
            self._users.save(user)
        except ProjectHubError as e:
            logger.error(f"Task {task.id} saved but reward update for user {user.id} failed: {e.message}")
            log(log_task_event(
                "reward_failed", task.id,
                user_id=user.id,
                execution_id=current_execution_id(),
                error=e.message,
            ))
            raise

        for entry in user.rewards[-2 if bonus else -1:]:
            log(log_reward_awarded(
                user.id, task.id, entry.type, entry.value, entry.description,
                total_points=user.reward_points,
                current_streak=user.current_streak,
                execution_id=current_execution_id(),
            ))
        return bonus

    @staticmethod
    def _add_points(user: User, value: int, description: str, task_id: Optional[int], now: datetime) -> None:
        user.reward_points = (user.reward_points or 0) + value
        user.rewards.append(RewardEntry(
            type="points",
            value=value,
            description=description,
            task_id=task_id,
            awarded_at=now,
        ))
