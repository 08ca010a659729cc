"""
Reward rules — pure computations behind task completion rewards.

No database access and no clock reads: every function receives the instants
and amounts it works with, so the RewardEngine service stays a thin
load → compute → persist wrapper around these.

- is_completed_on_time(): completion at or before the end of the due date's UTC day
- compute_task_reward(): base points + priority bonus when on time, else 0
- next_streak(): consecutive calendar-day streak continuation / reset
- streak_bonus(): milestone bonus when the streak moves onto a multiple of the interval
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional

from projecthub.engine.config import RewardsConfig
from projecthub.utilities.utils import ensure_utc

COMPLETION_DESCRIPTION = "On-time task completion: {title}"
STREAK_DESCRIPTION = "Streak reward for {streak} consecutive days"


def end_of_day(value: datetime) -> datetime:
    """Last representable instant of ``value``'s UTC calendar day."""
    day = ensure_utc(value).date()
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def is_completed_on_time(due_date: datetime, completed_at: datetime) -> bool:
    return ensure_utc(completed_at) <= end_of_day(due_date)


def compute_task_reward(priority: str, on_time: bool, config: Optional[RewardsConfig] = None) -> int:
    """
    Points earned for one completion.

    Late completions earn nothing. An unknown priority earns the base amount
    only.
    """
    if not on_time:
        return 0
    config = config or RewardsConfig()
    return config.base_points + config.priority_bonus.get(priority, 0)


def calendar_days_between(earlier: datetime, later: datetime) -> int:
    """Whole UTC calendar days from ``earlier`` to ``later`` (23:59 → 00:01 is 1)."""
    start: date = ensure_utc(earlier).date()
    end: date = ensure_utc(later).date()
    return (end - start).days


def next_streak(
    current_streak: int,
    last_completion: Optional[datetime],
    completed_at: datetime,
) -> int:
    """
    Streak after an on-time completion at ``completed_at``.

    Must be called with the previous ``last_completion``, before it is
    overwritten.
    """
    if last_completion is None:
        return 1

    days = calendar_days_between(last_completion, completed_at)
    if days == 1:
        return current_streak + 1
    if days > 1:
        return 1
    # Same day (or a clock that went backwards)
    return current_streak


def streak_bonus(previous_streak: int, new_streak: int, config: Optional[RewardsConfig] = None) -> int:
    """
    Bonus points when the streak lands on a positive multiple of the interval.

    Only a change fires the bonus, so a second completion on the same day at
    streak 10 does not pay out again.
    """
    config = config or RewardsConfig()
    if new_streak <= 0 or new_streak == previous_streak:
        return 0
    if new_streak % config.streak_bonus_interval != 0:
        return 0
    return new_streak * config.streak_bonus_multiplier
