"""Per-goal dashboard: streak, completed-day count and heatmap for each goal."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.tracker import store
from app.tracker.heatmap import build_goal_heatmap
from app.tracker.models import Goal, GoalWithStats
from app.tracker.store import CompletionRecord
from app.tracker.streaks import goal_streak
from app.tracker.time_resolver import utc_now


def goal_with_stats(
    goal: Goal,
    completions: list[CompletionRecord],
    days: int,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> GoalWithStats:
    counts: dict[str, int] = {}
    for c in completions:
        counts[c.date] = counts.get(c.date, 0) + (c.count or 0)
    return GoalWithStats(
        **goal.model_dump(),
        streak=goal_streak(counts, offset_minutes, now),
        total_completed_days=sum(1 for count in counts.values() if count > 0),
        heatmap=build_goal_heatmap(counts, days, goal.daily_target_count, offset_minutes, now),
    )


async def get_dashboard_data(
    session: AsyncSession,
    owner_id: str,
    days: int | None = None,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> list[GoalWithStats]:
    """Every goal, newest first, with its single-goal stats."""
    days = days if days and days > 0 else settings.dashboard_days
    now = now or utc_now()
    goals = await store.list_goals(session, owner_id)
    by_goal: dict[int, list[CompletionRecord]] = {}
    for c in await store.list_completions(session, owner_id, [g.id for g in goals]):
        by_goal.setdefault(c.goal_id, []).append(c)
    return [goal_with_stats(g, by_goal.get(g.id, []), days, offset_minutes, now) for g in goals]


async def get_goal_with_stats(
    session: AsyncSession,
    owner_id: str,
    goal_id: int,
    days: int | None = None,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> GoalWithStats | None:
    goal = await store.get_goal(session, owner_id, goal_id)
    if goal is None:
        return None
    completions = await store.list_completions(session, owner_id, [goal_id])
    days = days if days and days > 0 else settings.dashboard_days
    return goal_with_stats(goal, completions, days, offset_minutes, now or utc_now())
