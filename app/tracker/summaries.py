"""Daily summary cache — pure computation plus the write paths that keep the
``daily_summaries`` rows and the per-day ``summary`` timeline event current.

Two derived artifacts exist per local date:

- a DailySummary row (past dates only) recomputed lazily on every timeline
  read and eagerly when a past date's completions change;
- a ``summary`` timeline event, present only while every active goal meets
  its target on that date.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from app.tracker import store
from app.tracker.models import DailySummary, Goal, TimelineItem
from app.tracker.store import CompletionRecord
from app.tracker.time_resolver import (
    add_days_utc,
    parse_instant,
    start_of_day_local_as_utc,
    to_date_key,
    to_iso,
    utc_now,
)

logger = logging.getLogger(__name__)

CompletionIndex = dict[str, dict[int, int]]


def build_completion_index(completions: Iterable[CompletionRecord]) -> CompletionIndex:
    """``{date_key: {goal_id: summed count}}``."""
    index: CompletionIndex = {}
    for c in completions:
        per_goal = index.setdefault(c.date, {})
        per_goal[c.goal_id] = per_goal.get(c.goal_id, 0) + (c.count or 0)
    return index


def is_goal_active(goal: Goal, date_key: str, offset_minutes: int) -> bool:
    """A goal is active from its local creation date onward."""
    return to_date_key(goal.created_at, offset_minutes) <= date_key


def active_goals_on(goals: Iterable[Goal], date_key: str, offset_minutes: int) -> list[Goal]:
    return [g for g in goals if is_goal_active(g, date_key, offset_minutes)]


def all_goals_met(goals: list[Goal], counts: dict[int, int]) -> bool:
    """True when at least one goal is given and each meets its daily target."""
    return bool(goals) and all(counts.get(g.id, 0) >= g.daily_target_count for g in goals)


def compute_summary_for_date(
    date_key: str,
    goals: Iterable[Goal],
    index: CompletionIndex,
    offset_minutes: int,
) -> DailySummary | None:
    """Totals for one date; None when no goal was active (never stored)."""
    active = active_goals_on(goals, date_key, offset_minutes)
    if not active:
        return None
    counts = index.get(date_key, {})
    completed = sum(1 for g in active if counts.get(g.id, 0) >= g.daily_target_count)
    return DailySummary(
        date=date_key,
        total_goals=len(active),
        completed_goals=completed,
        success_rate=completed / len(active),
    )


def build_items(
    date_key: str,
    goals: Iterable[Goal],
    index: CompletionIndex,
    offset_minutes: int,
) -> list[TimelineItem]:
    counts = index.get(date_key, {})
    return [
        TimelineItem(
            goal_id=g.id,
            title=g.title,
            target=g.daily_target_count,
            count=counts.get(g.id, 0),
            icon=g.icon,
            color=g.color,
        )
        for g in active_goals_on(goals, date_key, offset_minutes)
    ]


# ---------------------------------------------------------------------------
# Write paths
# ---------------------------------------------------------------------------


async def refresh_daily_summary(
    session: AsyncSession,
    owner_id: str,
    date_key: str,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> DailySummary | None:
    """Recompute one past date's cached row (deleted when no goal was active)."""
    goals = await store.list_goals(session, owner_id)
    counts = await store.completion_counts_for_date(session, owner_id, date_key)
    summary = compute_summary_for_date(date_key, goals, {date_key: counts}, offset_minutes)
    if summary is None:
        await store.delete_summaries(session, owner_id, [date_key])
    else:
        await store.upsert_summaries(session, owner_id, [summary], to_iso(now or utc_now()))
    return summary


async def sync_summary_event(
    session: AsyncSession,
    owner_id: str,
    date_key: str,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> bool:
    """Make the date's ``summary`` event reflect whether all active goals are met.

    Returns True when a fresh summary event was written.
    """
    goals = await store.list_goals(session, owner_id)
    counts = await store.completion_counts_for_date(session, owner_id, date_key)
    active = active_goals_on(goals, date_key, offset_minutes)

    await store.delete_events(session, owner_id, date_key=date_key, event_type="summary")
    if not all_goals_met(active, counts):
        return False

    items = build_items(date_key, active, {date_key: counts}, offset_minutes)
    await store.append_event(
        session,
        owner_id,
        date_key,
        "summary",
        payload={
            "items": [i.model_dump(by_alias=True) for i in items],
            "allGoalsCompleted": True,
        },
        created_at=to_iso(now or utc_now()),
    )
    logger.debug("Summary event written owner=%s date=%s goals=%d", owner_id, date_key, len(items))
    return True


async def backfill_daily_summaries(
    session: AsyncSession,
    owner_id: str,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> int:
    """Recompute every past date from the first goal's local creation day to yesterday.

    Returns the number of rows upserted. Commits.
    """
    now = now or utc_now()
    goals = await store.list_goals(session, owner_id)
    if not goals:
        return 0

    created = [parse_instant(g.created_at) for g in goals]
    if any(c is None for c in created):
        logger.warning("Backfill skipped for owner=%s: unparseable goal created_at", owner_id)
        return 0
    first_created = min(created)  # type: ignore[type-var]

    today_start = start_of_day_local_as_utc(now, offset_minutes)
    yesterday_key = to_date_key(add_days_utc(today_start, -1), offset_minutes)
    cursor = start_of_day_local_as_utc(first_created, offset_minutes)
    if to_date_key(cursor, offset_minutes) > yesterday_key:
        return 0

    index = build_completion_index(await store.list_completions(session, owner_id))
    rows: list[DailySummary] = []
    while cursor < today_start:
        key = to_date_key(cursor, offset_minutes)
        summary = compute_summary_for_date(key, goals, index, offset_minutes)
        if summary is not None:
            rows.append(summary)
        cursor = add_days_utc(cursor, 1)

    upserted = await store.upsert_summaries(session, owner_id, rows, to_iso(now))
    await session.commit()
    logger.info("Backfilled %d daily summaries owner=%s", upserted, owner_id)
    return upserted
