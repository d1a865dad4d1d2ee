"""Consecutive-day streaks, walked backward from today or yesterday."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Mapping

from app.tracker.models import DailySummary, Goal
from app.tracker.summaries import CompletionIndex, active_goals_on, all_goals_met, compute_summary_for_date
from app.tracker.time_resolver import add_days_utc, start_of_day_local_as_utc, to_date_key, utc_now


def summary_qualifies(summary: DailySummary | None) -> bool:
    return summary is not None and summary.total_goals > 0 and summary.completed_goals >= summary.total_goals


def summary_streak(
    summaries: Mapping[str, DailySummary],
    today_summary: DailySummary | None,
    offset_minutes: int = 0,
    now: datetime | None = None,
    fill: Callable[[str], DailySummary | None] | None = None,
) -> int:
    """Cached days from yesterday backward, plus one if today already qualifies.

    Today is still open, so an incomplete today never breaks the streak.
    Dates missing from ``summaries`` are looked up through ``fill`` when given.
    """

    def lookup(key: str) -> DailySummary | None:
        cached = summaries.get(key)
        if cached is None and fill is not None:
            return fill(key)
        return cached

    cursor = add_days_utc(start_of_day_local_as_utc(now or utc_now(), offset_minutes), -1)
    streak = 0
    while summary_qualifies(lookup(to_date_key(cursor, offset_minutes))):
        streak += 1
        cursor = add_days_utc(cursor, -1)
    if summary_qualifies(today_summary):
        streak += 1
    return streak


def goal_streak(
    counts_by_date: Mapping[str, int],
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> int:
    """Single-goal streak: days with any completion, from today backward."""
    cursor = start_of_day_local_as_utc(now or utc_now(), offset_minutes)
    streak = 0
    while counts_by_date.get(to_date_key(cursor, offset_minutes), 0) > 0:
        streak += 1
        cursor = add_days_utc(cursor, -1)
    return streak


def all_goals_streak(
    goals: list[Goal],
    index: CompletionIndex,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> int:
    """Days on which every active goal met target, from today backward.

    A day with no active goal ends the walk.
    """
    if not index:
        return 0
    earliest = min(index)
    cursor = start_of_day_local_as_utc(now or utc_now(), offset_minutes)
    streak = 0
    while True:
        key = to_date_key(cursor, offset_minutes)
        if key < earliest:
            break
        active = active_goals_on(goals, key, offset_minutes)
        if not all_goals_met(active, index.get(key, {})):
            break
        streak += 1
        cursor = add_days_utc(cursor, -1)
    return streak


def compute_timeline_streak(
    goals: list[Goal],
    index: CompletionIndex,
    summaries: Mapping[str, DailySummary],
    today_summary: DailySummary | None,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> int:
    """Summary-based when any past summary is cached, raw completions otherwise.

    Uncached past dates are recomputed from ``index``, so a cache that lags
    behind (nothing read since midnight) walks the same days as a fresh one.
    """
    if not goals:
        return 0
    if summaries:

        def fill(key: str) -> DailySummary | None:
            return compute_summary_for_date(key, goals, index, offset_minutes)

        return summary_streak(summaries, today_summary, offset_minutes, now, fill=fill)
    return all_goals_streak(goals, index, offset_minutes, now)
