"""Fixed-length heatmap arrays, oldest first, ending today."""

from __future__ import annotations

from datetime import datetime
from typing import Mapping

from app.tracker.models import HeatmapDay, TimelineHeatmapDay
from app.tracker.summaries import CompletionIndex
from app.tracker.time_resolver import add_days_utc, start_of_day_local_as_utc, to_date_key, utc_now


def heatmap_date_keys(days: int, offset_minutes: int = 0, now: datetime | None = None) -> list[str]:
    if days <= 0:
        return []
    start = add_days_utc(start_of_day_local_as_utc(now or utc_now(), offset_minutes), -(days - 1))
    return [to_date_key(add_days_utc(start, i), offset_minutes) for i in range(days)]


def build_goal_heatmap(
    counts_by_date: Mapping[str, int],
    days: int,
    target: int,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> list[HeatmapDay]:
    return [
        HeatmapDay(date=key, count=counts_by_date.get(key, 0), target=target)
        for key in heatmap_date_keys(days, offset_minutes, now)
    ]


def build_timeline_heatmap(
    index: CompletionIndex,
    days: int,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> list[TimelineHeatmapDay]:
    """Per-day completion totals summed across all goals."""
    return [
        TimelineHeatmapDay(date=key, count=sum(index.get(key, {}).values()))
        for key in heatmap_date_keys(days, offset_minutes, now)
    ]
