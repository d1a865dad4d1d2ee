"""Timeline aggregator — merges completions, notes and goal lifecycle events
into a day-bucketed feed (or a flat cursor-paginated one), refreshing the
daily summary cache for the window as a side effect of reading.

Stored rows are never trusted: unknown event types are skipped and every
payload field degrades to a default instead of raising.
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.tracker import store
from app.tracker.heatmap import build_timeline_heatmap
from app.tracker.models import (
    DEFAULT_COLOR,
    DEFAULT_ICON,
    CheckinEvent,
    DailySummary,
    Goal,
    GoalLifecycleEvent,
    NoteEvent,
    SummaryEvent,
    TimelineData,
    TimelineDay,
    TimelineEvent,
    TimelineItem,
    TimelinePage,
)
from app.tracker.payloads import (
    CheckinPayload,
    LifecyclePayload,
    NotePayload,
    SummaryPayload,
    parse_item,
)
from app.tracker.store import EventRecord, NoteRecord
from app.tracker.streaks import compute_timeline_streak
from app.tracker.summaries import (
    CompletionIndex,
    active_goals_on,
    all_goals_met,
    build_completion_index,
    build_items,
    compute_summary_for_date,
)
from app.tracker.time_resolver import (
    build_date_keys,
    is_date_key,
    start_of_day_local_as_utc,
    to_date_key,
    to_iso,
    utc_now,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Cursor
# ---------------------------------------------------------------------------


def encode_cursor(date_key: str, created_at: str, event_id: int) -> str:
    raw = f"{date_key}|{created_at}|{event_id}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str | None) -> tuple[str, str, int] | None:
    """Inverse of encode_cursor; None for anything malformed."""
    if not cursor:
        return None
    try:
        padded = cursor.strip() + "=" * (-len(cursor.strip()) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (ValueError, UnicodeError):
        logger.warning("Ignoring undecodable timeline cursor")
        return None
    parts = raw.split("|")
    if len(parts) != 3:
        logger.warning("Ignoring malformed timeline cursor")
        return None
    date_key, created_at, raw_id = parts
    if not is_date_key(date_key) or not created_at:
        logger.warning("Ignoring malformed timeline cursor")
        return None
    try:
        event_id = int(raw_id)
    except ValueError:
        logger.warning("Ignoring malformed timeline cursor")
        return None
    return date_key, created_at, event_id


# ---------------------------------------------------------------------------
# Row → event transformation
# ---------------------------------------------------------------------------


def _checkin_goal_id(row: EventRecord, payload: CheckinPayload) -> int | None:
    return row.goal_id if row.goal_id is not None else payload.goal_id


def _to_checkin(
    row: EventRecord,
    payload: CheckinPayload,
    goal_id: int | None,
    goals_by_id: dict[int, Goal],
    index: CompletionIndex,
) -> CheckinEvent:
    goal = goals_by_id.get(goal_id) if goal_id is not None else None
    if payload.new_count is not None:
        new_count = payload.new_count
    else:
        new_count = index.get(row.date, {}).get(goal_id, 0) if goal_id is not None else 0
    if payload.target is not None:
        target = payload.target
    else:
        target = goal.daily_target_count if goal else 1
    return CheckinEvent(
        id=f"event-{row.id}",
        date=row.date,
        created_at=row.created_at,
        goal_id=goal_id,
        title=goal.title if goal else (payload.title or ""),
        icon=goal.icon if goal else (payload.icon or DEFAULT_ICON),
        color=goal.color if goal else (payload.color or DEFAULT_COLOR),
        delta=payload.delta,
        new_count=new_count,
        target=target,
    )


def _to_lifecycle(row: EventRecord, goals_by_id: dict[int, Goal]) -> GoalLifecycleEvent:
    payload = LifecyclePayload.parse(row.payload)
    goal_id = row.goal_id if row.goal_id is not None else payload.goal_id
    # Deleted goals have no row left; their payload snapshot is all there is.
    goal = goals_by_id.get(goal_id) if goal_id is not None else None
    return GoalLifecycleEvent(
        id=f"event-{row.id}",
        type=row.type,
        date=row.date,
        created_at=row.created_at,
        goal_id=goal_id,
        title=goal.title if goal else (payload.title or ""),
        icon=goal.icon if goal else (payload.icon or DEFAULT_ICON),
        color=goal.color if goal else (payload.color or DEFAULT_COLOR),
    )


def _to_summary(row: EventRecord) -> SummaryEvent:
    payload = SummaryPayload.parse(row.payload)
    items = [TimelineItem(**item) for item in map(parse_item, payload.items) if item is not None]
    return SummaryEvent(
        id=f"event-{row.id}",
        date=row.date,
        created_at=row.created_at,
        items=items,
        all_goals_completed=payload.all_goals_completed,
    )


def transform_rows(
    rows: Iterable[EventRecord],
    goals_by_id: dict[int, Goal],
    index: CompletionIndex,
) -> list[TimelineEvent]:
    """Typed events in input order; rows must arrive newest first.

    Only the first check-in seen per (date, goal) is kept.
    """
    events: list[TimelineEvent] = []
    seen_checkins: set[tuple[str, int | None]] = set()
    for row in rows:
        if row.type == "note":
            payload = NotePayload.parse(row.payload)
            events.append(
                NoteEvent(
                    id=f"event-{row.id}",
                    date=row.date,
                    created_at=row.created_at,
                    note_id=payload.note_id,
                    content=payload.content,
                )
            )
        elif row.type == "checkin":
            payload = CheckinPayload.parse(row.payload)
            goal_id = _checkin_goal_id(row, payload)
            key = (row.date, goal_id)
            if key in seen_checkins:
                continue
            seen_checkins.add(key)
            events.append(_to_checkin(row, payload, goal_id, goals_by_id, index))
        elif row.type in ("goal_created", "goal_deleted"):
            events.append(_to_lifecycle(row, goals_by_id))
        elif row.type == "summary":
            events.append(_to_summary(row))
        else:
            logger.debug("Skipping timeline event %s of unknown type %r", row.id, row.type)
    return events


def _legacy_note_events(notes: Iterable[NoteRecord], events: Iterable[TimelineEvent]) -> list[NoteEvent]:
    """Notes written before note events existed, shown as events of their own."""
    referenced = {e.note_id for e in events if isinstance(e, NoteEvent) and e.note_id is not None}
    return [
        NoteEvent(
            id=f"note-{n.id}",
            date=n.date,
            created_at=n.created_at,
            note_id=n.id,
            content=n.content,
        )
        for n in notes
        if n.id not in referenced
    ]


async def _drop_superseded_orphans(
    session: AsyncSession,
    owner_id: str,
    rows: list[EventRecord],
) -> list[EventRecord]:
    """Drop orphaned check-ins that a newer orphan for the same (date, goalId) supersedes.

    The paginated SQL only collapses check-ins by the goal_id column, which is
    NULL once the goal is deleted; here the payload goalId is matched instead.
    """
    orphan_dates = sorted({r.date for r in rows if r.type == "checkin" and r.goal_id is None})
    if not orphan_dates:
        return rows

    newest: dict[tuple[str, int | None], tuple[str, int]] = {}
    for orphan in await store.list_orphan_checkins(session, owner_id, orphan_dates):
        key = (orphan.date, CheckinPayload.parse(orphan.payload).goal_id)
        newest[key] = max(newest.get(key, ("", 0)), (orphan.created_at, orphan.id))

    def superseded(row: EventRecord) -> bool:
        if row.type != "checkin" or row.goal_id is not None:
            return False
        key = (row.date, CheckinPayload.parse(row.payload).goal_id)
        return (row.created_at, row.id) < newest.get(key, ("", 0))

    return [r for r in rows if not superseded(r)]


# ---------------------------------------------------------------------------
# Streak context shared by both read paths
# ---------------------------------------------------------------------------


async def _streak(
    session: AsyncSession,
    owner_id: str,
    goals: list[Goal],
    index: CompletionIndex,
    today: str,
    offset_minutes: int,
    now: datetime,
) -> int:
    summaries = await store.list_summaries(session, owner_id, before=today)
    today_summary = compute_summary_for_date(today, goals, index, offset_minutes)
    return compute_timeline_streak(goals, index, summaries, today_summary, offset_minutes, now)


# ---------------------------------------------------------------------------
# Day-bucketed feed
# ---------------------------------------------------------------------------


async def get_timeline_data(
    session: AsyncSession,
    owner_id: str,
    days: int | None = None,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> TimelineData:
    """Day buckets for the ``days`` local dates ending today, newest first.

    Recomputes and upserts the DailySummary of every past date in the window
    before reading, then commits.
    """
    days = days if days and days > 0 else settings.timeline_days
    now = now or utc_now()
    today_start = start_of_day_local_as_utc(now, offset_minutes)
    today = to_date_key(today_start, offset_minutes)

    goals = await store.list_goals(session, owner_id)
    index = build_completion_index(await store.list_completions(session, owner_id))
    dates = build_date_keys(days, offset_minutes, today_start)

    computed: dict[str, DailySummary] = {}
    empty_dates: list[str] = []
    for date_key in dates:
        if date_key == today:
            continue
        summary = compute_summary_for_date(date_key, goals, index, offset_minutes)
        if summary is None:
            empty_dates.append(date_key)
        else:
            computed[date_key] = summary
    await store.upsert_summaries(session, owner_id, computed.values(), to_iso(now))
    await store.delete_summaries(session, owner_id, empty_dates)
    logger.debug(
        "Timeline window owner=%s days=%d summaries=%d empty=%d",
        owner_id,
        days,
        len(computed),
        len(empty_dates),
    )

    rows = await store.list_events_for_dates(session, owner_id, dates)
    notes = await store.list_notes_for_dates(session, owner_id, dates)
    events = transform_rows(rows, {g.id: g for g in goals}, index)
    events.extend(_legacy_note_events(notes, events))

    events_by_date: dict[str, list[TimelineEvent]] = {}
    for event in events:
        events_by_date.setdefault(event.date, []).append(event)
    for bucket in events_by_date.values():
        bucket.sort(key=lambda e: e.created_at, reverse=True)

    today_summary = compute_summary_for_date(today, goals, index, offset_minutes)
    timeline_days: list[TimelineDay] = []
    for date_key in dates:
        is_today = date_key == today
        all_items = build_items(date_key, goals, index, offset_minutes)
        items = all_items if is_today else [i for i in all_items if i.count > 0]

        summary = today_summary if is_today else computed.get(date_key)
        if summary is not None:
            all_completed = summary.all_goals_completed
        else:
            all_completed = all_goals_met(active_goals_on(goals, date_key, offset_minutes), index.get(date_key, {}))

        day_events = events_by_date.get(date_key, [])
        if not is_today and all_completed and not any(e.type == "summary" for e in day_events):
            synthesized = SummaryEvent(
                id=f"summary-{date_key}",
                date=date_key,
                created_at=f"{date_key}T23:59:59.999Z",
                items=all_items,
                all_goals_completed=True,
            )
            day_events = [synthesized, *day_events]

        if not is_today and not items and not any(e.type != "summary" for e in day_events):
            continue
        timeline_days.append(
            TimelineDay(
                date=date_key,
                items=items,
                all_goals_completed=all_completed,
                events=day_events,
            )
        )

    streak = await _streak(session, owner_id, goals, index, today, offset_minutes, now)
    heatmap = build_timeline_heatmap(index, days, offset_minutes, now)
    await session.commit()
    return TimelineData(days=timeline_days, streak=streak, heatmap=heatmap)


# ---------------------------------------------------------------------------
# Flat, cursor-paginated feed
# ---------------------------------------------------------------------------


async def get_timeline_events_infinite(
    session: AsyncSession,
    owner_id: str,
    limit: int | None = None,
    cursor: str | None = None,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> TimelinePage:
    """One page of events in (date, created_at, id) descending order.

    ``next_cursor`` resumes strictly after the last row of this page and is
    None on the final page. A malformed cursor restarts from the top.
    """
    limit = limit if limit and limit > 0 else settings.timeline_page_size
    limit = min(limit, settings.timeline_page_max)
    now = now or utc_now()
    today = to_date_key(start_of_day_local_as_utc(now, offset_minutes), offset_minutes)

    after = decode_cursor(cursor)
    rows = await store.list_events_paginated(session, owner_id, after, limit + 1)
    has_more = len(rows) > limit
    page_rows = rows[:limit]
    visible_rows = await _drop_superseded_orphans(session, owner_id, page_rows)

    goals = await store.list_goals(session, owner_id)
    index = build_completion_index(await store.list_completions(session, owner_id))
    events = transform_rows(visible_rows, {g.id: g for g in goals}, index)

    next_cursor = None
    if has_more and page_rows:
        last = page_rows[-1]
        next_cursor = encode_cursor(last.date, last.created_at, last.id)

    streak = await _streak(session, owner_id, goals, index, today, offset_minutes, now)
    heatmap = build_timeline_heatmap(index, settings.heatmap_days, offset_minutes, now)
    return TimelinePage(events=events, next_cursor=next_cursor, streak=streak, heatmap=heatmap)
