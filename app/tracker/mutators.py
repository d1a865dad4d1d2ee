"""Goal, completion and note writes, with their timeline side effects.

Each function validates its input, performs the writes in the session's
transaction and commits once at the end.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.tracker import errors, store
from app.tracker.models import DEFAULT_COLOR, DEFAULT_ICON, CompletionResult, Goal, TimelineNote
from app.tracker.payloads import NotePayload
from app.tracker.summaries import refresh_daily_summary, sync_summary_event
from app.tracker.text import effective_length
from app.tracker.time_resolver import is_date_key, to_date_key, to_iso, utc_now

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def coerce_target(value: Any) -> int | None:
    """Positive integer target (floats floored), or None when invalid."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        return None
    target = math.floor(value)
    return target if target >= 1 else None


def _resolve_date(date: str | None, offset_minutes: int, now: datetime) -> str:
    key = (date or "").strip()
    if not key:
        return to_date_key(now, offset_minutes)
    if not is_date_key(key):
        raise errors.InvalidInputError(errors.INVALID_DATE)
    return key


def _lifecycle_payload(goal: Goal) -> dict[str, Any]:
    return {
        "goalId": goal.id,
        "title": goal.title,
        "description": goal.description,
        "icon": goal.icon,
        "color": goal.color,
        "target": goal.daily_target_count,
    }


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


async def create_goal(
    session: AsyncSession,
    owner_id: str,
    title: str,
    description: str | None = None,
    daily_target_count: Any = None,
    icon: str | None = None,
    color: str | None = None,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> Goal:
    """Insert a goal; an unset or invalid target falls back to 1."""
    now = now or utc_now()
    title = (title or "").strip()
    if not title:
        raise errors.InvalidInputError(errors.TITLE_REQUIRED)

    created_at = to_iso(now)
    goal = await store.insert_goal(
        session,
        owner_id,
        title=title,
        description=(description or "").strip(),
        daily_target_count=coerce_target(daily_target_count) or 1,
        icon=(icon or "").strip() or DEFAULT_ICON,
        color=(color or "").strip() or DEFAULT_COLOR,
        created_at=created_at,
    )
    await store.append_event(
        session,
        owner_id,
        to_date_key(now, offset_minutes),
        "goal_created",
        goal_id=goal.id,
        payload=_lifecycle_payload(goal),
        created_at=created_at,
    )
    await sync_summary_event(session, owner_id, to_date_key(now, offset_minutes), offset_minutes, now)
    await session.commit()
    logger.info("Goal created owner=%s id=%d title=%r", owner_id, goal.id, goal.title)
    return goal


async def update_goal(
    session: AsyncSession,
    owner_id: str,
    goal_id: int,
    *,
    title: str | None = _UNSET,
    description: str | None = _UNSET,
    daily_target_count: Any = _UNSET,
    icon: str | None = _UNSET,
    color: str | None = _UNSET,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> Goal:
    """Partial update; only the keyword arguments actually passed are applied."""
    fields: dict[str, Any] = {}
    if title is not _UNSET:
        fields["title"] = (title or "").strip()
        if not fields["title"]:
            raise errors.InvalidInputError(errors.TITLE_REQUIRED)
    if description is not _UNSET:
        fields["description"] = (description or "").strip()
    if daily_target_count is not _UNSET:
        target = coerce_target(daily_target_count)
        if target is None:
            raise errors.InvalidInputError(errors.DAILY_TARGET_INVALID)
        fields["daily_target_count"] = target
    if icon is not _UNSET:
        fields["icon"] = (icon or "").strip() or DEFAULT_ICON
    if color is not _UNSET:
        fields["color"] = (color or "").strip() or DEFAULT_COLOR
    now = now or utc_now()
    fields["updated_at"] = to_iso(now)

    goal = await store.update_goal_fields(session, owner_id, goal_id, fields)
    if goal is None:
        raise errors.NotFoundError(errors.GOAL_NOT_FOUND)
    if "daily_target_count" in fields:
        await sync_summary_event(session, owner_id, to_date_key(now, offset_minutes), offset_minutes, now)
    await session.commit()
    logger.info("Goal updated owner=%s id=%d fields=%s", owner_id, goal_id, sorted(fields))
    return goal


async def update_goal_target(
    session: AsyncSession,
    owner_id: str,
    goal_id: int,
    daily_target_count: Any,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> Goal:
    target = coerce_target(daily_target_count)
    if target is None:
        raise errors.InvalidInputError(errors.DAILY_TARGET_INVALID)
    now = now or utc_now()
    goal = await store.update_goal_fields(
        session,
        owner_id,
        goal_id,
        {"daily_target_count": target, "updated_at": to_iso(now)},
    )
    if goal is None:
        raise errors.NotFoundError(errors.GOAL_NOT_FOUND)
    await sync_summary_event(session, owner_id, to_date_key(now, offset_minutes), offset_minutes, now)
    await session.commit()
    logger.info("Goal target owner=%s id=%d target=%d", owner_id, goal_id, target)
    return goal


async def delete_goal(
    session: AsyncSession,
    owner_id: str,
    goal_id: int,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> bool:
    """Snapshot the goal into a goal_deleted event, then remove it.

    Returns False (and writes nothing) when the goal does not exist.
    """
    goal = await store.get_goal(session, owner_id, goal_id)
    if goal is None:
        return False
    now = now or utc_now()
    await store.append_event(
        session,
        owner_id,
        to_date_key(now, offset_minutes),
        "goal_deleted",
        goal_id=goal.id,
        payload=_lifecycle_payload(goal),
        created_at=to_iso(now),
    )
    # Once goal_id is nulled the paginated query can no longer collapse duplicates.
    await store.deduplicate_checkin_events(session, owner_id, goal_id=goal_id)
    await store.delete_goal_row(session, owner_id, goal_id)
    await sync_summary_event(session, owner_id, to_date_key(now, offset_minutes), offset_minutes, now)
    await session.commit()
    logger.info("Goal deleted owner=%s id=%d", owner_id, goal_id)
    return True


# ---------------------------------------------------------------------------
# Completions
# ---------------------------------------------------------------------------


async def record_completion(
    session: AsyncSession,
    owner_id: str,
    goal_id: int,
    count: int = 1,
    date: str | None = None,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> CompletionResult:
    """Add ``count`` (may be negative) to the goal's counter for ``date``.

    Replaces the (date, goal) check-in event, re-syncs the date's summary
    event and, for a past date, refreshes its cached DailySummary.
    """
    now = now or utc_now()
    date_key = _resolve_date(date, offset_minutes, now)
    goal = await store.get_goal(session, owner_id, goal_id)
    if goal is None:
        raise errors.NotFoundError(errors.GOAL_NOT_FOUND)

    created_at = to_iso(now)
    new_count = await store.increment_completion(session, owner_id, goal_id, date_key, count, created_at)

    await store.delete_events(session, owner_id, date_key=date_key, event_type="checkin", goal_id=goal_id)
    await store.append_event(
        session,
        owner_id,
        date_key,
        "checkin",
        goal_id=goal_id,
        payload={
            "goalId": goal_id,
            "title": goal.title,
            "icon": goal.icon,
            "color": goal.color,
            "delta": count,
            "newCount": new_count,
            "target": goal.daily_target_count,
        },
        created_at=created_at,
    )

    await sync_summary_event(session, owner_id, date_key, offset_minutes, now)
    if date_key < to_date_key(now, offset_minutes):
        await refresh_daily_summary(session, owner_id, date_key, offset_minutes, now)

    await session.commit()
    logger.info(
        "Completion recorded owner=%s goal=%d date=%s delta=%d count=%d",
        owner_id,
        goal_id,
        date_key,
        count,
        new_count,
    )
    return CompletionResult(goal_id=goal_id, date=date_key, count=new_count)


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


async def create_note(
    session: AsyncSession,
    owner_id: str,
    content: str,
    date: str | None = None,
    offset_minutes: int = 0,
    now: datetime | None = None,
) -> TimelineNote:
    now = now or utc_now()
    content = (content or "").strip()
    if not content:
        raise errors.InvalidInputError(errors.CONTENT_REQUIRED)
    if effective_length(content) > settings.note_max_length:
        raise errors.InvalidInputError(errors.CONTENT_TOO_LONG)
    date_key = _resolve_date(date, offset_minutes, now)

    created_at = to_iso(now)
    note = await store.insert_note(session, owner_id, content, date_key, created_at)
    await store.append_event(
        session,
        owner_id,
        date_key,
        "note",
        payload={"noteId": note.id, "content": note.content},
        created_at=created_at,
    )
    await session.commit()
    logger.info("Note created owner=%s id=%d date=%s", owner_id, note.id, date_key)
    return TimelineNote(id=note.id, content=note.content, date=note.date, created_at=note.created_at)


async def delete_note(session: AsyncSession, owner_id: str, note_id: int | None) -> bool:
    """Remove the note row and every note event pointing at it.

    Returns False when neither existed.
    """
    if not note_id:
        raise errors.InvalidInputError(errors.NOTE_ID_REQUIRED)
    event_ids = [
        e.id
        for e in await store.list_events_of_type(session, owner_id, "note")
        if NotePayload.parse(e.payload).note_id == note_id
    ]
    removed_events = await store.delete_events(session, owner_id, event_type="note", ids=event_ids)
    removed_rows = await store.delete_note_row(session, owner_id, note_id)
    await session.commit()
    logger.info("Note deleted owner=%s id=%d events=%d", owner_id, note_id, removed_events)
    return bool(removed_rows or removed_events)
