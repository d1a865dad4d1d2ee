"""Event log store — async persistence for goals, completions, timeline events,
notes and daily summaries.

Pure persistence: no business rules. Every statement is scoped by owner_id.
SQL is plain text that runs unchanged on PostgreSQL and SQLite (>= 3.35 for
RETURNING). Database errors propagate to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.tracker.models import DailySummary, Goal
from app.tracker.payloads import dump_payload

EVENT_TYPES = ("note", "checkin", "goal_created", "goal_deleted", "summary")

_GOAL_COLUMNS = "id, title, description, daily_target_count, icon, color, created_at, updated_at"
_EVENT_COLUMNS = "id, date, type, goal_id, payload, created_at"
_NOTE_COLUMNS = "id, content, date, created_at"
_GOAL_UPDATABLE = ("title", "description", "daily_target_count", "icon", "color", "updated_at")


@dataclass(frozen=True, slots=True)
class CompletionRecord:
    goal_id: int
    date: str
    count: int


@dataclass(frozen=True, slots=True)
class EventRecord:
    id: int
    date: str
    type: str
    goal_id: int | None
    payload: Any  # raw JSON text; parse with app.tracker.payloads
    created_at: str


@dataclass(frozen=True, slots=True)
class NoteRecord:
    id: int
    content: str
    date: str
    created_at: str


def _dicts(result) -> list[dict[str, Any]]:
    columns = list(result.keys())
    return [dict(zip(columns, r)) for r in result.fetchall()]


def _event(row: dict[str, Any]) -> EventRecord:
    return EventRecord(
        id=row["id"],
        date=row["date"],
        type=row["type"],
        goal_id=row["goal_id"],
        payload=row["payload"],
        created_at=row["created_at"],
    )


def _note(row: dict[str, Any]) -> NoteRecord:
    return NoteRecord(id=row["id"], content=row["content"], date=row["date"], created_at=row["created_at"])


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


async def list_goals(session: AsyncSession, owner_id: str) -> list[Goal]:
    """All goals for the owner, newest first."""
    result = await session.execute(
        text(
            f"SELECT {_GOAL_COLUMNS} FROM goals "
            "WHERE owner_id = :owner ORDER BY created_at DESC, id DESC"
        ),
        {"owner": owner_id},
    )
    return [Goal.model_validate(r) for r in _dicts(result)]


async def get_goal(session: AsyncSession, owner_id: str, goal_id: int) -> Goal | None:
    result = await session.execute(
        text(f"SELECT {_GOAL_COLUMNS} FROM goals WHERE owner_id = :owner AND id = :goal_id"),
        {"owner": owner_id, "goal_id": goal_id},
    )
    rows = _dicts(result)
    return Goal.model_validate(rows[0]) if rows else None


async def insert_goal(
    session: AsyncSession,
    owner_id: str,
    *,
    title: str,
    description: str | None,
    daily_target_count: int,
    icon: str,
    color: str,
    created_at: str,
) -> Goal:
    result = await session.execute(
        text(
            "INSERT INTO goals "
            "(owner_id, title, description, daily_target_count, icon, color, created_at, updated_at) "
            "VALUES (:owner, :title, :description, :target, :icon, :color, :created_at, :created_at) "
            f"RETURNING {_GOAL_COLUMNS}"
        ),
        {
            "owner": owner_id,
            "title": title,
            "description": description,
            "target": daily_target_count,
            "icon": icon,
            "color": color,
            "created_at": created_at,
        },
    )
    return Goal.model_validate(_dicts(result)[0])


async def update_goal_fields(
    session: AsyncSession,
    owner_id: str,
    goal_id: int,
    fields: dict[str, Any],
) -> Goal | None:
    """Partial update of whitelisted columns. Returns None when the goal is missing."""
    columns = [c for c in _GOAL_UPDATABLE if c in fields]
    if not columns:
        return await get_goal(session, owner_id, goal_id)
    assignments = ", ".join(f"{c} = :{c}" for c in columns)
    params = {c: fields[c] for c in columns}
    params.update({"owner": owner_id, "goal_id": goal_id})
    result = await session.execute(
        text(
            f"UPDATE goals SET {assignments} "
            f"WHERE owner_id = :owner AND id = :goal_id RETURNING {_GOAL_COLUMNS}"
        ),
        params,
    )
    rows = _dicts(result)
    return Goal.model_validate(rows[0]) if rows else None


async def delete_goal_row(session: AsyncSession, owner_id: str, goal_id: int) -> int:
    """Hard delete; completions cascade, timeline events keep a NULL goal_id."""
    result = await session.execute(
        text("DELETE FROM goals WHERE owner_id = :owner AND id = :goal_id"),
        {"owner": owner_id, "goal_id": goal_id},
    )
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Completions
# ---------------------------------------------------------------------------


async def list_completions(
    session: AsyncSession,
    owner_id: str,
    goal_ids: Sequence[int] | None = None,
) -> list[CompletionRecord]:
    query = "SELECT goal_id, date, count FROM goal_completions WHERE owner_id = :owner"
    params: dict[str, Any] = {"owner": owner_id}
    stmt_binds = []
    if goal_ids is not None:
        if not goal_ids:
            return []
        query += " AND goal_id IN :goal_ids"
        params["goal_ids"] = list(goal_ids)
        stmt_binds.append(bindparam("goal_ids", expanding=True))
    query += " ORDER BY date, goal_id"
    stmt = text(query).bindparams(*stmt_binds) if stmt_binds else text(query)
    result = await session.execute(stmt, params)
    return [CompletionRecord(goal_id=r["goal_id"], date=r["date"], count=r["count"]) for r in _dicts(result)]


async def completion_counts_for_date(session: AsyncSession, owner_id: str, date_key: str) -> dict[int, int]:
    result = await session.execute(
        text("SELECT goal_id, count FROM goal_completions WHERE owner_id = :owner AND date = :date"),
        {"owner": owner_id, "date": date_key},
    )
    counts: dict[int, int] = {}
    for r in _dicts(result):
        counts[r["goal_id"]] = counts.get(r["goal_id"], 0) + (r["count"] or 0)
    return counts


async def increment_completion(
    session: AsyncSession,
    owner_id: str,
    goal_id: int,
    date_key: str,
    delta: int,
    created_at: str,
) -> int:
    """Insert-or-add ``delta`` to the (goal, date) counter; returns the new count."""
    result = await session.execute(
        text(
            "INSERT INTO goal_completions (owner_id, goal_id, date, count, created_at) "
            "VALUES (:owner, :goal_id, :date, :delta, :created_at) "
            "ON CONFLICT (goal_id, date) DO UPDATE SET count = goal_completions.count + excluded.count "
            "RETURNING count"
        ),
        {"owner": owner_id, "goal_id": goal_id, "date": date_key, "delta": delta, "created_at": created_at},
    )
    return int(result.scalar_one())


# ---------------------------------------------------------------------------
# Timeline events
# ---------------------------------------------------------------------------


async def append_event(
    session: AsyncSession,
    owner_id: str,
    date_key: str,
    event_type: str,
    *,
    goal_id: int | None = None,
    payload: dict[str, Any] | None = None,
    created_at: str,
) -> int:
    result = await session.execute(
        text(
            "INSERT INTO timeline_events (owner_id, date, type, goal_id, payload, created_at) "
            "VALUES (:owner, :date, :type, :goal_id, :payload, :created_at) RETURNING id"
        ),
        {
            "owner": owner_id,
            "date": date_key,
            "type": event_type,
            "goal_id": goal_id,
            "payload": dump_payload(payload),
            "created_at": created_at,
        },
    )
    return int(result.scalar_one())


async def delete_events(
    session: AsyncSession,
    owner_id: str,
    *,
    date_key: str | None = None,
    event_type: str | None = None,
    goal_id: int | None = None,
    ids: Sequence[int] | None = None,
) -> int:
    """Delete events matching every given predicate; returns rows removed."""
    clauses = ["owner_id = :owner"]
    params: dict[str, Any] = {"owner": owner_id}
    binds = []
    if date_key is not None:
        clauses.append("date = :date")
        params["date"] = date_key
    if event_type is not None:
        clauses.append("type = :type")
        params["type"] = event_type
    if goal_id is not None:
        clauses.append("goal_id = :goal_id")
        params["goal_id"] = goal_id
    if ids is not None:
        if not ids:
            return 0
        clauses.append("id IN :ids")
        params["ids"] = list(ids)
        binds.append(bindparam("ids", expanding=True))
    stmt = text(f"DELETE FROM timeline_events WHERE {' AND '.join(clauses)}")
    if binds:
        stmt = stmt.bindparams(*binds)
    result = await session.execute(stmt, params)
    return result.rowcount or 0


async def list_events_for_dates(
    session: AsyncSession,
    owner_id: str,
    date_keys: Sequence[str],
) -> list[EventRecord]:
    """Events on the given dates, ordered (date desc, created_at desc, id desc)."""
    if not date_keys:
        return []
    stmt = text(
        f"SELECT {_EVENT_COLUMNS} FROM timeline_events "
        "WHERE owner_id = :owner AND date IN :dates "
        "ORDER BY date DESC, created_at DESC, id DESC"
    ).bindparams(bindparam("dates", expanding=True))
    result = await session.execute(stmt, {"owner": owner_id, "dates": list(date_keys)})
    return [_event(r) for r in _dicts(result)]


async def list_events_of_type(
    session: AsyncSession,
    owner_id: str,
    event_type: str,
    date_key: str | None = None,
) -> list[EventRecord]:
    query = f"SELECT {_EVENT_COLUMNS} FROM timeline_events WHERE owner_id = :owner AND type = :type"
    params: dict[str, Any] = {"owner": owner_id, "type": event_type}
    if date_key is not None:
        query += " AND date = :date"
        params["date"] = date_key
    query += " ORDER BY date DESC, created_at DESC, id DESC"
    result = await session.execute(text(query), params)
    return [_event(r) for r in _dicts(result)]


async def list_orphan_checkins(
    session: AsyncSession,
    owner_id: str,
    date_keys: Sequence[str],
) -> list[EventRecord]:
    """Check-ins on the given dates whose goal row is gone (goal_id NULL)."""
    if not date_keys:
        return []
    stmt = text(
        f"SELECT {_EVENT_COLUMNS} FROM timeline_events "
        "WHERE owner_id = :owner AND type = 'checkin' AND goal_id IS NULL AND date IN :dates"
    ).bindparams(bindparam("dates", expanding=True))
    result = await session.execute(stmt, {"owner": owner_id, "dates": list(date_keys)})
    return [_event(r) for r in _dicts(result)]


async def list_events_paginated(
    session: AsyncSession,
    owner_id: str,
    after: tuple[str, str, int] | None,
    limit: int,
) -> list[EventRecord]:
    """Known-type events strictly after ``after`` in (date, created_at, id) desc order.

    Check-ins superseded by a newer check-in for the same (date, goal) are
    skipped here so that duplicates cannot straddle a page boundary. Only
    rows that still carry goal_id are matched; orphaned check-ins of a
    deleted goal are filtered by the caller (see list_orphan_checkins).
    """
    clauses = ["e.owner_id = :owner", "e.type IN :types"]
    params: dict[str, Any] = {"owner": owner_id, "types": list(EVENT_TYPES), "limit": limit}
    if after is not None:
        clauses.append(
            "(e.date < :c_date"
            " OR (e.date = :c_date AND e.created_at < :c_created)"
            " OR (e.date = :c_date AND e.created_at = :c_created AND e.id < :c_id))"
        )
        params.update({"c_date": after[0], "c_created": after[1], "c_id": after[2]})
    clauses.append(
        "NOT (e.type = 'checkin' AND e.goal_id IS NOT NULL AND EXISTS ("
        "SELECT 1 FROM timeline_events n "
        "WHERE n.owner_id = e.owner_id AND n.type = 'checkin' "
        "AND n.date = e.date AND n.goal_id = e.goal_id "
        "AND (n.created_at > e.created_at OR (n.created_at = e.created_at AND n.id > e.id))))"
    )
    stmt = text(
        "SELECT e.id, e.date, e.type, e.goal_id, e.payload, e.created_at "
        f"FROM timeline_events e WHERE {' AND '.join(clauses)} "
        "ORDER BY e.date DESC, e.created_at DESC, e.id DESC LIMIT :limit"
    ).bindparams(bindparam("types", expanding=True))
    result = await session.execute(stmt, params)
    return [_event(r) for r in _dicts(result)]


async def deduplicate_checkin_events(
    session: AsyncSession,
    owner_id: str,
    goal_id: int | None = None,
) -> int:
    """Keep only the newest check-in per (date, goal); returns rows removed.

    With ``goal_id`` only that goal's check-ins are considered.
    """
    scope = "owner_id = :owner AND type = 'checkin'"
    params: dict[str, Any] = {"owner": owner_id}
    if goal_id is not None:
        scope += " AND goal_id = :goal_id"
        params["goal_id"] = goal_id
    result = await session.execute(
        text(
            f"DELETE FROM timeline_events WHERE {scope} AND id IN ("
            "SELECT id FROM ("
            "SELECT id, ROW_NUMBER() OVER ("
            "PARTITION BY date, goal_id ORDER BY created_at DESC, id DESC"
            f") AS rn FROM timeline_events WHERE {scope}"
            ") ranked WHERE rn > 1)"
        ),
        params,
    )
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


async def insert_note(
    session: AsyncSession,
    owner_id: str,
    content: str,
    date_key: str,
    created_at: str,
) -> NoteRecord:
    result = await session.execute(
        text(
            "INSERT INTO timeline_notes (owner_id, content, date, created_at) "
            f"VALUES (:owner, :content, :date, :created_at) RETURNING {_NOTE_COLUMNS}"
        ),
        {"owner": owner_id, "content": content, "date": date_key, "created_at": created_at},
    )
    return _note(_dicts(result)[0])


async def get_note(session: AsyncSession, owner_id: str, note_id: int) -> NoteRecord | None:
    result = await session.execute(
        text(f"SELECT {_NOTE_COLUMNS} FROM timeline_notes WHERE owner_id = :owner AND id = :note_id"),
        {"owner": owner_id, "note_id": note_id},
    )
    rows = _dicts(result)
    return _note(rows[0]) if rows else None


async def delete_note_row(session: AsyncSession, owner_id: str, note_id: int) -> int:
    result = await session.execute(
        text("DELETE FROM timeline_notes WHERE owner_id = :owner AND id = :note_id"),
        {"owner": owner_id, "note_id": note_id},
    )
    return result.rowcount or 0


async def list_notes_for_dates(
    session: AsyncSession,
    owner_id: str,
    date_keys: Sequence[str],
) -> list[NoteRecord]:
    if not date_keys:
        return []
    stmt = text(
        f"SELECT {_NOTE_COLUMNS} FROM timeline_notes "
        "WHERE owner_id = :owner AND date IN :dates "
        "ORDER BY date DESC, created_at DESC, id DESC"
    ).bindparams(bindparam("dates", expanding=True))
    result = await session.execute(stmt, {"owner": owner_id, "dates": list(date_keys)})
    return [_note(r) for r in _dicts(result)]


# ---------------------------------------------------------------------------
# Daily summaries
# ---------------------------------------------------------------------------


async def upsert_summaries(
    session: AsyncSession,
    owner_id: str,
    rows: Iterable[DailySummary],
    created_at: str,
) -> int:
    """Idempotent batch upsert keyed by (owner, date); latest totals win."""
    params = [
        {
            "owner": owner_id,
            "date": r.date,
            "total": r.total_goals,
            "completed": r.completed_goals,
            "rate": r.success_rate,
            "created_at": created_at,
        }
        for r in rows
    ]
    if not params:
        return 0
    await session.execute(
        text(
            "INSERT INTO daily_summaries "
            "(owner_id, date, total_goals, completed_goals, success_rate, created_at) "
            "VALUES (:owner, :date, :total, :completed, :rate, :created_at) "
            "ON CONFLICT (owner_id, date) DO UPDATE SET "
            "total_goals = excluded.total_goals, "
            "completed_goals = excluded.completed_goals, "
            "success_rate = excluded.success_rate"
        ),
        params,
    )
    return len(params)


async def delete_summaries(session: AsyncSession, owner_id: str, date_keys: Sequence[str]) -> int:
    if not date_keys:
        return 0
    stmt = text(
        "DELETE FROM daily_summaries WHERE owner_id = :owner AND date IN :dates"
    ).bindparams(bindparam("dates", expanding=True))
    result = await session.execute(stmt, {"owner": owner_id, "dates": list(date_keys)})
    return result.rowcount or 0


async def list_summaries(
    session: AsyncSession,
    owner_id: str,
    before: str | None = None,
) -> dict[str, DailySummary]:
    """Stored summaries keyed by date, optionally only dates strictly before ``before``."""
    query = (
        "SELECT date, total_goals, completed_goals, success_rate "
        "FROM daily_summaries WHERE owner_id = :owner"
    )
    params: dict[str, Any] = {"owner": owner_id}
    if before is not None:
        query += " AND date < :before"
        params["before"] = before
    query += " ORDER BY date"
    result = await session.execute(text(query), params)
    return {r["date"]: DailySummary.model_validate(r) for r in _dicts(result)}
