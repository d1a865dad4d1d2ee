"""Tracker HTTP router: goals, completions, timeline and notes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import RequestContext, get_request_context, verify_api_key
from app.db import get_session
from app.tracker import dashboard, errors, mutators, timeline
from app.tracker.models import (
    CompletionCreate,
    CompletionResult,
    Goal,
    GoalCreate,
    GoalPatch,
    GoalWithStats,
    NoteCreate,
    TargetUpdate,
    TimelineData,
    TimelineNote,
    TimelinePage,
)

router = APIRouter(prefix="/api", tags=["tracker"], dependencies=[Depends(verify_api_key)])


# ---------------------------------------------------------------------------
# /api/goals
# ---------------------------------------------------------------------------


@router.get("/goals", response_model=list[GoalWithStats])
async def list_goals(
    session: AsyncSession = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
    days: int | None = Query(default=None, ge=1, le=366, description="Heatmap window in days"),
) -> list[GoalWithStats]:
    return await dashboard.get_dashboard_data(session, ctx.owner_id, days, ctx.offset_minutes)


@router.get("/goals/{goal_id}", response_model=GoalWithStats)
async def get_goal(
    goal_id: int,
    session: AsyncSession = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
    days: int | None = Query(default=None, ge=1, le=366),
) -> GoalWithStats:
    goal = await dashboard.get_goal_with_stats(session, ctx.owner_id, goal_id, days, ctx.offset_minutes)
    if goal is None:
        raise errors.NotFoundError(errors.GOAL_NOT_FOUND)
    return goal


@router.post("/goals", response_model=Goal, status_code=201)
async def create_goal(
    body: GoalCreate,
    session: AsyncSession = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
) -> Goal:
    return await mutators.create_goal(
        session,
        ctx.owner_id,
        body.title,
        description=body.description,
        daily_target_count=body.daily_target_count,
        icon=body.icon,
        color=body.color,
        offset_minutes=ctx.offset_minutes,
    )


@router.patch("/goals/{goal_id}", response_model=Goal)
async def update_goal(
    goal_id: int,
    body: GoalPatch,
    session: AsyncSession = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
) -> Goal:
    # Only fields present in the request body are applied.
    return await mutators.update_goal(
        session, ctx.owner_id, goal_id, offset_minutes=ctx.offset_minutes, **body.model_dump(exclude_unset=True)
    )


@router.post("/goals/{goal_id}/target", response_model=Goal)
async def update_goal_target(
    goal_id: int,
    body: TargetUpdate,
    session: AsyncSession = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
) -> Goal:
    return await mutators.update_goal_target(
        session, ctx.owner_id, goal_id, body.daily_target_count, offset_minutes=ctx.offset_minutes
    )


@router.post("/goals/{goal_id}/completion", response_model=CompletionResult)
async def record_completion(
    goal_id: int,
    body: CompletionCreate | None = None,
    session: AsyncSession = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
) -> CompletionResult:
    body = body or CompletionCreate()
    return await mutators.record_completion(
        session, ctx.owner_id, goal_id, body.count, body.date, offset_minutes=ctx.offset_minutes
    )


@router.delete("/goals/{goal_id}")
async def delete_goal(
    goal_id: int,
    session: AsyncSession = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
) -> dict[str, bool]:
    deleted = await mutators.delete_goal(session, ctx.owner_id, goal_id, offset_minutes=ctx.offset_minutes)
    return {"deleted": deleted}


# ---------------------------------------------------------------------------
# /api/timeline
# ---------------------------------------------------------------------------


@router.get("/timeline", response_model=TimelineData)
async def get_timeline(
    session: AsyncSession = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
    days: int | None = Query(default=None, ge=1, le=366, description="Window size in days"),
) -> TimelineData:
    return await timeline.get_timeline_data(session, ctx.owner_id, days, ctx.offset_minutes)


@router.get("/timeline/events", response_model=TimelinePage)
async def get_timeline_events(
    session: AsyncSession = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
    cursor: str | None = Query(default=None, description="Opaque cursor from a previous page"),
    limit: int | None = Query(default=None, ge=1),
) -> TimelinePage:
    return await timeline.get_timeline_events_infinite(session, ctx.owner_id, limit, cursor, ctx.offset_minutes)


@router.post("/timeline/notes", response_model=TimelineNote, status_code=201)
async def create_note(
    body: NoteCreate,
    session: AsyncSession = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
) -> TimelineNote:
    return await mutators.create_note(session, ctx.owner_id, body.content, body.date, offset_minutes=ctx.offset_minutes)


@router.delete("/timeline/notes/{note_id}")
async def delete_note(
    note_id: int,
    session: AsyncSession = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
) -> dict[str, bool]:
    deleted = await mutators.delete_note(session, ctx.owner_id, note_id)
    return {"deleted": deleted}
