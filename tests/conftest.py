"""Shared fixtures for the test suite."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db import build_engine, create_schema, get_session
from app.main import app
from app.tracker.models import Goal

OWNER = "tester"
# 2024-02-11 12:00 UTC; every test pins "now" here unless it says otherwise.
NOW = datetime(2024, 2, 11, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# In-memory SQLite database (no real Postgres needed)
# ---------------------------------------------------------------------------

@pytest.fixture()
async def engine():
    eng = build_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture()
def override_session(session_factory):
    """Route the FastAPI dependency to the in-memory database."""
    async def _override():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _override
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(override_session):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Owner-Id": OWNER},
    ) as ac:
        yield ac


def at(value: str) -> datetime:
    """Aware UTC datetime from ``YYYY-MM-DDTHH:MM``."""
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def make_goal(goal_id: int, created: str = "2024-02-01T00:00:00.000Z", target: int = 1, title: str | None = None) -> Goal:
    """Helper to build an in-memory Goal for pure-function tests."""
    return Goal(
        id=goal_id,
        title=title or f"Goal {goal_id}",
        daily_target_count=target,
        created_at=created,
        updated_at=created,
    )
