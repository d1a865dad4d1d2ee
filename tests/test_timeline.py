"""Tests for the timeline aggregator and cursor pagination."""

from __future__ import annotations

import base64

import pytest
from sqlalchemy import text

from app.tracker import mutators, store
from app.tracker.models import DailySummary
from app.tracker.timeline import (
    decode_cursor,
    encode_cursor,
    get_timeline_data,
    get_timeline_events_infinite,
)
from tests.conftest import NOW, OWNER, at

GOAL_CREATED = at("2024-02-08T10:00")


def _day(data, date_key):
    return next(d for d in data.days if d.date == date_key)


# ---------------------------------------------------------------------------
# Cursor
# ---------------------------------------------------------------------------

class TestCursor:
    def test_round_trip(self):
        cursor = encode_cursor("2024-02-10", "2024-02-10T08:00:00.000Z", 42)
        assert decode_cursor(cursor) == ("2024-02-10", "2024-02-10T08:00:00.000Z", 42)

    def test_url_safe(self):
        cursor = encode_cursor("2024-02-10", "2024-02-10T08:00:00.000Z", 42)
        assert "+" not in cursor
        assert "/" not in cursor

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "",
            "!!!",
            "not-base64-at-all",
            base64.urlsafe_b64encode(b"a|b").decode(),
            base64.urlsafe_b64encode(b"2024-02-10|x|abc").decode(),
            base64.urlsafe_b64encode(b"yesterday|x|1").decode(),
            base64.urlsafe_b64encode(b"\xff\xfe").decode(),
        ],
    )
    def test_malformed_is_none(self, raw):
        assert decode_cursor(raw) is None


# ---------------------------------------------------------------------------
# Day-bucketed feed
# ---------------------------------------------------------------------------

class TestTimelineData:
    @pytest.mark.asyncio
    async def test_empty_account_keeps_today(self, session):
        data = await get_timeline_data(session, OWNER, days=7, now=NOW)
        assert [d.date for d in data.days] == ["2024-02-11"]
        assert data.days[0].items == []
        assert data.streak == 0
        assert len(data.heatmap) == 7

    @pytest.mark.asyncio
    async def test_items_today_vs_past_and_empty_days_dropped(self, session):
        goal = await mutators.create_goal(session, OWNER, "Read", now=GOAL_CREATED)
        await mutators.record_completion(session, OWNER, goal.id, 1, "2024-02-09", now=NOW)

        data = await get_timeline_data(session, OWNER, days=7, now=NOW)
        assert [d.date for d in data.days] == ["2024-02-11", "2024-02-09", "2024-02-08"]

        today = _day(data, "2024-02-11")
        assert [(i.goal_id, i.count) for i in today.items] == [(goal.id, 0)]
        assert today.all_goals_completed is False

        past = _day(data, "2024-02-09")
        assert [(i.goal_id, i.count) for i in past.items] == [(goal.id, 1)]
        assert past.all_goals_completed is True
        assert sorted(e.type for e in past.events) == ["checkin", "summary"]

        created = _day(data, "2024-02-08")
        assert created.items == []
        assert [e.type for e in created.events] == ["goal_created"]

    @pytest.mark.asyncio
    async def test_read_upserts_past_summaries_and_deletes_stale(self, session):
        goal = await mutators.create_goal(session, OWNER, "Read", now=GOAL_CREATED)
        await store.increment_completion(session, OWNER, goal.id, "2024-02-10", 1, "2024-02-10T09:00:00.000Z")
        stale = DailySummary(date="2024-02-06", total_goals=3, completed_goals=3, success_rate=1.0)
        await store.upsert_summaries(session, OWNER, [stale], "2024-02-06T09:00:00.000Z")

        await get_timeline_data(session, OWNER, days=7, now=NOW)

        cached = await store.list_summaries(session, OWNER)
        assert sorted(cached) == ["2024-02-08", "2024-02-09", "2024-02-10"]
        assert cached["2024-02-10"].completed_goals == 1
        assert cached["2024-02-09"].completed_goals == 0

    @pytest.mark.asyncio
    async def test_synthesizes_summary_for_completed_past_day(self, session):
        goal = await mutators.create_goal(session, OWNER, "Read", now=GOAL_CREATED)
        await store.increment_completion(session, OWNER, goal.id, "2024-02-10", 1, "2024-02-10T09:00:00.000Z")

        data = await get_timeline_data(session, OWNER, days=7, now=NOW)
        day = _day(data, "2024-02-10")
        assert day.all_goals_completed is True
        assert len(day.events) == 1
        synthesized = day.events[0]
        assert synthesized.type == "summary"
        assert synthesized.id == "summary-2024-02-10"
        assert synthesized.created_at == "2024-02-10T23:59:59.999Z"
        assert [(i.goal_id, i.count) for i in synthesized.items] == [(goal.id, 1)]
        assert data.streak == 1

    @pytest.mark.asyncio
    async def test_persisted_summary_not_duplicated(self, session):
        goal = await mutators.create_goal(session, OWNER, "Read", now=GOAL_CREATED)
        await mutators.record_completion(session, OWNER, goal.id, 1, "2024-02-10", now=at("2024-02-10T20:00"))
        data = await get_timeline_data(session, OWNER, days=7, now=NOW)
        summaries = [e for e in _day(data, "2024-02-10").events if e.type == "summary"]
        assert len(summaries) == 1
        assert summaries[0].id.startswith("event-")

    @pytest.mark.asyncio
    async def test_duplicate_checkins_keep_newest(self, session):
        goal = await mutators.create_goal(session, OWNER, "Read", daily_target_count=5, now=GOAL_CREATED)
        await store.append_event(
            session, OWNER, "2024-02-10", "checkin", goal_id=goal.id,
            payload={"goalId": goal.id, "delta": 1, "newCount": 1}, created_at="2024-02-10T08:00:00.000Z",
        )
        newest = await store.append_event(
            session, OWNER, "2024-02-10", "checkin", goal_id=goal.id,
            payload={"goalId": goal.id, "delta": 1, "newCount": 2}, created_at="2024-02-10T09:00:00.000Z",
        )
        data = await get_timeline_data(session, OWNER, days=7, now=NOW)
        checkins = [e for e in _day(data, "2024-02-10").events if e.type == "checkin"]
        assert len(checkins) == 1
        assert checkins[0].id == f"event-{newest}"
        assert checkins[0].new_count == 2

    @pytest.mark.asyncio
    async def test_malformed_checkin_payload_falls_back(self, session):
        goal = await mutators.create_goal(session, OWNER, "Read", daily_target_count=2, icon="Book", now=GOAL_CREATED)
        await store.increment_completion(session, OWNER, goal.id, "2024-02-10", 3, "2024-02-10T09:00:00.000Z")
        await store.append_event(session, OWNER, "2024-02-10", "checkin", goal_id=goal.id, created_at="2024-02-10T09:00:00.000Z")
        await session.execute(
            text("UPDATE timeline_events SET payload = 'not json' WHERE type = 'checkin'")
        )

        data = await get_timeline_data(session, OWNER, days=7, now=NOW)
        checkin = next(e for e in _day(data, "2024-02-10").events if e.type == "checkin")
        assert (checkin.delta, checkin.new_count, checkin.target) == (0, 3, 2)
        assert (checkin.title, checkin.icon) == ("Read", "Book")

    @pytest.mark.asyncio
    async def test_legacy_note_without_event(self, session):
        legacy = await store.insert_note(session, OWNER, "old note", "2024-02-10", "2024-02-10T07:00:00.000Z")
        fresh = await mutators.create_note(session, OWNER, "new note", now=NOW)

        data = await get_timeline_data(session, OWNER, days=7, now=NOW)
        old_events = _day(data, "2024-02-10").events
        assert [(e.id, e.note_id, e.content) for e in old_events] == [(f"note-{legacy.id}", legacy.id, "old note")]
        today_notes = [e for e in _day(data, "2024-02-11").events if e.type == "note"]
        assert len(today_notes) == 1
        assert today_notes[0].note_id == fresh.id
        assert today_notes[0].id.startswith("event-")

    @pytest.mark.asyncio
    async def test_deleted_goal_metadata_from_snapshot(self, session):
        goal = await mutators.create_goal(session, OWNER, "Gone", icon="Book", color="#222222", now=GOAL_CREATED)
        await mutators.delete_goal(session, OWNER, goal.id, now=NOW)

        data = await get_timeline_data(session, OWNER, days=7, now=NOW)
        deleted = next(e for e in _day(data, "2024-02-11").events if e.type == "goal_deleted")
        assert (deleted.goal_id, deleted.title, deleted.icon, deleted.color) == (goal.id, "Gone", "Book", "#222222")
        created = next(e for e in _day(data, "2024-02-08").events if e.type == "goal_created")
        assert created.title == "Gone"

    @pytest.mark.asyncio
    async def test_lifecycle_uses_current_goal_metadata(self, session):
        goal = await mutators.create_goal(session, OWNER, "Old title", now=GOAL_CREATED)
        await mutators.update_goal(session, OWNER, goal.id, title="New title", now=NOW)
        data = await get_timeline_data(session, OWNER, days=7, now=NOW)
        created = next(e for e in _day(data, "2024-02-08").events if e.type == "goal_created")
        assert created.title == "New title"

    @pytest.mark.asyncio
    async def test_unknown_event_types_ignored(self, session):
        await store.append_event(session, OWNER, "2024-02-11", "mystery", payload={"x": 1}, created_at="2024-02-11T08:00:00.000Z")
        data = await get_timeline_data(session, OWNER, days=3, now=NOW)
        assert _day(data, "2024-02-11").events == []

    @pytest.mark.asyncio
    async def test_streak_over_consecutive_days(self, session):
        goal = await mutators.create_goal(session, OWNER, "Read", now=GOAL_CREATED)
        for date_key in ("2024-02-08", "2024-02-09", "2024-02-10", "2024-02-11"):
            await mutators.record_completion(session, OWNER, goal.id, 1, date_key, now=NOW)
        data = await get_timeline_data(session, OWNER, days=30, now=NOW)
        assert data.streak == 4
        assert len(data.heatmap) == 30
        assert data.heatmap[-1].count == 1

    @pytest.mark.asyncio
    async def test_streak_broken_by_partial_day(self, session):
        a = await mutators.create_goal(session, OWNER, "A", now=GOAL_CREATED)
        b = await mutators.create_goal(session, OWNER, "B", now=GOAL_CREATED)
        for date_key in ("2024-02-08", "2024-02-09", "2024-02-10"):
            await mutators.record_completion(session, OWNER, a.id, 1, date_key, now=NOW)
            if date_key != "2024-02-09":
                await mutators.record_completion(session, OWNER, b.id, 1, date_key, now=NOW)
        data = await get_timeline_data(session, OWNER, days=30, now=NOW)
        assert data.streak == 1

    @pytest.mark.asyncio
    async def test_offset_changes_today(self, session):
        data = await get_timeline_data(session, OWNER, days=3, offset_minutes=14 * 60, now=NOW)
        assert data.days[0].date == "2024-02-12"

    @pytest.mark.asyncio
    async def test_goal_added_after_completion_hides_summary(self, session):
        a = await mutators.create_goal(session, OWNER, "A", now=GOAL_CREATED)
        await mutators.record_completion(session, OWNER, a.id, 1, now=NOW)
        await mutators.create_goal(session, OWNER, "B", now=NOW)

        today = _day(await get_timeline_data(session, OWNER, days=3, now=NOW), "2024-02-11")
        assert today.all_goals_completed is False
        assert all(e.type != "summary" for e in today.events)


# ---------------------------------------------------------------------------
# Flat, paginated feed
# ---------------------------------------------------------------------------

async def _seed_feed(session) -> int:
    goal = await mutators.create_goal(session, OWNER, "Read", daily_target_count=2, now=at("2024-02-05T08:00"))
    await mutators.record_completion(session, OWNER, goal.id, 1, "2024-02-06", now=at("2024-02-06T09:00"))
    await mutators.record_completion(session, OWNER, goal.id, 1, "2024-02-06", now=at("2024-02-06T10:00"))
    await mutators.create_note(session, OWNER, "one", "2024-02-06", now=at("2024-02-06T10:00"))
    await mutators.create_note(session, OWNER, "two", "2024-02-07", now=at("2024-02-07T10:00"))
    await mutators.create_note(session, OWNER, "three", "2024-02-07", now=at("2024-02-07T10:00"))
    await mutators.record_completion(session, OWNER, goal.id, 1, "2024-02-08", now=at("2024-02-08T11:00"))
    await mutators.create_note(session, OWNER, "four", now=NOW)
    return goal.id


def _sort_key(event):
    return (event.date, event.created_at, int(event.id.removeprefix("event-")))


class TestInfiniteFeed:
    @pytest.mark.asyncio
    async def test_walks_all_pages_without_gaps_or_duplicates(self, session):
        await _seed_feed(session)
        everything = await get_timeline_events_infinite(session, OWNER, limit=100, now=NOW)
        assert everything.next_cursor is None

        collected = []
        cursor = None
        pages = 0
        while True:
            page = await get_timeline_events_infinite(session, OWNER, limit=2, cursor=cursor, now=NOW)
            pages += 1
            assert len(page.events) <= 2
            collected.extend(page.events)
            if page.next_cursor is None:
                break
            cursor = page.next_cursor
            assert pages < 50

        assert [e.id for e in collected] == [e.id for e in everything.events]
        assert len({e.id for e in collected}) == len(collected)
        keys = [_sort_key(e) for e in collected]
        assert all(a > b for a, b in zip(keys, keys[1:]))

    @pytest.mark.asyncio
    async def test_feed_contents(self, session):
        await _seed_feed(session)
        page = await get_timeline_events_infinite(session, OWNER, limit=100, now=NOW)
        types = [e.type for e in page.events]
        # goal_created, two check-ins (one per date), a 2/2 summary on the 6th, four notes
        assert types.count("goal_created") == 1
        assert types.count("checkin") == 2
        assert types.count("summary") == 1
        assert types.count("note") == 4
        assert page.events[0].date == "2024-02-11"

    @pytest.mark.asyncio
    async def test_exact_multiple_of_limit_ends_with_null_cursor(self, session):
        for i in range(4):
            await mutators.create_note(session, OWNER, f"n{i}", now=at(f"2024-02-11T0{i}:00"))
        first = await get_timeline_events_infinite(session, OWNER, limit=2, now=NOW)
        assert first.next_cursor is not None
        second = await get_timeline_events_infinite(session, OWNER, limit=2, cursor=first.next_cursor, now=NOW)
        assert len(second.events) == 2
        assert second.next_cursor is None

    @pytest.mark.asyncio
    async def test_malformed_cursor_restarts(self, session):
        await _seed_feed(session)
        first = await get_timeline_events_infinite(session, OWNER, limit=3, now=NOW)
        again = await get_timeline_events_infinite(session, OWNER, limit=3, cursor="%%%garbage", now=NOW)
        assert [e.id for e in again.events] == [e.id for e in first.events]

    @pytest.mark.asyncio
    async def test_page_carries_streak_and_heatmap(self, session):
        await _seed_feed(session)
        page = await get_timeline_events_infinite(session, OWNER, limit=5, now=NOW)
        assert len(page.heatmap) == 105
        assert page.heatmap[-1].date == "2024-02-11"
        assert page.streak == 0

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, session):
        for i in range(3):
            await mutators.create_note(session, OWNER, f"n{i}", now=NOW)
        page = await get_timeline_events_infinite(session, OWNER, limit=0, now=NOW)
        assert len(page.events) == 3

    @pytest.mark.asyncio
    async def test_streak_matches_bucketed_read_after_midnight(self, session):
        goal = await mutators.create_goal(session, OWNER, "Read", now=at("2024-02-05T08:00"))
        for day in range(5, 11):
            await mutators.record_completion(session, OWNER, goal.id, 1, now=at(f"2024-02-{day:02d}T20:00"))
        # Read on the evening of the 10th caches summaries up to the 9th.
        await get_timeline_data(session, OWNER, days=30, now=at("2024-02-10T20:00"))
        await mutators.record_completion(session, OWNER, goal.id, 1, now=NOW)

        page = await get_timeline_events_infinite(session, OWNER, limit=5, now=NOW)
        assert page.streak == 7
        data = await get_timeline_data(session, OWNER, days=30, now=NOW)
        assert data.streak == page.streak

    @staticmethod
    async def _walk(session, limit):
        events, cursor = [], None
        while True:
            page = await get_timeline_events_infinite(session, OWNER, limit=limit, cursor=cursor, now=NOW)
            events.extend(page.events)
            cursor = page.next_cursor
            if cursor is None:
                return events

    @pytest.mark.asyncio
    async def test_deleted_goal_duplicate_checkins_do_not_span_pages(self, session):
        goal = await mutators.create_goal(session, OWNER, "Read", now=at("2024-02-09T08:00"))
        for hour in ("09", "10", "11"):
            await store.append_event(
                session, OWNER, "2024-02-10", "checkin", goal_id=goal.id,
                payload={"goalId": goal.id, "delta": 1, "newCount": int(hour) - 8},
                created_at=f"2024-02-10T{hour}:00:00.000Z",
            )
        await session.commit()
        await mutators.delete_goal(session, OWNER, goal.id, now=NOW)

        checkins = [e for e in await self._walk(session, limit=1) if e.type == "checkin"]
        assert [(c.goal_id, c.new_count) for c in checkins] == [(goal.id, 3)]

    @pytest.mark.asyncio
    async def test_legacy_orphan_checkins_collapse_across_pages(self, session):
        # Rows already orphaned before deletion-time cleanup existed.
        for hour in ("09", "10"):
            await store.append_event(
                session, OWNER, "2024-02-10", "checkin",
                payload={"goalId": 7, "delta": 1, "newCount": int(hour) - 8, "title": "Gone"},
                created_at=f"2024-02-10T{hour}:00:00.000Z",
            )
        await store.append_event(
            session, OWNER, "2024-02-10", "checkin",
            payload={"goalId": 8, "delta": 1, "newCount": 1, "title": "Also gone"},
            created_at="2024-02-10T08:00:00.000Z",
        )
        await session.commit()

        checkins = [e for e in await self._walk(session, limit=1) if e.type == "checkin"]
        assert sorted((c.goal_id, c.new_count) for c in checkins) == [(7, 2), (8, 1)]
