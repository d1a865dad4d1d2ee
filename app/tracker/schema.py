"""Tables: goals, completions, timeline events and notes, daily summaries.

Timestamps are stored as UTC ISO-8601 text (``2024-02-11T12:00:00.000Z``) so
that lexical order equals chronological order on every backend. Date columns
hold local date keys (``YYYY-MM-DD``) resolved with the owner's offset.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

goals = Table(
    "goals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(64), nullable=False),
    Column("title", Text, nullable=False),
    Column("description", Text, nullable=True),
    Column("daily_target_count", Integer, nullable=False, server_default="1"),
    Column("icon", String(64), nullable=False, server_default="Target"),
    Column("color", String(32), nullable=False, server_default="#10b981"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("goals_owner_created_idx", "owner_id", "created_at"),
)

goal_completions = Table(
    "goal_completions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(64), nullable=False),
    Column("goal_id", Integer, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False),
    Column("date", String(10), nullable=False),
    Column("count", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("goal_id", "date", name="goal_date_unique"),
    Index("goal_completions_owner_date_idx", "owner_id", "date"),
)

timeline_events = Table(
    "timeline_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(64), nullable=False),
    Column("date", String(10), nullable=False),
    Column("type", String(32), nullable=False),  # note | checkin | goal_created | goal_deleted | summary
    Column("goal_id", Integer, ForeignKey("goals.id", ondelete="SET NULL"), nullable=True),
    Column("payload", Text, nullable=True),  # JSON text
    Column("created_at", String(32), nullable=False),
    Index("timeline_events_owner_date_created_idx", "owner_id", "date", "created_at"),
    Index("timeline_events_type_idx", "type"),
    Index("timeline_events_goal_idx", "goal_id"),
)

timeline_notes = Table(
    "timeline_notes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(64), nullable=False),
    Column("content", Text, nullable=False),
    Column("date", String(10), nullable=False),
    Column("created_at", String(32), nullable=False),
    Index("timeline_notes_owner_date_idx", "owner_id", "date"),
)

daily_summaries = Table(
    "daily_summaries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(64), nullable=False),
    Column("date", String(10), nullable=False),
    Column("total_goals", Integer, nullable=False),
    Column("completed_goals", Integer, nullable=False),
    Column("success_rate", Float, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("owner_id", "date", name="daily_summaries_owner_date_unique"),
)
