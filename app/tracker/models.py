"""Pydantic v2 API shapes, serialized with camelCase aliases."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


DEFAULT_ICON = "Target"
DEFAULT_COLOR = "#10b981"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Goals & dashboard
# ---------------------------------------------------------------------------


class Goal(ApiModel):
    id: int
    title: str
    description: str | None = None
    daily_target_count: int = 1
    icon: str = DEFAULT_ICON
    color: str = DEFAULT_COLOR
    created_at: str
    updated_at: str


class HeatmapDay(ApiModel):
    date: str
    count: int
    target: int


class GoalWithStats(Goal):
    streak: int = 0
    total_completed_days: int = 0
    heatmap: list[HeatmapDay] = Field(default_factory=list)


class CompletionResult(ApiModel):
    goal_id: int
    date: str
    count: int


class DailySummary(ApiModel):
    date: str
    total_goals: int
    completed_goals: int
    success_rate: float

    @property
    def all_goals_completed(self) -> bool:
        return self.total_goals > 0 and self.completed_goals >= self.total_goals


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------


class TimelineItem(ApiModel):
    goal_id: int
    title: str
    target: int
    count: int
    icon: str
    color: str


class _EventBase(ApiModel):
    id: str
    date: str
    created_at: str


class NoteEvent(_EventBase):
    type: Literal["note"] = "note"
    note_id: int | None = None
    content: str = ""


class CheckinEvent(_EventBase):
    type: Literal["checkin"] = "checkin"
    goal_id: int | None = None
    title: str = ""
    icon: str = DEFAULT_ICON
    color: str = DEFAULT_COLOR
    delta: int = 0
    new_count: int = 0
    target: int = 1


class GoalLifecycleEvent(_EventBase):
    type: Literal["goal_created", "goal_deleted"]
    goal_id: int | None = None
    title: str = ""
    icon: str = DEFAULT_ICON
    color: str = DEFAULT_COLOR


class SummaryEvent(_EventBase):
    type: Literal["summary"] = "summary"
    items: list[TimelineItem] = Field(default_factory=list)
    all_goals_completed: bool = False


TimelineEvent = Annotated[
    Union[NoteEvent, CheckinEvent, GoalLifecycleEvent, SummaryEvent],
    Field(discriminator="type"),
]


class TimelineHeatmapDay(ApiModel):
    date: str
    count: int


class TimelineDay(ApiModel):
    date: str
    items: list[TimelineItem] = Field(default_factory=list)
    all_goals_completed: bool = False
    events: list[TimelineEvent] = Field(default_factory=list)


class TimelineData(ApiModel):
    days: list[TimelineDay] = Field(default_factory=list)
    streak: int = 0
    heatmap: list[TimelineHeatmapDay] = Field(default_factory=list)


class TimelinePage(ApiModel):
    events: list[TimelineEvent] = Field(default_factory=list)
    next_cursor: str | None = None
    streak: int = 0
    heatmap: list[TimelineHeatmapDay] = Field(default_factory=list)


class TimelineNote(ApiModel):
    id: int
    content: str
    date: str
    created_at: str


# ---------------------------------------------------------------------------
# Request bodies (validation codes are raised by the mutators)
# ---------------------------------------------------------------------------


class GoalCreate(ApiModel):
    title: str = ""
    description: str | None = None
    daily_target_count: int | float | str | None = None
    icon: str | None = None
    color: str | None = None


class GoalPatch(ApiModel):
    title: str | None = None
    description: str | None = None
    daily_target_count: int | float | str | None = None
    icon: str | None = None
    color: str | None = None


class TargetUpdate(ApiModel):
    daily_target_count: int | float | str | None = None


class CompletionCreate(ApiModel):
    count: int = 1
    date: str | None = None


class NoteCreate(ApiModel):
    content: str = ""
    date: str | None = None
