"""Parse stored timeline_events.payload JSON into typed per-kind payloads.

Payloads are untrusted: legacy rows, partial writes and hand-edited data all
show up. Every field extraction has a typed fallback, so parsing never raises.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


def load_payload(raw: Any) -> dict[str, Any]:
    """Decode a JSON text (or already-decoded dict) payload; anything else → {}."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring undecodable payload: %.80s", raw)
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def dump_payload(payload: dict[str, Any] | None) -> str | None:
    if payload is None:
        return None
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def parse_int(value: Any, fallback: int | None = None) -> int | None:
    """Integer from an int, finite float or numeric string; ``fallback`` otherwise."""
    if isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else fallback
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return fallback
        return int(parsed) if math.isfinite(parsed) else fallback
    return fallback


def parse_str(value: Any, fallback: str = "") -> str:
    if isinstance(value, str) and value.strip():
        return value
    return fallback


def parse_bool(value: Any) -> bool:
    # Backfilled summary rows store SQL 0/1 instead of JSON booleans.
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return False


# ---------------------------------------------------------------------------
# Per-kind payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NotePayload:
    note_id: int | None
    content: str

    @classmethod
    def parse(cls, raw: Any) -> NotePayload:
        data = load_payload(raw)
        return cls(note_id=parse_int(data.get("noteId")), content=parse_str(data.get("content")))


@dataclass(frozen=True, slots=True)
class CheckinPayload:
    goal_id: int | None
    delta: int
    new_count: int | None  # None → caller looks up the completion index
    target: int | None  # None → caller uses the goal's current target
    title: str | None
    icon: str | None
    color: str | None

    @classmethod
    def parse(cls, raw: Any) -> CheckinPayload:
        data = load_payload(raw)
        return cls(
            goal_id=parse_int(data.get("goalId")),
            delta=parse_int(data.get("delta"), 0) or 0,
            new_count=parse_int(data.get("newCount")),
            target=parse_int(data.get("target")),
            title=parse_str(data.get("title")) or None,
            icon=parse_str(data.get("icon")) or None,
            color=parse_str(data.get("color")) or None,
        )


@dataclass(frozen=True, slots=True)
class LifecyclePayload:
    """Goal metadata snapshot taken when the goal was created or deleted."""

    goal_id: int | None
    title: str | None
    icon: str | None
    color: str | None
    target: int | None

    @classmethod
    def parse(cls, raw: Any) -> LifecyclePayload:
        data = load_payload(raw)
        return cls(
            goal_id=parse_int(data.get("goalId")),
            title=parse_str(data.get("title")) or None,
            icon=parse_str(data.get("icon")) or None,
            color=parse_str(data.get("color")) or None,
            target=parse_int(data.get("target")),
        )


@dataclass(frozen=True, slots=True)
class SummaryPayload:
    items: list[dict[str, Any]] = field(default_factory=list)
    all_goals_completed: bool = False

    @classmethod
    def parse(cls, raw: Any) -> SummaryPayload:
        data = load_payload(raw)
        items = data.get("items")
        return cls(
            items=[i for i in items if isinstance(i, dict)] if isinstance(items, list) else [],
            all_goals_completed=parse_bool(data.get("allGoalsCompleted")),
        )


def parse_item(raw: dict[str, Any]) -> dict[str, Any] | None:
    """Normalize one stored summary item; None when it has no usable goal id."""
    goal_id = parse_int(raw.get("goalId"))
    if goal_id is None:
        return None
    return {
        "goal_id": goal_id,
        "title": parse_str(raw.get("title")),
        "target": parse_int(raw.get("target"), 1) or 1,
        "count": parse_int(raw.get("count"), 0) or 0,
        "icon": parse_str(raw.get("icon"), "Target"),
        "color": parse_str(raw.get("color"), "#10b981"),
    }
