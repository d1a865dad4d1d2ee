"""Tests for tolerant payload parsing of stored timeline events."""

from __future__ import annotations

from app.tracker.payloads import (
    CheckinPayload,
    LifecyclePayload,
    NotePayload,
    SummaryPayload,
    dump_payload,
    load_payload,
    parse_bool,
    parse_int,
    parse_item,
)


class TestLoadPayload:
    def test_json_text(self):
        assert load_payload('{"noteId": 3}') == {"noteId": 3}

    def test_dict_passthrough(self):
        assert load_payload({"a": 1}) == {"a": 1}

    def test_bytes(self):
        assert load_payload(b'{"a": 1}') == {"a": 1}

    def test_invalid_json(self):
        assert load_payload("{not json") == {}

    def test_non_object_json(self):
        assert load_payload("[1, 2]") == {}
        assert load_payload("42") == {}

    def test_none_and_other(self):
        assert load_payload(None) == {}
        assert load_payload(12) == {}

    def test_dump_compact(self):
        assert dump_payload({"a": 1, "b": "x"}) == '{"a":1,"b":"x"}'
        assert dump_payload(None) is None


class TestScalars:
    def test_parse_int(self):
        assert parse_int(3) == 3
        assert parse_int(3.9) == 3
        assert parse_int("7") == 7
        assert parse_int("abc") is None
        assert parse_int("abc", 0) == 0
        assert parse_int(True, 5) == 5
        assert parse_int(None) is None

    def test_parse_bool(self):
        assert parse_bool(True) is True
        assert parse_bool(1) is True
        assert parse_bool(0) is False
        assert parse_bool("true") is True
        assert parse_bool(None) is False


class TestCheckinPayload:
    def test_full(self):
        p = CheckinPayload.parse(
            '{"goalId": 4, "delta": 1, "newCount": 3, "target": 2, "title": "Read",'
            ' "icon": "Book", "color": "#000"}'
        )
        assert (p.goal_id, p.delta, p.new_count, p.target) == (4, 1, 3, 2)
        assert (p.title, p.icon, p.color) == ("Read", "Book", "#000")

    def test_legacy_fallbacks(self):
        p = CheckinPayload.parse('{"delta": "oops"}')
        assert p.goal_id is None
        assert p.delta == 0
        assert p.new_count is None
        assert p.target is None
        assert p.title is None

    def test_garbage(self):
        p = CheckinPayload.parse("][")
        assert p.delta == 0


class TestOtherPayloads:
    def test_note(self):
        p = NotePayload.parse('{"noteId": "12", "content": "hi"}')
        assert p.note_id == 12
        assert p.content == "hi"

    def test_note_missing(self):
        p = NotePayload.parse(None)
        assert p.note_id is None
        assert p.content == ""

    def test_lifecycle(self):
        p = LifecyclePayload.parse('{"goalId": 9, "title": "Run", "target": 3}')
        assert (p.goal_id, p.title, p.icon, p.target) == (9, "Run", None, 3)

    def test_summary_filters_items(self):
        p = SummaryPayload.parse('{"items": [{"goalId": 1}, "junk", 3], "allGoalsCompleted": 1}')
        assert p.items == [{"goalId": 1}]
        assert p.all_goals_completed is True

    def test_summary_items_not_a_list(self):
        assert SummaryPayload.parse('{"items": "x"}').items == []


class TestParseItem:
    def test_defaults(self):
        item = parse_item({"goalId": 2})
        assert item == {
            "goal_id": 2,
            "title": "",
            "target": 1,
            "count": 0,
            "icon": "Target",
            "color": "#10b981",
        }

    def test_missing_goal_id(self):
        assert parse_item({"title": "x"}) is None
