"""Tests for todori.tasks.validate and the timestamp codec in todori.tasks.io."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from todori.errors import SchemaVersionError
from todori.tasks.io import format_timestamp, parse_timestamp, project_fields
from todori.tasks.validate import check_version, is_compatible_version, validate_task_file

TS = "2024-05-01T12:00:00.000Z"


def _doc(tasks=None, **overrides):
    doc = {
        "version": "1.0.0",
        "projectRoot": "/repo",
        "metadata": {"created": TS, "updated": TS},
        "tasks": tasks if tasks is not None else [],
    }
    doc.update(overrides)
    return doc


def _task(id="A", **overrides):
    raw = {
        "id": id,
        "title": f"Task {id}",
        "status": "pending",
        "priority": "medium",
        "dependencies": [],
        "subtasks": [],
        "metadata": {"created": TS, "updated": TS},
    }
    raw.update(overrides)
    return raw


def _codes(issues):
    return [(i.code, i.path) for i in issues]


# ═══════════════════════════════════════════════════════════════════
#  Document Shape
# ═══════════════════════════════════════════════════════════════════


class TestValidateTaskFile:
    def test_valid_document(self):
        assert validate_task_file(_doc([_task("A"), _task("B", dependencies=["A"])])) == []

    def test_not_a_mapping(self):
        assert _codes(validate_task_file(["x"])) == [("E_INVALID_TOP_LEVEL", "")]

    def test_missing_top_level_fields(self):
        issues = validate_task_file({"tasks": []})
        assert ("E_REQUIRED_FIELD", "version") in _codes(issues)
        assert ("E_REQUIRED_FIELD", "projectRoot") in _codes(issues)
        assert ("E_REQUIRED_FIELD", "metadata") in _codes(issues)

    def test_duplicate_ids(self):
        issues = validate_task_file(_doc([_task("A"), _task("A")]))
        assert _codes(issues) == [("E_DUPLICATE_ID", "tasks[1].id")]

    def test_bad_enums(self):
        issues = validate_task_file(_doc([_task(status="finished", priority="urgent")]))
        assert _codes(issues) == [
            ("E_INVALID_ENUM", "tasks[0].priority"),
            ("E_INVALID_ENUM", "tasks[0].status"),
        ]

    def test_unknown_dependency(self):
        issues = validate_task_file(_doc([_task("A", dependencies=["ghost"])]))
        assert _codes(issues) == [("E_UNKNOWN_DEPENDENCY", "tasks[0].dependencies[0]")]

    def test_subtask_id_must_carry_parent_prefix(self):
        sub = {"id": "other.1", "title": "s", "status": "pending"}
        issues = validate_task_file(_doc([_task("A", subtasks=[sub])]))
        assert _codes(issues) == [("E_INVALID_SUBTASK_ID", "tasks[0].subtasks[0].id")]

    def test_bad_timestamp(self):
        issues = validate_task_file(_doc([_task(metadata={"created": "yesterday", "updated": TS})]))
        assert _codes(issues) == [("E_INVALID_TIMESTAMP", "tasks[0].metadata.created")]

    def test_optional_fields_typed(self):
        raw = _task(customFields=["not", "a", "map"], subtaskSeq=-1, assignee={"sessionId": ""})
        codes = _codes(validate_task_file(_doc([raw])))
        assert ("E_INVALID_TYPE", "tasks[0].customFields") in codes
        assert ("E_INVALID_TYPE", "tasks[0].subtaskSeq") in codes
        assert ("E_INVALID_TYPE", "tasks[0].assignee") in codes

    def test_last_modified_by_checked(self):
        meta = {"created": TS, "updated": TS, "lastModifiedBy": {"pid": "x", "startTime": TS}}
        issues = validate_task_file(_doc(metadata=meta))
        assert _codes(issues) == [("E_INVALID_TYPE", "metadata.lastModifiedBy.pid")]

    def test_issues_sorted_by_path(self):
        issues = validate_task_file(_doc([_task("B", title=""), _task("A", status="?")]))
        paths = [i.path for i in issues]
        assert paths == sorted(paths)

    def test_yaml_datetimes_accepted(self):
        """Unquoted timestamps come back from PyYAML as datetime objects."""
        when = datetime(2024, 5, 1, tzinfo=timezone.utc)
        doc = _doc(metadata={"created": when, "updated": when})
        assert validate_task_file(doc) == []


class TestVersion:
    def test_exact_match_only(self):
        assert is_compatible_version("1.0.0") is True
        assert is_compatible_version("1.0.1") is False

    def test_check_version_raises(self):
        with pytest.raises(SchemaVersionError) as exc_info:
            check_version({"version": "3.0.0"}, file="/x/tasks.yaml")
        assert exc_info.value.path == "/x/tasks.yaml"

    def test_missing_version_left_to_shape_check(self):
        check_version({})


# ═══════════════════════════════════════════════════════════════════
#  Codec Helpers
# ═══════════════════════════════════════════════════════════════════


class TestTimestamps:
    def test_format_millis_z(self):
        when = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
        assert format_timestamp(when) == "2024-05-01T12:00:00.123Z"

    def test_parse_z_suffix(self):
        assert parse_timestamp(TS) == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    def test_parse_offset_normalized_to_utc(self):
        parsed = parse_timestamp("2024-05-01T14:00:00+02:00")
        assert parsed == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_naive_is_utc(self):
        assert parse_timestamp("2024-05-01T12:00:00") == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_timestamp("not a date")


class TestProjectFields:
    def test_keeps_requested_fields_in_order(self):
        data = {"id": "A", "title": "t", "status": "pending"}
        assert project_fields(data, ["status", "id", "missing"]) == {"status": "pending", "id": "A"}

    def test_no_fields_keeps_everything(self):
        data = {"id": "A"}
        assert project_fields(data, None) == data
        assert project_fields(data, []) == data
