from datetime import datetime, timezone

import pytest

from flexidual.core.exceptions import ScheduleError, ScheduleErrorCode
from flexidual.services.class_directory import get_class_context
from flexidual.services.conflict_service import (
    ConflictScope,
    ScopeKind,
    ensure_no_conflict,
    find_conflict,
    find_internal_overlap,
    scopes_for_class,
)
from flexidual.services.time_range import TimeWindow, compute_window


def at(hour: int, minute: int = 0, day: int = 7) -> datetime:
    return datetime(2030, 1, day, hour, minute)


def test_teacher_overlap_on_another_class_names_the_first_class(writer, seed):
    writer.create_single(seed.class_a_id, start=at(10), duration_minutes=60, title="Algebra")

    with pytest.raises(ScheduleError) as exc_info:
        writer.create_single(seed.class_b_id, start=at(10, 30), duration_minutes=60, title="Geometry")

    error = exc_info.value
    assert error.code is ScheduleErrorCode.teacher_schedule_conflict
    assert error.status_code == 409
    assert error.details["className"] == "Grade 5A"
    assert error.details["conflictTime"] == int(datetime(2030, 1, 7, 10, tzinfo=timezone.utc).timestamp() * 1000)
    assert "curriculumTitle" not in error.details


def test_same_class_overlap_reports_curriculum_conflict_first(writer, seed):
    writer.create_single(seed.class_a_id, start=at(9), duration_minutes=90, title="Algebra")

    with pytest.raises(ScheduleError) as exc_info:
        writer.create_single(seed.class_a_id, start=at(10), duration_minutes=30, title="Review")

    assert exc_info.value.code is ScheduleErrorCode.curriculum_conflict
    assert exc_info.value.details["curriculumTitle"] == "Mathematics"
    assert exc_info.value.details["className"] == "Grade 5A"


def test_class_scope_matches_any_record_of_the_class(writer, db_session, seed):
    existing = writer.create_single(seed.class_a_id, start=at(9), duration_minutes=60, title="Algebra")

    window = compute_window(at(9, 30), 15)
    conflict = find_conflict(db_session, window, ConflictScope.for_class(seed.class_a_id))

    assert conflict is not None
    assert conflict.record.id == existing.id
    error = conflict.to_error(window)
    assert error.code is ScheduleErrorCode.class_schedule_conflict
    assert error.details["occurrenceStart"] == window.start
    assert error.details["conflictTime"] == existing.scheduled_start


def test_touching_sessions_are_allowed(writer, seed):
    first = writer.create_single(seed.class_a_id, start=at(10), duration_minutes=60, title="First")
    second = writer.create_single(seed.class_a_id, start=at(11), duration_minutes=60, title="Second")
    earlier = writer.create_single(seed.class_b_id, start=at(9), duration_minutes=60, title="Before")

    assert first.scheduled_end == second.scheduled_start
    assert earlier.scheduled_end == first.scheduled_start


def test_conflict_detection_is_symmetric(writer, db_session, seed):
    first = writer.create_single(seed.class_a_id, start=at(10), duration_minutes=60, title="A")
    second = writer.create_single(seed.class_c_id, start=at(10, 30), duration_minutes=60, title="B")
    window_a = TimeWindow(first.scheduled_start, first.scheduled_end)
    window_b = TimeWindow(second.scheduled_start, second.scheduled_end)

    found_from_b = find_conflict(db_session, window_b, ConflictScope.for_class(seed.class_a_id))
    found_from_a = find_conflict(db_session, window_a, ConflictScope.for_class(seed.class_c_id))

    assert found_from_b is not None and found_from_b.record.id == first.id
    assert found_from_a is not None and found_from_a.record.id == second.id


def test_cancelled_records_and_excluded_ids_are_ignored(writer, db_session, seed):
    record = writer.create_single(seed.class_a_id, start=at(14), duration_minutes=60, title="Lab")
    scopes = scopes_for_class(get_class_context(db_session, seed.class_a_id))
    window = TimeWindow(record.scheduled_start, record.scheduled_end)

    ensure_no_conflict(db_session, window, scopes, exclude_ids=[record.id])

    writer.delete(record.id)
    ensure_no_conflict(db_session, window, scopes)


def test_other_teachers_are_not_affected(writer, seed):
    writer.create_single(seed.class_a_id, start=at(10), duration_minutes=60, title="Math")
    record = writer.create_single(seed.class_c_id, start=at(10), duration_minutes=60, title="Biology")

    assert record.teacher_id == seed.other_teacher_id


def test_scopes_are_ordered_narrowest_first(db_session, seed):
    scopes = scopes_for_class(get_class_context(db_session, seed.class_a_id))

    assert [scope.kind for scope in scopes] == [
        ScopeKind.curriculum_in_class,
        ScopeKind.school_class,
        ScopeKind.teacher,
    ]


def test_scope_text_form_round_trips():
    for text in ("teacher:t-1", "class:c-1", "curriculumInClass:cur-1,c-1"):
        assert str(ConflictScope.parse(text)) == text

    with pytest.raises(ValueError):
        ConflictScope.parse("room:r-1")
    with pytest.raises(ValueError):
        ConflictScope.parse("curriculumInClass:cur-1")


def test_internal_overlap_finds_first_clashing_pair():
    windows = [TimeWindow(0, 10), TimeWindow(20, 30), TimeWindow(25, 35)]

    assert find_internal_overlap(windows) == (1, 2)
    assert find_internal_overlap([TimeWindow(0, 10), TimeWindow(10, 20)]) is None
