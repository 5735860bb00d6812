from __future__ import annotations

from collections.abc import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from flexidual.core.exceptions import ScheduleError, ScheduleErrorCode
from flexidual.models.class_schedule import LIVE_STATUSES, ClassSchedule, ScheduleLesson
from flexidual.services.class_directory import ClassContext, get_lessons


def normalize_lesson_ids(lesson_ids: Iterable[str] | None) -> list[str]:
    return [item for item in dict.fromkeys(lesson_ids or ()) if item]


def _normalize_title(title: str | None) -> str | None:
    if title is None:
        return None
    return title.strip() or None


def validate_lesson_assignment(
    db: Session,
    *,
    context: ClassContext,
    lesson_ids: Sequence[str],
    title: str | None,
    is_recurring: bool,
    exclude_ids: Iterable[str] = (),
) -> list[str]:
    """Check lesson bindings for a record about to be written; returns the cleaned id list.

    Pure validation: nothing is written here.
    """
    lesson_ids = normalize_lesson_ids(lesson_ids)

    if is_recurring and lesson_ids:
        raise ScheduleError(
            ScheduleErrorCode.recurring_no_lessons,
            "Recurring schedules cannot have lessons attached",
        )

    if not lesson_ids:
        if _normalize_title(title) is None:
            raise ScheduleError(
                ScheduleErrorCode.title_required,
                "A title is required when no lesson is selected",
            )
        return lesson_ids

    lessons = get_lessons(db, lesson_ids)
    for lesson_id in lesson_ids:
        lesson = lessons.get(lesson_id)
        if lesson is None:
            raise ScheduleError(ScheduleErrorCode.lesson_not_found, "Lesson not found", lessonId=lesson_id)
        if lesson.curriculum_id != context.curriculum_id:
            raise ScheduleError(
                ScheduleErrorCode.lesson_curriculum_mismatch,
                "Lesson does not belong to this class's curriculum",
                lessonId=lesson_id,
                lessonTitle=lesson.title,
            )

    query = (
        select(ScheduleLesson.lesson_id, ClassSchedule.id)
        .join(ClassSchedule, ClassSchedule.id == ScheduleLesson.schedule_id)
        .where(
            ScheduleLesson.class_id == context.id,
            ScheduleLesson.lesson_id.in_(lesson_ids),
            ClassSchedule.status.in_(LIVE_STATUSES),
        )
    )
    excluded = [item for item in exclude_ids if item]
    if excluded:
        query = query.where(ClassSchedule.id.not_in(excluded))

    taken = {lesson_id: schedule_id for lesson_id, schedule_id in db.execute(query)}
    for lesson_id in lesson_ids:
        if lesson_id in taken:
            raise ScheduleError(
                ScheduleErrorCode.lesson_already_scheduled,
                f"Lesson '{lessons[lesson_id].title}' is already scheduled for this class",
                lessonId=lesson_id,
                lessonTitle=lessons[lesson_id].title,
                className=context.name,
                scheduleId=taken[lesson_id],
            )
    return lesson_ids


def used_lesson_ids(db: Session, class_id: str) -> list[str]:
    """Lessons currently bound to a live record of the class."""
    rows = db.execute(
        select(ScheduleLesson.lesson_id)
        .join(ClassSchedule, ClassSchedule.id == ScheduleLesson.schedule_id)
        .where(ScheduleLesson.class_id == class_id, ClassSchedule.status.in_(LIVE_STATUSES))
        .distinct()
    ).scalars()
    return sorted(rows)
