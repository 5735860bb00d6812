from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from flexidual.core.config import Settings, get_settings
from flexidual.core.exceptions import ScheduleError, ScheduleErrorCode
from flexidual.models.class_schedule import ClassSchedule, ScheduleStatus
from flexidual.models.curriculum import Curriculum, Lesson
from flexidual.models.school_class import SchoolClass
from flexidual.models.user import User
from flexidual.services.class_directory import classes_for_actor, get_lessons
from flexidual.services.time_range import MS_PER_MINUTE, to_epoch_ms

DEFAULT_CURRICULUM_COLOR = "#3b82f6"
DEFAULT_SESSION_TITLE = "Class Session"


@dataclass(frozen=True)
class SessionStatus:
    schedule_id: str
    room_name: str
    status: ScheduleStatus
    is_live: bool
    can_join: bool
    join_opens_at: int
    join_closes_at: int
    starts_in_ms: int


def _lessons_for(db: Session, records: Iterable[ClassSchedule]) -> dict[str, Lesson]:
    ids = {lesson_id for record in records for lesson_id in record.lesson_ids}
    return get_lessons(db, ids)


def _display_title(record: ClassSchedule, lessons: dict[str, Lesson]) -> str:
    for lesson_id in record.lesson_ids:
        lesson = lessons.get(lesson_id)
        if lesson is not None:
            return lesson.title
    return record.title or DEFAULT_SESSION_TITLE


def project_schedule(
    record: ClassSchedule,
    *,
    school_class: SchoolClass | None,
    curriculum: Curriculum | None,
    teacher: User | None,
    lessons: dict[str, Lesson],
) -> dict:
    """Flatten a record with the names and colours calendar views render."""
    return {
        "id": record.id,
        "class_id": record.class_id,
        "class_name": school_class.name if school_class else "Unknown class",
        "curriculum_id": record.curriculum_id,
        "curriculum_title": curriculum.title if curriculum else "Unknown",
        "curriculum_color": (curriculum.color if curriculum else None) or DEFAULT_CURRICULUM_COLOR,
        "teacher_id": record.teacher_id,
        "teacher_name": teacher.full_name if teacher else None,
        "teacher_image": teacher.image_url if teacher else None,
        "title": _display_title(record, lessons),
        "description": record.description,
        "lesson_ids": record.lesson_ids,
        "lessons": [
            {"id": lessons[lesson_id].id, "title": lessons[lesson_id].title}
            for lesson_id in record.lesson_ids
            if lesson_id in lessons
        ],
        "session_type": record.session_type,
        "scheduled_start": record.scheduled_start,
        "scheduled_end": record.scheduled_end,
        "room_name": record.room_name,
        "is_live": record.is_live,
        "status": record.status,
        "is_recurring": record.is_recurring,
        "recurrence_rule": record.recurrence_rule,
        "recurrence_parent_id": record.recurrence_parent_id,
    }


def project_many(db: Session, records: list[ClassSchedule]) -> list[dict]:
    if not records:
        return []
    classes = {
        item.id: item
        for item in db.execute(
            select(SchoolClass).where(SchoolClass.id.in_({record.class_id for record in records}))
        ).scalars()
    }
    curriculums = {
        item.id: item
        for item in db.execute(
            select(Curriculum).where(Curriculum.id.in_({record.curriculum_id for record in records}))
        ).scalars()
    }
    teachers = {
        item.id: item
        for item in db.execute(
            select(User).where(User.id.in_({record.teacher_id for record in records}))
        ).scalars()
    }
    lessons = _lessons_for(db, records)
    return [
        project_schedule(
            record,
            school_class=classes.get(record.class_id),
            curriculum=curriculums.get(record.curriculum_id),
            teacher=teachers.get(record.teacher_id),
            lessons=lessons,
        )
        for record in records
    ]


def my_schedule(
    db: Session,
    user: User,
    *,
    start_ms: int | None = None,
    end_ms: int | None = None,
    status: ScheduleStatus | None = None,
    teacher_id: str | None = None,
) -> list[dict]:
    class_ids = [item.id for item in classes_for_actor(db, user, teacher_id=teacher_id)]
    if not class_ids:
        return []

    query = select(ClassSchedule).where(ClassSchedule.class_id.in_(class_ids))
    if start_ms is not None:
        query = query.where(ClassSchedule.scheduled_start >= start_ms)
    if end_ms is not None:
        query = query.where(ClassSchedule.scheduled_start <= end_ms)
    if status is not None:
        query = query.where(ClassSchedule.status == status)

    records = list(db.execute(query.order_by(ClassSchedule.scheduled_start, ClassSchedule.id)).scalars())
    return project_many(db, records)


def get_schedule(db: Session, schedule_id: str) -> ClassSchedule:
    record = db.get(ClassSchedule, schedule_id)
    if record is None:
        raise ScheduleError(ScheduleErrorCode.schedule_not_found, "Schedule not found", scheduleId=schedule_id)
    return record


def get_schedule_by_room(db: Session, room_name: str) -> ClassSchedule:
    record = db.execute(select(ClassSchedule).where(ClassSchedule.room_name == room_name)).scalar_one_or_none()
    if record is None:
        raise ScheduleError(ScheduleErrorCode.schedule_not_found, "Schedule not found", roomName=room_name)
    return record


def get_schedule_details(db: Session, schedule_id: str) -> dict:
    return project_many(db, [get_schedule(db, schedule_id)])[0]


def find_by_room_or_id(db: Session, key: str) -> ClassSchedule:
    record = db.execute(
        select(ClassSchedule).where(or_(ClassSchedule.room_name == key, ClassSchedule.id == key))
    ).scalars().first()
    if record is None:
        raise ScheduleError(ScheduleErrorCode.schedule_not_found, "Schedule not found", roomName=key)
    return record


def session_status(
    db: Session,
    key: str,
    *,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> SessionStatus:
    """Whether a participant may enter the room right now.

    The room opens ``join_window_lead_minutes`` before the scheduled start and stays
    joinable until ``join_window_trail_minutes`` after the end; a session already marked
    active stays joinable. Cancelled and completed sessions are never joinable.
    """
    settings = settings or get_settings()
    record = find_by_room_or_id(db, key)
    now_ms = to_epoch_ms(now or datetime.now(timezone.utc))
    opens_at = record.scheduled_start - settings.join_window_lead_minutes * MS_PER_MINUTE
    closes_at = record.scheduled_end + settings.join_window_trail_minutes * MS_PER_MINUTE
    if record.status is ScheduleStatus.active:
        can_join = True
    else:
        can_join = record.status is ScheduleStatus.scheduled and opens_at <= now_ms <= closes_at
    return SessionStatus(
        schedule_id=record.id,
        room_name=record.room_name,
        status=record.status,
        is_live=record.is_live,
        can_join=can_join,
        join_opens_at=opens_at,
        join_closes_at=closes_at,
        starts_in_ms=record.scheduled_start - now_ms,
    )
