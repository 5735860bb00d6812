from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from flexidual.core.exceptions import ScheduleError, ScheduleErrorCode
from flexidual.models.curriculum import Curriculum, Lesson
from flexidual.models.school_class import SchoolClass, class_students
from flexidual.models.user import ADMIN_ROLES, TEACHING_ROLES, User


@dataclass(frozen=True)
class ClassContext:
    id: str
    name: str
    teacher_id: str
    tutor_id: str | None
    curriculum_id: str
    curriculum_title: str | None


def get_class_context(db: Session, class_id: str) -> ClassContext:
    school_class = db.get(SchoolClass, class_id)
    if school_class is None:
        raise ScheduleError(ScheduleErrorCode.class_not_found, "Class not found", classId=class_id)
    curriculum = db.get(Curriculum, school_class.curriculum_id)
    return ClassContext(
        id=school_class.id,
        name=school_class.name,
        teacher_id=school_class.teacher_id,
        tutor_id=school_class.tutor_id,
        curriculum_id=school_class.curriculum_id,
        curriculum_title=curriculum.title if curriculum else None,
    )


def get_lessons(db: Session, lesson_ids: Iterable[str]) -> dict[str, Lesson]:
    ids = list(dict.fromkeys(lesson_ids))
    if not ids:
        return {}
    rows = db.execute(select(Lesson).where(Lesson.id.in_(ids))).scalars()
    return {lesson.id: lesson for lesson in rows}


def can_manage_class(user: User, context: ClassContext) -> bool:
    if user.role in ADMIN_ROLES:
        return True
    if user.role in TEACHING_ROLES:
        return user.id in {context.teacher_id, context.tutor_id}
    return False


def ensure_can_manage_class(user: User, context: ClassContext) -> None:
    if not can_manage_class(user, context):
        raise ScheduleError(
            ScheduleErrorCode.permission_denied,
            "Only administrators or the class teacher can manage this schedule",
            className=context.name,
        )


def classes_for_actor(db: Session, user: User, *, teacher_id: str | None = None) -> list[SchoolClass]:
    """Active classes whose schedule the user is allowed to see."""
    query = select(SchoolClass).where(SchoolClass.is_active.is_(True))
    if user.role in ADMIN_ROLES:
        if teacher_id:
            query = query.where(SchoolClass.teacher_id == teacher_id)
    elif user.role in TEACHING_ROLES:
        query = query.where((SchoolClass.teacher_id == user.id) | (SchoolClass.tutor_id == user.id))
    else:
        query = query.join(class_students, class_students.c.class_id == SchoolClass.id).where(
            class_students.c.student_id == user.id
        )
    return list(db.execute(query.order_by(SchoolClass.name)).scalars())


def schedulable_classes(db: Session, user: User) -> list[dict]:
    if user.role not in ADMIN_ROLES and user.role not in TEACHING_ROLES:
        return []
    results: list[dict] = []
    for school_class in classes_for_actor(db, user):
        curriculum = db.get(Curriculum, school_class.curriculum_id)
        lessons = db.execute(
            select(Lesson)
            .where(Lesson.curriculum_id == school_class.curriculum_id, Lesson.is_active.is_(True))
            .order_by(Lesson.order)
        ).scalars()
        results.append(
            {
                "id": school_class.id,
                "name": school_class.name,
                "curriculum_id": school_class.curriculum_id,
                "curriculum_title": curriculum.title if curriculum else "Unknown",
                "curriculum_color": curriculum.color if curriculum else None,
                "lessons": [
                    {"id": lesson.id, "title": lesson.title, "order": lesson.order} for lesson in lessons
                ],
            }
        )
    return results
