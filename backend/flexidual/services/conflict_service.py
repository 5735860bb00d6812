from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from flexidual.core.exceptions import ScheduleError, ScheduleErrorCode
from flexidual.models.class_schedule import LIVE_STATUSES, ClassSchedule
from flexidual.models.curriculum import Curriculum
from flexidual.models.school_class import SchoolClass
from flexidual.services.class_directory import ClassContext
from flexidual.services.time_range import TimeWindow, windows_overlap

logger = logging.getLogger(__name__)


class ScopeKind(str, Enum):
    teacher = "teacher"
    school_class = "class"
    curriculum_in_class = "curriculumInClass"


SCOPE_ERROR_CODES = {
    ScopeKind.teacher: ScheduleErrorCode.teacher_schedule_conflict,
    ScopeKind.school_class: ScheduleErrorCode.class_schedule_conflict,
    ScopeKind.curriculum_in_class: ScheduleErrorCode.curriculum_conflict,
}


@dataclass(frozen=True)
class ConflictScope:
    kind: ScopeKind
    teacher_id: str | None = None
    class_id: str | None = None
    curriculum_id: str | None = None

    @classmethod
    def teacher(cls, teacher_id: str) -> "ConflictScope":
        return cls(kind=ScopeKind.teacher, teacher_id=teacher_id)

    @classmethod
    def for_class(cls, class_id: str) -> "ConflictScope":
        return cls(kind=ScopeKind.school_class, class_id=class_id)

    @classmethod
    def curriculum_in_class(cls, curriculum_id: str, class_id: str) -> "ConflictScope":
        return cls(kind=ScopeKind.curriculum_in_class, curriculum_id=curriculum_id, class_id=class_id)

    @classmethod
    def parse(cls, value: str) -> "ConflictScope":
        """Build a scope from its ``kind:<ids>`` text form, e.g. ``curriculumInClass:cur-1,cls-1``."""
        kind_text, _, ids_text = value.partition(":")
        ids = [item.strip() for item in ids_text.split(",") if item.strip()]
        try:
            kind = ScopeKind(kind_text.strip())
        except ValueError as exc:
            raise ValueError(f"Unknown conflict scope: {value}") from exc
        if kind is ScopeKind.curriculum_in_class:
            if len(ids) != 2:
                raise ValueError("curriculumInClass scope needs a curriculum id and a class id")
            return cls.curriculum_in_class(ids[0], ids[1])
        if len(ids) != 1:
            raise ValueError(f"{kind.value} scope needs exactly one id")
        if kind is ScopeKind.teacher:
            return cls.teacher(ids[0])
        return cls.for_class(ids[0])

    def __str__(self) -> str:
        if self.kind is ScopeKind.teacher:
            return f"teacher:{self.teacher_id}"
        if self.kind is ScopeKind.school_class:
            return f"class:{self.class_id}"
        return f"curriculumInClass:{self.curriculum_id},{self.class_id}"

    @property
    def error_code(self) -> ScheduleErrorCode:
        return SCOPE_ERROR_CODES[self.kind]


@dataclass(frozen=True)
class ScheduleConflict:
    record: ClassSchedule
    scope: ConflictScope
    class_name: str
    curriculum_title: str | None = None

    @property
    def conflict_time(self) -> int:
        return self.record.scheduled_start

    def to_error(self, window: TimeWindow, *, occurrence: int | None = None) -> ScheduleError:
        message = (
            f"{self.scope.error_code.value}: overlaps a session of {self.class_name} "
            f"starting at {self.conflict_time}"
        )
        return ScheduleError(
            self.scope.error_code,
            message,
            className=self.class_name,
            conflictTime=self.conflict_time,
            curriculumTitle=self.curriculum_title if self.scope.kind is ScopeKind.curriculum_in_class else None,
            scheduleId=self.record.id,
            occurrence=occurrence,
            occurrenceStart=window.start,
        )


def scopes_for_class(context: ClassContext) -> list[ConflictScope]:
    # Narrowest first so the most specific error wins when several scopes match.
    return [
        ConflictScope.curriculum_in_class(context.curriculum_id, context.id),
        ConflictScope.for_class(context.id),
        ConflictScope.teacher(context.teacher_id),
    ]


def find_conflict(
    db: Session,
    window: TimeWindow,
    scope: ConflictScope,
    *,
    exclude_ids: Iterable[str] = (),
) -> ScheduleConflict | None:
    """Earliest live record in ``scope`` overlapping ``window``, if any."""
    query = (
        select(ClassSchedule, SchoolClass.name, Curriculum.title)
        .join(SchoolClass, SchoolClass.id == ClassSchedule.class_id)
        .outerjoin(Curriculum, Curriculum.id == ClassSchedule.curriculum_id)
        .where(
            ClassSchedule.status.in_(LIVE_STATUSES),
            ClassSchedule.scheduled_start < window.end,
            ClassSchedule.scheduled_end > window.start,
        )
    )
    if scope.kind is ScopeKind.teacher:
        query = query.where(SchoolClass.teacher_id == scope.teacher_id)
    elif scope.kind is ScopeKind.school_class:
        query = query.where(ClassSchedule.class_id == scope.class_id)
    else:
        query = query.where(
            ClassSchedule.class_id == scope.class_id,
            ClassSchedule.curriculum_id == scope.curriculum_id,
        )

    excluded = [item for item in exclude_ids if item]
    if excluded:
        query = query.where(ClassSchedule.id.not_in(excluded))

    row = db.execute(query.order_by(ClassSchedule.scheduled_start, ClassSchedule.id).limit(1)).first()
    if row is None:
        return None
    record, class_name, curriculum_title = row
    return ScheduleConflict(
        record=record,
        scope=scope,
        class_name=class_name,
        curriculum_title=curriculum_title,
    )


def ensure_no_conflict(
    db: Session,
    window: TimeWindow,
    scopes: Sequence[ConflictScope],
    *,
    exclude_ids: Iterable[str] = (),
    occurrence: int | None = None,
) -> None:
    excluded = list(exclude_ids)
    for scope in scopes:
        conflict = find_conflict(db, window, scope, exclude_ids=excluded)
        if conflict is not None:
            logger.info(
                "Rejected window %s-%s: %s overlaps schedule %s",
                window.start,
                window.end,
                scope,
                conflict.record.id,
            )
            raise conflict.to_error(window, occurrence=occurrence)


def find_internal_overlap(windows: Sequence[TimeWindow]) -> tuple[int, int] | None:
    """Indices (earlier, later) of the first pair of overlapping windows in a batch."""
    ordered = sorted(range(len(windows)), key=lambda index: (windows[index].start, windows[index].end))
    for previous, current in zip(ordered, ordered[1:]):
        if windows_overlap(windows[previous], windows[current]):
            return previous, current
    return None


def ensure_batch_is_disjoint(windows: Sequence[TimeWindow], context: ClassContext) -> None:
    pair = find_internal_overlap(windows)
    if pair is None:
        return
    earlier, later = pair
    raise ScheduleError(
        ScheduleErrorCode.class_schedule_conflict,
        "Occurrences of this series overlap each other",
        className=context.name,
        conflictTime=windows[earlier].start,
        occurrence=later,
        occurrenceStart=windows[later].start,
    )
