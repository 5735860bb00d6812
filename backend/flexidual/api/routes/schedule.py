from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from flexidual.api.deps import get_current_user, get_db, require_roles
from flexidual.core.config import get_settings
from flexidual.models.class_schedule import ClassSchedule, ScheduleStatus
from flexidual.models.user import ADMIN_ROLES, User, UserRole
from flexidual.schemas.schedule import (
    CleanupOut,
    LiveStatusUpdate,
    RecurrencePreviewOut,
    RecurrencePreviewRequest,
    RecurringCreateOut,
    RecurringScheduleCreate,
    SchedulableClassOut,
    ScheduleCancelOut,
    ScheduleCreate,
    ScheduleDetailOut,
    ScheduleOut,
    ScheduleUpdate,
    ScheduleUpdateOut,
    SessionStatusOut,
    UsedLessonsOut,
)
from flexidual.services import schedule_queries
from flexidual.services.class_directory import (
    ensure_can_manage_class,
    get_class_context,
    schedulable_classes,
)
from flexidual.services.lesson_validator import used_lesson_ids
from flexidual.services.recurrence import RecurrenceSpec, expand_recurrence
from flexidual.services.schedule_writer import ScheduleWriter
from flexidual.services.time_range import MS_PER_MINUTE, anchor_to_epoch_ms, resolve_anchor, validate_duration

router = APIRouter()

SCHEDULER_ROLES = (UserRole.admin, UserRole.superadmin, UserRole.teacher, UserRole.tutor)


def _writer(db: Session, user: User) -> ScheduleWriter:
    return ScheduleWriter(db, actor_id=user.id, settings=get_settings())


def _authorize_record(db: Session, user: User, record: ClassSchedule) -> None:
    ensure_can_manage_class(user, get_class_context(db, record.class_id))


@router.post("", response_model=ScheduleOut, status_code=status.HTTP_201_CREATED)
def create_schedule(
    payload: ScheduleCreate,
    current_user: User = Depends(require_roles(*SCHEDULER_ROLES)),
    db: Session = Depends(get_db),
) -> ScheduleOut:
    ensure_can_manage_class(current_user, get_class_context(db, payload.class_id))
    record = _writer(db, current_user).create_single(
        payload.class_id,
        start=payload.start,
        duration_minutes=payload.duration_minutes,
        timezone_offset_minutes=payload.timezone_offset_minutes,
        session_type=payload.session_type,
        lesson_ids=payload.lesson_ids,
        title=payload.title,
        description=payload.description,
    )
    db.commit()
    db.refresh(record)
    return record


@router.post("/recurring", response_model=RecurringCreateOut, status_code=status.HTTP_201_CREATED)
def create_recurring_schedule(
    payload: RecurringScheduleCreate,
    current_user: User = Depends(require_roles(*SCHEDULER_ROLES)),
    db: Session = Depends(get_db),
) -> RecurringCreateOut:
    ensure_can_manage_class(current_user, get_class_context(db, payload.class_id))
    result = _writer(db, current_user).create_recurring(
        payload.class_id,
        start=payload.start,
        duration_minutes=payload.duration_minutes,
        recurrence=payload.recurrence.model_dump(by_alias=True),
        timezone_offset_minutes=payload.timezone_offset_minutes,
        session_type=payload.session_type,
        lesson_ids=payload.lesson_ids,
        title=payload.title,
        description=payload.description,
    )
    db.commit()
    records = [ScheduleOut.model_validate(record) for record in result.records]
    return RecurringCreateOut(
        parent_id=result.parent.id,
        count=len(records),
        adjusted_start=result.adjusted_start,
        records=records,
    )


@router.post("/recurrence/preview", response_model=RecurrencePreviewOut)
def preview_recurrence(
    payload: RecurrencePreviewRequest,
    current_user: User = Depends(get_current_user),
) -> RecurrencePreviewOut:
    settings = get_settings()
    validate_duration(payload.duration_minutes)
    spec = RecurrenceSpec.build(
        payload.recurrence.type,
        payload.recurrence.occurrences,
        payload.recurrence.days_of_week,
        max_occurrences=settings.max_recurrence_occurrences,
    )
    wall_clock, offset = resolve_anchor(payload.start, payload.timezone_offset_minutes)
    expansion = expand_recurrence(spec, wall_clock)
    duration_ms = payload.duration_minutes * MS_PER_MINUTE
    windows = []
    for occurrence in expansion.occurrences:
        start_ms = anchor_to_epoch_ms(occurrence, offset)
        windows.append((start_ms, start_ms + duration_ms))
    return RecurrencePreviewOut(
        occurrences=expansion.occurrences,
        windows=windows,
        adjusted_start=expansion.adjusted_start,
    )


@router.post("/live", response_model=ScheduleOut)
def set_live_status(
    payload: LiveStatusUpdate,
    current_user: User = Depends(require_roles(*SCHEDULER_ROLES)),
    db: Session = Depends(get_db),
) -> ScheduleOut:
    _authorize_record(db, current_user, schedule_queries.get_schedule_by_room(db, payload.room_name))
    record = _writer(db, current_user).mark_live(payload.room_name, payload.is_live)
    db.commit()
    db.refresh(record)
    return record


@router.post("/maintenance/cleanup-stale", response_model=CleanupOut)
def cleanup_stale_sessions(
    current_user: User = Depends(require_roles(*ADMIN_ROLES)),
    db: Session = Depends(get_db),
) -> CleanupOut:
    closed = _writer(db, current_user).cleanup_stale_sessions()
    db.commit()
    return CleanupOut(completed=[record.id for record in closed], count=len(closed))


@router.get("/me", response_model=list[ScheduleDetailOut])
def get_my_schedule(
    start_ms: int | None = Query(default=None, alias="from"),
    end_ms: int | None = Query(default=None, alias="to"),
    status_filter: ScheduleStatus | None = Query(default=None, alias="status"),
    teacher_id: str | None = Query(default=None, alias="teacherId"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ScheduleDetailOut]:
    return schedule_queries.my_schedule(
        db,
        current_user,
        start_ms=start_ms,
        end_ms=end_ms,
        status=status_filter,
        teacher_id=teacher_id,
    )


@router.get("/classes/schedulable", response_model=list[SchedulableClassOut])
def list_schedulable_classes(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[SchedulableClassOut]:
    return schedulable_classes(db, current_user)


@router.get("/classes/{class_id}/used-lessons", response_model=UsedLessonsOut)
def list_used_lessons(
    class_id: str,
    current_user: User = Depends(require_roles(*SCHEDULER_ROLES)),
    db: Session = Depends(get_db),
) -> UsedLessonsOut:
    ensure_can_manage_class(current_user, get_class_context(db, class_id))
    return UsedLessonsOut(class_id=class_id, lesson_ids=used_lesson_ids(db, class_id))


@router.get("/room/{room_name}", response_model=ScheduleDetailOut)
def get_schedule_by_room(
    room_name: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ScheduleDetailOut:
    record = schedule_queries.get_schedule_by_room(db, room_name)
    return schedule_queries.project_many(db, [record])[0]


@router.get("/session-status/{key}", response_model=SessionStatusOut)
def get_session_status(
    key: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SessionStatusOut:
    return schedule_queries.session_status(db, key, settings=get_settings())


@router.get("/{schedule_id}", response_model=ScheduleDetailOut)
def get_schedule(
    schedule_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ScheduleDetailOut:
    return schedule_queries.get_schedule_details(db, schedule_id)


@router.patch("/{schedule_id}", response_model=ScheduleUpdateOut)
def update_schedule(
    schedule_id: str,
    payload: ScheduleUpdate,
    update_series: bool = Query(default=False, alias="updateSeries"),
    current_user: User = Depends(require_roles(*SCHEDULER_ROLES)),
    db: Session = Depends(get_db),
) -> ScheduleUpdateOut:
    _authorize_record(db, current_user, schedule_queries.get_schedule(db, schedule_id))
    result = _writer(db, current_user).update(
        schedule_id,
        payload.model_dump(exclude_unset=True),
        update_series=update_series,
    )
    db.commit()
    records = [ScheduleOut.model_validate(record) for record in result.records]
    return ScheduleUpdateOut(scope=result.scope, count=len(records), records=records)


@router.delete("/{schedule_id}", response_model=ScheduleCancelOut)
def delete_schedule(
    schedule_id: str,
    delete_series: bool = Query(default=False, alias="deleteSeries"),
    reason: str | None = Query(default=None, max_length=500),
    current_user: User = Depends(require_roles(*SCHEDULER_ROLES)),
    db: Session = Depends(get_db),
) -> ScheduleCancelOut:
    _authorize_record(db, current_user, schedule_queries.get_schedule(db, schedule_id))
    cancelled = _writer(db, current_user).delete(schedule_id, delete_series=delete_series, reason=reason)
    db.commit()
    return ScheduleCancelOut(cancelled=[record.id for record in cancelled], count=len(cancelled))


@router.post("/{schedule_id}/complete", response_model=ScheduleOut)
def complete_schedule(
    schedule_id: str,
    current_user: User = Depends(require_roles(*SCHEDULER_ROLES)),
    db: Session = Depends(get_db),
) -> ScheduleOut:
    _authorize_record(db, current_user, schedule_queries.get_schedule(db, schedule_id))
    record = _writer(db, current_user).complete(schedule_id)
    db.commit()
    db.refresh(record)
    return record
