"""Create, update, cancel and track class schedule records.

The writer validates a whole request before touching the session: time range, recurrence
expansion, conflict scopes and lesson bindings all run first, and only then are rows added
and flushed. It never commits; the caller owns the transaction, so a raised
``ScheduleError`` leaves nothing behind.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from flexidual.core.config import Settings, get_settings
from flexidual.core.exceptions import ScheduleError, ScheduleErrorCode
from flexidual.models.class_schedule import (
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    ClassSchedule,
    ScheduleLesson,
    ScheduleStatus,
    SessionType,
)
from flexidual.services.audit import log_activity
from flexidual.services.class_directory import ClassContext, get_class_context
from flexidual.services.conflict_service import (
    ensure_batch_is_disjoint,
    ensure_no_conflict,
    scopes_for_class,
)
from flexidual.services.lesson_validator import normalize_lesson_ids, validate_lesson_assignment
from flexidual.services.recurrence import RecurrenceSpec, expand_recurrence
from flexidual.services.time_range import (
    MS_PER_MINUTE,
    TimeWindow,
    anchor_to_epoch_ms,
    compute_window,
    resolve_anchor,
    to_epoch_ms,
    validate_duration,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ScheduleStatus, frozenset[ScheduleStatus]] = {
    ScheduleStatus.scheduled: frozenset(
        {ScheduleStatus.active, ScheduleStatus.completed, ScheduleStatus.cancelled}
    ),
    ScheduleStatus.active: frozenset({ScheduleStatus.completed, ScheduleStatus.cancelled}),
    ScheduleStatus.completed: frozenset(),
    ScheduleStatus.cancelled: frozenset(),
}

PATCHABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "lesson_ids",
        "session_type",
        "start",
        "duration_minutes",
        "timezone_offset_minutes",
        "status",
    }
)
TIMING_FIELDS = frozenset({"start", "duration_minutes"})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_room_name(class_id: str, lesson_ids: Sequence[str], start_ms: int) -> str:
    if lesson_ids:
        return f"class-{class_id}-lesson-{lesson_ids[0]}-{start_ms}"
    return f"class-{class_id}-{start_ms}"


@dataclass
class RecurringCreateResult:
    records: list[ClassSchedule]
    adjusted_start: datetime | None = None

    @property
    def parent(self) -> ClassSchedule:
        return self.records[0]


@dataclass
class ScheduleUpdateResult:
    records: list[ClassSchedule] = field(default_factory=list)
    scope: str = "single"


class ScheduleWriter:
    def __init__(
        self,
        db: Session,
        *,
        actor_id: str | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.db = db
        self.actor_id = actor_id
        self.settings = settings or get_settings()
        self._clock = clock

    # ------------------------------------------------------------------ create

    def create_single(
        self,
        class_id: str,
        *,
        start: datetime,
        duration_minutes: int,
        timezone_offset_minutes: int | None = None,
        session_type: SessionType | str = SessionType.live,
        lesson_ids: Iterable[str] | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> ClassSchedule:
        context = get_class_context(self.db, class_id)
        window = compute_window(start, duration_minutes, timezone_offset_minutes)

        ensure_no_conflict(self.db, window, scopes_for_class(context))
        lessons = validate_lesson_assignment(
            self.db,
            context=context,
            lesson_ids=normalize_lesson_ids(lesson_ids),
            title=title,
            is_recurring=False,
        )

        record = self._new_record(
            context,
            window,
            session_type=SessionType(session_type),
            lesson_ids=lessons,
            title=title,
            description=description,
            room_name=self._unique_room_name(build_room_name(context.id, lessons, window.start)),
        )
        self.db.add(record)
        self.db.flush()
        log_activity(
            self.db,
            actor_id=self.actor_id,
            action="schedule.create",
            entity_type="class_schedule",
            entity_id=record.id,
            details={"class_id": context.id, "start": window.start, "lesson_ids": lessons},
        )
        self.db.flush()
        logger.info("Scheduled session %s for class %s at %s", record.id, context.id, window.start)
        return record

    def create_recurring(
        self,
        class_id: str,
        *,
        start: datetime,
        duration_minutes: int,
        recurrence: RecurrenceSpec | Mapping[str, Any],
        timezone_offset_minutes: int | None = None,
        session_type: SessionType | str = SessionType.live,
        lesson_ids: Iterable[str] | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> RecurringCreateResult:
        context = get_class_context(self.db, class_id)
        validate_duration(duration_minutes)
        spec = self._coerce_spec(recurrence)

        wall_clock, offset = resolve_anchor(start, timezone_offset_minutes)
        expansion = expand_recurrence(spec, wall_clock)
        duration_ms = duration_minutes * MS_PER_MINUTE
        windows = []
        for occurrence in expansion.occurrences:
            occurrence_start = anchor_to_epoch_ms(occurrence, offset)
            windows.append(TimeWindow(occurrence_start, occurrence_start + duration_ms))

        ensure_batch_is_disjoint(windows, context)
        scopes = scopes_for_class(context)
        for index, window in enumerate(windows):
            ensure_no_conflict(self.db, window, scopes, occurrence=index)

        validate_lesson_assignment(
            self.db,
            context=context,
            lesson_ids=normalize_lesson_ids(lesson_ids),
            title=title,
            is_recurring=True,
        )

        rule = spec.to_rule()
        kind = SessionType(session_type)
        records: list[ClassSchedule] = []
        taken: set[str] = set()
        for window in windows:
            room_name = self._unique_room_name(build_room_name(context.id, [], window.start), taken)
            taken.add(room_name)
            record = self._new_record(
                context,
                window,
                session_type=kind,
                lesson_ids=[],
                title=title,
                description=description,
                room_name=room_name,
                is_recurring=True,
                recurrence_rule=rule,
                recurrence_parent_id=records[0].id if records else None,
            )
            self.db.add(record)
            # The parent id is a client-side default; flush it before children reference it.
            if not records:
                self.db.flush()
            records.append(record)

        log_activity(
            self.db,
            actor_id=self.actor_id,
            action="schedule.create_series",
            entity_type="class_schedule",
            entity_id=records[0].id,
            details={"class_id": context.id, "rule": rule, "occurrences": len(records)},
        )
        self.db.flush()
        logger.info(
            "Scheduled series %s for class %s with %d occurrence(s)",
            records[0].id,
            context.id,
            len(records),
        )
        return RecurringCreateResult(records=records, adjusted_start=expansion.adjusted_start)

    # ------------------------------------------------------------------ update

    def update(
        self,
        record_id: str,
        changes: Mapping[str, Any],
        *,
        update_series: bool = False,
    ) -> ScheduleUpdateResult:
        unknown = set(changes) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported schedule fields: {', '.join(sorted(unknown))}")

        record = self.get_record(record_id)
        context = get_class_context(self.db, record.class_id)
        target_status = ScheduleStatus(changes["status"]) if changes.get("status") is not None else None
        edits = {key: value for key, value in changes.items() if key != "status"}
        edits.pop("timezone_offset_minutes", None)

        if edits and record.status in TERMINAL_STATUSES:
            raise ScheduleError(
                ScheduleErrorCode.schedule_locked,
                f"A {record.status.value} schedule can no longer be edited",
                scheduleId=record.id,
            )

        if update_series and record.in_series:
            records = self._update_series(record, context, changes, target_status)
            scope = "series"
        else:
            self._update_instance(record, context, changes, target_status)
            records = [record]
            scope = "single"

        log_activity(
            self.db,
            actor_id=self.actor_id,
            action="schedule.update",
            entity_type="class_schedule",
            entity_id=record.id,
            details={
                "scope": scope,
                "fields": sorted(changes),
                "affected": [item.id for item in records],
            },
        )
        self.db.flush()
        return ScheduleUpdateResult(records=records, scope=scope)

    def _update_instance(
        self,
        record: ClassSchedule,
        context: ClassContext,
        changes: Mapping[str, Any],
        target_status: ScheduleStatus | None,
    ) -> None:
        new_type = changes.get("session_type")
        if record.in_series and new_type is not None and SessionType(new_type) != record.session_type:
            raise ScheduleError(
                ScheduleErrorCode.schedule_locked,
                "The session type is shared by the whole series; update the series instead",
                scheduleId=record.id,
            )

        window = self._patched_window(record, changes)
        if window != TimeWindow(record.scheduled_start, record.scheduled_end):
            ensure_no_conflict(self.db, window, scopes_for_class(context), exclude_ids=[record.id])

        lesson_ids = normalize_lesson_ids(changes["lesson_ids"]) if "lesson_ids" in changes else record.lesson_ids
        title = changes["title"] if "title" in changes else record.title
        if record.status not in TERMINAL_STATUSES:
            lesson_ids = validate_lesson_assignment(
                self.db,
                context=context,
                lesson_ids=lesson_ids,
                title=title,
                is_recurring=record.in_series,
                exclude_ids=[record.id],
            )

        self._apply_metadata(record, changes)
        record.scheduled_start, record.scheduled_end = window.start, window.end
        if "lesson_ids" in changes:
            self._replace_lessons(record, lesson_ids)
        if target_status is not None:
            self._transition(record, target_status)

    def _update_series(
        self,
        record: ClassSchedule,
        context: ClassContext,
        changes: Mapping[str, Any],
        target_status: ScheduleStatus | None,
    ) -> list[ClassSchedule]:
        if normalize_lesson_ids(changes.get("lesson_ids")):
            raise ScheduleError(
                ScheduleErrorCode.recurring_no_lessons,
                "Recurring schedules cannot have lessons attached",
            )

        affected = [
            item
            for item in self.series_members(record, from_start=record.scheduled_start)
            if item.status in LIVE_STATUSES
        ]
        edited_window = self._patched_window(record, changes)
        shift = edited_window.start - record.scheduled_start
        duration = edited_window.duration_ms

        windows = [
            TimeWindow(item.scheduled_start + shift, item.scheduled_start + shift + duration)
            for item in affected
        ]
        timing_changed = any(
            window != TimeWindow(item.scheduled_start, item.scheduled_end)
            for item, window in zip(affected, windows)
        )
        if timing_changed:
            ensure_batch_is_disjoint(windows, context)
            excluded = [item.id for item in affected]
            scopes = scopes_for_class(context)
            for index, window in enumerate(windows):
                ensure_no_conflict(self.db, window, scopes, exclude_ids=excluded, occurrence=index)

        for item in affected:
            title = changes["title"] if "title" in changes else item.title
            validate_lesson_assignment(
                self.db,
                context=context,
                lesson_ids=[],
                title=title,
                is_recurring=True,
                exclude_ids=[item.id],
            )
        if target_status is not None:
            for item in affected:
                self._check_transition(item, target_status)

        for item, window in zip(affected, windows):
            self._apply_metadata(item, changes)
            item.scheduled_start, item.scheduled_end = window.start, window.end
            if "lesson_ids" in changes:
                self._replace_lessons(item, [])
            if target_status is not None:
                self._transition(item, target_status)
        logger.info("Updated %d instance(s) of series %s", len(affected), record.series_root_id)
        return affected

    # ------------------------------------------------------------------ cancel

    def delete(
        self,
        record_id: str,
        *,
        delete_series: bool = False,
        reason: str | None = None,
    ) -> list[ClassSchedule]:
        """Cancel one instance, or it and every later instance of its series."""
        record = self.get_record(record_id)

        if delete_series and record.in_series:
            targets = [
                item
                for item in self.series_members(record, from_start=record.scheduled_start)
                if item.status in LIVE_STATUSES
            ]
        elif record.status is ScheduleStatus.cancelled:
            return []
        else:
            self._check_transition(record, ScheduleStatus.cancelled)
            targets = [record]

        for item in targets:
            self._transition(item, ScheduleStatus.cancelled)
            if reason:
                prefix = f"{item.description}\n\n" if item.description else ""
                item.description = f"{prefix}Cancellation reason: {reason}"

        log_activity(
            self.db,
            actor_id=self.actor_id,
            action="schedule.cancel",
            entity_type="class_schedule",
            entity_id=record.id,
            details={
                "scope": "series" if delete_series and record.in_series else "single",
                "cancelled": [item.id for item in targets],
                "reason": reason,
            },
        )
        self.db.flush()
        logger.info("Cancelled %d schedule record(s) starting from %s", len(targets), record.id)
        return targets

    # ------------------------------------------------------------------ status

    def mark_live(self, room_name: str, is_live: bool) -> ClassSchedule:
        record = self.db.execute(
            select(ClassSchedule).where(ClassSchedule.room_name == room_name)
        ).scalar_one_or_none()
        if record is None:
            raise ScheduleError(ScheduleErrorCode.schedule_not_found, "Schedule not found", roomName=room_name)

        if is_live:
            if record.status in TERMINAL_STATUSES:
                raise ScheduleError(
                    ScheduleErrorCode.invalid_status_transition,
                    f"Cannot open the room of a {record.status.value} session",
                    scheduleId=record.id,
                )
            if record.status is ScheduleStatus.active and record.is_live:
                return record
            record.status = ScheduleStatus.active
            record.is_live = True
        else:
            if not record.is_live and record.status is not ScheduleStatus.active:
                return record
            record.is_live = False
            if record.status is ScheduleStatus.active:
                record.status = ScheduleStatus.scheduled

        log_activity(
            self.db,
            actor_id=self.actor_id,
            action="schedule.live",
            entity_type="class_schedule",
            entity_id=record.id,
            details={"room_name": room_name, "is_live": is_live},
        )
        self.db.flush()
        return record

    def complete(self, record_id: str) -> ClassSchedule:
        record = self.get_record(record_id)
        if record.status is ScheduleStatus.completed:
            return record
        self._transition(record, ScheduleStatus.completed)
        log_activity(
            self.db,
            actor_id=self.actor_id,
            action="schedule.complete",
            entity_type="class_schedule",
            entity_id=record.id,
        )
        self.db.flush()
        return record

    def cleanup_stale_sessions(self, now_ms: int | None = None) -> list[ClassSchedule]:
        """Close active sessions whose room was never shut down after the scheduled end."""
        now_ms = now_ms if now_ms is not None else to_epoch_ms(self._clock())
        cutoff = now_ms - self.settings.stale_session_grace_minutes * MS_PER_MINUTE
        stale = list(
            self.db.execute(
                select(ClassSchedule).where(
                    ClassSchedule.status == ScheduleStatus.active,
                    ClassSchedule.scheduled_end < cutoff,
                )
            ).scalars()
        )
        for record in stale:
            self._transition(record, ScheduleStatus.completed)
        if stale:
            log_activity(
                self.db,
                actor_id=self.actor_id,
                action="schedule.cleanup",
                entity_type="class_schedule",
                details={"completed": [record.id for record in stale]},
            )
            logger.warning("Closed %d stale live session(s)", len(stale))
        self.db.flush()
        return stale

    # ------------------------------------------------------------------ helpers

    def get_record(self, record_id: str) -> ClassSchedule:
        record = self.db.get(ClassSchedule, record_id)
        if record is None:
            raise ScheduleError(ScheduleErrorCode.schedule_not_found, "Schedule not found", scheduleId=record_id)
        return record

    def series_members(self, record: ClassSchedule, *, from_start: int | None = None) -> list[ClassSchedule]:
        root_id = record.series_root_id
        query = select(ClassSchedule).where(
            or_(ClassSchedule.id == root_id, ClassSchedule.recurrence_parent_id == root_id)
        )
        if from_start is not None:
            query = query.where(ClassSchedule.scheduled_start >= from_start)
        return list(self.db.execute(query.order_by(ClassSchedule.scheduled_start)).scalars())

    def _coerce_spec(self, recurrence: RecurrenceSpec | Mapping[str, Any]) -> RecurrenceSpec:
        if isinstance(recurrence, RecurrenceSpec):
            raw = recurrence.to_rule()
        else:
            raw = dict(recurrence)
        return RecurrenceSpec.build(
            raw.get("type"),
            raw.get("occurrences"),
            raw.get("daysOfWeek", raw.get("days_of_week")),
            max_occurrences=self.settings.max_recurrence_occurrences,
        )

    def _patched_window(self, record: ClassSchedule, changes: Mapping[str, Any]) -> TimeWindow:
        start_ms = record.scheduled_start
        if changes.get("start") is not None:
            start_ms = anchor_to_epoch_ms(changes["start"], changes.get("timezone_offset_minutes"))
        if changes.get("duration_minutes") is not None:
            validate_duration(changes["duration_minutes"])
            duration_ms = changes["duration_minutes"] * MS_PER_MINUTE
        else:
            duration_ms = record.duration_ms
        return TimeWindow(start_ms, start_ms + duration_ms)

    def _apply_metadata(self, record: ClassSchedule, changes: Mapping[str, Any]) -> None:
        if "title" in changes:
            record.title = (changes["title"] or "").strip() or None
        if "description" in changes:
            record.description = changes["description"]
        if changes.get("session_type") is not None:
            record.session_type = SessionType(changes["session_type"])

    def _replace_lessons(self, record: ClassSchedule, lesson_ids: Sequence[str]) -> None:
        existing = {link.lesson_id: link for link in record.lesson_links}
        record.lesson_links = [
            existing.get(lesson_id) or ScheduleLesson(lesson_id=lesson_id, class_id=record.class_id)
            for lesson_id in lesson_ids
        ]

    def _check_transition(self, record: ClassSchedule, target: ScheduleStatus) -> None:
        if target is record.status:
            return
        if target not in ALLOWED_TRANSITIONS[record.status]:
            raise ScheduleError(
                ScheduleErrorCode.invalid_status_transition,
                f"Cannot move a schedule from {record.status.value} to {target.value}",
                scheduleId=record.id,
            )

    def _transition(self, record: ClassSchedule, target: ScheduleStatus) -> None:
        self._check_transition(record, target)
        if target is record.status:
            return
        now = self._clock()
        record.status = target
        if target is ScheduleStatus.active:
            record.is_live = True
        elif target is ScheduleStatus.completed:
            record.is_live = False
            record.completed_at = record.completed_at or now
        elif target is ScheduleStatus.cancelled:
            record.is_live = False
            record.cancelled_at = now

    def _new_record(
        self,
        context: ClassContext,
        window: TimeWindow,
        *,
        session_type: SessionType,
        lesson_ids: Sequence[str],
        title: str | None,
        description: str | None,
        room_name: str,
        is_recurring: bool = False,
        recurrence_rule: dict | None = None,
        recurrence_parent_id: str | None = None,
    ) -> ClassSchedule:
        record = ClassSchedule(
            class_id=context.id,
            teacher_id=context.teacher_id,
            curriculum_id=context.curriculum_id,
            title=(title or "").strip() or None,
            description=description,
            session_type=session_type,
            scheduled_start=window.start,
            scheduled_end=window.end,
            room_name=room_name,
            is_live=False,
            status=ScheduleStatus.scheduled,
            is_recurring=is_recurring,
            recurrence_rule=recurrence_rule,
            recurrence_parent_id=recurrence_parent_id,
            created_by=self.actor_id,
        )
        self._replace_lessons(record, lesson_ids)
        return record

    def _unique_room_name(self, base: str, taken: set[str] | None = None) -> str:
        taken = taken or set()
        candidate = base
        suffix = 1
        while candidate in taken or self._room_name_exists(candidate):
            suffix += 1
            candidate = f"{base}-{suffix}"
        return candidate

    def _room_name_exists(self, room_name: str) -> bool:
        return (
            self.db.execute(
                select(ClassSchedule.id).where(ClassSchedule.room_name == room_name).limit(1)
            ).first()
            is not None
        )
