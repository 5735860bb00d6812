from enum import Enum


class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ScheduleErrorCode(str, Enum):
    invalid_duration = "INVALID_DURATION"
    invalid_recurrence = "INVALID_RECURRENCE"
    teacher_schedule_conflict = "TEACHER_SCHEDULE_CONFLICT"
    class_schedule_conflict = "CLASS_SCHEDULE_CONFLICT"
    curriculum_conflict = "CURRICULUM_CONFLICT"
    lesson_already_scheduled = "LESSON_ALREADY_SCHEDULED"
    recurring_no_lessons = "RECURRING_NO_LESSONS"
    title_required = "TITLE_REQUIRED"
    lesson_not_found = "LESSON_NOT_FOUND"
    lesson_curriculum_mismatch = "LESSON_CURRICULUM_MISMATCH"
    schedule_not_found = "SCHEDULE_NOT_FOUND"
    schedule_locked = "SCHEDULE_LOCKED"
    invalid_status_transition = "INVALID_STATUS_TRANSITION"
    class_not_found = "CLASS_NOT_FOUND"
    permission_denied = "PERMISSION_DENIED"


ERROR_STATUS_CODES: dict[ScheduleErrorCode, int] = {
    ScheduleErrorCode.invalid_duration: 400,
    ScheduleErrorCode.invalid_recurrence: 400,
    ScheduleErrorCode.recurring_no_lessons: 400,
    ScheduleErrorCode.title_required: 400,
    ScheduleErrorCode.lesson_curriculum_mismatch: 400,
    ScheduleErrorCode.invalid_status_transition: 400,
    ScheduleErrorCode.permission_denied: 403,
    ScheduleErrorCode.class_not_found: 404,
    ScheduleErrorCode.lesson_not_found: 404,
    ScheduleErrorCode.schedule_not_found: 404,
    ScheduleErrorCode.teacher_schedule_conflict: 409,
    ScheduleErrorCode.class_schedule_conflict: 409,
    ScheduleErrorCode.curriculum_conflict: 409,
    ScheduleErrorCode.lesson_already_scheduled: 409,
    ScheduleErrorCode.schedule_locked: 409,
}


class ScheduleError(AppError):
    """Business-rule violation raised by the scheduling engine before any write.

    ``details`` always holds the machine-readable ``code``; the remaining keyword
    arguments (``className``, ``conflictTime``, ``lessonTitle``...) are passed through
    so the UI can build a localized message.
    """
    def __init__(self, code: ScheduleErrorCode, message: str | None = None, **fields):
        self.code = code
        details = {"code": code.value}
        details.update({key: value for key, value in fields.items() if value is not None})
        super().__init__(
            message or code.value,
            status_code=ERROR_STATUS_CODES.get(code, 400),
            details=details,
        )
