from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flexidual.models.class_schedule import ScheduleStatus, SessionType
from flexidual.services.recurrence import RecurrenceType


class RecurrenceIn(BaseModel):
    type: RecurrenceType
    occurrences: int
    days_of_week: list[int] | None = Field(default=None, alias="daysOfWeek")

    model_config = ConfigDict(populate_by_name=True)


class ScheduleTiming(BaseModel):
    start: datetime
    duration_minutes: int = Field(alias="durationMinutes")
    timezone_offset_minutes: int | None = Field(default=None, alias="timezoneOffsetMinutes")

    model_config = ConfigDict(populate_by_name=True)


class ScheduleCreate(ScheduleTiming):
    class_id: str = Field(alias="classId", min_length=1)
    lesson_ids: list[str] = Field(default_factory=list, alias="lessonIds", max_length=50)
    title: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=4000)
    session_type: SessionType = Field(default=SessionType.live, alias="sessionType")

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class RecurringScheduleCreate(ScheduleCreate):
    recurrence: RecurrenceIn


class RecurrencePreviewRequest(ScheduleTiming):
    recurrence: RecurrenceIn


class ScheduleUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=4000)
    lesson_ids: list[str] | None = Field(default=None, alias="lessonIds", max_length=50)
    session_type: SessionType | None = Field(default=None, alias="sessionType")
    start: datetime | None = None
    duration_minutes: int | None = Field(default=None, alias="durationMinutes")
    timezone_offset_minutes: int | None = Field(default=None, alias="timezoneOffsetMinutes")
    status: ScheduleStatus | None = None

    model_config = ConfigDict(populate_by_name=True)


class LiveStatusUpdate(BaseModel):
    room_name: str = Field(alias="roomName", min_length=1)
    is_live: bool = Field(alias="isLive")

    model_config = ConfigDict(populate_by_name=True)


class LessonSummary(BaseModel):
    id: str
    title: str


class ScheduleOut(BaseModel):
    id: str
    class_id: str = Field(alias="classId")
    teacher_id: str = Field(alias="teacherId")
    curriculum_id: str = Field(alias="curriculumId")
    title: str | None
    description: str | None
    lesson_ids: list[str] = Field(alias="lessonIds")
    session_type: SessionType = Field(alias="sessionType")
    scheduled_start: int = Field(alias="scheduledStart")
    scheduled_end: int = Field(alias="scheduledEnd")
    room_name: str = Field(alias="roomName")
    is_live: bool = Field(alias="isLive")
    status: ScheduleStatus
    is_recurring: bool = Field(alias="isRecurring")
    recurrence_rule: dict | None = Field(default=None, alias="recurrenceRule")
    recurrence_parent_id: str | None = Field(default=None, alias="recurrenceParentId")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ScheduleDetailOut(ScheduleOut):
    class_name: str = Field(alias="className")
    curriculum_title: str = Field(alias="curriculumTitle")
    curriculum_color: str = Field(alias="curriculumColor")
    teacher_name: str | None = Field(default=None, alias="teacherName")
    teacher_image: str | None = Field(default=None, alias="teacherImage")
    lessons: list[LessonSummary] = Field(default_factory=list)


class RecurringCreateOut(BaseModel):
    parent_id: str = Field(alias="parentId")
    count: int
    adjusted_start: datetime | None = Field(default=None, alias="adjustedStart")
    records: list[ScheduleOut]

    model_config = ConfigDict(populate_by_name=True)


class RecurrencePreviewOut(BaseModel):
    occurrences: list[datetime]
    windows: list[tuple[int, int]]
    adjusted_start: datetime | None = Field(default=None, alias="adjustedStart")

    model_config = ConfigDict(populate_by_name=True)


class ScheduleUpdateOut(BaseModel):
    scope: str
    count: int
    records: list[ScheduleOut]


class ScheduleCancelOut(BaseModel):
    cancelled: list[str]
    count: int


class SessionStatusOut(BaseModel):
    schedule_id: str = Field(alias="scheduleId")
    room_name: str = Field(alias="roomName")
    status: ScheduleStatus
    is_live: bool = Field(alias="isLive")
    can_join: bool = Field(alias="canJoin")
    join_opens_at: int = Field(alias="joinOpensAt")
    join_closes_at: int = Field(alias="joinClosesAt")
    starts_in_ms: int = Field(alias="startsInMs")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class UsedLessonsOut(BaseModel):
    class_id: str = Field(alias="classId")
    lesson_ids: list[str] = Field(alias="lessonIds")

    model_config = ConfigDict(populate_by_name=True)


class SchedulableLesson(BaseModel):
    id: str
    title: str
    order: int


class SchedulableClassOut(BaseModel):
    id: str
    name: str
    curriculum_id: str = Field(alias="curriculumId")
    curriculum_title: str = Field(alias="curriculumTitle")
    curriculum_color: str | None = Field(default=None, alias="curriculumColor")
    lessons: list[SchedulableLesson] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class CleanupOut(BaseModel):
    completed: list[str]
    count: int
