import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from flexidual.db.base import Base


class ScheduleStatus(str, Enum):
    scheduled = "scheduled"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class SessionType(str, Enum):
    live = "live"
    asynchronous = "asynchronous"


# Records in these statuses take part in conflict scans and hold their lessons.
LIVE_STATUSES = (ScheduleStatus.scheduled, ScheduleStatus.active)
TERMINAL_STATUSES = (ScheduleStatus.completed, ScheduleStatus.cancelled)


class ScheduleLesson(Base):
    __tablename__ = "schedule_lessons"

    schedule_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("class_schedule.id", ondelete="CASCADE"), primary_key=True
    )
    lesson_id: Mapped[str] = mapped_column(String(36), ForeignKey("lessons.id"), primary_key=True)
    class_id: Mapped[str] = mapped_column(String(36), nullable=False)

    __table_args__ = (Index("ix_schedule_lessons_class_lesson", "class_id", "lesson_id"),)


class ClassSchedule(Base):
    __tablename__ = "class_schedule"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    class_id: Mapped[str] = mapped_column(String(36), ForeignKey("classes.id"), nullable=False)
    teacher_id: Mapped[str] = mapped_column(String(36), nullable=False)
    curriculum_id: Mapped[str] = mapped_column(String(36), nullable=False)

    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_type: Mapped[SessionType] = mapped_column(
        SAEnum(SessionType, name="session_type"),
        nullable=False,
        default=SessionType.live,
    )

    scheduled_start: Mapped[int] = mapped_column(BigInteger, nullable=False)
    scheduled_end: Mapped[int] = mapped_column(BigInteger, nullable=False)

    room_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_live: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[ScheduleStatus] = mapped_column(
        SAEnum(ScheduleStatus, name="schedule_status"),
        nullable=False,
        default=ScheduleStatus.scheduled,
    )

    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurrence_rule: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    recurrence_parent_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    lesson_links: Mapped[list[ScheduleLesson]] = relationship(
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by=ScheduleLesson.lesson_id,
    )

    __table_args__ = (
        Index("ix_class_schedule_class_start", "class_id", "scheduled_start"),
        Index("ix_class_schedule_teacher_start", "teacher_id", "scheduled_start"),
        Index("ix_class_schedule_status_start", "status", "scheduled_start"),
        CheckConstraint("scheduled_end > scheduled_start", name="ck_class_schedule_window"),
    )

    @property
    def lesson_ids(self) -> list[str]:
        return [link.lesson_id for link in self.lesson_links]

    @property
    def series_root_id(self) -> str:
        return self.recurrence_parent_id or self.id

    @property
    def in_series(self) -> bool:
        return self.is_recurring or self.recurrence_parent_id is not None

    @property
    def duration_ms(self) -> int:
        return self.scheduled_end - self.scheduled_start
