import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Table
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from flexidual.db.base import Base

class_students = Table(
    "class_students",
    Base.metadata,
    Column("class_id", String(36), ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True),
    Column("student_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class SchoolClass(Base):
    __tablename__ = "classes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    curriculum_id: Mapped[str] = mapped_column(String(36), ForeignKey("curriculums.id"), index=True, nullable=False)
    teacher_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    tutor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    academic_year: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    students = relationship("User", secondary=class_students, lazy="selectin")

    @property
    def student_ids(self) -> list[str]:
        return [student.id for student in self.students]
