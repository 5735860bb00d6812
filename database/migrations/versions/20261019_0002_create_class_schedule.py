"""create class schedule and lesson bindings

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


schedule_status_enum = sa.Enum("scheduled", "active", "completed", "cancelled", name="schedule_status")
session_type_enum = sa.Enum("live", "asynchronous", name="session_type")


def upgrade() -> None:
    op.create_table(
        "class_schedule",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("class_id", sa.String(length=36), sa.ForeignKey("classes.id"), nullable=False),
        sa.Column("teacher_id", sa.String(length=36), nullable=False),
        sa.Column("curriculum_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("session_type", session_type_enum, nullable=False, server_default="live"),
        sa.Column("scheduled_start", sa.BigInteger(), nullable=False),
        sa.Column("scheduled_end", sa.BigInteger(), nullable=False),
        sa.Column("room_name", sa.String(length=255), nullable=False),
        sa.Column("is_live", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", schedule_status_enum, nullable=False, server_default="scheduled"),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("recurrence_rule", sa.JSON(), nullable=True),
        sa.Column("recurrence_parent_id", sa.String(length=36), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("room_name", name="uq_class_schedule_room_name"),
        sa.CheckConstraint("scheduled_end > scheduled_start", name="ck_class_schedule_window"),
    )
    op.create_index("ix_class_schedule_recurrence_parent_id", "class_schedule", ["recurrence_parent_id"])
    op.create_index("ix_class_schedule_class_start", "class_schedule", ["class_id", "scheduled_start"])
    op.create_index("ix_class_schedule_teacher_start", "class_schedule", ["teacher_id", "scheduled_start"])
    op.create_index("ix_class_schedule_status_start", "class_schedule", ["status", "scheduled_start"])

    op.create_table(
        "schedule_lessons",
        sa.Column(
            "schedule_id",
            sa.String(length=36),
            sa.ForeignKey("class_schedule.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("lesson_id", sa.String(length=36), sa.ForeignKey("lessons.id"), primary_key=True),
        sa.Column("class_id", sa.String(length=36), nullable=False),
    )
    op.create_index("ix_schedule_lessons_class_lesson", "schedule_lessons", ["class_id", "lesson_id"])


def downgrade() -> None:
    op.drop_index("ix_schedule_lessons_class_lesson", table_name="schedule_lessons")
    op.drop_table("schedule_lessons")
    op.drop_index("ix_class_schedule_status_start", table_name="class_schedule")
    op.drop_index("ix_class_schedule_teacher_start", table_name="class_schedule")
    op.drop_index("ix_class_schedule_class_start", table_name="class_schedule")
    op.drop_index("ix_class_schedule_recurrence_parent_id", table_name="class_schedule")
    op.drop_table("class_schedule")
    schedule_status_enum.drop(op.get_bind(), checkfirst=True)
    session_type_enum.drop(op.get_bind(), checkfirst=True)
