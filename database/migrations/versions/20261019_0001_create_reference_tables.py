"""create users, curriculums, lessons and classes

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


user_role_enum = sa.Enum("student", "teacher", "tutor", "admin", "superadmin", name="user_role")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", user_role_enum, nullable=False),
        sa.Column("image_url", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "curriculums",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("code", sa.String(length=50), nullable=True),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_curriculums_code", "curriculums", ["code"])

    op.create_table(
        "lessons",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "curriculum_id",
            sa.String(length=36),
            sa.ForeignKey("curriculums.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_lessons_curriculum_id", "lessons", ["curriculum_id"])

    op.create_table(
        "classes",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("curriculum_id", sa.String(length=36), sa.ForeignKey("curriculums.id"), nullable=False),
        sa.Column("teacher_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tutor_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("academic_year", sa.String(length=20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_classes_curriculum_id", "classes", ["curriculum_id"])
    op.create_index("ix_classes_teacher_id", "classes", ["teacher_id"])

    op.create_table(
        "class_students",
        sa.Column(
            "class_id",
            sa.String(length=36),
            sa.ForeignKey("classes.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "student_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_entity_id", "activity_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_index("ix_activity_logs_entity_id", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_table("class_students")
    op.drop_index("ix_classes_teacher_id", table_name="classes")
    op.drop_index("ix_classes_curriculum_id", table_name="classes")
    op.drop_table("classes")
    op.drop_index("ix_lessons_curriculum_id", table_name="lessons")
    op.drop_table("lessons")
    op.drop_index("ix_curriculums_code", table_name="curriculums")
    op.drop_table("curriculums")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    user_role_enum.drop(op.get_bind(), checkfirst=True)
