from __future__ import annotations

import logging

from sqlalchemy import inspect

from flexidual.db.base import Base
from flexidual.db.session import engine
import flexidual.models  # noqa: F401

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "users": {"id", "email", "role", "image_url"},
    "classes": {"id", "name", "curriculum_id", "teacher_id", "tutor_id"},
    "lessons": {"id", "curriculum_id", "title", "order"},
    "class_schedule": {
        "id",
        "class_id",
        "teacher_id",
        "curriculum_id",
        "scheduled_start",
        "scheduled_end",
        "room_name",
        "status",
        "recurrence_rule",
        "recurrence_parent_id",
    },
    "schedule_lessons": {"schedule_id", "lesson_id", "class_id"},
}


def _assert_required_columns() -> None:
    with engine.begin() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        missing_tables = [name for name in REQUIRED_COLUMNS if name not in table_names]
        if missing_tables:
            raise RuntimeError(f"Missing required tables: {', '.join(sorted(missing_tables))}")

        missing_columns: list[str] = []
        for table_name, required in REQUIRED_COLUMNS.items():
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            for column_name in sorted(required - existing):
                missing_columns.append(f"{table_name}.{column_name}")
        if missing_columns:
            raise RuntimeError(f"Missing required columns: {', '.join(missing_columns)}")


def ensure_runtime_schema_compatibility() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        _assert_required_columns()
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema compatibility bootstrap failed")
        raise RuntimeError("Runtime schema compatibility bootstrap failed") from exc
