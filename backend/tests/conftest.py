from datetime import datetime, timedelta, timezone
import os
from pathlib import Path
import tempfile
from types import SimpleNamespace

# The app module builds its engine at import time; keep it off the production database.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+pysqlite:///{Path(tempfile.gettempdir()) / 'flexidual-tests.db'}",
)

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from flexidual.api.deps import get_db
from flexidual.core.config import get_settings
from flexidual.db.base import Base
from flexidual.main import app
from flexidual.models.curriculum import Curriculum, Lesson
from flexidual.models.school_class import SchoolClass
from flexidual.models.user import User, UserRole
from flexidual.services.schedule_writer import ScheduleWriter


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture()
def seed(db_session):
    """Two teachers with one class each on the same curriculum, plus an admin and a student."""
    admin = User(full_name="Ada Admin", email="admin@example.com", role=UserRole.admin)
    teacher = User(full_name="Tom Teacher", email="tom@example.com", role=UserRole.teacher)
    other_teacher = User(full_name="Olga Teacher", email="olga@example.com", role=UserRole.teacher)
    student = User(full_name="Sam Student", email="sam@example.com", role=UserRole.student)
    db_session.add_all([admin, teacher, other_teacher, student])
    db_session.flush()

    math = Curriculum(title="Mathematics", color="#ff0000")
    science = Curriculum(title="Science")
    db_session.add_all([math, science])
    db_session.flush()

    lessons = [Lesson(curriculum_id=math.id, title=f"Fractions {index}", order=index) for index in range(1, 4)]
    foreign_lesson = Lesson(curriculum_id=science.id, title="Cells", order=1)
    db_session.add_all([*lessons, foreign_lesson])
    db_session.flush()

    class_a = SchoolClass(name="Grade 5A", curriculum_id=math.id, teacher_id=teacher.id)
    class_b = SchoolClass(name="Grade 5B", curriculum_id=math.id, teacher_id=teacher.id)
    class_c = SchoolClass(name="Grade 6C", curriculum_id=science.id, teacher_id=other_teacher.id)
    class_a.students.append(student)
    db_session.add_all([class_a, class_b, class_c])
    db_session.commit()

    return SimpleNamespace(
        admin_id=admin.id,
        teacher_id=teacher.id,
        other_teacher_id=other_teacher.id,
        student_id=student.id,
        math_id=math.id,
        science_id=science.id,
        lesson_ids=[lesson.id for lesson in lessons],
        foreign_lesson_id=foreign_lesson.id,
        class_a_id=class_a.id,
        class_b_id=class_b.id,
        class_c_id=class_c.id,
    )


@pytest.fixture()
def writer(db_session, seed):
    return ScheduleWriter(db_session, actor_id=seed.admin_id, settings=get_settings())


@pytest.fixture()
def auth_headers():
    settings = get_settings()

    def build(user_id: str) -> dict[str, str]:
        claims = {
            "sub": user_id,
            "exp": datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes),
        }
        token = jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
        return {"Authorization": f"Bearer {token}"}

    return build
