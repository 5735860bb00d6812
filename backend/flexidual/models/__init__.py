from flexidual.models.activity_log import ActivityLog  # noqa: F401
from flexidual.models.class_schedule import (  # noqa: F401
    ClassSchedule,
    ScheduleLesson,
    ScheduleStatus,
    SessionType,
)
from flexidual.models.curriculum import Curriculum, Lesson  # noqa: F401
from flexidual.models.school_class import SchoolClass, class_students  # noqa: F401
from flexidual.models.user import User, UserRole  # noqa: F401
