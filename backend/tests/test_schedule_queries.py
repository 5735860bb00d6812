from datetime import datetime, timedelta, timezone

import pytest

from flexidual.core.config import get_settings
from flexidual.core.exceptions import ScheduleError, ScheduleErrorCode
from flexidual.models.user import User
from flexidual.services.schedule_queries import get_schedule_details, my_schedule, session_status
from flexidual.services.time_range import to_epoch_ms


def test_join_window_opens_before_start_and_closes_after_end(writer, db_session, seed):
    start = datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)
    record = writer.create_single(seed.class_a_id, start=start, duration_minutes=60, title="Window")
    settings = get_settings()

    def can_join(moment):
        return session_status(db_session, record.room_name, now=moment, settings=settings).can_join

    lead = timedelta(minutes=settings.join_window_lead_minutes)
    trail = timedelta(minutes=settings.join_window_trail_minutes)
    assert not can_join(start - lead - timedelta(minutes=1))
    assert can_join(start - lead)
    assert can_join(start + timedelta(minutes=60) + trail)
    assert not can_join(start + timedelta(minutes=61) + trail)

    writer.delete(record.id)
    assert not can_join(start)


def test_status_reports_countdown(writer, db_session, seed):
    start = datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)
    record = writer.create_single(seed.class_a_id, start=start, duration_minutes=30, title="Countdown")

    status = session_status(db_session, record.id, now=start - timedelta(hours=1))

    assert status.starts_in_ms == 60 * 60_000
    assert status.room_name == record.room_name


def test_details_fall_back_to_default_title(writer, db_session, seed):
    record = writer.create_single(seed.class_a_id, start=datetime(2030, 1, 7, 10), duration_minutes=30, title="Tmp")
    record.title = None
    db_session.flush()

    details = get_schedule_details(db_session, record.id)

    assert details["title"] == "Class Session"
    assert details["curriculum_title"] == "Mathematics"


def test_unknown_room_is_not_found(db_session, seed):
    with pytest.raises(ScheduleError) as exc_info:
        session_status(db_session, "class-x-0")

    assert exc_info.value.code is ScheduleErrorCode.schedule_not_found


def test_my_schedule_range_is_inclusive_on_start_time(writer, db_session, seed):
    writer.create_single(seed.class_c_id, start=datetime(2030, 1, 7, 9, 0), duration_minutes=120, title="Straddles")
    writer.create_single(seed.class_a_id, start=datetime(2030, 1, 7, 10, 0), duration_minutes=60, title="At from")
    writer.create_single(seed.class_a_id, start=datetime(2030, 1, 7, 12, 0), duration_minutes=60, title="At to")
    admin = db_session.get(User, seed.admin_id)

    items = my_schedule(
        db_session,
        admin,
        start_ms=to_epoch_ms(datetime(2030, 1, 7, 10, 0)),
        end_ms=to_epoch_ms(datetime(2030, 1, 7, 12, 0)),
    )

    assert [item["title"] for item in items] == ["At from", "At to"]
