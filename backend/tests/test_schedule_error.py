from flexidual.core.exceptions import (
    ERROR_STATUS_CODES,
    AppError,
    ScheduleError,
    ScheduleErrorCode,
)


def test_schedule_error_structure():
    err = ScheduleError(
        ScheduleErrorCode.curriculum_conflict,
        "Overlap",
        className="Grade 5A",
        conflictTime=1000,
        occurrence=None,
    )
    assert isinstance(err, AppError)
    assert err.status_code == 409
    assert err.message == "Overlap"
    assert err.details == {"code": "CURRICULUM_CONFLICT", "className": "Grade 5A", "conflictTime": 1000}


def test_schedule_error_defaults_message_to_code():
    err = ScheduleError(ScheduleErrorCode.title_required)
    assert err.message == "TITLE_REQUIRED"
    assert err.status_code == 400


def test_every_code_has_a_status():
    assert set(ERROR_STATUS_CODES) == set(ScheduleErrorCode)


def test_app_error_defaults():
    err = AppError("Generic error")
    assert err.status_code == 500
    assert err.details == {}
