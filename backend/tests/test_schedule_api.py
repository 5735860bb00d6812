from datetime import datetime, timedelta, timezone


def _ms(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)


def create_single(client, headers, class_id, start="2030-01-07T10:00:00", **extra):
    payload = {
        "classId": class_id,
        "start": start,
        "durationMinutes": extra.pop("duration", 60),
        "timezoneOffsetMinutes": 0,
        **extra,
    }
    return client.post("/api/schedule", json=payload, headers=headers)


def test_create_single_returns_camel_case_record(client, seed, auth_headers):
    response = create_single(client, auth_headers(seed.teacher_id), seed.class_a_id, title="Algebra")

    assert response.status_code == 201
    body = response.json()
    assert body["classId"] == seed.class_a_id
    assert body["scheduledStart"] == _ms(datetime(2030, 1, 7, 10))
    assert body["scheduledEnd"] - body["scheduledStart"] == 60 * 60_000
    assert body["status"] == "scheduled"
    assert body["roomName"] == f"class-{seed.class_a_id}-{body['scheduledStart']}"
    assert body["teacherId"] == seed.teacher_id


def test_missing_title_returns_structured_error(client, seed, auth_headers):
    headers = auth_headers(seed.teacher_id)

    response = create_single(client, headers, seed.class_a_id)

    assert response.status_code == 400
    assert response.json()["details"]["code"] == "TITLE_REQUIRED"
    assert create_single(client, headers, seed.class_a_id, title="Study hall").status_code == 201


def test_teacher_conflict_across_classes(client, seed, auth_headers):
    headers = auth_headers(seed.teacher_id)
    assert create_single(client, headers, seed.class_a_id, title="First").status_code == 201

    response = create_single(client, headers, seed.class_b_id, start="2030-01-07T10:30:00", title="Second")

    assert response.status_code == 409
    details = response.json()["details"]
    assert details["code"] == "TEACHER_SCHEDULE_CONFLICT"
    assert details["className"] == "Grade 5A"
    assert details["conflictTime"] == _ms(datetime(2030, 1, 7, 10))


def test_invalid_duration_is_a_bad_request(client, seed, auth_headers):
    response = create_single(client, auth_headers(seed.admin_id), seed.class_a_id, title="Zero", duration=0)

    assert response.status_code == 400
    assert response.json()["details"] == {"code": "INVALID_DURATION", "durationMinutes": 0}


def test_only_class_staff_can_schedule(client, seed, auth_headers):
    other_teacher = create_single(client, auth_headers(seed.other_teacher_id), seed.class_a_id, title="Nope")
    student = create_single(client, auth_headers(seed.student_id), seed.class_a_id, title="Nope")
    admin = create_single(client, auth_headers(seed.admin_id), seed.class_a_id, title="Admin booked")

    assert other_teacher.status_code == 403
    assert other_teacher.json()["details"]["code"] == "PERMISSION_DENIED"
    assert student.status_code == 403
    assert admin.status_code == 201


def test_unknown_class_is_not_found(client, seed, auth_headers):
    response = create_single(client, auth_headers(seed.admin_id), "missing-class", title="Ghost")

    assert response.status_code == 404
    assert response.json()["details"]["code"] == "CLASS_NOT_FOUND"


def test_recurring_create_and_preview_agree(client, seed, auth_headers):
    headers = auth_headers(seed.teacher_id)
    payload = {
        "classId": seed.class_a_id,
        "start": "2030-01-01T10:00:00",
        "durationMinutes": 45,
        "timezoneOffsetMinutes": 0,
        "title": "Mon/Wed practice",
        "recurrence": {"type": "weekly", "occurrences": 6, "daysOfWeek": [1, 3]},
    }

    preview = client.post("/api/schedule/recurrence/preview", json=payload, headers=headers)
    created = client.post("/api/schedule/recurring", json=payload, headers=headers)

    assert preview.status_code == 200
    assert created.status_code == 201
    body = created.json()
    assert body["count"] == 6
    assert body["adjustedStart"] == "2030-01-02T10:00:00"
    assert preview.json()["adjustedStart"] == body["adjustedStart"]
    assert [record["scheduledStart"] for record in body["records"]] == [
        window[0] for window in preview.json()["windows"]
    ]
    assert body["parentId"] == body["records"][0]["id"]
    assert {record["recurrenceParentId"] for record in body["records"][1:]} == {body["parentId"]}


def test_recurring_with_lessons_is_rejected(client, seed, auth_headers):
    response = client.post(
        "/api/schedule/recurring",
        json={
            "classId": seed.class_a_id,
            "start": "2030-01-07T10:00:00",
            "durationMinutes": 45,
            "lessonIds": [seed.lesson_ids[0]],
            "recurrence": {"type": "weekly", "occurrences": 3},
        },
        headers=auth_headers(seed.teacher_id),
    )

    assert response.status_code == 400
    assert response.json()["details"]["code"] == "RECURRING_NO_LESSONS"


def test_series_patch_and_delete(client, seed, auth_headers):
    headers = auth_headers(seed.teacher_id)
    created = client.post(
        "/api/schedule/recurring",
        json={
            "classId": seed.class_a_id,
            "start": "2030-01-07T10:00:00",
            "durationMinutes": 60,
            "title": "Weekly",
            "recurrence": {"type": "weekly", "occurrences": 10},
        },
        headers=headers,
    ).json()
    records = created["records"]

    patched = client.patch(
        f"/api/schedule/{records[5]['id']}",
        params={"updateSeries": "true"},
        json={"start": "2030-02-11T10:15:00", "timezoneOffsetMinutes": 0},
        headers=headers,
    )
    assert patched.status_code == 200
    assert patched.json()["scope"] == "series"
    assert patched.json()["count"] == 5
    assert patched.json()["records"][0]["scheduledStart"] == records[5]["scheduledStart"] + 15 * 60_000

    deleted = client.delete(
        f"/api/schedule/{records[2]['id']}",
        params={"deleteSeries": "true", "reason": "Term break"},
        headers=headers,
    )
    assert deleted.status_code == 200
    assert deleted.json()["count"] == 8

    first = client.get(f"/api/schedule/{records[0]['id']}", headers=headers).json()
    third = client.get(f"/api/schedule/{records[2]['id']}", headers=headers).json()
    assert first["status"] == "scheduled"
    assert third["status"] == "cancelled"
    assert third["description"].endswith("Cancellation reason: Term break")


def test_my_schedule_projection_per_role(client, seed, auth_headers):
    teacher = auth_headers(seed.teacher_id)
    create_single(client, teacher, seed.class_a_id, lessonIds=[seed.lesson_ids[0]])
    create_single(client, teacher, seed.class_b_id, start="2030-01-07T12:00:00", title="5B session")
    create_single(client, auth_headers(seed.other_teacher_id), seed.class_c_id, title="Biology")

    student_view = client.get("/api/schedule/me", headers=auth_headers(seed.student_id)).json()
    teacher_view = client.get("/api/schedule/me", headers=teacher).json()
    admin_view = client.get(
        "/api/schedule/me",
        params={"teacherId": seed.other_teacher_id},
        headers=auth_headers(seed.admin_id),
    ).json()

    assert [item["title"] for item in student_view] == ["Fractions 1"]
    assert student_view[0]["className"] == "Grade 5A"
    assert student_view[0]["curriculumColor"] == "#ff0000"
    assert student_view[0]["teacherName"] == "Tom Teacher"
    assert [item["title"] for item in teacher_view] == ["Fractions 1", "5B session"]
    assert [item["title"] for item in admin_view] == ["Biology"]
    assert admin_view[0]["curriculumColor"] == "#3b82f6"


def test_my_schedule_filters_by_range_and_status(client, seed, auth_headers):
    teacher = auth_headers(seed.teacher_id)
    create_single(client, teacher, seed.class_a_id, title="Monday")
    create_single(client, teacher, seed.class_a_id, start="2030-01-09T10:00:00", title="Wednesday")

    in_range = client.get(
        "/api/schedule/me",
        params={"from": _ms(datetime(2030, 1, 8)), "to": _ms(datetime(2030, 1, 10))},
        headers=teacher,
    ).json()
    cancelled = client.get("/api/schedule/me", params={"status": "cancelled"}, headers=teacher).json()

    assert [item["title"] for item in in_range] == ["Wednesday"]
    assert cancelled == []


def test_live_status_and_session_window(client, seed, auth_headers):
    headers = auth_headers(seed.teacher_id)
    soon = (datetime.now(timezone.utc) + timedelta(minutes=5)).replace(microsecond=0)
    record = create_single(client, headers, seed.class_a_id, start=soon.isoformat(), title="Starting soon").json()
    later = create_single(client, headers, seed.class_b_id, title="Later").json()

    soon_status = client.get(f"/api/schedule/session-status/{record['roomName']}", headers=headers).json()
    later_status = client.get(f"/api/schedule/session-status/{later['id']}", headers=headers).json()
    assert soon_status["canJoin"] is True
    assert later_status["canJoin"] is False

    live = client.post(
        "/api/schedule/live",
        json={"roomName": later["roomName"], "isLive": True},
        headers=headers,
    )
    assert live.status_code == 200
    assert live.json()["status"] == "active"
    assert client.get(f"/api/schedule/session-status/{later['id']}", headers=headers).json()["canJoin"] is True

    by_room = client.get(f"/api/schedule/room/{later['roomName']}", headers=headers)
    assert by_room.json()["isLive"] is True

    completed = client.post(f"/api/schedule/{later['id']}/complete", headers=headers)
    assert completed.json()["status"] == "completed"
    locked = client.patch(f"/api/schedule/{later['id']}", json={"title": "Again"}, headers=headers)
    assert locked.status_code == 409
    assert locked.json()["details"]["code"] == "SCHEDULE_LOCKED"


def test_used_lessons_and_schedulable_classes(client, seed, auth_headers):
    headers = auth_headers(seed.teacher_id)
    create_single(client, headers, seed.class_a_id, lessonIds=[seed.lesson_ids[1]])

    used = client.get(f"/api/schedule/classes/{seed.class_a_id}/used-lessons", headers=headers).json()
    classes = client.get("/api/schedule/classes/schedulable", headers=headers).json()
    student_classes = client.get("/api/schedule/classes/schedulable", headers=auth_headers(seed.student_id)).json()

    assert used == {"classId": seed.class_a_id, "lessonIds": [seed.lesson_ids[1]]}
    assert [item["name"] for item in classes] == ["Grade 5A", "Grade 5B"]
    assert [lesson["order"] for lesson in classes[0]["lessons"]] == [1, 2, 3]
    assert student_classes == []


def test_unknown_schedule_is_not_found(client, seed, auth_headers):
    response = client.get("/api/schedule/does-not-exist", headers=auth_headers(seed.admin_id))

    assert response.status_code == 404
    assert response.json()["details"]["code"] == "SCHEDULE_NOT_FOUND"


def test_cleanup_and_activity_log_are_admin_only(client, seed, auth_headers):
    teacher = auth_headers(seed.teacher_id)
    admin = auth_headers(seed.admin_id)
    create_single(client, teacher, seed.class_a_id, title="Logged")

    assert client.post("/api/schedule/maintenance/cleanup-stale", headers=teacher).status_code == 403
    cleanup = client.post("/api/schedule/maintenance/cleanup-stale", headers=admin)
    assert cleanup.status_code == 200
    assert cleanup.json() == {"completed": [], "count": 0}

    logs = client.get("/api/activity/logs", headers=admin)
    assert logs.status_code == 200
    assert [entry["action"] for entry in logs.json()] == ["schedule.create"]
    entry = logs.json()[0]
    assert entry["actorId"] == seed.teacher_id
    assert entry["entityType"] == "class_schedule"
    assert entry["details"]["class_id"] == seed.class_a_id
    assert client.get("/api/activity/logs", headers=teacher).status_code == 403
