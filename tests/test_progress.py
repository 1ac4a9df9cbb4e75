from datetime import date, time
from types import SimpleNamespace

from tutormarket.database.database import BookingStatus, LearnerProgress, Notification, ParentChildAccount, UserRole
from tutormarket.routers.progress import chart_by_subject, summarise, trend_of
from conftest import auth_header, make_booking, make_tutor, make_user


def completed_booking(db, tutor, student, day=date(2030, 5, 6), subject="Mathematics"):
    return make_booking(db, tutor, student, day, time(10), time(11), BookingStatus.COMPLETED, subject=subject)


def progress_payload(booking, level="Good", note="Solid work on fractions"):
    return {"booking_id": booking.id, "skill_level": level, "progress_note": note, "homework_next_action": "Worksheet 3"}


def test_progress_is_recorded_once(client, db, tutor, tutor_user, student):
    booking = completed_booking(db, tutor, student)

    first = client.post("/progress", json=progress_payload(booking), headers=auth_header(tutor_user))
    assert first.status_code == 200
    entry = first.json()
    assert (entry["skill_level"], entry["subject"], entry["learner_id"]) == ("Good", "Mathematics", student.id)

    second = client.post("/progress", json=progress_payload(booking, "Excellent"), headers=auth_header(tutor_user))
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "DUPLICATE_ENTRY"
    assert db.query(LearnerProgress).count() == 1

    notifications = db.query(Notification).filter(Notification.user_id == student.id).all()
    assert [n.type for n in notifications] == ["progress"]


def test_progress_needs_completed_session(client, db, tutor, tutor_user, student):
    booking = make_booking(db, tutor, student, date(2030, 5, 6), time(10), time(11), BookingStatus.CONFIRMED)
    response = client.post("/progress", json=progress_payload(booking), headers=auth_header(tutor_user))
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_TRANSITION"


def test_only_the_sessions_tutor_records_progress(client, db, tutor, student):
    booking = completed_booking(db, tutor, student)
    stranger = make_user(db, "stranger@example.com", UserRole.TUTOR)
    make_tutor(db, stranger)
    assert client.post("/progress", json=progress_payload(booking), headers=auth_header(stranger)).status_code == 403
    assert client.post("/progress", json=progress_payload(booking), headers=auth_header(student)).status_code == 403


def test_unknown_skill_level_is_rejected(client, db, tutor, tutor_user, student):
    booking = completed_booking(db, tutor, student)
    response = client.post("/progress", json=progress_payload(booking, level="Brilliant"), headers=auth_header(tutor_user))
    assert response.status_code == 422


def test_missing_subject_defaults_to_general(client, db, tutor, tutor_user, student):
    booking = completed_booking(db, tutor, student, subject=None)
    entry = client.post("/progress", json=progress_payload(booking), headers=auth_header(tutor_user)).json()
    assert entry["subject"] == "General"


def test_tutor_updates_own_entry(client, db, tutor, tutor_user, student):
    booking = completed_booking(db, tutor, student)
    entry = client.post("/progress", json=progress_payload(booking), headers=auth_header(tutor_user)).json()
    updated = client.put(f"/progress/{entry['id']}", json={"skill_level": "Excellent"}, headers=auth_header(tutor_user))
    assert updated.status_code == 200
    assert updated.json()["skill_level"] == "Excellent"
    assert updated.json()["progress_note"] == "Solid work on fractions"


def test_homework_can_be_cleared_but_the_note_cannot(client, db, tutor, tutor_user, student):
    booking = completed_booking(db, tutor, student)
    entry = client.post("/progress", json=progress_payload(booking), headers=auth_header(tutor_user)).json()
    assert entry["homework_next_action"] == "Worksheet 3"

    cleared = client.put(f"/progress/{entry['id']}", json={"homework_next_action": None}, headers=auth_header(tutor_user))
    assert cleared.status_code == 200
    assert cleared.json()["homework_next_action"] is None
    assert cleared.json()["skill_level"] == "Good"

    assert client.put(f"/progress/{entry['id']}", json={"progress_note": None}, headers=auth_header(tutor_user)).status_code == 422
    assert client.put(f"/progress/{entry['id']}", json={"skill_level": None}, headers=auth_header(tutor_user)).status_code == 422


def test_chart_and_summary(client, db, tutor, tutor_user, student):
    for day, level in ((date(2030, 5, 6), "Satisfactory"), (date(2030, 5, 13), "Good"), (date(2030, 5, 20), "Excellent")):
        booking = completed_booking(db, tutor, student, day=day)
        client.post("/progress", json=progress_payload(booking, level), headers=auth_header(tutor_user))
    english = completed_booking(db, tutor, student, day=date(2030, 5, 7), subject="English")
    client.post("/progress", json=progress_payload(english, "Needs support"), headers=auth_header(tutor_user))

    chart = client.get(f"/progress/chart/{student.id}", headers=auth_header(student)).json()
    assert list(chart["subjects"]) == ["English", "Mathematics"]
    assert [p["level"] for p in chart["subjects"]["Mathematics"]] == [2, 3, 4]

    summary = client.get(f"/progress/summary/{student.id}", headers=auth_header(tutor_user)).json()["subjects"]
    maths = next(s for s in summary if s["subject"] == "Mathematics")
    assert maths == {"subject": "Mathematics", "session_count": 3, "latest_level": "Excellent", "average_level": 3.0, "trend": "improving"}

    filtered = client.get("/progress", params={"learner_id": student.id, "subject": "English"}, headers=auth_header(student)).json()
    assert [e["skill_level"] for e in filtered] == ["Needs support"]


def test_progress_visibility(client, db, tutor, tutor_user, student, other_student):
    booking = completed_booking(db, tutor, student)
    client.post("/progress", json=progress_payload(booking), headers=auth_header(tutor_user))

    assert client.get("/progress", params={"learner_id": student.id}, headers=auth_header(other_student)).status_code == 403

    parent = make_user(db, "parent@example.com", full_name="Pat Parent")
    db.add(ParentChildAccount(parent_user_id=parent.id, child_user_id=student.id))
    db.commit()
    visible = client.get("/progress", params={"learner_id": student.id}, headers=auth_header(parent)).json()
    assert len(visible) == 1


def test_sessions_view_flags_recorded_progress(client, db, tutor, tutor_user, student):
    with_progress = completed_booking(db, tutor, student, day=date(2030, 5, 6))
    completed_booking(db, tutor, student, day=date(2030, 5, 13))
    client.post("/progress", json=progress_payload(with_progress), headers=auth_header(tutor_user))

    sessions = client.get("/progress/sessions", headers=auth_header(tutor_user)).json()
    assert [(s["session_date"], s["has_progress"]) for s in sessions] == [("2030-05-13", False), ("2030-05-06", True)]


def test_goals_lifecycle(client, db, tutor, tutor_user, student, other_student):
    completed_booking(db, tutor, student)
    goal = {"learner_id": student.id, "subject": "Mathematics", "goal_text": "Master long division", "target_date": "2030-06-30"}

    unrelated = dict(goal, learner_id=other_student.id)
    assert client.post("/progress/goals", json=unrelated, headers=auth_header(tutor_user)).status_code == 403

    created = client.post("/progress/goals", json=goal, headers=auth_header(tutor_user)).json()
    assert created["is_achieved"] is False

    toggled = client.post(f"/progress/goals/{created['id']}/toggle", headers=auth_header(tutor_user)).json()
    assert toggled["is_achieved"] is True
    assert toggled["achieved_date"] == str(date.today())
    untoggled = client.post(f"/progress/goals/{created['id']}/toggle", headers=auth_header(tutor_user)).json()
    assert untoggled["achieved_date"] is None

    own = client.get("/progress/goals", headers=auth_header(student)).json()
    assert [g["goal_text"] for g in own] == ["Master long division"]

    assert client.delete(f"/progress/goals/{created['id']}", headers=auth_header(tutor_user)).status_code == 200
    assert client.get("/progress/goals", headers=auth_header(student)).json() == []


def test_trend_compares_latest_with_previous():
    assert trend_of([3]) == "steady"
    assert trend_of([1, 4, 2]) == "declining"
    assert trend_of([4, 1, 3]) == "improving"
    assert trend_of([2, 2]) == "steady"


def test_summary_helpers_group_by_subject():
    entries = [
        SimpleNamespace(subject="Physics", date_of_session=date(2030, 1, 2), created_at=1, skill_level="Good"),
        SimpleNamespace(subject="Physics", date_of_session=date(2030, 1, 1), created_at=2, skill_level="Needs support"),
    ]
    chart = chart_by_subject(entries)
    assert [p["skill_level"] for p in chart["Physics"]] == ["Needs support", "Good"]
    assert summarise(entries)[0]["average_level"] == 2.0
