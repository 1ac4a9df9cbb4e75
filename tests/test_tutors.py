from datetime import time

from tutormarket.database.database import UserRole
from conftest import auth_header, make_booking, make_tutor, make_user, make_window, next_monday

MONDAY = 1


def test_complete_profile_starts_unapproved(client, db):
    account = make_user(db, "newtutor@example.com", UserRole.TUTOR, "Nina New")
    profile = {"bio": "Chemistry <i>nerd</i>", "hourly_rate": 35, "subjects": ["Chemistry", "mathematics"], "qualifications": ["PGCE"]}

    created = client.post("/tutors/profile", json=profile, headers=auth_header(account))
    assert created.status_code == 200
    body = created.json()
    assert body["is_approved"] is False
    assert body["bio"] == "Chemistry nerd"
    assert body["subjects"] == ["Chemistry", "mathematics"]

    assert client.post("/tutors/profile", json=profile, headers=auth_header(account)).status_code == 409
    # Hidden from the public until approved
    assert client.get(f"/tutors/{body['id']}").status_code == 404


def test_profile_requires_a_subject(client, db):
    account = make_user(db, "newtutor@example.com", UserRole.TUTOR)
    response = client.post("/tutors/profile", json={"hourly_rate": 35, "subjects": [" "]}, headers=auth_header(account))
    assert response.status_code == 422


def test_students_cannot_create_tutor_profiles(client, student):
    assert client.post("/tutors/profile", json={"subjects": ["Physics"]}, headers=auth_header(student)).status_code == 403


def test_update_own_profile(client, db, tutor, tutor_user):
    response = client.put("/tutors/profile", json={"hourly_rate": 50, "subjects": ["Physics"]}, headers=auth_header(tutor_user))
    assert response.status_code == 200
    assert (response.json()["hourly_rate"], response.json()["subjects"]) == (50, ["Physics"])
    assert client.get("/tutors/me", headers=auth_header(tutor_user)).json()["email"] == "tutor@example.com"


def test_search_filters(client, db, tutor, student):
    other = make_tutor(db, make_user(db, "bob@example.com", UserRole.TUTOR, "Bob Builder"), hourly_rate=80,
                       subjects=("Physics",), location="Amsterdam", teaching_level=["University"])
    make_tutor(db, make_user(db, "hidden@example.com", UserRole.TUTOR, "Hidden"), approved=False)
    header = auth_header(student)

    def names(**params):
        return [t["full_name"] for t in client.get("/tutors", params=params, headers=header).json()]

    assert names() == ["Bob Builder", "Tara Tutor"]
    assert names(subjects="physics, chemistry") == ["Bob Builder"]
    assert names(q="patient") == ["Tara Tutor"]
    assert names(q="phys") == ["Bob Builder"]
    assert names(max_hourly_rate=50) == ["Tara Tutor"]
    assert names(location="amster") == ["Bob Builder"]
    assert names(gender="female", education_level="Master") == ["Tara Tutor"]
    assert names(teaching_level="University") == ["Bob Builder"]

    other.rating = 4.5
    db.commit()
    assert names(min_rating=4) == ["Bob Builder"]


def test_public_profile_and_catalogues(client, db, tutor):
    tutor.qualifications = ["PGCE", "BSc Mathematics"]
    db.commit()
    profile = client.get(f"/tutors/{tutor.id}").json()
    assert profile["tutor"]["full_name"] == "Tara Tutor"
    assert profile["reviews"] == [] and profile["certificates"] == [] and profile["resources"] == []
    assert "email" not in profile["tutor"]

    assert client.get("/tutors/subjects").json() == ["Mathematics"]
    assert client.get("/tutors/qualifications").json() == ["BSc Mathematics", "PGCE"]


def test_slots_endpoint(client, db, tutor, student):
    monday = next_monday()
    make_window(db, tutor, MONDAY, time(9), time(11))
    make_booking(db, tutor, student, monday, time(9), time(10))

    body = client.get(f"/tutors/{tutor.id}/slots", params={"date": str(monday)}).json()
    assert body["day_of_week"] == MONDAY
    assert [(s["start_time"], s["available"]) for s in body["slots"]] == [("09:00:00", False), ("10:00:00", True)]

    assert client.get("/tutors/missing/slots", params={"date": str(monday)}).status_code == 404


def test_availability_crud(client, db, tutor, tutor_user):
    header = auth_header(tutor_user)
    created = client.post("/availability", json={"day_of_week": MONDAY, "start_time": "09:00:00", "end_time": "12:00:00"}, headers=header)
    assert created.status_code == 200
    window_id = created.json()["id"]

    updated = client.put(f"/availability/{window_id}", json={"end_time": "13:00:00"}, headers=header)
    assert updated.json()["end_time"] == "13:00:00"
    assert client.put(f"/availability/{window_id}", json={"start_time": "14:00:00"}, headers=header).status_code == 422
    assert client.put(f"/availability/{window_id}", json={}, headers=header).status_code == 422

    listed = client.get(f"/tutors/{tutor.id}/availability").json()
    assert [(w["day_of_week"], w["start_time"]) for w in listed] == [(MONDAY, "09:00:00")]

    assert client.delete(f"/availability/{window_id}", headers=header).status_code == 200
    assert client.get("/availability/me", headers=header).json() == []


def test_availability_validation(client, tutor, tutor_user):
    header = auth_header(tutor_user)
    assert client.post("/availability", json={"day_of_week": 7, "start_time": "09:00:00", "end_time": "10:00:00"}, headers=header).status_code == 422
    assert client.post("/availability", json={"day_of_week": 1, "start_time": "10:00:00", "end_time": "09:00:00"}, headers=header).status_code == 422


def test_only_the_owner_edits_a_window(client, db, tutor, admin):
    window = make_window(db, tutor, MONDAY, time(9), time(10))
    intruder = make_user(db, "intruder@example.com", UserRole.TUTOR)
    make_tutor(db, intruder)

    assert client.delete(f"/availability/{window.id}", headers=auth_header(intruder)).status_code == 403
    assert client.put(f"/availability/{window.id}", json={"is_available": False}, headers=auth_header(admin)).json()["is_available"] is False
    assert client.delete("/availability/missing", headers=auth_header(admin)).status_code == 404
