from datetime import time

from tutormarket.database.database import Notification, UserRole
from conftest import auth_header, make_booking, make_user, next_monday


def link(client, parent, email):
    return client.post("/parents/children", json={"child_email": email}, headers=auth_header(parent))


def test_link_list_and_unlink(client, db, student):
    parent = make_user(db, "parent@example.com", full_name="Pat Parent")

    linked = link(client, parent, student.email)
    assert linked.status_code == 200
    assert (linked.json()["child_id"], linked.json()["full_name"]) == (student.id, "Sam Student")
    assert db.query(Notification).filter(Notification.user_id == student.id, Notification.type == "parent").count() == 1

    children = client.get("/parents/children", headers=auth_header(parent)).json()
    assert [c["email"] for c in children] == [student.email]

    assert client.delete(f"/parents/children/{student.id}", headers=auth_header(parent)).status_code == 200
    assert client.get("/parents/children", headers=auth_header(parent)).json() == []
    assert client.delete(f"/parents/children/{student.id}", headers=auth_header(parent)).status_code == 404


def test_link_rules(client, db, student, tutor_user):
    parent = make_user(db, "parent@example.com", full_name="Pat Parent")
    assert link(client, parent, student.email).status_code == 200
    assert link(client, parent, student.email).status_code == 409
    assert link(client, parent, parent.email).status_code == 422
    assert link(client, parent, "ghost@example.com").status_code == 404
    # Only learner accounts can be linked
    assert link(client, parent, tutor_user.email).status_code == 404


def test_parent_reads_child_booking(client, db, tutor, student, other_student):
    parent = make_user(db, "parent@example.com", UserRole.STUDENT, "Pat Parent")
    booking = make_booking(db, tutor, student, next_monday(), time(9), time(10))

    assert client.get(f"/bookings/{booking.id}", headers=auth_header(parent)).status_code == 403
    link(client, parent, student.email)
    assert client.get(f"/bookings/{booking.id}", headers=auth_header(parent)).json()["student_name"] == "Sam Student"
