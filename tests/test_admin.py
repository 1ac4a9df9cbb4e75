from datetime import datetime, time, timedelta

from tutormarket.database.database import Tutor, User, UserRole, Review, BookingStatus
from tutormarket.routers.authentication import create_user_in_db
from tutormarket.schemas.user_schema import UserCreate
from conftest import auth_header, make_booking, make_tutor, make_user, next_monday


def test_admin_user_access(client, admin):
    # Access the admin-only endpoint to get all users
    response = client.get("/admin/users", headers=auth_header(admin))

    # Verify the response
    assert response.status_code == 200
    users = response.json()
    assert len(users) == 1
    assert users[0]["role"] == UserRole.ADMIN.value


def test_non_admins_are_turned_away(client, student, tutor_user):
    for user in (student, tutor_user):
        response = client.get("/admin/users", headers=auth_header(user))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "NOT_AUTHORIZED"


def test_demoted_admin_loses_access_with_old_token(client, db, admin):
    header = auth_header(admin)
    assert client.get("/admin/users", headers=header).status_code == 200

    admin.role = UserRole.STUDENT
    db.commit()

    response = client.get("/admin/users", headers=header)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "NOT_AUTHORIZED"


def test_promoted_user_gains_access_with_old_token(client, db, student):
    header = auth_header(student)
    assert client.get("/admin/users", headers=header).status_code == 403

    student.role = UserRole.ADMIN
    db.commit()
    assert client.get("/admin/users", headers=header).status_code == 200


def test_create_user(client, db, admin):
    # Define the new user data
    new_user_data = {
        "full_name": "New User",
        "email": "newuser@example.com",
        "role": "student"
    }

    # Send a POST request to the create_user endpoint
    response = client.post("/admin/users", json=new_user_data, headers=auth_header(admin))

    # Assert the response status code and content
    assert response.status_code == 200
    assert response.json()["email"] == new_user_data["email"]
    assert "id" in response.json()

    # Verify the user was added to the database
    db_user = db.query(User).filter(User.email == new_user_data["email"]).first()
    assert db_user is not None
    assert db_user.full_name == new_user_data["full_name"]
    assert db_user.role == UserRole.STUDENT

    duplicate = client.post("/admin/users", json=new_user_data, headers=auth_header(admin))
    assert duplicate.status_code == 409


def test_delete_user(client, db, admin):
    # Create a user to be deleted
    user_to_delete = create_user_in_db(db, UserCreate(email="deleteuser@example.com", full_name="Delete User", role=UserRole.STUDENT))
    user_id = user_to_delete.id

    # Send a DELETE request to the delete_user endpoint
    response = client.delete(f"/admin/users/{user_id}", headers=auth_header(admin))

    # Assert the response status code and content
    assert response.status_code == 200
    assert response.json()["message"] == f"User {user_id} deleted"

    # Verify the user was deleted from the database
    db.expire_all()
    assert db.query(User).filter(User.id == user_id).first() is None


def test_admin_cannot_delete_or_demote_self(client, admin):
    assert client.delete(f"/admin/users/{admin.id}", headers=auth_header(admin)).status_code == 422
    assert client.put(f"/admin/users/{admin.id}/role", json={"role": "student"}, headers=auth_header(admin)).status_code == 422


def test_ban_user(client, db, admin, tutor):
    # Create a user to be banned
    user_to_ban = create_user_in_db(db, UserCreate(email="banuser@example.com", full_name="Ban User", role=UserRole.STUDENT))
    user_id = user_to_ban.id
    until = datetime.now() + timedelta(days=7)

    # Send a POST request to the ban_user endpoint
    response = client.post(f"/admin/users/{user_id}/ban", json={"banned_until": until.isoformat()}, headers=auth_header(admin))

    # Assert the response status code and content
    assert response.status_code == 200
    assert response.json()["message"].startswith(f"User {user_id} banned until")

    # Verify the user was banned in the database
    db.expire_all()
    db_user = db.query(User).filter(User.id == user_id).first()
    assert db_user is not None
    assert db_user.is_banned is True

    # Banned users cannot send messages
    blocked = client.post("/messages", json={"receiver_id": tutor.user_id, "message": "hello"}, headers=auth_header(db_user))
    assert blocked.status_code == 403


def test_role_checks(client, admin, student):
    has_role = client.get(f"/admin/users/{student.id}/has-role", params={"role": "student"}, headers=auth_header(admin)).json()
    assert has_role == {"user_id": student.id, "role": "student", "has_role": True}
    is_admin = client.get(f"/admin/users/{student.id}/is-admin", headers=auth_header(admin)).json()
    assert is_admin["has_role"] is False


def test_dashboard_counts(client, db, admin, tutor, student):
    make_tutor(db, make_user(db, "pending@example.com", UserRole.TUTOR), approved=False)
    make_booking(db, tutor, student, next_monday(), time(9), time(10))

    data = client.get("/admin/dashboard", headers=auth_header(admin)).json()
    assert data["user_count"] == 4
    assert data["student_count"] == 1
    assert data["tutor_count"] == 2
    assert data["pending_tutor_count"] == 1
    assert data["pending_booking_count"] == 1


def test_approve_tutor_and_edit_subjects(client, db, admin):
    pending = make_tutor(db, make_user(db, "pending@example.com", UserRole.TUTOR), approved=False)
    response = client.put(f"/admin/tutors/{pending.id}", json={"is_approved": True, "hourly_rate": 55, "subjects": ["Physics", "Chemistry"]},
                          headers=auth_header(admin))
    assert response.status_code == 200
    body = response.json()
    assert body["is_approved"] is True
    assert body["hourly_rate"] == 55
    assert body["subjects"] == ["Chemistry", "Physics"]

    listed = client.get("/admin/tutors", params={"approved": True}, headers=auth_header(admin)).json()
    assert [t["id"] for t in listed] == [pending.id]


def test_bookings_listed_with_names(client, db, admin, tutor, student):
    make_booking(db, tutor, student, next_monday(), time(9), time(10), BookingStatus.CONFIRMED)
    rows = client.get("/admin/bookings", headers=auth_header(admin)).json()
    assert [(b["tutor_name"], b["student_name"]) for b in rows] == [("Tara Tutor", "Sam Student")]


def test_delete_review_recomputes_rating(client, db, admin, tutor, student, other_student):
    db.add_all([
        Review(tutor_id=tutor.id, student_id=student.id, rating=5),
        Review(tutor_id=tutor.id, student_id=other_student.id, rating=2),
    ])
    tutor.rating = 3.5
    tutor.total_reviews = 2
    db.commit()
    low = db.query(Review).filter(Review.rating == 2).one()

    assert client.delete(f"/admin/reviews/{low.id}", headers=auth_header(admin)).status_code == 200

    db.expire_all()
    refreshed = db.query(Tutor).filter(Tutor.id == tutor.id).one()
    assert (refreshed.rating, refreshed.total_reviews) == (5.0, 1)
