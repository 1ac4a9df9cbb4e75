from datetime import date, time

from tutormarket.database.database import BookingStatus, Tutor
from conftest import auth_header, make_booking


def review(client, tutor, user, rating, comment=None):
    return client.post("/reviews", json={"tutor_id": tutor.id, "rating": rating, "comment": comment}, headers=auth_header(user))


def test_review_requires_completed_session(client, db, tutor, student):
    make_booking(db, tutor, student, date(2030, 5, 6), time(10), time(11), BookingStatus.CONFIRMED)
    response = review(client, tutor, student, 5)
    assert response.status_code == 403


def test_reviews_update_the_rating(client, db, tutor, student, other_student):
    for learner in (student, other_student):
        make_booking(db, tutor, learner, date(2030, 5, 6), time(10), time(11), BookingStatus.COMPLETED)

    first = review(client, tutor, student, 5, "Great <script>x</script>explanations")
    assert first.status_code == 200
    assert first.json()["student_name"] == "Sam Student"
    assert "<script>" not in first.json()["comment"]
    review(client, tutor, other_student, 2)

    db.expire_all()
    refreshed = db.query(Tutor).filter(Tutor.id == tutor.id).one()
    assert (refreshed.rating, refreshed.total_reviews) == (3.5, 2)

    listed = client.get(f"/reviews/tutor/{tutor.id}").json()
    assert sorted(r["rating"] for r in listed) == [2, 5]


def test_one_review_per_tutor(client, db, tutor, student):
    make_booking(db, tutor, student, date(2030, 5, 6), time(10), time(11), BookingStatus.COMPLETED)
    assert review(client, tutor, student, 4).status_code == 200
    duplicate = review(client, tutor, student, 1)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "DUPLICATE_ENTRY"


def test_rating_must_be_in_range(client, db, tutor, student):
    make_booking(db, tutor, student, date(2030, 5, 6), time(10), time(11), BookingStatus.COMPLETED)
    assert review(client, tutor, student, 0).status_code == 422
    assert review(client, tutor, student, 6).status_code == 422


def test_tutors_cannot_review(client, tutor, tutor_user):
    assert review(client, tutor, tutor_user, 5).status_code == 403
