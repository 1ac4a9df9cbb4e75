from datetime import time

from tutormarket.database.database import BookingStatus, PaymentTransaction
from conftest import auth_header, make_booking, next_monday


def pay(client, booking, user, method="stripe"):
    return client.post("/payments", json={"booking_id": booking.id, "payment_method": method}, headers=auth_header(user))


def test_quote_includes_platform_fee(client, db, tutor, student):
    booking = make_booking(db, tutor, student, next_monday(), time(10), time(11, 30))
    quote = client.get(f"/payments/quote/{booking.id}", headers=auth_header(student)).json()
    assert quote == {"booking_id": booking.id, "hourly_rate": 40.0, "hours": 1.5, "subtotal": 60.0, "platform_fee": 6.0, "total": 66.0}


def test_payment_is_held_until_completion(client, db, tutor, tutor_user, student):
    booking = make_booking(db, tutor, student, next_monday(), time(10), time(11, 30), BookingStatus.CONFIRMED)

    paid = pay(client, booking, student)
    assert paid.status_code == 200
    assert (paid.json()["status"], paid.json()["amount"]) == ("held", 66.0)

    again = pay(client, booking, student, "paypal")
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "DUPLICATE_ENTRY"

    assert client.get("/payments/earnings", headers=auth_header(tutor_user)).json()["pending_total"] == 60.0

    client.post(f"/bookings/{booking.id}/complete", headers=auth_header(tutor_user))
    earnings = client.get("/payments/earnings", headers=auth_header(tutor_user)).json()
    assert (earnings["released_total"], earnings["pending_total"], earnings["session_count"]) == (60.0, 0.0, 1)

    db.expire_all()
    assert db.query(PaymentTransaction).one().released_at is not None


def test_cancelling_refunds_the_payment(client, db, tutor, tutor_user, student):
    booking = make_booking(db, tutor, student, next_monday(), time(10), time(11))
    pay(client, booking, student)
    client.post(f"/bookings/{booking.id}/cancel", headers=auth_header(student))

    history = client.get("/payments/history", headers=auth_header(student)).json()
    assert [p["status"] for p in history] == ["refunded"]
    assert client.get("/payments/earnings", headers=auth_header(tutor_user)).json()["refunded_total"] == 40.0


def test_terminal_bookings_cannot_be_paid(client, db, tutor, student):
    booking = make_booking(db, tutor, student, next_monday(), time(10), time(11), BookingStatus.CANCELLED)
    response = pay(client, booking, student)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_TRANSITION"


def test_only_the_booking_student_pays(client, db, tutor, tutor_user, student, other_student):
    booking = make_booking(db, tutor, student, next_monday(), time(10), time(11))
    assert pay(client, booking, other_student).status_code == 403
    assert pay(client, booking, tutor_user).status_code == 403
    assert client.post("/payments", json={"booking_id": booking.id, "payment_method": "cash"}, headers=auth_header(student)).status_code == 422


def test_history_is_scoped_by_role(client, db, tutor, tutor_user, student, other_student, admin):
    monday = next_monday()
    pay(client, make_booking(db, tutor, student, monday, time(9), time(10)), student)
    pay(client, make_booking(db, tutor, other_student, monday, time(10), time(11)), other_student)

    assert len(client.get("/payments/history", headers=auth_header(student)).json()) == 1
    assert len(client.get("/payments/history", headers=auth_header(tutor_user)).json()) == 2
    assert len(client.get("/payments/history", headers=auth_header(admin)).json()) == 2
