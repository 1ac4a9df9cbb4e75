"""
Payment router. Payments are mocked: paying puts the money in escrow (held),
completing the booking releases it to the tutor and cancelling refunds it.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from typing import List
from tutormarket.database.database import get_db, Booking, BookingStatus, PaymentTransaction, PaymentStatus, UserRole
from tutormarket.auth_tools import get_current_user, student_only, tutor_only
from tutormarket.errors import DuplicateEntry, InvalidTransition, NotAuthorized, NotFound
from tutormarket.schemas.payment_schema import EarningsResponse, PaymentCreate, PaymentQuote, PaymentResponse
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.routers.authentication import limiter
from tutormarket.scheduling import to_seconds
from tutormarket.utilities import get_tutor_for_user, notify
from tutormarket.logger import logger
from tutormarket.config import get_settings

router = APIRouter(prefix='/payments')

def quote_for(booking: Booking) -> dict:
    """Price of a booking: hourly rate times session hours, plus the platform fee."""
    hours = (to_seconds(booking.end_time) - to_seconds(booking.start_time)) / 3600
    subtotal = round(booking.tutor.hourly_rate * hours, 2)
    platform_fee = round(subtotal * get_settings().platform_fee_rate, 2)
    return {
        "booking_id": booking.id,
        "hourly_rate": booking.tutor.hourly_rate,
        "hours": round(hours, 2),
        "subtotal": subtotal,
        "platform_fee": platform_fee,
        "total": round(subtotal + platform_fee, 2),
    }

def get_student_booking(db: Session, booking_id: str, current_user: DecodedAccessToken) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if not booking:
        raise NotFound("Booking not found", details={"booking_id": booking_id})
    if current_user.role != UserRole.ADMIN.value and booking.student_id != current_user.sub:
        raise NotAuthorized("User not authorized to pay for this booking")
    return booking

@router.get('/quote/{booking_id}', response_model=PaymentQuote)
def get_quote(booking_id: str, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    return quote_for(get_student_booking(db, booking_id, current_user))

@router.post('', response_model=PaymentResponse)
@limiter.limit("10/minute")
def pay(request: Request, payment: PaymentCreate, current_user: DecodedAccessToken = Depends(student_only), db: Session = Depends(get_db)):
    """
    Pay for a pending or confirmed booking. The money is held until the session completes.

    Raises:
    - InvalidTransition: the booking is completed or cancelled
    - DuplicateEntry: the booking is already paid
    """
    booking = get_student_booking(db, payment.booking_id, current_user)
    if booking.status not in (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value):
        raise InvalidTransition(f"A {booking.status} booking cannot be paid", details={"booking_id": booking.id})
    if booking.payment is not None:
        raise DuplicateEntry("This booking is already paid", details={"payment_id": booking.payment.id})

    quote = quote_for(booking)
    transaction = PaymentTransaction(
        booking_id=booking.id,
        student_id=booking.student_id,
        tutor_id=booking.tutor_id,
        amount=quote["total"],
        platform_fee=quote["platform_fee"],
        payment_method=payment.payment_method,
        status=PaymentStatus.HELD.value
    )
    db.add(transaction)
    db.commit()
    db.refresh(transaction)
    logger.info(f"Payment {transaction.id} of {transaction.amount} held for booking {booking.id} via {payment.payment_method}")

    notify(db, booking.tutor.user_id, "Session paid", f"The session on {booking.session_date} was paid", type="payment", related_id=transaction.id)
    return transaction

@router.get('/history', response_model=List[PaymentResponse])
def payment_history(current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    """Own payments for students, payments received for tutors, everything for admins."""
    query = db.query(PaymentTransaction)
    if current_user.role == UserRole.STUDENT.value:
        query = query.filter(PaymentTransaction.student_id == current_user.sub)
    elif current_user.role == UserRole.TUTOR.value:
        query = query.filter(PaymentTransaction.tutor_id == get_tutor_for_user(db, current_user.sub).id)
    return query.order_by(PaymentTransaction.created_at.desc()).all()

@router.get('/earnings', response_model=EarningsResponse)
def earnings(current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    """Tutor earnings net of platform fees, split by payment state."""
    tutor = get_tutor_for_user(db, current_user.sub)
    totals = {status.value: 0.0 for status in PaymentStatus}
    released_sessions = 0
    for transaction in db.query(PaymentTransaction).filter(PaymentTransaction.tutor_id == tutor.id).all():
        totals[transaction.status] += transaction.amount - transaction.platform_fee
        if transaction.status == PaymentStatus.RELEASED.value:
            released_sessions += 1
    return {
        "tutor_id": tutor.id,
        "released_total": round(totals[PaymentStatus.RELEASED.value], 2),
        "pending_total": round(totals[PaymentStatus.HELD.value], 2),
        "refunded_total": round(totals[PaymentStatus.REFUNDED.value], 2),
        "session_count": released_sessions,
    }
