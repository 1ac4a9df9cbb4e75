"""
Booking router: creating, listing and moving bookings through their lifecycle.

pending -> confirmed -> completed, and pending|confirmed -> cancelled.
Creation and rescheduling go through the atomic conflict guard in scheduling.py.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
from tutormarket.database.database import get_db, User, UserRole, Tutor, Booking, BookingStatus
from tutormarket.auth_tools import get_current_user, get_active_user, student_only, admin_only
from tutormarket.errors import InvalidTransition, NotAuthorized, NotFound, SlotTaken
from tutormarket.schemas.booking_schema import (
    BookingCreate, BookingResponse, BookingWithNamesResponse, ConflictCheckRequest, ConflictCheckResponse, RescheduleRequest
)
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.routers.authentication import limiter
from tutormarket.scheduling import (
    apply_transition, complete_elapsed_bookings, ensure_transition_actor, generate_slots, has_conflict,
    insert_booking_atomically, is_past_cancellation_deadline, reschedule_atomically, validate_interval
)
from tutormarket.utilities import bookings_with_names, booking_row_to_dict, get_tutor_for_user, is_parent_of, notify
from tutormarket.logger import logger, audit_logger
from tutormarket.config import get_settings

router = APIRouter(prefix='/bookings')

def get_booking_or_404(db: Session, booking_id: str) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if not booking:
        raise NotFound("Booking not found", details={"booking_id": booking_id})
    return booking

def participant_role(booking: Booking, current_user: DecodedAccessToken) -> UserRole:
    """
    The role in which current_user takes part in the booking, judged by the
    stored role get_current_user resolved for this request.

    Raises:
    - NotAuthorized: current_user is neither the booking's student, its tutor nor an admin
    """
    role = UserRole(current_user.role)
    if role == UserRole.ADMIN:
        return role
    if role == UserRole.STUDENT and booking.student_id == current_user.sub:
        return role
    if role == UserRole.TUTOR and booking.tutor.user_id == current_user.sub:
        return role
    raise NotAuthorized("User not authorized to access this booking")

def attach_fresh_slots(db: Session, error: SlotTaken, tutor_id: str, session_date: date) -> SlotTaken:
    """Put the current slots of the day into the error so the client can prompt a new choice."""
    error.details["slots"] = [
        {"start_time": slot.start_time.isoformat(), "end_time": slot.end_time.isoformat(), "available": slot.available}
        for slot in generate_slots(db, tutor_id, session_date)
    ]
    return error

def notify_participants(db: Session, booking: Booking, actor_id: str, title: str, message: str):
    """Notify the student and the tutor of a booking, except whoever acted."""
    for user_id in (booking.student_id, booking.tutor.user_id):
        if user_id != actor_id:
            notify(db, user_id, title, message, type="booking", related_id=booking.id)

def get_booking_with_names(db: Session, booking_id: str) -> dict:
    row = bookings_with_names(db).filter(Booking.id == booking_id).first()
    if not row:
        raise NotFound("Booking not found", details={"booking_id": booking_id})
    return booking_row_to_dict(row)

@router.post('', response_model=BookingResponse)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_data: BookingCreate,
    current_user: DecodedAccessToken = Depends(student_only),
    user: User = Depends(get_active_user),
    db: Session = Depends(get_db)
):
    """
    Request a session with a tutor. The booking starts pending.

    Raises:
    - NotAuthorized: email not verified (when verification is required)
    - NotFound: tutor missing or not approved
    - ValidationFailed: start not before end, or session in the past
    - SlotTaken: the interval overlaps a pending or confirmed booking; details carry the fresh slots
    """
    if get_settings().require_email_verification and not user.email_verified:
        raise NotAuthorized("Please verify your email address before booking a session")

    tutor = db.query(Tutor).filter(Tutor.id == booking_data.tutor_id, Tutor.is_approved == True).first()
    if not tutor:
        raise NotFound("Tutor not found", details={"tutor_id": booking_data.tutor_id})

    validate_interval(booking_data.session_date, booking_data.start_time, booking_data.end_time)

    try:
        booking_id = insert_booking_atomically(
            db,
            tutor_id=tutor.id,
            student_id=user.id,
            session_date=booking_data.session_date,
            start=booking_data.start_time,
            end=booking_data.end_time,
            subject=booking_data.subject,
            notes=booking_data.notes,
            focus_topic=booking_data.focus_topic,
        )
        db.commit()
    except SlotTaken as e:
        raise attach_fresh_slots(db, e, tutor.id, booking_data.session_date)

    booking = get_booking_or_404(db, booking_id)
    logger.info(f"Booking {booking.id} created by student {user.id} with tutor {tutor.id}")
    notify(
        db, tutor.user_id, "New booking request",
        f"{user.full_name} requested a session on {booking.session_date} at {booking.start_time.strftime('%H:%M')}",
        type="booking", related_id=booking.id
    )
    return booking

@router.get('', response_model=List[BookingWithNamesResponse])
def list_bookings(status: Optional[BookingStatus] = None, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    """Own bookings for students and tutors, every booking for admins. Names come from the same query."""
    query = bookings_with_names(db)
    role = UserRole(current_user.role)
    if role == UserRole.STUDENT:
        query = query.filter(Booking.student_id == current_user.sub)
    elif role == UserRole.TUTOR:
        query = query.filter(Booking.tutor_id == get_tutor_for_user(db, current_user.sub).id)
    if status is not None:
        query = query.filter(Booking.status == status.value)
    rows = query.order_by(Booking.session_date.desc(), Booking.start_time.desc()).all()
    return [booking_row_to_dict(row) for row in rows]

@router.post('/conflict-check', response_model=ConflictCheckResponse)
def conflict_check(check: ConflictCheckRequest, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    """Read-only conflict check. Booking creation repeats it atomically, so a false here is not a reservation."""
    return {"has_conflict": has_conflict(db, check.tutor_id, check.session_date, check.start_time, check.end_time, check.exclude_booking_id)}

@router.post('/complete-elapsed', response_model=List[BookingResponse])
def complete_elapsed(current_user: DecodedAccessToken = Depends(admin_only), db: Session = Depends(get_db)):
    """Complete every confirmed booking whose session has already ended."""
    completed = complete_elapsed_bookings(db, current_user.sub)
    db.commit()
    logger.info(f"Completed {len(completed)} elapsed bookings")
    for booking in completed:
        notify_participants(db, booking, current_user.sub, "Session completed", f"Your session on {booking.session_date} is complete")
    return completed

@router.get('/{booking_id}', response_model=BookingWithNamesResponse)
def get_booking(booking_id: str, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    """Participants, parents of the student and admins may read a booking."""
    booking = get_booking_or_404(db, booking_id)
    if not is_parent_of(db, current_user.sub, booking.student_id):
        participant_role(booking, current_user)
    return get_booking_with_names(db, booking_id)

def change_status(db: Session, booking_id: str, target: BookingStatus, current_user: DecodedAccessToken) -> Booking:
    booking = get_booking_or_404(db, booking_id)
    role = participant_role(booking, current_user)
    ensure_transition_actor(role, target)

    if (target == BookingStatus.CANCELLED and role == UserRole.STUDENT
            and get_settings().enforce_cancellation_deadline and is_past_cancellation_deadline(booking)):
        raise InvalidTransition(
            "The cancellation deadline for this booking has passed",
            details={"booking_id": booking.id, "cancellation_deadline": str(booking.cancellation_deadline)}
        )

    apply_transition(booking, target, current_user.sub)
    db.commit()
    db.refresh(booking)
    logger.info(f"Booking {booking.id} moved to {target.value} by {role.value} {current_user.sub}")
    notify_participants(
        db, booking, current_user.sub, f"Booking {target.value}",
        f"Your session on {booking.session_date} at {booking.start_time.strftime('%H:%M')} was {target.value}"
    )
    return booking

@router.post('/{booking_id}/confirm', response_model=BookingResponse)
def confirm_booking(booking_id: str, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    return change_status(db, booking_id, BookingStatus.CONFIRMED, current_user)

@router.post('/{booking_id}/cancel', response_model=BookingResponse)
def cancel_booking(booking_id: str, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    """Cancel a pending or confirmed booking. Held payments are refunded."""
    return change_status(db, booking_id, BookingStatus.CANCELLED, current_user)

@router.post('/{booking_id}/complete', response_model=BookingResponse)
def complete_booking(booking_id: str, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    """Mark a confirmed session as completed. Held payments are released to the tutor."""
    return change_status(db, booking_id, BookingStatus.COMPLETED, current_user)

@router.put('/{booking_id}/reschedule', response_model=BookingResponse)
@limiter.limit("20/minute")
def reschedule_booking(request: Request, booking_id: str, interval: RescheduleRequest, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    Move a pending or confirmed booking to a new interval. It goes back to pending.

    Raises:
    - InvalidTransition: the booking is completed or cancelled
    - SlotTaken: the new interval overlaps another active booking; details carry the fresh slots
    """
    booking = get_booking_or_404(db, booking_id)
    participant_role(booking, current_user)
    if booking.status not in (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value):
        raise InvalidTransition(f"A {booking.status} booking cannot be rescheduled", details={"booking_id": booking.id})

    validate_interval(interval.session_date, interval.start_time, interval.end_time)

    tutor_id = booking.tutor_id
    try:
        reschedule_atomically(db, booking, interval.session_date, interval.start_time, interval.end_time)
        db.commit()
    except SlotTaken as e:
        raise attach_fresh_slots(db, e, tutor_id, interval.session_date)

    db.refresh(booking)
    notify_participants(
        db, booking, current_user.sub, "Booking rescheduled",
        f"Your session was moved to {booking.session_date} at {booking.start_time.strftime('%H:%M')}"
    )
    return booking

@router.delete('/{booking_id}')
@limiter.limit("10/minute")
def delete_booking(request: Request, booking_id: str, current_user: DecodedAccessToken = Depends(admin_only), db: Session = Depends(get_db)):
    """Hard delete a booking (moderation). Its progress entry and payment go with it."""
    booking = get_booking_or_404(db, booking_id)
    db.delete(booking)
    db.commit()
    audit_logger.log_security_event("booking_deleted", current_user.sub, {"booking_id": booking_id})
    return {"booking_id": booking_id, "message": f"Booking {booking_id} deleted"}
