"""
Booking scheduling: slot generation, the conflict guard and the booking state machine.

All interval checks use half-open intervals: [start, end) overlaps [s, e)
exactly when start < e and s < end, so back-to-back bookings never conflict.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import insert, literal, select, update
from sqlalchemy.orm import Session

from tutormarket.config import get_settings
from tutormarket.database.database import (
    ACTIVE_BOOKING_STATUSES, AvailabilityWindow, Booking, BookingStatus, PaymentStatus, Tutor, UserRole, generate_uuid
)
from tutormarket.errors import InvalidTransition, NotAuthorized, NotFound, SlotTaken, ValidationFailed
from tutormarket.logger import logger
from tutormarket.realtime import record_change

SECONDS_PER_DAY = 24 * 60 * 60

# Allowed moves of the booking lifecycle. completed and cancelled are terminal.
TRANSITIONS: Dict[BookingStatus, frozenset] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

# Who may move a booking into each status. Students only ever cancel their own booking.
TRANSITION_ACTORS: Dict[BookingStatus, frozenset] = {
    BookingStatus.CONFIRMED: frozenset({UserRole.TUTOR, UserRole.ADMIN}),
    BookingStatus.COMPLETED: frozenset({UserRole.TUTOR, UserRole.ADMIN}),
    BookingStatus.CANCELLED: frozenset({UserRole.STUDENT, UserRole.TUTOR, UserRole.ADMIN}),
}


@dataclass(frozen=True)
class Slot:
    start_time: time
    end_time: time
    available: bool


def day_of_week(on_date: date) -> int:
    """0=Sunday .. 6=Saturday, independent of locale."""
    return (on_date.weekday() + 1) % 7

def to_seconds(value: time) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second

def from_seconds(seconds: int) -> time:
    # Midnight at the end of the day is clamped to the last representable second
    seconds = min(seconds, SECONDS_PER_DAY - 1)
    return time(seconds // 3600, (seconds % 3600) // 60, seconds % 60)

def intervals_overlap(start_a, end_a, start_b, end_b) -> bool:
    """Half-open interval intersection; works for times or plain numbers."""
    return start_a < end_b and start_b < end_a

def build_slots(windows: Iterable, bookings: Iterable, slot_minutes: int = 60) -> List[Slot]:
    """
    Derive the bookable slots of one day.

    Args:
        windows: availability windows of the day (objects with start_time/end_time), already
            filtered to is_available.
        bookings: non-cancelled bookings of the day (objects with start_time/end_time).
        slot_minutes: slot length; slots are aligned to multiples of it from midnight.

    Returns:
        Slots ordered by start time. A slot is only produced when it fits entirely inside a
        window, so windows shorter than a slot produce nothing. Overlapping windows are merged
        by slot start, the merged slot being available only if every contributing window
        reports it available.
    """
    slot_length = slot_minutes * 60
    booked = [(to_seconds(b.start_time), to_seconds(b.end_time)) for b in bookings]

    merged: Dict[int, bool] = {}
    for window in windows:
        window_start = to_seconds(window.start_time)
        window_end = to_seconds(window.end_time)
        first = window_start // slot_length                # floor(start)
        last = -(-window_end // slot_length)               # ceil(end)
        for index in range(first, last):
            slot_start = index * slot_length
            slot_end = slot_start + slot_length
            if slot_start < window_start or slot_end > window_end:
                continue
            free = not any(intervals_overlap(slot_start, slot_end, b_start, b_end) for b_start, b_end in booked)
            merged[slot_start] = merged.get(slot_start, True) and free

    return [
        Slot(start_time=from_seconds(start), end_time=from_seconds(start + slot_length), available=available)
        for start, available in sorted(merged.items())
    ]

def get_tutor_or_404(db: Session, tutor_id: str) -> Tutor:
    tutor = db.query(Tutor).filter(Tutor.id == tutor_id).first()
    if not tutor:
        raise NotFound("Tutor not found")
    return tutor

def generate_slots(db: Session, tutor_id: str, on_date: date) -> List[Slot]:
    """Slots of a tutor for a calendar date, derived from availability minus non-cancelled bookings."""
    get_tutor_or_404(db, tutor_id)

    windows = db.query(AvailabilityWindow).filter(
        AvailabilityWindow.tutor_id == tutor_id,
        AvailabilityWindow.day_of_week == day_of_week(on_date),
        AvailabilityWindow.is_available == True,
    ).all()
    if not windows:
        return []

    bookings = db.query(Booking.start_time, Booking.end_time).filter(
        Booking.tutor_id == tutor_id,
        Booking.session_date == on_date,
        Booking.status != BookingStatus.CANCELLED.value,
    ).all()

    return build_slots(windows, bookings, get_settings().slot_length_minutes)

def _overlapping_bookings(tutor_id: str, session_date: date, start: time, end: time, exclude_booking_id: Optional[str] = None):
    bookings = Booking.__table__
    query = select(bookings.c.id).where(
        bookings.c.tutor_id == tutor_id,
        bookings.c.session_date == session_date,
        bookings.c.status.in_(ACTIVE_BOOKING_STATUSES),
        bookings.c.start_time < end,
        bookings.c.end_time > start,
    )
    if exclude_booking_id:
        query = query.where(bookings.c.id != exclude_booking_id)
    # Never correlate to an enclosing INSERT/UPDATE on the same table
    return query.correlate(None)

def has_conflict(db: Session, tutor_id: str, session_date: date, start: time, end: time, exclude_booking_id: Optional[str] = None) -> bool:
    """True when [start, end) overlaps a pending or confirmed booking of the tutor on that date."""
    return db.execute(_overlapping_bookings(tutor_id, session_date, start, end, exclude_booking_id).limit(1)).first() is not None

def validate_interval(session_date: date, start: time, end: time, now: Optional[datetime] = None):
    if start >= end:
        raise ValidationFailed("start_time must be before end_time", details={"start_time": str(start), "end_time": str(end)})
    now = now or datetime.now()
    if datetime.combine(session_date, start) < now:
        raise ValidationFailed("Sessions cannot be booked in the past", details={"session_date": str(session_date)})

def cancellation_deadline_for(session_date: date, start: time) -> datetime:
    return datetime.combine(session_date, start) - timedelta(hours=get_settings().cancellation_notice_hours)

def _lock_tutor(db: Session, tutor_id: str) -> Tutor:
    """Row lock on the tutor, serialising concurrent writers of the same tutor's calendar (no-op on SQLite)."""
    tutor = db.query(Tutor).filter(Tutor.id == tutor_id).with_for_update().first()
    if not tutor:
        raise NotFound("Tutor not found")
    return tutor

def insert_booking_atomically(db: Session, tutor_id: str, student_id: str, session_date: date, start: time, end: time,
                              subject: Optional[str] = None, notes: Optional[str] = None, focus_topic: Optional[str] = None) -> str:
    """
    Insert a pending booking only if it conflicts with nothing.

    The overlap check and the insert are one INSERT ... SELECT ... WHERE NOT EXISTS statement,
    run after locking the tutor row, so two students racing for the same slot cannot both win.
    The caller commits.

    Raises:
        SlotTaken: when the interval overlaps a pending or confirmed booking.
    """
    _lock_tutor(db, tutor_id)
    bookings = Booking.__table__
    now = datetime.now()
    booking_id = generate_uuid()
    row = {
        "id": booking_id,
        "tutor_id": tutor_id,
        "student_id": student_id,
        "session_date": session_date,
        "start_time": start,
        "end_time": end,
        "status": BookingStatus.PENDING.value,
        "subject": subject,
        "notes": notes,
        "focus_topic": focus_topic,
        "cancellation_deadline": cancellation_deadline_for(session_date, start),
        "created_at": now,
        "updated_at": now,
    }
    source = select(*[literal(value, bookings.c[name].type) for name, value in row.items()]).where(
        ~_overlapping_bookings(tutor_id, session_date, start, end).exists()
    )
    result = db.execute(insert(bookings).from_select(list(row), source))
    if result.rowcount == 0:
        db.rollback()
        logger.info(f"Booking rejected, slot taken: tutor {tutor_id} on {session_date} {start}-{end}")
        raise SlotTaken(details={"tutor_id": tutor_id, "session_date": str(session_date), "start_time": str(start), "end_time": str(end)})
    record_change(db, "bookings", "INSERT", booking_id)
    return booking_id

def reschedule_atomically(db: Session, booking: Booking, session_date: date, start: time, end: time):
    """Move a non-terminal booking to a new interval and back to pending; same guarantees as insert_booking_atomically."""
    _lock_tutor(db, booking.tutor_id)
    bookings = Booking.__table__
    statement = update(bookings).where(
        bookings.c.id == booking.id,
        bookings.c.status.in_(ACTIVE_BOOKING_STATUSES),
        ~_overlapping_bookings(booking.tutor_id, session_date, start, end, exclude_booking_id=booking.id).exists(),
    ).values(
        session_date=session_date,
        start_time=start,
        end_time=end,
        status=BookingStatus.PENDING.value,
        cancellation_deadline=cancellation_deadline_for(session_date, start),
        updated_at=datetime.now(),
    )
    result = db.execute(statement)
    if result.rowcount == 0:
        db.rollback()
        if booking.status not in ACTIVE_BOOKING_STATUSES:
            raise InvalidTransition(f"A {booking.status} booking cannot be rescheduled")
        raise SlotTaken(details={"tutor_id": booking.tutor_id, "session_date": str(session_date), "start_time": str(start), "end_time": str(end)})
    record_change(db, "bookings", "UPDATE", booking.id)

def can_transition(current: str, target: BookingStatus) -> bool:
    return target in TRANSITIONS[BookingStatus(current)]

def ensure_transition_actor(actor_role: UserRole, target: BookingStatus):
    if actor_role not in TRANSITION_ACTORS[target]:
        raise NotAuthorized(f"A {actor_role.value} cannot move a booking to {target.value}")

def apply_transition(booking: Booking, target: BookingStatus, actor_id: str, now: Optional[datetime] = None) -> Booking:
    """
    Move a booking along the state machine and settle its mock payment.
    Completing releases held funds to the tutor, cancelling refunds them. The caller commits.
    """
    if not can_transition(booking.status, target):
        raise InvalidTransition(
            f"Booking cannot move from {booking.status} to {target.value}",
            details={"booking_id": booking.id, "from": booking.status, "to": target.value},
        )
    now = now or datetime.now()
    booking.status = target.value
    if target == BookingStatus.CANCELLED:
        booking.cancelled_at = now
        booking.cancelled_by = actor_id
    elif target == BookingStatus.COMPLETED:
        booking.completed_at = now

    payment = booking.payment
    if payment is not None and payment.status == PaymentStatus.HELD.value:
        if target == BookingStatus.COMPLETED:
            payment.status = PaymentStatus.RELEASED.value
            payment.released_at = now
        elif target == BookingStatus.CANCELLED:
            payment.status = PaymentStatus.REFUNDED.value
    return booking

def is_past_cancellation_deadline(booking: Booking, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now()
    return booking.cancellation_deadline is not None and now > booking.cancellation_deadline

def complete_elapsed_bookings(db: Session, actor_id: str, now: Optional[datetime] = None) -> List[Booking]:
    """Complete every confirmed booking whose session has ended. The caller commits."""
    now = now or datetime.now()
    candidates = db.query(Booking).filter(
        Booking.status == BookingStatus.CONFIRMED.value,
        Booking.session_date <= now.date(),
    ).all()
    completed = []
    for booking in candidates:
        if datetime.combine(booking.session_date, booking.end_time) <= now:
            apply_transition(booking, BookingStatus.COMPLETED, actor_id, now)
            completed.append(booking)
    return completed
