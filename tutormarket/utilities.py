from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import Dict, Iterable, List, Optional
from sqlalchemy import func
from tutormarket.database.database import User, UserRole, Tutor, Booking, Review, Notification, ParentChildAccount, Subject
from tutormarket.errors import NotFound, NotAuthorized
from tutormarket.logger import logger

def get_user_by_id(db: Session, user_id: str) -> User:
    """Get user by ID or raise NotFound"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found", details={"user_id": user_id})
    return user

def get_tutor_by_id(db: Session, tutor_id: str) -> Tutor:
    tutor = db.query(Tutor).filter(Tutor.id == tutor_id).first()
    if not tutor:
        raise NotFound("Tutor not found", details={"tutor_id": tutor_id})
    return tutor

def get_tutor_for_user(db: Session, user_id: str) -> Tutor:
    """The tutor profile of a tutor account. Missing until the tutor completes their profile."""
    tutor = db.query(Tutor).filter(Tutor.user_id == user_id).first()
    if not tutor:
        raise NotFound("Tutor profile not found. Complete your tutor profile first.")
    return tutor

def user_names(db: Session, user_ids: Iterable[str]) -> Dict[str, str]:
    """Resolve display names for a set of user ids with one query."""
    ids = {user_id for user_id in user_ids if user_id}
    if not ids:
        return {}
    return dict(db.query(User.id, User.full_name).filter(User.id.in_(ids)).all())

def get_or_create_subjects(db: Session, names: Iterable[str]) -> List[Subject]:
    """Subjects matching names (case preserved on first creation), creating the missing ones."""
    wanted = []
    for name in names:
        name = name.strip()
        if name and name.lower() not in [w.lower() for w in wanted]:
            wanted.append(name)
    if not wanted:
        return []
    existing = {
        subject.name.lower(): subject
        for subject in db.query(Subject).filter(func.lower(Subject.name).in_([name.lower() for name in wanted])).all()
    }
    subjects = []
    for name in wanted:
        subject = existing.get(name.lower())
        if subject is None:
            subject = Subject(name=name)
            db.add(subject)
        subjects.append(subject)
    return subjects

def is_parent_of(db: Session, parent_id: str, child_id: str) -> bool:
    return db.query(ParentChildAccount.id).filter(
        ParentChildAccount.parent_user_id == parent_id,
        ParentChildAccount.child_user_id == child_id
    ).first() is not None

def teaches(db: Session, tutor_user_id: str, learner_id: str) -> bool:
    """True when the tutor account has at least one booking with the learner."""
    return db.query(Booking.id).join(Tutor, Tutor.id == Booking.tutor_id).filter(
        Tutor.user_id == tutor_user_id,
        Booking.student_id == learner_id
    ).first() is not None

def ensure_can_view_learner(db: Session, viewer_id: str, viewer_role: str, learner_id: str):
    """Learners see their own data, parents their children's, tutors the learners they teach, admins everything."""
    if viewer_role == UserRole.ADMIN.value or viewer_id == learner_id:
        return
    if is_parent_of(db, viewer_id, learner_id):
        return
    if viewer_role == UserRole.TUTOR.value and teaches(db, viewer_id, learner_id):
        return
    raise NotAuthorized("User not authorized to view this learner's records")

def notify(db: Session, user_id: str, title: str, message: str, type: str = "general", related_id: Optional[str] = None) -> Optional[Notification]:
    """
    Insert a notification in its own transaction.

    Notifications are a side effect of another, already committed operation; a failure
    here is logged and swallowed so the primary operation still succeeds.
    """
    try:
        notification = Notification(user_id=user_id, title=title, message=message, type=type, related_id=related_id)
        db.add(notification)
        db.commit()
        return notification
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Notification for user {user_id} could not be stored: {str(e)}")
        return None

def bookings_with_names(db: Session):
    """Bookings joined to the tutor and student display names, one row per booking."""
    return db.query(Booking, Tutor.full_name.label("tutor_name"), User.full_name.label("student_name")) \
        .join(Tutor, Tutor.id == Booking.tutor_id) \
        .join(User, User.id == Booking.student_id)

def booking_row_to_dict(row) -> dict:
    booking, tutor_name, student_name = row
    data = {column.name: getattr(booking, column.name) for column in Booking.__table__.columns}
    data["tutor_name"] = tutor_name
    data["student_name"] = student_name
    return data

def recompute_tutor_rating(db: Session, tutor: Tutor):
    """Tutor rating is the mean of its reviews, None without reviews. The caller commits."""
    db.flush()
    average, count = db.query(func.avg(Review.rating), func.count(Review.id)).filter(Review.tutor_id == tutor.id).one()
    tutor.rating = round(float(average), 2) if count else None
    tutor.total_reviews = count
