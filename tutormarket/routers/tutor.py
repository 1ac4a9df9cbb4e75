"""
Tutor router: tutor directory search, public profiles, profile completion and slots.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from typing import List, Optional
from dataclasses import asdict
from datetime import date
from tutormarket.database.database import (
    get_db, Tutor, Subject, Review, CertificateApproval, TutorResource, AvailabilityWindow
)
from tutormarket.auth_tools import tutor_only
from tutormarket.role_gate import gate
from tutormarket.errors import DuplicateEntry, NotFound
from tutormarket.schemas.user_schema import (
    TutorProfileCreate, TutorProfileUpdate, TutorResponse, TutorPrivateResponse, TutorPublicProfile
)
from tutormarket.schemas.booking_schema import AvailabilityResponse, SlotsResponse
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.routers.authentication import limiter
from tutormarket.scheduling import day_of_week, generate_slots
from tutormarket.utilities import get_or_create_subjects, get_tutor_for_user, get_user_by_id, user_names
from tutormarket.database.redis import redis_client
from tutormarket.logger import logger
from tutormarket.config import get_settings

router = APIRouter(prefix='/tutors')
USE_REDIS = get_settings().use_redis

def apply_tutor_update(db: Session, tutor: Tutor, update: TutorProfileUpdate):
    """Copy the supplied fields of a profile update onto the tutor. The caller commits."""
    changes = update.model_dump(exclude_unset=True)
    subjects = changes.pop("subjects", None)
    for field, value in changes.items():
        if value is not None:
            setattr(tutor, field, value)
    if subjects is not None:
        tutor.subjects = get_or_create_subjects(db, subjects)

@router.get('', response_model=List[TutorResponse])
def search_tutors(
        request: Request,
        q: Optional[str] = None,
        subjects: Optional[str] = None,
        education_level: Optional[str] = None,
        teaching_level: Optional[str] = None,
        teaching_location: Optional[str] = None,
        location: Optional[str] = None,
        gender: Optional[str] = None,
        min_rating: Optional[float] = None,
        max_hourly_rate: Optional[float] = None,
        current_user: DecodedAccessToken = Depends(gate("/tutors")),
        db: Session = Depends(get_db)
    ):
        """
        Get the approved tutors matching the filters.

        Parameters:
        - q: Free text matched against name, bio and subjects
        - subjects: Filter by subjects (comma-separated string, any match)
        - education_level, gender: exact match
        - teaching_level, teaching_location: tutor must list the value
        - location: substring match
        - min_rating: Minimum rating of the tutor
        - max_hourly_rate: Maximum hourly rate of the tutor

        Tutors are turned away by the role gate.
        """
        query = db.query(Tutor).filter(Tutor.is_approved == True)

        if q:
            pattern = f"%{q.strip().lower()}%"
            query = query.filter(or_(
                func.lower(Tutor.full_name).like(pattern),
                func.lower(Tutor.bio).like(pattern),
                Tutor.subjects.any(func.lower(Subject.name).like(pattern))
            ))

        if subjects:
            subject_list = [subject.strip().lower() for subject in subjects.split(',') if subject.strip()]
            query = query.filter(Tutor.subjects.any(func.lower(Subject.name).in_(subject_list)))

        if education_level:
            query = query.filter(Tutor.education_level == education_level)

        if gender:
            query = query.filter(Tutor.gender == gender)

        if location:
            query = query.filter(func.lower(Tutor.location).like(f"%{location.strip().lower()}%"))

        if min_rating is not None:
            query = query.filter(Tutor.rating >= min_rating)

        if max_hourly_rate is not None:
            query = query.filter(Tutor.hourly_rate <= max_hourly_rate)

        tutors = query.order_by(Tutor.rating.is_(None), Tutor.rating.desc(), Tutor.full_name).all()

        # JSON list columns are matched here, not in SQL
        if teaching_level:
            tutors = [tutor for tutor in tutors if teaching_level in (tutor.teaching_level or [])]
        if teaching_location:
            tutors = [tutor for tutor in tutors if teaching_location in (tutor.teaching_location or [])]
        return tutors

@router.get('/subjects', response_model=List[str])
def get_all_subjects(db: Session = Depends(get_db)):
    """All subject names, sorted."""
    if USE_REDIS:
        cached_data = redis_client.get_json("subjects_all")
        if cached_data is not None:
            return cached_data

    subjects = [name for (name,) in db.query(Subject.name).order_by(Subject.name).all()]

    if USE_REDIS:
        redis_client.set_json("subjects_all", subjects)
    return subjects

@router.get('/qualifications', response_model=List[str])
def get_all_qualifications(db: Session = Depends(get_db)):
    """Distinct qualifications listed by approved tutors, sorted."""
    qualifications = set()
    for (values,) in db.query(Tutor.qualifications).filter(Tutor.is_approved == True).all():
        qualifications.update(value for value in (values or []) if value)
    return sorted(qualifications)

@router.post('/profile', response_model=TutorPrivateResponse)
@limiter.limit("10/minute")
def complete_profile(request: Request, profile: TutorProfileCreate, current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    """
    Complete the tutor profile of the logged in tutor account.
    The profile starts unapproved and is hidden from search until an admin approves it.

    Raises:
    - DuplicateEntry: the profile already exists, use PUT to change it
    """
    if db.query(Tutor.id).filter(Tutor.user_id == current_user.sub).first():
        raise DuplicateEntry("Tutor profile already exists")

    user = get_user_by_id(db, current_user.sub)
    data = profile.model_dump()
    subjects = data.pop("subjects")
    tutor = Tutor(user_id=user.id, full_name=user.full_name, email=user.email, **data)
    tutor.subjects = get_or_create_subjects(db, subjects)
    db.add(tutor)
    db.commit()
    db.refresh(tutor)
    logger.info(f"Tutor profile completed for user {user.id}")
    return tutor

@router.put('/profile', response_model=TutorPrivateResponse)
def update_profile(request: Request, profile: TutorProfileUpdate, current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    tutor = get_tutor_for_user(db, current_user.sub)
    apply_tutor_update(db, tutor, profile)
    db.commit()
    db.refresh(tutor)
    return tutor

@router.get('/me', response_model=TutorPrivateResponse)
def get_own_profile(current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    return get_tutor_for_user(db, current_user.sub)

@router.get('/{tutor_id}', response_model=TutorPublicProfile)
def get_tutor_profile(tutor_id: str, db: Session = Depends(get_db)):
    """Public profile of an approved tutor with reviews, approved certificates and public resources."""
    cache_key = f"tutor_{tutor_id}"
    if USE_REDIS:
        cached_data = redis_client.get_json(cache_key)
        if cached_data:
            return cached_data

    tutor = db.query(Tutor).filter(Tutor.id == tutor_id, Tutor.is_approved == True).first()
    if not tutor:
        raise NotFound("Tutor not found", details={"tutor_id": tutor_id})

    reviews = db.query(Review).filter(Review.tutor_id == tutor_id).order_by(Review.created_at.desc()).all()
    names = user_names(db, [review.student_id for review in reviews])
    certificates = db.query(CertificateApproval.file_name).filter(
        CertificateApproval.tutor_id == tutor_id,
        CertificateApproval.is_approved == True
    ).order_by(CertificateApproval.created_at).all()
    resources = db.query(TutorResource).filter(
        TutorResource.tutor_id == tutor_id,
        TutorResource.is_public == True
    ).order_by(TutorResource.created_at.desc()).all()

    data = {
        "tutor": TutorResponse.model_validate(tutor).model_dump(),
        "reviews": [
            {"id": review.id, "rating": review.rating, "comment": review.comment,
             "student_name": names.get(review.student_id), "created_at": review.created_at}
            for review in reviews
        ],
        "certificates": [file_name for (file_name,) in certificates],
        "resources": [
            {"id": resource.id, "title": resource.title, "description": resource.description,
             "subject": resource.subject, "file_type": resource.file_type}
            for resource in resources
        ],
    }

    if USE_REDIS:
        redis_client.set_json(cache_key, data)
    return data

@router.get('/{tutor_id}/availability', response_model=List[AvailabilityResponse])
def get_tutor_availability(tutor_id: str, db: Session = Depends(get_db)):
    return db.query(AvailabilityWindow).filter(AvailabilityWindow.tutor_id == tutor_id).order_by(
        AvailabilityWindow.day_of_week, AvailabilityWindow.start_time
    ).all()

@router.get('/{tutor_id}/slots', response_model=SlotsResponse)
def get_tutor_slots(tutor_id: str, date: date, db: Session = Depends(get_db)):
    """
    Bookable slots of a tutor on a date.

    Args:
        tutor_id (str): The tutor
        date (date): Calendar date, YYYY-MM-DD

    Returns:
        SlotsResponse: every slot of the day, booked ones marked unavailable
    """
    slots = generate_slots(db, tutor_id, date)
    return {"tutor_id": tutor_id, "date": date, "day_of_week": day_of_week(date), "slots": [asdict(slot) for slot in slots]}
