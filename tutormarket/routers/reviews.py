"""
Review router. Students review tutors they completed a session with, once per tutor.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List
from tutormarket.database.database import get_db, Booking, BookingStatus, Review
from tutormarket.auth_tools import student_only
from tutormarket.errors import DuplicateEntry, NotAuthorized
from tutormarket.schemas.review_schema import ReviewCreate, ReviewResponse
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.routers.authentication import limiter
from tutormarket.utilities import get_tutor_by_id, get_user_by_id, notify, recompute_tutor_rating, user_names

router = APIRouter(prefix='/reviews')

@router.post('', response_model=ReviewResponse)
@limiter.limit("10/minute")
def create_review(request: Request, review: ReviewCreate, current_user: DecodedAccessToken = Depends(student_only), db: Session = Depends(get_db)):
    """
    Review a tutor and recompute the tutor's rating.

    Raises:
    - NotFound: tutor missing
    - NotAuthorized: no completed session with this tutor
    - DuplicateEntry: the student already reviewed this tutor
    """
    tutor = get_tutor_by_id(db, review.tutor_id)
    completed = db.query(Booking.id).filter(
        Booking.tutor_id == tutor.id,
        Booking.student_id == current_user.sub,
        Booking.status == BookingStatus.COMPLETED.value
    ).first()
    if not completed:
        raise NotAuthorized("You can only review tutors after a completed session")

    if db.query(Review.id).filter(Review.tutor_id == tutor.id, Review.student_id == current_user.sub).first():
        raise DuplicateEntry("You already reviewed this tutor")

    row = Review(tutor_id=tutor.id, student_id=current_user.sub, rating=review.rating, comment=review.comment)
    db.add(row)
    try:
        recompute_tutor_rating(db, tutor)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateEntry("You already reviewed this tutor")
    db.refresh(row)

    student = get_user_by_id(db, current_user.sub)
    notify(db, tutor.user_id, "New review", f"{student.full_name} rated your session {row.rating}/5", type="review", related_id=row.id)

    data = ReviewResponse.model_validate(row).model_dump()
    data["student_name"] = student.full_name
    return data

@router.get('/tutor/{tutor_id}', response_model=List[ReviewResponse])
def get_tutor_reviews(tutor_id: str, db: Session = Depends(get_db)):
    reviews = db.query(Review).filter(Review.tutor_id == tutor_id).order_by(Review.created_at.desc()).all()
    names = user_names(db, [review.student_id for review in reviews])
    response = []
    for review in reviews:
        data = ReviewResponse.model_validate(review).model_dump()
        data["student_name"] = names.get(review.student_id)
        response.append(data)
    return response
