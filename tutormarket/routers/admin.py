"""
Admin router providing administrative endpoints for managing users, tutors, bookings,
reviews and certificates, and the dashboard.
Requires admin authentication for all endpoints.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from datetime import datetime
from typing import List, Optional
from tutormarket.routers.authentication import limiter, create_user_in_db
from tutormarket.routers.resources import delete_certificate_row, get_certificate_or_404
from tutormarket.routers.tutor import apply_tutor_update
from tutormarket.auth_tools import admin_only, has_role, is_admin
from tutormarket.database.database import (
    get_db, User, UserRole, Tutor, Booking, BookingStatus, Review, CertificateApproval
)
from tutormarket.errors import NotFound, ValidationFailed
from tutormarket.utilities import (
    booking_row_to_dict, bookings_with_names, get_tutor_by_id, get_user_by_id, notify, recompute_tutor_rating, user_names
)
from tutormarket.schemas.admin_schema import AdminDashboardResponse, BanUserReponse, BanUserRequest, RoleCheckResponse, RoleUpdate
from tutormarket.schemas.booking_schema import BookingWithNamesResponse
from tutormarket.schemas.resource_schema import CertificateDecision, CertificateResponse
from tutormarket.schemas.review_schema import ReviewResponse
from tutormarket.schemas.user_schema import AdminTutorUpdate, TutorPrivateResponse, UserCreate, UserResponse
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.storage import ObjectStore, get_object_store
from tutormarket.database.redis import redis_client
from tutormarket.logger import logger, audit_logger
from tutormarket.config import get_settings

router = APIRouter(prefix='/admin')
USE_REDIS = get_settings().use_redis

DASHBOARD_CACHE_KEY = "admin_dashboard_data"

@router.get('/dashboard', response_model=AdminDashboardResponse)
@limiter.limit("10/minute")
def admin_dashboard(
    request: Request,
    db: Session = Depends(get_db),
    _=Depends(admin_only)
):
    """
    Fetch admin dashboard counts.
    Rate limited to 10 requests per minute.

    Returns:
        AdminDashboardResponse: Dashboard statistics
    """
    if USE_REDIS:
        cached_data = redis_client.get_json(DASHBOARD_CACHE_KEY)
        if cached_data:
            return cached_data

    data = {
        "user_count": db.query(User).count(),
        "student_count": db.query(User).filter(User.role == UserRole.STUDENT).count(),
        "tutor_count": db.query(Tutor).count(),
        "pending_tutor_count": db.query(Tutor).filter(Tutor.is_approved == False).count(),
        "booking_count": db.query(Booking).count(),
        "pending_booking_count": db.query(Booking).filter(Booking.status == BookingStatus.PENDING.value).count(),
        "review_count": db.query(Review).count(),
        "pending_certificate_count": db.query(CertificateApproval).filter(CertificateApproval.is_approved.is_(None)).count(),
    }
    if USE_REDIS:
        redis_client.set_json(DASHBOARD_CACHE_KEY, data, expiration=600)  # Cache for 10 minutes

    return data

############################
########## USERS ###########
############################

@router.get('/users', response_model=List[UserResponse])
def get_all_users(role: Optional[UserRole] = None, db: Session = Depends(get_db), _=Depends(admin_only)):
    """
    Retrieve all users from the database.

    Args:
        role (UserRole): Only users with this role
        db (Session): Database session dependency.
        _ (Depends): Dependency to ensure the user has admin privileges.

    Returns:
        List[User]: A list of users.
    """
    query = db.query(User)
    if role is not None:
        query = query.filter(User.role == role)
    return query.order_by(User.created_at).all()

@router.post('/users', response_model=UserResponse)
@limiter.limit("3/minute")
def create_user(request: Request, user_data: UserCreate, db: Session = Depends(get_db), admin: DecodedAccessToken = Depends(admin_only)):
    """
    Create a new user. Only admins can create users this way, and only admins can create admins.

    Raises:
        DuplicateEntry: If the email is already registered.
    """
    user = create_user_in_db(db, user_data)
    logger.info(f"New user created: {user.email}")
    audit_logger.log_security_event("user_created", admin.sub, {"user_id": user.id, "role": user.role.value})
    return user

@router.get('/users/{user_id}', response_model=UserResponse)
def get_user(user_id: str, db: Session = Depends(get_db), _=Depends(admin_only)):
    return get_user_by_id(db, user_id)

@router.put('/users/{user_id}/role', response_model=UserResponse)
@limiter.limit("10/minute")
def update_user_role(request: Request, user_id: str, update: RoleUpdate, db: Session = Depends(get_db), admin: DecodedAccessToken = Depends(admin_only)):
    """
    Change the role of a user. Applies on the user's next navigation, the role gate reads it from the database.

    Raises:
        ValidationFailed: an admin changing their own role
    """
    if user_id == admin.sub:
        raise ValidationFailed("Admins cannot change their own role")
    user = get_user_by_id(db, user_id)
    previous = user.role
    user.role = update.role
    db.commit()
    db.refresh(user)
    audit_logger.log_security_event("role_changed", admin.sub, {"user_id": user_id, "from": previous.value, "to": update.role.value})
    notify(db, user.id, "Role updated", f"Your account role is now {update.role.value}", type="account")
    return user

@router.post('/users/{user_id}/ban', response_model=BanUserReponse)
@limiter.limit("10/minute")
def ban_user(request: Request, user_id: str, ban: BanUserRequest, db: Session = Depends(get_db), admin: DecodedAccessToken = Depends(admin_only)):
    """
    Ban a user until a specified datetime. A datetime in the past lifts the ban.

    Returns:
        dict: The user ID, ban expiration datetime, admin ID, and a message.
    """
    if user_id == admin.sub:
        raise ValidationFailed("Admins cannot ban themselves")
    user = get_user_by_id(db, user_id)
    user.banned_until = ban.banned_until
    db.commit()
    audit_logger.log_security_event("user_banned", admin.sub, {"user_id": user_id, "banned_until": ban.banned_until})
    return {"user_id": user_id, "banned_until": ban.banned_until, "issued_by": admin.sub, "message": f"User {user_id} banned until {ban.banned_until}"}

@router.delete('/users/{user_id}')
@limiter.limit("3/minute")
def delete_user(
    request: Request,
    user_id: str,
    db: Session = Depends(get_db),
    current_user: DecodedAccessToken = Depends(admin_only)
):
    """
    Delete user with admin authentication and logging. Bookings, messages and
    progress of the user go with it.

    Raises:
        NotFound: If the user is not found.
        ValidationFailed: an admin deleting their own account
    """
    if user_id == current_user.sub:
        raise ValidationFailed("Admins cannot delete their own account")
    user = get_user_by_id(db, user_id)
    db.delete(user)
    db.commit()
    logger.info(f"User {user_id} deleted by admin {current_user.sub}")
    audit_logger.log_security_event("user_deleted", current_user.sub, {"user_id": user_id})
    return {"message": f"User {user_id} deleted"}

@router.get('/users/{user_id}/has-role', response_model=RoleCheckResponse)
def check_user_role(user_id: str, role: UserRole, db: Session = Depends(get_db), _=Depends(admin_only)):
    return {"user_id": user_id, "role": role.value, "has_role": has_role(db, user_id, role)}

@router.get('/users/{user_id}/is-admin', response_model=RoleCheckResponse)
def check_is_admin(user_id: str, db: Session = Depends(get_db), _=Depends(admin_only)):
    return {"user_id": user_id, "role": UserRole.ADMIN.value, "has_role": is_admin(db, user_id)}

############################
########## TUTORS ##########
############################

@router.get('/tutors', response_model=List[TutorPrivateResponse])
def get_all_tutors(approved: Optional[bool] = None, db: Session = Depends(get_db), _=Depends(admin_only)):
    """All tutors, including the ones waiting for approval."""
    query = db.query(Tutor)
    if approved is not None:
        query = query.filter(Tutor.is_approved == approved)
    return query.order_by(Tutor.created_at).all()

@router.put('/tutors/{tutor_id}', response_model=TutorPrivateResponse)
def update_tutor(tutor_id: str, update: AdminTutorUpdate, db: Session = Depends(get_db), admin: DecodedAccessToken = Depends(admin_only)):
    """Edit a tutor's profile, approval flag, rate or subjects. Tutors are never hard deleted; unapprove them instead."""
    tutor = get_tutor_by_id(db, tutor_id)
    was_approved = tutor.is_approved
    apply_tutor_update(db, tutor, update)
    db.commit()
    db.refresh(tutor)
    if tutor.is_approved != was_approved:
        audit_logger.log_security_event("tutor_approval_changed", admin.sub, {"tutor_id": tutor_id, "is_approved": tutor.is_approved})
        state = "approved" if tutor.is_approved else "unapproved"
        notify(db, tutor.user_id, f"Profile {state}", f"Your tutor profile was {state} by an administrator", type="account")
    return tutor

############################
######### BOOKINGS #########
############################

@router.get('/bookings', response_model=List[BookingWithNamesResponse])
def get_all_bookings(status: Optional[BookingStatus] = None, db: Session = Depends(get_db), _=Depends(admin_only)):
    """All bookings with tutor and student names, resolved in one query."""
    query = bookings_with_names(db)
    if status is not None:
        query = query.filter(Booking.status == status.value)
    rows = query.order_by(Booking.session_date.desc(), Booking.start_time.desc()).all()
    return [booking_row_to_dict(row) for row in rows]

############################
######### REVIEWS ##########
############################

@router.get('/reviews', response_model=List[ReviewResponse])
def get_all_reviews(db: Session = Depends(get_db), _=Depends(admin_only)):
    reviews = db.query(Review).order_by(Review.created_at.desc()).all()
    names = user_names(db, [review.student_id for review in reviews])
    response = []
    for review in reviews:
        data = ReviewResponse.model_validate(review).model_dump()
        data["student_name"] = names.get(review.student_id)
        response.append(data)
    return response

@router.delete('/reviews/{review_id}')
@limiter.limit("10/minute")
def delete_review(request: Request, review_id: str, db: Session = Depends(get_db), admin: DecodedAccessToken = Depends(admin_only)):
    """Delete a review and recompute the tutor's rating."""
    review = db.query(Review).filter(Review.id == review_id).first()
    if not review:
        raise NotFound("Review not found")
    tutor = review.tutor
    db.delete(review)
    recompute_tutor_rating(db, tutor)
    db.commit()
    audit_logger.log_security_event("review_deleted", admin.sub, {"review_id": review_id, "tutor_id": tutor.id})
    return {"review_id": review_id, "message": f"Review {review_id} deleted"}

############################
####### CERTIFICATES #######
############################

@router.get('/certificates', response_model=List[CertificateResponse])
def get_certificates(status: Optional[str] = "pending", db: Session = Depends(get_db), _=Depends(admin_only)):
    """Certificates by moderation state: pending, approved, rejected or all."""
    query = db.query(CertificateApproval)
    if status == "pending":
        query = query.filter(CertificateApproval.is_approved.is_(None))
    elif status == "approved":
        query = query.filter(CertificateApproval.is_approved == True)
    elif status == "rejected":
        query = query.filter(CertificateApproval.is_approved == False)
    elif status != "all":
        raise ValidationFailed("status must be one of pending, approved, rejected, all")
    return query.order_by(CertificateApproval.created_at).all()

@router.post('/certificates/{certificate_id}/decision', response_model=CertificateResponse)
def decide_certificate(certificate_id: str, decision: CertificateDecision, db: Session = Depends(get_db), admin: DecodedAccessToken = Depends(admin_only)):
    certificate = get_certificate_or_404(db, certificate_id)
    certificate.is_approved = decision.approve
    certificate.approved_at = datetime.now()
    certificate.approved_by = admin.sub
    db.commit()
    db.refresh(certificate)
    state = "approved" if decision.approve else "rejected"
    audit_logger.log_security_event("certificate_decision", admin.sub, {"certificate_id": certificate_id, "decision": state})
    notify(db, certificate.tutor.user_id, f"Certificate {state}", f"Your certificate {certificate.file_name} was {state}",
           type="certificate", related_id=certificate.id)
    return certificate

@router.delete('/certificates/{certificate_id}')
def delete_certificate(
    certificate_id: str,
    db: Session = Depends(get_db),
    admin: DecodedAccessToken = Depends(admin_only),
    store: ObjectStore = Depends(get_object_store)
):
    certificate = get_certificate_or_404(db, certificate_id)
    delete_certificate_row(db, store, certificate)
    db.commit()
    audit_logger.log_security_event("certificate_deleted", admin.sub, {"certificate_id": certificate_id})
    return {"certificate_id": certificate_id, "message": f"Certificate {certificate_id} deleted"}
