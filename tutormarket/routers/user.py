"""
User router handling profile management, email verification and notifications.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from typing import List
from tutormarket.database.database import get_db, Notification
from tutormarket.auth_tools import get_current_user
from tutormarket.errors import NotFound, ValidationFailed
from tutormarket.schemas.user_schema import ProfileUpdate, UserResponse, VerifyEmailRequest
from tutormarket.schemas.chat_schema import NotificationResponse
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.routers.authentication import limiter
from tutormarket.utilities import get_user_by_id
from tutormarket.database.redis import redis_client
from tutormarket.logger import logger
from tutormarket.config import get_settings

router = APIRouter(prefix='/users')
USE_REDIS = get_settings().use_redis

@router.get('/profile', response_model=UserResponse)
def get_profile(
    request: Request,
    current_user: DecodedAccessToken = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if USE_REDIS:
        cache_key = f"profile_{current_user.sub}"
        cached_data = redis_client.get_json(cache_key)
        if cached_data:
            return cached_data

    user = get_user_by_id(db, current_user.sub)
    data = UserResponse.model_validate(user).model_dump()

    if USE_REDIS:
        redis_client.set_json(cache_key, data, expiration=300)  # Cache for 5 minutes

    return data

@router.put('/profile', response_model=UserResponse)
def update_profile(request: Request, profile: ProfileUpdate, db: Session = Depends(get_db), current_user: DecodedAccessToken = Depends(get_current_user)):
    """
    Updates the profile of the logged in user.

    Parameters:
    - profile: Profile data, only the supplied fields change

    Raises:
    - NotFound: If user not found
    """
    user = get_user_by_id(db, current_user.sub)
    for field, value in profile.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, field, value)
    db.commit()
    db.refresh(user)

    if USE_REDIS:
        redis_client.delete_cache(f"profile_{user.id}")
    return user

@router.post('/verify-email', response_model=UserResponse)
@limiter.limit("10/minute")
def verify_email(request: Request, body: VerifyEmailRequest, db: Session = Depends(get_db), current_user: DecodedAccessToken = Depends(get_current_user)):
    """Mark the user's email as verified when the token matches the one sent at signup."""
    user = get_user_by_id(db, current_user.sub)
    if user.email_verified:
        return user
    if not user.verification_token or body.token != user.verification_token:
        raise ValidationFailed("Invalid verification token")
    user.email_verified = True
    user.verification_token = None
    db.commit()
    db.refresh(user)
    logger.info(f"Email verified for user {user.id}")
    return user

@router.get('/notifications', response_model=List[NotificationResponse])
def get_notifications(unread_only: bool = False, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    query = db.query(Notification).filter(Notification.user_id == current_user.sub)
    if unread_only:
        query = query.filter(Notification.is_read == False)
    return query.order_by(Notification.created_at.desc()).all()

@router.post('/notifications/{notificationID}/read', response_model=NotificationResponse)
def mark_notification_read(notificationID: str, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    notification = db.query(Notification).filter(
        Notification.id == notificationID,
        Notification.user_id == current_user.sub
    ).first()
    if not notification:
        raise NotFound("Notification not found")
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification

@router.post('/notifications/read-all')
def mark_all_notifications_read(current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    updated = db.query(Notification).filter(
        Notification.user_id == current_user.sub,
        Notification.is_read == False
    ).update({Notification.is_read: True}, synchronize_session=False)
    db.commit()
    return {"updated": updated, "message": f"{updated} notifications marked as read"}
