"""
Authentication router: profile signup and local development tokens.
Identity itself is owned by the external auth provider; this service only
issues tokens for accounts it already knows, and only on a local setup.
"""
from fastapi import Depends, Request, APIRouter
from sqlalchemy.orm import Session
from slowapi import Limiter
from slowapi.util import get_remote_address
from datetime import datetime
from tutormarket.database.database import User, UserRole, generate_uuid, get_db
from tutormarket.errors import DuplicateEntry, NotAuthorized, NotFound, ValidationFailed
from tutormarket.logger import logger
from tutormarket.schemas.authentication_schema import LoggedInResponse, DevTokenRequest, DecodedAccessToken
from tutormarket.schemas.user_schema import UserCreate, UserResponse
from tutormarket.auth_tools import create_access_token, get_current_user
from tutormarket.config import get_settings

# Initialize router
router = APIRouter(prefix='/auth')

# Add rate limiting
limiter = Limiter(key_func=get_remote_address, enabled=get_settings().rate_limit_enabled)

def verify_localhost(request: Request):
    """Verify that the request is coming from localhost"""
    host = request.client.host if request.client else None
    if host not in ["127.0.0.1", "localhost", "::1", "testclient"]:
        raise NotAuthorized("Forbidden. This endpoint can only be accessed from localhost.")

def create_user_in_db(db: Session, user_data: UserCreate) -> User:
    """Create a new user with a fresh email verification token."""
    if db.query(User.id).filter(User.email == user_data.email).first():
        raise DuplicateEntry("Email already registered", details={"email": user_data.email})

    user = User(
        email=user_data.email,
        full_name=user_data.full_name,
        role=user_data.role,
        verification_token=generate_uuid(),
        verification_sent_at=datetime.now()
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user

def issue_token(user: User) -> dict:
    access_token = create_access_token(user.id, user.full_name, user.email, user.role.value)
    return {"access_token": access_token, "token_type": "bearer", "status": "logged_in"}

@router.post("/signup", response_model=LoggedInResponse)
@limiter.limit("10/minute")
def signup(request: Request, user_data: UserCreate, db: Session = Depends(get_db)):
    """
    Create the marketplace profile of a new student or tutor.

    Admin accounts can only be created by another admin.
    The verification email itself is sent by the auth provider, the token is logged for local setups.
    """
    if user_data.role == UserRole.ADMIN:
        raise ValidationFailed("Admin accounts cannot be created through signup")

    user = create_user_in_db(db, user_data)
    logger.info(f"New user signed up: {user.email} ({user.role.value})")
    if get_settings().local:
        logger.info(f"Verification token for {user.email}: {user.verification_token}")
    return issue_token(user)

@router.post("/dev-token", response_model=LoggedInResponse)
@limiter.limit("30/minute")
def dev_token(request: Request, token_request: DevTokenRequest, db: Session = Depends(get_db), _ = Depends(verify_localhost)):
    """
    Generate an access token for an existing user, for development purposes.
    This endpoint is only available in development, and can only be accessed from localhost.
    """
    # Only allow this endpoint in development
    if not get_settings().local:
        raise NotAuthorized("Forbidden")

    user = db.query(User).filter(User.email == token_request.email).first()
    if not user:
        raise NotFound("User not found", details={"email": token_request.email})

    return issue_token(user)

@router.get("/me", response_model=UserResponse)
def me(current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    user = db.query(User).filter(User.id == current_user.sub).first()
    if not user:
        raise NotFound("User not found")
    return user
