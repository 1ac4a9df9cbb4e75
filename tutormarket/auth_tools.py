from typing import Any, Iterable
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session
from tutormarket.logger import logger
from tutormarket.database.database import User, UserRole, get_db
from tutormarket.errors import NotAuthenticated, NotAuthorized
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.config import get_settings
from datetime import datetime, timedelta

# security scheme. auto_error is off so a missing token maps to NotAuthenticated like every other auth failure
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/dev-token", auto_error=False)

def create_access_token(user_id: str, name: str, email: str, role: str, expires_in: int = None) -> str:
    """Create a signed access token. Identity itself is owned by the external auth provider."""
    settings = get_settings()
    expires_in = expires_in if expires_in is not None else settings.access_token_expire_minutes
    to_encode = {
        "sub": str(user_id),
        "name": name,
        "email": email,
        "role": role,
        "exp": datetime.utcnow() + timedelta(minutes=expires_in),
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.hash_algorithm)

def decode_access_token(token: str) -> DecodedAccessToken:
    """
    Decode and validate an access token.

    Raises:
    - NotAuthenticated: missing, malformed or expired token
    """
    if not token:
        raise NotAuthenticated("Missing access token.")
    settings = get_settings()
    try:
        payload : dict[str, Any] = jwt.decode(token, settings.secret_key, algorithms=[settings.hash_algorithm])
    except JWTError as e:
        logger.warning(f"Error decoding token: {str(e)}")
        raise NotAuthenticated("Invalid token. Could not decode token.")

    if not payload.get("sub"):
        raise NotAuthenticated("Invalid token. Missing user ID.")

    if payload.get("role") not in [role.value for role in UserRole]:
        raise NotAuthenticated("Invalid token. Unknown role.")

    return DecodedAccessToken(**payload)

##################################
### AUTHORIZATION DEPENDENCIES ###
##################################

def current_role(db: Session, user_id: str) -> UserRole:
    """The stored role of user_id. Role claims in tokens are never trusted for authorization."""
    user = db.query(User.role).filter(User.id == user_id).first()
    if not user:
        raise NotAuthenticated("User no longer exists")
    return user.role

def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> DecodedAccessToken:
    """
    Get the current user from the token.

    The role claim is replaced by the role stored for the user, so a promotion
    or demotion applies to tokens issued before it.

    Args:
    - token (str): The user's token
    - db (Session): Database session

    Returns:
    - DecodedAccessToken: The user's claims with the stored role
    """
    claims = decode_access_token(token)
    role = current_role(db, claims.sub)
    return claims.model_copy(update={"role": role.value})

def get_active_user(current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)) -> User:
    """Load the authenticated user's row and refuse banned accounts."""
    user = db.query(User).filter(User.id == current_user.sub).first()
    if not user:
        raise NotAuthenticated("User no longer exists.")
    if user.is_banned:
        raise NotAuthorized(f"User is banned until {user.banned_until}.")
    return user

def verify_user_role(user: DecodedAccessToken, allowed_roles: Iterable[UserRole]) -> DecodedAccessToken:
    """
    Verify that the user has the required role.

    Args:
    - user (DecodedAccessToken): The user's claims
    - allowed_roles (list): List of allowed roles

    Returns:
    - DecodedAccessToken: the same user, for chaining
    """
    allowed = [role.value for role in allowed_roles]
    if not user or user.role not in allowed:
        raise NotAuthorized(f"User must have one of these roles: {allowed}")

    return user

def require_roles(*roles: UserRole):
    def dependency(current_user: DecodedAccessToken = Depends(get_current_user)) -> DecodedAccessToken:
        return verify_user_role(current_user, roles)
    return dependency

def student_only(current_user: DecodedAccessToken = Depends(get_current_user)) -> DecodedAccessToken:
    """Verify that the user is a student"""
    return verify_user_role(current_user, [UserRole.STUDENT])

def tutor_only(current_user: DecodedAccessToken = Depends(get_current_user)) -> DecodedAccessToken:
    """Verify that the user is a tutor """
    return verify_user_role(current_user, [UserRole.TUTOR])

def admin_only(current_user: DecodedAccessToken = Depends(get_current_user)) -> DecodedAccessToken:
    """Verify that the user is an admin """
    return verify_user_role(current_user, [UserRole.ADMIN])

def has_role(db: Session, user_id: str, role: UserRole) -> bool:
    """True when the stored role of user_id is role."""
    return db.query(User.id).filter(User.id == user_id, User.role == role).first() is not None

def is_admin(db: Session, user_id: str) -> bool:
    return has_role(db, user_id, UserRole.ADMIN)
