"""
Navigation router: the role gate as an API, asked by the client on every route change.
"""
from fastapi import APIRouter, Depends
from tutormarket.auth_tools import get_current_user
from tutormarket.database.database import UserRole
from tutormarket.role_gate import resolve_navigation
from tutormarket.schemas.authentication_schema import DecodedAccessToken, NavigationResponse

router = APIRouter(prefix='/navigation')

@router.get('/resolve', response_model=NavigationResponse)
def resolve(path: str, current_user: DecodedAccessToken = Depends(get_current_user)):
    """Whether the user may open path, and where to go instead. The role is read fresh from the database."""
    role = UserRole(current_user.role)
    decision = resolve_navigation(role, path)
    return {
        "path": path,
        "role": role.value,
        "allowed": decision.allowed,
        "redirect_to": decision.redirect_to,
        "message": decision.message,
    }
