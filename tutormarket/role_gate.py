"""
Role gate: decides whether a role may open a page and where to send it otherwise.

The role is resolved from the database on every navigation, never taken from a
cached token claim, so a role change made by an admin applies immediately.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from fastapi import Depends
from tutormarket.auth_tools import get_current_user
from tutormarket.database.database import UserRole
from tutormarket.errors import NotAuthorized
from tutormarket.schemas.authentication_schema import DecodedAccessToken


@dataclass(frozen=True)
class RoleRule:
    forbidden_exact: Tuple[str, ...]
    forbidden_prefixes: Tuple[str, ...]
    redirect_to: str
    message: str


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    redirect_to: Optional[str] = None
    message: Optional[str] = None


RULES: Dict[UserRole, RoleRule] = {
    UserRole.STUDENT: RoleRule(
        forbidden_exact=(),
        forbidden_prefixes=("/admin", "/earnings", "/availability/manage"),
        redirect_to="/dashboard",
        message="This page is only available to tutors and administrators.",
    ),
    UserRole.TUTOR: RoleRule(
        forbidden_exact=("/tutors",),
        forbidden_prefixes=("/admin", "/book"),
        redirect_to="/profile",
        message="Tutors cannot search for other tutors. Use your dashboard to manage your profile and bookings.",
    ),
    UserRole.ADMIN: RoleRule(
        forbidden_exact=(),
        forbidden_prefixes=("/earnings", "/book"),
        redirect_to="/admin",
        message="Administrators manage bookings from the admin dashboard.",
    ),
}

# Every role needs a rule
_missing = set(UserRole) - set(RULES)
if _missing:
    raise RuntimeError(f"Role gate has no rule for: {sorted(role.value for role in _missing)}")


def _normalise(path: str) -> str:
    path = "/" + path.strip().lstrip("/")
    return path.rstrip("/") or "/"

def resolve_navigation(role: UserRole, path: str) -> GateDecision:
    """Pure decision for one (role, path) pair."""
    rule = RULES[role]
    path = _normalise(path)
    blocked = path in rule.forbidden_exact or any(
        path == prefix or path.startswith(prefix + "/") for prefix in rule.forbidden_prefixes
    )
    if blocked:
        return GateDecision(allowed=False, redirect_to=rule.redirect_to, message=rule.message)
    return GateDecision(allowed=True)

def gate(path: str):
    """Dependency factory applying the gate for a fixed page path to an API endpoint."""
    def dependency(current_user: DecodedAccessToken = Depends(get_current_user)) -> DecodedAccessToken:
        decision = resolve_navigation(UserRole(current_user.role), path)
        if not decision.allowed:
            raise NotAuthorized(decision.message, details={"redirect_to": decision.redirect_to})
        return current_user
    return dependency
