import pytest

from tutormarket.database.database import UserRole
from tutormarket.role_gate import RULES, resolve_navigation
from conftest import auth_header


def test_every_role_has_a_rule():
    assert set(RULES) == set(UserRole)


@pytest.mark.parametrize("role,path,allowed,redirect", [
    (UserRole.TUTOR, "/tutors", False, "/profile"),
    (UserRole.TUTOR, "/tutors/", False, "/profile"),
    (UserRole.TUTOR, "/profile", True, None),
    (UserRole.TUTOR, "/admin/users", False, "/profile"),
    (UserRole.STUDENT, "/tutors", True, None),
    (UserRole.STUDENT, "/admin", False, "/dashboard"),
    (UserRole.STUDENT, "/administration-help", True, None),
    (UserRole.STUDENT, "/earnings", False, "/dashboard"),
    (UserRole.ADMIN, "/admin/users", True, None),
    (UserRole.ADMIN, "/book/abc", False, "/admin"),
])
def test_resolve_navigation(role, path, allowed, redirect):
    decision = resolve_navigation(role, path)
    assert decision.allowed is allowed
    assert decision.redirect_to == redirect
    if not allowed:
        assert decision.message


def test_navigation_endpoint_uses_stored_role(client, db, student, admin):
    stale_header = auth_header(student)
    allowed = client.get("/navigation/resolve", params={"path": "/tutors"}, headers=stale_header).json()
    assert allowed == {"path": "/tutors", "role": "student", "allowed": True, "redirect_to": None, "message": None}

    # The admin turns the student into a tutor; the old token still says student
    changed = client.put(f"/admin/users/{student.id}/role", json={"role": "tutor"}, headers=auth_header(admin))
    assert changed.status_code == 200

    decision = client.get("/navigation/resolve", params={"path": "/tutors"}, headers=stale_header).json()
    assert decision["role"] == "tutor"
    assert decision["allowed"] is False
    assert decision["redirect_to"] == "/profile"


def test_tutor_search_is_gated(client, tutor, tutor_user, student):
    blocked = client.get("/tutors", headers=auth_header(tutor_user))
    assert blocked.status_code == 403
    assert blocked.json()["error"]["details"] == {"redirect_to": "/profile"}

    found = client.get("/tutors", headers=auth_header(student))
    assert found.status_code == 200
    assert [t["full_name"] for t in found.json()] == ["Tara Tutor"]
