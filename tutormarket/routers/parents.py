"""
Parent accounts: a parent links the accounts of their children and can then read
the children's bookings, progress and goals through the regular endpoints.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List
from tutormarket.database.database import get_db, User, UserRole, ParentChildAccount
from tutormarket.auth_tools import student_only
from tutormarket.errors import DuplicateEntry, NotFound, ValidationFailed
from tutormarket.schemas.user_schema import ChildLinkRequest, ChildResponse
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.routers.authentication import limiter
from tutormarket.utilities import notify
from tutormarket.logger import logger

router = APIRouter(prefix='/parents')

def child_to_dict(link: ParentChildAccount) -> dict:
    return {
        "link_id": link.id,
        "child_id": link.child.id,
        "full_name": link.child.full_name,
        "email": link.child.email,
        "learning_level": link.child.learning_level,
        "linked_at": link.created_at,
    }

@router.post('/children', response_model=ChildResponse)
@limiter.limit("10/minute")
def link_child(request: Request, data: ChildLinkRequest, current_user: DecodedAccessToken = Depends(student_only), db: Session = Depends(get_db)):
    """
    Link a learner account to the logged in parent by the learner's email.

    Raises:
    - NotFound: no learner account with that email
    - ValidationFailed: linking yourself
    - DuplicateEntry: already linked
    """
    child = db.query(User).filter(User.email == data.child_email, User.role == UserRole.STUDENT).first()
    if not child:
        raise NotFound("No learner account with this email", details={"email": data.child_email})
    if child.id == current_user.sub:
        raise ValidationFailed("You cannot link your own account")

    link = ParentChildAccount(parent_user_id=current_user.sub, child_user_id=child.id)
    db.add(link)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateEntry("This learner is already linked to your account")
    db.refresh(link)
    logger.info(f"Parent {current_user.sub} linked child {child.id}")
    notify(db, child.id, "Parent account linked", f"{current_user.name} can now follow your progress", type="parent", related_id=link.id)
    return child_to_dict(link)

@router.get('/children', response_model=List[ChildResponse])
def list_children(current_user: DecodedAccessToken = Depends(student_only), db: Session = Depends(get_db)):
    links = db.query(ParentChildAccount).filter(ParentChildAccount.parent_user_id == current_user.sub).order_by(ParentChildAccount.created_at).all()
    return [child_to_dict(link) for link in links]

@router.delete('/children/{child_id}')
def unlink_child(child_id: str, current_user: DecodedAccessToken = Depends(student_only), db: Session = Depends(get_db)):
    link = db.query(ParentChildAccount).filter(
        ParentChildAccount.parent_user_id == current_user.sub,
        ParentChildAccount.child_user_id == child_id
    ).first()
    if not link:
        raise NotFound("Child account is not linked")
    db.delete(link)
    db.commit()
    return {"child_id": child_id, "message": f"Child {child_id} unlinked"}
