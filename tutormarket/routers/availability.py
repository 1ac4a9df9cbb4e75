"""
Availability router: tutors manage their weekly recurring windows.
The booking flow only reads these windows.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from tutormarket.database.database import get_db, AvailabilityWindow, UserRole
from tutormarket.auth_tools import require_roles, tutor_only
from tutormarket.errors import NotAuthorized, NotFound, ValidationFailed
from tutormarket.schemas.booking_schema import AvailabilityCreate, AvailabilityUpdate, AvailabilityResponse
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.utilities import get_tutor_for_user

router = APIRouter(prefix='/availability')

def get_window_for_actor(db: Session, window_id: str, current_user: DecodedAccessToken) -> AvailabilityWindow:
    """Window owned by the tutor behind current_user; admins may touch any window."""
    window = db.query(AvailabilityWindow).filter(AvailabilityWindow.id == window_id).first()
    if not window:
        raise NotFound("Availability window not found", details={"window_id": window_id})
    if current_user.role != UserRole.ADMIN.value and window.tutor_id != get_tutor_for_user(db, current_user.sub).id:
        raise NotAuthorized("User not authorized to change this availability window")
    return window

@router.get('/me', response_model=List[AvailabilityResponse])
def get_own_availability(current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    tutor = get_tutor_for_user(db, current_user.sub)
    return db.query(AvailabilityWindow).filter(AvailabilityWindow.tutor_id == tutor.id).order_by(
        AvailabilityWindow.day_of_week, AvailabilityWindow.start_time
    ).all()

@router.post('', response_model=AvailabilityResponse)
def add_window(window: AvailabilityCreate, current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    """
    Add a weekly window to the logged in tutor's availability.
    Windows may overlap; the slot generator merges overlapping windows.
    """
    tutor = get_tutor_for_user(db, current_user.sub)
    row = AvailabilityWindow(tutor_id=tutor.id, **window.model_dump())
    db.add(row)
    db.commit()
    db.refresh(row)
    return row

@router.put('/{window_id}', response_model=AvailabilityResponse)
def update_window(window_id: str, update: AvailabilityUpdate, current_user: DecodedAccessToken = Depends(require_roles(UserRole.TUTOR, UserRole.ADMIN)), db: Session = Depends(get_db)):
    window = get_window_for_actor(db, window_id, current_user)
    changes = {field: value for field, value in update.model_dump(exclude_unset=True).items() if value is not None}
    if not changes:
        raise ValidationFailed("Nothing to update")

    day = changes.get("day_of_week", window.day_of_week)
    start = changes.get("start_time", window.start_time)
    end = changes.get("end_time", window.end_time)
    if day < 0 or day > 6:
        raise ValidationFailed("day_of_week must be between 0 (Sunday) and 6 (Saturday)", details={"day_of_week": day})
    if start >= end:
        raise ValidationFailed("start_time must be before end_time", details={"start_time": str(start), "end_time": str(end)})

    for field, value in changes.items():
        setattr(window, field, value)
    db.commit()
    db.refresh(window)
    return window

@router.delete('/{window_id}')
def delete_window(window_id: str, current_user: DecodedAccessToken = Depends(require_roles(UserRole.TUTOR, UserRole.ADMIN)), db: Session = Depends(get_db)):
    window = get_window_for_actor(db, window_id, current_user)
    db.delete(window)
    db.commit()
    return {"window_id": window_id, "message": f"Availability window {window_id} deleted"}
