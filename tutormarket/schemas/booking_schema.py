from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from typing import List, Optional
from datetime import date, datetime, time
from bleach import clean

def _clean_optional(v):
    return clean(v, tags=[], strip=True) if v is not None else v

############################
### AVAILABILITY SCHEMAS ###
############################

class AvailabilityBase(BaseModel):
    """A weekly recurring window. day_of_week: 0=Sunday .. 6=Saturday."""
    day_of_week: int
    start_time: time
    end_time: time
    is_available: bool = True

    @field_validator('day_of_week')
    def validate_day(cls, v):
        if v < 0 or v > 6:
            raise ValueError('day_of_week must be between 0 (Sunday) and 6 (Saturday)')
        return v

    @model_validator(mode='after')
    def validate_order(self):
        if self.start_time >= self.end_time:
            raise ValueError('start_time must be before end_time')
        return self

class AvailabilityCreate(AvailabilityBase):
    pass

class AvailabilityUpdate(BaseModel):
    """Partial window update; the resulting window is validated as a whole by the router"""
    day_of_week: Optional[int] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_available: Optional[bool] = None

class AvailabilityResponse(BaseModel):
    id: str
    tutor_id: str
    day_of_week: int
    start_time: time
    end_time: time
    is_available: bool

    model_config = ConfigDict(from_attributes=True)

############################
####### SLOT SCHEMAS #######
############################

class SlotResponse(BaseModel):
    start_time: time
    end_time: time
    available: bool

    model_config = ConfigDict(from_attributes=True)

class SlotsResponse(BaseModel):
    """All slots of one tutor on one date"""
    tutor_id: str
    date: date
    day_of_week: int
    slots: List[SlotResponse]

############################
##### BOOKING SCHEMAS ######
############################

class BookingInterval(BaseModel):
    session_date: date
    start_time: time
    end_time: time

    @model_validator(mode='after')
    def validate_order(self):
        if self.start_time >= self.end_time:
            raise ValueError('start_time must be before end_time')
        return self

class BookingCreate(BookingInterval):
    """Booking request of a student"""
    tutor_id: str
    subject: Optional[str] = None
    notes: Optional[str] = None
    focus_topic: Optional[str] = None

    @field_validator('subject', 'notes', 'focus_topic')
    def sanitize_text(cls, v):
        return _clean_optional(v)

class RescheduleRequest(BookingInterval):
    pass

class ConflictCheckRequest(BookingInterval):
    tutor_id: str
    exclude_booking_id: Optional[str] = None

class ConflictCheckResponse(BaseModel):
    has_conflict: bool

class BookingResponse(BaseModel):
    """Booking response data"""
    id: str
    tutor_id: str
    student_id: str
    session_date: date
    start_time: time
    end_time: time
    status: str
    subject: Optional[str] = None
    notes: Optional[str] = None
    focus_topic: Optional[str] = None
    cancellation_deadline: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class BookingWithNamesResponse(BookingResponse):
    """Booking with tutor and student display names, resolved in the same query"""
    tutor_name: Optional[str] = None
    student_name: Optional[str] = None

class CompletedSessionResponse(BookingWithNamesResponse):
    """Completed session of a tutor and whether progress was recorded for it"""
    has_progress: bool
