from pydantic import BaseModel, ConfigDict, field_validator
from typing import Optional
from datetime import datetime
from bleach import clean

class ReviewCreate(BaseModel):
    """Review of a tutor by a student who completed a session with them"""
    tutor_id: str
    rating: int
    comment: Optional[str] = None

    @field_validator('comment')
    def sanitize_comment(cls, v):
        return clean(v, tags=[], strip=True) if v is not None else v

    @field_validator('rating')
    def validate_rating(cls, v):
        if v < 1 or v > 5:
            raise ValueError('Rating must be between 1 and 5')
        return v

class ReviewResponse(BaseModel):
    id: str
    tutor_id: str
    student_id: str
    student_name: Optional[str] = None
    rating: int
    comment: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
