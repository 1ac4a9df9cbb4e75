from pydantic import BaseModel, ConfigDict, field_validator
from typing import Dict, List, Optional
from datetime import date, datetime
from bleach import clean
from tutormarket.database.database import SkillLevel

############################
##### PROGRESS SCHEMAS #####
############################

class ProgressCreate(BaseModel):
    """Tutor's assessment of a completed booking"""
    booking_id: str
    skill_level: SkillLevel
    progress_note: str
    homework_next_action: Optional[str] = None

    @field_validator('progress_note')
    def sanitize_note(cls, v):
        v = clean(v, tags=[], strip=True).strip()
        if not v:
            raise ValueError('progress_note is required')
        return v

    @field_validator('homework_next_action')
    def sanitize_homework(cls, v):
        return clean(v, tags=[], strip=True) if v is not None else v

class ProgressUpdate(BaseModel):
    skill_level: Optional[SkillLevel] = None
    progress_note: Optional[str] = None
    homework_next_action: Optional[str] = None

    @field_validator('progress_note', 'homework_next_action')
    def sanitize_text(cls, v):
        return clean(v, tags=[], strip=True) if v is not None else v

    @field_validator('skill_level', 'progress_note')
    def not_cleared(cls, v):
        if v is None:
            raise ValueError('Field cannot be cleared')
        return v

class ProgressResponse(BaseModel):
    id: str
    booking_id: str
    learner_id: str
    tutor_id: str
    subject: str
    date_of_session: date
    skill_level: str
    progress_note: str
    homework_next_action: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class ChartPoint(BaseModel):
    """One session on a progress chart, skill level on the 1-4 scale"""
    date_of_session: date
    skill_level: str
    level: int

class ProgressChartResponse(BaseModel):
    learner_id: str
    subjects: Dict[str, List[ChartPoint]]

class SubjectSummary(BaseModel):
    subject: str
    session_count: int
    latest_level: str
    average_level: float
    trend: str  # improving, steady or declining

class ProgressSummaryResponse(BaseModel):
    learner_id: str
    subjects: List[SubjectSummary]

############################
###### GOAL SCHEMAS ########
############################

class GoalCreate(BaseModel):
    learner_id: str
    subject: str
    goal_text: str
    target_date: Optional[date] = None

    @field_validator('subject', 'goal_text')
    def sanitize_text(cls, v):
        v = clean(v, tags=[], strip=True).strip()
        if not v:
            raise ValueError('Field cannot be empty')
        return v

class GoalResponse(BaseModel):
    id: str
    learner_id: str
    tutor_id: str
    subject: str
    goal_text: str
    target_date: Optional[date] = None
    is_achieved: bool
    achieved_date: Optional[date] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
