from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, StringConstraints, field_validator
from typing import Annotated, Optional, List
from tutormarket.database.database import UserRole
from bleach import clean
from datetime import datetime

def _clean_optional(v):
    return clean(v, tags=[], strip=True) if v is not None else v

def _clean_list(v):
    return [clean(item, tags=[], strip=True).strip() for item in v if item and item.strip()] if v is not None else v

############################
### USER ACCOUNT SCHEMAS ###
############################

class UserBase(BaseModel):
    """Base user data"""
    email: EmailStr
    # Add constraints to name field (min length: 1, max length: 100)
    full_name: Annotated[str, StringConstraints(min_length=1, max_length=100)]

    @field_validator('full_name')
    def sanitize_name(cls, v):
        return clean(v, tags=[], strip=True)

class UserCreate(UserBase):
    """User creation data (admin only, identity normally comes from the auth provider)"""
    role: UserRole = UserRole.STUDENT

class UserResponse(UserBase):
    """User response data"""
    id: str
    role: UserRole
    email_verified: bool
    learning_level: Optional[str] = None
    location: Optional[str] = None
    preferred_mode: List[str] = []
    subjects_of_interest: List[str] = []
    banned_until: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class ProfileUpdate(BaseModel):
    """Profile update data. Fields left out are not changed."""
    full_name: Optional[Annotated[str, StringConstraints(min_length=1, max_length=100)]] = None
    learning_level: Optional[str] = None
    location: Optional[str] = None
    preferred_mode: Optional[List[str]] = None
    subjects_of_interest: Optional[List[str]] = None

    @field_validator('full_name', 'learning_level', 'location')
    def sanitize_text(cls, v):
        return _clean_optional(v)

    @field_validator('preferred_mode', 'subjects_of_interest')
    def sanitize_lists(cls, v):
        return _clean_list(v)

class VerifyEmailRequest(BaseModel):
    token: str

############################
##### TUTOR SCHEMAS ########
############################

class TutorProfileBase(BaseModel):
    """Tutor profile data shared by creation and responses"""
    bio: Optional[str] = None
    hourly_rate: float = 0.0
    education_level: Optional[str] = None
    experience_years: Optional[int] = None
    gender: Optional[str] = None
    location: Optional[str] = None
    languages: List[str] = []
    qualifications: List[str] = []
    teaching_level: List[str] = []
    teaching_location: List[str] = []

    @field_validator('bio', 'education_level', 'gender', 'location')
    def sanitize_text(cls, v):
        return _clean_optional(v)

    @field_validator('languages', 'qualifications', 'teaching_level', 'teaching_location')
    def sanitize_lists(cls, v):
        return _clean_list(v)

    @field_validator('hourly_rate')
    def validate_hourly_rate(cls, v):
        if v < 0:
            raise ValueError('Hourly rate cannot be negative')
        return v

    @field_validator('experience_years')
    def validate_experience(cls, v):
        if v is not None and v < 0:
            raise ValueError('Experience cannot be negative')
        return v

class TutorProfileCreate(TutorProfileBase):
    """Completes the tutor profile of the logged in tutor account"""
    subjects: List[str]
    phone: Optional[str] = None

    @field_validator('subjects')
    def validate_subjects(cls, v):
        v = _clean_list(v)
        if not v:
            raise ValueError('At least one subject is required')
        return v

class TutorProfileUpdate(BaseModel):
    """Tutor profile update data. Fields left out are not changed."""
    full_name: Optional[str] = None
    bio: Optional[str] = None
    hourly_rate: Optional[float] = None
    subjects: Optional[List[str]] = None
    education_level: Optional[str] = None
    experience_years: Optional[int] = None
    gender: Optional[str] = None
    location: Optional[str] = None
    phone: Optional[str] = None
    languages: Optional[List[str]] = None
    qualifications: Optional[List[str]] = None
    teaching_level: Optional[List[str]] = None
    teaching_location: Optional[List[str]] = None

    @field_validator('full_name', 'bio', 'education_level', 'gender', 'location', 'phone')
    def sanitize_text(cls, v):
        return _clean_optional(v)

    @field_validator('subjects', 'languages', 'qualifications', 'teaching_level', 'teaching_location')
    def sanitize_lists(cls, v):
        return _clean_list(v)

    @field_validator('hourly_rate')
    def validate_hourly_rate(cls, v):
        if v is not None and v < 0:
            raise ValueError('Hourly rate cannot be negative')
        return v

class AdminTutorUpdate(TutorProfileUpdate):
    """Admin edit of a tutor, including the approval flag"""
    is_approved: Optional[bool] = None

class TutorResponse(TutorProfileBase):
    """Tutor response data"""
    id: str
    user_id: str
    full_name: str
    subjects: List[str] = Field(default_factory=list, validation_alias=AliasChoices('subject_names', 'subjects'))
    is_approved: bool
    rating: Optional[float] = None
    total_reviews: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class TutorPrivateResponse(TutorResponse):
    """Tutor data as seen by the tutor and admins"""
    email: str
    phone: Optional[str] = None

class TutorPublicProfile(BaseModel):
    """Public tutor page: profile, reviews, approved certificates and public resources"""
    tutor: TutorResponse
    reviews: List[dict]
    certificates: List[str]
    resources: List[dict]

############################
##### PARENT SCHEMAS #######
############################

class ChildLinkRequest(BaseModel):
    child_email: EmailStr

class ChildResponse(BaseModel):
    """A learner linked to the parent account"""
    link_id: str
    child_id: str
    full_name: str
    email: str
    learning_level: Optional[str] = None
    linked_at: datetime
