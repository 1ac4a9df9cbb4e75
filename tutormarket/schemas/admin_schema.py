from pydantic import BaseModel
from tutormarket.database.database import UserRole
from datetime import datetime

class AdminDashboardResponse(BaseModel):
    """Admin dashboard data"""
    user_count: int
    student_count: int
    tutor_count: int
    pending_tutor_count: int
    booking_count: int
    pending_booking_count: int
    review_count: int
    pending_certificate_count: int

class RoleUpdate(BaseModel):
    role: UserRole

class BanUserRequest(BaseModel):
    banned_until: datetime

class BanUserReponse(BaseModel):
    """Ban user response data"""
    user_id: str
    banned_until: datetime
    issued_by: str
    message: str

class RoleCheckResponse(BaseModel):
    user_id: str
    role: str
    has_role: bool
