from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime

class CertificateResponse(BaseModel):
    """Uploaded certificate and its moderation state (is_approved is None while pending)"""
    id: str
    tutor_id: str
    file_name: str
    is_approved: Optional[bool] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class CertificateDecision(BaseModel):
    approve: bool

class ResourceResponse(BaseModel):
    id: str
    tutor_id: str
    title: str
    description: Optional[str] = None
    file_path: str
    file_type: Optional[str] = None
    subject: Optional[str] = None
    is_public: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
