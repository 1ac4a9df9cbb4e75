from pydantic import BaseModel, ConfigDict, StringConstraints, field_validator
from datetime import datetime
from typing import Annotated, Optional
from bleach import clean

class MessageCreate(BaseModel):
    """Message request data"""
    receiver_id: str
    message: Annotated[str, StringConstraints(min_length=1, max_length=5000)]

    @field_validator('message')
    def sanitize_message(cls, v):
        v = clean(v, tags=[], strip=True)
        if not v.strip():
            raise ValueError('Message cannot be empty')
        return v

class MessageResponse(BaseModel):
    """Message response data"""
    id: str
    sender_id: str
    receiver_id: str
    sender_name: str
    message: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class ConversationPartner(BaseModel):
    """Somebody the user exchanged messages with, and the latest message"""
    user_id: str
    full_name: Optional[str] = None
    last_message: str
    last_message_at: datetime

class NotificationResponse(BaseModel):
    id: str
    title: str
    message: str
    type: str
    related_id: Optional[str] = None
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
