from pydantic import BaseModel, ConfigDict
from typing import Literal, Optional
from datetime import datetime

class PaymentQuote(BaseModel):
    """Price of one booking: rate times hours plus the platform fee"""
    booking_id: str
    hourly_rate: float
    hours: float
    subtotal: float
    platform_fee: float
    total: float

class PaymentCreate(BaseModel):
    booking_id: str
    payment_method: Literal["stripe", "paypal"]

class PaymentResponse(BaseModel):
    id: str
    booking_id: str
    student_id: str
    tutor_id: str
    amount: float
    platform_fee: float
    payment_method: Optional[str] = None
    status: str
    released_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class EarningsResponse(BaseModel):
    """Tutor earnings, net of platform fees"""
    tutor_id: str
    released_total: float
    pending_total: float
    refunded_total: float
    session_count: int
