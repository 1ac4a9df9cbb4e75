from pydantic import BaseModel
from typing import Optional

class LoggedInResponse(BaseModel):
    """Authentication response data"""
    access_token: str
    token_type: str
    status: str

class DevTokenRequest(BaseModel):
    """Request a local development token for an existing user"""
    email: str

class DecodedAccessToken(BaseModel):
    """
    Decoded access token data
        Args:
        - sub (str): User ID
        - name (str): User name
        - email (str): User email
        - role (str): User role
        - exp (int): Token expiration time
    """
    sub: str
    name: str
    email: str
    role: str
    exp: int

class NavigationResponse(BaseModel):
    """Role gate decision for one page"""
    path: str
    role: str
    allowed: bool
    redirect_to: Optional[str] = None
    message: Optional[str] = None
