"""
Pydantic schemas for authentication endpoints
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from secure_credentials.schemas.common import OperationResult, AccountSafeView


# Request schemas

class RegisterRequest(BaseModel):
    """Account registration request"""
    username: str = Field(..., min_length=3, max_length=64)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)
    confirm_password: str = Field(..., min_length=1, max_length=256)

    @field_validator("username")
    @classmethod
    def username_is_plain(cls, v):
        v = v.strip()
        if not all(c.isalnum() or c in "._-" for c in v):
            raise ValueError('Username may only contain letters, digits, ".", "_" and "-"')
        return v


class LoginRequest(BaseModel):
    """Login request"""
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=256)


class CompleteAuthRequest(BaseModel):
    """
    Complete authentication request

    proof is only used by the signed-challenge mechanism; backup_code lets
    a user without their device finish the login.
    """
    challenge_id: str = Field(..., min_length=1, max_length=64)
    proof: Optional[str] = Field(None, max_length=4096)
    backup_code: Optional[str] = Field(None, max_length=16)


class PasswordResetRequest(BaseModel):
    """Password reset request (challenge fields required once 2FA is on)"""
    username: str = Field(..., min_length=1, max_length=64)
    email: EmailStr
    new_password: str = Field(..., min_length=1, max_length=256)
    confirm_password: str = Field(..., min_length=1, max_length=256)
    challenge_id: Optional[str] = Field(None, max_length=64)
    proof: Optional[str] = Field(None, max_length=4096)


# Response schemas

class SessionInfo(BaseModel):
    """Session issued at login completion or registration"""
    session_id: str
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    mfa_verified: bool = False
    device_registration_required: bool = False


class RegisterResult(OperationResult):
    """Registration result"""
    account: Optional[AccountSafeView] = None
    session: Optional[SessionInfo] = None
    device_registration_required: bool = False


class LoginResult(OperationResult):
    """
    Login result

    With 2FA on, the first step returns requires_two_factor plus the
    challenge id (and, for the shared-code mechanism, the code to relay to
    the device) instead of an account and session.
    """
    requires_two_factor: bool = False
    challenge_id: Optional[str] = None
    verification_code: Optional[str] = None
    expires_at: Optional[datetime] = None
    account: Optional[AccountSafeView] = None
    session: Optional[SessionInfo] = None


class ResetResult(OperationResult):
    """Password reset result"""
    requires_two_factor: bool = False
    challenge_id: Optional[str] = None
    expires_at: Optional[datetime] = None


class LogoutResult(OperationResult):
    """Logout result"""
    sessions_revoked: int = 0


class LoginAttemptView(BaseModel):
    """Audit record of a login attempt"""
    attempt_id: str
    username: str
    success: bool
    stage: str
    error: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class LoginAttemptsResult(OperationResult):
    """Recent login attempts for an account"""
    attempts: List[LoginAttemptView] = Field(default_factory=list)
