"""
Shared result envelope and account projection
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class OperationResult(BaseModel):
    """
    Result envelope returned by every coordinator operation

    Failures carry the error kind (e.g. 'username_taken'), its taxonomy
    category (e.g. 'conflict') and a user-facing message.
    """
    success: bool = True
    error: Optional[str] = Field(None, description="Error kind code")
    error_type: Optional[str] = Field(None, description="Error category")
    message: Optional[str] = None


class AccountSafeView(BaseModel):
    """Account projection with secret material stripped"""
    account_id: str
    username: str
    email: str
    two_factor_enabled: bool
    created_at: datetime
    updated_at: datetime
    last_login_at: Optional[datetime] = None
    last_password_change_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
