"""
Pydantic schemas for device registration and management
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field

from secure_credentials.schemas.common import OperationResult, AccountSafeView


# Request schemas

class BeginRegistrationRequest(BaseModel):
    """Start binding a new device to an account"""
    account_id: str = Field(..., min_length=1, max_length=36)
    device_name: str = Field(..., min_length=1, max_length=255)
    public_key: str = Field(..., min_length=1, max_length=8192)


class CompleteRegistrationRequest(BaseModel):
    """Redeem a registration code from the companion device"""
    registration_code: str = Field(..., min_length=6, max_length=6)
    device_name: str = Field(..., min_length=1, max_length=255)
    public_key: str = Field(..., min_length=1, max_length=8192)


class ResetDevicesRequest(BaseModel):
    """
    Recovery: mark every device of an account unverified

    The password is always required. Without a device-verified session of
    the same account, a backup code must be supplied as well.
    """
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=256)
    backup_code: Optional[str] = Field(None, max_length=32)


# Response schemas

class DeviceView(BaseModel):
    """Device projection (registration code never included)"""
    device_id: str
    name: str
    public_key: str
    verified: bool
    created_at: datetime
    last_used_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BeginRegistrationResult(OperationResult):
    """
    Registration started

    backup_codes is only present for the account's first device and is
    shown exactly once.
    """
    registration_code: Optional[str] = None
    registration_expires_at: Optional[datetime] = None
    device: Optional[DeviceView] = None
    backup_codes: Optional[List[str]] = None


class CompleteRegistrationResult(OperationResult):
    """Device verified"""
    device_id: Optional[str] = None
    account: Optional[AccountSafeView] = None


class DeviceListResult(OperationResult):
    """Devices bound to an account"""
    devices: List[DeviceView] = Field(default_factory=list)
    two_factor_enabled: bool = False


class DeviceStatusResult(OperationResult):
    """Verification state of one device"""
    device_id: Optional[str] = None
    verified: bool = False
