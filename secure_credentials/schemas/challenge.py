"""
Pydantic schemas for challenge endpoints
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

from secure_credentials.models.challenge import ChallengePurpose, ChallengeStatus, ProofMechanismType
from secure_credentials.schemas.common import OperationResult


# Request schemas

class CreateChallengeRequest(BaseModel):
    """Create a challenge bound to a device"""
    account_id: str = Field(..., min_length=1, max_length=36)
    device_id: Optional[str] = Field(None, max_length=36)
    purpose: ChallengePurpose = ChallengePurpose.LOGIN
    mechanism: Optional[ProofMechanismType] = None


class ApproveChallengeRequest(BaseModel):
    """
    Approve a challenge from the companion device

    challenge_id may be the challenge id or, for the shared-code mechanism,
    the verification code the user typed in.
    """
    challenge_id: str = Field(..., min_length=1, max_length=64)
    proof: str = Field(..., min_length=1, max_length=4096)
    device_id: str = Field(..., min_length=1, max_length=36)
    account_id: str = Field(..., min_length=1, max_length=36)


class RejectChallengeRequest(BaseModel):
    """Decline a challenge from the companion device"""
    device_id: str = Field(..., min_length=1, max_length=36)
    account_id: str = Field(..., min_length=1, max_length=36)


# Response schemas

class CreateChallengeResult(OperationResult):
    """
    Challenge created

    verification_code is only returned for login challenges using the
    shared-code mechanism; password-reset codes are shown on the device.
    """
    challenge_id: Optional[str] = None
    verification_code: Optional[str] = None
    nonce: Optional[str] = None
    expires_at: Optional[datetime] = None


class ChallengeStatusResult(OperationResult):
    """Challenge status as seen by a polling client"""
    challenge_id: Optional[str] = None
    status: Optional[ChallengeStatus] = None
    purpose: Optional[ChallengePurpose] = None
    expires_at: Optional[datetime] = None


class PendingChallengeView(BaseModel):
    """Live challenge as shown on the companion device"""
    challenge_id: str
    purpose: ChallengePurpose
    mechanism: ProofMechanismType
    nonce: Optional[str] = None
    verification_code: Optional[str] = None
    created_at: datetime
    expires_at: datetime


class PendingChallengesResult(OperationResult):
    """Live challenges bound to a device"""
    challenges: List[PendingChallengeView] = Field(default_factory=list)
