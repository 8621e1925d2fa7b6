"""
Challenge model - one authentication or password-reset ceremony
"""

import enum
from dataclasses import dataclass
from typing import Union

from sqlalchemy import Column, String, DateTime, Enum, Index

from secure_credentials.core.database import Base
from secure_credentials.utils.clock import utcnow


class ChallengeStatus(str, enum.Enum):
    """Challenge status; everything except PENDING and APPROVED is terminal"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    COMPLETED = "completed"
    USED = "used"


STICKY_STATUSES = (ChallengeStatus.COMPLETED, ChallengeStatus.USED)


class ChallengePurpose(str, enum.Enum):
    """What a successful challenge unlocks"""
    LOGIN = "login"
    PASSWORD_RESET = "password_reset"


class ProofMechanismType(str, enum.Enum):
    """How the companion device proves possession"""
    SHARED_CODE = "shared_code"
    SIGNED_CHALLENGE = "signed_challenge"


@dataclass(frozen=True)
class SharedCode:
    """Proof is the exact 6-digit verification code"""
    code: str


@dataclass(frozen=True)
class SignedChallenge:
    """Proof is the device's signature over the nonce"""
    nonce: str


ProofMechanism = Union[SharedCode, SignedChallenge]


class Challenge(Base):
    """Challenge model - short-lived, keyed by id with an account index"""
    __tablename__ = "challenges"
    __table_args__ = (
        Index('idx_challenges_account_status', 'account_id', 'status'),
        Index('idx_challenges_device_status', 'device_id', 'status'),
        Index('idx_challenges_code', 'account_id', 'verification_code'),
    )

    challenge_id = Column(String(36), primary_key=True)
    account_id = Column(String(36), nullable=False, index=True)
    device_id = Column(String(36), nullable=True)
    purpose = Column(Enum(ChallengePurpose), default=ChallengePurpose.LOGIN, nullable=False)
    mechanism = Column(Enum(ProofMechanismType), default=ProofMechanismType.SHARED_CODE, nullable=False)
    verification_code = Column(String(6), nullable=True)
    nonce = Column(String(128), nullable=True)
    status = Column(Enum(ChallengeStatus), default=ChallengeStatus.PENDING, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    status_changed_at = Column(DateTime, nullable=True)

    @property
    def proof_mechanism(self) -> ProofMechanism:
        if self.mechanism == ProofMechanismType.SIGNED_CHALLENGE:
            return SignedChallenge(nonce=self.nonce)
        return SharedCode(code=self.verification_code)

    @property
    def is_password_reset(self) -> bool:
        return self.purpose == ChallengePurpose.PASSWORD_RESET

    def __repr__(self):
        return f"<Challenge(challenge_id='{self.challenge_id}', purpose='{self.purpose}', status='{self.status}')>"
