"""
Database models
"""

from secure_credentials.models.account import Account
from secure_credentials.models.device import Device
from secure_credentials.models.backup_code import BackupCode
from secure_credentials.models.challenge import (
    Challenge,
    ChallengeStatus,
    ChallengePurpose,
    ProofMechanismType,
    ProofMechanism,
    SharedCode,
    SignedChallenge,
    STICKY_STATUSES,
)
from secure_credentials.models.login_attempt import LoginAttempt

__all__ = [
    "Account",
    "Device",
    "BackupCode",
    "Challenge",
    "ChallengeStatus",
    "ChallengePurpose",
    "ProofMechanismType",
    "ProofMechanism",
    "SharedCode",
    "SignedChallenge",
    "STICKY_STATUSES",
    "LoginAttempt",
]
