"""
Challenge Engine

State machine for one authentication or password-reset ceremony:

    pending -> approved | rejected | expired
    approved -> completed (login) | used (password reset)
    pending -> used (password reset with proof supplied directly)

Status only ever moves through _transition(), a conditional UPDATE guarded on
the expected current status, so two racing callers cannot both win.

Expiry is evaluated lazily: a pending challenge read after expires_at is
moved to expired at that point. Approved and rejected challenges past their
expiry report expired without a write; completed and used are sticky.
"""

import logging
from datetime import timedelta
from typing import Callable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from secure_credentials import metrics
from secure_credentials.core.config import settings
from secure_credentials.core.errors import (
    ChallengeAlreadyResolved,
    ChallengeExpired,
    ChallengeNotApproved,
    ChallengeNotFound,
    DeviceMismatch,
    NoVerifiedDevice,
    ProofMismatch,
    InvalidCode,
)
from secure_credentials.core.redis_client import RedisClient
from secure_credentials.models import (
    Account,
    Challenge,
    ChallengePurpose,
    ChallengeStatus,
    Device,
    ProofMechanismType,
    SharedCode,
    SignedChallenge,
    STICKY_STATUSES,
)
from secure_credentials.services.device_registry import DeviceRegistry
from secure_credentials.services.event_service import EventService
from secure_credentials.utils.clock import utcnow
from secure_credentials.utils.security import (
    constant_time_compare,
    generate_challenge_id,
    generate_nonce,
    generate_verification_code,
)
from secure_credentials.utils.signatures import verify_signature

logger = logging.getLogger(__name__)


class ChallengeEngine:
    """Creates, resolves and expires challenges"""

    def __init__(
        self,
        db: Session,
        redis: RedisClient,
        clock: Callable = utcnow,
        registry: Optional[DeviceRegistry] = None,
        supersede_pending: Optional[bool] = None
    ):
        self.db = db
        self.clock = clock
        self.registry = registry or DeviceRegistry(db, redis, clock)
        self.event_service = EventService(redis)
        self.ttl = timedelta(seconds=settings.CHALLENGE_TTL_SECONDS)
        self.supersede_pending = (
            settings.CHALLENGE_SUPERSEDE_PENDING if supersede_pending is None else supersede_pending
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        account_id: str,
        device_id: Optional[str] = None,
        purpose: ChallengePurpose = ChallengePurpose.LOGIN,
        mechanism: Optional[ProofMechanismType] = None
    ) -> Challenge:
        """
        Create a pending challenge

        Args:
            account_id: Owning account
            device_id: Device the challenge is bound to (optional for shared codes)
            purpose: Login or password reset
            mechanism: Proof mechanism, defaults to TWO_FACTOR_MECHANISM

        Returns:
            The persisted challenge (expires CHALLENGE_TTL_SECONDS after creation)

        Raises:
            AccountNotFound: Unknown account
            DeviceNotFound: device_id does not belong to the account
            DeviceMismatch: device_id is not verified yet
            NoVerifiedDevice: Signed challenge requested with no device to sign
        """
        mechanism = mechanism or ProofMechanismType(settings.TWO_FACTOR_MECHANISM)
        self.registry.get_account(account_id)

        if device_id:
            device = self.registry.get_device(account_id, device_id)
            if not device.verified:
                raise DeviceMismatch("Device is not verified", device_id=device_id)
        elif mechanism == ProofMechanismType.SIGNED_CHALLENGE:
            device = self.registry.get_preferred_device(account_id)
            if device is None:
                raise NoVerifiedDevice(account_id=account_id)
            device_id = device.device_id

        now = self.clock()

        if self.supersede_pending:
            superseded = self.db.query(Challenge).filter(
                Challenge.account_id == account_id,
                Challenge.purpose == purpose,
                Challenge.status == ChallengeStatus.PENDING
            ).update({
                "status": ChallengeStatus.EXPIRED,
                "status_changed_at": now
            }, synchronize_session=False)
            if superseded:
                logger.info(f"Superseded {superseded} pending {purpose.value} challenge(s) for account {account_id}")

        challenge = Challenge(
            challenge_id=generate_challenge_id(),
            account_id=account_id,
            device_id=device_id,
            purpose=purpose,
            mechanism=mechanism,
            verification_code=generate_verification_code(),
            nonce=generate_nonce() if mechanism == ProofMechanismType.SIGNED_CHALLENGE else None,
            status=ChallengeStatus.PENDING,
            created_at=now,
            expires_at=now + self.ttl
        )
        self.db.add(challenge)
        self.db.commit()
        self.db.refresh(challenge)

        metrics.challenge_created_total.labels(purpose=purpose.value, mechanism=mechanism.value).inc()
        logger.info(
            f"Challenge created: id={challenge.challenge_id} account={account_id}"
            f" purpose={purpose.value} mechanism={mechanism.value}"
        )
        return challenge

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, challenge_id: str) -> Challenge:
        """Fetch a challenge, persisting expiry of a stale pending one"""
        challenge = self.db.query(Challenge).filter(Challenge.challenge_id == challenge_id).first()
        if not challenge:
            raise ChallengeNotFound(challenge_id=challenge_id)
        return self._expire_if_stale(challenge)

    def effective_status(self, challenge: Challenge) -> ChallengeStatus:
        """Status as reported to callers, with time-based expiry applied"""
        if challenge.status in STICKY_STATUSES:
            return challenge.status
        if self.clock() > challenge.expires_at:
            return ChallengeStatus.EXPIRED
        return challenge.status

    def resolve_by_code(self, account_id: str, code: str) -> Optional[Challenge]:
        """Find the newest challenge of an account carrying a verification code"""
        challenge = self.db.query(Challenge).filter(
            Challenge.account_id == account_id,
            Challenge.verification_code == code
        ).order_by(Challenge.created_at.desc()).first()
        if challenge is None:
            return None
        return self._expire_if_stale(challenge)

    def pending_for_device(self, account_id: str, device_id: str) -> List[Challenge]:
        """Live challenges the device can act on (bound to it or to the account only)"""
        self.registry.get_device(account_id, device_id)
        now = self.clock()
        return self.db.query(Challenge).filter(
            Challenge.account_id == account_id,
            Challenge.status == ChallengeStatus.PENDING,
            Challenge.expires_at >= now,
            or_(Challenge.device_id == device_id, Challenge.device_id.is_(None))
        ).order_by(Challenge.created_at.desc()).all()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def approve(
        self,
        challenge_id_or_code: str,
        proof: str,
        device_id: str,
        account_id: str
    ) -> Challenge:
        """
        Approve a challenge from the companion device

        Checks, in order: existence, still pending, not expired, caller
        bound to the challenge, proof valid. A failed proof rejects the
        challenge.

        Args:
            challenge_id_or_code: Challenge id, or the verification code of a
                pending challenge of the account
            proof: Verification code or base64 signature over the nonce
            device_id: Calling device
            account_id: Calling device's account

        Raises:
            ChallengeNotFound, ChallengeAlreadyResolved, ChallengeExpired,
            DeviceMismatch, ProofMismatch
        """
        challenge = self._find_for_resolution(challenge_id_or_code, account_id)
        device = self._check_resolvable(challenge, device_id, account_id)

        if not self._verify_proof(challenge, proof, device):
            won = self._transition(challenge.challenge_id, ChallengeStatus.REJECTED)
            if not won:
                raise ChallengeAlreadyResolved(challenge_id=challenge.challenge_id)
            self.event_service.publish_challenge_resolved(
                challenge.challenge_id, account_id, False, challenge.purpose.value
            )
            logger.warning(f"Challenge {challenge.challenge_id} rejected: proof mismatch from device {device_id}")
            raise ProofMismatch(challenge_id=challenge.challenge_id)

        won = self._transition(
            challenge.challenge_id,
            ChallengeStatus.APPROVED,
            device_id=device.device_id
        )
        if not won:
            raise ChallengeAlreadyResolved(challenge_id=challenge.challenge_id)

        if challenge.mechanism == ProofMechanismType.SIGNED_CHALLENGE:
            self.registry.touch_device(device.device_id)

        self.event_service.publish_challenge_resolved(
            challenge.challenge_id, account_id, True, challenge.purpose.value
        )
        logger.info(f"Challenge {challenge.challenge_id} approved by device {device.device_id}")
        return self.get(challenge.challenge_id)

    def reject(self, challenge_id: str, device_id: str, account_id: str) -> Challenge:
        """Decline a pending challenge from the companion device"""
        challenge = self._find_for_resolution(challenge_id, account_id)
        self._check_resolvable(challenge, device_id, account_id)

        if not self._transition(challenge.challenge_id, ChallengeStatus.REJECTED, device_id=device_id):
            raise ChallengeAlreadyResolved(challenge_id=challenge.challenge_id)

        self.event_service.publish_challenge_resolved(
            challenge.challenge_id, account_id, False, challenge.purpose.value
        )
        logger.info(f"Challenge {challenge.challenge_id} declined by device {device_id}")
        return self.get(challenge.challenge_id)

    def approve_with_backup_code(self, challenge_id: str, backup_code: str) -> Challenge:
        """
        Approve a pending login challenge with a backup code

        Only login challenges qualify; a password-reset challenge is never
        touched and the code is not spent. The code is spent before the
        transition; losing the race after that still consumes it.
        """
        challenge = self.get(challenge_id)
        if challenge.purpose != ChallengePurpose.LOGIN:
            raise ChallengeNotApproved("Challenge is not a login challenge", challenge_id=challenge_id)
        if challenge.status != ChallengeStatus.PENDING:
            self._raise_for_status(challenge)
        if self.clock() > challenge.expires_at:
            raise ChallengeExpired(challenge_id=challenge_id)

        if not self.registry.redeem_backup_code(challenge.account_id, backup_code):
            raise InvalidCode("Invalid or already used backup code")

        if not self._transition(challenge_id, ChallengeStatus.APPROVED):
            raise ChallengeAlreadyResolved(challenge_id=challenge_id)
        return self.get(challenge_id)

    def complete(self, challenge_id: str) -> Account:
        """
        Finish a login once the challenge is approved

        Returns:
            The account, with last_login_at updated

        Raises:
            ChallengeNotFound, ChallengeNotApproved, ChallengeExpired,
            ChallengeAlreadyResolved
        """
        challenge = self.get(challenge_id)
        if challenge.purpose != ChallengePurpose.LOGIN:
            raise ChallengeNotApproved("Challenge is not a login challenge", challenge_id=challenge_id)

        status = self.effective_status(challenge)
        if status == ChallengeStatus.EXPIRED:
            raise ChallengeExpired(challenge_id=challenge_id)
        if status == ChallengeStatus.PENDING:
            raise ChallengeNotApproved(challenge_id=challenge_id)
        if status != ChallengeStatus.APPROVED:
            raise ChallengeAlreadyResolved(challenge_id=challenge_id, status=status.value)

        if not self._transition(challenge_id, ChallengeStatus.COMPLETED, from_status=ChallengeStatus.APPROVED):
            raise ChallengeAlreadyResolved(challenge_id=challenge_id)

        account = self.registry.get_account(challenge.account_id)
        now = self.clock()
        account.last_login_at = now
        account.updated_at = now
        self.db.commit()
        self.db.refresh(account)
        return account

    def consume_for_password_reset(
        self,
        challenge_id: str,
        account_id: str,
        new_password_hash: str,
        proof: Optional[str] = None
    ) -> Account:
        """
        Spend a password-reset challenge and store the new password hash

        Accepts an approved challenge, or a pending one together with its
        proof (the code shown on the device, a signature, or a backup code).

        Raises:
            ChallengeNotFound, ChallengeExpired, ChallengeNotApproved,
            ChallengeAlreadyResolved, ProofMismatch
        """
        challenge = self.get(challenge_id)
        if challenge.account_id != account_id or challenge.purpose != ChallengePurpose.PASSWORD_RESET:
            raise ChallengeNotFound(challenge_id=challenge_id)

        status = self.effective_status(challenge)
        if status == ChallengeStatus.EXPIRED:
            raise ChallengeExpired(challenge_id=challenge_id)

        if status == ChallengeStatus.APPROVED:
            won = self._transition(challenge_id, ChallengeStatus.USED, from_status=ChallengeStatus.APPROVED)
        elif status == ChallengeStatus.PENDING:
            if not proof:
                raise ChallengeNotApproved(challenge_id=challenge_id)
            device = None
            if challenge.device_id:
                device = self.db.query(Device).filter(Device.device_id == challenge.device_id).first()
            if not self._verify_proof(challenge, proof, device) and \
                    not self.registry.redeem_backup_code(account_id, proof):
                if self._transition(challenge_id, ChallengeStatus.REJECTED):
                    logger.warning(f"Password-reset challenge {challenge_id} rejected: proof mismatch")
                raise ProofMismatch(challenge_id=challenge_id)
            won = self._transition(challenge_id, ChallengeStatus.USED)
        else:
            raise ChallengeAlreadyResolved(challenge_id=challenge_id, status=status.value)

        if not won:
            raise ChallengeAlreadyResolved(challenge_id=challenge_id)

        account = self.registry.get_account(account_id)
        now = self.clock()
        account.password_hash = new_password_hash
        account.last_password_change_at = now
        account.updated_at = now
        self.db.commit()
        self.db.refresh(account)
        return account

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(
        self,
        challenge_id: str,
        to_status: ChallengeStatus,
        from_status: ChallengeStatus = ChallengeStatus.PENDING,
        **values
    ) -> bool:
        """
        Move a challenge between statuses with a conditional write

        Returns:
            True if this call made the transition, False if the status had
            already moved on
        """
        values.update({"status": to_status, "status_changed_at": self.clock()})
        updated = self.db.query(Challenge).filter(
            Challenge.challenge_id == challenge_id,
            Challenge.status == from_status
        ).update(values, synchronize_session=False)
        self.db.commit()

        outcome = "applied" if updated == 1 else "lost_race"
        metrics.challenge_transitions_total.labels(to_status=to_status.value, outcome=outcome).inc()
        if updated != 1:
            logger.info(f"Challenge {challenge_id} {from_status.value}->{to_status.value} lost the race")
        return updated == 1

    def _expire_if_stale(self, challenge: Challenge) -> Challenge:
        if challenge.status == ChallengeStatus.PENDING and self.clock() > challenge.expires_at:
            self._transition(challenge.challenge_id, ChallengeStatus.EXPIRED)
            self.db.refresh(challenge)
        return challenge

    def _find_for_resolution(self, challenge_id_or_code: str, account_id: str) -> Challenge:
        challenge = self.db.query(Challenge).filter(
            Challenge.challenge_id == challenge_id_or_code
        ).first()
        if challenge is None:
            challenge = self.db.query(Challenge).filter(
                Challenge.account_id == account_id,
                Challenge.verification_code == challenge_id_or_code,
                Challenge.status == ChallengeStatus.PENDING
            ).order_by(Challenge.created_at.desc()).first()
        if challenge is None:
            raise ChallengeNotFound(challenge_id=challenge_id_or_code)
        return challenge

    def _check_resolvable(self, challenge: Challenge, device_id: str, account_id: str) -> Device:
        """Status, expiry and binding checks shared by approve and reject"""
        if challenge.status != ChallengeStatus.PENDING:
            self._raise_for_status(challenge)

        if self.clock() > challenge.expires_at:
            self._transition(challenge.challenge_id, ChallengeStatus.EXPIRED)
            raise ChallengeExpired(challenge_id=challenge.challenge_id)

        if challenge.account_id != account_id:
            raise DeviceMismatch(challenge_id=challenge.challenge_id)
        if challenge.device_id and challenge.device_id != device_id:
            raise DeviceMismatch(challenge_id=challenge.challenge_id)

        device = self.db.query(Device).filter(
            Device.device_id == device_id,
            Device.account_id == account_id,
            Device.verified == True  # noqa: E712
        ).first()
        if device is None:
            raise DeviceMismatch(challenge_id=challenge.challenge_id)
        return device

    def _raise_for_status(self, challenge: Challenge) -> None:
        if challenge.status == ChallengeStatus.EXPIRED:
            raise ChallengeExpired(challenge_id=challenge.challenge_id)
        raise ChallengeAlreadyResolved(challenge_id=challenge.challenge_id, status=challenge.status.value)

    @staticmethod
    def _verify_proof(challenge: Challenge, proof: str, device: Optional[Device]) -> bool:
        mechanism = challenge.proof_mechanism
        if isinstance(mechanism, SharedCode):
            return constant_time_compare(mechanism.code, proof.strip())
        if isinstance(mechanism, SignedChallenge):
            if device is None:
                return False
            return verify_signature(device.public_key, mechanism.nonce, proof)
        return False
