"""
Authentication Coordinator

Orchestrates the client-facing flows (registration, login, login completion,
password reset) plus the device and challenge operations exposed over HTTP.

Every business-rule failure raised below this layer is a ServiceError and is
returned as a typed result with success=False. Infrastructure failures
(StoreUnavailableError, database errors) propagate to the request boundary.
"""

import logging
from functools import lru_cache
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from secure_credentials import metrics
from secure_credentials.core.config import settings
from secure_credentials.core.errors import (
    AccountNotFound,
    CannotRemoveLastDevice,
    ChallengeNotApproved,
    ChallengeNotFound,
    DeviceReenrollmentRequired,
    EmailTaken,
    ExpiredError,
    InvalidCredentials,
    LoginRateLimited,
    NoVerifiedDevice,
    PasswordMismatch,
    ServiceError,
    TwoFactorRequired,
    UnauthorizedError,
    UsernameTaken,
    WeakPassword,
)
from secure_credentials.core.redis_client import RedisClient
from secure_credentials.models import (
    Account,
    Challenge,
    ChallengePurpose,
    ProofMechanismType,
    SignedChallenge,
    ChallengeStatus,
)
from secure_credentials.schemas.auth import (
    LoginAttemptsResult,
    LoginAttemptView,
    LoginResult,
    LogoutResult,
    RegisterResult,
    ResetResult,
)
from secure_credentials.schemas.challenge import (
    ChallengeStatusResult,
    CreateChallengeResult,
    PendingChallengesResult,
    PendingChallengeView,
)
from secure_credentials.schemas.common import AccountSafeView, OperationResult
from secure_credentials.schemas.events import EventType
from secure_credentials.schemas.device import (
    BeginRegistrationResult,
    CompleteRegistrationResult,
    DeviceListResult,
    DeviceStatusResult,
    DeviceView,
)
from secure_credentials.services.audit_service import AuditService
from secure_credentials.services.challenge_engine import ChallengeEngine
from secure_credentials.services.device_registry import DeviceRegistry
from secure_credentials.services.event_service import EventService
from secure_credentials.services.session_service import SessionService
from secure_credentials.utils.clock import utcnow
from secure_credentials.utils.security import hash_password, mask_email, mask_ip, verify_password

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _dummy_password_hash() -> str:
    # Verified against when the username is unknown so both paths cost the same
    return hash_password("dummy-password-for-timing")


def _failure(result_cls, error: ServiceError, **fields):
    """Build a failed result of the given type from a ServiceError"""
    return result_cls(
        success=False,
        error=error.code,
        error_type=error.category.value,
        message=error.message,
        **fields
    )


class AuthCoordinator:
    """Client-facing flows over the Device Registry and Challenge Engine"""

    def __init__(self, db: Session, redis: RedisClient, clock: Callable = utcnow):
        self.db = db
        self.redis = redis
        self.clock = clock
        self.registry = DeviceRegistry(db, redis, clock)
        self.engine = ChallengeEngine(db, redis, clock, registry=self.registry)
        self.sessions = SessionService(redis)
        self.audit = AuditService(db, clock)
        self.event_service = EventService(redis)
        self.mechanism = ProofMechanismType(settings.TWO_FACTOR_MECHANISM)

    # ==================================================================
    # Account flows
    # ==================================================================

    def register(
        self,
        username: str,
        email: str,
        password: str,
        confirm_password: str,
        ip: Optional[str] = None
    ) -> RegisterResult:
        """
        Create an account and a session that still requires device enrolment

        Fails with PasswordMismatch before any store access, then WeakPassword,
        UsernameTaken or EmailTaken.
        """
        try:
            if password != confirm_password:
                raise PasswordMismatch()
            if len(password) < settings.PASSWORD_MIN_LENGTH:
                raise WeakPassword(
                    f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters"
                )

            email = email.strip().lower()
            self._check_unique(username, email)

            now = self.clock()
            account = Account(
                username=username,
                email=email,
                password_hash=hash_password(password),
                two_factor_enabled=False,
                created_at=now,
                updated_at=now,
                last_password_change_at=now
            )
            self.db.add(account)
            try:
                self.db.commit()
            except IntegrityError:
                # Lost a concurrent signup race; the unique index decided
                self.db.rollback()
                self._check_unique(username, email)
                raise UsernameTaken()
            self.db.refresh(account)

            session = self.sessions.issue(account, mfa_verified=False, device_registration_required=True, ip=ip)
            self.event_service.publish_account_registered(account.account_id, account.username)
            logger.info(f"Account registered: {account.account_id} ({mask_email(email)})")

            return RegisterResult(
                success=True,
                account=AccountSafeView.model_validate(account),
                session=session,
                device_registration_required=True
            )

        except ServiceError as e:
            logger.info(f"Registration failed for {username}: {e.code}")
            return _failure(RegisterResult, e)

    def login(
        self,
        username: str,
        password: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> LoginResult:
        """
        First login step

        Without 2FA the session is issued right away. With 2FA a challenge is
        created for the most recently used verified device and the result
        carries its id (and, for shared codes, the code to show the user).
        """
        account = None
        try:
            allowed, _ = self.redis.check_rate_limit(
                f"ratelimit:login:{username}",
                settings.RATELIMIT_LOGIN_ATTEMPTS,
                settings.RATELIMIT_LOGIN_WINDOW_MINUTES * 60
            )
            if not allowed:
                raise LoginRateLimited(reason="rate_limited")

            account = self.db.query(Account).filter(Account.username == username).first()
            if account is None:
                verify_password(password, _dummy_password_hash())
                raise InvalidCredentials(reason="unknown_username")
            if not verify_password(password, account.password_hash):
                raise InvalidCredentials(reason="invalid_password")

            if not account.two_factor_enabled:
                now = self.clock()
                account.last_login_at = now
                account.updated_at = now
                self.db.commit()
                self.db.refresh(account)

                session = self.sessions.issue(account, mfa_verified=False, ip=ip)
                self.audit.record_login_attempt(
                    username, True, account.account_id, ip=ip, user_agent=user_agent
                )
                self.event_service.publish_login_success(account.account_id, session.session_id, False, ip)
                metrics.auth_login_attempts_total.labels(status="success").inc()
                return LoginResult(
                    success=True,
                    account=AccountSafeView.model_validate(account),
                    session=session
                )

            device = self.registry.get_preferred_device(account.account_id)
            if device is None:
                raise NoVerifiedDevice(reason="no_verified_device")

            challenge = self.engine.create(
                account.account_id,
                device.device_id,
                ChallengePurpose.LOGIN,
                self.mechanism
            )
            self.audit.record_login_attempt(
                username, True, account.account_id,
                error="two_factor_required", ip=ip, user_agent=user_agent
            )
            metrics.auth_login_attempts_total.labels(status="two_factor_required").inc()

            return LoginResult(
                success=True,
                requires_two_factor=True,
                challenge_id=challenge.challenge_id,
                verification_code=self._code_for_initiator(challenge),
                expires_at=challenge.expires_at
            )

        except ServiceError as e:
            reason = e.context.get("reason", e.code)
            logger.warning(f"Login failed for {username} from {mask_ip(ip or '')}: {reason}")
            self.audit.record_login_attempt(
                username, False, account.account_id if account else None,
                error=reason, ip=ip, user_agent=user_agent
            )
            metrics.auth_login_attempts_total.labels(status=e.code).inc()
            return _failure(LoginResult, e)

    def complete_login(
        self,
        challenge_id: str,
        proof: Optional[str] = None,
        backup_code: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> LoginResult:
        """
        Second login step

        Shared code: the device must already have approved the challenge.
        Signed challenge: a signature passed as proof is verified here.
        A backup code approves the challenge without the device.
        """
        account = None
        try:
            challenge = self.engine.get(challenge_id)
            account = self.registry.get_account(challenge.account_id)
            if challenge.purpose != ChallengePurpose.LOGIN:
                raise ChallengeNotApproved("Challenge is not a login challenge")

            if backup_code:
                self.engine.approve_with_backup_code(challenge_id, backup_code)
            elif proof and challenge.status == ChallengeStatus.PENDING and \
                    isinstance(challenge.proof_mechanism, SignedChallenge):
                self.engine.approve(challenge_id, proof, challenge.device_id, challenge.account_id)

            account = self.engine.complete(challenge_id)
            session = self.sessions.issue(account, mfa_verified=True, ip=ip)

            self.audit.record_login_attempt(
                account.username, True, account.account_id,
                stage="two_factor", ip=ip, user_agent=user_agent
            )
            self.event_service.publish_login_success(account.account_id, session.session_id, True, ip)
            metrics.auth_login_attempts_total.labels(status="success").inc()

            return LoginResult(
                success=True,
                account=AccountSafeView.model_validate(account),
                session=session
            )

        except ServiceError as e:
            if account is not None and isinstance(e, (UnauthorizedError, ExpiredError)):
                self.audit.record_login_attempt(
                    account.username, False, account.account_id,
                    stage="two_factor", error=e.code, ip=ip, user_agent=user_agent
                )
            logger.info(f"Login completion failed for challenge {challenge_id}: {e.code}")
            return _failure(LoginResult, e)

    def reset_password(
        self,
        username: str,
        email: str,
        new_password: str,
        confirm_password: str,
        challenge_id: Optional[str] = None,
        proof: Optional[str] = None
    ) -> ResetResult:
        """
        Reset a password

        Without 2FA the password is replaced immediately, unless a recovery
        reset left the account without a re-enrolled device. With 2FA the first
        call creates a password-reset challenge and fails with
        TwoFactorRequired; the second call names that challenge and is
        accepted once it is approved or carries a matching proof.
        """
        try:
            if new_password != confirm_password:
                raise PasswordMismatch()
            if len(new_password) < settings.PASSWORD_MIN_LENGTH:
                raise WeakPassword(
                    f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters"
                )

            account = self.db.query(Account).filter(
                Account.username == username,
                func.lower(Account.email) == email.strip().lower()
            ).first()
            if account is None:
                raise AccountNotFound("User not found or email does not match")

            if not account.two_factor_enabled:
                if account.devices_reset_at is not None:
                    raise DeviceReenrollmentRequired()
                now = self.clock()
                account.password_hash = hash_password(new_password)
                account.last_password_change_at = now
                account.updated_at = now
                self.db.commit()
                self.event_service.publish_password_changed(account.account_id, "reset")
                logger.info(f"Password reset for account {account.account_id}")
                return ResetResult(success=True)

            if not challenge_id:
                device = self.registry.get_preferred_device(account.account_id)
                if device is None:
                    raise NoVerifiedDevice()
                challenge = self.engine.create(
                    account.account_id,
                    device.device_id,
                    ChallengePurpose.PASSWORD_RESET,
                    self.mechanism
                )
                logger.info(f"Password reset for account {account.account_id} awaiting device approval")
                return _failure(
                    ResetResult,
                    TwoFactorRequired(),
                    requires_two_factor=True,
                    challenge_id=challenge.challenge_id,
                    expires_at=challenge.expires_at
                )

            self.engine.consume_for_password_reset(
                challenge_id,
                account.account_id,
                hash_password(new_password),
                proof
            )
            self.event_service.publish_password_changed(account.account_id, "reset_two_factor")
            logger.info(f"Password reset with device approval for account {account.account_id}")
            return ResetResult(success=True)

        except ServiceError as e:
            logger.info(f"Password reset failed for {username}: {e.code}")
            return _failure(ResetResult, e)

    def logout(self, session_id: str, account_id: str) -> LogoutResult:
        revoked = self.sessions.revoke(session_id)
        self.event_service.publish_event(
            event_type=EventType.LOGOUT,
            subject=f"account:{account_id}",
            data={"account_id": account_id, "session_id": session_id}
        )
        return LogoutResult(success=True, sessions_revoked=revoked)

    def login_attempts(self, account_id: str, limit: int = 50) -> LoginAttemptsResult:
        attempts = self.audit.list_login_attempts(account_id, limit)
        return LoginAttemptsResult(
            success=True,
            attempts=[LoginAttemptView.model_validate(a) for a in attempts]
        )

    # ==================================================================
    # Device operations
    # ==================================================================

    def begin_device_registration(
        self,
        account_id: str,
        device_name: str,
        public_key: str
    ) -> BeginRegistrationResult:
        try:
            device, code, backup_codes = self.registry.begin_registration(account_id, device_name, public_key)
            return BeginRegistrationResult(
                success=True,
                registration_code=code,
                registration_expires_at=device.registration_expires_at,
                device=DeviceView.model_validate(device),
                backup_codes=backup_codes
            )
        except ServiceError as e:
            return _failure(BeginRegistrationResult, e)

    def complete_device_registration(
        self,
        registration_code: str,
        device_name: str,
        public_key: str
    ) -> CompleteRegistrationResult:
        try:
            account_id, device_id = self.registry.complete_registration(
                registration_code, device_name, public_key
            )
            account = self.registry.get_account(account_id)
            return CompleteRegistrationResult(
                success=True,
                device_id=device_id,
                account=AccountSafeView.model_validate(account)
            )
        except ServiceError as e:
            logger.info(f"Device registration failed: {e.code}")
            return _failure(CompleteRegistrationResult, e)

    def list_devices(self, account_id: str) -> DeviceListResult:
        try:
            devices, two_factor_enabled = self.registry.list_devices(account_id)
            return DeviceListResult(
                success=True,
                devices=[DeviceView.model_validate(d) for d in devices],
                two_factor_enabled=two_factor_enabled
            )
        except ServiceError as e:
            return _failure(DeviceListResult, e)

    def remove_device(self, account_id: str, device_id: str) -> OperationResult:
        """
        Remove a device on behalf of the account holder

        Refuses to remove the last verified device while 2FA is on; the
        recovery reset is the way out for a lost device.
        """
        try:
            account = self.registry.get_account(account_id)
            device = self.registry.get_device(account_id, device_id)
            if account.two_factor_enabled and device.verified and \
                    self.registry.count_verified(account_id) <= 1:
                raise CannotRemoveLastDevice()

            self.registry.remove_device(account_id, device_id)
            return OperationResult(success=True, message="Device removed")
        except ServiceError as e:
            return _failure(OperationResult, e)

    def device_status(self, username: str, device_id: str) -> DeviceStatusResult:
        try:
            device = self.registry.device_status(username, device_id)
            return DeviceStatusResult(success=True, device_id=device.device_id, verified=device.verified)
        except ServiceError as e:
            return _failure(DeviceStatusResult, e)

    def reset_devices(
        self,
        username: str,
        password: str,
        backup_code: Optional[str] = None,
        session_account_id: Optional[str] = None,
        session_mfa_verified: bool = False
    ) -> OperationResult:
        """
        Recovery reset, for an owner who lost their device

        The password must match, and the caller also needs either an unused
        backup code or a session of the same account. That session must be
        device-verified while two-factor is on. Password attempts count
        against the login rate limit.
        """
        try:
            allowed, _ = self.redis.check_rate_limit(
                f"ratelimit:login:{username}",
                settings.RATELIMIT_LOGIN_ATTEMPTS,
                settings.RATELIMIT_LOGIN_WINDOW_MINUTES * 60
            )
            if not allowed:
                raise LoginRateLimited()

            account = self.db.query(Account).filter(Account.username == username).first()
            if account is None:
                verify_password(password, _dummy_password_hash())
                raise InvalidCredentials()
            if not verify_password(password, account.password_hash):
                raise InvalidCredentials()

            owns_session = session_account_id == account.account_id and (
                session_mfa_verified or not account.two_factor_enabled
            )
            if not owns_session and not self.registry.redeem_backup_code(account.account_id, backup_code):
                raise TwoFactorRequired("A backup code or a device-verified session is required")

            count = self.registry.reset_all_devices_unverified(username)
            return OperationResult(success=True, message=f"{count} device(s) reset")
        except ServiceError as e:
            logger.warning(f"Device reset refused for {username}: {e.code}")
            return _failure(OperationResult, e)

    # ==================================================================
    # Challenge operations
    # ==================================================================

    def create_challenge(
        self,
        account_id: str,
        device_id: Optional[str] = None,
        purpose: ChallengePurpose = ChallengePurpose.LOGIN,
        mechanism: Optional[ProofMechanismType] = None
    ) -> CreateChallengeResult:
        try:
            challenge = self.engine.create(account_id, device_id, purpose, mechanism or self.mechanism)
            return CreateChallengeResult(
                success=True,
                challenge_id=challenge.challenge_id,
                verification_code=self._code_for_initiator(challenge),
                nonce=challenge.nonce,
                expires_at=challenge.expires_at
            )
        except ServiceError as e:
            return _failure(CreateChallengeResult, e)

    def approve_challenge(
        self,
        challenge_id: str,
        proof: str,
        device_id: str,
        account_id: str
    ) -> OperationResult:
        try:
            self.engine.approve(challenge_id, proof, device_id, account_id)
            return OperationResult(success=True, message="Challenge approved")
        except ServiceError as e:
            logger.info(f"Challenge approval failed: {e.code}")
            return _failure(OperationResult, e)

    def reject_challenge(self, challenge_id: str, device_id: str, account_id: str) -> OperationResult:
        try:
            self.engine.reject(challenge_id, device_id, account_id)
            return OperationResult(success=True, message="Challenge rejected")
        except ServiceError as e:
            return _failure(OperationResult, e)

    def challenge_status(self, challenge_id: str) -> ChallengeStatusResult:
        try:
            challenge = self.engine.get(challenge_id)
            return self._status_result(challenge)
        except ServiceError as e:
            return _failure(ChallengeStatusResult, e)

    def resolve_by_code(self, account_id: str, code: str) -> ChallengeStatusResult:
        try:
            challenge = self.engine.resolve_by_code(account_id, code)
            if challenge is None:
                raise ChallengeNotFound()
            return self._status_result(challenge)
        except ServiceError as e:
            return _failure(ChallengeStatusResult, e)

    def pending_challenges(self, account_id: str, device_id: str) -> PendingChallengesResult:
        try:
            challenges = self.engine.pending_for_device(account_id, device_id)
            return PendingChallengesResult(
                success=True,
                challenges=[
                    PendingChallengeView(
                        challenge_id=c.challenge_id,
                        purpose=c.purpose,
                        mechanism=c.mechanism,
                        nonce=c.nonce,
                        # Reset codes are shown on the device and typed into the web client
                        verification_code=c.verification_code if c.is_password_reset else None,
                        created_at=c.created_at,
                        expires_at=c.expires_at
                    )
                    for c in challenges
                ]
            )
        except ServiceError as e:
            return _failure(PendingChallengesResult, e)

    # ==================================================================
    # Helpers
    # ==================================================================

    def _check_unique(self, username: str, email: str) -> None:
        if self.db.query(Account).filter(Account.username == username).first():
            raise UsernameTaken()
        if self.db.query(Account).filter(func.lower(Account.email) == email).first():
            raise EmailTaken()

    def _status_result(self, challenge: Challenge) -> ChallengeStatusResult:
        return ChallengeStatusResult(
            success=True,
            challenge_id=challenge.challenge_id,
            status=self.engine.effective_status(challenge),
            purpose=challenge.purpose,
            expires_at=challenge.expires_at
        )

    @staticmethod
    def _code_for_initiator(challenge: Challenge) -> Optional[str]:
        if challenge.mechanism != ProofMechanismType.SHARED_CODE or challenge.is_password_reset:
            return None
        return challenge.verification_code
