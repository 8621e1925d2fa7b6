"""
Device Registry

Manages the companion devices bound to an account:
- Registration (pending device + one-time registration code)
- Verification by redeeming the code from the device
- Listing, removal and the recovery reset
- Backup codes issued with the account's first device

Every state change that can race (code redemption, backup-code use) is a
single conditional UPDATE whose row count decides the winner.
"""

import logging
from datetime import timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from secure_credentials import metrics
from secure_credentials.core.config import settings
from secure_credentials.core.errors import (
    AccountNotFound,
    DeviceNotFound,
    InvalidCode,
    RegistrationCodeExpired,
    PublicKeyMismatch,
)
from secure_credentials.core.redis_client import RedisClient
from secure_credentials.models import Account, Device, BackupCode, Challenge, ChallengeStatus
from secure_credentials.schemas.events import EventType
from secure_credentials.services.event_service import EventService
from secure_credentials.utils.clock import utcnow
from secure_credentials.utils.security import (
    constant_time_compare,
    generate_backup_codes,
    generate_verification_code,
    hash_backup_code,
)

logger = logging.getLogger(__name__)

# Attempts at drawing a registration code that no other pending device holds
MAX_CODE_ATTEMPTS = 10


class DeviceRegistry:
    """Service for device registration and bookkeeping"""

    def __init__(
        self,
        db: Session,
        redis: RedisClient,
        clock: Callable = utcnow,
        pin_public_key: Optional[bool] = None
    ):
        self.db = db
        self.clock = clock
        self.event_service = EventService(redis)
        self.registration_ttl = timedelta(seconds=settings.DEVICE_REGISTRATION_TTL_SECONDS)
        self.pin_public_key = (
            settings.DEVICE_PIN_INITIAL_PUBLIC_KEY if pin_public_key is None else pin_public_key
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_account(self, account_id: str) -> Account:
        account = self.db.query(Account).filter(Account.account_id == account_id).first()
        if not account:
            raise AccountNotFound(account_id=account_id)
        return account

    def get_account_by_username(self, username: str) -> Account:
        account = self.db.query(Account).filter(Account.username == username).first()
        if not account:
            raise AccountNotFound(username=username)
        return account

    def get_device(self, account_id: str, device_id: str) -> Device:
        device = self.db.query(Device).filter(
            Device.device_id == device_id,
            Device.account_id == account_id
        ).first()
        if not device:
            raise DeviceNotFound(device_id=device_id)
        return device

    def count_verified(self, account_id: str) -> int:
        return self.db.query(Device).filter(
            Device.account_id == account_id,
            Device.verified == True  # noqa: E712
        ).count()

    def get_preferred_device(self, account_id: str) -> Optional[Device]:
        """
        Pick the device a new challenge is sent to

        Policy: the most recently used verified device.
        """
        return self.db.query(Device).filter(
            Device.account_id == account_id,
            Device.verified == True  # noqa: E712
        ).order_by(Device.last_used_at.desc(), Device.created_at.desc()).first()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def begin_registration(
        self,
        account_id: str,
        device_name: str,
        public_key: str
    ) -> Tuple[Device, str, Optional[List[str]]]:
        """
        Create a pending device and its registration code

        Args:
            account_id: Owning account
            device_name: Display name
            public_key: Public key as supplied at initiation

        Returns:
            Tuple of (device, registration_code, backup_codes). backup_codes
            is only set for the account's first device and is never stored
            in plaintext.

        Raises:
            AccountNotFound: If account_id does not resolve
        """
        account = self.get_account(account_id)
        first_device = self.db.query(Device).filter(Device.account_id == account_id).count() == 0

        now = self.clock()
        code = self._unique_registration_code()

        device = Device(
            account_id=account.account_id,
            name=device_name,
            public_key=public_key,
            verified=False,
            registration_code=code,
            registration_expires_at=now + self.registration_ttl,
            created_at=now,
            last_used_at=now
        )
        self.db.add(device)

        backup_codes = None
        if first_device:
            backup_codes = self._replace_backup_codes(account.account_id, now)

        account.updated_at = now
        self.db.commit()
        self.db.refresh(device)

        metrics.device_operations_total.labels(operation="begin", status="success").inc()
        self.event_service.publish_device_event(
            EventType.DEVICE_REGISTRATION_STARTED, account.account_id, device.device_id
        )
        logger.info(
            f"Device registration started: account={account.account_id} device={device.device_id}"
            f" first_device={first_device}"
        )
        return device, code, backup_codes

    def complete_registration(
        self,
        registration_code: str,
        device_name: str,
        public_key: str
    ) -> Tuple[str, str]:
        """
        Redeem a registration code from the companion device

        The public key supplied here replaces the one given at initiation
        unless key pinning is enabled.

        Returns:
            Tuple of (account_id, device_id)

        Raises:
            InvalidCode: No pending device holds the code (or it was just redeemed)
            RegistrationCodeExpired: The code is past its expiry
            PublicKeyMismatch: Pinning is on and the key differs
        """
        device = self.db.query(Device).filter(
            Device.registration_code == registration_code,
            Device.verified == False  # noqa: E712
        ).first()

        if not device:
            metrics.device_operations_total.labels(operation="complete", status="invalid_code").inc()
            raise InvalidCode()

        account_id = device.account_id
        device_id = device.device_id
        now = self.clock()

        if device.registration_expires_at and now > device.registration_expires_at:
            self.db.query(Device).filter(
                Device.device_id == device_id,
                Device.registration_code == registration_code
            ).update({"registration_code": None}, synchronize_session=False)
            self.db.commit()
            metrics.device_operations_total.labels(operation="complete", status="expired").inc()
            raise RegistrationCodeExpired(device_id=device_id)

        if self.pin_public_key and not constant_time_compare(device.public_key, public_key):
            metrics.device_operations_total.labels(operation="complete", status="key_mismatch").inc()
            raise PublicKeyMismatch(device_id=device_id)

        updated = self.db.query(Device).filter(
            Device.device_id == device_id,
            Device.registration_code == registration_code,
            Device.verified == False  # noqa: E712
        ).update({
            "verified": True,
            "name": device_name,
            "public_key": public_key,
            "registration_code": None,
            "registration_expires_at": None,
            "last_used_at": now
        }, synchronize_session=False)

        if updated != 1:
            self.db.rollback()
            metrics.device_operations_total.labels(operation="complete", status="lost_race").inc()
            raise InvalidCode()

        self.db.query(Account).filter(Account.account_id == account_id).update({
            "two_factor_enabled": True,
            "devices_reset_at": None,
            "last_login_at": now,
            "updated_at": now
        }, synchronize_session=False)
        self.db.commit()

        metrics.device_operations_total.labels(operation="complete", status="success").inc()
        self.event_service.publish_device_event(EventType.DEVICE_REGISTERED, account_id, device_id)
        logger.info(f"Device verified: account={account_id} device={device_id}")
        return account_id, device_id

    def device_status(self, username: str, device_id: str) -> Device:
        """Look up a device by owner username (polled by the device after showing its code)"""
        account = self.get_account_by_username(username)
        return self.get_device(account.account_id, device_id)

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def list_devices(self, account_id: str) -> Tuple[List[Device], bool]:
        account = self.get_account(account_id)
        devices = self.db.query(Device).filter(
            Device.account_id == account_id
        ).order_by(Device.created_at.asc()).all()
        return devices, account.two_factor_enabled

    def remove_device(self, account_id: str, device_id: str) -> bool:
        """
        Delete a device

        Clears the account's 2FA flag when no verified device remains. The
        last-device guard belongs to the caller.

        Returns:
            The account's 2FA flag after removal
        """
        account = self.get_account(account_id)
        deleted = self.db.query(Device).filter(
            Device.device_id == device_id,
            Device.account_id == account_id
        ).delete(synchronize_session=False)

        if deleted == 0:
            self.db.rollback()
            metrics.device_operations_total.labels(operation="remove", status="not_found").inc()
            raise DeviceNotFound(device_id=device_id)

        now = self.clock()
        if self.count_verified(account_id) == 0 and account.two_factor_enabled:
            account.two_factor_enabled = False
            logger.info(f"Two-factor disabled for account {account_id}: no verified device left")
        account.updated_at = now
        self.db.commit()

        metrics.device_operations_total.labels(operation="remove", status="success").inc()
        self.event_service.publish_device_event(EventType.DEVICE_REMOVED, account_id, device_id)
        return account.two_factor_enabled

    def reset_all_devices_unverified(self, username: str) -> int:
        """
        Recovery for a locked-out user

        Marks every device unverified, drops pending registration codes,
        expires live challenges and clears the 2FA flag. The account is
        marked as reset until its next device is verified.

        Returns:
            Number of devices reset
        """
        account = self.get_account_by_username(username)
        now = self.clock()

        count = self.db.query(Device).filter(
            Device.account_id == account.account_id
        ).update({
            "verified": False,
            "registration_code": None,
            "registration_expires_at": None
        }, synchronize_session=False)

        self.db.query(Challenge).filter(
            Challenge.account_id == account.account_id,
            Challenge.status == ChallengeStatus.PENDING
        ).update({
            "status": ChallengeStatus.EXPIRED,
            "status_changed_at": now
        }, synchronize_session=False)

        account.two_factor_enabled = False
        account.devices_reset_at = now
        account.updated_at = now
        self.db.commit()

        metrics.device_operations_total.labels(operation="reset", status="success").inc()
        self.event_service.publish_device_event(EventType.DEVICES_RESET, account.account_id)
        logger.warning(f"All devices reset to unverified for account {account.account_id} ({count} devices)")
        return count

    def touch_device(self, device_id: str) -> None:
        """Update a device's last-used timestamp"""
        self.db.query(Device).filter(Device.device_id == device_id).update(
            {"last_used_at": self.clock()}, synchronize_session=False
        )
        self.db.commit()

    # ------------------------------------------------------------------
    # Backup codes
    # ------------------------------------------------------------------

    def redeem_backup_code(self, account_id: str, code: Optional[str]) -> bool:
        """
        Spend a backup code

        Returns:
            True if an unused code matched and is now used
        """
        if not code:
            return False

        updated = self.db.query(BackupCode).filter(
            BackupCode.account_id == account_id,
            BackupCode.code_hash == hash_backup_code(code),
            BackupCode.used_at.is_(None)
        ).update({"used_at": self.clock()}, synchronize_session=False)
        self.db.commit()

        if updated == 1:
            logger.warning(f"Backup code used for account {account_id}")
            return True
        return False

    def backup_codes_remaining(self, account_id: str) -> int:
        return self.db.query(BackupCode).filter(
            BackupCode.account_id == account_id,
            BackupCode.used_at.is_(None)
        ).count()

    def _replace_backup_codes(self, account_id: str, now) -> List[str]:
        self.db.query(BackupCode).filter(
            BackupCode.account_id == account_id
        ).delete(synchronize_session=False)

        codes = generate_backup_codes(settings.BACKUP_CODE_COUNT)
        for code in codes:
            self.db.add(BackupCode(
                account_id=account_id,
                code_hash=hash_backup_code(code),
                created_at=now
            ))
        return codes

    def _unique_registration_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_verification_code()
            taken = self.db.query(Device).filter(
                Device.registration_code == code,
                Device.verified == False  # noqa: E712
            ).first()
            if not taken:
                return code
        raise RuntimeError("Could not allocate a unique registration code")
