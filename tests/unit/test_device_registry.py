"""
Unit tests for DeviceRegistry

Covers:
- Registration round trip and the 2FA flag
- Registration code expiry, reuse and key pinning
- Removal and the last-verified-device invariant
- Recovery reset
- Backup codes
- The 2FA flag over sequences of register, remove and reset
"""

import random
import re

import pytest

from secure_credentials.core.errors import (
    AccountNotFound,
    DeviceNotFound,
    InvalidCode,
    PublicKeyMismatch,
    RegistrationCodeExpired,
)
from secure_credentials.models import Account, BackupCode, Challenge, ChallengeStatus, Device
from secure_credentials.services.challenge_engine import ChallengeEngine
from secure_credentials.services.device_registry import DeviceRegistry


@pytest.fixture
def registry(db_session, redis, clock):
    return DeviceRegistry(db_session, redis, clock)


class TestBeginRegistration:
    """Test pending device creation"""

    def test_creates_pending_device_with_code(self, registry, account, clock):
        device, code, backup_codes = registry.begin_registration(account.account_id, "Pixel 8", "pk-1")

        assert re.fullmatch(r"\d{6}", code)
        assert device.verified is False
        assert device.registration_code == code
        assert (device.registration_expires_at - clock.now).total_seconds() == 300

    def test_first_device_gets_backup_codes(self, registry, account, db_session):
        _, _, backup_codes = registry.begin_registration(account.account_id, "Pixel 8", "pk-1")

        assert len(backup_codes) == 8
        stored = db_session.query(BackupCode).filter(BackupCode.account_id == account.account_id).all()
        assert len(stored) == 8
        assert all(b.code_hash not in backup_codes for b in stored)

    def test_second_device_gets_no_backup_codes(self, registry, account):
        registry.begin_registration(account.account_id, "Pixel 8", "pk-1")
        _, _, backup_codes = registry.begin_registration(account.account_id, "iPad", "pk-2")
        assert backup_codes is None

    def test_flag_stays_off_until_verified(self, registry, account, db_session):
        registry.begin_registration(account.account_id, "Pixel 8", "pk-1")
        stored = db_session.query(Account).filter(Account.account_id == account.account_id).one()
        assert stored.two_factor_enabled is False

    def test_unknown_account(self, registry):
        with pytest.raises(AccountNotFound):
            registry.begin_registration("missing", "Pixel 8", "pk-1")


class TestCompleteRegistration:
    """Test redeeming a registration code"""

    def test_round_trip(self, registry, account, db_session):
        device, code, _ = registry.begin_registration(account.account_id, "Pixel 8", "pk-1")

        account_id, device_id = registry.complete_registration(code, "Pixel 8 Pro", "pk-verified")

        assert account_id == account.account_id
        assert device_id == device.device_id
        stored = db_session.query(Device).filter(Device.device_id == device_id).one()
        assert stored.verified is True
        assert stored.registration_code is None
        assert stored.name == "Pixel 8 Pro"
        assert stored.public_key == "pk-verified"
        owner = db_session.query(Account).filter(Account.account_id == account_id).one()
        assert owner.two_factor_enabled is True
        assert owner.last_login_at is not None

    def test_second_submission_fails(self, registry, account):
        _, code, _ = registry.begin_registration(account.account_id, "Pixel 8", "pk-1")
        registry.complete_registration(code, "Pixel 8", "pk-1")

        with pytest.raises(InvalidCode):
            registry.complete_registration(code, "Pixel 8", "pk-1")

    def test_unknown_code(self, registry, account):
        with pytest.raises(InvalidCode):
            registry.complete_registration("000000", "Pixel 8", "pk-1")

    def test_expired_code(self, registry, account, clock, db_session):
        device, code, _ = registry.begin_registration(account.account_id, "Pixel 8", "pk-1")
        clock.advance(301)

        with pytest.raises(RegistrationCodeExpired):
            registry.complete_registration(code, "Pixel 8", "pk-1")

        stored = db_session.query(Device).filter(Device.device_id == device.device_id).one()
        assert stored.verified is False
        assert stored.registration_code is None

    def test_code_valid_at_exact_expiry(self, registry, account, clock):
        _, code, _ = registry.begin_registration(account.account_id, "Pixel 8", "pk-1")
        clock.advance(300)
        registry.complete_registration(code, "Pixel 8", "pk-1")

    def test_pinned_key_mismatch(self, db_session, redis, clock, account):
        registry = DeviceRegistry(db_session, redis, clock, pin_public_key=True)
        _, code, _ = registry.begin_registration(account.account_id, "Pixel 8", "pk-1")

        with pytest.raises(PublicKeyMismatch):
            registry.complete_registration(code, "Pixel 8", "pk-other")

        # Pinned key still accepted
        registry.complete_registration(code, "Pixel 8", "pk-1")


class TestRemoveDevice:
    """Test device removal"""

    def _verified(self, registry, account_id, name):
        _, code, _ = registry.begin_registration(account_id, name, f"pk-{name}")
        return registry.complete_registration(code, name, f"pk-{name}")[1]

    def test_removing_last_verified_device_clears_flag(self, registry, account, db_session):
        device_id = self._verified(registry, account.account_id, "phone")

        assert registry.remove_device(account.account_id, device_id) is False

        owner = db_session.query(Account).filter(Account.account_id == account.account_id).one()
        assert owner.two_factor_enabled is False
        assert db_session.query(Device).count() == 0

    def test_flag_kept_while_a_verified_device_remains(self, registry, account):
        first = self._verified(registry, account.account_id, "phone")
        self._verified(registry, account.account_id, "tablet")

        assert registry.remove_device(account.account_id, first) is True

    def test_unknown_device(self, registry, account):
        with pytest.raises(DeviceNotFound):
            registry.remove_device(account.account_id, "missing")

    def test_device_of_other_account(self, registry, account, coordinator):
        device_id = self._verified(registry, account.account_id, "phone")
        other = coordinator.register("bob", "bob@x.com", "Str0ng!Pass", "Str0ng!Pass").account

        with pytest.raises(DeviceNotFound):
            registry.remove_device(other.account_id, device_id)


class TestResetAllDevices:
    """Test the recovery reset"""

    def test_reset(self, registry, enrollment, db_session, redis, clock):
        engine = ChallengeEngine(db_session, redis, clock, registry=registry)
        challenge = engine.create(enrollment["account_id"], enrollment["device_id"])
        registry.begin_registration(enrollment["account_id"], "tablet", "pk-2")

        count = registry.reset_all_devices_unverified("alice")

        assert count == 2
        devices = db_session.query(Device).all()
        assert all(d.verified is False and d.registration_code is None for d in devices)
        owner = db_session.query(Account).filter(Account.account_id == enrollment["account_id"]).one()
        assert owner.two_factor_enabled is False
        assert owner.devices_reset_at == clock.now
        stored = db_session.query(Challenge).filter(Challenge.challenge_id == challenge.challenge_id).one()
        assert stored.status == ChallengeStatus.EXPIRED

    def test_next_verified_device_clears_reset_marker(self, registry, enrollment, db_session):
        registry.reset_all_devices_unverified("alice")
        _, code, _ = registry.begin_registration(enrollment["account_id"], "new phone", "pk-new")

        registry.complete_registration(code, "new phone", "pk-new")

        owner = db_session.query(Account).filter(Account.account_id == enrollment["account_id"]).one()
        assert owner.devices_reset_at is None
        assert owner.two_factor_enabled is True

    def test_unknown_username(self, registry):
        with pytest.raises(AccountNotFound):
            registry.reset_all_devices_unverified("nobody")


class TestDeviceLookups:
    """Test status and device selection"""

    def test_device_status(self, registry, account):
        device, code, _ = registry.begin_registration(account.account_id, "Pixel 8", "pk-1")
        assert registry.device_status("alice", device.device_id).verified is False

        registry.complete_registration(code, "Pixel 8", "pk-1")
        assert registry.device_status("alice", device.device_id).verified is True

    def test_preferred_device_is_most_recently_used(self, registry, account, clock):
        _, code, _ = registry.begin_registration(account.account_id, "phone", "pk-1")
        phone = registry.complete_registration(code, "phone", "pk-1")[1]
        clock.advance(10)
        _, code, _ = registry.begin_registration(account.account_id, "tablet", "pk-2")
        tablet = registry.complete_registration(code, "tablet", "pk-2")[1]

        assert registry.get_preferred_device(account.account_id).device_id == tablet

        clock.advance(10)
        registry.touch_device(phone)
        assert registry.get_preferred_device(account.account_id).device_id == phone

    def test_no_preferred_device(self, registry, account):
        registry.begin_registration(account.account_id, "phone", "pk-1")
        assert registry.get_preferred_device(account.account_id) is None

    def test_list_devices(self, registry, enrollment):
        devices, enabled = registry.list_devices(enrollment["account_id"])
        assert [d.device_id for d in devices] == [enrollment["device_id"]]
        assert enabled is True


class TestBackupCodeRedemption:
    """Test single-use backup codes"""

    def test_code_works_once(self, registry, enrollment):
        code = enrollment["backup_codes"][0]

        assert registry.redeem_backup_code(enrollment["account_id"], code) is True
        assert registry.redeem_backup_code(enrollment["account_id"], code) is False
        assert registry.backup_codes_remaining(enrollment["account_id"]) == 7

    def test_lowercase_without_dash_accepted(self, registry, enrollment):
        code = enrollment["backup_codes"][1].replace("-", "").lower()
        assert registry.redeem_backup_code(enrollment["account_id"], code) is True

    def test_unknown_code(self, registry, enrollment):
        assert registry.redeem_backup_code(enrollment["account_id"], "0000-0000") is False
        assert registry.redeem_backup_code(enrollment["account_id"], "") is False


def apply_step(registry, account_id, step, pending):
    """
    Run one registry operation; `pending` tracks (device_id, code) pairs
    still waiting for their code. Steps that have nothing to act on are no-ops.
    """
    if step == "begin":
        device, code, _ = registry.begin_registration(account_id, "device", "pk")
        pending.append((device.device_id, code))
    elif step == "complete" and pending:
        _, code = pending.pop(0)
        registry.complete_registration(code, "device", "pk")
    elif step == "remove_verified":
        device = registry.get_preferred_device(account_id)
        if device is not None:
            registry.remove_device(account_id, device.device_id)
    elif step == "remove_pending" and pending:
        device_id, _ = pending.pop()
        registry.remove_device(account_id, device_id)
    elif step == "reset":
        registry.reset_all_devices_unverified("alice")
        pending.clear()


STEPS = ["begin", "complete", "remove_verified", "remove_pending", "reset"]


class TestTwoFactorFlagOverSequences:
    """The 2FA flag is on exactly while at least one verified device exists"""

    def _check_sequence(self, registry, db_session, account_id, steps):
        pending = []
        for i, step in enumerate(steps):
            apply_step(registry, account_id, step, pending)

            db_session.expire_all()
            owner = db_session.query(Account).filter(Account.account_id == account_id).one()
            verified = registry.count_verified(account_id)
            assert owner.two_factor_enabled == (verified >= 1), f"after step {i} ({step}) of {steps}"

    @pytest.mark.parametrize("steps", [
        ["begin", "complete", "remove_verified"],
        ["begin", "begin", "complete", "complete", "remove_verified", "remove_verified"],
        ["begin", "complete", "begin", "remove_pending", "remove_verified"],
        ["begin", "complete", "reset", "begin", "complete"],
        ["begin", "begin", "complete", "reset", "remove_pending", "begin", "complete", "remove_verified"],
        ["begin", "remove_pending", "begin", "complete", "begin", "complete", "reset", "reset"],
    ])
    def test_listed_sequences(self, registry, account, db_session, steps):
        self._check_sequence(registry, db_session, account.account_id, steps)

    @pytest.mark.parametrize("seed", range(20))
    def test_random_sequences(self, registry, account, db_session, seed):
        rng = random.Random(seed)
        steps = [rng.choice(STEPS) for _ in range(25)]
        self._check_sequence(registry, db_session, account.account_id, steps)
