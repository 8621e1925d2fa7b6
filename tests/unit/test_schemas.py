"""
Unit tests for request and result schemas
"""

from datetime import datetime
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from secure_credentials.schemas.auth import LoginAttemptView, RegisterRequest
from secure_credentials.schemas.common import AccountSafeView
from secure_credentials.schemas.device import DeviceView, ResetDevicesRequest


class TestOrmProjections:
    """Views read straight from model attributes"""

    @pytest.mark.parametrize("view", [AccountSafeView, DeviceView, LoginAttemptView])
    def test_uses_model_config(self, view):
        assert view.model_config["from_attributes"] is True
        assert "Config" not in vars(view)

    def test_account_view_from_object(self):
        now = datetime(2026, 3, 1, 9, 0, 0)
        row = SimpleNamespace(
            account_id="acc-1",
            username="alice",
            email="alice@x.com",
            password_hash="secret",
            two_factor_enabled=True,
            created_at=now,
            updated_at=now,
            last_login_at=None,
            last_password_change_at=now,
        )

        view = AccountSafeView.model_validate(row)

        assert view.username == "alice"
        assert "password_hash" not in view.model_dump()


class TestRegisterRequest:
    """Test the username validator"""

    def test_username_is_stripped(self):
        request = RegisterRequest(
            username="  alice ", email="alice@x.com", password="p", confirm_password="p"
        )
        assert request.username == "alice"

    def test_username_rejects_spaces_inside(self):
        with pytest.raises(ValidationError):
            RegisterRequest(username="al ice", email="alice@x.com", password="p", confirm_password="p")


class TestResetDevicesRequest:
    """Recovery needs more than a username"""

    def test_password_required(self):
        with pytest.raises(ValidationError):
            ResetDevicesRequest(username="alice")

    def test_backup_code_optional(self):
        request = ResetDevicesRequest(username="alice", password="Str0ng!Pass")
        assert request.backup_code is None
