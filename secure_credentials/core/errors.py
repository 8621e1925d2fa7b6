"""
Error taxonomy for the two-factor protocol.

Business-rule failures derive from ServiceError and are turned into typed
results by the AuthCoordinator. StoreUnavailableError is infrastructure and
propagates to the request boundary instead.
"""

import enum
from typing import Any, Dict, Optional

from fastapi import status


class ErrorCategory(str, enum.Enum):
    """Error category, one per taxonomy branch"""
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    EXPIRED = "expired"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    INFRASTRUCTURE = "infrastructure"


CATEGORY_STATUS_CODES = {
    ErrorCategory.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorCategory.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCategory.EXPIRED: status.HTTP_410_GONE,
    ErrorCategory.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCategory.INFRASTRUCTURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class ServiceError(Exception):
    """Base class for business-rule failures"""

    category: ErrorCategory = ErrorCategory.VALIDATION
    code: str = "validation_error"
    default_message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return CATEGORY_STATUS_CODES[self.category]

    def __repr__(self):
        return f"<{self.__class__.__name__}(code='{self.code}', context={self.context})>"


# Category bases

class ValidationError(ServiceError):
    category = ErrorCategory.VALIDATION
    code = "validation_error"
    default_message = "Invalid request"


class NotFoundError(ServiceError):
    category = ErrorCategory.NOT_FOUND
    code = "not_found"
    default_message = "Resource not found"


class ConflictError(ServiceError):
    category = ErrorCategory.CONFLICT
    code = "conflict"
    default_message = "Request conflicts with current state"


class ExpiredError(ServiceError):
    category = ErrorCategory.EXPIRED
    code = "expired"
    default_message = "Request has expired"


class UnauthorizedError(ServiceError):
    category = ErrorCategory.UNAUTHORIZED
    code = "unauthorized"
    default_message = "Not authorized"


class RateLimitedError(ServiceError):
    category = ErrorCategory.RATE_LIMITED
    code = "rate_limited"
    default_message = "Rate limit exceeded. Please try again later."


# Validation

class PasswordMismatch(ValidationError):
    code = "password_mismatch"
    default_message = "Passwords do not match"


class WeakPassword(ValidationError):
    code = "weak_password"
    default_message = "Password is too short"


# Not found

class AccountNotFound(NotFoundError):
    code = "account_not_found"
    default_message = "Account not found"


class DeviceNotFound(NotFoundError):
    code = "device_not_found"
    default_message = "Device not found"


class ChallengeNotFound(NotFoundError):
    code = "challenge_not_found"
    default_message = "Challenge not found"


# Conflict

class UsernameTaken(ConflictError):
    code = "username_taken"
    default_message = "Username already exists"


class EmailTaken(ConflictError):
    code = "email_taken"
    default_message = "Email already exists"


class ChallengeAlreadyResolved(ConflictError):
    code = "challenge_already_resolved"
    default_message = "Challenge is no longer valid"


class ChallengeNotApproved(ConflictError):
    code = "challenge_not_approved"
    default_message = "Challenge not yet approved"


class CannotRemoveLastDevice(ConflictError):
    code = "cannot_remove_last_device"
    default_message = "Cannot remove the last verified device while two-factor authentication is enabled"


class NoVerifiedDevice(ConflictError):
    code = "no_verified_device"
    default_message = "No verified device is registered for this account"


class DeviceReenrollmentRequired(ConflictError):
    code = "device_reenrollment_required"
    default_message = "Devices were reset; enrol a device before resetting the password"


# Expired

class ChallengeExpired(ExpiredError):
    code = "challenge_expired"
    default_message = "Challenge has expired"


class RegistrationCodeExpired(ExpiredError):
    code = "registration_code_expired"
    default_message = "Registration code has expired"


# Unauthorized

class InvalidCredentials(UnauthorizedError):
    code = "invalid_credentials"
    default_message = "Invalid username or password"


class InvalidCode(UnauthorizedError):
    code = "invalid_code"
    default_message = "Invalid or expired code"


class ProofMismatch(UnauthorizedError):
    code = "proof_mismatch"
    default_message = "Verification failed"


class DeviceMismatch(UnauthorizedError):
    code = "device_mismatch"
    default_message = "Invalid device or user"


class PublicKeyMismatch(UnauthorizedError):
    code = "public_key_mismatch"
    default_message = "Public key does not match the key supplied at registration"


class TwoFactorRequired(UnauthorizedError):
    code = "two_factor_required"
    default_message = "Approve the request on your registered device to continue"


class AccessDenied(UnauthorizedError):
    code = "access_denied"
    default_message = "Not allowed to act on this account"


# Rate limiting

class LoginRateLimited(RateLimitedError):
    code = "login_rate_limited"


# Infrastructure

class StoreUnavailableError(Exception):
    """Raised when the credential store cannot be reached"""

    category = ErrorCategory.INFRASTRUCTURE
    code = "store_unavailable"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Credential store unavailable: {detail}")
