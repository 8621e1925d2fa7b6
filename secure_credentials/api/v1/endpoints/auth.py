"""
Authentication endpoints
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, status

from secure_credentials.api.dependencies import (
    get_client_ip,
    get_coordinator,
    get_current_session,
    get_user_agent,
    require_account,
    result_response,
)
from secure_credentials.schemas.auth import (
    CompleteAuthRequest,
    LoginAttemptsResult,
    LoginRequest,
    LoginResult,
    LogoutResult,
    PasswordResetRequest,
    RegisterRequest,
    RegisterResult,
    ResetResult,
)
from secure_credentials.services.auth_coordinator import AuthCoordinator


router = APIRouter()


@router.post("/register", response_model=RegisterResult, status_code=status.HTTP_201_CREATED)
async def register(
    request_data: RegisterRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator),
    ip: str = Depends(get_client_ip)
):
    """
    Register a new account

    **Request Body:**
    - username: 3-64 characters (letters, digits, ".", "_", "-")
    - email: Valid email address
    - password / confirm_password: must match, minimum PASSWORD_MIN_LENGTH

    **Returns:**
    - account: Account view (no password material)
    - session: Session with `device_registration_required=true`

    **Errors:**
    - 400: Passwords do not match / too short
    - 409: Username or email already exists
    """
    result = coordinator.register(
        username=request_data.username,
        email=request_data.email,
        password=request_data.password,
        confirm_password=request_data.confirm_password,
        ip=ip
    )
    return result_response(result, success_status=status.HTTP_201_CREATED)


@router.post("/login", response_model=LoginResult)
async def login(
    request_data: LoginRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator),
    ip: str = Depends(get_client_ip),
    user_agent: str = Depends(get_user_agent)
):
    """
    Authenticate with username and password

    **Without two-factor:** returns the account and a session.

    **With two-factor:** returns `requires_two_factor=true`, the challenge id
    and, for the shared-code mechanism, the code to relay to the device.
    Poll `GET /v1/challenges/{challenge_id}` and then call `/complete`.

    **Errors:**
    - 401: Invalid username or password
    - 409: Two-factor is on but no verified device is registered
    - 429: Too many attempts
    """
    result = coordinator.login(
        username=request_data.username,
        password=request_data.password,
        ip=ip,
        user_agent=user_agent
    )
    return result_response(result)


@router.post("/complete", response_model=LoginResult)
async def complete_authentication(
    request_data: CompleteAuthRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator),
    ip: str = Depends(get_client_ip),
    user_agent: str = Depends(get_user_agent)
):
    """
    Complete a two-factor login

    **Request Body:**
    - challenge_id: Challenge returned by `/login`
    - proof: Device signature (signed-challenge mechanism only)
    - backup_code: Single-use backup code instead of the device

    **Errors:**
    - 401: Proof or backup code rejected
    - 404: Unknown challenge
    - 409: Challenge not yet approved, or already used
    - 410: Challenge expired
    """
    result = coordinator.complete_login(
        challenge_id=request_data.challenge_id,
        proof=request_data.proof,
        backup_code=request_data.backup_code,
        ip=ip,
        user_agent=user_agent
    )
    return result_response(result)


@router.post("/reset-password", response_model=ResetResult)
async def reset_password(
    request_data: PasswordResetRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """
    Reset a password

    With two-factor on, the first call returns 401 with
    `requires_two_factor=true` and a challenge id. Approve it on the device
    (or read the code shown there) and repeat the call with `challenge_id`
    and, if not approved on the device, `proof`.
    """
    result = coordinator.reset_password(
        username=request_data.username,
        email=request_data.email,
        new_password=request_data.new_password,
        confirm_password=request_data.confirm_password,
        challenge_id=request_data.challenge_id,
        proof=request_data.proof
    )
    return result_response(result)


@router.post("/logout", response_model=LogoutResult)
async def logout(
    claims: Dict[str, Any] = Depends(get_current_session),
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """Revoke the current session"""
    return result_response(coordinator.logout(claims["sid"], claims.get("acct")))


@router.get("/login-attempts", response_model=LoginAttemptsResult)
async def list_login_attempts(
    account_id: str = Query(..., alias="accountId"),
    limit: int = Query(50, ge=1, le=500),
    claims: Dict[str, Any] = Depends(get_current_session),
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """Recent login attempts for the signed-in account, newest first"""
    require_account(claims, account_id)
    return result_response(coordinator.login_attempts(account_id, limit))
