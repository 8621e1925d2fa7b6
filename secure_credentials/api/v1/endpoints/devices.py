"""
Device registration and management endpoints
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from secure_credentials.api.dependencies import (
    get_coordinator,
    get_current_session,
    get_optional_session,
    require_account,
    result_response,
)
from secure_credentials.schemas.common import OperationResult
from secure_credentials.schemas.device import (
    BeginRegistrationRequest,
    BeginRegistrationResult,
    CompleteRegistrationRequest,
    CompleteRegistrationResult,
    DeviceListResult,
    DeviceStatusResult,
    ResetDevicesRequest,
)
from secure_credentials.services.auth_coordinator import AuthCoordinator


router = APIRouter()


@router.post("/register", response_model=BeginRegistrationResult, status_code=status.HTTP_201_CREATED)
async def begin_registration(
    request_data: BeginRegistrationRequest,
    claims: Dict[str, Any] = Depends(get_current_session),
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """
    Start binding a companion device

    Returns a 6-digit registration code to enter on the device. For the
    account's first device the response also carries the backup codes,
    shown only this once.

    **Authentication:** bearer token of the same account
    """
    require_account(claims, request_data.account_id)
    result = coordinator.begin_device_registration(
        account_id=request_data.account_id,
        device_name=request_data.device_name,
        public_key=request_data.public_key
    )
    return result_response(result, success_status=status.HTTP_201_CREATED)


@router.post("/verify", response_model=CompleteRegistrationResult)
async def complete_registration(
    request_data: CompleteRegistrationRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """
    Redeem a registration code from the companion device

    The device name and public key sent here are stored on the device.

    **Errors:**
    - 401: Unknown or already used code
    - 410: Code expired
    """
    result = coordinator.complete_device_registration(
        registration_code=request_data.registration_code,
        device_name=request_data.device_name,
        public_key=request_data.public_key
    )
    return result_response(result)


@router.get("/status", response_model=DeviceStatusResult)
async def device_status(
    username: str = Query(..., min_length=1),
    device_id: str = Query(..., alias="deviceId"),
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """Whether a device has been verified (polled by the device after showing its code)"""
    return result_response(coordinator.device_status(username, device_id))


@router.post("/reset", response_model=OperationResult)
async def reset_devices(
    request_data: ResetDevicesRequest,
    claims: Optional[Dict[str, Any]] = Depends(get_optional_session),
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """
    Recovery for a locked-out user

    Marks every device unverified and turns two-factor off. The account's
    password is required, plus either a backup code or a bearer token from
    a device-verified login of the same account. Password reset stays
    blocked until a device is enrolled again.

    **Errors:**
    - 401: Wrong credentials, or neither a backup code nor a verified session
    """
    return result_response(coordinator.reset_devices(
        username=request_data.username,
        password=request_data.password,
        backup_code=request_data.backup_code,
        session_account_id=claims.get("acct") if claims else None,
        session_mfa_verified=bool(claims.get("mfa")) if claims else False
    ))


@router.get("", response_model=DeviceListResult)
async def list_devices(
    account_id: str = Query(..., alias="accountId"),
    claims: Dict[str, Any] = Depends(get_current_session),
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """List the account's devices and its two-factor flag"""
    require_account(claims, account_id)
    return result_response(coordinator.list_devices(account_id))


@router.delete("/{device_id}", response_model=OperationResult)
async def remove_device(
    device_id: str,
    account_id: str = Query(..., alias="accountId"),
    claims: Dict[str, Any] = Depends(get_current_session),
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """
    Remove a device

    **Errors:**
    - 404: Device not found
    - 409: Last verified device while two-factor is on
    """
    require_account(claims, account_id)
    return result_response(coordinator.remove_device(account_id, device_id))
