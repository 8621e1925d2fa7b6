"""
Challenge endpoints

The initiating client creates and polls challenges; the companion device
lists, approves and rejects them.
"""

from fastapi import APIRouter, Depends, Query, status

from secure_credentials.api.dependencies import get_coordinator, result_response
from secure_credentials.schemas.challenge import (
    ApproveChallengeRequest,
    ChallengeStatusResult,
    CreateChallengeRequest,
    CreateChallengeResult,
    PendingChallengesResult,
    RejectChallengeRequest,
)
from secure_credentials.schemas.common import OperationResult
from secure_credentials.services.auth_coordinator import AuthCoordinator


router = APIRouter()


@router.post("", response_model=CreateChallengeResult, status_code=status.HTTP_201_CREATED)
async def create_challenge(
    request_data: CreateChallengeRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """Create a challenge (expires after CHALLENGE_TTL_SECONDS)"""
    result = coordinator.create_challenge(
        account_id=request_data.account_id,
        device_id=request_data.device_id,
        purpose=request_data.purpose,
        mechanism=request_data.mechanism
    )
    return result_response(result, success_status=status.HTTP_201_CREATED)


@router.put("", response_model=OperationResult)
async def approve_challenge(
    request_data: ApproveChallengeRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """
    Approve a challenge from the companion device

    **Request Body:**
    - challenge_id: Challenge id, or the verification code shown to the user
    - proof: The verification code, or a base64 signature over the nonce
    - device_id / account_id: The calling device

    **Errors:**
    - 401: Proof mismatch (the challenge is rejected) or wrong device
    - 404: Unknown challenge
    - 409: Already resolved
    - 410: Expired
    """
    result = coordinator.approve_challenge(
        challenge_id=request_data.challenge_id,
        proof=request_data.proof,
        device_id=request_data.device_id,
        account_id=request_data.account_id
    )
    return result_response(result)


@router.get("/pending", response_model=PendingChallengesResult)
async def pending_challenges(
    account_id: str = Query(..., alias="accountId"),
    device_id: str = Query(..., alias="deviceId"),
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """Live challenges the device can act on"""
    return result_response(coordinator.pending_challenges(account_id, device_id))


@router.get("/resolve", response_model=ChallengeStatusResult)
async def resolve_by_code(
    account_id: str = Query(..., alias="accountId"),
    code: str = Query(..., min_length=6, max_length=6),
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """Status of the newest challenge carrying a verification code"""
    return result_response(coordinator.resolve_by_code(account_id, code))


@router.post("/{challenge_id}/reject", response_model=OperationResult)
async def reject_challenge(
    challenge_id: str,
    request_data: RejectChallengeRequest,
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """Decline a pending challenge from the companion device"""
    result = coordinator.reject_challenge(
        challenge_id=challenge_id,
        device_id=request_data.device_id,
        account_id=request_data.account_id
    )
    return result_response(result)


@router.get("/{challenge_id}", response_model=ChallengeStatusResult)
async def challenge_status(
    challenge_id: str,
    coordinator: AuthCoordinator = Depends(get_coordinator)
):
    """Poll a challenge's status (pending, approved, rejected, expired, completed, used)"""
    return result_response(coordinator.challenge_status(challenge_id))
