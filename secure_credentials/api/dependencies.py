"""
API dependencies for services, sessions and request metadata
"""

from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from secure_credentials.core.database import get_db
from secure_credentials.core.errors import AccessDenied, CATEGORY_STATUS_CODES, ErrorCategory
from secure_credentials.core.redis_client import RedisClient, get_redis
from secure_credentials.schemas.common import OperationResult
from secure_credentials.services.auth_coordinator import AuthCoordinator
from secure_credentials.services.session_service import SessionService


# Security scheme
security = HTTPBearer(auto_error=False)


def get_coordinator(
    db: Session = Depends(get_db),
    redis: RedisClient = Depends(get_redis)
) -> AuthCoordinator:
    """
    Get authentication coordinator instance

    Args:
        db: Database session
        redis: Redis client

    Returns:
        AuthCoordinator instance
    """
    return AuthCoordinator(db, redis)


async def get_current_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    redis: RedisClient = Depends(get_redis)
) -> Dict[str, Any]:
    """
    Validate the bearer token and its session

    Returns:
        Token claims (`acct` is the account id, `sid` the session id)

    Raises:
        HTTPException: 401 if the token is missing, invalid or revoked
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return SessionService(redis).validate_token(credentials.credentials)
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_optional_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    redis: RedisClient = Depends(get_redis)
) -> Optional[Dict[str, Any]]:
    """
    Like get_current_session, but an absent token yields None

    A token that is present must still be valid.
    """
    if not credentials:
        return None
    return await get_current_session(credentials, redis)


def require_account(claims: Dict[str, Any], account_id: str) -> None:
    """
    Make sure the session belongs to the account being acted on

    Raises:
        HTTPException: 403 otherwise
    """
    if claims.get("acct") != account_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=AccessDenied.default_message
        )


def result_response(result: OperationResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """
    Render a coordinator result

    Failed results use the HTTP status of their error category.
    """
    status_code = success_status
    if not result.success:
        status_code = CATEGORY_STATUS_CODES.get(
            ErrorCategory(result.error_type), status.HTTP_400_BAD_REQUEST
        )
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


async def get_client_ip(request: Request) -> str:
    """
    Get client IP address from request

    Args:
        request: FastAPI request object

    Returns:
        Client IP address
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


async def get_user_agent(request: Request) -> str:
    """Get user agent from request"""
    return request.headers.get("User-Agent", "unknown")
