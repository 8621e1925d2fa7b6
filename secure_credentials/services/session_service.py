"""
Session Service

Sessions are explicit values: a Redis record keyed by session id plus a JWT
access token whose `sid` claim points at it. A session is issued at login
completion or registration and revoked at logout.
"""

import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from secure_credentials import metrics
from secure_credentials.core.config import settings
from secure_credentials.core.redis_client import RedisClient
from secure_credentials.models import Account
from secure_credentials.schemas.auth import SessionInfo

logger = logging.getLogger(__name__)


class SessionService:
    """Issues, validates and revokes sessions"""

    def __init__(self, redis: RedisClient):
        self.redis = redis
        self.session_ttl = settings.SESSION_TTL_HOURS * 3600
        self.access_token_ttl = timedelta(minutes=settings.JWT_ACCESS_TOKEN_TTL_MINUTES)

    def issue(
        self,
        account: Account,
        mfa_verified: bool = False,
        device_registration_required: bool = False,
        ip: Optional[str] = None
    ) -> SessionInfo:
        """
        Create a session for an account

        Args:
            account: Authenticated account
            mfa_verified: Whether a device approved this login
            device_registration_required: Caller must enrol a device first
            ip: Client IP address

        Returns:
            SessionInfo with the access token
        """
        session_id = f"sid_{uuid.uuid4().hex}"
        now = datetime.now(timezone.utc)

        session_data = {
            "account_id": account.account_id,
            "username": account.username,
            "ip": ip or "",
            "created_at": now.isoformat(),
            "mfa_verified": str(mfa_verified),
            "device_registration_required": str(device_registration_required)
        }
        self.redis.set_session(session_id, session_data, self.session_ttl)

        access_token = self._generate_access_token(
            account.account_id, session_id, mfa_verified, now
        )

        metrics.auth_sessions_issued_total.labels(mfa_verified=str(mfa_verified).lower()).inc()
        logger.info(f"Session issued: account={account.account_id} mfa_verified={mfa_verified}")

        return SessionInfo(
            session_id=session_id,
            access_token=access_token,
            expires_in=int(self.access_token_ttl.total_seconds()),
            mfa_verified=mfa_verified,
            device_registration_required=device_registration_required
        )

    def validate_token(self, token: str) -> Dict[str, Any]:
        """
        Decode an access token and check its session is still live

        Returns:
            Token claims

        Raises:
            JWTError: If the token is invalid or its session was revoked
        """
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM],
                issuer=settings.JWT_ISSUER,
                audience=settings.JWT_AUDIENCE
            )
        except JWTError as e:
            raise JWTError(f"Token validation failed: {str(e)}")

        session_id = payload.get("sid")
        if not session_id or self.redis.get_session(session_id) is None:
            raise JWTError("Session expired or revoked")
        return payload

    def revoke(self, session_id: str) -> int:
        """Delete a session; returns the number of sessions removed"""
        removed = self.redis.delete_session(session_id)
        if removed:
            logger.info(f"Session revoked: {session_id}")
        return removed

    def _generate_access_token(
        self,
        account_id: str,
        session_id: str,
        mfa_verified: bool,
        now: datetime
    ) -> str:
        expires_at = now + self.access_token_ttl
        claims = {
            "iss": settings.JWT_ISSUER,
            "sub": f"account:{account_id}",
            "aud": settings.JWT_AUDIENCE,
            "exp": int(expires_at.timestamp()),
            "iat": int(now.timestamp()),
            "sid": session_id,
            "acct": account_id,
            "mfa": mfa_verified
        }
        return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
