"""
Audit Service

Append-only login-attempt log. Records are written once and never updated
or deleted here.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from secure_credentials.models import LoginAttempt
from secure_credentials.utils.clock import utcnow
from secure_credentials.utils.security import mask_ip

logger = logging.getLogger(__name__)


class AuditService:
    """Service for the login-attempt audit trail"""

    def __init__(self, db: Session, clock=utcnow):
        self.db = db
        self.clock = clock

    def record_login_attempt(
        self,
        username: str,
        success: bool,
        account_id: Optional[str] = None,
        stage: str = "password",
        error: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> None:
        """Write one login attempt; a failed write is logged and does not fail the login"""
        attempt = LoginAttempt(
            username=username[:64],
            account_id=account_id,
            success=success,
            stage=stage,
            error=error,
            ip_address=ip,
            user_agent=user_agent,
            timestamp=self.clock()
        )

        self.db.add(attempt)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to record login attempt from {mask_ip(ip or '')}: {e}")

    def list_login_attempts(self, account_id: str, limit: int = 50) -> List[LoginAttempt]:
        """
        Recent attempts for an account, newest first

        Args:
            account_id: Account to list attempts for
            limit: Maximum number of attempts (1-500)
        """
        limit = max(1, min(limit, 500))
        return self.db.query(LoginAttempt).filter(
            LoginAttempt.account_id == account_id
        ).order_by(LoginAttempt.timestamp.desc()).limit(limit).all()
