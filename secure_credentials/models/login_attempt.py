"""
Login attempt model - append-only audit log
"""

import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Text, Index

from secure_credentials.core.database import Base
from secure_credentials.utils.clock import utcnow


class LoginAttempt(Base):
    """Write-once login attempt record"""
    __tablename__ = "login_attempts"
    __table_args__ = (
        Index('idx_login_attempts_username', 'username', 'timestamp'),
        Index('idx_login_attempts_account', 'account_id', 'timestamp'),
    )

    attempt_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String(64), nullable=False)
    account_id = Column(String(36), nullable=True)  # NULL when the username did not resolve
    success = Column(Boolean, nullable=False)
    stage = Column(String(32), nullable=False, default="password")  # 'password', 'two_factor'
    error = Column(String(64), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<LoginAttempt(username='{self.username}', success={self.success}, stage='{self.stage}')>"
