"""
Account model
"""

import uuid
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from secure_credentials.core.database import Base
from secure_credentials.utils.clock import utcnow


class Account(Base):
    """Account model - root aggregate for devices, challenges and backup codes"""
    __tablename__ = "accounts"

    account_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    two_factor_enabled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)
    last_password_change_at = Column(DateTime, nullable=True)
    devices_reset_at = Column(DateTime, nullable=True)  # set by recovery, cleared by the next verified device

    # Relationships
    devices = relationship("Device", back_populates="account", cascade="all, delete-orphan")
    backup_codes = relationship("BackupCode", back_populates="account", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Account(account_id='{self.account_id}', username='{self.username}', 2fa={self.two_factor_enabled})>"
