"""
Device model - companion authenticators bound to an account
"""

import uuid
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from secure_credentials.core.database import Base
from secure_credentials.utils.clock import utcnow


class Device(Base):
    """Device model - pending until the registration code is redeemed"""
    __tablename__ = "devices"
    __table_args__ = (
        Index('idx_devices_account_verified', 'account_id', 'verified'),
        Index('idx_devices_registration_code', 'registration_code'),
    )

    device_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String(36), ForeignKey("accounts.account_id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    public_key = Column(Text, nullable=False)
    verified = Column(Boolean, default=False, nullable=False)
    registration_code = Column(String(6), nullable=True)  # cleared once verified
    registration_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_used_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    account = relationship("Account", back_populates="devices")

    @property
    def is_pending(self) -> bool:
        return not self.verified and self.registration_code is not None

    def __repr__(self):
        return f"<Device(device_id='{self.device_id}', account_id='{self.account_id}', verified={self.verified})>"
