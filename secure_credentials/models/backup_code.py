"""
Backup code model - single-use recovery credentials
"""

from sqlalchemy import Column, BigInteger, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from secure_credentials.core.database import Base
from secure_credentials.utils.clock import utcnow


class BackupCode(Base):
    """Hashed backup code; used_at is set exactly once"""
    __tablename__ = "backup_codes"
    __table_args__ = (
        UniqueConstraint('account_id', 'code_hash', name='uq_backup_codes_account_hash'),
    )

    backup_code_id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    account_id = Column(String(36), ForeignKey("accounts.account_id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    used_at = Column(DateTime, nullable=True)

    # Relationships
    account = relationship("Account", back_populates="backup_codes")

    def __repr__(self):
        return f"<BackupCode(account_id='{self.account_id}', used={self.used_at is not None})>"
