"""Security-related persistence models."""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from authcore.core.database import Base


class RefreshToken(Base):
    """Refresh token record for rotation/revocation."""

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    token = Column(String(128), unique=True, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    created_by_ip = Column(String(64))
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime)
    revoked_by_ip = Column(String(64))
    # Lookup key of the successor within the same account, not a foreign key
    replaced_by_token = Column(String(128))
    reason_revoked = Column(String(32))

    account = relationship("Account", back_populates="refresh_tokens")

    __table_args__ = (
        Index("idx_refresh_tokens_account", "account_id"),
    )

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_active(self, now: datetime) -> bool:
        return not self.is_revoked and not self.is_expired(now)

    def __repr__(self):
        return (
            f"<RefreshToken(id={self.id}, account_id={self.account_id}, "
            f"revoked={self.is_revoked})>"
        )
