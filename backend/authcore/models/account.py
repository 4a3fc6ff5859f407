"""Account model"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from authcore.core.database import Base


class Account(Base):
    """Account identity, credentials and single-use token fields"""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    title = Column(String(32))
    first_name = Column(String(100))
    last_name = Column(String(100))
    password_hash = Column(String(255), nullable=False)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    accepted_terms = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, nullable=False)
    verified_at = Column(DateTime)
    updated_at = Column(DateTime)
    password_reset_at = Column(DateTime)

    verification_token = Column(String(128), unique=True)
    reset_token = Column(String(128), unique=True)
    reset_token_expires_at = Column(DateTime)

    # Relationships
    role = relationship("Role", back_populates="accounts", lazy="joined")
    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="RefreshToken.id",
    )
    audit_events = relationship("AuditEvent", back_populates="account", passive_deletes=True)

    __table_args__ = (
        Index('idx_accounts_email', 'email'),
        Index('idx_accounts_role', 'role_id'),
    )

    @property
    def is_verified(self) -> bool:
        return self.verified_at is not None

    @property
    def role_name(self) -> str:
        return self.role.name if self.role else ""

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def __repr__(self):
        return f"<Account(id={self.id}, email='{self.email}', role='{self.role_name}')>"
