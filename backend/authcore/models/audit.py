"""Audit event model for security-sensitive actions."""

import json

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship

from authcore.core.database import Base


class AuditEvent(Base):
    """Append-only record of a security-sensitive account event."""

    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(64), nullable=False, index=True)
    target_type = Column(String(64), nullable=True, index=True)
    target_id = Column(String(128), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)

    account = relationship("Account", back_populates="audit_events")

    __table_args__ = (
        Index("idx_audit_events_account", "account_id"),
        Index("idx_audit_events_created_at", "created_at"),
    )

    @property
    def details(self) -> dict:
        return json.loads(self.metadata_json) if self.metadata_json else {}
