"""Audit service for security-sensitive account events."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from authcore.core.security import utcnow
from authcore.models.audit import AuditEvent


class AuditService:
    """Record immutable audit trail entries inside the caller's unit of work."""

    @staticmethod
    def log_event(
        db: Session,
        *,
        account_id: Optional[int],
        action: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            account_id=account_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            ip_address=ip_address,
            metadata_json=json.dumps(metadata or {}, ensure_ascii=False),
            created_at=now or utcnow(),
        )
        db.add(event)
        return event

    @staticmethod
    def events_for(db: Session, account_id: int) -> List[AuditEvent]:
        return (
            db.query(AuditEvent)
            .filter(AuditEvent.account_id == account_id)
            .order_by(AuditEvent.id)
            .all()
        )


audit_service = AuditService()
