"""Database models"""

from authcore.models.role import Role
from authcore.models.account import Account
from authcore.models.security import RefreshToken
from authcore.models.audit import AuditEvent

__all__ = ["Role", "Account", "RefreshToken", "AuditEvent"]
