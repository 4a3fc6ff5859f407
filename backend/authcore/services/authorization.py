"""Authenticated principal and authorization checks"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from authcore.core.exceptions import AuthorizationError, InvalidTokenError
from authcore.core.security import decode_access_token
from authcore.models.role import ADMIN
from authcore.services.stores import account_store


@dataclass(frozen=True)
class Principal:
    """The caller on whose behalf an operation runs"""
    account_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def resolve_principal(db: Session, access_token: str, now: Optional[datetime] = None) -> Principal:
    """
    Get the principal for an access token

    The role comes from the account as stored now, not from the token
    claim, so a role change takes effect before the token expires.

    Raises:
        InvalidTokenError: If the token is invalid or its account is gone
    """
    claims = decode_access_token(access_token, now=now)
    account = account_store.find_by_id(db, claims.account_id)
    if account is None:
        raise InvalidTokenError()
    return Principal(account_id=account.id, role=account.role_name)


def require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise AuthorizationError("Admin access required")


def require_self_or_admin(principal: Principal, account_id: int) -> None:
    if principal.account_id != account_id and not principal.is_admin:
        raise AuthorizationError("Current user is not authorized.")
