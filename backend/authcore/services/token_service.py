"""Refresh token rotation and revocation service."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from authcore.config import settings
from authcore.core.exceptions import TokenReuseError
from authcore.core.security import create_refresh_token, generate_token
from authcore.models.account import Account
from authcore.models.security import RefreshToken
from authcore.services.stores import account_store

logger = logging.getLogger(__name__)

REASON_ROTATED = "rotated"
REASON_REVOKED = "revoked"
REASON_REUSE = "reuse_detected"
REASON_PASSWORD_RESET = "password_reset"


class TokenService:
    """Per-account ledger of refresh tokens and their rotation chains."""

    @staticmethod
    def _token_exists(db: Session, token: str) -> bool:
        return db.query(RefreshToken.id).filter(RefreshToken.token == token).first() is not None

    @staticmethod
    def new_token(db: Session, ip_address: Optional[str], now: datetime) -> RefreshToken:
        """Mint an unsaved refresh token whose string is not in use."""
        record = create_refresh_token(ip_address, now)
        while TokenService._token_exists(db, record.token):
            record.token = generate_token()
        return record

    @staticmethod
    def issue(db: Session, account: Account, ip_address: Optional[str], now: datetime) -> RefreshToken:
        """Start a new rotation chain for the account."""
        record = TokenService.new_token(db, ip_address, now)
        account.refresh_tokens.append(record)
        return record

    @staticmethod
    def find(
        db: Session, token: str, for_update: bool = False
    ) -> Optional[Tuple[RefreshToken, Account]]:
        """
        Find a refresh token and the account that owns it

        With for_update the owning account row is locked and the token is
        re-read afterwards, so the caller sees the state left by any
        rotation it waited on.

        Returns:
            (token, account) or None if no account owns the token
        """
        record = db.query(RefreshToken).filter(RefreshToken.token == token).first()
        if record is None:
            return None

        account = account_store.find_by_id(db, record.account_id, for_update=for_update)
        if account is None:
            return None
        if for_update:
            db.refresh(record)
        return record, account

    @staticmethod
    def rotate(
        db: Session,
        account: Account,
        old: RefreshToken,
        new: RefreshToken,
        ip_address: Optional[str],
        now: datetime,
    ) -> RefreshToken:
        """
        Revoke `old` in favour of `new` and append `new` to the account

        The revocation is a conditional update on `revoked_at IS NULL`; a
        caller that loses a race for the same token changes no row and
        gets TokenReuseError. The caller owns the commit.
        """
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == old.id, RefreshToken.revoked_at.is_(None))
            .values(
                revoked_at=now,
                revoked_by_ip=ip_address,
                replaced_by_token=new.token,
                reason_revoked=REASON_ROTATED,
            )
        )
        if result.rowcount != 1:
            raise TokenReuseError()

        account.refresh_tokens.append(new)
        logger.info("Rotated refresh token id=%s for account %s", old.id, account.id)
        return new

    @staticmethod
    def revoke(
        db: Session,
        record: RefreshToken,
        ip_address: Optional[str],
        now: datetime,
        reason: str = REASON_REVOKED,
    ) -> bool:
        """
        Revoke a token without issuing a replacement

        Returns:
            True if this call revoked it, False if it was already revoked
        """
        if record.is_revoked:
            return False

        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record.id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=now, revoked_by_ip=ip_address, reason_revoked=reason)
        )
        return result.rowcount == 1

    @staticmethod
    def revoke_all(
        account: Account,
        ip_address: Optional[str],
        now: datetime,
        reason: str = REASON_REVOKED,
    ) -> int:
        """Revoke every active token of the account."""
        count = 0
        for record in account.refresh_tokens:
            if record.is_active(now):
                record.revoked_at = now
                record.revoked_by_ip = ip_address
                record.reason_revoked = reason
                count += 1
        return count

    @staticmethod
    def chain(account: Account, record: RefreshToken) -> List[RefreshToken]:
        """Rebuild the rotation chain starting at `record` by following replaced-by keys."""
        by_token: Dict[str, RefreshToken] = {t.token: t for t in account.refresh_tokens}
        chain = [record]
        seen = {record.token}
        current = record
        while current.replaced_by_token and current.replaced_by_token not in seen:
            successor = by_token.get(current.replaced_by_token)
            if successor is None:
                break
            chain.append(successor)
            seen.add(successor.token)
            current = successor
        return chain

    @staticmethod
    def revoke_descendants(
        account: Account,
        record: RefreshToken,
        ip_address: Optional[str],
        now: datetime,
    ) -> int:
        """Revoke every still-active successor of a replayed token."""
        count = 0
        for successor in TokenService.chain(account, record)[1:]:
            if successor.is_active(now):
                successor.revoked_at = now
                successor.revoked_by_ip = ip_address
                successor.reason_revoked = REASON_REUSE
                count += 1
        return count

    @staticmethod
    def prune(account: Account, now: datetime) -> int:
        """
        Drop inactive tokens older than the history retention window

        Only bounds storage growth; active tokens are never removed.
        """
        retention = timedelta(days=settings.REFRESH_TOKEN_TTL_DAYS)
        stale = [
            t for t in account.refresh_tokens
            if not t.is_active(now) and t.created_at + retention <= now
        ]
        for record in stale:
            account.refresh_tokens.remove(record)
        if stale:
            logger.debug("Pruned %d refresh tokens for account %s", len(stale), account.id)
        return len(stale)


token_service = TokenService()
