"""Credential service - password hashes and single-use account tokens"""

from datetime import datetime, timedelta
from typing import Optional
import hmac
import logging

from sqlalchemy.orm import Session

from authcore.config import settings
from authcore.core.exceptions import InvalidTokenError, InvalidVerificationTokenError
from authcore.core.security import (
    generate_token,
    get_password_hash,
    password_needs_rehash,
    verify_password,
)
from authcore.models.account import Account
from authcore.services.stores import account_store

logger = logging.getLogger(__name__)


class CredentialService:
    """Owns the password hash and the verification/reset token fields of an account"""

    @staticmethod
    def hash_password(password: str) -> str:
        return get_password_hash(password)

    @staticmethod
    def set_password(account: Account, password: str) -> None:
        account.password_hash = get_password_hash(password)

    @staticmethod
    def set_password_hash(account: Account, password_hash: str) -> None:
        """Store a hash computed earlier, outside any row lock."""
        account.password_hash = password_hash

    @staticmethod
    def check_password(account: Account, password: str) -> bool:
        return verify_password(password, account.password_hash)

    @staticmethod
    def needs_rehash(account: Account) -> bool:
        return password_needs_rehash(account.password_hash)

    @staticmethod
    def _unique_account_token(db: Session, column) -> str:
        token = generate_token()
        while db.query(Account.id).filter(column == token).first() is not None:
            token = generate_token()
        return token

    @staticmethod
    def issue_verification_token(db: Session, account: Account) -> str:
        """Set a verification token on the account; it has no expiry."""
        account.verification_token = CredentialService._unique_account_token(
            db, Account.verification_token
        )
        return account.verification_token

    @staticmethod
    def consume_verification_token(db: Session, token: str, now: datetime) -> Account:
        """
        Mark the account holding this token as verified and clear the token

        Raises:
            InvalidVerificationTokenError: If no account holds the token
        """
        account = account_store.find_by_verification_token(db, token) if token else None
        if account is None:
            raise InvalidVerificationTokenError()

        account.verified_at = now
        account.verification_token = None
        logger.info("Verified email for account %s", account.id)
        return account

    @staticmethod
    def issue_reset_token(db: Session, account: Account, now: datetime) -> str:
        """Set a reset token valid for RESET_TOKEN_EXPIRE_DAYS, replacing any earlier one."""
        account.reset_token = CredentialService._unique_account_token(db, Account.reset_token)
        account.reset_token_expires_at = now + timedelta(days=settings.RESET_TOKEN_EXPIRE_DAYS)
        return account.reset_token

    @staticmethod
    def check_reset_token(account: Optional[Account], token: str, now: datetime) -> Account:
        """
        Check a reset token without consuming it

        Wrong and expired tokens raise the same error.

        Raises:
            InvalidTokenError: Unless the token matches and has not expired
        """
        if (
            account is None
            or not token
            or not account.reset_token
            or not hmac.compare_digest(account.reset_token, token)
            or account.reset_token_expires_at is None
            or now >= account.reset_token_expires_at
        ):
            raise InvalidTokenError("Invalid token.")
        return account

    @staticmethod
    def consume_reset_token(account: Optional[Account], token: str, now: datetime) -> Account:
        """Check a reset token and clear it so it cannot be used again."""
        account = CredentialService.check_reset_token(account, token, now)
        account.reset_token = None
        account.reset_token_expires_at = None
        return account


credential_service = CredentialService()
