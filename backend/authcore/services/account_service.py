"""Account service - registration, authentication and session lifecycle"""

from datetime import datetime
from typing import Callable, Dict, Optional
from urllib.parse import quote
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authcore.config import settings
from authcore.core.database import unit_of_work
from authcore.core.exceptions import (
    DataAccessError,
    InvalidCredentialsError,
    InvalidTokenError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    TokenReuseError,
)
from authcore.core.metrics import AUTH_EVENTS, TOKEN_REUSE_DETECTED
from authcore.core.security import create_access_token, utcnow
from authcore.models.account import Account
from authcore.models.role import USER
from authcore.models.security import RefreshToken
from authcore.schemas.account import (
    AccountCreate,
    AccountResponse,
    AccountUpdate,
    AuthenticatedSession,
    RegistrationRequest,
)
from authcore.services.audit_service import audit_service
from authcore.services.authorization import Principal, require_admin, require_self_or_admin
from authcore.services.credential_service import credential_service
from authcore.services.email_service import (
    ALREADY_REGISTERED_TEMPLATE,
    PASSWORD_RESET_TEMPLATE,
    VERIFICATION_TEMPLATE,
    EmailSender,
    LoggingEmailSender,
    redact_email,
)
from authcore.services.role_service import role_service
from authcore.services.stores import account_store
from authcore.services.token_service import REASON_PASSWORD_RESET, token_service

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_NOT_FOUND_OR_UNVERIFIED = "The email was not found or is not verified."


class AccountService:
    """
    Public authentication core

    Every operation runs as one unit of work on the given session:
    either all of its changes are committed or none are.
    """

    def __init__(self, email_sender: Optional[EmailSender] = None, clock: Clock = utcnow):
        self.email_sender = email_sender or LoggingEmailSender()
        self.clock = clock

    # ------------------------------------------------------------------
    # helpers

    def _send_email(self, template_name: str, recipient: str, values: Dict[str, str]) -> bool:
        """Hand an email to the sender; a failure is logged, never raised."""
        try:
            self.email_sender.send(template_name, recipient, values)
        except Exception:
            logger.exception(
                "Failed to send '%s' email to %s", template_name, redact_email(recipient)
            )
            AUTH_EVENTS.labels("email", "failed").inc()
            return False
        return True

    def _session_for(self, account: Account, refresh: RefreshToken, now: datetime) -> AuthenticatedSession:
        access_token = create_access_token(account.id, account.role_name, now=now)
        return AuthenticatedSession(
            account=AccountResponse.model_validate(account),
            access_token=access_token,
            refresh_token=refresh.token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            refresh_token_expires_at=refresh.expires_at,
        )

    def _handle_token_reuse(self, db: Session, token: str, ip_address: Optional[str], now: datetime) -> None:
        """Record a refresh token replay after the failed unit of work was rolled back."""
        TOKEN_REUSE_DETECTED.inc()
        try:
            with unit_of_work(db):
                found = token_service.find(db, token, for_update=True)
                if found is None:
                    return
                record, account = found
                revoked = 0
                if settings.REVOKE_DESCENDANTS_ON_REUSE:
                    revoked = token_service.revoke_descendants(account, record, ip_address, now)
                audit_service.log_event(
                    db,
                    account_id=account.id,
                    action="refresh_token_reuse",
                    target_type="refresh_token",
                    target_id=str(record.id),
                    ip_address=ip_address,
                    metadata={"descendants_revoked": revoked},
                    now=now,
                )
            logger.warning(
                "Refresh token reuse detected for account %s from %s (token id=%s, %d descendants revoked)",
                account.id, ip_address, record.id, revoked,
            )
        except DataAccessError:
            logger.exception("Could not record refresh token reuse from %s", ip_address)

    # ------------------------------------------------------------------
    # registration and verification

    def register(self, db: Session, request: RegistrationRequest, origin: Optional[str]) -> Account:
        """
        Register a new account pending email verification

        The first account ever registered becomes Admin, all others User.

        Args:
            db: Database session
            request: Registration data
            origin: Base URL used to build the verification link

        Returns:
            The created account

        Raises:
            ResourceNotFoundError: If origin is missing
            ResourceAlreadyExistsError: If the email is already registered
        """
        if not origin:
            raise ResourceNotFoundError("Origin header is missing")

        now = self.clock()
        password_hash = credential_service.hash_password(request.password)

        with unit_of_work(db):
            if account_store.email_exists(db, request.email):
                AUTH_EVENTS.labels("register", "duplicate").inc()
                if settings.NOTIFY_DUPLICATE_REGISTRATION:
                    self._send_email(
                        ALREADY_REGISTERED_TEMPLATE,
                        request.email,
                        {"account_full_name": _full_name(request.first_name, request.last_name)},
                    )
                raise ResourceAlreadyExistsError(f"Email '{request.email}' is already registered")

            role = role_service.resolve_registration_role(db)
            account = Account(
                email=request.email,
                title=request.title,
                first_name=request.first_name,
                last_name=request.last_name,
                accepted_terms=request.accepted_terms,
                password_hash=password_hash,
                role=role,
                created_at=now,
            )
            verification_token = credential_service.issue_verification_token(db, account)
            try:
                account_store.create(db, account)
            except IntegrityError as exc:
                raise ResourceAlreadyExistsError(f"Email '{request.email}' is already registered") from exc

            audit_service.log_event(
                db, account_id=account.id, action="register", ip_address=None,
                metadata={"role": role.name}, now=now,
            )
            account_id, email, full_name = account.id, account.email, account.full_name
            role_name = role.name

        logger.info("Registered account %s with role '%s'", account_id, role_name)
        AUTH_EVENTS.labels("register", "success").inc()

        verification_url = f"{origin}/account/verify-email?token={quote(verification_token, safe='')}"
        self._send_email(
            VERIFICATION_TEMPLATE,
            email,
            {"account_full_name": full_name, "verification_url": verification_url},
        )
        return account

    def verify_email(self, db: Session, token: str) -> Account:
        """
        Verify the account holding this token

        Raises:
            InvalidVerificationTokenError: If no account holds the token
        """
        now = self.clock()
        with unit_of_work(db):
            account = credential_service.consume_verification_token(db, token, now)
            audit_service.log_event(db, account_id=account.id, action="verify_email", now=now)
        AUTH_EVENTS.labels("verify_email", "success").inc()
        return account

    # ------------------------------------------------------------------
    # sessions

    def authenticate(
        self, db: Session, email: str, password: str, ip_address: Optional[str]
    ) -> AuthenticatedSession:
        """
        Authenticate with email and password and start a new session

        Raises:
            ResourceNotFoundError: If no verified account has this email
            InvalidCredentialsError: If the password is wrong
        """
        now = self.clock()
        with unit_of_work(db):
            account = account_store.find_by_email(db, email)
            if account is None or not account.is_verified:
                AUTH_EVENTS.labels("authenticate", "not_found").inc()
                raise ResourceNotFoundError(_NOT_FOUND_OR_UNVERIFIED)

            if not credential_service.check_password(account, password):
                AUTH_EVENTS.labels("authenticate", "bad_password").inc()
                raise InvalidCredentialsError()

            # Rehash before taking the row lock
            new_hash = None
            if credential_service.needs_rehash(account):
                new_hash = credential_service.hash_password(password)

            account = account_store.find_by_id(db, account.id, for_update=True)
            if new_hash is not None:
                credential_service.set_password_hash(account, new_hash)
                logger.info("Rehashed password for account %s at the current cost", account.id)

            refresh = token_service.issue(db, account, ip_address, now)
            token_service.prune(account, now)
            session = self._session_for(account, refresh, now)

        logger.info("Account %s authenticated from %s", session.account.id, ip_address)
        AUTH_EVENTS.labels("authenticate", "success").inc()
        return session

    def refresh_session(self, db: Session, token: str, ip_address: Optional[str]) -> AuthenticatedSession:
        """
        Exchange a refresh token for a new access/refresh pair

        The old token is revoked and its successor issued in the same
        unit of work. On any failure nothing changes and the old token
        stays as it was.

        Raises:
            ResourceNotFoundError: If no account owns the token
            TokenReuseError: If the token was already rotated or revoked
            InvalidTokenError: If the token has expired
        """
        now = self.clock()
        try:
            with unit_of_work(db):
                found = token_service.find(db, token, for_update=True) if token else None
                if found is None:
                    raise ResourceNotFoundError("Refresh token not found")
                record, account = found

                if record.is_revoked:
                    raise TokenReuseError()
                if record.is_expired(now):
                    raise InvalidTokenError("Refresh token has expired")

                successor = token_service.new_token(db, ip_address, now)
                token_service.rotate(db, account, record, successor, ip_address, now)
                token_service.prune(account, now)
                session = self._session_for(account, successor, now)
        except TokenReuseError:
            AUTH_EVENTS.labels("refresh", "reuse").inc()
            self._handle_token_reuse(db, token, ip_address, now)
            raise
        except (ResourceNotFoundError, InvalidTokenError):
            AUTH_EVENTS.labels("refresh", "rejected").inc()
            raise

        AUTH_EVENTS.labels("refresh", "success").inc()
        return session

    def revoke_session(
        self,
        db: Session,
        token: str,
        ip_address: Optional[str],
        principal: Optional[Principal] = None,
    ) -> bool:
        """
        Revoke a refresh token without issuing a replacement

        Revoking an already revoked token is a no-op.

        Args:
            principal: When given, must own the token or be Admin

        Returns:
            True if this call revoked the token, False if it already was

        Raises:
            ResourceNotFoundError: If no account owns the token
            AuthorizationError: If the principal may not revoke it
        """
        now = self.clock()
        with unit_of_work(db):
            found = token_service.find(db, token, for_update=True) if token else None
            if found is None:
                raise ResourceNotFoundError("Refresh token not found")
            record, account = found
            if principal is not None:
                require_self_or_admin(principal, account.id)

            revoked = token_service.revoke(db, record, ip_address, now)
            if revoked:
                audit_service.log_event(
                    db, account_id=account.id, action="revoke_refresh_token",
                    target_type="refresh_token", target_id=str(record.id),
                    ip_address=ip_address, now=now,
                )

        if revoked:
            logger.info("Revoked refresh token id=%s for account %s", record.id, account.id)
        else:
            logger.info("Refresh token id=%s was already revoked", record.id)
        AUTH_EVENTS.labels("revoke", "success" if revoked else "noop").inc()
        return revoked

    # ------------------------------------------------------------------
    # password reset

    def initiate_password_reset(self, db: Session, email: str, origin: Optional[str]) -> None:
        """
        Send a password reset link if the email belongs to an account

        Unknown emails return silently so callers cannot probe for accounts.
        """
        if not origin:
            raise ResourceNotFoundError("Origin header is missing")

        now = self.clock()
        with unit_of_work(db):
            account = account_store.find_by_email(db, email)
            if account is None:
                logger.info("Password reset requested for unknown email %s", redact_email(email))
                return
            reset_token = credential_service.issue_reset_token(db, account, now)
            audit_service.log_event(db, account_id=account.id, action="forgot_password", now=now)
            recipient, full_name = account.email, account.full_name

        encoded_token = quote(reset_token, safe="")
        self._send_email(
            PASSWORD_RESET_TEMPLATE,
            recipient,
            {
                "account_full_name": full_name,
                "token": encoded_token,
                "reset_url": f"{origin}/account/reset-password?token={encoded_token}",
            },
        )
        AUTH_EVENTS.labels("forgot_password", "sent").inc()

    def validate_reset_token(self, db: Session, token: str) -> None:
        """
        Raises:
            InvalidTokenError: If the token is unknown or expired
        """
        now = self.clock()
        with unit_of_work(db):
            account = account_store.find_by_reset_token(db, token) if token else None
            credential_service.check_reset_token(account, token, now)

    def reset_password(self, db: Session, token: str, password: str) -> None:
        """
        Set a new password using a reset token, consuming the token

        Raises:
            InvalidTokenError: If the token is unknown or expired
        """
        now = self.clock()
        password_hash = credential_service.hash_password(password)
        with unit_of_work(db):
            account = account_store.find_by_reset_token(db, token) if token else None
            if account is not None:
                account = account_store.find_by_id(db, account.id, for_update=True)
            account = credential_service.consume_reset_token(account, token, now)

            credential_service.set_password_hash(account, password_hash)
            account.password_reset_at = now
            revoked = 0
            if settings.REVOKE_SESSIONS_ON_PASSWORD_RESET:
                revoked = token_service.revoke_all(account, None, now, reason=REASON_PASSWORD_RESET)
            audit_service.log_event(
                db, account_id=account.id, action="reset_password",
                metadata={"sessions_revoked": revoked}, now=now,
            )
            account_id = account.id

        logger.info("Password reset for account %s, %d sessions revoked", account_id, revoked)
        AUTH_EVENTS.labels("reset_password", "success").inc()

    # ------------------------------------------------------------------
    # account management

    def get_account(self, db: Session, principal: Principal, account_id: int) -> AccountResponse:
        require_self_or_admin(principal, account_id)
        with unit_of_work(db):
            account = account_store.find_by_id(db, account_id)
            if account is None:
                raise ResourceNotFoundError(f"Account ID, {account_id}, not found.")
            return AccountResponse.model_validate(account)

    def create_account(self, db: Session, principal: Principal, request: AccountCreate) -> AccountResponse:
        """Create a pre-verified account; Admin only. Unknown role names raise AppError."""
        require_admin(principal)
        now = self.clock()
        password_hash = credential_service.hash_password(request.password)

        with unit_of_work(db):
            if account_store.email_exists(db, request.email):
                raise ResourceAlreadyExistsError(f"Email '{request.email}' is already registered")

            account = Account(
                email=request.email,
                title=request.title,
                first_name=request.first_name,
                last_name=request.last_name,
                accepted_terms=request.accepted_terms,
                password_hash=password_hash,
                role=role_service.assignable_role(db, request.role or USER),
                created_at=now,
                verified_at=now,
            )
            try:
                account_store.create(db, account)
            except IntegrityError as exc:
                raise ResourceAlreadyExistsError(f"Email '{request.email}' is already registered") from exc
            audit_service.log_event(
                db, account_id=principal.account_id, action="create_account",
                target_type="account", target_id=str(account.id), now=now,
            )
            response = AccountResponse.model_validate(account)

        logger.info("Account %s created by admin %s", response.id, principal.account_id)
        return response

    def update_account(
        self, db: Session, principal: Principal, account_id: int, changes: AccountUpdate
    ) -> AccountResponse:
        """
        Update an account; the owner or an Admin may do so

        Raises:
            AuthorizationError: If the principal may not update it, or a
                non-admin tries to change a role
            ResourceNotFoundError: If the account does not exist
            ResourceAlreadyExistsError: If the new email is taken
            AppError: If the role is not one that can be assigned
        """
        require_self_or_admin(principal, account_id)
        if changes.role is not None:
            require_admin(principal)

        now = self.clock()
        password_hash = credential_service.hash_password(changes.password) if changes.password else None

        with unit_of_work(db):
            account = account_store.find_by_id(db, account_id, for_update=True)
            if account is None:
                raise ResourceNotFoundError(f"Account with ID {account_id} not found.")

            if changes.email and changes.email != account.email:
                if account_store.email_exists(db, changes.email):
                    raise ResourceAlreadyExistsError(f"Email, '{changes.email}', is already taken")
                account.email = changes.email

            if password_hash is not None:
                credential_service.set_password_hash(account, password_hash)

            if changes.role is not None:
                account.role = role_service.assignable_role(db, changes.role)

            for field, value in changes.model_dump(
                exclude_unset=True, exclude={"email", "password", "role"}
            ).items():
                setattr(account, field, value)

            account.updated_at = now
            try:
                account_store.update(db, account)
            except IntegrityError as exc:
                raise ResourceAlreadyExistsError(f"Email, '{changes.email}', is already taken") from exc
            response = AccountResponse.model_validate(account)

        return response

    def delete_account(self, db: Session, principal: Principal, account_id: int) -> AccountResponse:
        """Delete an account and its refresh tokens; the owner or an Admin may do so."""
        require_self_or_admin(principal, account_id)
        now = self.clock()
        with unit_of_work(db):
            account = account_store.find_by_id(db, account_id, for_update=True)
            if account is None:
                raise ResourceNotFoundError(f"Account with ID {account_id} was not found")
            response = AccountResponse.model_validate(account)
            account_store.delete(db, account)
            audit_service.log_event(
                db,
                account_id=principal.account_id if principal.account_id != account_id else None,
                action="delete_account",
                target_type="account",
                target_id=str(account_id),
                now=now,
            )

        logger.info("Deleted account %s", account_id)
        return response


def _full_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    return " ".join(part for part in (first_name, last_name) if part)


account_service = AccountService()
