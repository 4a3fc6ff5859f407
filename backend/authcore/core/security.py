"""Security utilities - JWT access tokens, opaque tokens, password hashing"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from calendar import timegm
from jose import JWTError, jwt
import bcrypt
import secrets

from authcore.config import settings
from authcore.core.exceptions import InvalidTokenError, SigningError
from authcore.core.metrics import PASSWORD_HASH_LATENCY
from authcore.models.security import RefreshToken
from authcore.schemas.account import AccessTokenClaims

_BCRYPT_PREFIXES = {"2a", "2b", "2y"}


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    The cost factor is read from the hash itself, so hashes created
    under an older PASSWORD_HASH_ROUNDS still verify.

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    with PASSWORD_HASH_LATENCY.labels("verify").time():
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt at the configured cost factor

    Args:
        password: Plain text password

    Returns:
        str: Hashed password
    """
    with PASSWORD_HASH_LATENCY.labels("hash").time():
        return bcrypt.hashpw(
            password.encode('utf-8'),
            bcrypt.gensalt(rounds=settings.PASSWORD_HASH_ROUNDS)
        ).decode('utf-8')


def password_needs_rehash(hashed_password: str) -> bool:
    """True when the hash uses an unknown scheme or a lower cost than configured"""
    parts = hashed_password.split("$")
    if len(parts) < 4 or parts[1] not in _BCRYPT_PREFIXES:
        return True
    try:
        rounds = int(parts[2])
    except ValueError:
        return True
    return rounds < settings.PASSWORD_HASH_ROUNDS


def generate_token() -> str:
    """
    Generate an opaque URL-safe token

    Used for refresh, verification and reset tokens.

    Returns:
        str: Random token with at least 256 bits of entropy
    """
    return secrets.token_urlsafe(settings.TOKEN_BYTES)


def create_refresh_token(ip_address: Optional[str], now: Optional[datetime] = None) -> RefreshToken:
    """Create an unsaved refresh token record issued now"""
    now = now or utcnow()
    return RefreshToken(
        token=generate_token(),
        created_at=now,
        created_by_ip=ip_address,
        expires_at=now + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def create_access_token(
    account_id: int,
    role: str,
    now: Optional[datetime] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create JWT access token

    Args:
        account_id: Account the token identifies
        role: Role name embedded as a claim
        now: Issue time, defaults to the current time
        expires_delta: Token lifetime, defaults to ACCESS_TOKEN_EXPIRE_MINUTES

    Returns:
        str: Encoded JWT token

    Raises:
        SigningError: If the secret is missing or signing fails
    """
    if not settings.SECRET_KEY:
        raise SigningError("Signing secret is not configured")

    now = now or utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode = {
        "sub": str(account_id),
        "role": role,
        "typ": "access",
        "iat": now,
        "exp": expire,
        "jti": secrets.token_urlsafe(32),  # Unique token ID
    }

    try:
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    except JWTError as exc:
        raise SigningError(f"Unable to sign access token: {exc}") from exc


def decode_access_token(token: str, now: Optional[datetime] = None) -> AccessTokenClaims:
    """
    Decode and verify JWT access token

    Expiry is checked against `now` with zero clock skew: a token is
    expired from the instant stated in its exp claim.

    Args:
        token: JWT token string
        now: Verification time, defaults to the current time

    Returns:
        AccessTokenClaims: Verified claims

    Raises:
        InvalidTokenError: On bad signature, malformed structure or expiry
    """
    if not settings.SECRET_KEY:
        raise InvalidTokenError("Signing secret is not configured")

    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError as exc:
        raise InvalidTokenError() from exc

    if payload.get("typ") != "access":
        raise InvalidTokenError("Token is not an access token")

    try:
        account_id = int(payload["sub"])
        issued_at = int(payload["iat"])
        expires_at = int(payload["exp"])
        role = str(payload["role"])
        jti = str(payload["jti"])
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidTokenError("Malformed access token") from exc

    now = now or utcnow()
    if timegm(now.utctimetuple()) >= expires_at:
        raise InvalidTokenError("Token has expired")

    return AccessTokenClaims(
        account_id=account_id,
        role=role,
        jti=jti,
        issued_at=datetime.fromtimestamp(issued_at, timezone.utc).replace(tzinfo=None),
        expires_at=datetime.fromtimestamp(expires_at, timezone.utc).replace(tzinfo=None),
    )
