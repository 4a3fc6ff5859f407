"""Typed errors raised by the authentication core"""

from typing import Optional, Dict, Any


class AuthCoreError(Exception):
    """Base exception for all authentication core errors"""

    code = "error"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# Resource Errors
class ResourceNotFoundError(AuthCoreError):
    """Resource not found, or its state disqualifies it"""
    code = "not_found"


class ResourceAlreadyExistsError(AuthCoreError):
    """Resource already exists"""
    code = "already_exists"


# Business Logic Errors
class AppError(AuthCoreError):
    """Business rule rejection"""
    code = "app_error"


class InvalidCredentialsError(AppError):
    """Password does not match the stored hash"""
    def __init__(self):
        super().__init__("The password provided is incorrect")


# Token Errors
class InvalidTokenError(AuthCoreError):
    """Token is malformed, mismatched or expired"""
    code = "invalid_token"

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class InvalidVerificationTokenError(AuthCoreError):
    """No account holds the verification token"""
    code = "invalid_verification_token"

    def __init__(self, message: str = "The verification token is invalid or expired"):
        super().__init__(message)


class TokenReuseError(AuthCoreError):
    """A refresh token that was already rotated or revoked was presented again"""
    code = "token_reuse"

    def __init__(self, message: str = "Refresh token has already been used or revoked"):
        super().__init__(message)


class SigningError(AuthCoreError):
    """Access token could not be signed"""
    code = "signing_error"

    def __init__(self, message: str = "Unable to sign access token"):
        super().__init__(message)


# Authorization Errors
class AuthorizationError(AuthCoreError):
    """Caller lacks rights for the target account"""
    code = "forbidden"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


# System Errors
class DataAccessError(AuthCoreError):
    """Underlying store failure"""
    code = "data_access"

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message)
