"""Pydantic schemas for service inputs and results"""

from authcore.schemas.account import (
    RegistrationRequest,
    AccountCreate,
    AccountUpdate,
    AccountResponse,
    AuthenticatedSession,
    AccessTokenClaims,
)

__all__ = [
    "RegistrationRequest", "AccountCreate", "AccountUpdate", "AccountResponse",
    "AuthenticatedSession", "AccessTokenClaims",
]
