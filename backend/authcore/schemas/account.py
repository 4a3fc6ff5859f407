"""Account and session schemas"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class RegistrationRequest(BaseModel):
    """Self-service registration data"""
    email: str
    password: str
    title: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    accepted_terms: bool = False


class AccountCreate(RegistrationRequest):
    """Account creation by an administrator"""
    role: Optional[str] = None


class AccountUpdate(BaseModel):
    """Partial account update; unset fields are left untouched"""
    email: Optional[str] = None
    password: Optional[str] = None
    title: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None


class AccountResponse(BaseModel):
    """Account view without credentials"""
    id: int
    email: str
    title: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    role: str = Field(validation_alias="role_name")
    is_verified: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class AuthenticatedSession(BaseModel):
    """Credentials returned by authenticate and refresh"""
    account: AccountResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token_expires_at: datetime


class AccessTokenClaims(BaseModel):
    """Verified claims carried by an access token"""
    account_id: int
    role: str
    jti: str
    issued_at: datetime
    expires_at: datetime
