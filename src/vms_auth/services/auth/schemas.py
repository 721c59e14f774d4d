from datetime import datetime
from typing import List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from vms_auth.models import User
from vms_auth.services.rbac import PermissionSnapshot


class UserProfile(BaseModel):
    id: UUID
    tenant_id: UUID
    email: EmailStr
    full_name: Optional[str] = None
    role_id: UUID
    role: str
    permissions: List[str] = Field(default_factory=list)
    mfa_enabled: bool = False
    is_active: bool = True
    last_login_at: Optional[datetime] = None


class SessionToken(BaseModel):
    token: str
    token_type: str = "bearer"
    jti: str
    expires_at: datetime


class AuthenticatedResult(BaseModel):
    mfa_required: Literal[False] = False
    user: UserProfile
    session: SessionToken


class MFAPendingResult(BaseModel):
    mfa_required: Literal[True] = True
    user: UserProfile
    challenge_token: str


LoginResult = Union[AuthenticatedResult, MFAPendingResult]


class AuthenticatedSession(BaseModel):
    """A verified session token bound to the user it was issued for."""

    user: User
    snapshot: PermissionSnapshot
    jti: str
    expires_at: datetime
    auth_method: str


class MFASetup(BaseModel):
    secret: str
    otpauth_uri: str
    issuer: str
