from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from vms_auth.models import IdentityProvider, Permission, Role, User
from vms_auth.services.auth import UserProfile


class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, str_strip_whitespace=True)


class TimestampMixin(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MessageResponse(BaseSchema):
    message: str


#           LOGIN
# ---------------------------


class LoginRequest(BaseSchema):
    """
    Either ``{email, password}`` (optionally with ``mfa_code``) or
    ``{id_token, auth_provider_type}``; the shape picks the login path.
    """

    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=1, max_length=1024)
    mfa_code: Optional[str] = Field(default=None, max_length=16)
    id_token: Optional[str] = Field(default=None, min_length=1)
    auth_provider_type: Optional[str] = None
    tenant_id: Optional[str] = None

    @model_validator(mode="after")
    def check_shape(self):
        local = self.email is not None and self.password is not None
        external = self.id_token is not None and self.auth_provider_type is not None
        if local == external:
            raise ValueError(
                "provide either email and password, or id_token and auth_provider_type"
            )
        return self

    @property
    def is_external(self) -> bool:
        return self.id_token is not None


class ExternalLoginRequest(BaseSchema):
    id_token: str = Field(min_length=1)
    auth_provider_type: str
    tenant_id: Optional[str] = None


class LoginResponse(BaseSchema):
    user: UserProfile
    token: str
    token_type: str = "bearer"
    expires_at: datetime


class MFARequiredResponse(BaseSchema):
    mfa_required: Literal[True] = True
    user: UserProfile
    mfa_token: str


#           MFA
# ---------------------------


class MFACodeRequest(BaseSchema):
    code: str = Field(min_length=6, max_length=16)


class MFAVerifyRequest(BaseSchema):
    mfa_token: str = Field(min_length=1)
    code: str = Field(min_length=6, max_length=16)


class MFAInitiateResponse(BaseSchema):
    secret: str
    otpauth_uri: str
    issuer: str


#           ACCOUNT
# ---------------------------


class ChangePasswordRequest(BaseSchema):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=12, max_length=1024)


class UserRoleRequest(BaseSchema):
    role_id: UUID


class AdminUserResponse(BaseSchema):
    id: UUID
    tenant_id: UUID
    email: EmailStr
    full_name: Optional[str] = None
    role_id: UUID
    is_active: bool
    mfa_enabled: bool
    permissions: List[str] = Field(default_factory=list)

    @classmethod
    def from_user(cls, user: User) -> "AdminUserResponse":
        return cls.model_validate(user.model_dump())


#           TENANT DISCOVERY
# ---------------------------


class ProviderDiscovery(BaseSchema):
    provider_type: str
    config: Dict[str, Any] = Field(default_factory=dict)


class TenantDiscoveryResponse(BaseSchema):
    tenant_id: UUID
    tenant_name: str
    auth_strategy: str
    traditional_enabled: bool
    azure_ad_enabled: bool = False
    okta_enabled: bool = False
    auth0_enabled: bool = False
    aws_cognito_enabled: bool = False
    providers: List[ProviderDiscovery] = Field(default_factory=list)


#           IDENTITY PROVIDERS
# ---------------------------


class ProviderCreateRequest(BaseSchema):
    provider_type: str
    config: Dict[str, Any]


class ProviderUpdateRequest(BaseSchema):
    config: Dict[str, Any]


class ProviderResponse(BaseSchema, TimestampMixin):
    id: UUID
    tenant_id: UUID
    provider_type: str
    is_active: bool
    config: Dict[str, Any]

    @classmethod
    def from_provider(cls, provider: IdentityProvider) -> "ProviderResponse":
        return cls(
            id=provider.id,
            tenant_id=provider.tenant_id,
            provider_type=provider.provider_type.value,
            is_active=provider.is_active,
            config=provider.config.model_dump(exclude={"provider_type"}, exclude_none=True),
            created_at=provider.created_at,
            updated_at=provider.updated_at,
        )


#           ROLES
# ---------------------------


class PermissionResponse(BaseSchema):
    id: UUID
    resource: str
    action: str
    key: str
    name: str = ""
    description: Optional[str] = None

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(
            id=permission.id,
            resource=permission.resource,
            action=permission.action,
            key=permission.key,
            name=permission.name,
            description=permission.description,
        )


class RoleCreateRequest(BaseSchema):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    # Permission ids or "resource:action" names
    permissions: List[str] = Field(default_factory=list)


class RoleUpdateRequest(BaseSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class RolePermissionsRequest(BaseSchema):
    permissions: List[str]


class RoleResponse(BaseSchema, TimestampMixin):
    id: UUID
    tenant_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    is_system: bool
    permissions: List[str] = Field(default_factory=list)

    @classmethod
    def from_role(cls, role: Role, permissions: List[Permission]) -> "RoleResponse":
        return cls(
            id=role.id,
            tenant_id=role.tenant_id,
            name=role.name,
            description=role.description,
            is_system=role.is_system,
            permissions=[p.key for p in permissions],
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


#           HEALTH CHECK
# -----------------------------------


class HealthResponse(BaseSchema):
    status: str = "healthy"
    version: str
    environment: str
    audit_enabled: bool
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DetailedHealthResponse(HealthResponse):
    components: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
