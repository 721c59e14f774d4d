"""
Domain models shared by the stores and services.

Identity provider configurations are a closed set of variants, one model per
provider type. Each variant knows its mandatory fields and the defaults its
provider publishes (JWKS location, issuer, audience).
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


#       ENUMS
# ------------------------------


class ProviderType(str, Enum):
    AZURE_AD = "azure_ad"
    AWS_COGNITO = "aws_cognito"
    OKTA = "okta"
    AUTH0 = "auth0"


class AuthStrategy(str, Enum):
    TRADITIONAL = "traditional"
    AZURE_AD = "azure_ad"
    AWS_COGNITO = "aws_cognito"
    OKTA = "okta"
    AUTH0 = "auth0"
    HYBRID = "hybrid"

    @property
    def provider_type(self) -> Optional[ProviderType]:
        """External provider named by this strategy, if any."""
        if self in (AuthStrategy.TRADITIONAL, AuthStrategy.HYBRID):
            return None
        return ProviderType(self.value)


class SystemRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    SECURITY = "security"
    RECEPTION = "reception"
    HOST = "host"
    APPROVER = "approver"


#       IDENTITY PROVIDER CONFIGS
# ---------------------------------------

_PLACEHOLDER = re.compile(r"\{([^{}]*)\}")


def _normalize_domain(value: str) -> str:
    value = value.strip().lower()
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix):]
    return value.rstrip("/")


class ProviderConfigBase(BaseModel):
    """Fields every external provider needs to verify its ID tokens."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        loc_by_alias=False,
        extra="ignore",
    )

    client_id: str = Field(min_length=1)
    jwks_uri: Optional[str] = None
    issuer: Optional[str] = None
    audience: Optional[str] = None

    def apply_defaults(self) -> None:
        if not self.audience:
            self.audience = self.client_id

    @model_validator(mode="after")
    def finalize_config(self):
        self.apply_defaults()
        missing = [f for f in ("jwks_uri", "issuer", "audience") if not getattr(self, f)]
        if missing:
            raise ValueError(f"missing required fields: {', '.join(missing)}")
        for name in ("jwks_uri", "issuer"):
            if not getattr(self, name).startswith("https://"):
                raise ValueError(f"{name} must be an https URL")
        return self

    def expected_issuer(self) -> str:
        return self.issuer

    def public_config(self) -> Dict[str, str]:
        """Config fields a login screen may see."""
        return self.model_dump(
            exclude={"jwks_uri", "federated_role_arn_prefix"}, exclude_none=True
        )


class AzureADConfig(ProviderConfigBase):
    provider_type: Literal["azure_ad"] = Field(default="azure_ad", alias="provider_type")
    tenant_id: str = Field(min_length=1)
    jwks_uri: str
    issuer: str
    audience: str

    @field_validator("issuer")
    @classmethod
    def validate_issuer_template(cls, v: str) -> str:
        unknown = [p for p in _PLACEHOLDER.findall(v) if p != "tenantId"]
        if unknown or v.count("{") != v.count("}"):
            raise ValueError("issuer template only supports the {tenantId} placeholder")
        return v

    def expected_issuer(self) -> str:
        return self.issuer.replace("{tenantId}", self.tenant_id)


class OktaConfig(ProviderConfigBase):
    provider_type: Literal["okta"] = Field(default="okta", alias="provider_type")
    domain: str = Field(min_length=1)
    issuer: str

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = _normalize_domain(v)
        if not (v.endswith(".okta.com") or v.endswith(".oktapreview.com")):
            raise ValueError("domain must be an okta.com or oktapreview.com domain")
        return v

    def apply_defaults(self) -> None:
        if not self.jwks_uri:
            self.jwks_uri = f"https://{self.domain}/oauth2/default/v1/keys"
        super().apply_defaults()


class Auth0Config(ProviderConfigBase):
    provider_type: Literal["auth0"] = Field(default="auth0", alias="provider_type")
    domain: str = Field(min_length=1)

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = _normalize_domain(v)
        if not v.endswith(".auth0.com"):
            raise ValueError("domain must be an auth0.com domain")
        return v

    def apply_defaults(self) -> None:
        if not self.jwks_uri:
            self.jwks_uri = f"https://{self.domain}/.well-known/jwks.json"
        if not self.issuer:
            self.issuer = f"https://{self.domain}/"
        super().apply_defaults()


class AWSCognitoConfig(ProviderConfigBase):
    provider_type: Literal["aws_cognito"] = Field(
        default="aws_cognito", alias="provider_type"
    )
    region: str = Field(pattern=r"^[a-z]{2}(-gov)?-[a-z]+-\d$")
    user_pool_id: str = Field(min_length=1)
    federated_role_arn_prefix: Optional[str] = None

    def apply_defaults(self) -> None:
        pool_url = f"https://cognito-idp.{self.region}.amazonaws.com/{self.user_pool_id}"
        if not self.jwks_uri:
            self.jwks_uri = f"{pool_url}/.well-known/jwks.json"
        if not self.issuer:
            self.issuer = pool_url
        super().apply_defaults()


ProviderConfig = Annotated[
    Union[AzureADConfig, OktaConfig, Auth0Config, AWSCognitoConfig],
    Field(discriminator="provider_type"),
]

PROVIDER_CONFIG_MODELS: Dict[ProviderType, type] = {
    ProviderType.AZURE_AD: AzureADConfig,
    ProviderType.OKTA: OktaConfig,
    ProviderType.AUTH0: Auth0Config,
    ProviderType.AWS_COGNITO: AWSCognitoConfig,
}


#       ENTITIES
# ------------------------------


class Tenant(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    corporate_email_domain: str
    auth_strategy: AuthStrategy = AuthStrategy.TRADITIONAL
    is_active: bool = True
    allow_external_provisioning: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("corporate_email_domain")
    @classmethod
    def lowercase_domain(cls, v: str) -> str:
        return v.strip().lower()


class IdentityProvider(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    tenant_id: UUID
    provider_type: ProviderType
    config: ProviderConfig
    is_active: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Permission(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    resource: str
    action: str
    name: str = ""
    description: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}"


class Role(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    tenant_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    is_system: bool = False
    permission_ids: List[UUID] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class User(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    tenant_id: UUID
    email: EmailStr
    full_name: Optional[str] = None
    role_id: UUID
    password_hash: Optional[str] = None
    is_active: bool = True
    mfa_enabled: bool = False
    mfa_secret: Optional[str] = None
    mfa_pending_secret: Optional[str] = None
    security_stamp: int = 0
    # provider_type -> subject claim issued by that provider
    external_ids: Dict[str, str] = Field(default_factory=dict)
    # Role claims seen at the last external login
    external_roles: List[str] = Field(default_factory=list)
    # Materialized "resource:action" snapshot of the role's permissions.
    permissions: List[str] = Field(default_factory=list)
    last_login_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()
