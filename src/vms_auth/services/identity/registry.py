"""
IdentityProviderRegistry: per-tenant external identity provider configs.

A tenant holds at most one provider per type. Configs are validated against
the provider's variant model when they are written, so everything stored is
complete; providers are created inactive and must be activated explicitly.
"""

import logging
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import TypeAdapter, ValidationError

from vms_auth.exceptions import (
    InvalidProviderConfigError,
    ProviderInactiveError,
    ProviderNotConfiguredError,
    ProviderNotFoundError,
    TenantNotFoundError,
)
from vms_auth.models import (
    PROVIDER_CONFIG_MODELS,
    IdentityProvider,
    ProviderConfig,
    ProviderType,
    SystemRole,
)
from vms_auth.services.database import AuthStore

logger = logging.getLogger(__name__)

_config_adapter = TypeAdapter(ProviderConfig)

# Group/role claim values recognised in external tokens
ROLE_CLAIM_MAPPING: Dict[str, SystemRole] = {
    # Okta / Azure AD app roles
    "VMS.SuperAdmin": SystemRole.SUPER_ADMIN,
    "VMS.Admin": SystemRole.ADMIN,
    "VMS.Security": SystemRole.SECURITY,
    "VMS.Reception": SystemRole.RECEPTION,
    "VMS.Host": SystemRole.HOST,
    "VMS.Approver": SystemRole.APPROVER,
    # Auth0 roles
    "SuperAdmin": SystemRole.SUPER_ADMIN,
    "Admin": SystemRole.ADMIN,
    "Security": SystemRole.SECURITY,
    "Reception": SystemRole.RECEPTION,
    "Host": SystemRole.HOST,
    "Approver": SystemRole.APPROVER,
    # Generic group names; super admin is never granted from these
    "admin": SystemRole.ADMIN,
    "security": SystemRole.SECURITY,
    "reception": SystemRole.RECEPTION,
    "host": SystemRole.HOST,
    "approver": SystemRole.APPROVER,
}
DEFAULT_EXTERNAL_ROLE = SystemRole.HOST


def map_external_role(
    claimed_roles: List[str], default: Optional[SystemRole] = DEFAULT_EXTERNAL_ROLE
) -> Optional[SystemRole]:
    """First recognised role claim wins; ``default`` when none is recognised."""
    for claimed in claimed_roles:
        if claimed in ROLE_CLAIM_MAPPING:
            return ROLE_CLAIM_MAPPING[claimed]
    return default


def parse_provider_type(value: Union[str, ProviderType]) -> ProviderType:
    try:
        return ProviderType(value)
    except ValueError:
        raise InvalidProviderConfigError(
            "Unknown identity provider type",
            details={"provider_type": str(value)},
        )


def build_config(provider_type: Union[str, ProviderType], config: Dict[str, Any]):
    """Validate a raw config dict into the variant model for ``provider_type``."""
    provider_type = parse_provider_type(provider_type)
    if not isinstance(config, dict):
        raise InvalidProviderConfigError(details={"errors": ["config must be an object"]})
    try:
        return _config_adapter.validate_python(
            {**config, "provider_type": provider_type.value}
        )
    except ValidationError as e:
        errors = [
            {
                "field": ".".join(str(p) for p in err["loc"][1:]) or None,
                "message": err["msg"],
            }
            for err in e.errors()
        ]
        raise InvalidProviderConfigError(
            details={"provider_type": provider_type.value, "errors": errors}
        ) from e


class IdentityProviderRegistry:
    def __init__(self, store: AuthStore, jwks_cache=None):
        self.store = store
        self.jwks_cache = jwks_cache

    #       Queries
    # ------------------------------
    def list(self, tenant_id: UUID) -> List[IdentityProvider]:
        return self.store.list_providers(tenant_id)

    def get(self, tenant_id: UUID, provider_id: UUID) -> IdentityProvider:
        provider = self.store.get_provider(provider_id)
        if provider is None or provider.tenant_id != tenant_id:
            raise ProviderNotFoundError(details={"provider_id": str(provider_id)})
        return provider

    def get_registered(
        self, tenant_id: UUID, provider_type: ProviderType
    ) -> Optional[IdentityProvider]:
        return self.store.get_provider_by_type(tenant_id, provider_type)

    def get_active(self, tenant_id: UUID, provider_type: ProviderType) -> IdentityProvider:
        provider = self.get_registered(tenant_id, provider_type)
        if provider is None:
            raise ProviderNotConfiguredError(
                details={"provider_type": provider_type.value}
            )
        if not provider.is_active:
            raise ProviderInactiveError(details={"provider_type": provider_type.value})
        return provider

    def is_jwks_uri_referenced(self, jwks_uri: str) -> bool:
        return self.store.is_jwks_uri_referenced(jwks_uri)

    #       Mutations
    # ------------------------------
    def create(
        self,
        tenant_id: UUID,
        provider_type: Union[str, ProviderType],
        config: Dict[str, Any],
    ) -> IdentityProvider:
        if self.store.get_tenant(tenant_id) is None:
            raise TenantNotFoundError(details={"tenant_id": str(tenant_id)})

        provider_type = parse_provider_type(provider_type)
        provider = self.store.add_provider(
            IdentityProvider(
                tenant_id=tenant_id,
                provider_type=provider_type,
                config=build_config(provider_type, config),
                is_active=False,
            )
        )
        logger.info(
            "Identity provider registered",
            extra={
                "tenant_id": str(tenant_id),
                "provider_id": str(provider.id),
                "provider_type": provider_type.value,
            },
        )
        return provider

    def update(
        self, tenant_id: UUID, provider_id: UUID, config: Dict[str, Any]
    ) -> IdentityProvider:
        """Replace the provider's config. The type never changes."""
        provider = self.get(tenant_id, provider_id)
        old_uri = provider.config.jwks_uri
        provider.config = build_config(provider.provider_type, config)
        provider = self.store.update_provider(provider)

        if old_uri != provider.config.jwks_uri:
            self._forget_uri(old_uri)
        logger.info(
            "Identity provider updated",
            extra={"tenant_id": str(tenant_id), "provider_id": str(provider_id)},
        )
        return provider

    def delete(self, tenant_id: UUID, provider_id: UUID) -> IdentityProvider:
        # Cached keys for its JWKS URI are left to lazy eviction
        provider = self.get(tenant_id, provider_id)
        self.store.delete_provider(provider_id)
        logger.info(
            "Identity provider deleted",
            extra={
                "tenant_id": str(tenant_id),
                "provider_id": str(provider_id),
                "provider_type": provider.provider_type.value,
            },
        )
        return provider

    def activate(self, tenant_id: UUID, provider_id: UUID) -> IdentityProvider:
        return self._set_active(tenant_id, provider_id, True)

    def deactivate(self, tenant_id: UUID, provider_id: UUID) -> IdentityProvider:
        return self._set_active(tenant_id, provider_id, False)

    def _set_active(
        self, tenant_id: UUID, provider_id: UUID, active: bool
    ) -> IdentityProvider:
        provider = self.get(tenant_id, provider_id)
        if provider.is_active == active:
            return provider
        provider.is_active = active
        provider = self.store.update_provider(provider)
        logger.info(
            "Identity provider %s", "activated" if active else "deactivated",
            extra={"tenant_id": str(tenant_id), "provider_id": str(provider_id)},
        )
        return provider

    def _forget_uri(self, jwks_uri: str) -> None:
        if self.jwks_cache is not None and not self.store.is_jwks_uri_referenced(jwks_uri):
            self.jwks_cache.evict(jwks_uri)
