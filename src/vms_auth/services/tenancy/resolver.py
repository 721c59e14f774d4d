"""
TenantStrategyResolver: which login methods a tenant offers.

A tenant is located by id, by a user's email address or by the bare
corporate email domain, and its authentication strategy decides whether the
password form, an external provider, or both are offered.
"""

import logging
from typing import Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from vms_auth.exceptions import (
    AuthMethodNotAllowedError,
    ProviderInactiveError,
    ProviderNotConfiguredError,
    TenantInactiveError,
    TenantNotFoundError,
)
from vms_auth.models import AuthStrategy, IdentityProvider, ProviderType, Tenant
from vms_auth.services.database import AuthStore

logger = logging.getLogger(__name__)


class TenantStrategy(BaseModel):
    tenant_id: UUID
    tenant_name: str
    auth_strategy: AuthStrategy
    traditional_enabled: bool
    active_providers: List[IdentityProvider] = Field(default_factory=list)

    def provider_enabled(self, provider_type: ProviderType) -> bool:
        return any(p.provider_type == provider_type for p in self.active_providers)

    def discovery_view(self) -> Dict:
        """What an unauthenticated login screen is allowed to learn."""
        view = {
            "tenant_id": str(self.tenant_id),
            "tenant_name": self.tenant_name,
            "auth_strategy": self.auth_strategy.value,
            "traditional_enabled": self.traditional_enabled,
        }
        for provider_type in ProviderType:
            view[f"{provider_type.value}_enabled"] = self.provider_enabled(provider_type)
        view["providers"] = [
            {
                "provider_type": p.provider_type.value,
                "config": p.config.public_config(),
            }
            for p in self.active_providers
        ]
        return view


class TenantStrategyResolver:
    def __init__(self, store: AuthStore, registry):
        self.store = store
        self.registry = registry

    def find_tenant(self, identifier: Union[str, UUID]) -> Tenant:
        """
        Locate an active tenant by id, email address or email domain.

        Raises:
            TenantNotFoundError: nothing matches
            TenantInactiveError: the tenant is disabled
        """
        tenant = self._lookup(identifier)
        if tenant is None:
            raise TenantNotFoundError()
        if not tenant.is_active:
            raise TenantInactiveError(details={"tenant_id": str(tenant.id)})
        return tenant

    def _lookup(self, identifier: Union[str, UUID]) -> Optional[Tenant]:
        if isinstance(identifier, UUID):
            return self.store.get_tenant(identifier)

        identifier = (identifier or "").strip().lower()
        if not identifier:
            return None
        try:
            return self.store.get_tenant(UUID(identifier))
        except ValueError:
            pass

        domain = identifier.rsplit("@", 1)[-1]
        if not domain:
            return None
        return self.store.get_tenant_by_domain(domain)

    def resolve(self, identifier: Union[str, UUID]) -> TenantStrategy:
        tenant = self.find_tenant(identifier)
        return self.strategy_for(tenant)

    def strategy_for(self, tenant: Tenant) -> TenantStrategy:
        strategy = tenant.auth_strategy
        active = [p for p in self.registry.list(tenant.id) if p.is_active]

        required = strategy.provider_type
        if required is not None:
            active = [p for p in active if p.provider_type == required]
            if not active:
                raise ProviderNotConfiguredError(
                    details={"provider_type": required.value}
                )
        elif strategy == AuthStrategy.TRADITIONAL:
            active = []

        return TenantStrategy(
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            auth_strategy=strategy,
            traditional_enabled=strategy
            in (AuthStrategy.TRADITIONAL, AuthStrategy.HYBRID),
            active_providers=active,
        )

    def check_method(
        self, tenant: Tenant, provider_type: Optional[ProviderType] = None
    ) -> Optional[IdentityProvider]:
        """
        Ensure the tenant accepts this login method.

        ``provider_type`` None means password login. Returns the active
        provider for external logins.
        """
        strategy = tenant.auth_strategy
        if provider_type is None:
            if strategy not in (AuthStrategy.TRADITIONAL, AuthStrategy.HYBRID):
                raise AuthMethodNotAllowedError(
                    details={"auth_strategy": strategy.value}
                )
            return None

        if strategy != AuthStrategy.HYBRID and strategy.provider_type != provider_type:
            raise ProviderNotConfiguredError(
                details={"provider_type": provider_type.value}
            )

        provider = self.registry.get_registered(tenant.id, provider_type)
        if provider is None:
            raise ProviderNotConfiguredError(
                details={"provider_type": provider_type.value}
            )
        if not provider.is_active:
            raise ProviderInactiveError(details={"provider_type": provider_type.value})
        return provider
