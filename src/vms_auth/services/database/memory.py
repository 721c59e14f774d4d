"""
InMemoryStore: process-local implementation of the AuthStore protocol.

Used for development and the test-suite. Every public method holds a single
re-entrant lock, and objects are copied on the way in and out so callers can
never mutate stored state without going through the store.
"""

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from vms_auth.exceptions import ProviderExistsError, RoleExistsError
from vms_auth.models import (
    IdentityProvider,
    Permission,
    ProviderType,
    Role,
    Tenant,
    User,
    utcnow,
)


class InMemoryStore:
    def __init__(self):
        self._lock = threading.RLock()
        self._tenants: Dict[UUID, Tenant] = {}
        self._providers: Dict[UUID, IdentityProvider] = {}
        self._permissions: Dict[UUID, Permission] = {}
        self._roles: Dict[UUID, Role] = {}
        self._users: Dict[UUID, User] = {}
        self._revoked: Dict[str, datetime] = {}

    @staticmethod
    def _copy(obj):
        return obj.model_copy(deep=True) if obj is not None else None

    #        Tenant Management
    # -------------------------------
    def add_tenant(self, tenant: Tenant) -> Tenant:
        with self._lock:
            self._tenants[tenant.id] = self._copy(tenant)
            return self._copy(tenant)

    def get_tenant(self, tenant_id: UUID) -> Optional[Tenant]:
        with self._lock:
            return self._copy(self._tenants.get(tenant_id))

    def get_tenant_by_domain(self, domain: str) -> Optional[Tenant]:
        domain = domain.strip().lower()
        with self._lock:
            for tenant in self._tenants.values():
                if tenant.corporate_email_domain == domain:
                    return self._copy(tenant)
        return None

    def update_tenant(self, tenant: Tenant) -> Tenant:
        with self._lock:
            self._tenants[tenant.id] = self._copy(tenant)
            return self._copy(tenant)

    #        Identity Provider Management
    # ------------------------------------------
    def add_provider(self, provider: IdentityProvider) -> IdentityProvider:
        with self._lock:
            if self._find_provider(provider.tenant_id, provider.provider_type):
                raise ProviderExistsError(
                    details={"provider_type": provider.provider_type.value}
                )
            self._providers[provider.id] = self._copy(provider)
            return self._copy(provider)

    def _find_provider(
        self, tenant_id: UUID, provider_type: ProviderType
    ) -> Optional[IdentityProvider]:
        for provider in self._providers.values():
            if provider.tenant_id == tenant_id and provider.provider_type == provider_type:
                return provider
        return None

    def get_provider(self, provider_id: UUID) -> Optional[IdentityProvider]:
        with self._lock:
            return self._copy(self._providers.get(provider_id))

    def get_provider_by_type(
        self, tenant_id: UUID, provider_type: ProviderType
    ) -> Optional[IdentityProvider]:
        with self._lock:
            return self._copy(self._find_provider(tenant_id, provider_type))

    def list_providers(self, tenant_id: UUID) -> List[IdentityProvider]:
        with self._lock:
            providers = [
                self._copy(p) for p in self._providers.values() if p.tenant_id == tenant_id
            ]
        return sorted(providers, key=lambda p: p.created_at)

    def update_provider(self, provider: IdentityProvider) -> IdentityProvider:
        with self._lock:
            provider = provider.model_copy(update={"updated_at": utcnow()}, deep=True)
            self._providers[provider.id] = provider
            return self._copy(provider)

    def delete_provider(self, provider_id: UUID) -> bool:
        with self._lock:
            return self._providers.pop(provider_id, None) is not None

    def is_jwks_uri_referenced(self, jwks_uri: str) -> bool:
        with self._lock:
            return any(p.config.jwks_uri == jwks_uri for p in self._providers.values())

    #        Permission Catalog
    # -------------------------------
    def upsert_permission(self, permission: Permission) -> Permission:
        with self._lock:
            for existing in self._permissions.values():
                if (existing.resource, existing.action) == (
                    permission.resource,
                    permission.action,
                ):
                    existing.name = permission.name or existing.name
                    existing.description = permission.description or existing.description
                    return self._copy(existing)
            self._permissions[permission.id] = self._copy(permission)
            return self._copy(permission)

    def list_permissions(self) -> List[Permission]:
        with self._lock:
            permissions = [self._copy(p) for p in self._permissions.values()]
        return sorted(permissions, key=lambda p: (p.resource, p.action))

    def get_permissions(self, permission_ids: Sequence[UUID]) -> List[Permission]:
        with self._lock:
            found = [
                self._copy(self._permissions[pid])
                for pid in dict.fromkeys(permission_ids)
                if pid in self._permissions
            ]
        return sorted(found, key=lambda p: (p.resource, p.action))

    #        Role Management
    # -------------------------------
    def add_role(self, role: Role) -> Role:
        with self._lock:
            if self._find_role(role.tenant_id, role.name):
                raise RoleExistsError(details={"name": role.name})
            self._roles[role.id] = self._copy(role)
            return self._copy(role)

    def _find_role(self, tenant_id: Optional[UUID], name: str) -> Optional[Role]:
        for role in self._roles.values():
            if role.tenant_id == tenant_id and role.name.lower() == name.lower():
                return role
        return None

    def get_role(self, role_id: UUID) -> Optional[Role]:
        with self._lock:
            return self._copy(self._roles.get(role_id))

    def get_role_by_name(self, tenant_id: Optional[UUID], name: str) -> Optional[Role]:
        with self._lock:
            return self._copy(self._find_role(tenant_id, name))

    def list_roles(self, tenant_id: UUID) -> List[Role]:
        with self._lock:
            roles = [
                self._copy(r)
                for r in self._roles.values()
                if r.tenant_id is None or r.tenant_id == tenant_id
            ]
        return sorted(roles, key=lambda r: (not r.is_system, r.name))

    def update_role(self, role: Role) -> Role:
        with self._lock:
            clash = self._find_role(role.tenant_id, role.name)
            if clash and clash.id != role.id:
                raise RoleExistsError(details={"name": role.name})
            role = role.model_copy(update={"updated_at": utcnow()}, deep=True)
            self._roles[role.id] = role
            return self._copy(role)

    def delete_role(self, role_id: UUID) -> bool:
        with self._lock:
            return self._roles.pop(role_id, None) is not None

    def replace_role_permissions(
        self, role_id: UUID, permission_ids: Sequence[UUID], snapshot: Sequence[str]
    ) -> Role:
        with self._lock:
            role = self._roles[role_id]
            role.permission_ids = list(dict.fromkeys(permission_ids))
            role.updated_at = utcnow()
            for user in self._users.values():
                if user.role_id == role_id:
                    user.permissions = list(snapshot)
                    user.updated_at = role.updated_at
            return self._copy(role)

    def count_users_with_role(self, role_id: UUID) -> int:
        with self._lock:
            return sum(1 for u in self._users.values() if u.role_id == role_id)

    #        User Management
    # -------------------------------
    def add_user(self, user: User) -> User:
        with self._lock:
            self._users[user.id] = self._copy(user)
            return self._copy(user)

    def get_user(self, user_id: UUID) -> Optional[User]:
        with self._lock:
            return self._copy(self._users.get(user_id))

    def get_user_by_email(self, tenant_id: UUID, email: str) -> Optional[User]:
        email = email.strip().lower()
        with self._lock:
            for user in self._users.values():
                if user.tenant_id == tenant_id and user.email == email:
                    return self._copy(user)
        return None

    def get_user_by_external_id(
        self, tenant_id: UUID, provider_type: ProviderType, subject: str
    ) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if (
                    user.tenant_id == tenant_id
                    and user.external_ids.get(provider_type.value) == subject
                ):
                    return self._copy(user)
        return None

    def update_user(self, user: User) -> User:
        with self._lock:
            user = user.model_copy(update={"updated_at": utcnow()}, deep=True)
            self._users[user.id] = user
            return self._copy(user)

    #        Revoked Sessions
    # -------------------------------
    def revoke_session(self, jti: str, expires_at: datetime) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            for key in [k for k, exp in self._revoked.items() if exp <= now]:
                del self._revoked[key]
            self._revoked[jti] = expires_at

    def is_session_revoked(self, jti: str) -> bool:
        with self._lock:
            return jti in self._revoked
