"""
Persistence interface used by every auth service.

Two implementations exist: ``InMemoryStore`` for development and tests and
``DatabaseManager`` for PostgreSQL. Services only ever see this protocol.
"""

from datetime import datetime
from typing import List, Optional, Protocol, Sequence
from uuid import UUID

from vms_auth.models import (
    IdentityProvider,
    Permission,
    ProviderType,
    Role,
    Tenant,
    User,
)


class AuthStore(Protocol):
    #       Tenants
    # ---------------------------
    def add_tenant(self, tenant: Tenant) -> Tenant: ...

    def get_tenant(self, tenant_id: UUID) -> Optional[Tenant]: ...

    def get_tenant_by_domain(self, domain: str) -> Optional[Tenant]: ...

    def update_tenant(self, tenant: Tenant) -> Tenant: ...

    #       Identity Providers
    # ---------------------------
    def add_provider(self, provider: IdentityProvider) -> IdentityProvider: ...

    def get_provider(self, provider_id: UUID) -> Optional[IdentityProvider]: ...

    def get_provider_by_type(
        self, tenant_id: UUID, provider_type: ProviderType
    ) -> Optional[IdentityProvider]: ...

    def list_providers(self, tenant_id: UUID) -> List[IdentityProvider]: ...

    def update_provider(self, provider: IdentityProvider) -> IdentityProvider: ...

    def delete_provider(self, provider_id: UUID) -> bool: ...

    def is_jwks_uri_referenced(self, jwks_uri: str) -> bool: ...

    #       Permissions
    # ---------------------------
    def upsert_permission(self, permission: Permission) -> Permission: ...

    def list_permissions(self) -> List[Permission]: ...

    def get_permissions(self, permission_ids: Sequence[UUID]) -> List[Permission]: ...

    #       Roles
    # ---------------------------
    def add_role(self, role: Role) -> Role: ...

    def get_role(self, role_id: UUID) -> Optional[Role]: ...

    def get_role_by_name(self, tenant_id: Optional[UUID], name: str) -> Optional[Role]: ...

    def list_roles(self, tenant_id: UUID) -> List[Role]: ...

    def update_role(self, role: Role) -> Role: ...

    def delete_role(self, role_id: UUID) -> bool: ...

    def replace_role_permissions(
        self, role_id: UUID, permission_ids: Sequence[UUID], snapshot: Sequence[str]
    ) -> Role:
        """Replace the role's permissions and refresh its users' snapshot atomically."""
        ...

    def count_users_with_role(self, role_id: UUID) -> int: ...

    #       Users
    # ---------------------------
    def add_user(self, user: User) -> User: ...

    def get_user(self, user_id: UUID) -> Optional[User]: ...

    def get_user_by_email(self, tenant_id: UUID, email: str) -> Optional[User]: ...

    def get_user_by_external_id(
        self, tenant_id: UUID, provider_type: ProviderType, subject: str
    ) -> Optional[User]: ...

    def update_user(self, user: User) -> User: ...

    #       Revoked Sessions
    # ---------------------------
    def revoke_session(self, jti: str, expires_at: datetime) -> None: ...

    def is_session_revoked(self, jti: str) -> bool: ...
