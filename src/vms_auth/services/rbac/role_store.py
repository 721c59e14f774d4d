"""
RoleStore: tenant-scoped role management on top of the AuthStore.

Owns the rules the raw store does not know about: system roles are
immutable, roles in use cannot be deleted, permission assignment is an
all-or-nothing replace, and users only ever hold roles of their own tenant.
"""

import logging
from typing import List, Optional, Sequence, Union
from uuid import UUID

from vms_auth.exceptions import (
    PermissionNotFoundError,
    RoleExistsError,
    RoleInUseError,
    RoleNotFoundError,
    SystemRoleImmutableError,
)
from vms_auth.models import Permission, Role, User
from vms_auth.services.database import AuthStore

from .evaluator import PermissionSnapshot, parse_permission

logger = logging.getLogger(__name__)

PermissionRef = Union[UUID, str]


class RoleStore:
    def __init__(self, store: AuthStore):
        self.store = store

    #       Permission Catalog
    # ------------------------------
    def list_permissions(self) -> List[Permission]:
        return self.store.list_permissions()

    def resolve_permissions(self, refs: Sequence[PermissionRef]) -> List[Permission]:
        """
        Resolve permission ids or ``resource:action`` names against the catalog.

        Any unknown reference fails the whole call.
        """
        catalog = self.store.list_permissions()
        by_id = {p.id: p for p in catalog}
        by_key = {p.key: p for p in catalog}

        resolved: List[Permission] = []
        unknown: List[str] = []
        for ref in refs:
            permission = self._lookup(ref, by_id, by_key)
            if permission is None:
                unknown.append(str(ref))
            elif permission not in resolved:
                resolved.append(permission)

        if unknown:
            raise PermissionNotFoundError(details={"unknown_permissions": unknown})
        return resolved

    @staticmethod
    def _lookup(ref: PermissionRef, by_id, by_key) -> Optional[Permission]:
        if isinstance(ref, UUID):
            return by_id.get(ref)
        try:
            return by_id.get(UUID(str(ref)))
        except ValueError:
            pass
        pair = parse_permission(str(ref))
        return by_key.get(f"{pair[0]}:{pair[1]}") if pair else None

    #       Role Queries
    # ------------------------------
    def list_roles(self, tenant_id: UUID) -> List[Role]:
        return self.store.list_roles(tenant_id)

    def get_role(self, tenant_id: UUID, role_id: UUID) -> Role:
        """Return a role visible to the tenant (its own or a system role)."""
        role = self.store.get_role(role_id)
        if role is None or (role.tenant_id is not None and role.tenant_id != tenant_id):
            raise RoleNotFoundError(details={"role_id": str(role_id)})
        return role

    def get_role_by_name(self, tenant_id: UUID, name: str) -> Role:
        role = self.store.get_role_by_name(tenant_id, name) or self.store.get_role_by_name(
            None, name
        )
        if role is None:
            raise RoleNotFoundError(details={"name": name})
        return role

    def role_permissions(self, role: Role) -> List[Permission]:
        return self.store.get_permissions(role.permission_ids)

    #       Role Mutations
    # ------------------------------
    def create_role(
        self,
        tenant_id: UUID,
        name: str,
        description: Optional[str] = None,
        permissions: Sequence[PermissionRef] = (),
    ) -> Role:
        self._check_reserved(name)
        resolved = self.resolve_permissions(permissions)
        role = self.store.add_role(
            Role(
                tenant_id=tenant_id,
                name=name,
                description=description,
                is_system=False,
                permission_ids=[p.id for p in resolved],
            )
        )
        logger.info(
            "Role created",
            extra={"tenant_id": str(tenant_id), "role_id": str(role.id), "role_name": name},
        )
        return role

    def update_role(
        self,
        tenant_id: UUID,
        role_id: UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Role:
        role = self._mutable_role(tenant_id, role_id)
        if name is not None:
            self._check_reserved(name)
            role.name = name
        if description is not None:
            role.description = description
        return self.store.update_role(role)

    def delete_role(self, tenant_id: UUID, role_id: UUID) -> Role:
        role = self._mutable_role(tenant_id, role_id)
        in_use = self.store.count_users_with_role(role_id)
        if in_use:
            raise RoleInUseError(details={"role_id": str(role_id), "users": in_use})
        self.store.delete_role(role_id)
        logger.info(
            "Role deleted",
            extra={"tenant_id": str(tenant_id), "role_id": str(role_id)},
        )
        return role

    def assign_permissions(
        self, tenant_id: UUID, role_id: UUID, permissions: Sequence[PermissionRef]
    ) -> Role:
        """Make the role's permission set exactly ``permissions``."""
        role = self._mutable_role(tenant_id, role_id)
        resolved = self.resolve_permissions(permissions)
        role = self.store.replace_role_permissions(
            role.id, [p.id for p in resolved], sorted(p.key for p in resolved)
        )
        logger.info(
            "Role permissions replaced",
            extra={
                "tenant_id": str(tenant_id),
                "role_id": str(role_id),
                "permission_count": len(resolved),
            },
        )
        return role

    def _check_reserved(self, name: str) -> None:
        """Tenant roles may not take the name of a system role."""
        if self.store.get_role_by_name(None, name.strip()) is not None:
            raise RoleExistsError(
                "Role name is reserved for a system role", details={"name": name}
            )

    def _mutable_role(self, tenant_id: UUID, role_id: UUID) -> Role:
        role = self.get_role(tenant_id, role_id)
        if role.is_system:
            raise SystemRoleImmutableError(details={"role_id": str(role_id)})
        return role

    #       User Snapshots
    # ------------------------------
    def snapshot_for(self, user: User) -> PermissionSnapshot:
        """Derive the user's permissions from live role state."""
        role = self.store.get_role(user.role_id)
        if role is None or (role.tenant_id is not None and role.tenant_id != user.tenant_id):
            logger.warning(
                "User has no valid role; granting nothing",
                extra={"user_id": str(user.id), "role_id": str(user.role_id)},
            )
            return PermissionSnapshot.build(role_name="", permissions=())
        keys = [p.key for p in self.role_permissions(role)]
        return PermissionSnapshot.build(
            role_name=role.name,
            permissions=keys,
            role_id=role.id,
            system_role=role.is_system and role.tenant_id is None,
        )

    def assign_user_role(self, user: User, role: Role) -> User:
        """Give the user a role of its own tenant and refresh the snapshot."""
        if role.tenant_id is not None and role.tenant_id != user.tenant_id:
            raise RoleNotFoundError(details={"role_id": str(role.id)})
        user.role_id = role.id
        user.permissions = sorted(p.key for p in self.role_permissions(role))
        return user
