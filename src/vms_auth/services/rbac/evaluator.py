"""
Permission evaluation over a role/permission snapshot.

Permissions are ``resource:action`` strings. The seeded super_admin system
role bypasses evaluation entirely; a tenant role that merely shares the name
does not. Every other decision fails closed.
"""

from datetime import datetime
from typing import FrozenSet, Iterable, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from vms_auth.models import SystemRole, utcnow


SUPER_ADMIN_ROLE = SystemRole.SUPER_ADMIN.value


def parse_permission(permission: str) -> Optional[Tuple[str, str]]:
    """Split ``resource:action``; None when the string is malformed."""
    if not isinstance(permission, str):
        return None
    resource, sep, action = permission.strip().partition(":")
    if not sep or not resource or not action or ":" in action:
        return None
    return resource, action


class PermissionSnapshot(BaseModel):
    """A user's role and granted permissions as of ``taken_at``."""

    model_config = ConfigDict(frozen=True)

    role_id: Optional[UUID] = None
    role_name: str
    # True only for the global roles seeded from configuration
    system_role: bool = False
    permissions: FrozenSet[str] = frozenset()
    taken_at: datetime

    @property
    def is_super_admin(self) -> bool:
        return self.system_role and self.role_name == SUPER_ADMIN_ROLE

    @classmethod
    def build(
        cls,
        role_name: str,
        permissions: Iterable[str],
        role_id: Optional[UUID] = None,
        taken_at: Optional[datetime] = None,
        system_role: bool = False,
    ) -> "PermissionSnapshot":
        return cls(
            role_id=role_id,
            role_name=role_name,
            system_role=system_role,
            permissions=frozenset(permissions),
            taken_at=taken_at or utcnow(),
        )


class PermissionEvaluator:
    """Stateless permission predicates."""

    def evaluate(self, snapshot: Optional[PermissionSnapshot], permission: str) -> bool:
        if snapshot is None:
            return False
        if snapshot.is_super_admin:
            return True

        pair = parse_permission(permission)
        if pair is None or not snapshot.permissions:
            return False
        return f"{pair[0]}:{pair[1]}" in snapshot.permissions

    def evaluate_any(
        self, snapshot: Optional[PermissionSnapshot], permissions: Iterable[str]
    ) -> bool:
        return any(self.evaluate(snapshot, p) for p in permissions)
