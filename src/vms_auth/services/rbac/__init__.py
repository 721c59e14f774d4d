from .evaluator import (
    SUPER_ADMIN_ROLE,
    PermissionEvaluator,
    PermissionSnapshot,
    parse_permission,
)
from .role_store import RoleStore

__all__ = [
    "SUPER_ADMIN_ROLE",
    "PermissionEvaluator",
    "PermissionSnapshot",
    "parse_permission",
    "RoleStore",
]
