"""
Seeder module to populate initial data into the store.
Reads RBAC config and creates the permission catalog and system roles.
"""

import logging
from typing import Dict

from vms_auth.exceptions import SeederError, VMSError
from vms_auth.models import Permission, Role
from vms_auth.services.database import AuthStore
from vms_auth.services.rbac import parse_permission

logger = logging.getLogger(__name__)


def seed_initial_data(store: AuthStore = None, rbac_config: Dict = None) -> None:
    """Seed the store with the permission catalog and system roles."""
    if store is None:
        raise SeederError("Store instance is required")

    rbac_config = rbac_config or {}

    #    Seed Permission Catalog
    # -------------------------------
    for entry in rbac_config.get("permissions", []):
        try:
            store.upsert_permission(
                Permission(
                    resource=entry["resource"],
                    action=entry["action"],
                    name=entry.get("name", ""),
                    description=entry.get("description"),
                )
            )
        except (KeyError, VMSError) as e:
            raise SeederError(f"Failed to seed permission {entry!r}: {e}") from e

    catalog = {p.key: p for p in store.list_permissions()}

    #    Seed System Roles
    # -------------------------------
    # System roles cannot be edited through the API, so the config is their
    # source of truth and their permission sets are re-applied on every run.
    for role_name, role_cfg in rbac_config.get("system_roles", {}).items():
        wanted = role_cfg.get("permissions", [])
        if "*" in wanted:
            keys = sorted(catalog)
        else:
            keys = []
            for key in wanted:
                pair = parse_permission(key)
                if pair is None or key not in catalog:
                    raise SeederError(
                        f"Unknown permission '{key}' for system role '{role_name}'"
                    )
                keys.append(key)

        role = store.get_role_by_name(None, role_name)
        if role is None:
            role = store.add_role(
                Role(
                    tenant_id=None,
                    name=role_name,
                    description=role_cfg.get("description"),
                    is_system=True,
                )
            )
        store.replace_role_permissions(role.id, [catalog[k].id for k in keys], keys)

    logger.info(
        "Seeded permission catalog and system roles",
        extra={
            "permissions": len(catalog),
            "system_roles": len(rbac_config.get("system_roles", {})),
        },
    )
