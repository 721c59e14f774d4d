"""
Tenant role management and the permission catalog.

System roles are listed alongside the tenant's own roles but cannot be
changed through these routes.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status

from vms_auth.api.dependencies import (
    AuditServiceDep,
    CurrentSessionDep,
    RequestContextDep,
    RoleStoreDep,
)
from vms_auth.api.permissions import require_permission
from vms_auth.api.schemas import (
    PermissionResponse,
    RoleCreateRequest,
    RolePermissionsRequest,
    RoleResponse,
    RoleUpdateRequest,
)
from vms_auth.services.audit import Action, ResourceType, record_change

router = APIRouter()

CanRead = Depends(require_permission("roles:read"))


def _response(roles, role) -> RoleResponse:
    return RoleResponse.from_role(role, roles.role_permissions(role))


@router.get("", response_model=List[RoleResponse], dependencies=[CanRead])
async def list_roles(session: CurrentSessionDep, roles: RoleStoreDep):
    return [_response(roles, r) for r in roles.list_roles(session.user.tenant_id)]


# Declared before /{role_id} so "permissions" is not parsed as an id
@router.get(
    "/permissions/all", response_model=List[PermissionResponse], dependencies=[CanRead]
)
async def permission_catalog(roles: RoleStoreDep):
    return [PermissionResponse.from_permission(p) for p in roles.list_permissions()]


@router.get("/{role_id}", response_model=RoleResponse, dependencies=[CanRead])
async def get_role(role_id: UUID, session: CurrentSessionDep, roles: RoleStoreDep):
    return _response(roles, roles.get_role(session.user.tenant_id, role_id))


@router.post(
    "",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission("roles:create"))],
)
async def create_role(
    body: RoleCreateRequest,
    session: CurrentSessionDep,
    roles: RoleStoreDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    role = roles.create_role(
        session.user.tenant_id, body.name, body.description, body.permissions
    )
    await record_change(
        audit,
        session.user,
        Action.CREATE,
        ResourceType.ROLE,
        context.to_dict(),
        resource_id=role.id,
        resource_name=role.name,
        changes={"permissions": body.permissions},
    )
    return _response(roles, role)


@router.put(
    "/{role_id}",
    response_model=RoleResponse,
    dependencies=[Depends(require_permission("roles:update"))],
)
async def update_role(
    role_id: UUID,
    body: RoleUpdateRequest,
    session: CurrentSessionDep,
    roles: RoleStoreDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    role = roles.update_role(session.user.tenant_id, role_id, body.name, body.description)
    await record_change(
        audit,
        session.user,
        Action.UPDATE,
        ResourceType.ROLE,
        context.to_dict(),
        resource_id=role.id,
        resource_name=role.name,
        changes=body.model_dump(exclude_none=True),
    )
    return _response(roles, role)


@router.delete(
    "/{role_id}",
    response_model=RoleResponse,
    dependencies=[Depends(require_permission("roles:delete"))],
)
async def delete_role(
    role_id: UUID,
    session: CurrentSessionDep,
    roles: RoleStoreDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    """Fails with ROLE_IN_USE while any user still holds the role."""
    role = roles.delete_role(session.user.tenant_id, role_id)
    await record_change(
        audit,
        session.user,
        Action.DELETE,
        ResourceType.ROLE,
        context.to_dict(),
        resource_id=role.id,
        resource_name=role.name,
    )
    return RoleResponse.from_role(role, [])


@router.get(
    "/{role_id}/permissions",
    response_model=List[PermissionResponse],
    dependencies=[CanRead],
)
async def get_role_permissions(
    role_id: UUID, session: CurrentSessionDep, roles: RoleStoreDep
):
    role = roles.get_role(session.user.tenant_id, role_id)
    return [PermissionResponse.from_permission(p) for p in roles.role_permissions(role)]


@router.post(
    "/{role_id}/permissions",
    response_model=RoleResponse,
    dependencies=[Depends(require_permission("roles:update"))],
)
async def assign_role_permissions(
    role_id: UUID,
    body: RolePermissionsRequest,
    session: CurrentSessionDep,
    roles: RoleStoreDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    """Replace the role's permissions with exactly the given set."""
    role = roles.assign_permissions(session.user.tenant_id, role_id, body.permissions)
    await record_change(
        audit,
        session.user,
        Action.UPDATE,
        ResourceType.ROLE_PERMISSIONS,
        context.to_dict(),
        resource_id=role.id,
        resource_name=role.name,
        changes={"permissions": body.permissions},
    )
    return _response(roles, role)
