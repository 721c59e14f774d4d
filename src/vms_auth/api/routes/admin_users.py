from uuid import UUID

from fastapi import APIRouter, Depends

from vms_auth.api.dependencies import (
    AuditServiceDep,
    CurrentSessionDep,
    RequestContextDep,
    SessionIssuerDep,
)
from vms_auth.api.permissions import require_permission
from vms_auth.api.schemas import AdminUserResponse, UserRoleRequest
from vms_auth.services.audit import Action, ResourceType, record_change

router = APIRouter(dependencies=[Depends(require_permission("users:update"))])


@router.post("/{user_id}/deactivate", response_model=AdminUserResponse)
async def deactivate_user(
    user_id: UUID,
    session: CurrentSessionDep,
    issuer: SessionIssuerDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    """Takes effect on the user's very next request."""
    user = issuer.deactivate_user(session.user.tenant_id, user_id)
    await record_change(
        audit,
        session.user,
        Action.UPDATE,
        ResourceType.USER,
        context.to_dict(),
        resource_id=user.id,
        resource_name=user.email,
        changes={"is_active": False},
    )
    return AdminUserResponse.from_user(user)


@router.put("/{user_id}/role", response_model=AdminUserResponse)
async def change_user_role(
    user_id: UUID,
    body: UserRoleRequest,
    session: CurrentSessionDep,
    issuer: SessionIssuerDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    user = issuer.change_user_role(session.user.tenant_id, user_id, body.role_id)
    await record_change(
        audit,
        session.user,
        Action.UPDATE,
        ResourceType.USER,
        context.to_dict(),
        resource_id=user.id,
        resource_name=user.email,
        changes={"role_id": str(body.role_id)},
    )
    return AdminUserResponse.from_user(user)
