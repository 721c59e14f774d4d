"""
Tenant administration of external identity providers.

All routes act on the caller's own tenant.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status

from vms_auth.api.dependencies import (
    AuditServiceDep,
    CurrentSessionDep,
    RegistryDep,
    RequestContextDep,
)
from vms_auth.api.permissions import require_permission
from vms_auth.api.schemas import (
    ProviderCreateRequest,
    ProviderResponse,
    ProviderUpdateRequest,
)
from vms_auth.services.audit import Action, ResourceType, record_change

router = APIRouter()

CanRead = Depends(require_permission("identity_providers:read"))
CanManage = Depends(require_permission("identity_providers:manage"))


@router.get("", response_model=List[ProviderResponse], dependencies=[CanRead])
async def list_providers(session: CurrentSessionDep, registry: RegistryDep):
    return [
        ProviderResponse.from_provider(p) for p in registry.list(session.user.tenant_id)
    ]


@router.get("/{provider_id}", response_model=ProviderResponse, dependencies=[CanRead])
async def get_provider(
    provider_id: UUID, session: CurrentSessionDep, registry: RegistryDep
):
    return ProviderResponse.from_provider(
        registry.get(session.user.tenant_id, provider_id)
    )


@router.post(
    "",
    response_model=ProviderResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[CanManage],
)
async def create_provider(
    body: ProviderCreateRequest,
    session: CurrentSessionDep,
    registry: RegistryDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    """Register a provider. It starts inactive."""
    provider = registry.create(session.user.tenant_id, body.provider_type, body.config)
    await record_change(
        audit,
        session.user,
        Action.CREATE,
        ResourceType.IDENTITY_PROVIDER,
        context.to_dict(),
        resource_id=provider.id,
        resource_name=provider.provider_type.value,
    )
    return ProviderResponse.from_provider(provider)


@router.put("/{provider_id}", response_model=ProviderResponse, dependencies=[CanManage])
async def update_provider(
    provider_id: UUID,
    body: ProviderUpdateRequest,
    session: CurrentSessionDep,
    registry: RegistryDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    provider = registry.update(session.user.tenant_id, provider_id, body.config)
    await record_change(
        audit,
        session.user,
        Action.UPDATE,
        ResourceType.IDENTITY_PROVIDER,
        context.to_dict(),
        resource_id=provider.id,
        resource_name=provider.provider_type.value,
        changes={"fields": sorted(body.config)},
    )
    return ProviderResponse.from_provider(provider)


@router.delete("/{provider_id}", response_model=ProviderResponse, dependencies=[CanManage])
async def delete_provider(
    provider_id: UUID,
    session: CurrentSessionDep,
    registry: RegistryDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    provider = registry.delete(session.user.tenant_id, provider_id)
    await record_change(
        audit,
        session.user,
        Action.DELETE,
        ResourceType.IDENTITY_PROVIDER,
        context.to_dict(),
        resource_id=provider.id,
        resource_name=provider.provider_type.value,
    )
    return ProviderResponse.from_provider(provider)


async def _toggle(
    active: bool, provider_id: UUID, session, registry, audit, context
) -> ProviderResponse:
    tenant_id = session.user.tenant_id
    provider = (
        registry.activate(tenant_id, provider_id)
        if active
        else registry.deactivate(tenant_id, provider_id)
    )
    await record_change(
        audit,
        session.user,
        Action.UPDATE,
        ResourceType.IDENTITY_PROVIDER,
        context.to_dict(),
        resource_id=provider.id,
        resource_name=provider.provider_type.value,
        changes={"is_active": active},
    )
    return ProviderResponse.from_provider(provider)


@router.post(
    "/{provider_id}/activate", response_model=ProviderResponse, dependencies=[CanManage]
)
async def activate_provider(
    provider_id: UUID,
    session: CurrentSessionDep,
    registry: RegistryDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    return await _toggle(True, provider_id, session, registry, audit, context)


@router.post(
    "/{provider_id}/deactivate", response_model=ProviderResponse, dependencies=[CanManage]
)
async def deactivate_provider(
    provider_id: UUID,
    session: CurrentSessionDep,
    registry: RegistryDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    """New external logins fail; sessions already issued run to expiry."""
    return await _toggle(False, provider_id, session, registry, audit, context)
