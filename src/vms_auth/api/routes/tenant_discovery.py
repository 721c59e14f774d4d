from fastapi import APIRouter, Query

from vms_auth.api.dependencies import ResolverDep
from vms_auth.api.schemas import TenantDiscoveryResponse

router = APIRouter()


@router.get("/config", response_model=TenantDiscoveryResponse)
async def discover_tenant(
    resolver: ResolverDep,
    identifier: str = Query(
        ..., min_length=1, description="Tenant id, user email or corporate domain"
    ),
):
    """
    Tell a login screen which sign-in options a tenant offers.

    Only public provider settings are returned; JWKS locations stay private.
    """
    return TenantDiscoveryResponse(**resolver.resolve(identifier).discovery_view())
