from fastapi import APIRouter

from .admin_users import router as admin_users_router
from .auth import router as auth_router
from .health import router as health_router
from .identity_providers import router as identity_providers_router
from .mfa import router as mfa_router
from .roles import router as roles_router
from .tenant_discovery import router as tenant_discovery_router

health_router_root = health_router

api_router = APIRouter(prefix="/api")

api_router.include_router(auth_router, prefix="/auth", tags=["Auth"])
api_router.include_router(mfa_router, prefix="/auth/mfa", tags=["MFA"])
api_router.include_router(
    tenant_discovery_router, prefix="/tenant-discovery", tags=["Tenant Discovery"]
)
api_router.include_router(
    identity_providers_router, prefix="/identity-providers", tags=["Identity Providers"]
)
api_router.include_router(roles_router, prefix="/roles", tags=["Roles"])
api_router.include_router(admin_users_router, prefix="/admin/users", tags=["Admin"])

__all__ = ["api_router", "health_router_root"]
