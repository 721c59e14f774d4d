from .config import AppSettings, get_settings
from .exceptions import VMSError
from .models import AuthStrategy, ProviderType, SystemRole
from .services.auth import SessionIssuer
from .services.database import AuthStore, DatabaseManager, InMemoryStore
from .services.identity import IdentityProviderRegistry
from .services.rbac import PermissionEvaluator, PermissionSnapshot, RoleStore
from .services.tenancy import TenantStrategyResolver
from .services.tokens import ExternalTokenVerifier, JWKSCache

__all__ = [
    "AppSettings",
    "get_settings",
    "VMSError",
    "AuthStrategy",
    "ProviderType",
    "SystemRole",
    "SessionIssuer",
    "AuthStore",
    "DatabaseManager",
    "InMemoryStore",
    "IdentityProviderRegistry",
    "PermissionEvaluator",
    "PermissionSnapshot",
    "RoleStore",
    "TenantStrategyResolver",
    "ExternalTokenVerifier",
    "JWKSCache",
]
