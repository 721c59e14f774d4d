"""
This module defines the dependency injection system for the VMS auth API
using FastAPI.

Every service lives on an ``AppState`` attached to the application, so
tests can build one around their own store and HTTP client.
"""

import logging
from typing import Annotated, Optional

import httpx
from fastapi import Depends, Request

from vms_auth.config import AppSettings, get_settings
from vms_auth.core import seed_initial_data
from vms_auth.exceptions import ConfigurationError, NotAuthenticatedError
from vms_auth.services.audit import (
    AuditDatabaseManager,
    AuditService,
    IAuditService,
    MockAuditService,
    extract_client_info,
)
from vms_auth.services.auth import AuthenticatedSession, MFAService, SessionIssuer
from vms_auth.services.database import AuthStore, DatabaseManager, InMemoryStore
from vms_auth.services.identity import IdentityProviderRegistry
from vms_auth.services.rbac import RoleStore
from vms_auth.services.tenancy import TenantStrategyResolver
from vms_auth.services.tokens import ExternalTokenVerifier, JWKSCache

logger = logging.getLogger(__name__)


# Application State Management
# ----------------------------


class AppState:
    """
    Centralized application state container.

    Owns the store, the JWKS cache and its HTTP client, and every service
    built on top of them.
    """

    def __init__(self):
        self.settings: Optional[AppSettings] = None
        self.store: Optional[AuthStore] = None
        self.db: Optional[DatabaseManager] = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.jwks_cache: Optional[JWKSCache] = None
        self.role_store: Optional[RoleStore] = None
        self.registry: Optional[IdentityProviderRegistry] = None
        self.verifier: Optional[ExternalTokenVerifier] = None
        self.resolver: Optional[TenantStrategyResolver] = None
        self.session_issuer: Optional[SessionIssuer] = None
        self.audit_service: Optional[IAuditService] = None
        self.audit_db: Optional[AuditDatabaseManager] = None
        self._owns_http_client: bool = False
        self._initialized: bool = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def configure(
        self,
        settings: AppSettings,
        store: Optional[AuthStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "AppState":
        """Build every service. Seeds the permission catalog and system roles."""
        self.settings = settings

        if store is None:
            if settings.storage.backend == "postgres":
                self.db = DatabaseManager(
                    settings.database.dsn,
                    min_pool_size=settings.database.min_pool_size,
                    max_pool_size=settings.database.max_pool_size,
                )
                store = self.db
            else:
                store = InMemoryStore()
        self.store = store
        seed_initial_data(store, settings.rbac.as_dict)

        if http_client is None:
            http_client = httpx.AsyncClient(timeout=settings.jwks.fetch_timeout_seconds)
            self._owns_http_client = True
        self.http_client = http_client

        self.jwks_cache = JWKSCache(
            http_client,
            ttl_seconds=settings.jwks.cache_ttl_seconds,
            timeout_seconds=settings.jwks.fetch_timeout_seconds,
            failure_backoff_seconds=settings.jwks.failure_backoff_seconds,
        )
        self.role_store = RoleStore(store)
        self.registry = IdentityProviderRegistry(store, self.jwks_cache)
        self.verifier = ExternalTokenVerifier(
            self.registry,
            self.jwks_cache,
            clock_skew_seconds=settings.jwks.clock_skew_seconds,
        )
        self.resolver = TenantStrategyResolver(store, self.registry)
        self.session_issuer = SessionIssuer(
            store=store,
            roles=self.role_store,
            resolver=self.resolver,
            verifier=self.verifier,
            mfa=MFAService(settings.mfa.issuer_name, settings.mfa.valid_window),
            settings=settings,
        )
        if self.audit_service is None:
            self.audit_service = MockAuditService()

        self._initialized = True
        return self

    async def initialize(self, settings: AppSettings) -> None:
        """Initialize all application components."""
        if self._initialized:
            return

        if settings.audit.enabled:
            self.audit_db = AuditDatabaseManager(
                database_url=settings.database.dsn,
                min_pool_size=settings.database.min_pool_size,
                max_pool_size=settings.database.max_pool_size,
            )
            await self.audit_db.initialize()
            self.audit_service = AuditService(
                self.audit_db.pool, retention_years=settings.audit.retention_years
            )

        self.configure(settings)

    async def shutdown(self) -> None:
        """Clean up all resources."""
        if self.http_client is not None and self._owns_http_client:
            await self.http_client.aclose()
            self.http_client = None
            self._owns_http_client = False

        if self.audit_db:
            await self.audit_db.close()
            self.audit_db = None

        if self.db:
            self.db.close()
            self.db = None

        self._initialized = False


def get_app_state(request: Request) -> AppState:
    state = getattr(request.app.state, "container", None)
    if state is None or not state.is_initialized:
        raise ConfigurationError("Application state not initialized")
    return state


AppStateDep = Annotated[AppState, Depends(get_app_state)]


#       DEPENDENCY PROVIDERS
# ------------------------------------


def get_settings_dep(state: AppStateDep) -> AppSettings:
    """Dependency for settings - allows override in tests."""
    return state.settings or get_settings()


SettingsDep = Annotated[AppSettings, Depends(get_settings_dep)]


def get_store(state: AppStateDep) -> AuthStore:
    return state.store


StoreDep = Annotated[AuthStore, Depends(get_store)]


def get_role_store(state: AppStateDep) -> RoleStore:
    return state.role_store


RoleStoreDep = Annotated[RoleStore, Depends(get_role_store)]


def get_registry(state: AppStateDep) -> IdentityProviderRegistry:
    return state.registry


RegistryDep = Annotated[IdentityProviderRegistry, Depends(get_registry)]


def get_resolver(state: AppStateDep) -> TenantStrategyResolver:
    return state.resolver


ResolverDep = Annotated[TenantStrategyResolver, Depends(get_resolver)]


def get_session_issuer(state: AppStateDep) -> SessionIssuer:
    return state.session_issuer


SessionIssuerDep = Annotated[SessionIssuer, Depends(get_session_issuer)]


def get_audit_service(state: AppStateDep) -> IAuditService:
    """Dependency for audit service."""
    if not state.audit_service:
        return MockAuditService()
    return state.audit_service


AuditServiceDep = Annotated[IAuditService, Depends(get_audit_service)]


#       REQUEST CONTEXT
# ------------------------------------


class RequestContext:
    """Request-scoped client details used for audit records."""

    def __init__(self, request: Request):
        self.request = request
        self._client = extract_client_info(request)

    @property
    def client_ip(self) -> Optional[str]:
        return self._client["ip_address"]

    @property
    def user_agent(self) -> Optional[str]:
        return self._client["user_agent"]

    @property
    def request_id(self) -> Optional[str]:
        return getattr(self.request.state, "request_id", None)

    def to_dict(self) -> dict:
        return dict(self._client)


async def get_request_context(request: Request) -> RequestContext:
    return RequestContext(request=request)


RequestContextDep = Annotated[RequestContext, Depends(get_request_context)]


#       AUTHENTICATION
# ------------------------------------


def extract_token(request: Request) -> Optional[str]:
    # Priority 1: Authorization header
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None

    # Priority 2: cookie
    return request.cookies.get("access_token")


async def get_current_session(
    request: Request, issuer: SessionIssuerDep
) -> AuthenticatedSession:
    """Authenticate the caller. Runs on every protected request."""
    token = extract_token(request)
    if not token:
        raise NotAuthenticatedError()
    return issuer.authenticate(token)


CurrentSessionDep = Annotated[AuthenticatedSession, Depends(get_current_session)]
