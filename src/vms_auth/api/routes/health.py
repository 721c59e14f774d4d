from datetime import datetime, timezone

from fastapi import APIRouter, Request

from vms_auth.api.schemas import DetailedHealthResponse, HealthResponse
from vms_auth.config import get_settings


router = APIRouter(tags=["Health"])


def _state(request: Request):
    return getattr(request.app.state, "container", None)


def _settings(request: Request):
    state = _state(request)
    return state.settings if state is not None and state.settings else get_settings()


@router.get("/")
async def root():
    return {"message": "Welcome to the VMS Auth API"}


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    settings = _settings(request)
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
        audit_enabled=settings.audit.enabled,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/health/ready", response_model=DetailedHealthResponse)
async def readiness_check(request: Request):
    settings = _settings(request)
    state = _state(request)
    components = {}

    store_ready = state is not None and state.store is not None
    components["store"] = {
        "status": "healthy" if store_ready else "unhealthy",
        "backend": settings.storage.backend,
    }

    issuer_ready = state is not None and state.session_issuer is not None
    components["auth"] = {
        "status": "healthy" if issuer_ready else "unhealthy",
        "initialized": issuer_ready,
    }

    cached = 0
    if state is not None and state.jwks_cache is not None:
        cached = len(state.jwks_cache.cached_uris())
    components["jwks_cache"] = {
        "status": "healthy" if issuer_ready else "unhealthy",
        "cached_key_sets": cached,
    }

    audit_ready = state is not None and state.audit_service is not None
    components["audit"] = {
        "status": "healthy" if audit_ready else "unhealthy",
        "enabled": settings.audit.enabled,
    }

    all_healthy = all(c["status"] == "healthy" for c in components.values())

    return DetailedHealthResponse(
        status="healthy" if all_healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        audit_enabled=settings.audit.enabled,
        timestamp=datetime.now(timezone.utc),
        components=components,
    )


@router.get("/health/live")
async def liveness_check():
    return {"status": "alive"}
