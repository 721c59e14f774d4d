"""
Application factory for the VMS auth API.

Run with:
    uvicorn vms_auth.api.app:create_application --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from vms_auth.config import AppSettings, get_settings

from .dependencies import AppState
from .exception_handlers import register_exception_handlers
from .routes import api_router, health_router_root

logger = logging.getLogger(__name__)


def create_application(
    settings: Optional[AppSettings] = None, state: Optional[AppState] = None
) -> FastAPI:
    """
    Build the FastAPI app.

    ``state`` may be pre-configured (tests hand in their own store and HTTP
    client); otherwise it is built from ``settings`` at startup.
    """
    settings = settings or get_settings()
    state = state or AppState()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await state.initialize(settings)
        audit_status = "enabled" if settings.audit.enabled else "disabled"
        logger.info(
            "VMS auth API started",
            extra={
                "environment": settings.environment,
                "storage": settings.storage.backend,
                "audit": audit_status,
            },
        )
        yield
        await state.shutdown()
        logger.info("VMS auth API shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.container = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allow_origins,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=settings.cors.allow_methods,
        allow_headers=settings.cors.allow_headers,
    )

    @app.middleware("http")
    async def assign_request_id(request: Request, call_next):
        request.state.request_id = request.headers.get("X-Request-ID") or str(uuid4())
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response

    register_exception_handlers(app)
    app.include_router(health_router_root)
    app.include_router(api_router)
    return app
