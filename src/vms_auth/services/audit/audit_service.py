"""
Audit trail for authentication events and administrative changes.

Rows go to ``audit_logs``; login related events get a companion row in
``auth_audit``. Secrets, tokens and TOTP codes are never recorded.

The recorders never fail the request they describe: a write error is logged
and dropped.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

import asyncpg
from fastapi import Request

from .schemas import (
    Action,
    AuditLogEntry,
    AuthAuditEntry,
    EventCategory,
    EventOutcome,
    ResourceType,
)

logger = logging.getLogger(__name__)


class IAuditService(Protocol):
    """Interface for audit service - enables easy mocking."""

    async def log(self, entry: AuditLogEntry) -> Optional[UUID]: ...

    async def log_auth(self, log_id: Optional[UUID], entry: AuthAuditEntry) -> None: ...


class AuditService:
    """
    Central audit logging service.
    Safe for concurrent use; every write borrows its own pool connection.
    """

    def __init__(self, db_pool: asyncpg.Pool, retention_years: int = 7):
        self.db_pool = db_pool
        self.retention_years = retention_years

    # ----------------------------------------
    # MAIN AUDIT LOG
    # ----------------------------------------

    async def log(self, entry: AuditLogEntry) -> UUID:
        query = """
            INSERT INTO audit_logs (
                tenant_id, user_id, user_email, ip_address, user_agent,
                event_category, event_type, action, outcome,
                resource_type, resource_id, resource_name, role_name,
                changes, error_code, error_message, metadata, retention_years
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10,
                $11, $12, $13, $14, $15, $16, $17, $18
            ) RETURNING log_id
        """

        async with self.db_pool.acquire() as conn:
            log_id = await conn.fetchval(
                query,
                entry.tenant_id,
                entry.user_id,
                entry.user_email,
                entry.ip_address,
                entry.user_agent,
                entry.event_category.value,
                entry.event_type,
                entry.action.value,
                entry.outcome.value,
                entry.resource_type.value if entry.resource_type else None,
                entry.resource_id,
                entry.resource_name,
                entry.role_name,
                json.dumps(entry.changes, default=str) if entry.changes else None,
                entry.error_code,
                entry.error_message,
                json.dumps(entry.metadata, default=str) if entry.metadata else None,
                self.retention_years,
            )

        return log_id

    # ----------------------------------------
    # AUTH AUDIT
    # ----------------------------------------

    async def log_auth(self, main_log_id: UUID, entry: AuthAuditEntry) -> UUID:
        query = """
            INSERT INTO auth_audit (
                log_id, tenant_id, user_id, email, auth_method, event_type,
                ip_address, user_agent, mfa_used, failure_code, metadata
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11
            ) RETURNING auth_id
        """

        async with self.db_pool.acquire() as conn:
            auth_id = await conn.fetchval(
                query,
                main_log_id,
                entry.tenant_id,
                entry.user_id,
                entry.email,
                entry.auth_method,
                entry.event_type,
                entry.ip_address,
                entry.user_agent,
                entry.mfa_used,
                entry.failure_code,
                json.dumps(entry.metadata, default=str) if entry.metadata else None,
            )

        return auth_id


class MockAuditService:
    """No-op audit service for when logging is disabled. Keeps entries for tests."""

    def __init__(self):
        self.entries: List[AuditLogEntry] = []
        self.auth_entries: List[AuthAuditEntry] = []

    async def log(self, entry: AuditLogEntry) -> Optional[UUID]:
        self.entries.append(entry)
        return None

    async def log_auth(self, log_id: Optional[UUID], entry: AuthAuditEntry) -> None:
        self.auth_entries.append(entry)


# ============================================
# CONVENIENCE RECORDERS
# ============================================


async def record_login(
    audit: IAuditService,
    auth_method: str,
    outcome: EventOutcome,
    client: Dict[str, Optional[str]],
    email: Optional[str] = None,
    tenant_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
) -> None:
    """Write a login attempt to both the main and the auth audit tables."""
    event_type = event_type or (
        "login_success" if outcome == EventOutcome.SUCCESS else "login_failure"
    )
    try:
        log_id = await audit.log(
            AuditLogEntry(
                tenant_id=tenant_id,
                user_id=user_id,
                user_email=email,
                ip_address=client.get("ip_address"),
                user_agent=client.get("user_agent"),
                event_category=EventCategory.AUTHENTICATION,
                event_type=event_type,
                action=Action.LOGIN,
                outcome=outcome,
                error_code=error_code,
            )
        )
        await audit.log_auth(
            log_id,
            AuthAuditEntry(
                tenant_id=tenant_id,
                user_id=user_id,
                email=email,
                auth_method=auth_method,
                event_type=event_type,
                ip_address=client.get("ip_address"),
                user_agent=client.get("user_agent"),
                mfa_used=auth_method == "mfa",
                failure_code=error_code,
            ),
        )
    except Exception:
        logger.exception(
            "Failed to write login audit entry",
            extra={"event_type": event_type, "auth_method": auth_method},
        )


async def record_change(
    audit: IAuditService,
    actor,
    action: Action,
    resource_type: ResourceType,
    client: Dict[str, Optional[str]],
    resource_id: Optional[UUID] = None,
    resource_name: Optional[str] = None,
    changes: Optional[Dict[str, Any]] = None,
    category: EventCategory = EventCategory.ADMIN,
) -> None:
    """Record a change made by ``actor`` (a ``User``)."""
    event_type = f"{resource_type.value}_{action.value.lower()}"
    try:
        await audit.log(
            AuditLogEntry(
                tenant_id=actor.tenant_id,
                user_id=actor.id,
                user_email=actor.email,
                ip_address=client.get("ip_address"),
                user_agent=client.get("user_agent"),
                event_category=category,
                event_type=event_type,
                action=action,
                outcome=EventOutcome.SUCCESS,
                resource_type=resource_type,
                resource_id=resource_id,
                resource_name=resource_name,
                changes=changes,
            )
        )
    except Exception:
        logger.exception(
            "Failed to write audit entry",
            extra={"event_type": event_type, "resource_id": str(resource_id)},
        )


# ============================================
# HELPER FUNCTIONS
# ============================================


def extract_client_info(request: Request) -> Dict[str, Optional[str]]:
    """Extract client information from FastAPI request"""
    forwarded = request.headers.get("x-forwarded-for")
    return {
        "ip_address": (
            forwarded.split(",")[0].strip()
            if forwarded
            else (request.client.host if request.client else None)
        ),
        "user_agent": request.headers.get("user-agent"),
    }
