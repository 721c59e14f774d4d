from .audit_database import AuditDatabaseManager
from .audit_service import (
    AuditService,
    IAuditService,
    MockAuditService,
    extract_client_info,
    record_change,
    record_login,
)
from .schemas import (
    Action,
    AuditLogEntry,
    AuthAuditEntry,
    EventCategory,
    EventOutcome,
    ResourceType,
)

__all__ = [
    "AuditDatabaseManager",
    "AuditService",
    "IAuditService",
    "MockAuditService",
    "extract_client_info",
    "record_change",
    "record_login",
    "Action",
    "AuditLogEntry",
    "AuthAuditEntry",
    "EventCategory",
    "EventOutcome",
    "ResourceType",
]
