from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel


class EventCategory(str, Enum):
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    ADMIN = "admin"
    SYSTEM = "system"


class EventOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class Action(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"


class ResourceType(str, Enum):
    USER = "user"
    ROLE = "role"
    ROLE_PERMISSIONS = "role_permissions"
    IDENTITY_PROVIDER = "identity_provider"
    SESSION = "session"
    MFA = "mfa"


class AuditLogEntry(BaseModel):
    """Main audit log entry model"""

    # Actor information
    tenant_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    user_email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    # Event classification
    event_category: EventCategory
    event_type: str
    action: Action
    outcome: EventOutcome

    # Resource information
    resource_type: Optional[ResourceType] = None
    resource_id: Optional[UUID] = None
    resource_name: Optional[str] = None
    role_name: Optional[str] = None

    # Change tracking
    changes: Optional[Dict[str, Any]] = None

    error_code: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AuthAuditEntry(BaseModel):
    """Authentication-specific audit entry"""

    tenant_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    email: Optional[str] = None
    # password | mfa | azure_ad | okta | auth0 | aws_cognito
    auth_method: str
    event_type: str

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    mfa_used: bool = False
    failure_code: Optional[str] = None

    metadata: Optional[Dict[str, Any]] = None
