from .config import (
    AppSettings,
    DatabaseSettings,
    StorageSettings,
    SecuritySettings,
    JWKSSettings,
    MFASettings,
    AuditSettings,
    RBACSettings,
    CORSSettings,
    get_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "StorageSettings",
    "SecuritySettings",
    "JWKSSettings",
    "MFASettings",
    "AuditSettings",
    "RBACSettings",
    "CORSSettings",
    "get_settings",
]
