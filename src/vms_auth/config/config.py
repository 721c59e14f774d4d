"""
Centralized Configuration Management using Pydantic Settings.

This module implements a hybrid configuration approach:
- Business logic configs (permission catalog, system roles) → JSON file
- Environment-specific secrets (DB credentials, signing key) → .env file
"""

import json
import logging
from os import path as os_path
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEV_SECRET_KEY = "change-me-in-production-32-chars"


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    database: str = Field(alias="POSTGRES_DB", default="vms")
    user: str = "postgres"
    password: str = ""
    min_pool_size: int = Field(default=2, ge=1, le=20)
    max_pool_size: int = Field(default=10, ge=2, le=100)

    @property
    def dsn(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


class StorageSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    backend: str = Field(default="memory", pattern="^(memory|postgres)$")


class SecuritySettings(BaseSettings):
    model_config = SettingsConfigDict(populate_by_name=True)

    secret_key: str = Field(default=DEV_SECRET_KEY, alias="SECRET_KEY")
    algorithm: str = "HS256"
    session_ttl_minutes: int = Field(default=60, ge=1, le=60)
    mfa_challenge_ttl_minutes: int = Field(default=5, ge=1, le=15)
    # Window during which the permission snapshot embedded in a session is
    # trusted before live role state is consulted again.
    permission_snapshot_ttl_seconds: int = Field(default=300, ge=0, le=3600)
    bcrypt_rounds: int = Field(default=12, ge=4, le=16)

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters")
        return v


class JWKSSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="JWKS_")

    cache_ttl_seconds: int = Field(default=600, ge=0)
    fetch_timeout_seconds: float = Field(default=5.0, gt=0, le=30)
    failure_backoff_seconds: float = Field(default=5.0, ge=0, le=300)
    clock_skew_seconds: int = Field(default=60, ge=0, le=300)


class MFASettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MFA_")

    issuer_name: str = "SecureGov VMS"
    valid_window: int = Field(default=2, ge=0, le=4)


class AuditSettings(BaseSettings):
    enabled: bool = Field(default=False, alias="ENABLE_AUDIT_LOGGING")
    retention_years: int = Field(default=7, ge=1, le=20)


class RBACSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="allow")

    # [{"resource": ..., "action": ..., "name": ..., "description": ...}]
    permissions: list[dict] = Field(default_factory=list)
    # {"reception": {"description": ..., "permissions": ["visits:check_in"]}}
    system_roles: dict[str, dict] = Field(default_factory=dict)

    @property
    def as_dict(self) -> dict:
        return {
            "permissions": self.permissions,
            "system_roles": self.system_roles,
        }


class CORSSettings(BaseSettings):
    allow_origins: list[str] = ["*"]
    allow_credentials: bool = True
    allow_methods: list[str] = ["GET", "POST", "PUT", "DELETE"]
    allow_headers: list[str] = ["*"]


class AppSettings(BaseSettings):
    """
    Main application settings aggregating all configuration.

    Implements hybrid configuration loading:
    1. Loads VMS_CONFIG_PATH from .env
    2. Reads business logic config from JSON file (permission catalog, roles)
    3. Loads secrets/env-specific config from .env (database, signing key)

    Usage:
        settings = get_settings()
        print(settings.jwks.cache_ttl_seconds)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    config_path: str = Field(default="", alias="VMS_CONFIG_PATH")

    app_name: str = "VMS Auth API"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="APP_ENV")
    debug: bool = False

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    jwks: JWKSSettings = Field(default_factory=JWKSSettings)
    mfa: MFASettings = Field(default_factory=MFASettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)

    rbac: RBACSettings = Field(default_factory=RBACSettings)

    @model_validator(mode="after")
    def load_json_config(self) -> "AppSettings":
        """Load the permission catalog and system roles from the JSON file."""
        config_file = self._resolve_config_path()

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                json_config = json.load(f)
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in config file %s: %s", config_file, e)
            raise ValueError(f"Invalid JSON configuration file: {config_file}") from e

        self.app_name = json_config.get("APP_NAME", self.app_name)
        self.app_version = json_config.get("APP_VERSION", self.app_version)
        self.rbac.permissions = json_config.get("PERMISSIONS", [])
        self.rbac.system_roles = json_config.get("SYSTEM_ROLES", {})

        if self.is_production and self.security.secret_key == DEV_SECRET_KEY:
            raise ValueError("SECRET_KEY must be set in production")

        logger.info("Loaded configuration from %s", config_file)
        return self

    def _resolve_config_path(self) -> str:
        """Resolve the configuration file path with fallback logic."""
        if self.config_path and os_path.exists(self.config_path):
            return self.config_path

        default_path = os_path.join(os_path.dirname(__file__), "default.json")
        if self.config_path:
            logger.warning(
                "Config file not found: %s. Using %s",
                self.config_path,
                default_path,
            )
        return default_path

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> AppSettings:
    """
    Cached settings factory.

    For testing, use dependency injection override.
    """
    return AppSettings()
