"""
DatabaseManager: PostgreSQL implementation of the AuthStore protocol covering
tenants, identity providers, the permission catalog, roles, users and the
revoked-session blacklist.

"""

import logging
from contextlib import contextmanager
from datetime import datetime
from os import path as os_path
from typing import Dict, List, Optional, Sequence
from uuid import UUID

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2 import pool
from psycopg2.extras import Json, RealDictCursor, register_uuid

from vms_auth.exceptions import DatabaseError, ProviderExistsError, RoleExistsError
from vms_auth.models import (
    IdentityProvider,
    Permission,
    ProviderType,
    Role,
    Tenant,
    User,
)

logger = logging.getLogger(__name__)

register_uuid()

_ROLE_SELECT = """
    SELECT r.*,
           COALESCE(
               array_agg(rp.permission_id) FILTER (WHERE rp.permission_id IS NOT NULL),
               '{}'
           ) AS permission_ids
    FROM roles r
    LEFT JOIN role_permissions rp ON rp.role_id = r.id
"""


class DatabaseManager:
    def __init__(self, database_url: str, min_pool_size: int = 2, max_pool_size: int = 10):
        self.connection_params = psycopg2.extensions.parse_dsn(database_url)
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._pool = None
        self._init_tables()
        self._init_pool()

    def _init_pool(self):
        """Initialize connection pool."""
        try:
            self._pool = pool.ThreadedConnectionPool(
                self._min_pool_size, self._max_pool_size, **self.connection_params
            )
        except psycopg2.Error as e:
            raise DatabaseError(f"Failed to initialize connection pool: {e}") from e

    @contextmanager
    def _get_connection(self):
        """Get a connection from the pool; roll back on database errors."""
        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
        except pg_errors.UniqueViolation:
            conn.rollback()
            raise
        except psycopg2.Error as e:
            conn.rollback()
            raise DatabaseError(f"Database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def _init_tables(self):
        """Initialize database tables from schema.sql."""
        schema_path = os_path.join(os_path.dirname(__file__), "schema.sql")
        try:
            with open(schema_path, "r") as f:
                schema_sql = f.read()
        except OSError as e:
            raise DatabaseError(f"Error reading database schema file: {e}") from e

        conn = psycopg2.connect(**self.connection_params)
        try:
            with conn.cursor() as cur:
                cur.execute(schema_sql)
            conn.commit()
        except psycopg2.Error as e:
            raise DatabaseError(f"Error initializing database tables: {e}") from e
        finally:
            conn.close()
        logger.info("Database tables initialized")

    def close(self) -> None:
        if self._pool:
            self._pool.closeall()
            self._pool = None

    def _fetchone(self, query: str, params: tuple) -> Optional[Dict]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                return cur.fetchone()

    def _fetchall(self, query: str, params: tuple = ()) -> List[Dict]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                return cur.fetchall()

    #        Tenant Management
    # -------------------------------
    def add_tenant(self, tenant: Tenant) -> Tenant:
        row = self._fetchone(
            """
            INSERT INTO tenants (id, name, corporate_email_domain, auth_strategy,
                                 is_active, allow_external_provisioning, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                tenant.id,
                tenant.name,
                tenant.corporate_email_domain,
                tenant.auth_strategy.value,
                tenant.is_active,
                tenant.allow_external_provisioning,
                tenant.created_at,
            ),
        )
        return Tenant.model_validate(row)

    def get_tenant(self, tenant_id: UUID) -> Optional[Tenant]:
        row = self._fetchone("SELECT * FROM tenants WHERE id = %s", (tenant_id,))
        return Tenant.model_validate(row) if row else None

    def get_tenant_by_domain(self, domain: str) -> Optional[Tenant]:
        row = self._fetchone(
            "SELECT * FROM tenants WHERE corporate_email_domain = %s",
            (domain.strip().lower(),),
        )
        return Tenant.model_validate(row) if row else None

    def update_tenant(self, tenant: Tenant) -> Tenant:
        row = self._fetchone(
            """
            UPDATE tenants
            SET name = %s, corporate_email_domain = %s, auth_strategy = %s,
                is_active = %s, allow_external_provisioning = %s
            WHERE id = %s
            RETURNING *
            """,
            (
                tenant.name,
                tenant.corporate_email_domain,
                tenant.auth_strategy.value,
                tenant.is_active,
                tenant.allow_external_provisioning,
                tenant.id,
            ),
        )
        return Tenant.model_validate(row)

    #        Identity Provider Management
    # ------------------------------------------
    def add_provider(self, provider: IdentityProvider) -> IdentityProvider:
        try:
            row = self._fetchone(
                """
                INSERT INTO identity_providers (id, tenant_id, provider_type, config,
                                                is_active, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    provider.id,
                    provider.tenant_id,
                    provider.provider_type.value,
                    Json(provider.config.model_dump(mode="json")),
                    provider.is_active,
                    provider.created_at,
                    provider.updated_at,
                ),
            )
        except pg_errors.UniqueViolation as e:
            raise ProviderExistsError(
                details={"provider_type": provider.provider_type.value}
            ) from e
        return IdentityProvider.model_validate(row)

    def get_provider(self, provider_id: UUID) -> Optional[IdentityProvider]:
        row = self._fetchone(
            "SELECT * FROM identity_providers WHERE id = %s", (provider_id,)
        )
        return IdentityProvider.model_validate(row) if row else None

    def get_provider_by_type(
        self, tenant_id: UUID, provider_type: ProviderType
    ) -> Optional[IdentityProvider]:
        row = self._fetchone(
            "SELECT * FROM identity_providers WHERE tenant_id = %s AND provider_type = %s",
            (tenant_id, provider_type.value),
        )
        return IdentityProvider.model_validate(row) if row else None

    def list_providers(self, tenant_id: UUID) -> List[IdentityProvider]:
        rows = self._fetchall(
            "SELECT * FROM identity_providers WHERE tenant_id = %s ORDER BY created_at",
            (tenant_id,),
        )
        return [IdentityProvider.model_validate(row) for row in rows]

    def update_provider(self, provider: IdentityProvider) -> IdentityProvider:
        row = self._fetchone(
            """
            UPDATE identity_providers
            SET config = %s, is_active = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING *
            """,
            (
                Json(provider.config.model_dump(mode="json")),
                provider.is_active,
                provider.id,
            ),
        )
        return IdentityProvider.model_validate(row)

    def delete_provider(self, provider_id: UUID) -> bool:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM identity_providers WHERE id = %s", (provider_id,))
                return cur.rowcount > 0

    def is_jwks_uri_referenced(self, jwks_uri: str) -> bool:
        row = self._fetchone(
            "SELECT 1 AS found FROM identity_providers WHERE config->>'jwks_uri' = %s LIMIT 1",
            (jwks_uri,),
        )
        return row is not None

    #        Permission Catalog
    # -------------------------------
    def upsert_permission(self, permission: Permission) -> Permission:
        row = self._fetchone(
            """
            INSERT INTO permissions (id, resource, action, name, description)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (resource, action) DO UPDATE
            SET name = COALESCE(NULLIF(EXCLUDED.name, ''), permissions.name),
                description = COALESCE(EXCLUDED.description, permissions.description)
            RETURNING *
            """,
            (
                permission.id,
                permission.resource,
                permission.action,
                permission.name,
                permission.description,
            ),
        )
        return Permission.model_validate(row)

    def list_permissions(self) -> List[Permission]:
        rows = self._fetchall("SELECT * FROM permissions ORDER BY resource, action")
        return [Permission.model_validate(row) for row in rows]

    def get_permissions(self, permission_ids: Sequence[UUID]) -> List[Permission]:
        if not permission_ids:
            return []
        rows = self._fetchall(
            "SELECT * FROM permissions WHERE id = ANY(%s) ORDER BY resource, action",
            (list(permission_ids),),
        )
        return [Permission.model_validate(row) for row in rows]

    #        Role Management
    # -------------------------------
    def add_role(self, role: Role) -> Role:
        try:
            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO roles (id, tenant_id, name, description, is_system,
                                           created_at, updated_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        """,
                        (
                            role.id,
                            role.tenant_id,
                            role.name,
                            role.description,
                            role.is_system,
                            role.created_at,
                            role.updated_at,
                        ),
                    )
                    for permission_id in dict.fromkeys(role.permission_ids):
                        cur.execute(
                            "INSERT INTO role_permissions (role_id, permission_id) VALUES (%s, %s)",
                            (role.id, permission_id),
                        )
        except pg_errors.UniqueViolation as e:
            raise RoleExistsError(details={"name": role.name}) from e
        return self.get_role(role.id)

    def get_role(self, role_id: UUID) -> Optional[Role]:
        row = self._fetchone(_ROLE_SELECT + " WHERE r.id = %s GROUP BY r.id", (role_id,))
        return Role.model_validate(row) if row else None

    def get_role_by_name(self, tenant_id: Optional[UUID], name: str) -> Optional[Role]:
        row = self._fetchone(
            _ROLE_SELECT
            + " WHERE r.tenant_id IS NOT DISTINCT FROM %s AND lower(r.name) = lower(%s)"
            + " GROUP BY r.id",
            (tenant_id, name),
        )
        return Role.model_validate(row) if row else None

    def list_roles(self, tenant_id: UUID) -> List[Role]:
        rows = self._fetchall(
            _ROLE_SELECT
            + " WHERE r.tenant_id IS NULL OR r.tenant_id = %s"
            + " GROUP BY r.id ORDER BY r.is_system DESC, r.name",
            (tenant_id,),
        )
        return [Role.model_validate(row) for row in rows]

    def update_role(self, role: Role) -> Role:
        try:
            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        UPDATE roles SET name = %s, description = %s, updated_at = NOW()
                        WHERE id = %s
                        """,
                        (role.name, role.description, role.id),
                    )
        except pg_errors.UniqueViolation as e:
            raise RoleExistsError(details={"name": role.name}) from e
        return self.get_role(role.id)

    def delete_role(self, role_id: UUID) -> bool:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM roles WHERE id = %s", (role_id,))
                return cur.rowcount > 0

    def replace_role_permissions(
        self, role_id: UUID, permission_ids: Sequence[UUID], snapshot: Sequence[str]
    ) -> Role:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                # Lock the role row so concurrent replaces serialize.
                cur.execute("SELECT id FROM roles WHERE id = %s FOR UPDATE", (role_id,))
                cur.execute("DELETE FROM role_permissions WHERE role_id = %s", (role_id,))
                for permission_id in dict.fromkeys(permission_ids):
                    cur.execute(
                        "INSERT INTO role_permissions (role_id, permission_id) VALUES (%s, %s)",
                        (role_id, permission_id),
                    )
                cur.execute("UPDATE roles SET updated_at = NOW() WHERE id = %s", (role_id,))
                cur.execute(
                    "UPDATE users SET permissions = %s, updated_at = NOW() WHERE role_id = %s",
                    (list(snapshot), role_id),
                )
        return self.get_role(role_id)

    def count_users_with_role(self, role_id: UUID) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS count FROM users WHERE role_id = %s", (role_id,)
        )
        return int(row["count"])

    #        User Management
    # -------------------------------
    def add_user(self, user: User) -> User:
        row = self._fetchone(
            """
            INSERT INTO users (id, tenant_id, email, full_name, role_id, password_hash,
                               is_active, mfa_enabled, mfa_secret, mfa_pending_secret,
                               security_stamp, external_ids, external_roles, permissions,
                               last_login_at, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                user.id,
                user.tenant_id,
                user.email,
                user.full_name,
                user.role_id,
                user.password_hash,
                user.is_active,
                user.mfa_enabled,
                user.mfa_secret,
                user.mfa_pending_secret,
                user.security_stamp,
                Json(user.external_ids),
                list(user.external_roles),
                list(user.permissions),
                user.last_login_at,
                user.created_at,
                user.updated_at,
            ),
        )
        return User.model_validate(row)

    def get_user(self, user_id: UUID) -> Optional[User]:
        row = self._fetchone("SELECT * FROM users WHERE id = %s", (user_id,))
        return User.model_validate(row) if row else None

    def get_user_by_email(self, tenant_id: UUID, email: str) -> Optional[User]:
        row = self._fetchone(
            "SELECT * FROM users WHERE tenant_id = %s AND email = %s",
            (tenant_id, email.strip().lower()),
        )
        return User.model_validate(row) if row else None

    def get_user_by_external_id(
        self, tenant_id: UUID, provider_type: ProviderType, subject: str
    ) -> Optional[User]:
        row = self._fetchone(
            "SELECT * FROM users WHERE tenant_id = %s AND external_ids->>%s = %s",
            (tenant_id, provider_type.value, subject),
        )
        return User.model_validate(row) if row else None

    def update_user(self, user: User) -> User:
        row = self._fetchone(
            """
            UPDATE users
            SET email = %s, full_name = %s, role_id = %s, password_hash = %s,
                is_active = %s, mfa_enabled = %s, mfa_secret = %s,
                mfa_pending_secret = %s, security_stamp = %s, external_ids = %s,
                external_roles = %s, permissions = %s, last_login_at = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING *
            """,
            (
                user.email,
                user.full_name,
                user.role_id,
                user.password_hash,
                user.is_active,
                user.mfa_enabled,
                user.mfa_secret,
                user.mfa_pending_secret,
                user.security_stamp,
                Json(user.external_ids),
                list(user.external_roles),
                list(user.permissions),
                user.last_login_at,
                user.id,
            ),
        )
        return User.model_validate(row)

    #        Revoked Sessions
    # -------------------------------
    def revoke_session(self, jti: str, expires_at: datetime) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM revoked_sessions WHERE expires_at <= NOW()")
                cur.execute(
                    """
                    INSERT INTO revoked_sessions (jti, expires_at) VALUES (%s, %s)
                    ON CONFLICT (jti) DO NOTHING
                    """,
                    (jti, expires_at),
                )

    def is_session_revoked(self, jti: str) -> bool:
        row = self._fetchone(
            "SELECT 1 AS found FROM revoked_sessions WHERE jti = %s", (jti,)
        )
        return row is not None
