"""
SessionIssuer: turns verified credentials into sessions and checks them back.

Login paths
-----------
- local: email + bcrypt password, then a TOTP code when MFA is enabled
- external: an ID token from the tenant's identity provider

A password-verified user with MFA enabled gets a short-lived challenge token
instead of a session. Wrong codes leave the challenge usable until it expires.

Sessions are signed JWTs carrying a permission snapshot and the user's
security stamp. Bumping the stamp (password change, MFA change,
deactivation) invalidates every outstanding session of that user; logout
blacklists one session by its ``jti``.
"""

import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence, Union
from uuid import UUID

from vms_auth.config import AppSettings
from vms_auth.exceptions import (
    AccountDeactivatedError,
    InvalidCredentialsError,
    InvalidPasswordError,
    MFAInvalidCodeError,
    MFANotEnabledError,
    MFANotInitiatedError,
    NotAuthenticatedError,
    PermissionDeniedError,
    ProviderNotConfiguredError,
    SessionRevokedError,
    TenantNotFoundError,
    UserNotFoundError,
    UserNotProvisionedError,
)
from vms_auth.models import ProviderType, Tenant, User, utcnow
from vms_auth.services.database import AuthStore
from vms_auth.services.identity import map_external_role
from vms_auth.services.rbac import PermissionEvaluator, PermissionSnapshot, RoleStore
from vms_auth.services.tenancy import TenantStrategyResolver
from vms_auth.services.tokens import ExternalTokenVerifier, VerifiedClaims, unverified_email

from .mfa import MFAService
from .passwords import hash_password, verify_password
from .schemas import (
    AuthenticatedResult,
    AuthenticatedSession,
    LoginResult,
    MFAPendingResult,
    MFASetup,
    SessionToken,
    UserProfile,
)
from .tokens import ACCESS_TOKEN, MFA_CHALLENGE, create_token, decode_token

logger = logging.getLogger(__name__)


class SessionIssuer:
    def __init__(
        self,
        store: AuthStore,
        roles: RoleStore,
        resolver: TenantStrategyResolver,
        verifier: ExternalTokenVerifier,
        mfa: MFAService,
        settings: AppSettings,
        evaluator: Optional[PermissionEvaluator] = None,
    ):
        self.store = store
        self.roles = roles
        self.resolver = resolver
        self.verifier = verifier
        self.mfa = mfa
        self.settings = settings
        self.evaluator = evaluator or PermissionEvaluator()
        # Compared against when the email is unknown so both paths cost a hash
        self._dummy_hash = hash_password(
            secrets.token_urlsafe(16), rounds=settings.security.bcrypt_rounds
        )

    #       Local Login
    # ------------------------------
    async def login_local(
        self,
        email: str,
        password: str,
        tenant_id: Optional[Union[str, UUID]] = None,
        mfa_code: Optional[str] = None,
    ) -> LoginResult:
        tenant = self.resolver.find_tenant(tenant_id or email)
        self.resolver.check_method(tenant, None)

        user = self.store.get_user_by_email(tenant.id, email)
        stored_hash = user.password_hash if user and user.password_hash else None
        valid = await asyncio.to_thread(
            verify_password, password, stored_hash or self._dummy_hash
        )
        if user is None or stored_hash is None or not valid:
            raise InvalidCredentialsError(details={"tenant_id": str(tenant.id)})
        if not user.is_active:
            raise AccountDeactivatedError(details={"user_id": str(user.id)})

        if user.mfa_enabled:
            if mfa_code is None:
                logger.info(
                    "Password verified; awaiting MFA code",
                    extra={"user_id": str(user.id), "tenant_id": str(tenant.id)},
                )
                return MFAPendingResult(
                    user=self.profile(user), challenge_token=self._issue_challenge(user)
                )
            if not self.mfa.verify(user.mfa_secret, mfa_code):
                raise MFAInvalidCodeError()
            return self._complete_login(user, "mfa")

        return self._complete_login(user, "password")

    async def verify_mfa_challenge(self, challenge_token: str, code: str) -> AuthenticatedResult:
        """Second login phase. A wrong code does not consume the challenge."""
        claims = decode_token(challenge_token, self.settings, MFA_CHALLENGE)
        user = self._load_user(claims)
        if not user.mfa_enabled or not user.mfa_secret:
            raise SessionRevokedError()
        if not self.mfa.verify(user.mfa_secret, code):
            raise MFAInvalidCodeError()
        return self._complete_login(user, "mfa")

    #       External Login
    # ------------------------------
    async def login_external(
        self,
        id_token: str,
        provider_type: Union[str, ProviderType],
        tenant_id: Optional[Union[str, UUID]] = None,
    ) -> AuthenticatedResult:
        try:
            provider_type = ProviderType(provider_type)
        except ValueError:
            raise ProviderNotConfiguredError(
                details={"provider_type": str(provider_type)}
            )

        if tenant_id:
            tenant = self.resolver.find_tenant(tenant_id)
        else:
            hint = unverified_email(id_token)
            if not hint:
                raise TenantNotFoundError()
            tenant = self.resolver.find_tenant(hint)

        self.resolver.check_method(tenant, provider_type)
        claims = await self.verifier.verify(id_token, provider_type, tenant.id)

        user = self._external_user(tenant, claims)
        if not user.is_active:
            raise AccountDeactivatedError(details={"user_id": str(user.id)})
        return self._complete_login(user, provider_type.value)

    def _external_user(self, tenant: Tenant, claims: VerifiedClaims) -> User:
        provider_type = claims.provider_type
        user = self.store.get_user_by_external_id(tenant.id, provider_type, claims.subject)
        if user is not None:
            return self._sync_external_roles(user, claims)

        user = self.store.get_user_by_email(tenant.id, claims.email)
        if user is not None:
            user.external_ids[provider_type.value] = claims.subject
            logger.info(
                "Linked external identity to existing user",
                extra={"user_id": str(user.id), "provider_type": provider_type.value},
            )
            return self.store.update_user(self._sync_external_roles(user, claims))

        if not tenant.allow_external_provisioning:
            raise UserNotProvisionedError(
                details={"tenant_id": str(tenant.id), "provider_type": provider_type.value}
            )

        role = self.roles.get_role_by_name(tenant.id, map_external_role(claims.roles).value)
        user = User(
            tenant_id=tenant.id,
            email=claims.email,
            full_name=claims.name,
            role_id=role.id,
            external_ids={provider_type.value: claims.subject},
            external_roles=claims.roles,
        )
        user = self.store.add_user(self.roles.assign_user_role(user, role))
        logger.info(
            "Provisioned user from external identity",
            extra={
                "user_id": str(user.id),
                "tenant_id": str(tenant.id),
                "provider_type": provider_type.value,
                "role": role.name,
            },
        )
        return user

    def _sync_external_roles(self, user: User, claims: VerifiedClaims) -> User:
        """
        Follow role changes made at the identity provider.

        Only a change in the token's role claims since the last external login
        moves the user, and only to a recognised role. Roles granted locally
        stay put while the provider keeps sending the same claims.
        """
        if claims.roles == user.external_roles:
            return user

        user.external_roles = list(claims.roles)
        mapped = map_external_role(claims.roles, default=None)
        if mapped is not None:
            role = self.roles.get_role_by_name(user.tenant_id, mapped.value)
            if role.id != user.role_id:
                user = self.roles.assign_user_role(user, role)
                logger.info(
                    "User role synced from identity provider",
                    extra={
                        "user_id": str(user.id),
                        "provider_type": claims.provider_type.value,
                        "role": role.name,
                    },
                )
        return user

    #       Session Issuance
    # ------------------------------
    def _complete_login(self, user: User, method: str) -> AuthenticatedResult:
        user.last_login_at = utcnow()
        return self._fresh_session(user, method)

    def _fresh_session(self, user: User, method: str) -> AuthenticatedResult:
        snapshot = self.roles.snapshot_for(user)
        user.permissions = sorted(snapshot.permissions)
        user = self.store.update_user(user)
        return AuthenticatedResult(
            user=self.profile(user, snapshot),
            session=self.issue_session(user, snapshot, method),
        )

    def issue_session(
        self, user: User, snapshot: PermissionSnapshot, method: str = "password"
    ) -> SessionToken:
        claims = {
            "sub": str(user.id),
            "tid": str(user.tenant_id),
            "rid": str(snapshot.role_id) if snapshot.role_id else None,
            "role": snapshot.role_name,
            "sys": snapshot.system_role,
            "perms": sorted(snapshot.permissions),
            "pat": int(snapshot.taken_at.timestamp()),
            "stamp": user.security_stamp,
            "amr": method,
        }
        token, jti, expires_at = create_token(
            claims,
            self.settings,
            ACCESS_TOKEN,
            timedelta(minutes=self.settings.security.session_ttl_minutes),
        )
        logger.info(
            "Session issued",
            extra={"user_id": str(user.id), "tenant_id": str(user.tenant_id), "amr": method},
        )
        return SessionToken(token=token, jti=jti, expires_at=expires_at)

    def _issue_challenge(self, user: User) -> str:
        token, _, _ = create_token(
            {"sub": str(user.id), "tid": str(user.tenant_id), "stamp": user.security_stamp},
            self.settings,
            MFA_CHALLENGE,
            timedelta(minutes=self.settings.security.mfa_challenge_ttl_minutes),
        )
        return token

    #       Session Checks
    # ------------------------------
    def authenticate(self, token: str) -> AuthenticatedSession:
        """
        Validate a session token on every request.

        Raises:
            SessionExpiredError: past expiry
            SessionRevokedError: logged out, stamp bumped, user or tenant gone or inactive
            NotAuthenticatedError: not a session token of ours
        """
        claims = decode_token(token, self.settings, ACCESS_TOKEN)
        if self.store.is_session_revoked(claims["jti"]):
            raise SessionRevokedError()
        user = self._load_user(claims)

        rid = claims.get("rid")
        snapshot = PermissionSnapshot.build(
            role_name=claims.get("role") or "",
            permissions=claims.get("perms") or (),
            role_id=UUID(rid) if rid else None,
            taken_at=datetime.fromtimestamp(claims.get("pat", 0), tz=timezone.utc),
            system_role=claims.get("sys") is True,
        )
        return AuthenticatedSession(
            user=user,
            snapshot=snapshot,
            jti=claims["jti"],
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            auth_method=claims.get("amr", "password"),
        )

    def _load_user(self, claims: dict) -> User:
        try:
            user_id = UUID(str(claims["sub"]))
        except ValueError as e:
            raise NotAuthenticatedError("Invalid authentication credentials") from e

        user = self.store.get_user(user_id)
        if user is None or str(user.tenant_id) != claims.get("tid"):
            raise SessionRevokedError()
        if not user.is_active or user.security_stamp != claims.get("stamp"):
            raise SessionRevokedError()
        tenant = self.store.get_tenant(user.tenant_id)
        if tenant is None or not tenant.is_active:
            raise SessionRevokedError()
        return user

    def current_snapshot(self, session: AuthenticatedSession) -> PermissionSnapshot:
        """The session's snapshot while it is young enough, live role state after."""
        age = (utcnow() - session.snapshot.taken_at).total_seconds()
        if age < self.settings.security.permission_snapshot_ttl_seconds:
            return session.snapshot
        return self.roles.snapshot_for(session.user)

    def authorize(
        self, session: AuthenticatedSession, permissions: Sequence[str], any_of: bool = False
    ) -> PermissionSnapshot:
        snapshot = self.current_snapshot(session)
        if any_of:
            allowed = self.evaluator.evaluate_any(snapshot, permissions)
        else:
            allowed = all(self.evaluator.evaluate(snapshot, p) for p in permissions)
        if not allowed:
            key = "required_permissions" if any_of else "required_permission"
            value = list(permissions) if any_of or len(permissions) > 1 else permissions[0]
            raise PermissionDeniedError(details={key: value})
        return snapshot

    def logout(self, session: AuthenticatedSession) -> None:
        self.store.revoke_session(session.jti, session.expires_at)
        logger.info("Session revoked", extra={"user_id": str(session.user.id)})

    #       MFA Management
    # ------------------------------
    def initiate_mfa(self, user: User) -> MFASetup:
        secret = self.mfa.generate_secret()
        user.mfa_pending_secret = secret
        self.store.update_user(user)
        return MFASetup(
            secret=secret,
            otpauth_uri=self.mfa.provisioning_uri(secret, user.email),
            issuer=self.mfa.issuer_name,
        )

    def enable_mfa(self, user: User, code: str) -> AuthenticatedResult:
        if not user.mfa_pending_secret:
            raise MFANotInitiatedError()
        if not self.mfa.verify(user.mfa_pending_secret, code):
            raise MFAInvalidCodeError()
        user.mfa_secret = user.mfa_pending_secret
        user.mfa_pending_secret = None
        user.mfa_enabled = True
        user.security_stamp += 1
        logger.info("MFA enabled", extra={"user_id": str(user.id)})
        return self._fresh_session(user, "mfa")

    def disable_mfa(self, user: User, code: str) -> AuthenticatedResult:
        if not user.mfa_enabled:
            raise MFANotEnabledError()
        if not self.mfa.verify(user.mfa_secret, code):
            raise MFAInvalidCodeError()
        user.mfa_enabled = False
        user.mfa_secret = None
        user.mfa_pending_secret = None
        user.security_stamp += 1
        logger.info("MFA disabled", extra={"user_id": str(user.id)})
        return self._fresh_session(user, "password")

    #       Account Changes
    # ------------------------------
    async def change_password(
        self, user: User, current_password: str, new_password: str
    ) -> AuthenticatedResult:
        if not user.password_hash or not await asyncio.to_thread(
            verify_password, current_password, user.password_hash
        ):
            raise InvalidPasswordError()
        user.password_hash = await asyncio.to_thread(
            hash_password, new_password, self.settings.security.bcrypt_rounds
        )
        user.security_stamp += 1
        logger.info("Password changed", extra={"user_id": str(user.id)})
        return self._fresh_session(user, "password")

    def set_password(self, user: User, password: str) -> User:
        user.password_hash = hash_password(password, self.settings.security.bcrypt_rounds)
        return user

    def _tenant_user(self, tenant_id: UUID, user_id: UUID) -> User:
        user = self.store.get_user(user_id)
        if user is None or user.tenant_id != tenant_id:
            raise UserNotFoundError(details={"user_id": str(user_id)})
        return user

    def deactivate_user(self, tenant_id: UUID, user_id: UUID) -> User:
        user = self._tenant_user(tenant_id, user_id)
        user.is_active = False
        user.security_stamp += 1
        logger.info("User deactivated", extra={"user_id": str(user_id)})
        return self.store.update_user(user)

    def change_user_role(self, tenant_id: UUID, user_id: UUID, role_id: UUID) -> User:
        user = self._tenant_user(tenant_id, user_id)
        role = self.roles.get_role(tenant_id, role_id)
        user = self.roles.assign_user_role(user, role)
        logger.info(
            "User role changed", extra={"user_id": str(user_id), "role_id": str(role_id)}
        )
        return self.store.update_user(user)

    #       Views
    # ------------------------------
    def profile(self, user: User, snapshot: Optional[PermissionSnapshot] = None) -> UserProfile:
        snapshot = snapshot or self.roles.snapshot_for(user)
        return UserProfile(
            id=user.id,
            tenant_id=user.tenant_id,
            email=user.email,
            full_name=user.full_name,
            role_id=user.role_id,
            role=snapshot.role_name,
            permissions=sorted(snapshot.permissions),
            mfa_enabled=user.mfa_enabled,
            is_active=user.is_active,
            last_login_at=user.last_login_at,
        )
