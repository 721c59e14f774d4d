"""
Authentication routes.

Login failures that would reveal whether an account exists, or which half
of a credential pair was wrong, are logged with their precise code and
answered with a generic ``AUTHENTICATION_FAILED``.
"""

import logging
from typing import Awaitable, List, Optional, Union

from fastapi import APIRouter, Response

from vms_auth.api.dependencies import (
    AuditServiceDep,
    CurrentSessionDep,
    RequestContextDep,
    RoleStoreDep,
    SessionIssuerDep,
    SettingsDep,
)
from vms_auth.api.schemas import (
    ChangePasswordRequest,
    ExternalLoginRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    MFARequiredResponse,
    PermissionResponse,
)
from vms_auth.config import AppSettings
from vms_auth.exceptions import AuthenticationFailedError, VMSError
from vms_auth.services.audit import (
    Action,
    EventCategory,
    EventOutcome,
    IAuditService,
    ResourceType,
    record_change,
    record_login,
)
from vms_auth.services.auth import (
    AuthenticatedResult,
    LoginResult,
    MFAPendingResult,
    UserProfile,
)

logger = logging.getLogger(__name__)

router = APIRouter()

SESSION_COOKIE = "access_token"


#               HELPERS
# --------------------------------------------------


async def guarded_login(
    attempt: Awaitable[LoginResult],
    audit: IAuditService,
    client: dict,
    auth_method: str,
    email: Optional[str] = None,
) -> LoginResult:
    """Run a login attempt, auditing it and concealing revealing failures."""
    try:
        result = await attempt
    except VMSError as e:
        await record_login(
            audit,
            auth_method,
            EventOutcome.FAILURE,
            client,
            email=email,
            tenant_id=e.details.get("tenant_id"),
            error_code=e.code,
        )
        if e.conceal_on_login:
            logger.warning(
                "Login rejected",
                extra={"error_code": e.code, "auth_method": auth_method},
            )
            raise AuthenticationFailedError() from e
        raise

    user = result.user
    await record_login(
        audit,
        auth_method,
        EventOutcome.SUCCESS,
        client,
        email=user.email,
        tenant_id=user.tenant_id,
        user_id=user.id,
        event_type="mfa_challenge" if result.mfa_required else None,
    )
    return result


def login_response(
    result: LoginResult, response: Response, settings: AppSettings
) -> Union[LoginResponse, MFARequiredResponse]:
    if isinstance(result, MFAPendingResult):
        return MFARequiredResponse(user=result.user, mfa_token=result.challenge_token)

    set_session_cookie(response, result, settings)
    return LoginResponse(
        user=result.user,
        token=result.session.token,
        expires_at=result.session.expires_at,
    )


def set_session_cookie(
    response: Response, result: AuthenticatedResult, settings: AppSettings
) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=result.session.token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.security.session_ttl_minutes * 60,
    )


#               LOGIN
# --------------------------------------------------


@router.post("/login", response_model=Union[LoginResponse, MFARequiredResponse])
async def login(
    body: LoginRequest,
    response: Response,
    issuer: SessionIssuerDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
    settings: SettingsDep,
):
    """
    Sign in with a password or with an ID token from the tenant's provider.

    MFA users receive ``{mfa_required: true, user, mfa_token}`` unless the
    request already carries a valid ``mfa_code``.
    """
    if body.is_external:
        result = await guarded_login(
            issuer.login_external(body.id_token, body.auth_provider_type, body.tenant_id),
            audit,
            context.to_dict(),
            auth_method=body.auth_provider_type,
        )
    else:
        result = await guarded_login(
            issuer.login_local(body.email, body.password, body.tenant_id, body.mfa_code),
            audit,
            context.to_dict(),
            auth_method="mfa" if body.mfa_code else "password",
            email=body.email,
        )
    return login_response(result, response, settings)


@router.post("/external/login", response_model=LoginResponse)
async def external_login(
    body: ExternalLoginRequest,
    response: Response,
    issuer: SessionIssuerDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
    settings: SettingsDep,
):
    result = await guarded_login(
        issuer.login_external(body.id_token, body.auth_provider_type, body.tenant_id),
        audit,
        context.to_dict(),
        auth_method=body.auth_provider_type,
    )
    return login_response(result, response, settings)


#               SESSION
# --------------------------------------------------


@router.get("/profile", response_model=UserProfile)
async def profile(session: CurrentSessionDep, issuer: SessionIssuerDep):
    """Current user, including the permissions in effect right now."""
    return issuer.profile(session.user, issuer.current_snapshot(session))


@router.post("/logout", response_model=MessageResponse)
async def logout(
    session: CurrentSessionDep,
    response: Response,
    issuer: SessionIssuerDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
):
    issuer.logout(session)
    response.delete_cookie(SESSION_COOKIE)
    await record_change(
        audit,
        session.user,
        Action.LOGOUT,
        ResourceType.SESSION,
        context.to_dict(),
        category=EventCategory.AUTHENTICATION,
    )
    return MessageResponse(message="Logged out")


@router.put("/change-password", response_model=LoginResponse)
async def change_password(
    body: ChangePasswordRequest,
    response: Response,
    session: CurrentSessionDep,
    issuer: SessionIssuerDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
    settings: SettingsDep,
):
    """Change the password. Every other session of the user stops working."""
    result = await issuer.change_password(
        session.user, body.current_password, body.new_password
    )
    await record_change(
        audit,
        session.user,
        Action.UPDATE,
        ResourceType.USER,
        context.to_dict(),
        resource_id=session.user.id,
        changes={"password": "changed"},
        category=EventCategory.AUTHENTICATION,
    )
    return login_response(result, response, settings)


@router.get("/permissions/all", response_model=List[PermissionResponse])
async def all_permissions(session: CurrentSessionDep, roles: RoleStoreDep):
    """The global permission catalog, e.g. for building role editors."""
    return [PermissionResponse.from_permission(p) for p in roles.list_permissions()]
