"""
TOTP enrolment and the second login phase.

``/initiate`` -> scan the otpauth URI -> ``/enable`` with a code.
``/verify`` completes a password login that answered ``mfa_required``.
"""

from fastapi import APIRouter, Response

from vms_auth.api.dependencies import (
    AuditServiceDep,
    CurrentSessionDep,
    RequestContextDep,
    SessionIssuerDep,
    SettingsDep,
)
from vms_auth.api.schemas import (
    LoginResponse,
    MFACodeRequest,
    MFAInitiateResponse,
    MFAVerifyRequest,
)
from vms_auth.services.audit import Action, EventCategory, ResourceType, record_change

from .auth import guarded_login, login_response

router = APIRouter()


@router.post("/initiate", response_model=MFAInitiateResponse)
async def initiate_mfa(session: CurrentSessionDep, issuer: SessionIssuerDep):
    setup = issuer.initiate_mfa(session.user)
    return MFAInitiateResponse(**setup.model_dump())


@router.post("/enable", response_model=LoginResponse)
async def enable_mfa(
    body: MFACodeRequest,
    response: Response,
    session: CurrentSessionDep,
    issuer: SessionIssuerDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
    settings: SettingsDep,
):
    result = issuer.enable_mfa(session.user, body.code)
    await record_change(
        audit,
        session.user,
        Action.UPDATE,
        ResourceType.MFA,
        context.to_dict(),
        resource_id=session.user.id,
        changes={"mfa_enabled": True},
        category=EventCategory.AUTHENTICATION,
    )
    return login_response(result, response, settings)


@router.post("/disable", response_model=LoginResponse)
async def disable_mfa(
    body: MFACodeRequest,
    response: Response,
    session: CurrentSessionDep,
    issuer: SessionIssuerDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
    settings: SettingsDep,
):
    result = issuer.disable_mfa(session.user, body.code)
    await record_change(
        audit,
        session.user,
        Action.UPDATE,
        ResourceType.MFA,
        context.to_dict(),
        resource_id=session.user.id,
        changes={"mfa_enabled": False},
        category=EventCategory.AUTHENTICATION,
    )
    return login_response(result, response, settings)


@router.post("/verify", response_model=LoginResponse)
async def verify_mfa(
    body: MFAVerifyRequest,
    response: Response,
    issuer: SessionIssuerDep,
    audit: AuditServiceDep,
    context: RequestContextDep,
    settings: SettingsDep,
):
    """Exchange an MFA challenge and a valid code for a session."""
    result = await guarded_login(
        issuer.verify_mfa_challenge(body.mfa_token, body.code),
        audit,
        context.to_dict(),
        auth_method="mfa",
    )
    return login_response(result, response, settings)
