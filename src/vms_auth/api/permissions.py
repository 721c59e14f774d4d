"""
Route guards built on the session's permission snapshot.

Usage:
    @router.get("", dependencies=[Depends(require_permission("roles:read"))])
"""

from typing import Callable

from vms_auth.services.auth import AuthenticatedSession

from .dependencies import CurrentSessionDep, SessionIssuerDep


def require_permission(permission: str) -> Callable:
    async def dependency(
        session: CurrentSessionDep, issuer: SessionIssuerDep
    ) -> AuthenticatedSession:
        issuer.authorize(session, [permission])
        return session

    return dependency


def require_any_permission(*permissions: str) -> Callable:
    async def dependency(
        session: CurrentSessionDep, issuer: SessionIssuerDep
    ) -> AuthenticatedSession:
        issuer.authorize(session, list(permissions), any_of=True)
        return session

    return dependency
