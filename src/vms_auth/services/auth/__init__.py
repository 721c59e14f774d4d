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
from .sessions import SessionIssuer
from .tokens import ACCESS_TOKEN, MFA_CHALLENGE, create_token, decode_token

__all__ = [
    "MFAService",
    "hash_password",
    "verify_password",
    "AuthenticatedResult",
    "AuthenticatedSession",
    "LoginResult",
    "MFAPendingResult",
    "MFASetup",
    "SessionToken",
    "UserProfile",
    "SessionIssuer",
    "ACCESS_TOKEN",
    "MFA_CHALLENGE",
    "create_token",
    "decode_token",
]
