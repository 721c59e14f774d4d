"""
Signed session tokens.

Sessions and MFA challenges are both HS256 JWTs signed with the service key.
The ``typ`` claim keeps them apart: a challenge token is never accepted where
a session is expected and vice versa.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Tuple

from authlib.jose import JoseError, JsonWebToken
from authlib.jose.errors import ExpiredTokenError

from vms_auth.config import AppSettings
from vms_auth.exceptions import NotAuthenticatedError, SessionExpiredError

ACCESS_TOKEN = "access"
MFA_CHALLENGE = "mfa_pending"


def _jwt(settings: AppSettings) -> JsonWebToken:
    return JsonWebToken([settings.security.algorithm])


def create_token(
    claims: dict,
    settings: AppSettings,
    token_type: str,
    expires_delta: timedelta,
) -> Tuple[str, str, datetime]:
    """
    Sign ``claims`` as a token of ``token_type``.

    Returns:
        (encoded token, jti, expiry)
    """
    now = datetime.now(timezone.utc)
    expire = now + expires_delta
    jti = secrets.token_urlsafe(16)

    to_encode = claims.copy()
    to_encode.update(
        {
            "typ": token_type,
            "jti": jti,
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
        }
    )
    encoded = _jwt(settings).encode(
        {"alg": settings.security.algorithm}, to_encode, settings.security.secret_key
    )
    return encoded.decode("utf-8"), jti, expire


def decode_token(token: str, settings: AppSettings, token_type: str) -> dict:
    """
    Verify signature, expiry and type of a token issued by ``create_token``.

    Raises:
        SessionExpiredError: token is past its ``exp``
        NotAuthenticatedError: anything else wrong with the token
    """
    try:
        claims = _jwt(settings).decode(token, settings.security.secret_key)
        claims.validate()
    except ExpiredTokenError as e:
        raise SessionExpiredError() from e
    except (JoseError, ValueError) as e:
        raise NotAuthenticatedError("Invalid authentication credentials") from e

    if claims.get("typ") != token_type:
        raise NotAuthenticatedError("Invalid authentication credentials")
    for name in ("sub", "jti", "exp"):
        if name not in claims:
            raise NotAuthenticatedError("Invalid authentication credentials")
    return dict(claims)
