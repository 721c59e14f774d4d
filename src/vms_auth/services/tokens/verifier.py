"""
Verification of ID tokens issued by a tenant's external identity provider.

Only RS256 is accepted. Signing keys come from the provider's JWKS through
``JWKSCache``; an unknown ``kid`` triggers exactly one forced refetch to pick
up rotated keys before the token is rejected.
"""

import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from authlib.common.encoding import json_loads, to_bytes, urlsafe_b64decode
from authlib.jose import JoseError, JsonWebKey, JsonWebToken
from authlib.jose.errors import ExpiredTokenError, InvalidClaimError, MissingClaimError
from pydantic import BaseModel, Field

from vms_auth.exceptions import (
    TokenAudienceMismatchError,
    TokenExpiredError,
    TokenInvalidError,
    TokenIssuerMismatchError,
)
from vms_auth.models import ProviderConfigBase, ProviderType

from .jwks import JWKSCache

logger = logging.getLogger(__name__)

_rs256 = JsonWebToken(["RS256"])

_CLAIM_IN_DESCRIPTION = re.compile(r'"([^"]+)"')

# Claims that carry group or role membership, by provider convention
_ROLE_CLAIMS = ("roles", "groups", "cognito:groups")


class VerifiedClaims(BaseModel):
    provider_type: ProviderType
    subject: str
    email: str
    name: Optional[str] = None
    roles: List[str] = Field(default_factory=list)
    issued_at: Optional[datetime] = None
    expires_at: datetime
    claims: Dict[str, Any] = Field(default_factory=dict)


def _decode_segment(segment: str) -> Any:
    return json_loads(urlsafe_b64decode(to_bytes(segment)))


def read_unverified(raw_token: str) -> tuple:
    """Return (header, payload) without checking anything. Never trust the result."""
    parts = raw_token.split(".") if isinstance(raw_token, str) else []
    if len(parts) != 3:
        raise TokenInvalidError("Malformed token")
    try:
        header = _decode_segment(parts[0])
        payload = _decode_segment(parts[1])
    except (ValueError, TypeError) as e:
        raise TokenInvalidError("Malformed token") from e
    if not isinstance(header, dict) or not isinstance(payload, dict):
        raise TokenInvalidError("Malformed token")
    return header, payload


def unverified_email(raw_token: str) -> Optional[str]:
    """Email hint used only to locate the tenant before verification."""
    _, payload = read_unverified(raw_token)
    return _email_from(payload)


def _email_from(claims: Dict[str, Any]) -> Optional[str]:
    for name in ("email", "preferred_username", "upn"):
        value = claims.get(name)
        if isinstance(value, str) and "@" in value:
            return value.strip().lower()
    return None


def _claim_name(error: JoseError) -> Optional[str]:
    name = getattr(error, "claim_name", None)
    if name:
        return name
    match = _CLAIM_IN_DESCRIPTION.search(str(getattr(error, "description", "") or ""))
    return match.group(1) if match else None


class ExternalTokenVerifier:
    def __init__(
        self,
        registry,
        jwks_cache: JWKSCache,
        clock_skew_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.jwks_cache = jwks_cache
        self.clock_skew_seconds = clock_skew_seconds
        self._clock = clock

    async def verify(
        self, raw_token: str, provider_type: ProviderType, tenant_id: UUID
    ) -> VerifiedClaims:
        """
        Verify ``raw_token`` against the tenant's active provider of the type.

        Raises:
            ProviderInactiveError / ProviderNotConfiguredError: no usable provider
            TokenInvalidError, TokenExpiredError, TokenIssuerMismatchError,
            TokenAudienceMismatchError: the token is rejected
            JWKSFetchError / JWKSFetchTimeoutError: keys unavailable
        """
        provider = self.registry.get_active(tenant_id, provider_type)
        config: ProviderConfigBase = provider.config

        header, _ = read_unverified(raw_token)
        if header.get("alg") != "RS256":
            raise TokenInvalidError(
                "Unsupported signing algorithm", details={"alg": header.get("alg")}
            )
        kid = header.get("kid")

        jwk = await self._signing_key(config.jwks_uri, kid)
        claims = self._decode(raw_token, jwk, config)
        return self._to_verified(claims, provider_type)

    async def _signing_key(self, uri: str, kid: Optional[str]) -> dict:
        key_set = await self.jwks_cache.get(uri)
        jwk = key_set.find(kid)
        if jwk is None and not key_set.stale:
            # Possibly a rotated key; one forced refetch
            key_set = await self.jwks_cache.refresh(uri, seen=key_set)
            jwk = key_set.find(kid)

        if jwk is None:
            self._evict_if_orphaned(uri)
            if key_set.fetch_error is not None:
                raise key_set.fetch_error
            raise TokenInvalidError("Signing key not found", details={"kid": kid})

        if key_set.stale:
            logger.warning(
                "Verifying token against stale JWKS", extra={"jwks_uri": uri, "kid": kid}
            )
        return jwk

    def _evict_if_orphaned(self, uri: str) -> None:
        if not self.registry.is_jwks_uri_referenced(uri):
            self.jwks_cache.evict(uri)

    def _decode(self, raw_token: str, jwk: dict, config: ProviderConfigBase):
        claims_options = {
            "iss": {"essential": True, "value": config.expected_issuer()},
            "aud": {"essential": True, "value": config.audience},
            "exp": {"essential": True},
            "sub": {"essential": True},
        }
        try:
            key = JsonWebKey.import_key(jwk)
            claims = _rs256.decode(raw_token, key, claims_options=claims_options)
            claims.validate(now=int(self._clock()), leeway=self.clock_skew_seconds)
        except ExpiredTokenError as e:
            raise TokenExpiredError() from e
        except (InvalidClaimError, MissingClaimError) as e:
            claim = _claim_name(e)
            if claim == "iss":
                raise TokenIssuerMismatchError(
                    details={"expected": config.expected_issuer()}
                ) from e
            if claim == "aud":
                raise TokenAudienceMismatchError() from e
            raise TokenInvalidError(details={"claim": claim}) from e
        except (JoseError, ValueError, TypeError) as e:
            raise TokenInvalidError() from e
        return claims

    @staticmethod
    def _to_verified(claims, provider_type: ProviderType) -> VerifiedClaims:
        email = _email_from(claims)
        if not email:
            raise TokenInvalidError("Token carries no email claim")

        roles: List[str] = []
        for name in _ROLE_CLAIMS:
            value = claims.get(name)
            if isinstance(value, str):
                value = [value]
            for role in value if isinstance(value, list) else ():
                if str(role) not in roles:
                    roles.append(str(role))

        iat = claims.get("iat")
        return VerifiedClaims(
            provider_type=provider_type,
            subject=str(claims["sub"]),
            email=email,
            name=claims.get("name"),
            roles=roles,
            issued_at=(
                datetime.fromtimestamp(iat, tz=timezone.utc)
                if isinstance(iat, (int, float))
                else None
            ),
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            claims=dict(claims),
        )
