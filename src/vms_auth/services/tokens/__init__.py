from .jwks import CachedKeySet, JWKSCache
from .verifier import (
    ExternalTokenVerifier,
    VerifiedClaims,
    read_unverified,
    unverified_email,
)

__all__ = [
    "CachedKeySet",
    "JWKSCache",
    "ExternalTokenVerifier",
    "VerifiedClaims",
    "read_unverified",
    "unverified_email",
]
