from .registry import (
    DEFAULT_EXTERNAL_ROLE,
    ROLE_CLAIM_MAPPING,
    IdentityProviderRegistry,
    build_config,
    map_external_role,
    parse_provider_type,
)

__all__ = [
    "DEFAULT_EXTERNAL_ROLE",
    "ROLE_CLAIM_MAPPING",
    "IdentityProviderRegistry",
    "build_config",
    "map_external_role",
    "parse_provider_type",
]
