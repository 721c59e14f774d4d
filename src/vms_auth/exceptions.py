from typing import Any, Dict, Optional


#       BASE EXCEPTIONS
# ------------------------------


class VMSError(Exception):
    """
    Base exception for all VMS auth errors.

    Subclasses flagged with ``conceal_on_login`` describe which half of a
    credential pair was wrong (or whether an account exists). Login routes
    log them with their code and answer with a generic failure instead.
    """

    conceal_on_login: bool = False

    def __init__(
        self,
        message: str,
        code: str = "VMS_ERROR",
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


#       TENANT EXCEPTIONS
# ------------------------------


class TenantNotFoundError(VMSError):
    """Raised when no tenant matches an identifier."""

    conceal_on_login = True

    def __init__(self, message: str = "Tenant not found", **kwargs):
        super().__init__(
            message=message,
            code="TENANT_NOT_FOUND",
            status_code=404,
            **kwargs,
        )


class TenantInactiveError(VMSError):
    """Raised when a deactivated tenant is used for login."""

    conceal_on_login = True

    def __init__(self, message: str = "Tenant is inactive", **kwargs):
        super().__init__(
            message=message,
            code="TENANT_INACTIVE",
            status_code=403,
            **kwargs,
        )


class AuthMethodNotAllowedError(VMSError):
    """Raised when a tenant's strategy does not permit the login method."""

    conceal_on_login = True

    def __init__(
        self, message: str = "Login method not allowed for tenant", **kwargs
    ):
        super().__init__(
            message=message,
            code="AUTH_METHOD_NOT_ALLOWED",
            status_code=403,
            **kwargs,
        )


#       IDENTITY PROVIDER EXCEPTIONS
# ------------------------------------------


class ProviderNotConfiguredError(VMSError):
    """Raised when a tenant has no usable provider of the requested type."""

    def __init__(
        self, message: str = "Identity provider not configured", **kwargs
    ):
        super().__init__(
            message=message,
            code="PROVIDER_NOT_CONFIGURED",
            status_code=400,
            **kwargs,
        )


class ProviderInactiveError(VMSError):
    """Raised when the provider exists but is not active."""

    def __init__(self, message: str = "Identity provider is inactive", **kwargs):
        super().__init__(
            message=message,
            code="PROVIDER_INACTIVE",
            status_code=403,
            **kwargs,
        )


class InvalidProviderConfigError(VMSError):
    """Raised when a provider config misses mandatory fields or is malformed."""

    def __init__(
        self, message: str = "Invalid identity provider configuration", **kwargs
    ):
        super().__init__(
            message=message,
            code="INVALID_PROVIDER_CONFIG",
            status_code=400,
            **kwargs,
        )


class ProviderExistsError(VMSError):
    def __init__(
        self, message: str = "Identity provider already exists", **kwargs
    ):
        super().__init__(
            message=message,
            code="PROVIDER_EXISTS",
            status_code=409,
            **kwargs,
        )


class ProviderNotFoundError(VMSError):
    def __init__(self, message: str = "Identity provider not found", **kwargs):
        super().__init__(
            message=message,
            code="PROVIDER_NOT_FOUND",
            status_code=404,
            **kwargs,
        )


#       EXTERNAL TOKEN EXCEPTIONS
# ---------------------------------------


class TokenVerificationError(VMSError):
    """Base class for rejected external tokens. Never retried."""

    conceal_on_login = True

    def __init__(
        self,
        message: str = "Token verification failed",
        code: str = "TOKEN_INVALID",
        **kwargs,
    ):
        super().__init__(message=message, code=code, status_code=401, **kwargs)


class TokenInvalidError(TokenVerificationError):
    def __init__(self, message: str = "Token is invalid", **kwargs):
        super().__init__(message=message, code="TOKEN_INVALID", **kwargs)


class TokenExpiredError(TokenVerificationError):
    def __init__(self, message: str = "Token has expired", **kwargs):
        super().__init__(message=message, code="TOKEN_EXPIRED", **kwargs)


class TokenIssuerMismatchError(TokenVerificationError):
    def __init__(self, message: str = "Token issuer mismatch", **kwargs):
        super().__init__(message=message, code="TOKEN_ISSUER_MISMATCH", **kwargs)


class TokenAudienceMismatchError(TokenVerificationError):
    def __init__(self, message: str = "Token audience mismatch", **kwargs):
        super().__init__(
            message=message, code="TOKEN_AUDIENCE_MISMATCH", **kwargs
        )


class JWKSFetchError(VMSError):
    """Raised when the key set could not be retrieved from the provider."""

    def __init__(
        self,
        message: str = "Failed to fetch signing keys",
        code: str = "JWKS_FETCH_FAILED",
        status_code: int = 502,
        **kwargs,
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=status_code,
            **kwargs,
        )


class JWKSFetchTimeoutError(JWKSFetchError):
    """Raised when the provider did not answer in time. Retryable."""

    def __init__(
        self, message: str = "Timed out fetching signing keys", **kwargs
    ):
        super().__init__(
            message=message,
            code="JWKS_FETCH_TIMEOUT",
            status_code=503,
            **kwargs,
        )


#       AUTHENTICATION EXCEPTIONS
# ---------------------------------------


class AuthenticationFailedError(VMSError):
    """Generic login failure shown to end users."""

    def __init__(self, message: str = "Authentication failed", **kwargs):
        super().__init__(
            message=message,
            code="AUTHENTICATION_FAILED",
            status_code=401,
            **kwargs,
        )


class InvalidCredentialsError(VMSError):
    conceal_on_login = True

    def __init__(self, message: str = "Invalid credentials", **kwargs):
        super().__init__(
            message=message,
            code="INVALID_CREDENTIALS",
            status_code=401,
            **kwargs,
        )


class AccountDeactivatedError(VMSError):
    conceal_on_login = True

    def __init__(self, message: str = "Account is deactivated", **kwargs):
        super().__init__(
            message=message,
            code="ACCOUNT_DEACTIVATED",
            status_code=403,
            **kwargs,
        )


class UserNotProvisionedError(VMSError):
    """Raised when an external identity has no local account to map to."""

    conceal_on_login = True

    def __init__(self, message: str = "User is not provisioned", **kwargs):
        super().__init__(
            message=message,
            code="USER_NOT_PROVISIONED",
            status_code=403,
            **kwargs,
        )


class UserNotFoundError(VMSError):
    def __init__(self, message: str = "User not found", **kwargs):
        super().__init__(
            message=message,
            code="USER_NOT_FOUND",
            status_code=404,
            **kwargs,
        )


class InvalidPasswordError(VMSError):
    def __init__(self, message: str = "Current password is incorrect", **kwargs):
        super().__init__(
            message=message,
            code="INVALID_PASSWORD",
            status_code=401,
            **kwargs,
        )


class NotAuthenticatedError(VMSError):
    def __init__(self, message: str = "Not authenticated", **kwargs):
        super().__init__(
            message=message,
            code="NOT_AUTHENTICATED",
            status_code=401,
            **kwargs,
        )


class SessionExpiredError(VMSError):
    def __init__(self, message: str = "Session has expired", **kwargs):
        super().__init__(
            message=message,
            code="SESSION_EXPIRED",
            status_code=401,
            **kwargs,
        )


class SessionRevokedError(VMSError):
    def __init__(self, message: str = "Session has been revoked", **kwargs):
        super().__init__(
            message=message,
            code="SESSION_REVOKED",
            status_code=401,
            **kwargs,
        )


#       MFA EXCEPTIONS
# ------------------------------


class MFARequiredError(VMSError):
    def __init__(self, message: str = "MFA code required", **kwargs):
        super().__init__(
            message=message,
            code="MFA_REQUIRED",
            status_code=401,
            **kwargs,
        )


class MFAInvalidCodeError(VMSError):
    def __init__(self, message: str = "Invalid MFA code", **kwargs):
        super().__init__(
            message=message,
            code="MFA_INVALID_CODE",
            status_code=401,
            **kwargs,
        )


class MFANotEnabledError(VMSError):
    def __init__(self, message: str = "MFA is not enabled", **kwargs):
        super().__init__(
            message=message,
            code="MFA_NOT_ENABLED",
            status_code=400,
            **kwargs,
        )


class MFANotInitiatedError(VMSError):
    def __init__(self, message: str = "MFA setup has not been initiated", **kwargs):
        super().__init__(
            message=message,
            code="MFA_NOT_INITIATED",
            status_code=400,
            **kwargs,
        )


#       RBAC EXCEPTIONS
# ------------------------------


class PermissionDeniedError(VMSError):
    """Raised when the caller lacks a required permission."""

    def __init__(self, message: str = "Insufficient permissions", **kwargs):
        super().__init__(
            message=message,
            code="PERMISSION_DENIED",
            status_code=403,
            **kwargs,
        )


class PermissionNotFoundError(VMSError):
    def __init__(self, message: str = "Permission not found", **kwargs):
        super().__init__(
            message=message,
            code="PERMISSION_NOT_FOUND",
            status_code=400,
            **kwargs,
        )


class RoleNotFoundError(VMSError):
    def __init__(self, message: str = "Role not found", **kwargs):
        super().__init__(
            message=message,
            code="ROLE_NOT_FOUND",
            status_code=404,
            **kwargs,
        )


class RoleExistsError(VMSError):
    def __init__(self, message: str = "Role with this name already exists", **kwargs):
        super().__init__(
            message=message,
            code="ROLE_EXISTS",
            status_code=409,
            **kwargs,
        )


class RoleInUseError(VMSError):
    def __init__(
        self, message: str = "Cannot delete role that is assigned to users", **kwargs
    ):
        super().__init__(
            message=message,
            code="ROLE_IN_USE",
            status_code=409,
            **kwargs,
        )


class SystemRoleImmutableError(VMSError):
    def __init__(self, message: str = "System roles cannot be modified", **kwargs):
        super().__init__(
            message=message,
            code="SYSTEM_ROLE_IMMUTABLE",
            status_code=403,
            **kwargs,
        )


#       DATABASE EXCEPTIONS
# ----------------------------------


class DatabaseError(VMSError):
    """Raised when the persistence layer fails."""

    def __init__(self, message: str = "Database operation failed", **kwargs):
        super().__init__(
            message=message,
            code="DATABASE_ERROR",
            status_code=500,
            **kwargs,
        )


#       CONFIGURATION EXCEPTIONS
# -------------------------------------


class ConfigurationError(VMSError):
    """Raised when configuration is invalid."""

    def __init__(self, message: str = "Invalid configuration", **kwargs):
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            status_code=500,
            **kwargs,
        )


class SeederError(ConfigurationError):
    """Raised when seeding the permission catalog or system roles fails."""
