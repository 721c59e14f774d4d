"""
Pytest configuration and fixtures for VMS auth testing.

This module provides:
- Test settings with cheap bcrypt rounds and audit logging disabled
- RSA signing keys shared across the session (key generation is slow)
- A fake Okta provider served through an httpx MockTransport
- A fully configured AppState over an in-memory store
- The "acme" hybrid tenant with reception, admin and MFA users
- TestClient fixtures for the FastAPI application

Coverage:
- Application fixtures with proper lifecycle management
- External identity provider fixtures
- Tenant, user and session fixtures

Test types: Unit, Integration
"""

import os
from types import SimpleNamespace
from typing import Generator

import pyotp
import pytest
from authlib.jose import JsonWebKey
from fastapi.testclient import TestClient

from vms_auth.api.app import create_application
from vms_auth.api.dependencies import AppState
from vms_auth.config import AppSettings, AuditSettings, SecuritySettings
from vms_auth.models import AuthStrategy, SystemRole
from vms_auth.services.database import InMemoryStore
from test_utils import (
    FakeIdentityProvider,
    JWKSEndpoints,
    OktaSettings,
    TestPasswords,
    TestTenants,
    build_tenant,
    build_user,
    register_provider,
)


TEST_SECRET_KEY = "test-secret-key-minimum-32-characters-long"


#                           ENVIRONMENT SETUP
# ----------------------------------------------------------------------------


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """
    Keep the developer's environment out of the tests.

    Audit logging would need a PostgreSQL server, so it is forced off.
    """
    original_env = {
        "ENABLE_AUDIT_LOGGING": os.environ.get("ENABLE_AUDIT_LOGGING"),
        "APP_ENV": os.environ.get("APP_ENV"),
    }

    os.environ["ENABLE_AUDIT_LOGGING"] = "false"
    os.environ["APP_ENV"] = "testing"

    yield

    for key, value in original_env.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


@pytest.fixture(scope="function")
def test_settings() -> AppSettings:
    """
    Settings for tests: fast bcrypt, no audit database, in-memory storage.

    Returns:
        AppSettings: Test configuration with the default permission catalog
    """
    return AppSettings(
        environment="testing",
        debug=True,
        security=SecuritySettings(secret_key=TEST_SECRET_KEY, bcrypt_rounds=4),
        audit=AuditSettings(ENABLE_AUDIT_LOGGING=False),
    )


#                         SIGNING KEY FIXTURES
# ----------------------------------------------------------------------------


@pytest.fixture(scope="session")
def signing_key():
    """The provider's current RS256 key, kid "k1"."""
    return JsonWebKey.generate_key("RSA", 2048, {"kid": "k1"}, is_private=True)


@pytest.fixture(scope="session")
def rotated_key():
    """A second provider key, kid "k2", published after a rotation."""
    return JsonWebKey.generate_key("RSA", 2048, {"kid": "k2"}, is_private=True)


@pytest.fixture(scope="session")
def forged_key():
    """An attacker's key that reuses kid "k1" but is never published."""
    return JsonWebKey.generate_key("RSA", 2048, {"kid": "k1"}, is_private=True)


#                       IDENTITY PROVIDER FIXTURES
# ----------------------------------------------------------------------------


@pytest.fixture(scope="function")
def jwks_endpoints() -> JWKSEndpoints:
    return JWKSEndpoints()


@pytest.fixture(scope="function")
def okta_idp(jwks_endpoints, signing_key) -> FakeIdentityProvider:
    """Fake Okta authorization server for the acme tenant."""
    return jwks_endpoints.register(
        FakeIdentityProvider(
            issuer=OktaSettings.ISSUER,
            audience=OktaSettings.CLIENT_ID,
            jwks_uri=OktaSettings.JWKS_URI,
            keys=[signing_key],
        )
    )


#                         APPLICATION FIXTURES
# ----------------------------------------------------------------------------


@pytest.fixture(scope="function")
def state(test_settings, jwks_endpoints) -> AppState:
    """
    A configured AppState over a fresh in-memory store.

    JWKS requests go to ``jwks_endpoints``; nothing leaves the process.
    """
    return AppState().configure(
        test_settings, store=InMemoryStore(), http_client=jwks_endpoints.client()
    )


@pytest.fixture(scope="function")
def acme(state, okta_idp) -> SimpleNamespace:
    """
    Hybrid tenant "acme.com" with an active Okta provider and three users.

    Attributes:
        tenant: the Tenant
        okta: the registered IdentityProvider
        reception: password user with the reception role
        admin: password user with the admin role
        mfa_user: password user with TOTP enabled (secret in ``mfa_secret``)
    """
    tenant = build_tenant(state, strategy=AuthStrategy.HYBRID)
    okta = register_provider(state, tenant)
    mfa_secret = pyotp.random_base32()

    return SimpleNamespace(
        tenant=tenant,
        okta=okta,
        idp=okta_idp,
        reception=build_user(
            state,
            tenant,
            "rita.reception@acme.com",
            SystemRole.RECEPTION.value,
            password=TestPasswords.RECEPTION,
            full_name="Rita Reception",
        ),
        admin=build_user(
            state,
            tenant,
            "adam.admin@acme.com",
            SystemRole.ADMIN.value,
            password=TestPasswords.ADMIN,
        ),
        mfa_user=build_user(
            state,
            tenant,
            "mia.mfa@acme.com",
            SystemRole.SECURITY.value,
            password=TestPasswords.MFA_USER,
            mfa_secret=mfa_secret,
        ),
        mfa_secret=mfa_secret,
    )


@pytest.fixture(scope="function")
def globex(state) -> SimpleNamespace:
    """A second, password-only tenant used for isolation checks."""
    tenant = build_tenant(
        state,
        name=TestTenants.GLOBEX_NAME,
        domain=TestTenants.GLOBEX_DOMAIN,
        strategy=AuthStrategy.TRADITIONAL,
    )
    return SimpleNamespace(
        tenant=tenant,
        admin=build_user(
            state,
            tenant,
            "gina.admin@globex.com",
            SystemRole.ADMIN.value,
            password=TestPasswords.ADMIN,
        ),
    )


@pytest.fixture(scope="function")
def app(state, test_settings):
    """
    Create a FastAPI application around the test AppState.

    The lifespan sees an initialized state and leaves it alone.
    """
    application = create_application(test_settings, state)
    yield application
    application.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client(app) -> Generator[TestClient, None, None]:
    """
    Create a TestClient without authentication.

    Use this for public endpoints, login flows and for asserting that
    protected endpoints answer 401.
    """
    with TestClient(app) as test_client:
        yield test_client
