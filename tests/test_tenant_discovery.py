"""
Tenant strategy resolution tests.

Coverage:
- Locating a tenant by id, email address and corporate domain
- Strategy views for traditional, single-provider and hybrid tenants
- Login method checks for each strategy
- /api/tenant-discovery/config responses

Test types: Unit, Integration
"""

from uuid import uuid4

import pytest

from vms_auth.exceptions import (
    AuthMethodNotAllowedError,
    ProviderInactiveError,
    ProviderNotConfiguredError,
    TenantInactiveError,
    TenantNotFoundError,
)
from vms_auth.models import AuthStrategy, ProviderType
from test_utils import OktaSettings, assert_error, build_tenant, register_provider


#                          TENANT LOOKUP
# ----------------------------------------------------------------------------


@pytest.mark.unit
class TestTenantLookup:
    @pytest.mark.parametrize(
        "identifier",
        ["acme.com", "ACME.COM", "someone@acme.com", " Someone@Acme.com "],
    )
    def test_tenant_found_by_email_or_domain(self, state, acme, identifier):
        assert state.resolver.find_tenant(identifier).id == acme.tenant.id

    def test_tenant_found_by_id_string_and_uuid(self, state, acme):
        assert state.resolver.find_tenant(str(acme.tenant.id)).id == acme.tenant.id
        assert state.resolver.find_tenant(acme.tenant.id).id == acme.tenant.id

    @pytest.mark.parametrize("identifier", ["", "nobody@nowhere.example", "user@"])
    def test_unknown_identifiers_are_not_found(self, state, acme, identifier):
        with pytest.raises(TenantNotFoundError):
            state.resolver.find_tenant(identifier)

    def test_unknown_uuid_is_not_found(self, state, acme):
        with pytest.raises(TenantNotFoundError):
            state.resolver.find_tenant(uuid4())

    def test_inactive_tenant_is_refused(self, state, acme):
        state.store.update_tenant(acme.tenant.model_copy(update={"is_active": False}))

        with pytest.raises(TenantInactiveError):
            state.resolver.find_tenant("acme.com")


#                        STRATEGY RESOLUTION
# ----------------------------------------------------------------------------


@pytest.mark.unit
class TestStrategyResolution:
    def test_hybrid_tenant_offers_password_and_active_providers(self, state, acme):
        strategy = state.resolver.resolve("acme.com")

        assert strategy.auth_strategy == AuthStrategy.HYBRID
        assert strategy.traditional_enabled is True
        assert strategy.provider_enabled(ProviderType.OKTA)
        assert not strategy.provider_enabled(ProviderType.AUTH0)

    def test_inactive_providers_are_not_offered(self, state, acme):
        register_provider(
            state,
            acme.tenant,
            ProviderType.AUTH0,
            {"clientId": "abc", "domain": "acme.auth0.com"},
            active=False,
        )

        strategy = state.resolver.resolve("acme.com")

        assert [p.provider_type for p in strategy.active_providers] == [ProviderType.OKTA]

    def test_traditional_tenant_offers_password_only(self, state, globex):
        register_provider(state, globex.tenant)

        strategy = state.resolver.resolve("globex.com")

        assert strategy.traditional_enabled is True
        assert strategy.active_providers == []

    def test_provider_strategy_requires_its_active_provider(self, state):
        tenant = build_tenant(
            state, name="Initech", domain="initech.com", strategy=AuthStrategy.OKTA
        )

        with pytest.raises(ProviderNotConfiguredError):
            state.resolver.resolve("initech.com")

        register_provider(state, tenant)
        strategy = state.resolver.resolve("initech.com")
        assert strategy.traditional_enabled is False
        assert strategy.provider_enabled(ProviderType.OKTA)

    def test_discovery_view_hides_jwks_uri(self, state, acme):
        view = state.resolver.resolve("acme.com").discovery_view()

        assert view["okta_enabled"] is True
        assert view["azure_ad_enabled"] is False
        assert view["providers"][0]["config"]["issuer"] == OktaSettings.ISSUER
        assert "jwks_uri" not in view["providers"][0]["config"]


@pytest.mark.unit
class TestLoginMethodCheck:
    def test_hybrid_tenant_accepts_password_and_active_provider(self, state, acme):
        assert state.resolver.check_method(acme.tenant) is None
        assert state.resolver.check_method(acme.tenant, ProviderType.OKTA).id == acme.okta.id

    def test_hybrid_tenant_rejects_unregistered_provider(self, state, acme):
        with pytest.raises(ProviderNotConfiguredError):
            state.resolver.check_method(acme.tenant, ProviderType.AUTH0)

    def test_inactive_provider_is_reported_as_inactive(self, state, acme):
        state.registry.deactivate(acme.tenant.id, acme.okta.id)

        with pytest.raises(ProviderInactiveError):
            state.resolver.check_method(acme.tenant, ProviderType.OKTA)

    def test_traditional_tenant_rejects_any_provider(self, state, globex):
        register_provider(state, globex.tenant)

        with pytest.raises(ProviderNotConfiguredError):
            state.resolver.check_method(globex.tenant, ProviderType.OKTA)

    def test_provider_tenant_rejects_passwords_and_other_providers(self, state):
        tenant = build_tenant(
            state, name="Initech", domain="initech.com", strategy=AuthStrategy.OKTA
        )
        register_provider(state, tenant)

        with pytest.raises(AuthMethodNotAllowedError):
            state.resolver.check_method(tenant)
        with pytest.raises(ProviderNotConfiguredError):
            state.resolver.check_method(tenant, ProviderType.AZURE_AD)


#                        DISCOVERY API ROUTE
# ----------------------------------------------------------------------------


@pytest.mark.integration
class TestTenantDiscoveryRoute:
    def test_discovery_by_email_describes_login_options(self, client, acme):
        response = client.get(
            "/api/tenant-discovery/config", params={"identifier": "rita@acme.com"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["tenant_id"] == str(acme.tenant.id)
        assert body["tenant_name"] == "Acme Corp"
        assert body["auth_strategy"] == "hybrid"
        assert body["traditional_enabled"] is True
        assert body["okta_enabled"] is True
        assert body["auth0_enabled"] is False
        assert body["providers"][0]["provider_type"] == "okta"
        assert "jwks_uri" not in body["providers"][0]["config"]

    def test_unknown_tenant_is_not_found(self, client, acme):
        response = client.get(
            "/api/tenant-discovery/config", params={"identifier": "unknown.example"}
        )

        assert_error(response, 404, "TENANT_NOT_FOUND")

    def test_identifier_is_required(self, client):
        response = client.get("/api/tenant-discovery/config")

        assert_error(response, 422, "VALIDATION_ERROR")
