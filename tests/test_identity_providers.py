"""
Identity provider registry tests.

Coverage:
- Per-type config validation and published defaults (Azure AD, Okta,
  Auth0, AWS Cognito)
- Provider lifecycle: created inactive, activate/deactivate, one provider
  per type and tenant, delete
- JWKS cache eviction when a provider's JWKS URI changes
- /api/identity-providers routes and their permission guards

Test types: Unit, Integration
"""

from uuid import uuid4

import pytest

from vms_auth.exceptions import (
    InvalidProviderConfigError,
    ProviderExistsError,
    ProviderInactiveError,
    ProviderNotConfiguredError,
    ProviderNotFoundError,
    TenantNotFoundError,
)
from vms_auth.models import ProviderType
from vms_auth.services.identity import (
    DEFAULT_EXTERNAL_ROLE,
    build_config,
    map_external_role,
)
from vms_auth.services.tokens import CachedKeySet
from test_utils import OktaSettings, assert_error, session_headers


AZURE_CONFIG = {
    "clientId": "azure-app-id",
    "tenantId": "9f0c3e6a-0000-4000-8000-000000000001",
    "jwksUri": "https://login.microsoftonline.com/common/discovery/v2.0/keys",
    "issuer": "https://login.microsoftonline.com/{tenantId}/v2.0",
    "audience": "api://vms",
}


#                         CONFIG VALIDATION
# ----------------------------------------------------------------------------


@pytest.mark.unit
class TestProviderConfigValidation:
    def test_azure_ad_issuer_template_is_filled_with_tenant_id(self):
        config = build_config(ProviderType.AZURE_AD, AZURE_CONFIG)

        assert config.expected_issuer() == (
            "https://login.microsoftonline.com/9f0c3e6a-0000-4000-8000-000000000001/v2.0"
        )
        assert config.audience == "api://vms"

    def test_azure_ad_requires_jwks_uri_and_issuer(self):
        config = {k: v for k, v in AZURE_CONFIG.items() if k not in ("jwksUri", "issuer")}

        with pytest.raises(InvalidProviderConfigError) as exc_info:
            build_config("azure_ad", config)

        fields = {e["field"] for e in exc_info.value.details["errors"]}
        assert {"jwks_uri", "issuer"} <= fields

    def test_azure_ad_rejects_unknown_issuer_placeholders(self):
        config = dict(AZURE_CONFIG, issuer="https://login.microsoftonline.com/{tid}/v2.0")

        with pytest.raises(InvalidProviderConfigError):
            build_config("azure_ad", config)

    def test_okta_derives_jwks_uri_and_defaults_audience_to_client_id(self):
        config = build_config("okta", OktaSettings.config())

        assert config.jwks_uri == OktaSettings.JWKS_URI
        assert config.audience == OktaSettings.CLIENT_ID
        assert config.expected_issuer() == OktaSettings.ISSUER

    def test_okta_domain_is_normalized_and_must_be_okta(self):
        config = build_config("okta", OktaSettings.config(domain="HTTPS://Acme.Okta.com/"))
        assert config.domain == "acme.okta.com"

        with pytest.raises(InvalidProviderConfigError):
            build_config("okta", OktaSettings.config(domain="acme.example.com"))

    def test_okta_requires_issuer(self):
        config = OktaSettings.config()
        del config["issuer"]

        with pytest.raises(InvalidProviderConfigError):
            build_config("okta", config)

    def test_auth0_derives_issuer_and_jwks_uri_from_domain(self):
        config = build_config("auth0", {"clientId": "abc", "domain": "acme.auth0.com"})

        assert config.issuer == "https://acme.auth0.com/"
        assert config.jwks_uri == "https://acme.auth0.com/.well-known/jwks.json"
        assert config.audience == "abc"

    def test_cognito_derives_pool_urls_from_region_and_pool_id(self):
        config = build_config(
            "aws_cognito",
            {"clientId": "cog", "region": "us-east-1", "userPoolId": "us-east-1_AbC123"},
        )

        pool = "https://cognito-idp.us-east-1.amazonaws.com/us-east-1_AbC123"
        assert config.issuer == pool
        assert config.jwks_uri == f"{pool}/.well-known/jwks.json"

    def test_cognito_rejects_malformed_region(self):
        with pytest.raises(InvalidProviderConfigError):
            build_config(
                "aws_cognito", {"clientId": "cog", "region": "mars", "userPoolId": "p"}
            )

    def test_plain_http_endpoints_are_rejected(self):
        with pytest.raises(InvalidProviderConfigError):
            build_config(
                "okta", OktaSettings.config(jwksUri="http://acme.okta.com/keys")
            )

    def test_unknown_provider_type_is_rejected(self):
        with pytest.raises(InvalidProviderConfigError) as exc_info:
            build_config("ldap", {"clientId": "x"})

        assert exc_info.value.details["provider_type"] == "ldap"

    def test_public_config_never_exposes_jwks_uri(self):
        config = build_config("okta", OktaSettings.config())

        public = config.public_config()
        assert "jwks_uri" not in public
        assert public["client_id"] == OktaSettings.CLIENT_ID


@pytest.mark.unit
class TestExternalRoleMapping:
    def test_first_recognised_claim_wins(self):
        assert map_external_role(["Everyone", "VMS.Security", "VMS.Admin"]).value == "security"

    def test_unrecognised_claims_fall_back_to_host(self):
        assert map_external_role(["Everyone"]) == DEFAULT_EXTERNAL_ROLE
        assert map_external_role([]).value == "host"

    @pytest.mark.parametrize(
        "claim, expected",
        [
            ("SuperAdmin", "super_admin"),
            ("Reception", "reception"),
            ("Approver", "approver"),
            ("security", "security"),
            ("admin", "admin"),
        ],
    )
    def test_auth0_and_generic_role_names_are_recognised(self, claim, expected):
        assert map_external_role(["Everyone", claim]).value == expected

    def test_generic_names_never_grant_super_admin(self):
        assert map_external_role(["super_admin"]) == DEFAULT_EXTERNAL_ROLE

    def test_default_can_be_suppressed(self):
        assert map_external_role(["Everyone"], default=None) is None


#                        REGISTRY LIFECYCLE
# ----------------------------------------------------------------------------


@pytest.mark.unit
class TestRegistryLifecycle:
    def test_new_provider_starts_inactive(self, state, acme):
        provider = state.registry.create(
            acme.tenant.id, "auth0", {"clientId": "abc", "domain": "acme.auth0.com"}
        )

        assert provider.is_active is False
        with pytest.raises(ProviderInactiveError):
            state.registry.get_active(acme.tenant.id, ProviderType.AUTH0)

    def test_activation_makes_provider_usable(self, state, acme):
        provider = state.registry.create(
            acme.tenant.id, "auth0", {"clientId": "abc", "domain": "acme.auth0.com"}
        )

        state.registry.activate(acme.tenant.id, provider.id)

        assert state.registry.get_active(acme.tenant.id, ProviderType.AUTH0).id == provider.id

    def test_unregistered_type_is_not_configured(self, state, acme):
        with pytest.raises(ProviderNotConfiguredError):
            state.registry.get_active(acme.tenant.id, ProviderType.AWS_COGNITO)

    def test_second_provider_of_same_type_is_rejected(self, state, acme):
        with pytest.raises(ProviderExistsError):
            state.registry.create(acme.tenant.id, "okta", OktaSettings.config())

    def test_registration_for_unknown_tenant_fails(self, state):
        with pytest.raises(TenantNotFoundError):
            state.registry.create(uuid4(), "okta", OktaSettings.config())

    def test_providers_of_other_tenants_are_not_found(self, state, acme, globex):
        with pytest.raises(ProviderNotFoundError):
            state.registry.get(globex.tenant.id, acme.okta.id)

    def test_update_replaces_config_and_keeps_type(self, state, acme):
        updated = state.registry.update(
            acme.tenant.id, acme.okta.id, OktaSettings.config(audience="api://acme")
        )

        assert updated.provider_type == ProviderType.OKTA
        assert updated.config.audience == "api://acme"
        assert updated.is_active is True

    def test_invalid_update_leaves_stored_config_untouched(self, state, acme):
        with pytest.raises(InvalidProviderConfigError):
            state.registry.update(acme.tenant.id, acme.okta.id, {"clientId": ""})

        stored = state.registry.get(acme.tenant.id, acme.okta.id)
        assert stored.config.client_id == OktaSettings.CLIENT_ID

    def test_delete_removes_provider(self, state, acme):
        state.registry.delete(acme.tenant.id, acme.okta.id)

        with pytest.raises(ProviderNotConfiguredError):
            state.registry.get_active(acme.tenant.id, ProviderType.OKTA)


@pytest.mark.unit
@pytest.mark.jwks
class TestRegistryCacheEviction:
    def _prime(self, state, uri):
        # Stand-in for a key set fetched earlier
        state.jwks_cache._entries[uri] = CachedKeySet(uri=uri, keys={}, fetched_at=0.0)

    def test_changing_jwks_uri_evicts_the_old_key_set(self, state, acme):
        self._prime(state, OktaSettings.JWKS_URI)

        state.registry.update(
            acme.tenant.id,
            acme.okta.id,
            OktaSettings.config(jwksUri="https://acme.okta.com/oauth2/custom/v1/keys"),
        )

        assert state.jwks_cache.peek(OktaSettings.JWKS_URI) is None

    def test_old_uri_still_used_by_another_tenant_is_kept(self, state, acme, globex):
        shared = state.registry.create(globex.tenant.id, "okta", OktaSettings.config())
        assert shared.config.jwks_uri == OktaSettings.JWKS_URI
        self._prime(state, OktaSettings.JWKS_URI)

        state.registry.update(
            acme.tenant.id,
            acme.okta.id,
            OktaSettings.config(jwksUri="https://acme.okta.com/oauth2/custom/v1/keys"),
        )

        assert state.jwks_cache.peek(OktaSettings.JWKS_URI) is not None

    def test_unchanged_jwks_uri_keeps_cache(self, state, acme):
        self._prime(state, OktaSettings.JWKS_URI)

        state.registry.update(acme.tenant.id, acme.okta.id, OktaSettings.config(name="x"))

        assert state.jwks_cache.peek(OktaSettings.JWKS_URI) is not None


#                     IDENTITY PROVIDER API ROUTES
# ----------------------------------------------------------------------------


@pytest.mark.integration
class TestIdentityProviderRoutes:
    def test_reception_cannot_read_providers(self, client, state, acme):
        response = client.get(
            "/api/identity-providers", headers=session_headers(state, acme.reception)
        )

        body = assert_error(response, 403, "PERMISSION_DENIED")
        assert body["details"]["required_permission"] == "identity_providers:read"

    def test_admin_lists_own_tenant_providers(self, client, state, acme):
        response = client.get(
            "/api/identity-providers", headers=session_headers(state, acme.admin)
        )

        assert response.status_code == 200
        providers = response.json()
        assert [p["provider_type"] for p in providers] == ["okta"]
        assert providers[0]["config"]["jwks_uri"] == OktaSettings.JWKS_URI

    def test_admin_registers_and_activates_a_provider(self, client, state, acme):
        headers = session_headers(state, acme.admin)

        created = client.post(
            "/api/identity-providers",
            json={
                "provider_type": "aws_cognito",
                "config": {
                    "clientId": "cog",
                    "region": "eu-west-1",
                    "userPoolId": "eu-west-1_Pool",
                },
            },
            headers=headers,
        )
        assert created.status_code == 201
        assert created.json()["is_active"] is False

        activated = client.post(
            f"/api/identity-providers/{created.json()['id']}/activate", headers=headers
        )
        assert activated.status_code == 200
        assert activated.json()["is_active"] is True

    def test_invalid_config_reports_field_errors(self, client, state, acme):
        response = client.post(
            "/api/identity-providers",
            json={"provider_type": "auth0", "config": {"clientId": "abc"}},
            headers=session_headers(state, acme.admin),
        )

        body = assert_error(response, 400, "INVALID_PROVIDER_CONFIG")
        assert any(e["field"] == "domain" for e in body["details"]["errors"])

    def test_duplicate_provider_is_a_conflict(self, client, state, acme):
        response = client.post(
            "/api/identity-providers",
            json={"provider_type": "okta", "config": OktaSettings.config()},
            headers=session_headers(state, acme.admin),
        )

        assert_error(response, 409, "PROVIDER_EXISTS")

    def test_provider_of_another_tenant_is_not_found(self, client, state, acme, globex):
        response = client.get(
            f"/api/identity-providers/{acme.okta.id}",
            headers=session_headers(state, globex.admin),
        )

        assert_error(response, 404, "PROVIDER_NOT_FOUND")
