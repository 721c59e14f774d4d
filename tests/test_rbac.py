"""
Role and permission tests.

Coverage:
- parse_permission and PermissionEvaluator decisions (fail closed)
- Seeding of the permission catalog and system roles
- RoleStore: tenant roles, exact permission assignment, immutability of
  system roles, deletion of roles still assigned to users
- /api/roles routes and their permission guards

Test types: Unit, Integration
"""

from uuid import uuid4

import pytest

from vms_auth.core import seed_initial_data
from vms_auth.exceptions import (
    PermissionDeniedError,
    PermissionNotFoundError,
    RoleExistsError,
    RoleInUseError,
    RoleNotFoundError,
    SeederError,
    SystemRoleImmutableError,
)
from vms_auth.models import Role, SystemRole
from vms_auth.services.database import InMemoryStore
from vms_auth.services.rbac import (
    PermissionEvaluator,
    PermissionSnapshot,
    RoleStore,
    parse_permission,
)
from test_utils import assert_error, build_user, session_headers, session_token


#                        PERMISSION EVALUATOR
# ----------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.rbac
class TestPermissionEvaluator:
    @pytest.fixture
    def evaluator(self):
        return PermissionEvaluator()

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("visits:check_in", ("visits", "check_in")),
            (" roles:read ", ("roles", "read")),
            ("visits", None),
            ("visits:", None),
            (":read", None),
            ("a:b:c", None),
            (None, None),
        ],
    )
    def test_parse_permission_splits_resource_and_action(self, value, expected):
        assert parse_permission(value) == expected

    def test_granted_permission_is_allowed(self, evaluator):
        snapshot = PermissionSnapshot.build("reception", ["visits:check_in"])

        assert evaluator.evaluate(snapshot, "visits:check_in") is True

    def test_permission_outside_snapshot_is_denied(self, evaluator):
        snapshot = PermissionSnapshot.build("reception", ["visits:check_in"])

        assert evaluator.evaluate(snapshot, "visits:delete") is False

    def test_super_admin_bypasses_every_check(self, evaluator):
        snapshot = PermissionSnapshot.build(SystemRole.SUPER_ADMIN.value, [], system_role=True)

        assert evaluator.evaluate(snapshot, "emergency:initiate") is True
        assert evaluator.evaluate(snapshot, "anything:at_all") is True

    def test_tenant_role_named_super_admin_gets_no_bypass(self, evaluator):
        snapshot = PermissionSnapshot.build(SystemRole.SUPER_ADMIN.value, [])

        assert evaluator.evaluate(snapshot, "identity_providers:manage") is False

    def test_missing_snapshot_and_malformed_permission_fail_closed(self, evaluator):
        snapshot = PermissionSnapshot.build("admin", ["visits:read"])

        assert evaluator.evaluate(None, "visits:read") is False
        assert evaluator.evaluate(snapshot, "visits") is False
        assert evaluator.evaluate(PermissionSnapshot.build("host", []), "visits:read") is False

    def test_evaluate_any_needs_a_single_match(self, evaluator):
        snapshot = PermissionSnapshot.build("host", ["invitations:create"])

        assert evaluator.evaluate_any(snapshot, ["visits:delete", "invitations:create"])
        assert not evaluator.evaluate_any(snapshot, ["visits:delete", "roles:read"])
        assert not evaluator.evaluate_any(snapshot, [])


#                              SEEDER
# ----------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.rbac
class TestSeeder:
    def test_admin_role_receives_the_whole_catalog(self, state):
        admin = state.store.get_role_by_name(None, SystemRole.ADMIN.value)
        catalog = {p.id for p in state.store.list_permissions()}

        assert admin.is_system is True
        assert set(admin.permission_ids) == catalog
        assert len(catalog) == len(state.settings.rbac.permissions)

    def test_every_system_role_is_seeded(self, state):
        for role in SystemRole:
            seeded = state.store.get_role_by_name(None, role.value)
            assert seeded is not None, role
            assert seeded.tenant_id is None

    def test_seeding_twice_changes_nothing(self, state):
        before = {r.name: sorted(r.permission_ids) for r in state.store.list_roles(uuid4())}

        seed_initial_data(state.store, state.settings.rbac.as_dict)

        after = {r.name: sorted(r.permission_ids) for r in state.store.list_roles(uuid4())}
        assert before == after
        assert len(state.store.list_permissions()) == len(state.settings.rbac.permissions)

    def test_unknown_permission_in_system_role_aborts_seeding(self):
        config = {
            "permissions": [{"resource": "visits", "action": "read"}],
            "system_roles": {"host": {"permissions": ["visits:teleport"]}},
        }

        with pytest.raises(SeederError):
            seed_initial_data(InMemoryStore(), config)

    def test_seeding_without_store_is_a_configuration_error(self):
        with pytest.raises(SeederError):
            seed_initial_data(None, {})


#                            ROLE STORE
# ----------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.rbac
class TestRoleStore:
    @pytest.fixture
    def roles(self, state) -> RoleStore:
        return state.role_store

    def test_reception_can_check_in_but_not_delete_visits(self, state, acme, roles):
        snapshot = roles.snapshot_for(state.store.get_user(acme.reception.id))
        evaluator = PermissionEvaluator()

        assert snapshot.role_name == SystemRole.RECEPTION.value
        assert evaluator.evaluate(snapshot, "visits:check_in")
        assert not evaluator.evaluate(snapshot, "visits:delete")

    def test_create_role_accepts_permission_names_and_ids(self, acme, roles):
        badge = next(p for p in roles.list_permissions() if p.key == "visits:print_badge")

        role = roles.create_role(
            acme.tenant.id, "Badge Desk", "Prints badges", ["visits:read", str(badge.id)]
        )

        assert role.is_system is False
        assert role.tenant_id == acme.tenant.id
        assert sorted(p.key for p in roles.role_permissions(role)) == [
            "visits:print_badge",
            "visits:read",
        ]

    def test_unknown_permission_rejects_role_creation(self, acme, roles):
        with pytest.raises(PermissionNotFoundError) as exc_info:
            roles.create_role(acme.tenant.id, "Broken", None, ["visits:read", "visits:fly"])

        assert exc_info.value.details["unknown_permissions"] == ["visits:fly"]
        assert all(r.name != "Broken" for r in roles.list_roles(acme.tenant.id))

    def test_duplicate_role_name_within_tenant_is_rejected(self, acme, roles):
        roles.create_role(acme.tenant.id, "Night Shift")

        with pytest.raises(RoleExistsError):
            roles.create_role(acme.tenant.id, "night shift")

    def test_assign_permissions_sets_exactly_the_given_set(self, acme, roles):
        role = roles.create_role(
            acme.tenant.id, "Desk", None, ["visits:read", "visits:check_in", "visitors:read"]
        )

        role = roles.assign_permissions(
            acme.tenant.id, role.id, ["visits:check_out", "visits:read", "visits:read"]
        )

        assert sorted(p.key for p in roles.role_permissions(role)) == [
            "visits:check_out",
            "visits:read",
        ]

    def test_assign_permissions_refreshes_holders_materialized_permissions(
        self, state, acme, roles
    ):
        role = roles.create_role(acme.tenant.id, "Desk", None, ["visits:read"])
        holder = build_user(state, acme.tenant, "desk@acme.com", "Desk")

        roles.assign_permissions(acme.tenant.id, role.id, ["visits:check_in"])

        assert state.store.get_user(holder.id).permissions == ["visits:check_in"]

    def test_system_roles_cannot_be_modified_or_deleted(self, acme, roles):
        reception = roles.get_role_by_name(acme.tenant.id, SystemRole.RECEPTION.value)

        with pytest.raises(SystemRoleImmutableError):
            roles.update_role(acme.tenant.id, reception.id, name="Front Desk")
        with pytest.raises(SystemRoleImmutableError):
            roles.assign_permissions(acme.tenant.id, reception.id, ["visits:delete"])
        with pytest.raises(SystemRoleImmutableError):
            roles.delete_role(acme.tenant.id, reception.id)

    def test_role_assigned_to_a_user_cannot_be_deleted(self, state, acme, roles):
        role = roles.create_role(acme.tenant.id, "Temp", None, ["visits:read"])
        build_user(state, acme.tenant, "temp@acme.com", "Temp")

        with pytest.raises(RoleInUseError) as exc_info:
            roles.delete_role(acme.tenant.id, role.id)

        assert exc_info.value.details["users"] == 1

    def test_unused_role_is_deleted(self, acme, roles):
        role = roles.create_role(acme.tenant.id, "Temp", None, ["visits:read"])

        roles.delete_role(acme.tenant.id, role.id)

        with pytest.raises(RoleNotFoundError):
            roles.get_role(acme.tenant.id, role.id)

    def test_roles_of_other_tenants_are_invisible(self, acme, globex, roles):
        foreign = roles.create_role(globex.tenant.id, "Globex Only", None, ["visits:read"])

        with pytest.raises(RoleNotFoundError):
            roles.get_role(acme.tenant.id, foreign.id)
        names = {r.name for r in roles.list_roles(acme.tenant.id)}
        assert "Globex Only" not in names
        assert SystemRole.HOST.value in names

    @pytest.mark.security
    @pytest.mark.parametrize("name", ["super_admin", "Super_Admin", " admin "])
    def test_system_role_names_are_reserved(self, acme, roles, name):
        with pytest.raises(RoleExistsError) as exc_info:
            roles.create_role(acme.tenant.id, name)

        assert "reserved" in exc_info.value.message

    @pytest.mark.security
    def test_tenant_role_cannot_be_renamed_to_a_system_role(self, acme, roles):
        role = roles.create_role(acme.tenant.id, "Lobby", None, ["visits:read"])

        with pytest.raises(RoleExistsError):
            roles.update_role(acme.tenant.id, role.id, name="super_admin")

        assert roles.get_role(acme.tenant.id, role.id).name == "Lobby"

    @pytest.mark.security
    def test_only_the_seeded_super_admin_role_bypasses_checks(self, state, acme, globex, roles):
        # Written past RoleStore, as a pre-existing row would be
        state.store.add_role(
            Role(tenant_id=acme.tenant.id, name=SystemRole.SUPER_ADMIN.value, is_system=False)
        )
        impostor = build_user(state, acme.tenant, "eve@acme.com", SystemRole.SUPER_ADMIN.value)
        operator = build_user(
            state, globex.tenant, "root@globex.com", SystemRole.SUPER_ADMIN.value
        )
        evaluator = PermissionEvaluator()

        spoofed = roles.snapshot_for(impostor)
        genuine = roles.snapshot_for(operator)

        assert spoofed.is_super_admin is False
        assert not evaluator.evaluate(spoofed, "identity_providers:manage")
        assert genuine.is_super_admin is True
        assert evaluator.evaluate(genuine, "identity_providers:manage")

    @pytest.mark.security
    def test_super_admin_bypass_survives_the_session_token(self, state, acme, globex):
        state.store.add_role(
            Role(tenant_id=acme.tenant.id, name=SystemRole.SUPER_ADMIN.value, is_system=False)
        )
        impostor = build_user(state, acme.tenant, "eve@acme.com", SystemRole.SUPER_ADMIN.value)
        operator = build_user(
            state, globex.tenant, "root@globex.com", SystemRole.SUPER_ADMIN.value
        )
        issuer = state.session_issuer

        genuine = issuer.authenticate(session_token(state, operator))
        spoofed = issuer.authenticate(session_token(state, impostor))

        assert issuer.authorize(genuine, ["roles:delete"]).is_super_admin
        with pytest.raises(PermissionDeniedError):
            issuer.authorize(spoofed, ["roles:delete"])

    def test_user_with_dangling_role_gets_no_permissions(self, state, acme, roles):
        user = state.store.get_user(acme.reception.id)
        user.role_id = uuid4()

        snapshot = roles.snapshot_for(user)

        assert snapshot.permissions == frozenset()
        assert not PermissionEvaluator().evaluate(snapshot, "visits:read")


#                           ROLE API ROUTES
# ----------------------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.rbac
class TestRoleRoutes:
    def test_listing_roles_requires_roles_read(self, client, state, acme):
        response = client.get("/api/roles", headers=session_headers(state, acme.reception))

        body = assert_error(response, 403, "PERMISSION_DENIED")
        assert body["details"]["required_permission"] == "roles:read"

    def test_listing_roles_without_session_is_unauthenticated(self, client, acme):
        response = client.get("/api/roles")

        assert_error(response, 401, "NOT_AUTHENTICATED")
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_admin_lists_system_and_tenant_roles(self, client, state, acme):
        state.role_store.create_role(acme.tenant.id, "Lobby", None, ["visits:read"])

        response = client.get("/api/roles", headers=session_headers(state, acme.admin))

        assert response.status_code == 200
        roles = {r["name"]: r for r in response.json()}
        assert roles["reception"]["is_system"] is True
        assert "visits:check_in" in roles["reception"]["permissions"]
        assert roles["Lobby"]["permissions"] == ["visits:read"]

    def test_permission_catalog_route_is_not_shadowed_by_role_id(self, client, state, acme):
        response = client.get(
            "/api/roles/permissions/all", headers=session_headers(state, acme.admin)
        )

        assert response.status_code == 200
        keys = {p["key"] for p in response.json()}
        assert {"visits:check_in", "roles:read", "identity_providers:manage"} <= keys

    def test_admin_creates_role_then_replaces_its_permissions(self, client, state, acme):
        headers = session_headers(state, acme.admin)

        created = client.post(
            "/api/roles",
            json={"name": "Greeter", "permissions": ["visitors:read"]},
            headers=headers,
        )
        assert created.status_code == 201
        role_id = created.json()["id"]

        updated = client.post(
            f"/api/roles/{role_id}/permissions",
            json={"permissions": ["visits:read", "visits:check_in"]},
            headers=headers,
        )
        assert updated.status_code == 200
        assert sorted(updated.json()["permissions"]) == ["visits:check_in", "visits:read"]

        listed = client.get(f"/api/roles/{role_id}/permissions", headers=headers)
        assert sorted(p["key"] for p in listed.json()) == ["visits:check_in", "visits:read"]

    def test_creating_a_role_with_a_system_name_conflicts(self, client, state, acme):
        response = client.post(
            "/api/roles",
            json={"name": "super_admin", "permissions": []},
            headers=session_headers(state, acme.admin),
        )

        assert_error(response, 409, "ROLE_EXISTS")

    def test_unknown_permission_is_a_bad_request(self, client, state, acme):
        response = client.post(
            "/api/roles",
            json={"name": "Greeter", "permissions": ["visits:teleport"]},
            headers=session_headers(state, acme.admin),
        )

        body = assert_error(response, 400, "PERMISSION_NOT_FOUND")
        assert body["details"]["unknown_permissions"] == ["visits:teleport"]

    def test_deleting_a_system_role_is_forbidden(self, client, state, acme):
        host = state.role_store.get_role_by_name(acme.tenant.id, SystemRole.HOST.value)

        response = client.delete(
            f"/api/roles/{host.id}", headers=session_headers(state, acme.admin)
        )

        assert_error(response, 403, "SYSTEM_ROLE_IMMUTABLE")

    def test_deleting_a_role_in_use_is_a_conflict(self, client, state, acme):
        role = state.role_store.create_role(acme.tenant.id, "Temp", None, ["visits:read"])
        build_user(state, acme.tenant, "temp@acme.com", "Temp")

        response = client.delete(
            f"/api/roles/{role.id}", headers=session_headers(state, acme.admin)
        )

        assert_error(response, 409, "ROLE_IN_USE")

    def test_role_changes_are_audited(self, client, state, acme):
        client.post(
            "/api/roles",
            json={"name": "Audited", "permissions": []},
            headers=session_headers(state, acme.admin),
        )

        entries = state.audit_service.entries
        assert any(
            e.resource_type == "role" and e.action == "CREATE" and e.resource_name == "Audited"
            for e in entries
        )
