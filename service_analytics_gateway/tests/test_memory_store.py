"""
Unit tests for the in-memory access store and the access data model.
"""

import json
from datetime import datetime, timezone

import pytest

from service_analytics_gateway.app.domain.models import AgencyLink, Role, RoleAssignment
from service_analytics_gateway.app.stores import InMemoryAccessStore


SEED = {
    "organizations": [
        {"id": "agency", "name": "Agency", "tier": "enterprise"},
        {"id": "client", "name": "Client"},
        {"id": "dormant", "name": "Dormant", "active": False},
    ],
    "role_assignments": [
        {"user_id": "u-admin", "role": "super_admin"},
        {"user_id": "u-agency", "role": "ASO_MANAGER", "organization_id": "agency"},
    ],
    "agency_links": [
        {"agency_id": "agency", "client_id": "client"},
        {"agency_id": "agency", "client_id": "dormant"},
    ],
    "access_grants": [
        {"organization_id": "client", "app_id": "app1", "attached_at": "2024-01-01T00:00:00Z"},
        {
            "organization_id": "client",
            "app_id": "app2",
            "attached_at": "2024-01-01T00:00:00Z",
            "detached_at": "2024-06-01T00:00:00Z",
        },
    ],
}


class TestInMemoryAccessStore:
    """Test cases for InMemoryAccessStore."""

    @pytest.mark.asyncio
    async def test_seed_document(self):
        store = InMemoryAccessStore.from_seed(SEED)

        [admin] = await store.roles_for("u-admin")
        assert admin.role is Role.SUPER_ADMIN
        assert admin.is_platform_wide

        assert await store.active_clients_of("agency") == ["client"]
        grants = await store.active_grants_for(["client"])
        assert [grant.app_id for grant in grants] == ["app1"]

    @pytest.mark.asyncio
    async def test_seed_file(self, tmp_path):
        path = tmp_path / "seed.json"
        path.write_text(json.dumps(SEED), encoding="utf-8")

        store = InMemoryAccessStore.from_seed(str(path))

        assert [role.organization_id for role in await store.roles_for("u-agency")] == ["agency"]

    @pytest.mark.asyncio
    async def test_soft_detached_grant_is_excluded(self):
        store = InMemoryAccessStore()
        store.add_organization("org")
        store.attach_app("org", "app", datetime(2024, 1, 1, tzinfo=timezone.utc))
        detached = store.detach_app("org", "app", datetime(2024, 6, 1, tzinfo=timezone.utc))

        assert detached.attached_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert detached.active is False
        assert await store.active_grants_for(["org"]) == []

    @pytest.mark.asyncio
    async def test_reattach_after_detach(self):
        store = InMemoryAccessStore()
        store.attach_app("org", "app")
        store.detach_app("org", "app")
        store.attach_app("org", "app")

        assert len(await store.active_grants_for(["org"])) == 1

    def test_duplicate_active_grant_rejected(self):
        store = InMemoryAccessStore()
        store.attach_app("org", "app")

        with pytest.raises(ValueError):
            store.attach_app("org", "app")

    def test_detach_without_active_grant(self):
        store = InMemoryAccessStore()

        with pytest.raises(KeyError):
            store.detach_app("org", "app")

    @pytest.mark.asyncio
    async def test_deactivated_link_is_not_active(self):
        store = InMemoryAccessStore()
        store.link_agency("agency", "client")
        store.deactivate_agency_link("agency", "client")

        assert await store.active_clients_of("agency") == []

    def test_assign_role_is_idempotent(self):
        store = InMemoryAccessStore()
        store.assign_role("user", "viewer", "org")
        store.assign_role("user", Role.VIEWER, "org")

        assert len(store._roles["user"]) == 1


class TestAccessModelInvariants:
    """Construction-time invariants of the access data model."""

    def test_only_super_admin_may_be_platform_wide(self):
        with pytest.raises(ValueError):
            RoleAssignment(user_id="user", role=Role.ORG_ADMIN, organization_id=None)

    def test_blank_organization_rejected(self):
        with pytest.raises(ValueError):
            RoleAssignment(user_id="user", role=Role.VIEWER, organization_id="  ")

    def test_agency_cannot_manage_itself(self):
        with pytest.raises(ValueError):
            AgencyLink("org", "org")

    def test_role_parse_normalizes_case(self):
        assert Role.parse(" analyst ") is Role.ANALYST
        with pytest.raises(ValueError):
            Role.parse("owner")
