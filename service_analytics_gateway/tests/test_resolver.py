"""
Unit tests for AccessResolver.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from shared.errors import ExternalServiceError, ForbiddenError, MissingScopeError
from service_analytics_gateway.app.domain import AccessResolver
from service_analytics_gateway.app.domain.models import (
    AccessDecision,
    AccessDenied,
    PrivilegeLevel,
    ScopeSource,
)


class TestAccessResolver:
    """Test cases for AccessResolver."""

    @pytest.fixture
    def resolver(self, agency_store):
        return AccessResolver(agency_store, agency_store, agency_store)

    @pytest.mark.asyncio
    async def test_agency_member_sees_active_clients_only(self, resolver, make_identity):
        decision = await resolver.resolve(make_identity("agency-user"))

        assert isinstance(decision, AccessDecision)
        assert decision.anchor_organization_id == "org-a"
        assert decision.organization_ids == frozenset({"org-a", "org-b"})
        assert decision.app_ids == frozenset({"app1", "app2"})
        assert decision.privilege is PrivilegeLevel.MEMBER
        assert decision.scope_source is ScopeSource.USER_MEMBERSHIP

    @pytest.mark.asyncio
    async def test_agency_member_can_select_managed_client(self, resolver, make_identity):
        decision = await resolver.resolve(make_identity("agency-user"), "org-b")

        assert decision.anchor_organization_id == "org-b"
        assert decision.organization_ids == frozenset({"org-b"})
        assert decision.privilege is PrivilegeLevel.DELEGATED
        assert decision.scope_source is ScopeSource.AGENCY_DELEGATION

    @pytest.mark.asyncio
    async def test_inactive_link_is_forbidden(self, resolver, make_identity):
        with pytest.raises(ForbiddenError):
            await resolver.resolve(make_identity("agency-user"), "org-c")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", ["org-a", "org-c", "org-d", "does-not-exist"])
    async def test_unrelated_organization_is_always_forbidden(self, resolver, make_identity, target):
        with pytest.raises(ForbiddenError):
            await resolver.resolve(make_identity("client-user"), target)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("app_ids", [None, [], ["app1"], ["unknown"]])
    async def test_platform_admin_without_organization_is_missing_scope(self, resolver, make_identity, app_ids):
        with pytest.raises(MissingScopeError):
            await resolver.resolve(make_identity("platform-admin"), None, app_ids)

    @pytest.mark.asyncio
    async def test_platform_admin_selection_expands_clients(self, resolver, make_identity):
        decision = await resolver.resolve(make_identity("platform-admin"), "org-a")

        assert decision.organization_ids == frozenset({"org-a", "org-b"})
        assert decision.app_ids == frozenset({"app1", "app2"})
        assert decision.privilege is PrivilegeLevel.PLATFORM
        assert decision.scope_source is ScopeSource.PLATFORM_ADMIN_SELECTION

    @pytest.mark.asyncio
    async def test_platform_role_outranks_membership(self, agency_store, make_identity):
        agency_store.assign_role("client-user", "SUPER_ADMIN")
        resolver = AccessResolver(agency_store, agency_store, agency_store)

        with pytest.raises(MissingScopeError):
            await resolver.resolve(make_identity("client-user"))

        decision = await resolver.resolve(make_identity("client-user"), "org-d")
        assert decision.app_ids == frozenset({"app4"})

    @pytest.mark.asyncio
    async def test_several_memberships_require_selection(self, resolver, make_identity):
        with pytest.raises(MissingScopeError):
            await resolver.resolve(make_identity("multi-user"))

        decision = await resolver.resolve(make_identity("multi-user"), "org-d")
        assert decision.anchor_organization_id == "org-d"
        assert decision.app_ids == frozenset({"app4"})

    @pytest.mark.asyncio
    async def test_user_without_roles_is_forbidden(self, resolver, make_identity):
        with pytest.raises(ForbiddenError):
            await resolver.resolve(make_identity("no-roles"))

    @pytest.mark.asyncio
    async def test_requested_subset_is_intersected(self, resolver, make_identity):
        decision = await resolver.resolve(make_identity("agency-user"), None, ["app2", "app3", "app4"])

        assert decision.app_ids == frozenset({"app2"})

    @pytest.mark.asyncio
    async def test_empty_subset_means_no_subset(self, resolver, make_identity):
        decision = await resolver.resolve(make_identity("agency-user"), None, [])

        assert decision.app_ids == frozenset({"app1", "app2"})

    @pytest.mark.asyncio
    async def test_disjoint_subset_is_denied(self, resolver, make_identity):
        result = await resolver.resolve(make_identity("agency-user"), None, ["app3"])

        assert isinstance(result, AccessDenied)
        assert result.reason == "no_requested_app_granted"
        assert result.organization_ids == frozenset({"org-a", "org-b"})

    @pytest.mark.asyncio
    async def test_detached_grant_is_not_readable(self, agency_store, make_identity):
        agency_store.detach_app("org-d", "app4", datetime(2024, 6, 1, tzinfo=timezone.utc))
        resolver = AccessResolver(agency_store, agency_store, agency_store)

        result = await resolver.resolve(make_identity("outsider"))

        assert isinstance(result, AccessDenied)
        assert result.reason == "no_active_grants"

    @pytest.mark.asyncio
    async def test_deactivated_client_organization_is_excluded(self, agency_store, make_identity):
        agency_store.deactivate_organization("org-b")
        resolver = AccessResolver(agency_store, agency_store, agency_store)

        result = await resolver.resolve(make_identity("agency-user"))

        assert isinstance(result, AccessDenied)
        assert result.organization_ids == frozenset({"org-a"})

    @pytest.mark.asyncio
    async def test_delegation_is_one_level_deep(self, agency_store, make_identity):
        agency_store.add_organization("org-e")
        agency_store.link_agency("org-b", "org-e")
        agency_store.attach_app("org-e", "app5")
        resolver = AccessResolver(agency_store, agency_store, agency_store)

        own = await resolver.resolve(make_identity("agency-user"))
        delegated = await resolver.resolve(make_identity("agency-user"), "org-b")

        assert "org-e" not in own.organization_ids
        assert delegated.organization_ids == frozenset({"org-b"})
        with pytest.raises(ForbiddenError):
            await resolver.resolve(make_identity("agency-user"), "org-e")

    @pytest.mark.asyncio
    async def test_resolution_is_idempotent(self, resolver, make_identity):
        first = await resolver.resolve(make_identity("agency-user"), None, ["app1", "app2"])
        second = await resolver.resolve(make_identity("agency-user"), None, ["app1", "app2"])

        assert first == second

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, agency_store, make_identity):
        grants = AsyncMock(side_effect=ExternalServiceError("access_store", "connection refused"))
        agency_store.active_grants_for = grants
        resolver = AccessResolver(agency_store, agency_store, agency_store)

        with pytest.raises(ExternalServiceError):
            await resolver.resolve(make_identity("agency-user"))
