"""Tests for permission resolution and cache coherence."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from ad_rbac.core.exceptions import CacheError, CacheInvalidationError
from ad_rbac.features.permissions.services import PermissionResolver


@pytest.fixture
def resolver_with(rbac, clock):
    """Build a resolver over the container's repositories with a given cache."""

    def build(cache, cache_ttl=3600):
        base = rbac.resolver
        return PermissionResolver(
            base.assignments, base.roles, base.groups, base.permissions,
            cache=cache, cache_ttl=cache_ttl, clock=clock,
        )

    return build


@pytest.fixture
def failing_cache():
    cache = AsyncMock()
    cache.get = AsyncMock(return_value=None)
    cache.version = AsyncMock(return_value=0)
    cache.set = AsyncMock(return_value=True)
    cache.invalidate = AsyncMock(side_effect=CacheInvalidationError("redis down"))
    cache.invalidate_many = AsyncMock(side_effect=CacheInvalidationError("redis down"))
    return cache


class TestResolution:
    """Three-path resolution."""

    @pytest.mark.asyncio
    async def test_scenario_grant_then_revoke_editor(self, rbac, alice):
        posts_edit = await rbac.catalog.create_permission("posts", "edit")
        editor = await rbac.catalog.create_role("editor", permission_ids=[posts_edit.id])
        await rbac.assignments.assign(alice, editor)

        assert await rbac.resolver.has_permission(alice, "posts.edit") is True

        revoked = await rbac.assignments.unassign(alice, editor)

        assert revoked.is_active is False
        assert await rbac.resolver.has_permission(alice, "posts.edit") is False

    @pytest.mark.asyncio
    async def test_union_of_direct_role_and_group_paths(self, rbac, alice, catalog_seed):
        await rbac.assignments.assign(alice, catalog_seed["approve"])
        await rbac.assignments.assign(alice, catalog_seed["viewer"])
        await rbac.assignments.assign(alice, catalog_seed["finance"])

        permissions = await rbac.resolver.effective_permissions(alice)

        assert permissions == {"invoice.approve", "report.view", "report.edit"}

    @pytest.mark.asyncio
    async def test_breakdown_groups_by_source(self, rbac, alice, catalog_seed):
        await rbac.assignments.assign(alice, catalog_seed["approve"])
        await rbac.assignments.assign(alice, catalog_seed["viewer"])
        await rbac.assignments.assign(alice, catalog_seed["finance"])

        breakdown = await rbac.resolver.permission_breakdown(alice)

        assert breakdown.direct == {"invoice.approve"}
        assert breakdown.through_roles == {"viewer": {"report.view"}}
        assert breakdown.through_groups == {"finance": {"editor": {"report.edit"}}}

    @pytest.mark.asyncio
    async def test_group_nesting_does_not_grant(self, rbac, alice, catalog_seed):
        parent = await rbac.catalog.create_group("Operations")
        await rbac.catalog.update_group(catalog_seed["finance"].id, parent_id=parent.id)
        await rbac.assignments.assign(alice, parent)

        assert await rbac.resolver.effective_permissions(alice) == frozenset()

    @pytest.mark.asyncio
    async def test_expired_assignment_grants_nothing(self, rbac, alice, catalog_seed, clock):
        await rbac.assignments.assign(
            alice, catalog_seed["viewer"], expires_at=clock.now + timedelta(minutes=30)
        )
        assert await rbac.resolver.has_permission(alice, "report.view") is True

        clock.advance(minutes=31)

        assert await rbac.resolver.has_permission(alice, "report.view") is False
        assert await rbac.resolver.effective_permissions(alice) == frozenset()

    @pytest.mark.asyncio
    async def test_any_and_all_permissions(self, rbac, alice, catalog_seed):
        await rbac.assignments.assign(alice, catalog_seed["viewer"])

        assert await rbac.resolver.any_permission(alice, ["report.edit", "report.view"]) is True
        assert await rbac.resolver.any_permission(alice, []) is False
        assert await rbac.resolver.all_permissions(alice, ["report.edit", "report.view"]) is False
        assert await rbac.resolver.all_permissions(alice, []) is True

    @pytest.mark.asyncio
    async def test_active_role_and_group_slugs(self, rbac, alice, catalog_seed):
        await rbac.assignments.assign(alice, catalog_seed["viewer"])
        await rbac.assignments.assign(alice, catalog_seed["finance"])

        assert await rbac.resolver.active_role_slugs(alice) == {"viewer"}
        assert await rbac.resolver.active_group_slugs(alice) == {"finance"}


class TestCacheCoherence:
    """The cached set never outlives a committed change."""

    @pytest.mark.asyncio
    async def test_prepopulated_absent_result_is_invalidated_by_assign(self, rbac, alice, catalog_seed):
        assert await rbac.resolver.has_permission(alice, "report.view") is False
        assert await rbac.cache.get(alice.id) == frozenset()

        await rbac.assignments.assign(alice, catalog_seed["viewer"])

        assert await rbac.resolver.has_permission(alice, "report.view") is True

    @pytest.mark.asyncio
    async def test_short_circuit_match_is_not_cached(self, rbac, alice, catalog_seed):
        await rbac.assignments.assign(alice, catalog_seed["approve"])

        assert await rbac.resolver.has_permission(alice, "invoice.approve") is True
        assert await rbac.cache.get(alice.id) is None

        assert await rbac.resolver.has_permission(alice, "report.view") is False
        assert await rbac.cache.get(alice.id) == {"invoice.approve"}

    @pytest.mark.asyncio
    async def test_attach_fans_out_to_role_holders(self, rbac, alice, catalog_seed):
        await rbac.assignments.assign(alice, catalog_seed["viewer"])
        assert await rbac.resolver.effective_permissions(alice) == {"report.view"}

        await rbac.catalog.attach_permissions(catalog_seed["viewer"].id, [catalog_seed["approve"].id])

        assert await rbac.resolver.effective_permissions(alice) == {"report.view", "invoice.approve"}

    @pytest.mark.asyncio
    async def test_attach_fans_out_to_group_holders(self, rbac, bob, catalog_seed):
        await rbac.assignments.assign(bob, catalog_seed["finance"])
        assert await rbac.resolver.effective_permissions(bob) == {"report.edit"}

        await rbac.catalog.attach_permissions(catalog_seed["editor"].id, [catalog_seed["approve"].id])

        assert "invoice.approve" in await rbac.resolver.effective_permissions(bob)

    @pytest.mark.asyncio
    async def test_detach_fans_out(self, rbac, alice, catalog_seed):
        await rbac.assignments.assign(alice, catalog_seed["viewer"])
        assert await rbac.resolver.has_permission(alice, "report.view") is True
        await rbac.resolver.effective_permissions(alice)

        await rbac.catalog.detach_permissions(catalog_seed["viewer"].id, [catalog_seed["view"].id])

        assert await rbac.resolver.has_permission(alice, "report.view") is False

    @pytest.mark.asyncio
    async def test_moving_role_into_group_fans_out(self, rbac, bob, catalog_seed):
        await rbac.assignments.assign(bob, catalog_seed["finance"])
        assert await rbac.resolver.effective_permissions(bob) == {"report.edit"}

        await rbac.catalog.set_role_group(catalog_seed["viewer"].id, catalog_seed["finance"].id)

        assert await rbac.resolver.effective_permissions(bob) == {"report.edit", "report.view"}

    @pytest.mark.asyncio
    async def test_ttl_capped_at_earliest_expiry(self, resolver_with, rbac, alice, catalog_seed, clock):
        cache = AsyncMock()
        cache.get = AsyncMock(return_value=None)
        cache.version = AsyncMock(return_value=4)
        resolver = resolver_with(cache)
        await rbac.assignments.assign(alice, catalog_seed["viewer"], expires_at=clock.now + timedelta(minutes=10))

        await resolver.effective_permissions(alice)

        cache.set.assert_awaited_once_with(alice.id, frozenset({"report.view"}), 600, version=4)

    @pytest.mark.asyncio
    async def test_invalidation_during_resolution_skips_write(self, rbac, alice, catalog_seed, monkeypatch):
        await rbac.assignments.assign(alice, catalog_seed["viewer"])
        resolver = rbac.resolver
        original = resolver.assignments.list_for_employee

        async def racing(*args, **kwargs):
            rows = await original(*args, **kwargs)
            await resolver.invalidate(alice.id)
            return rows

        monkeypatch.setattr(resolver.assignments, "list_for_employee", racing)

        assert await resolver.effective_permissions(alice) == {"report.view"}
        assert await rbac.cache.get(alice.id) is None

    @pytest.mark.asyncio
    async def test_invalidation_from_another_resolver_refuses_write(
        self, resolver_with, rbac, alice, catalog_seed, monkeypatch
    ):
        # Two resolvers over one shared cache stand in for two processes.
        other = resolver_with(rbac.cache)
        await rbac.assignments.assign(alice, catalog_seed["viewer"])
        resolver = rbac.resolver
        original = resolver.assignments.list_for_employee

        async def racing(*args, **kwargs):
            rows = await original(*args, **kwargs)
            await other.invalidate(alice.id)
            return rows

        monkeypatch.setattr(resolver.assignments, "list_for_employee", racing)

        assert await resolver.effective_permissions(alice) == {"report.view"}
        assert await rbac.cache.get(alice.id) is None


class TestCacheFailures:
    """Cache errors degrade to recomputation."""

    @pytest.mark.asyncio
    async def test_read_failure_falls_back_to_store(self, resolver_with, rbac, alice, catalog_seed):
        cache = AsyncMock()
        cache.get = AsyncMock(side_effect=CacheError("timeout"))
        resolver = resolver_with(cache)
        await rbac.assignments.assign(alice, catalog_seed["viewer"])

        assert await resolver.has_permission(alice, "report.view") is True

    @pytest.mark.asyncio
    async def test_failed_invalidation_pins_employee_to_bypass(
        self, resolver_with, failing_cache, alice, caplog
    ):
        resolver = resolver_with(failing_cache)

        await resolver.invalidate(alice.id)

        assert resolver.is_bypassed(alice.id) is True
        assert any(r.levelname == "ERROR" for r in caplog.records)

        await resolver.effective_permissions(alice)

        failing_cache.get.assert_not_awaited()
        failing_cache.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bypass_cleared_when_retry_succeeds(self, resolver_with, failing_cache, alice):
        resolver = resolver_with(failing_cache)
        await resolver.invalidate(alice.id)
        failing_cache.invalidate_many.side_effect = None

        await resolver.effective_permissions(alice)

        assert resolver.is_bypassed(alice.id) is False
        failing_cache.invalidate_many.assert_awaited_with([alice.id])

    @pytest.mark.asyncio
    async def test_mutation_succeeds_when_invalidation_fails(
        self, resolver_with, failing_cache, rbac, alice, catalog_seed
    ):
        resolver = resolver_with(failing_cache)
        rbac.assignments.resolver = resolver

        assignment = await rbac.assignments.assign(alice, catalog_seed["viewer"])

        assert assignment.is_active is True
        assert resolver.is_bypassed(alice.id) is True
        assert await resolver.has_permission(alice, "report.view") is True

    @pytest.mark.asyncio
    async def test_pending_invalidation_retried_on_any_read(
        self, resolver_with, failing_cache, alice, bob
    ):
        resolver = resolver_with(failing_cache)
        await resolver.invalidate(alice.id)
        failing_cache.invalidate_many.side_effect = None

        await resolver.effective_permissions(bob)

        failing_cache.invalidate_many.assert_awaited_with([alice.id])
        assert resolver.is_bypassed(alice.id) is False

    @pytest.mark.asyncio
    async def test_version_read_failure_skips_write(self, resolver_with, rbac, alice, catalog_seed):
        cache = AsyncMock()
        cache.get = AsyncMock(return_value=None)
        cache.version = AsyncMock(side_effect=CacheError("timeout"))
        resolver = resolver_with(cache)
        await rbac.assignments.assign(alice, catalog_seed["viewer"])

        assert await resolver.effective_permissions(alice) == {"report.view"}
        cache.set.assert_not_awaited()
