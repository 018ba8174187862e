"""Tests for catalog structure rules."""

from dataclasses import replace
from datetime import timedelta

import pytest

from ad_rbac.config.constants import AuditEventType
from ad_rbac.core.exceptions import (
    CircularReferenceError,
    DuplicatePermission,
    DuplicateSlug,
    GroupNotFound,
    HasDependents,
    PermissionNotFound,
    ProtectedEntityError,
)
from ad_rbac.features.catalog.services.catalog_service import GROUP_TREE_LOCK, role_lock


class TestGroups:
    """Group hierarchy and deletion."""

    @pytest.mark.asyncio
    async def test_create_group_derives_slug(self, rbac):
        group = await rbac.catalog.create_group("HR Managers")

        assert group.slug == "hr-managers"
        assert group.parent_id is None

    @pytest.mark.asyncio
    async def test_duplicate_group_slug(self, rbac):
        await rbac.catalog.create_group("Finance")

        with pytest.raises(DuplicateSlug):
            await rbac.catalog.create_group("finance")

    @pytest.mark.asyncio
    async def test_cycle_rejected_and_rows_unchanged(self, rbac):
        a = await rbac.catalog.create_group("A")
        b = await rbac.catalog.create_group("B", parent_id=a.id)

        with pytest.raises(CircularReferenceError):
            await rbac.catalog.update_group(a.id, parent_id=b.id)

        assert (await rbac.catalog.get_group(a.id)).parent_id is None
        assert (await rbac.catalog.get_group(b.id)).parent_id == a.id

    @pytest.mark.asyncio
    async def test_deep_cycle_rejected(self, rbac):
        a = await rbac.catalog.create_group("A")
        b = await rbac.catalog.create_group("B", parent_id=a.id)
        c = await rbac.catalog.create_group("C", parent_id=b.id)

        with pytest.raises(CircularReferenceError):
            await rbac.catalog.update_group(a.id, parent_id=c.id)

    @pytest.mark.asyncio
    async def test_self_parent_rejected(self, rbac):
        a = await rbac.catalog.create_group("A")

        with pytest.raises(CircularReferenceError):
            await rbac.catalog.update_group(a.id, parent_id=a.id)

    @pytest.mark.asyncio
    async def test_missing_parent_rejected(self, rbac):
        a = await rbac.catalog.create_group("A")

        with pytest.raises(GroupNotFound):
            await rbac.catalog.update_group(a.id, parent_id=404)

    @pytest.mark.asyncio
    async def test_reparent_and_detach_to_root(self, rbac):
        a = await rbac.catalog.create_group("A")
        b = await rbac.catalog.create_group("B")

        moved = await rbac.catalog.update_group(b.id, parent_id=a.id)
        assert moved.parent_id == a.id

        rooted = await rbac.catalog.update_group(b.id, parent_id=None)
        assert rooted.parent_id is None

    @pytest.mark.asyncio
    async def test_group_tree(self, rbac):
        root = await rbac.catalog.create_group("Company")
        await rbac.catalog.create_group("Sales", parent_id=root.id)
        eng = await rbac.catalog.create_group("Engineering", parent_id=root.id)
        await rbac.catalog.create_group("Platform", parent_id=eng.id)
        await rbac.catalog.create_group("Contractors")

        tree = await rbac.catalog.get_group_tree()

        assert [node.group.slug for node in tree] == ["company", "contractors"]
        company = tree[0].to_dict()
        assert [c["slug"] for c in company["children"]] == ["engineering", "sales"]
        assert company["children"][0]["children"][0]["slug"] == "platform"
        assert [g.slug for g in tree[0].walk()] == ["company", "engineering", "platform", "sales"]

    @pytest.mark.asyncio
    async def test_delete_group_blocked_by_children(self, rbac):
        parent = await rbac.catalog.create_group("Parent")
        await rbac.catalog.create_group("Child", parent_id=parent.id)

        with pytest.raises(HasDependents) as exc:
            await rbac.catalog.delete_group(parent.id)

        assert exc.value.dependents == "child groups"
        assert exc.value.count == 1

    @pytest.mark.asyncio
    async def test_delete_group_blocked_by_roles(self, rbac, catalog_seed):
        with pytest.raises(HasDependents) as exc:
            await rbac.catalog.delete_group(catalog_seed["finance"].id)

        assert exc.value.dependents == "roles"

    @pytest.mark.asyncio
    async def test_delete_empty_group(self, rbac, audit_sink):
        group = await rbac.catalog.create_group("Temp")

        await rbac.catalog.delete_group(group.id)

        with pytest.raises(GroupNotFound):
            await rbac.catalog.get_group(group.id)
        assert len(audit_sink.of_type(AuditEventType.GROUP_DELETED)) == 1

    @pytest.mark.asyncio
    async def test_system_group_is_protected(self, rbac):
        group = await rbac.catalog.create_group("Administrators", is_system=True)

        with pytest.raises(ProtectedEntityError):
            await rbac.catalog.update_group(group.id, name="Admins")
        with pytest.raises(ProtectedEntityError):
            await rbac.catalog.delete_group(group.id)

        renamed = await rbac.catalog.update_group(group.id, name="Admins", allow_system=True)
        assert renamed.name == "Admins"


class TestRoles:
    """Role lifecycle and group membership."""

    @pytest.mark.asyncio
    async def test_create_role_with_unknown_permission(self, rbac):
        with pytest.raises(PermissionNotFound):
            await rbac.catalog.create_role("Broken", permission_ids=[404])

        assert await rbac.catalog.roles.get_by_slug("broken") is None

    @pytest.mark.asyncio
    async def test_delete_role_blocked_by_holders(self, rbac, alice, catalog_seed):
        await rbac.assignments.assign(alice, catalog_seed["viewer"])

        with pytest.raises(HasDependents) as exc:
            await rbac.catalog.delete_role(catalog_seed["viewer"].id)

        assert exc.value.dependents == "employees"

    @pytest.mark.asyncio
    async def test_delete_role_after_unassign(self, rbac, alice, catalog_seed):
        viewer = catalog_seed["viewer"]
        await rbac.assignments.assign(alice, viewer)
        await rbac.assignments.unassign(alice, viewer)

        await rbac.catalog.delete_role(viewer.id)

        assert await rbac.catalog.roles.get_by_id(viewer.id) is None

    @pytest.mark.asyncio
    async def test_deleting_group_role_invalidates_group_holders(self, rbac, bob, catalog_seed):
        await rbac.assignments.assign(bob, catalog_seed["finance"])
        assert await rbac.resolver.effective_permissions(bob) == {"report.edit"}

        await rbac.catalog.delete_role(catalog_seed["editor"].id)

        assert await rbac.resolver.effective_permissions(bob) == frozenset()

    @pytest.mark.asyncio
    async def test_sync_group_roles(self, rbac, bob, catalog_seed):
        finance = catalog_seed["finance"]
        await rbac.assignments.assign(bob, finance)
        assert await rbac.resolver.effective_permissions(bob) == {"report.edit"}

        roles = await rbac.catalog.sync_group_roles(finance.id, [catalog_seed["viewer"].id])

        assert [r.slug for r in roles] == ["viewer"]
        assert (await rbac.catalog.get_role(catalog_seed["editor"].id)).group_id is None
        assert await rbac.resolver.effective_permissions(bob) == {"report.view"}

    @pytest.mark.asyncio
    async def test_set_role_group_to_none(self, rbac, catalog_seed):
        role = await rbac.catalog.set_role_group(catalog_seed["editor"].id, None)

        assert role.group_id is None
        assert await rbac.catalog.roles.count_by_group(catalog_seed["finance"].id) == 0

    @pytest.mark.asyncio
    async def test_sync_role_permissions(self, rbac, alice, catalog_seed, audit_sink):
        viewer = catalog_seed["viewer"]
        await rbac.assignments.assign(alice, viewer)
        await rbac.resolver.effective_permissions(alice)

        changes = await rbac.catalog.sync_role_permissions(
            viewer.id, [catalog_seed["edit"].id, catalog_seed["approve"].id]
        )

        assert changes == {
            "attached": sorted([catalog_seed["edit"].id, catalog_seed["approve"].id]),
            "detached": [catalog_seed["view"].id],
        }
        assert await rbac.resolver.effective_permissions(alice) == {"report.edit", "invoice.approve"}
        assert audit_sink.of_type(AuditEventType.ROLE_PERMISSIONS_CHANGED)[-1].payload == changes

    @pytest.mark.asyncio
    async def test_attach_is_idempotent(self, rbac, catalog_seed):
        viewer = catalog_seed["viewer"]

        again = await rbac.catalog.attach_permissions(viewer.id, [catalog_seed["view"].id])

        assert again == set()

    @pytest.mark.asyncio
    async def test_system_role_permissions_are_protected(self, rbac, catalog_seed):
        role = await rbac.catalog.create_role("Root", is_system=True)

        with pytest.raises(ProtectedEntityError):
            await rbac.catalog.attach_permissions(role.id, [catalog_seed["view"].id])

        added = await rbac.catalog.attach_permissions(role.id, [catalog_seed["view"].id], allow_system=True)
        assert added == {catalog_seed["view"].id}


class TestPermissions:
    """Permission identity and deletion."""

    @pytest.mark.asyncio
    async def test_create_permission_normalises_module(self, rbac):
        permission = await rbac.catalog.create_permission("LeaveRequest", "Approve")

        assert permission.module == "leave_request"
        assert permission.action == "approve"
        assert permission.slug == "leave_request.approve"
        assert permission.name == "Approve Leave Request"

    @pytest.mark.asyncio
    async def test_duplicate_module_action(self, rbac):
        await rbac.catalog.create_permission("report", "view")

        with pytest.raises(DuplicatePermission):
            await rbac.catalog.create_permission("Report", "VIEW")

    @pytest.mark.asyncio
    async def test_delete_permission_blocked_by_role_link(self, rbac, catalog_seed):
        with pytest.raises(HasDependents) as exc:
            await rbac.catalog.delete_permission(catalog_seed["view"].id)

        assert exc.value.dependents == "roles"

    @pytest.mark.asyncio
    async def test_delete_permission_blocked_by_direct_holder(self, rbac, alice, catalog_seed):
        await rbac.assignments.assign(alice, catalog_seed["approve"])

        with pytest.raises(HasDependents) as exc:
            await rbac.catalog.delete_permission(catalog_seed["approve"].id)

        assert exc.value.dependents == "employees"

    @pytest.mark.asyncio
    async def test_delete_unused_permission(self, rbac, catalog_seed):
        await rbac.catalog.delete_permission(catalog_seed["approve"].id)

        with pytest.raises(PermissionNotFound):
            await rbac.catalog.get_permission(catalog_seed["approve"].id)
        recreated = await rbac.catalog.create_permission("invoice", "approve")
        assert recreated.id != catalog_seed["approve"].id

    @pytest.mark.asyncio
    async def test_update_permission_keeps_identity(self, rbac, catalog_seed):
        updated = await rbac.catalog.update_permission(
            catalog_seed["view"].id, name="View reports", category="reporting"
        )

        assert updated.slug == "report.view"
        assert updated.name == "View reports"
        assert updated.category == "reporting"

    @pytest.mark.asyncio
    async def test_timestamps_follow_injected_clock(self, rbac, catalog_seed, clock):
        clock.advance(days=2)
        updated = await rbac.catalog.update_permission(catalog_seed["view"].id, name="Read reports")
        group = await rbac.catalog.create_group("Temp")
        clock.advance(minutes=5)

        await rbac.catalog.delete_group(group.id)

        deleted = rbac.database.get("groups", group.id)
        assert updated.updated_at == clock.now - timedelta(minutes=5)
        assert group.created_at == clock.now - timedelta(minutes=5)
        assert deleted.deleted_at == clock.now
        assert deleted.updated_at == clock.now


@pytest.fixture
def taken_locks(rbac, monkeypatch):
    """Lock keys of every transaction opened on the store."""
    taken = []
    original = rbac.database.transaction

    def recording(*keys):
        taken.append(set(keys))
        return original(*keys)

    monkeypatch.setattr(rbac.database, "transaction", recording)
    return taken


class TestRoleOwnershipLocking:
    """Writers of role ownership share the group tree lock and the role lock."""

    @pytest.mark.asyncio
    async def test_set_role_group_takes_tree_and_role_locks(self, rbac, catalog_seed, taken_locks):
        viewer = catalog_seed["viewer"]

        await rbac.catalog.set_role_group(viewer.id, catalog_seed["finance"].id)

        assert {GROUP_TREE_LOCK, role_lock(viewer.id)} in taken_locks

    @pytest.mark.asyncio
    async def test_create_role_in_group_takes_tree_lock(self, rbac, catalog_seed, taken_locks):
        await rbac.catalog.create_role("Auditor", group_id=catalog_seed["finance"].id)

        assert any(GROUP_TREE_LOCK in keys for keys in taken_locks)

    @pytest.mark.asyncio
    async def test_sync_group_roles_locks_every_moved_role(self, rbac, catalog_seed, taken_locks):
        viewer, editor = catalog_seed["viewer"], catalog_seed["editor"]

        await rbac.catalog.sync_group_roles(catalog_seed["finance"].id, [viewer.id])

        assert {GROUP_TREE_LOCK, role_lock(viewer.id), role_lock(editor.id)} in taken_locks
        assert (await rbac.catalog.get_role(editor.id)).group_id is None

    @pytest.mark.asyncio
    async def test_sync_group_roles_retries_when_membership_moves(
        self, rbac, catalog_seed, taken_locks, monkeypatch
    ):
        finance, editor = catalog_seed["finance"], catalog_seed["editor"]
        intruder = await rbac.catalog.create_role("Intruder")
        roles = rbac.catalog.roles
        original = roles.list_by_groups
        calls = []

        async def racing(group_ids):
            rows = await original(group_ids)
            calls.append(group_ids)
            if len(calls) == 1:
                # Another writer moves a role in right after the unlocked read.
                await roles.update(replace(intruder, group_id=finance.id))
            return rows

        monkeypatch.setattr(roles, "list_by_groups", racing)

        result = await rbac.catalog.sync_group_roles(finance.id, [editor.id])

        assert [r.id for r in result] == [editor.id]
        assert (await rbac.catalog.get_role(intruder.id)).group_id is None
        assert {GROUP_TREE_LOCK, role_lock(editor.id), role_lock(intruder.id)} in taken_locks

    @pytest.mark.asyncio
    async def test_permission_change_reaches_group_role_moved_into(
        self, rbac, bob, catalog_seed, monkeypatch
    ):
        viewer, approve = catalog_seed["viewer"], catalog_seed["approve"]
        ops = await rbac.catalog.create_group("Ops")
        await rbac.assignments.assign(bob, ops)
        assert await rbac.resolver.effective_permissions(bob) == frozenset()

        roles = rbac.catalog.roles
        original = roles.attach_permissions

        async def moved_meanwhile(role_id, permission_ids):
            added = await original(role_id, permission_ids)
            role = await roles.get_by_id(role_id)
            await roles.update(replace(role, group_id=ops.id))
            return added

        monkeypatch.setattr(roles, "attach_permissions", moved_meanwhile)

        await rbac.catalog.attach_permissions(viewer.id, [approve.id])

        assert await rbac.resolver.has_permission(bob, "invoice.approve") is True
