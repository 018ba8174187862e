"""Tests for the asyncpg repositories against a mocked connection."""

from datetime import datetime, timezone

import asyncpg
import pytest

from ad_rbac.config.constants import AssignableType, HistoryAction
from ad_rbac.core.exceptions import DatabaseError, DuplicateActiveAssignment, DuplicatePermission, DuplicateSlug
from ad_rbac.core.value_objects import AssignableRef
from ad_rbac.features.assignments.entities import Assignment, AssignmentHistory
from ad_rbac.features.assignments.repositories import (
    AsyncPGAssignmentHistoryRepository,
    AsyncPGAssignmentRepository,
)
from ad_rbac.features.catalog.entities import Group, Permission
from ad_rbac.features.catalog.repositories import (
    AsyncPGGroupRepository,
    AsyncPGPermissionRepository,
    AsyncPGRoleRepository,
)

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def assignment_row(**overrides):
    row = {
        "id": 1,
        "employee_id": 1,
        "assignable_type": "role",
        "assignable_id": 10,
        "assignment_reason": None,
        "assigned_by": None,
        "assigned_at": NOW.replace(tzinfo=None),
        "expires_at": None,
        "is_active": True,
        "created_at": NOW.replace(tzinfo=None),
        "updated_at": NOW.replace(tzinfo=None),
    }
    row.update(overrides)
    return row


class TestAsyncPGAssignmentRepository:

    @pytest.fixture
    def repository(self, mock_database):
        return AsyncPGAssignmentRepository(mock_database)

    @pytest.mark.asyncio
    async def test_create_maps_row(self, repository, mock_connection):
        mock_connection.fetchrow.return_value = assignment_row()

        created = await repository.create(Assignment(None, 1, AssignableType.ROLE, 10), NOW)

        assert created.id == 1
        assert created.assignable_type == AssignableType.ROLE
        assert created.assigned_at == NOW
        args = mock_connection.fetchrow.await_args.args
        assert args[1:4] == (1, "role", 10)

    @pytest.mark.asyncio
    async def test_unique_violation_becomes_duplicate(self, repository, mock_connection):
        mock_connection.fetchrow.side_effect = asyncpg.UniqueViolationError("uq_assignments_active")

        with pytest.raises(DuplicateActiveAssignment):
            await repository.create(Assignment(None, 1, AssignableType.ROLE, 10), NOW)

    @pytest.mark.asyncio
    async def test_other_errors_become_database_error(self, repository, mock_connection):
        mock_connection.fetch.side_effect = OSError("connection reset")

        with pytest.raises(DatabaseError):
            await repository.find_active(1, AssignableRef.role(10), NOW)

    @pytest.mark.asyncio
    async def test_find_active_filters_current_rows(self, repository, mock_connection):
        mock_connection.fetch.return_value = [assignment_row()]

        found = await repository.find_active(1, AssignableRef.role(10), NOW)

        assert found.id == 1
        query, *args = mock_connection.fetch.await_args.args
        assert "expires_at > $4" in query
        assert args == [1, "role", 10, NOW]

    @pytest.mark.asyncio
    async def test_holders_of_any_skips_empty(self, repository, mock_connection):
        assert await repository.holders_of_any(AssignableType.GROUP, [], NOW) == set()
        mock_connection.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_counts(self, repository, mock_connection):
        mock_connection.fetchrow.return_value = {"total": 3, "active": 1, "expired": 1, "inactive": 1}
        mock_connection.fetch.return_value = [
            {"assignable_type": "role", "total": 2},
            {"assignable_type": "group", "total": 1},
        ]

        assert await repository.counts(NOW) == (3, 1, 1, 1, {"role": 2, "group": 1})


class TestAsyncPGAssignmentHistoryRepository:

    @pytest.mark.asyncio
    async def test_append_serialises_changes(self, mock_database, mock_connection):
        mock_connection.fetchrow.return_value = {
            "id": 5,
            "assignment_id": 1,
            "action": "extended",
            "changes": '{"extended_days": 30}',
            "changed_by": 2,
            "created_at": NOW,
        }
        repository = AsyncPGAssignmentHistoryRepository(mock_database)

        entry = await repository.append(
            AssignmentHistory(None, 1, HistoryAction.EXTENDED, {"extended_days": 30}, changed_by=2)
        )

        assert entry.action == HistoryAction.EXTENDED
        assert entry.changes == {"extended_days": 30}
        assert mock_connection.fetchrow.await_args.args[3] == '{"extended_days": 30}'


class TestAsyncPGCatalogRepositories:

    @pytest.mark.asyncio
    async def test_group_slug_conflict(self, mock_database, mock_connection):
        mock_connection.fetchrow.side_effect = asyncpg.UniqueViolationError("uq_groups_slug")

        with pytest.raises(DuplicateSlug):
            await AsyncPGGroupRepository(mock_database).create(Group(id=None, name="Finance"))

    @pytest.mark.asyncio
    async def test_permission_key_conflict(self, mock_database, mock_connection):
        mock_connection.fetchrow.side_effect = asyncpg.UniqueViolationError("uq_permissions_key")

        with pytest.raises(DuplicatePermission):
            await AsyncPGPermissionRepository(mock_database).create(
                Permission(id=None, module="report", action="view")
            )

    @pytest.mark.asyncio
    async def test_attach_returns_only_new_links(self, mock_database, mock_connection):
        mock_connection.fetch.return_value = [{"permission_id": 7}]

        added = await AsyncPGRoleRepository(mock_database).attach_permissions(3, [7, 8, 7])

        assert added == {7}
        assert mock_connection.fetch.await_args.args[1:] == (3, [7, 8])

    @pytest.mark.asyncio
    async def test_attach_nothing_skips_query(self, mock_database, mock_connection):
        assert await AsyncPGRoleRepository(mock_database).attach_permissions(3, []) == set()
        mock_connection.fetch.assert_not_awaited()
