"""Pytest configuration and fixtures for ad-rbac tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from ad_rbac.config.settings import AdRbacSettings
from ad_rbac.container import RbacContainer
from ad_rbac.features.audit.adapters import MemoryAuditSink
from ad_rbac.features.cache.adapters import MemoryPermissionCache
from ad_rbac.features.employees.entities import Employee


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def settings():
    """In-memory backends with the in-process permission cache."""
    return AdRbacSettings(_env_file=None, database_url=None, redis_url=None, cache_enabled=True)


@pytest.fixture
def authenticator():
    mock = AsyncMock()
    mock.authenticate = AsyncMock(return_value=True)
    mock.get_user_details = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def employee_source():
    mock = AsyncMock()
    mock.fetch = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def rbac(settings, clock, audit_sink, authenticator, employee_source):
    """Fully wired in-memory container.

    The permission cache expires entries on the same fixed clock as the
    services, so advancing the clock ages cached sets too.
    """
    container = RbacContainer.create(
        settings,
        authenticator=authenticator,
        employee_source=employee_source,
        audit_sink=audit_sink,
        clock=clock,
    )
    cache = MemoryPermissionCache(clock=lambda: clock().timestamp())
    container.cache = cache
    container.resolver.cache = cache
    return container


@pytest.fixture
def employee_repo(rbac):
    return rbac.assignments.employees


@pytest_asyncio.fixture
async def alice(employee_repo):
    return await employee_repo.create(Employee(id=None, username="alice", email="alice@example.com"))


@pytest_asyncio.fixture
async def bob(employee_repo):
    return await employee_repo.create(Employee(id=None, username="bob"))


@pytest_asyncio.fixture
async def catalog_seed(rbac):
    """Permissions, two roles and a group owning one of them.

    ``report.view`` -> role ``viewer`` (no group)
    ``report.edit`` -> role ``editor`` owned by group ``finance``
    ``invoice.approve`` is only granted directly.
    """
    catalog = rbac.catalog
    view = await catalog.create_permission("report", "view")
    edit = await catalog.create_permission("report", "edit")
    approve = await catalog.create_permission("invoice", "approve")
    finance = await catalog.create_group("Finance")
    viewer = await catalog.create_role("Viewer", permission_ids=[view.id])
    editor = await catalog.create_role("Editor", group_id=finance.id, permission_ids=[edit.id])
    return {
        "view": view,
        "edit": edit,
        "approve": approve,
        "finance": finance,
        "viewer": viewer,
        "editor": editor,
    }


@pytest.fixture
def mock_connection():
    """Mock asyncpg connection."""
    conn = AsyncMock()
    conn.fetchrow = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock()
    conn.execute = AsyncMock()
    return conn


@pytest.fixture
def mock_database(mock_connection):
    """Mock Database whose connection() yields ``mock_connection``."""
    database = MagicMock()
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=mock_connection)
    cm.__aexit__ = AsyncMock(return_value=False)
    database.connection = MagicMock(return_value=cm)
    database.transaction = MagicMock(return_value=cm)
    return database
