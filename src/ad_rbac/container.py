"""Composition root.

Builds every repository, cache, resolver and service for the backends the
settings select: asyncpg when ``database_url`` is set, the in-memory store
otherwise; Redis when ``redis_url`` is set and caching is enabled, an
in-process cache when only caching is enabled.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from .config.settings import AdRbacSettings, get_settings
from .core.exceptions import ConfigurationError
from .database import Database, InMemoryDatabase
from .features.assignments.repositories import (
    AsyncPGAssignmentHistoryRepository,
    AsyncPGAssignmentRepository,
    InMemoryAssignmentHistoryRepository,
    InMemoryAssignmentRepository,
)
from .features.assignments.services import AssignmentService, StatisticsService
from .features.audit.adapters import LoggingAuditSink
from .features.audit.entities import AuditSink
from .features.cache.adapters import MemoryPermissionCache, RedisPermissionCache
from .features.cache.entities import PermissionCache
from .features.catalog.repositories import (
    AsyncPGGroupRepository,
    AsyncPGPermissionRepository,
    AsyncPGRoleRepository,
    InMemoryGroupRepository,
    InMemoryPermissionRepository,
    InMemoryRoleRepository,
)
from .features.catalog.services import CatalogService, PermissionScanner
from .features.employees.adapters import HttpEmployeeSource
from .features.employees.entities import Authenticator, EmployeeSource
from .features.employees.repositories import AsyncPGEmployeeRepository, InMemoryEmployeeRepository
from .features.employees.services import EmployeeService, LoginService
from .features.permissions.services import PermissionResolver
from .utils.datetime import utc_now

logger = logging.getLogger(__name__)


@dataclass
class RbacContainer:
    """Wired object graph for one process."""

    settings: AdRbacSettings
    database: Union[Database, InMemoryDatabase]
    cache: Optional[PermissionCache]
    employee_source: Optional[EmployeeSource]
    resolver: PermissionResolver
    assignments: AssignmentService
    statistics: StatisticsService
    catalog: CatalogService
    scanner: PermissionScanner
    employees: EmployeeService
    login_service: Optional[LoginService] = None

    @classmethod
    def create(
        cls,
        settings: Optional[AdRbacSettings] = None,
        authenticator: Optional[Authenticator] = None,
        employee_source: Optional[EmployeeSource] = None,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "RbacContainer":
        settings = settings or get_settings()
        settings.validate_runtime()

        if settings.uses_database:
            database = Database(
                settings.database_url,
                min_size=settings.db_pool_min_size,
                max_size=settings.db_pool_max_size,
                command_timeout=settings.db_command_timeout,
            )
            employee_repo = AsyncPGEmployeeRepository(database)
            group_repo = AsyncPGGroupRepository(database)
            role_repo = AsyncPGRoleRepository(database)
            permission_repo = AsyncPGPermissionRepository(database)
            assignment_repo = AsyncPGAssignmentRepository(database)
            history_repo = AsyncPGAssignmentHistoryRepository(database)
        else:
            if settings.is_production:
                raise ConfigurationError("database_url is required in production")
            database = InMemoryDatabase()
            employee_repo = InMemoryEmployeeRepository(database, clock=clock)
            group_repo = InMemoryGroupRepository(database, clock=clock)
            role_repo = InMemoryRoleRepository(database, clock=clock)
            permission_repo = InMemoryPermissionRepository(database, clock=clock)
            assignment_repo = InMemoryAssignmentRepository(database)
            history_repo = InMemoryAssignmentHistoryRepository(database)

        cache: Optional[PermissionCache] = None
        if settings.uses_redis:
            cache = RedisPermissionCache.from_url(settings.redis_url, key_prefix=settings.cache_key_prefix)
        elif settings.cache_enabled:
            cache = MemoryPermissionCache()

        if employee_source is None and settings.employee_api_url:
            secret = settings.employee_api_secret
            employee_source = HttpEmployeeSource(
                settings.employee_api_url,
                secret=secret.get_secret_value() if secret else None,
                timeout=settings.employee_api_timeout,
                employee_path=settings.employee_api_employee_path,
            )

        audit_sink = audit_sink or LoggingAuditSink()

        resolver = PermissionResolver(
            assignment_repo,
            role_repo,
            group_repo,
            permission_repo,
            cache=cache,
            cache_ttl=settings.cache_ttl_permissions,
            clock=clock,
        )
        assignments = AssignmentService(
            database,
            assignment_repo,
            history_repo,
            employee_repo,
            group_repo,
            role_repo,
            permission_repo,
            resolver,
            audit_sink=audit_sink,
            clock=clock,
        )
        statistics = StatisticsService(
            assignment_repo,
            role_repo,
            expiring_days_default=settings.expiring_days_default,
            clock=clock,
        )
        catalog = CatalogService(
            database,
            group_repo,
            role_repo,
            permission_repo,
            assignment_repo,
            resolver,
            audit_sink=audit_sink,
            clock=clock,
        )
        scanner = PermissionScanner(
            catalog,
            permission_repo,
            default_actions=settings.default_actions,
            special_actions=settings.special_actions,
        )
        employees = EmployeeService(employee_repo, employee_source, resolver, audit_sink=audit_sink, clock=clock)
        login_service = None
        if authenticator is not None:
            login_service = LoginService(
                authenticator, employees, employee_repo, resolver, audit_sink=audit_sink, clock=clock
            )

        logger.info(
            f"Created RBAC container: storage={'postgres' if settings.uses_database else 'memory'}, "
            f"cache={type(cache).__name__ if cache else 'disabled'}"
        )
        return cls(
            settings=settings,
            database=database,
            cache=cache,
            employee_source=employee_source,
            resolver=resolver,
            assignments=assignments,
            statistics=statistics,
            catalog=catalog,
            scanner=scanner,
            employees=employees,
            login_service=login_service,
        )

    async def startup(self, apply_schema: bool = False) -> None:
        """Open the connection pool and optionally create the tables."""
        if isinstance(self.database, Database):
            await self.database.connect()
            if apply_schema:
                await self.database.apply_schema()

    async def shutdown(self) -> None:
        """Release the pool, the cache client and the HR API client."""
        if self.cache is not None:
            await self.cache.close()
        if isinstance(self.employee_source, HttpEmployeeSource):
            await self.employee_source.close()
        if isinstance(self.database, Database):
            await self.database.close()
        logger.info("RBAC container shut down")
