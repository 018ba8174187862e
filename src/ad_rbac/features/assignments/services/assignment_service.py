"""Assignment service.

Grants and revokes groups, roles and permissions. Every single-entity
mutation runs in one transaction holding the advisory lock for its
``(employee, type, id)`` triple, so the stale-row sweep, the duplicate
check, the write and its history entry become visible together. The
employee's permission cache is invalidated only after that transaction
commits; audit events are recorded last.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ....config.constants import AssignableType, AuditEventType, HistoryAction
from ....core.exceptions import (
    AdRbacError,
    AssignmentNotFound,
    DuplicateActiveAssignment,
    EmployeeNotFound,
    GroupNotFound,
    InactiveEmployeeError,
    InvalidExpiryError,
    PermissionNotFound,
    RoleNotFound,
)
from ....core.value_objects import AssignableRef, parse_assignable_type
from ....database.protocols import TransactionManager
from ....utils.datetime import days_from, ensure_utc, utc_now
from ...audit.entities import AuditSink
from ...audit.recorder import AuditRecorder
from ...catalog.entities import GroupRepository, PermissionRepository, RoleRepository
from ...employees.entities import Employee, EmployeeRepository
from ...permissions.services.permission_resolver import EmployeeLike, PermissionResolver, employee_id_of
from ..entities import (
    Assignment,
    AssignmentHistory,
    AssignmentHistoryRepository,
    AssignmentRepository,
    BatchItem,
    BatchResult,
    BulkAssignOutcome,
    SyncResult,
)

logger = logging.getLogger(__name__)

AssignmentMap = Mapping[Union[str, AssignableType], Iterable[int]]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class AssignmentService:
    """Lifecycle operations over employee assignments."""

    def __init__(
        self,
        database: TransactionManager,
        assignment_repository: AssignmentRepository,
        history_repository: AssignmentHistoryRepository,
        employee_repository: EmployeeRepository,
        group_repository: GroupRepository,
        role_repository: RoleRepository,
        permission_repository: PermissionRepository,
        resolver: PermissionResolver,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.database = database
        self.assignments = assignment_repository
        self.history = history_repository
        self.employees = employee_repository
        self.groups = group_repository
        self.roles = role_repository
        self.permissions = permission_repository
        self.resolver = resolver
        self.audit = AuditRecorder(audit_sink)
        self.clock = clock

    # Single-entity operations

    async def assign(
        self,
        employee: EmployeeLike,
        assignable: Any,
        reason: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> Assignment:
        """Grant a group, role or permission to an employee.

        Raises:
            InvalidAssignableType: ``assignable`` is not a group, role or permission
            EmployeeNotFound / GroupNotFound / RoleNotFound / PermissionNotFound
            InactiveEmployeeError: the employee is deactivated
            InvalidExpiryError: ``expires_at`` is not in the future
            DuplicateActiveAssignment: the employee already holds the entity
        """
        ref = AssignableRef.of(assignable)
        employee_id = employee_id_of(employee)
        await self._require_employee(employee_id)
        await self._require_assignable(ref)

        now = self.clock()
        expires_at = ensure_utc(expires_at)
        if expires_at is not None and expires_at <= now:
            raise InvalidExpiryError(
                f"Expiry {expires_at.isoformat()} is not in the future",
                details={"expires_at": expires_at.isoformat()},
            )

        async with self.database.transaction(ref.lock_key(employee_id)):
            await self._deactivate_stale(employee_id, ref, now)
            if await self.assignments.find_active(employee_id, ref, now) is not None:
                raise DuplicateActiveAssignment(employee_id, ref.type.value, ref.id)

            assignment = await self.assignments.create(
                Assignment(
                    id=None,
                    employee_id=employee_id,
                    assignable_type=ref.type,
                    assignable_id=ref.id,
                    assignment_reason=reason,
                    assigned_by=assigned_by,
                    assigned_at=now,
                    expires_at=expires_at,
                ),
                now,
            )
            await self.history.append(
                AssignmentHistory(
                    id=None,
                    assignment_id=assignment.id,
                    action=HistoryAction.CREATED,
                    changes={
                        "assignable_type": ref.type.value,
                        "assignable_id": ref.id,
                        "reason": reason,
                        "expires_at": _iso(expires_at),
                        "is_active": True,
                    },
                    changed_by=assigned_by,
                    created_at=now,
                )
            )

        await self.resolver.invalidate(employee_id)
        logger.info(f"Assigned {ref} to employee {employee_id} (assignment {assignment.id})")
        await self.audit.record(
            AuditEventType.ASSIGNMENT_CREATED, "assignment", assignment.id, assigned_by, assignment.to_dict()
        )
        return assignment

    async def unassign(
        self,
        employee: EmployeeLike,
        assignable: Any,
        reason: Optional[str] = None,
        changed_by: Optional[int] = None,
    ) -> Optional[Assignment]:
        """Revoke a grant. Returns None when nothing was actively assigned."""
        ref = AssignableRef.of(assignable)
        employee_id = employee_id_of(employee)
        now = self.clock()

        async with self.database.transaction(ref.lock_key(employee_id)):
            await self._deactivate_stale(employee_id, ref, now)
            active = await self.assignments.find_active(employee_id, ref, now)
            if active is None:
                return None

            active.is_active = False
            assignment = await self.assignments.save(active, now)
            await self.history.append(
                AssignmentHistory(
                    id=None,
                    assignment_id=assignment.id,
                    action=HistoryAction.DEACTIVATED,
                    changes={"reason": reason, "is_active": {"old": True, "new": False}},
                    changed_by=changed_by,
                    created_at=now,
                )
            )

        await self.resolver.invalidate(employee_id)
        logger.info(f"Unassigned {ref} from employee {employee_id} (assignment {assignment.id})")
        await self.audit.record(
            AuditEventType.ASSIGNMENT_DEACTIVATED,
            "assignment",
            assignment.id,
            changed_by,
            {"reason": reason, **assignment.to_dict()},
        )
        return assignment

    async def extend(
        self,
        employee: EmployeeLike,
        assignable: Any,
        days: int,
        changed_by: Optional[int] = None,
    ) -> Assignment:
        """Move the active grant's expiry to ``now + days``."""
        if days <= 0:
            raise InvalidExpiryError(f"Extension must be a positive number of days, got {days}")
        ref = AssignableRef.of(assignable)
        employee_id = employee_id_of(employee)
        now = self.clock()

        async with self.database.transaction(ref.lock_key(employee_id)):
            await self._deactivate_stale(employee_id, ref, now)
            active = await self.assignments.find_active(employee_id, ref, now)
            if active is None:
                raise AssignmentNotFound(
                    f"{ref}@{employee_id}",
                    message=f"Employee {employee_id} has no active assignment of {ref}",
                )

            old_expiry = active.expires_at
            active.expires_at = days_from(now, days)
            assignment = await self.assignments.save(active, now)
            await self.history.append(
                AssignmentHistory(
                    id=None,
                    assignment_id=assignment.id,
                    action=HistoryAction.EXTENDED,
                    changes={
                        "expires_at": {"old": _iso(old_expiry), "new": _iso(assignment.expires_at)},
                        "extended_days": days,
                    },
                    changed_by=changed_by,
                    created_at=now,
                )
            )

        await self.resolver.invalidate(employee_id)
        logger.info(f"Extended {ref} for employee {employee_id} until {assignment.expires_at.isoformat()}")
        await self.audit.record(
            AuditEventType.ASSIGNMENT_EXTENDED,
            "assignment",
            assignment.id,
            changed_by,
            {"old_expires_at": _iso(old_expiry), "new_expires_at": _iso(assignment.expires_at), "days": days},
        )
        return assignment

    # Batches

    async def assign_many(
        self,
        employee: EmployeeLike,
        assignments: AssignmentMap,
        reason: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[int] = None,
    ) -> BatchResult:
        """Assign several entities; each one succeeds or fails on its own.

        Entities the employee already holds are reported as skipped.
        """
        plan = self._plan(assignments)
        employee_id = employee_id_of(employee)
        await self._require_employee(employee_id)

        result = BatchResult()
        for kind, assignable_id in plan:
            item = BatchItem(kind, assignable_id)
            try:
                ref = AssignableRef(kind, assignable_id)
                result.assignments.append(
                    await self.assign(employee_id, ref, reason, expires_at, assigned_by)
                )
                result.success.append(item)
            except DuplicateActiveAssignment:
                result.skipped.append(item)
            except AdRbacError as e:
                logger.warning(f"Failed to assign {kind.value}:{assignable_id} to employee {employee_id}: {e}")
                item.error = str(e)
                result.failed.append(item)
        return result

    async def unassign_many(
        self,
        employee: EmployeeLike,
        assignments: AssignmentMap,
        reason: Optional[str] = None,
        changed_by: Optional[int] = None,
    ) -> BatchResult:
        """Revoke several entities; ones not currently held are skipped."""
        plan = self._plan(assignments)
        employee_id = employee_id_of(employee)

        result = BatchResult()
        for kind, assignable_id in plan:
            item = BatchItem(kind, assignable_id)
            try:
                revoked = await self.unassign(employee_id, AssignableRef(kind, assignable_id), reason, changed_by)
            except AdRbacError as e:
                logger.warning(f"Failed to unassign {kind.value}:{assignable_id} from employee {employee_id}: {e}")
                item.error = str(e)
                result.failed.append(item)
                continue
            if revoked is None:
                result.skipped.append(item)
            else:
                result.assignments.append(revoked)
                result.success.append(item)
        return result

    async def sync_without_detach(
        self,
        employee: EmployeeLike,
        ids: Iterable[int],
        assignable_type: Union[str, AssignableType] = AssignableType.ROLE,
        reason: Optional[str] = None,
        assigned_by: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ) -> SyncResult:
        """Assign every id not already held; never revokes anything."""
        kind = parse_assignable_type(assignable_type)
        employee_id = employee_id_of(employee)
        current = await self.assignments.active_ids(employee_id, kind, self.clock())
        result = SyncResult(assignable_type=kind)
        await self._sync_add(employee_id, kind, ids, current, result, reason, assigned_by, expires_at)
        return result

    async def sync_with_detach(
        self,
        employee: EmployeeLike,
        ids: Iterable[int],
        assignable_type: Union[str, AssignableType] = AssignableType.ROLE,
        reason: Optional[str] = None,
        assigned_by: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ) -> SyncResult:
        """Make the employee's active ids of one type equal ``ids``."""
        kind = parse_assignable_type(assignable_type)
        employee_id = employee_id_of(employee)
        wanted = list(dict.fromkeys(ids))
        current = await self.assignments.active_ids(employee_id, kind, self.clock())
        result = SyncResult(assignable_type=kind)

        for assignable_id in sorted(current - set(wanted)):
            try:
                ref = AssignableRef(kind, assignable_id)
                if await self.unassign(employee_id, ref, reason, assigned_by) is not None:
                    result.removed.append(assignable_id)
            except AdRbacError as e:
                logger.warning(f"Sync failed to unassign {kind.value}:{assignable_id} from employee {employee_id}: {e}")
                result.failed[assignable_id] = str(e)

        await self._sync_add(employee_id, kind, wanted, current, result, reason, assigned_by, expires_at)
        return result

    async def bulk_assign(
        self,
        employee_ids: Iterable[int],
        assignments: AssignmentMap,
        reason: Optional[str] = None,
        assigned_by: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ) -> BulkAssignOutcome:
        """Apply ``assign_many`` to each employee independently."""
        self._plan(assignments)
        outcome = BulkAssignOutcome()
        for employee_id in dict.fromkeys(employee_ids):
            try:
                outcome.success[employee_id] = await self.assign_many(
                    employee_id, assignments, reason, expires_at, assigned_by
                )
            except AdRbacError as e:
                logger.warning(f"Bulk assignment skipped employee {employee_id}: {e}")
                outcome.errors[employee_id] = str(e)
        return outcome

    # Maintenance and queries

    async def deactivate_expired_assignments(self) -> int:
        """Flip every active-but-expired row to inactive; returns how many."""
        now = self.clock()
        affected = set()
        count = 0
        for row in await self.assignments.list_expired_active(now):
            ref = row.ref
            async with self.database.transaction(ref.lock_key(row.employee_id)):
                flipped = await self._deactivate_stale(row.employee_id, ref, now)
            if flipped:
                count += len(flipped)
                affected.add(row.employee_id)

        await self.resolver.invalidate_many(affected)
        if count:
            logger.info(f"Deactivated {count} expired assignments for {len(affected)} employees")
        return count

    async def get_history(self, assignment_id: int) -> List[AssignmentHistory]:
        if await self.assignments.get(assignment_id) is None:
            raise AssignmentNotFound(assignment_id)
        return await self.history.list_for_assignment(assignment_id)

    async def list_assignments(
        self, employee: EmployeeLike, include_inactive: bool = False
    ) -> List[Assignment]:
        return await self.assignments.list_for_employee(
            employee_id_of(employee), self.clock(), include_inactive=include_inactive
        )

    # Internals

    def _plan(self, assignments: AssignmentMap) -> List[Tuple[AssignableType, Any]]:
        """Flatten a ``{type: ids}`` mapping, rejecting unknown types up front.

        Ids are checked per item so one malformed id fails only itself.
        """
        plan: List[Tuple[AssignableType, Any]] = []
        for kind, ids in assignments.items():
            parsed = parse_assignable_type(kind)
            plan.extend((parsed, i) for i in dict.fromkeys(ids))
        return plan

    async def _sync_add(
        self,
        employee_id: int,
        kind: AssignableType,
        ids: Iterable[int],
        current: set,
        result: SyncResult,
        reason: Optional[str],
        assigned_by: Optional[int],
        expires_at: Optional[datetime],
    ) -> None:
        for assignable_id in dict.fromkeys(ids):
            if assignable_id in current:
                result.unchanged.append(assignable_id)
                continue
            try:
                ref = AssignableRef(kind, assignable_id)
                await self.assign(employee_id, ref, reason, expires_at, assigned_by)
                result.added.append(assignable_id)
            except DuplicateActiveAssignment:
                result.unchanged.append(assignable_id)
            except AdRbacError as e:
                logger.warning(f"Sync failed to assign {kind.value}:{assignable_id} to employee {employee_id}: {e}")
                result.failed[assignable_id] = str(e)

    async def _require_employee(self, employee_id: int) -> Employee:
        employee = await self.employees.get_by_id(employee_id)
        if employee is None:
            raise EmployeeNotFound(employee_id)
        if not employee.is_active:
            raise InactiveEmployeeError(employee_id)
        return employee

    async def _require_assignable(self, ref: AssignableRef) -> None:
        lookups: Dict[AssignableType, Tuple[Any, type]] = {
            AssignableType.GROUP: (self.groups, GroupNotFound),
            AssignableType.ROLE: (self.roles, RoleNotFound),
            AssignableType.PERMISSION: (self.permissions, PermissionNotFound),
        }
        repository, not_found = lookups[ref.type]
        if await repository.get_by_id(ref.id) is None:
            raise not_found(ref.id)

    async def _deactivate_stale(
        self, employee_id: int, ref: AssignableRef, now: datetime
    ) -> List[Assignment]:
        flipped = await self.assignments.deactivate_expired(employee_id, ref, now)
        for assignment in flipped:
            await self.history.append(
                AssignmentHistory(
                    id=None,
                    assignment_id=assignment.id,
                    action=HistoryAction.DEACTIVATED,
                    changes={
                        "reason": "expired",
                        "expires_at": _iso(assignment.expires_at),
                        "is_active": {"old": True, "new": False},
                    },
                    created_at=now,
                )
            )
        if flipped:
            logger.info(f"Deactivated {len(flipped)} expired {ref} assignments for employee {employee_id}")
        return flipped
