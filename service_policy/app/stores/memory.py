"""
In-memory stores for tests and local mode.
"""

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Set

from shared.logging import get_logger
from ..models import (
    Principal,
    Repository,
    Role,
    RoleAssignment,
    Scan,
    Schedule,
    UsageRecord,
    Workspace,
)
from ..plans.entitlements import Plan, ResourceType
from .base import Stores


class InMemoryPrincipalStore:

    def __init__(self):
        self._principals: Dict[str, Principal] = {}
        self._lock = asyncio.Lock()

    def add(self, principal: Principal) -> Principal:
        self._principals[principal.user_id] = principal
        return principal

    async def get(self, user_id: str) -> Optional[Principal]:
        return self._principals.get(user_id)

    async def set_plan(self, user_id: str, plan: Plan) -> None:
        async with self._lock:
            principal = self._principals.get(user_id)
            if principal is None:
                raise KeyError(user_id)
            self._principals[user_id] = replace(principal, plan=plan)


class InMemoryRoleAssignmentStore:
    """Roles and their assignments; mutations are serialized."""

    def __init__(self):
        self._roles: Dict[str, Role] = {}
        self._assignments: Set[RoleAssignment] = set()
        self._lock = asyncio.Lock()

    def add_role(self, role: Role) -> Role:
        self._roles[role.role_id] = role
        return role

    async def get_role(self, role_id: str) -> Optional[Role]:
        return self._roles.get(role_id)

    async def list_permissions(self, user_id: str, workspace_id: Optional[str] = None) -> Set[str]:
        codes: Set[str] = set()
        for assignment in await self.list_assignments(user_id, workspace_id):
            role = self._roles.get(assignment.role_id)
            if role is not None:
                codes.update(role.permissions)
        return codes

    async def list_assignments(self, user_id: str, workspace_id: Optional[str] = None) -> List[RoleAssignment]:
        return [
            a for a in self._assignments
            if a.user_id == user_id and a.workspace_id == workspace_id
        ]

    async def add_assignment(self, assignment: RoleAssignment) -> None:
        async with self._lock:
            self._assignments.add(assignment)

    async def remove_assignment(self, assignment: RoleAssignment) -> bool:
        async with self._lock:
            if assignment not in self._assignments:
                return False
            self._assignments.discard(assignment)
            return True

    async def replace_assignments(self, user_id: str, workspace_id: Optional[str], role_id: str) -> None:
        async with self._lock:
            self._assignments = {
                a for a in self._assignments
                if not (a.user_id == user_id and a.workspace_id == workspace_id)
            }
            self._assignments.add(RoleAssignment(user_id, role_id, workspace_id))


class InMemoryUsageLedger:
    """Append-only list of usage records."""

    def __init__(self):
        self._records: List[UsageRecord] = []

    async def insert(self, record: UsageRecord) -> None:
        self._records.append(record)

    async def records(
        self,
        user_id: str,
        resource_type: Optional[ResourceType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[UsageRecord]:
        return [
            r for r in self._records
            if r.user_id == user_id
            and (resource_type is None or r.resource_type == resource_type)
            and (since is None or r.timestamp >= since)
            and (until is None or r.timestamp < until)
        ]

    async def aggregate(
        self,
        user_id: str,
        resource_type: ResourceType,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> int:
        return sum(r.count for r in await self.records(user_id, resource_type, since, until))


class InMemoryWorkspaceStore:

    def __init__(self):
        self._workspaces: Dict[str, Workspace] = {}
        self._members: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    def add(self, workspace: Workspace, members=()) -> Workspace:
        self._workspaces[workspace.workspace_id] = workspace
        self._members.setdefault(workspace.workspace_id, set()).update(members)
        return workspace

    async def add_member(self, workspace_id: str, user_id: str) -> None:
        async with self._lock:
            self._members.setdefault(workspace_id, set()).add(user_id)

    async def get(self, workspace_id: str) -> Optional[Workspace]:
        return self._workspaces.get(workspace_id)

    async def is_member(self, user_id: str, workspace_id: str) -> bool:
        return user_id in self._members.get(workspace_id, set())

    async def list_user_workspace_ids(self, user_id: str) -> List[str]:
        ids = {ws_id for ws_id, members in self._members.items() if user_id in members}
        ids.update(ws.workspace_id for ws in await self.list_owned(user_id))
        return sorted(ids)

    async def list_owned(self, user_id: str) -> List[Workspace]:
        return [ws for ws in self._workspaces.values() if ws.owner_id == user_id]

    async def count_owned(self, user_id: str) -> int:
        return len(await self.list_owned(user_id))

    async def count_members(self, workspace_id: str) -> int:
        return len(self._members.get(workspace_id, set()))


class InMemoryResourceStore:

    def __init__(self):
        self._repositories: Dict[str, Repository] = {}
        self._scans: Dict[str, Scan] = {}
        self._schedules: Dict[str, Schedule] = {}
        self._alerts: Dict[str, str] = {}

    def add_repository(self, repository: Repository) -> Repository:
        self._repositories[repository.repository_id] = repository
        return repository

    def add_scan(self, scan: Scan) -> Scan:
        self._scans[scan.scan_id] = scan
        return scan

    def add_schedule(self, schedule: Schedule) -> Schedule:
        self._schedules[schedule.schedule_id] = schedule
        return schedule

    def add_alert(self, alert_id: str, owner_id: str) -> None:
        self._alerts[alert_id] = owner_id

    async def get_repository(self, repository_id: str) -> Optional[Repository]:
        return self._repositories.get(repository_id)

    async def get_scan(self, scan_id: str) -> Optional[Scan]:
        return self._scans.get(scan_id)

    async def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        return self._schedules.get(schedule_id)

    async def count_repositories(self, owner_id: str) -> int:
        return sum(1 for repo in self._repositories.values() if repo.owner_id == owner_id)

    async def count_alerts(self, owner_id: str) -> int:
        return sum(1 for owner in self._alerts.values() if owner == owner_id)


def create_memory_stores() -> Stores:
    """Empty in-memory store set."""
    get_logger("policy.stores.memory").info("Using in-memory stores")
    return Stores(
        principals=InMemoryPrincipalStore(),
        roles=InMemoryRoleAssignmentStore(),
        usage=InMemoryUsageLedger(),
        workspaces=InMemoryWorkspaceStore(),
        resources=InMemoryResourceStore(),
    )
