"""
Query interfaces consumed by the resolvers and the evaluator.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Set

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


class PrincipalStore(Protocol):
    async def get(self, user_id: str) -> Optional[Principal]:
        ...

    async def set_plan(self, user_id: str, plan: Plan) -> None:
        ...


class RoleAssignmentStore(Protocol):
    async def list_permissions(self, user_id: str, workspace_id: Optional[str] = None) -> Set[str]:
        """Codes granted by assignments in exactly this scope (None = global)."""
        ...

    async def get_role(self, role_id: str) -> Optional[Role]:
        ...

    async def list_assignments(self, user_id: str, workspace_id: Optional[str] = None) -> List[RoleAssignment]:
        ...

    async def add_assignment(self, assignment: RoleAssignment) -> None:
        ...

    async def remove_assignment(self, assignment: RoleAssignment) -> bool:
        ...

    async def replace_assignments(self, user_id: str, workspace_id: Optional[str], role_id: str) -> None:
        """Atomically drop every assignment of the user in scope and add ``role_id``."""
        ...


class UsageLedger(Protocol):
    async def insert(self, record: UsageRecord) -> None:
        ...

    async def aggregate(
        self,
        user_id: str,
        resource_type: ResourceType,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> int:
        """Sum of counts in ``[since, until)``."""
        ...

    async def records(
        self,
        user_id: str,
        resource_type: Optional[ResourceType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[UsageRecord]:
        ...


class WorkspaceStore(Protocol):
    async def get(self, workspace_id: str) -> Optional[Workspace]:
        ...

    async def is_member(self, user_id: str, workspace_id: str) -> bool:
        ...

    async def list_user_workspace_ids(self, user_id: str) -> List[str]:
        """Workspaces the user is a member of or owns."""
        ...

    async def list_owned(self, user_id: str) -> List[Workspace]:
        ...

    async def count_owned(self, user_id: str) -> int:
        ...

    async def count_members(self, workspace_id: str) -> int:
        ...


class ResourceStore(Protocol):
    async def get_repository(self, repository_id: str) -> Optional[Repository]:
        ...

    async def get_scan(self, scan_id: str) -> Optional[Scan]:
        ...

    async def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        ...

    async def count_repositories(self, owner_id: str) -> int:
        ...

    async def count_alerts(self, owner_id: str) -> int:
        ...


@dataclass
class Stores:
    """The set of stores a policy service is wired with."""
    principals: PrincipalStore
    roles: RoleAssignmentStore
    usage: UsageLedger
    workspaces: WorkspaceStore
    resources: ResourceStore
