"""
Contextual security checks: ownership, membership, time of day and client IP.

Each check returns None when it passes and a deny reason otherwise. Internal
errors are raised to the evaluator, which decides whether they fail open or
closed.
"""

import ipaddress
from datetime import datetime
from typing import Any, Callable, Iterable, Optional
from zoneinfo import ZoneInfo

from shared.logging import get_logger
from ..models import utcnow
from ..stores.base import ResourceStore, WorkspaceStore
from .models import IpRestrictions, OwnedResourceType, RequestContext, ResourceOwnership, TimeWindow

WORKSPACE_ID_KEYS = ("workspace_id", "workspaceId")


def _lookup(source: Any, names: Iterable[str]) -> Optional[str]:
    if not isinstance(source, dict):
        return None
    for name in names:
        value = source.get(name)
        if value not in (None, ""):
            return str(value)
    return None


def find_param(context: RequestContext, *names: str) -> Optional[str]:
    """First value for any of ``names`` in route params, then body, then query."""
    for source in (context.route_params, context.body, context.query_params):
        value = _lookup(source, names)
        if value is not None:
            return value
    return None


def resolve_workspace_id(context: RequestContext) -> Optional[str]:
    """Explicit workspace id, else route params, then query, then body."""
    if context.workspace_id:
        return str(context.workspace_id)
    for source in (context.route_params, context.query_params, context.body):
        value = _lookup(source, WORKSPACE_ID_KEYS)
        if value is not None:
            return value
    return None


def resolve_resource_id(context: RequestContext, param: str) -> Optional[str]:
    return find_param(context, param, f"{param}_id")


def resolve_client_ip(context: RequestContext) -> Optional[str]:
    """Request IP, else the first ``X-Forwarded-For`` hop."""
    if context.client_ip:
        return context.client_ip
    if context.forwarded_for:
        first = context.forwarded_for.split(",")[0].strip()
        return first or None
    return None


def hour_in_window(hour: int, start_hour: int, end_hour: int) -> bool:
    """Membership in ``[start, end)``; a window with start > end wraps midnight."""
    if start_hour <= end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


def ip_matches(ip: str, entries: Iterable[str]) -> bool:
    """True if ``ip`` equals an entry or falls inside a CIDR entry."""
    address = ipaddress.ip_address(ip)
    for entry in entries:
        if "/" in entry:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        elif address == ipaddress.ip_address(entry):
            return True
    return False


class ContextChecker:
    """Runs the contextual checks against the workspace and resource stores."""

    def __init__(
        self,
        workspaces: WorkspaceStore,
        resources: ResourceStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.workspaces = workspaces
        self.resources = resources
        self.clock = clock or utcnow
        self.logger = get_logger("policy.context")

    async def resource_owner(self, resource_type: str, resource_id: str) -> Optional[str]:
        """Owner id of a resource; None when missing or the type is unsupported."""
        try:
            kind = OwnedResourceType(str(resource_type).upper())
        except ValueError:
            self.logger.warning("Unsupported resource type for ownership", resource_type=resource_type)
            return None

        if kind == OwnedResourceType.WORKSPACE:
            workspace = await self.workspaces.get(resource_id)
            return workspace.owner_id if workspace else None

        if kind == OwnedResourceType.REPOSITORY:
            repository = await self.resources.get_repository(resource_id)
            return repository.owner_id if repository else None

        if kind == OwnedResourceType.SCAN:
            parent = await self.resources.get_scan(resource_id)
        else:
            parent = await self.resources.get_schedule(resource_id)
        if parent is None:
            return None
        workspace = await self.workspaces.get(parent.workspace_id)
        return workspace.owner_id if workspace else None

    async def check_ownership(
        self,
        user_id: str,
        ownership: ResourceOwnership,
        context: RequestContext,
    ) -> Optional[str]:
        resource_id = resolve_resource_id(context, ownership.resource_id_param)
        if resource_id is None:
            return "Resource information missing for ownership check"

        owner_id = await self.resource_owner(ownership.resource_type, resource_id)
        if owner_id is None or owner_id != user_id:
            return f"You don't have ownership permissions for this {str(ownership.resource_type).lower()}"
        return None

    async def check_membership(self, user_id: str, workspace_id: Optional[str]) -> Optional[str]:
        if not workspace_id:
            return "Workspace ID missing for membership check"

        workspace = await self.workspaces.get(workspace_id)
        if workspace is not None and workspace.owner_id == user_id:
            return None
        if await self.workspaces.is_member(user_id, workspace_id):
            return None
        return "You are not a member of this workspace"

    def current_hour(self, timezone: Optional[str] = None) -> int:
        now = self.clock()
        if timezone:
            now = now.astimezone(ZoneInfo(timezone))
        return now.hour

    def check_time_window(self, window: TimeWindow) -> Optional[str]:
        if hour_in_window(self.current_hour(window.timezone), window.start_hour, window.end_hour):
            return None
        return (
            f"This operation is only available between {window.start_hour}:00 "
            f"and {window.end_hour}:00 {window.timezone or 'UTC'}"
        )

    def check_ip(self, restrictions: IpRestrictions, context: RequestContext) -> Optional[str]:
        client_ip = resolve_client_ip(context)
        if client_ip is None:
            self.logger.warning("Client IP unresolved, skipping IP restrictions")
            return None

        denied = "Your current IP address is not allowed to perform this operation"
        if restrictions.blocked_ips and ip_matches(client_ip, restrictions.blocked_ips):
            return denied
        if restrictions.allowed_ips and not ip_matches(client_ip, restrictions.allowed_ips):
            return denied
        return None
