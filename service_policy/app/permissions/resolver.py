"""
Role-based permission resolution with read-through caching.
"""

from typing import Iterable, List, Optional

from shared.logging import get_logger
from ..cache.base import (
    CacheLayer,
    SafeCache,
    permission_key,
    permission_list_key,
    permission_list_pattern,
    permission_pattern,
    principal_key,
)
from ..models import Principal, UserRole, is_super
from ..plans.entitlements import Plan
from ..stores.base import PrincipalStore, RoleAssignmentStore, WorkspaceStore
from .codes import PermissionScope, all_permission_codes, codes_with_scope


def principal_to_dict(principal: Principal) -> dict:
    return {
        "user_id": principal.user_id,
        "role": principal.role.value,
        "plan": principal.plan.value if principal.plan else None,
        "owner_id": principal.owner_id,
    }


def principal_from_dict(data: dict) -> Principal:
    return Principal(
        user_id=data["user_id"],
        role=UserRole(data["role"]),
        plan=Plan(data["plan"]) if data.get("plan") else None,
        owner_id=data.get("owner_id"),
    )


class PermissionResolver:
    """Answers "does this principal hold this permission here".

    Store errors propagate to the caller; cache errors are logged and treated
    as a miss.
    """

    def __init__(
        self,
        cache: CacheLayer,
        principals: PrincipalStore,
        roles: RoleAssignmentStore,
        workspaces: WorkspaceStore,
        ttl: int = 300,
        metrics=None,
    ):
        self.cache = SafeCache(cache, metrics, "policy.cache.permissions")
        self.principals = principals
        self.roles = roles
        self.workspaces = workspaces
        self.ttl = ttl
        self.logger = get_logger("policy.permissions")

    async def get_principal(self, user_id: str) -> Optional[Principal]:
        """Cached principal lookup."""
        key = principal_key(user_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return principal_from_dict(cached)

        principal = await self.principals.get(user_id)
        if principal is not None:
            await self.cache.set(key, principal_to_dict(principal), self.ttl)
        return principal

    async def is_workspace_owner(self, user_id: str, workspace_id: str) -> bool:
        workspace = await self.workspaces.get(workspace_id)
        return workspace is not None and workspace.owner_id == user_id

    async def has_permission(
        self,
        user_id: str,
        code: str,
        workspace_id: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> bool:
        key = permission_key(user_id, code, workspace_id, resource_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return bool(cached)

        principal = await self.get_principal(user_id)
        if principal is None:
            self.logger.warning("Permission check for unknown principal", user_id=user_id, code=code)
            return False

        result = await self._resolve(principal, code, workspace_id)
        await self.cache.set(key, result, self.ttl)
        return result

    async def _resolve(self, principal: Principal, code: str, workspace_id: Optional[str]) -> bool:
        if is_super(principal):
            return True

        if code in await self.roles.list_permissions(principal.user_id):
            return True

        if workspace_id:
            if code in await self.roles.list_permissions(principal.user_id, workspace_id):
                return True
            # Owners hold everything inside their own workspace
            if await self.is_workspace_owner(principal.user_id, workspace_id):
                return True

        return False

    async def has_any_permission(
        self,
        user_id: str,
        codes: Iterable[str],
        workspace_id: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> bool:
        for code in codes:
            if await self.has_permission(user_id, code, workspace_id, resource_id):
                return True
        return False

    async def has_all_permissions(
        self,
        user_id: str,
        codes: Iterable[str],
        workspace_id: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> bool:
        for code in codes:
            if not await self.has_permission(user_id, code, workspace_id, resource_id):
                return False
        return True

    async def list_permissions(self, user_id: str, workspace_id: Optional[str] = None) -> List[str]:
        """Sorted codes the principal holds globally plus in ``workspace_id``."""
        key = permission_list_key(user_id, workspace_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return list(cached)

        principal = await self.get_principal(user_id)
        if principal is None:
            return []

        if is_super(principal):
            codes = all_permission_codes()
        else:
            granted = set(await self.roles.list_permissions(user_id))
            if workspace_id:
                granted |= await self.roles.list_permissions(user_id, workspace_id)
                if await self.is_workspace_owner(user_id, workspace_id):
                    granted.update(codes_with_scope(PermissionScope.WORKSPACE))
            codes = sorted(granted)

        await self.cache.set(key, codes, self.ttl)
        return codes

    async def clear_user_permission_cache(self, user_id: str) -> int:
        """Drop every cached permission answer and list for the principal.

        List keys are deleted for global scope and every workspace the
        principal belongs to or owns. The pattern sweeps then catch
        single-permission keys and workspaces the principal has since left.
        """
        removed = await self.cache.delete(permission_list_key(user_id))
        for workspace_id in await self.workspaces.list_user_workspace_ids(user_id):
            removed += await self.cache.delete(permission_list_key(user_id, workspace_id))
        removed += await self.cache.delete_pattern(permission_pattern(user_id))
        removed += await self.cache.delete_pattern(permission_list_pattern(user_id))
        removed += await self.cache.delete(principal_key(user_id))

        self.logger.info("Cleared permission cache", user_id=user_id, keys_removed=removed)
        return removed
