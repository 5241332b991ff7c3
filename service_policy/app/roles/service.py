"""
Role assignment and plan management.

Every change clears the affected principal's cached answers before it
returns, so the next evaluation sees it without waiting for a TTL.
"""

from typing import Optional

from shared.logging import get_logger
from shared.errors import AuthorizationError, ResourceNotFoundError, ValidationError
from ..models import RoleAssignment, UserRole, is_super
from ..permissions.codes import PermissionCodes
from ..permissions.resolver import PermissionResolver
from ..plans.entitlements import Plan
from ..plans.resolver import PlanResolver
from ..stores.base import PrincipalStore, RoleAssignmentStore, WorkspaceStore


class RoleManager:
    """Grants, revokes and changes role assignments and plans."""

    def __init__(
        self,
        principals: PrincipalStore,
        roles: RoleAssignmentStore,
        workspaces: WorkspaceStore,
        permissions: PermissionResolver,
        plans: PlanResolver,
    ):
        self.principals = principals
        self.roles = roles
        self.workspaces = workspaces
        self.permissions = permissions
        self.plans = plans
        self.logger = get_logger("policy.roles")

    async def _require_assigner(self, assigner_id: str, workspace_id: Optional[str]):
        assigner = await self.principals.get(assigner_id)
        if assigner is None:
            raise ResourceNotFoundError("Assigning user not found", {"user_id": assigner_id})

        if workspace_id is None:
            if assigner.role not in (UserRole.SUPER, UserRole.ADMIN):
                raise AuthorizationError("Only administrators can manage global roles")
            return

        workspace = await self.workspaces.get(workspace_id)
        if workspace is None:
            raise ResourceNotFoundError("Workspace not found", {"workspace_id": workspace_id})
        if workspace.owner_id == assigner_id:
            return
        if not await self.permissions.has_permission(assigner_id, PermissionCodes.WORKSPACE_MANAGE, workspace_id):
            raise AuthorizationError("You don't have permission to manage roles in this workspace")

    async def _require_target(self, user_id: str, role_id: str):
        if await self.principals.get(user_id) is None:
            raise ResourceNotFoundError("User not found", {"user_id": user_id})
        if await self.roles.get_role(role_id) is None:
            raise ResourceNotFoundError("Role not found", {"role_id": role_id})

    async def assign_role(
        self,
        assigner_id: str,
        user_id: str,
        role_id: str,
        workspace_id: Optional[str] = None,
    ) -> RoleAssignment:
        await self._require_target(user_id, role_id)
        await self._require_assigner(assigner_id, workspace_id)

        assignment = RoleAssignment(user_id, role_id, workspace_id)
        if assignment in await self.roles.list_assignments(user_id, workspace_id):
            raise ValidationError(
                "User already has this role",
                {"user_id": user_id, "role_id": role_id, "workspace_id": workspace_id}
            )

        await self.roles.add_assignment(assignment)
        await self.permissions.clear_user_permission_cache(user_id)

        self.logger.info(
            "Role assigned",
            assigner_id=assigner_id,
            user_id=user_id,
            role_id=role_id,
            workspace_id=workspace_id
        )
        return assignment

    async def remove_role(
        self,
        remover_id: str,
        user_id: str,
        role_id: str,
        workspace_id: Optional[str] = None,
    ) -> bool:
        await self._require_assigner(remover_id, workspace_id)

        removed = await self.roles.remove_assignment(RoleAssignment(user_id, role_id, workspace_id))
        if not removed:
            raise ResourceNotFoundError(
                "Role assignment not found",
                {"user_id": user_id, "role_id": role_id, "workspace_id": workspace_id}
            )

        await self.permissions.clear_user_permission_cache(user_id)

        self.logger.info(
            "Role removed",
            remover_id=remover_id,
            user_id=user_id,
            role_id=role_id,
            workspace_id=workspace_id
        )
        return True

    async def change_role(
        self,
        changer_id: str,
        user_id: str,
        new_role_id: str,
        workspace_id: Optional[str] = None,
    ) -> RoleAssignment:
        """Replace every assignment of the user in this scope with ``new_role_id``."""
        await self._require_target(user_id, new_role_id)
        await self._require_assigner(changer_id, workspace_id)

        current = await self.roles.list_assignments(user_id, workspace_id)
        if any(a.role_id == new_role_id for a in current):
            raise ValidationError(
                "User already has this role",
                {"user_id": user_id, "role_id": new_role_id, "workspace_id": workspace_id}
            )

        await self.roles.replace_assignments(user_id, workspace_id, new_role_id)
        await self.permissions.clear_user_permission_cache(user_id)

        self.logger.info(
            "Role changed",
            changer_id=changer_id,
            user_id=user_id,
            previous_roles=[a.role_id for a in current],
            role_id=new_role_id,
            workspace_id=workspace_id
        )
        return RoleAssignment(user_id, new_role_id, workspace_id)

    async def update_plan(self, user_id: str, plan: Plan, requester_id: str) -> Plan:
        """Change a principal's plan; only SUPER may change someone else's."""
        plan = Plan(plan)
        if requester_id != user_id:
            requester = await self.principals.get(requester_id)
            if not is_super(requester):
                raise AuthorizationError("You can only update your own plan")

        if await self.principals.get(user_id) is None:
            raise ResourceNotFoundError("User not found", {"user_id": user_id})

        await self.principals.set_plan(user_id, plan)
        await self.plans.clear_plan_cache(user_id)
        await self.permissions.clear_user_permission_cache(user_id)

        self.logger.info("Plan updated", user_id=user_id, plan=plan.value, requester_id=requester_id)
        return plan
