"""
Permission catalogue.

Permission codes are ``RESOURCE:ACTION`` strings. Every code has a declared
scope, derived from its resource, which decides whether workspace ownership
implies it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List


class PermissionScope(str, Enum):
    """Scope a permission applies in."""
    GLOBAL = "GLOBAL"
    WORKSPACE = "WORKSPACE"
    SCAN = "SCAN"
    REPORT = "REPORT"
    USER = "USER"
    REPOSITORY = "REPOSITORY"
    SCHEDULE = "SCHEDULE"


class PermissionAction(str, Enum):
    """Permission actions."""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    EXECUTE = "EXECUTE"
    MANAGE = "MANAGE"  # complete control over a resource


class PermissionResource(str, Enum):
    """Permission resources."""
    WORKSPACE = "WORKSPACE"
    SCAN = "SCAN"
    REPORT = "REPORT"
    USER = "USER"
    REPOSITORY = "REPOSITORY"
    SCHEDULE = "SCHEDULE"
    ROLE = "ROLE"
    PERMISSION = "PERMISSION"
    SETTINGS = "SETTINGS"


@dataclass(frozen=True)
class Permission:
    """A permission code with its declared scope."""
    code: str
    resource: PermissionResource
    action: PermissionAction
    scope: PermissionScope
    description: str = ""


_RESOURCE_SCOPES = {
    PermissionResource.WORKSPACE: PermissionScope.WORKSPACE,
    PermissionResource.SCAN: PermissionScope.SCAN,
    PermissionResource.REPORT: PermissionScope.REPORT,
    PermissionResource.USER: PermissionScope.USER,
    PermissionResource.REPOSITORY: PermissionScope.REPOSITORY,
    PermissionResource.SCHEDULE: PermissionScope.SCHEDULE,
}


def make_code(resource: PermissionResource, action: PermissionAction) -> str:
    """Build a ``RESOURCE:ACTION`` permission code."""
    return f"{resource.value}:{action.value}"


def scope_for(resource: PermissionResource) -> PermissionScope:
    """Scope of every permission on ``resource``."""
    return _RESOURCE_SCOPES.get(resource, PermissionScope.GLOBAL)


def parse_code(code: str) -> Permission:
    """Parse a code into a Permission; raises ValueError for malformed codes."""
    resource, sep, action = code.partition(":")
    if not sep:
        raise ValueError(f"Malformed permission code: {code!r}")
    res = PermissionResource(resource)
    return Permission(
        code=code,
        resource=res,
        action=PermissionAction(action),
        scope=scope_for(res),
        description=PERMISSION_DESCRIPTIONS.get(code, ""),
    )


class PermissionCodes:
    """Namespace of every known permission code."""

    WORKSPACE_CREATE = make_code(PermissionResource.WORKSPACE, PermissionAction.CREATE)
    WORKSPACE_READ = make_code(PermissionResource.WORKSPACE, PermissionAction.READ)
    WORKSPACE_UPDATE = make_code(PermissionResource.WORKSPACE, PermissionAction.UPDATE)
    WORKSPACE_DELETE = make_code(PermissionResource.WORKSPACE, PermissionAction.DELETE)
    WORKSPACE_MANAGE = make_code(PermissionResource.WORKSPACE, PermissionAction.MANAGE)

    SCAN_CREATE = make_code(PermissionResource.SCAN, PermissionAction.CREATE)
    SCAN_READ = make_code(PermissionResource.SCAN, PermissionAction.READ)
    SCAN_UPDATE = make_code(PermissionResource.SCAN, PermissionAction.UPDATE)
    SCAN_DELETE = make_code(PermissionResource.SCAN, PermissionAction.DELETE)
    SCAN_EXECUTE = make_code(PermissionResource.SCAN, PermissionAction.EXECUTE)

    REPORT_CREATE = make_code(PermissionResource.REPORT, PermissionAction.CREATE)
    REPORT_READ = make_code(PermissionResource.REPORT, PermissionAction.READ)
    REPORT_UPDATE = make_code(PermissionResource.REPORT, PermissionAction.UPDATE)
    REPORT_DELETE = make_code(PermissionResource.REPORT, PermissionAction.DELETE)

    USER_CREATE = make_code(PermissionResource.USER, PermissionAction.CREATE)
    USER_READ = make_code(PermissionResource.USER, PermissionAction.READ)
    USER_UPDATE = make_code(PermissionResource.USER, PermissionAction.UPDATE)
    USER_DELETE = make_code(PermissionResource.USER, PermissionAction.DELETE)
    USER_MANAGE = make_code(PermissionResource.USER, PermissionAction.MANAGE)

    REPOSITORY_CREATE = make_code(PermissionResource.REPOSITORY, PermissionAction.CREATE)
    REPOSITORY_READ = make_code(PermissionResource.REPOSITORY, PermissionAction.READ)
    REPOSITORY_UPDATE = make_code(PermissionResource.REPOSITORY, PermissionAction.UPDATE)
    REPOSITORY_DELETE = make_code(PermissionResource.REPOSITORY, PermissionAction.DELETE)

    SCHEDULE_CREATE = make_code(PermissionResource.SCHEDULE, PermissionAction.CREATE)
    SCHEDULE_READ = make_code(PermissionResource.SCHEDULE, PermissionAction.READ)
    SCHEDULE_UPDATE = make_code(PermissionResource.SCHEDULE, PermissionAction.UPDATE)
    SCHEDULE_DELETE = make_code(PermissionResource.SCHEDULE, PermissionAction.DELETE)

    ROLE_CREATE = make_code(PermissionResource.ROLE, PermissionAction.CREATE)
    ROLE_READ = make_code(PermissionResource.ROLE, PermissionAction.READ)
    ROLE_UPDATE = make_code(PermissionResource.ROLE, PermissionAction.UPDATE)
    ROLE_DELETE = make_code(PermissionResource.ROLE, PermissionAction.DELETE)

    PERMISSION_READ = make_code(PermissionResource.PERMISSION, PermissionAction.READ)
    PERMISSION_MANAGE = make_code(PermissionResource.PERMISSION, PermissionAction.MANAGE)

    SETTINGS_READ = make_code(PermissionResource.SETTINGS, PermissionAction.READ)
    SETTINGS_UPDATE = make_code(PermissionResource.SETTINGS, PermissionAction.UPDATE)
    SETTINGS_MANAGE = make_code(PermissionResource.SETTINGS, PermissionAction.MANAGE)


PERMISSION_DESCRIPTIONS: Dict[str, str] = {
    PermissionCodes.WORKSPACE_CREATE: "Create new workspaces",
    PermissionCodes.WORKSPACE_READ: "View workspace details",
    PermissionCodes.WORKSPACE_UPDATE: "Update workspace settings",
    PermissionCodes.WORKSPACE_DELETE: "Delete workspaces",
    PermissionCodes.WORKSPACE_MANAGE: "Full control over workspaces",

    PermissionCodes.SCAN_CREATE: "Create new security scans",
    PermissionCodes.SCAN_READ: "View scan details and results",
    PermissionCodes.SCAN_UPDATE: "Update scan settings",
    PermissionCodes.SCAN_DELETE: "Delete scans",
    PermissionCodes.SCAN_EXECUTE: "Execute scan operations",

    PermissionCodes.REPORT_CREATE: "Generate new reports",
    PermissionCodes.REPORT_READ: "View security reports",
    PermissionCodes.REPORT_UPDATE: "Update report settings",
    PermissionCodes.REPORT_DELETE: "Delete reports",

    PermissionCodes.USER_CREATE: "Invite users to workspaces",
    PermissionCodes.USER_READ: "View user information",
    PermissionCodes.USER_UPDATE: "Edit user settings",
    PermissionCodes.USER_DELETE: "Remove users",
    PermissionCodes.USER_MANAGE: "Full control over users",

    PermissionCodes.REPOSITORY_CREATE: "Connect new repositories",
    PermissionCodes.REPOSITORY_READ: "View repository information",
    PermissionCodes.REPOSITORY_UPDATE: "Update repository settings",
    PermissionCodes.REPOSITORY_DELETE: "Remove repositories",

    PermissionCodes.SCHEDULE_CREATE: "Create scan schedules",
    PermissionCodes.SCHEDULE_READ: "View scan schedules",
    PermissionCodes.SCHEDULE_UPDATE: "Update scan schedules",
    PermissionCodes.SCHEDULE_DELETE: "Remove scan schedules",

    PermissionCodes.ROLE_CREATE: "Create new roles",
    PermissionCodes.ROLE_READ: "View roles and their permissions",
    PermissionCodes.ROLE_UPDATE: "Update role permissions",
    PermissionCodes.ROLE_DELETE: "Delete roles",

    PermissionCodes.PERMISSION_READ: "View permissions",
    PermissionCodes.PERMISSION_MANAGE: "Manage permission assignments",

    PermissionCodes.SETTINGS_READ: "View system settings",
    PermissionCodes.SETTINGS_UPDATE: "Update system settings",
    PermissionCodes.SETTINGS_MANAGE: "Full control over system settings",
}

PERMISSIONS: Dict[str, Permission] = {code: parse_code(code) for code in PERMISSION_DESCRIPTIONS}


def all_permission_codes() -> List[str]:
    """Every code in the catalogue, sorted."""
    return sorted(PERMISSIONS)


def codes_with_scope(scope: PermissionScope) -> List[str]:
    """Every code whose declared scope is ``scope``, sorted."""
    return sorted(code for code, perm in PERMISSIONS.items() if perm.scope == scope)
