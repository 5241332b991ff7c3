"""
Static plan entitlement table.

Each subscription plan unlocks a set of features, numeric limits and
permission codes. Plans form a superset chain: every entitlement of a lower
tier is also present in every higher tier.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from ..permissions.codes import PermissionCodes as P


class Plan(str, Enum):
    """Subscription tiers, lowest first."""
    STARTER = "STARTER"
    PRO = "PRO"
    BUSINESS = "BUSINESS"
    ENTERPRISE = "ENTERPRISE"


PLAN_ORDER: List[Plan] = [Plan.STARTER, Plan.PRO, Plan.BUSINESS, Plan.ENTERPRISE]
DEFAULT_PLAN = Plan.STARTER


class Feature(str, Enum):
    """Plan-gated features."""
    ADVANCED_SCAN = "advanced_scan"
    HISTORICAL_SCAN = "historical_scan"
    CUSTOM_RULES = "custom_rules"
    SCHEDULED_SCANS = "scheduled_scans"
    API_ACCESS = "api_access"
    REPORTING = "reporting"
    EXPORT_REPORTS = "export_reports"
    TEAM_MANAGEMENT = "team_management"
    SSO_LOGIN = "sso_login"
    ROLE_CUSTOMIZATION = "role_customization"
    AUDIT_LOG = "audit_log"
    PRIORITY_SUPPORT = "priority_support"


class LimitType(str, Enum):
    """Numeric plan limits."""
    SCANS_PER_DAY = "scans_per_day"
    SCANS_PER_MONTH = "scans_per_month"
    USERS_PER_WORKSPACE = "users_per_workspace"
    MAX_WORKSPACES = "max_workspaces"
    MAX_REPOSITORIES = "max_repositories"
    MAX_HISTORY_DAYS = "max_history_days"
    MAX_ALERTS = "max_alerts"


class ResourceType(str, Enum):
    """Resource types recorded in the usage ledger."""
    SCAN = "SCAN"
    WORKSPACE = "WORKSPACE"
    REPOSITORY = "REPOSITORY"
    USER = "USER"
    ALERT = "ALERT"
    SCHEDULE = "SCHEDULE"


@dataclass(frozen=True)
class PlanEntitlement:
    """Everything one plan unlocks."""
    plan: Plan
    name: str
    features: FrozenSet[Feature]
    limits: Mapping[LimitType, int]
    permissions: FrozenSet[str]


@dataclass(frozen=True)
class LimitStatus:
    """Usage of one limit at evaluation time."""
    allowed: bool
    current: int
    limit: int
    percentage: int


def _limits(per_day, per_month, users, workspaces, repositories, history, alerts) -> Dict[LimitType, int]:
    return {
        LimitType.SCANS_PER_DAY: per_day,
        LimitType.SCANS_PER_MONTH: per_month,
        LimitType.USERS_PER_WORKSPACE: users,
        LimitType.MAX_WORKSPACES: workspaces,
        LimitType.MAX_REPOSITORIES: repositories,
        LimitType.MAX_HISTORY_DAYS: history,
        LimitType.MAX_ALERTS: alerts,
    }


PLAN_LIMITS: Dict[Plan, Dict[LimitType, int]] = {
    Plan.STARTER: _limits(5, 30, 3, 1, 5, 14, 100),
    Plan.PRO: _limits(20, 200, 10, 3, 20, 30, 500),
    Plan.BUSINESS: _limits(50, 500, 30, 10, 50, 90, 1000),
    Plan.ENTERPRISE: _limits(100, 1000, 100, 100, 500, 365, 5000),
}

_STARTER_FEATURES = {Feature.REPORTING}
_PRO_FEATURES = _STARTER_FEATURES | {
    Feature.ADVANCED_SCAN,
    Feature.HISTORICAL_SCAN,
    Feature.SCHEDULED_SCANS,
    Feature.API_ACCESS,
    Feature.EXPORT_REPORTS,
    Feature.TEAM_MANAGEMENT,
}
_BUSINESS_FEATURES = _PRO_FEATURES | {
    Feature.CUSTOM_RULES,
    Feature.SSO_LOGIN,
    Feature.ROLE_CUSTOMIZATION,
    Feature.AUDIT_LOG,
}
_ENTERPRISE_FEATURES = _BUSINESS_FEATURES | {Feature.PRIORITY_SUPPORT}

PLAN_FEATURES: Dict[Plan, FrozenSet[Feature]] = {
    Plan.STARTER: frozenset(_STARTER_FEATURES),
    Plan.PRO: frozenset(_PRO_FEATURES),
    Plan.BUSINESS: frozenset(_BUSINESS_FEATURES),
    Plan.ENTERPRISE: frozenset(_ENTERPRISE_FEATURES),
}

_STARTER_PERMISSIONS = {
    P.SCAN_READ,
    P.SCAN_CREATE,
    P.SCAN_EXECUTE,
    P.REPORT_READ,
    P.WORKSPACE_READ,
    P.REPOSITORY_READ,
    P.SCHEDULE_READ,
    P.USER_READ,
}
_PRO_PERMISSIONS = _STARTER_PERMISSIONS | {
    P.SCAN_UPDATE,
    P.REPORT_CREATE,
    P.REPORT_UPDATE,
    P.WORKSPACE_UPDATE,
    P.REPOSITORY_CREATE,
    P.REPOSITORY_UPDATE,
    P.SCHEDULE_CREATE,
    P.SCHEDULE_UPDATE,
    P.USER_CREATE,
    P.USER_UPDATE,
    P.SETTINGS_READ,
}
_BUSINESS_PERMISSIONS = _PRO_PERMISSIONS | {
    P.SCAN_DELETE,
    P.REPORT_DELETE,
    P.WORKSPACE_MANAGE,
    P.REPOSITORY_DELETE,
    P.SCHEDULE_DELETE,
    P.USER_DELETE,
    P.ROLE_CREATE,
    P.ROLE_READ,
    P.ROLE_UPDATE,
    P.PERMISSION_READ,
    P.SETTINGS_UPDATE,
}
_ENTERPRISE_PERMISSIONS = _BUSINESS_PERMISSIONS | {
    P.WORKSPACE_DELETE,
    P.USER_MANAGE,
    P.ROLE_DELETE,
    P.PERMISSION_MANAGE,
    P.SETTINGS_MANAGE,
}

PLAN_PERMISSIONS: Dict[Plan, FrozenSet[str]] = {
    Plan.STARTER: frozenset(_STARTER_PERMISSIONS),
    Plan.PRO: frozenset(_PRO_PERMISSIONS),
    Plan.BUSINESS: frozenset(_BUSINESS_PERMISSIONS),
    Plan.ENTERPRISE: frozenset(_ENTERPRISE_PERMISSIONS),
}

PLANS: Dict[Plan, PlanEntitlement] = {
    plan: PlanEntitlement(
        plan=plan,
        name=plan.value.title(),
        features=PLAN_FEATURES[plan],
        limits=PLAN_LIMITS[plan],
        permissions=PLAN_PERMISSIONS[plan],
    )
    for plan in PLAN_ORDER
}

PLAN_UPGRADE_MESSAGES: Dict[str, str] = {
    Feature.ADVANCED_SCAN: "Upgrade to Pro plan or higher to access advanced scanning features.",
    Feature.HISTORICAL_SCAN: "Upgrade to Pro plan or higher to access historical scanning.",
    Feature.CUSTOM_RULES: "Upgrade to Business plan or higher to create custom security rules.",
    Feature.SCHEDULED_SCANS: "Upgrade to Pro plan or higher to schedule automated scans.",
    Feature.API_ACCESS: "Upgrade to Pro plan or higher to access the API.",
    Feature.EXPORT_REPORTS: "Upgrade to Pro plan or higher to export reports.",
    Feature.TEAM_MANAGEMENT: "Upgrade to Pro plan or higher to manage team members.",
    Feature.SSO_LOGIN: "Upgrade to Business plan or higher to use SSO login.",
    Feature.ROLE_CUSTOMIZATION: "Upgrade to Business plan or higher to customize roles.",
    Feature.AUDIT_LOG: "Upgrade to Business plan or higher to access audit logs.",
    Feature.PRIORITY_SUPPORT: "Upgrade to Enterprise plan to get priority support.",

    LimitType.SCANS_PER_DAY: "You have reached your daily scan limit. Upgrade your plan for more scans per day.",
    LimitType.SCANS_PER_MONTH: "You have reached your monthly scan limit. Upgrade your plan for more scans per month.",
    LimitType.USERS_PER_WORKSPACE: "You have reached the maximum users per workspace. Upgrade your plan to add more users.",
    LimitType.MAX_WORKSPACES: "You have reached the maximum number of workspaces. Upgrade your plan to create more workspaces.",
    LimitType.MAX_REPOSITORIES: "You have reached the maximum number of repositories. Upgrade your plan to add more repositories.",
    LimitType.MAX_HISTORY_DAYS: "Your plan has limited scan history. Upgrade for longer history retention.",
    LimitType.MAX_ALERTS: "You have reached the maximum number of alerts. Upgrade your plan to create more alerts.",
}


def plan_rank(plan: Plan) -> int:
    return PLAN_ORDER.index(plan)


def plan_has_feature(plan: Plan, feature: Feature) -> bool:
    """Pure lookup: does ``plan`` include ``feature``."""
    return feature in PLAN_FEATURES.get(plan, frozenset())


def plan_has_permission(plan: Plan, code: str) -> bool:
    """Pure lookup: does ``plan`` include permission ``code``."""
    return code in PLAN_PERMISSIONS.get(plan, frozenset())


def minimum_plan_for_permission(code: str) -> Optional[Plan]:
    """Lowest plan whose permission set contains ``code``."""
    for plan in PLAN_ORDER:
        if code in PLAN_PERMISSIONS[plan]:
            return plan
    return None


def minimum_plan_for_feature(feature: Feature) -> Optional[Plan]:
    """Lowest plan that unlocks ``feature``."""
    for plan in PLAN_ORDER:
        if feature in PLAN_FEATURES[plan]:
            return plan
    return None


def minimum_plan_for_all(plans: Iterable[Optional[Plan]]) -> Optional[Plan]:
    """Highest of the given minimum plans, i.e. the tier that covers them all.

    Returns None if any item has no qualifying plan.
    """
    result: Optional[Plan] = None
    for plan in plans:
        if plan is None:
            return None
        if result is None or plan_rank(plan) > plan_rank(result):
            result = plan
    return result


def minimum_plan_for_any(plans: Iterable[Optional[Plan]]) -> Optional[Plan]:
    """Lowest of the given minimum plans, ignoring items no plan unlocks."""
    candidates = [plan for plan in plans if plan is not None]
    if not candidates:
        return None
    return min(candidates, key=plan_rank)


def permission_upgrade_message(code: str, current_plan: Plan) -> Optional[str]:
    """Upgrade prompt for a permission missing from ``current_plan``.

    None when no plan includes the code or the current plan already does.
    """
    minimum = minimum_plan_for_permission(code)
    if minimum is None or plan_rank(minimum) <= plan_rank(current_plan):
        return None
    return upgrade_message_for_plan(minimum)


def upgrade_message_for_plan(plan: Plan) -> str:
    return f"This feature requires the {plan.value} plan or higher. Please upgrade to access it."
