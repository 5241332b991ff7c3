"""
Policy data models for the policy evaluator.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..plans.entitlements import Feature, LimitStatus, LimitType, Plan


class CheckName(str, Enum):
    """Sub-checks of an evaluation, in evaluation order."""
    SUPER_BYPASS = "super_bypass"
    PERMISSION = "permission"
    FEATURE = "feature"
    LIMIT = "limit"
    RESOURCE_OWNERSHIP = "resource_ownership"
    WORKSPACE_MEMBERSHIP = "workspace_membership"
    TIME_WINDOW = "time_window"
    IP_RESTRICTION = "ip_restriction"
    CANCELLED = "cancelled"


class OwnedResourceType(str, Enum):
    """Resource types that support ownership checks."""
    WORKSPACE = "WORKSPACE"
    REPOSITORY = "REPOSITORY"
    SCAN = "SCAN"
    SCHEDULE = "SCHEDULE"


@dataclass(frozen=True)
class ResourceOwnership:
    """Which resource must be owned, and where to find its id in the request."""
    resource_type: str
    resource_id_param: str


@dataclass(frozen=True)
class TimeWindow:
    """Hours ``[start_hour, end_hour)``; wraps past midnight when start > end."""
    start_hour: int
    end_hour: int
    timezone: Optional[str] = None


@dataclass(frozen=True)
class IpRestrictions:
    allowed_ips: Tuple[str, ...] = ()
    blocked_ips: Tuple[str, ...] = ()


def _as_tuple(value):
    if value is None:
        return ()
    if isinstance(value, (str, Enum)):
        return (value,)
    return tuple(value)


@dataclass(frozen=True)
class Policy:
    """Declarative requirements attached to a protected operation."""
    permission_codes: Tuple[str, ...] = ()
    require_all_permissions: bool = True
    features: Tuple[Feature, ...] = ()
    require_all_features: bool = True
    limit_type: Optional[LimitType] = None
    resource_ownership: Optional[ResourceOwnership] = None
    check_workspace_membership: bool = False
    time_window: Optional[TimeWindow] = None
    ip_restrictions: Optional[IpRestrictions] = None
    allow_super: bool = True
    fail_closed: bool = True
    error_message: Optional[str] = None
    show_upgrade_prompt: bool = False

    def __post_init__(self):
        # Accept a bare code or feature as shorthand for a one-element tuple
        object.__setattr__(self, "permission_codes", _as_tuple(self.permission_codes))
        object.__setattr__(self, "features", tuple(Feature(f) for f in _as_tuple(self.features)))
        if self.limit_type is not None:
            object.__setattr__(self, "limit_type", LimitType(self.limit_type))

    def describe(self) -> Dict[str, Any]:
        """Loggable summary of the policy."""
        summary = {
            "permission_codes": list(self.permission_codes),
            "features": [f.value for f in self.features],
            "limit_type": self.limit_type.value if self.limit_type else None,
            "resource_ownership": asdict(self.resource_ownership) if self.resource_ownership else None,
            "check_workspace_membership": self.check_workspace_membership,
            "time_window": asdict(self.time_window) if self.time_window else None,
            "ip_restrictions": asdict(self.ip_restrictions) if self.ip_restrictions else None,
            "allow_super": self.allow_super,
            "fail_closed": self.fail_closed,
        }
        return {key: value for key, value in summary.items() if value not in (None, [])}


@dataclass(frozen=True)
class RequestContext:
    """Ambient request data supplied by the request-handling layer."""
    route_params: Dict[str, Any] = field(default_factory=dict)
    query_params: Dict[str, Any] = field(default_factory=dict)
    body: Dict[str, Any] = field(default_factory=dict)
    client_ip: Optional[str] = None
    forwarded_for: Optional[str] = None
    workspace_id: Optional[str] = None


@dataclass(frozen=True)
class PolicyRequest:
    """A principal asking to perform an operation guarded by ``policy``."""
    principal_id: Optional[str]
    policy: Policy
    context: RequestContext = field(default_factory=RequestContext)


@dataclass(frozen=True)
class UpgradeHint:
    required_plan: Optional[Plan]
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "required_plan": self.required_plan.value if self.required_plan else None,
            "message": self.message,
        }


@dataclass(frozen=True)
class Decision:
    """Outcome of an evaluation.

    ``failed_check`` names the sub-check that denied (or errored) and is for
    logging and messaging only.
    """
    allowed: bool
    reason: str
    upgrade_hint: Optional[UpgradeHint] = None
    failed_check: Optional[CheckName] = None
    limit_status: Optional[LimitStatus] = None

    @classmethod
    def allow(cls, reason: str = "Access granted") -> "Decision":
        return cls(allowed=True, reason=reason)

    @classmethod
    def deny(
        cls,
        reason: str,
        check: Optional[CheckName] = None,
        upgrade_hint: Optional[UpgradeHint] = None,
        limit_status: Optional[LimitStatus] = None,
    ) -> "Decision":
        return cls(
            allowed=False,
            reason=reason,
            upgrade_hint=upgrade_hint,
            failed_check=check,
            limit_status=limit_status,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "upgrade_hint": self.upgrade_hint.to_dict() if self.upgrade_hint else None,
            "failed_check": self.failed_check.value if self.failed_check else None,
            "limit_status": asdict(self.limit_status) if self.limit_status else None,
        }

