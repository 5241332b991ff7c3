"""
Request and response models for the policy service API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .plans.entitlements import Feature, LimitType, Plan, ResourceType
from .policy.models import IpRestrictions, Policy, ResourceOwnership, TimeWindow


class ResourceOwnershipSpec(BaseModel):
    resource_type: str
    resource_id_param: str


class TimeWindowSpec(BaseModel):
    start_hour: int = Field(..., ge=0, le=23)
    end_hour: int = Field(..., ge=0, le=24)
    timezone: Optional[str] = None


class IpRestrictionsSpec(BaseModel):
    allowed_ips: List[str] = Field(default_factory=list)
    blocked_ips: List[str] = Field(default_factory=list)


class PolicySpec(BaseModel):
    """Inline policy definition."""
    permission_codes: List[str] = Field(default_factory=list)
    require_all_permissions: bool = True
    features: List[Feature] = Field(default_factory=list)
    require_all_features: bool = True
    limit_type: Optional[LimitType] = None
    resource_ownership: Optional[ResourceOwnershipSpec] = None
    check_workspace_membership: bool = False
    time_window: Optional[TimeWindowSpec] = None
    ip_restrictions: Optional[IpRestrictionsSpec] = None
    allow_super: bool = True
    fail_closed: bool = True
    error_message: Optional[str] = None
    show_upgrade_prompt: bool = False

    def to_policy(self) -> Policy:
        return Policy(
            permission_codes=tuple(self.permission_codes),
            require_all_permissions=self.require_all_permissions,
            features=tuple(self.features),
            require_all_features=self.require_all_features,
            limit_type=self.limit_type,
            resource_ownership=ResourceOwnership(**self.resource_ownership.model_dump())
            if self.resource_ownership else None,
            check_workspace_membership=self.check_workspace_membership,
            time_window=TimeWindow(**self.time_window.model_dump()) if self.time_window else None,
            ip_restrictions=IpRestrictions(
                allowed_ips=tuple(self.ip_restrictions.allowed_ips),
                blocked_ips=tuple(self.ip_restrictions.blocked_ips),
            ) if self.ip_restrictions else None,
            allow_super=self.allow_super,
            fail_closed=self.fail_closed,
            error_message=self.error_message,
            show_upgrade_prompt=self.show_upgrade_prompt,
        )


class RequestContextSpec(BaseModel):
    route_params: Dict[str, Any] = Field(default_factory=dict)
    query_params: Dict[str, Any] = Field(default_factory=dict)
    body: Dict[str, Any] = Field(default_factory=dict)
    client_ip: Optional[str] = None
    forwarded_for: Optional[str] = None
    workspace_id: Optional[str] = None


class EvaluateRequest(BaseModel):
    """Evaluate either a registered policy (by name) or an inline one."""
    policy_name: Optional[str] = None
    policy: Optional[PolicySpec] = None
    context: RequestContextSpec = Field(default_factory=RequestContextSpec)
    timeout_seconds: Optional[float] = Field(None, gt=0)


class UpgradeHintResponse(BaseModel):
    required_plan: Optional[Plan] = None
    message: str


class LimitStatusResponse(BaseModel):
    allowed: bool
    current: int
    limit: int
    percentage: int


class DecisionResponse(BaseModel):
    allowed: bool
    reason: str
    upgrade_hint: Optional[UpgradeHintResponse] = None
    failed_check: Optional[str] = None
    limit_status: Optional[LimitStatusResponse] = None


class PermissionListResponse(BaseModel):
    user_id: str
    workspace_id: Optional[str] = None
    permissions: List[str]


class UsageRequest(BaseModel):
    resource_type: ResourceType
    action: str
    count: int = 1


class RoleAssignmentRequest(BaseModel):
    user_id: str
    role_id: str
    workspace_id: Optional[str] = None


class PlanUpdateRequest(BaseModel):
    plan: Plan
