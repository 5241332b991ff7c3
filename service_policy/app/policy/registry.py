"""
Named policies attached to protected operations.
"""

from typing import Dict, List

from shared.logging import get_logger
from shared.errors import ValidationError
from ..permissions.codes import PermissionCodes as P
from ..plans.entitlements import Feature, LimitType
from .models import Policy


class PolicyRegistry:
    """Maps operation names to their policies."""

    def __init__(self):
        self.logger = get_logger("policy.registry")
        self._policies: Dict[str, Policy] = {}

    def register(self, name: str, policy: Policy) -> Policy:
        if name in self._policies:
            raise ValidationError(f"Policy '{name}' is already registered", {"policy": name})
        if not isinstance(policy, Policy):
            raise ValidationError(f"Policy '{name}' is malformed", {"policy": name})
        self._policies[name] = policy
        self.logger.debug("Policy registered", policy=name, requirements=policy.describe())
        return policy

    def get(self, name: str) -> Policy:
        policy = self._policies.get(name)
        if policy is None:
            raise ValidationError(f"Unknown policy '{name}'", {"policy": name})
        return policy

    def names(self) -> List[str]:
        return sorted(self._policies)

    def __contains__(self, name: str) -> bool:
        return name in self._policies


class ScanPolicies:
    """Policies for the scan endpoints."""

    CREATE = Policy(
        permission_codes=P.SCAN_CREATE,
        limit_type=LimitType.SCANS_PER_DAY,
    )

    CREATE_ADVANCED = Policy(
        permission_codes=P.SCAN_CREATE,
        features=Feature.ADVANCED_SCAN,
        limit_type=LimitType.SCANS_PER_DAY,
        show_upgrade_prompt=True,
    )

    VIEW_HISTORICAL = Policy(
        permission_codes=P.SCAN_READ,
        features=Feature.HISTORICAL_SCAN,
        show_upgrade_prompt=True,
    )

    CREATE_SCHEDULED = Policy(
        permission_codes=(P.SCAN_CREATE, P.SCHEDULE_CREATE),
        require_all_permissions=True,
        features=Feature.SCHEDULED_SCANS,
        show_upgrade_prompt=True,
    )

    VIEW = Policy(permission_codes=P.SCAN_READ)

    RUN = Policy(
        permission_codes=P.SCAN_EXECUTE,
        limit_type=LimitType.SCANS_PER_DAY,
    )

    DELETE = Policy(permission_codes=P.SCAN_DELETE)


def create_default_registry() -> PolicyRegistry:
    registry = PolicyRegistry()
    registry.register("scan.create", ScanPolicies.CREATE)
    registry.register("scan.create_advanced", ScanPolicies.CREATE_ADVANCED)
    registry.register("scan.view_historical", ScanPolicies.VIEW_HISTORICAL)
    registry.register("scan.create_scheduled", ScanPolicies.CREATE_SCHEDULED)
    registry.register("scan.view", ScanPolicies.VIEW)
    registry.register("scan.run", ScanPolicies.RUN)
    registry.register("scan.delete", ScanPolicies.DELETE)
    return registry
