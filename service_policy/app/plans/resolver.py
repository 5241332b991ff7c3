"""
Plan entitlement resolution: plan lookup, features, limits and usage.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional
from zoneinfo import ZoneInfo

from shared.logging import get_logger
from ..cache.base import CacheLayer, SafeCache, plan_key, principal_key
from ..models import UsageRecord, utcnow
from ..stores.base import PrincipalStore, ResourceStore, UsageLedger, WorkspaceStore
from .entitlements import (
    DEFAULT_PLAN,
    PLAN_LIMITS,
    PLANS,
    Feature,
    LimitStatus,
    LimitType,
    Plan,
    ResourceType,
    plan_has_feature,
    plan_has_permission,
)


def limit_percentage(current: int, limit: int) -> int:
    """``current / limit`` as a percentage, rounded half up; 0 for a zero limit."""
    if limit <= 0:
        return 0
    return (200 * current + limit) // (2 * limit)


class PlanResolver:
    """Resolves what a principal's plan allows and how much of it is used."""

    def __init__(
        self,
        cache: CacheLayer,
        principals: PrincipalStore,
        usage: UsageLedger,
        workspaces: WorkspaceStore,
        resources: ResourceStore,
        ttl: int = 300,
        usage_timezone: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
        metrics=None,
    ):
        self.cache = SafeCache(cache, metrics, "policy.cache.plans")
        self.principals = principals
        self.usage = usage
        self.workspaces = workspaces
        self.resources = resources
        self.ttl = ttl
        self.usage_timezone = usage_timezone
        self.clock = clock or utcnow
        self.metrics = metrics
        self.logger = get_logger("policy.plans")

    async def get_plan(self, user_id: str) -> Plan:
        """Cached plan of the principal; STARTER when none is set."""
        key = plan_key(user_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return Plan(cached)

        principal = await self.principals.get(user_id)
        plan = principal.plan if principal is not None and principal.plan else DEFAULT_PLAN

        await self.cache.set(key, plan.value, self.ttl)
        return plan

    def plan_has_feature(self, plan: Plan, feature: Feature) -> bool:
        return plan_has_feature(plan, Feature(feature))

    async def user_has_permission_in_plan(self, user_id: str, code: str) -> bool:
        plan = await self.get_plan(user_id)
        return plan_has_permission(plan, code)

    async def has_features(self, user_id: str, features: Iterable[Feature], require_all: bool = True) -> bool:
        features = [Feature(f) for f in features]
        if not features:
            return True

        plan = await self.get_plan(user_id)
        matches = (plan_has_feature(plan, feature) for feature in features)
        return all(matches) if require_all else any(matches)

    async def check_limit(
        self,
        user_id: str,
        limit_type: LimitType,
        workspace_id: Optional[str] = None,
    ) -> LimitStatus:
        """Compare current usage against the plan limit.

        Fails open: any internal error allows the request with zeroed numbers.
        """
        try:
            limit_type = LimitType(limit_type)
            plan = await self.get_plan(user_id)
            limit = PLAN_LIMITS[plan][limit_type]
            current = await self._current_usage(user_id, limit_type, workspace_id)

            return LimitStatus(
                allowed=current < limit,
                current=current,
                limit=limit,
                percentage=limit_percentage(current, limit),
            )

        except Exception as e:
            self.logger.error(
                "Limit check failed, allowing",
                user_id=user_id,
                limit_type=str(limit_type),
                error=str(e)
            )
            return LimitStatus(allowed=True, current=0, limit=0, percentage=0)

    def _period_start(self, limit_type: LimitType) -> datetime:
        local_now = self.clock().astimezone(ZoneInfo(self.usage_timezone))
        start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        if limit_type == LimitType.SCANS_PER_MONTH:
            start = start.replace(day=1)
        return start

    async def _current_usage(self, user_id: str, limit_type: LimitType, workspace_id: Optional[str]) -> int:
        if limit_type in (LimitType.SCANS_PER_DAY, LimitType.SCANS_PER_MONTH):
            return await self.usage.aggregate(user_id, ResourceType.SCAN, self._period_start(limit_type))

        if limit_type == LimitType.MAX_WORKSPACES:
            return await self.workspaces.count_owned(user_id)

        if limit_type == LimitType.MAX_REPOSITORIES:
            return await self.resources.count_repositories(user_id)

        if limit_type == LimitType.MAX_ALERTS:
            return await self.resources.count_alerts(user_id)

        if limit_type == LimitType.USERS_PER_WORKSPACE:
            if workspace_id:
                return await self.workspaces.count_members(workspace_id)
            owned = await self.workspaces.list_owned(user_id)
            counts = await asyncio.gather(*(self.workspaces.count_members(ws.workspace_id) for ws in owned))
            return max(counts, default=0)

        # MAX_HISTORY_DAYS is a retention window, not a counted quota
        return 0

    async def track_usage(self, user_id: str, resource_type: ResourceType, action: str, count: int = 1) -> bool:
        """Append a usage event. Never raises; returns whether it was stored."""
        if count < 0:
            self.logger.warning(
                "Rejected negative usage count",
                user_id=user_id,
                resource_type=str(resource_type),
                action=action,
                count=count
            )
            return False

        try:
            record = UsageRecord(
                user_id=user_id,
                resource_type=ResourceType(resource_type),
                action=action,
                count=count,
                timestamp=self.clock(),
            )
            await self.usage.insert(record)
            return True

        except Exception as e:
            self.logger.error(
                "Failed to track usage",
                user_id=user_id,
                resource_type=str(resource_type),
                action=action,
                error=str(e)
            )
            if self.metrics:
                self.metrics.increment_counter(
                    "usage_tracking_failures_total",
                    resource_type=getattr(resource_type, "value", str(resource_type))
                )
            return False

    async def get_usage_stats(
        self,
        user_id: str,
        resource_type: Optional[ResourceType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """Totals per resource type, broken down by action."""
        try:
            records = await self.usage.records(
                user_id,
                ResourceType(resource_type) if resource_type else None,
                since,
                until,
            )
        except Exception as e:
            self.logger.error("Failed to load usage stats", user_id=user_id, error=str(e))
            return {}

        stats: Dict[str, Dict[str, Any]] = {}
        for record in records:
            entry = stats.setdefault(record.resource_type.value, {"total": 0, "by_action": defaultdict(int)})
            entry["total"] += record.count
            entry["by_action"][record.action] += record.count

        for entry in stats.values():
            entry["by_action"] = dict(entry["by_action"])
        return stats

    async def get_plan_details(self, user_id: str) -> Dict[str, Any]:
        """Plan entitlements plus live status of every limit."""
        plan = await self.get_plan(user_id)
        entitlement = PLANS[plan]

        limit_types = list(LimitType)
        statuses = await asyncio.gather(*(self.check_limit(user_id, lt) for lt in limit_types))

        return {
            "plan": plan.value,
            "name": entitlement.name,
            "features": sorted(f.value for f in entitlement.features),
            "permissions": sorted(entitlement.permissions),
            "limits": {lt.value: value for lt, value in entitlement.limits.items()},
            "usage": {
                lt.value: {
                    "allowed": status.allowed,
                    "current": status.current,
                    "limit": status.limit,
                    "percentage": status.percentage,
                }
                for lt, status in zip(limit_types, statuses)
            },
        }

    async def clear_plan_cache(self, user_id: str) -> int:
        removed = await self.cache.delete(plan_key(user_id), principal_key(user_id))
        self.logger.info("Cleared plan cache", user_id=user_id, keys_removed=removed)
        return removed
