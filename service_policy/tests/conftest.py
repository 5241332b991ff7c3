"""
Shared fixtures: a fully wired policy stack over in-memory stores.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from shared.metrics import MetricsCollector
from service_policy.app.cache.memory import InMemoryCache
from service_policy.app.models import (
    Principal,
    Repository,
    Role,
    Scan,
    Schedule,
    UserRole,
    Workspace,
)
from service_policy.app.permissions.codes import PermissionCodes as P
from service_policy.app.permissions.resolver import PermissionResolver
from service_policy.app.plans.entitlements import Plan
from service_policy.app.plans.resolver import PlanResolver
from service_policy.app.policy.context import ContextChecker
from service_policy.app.policy.evaluator import PolicyEvaluator
from service_policy.app.roles.service import RoleManager
from service_policy.app.stores.base import Stores
from service_policy.app.stores.memory import create_memory_stores

FIXED_NOW = datetime(2026, 3, 18, 14, 30, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic seconds that only move when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@dataclass
class PolicyWorld:
    stores: Stores
    cache: InMemoryCache
    clock: FakeClock
    metrics: MetricsCollector
    permissions: PermissionResolver
    plans: PlanResolver
    context: ContextChecker
    evaluator: PolicyEvaluator
    roles: RoleManager


def seed(stores: Stores):
    principals = stores.principals
    principals.add(Principal("super-1", UserRole.SUPER, Plan.ENTERPRISE))
    principals.add(Principal("admin-1", UserRole.ADMIN, Plan.BUSINESS))
    principals.add(Principal("member-1", UserRole.MEMBER, Plan.STARTER))
    principals.add(Principal("member-2", UserRole.MEMBER, None))
    principals.add(Principal("owner-1", UserRole.OWNER, Plan.BUSINESS))
    principals.add(Principal("starter-owner", UserRole.MEMBER, Plan.STARTER))
    principals.add(Principal("pro-1", UserRole.MEMBER, Plan.PRO))

    roles = stores.roles
    roles.add_role(Role("role-viewer", "Viewer", frozenset({P.SCAN_READ, P.REPORT_READ})))
    roles.add_role(Role("role-deleter", "Scan cleaner", frozenset({P.SCAN_DELETE})))
    roles.add_role(Role("role-ws-admin", "Workspace admin", frozenset({P.WORKSPACE_MANAGE, P.SCAN_CREATE, P.SCAN_READ})))
    roles.add_role(Role(
        "role-scanner",
        "Scanner",
        frozenset({P.SCAN_CREATE, P.SCAN_READ, P.SCAN_EXECUTE, P.SCHEDULE_CREATE}),
    ))

    workspaces = stores.workspaces
    workspaces.add(Workspace("ws-1", "owner-1", "Main"), members={"owner-1", "member-1"})
    workspaces.add(Workspace("ws-2", "starter-owner", "Side"), members={"starter-owner"})

    resources = stores.resources
    resources.add_repository(Repository("repo-1", "owner-1"))
    resources.add_scan(Scan("scan-1", "ws-1"))
    resources.add_schedule(Schedule("schedule-1", "ws-1"))


def build_world() -> PolicyWorld:
    stores = create_memory_stores()
    seed(stores)

    clock = FakeClock()
    cache = InMemoryCache(clock=clock)
    metrics = MetricsCollector("policy-test")

    permissions = PermissionResolver(
        cache, stores.principals, stores.roles, stores.workspaces, ttl=300, metrics=metrics
    )
    plans = PlanResolver(
        cache,
        stores.principals,
        stores.usage,
        stores.workspaces,
        stores.resources,
        ttl=300,
        clock=lambda: FIXED_NOW,
        metrics=metrics,
    )
    context = ContextChecker(stores.workspaces, stores.resources, clock=lambda: FIXED_NOW)
    evaluator = PolicyEvaluator(permissions, plans, context, default_timeout=5.0, metrics=metrics)
    roles = RoleManager(stores.principals, stores.roles, stores.workspaces, permissions, plans)

    return PolicyWorld(stores, cache, clock, metrics, permissions, plans, context, evaluator, roles)


@pytest.fixture
def world() -> PolicyWorld:
    """Fresh, seeded policy stack."""
    return build_world()


@pytest.fixture
def now():
    """The instant the resolvers and context checks see as "now"."""
    return FIXED_NOW


@pytest.fixture
def stores() -> Stores:
    """Seeded in-memory stores, for wiring a full service."""
    stores = create_memory_stores()
    seed(stores)
    return stores
