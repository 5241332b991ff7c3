"""
Policy decision service.
"""

from typing import Optional

from fastapi import Depends, Query, Request

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import ValidationError
from shared.logging import set_user_context

from .cache.base import CacheLayer
from .cache.memory import InMemoryCache
from .cache.redis_cache import RedisCache
from .dependencies import current_user_id, require_policy
from .permissions.resolver import PermissionResolver
from .plans.resolver import PlanResolver
from .policy.context import ContextChecker
from .policy.evaluator import PolicyEvaluator
from .policy.models import PolicyRequest, RequestContext
from .policy.registry import PolicyRegistry, create_default_registry
from .roles.service import RoleManager
from .schemas import (
    DecisionResponse,
    EvaluateRequest,
    PermissionListResponse,
    PlanUpdateRequest,
    RoleAssignmentRequest,
    UsageRequest,
)
from .stores.base import Stores
from .stores.memory import create_memory_stores
from .stores.postgres import PostgresDatabase, create_postgres_stores


class PolicyService(BaseService):
    """Policy decision service implementation.

    ``stores``, ``cache`` and ``registry`` default to what the configuration
    selects; tests pass their own.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        stores: Optional[Stores] = None,
        cache: Optional[CacheLayer] = None,
        registry: Optional[PolicyRegistry] = None,
    ):
        super().__init__("policy", 8012, config)

        self.database: Optional[PostgresDatabase] = None
        self.redis_cache: Optional[RedisCache] = None

        if stores is None:
            if self.config.store_backend == "postgres":
                self.database = PostgresDatabase(self.config.postgres_dsn)
                stores = create_postgres_stores(self.database)
            else:
                stores = create_memory_stores()

        if cache is None:
            if self.config.cache_backend == "redis":
                self.redis_cache = RedisCache(self.config.redis_url)
                cache = self.redis_cache
            else:
                cache = InMemoryCache()

        self.stores = stores
        self.cache = cache
        self.registry = registry or create_default_registry()

        self.permissions = PermissionResolver(
            cache,
            stores.principals,
            stores.roles,
            stores.workspaces,
            ttl=self.config.permission_cache_ttl_seconds,
            metrics=self.metrics,
        )
        self.plans = PlanResolver(
            cache,
            stores.principals,
            stores.usage,
            stores.workspaces,
            stores.resources,
            ttl=self.config.plan_cache_ttl_seconds,
            usage_timezone=self.config.usage_timezone,
            metrics=self.metrics,
        )
        self.evaluator = PolicyEvaluator(
            self.permissions,
            self.plans,
            ContextChecker(stores.workspaces, stores.resources),
            default_timeout=self.config.evaluation_timeout_seconds,
            metrics=self.metrics,
        )
        self.roles = RoleManager(
            stores.principals,
            stores.roles,
            stores.workspaces,
            self.permissions,
            self.plans,
        )

        self.app.state.policy_service = self
        self._setup_policy_routes()

    def _setup_policy_routes(self):
        """Set up policy-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "policy",
                "message": "Access Layer - Policy Decision Service",
                "version": "1.0.0",
                "capabilities": ["policy_evaluation", "permissions", "plans", "usage", "roles"]
            }

        @self.app.get("/policies")
        async def list_policies():
            """Registered policy names."""
            return {"policies": self.registry.names()}

        @self.app.post("/policies/{policy_name}/enforce", response_model=DecisionResponse)
        async def enforce_policy(policy_name: str, request: Request):
            """Enforce a registered policy for the calling principal; 403 on deny."""
            decision = await require_policy(policy_name)(request)
            return decision.to_dict()

        @self.app.post("/policy/evaluate", response_model=DecisionResponse)
        async def evaluate_policy(body: EvaluateRequest, user_id: str = Depends(current_user_id)):
            """Evaluate a registered or inline policy for the calling principal."""
            if body.policy_name:
                policy = self.registry.get(body.policy_name)
            elif body.policy is not None:
                policy = body.policy.to_policy()
            else:
                raise ValidationError("Either policy_name or policy is required")

            context = RequestContext(**body.context.model_dump())
            set_user_context(user_id, context.workspace_id)

            decision = await self.evaluator.evaluate(
                PolicyRequest(user_id, policy, context),
                timeout=body.timeout_seconds,
            )
            return decision.to_dict()

        @self.app.get("/permissions/{user_id}", response_model=PermissionListResponse)
        async def list_permissions(user_id: str, workspace_id: Optional[str] = Query(None)):
            """Effective permission codes of a principal."""
            codes = await self.permissions.list_permissions(user_id, workspace_id)
            return PermissionListResponse(user_id=user_id, workspace_id=workspace_id, permissions=codes)

        @self.app.get("/plans/{user_id}")
        async def plan_details(user_id: str):
            """Plan entitlements and usage of every limit."""
            return await self.plans.get_plan_details(user_id)

        @self.app.get("/usage/{user_id}")
        async def usage_stats(user_id: str, resource_type: Optional[str] = Query(None)):
            """Usage totals by resource type and action."""
            return await self.plans.get_usage_stats(user_id, resource_type)

        @self.app.post("/usage")
        async def track_usage(body: UsageRequest, user_id: str = Depends(current_user_id)):
            """Record a usage event for the calling principal; never fails the caller."""
            recorded = await self.plans.track_usage(user_id, body.resource_type, body.action, body.count)
            return {"recorded": recorded}

        @self.app.post("/roles/assign")
        async def assign_role(body: RoleAssignmentRequest, actor_id: str = Depends(current_user_id)):
            assignment = await self.roles.assign_role(actor_id, body.user_id, body.role_id, body.workspace_id)
            return {"user_id": assignment.user_id, "role_id": assignment.role_id, "workspace_id": assignment.workspace_id}

        @self.app.post("/roles/remove")
        async def remove_role(body: RoleAssignmentRequest, actor_id: str = Depends(current_user_id)):
            await self.roles.remove_role(actor_id, body.user_id, body.role_id, body.workspace_id)
            return {"removed": True}

        @self.app.post("/roles/change")
        async def change_role(body: RoleAssignmentRequest, actor_id: str = Depends(current_user_id)):
            assignment = await self.roles.change_role(actor_id, body.user_id, body.role_id, body.workspace_id)
            return {"user_id": assignment.user_id, "role_id": assignment.role_id, "workspace_id": assignment.workspace_id}

        @self.app.put("/plans/{user_id}")
        async def update_plan(user_id: str, body: PlanUpdateRequest, actor_id: str = Depends(current_user_id)):
            plan = await self.roles.update_plan(user_id, body.plan, actor_id)
            return {"user_id": user_id, "plan": plan.value}

    async def startup(self):
        """Start policy service components."""
        if self.database:
            await self.database.start()
        if self.redis_cache:
            await self.redis_cache.start()

        self.logger.info(
            "Policy service started",
            store_backend=self.config.store_backend,
            cache_backend=self.config.cache_backend,
            policies=len(self.registry.names())
        )

    async def shutdown(self):
        """Stop policy service components."""
        if self.database:
            await self.database.stop()
        if self.redis_cache:
            await self.redis_cache.stop()

        self.logger.info("Policy service stopped")

    async def _check_dependencies(self):
        dependencies = {}
        if self.redis_cache:
            dependencies["redis"] = "ok" if await self.redis_cache.health_check() else "error"
        if self.database:
            dependencies["postgres"] = "ok" if self.database.pool else "error"
        return dependencies


def create_app():
    """Create policy service application."""
    service = PolicyService()
    return service.app


if __name__ == "__main__":
    service = PolicyService()
    service.run()
