"""
Unified policy evaluator.

Combines role permissions, plan entitlements, usage limits and the contextual
checks into one ordered, short-circuiting decision:

    super bypass -> permissions -> features -> limit -> ownership
    -> membership -> time window -> IP restrictions

Errors in the permission through membership checks resolve per the policy's
``fail_closed`` flag. The time window fails open and the IP check fails
closed.
"""

import asyncio
import time
from typing import Optional

from shared.logging import get_logger
from shared.errors import AuthenticationError, InternalEvaluationError, PermissionDeniedError
from ..models import is_super
from ..permissions.resolver import PermissionResolver
from ..plans.entitlements import (
    PLAN_LIMITS,
    PLAN_ORDER,
    PLAN_UPGRADE_MESSAGES,
    Plan,
    minimum_plan_for_all,
    minimum_plan_for_any,
    minimum_plan_for_feature,
    minimum_plan_for_permission,
    permission_upgrade_message,
    plan_has_permission,
    plan_rank,
)
from ..plans.resolver import PlanResolver
from .context import ContextChecker, resolve_workspace_id
from .models import CheckName, Decision, Policy, PolicyRequest, UpgradeHint

PERMISSION_DENIED = "You do not have permission to perform this action"
UNKNOWN_PRINCIPAL = "User not found"
PLAN_PERMISSION_DENIED = "Your current plan does not include this permission. Please upgrade to access it."
FEATURE_DENIED = "Feature not available in your plan"
FEATURE_UPGRADE = "Your current plan does not include this feature. Please upgrade to access it."


class PolicyEvaluator:
    """Evaluates a PolicyRequest into a Decision.

    Holds no per-request state; one instance serves all concurrent requests.
    """

    def __init__(
        self,
        permissions: PermissionResolver,
        plans: PlanResolver,
        context: ContextChecker,
        default_timeout: Optional[float] = 5.0,
        metrics=None,
    ):
        self.permissions = permissions
        self.plans = plans
        self.context = context
        self.default_timeout = default_timeout
        self.metrics = metrics
        self.logger = get_logger("policy.evaluator")

    async def evaluate(
        self,
        request: PolicyRequest,
        *,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Decision:
        """Evaluate ``request``.

        Resolves to Deny if ``timeout`` elapses or ``cancel_event`` is set
        before the checks finish. Raises AuthenticationError when there is no
        principal.
        """
        if not request.principal_id:
            raise AuthenticationError()

        start_time = time.time()
        timeout = self.default_timeout if timeout is None else timeout

        task = asyncio.ensure_future(self._evaluate(request))
        waiters = {task}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            decision = task.result()
        else:
            task.cancel()
            cancelled = cancel_waiter is not None and cancel_waiter in done
            self.logger.warning(
                "Policy evaluation cancelled" if cancelled else "Policy evaluation timed out",
                user_id=request.principal_id,
                policy=request.policy.describe(),
                timeout=timeout
            )
            decision = Decision.deny(
                "Policy evaluation was cancelled" if cancelled else "Policy evaluation timed out",
                CheckName.CANCELLED,
            )

        duration = time.time() - start_time
        if self.metrics:
            self.metrics.record_decision(
                decision.allowed,
                decision.failed_check.value if decision.failed_check else None,
                duration
            )

        self.logger.debug(
            "Policy decision",
            user_id=request.principal_id,
            allowed=decision.allowed,
            failed_check=decision.failed_check.value if decision.failed_check else None,
            evaluation_time_ms=duration * 1000
        )
        return decision

    async def enforce(self, request: PolicyRequest, **kwargs) -> Decision:
        """Evaluate and raise PermissionDeniedError on Deny."""
        decision = await self.evaluate(request, **kwargs)
        if not decision.allowed:
            raise PermissionDeniedError(
                decision.reason,
                upgrade_hint=decision.upgrade_hint.to_dict() if decision.upgrade_hint else None,
                failed_check=decision.failed_check.value if decision.failed_check else None,
            )
        return decision

    async def _evaluate(self, request: PolicyRequest) -> Decision:
        policy = request.policy
        user_id = request.principal_id

        try:
            principal = await self.permissions.get_principal(user_id)
        except Exception as e:
            self.logger.warning("Role lookup failed, treating as non-super", user_id=user_id, error=str(e))
        else:
            if principal is None:
                self.logger.warning("Policy evaluation for unknown principal", user_id=user_id)
                return Decision.deny(UNKNOWN_PRINCIPAL, CheckName.PERMISSION)
            if policy.allow_super and is_super(principal):
                return Decision.allow("Super user bypass")

        workspace_id = resolve_workspace_id(request.context)

        steps = (
            (CheckName.PERMISSION, policy.permission_codes, self._check_permissions),
            (CheckName.FEATURE, policy.features, self._check_features),
            (CheckName.LIMIT, policy.limit_type, self._check_limit),
            (CheckName.RESOURCE_OWNERSHIP, policy.resource_ownership, self._check_ownership),
            (CheckName.WORKSPACE_MEMBERSHIP, policy.check_workspace_membership, self._check_membership),
        )
        for check, wanted, step in steps:
            if not wanted:
                continue
            try:
                decision = await step(user_id, policy, request, workspace_id)
            except Exception as e:
                return self._resolve_error(request, InternalEvaluationError(check.value, str(e)))
            if decision is not None:
                return decision

        if policy.time_window is not None:
            try:
                reason = self.context.check_time_window(policy.time_window)
                if reason:
                    return Decision.deny(policy.error_message or reason, CheckName.TIME_WINDOW)
            except Exception as e:
                self.logger.error(
                    "Time window check failed, allowing",
                    user_id=user_id,
                    policy=policy.describe(),
                    check=CheckName.TIME_WINDOW.value,
                    error=str(e)
                )

        if policy.ip_restrictions is not None:
            try:
                reason = self.context.check_ip(policy.ip_restrictions, request.context)
            except Exception as e:
                self.logger.error(
                    "IP restriction check failed, denying",
                    user_id=user_id,
                    policy=policy.describe(),
                    check=CheckName.IP_RESTRICTION.value,
                    error=str(e)
                )
                return Decision.deny(PERMISSION_DENIED, CheckName.IP_RESTRICTION)
            if reason:
                return Decision.deny(policy.error_message or reason, CheckName.IP_RESTRICTION)

        return Decision.allow()

    def _resolve_error(self, request: PolicyRequest, error: InternalEvaluationError) -> Decision:
        policy = request.policy
        self.logger.error(
            "Policy check failed",
            user_id=request.principal_id,
            policy=policy.describe(),
            check=error.check,
            fail_closed=policy.fail_closed,
            error=error.message
        )
        if self.metrics:
            self.metrics.record_error(error.code)

        if policy.fail_closed:
            return Decision.deny(policy.error_message or PERMISSION_DENIED, CheckName(error.check))
        return Decision.allow("Allowed after check failure (fail-open policy)")

    async def _check_permissions(self, user_id, policy: Policy, request, workspace_id) -> Optional[Decision]:
        codes = policy.permission_codes
        *granted, plan = await asyncio.gather(
            *(self.permissions.has_permission(user_id, code, workspace_id) for code in codes),
            self.plans.get_plan(user_id),
        )
        held = [code for code, ok in zip(codes, granted) if ok]

        # Role and plan must agree on the same code
        if policy.require_all_permissions:
            role_ok = len(held) == len(codes)
            if role_ok and all(plan_has_permission(plan, code) for code in codes):
                return None
        else:
            role_ok = bool(held)
            if any(plan_has_permission(plan, code) for code in held):
                return None

        if role_ok:
            hint = self._permission_upgrade_hint(held, plan, policy.require_all_permissions)
            return Decision.deny(
                hint.message if hint else PLAN_PERMISSION_DENIED,
                CheckName.PERMISSION,
                upgrade_hint=hint,
            )

        return Decision.deny(policy.error_message or PERMISSION_DENIED, CheckName.PERMISSION)

    def _permission_upgrade_hint(self, held, plan: Plan, require_all: bool) -> Optional[UpgradeHint]:
        """Hint naming the plan that unlocks the held codes.

        With ``require_all`` the code needing the highest plan decides; otherwise
        the code needing the lowest. No hint if some required code is in no plan.
        """
        required = {code: minimum_plan_for_permission(code) for code in held}
        if require_all:
            target = minimum_plan_for_all(required.values())
        else:
            target = minimum_plan_for_any(required.values())
        if target is None:
            return None

        code = next(code for code, minimum in required.items() if minimum == target)
        message = permission_upgrade_message(code, plan)
        if message is None:
            return None
        return UpgradeHint(target, message)

    async def _check_features(self, user_id, policy: Policy, request, workspace_id) -> Optional[Decision]:
        if await self.plans.has_features(user_id, policy.features, policy.require_all_features):
            return None

        required = [minimum_plan_for_feature(feature) for feature in policy.features]
        if policy.require_all_features:
            target = minimum_plan_for_all(required)
        else:
            target = minimum_plan_for_any(required)
        upgrade_message = PLAN_UPGRADE_MESSAGES.get(policy.features[0], FEATURE_UPGRADE)

        reason = policy.error_message
        if not reason and policy.show_upgrade_prompt:
            reason = upgrade_message
        return Decision.deny(
            reason or FEATURE_DENIED,
            CheckName.FEATURE,
            upgrade_hint=UpgradeHint(target, upgrade_message),
        )

    async def _check_limit(self, user_id, policy: Policy, request, workspace_id) -> Optional[Decision]:
        status = await self.plans.check_limit(user_id, policy.limit_type, workspace_id)
        if status.allowed:
            return None

        upgrade_message = PLAN_UPGRADE_MESSAGES.get(
            policy.limit_type,
            f"You have reached your limit ({status.current}/{status.limit}). Please upgrade your plan."
        )
        reason = policy.error_message
        if not reason and policy.show_upgrade_prompt:
            reason = upgrade_message
        if not reason:
            reason = f"Usage limit reached: {status.current}/{status.limit} ({status.percentage}%)"

        plan = await self.plans.get_plan(user_id)
        return Decision.deny(
            reason,
            CheckName.LIMIT,
            upgrade_hint=UpgradeHint(self._next_plan_above(plan, policy, status.current), upgrade_message),
            limit_status=status,
        )

    def _next_plan_above(self, plan: Plan, policy: Policy, current: int) -> Optional[Plan]:
        """Lowest higher tier whose limit would admit ``current``."""
        for candidate in PLAN_ORDER[plan_rank(plan) + 1:]:
            if current < PLAN_LIMITS[candidate][policy.limit_type]:
                return candidate
        return None

    async def _check_ownership(self, user_id, policy: Policy, request, workspace_id) -> Optional[Decision]:
        reason = await self.context.check_ownership(user_id, policy.resource_ownership, request.context)
        if reason is None:
            return None
        return Decision.deny(policy.error_message or reason, CheckName.RESOURCE_OWNERSHIP)

    async def _check_membership(self, user_id, policy: Policy, request, workspace_id) -> Optional[Decision]:
        reason = await self.context.check_membership(user_id, workspace_id)
        if reason is None:
            return None
        return Decision.deny(policy.error_message or reason, CheckName.WORKSPACE_MEMBERSHIP)
