"""
Unit tests for the PolicyEvaluator.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from shared.errors import AuthenticationError, PermissionDeniedError
from service_policy.app.models import RoleAssignment, UsageRecord
from service_policy.app.permissions.codes import PermissionCodes as P
from service_policy.app.plans.entitlements import (
    PLAN_UPGRADE_MESSAGES,
    Feature,
    LimitType,
    Plan,
    ResourceType,
)
from service_policy.app.policy.models import (
    CheckName,
    IpRestrictions,
    Policy,
    PolicyRequest,
    RequestContext,
    ResourceOwnership,
    TimeWindow,
)


def request_for(user_id, policy, **context):
    return PolicyRequest(user_id, policy, RequestContext(**context))


class TestEvaluationOrder:
    """Test cases for the ordered checks."""

    @pytest.mark.asyncio
    async def test_scenario_a_generic_deny(self, world):
        """Test a member without the role permission gets the generic reason."""
        decision = await world.evaluator.evaluate(request_for("member-1", Policy(permission_codes=P.SCAN_DELETE)))

        assert decision.allowed is False
        assert decision.reason == "You do not have permission to perform this action"
        assert decision.failed_check == CheckName.PERMISSION
        assert decision.upgrade_hint is None

    @pytest.mark.asyncio
    async def test_scenario_b_upgrade_hint(self, world):
        """Test a role grant outside the plan yields an upgrade hint."""
        await world.stores.roles.add_assignment(RoleAssignment("member-1", "role-deleter"))

        decision = await world.evaluator.evaluate(request_for("member-1", Policy(permission_codes=P.SCAN_DELETE)))

        assert decision.allowed is False
        assert decision.upgrade_hint.required_plan == Plan.BUSINESS
        assert decision.reason == decision.upgrade_hint.message
        assert "BUSINESS" in decision.reason

    @pytest.mark.asyncio
    async def test_scenario_c_workspace_owner(self, world):
        """Test the owner manages their own workspace without assignments."""
        policy = Policy(permission_codes=P.WORKSPACE_MANAGE)

        decision = await world.evaluator.evaluate(request_for("owner-1", policy, route_params={"workspace_id": "ws-1"}))

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_owner_still_needs_plan(self, world):
        """Test ownership satisfies the role check but not the plan check."""
        policy = Policy(permission_codes=P.WORKSPACE_MANAGE)

        decision = await world.evaluator.evaluate(request_for("starter-owner", policy, workspace_id="ws-2"))

        assert decision.allowed is False
        assert decision.upgrade_hint.required_plan == Plan.BUSINESS

    @pytest.mark.asyncio
    async def test_scenario_d_limit(self, world, now):
        """Test an exhausted daily limit denies with the limit status."""
        await world.stores.usage.insert(UsageRecord("member-1", ResourceType.SCAN, "create", 5, now))

        decision = await world.evaluator.evaluate(
            request_for("member-1", Policy(limit_type=LimitType.SCANS_PER_DAY))
        )

        assert decision.allowed is False
        assert decision.failed_check == CheckName.LIMIT
        assert decision.reason == "Usage limit reached: 5/5 (100%)"
        status = decision.limit_status
        assert (status.allowed, status.current, status.limit, status.percentage) == (False, 5, 5, 100)
        assert decision.upgrade_hint.required_plan == Plan.PRO

    @pytest.mark.asyncio
    async def test_scenario_e_blocked_ip(self, world):
        """Test a blocked address is denied without an allow list."""
        policy = Policy(ip_restrictions=IpRestrictions(blocked_ips=("1.2.3.4",)))

        decision = await world.evaluator.evaluate(request_for("member-1", policy, client_ip="1.2.3.4"))

        assert decision.allowed is False
        assert decision.failed_check == CheckName.IP_RESTRICTION
        assert decision.reason == "Your current IP address is not allowed to perform this operation"

    @pytest.mark.asyncio
    async def test_super_bypasses_everything(self, world):
        """Test SUPER is allowed regardless of the other requirements."""
        policy = Policy(
            permission_codes=P.SCAN_DELETE,
            features=Feature.PRIORITY_SUPPORT,
            check_workspace_membership=True,
            ip_restrictions=IpRestrictions(blocked_ips=("1.2.3.4",)),
        )

        decision = await world.evaluator.evaluate(request_for("super-1", policy, client_ip="1.2.3.4"))

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_super_bypass_can_be_disabled(self, world):
        """Test allow_super=False runs the contextual checks for SUPER."""
        policy = Policy(allow_super=False, ip_restrictions=IpRestrictions(blocked_ips=("1.2.3.4",)))

        decision = await world.evaluator.evaluate(request_for("super-1", policy, client_ip="1.2.3.4"))

        assert decision.allowed is False

    @pytest.mark.asyncio
    async def test_role_lookup_failure_is_not_super(self, world):
        """Test a failed role lookup just skips the bypass."""
        world.permissions.get_principal = AsyncMock(side_effect=RuntimeError("store down"))

        decision = await world.evaluator.evaluate(request_for("super-1", Policy(time_window=TimeWindow(9, 17))))

        assert decision.allowed is True
        assert decision.reason == "Access granted"

    @pytest.mark.asyncio
    async def test_missing_principal_id(self, world):
        """Test unauthenticated requests raise instead of denying."""
        with pytest.raises(AuthenticationError):
            await world.evaluator.evaluate(request_for(None, Policy()))

    @pytest.mark.asyncio
    async def test_unknown_principal_is_denied(self, world):
        """Test a principal missing from the store holds nothing."""
        decision = await world.evaluator.evaluate(request_for("ghost", Policy(permission_codes=P.SCAN_READ)))

        assert decision.allowed is False
        assert decision.failed_check == CheckName.PERMISSION

    @pytest.mark.asyncio
    @pytest.mark.parametrize("policy", [
        Policy(features=Feature.REPORTING),
        Policy(limit_type=LimitType.MAX_WORKSPACES),
        Policy(time_window=TimeWindow(0, 24)),
        Policy(),
    ])
    async def test_unknown_principal_gets_no_default_plan(self, world, policy):
        """Test the STARTER fallback never admits a principal with no record."""
        decision = await world.evaluator.evaluate(request_for("ghost", policy))

        assert decision.allowed is False
        assert decision.reason == "User not found"

    @pytest.mark.asyncio
    async def test_unknown_principal_denied_without_super_bypass(self, world):
        policy = Policy(features=Feature.REPORTING, allow_super=False)

        decision = await world.evaluator.evaluate(request_for("ghost", policy))

        assert decision.allowed is False

    @pytest.mark.asyncio
    async def test_permission_any_of(self, world):
        """Test require_all_permissions=False accepts any held code."""
        await world.stores.roles.add_assignment(RoleAssignment("member-1", "role-viewer"))
        policy = Policy(permission_codes=(P.SCAN_DELETE, P.SCAN_READ), require_all_permissions=False)

        assert (await world.evaluator.evaluate(request_for("member-1", policy))).allowed is True
        assert (await world.evaluator.evaluate(
            request_for("member-1", Policy(permission_codes=(P.SCAN_DELETE, P.SCAN_READ)))
        )).allowed is False

    @pytest.mark.asyncio
    async def test_any_of_needs_one_code_in_role_and_plan(self, world):
        """Test a held code outside the plan plus a plan code not held denies."""
        await world.stores.roles.add_assignment(RoleAssignment("member-1", "role-deleter"))
        policy = Policy(permission_codes=(P.SCAN_DELETE, P.SCAN_READ), require_all_permissions=False)

        assert await world.permissions.has_permission("member-1", P.SCAN_READ) is False

        decision = await world.evaluator.evaluate(request_for("member-1", policy))

        assert decision.allowed is False
        assert decision.failed_check == CheckName.PERMISSION
        assert decision.upgrade_hint.required_plan == Plan.BUSINESS
        assert decision.reason == decision.upgrade_hint.message

    @pytest.mark.asyncio
    async def test_any_of_hint_ignores_codes_not_held(self, world):
        """Test the hint names the plan for a held code, not the cheapest code."""
        await world.stores.roles.add_assignment(RoleAssignment("member-1", "role-deleter"))
        policy = Policy(permission_codes=(P.SCAN_DELETE, P.REPORT_READ), require_all_permissions=False)

        decision = await world.evaluator.evaluate(request_for("member-1", policy))

        assert decision.upgrade_hint.required_plan == Plan.BUSINESS


class TestFeatureDenials:
    """Test cases for feature denial messaging."""

    @pytest.mark.asyncio
    async def test_generic_feature_reason(self, world):
        decision = await world.evaluator.evaluate(request_for("pro-1", Policy(features=Feature.CUSTOM_RULES)))

        assert decision.reason == "Feature not available in your plan"
        assert decision.failed_check == CheckName.FEATURE
        assert decision.upgrade_hint.required_plan == Plan.BUSINESS
        assert decision.upgrade_hint.message == PLAN_UPGRADE_MESSAGES[Feature.CUSTOM_RULES]

    @pytest.mark.asyncio
    async def test_upgrade_prompt_reason(self, world):
        policy = Policy(features=Feature.CUSTOM_RULES, show_upgrade_prompt=True)

        decision = await world.evaluator.evaluate(request_for("pro-1", policy))

        assert decision.reason == PLAN_UPGRADE_MESSAGES[Feature.CUSTOM_RULES]

    @pytest.mark.asyncio
    async def test_error_message_wins(self, world):
        policy = Policy(features=Feature.CUSTOM_RULES, show_upgrade_prompt=True, error_message="Nope")

        decision = await world.evaluator.evaluate(request_for("pro-1", policy))

        assert decision.reason == "Nope"

    @pytest.mark.asyncio
    async def test_any_feature(self, world):
        policy = Policy(features=(Feature.CUSTOM_RULES, Feature.ADVANCED_SCAN), require_all_features=False)

        assert (await world.evaluator.evaluate(request_for("pro-1", policy))).allowed is True


class TestContextualChecks:
    """Test cases for ownership, membership, time and IP steps."""

    @pytest.mark.asyncio
    async def test_ownership(self, world):
        policy = Policy(resource_ownership=ResourceOwnership("SCAN", "scan"))

        owner = await world.evaluator.evaluate(request_for("owner-1", policy, route_params={"scan_id": "scan-1"}))
        other = await world.evaluator.evaluate(request_for("member-1", policy, route_params={"scan_id": "scan-1"}))

        assert owner.allowed is True
        assert other.allowed is False
        assert other.failed_check == CheckName.RESOURCE_OWNERSHIP

    @pytest.mark.asyncio
    async def test_membership(self, world):
        policy = Policy(check_workspace_membership=True)

        member = await world.evaluator.evaluate(request_for("member-1", policy, body={"workspaceId": "ws-1"}))
        outsider = await world.evaluator.evaluate(request_for("pro-1", policy, body={"workspaceId": "ws-1"}))
        no_workspace = await world.evaluator.evaluate(request_for("member-1", policy))

        assert member.allowed is True
        assert outsider.allowed is False
        assert outsider.reason == "You are not a member of this workspace"
        assert no_workspace.allowed is False

    @pytest.mark.asyncio
    async def test_time_window(self, world):
        inside = await world.evaluator.evaluate(request_for("member-1", Policy(time_window=TimeWindow(9, 17))))
        outside = await world.evaluator.evaluate(request_for("member-1", Policy(time_window=TimeWindow(20, 8))))

        assert inside.allowed is True
        assert outside.allowed is False
        assert outside.failed_check == CheckName.TIME_WINDOW

    @pytest.mark.asyncio
    async def test_time_window_error_fails_open(self, world):
        policy = Policy(time_window=TimeWindow(20, 8, "Not/AZone"))

        decision = await world.evaluator.evaluate(request_for("member-1", policy))

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_ip_error_fails_closed(self, world):
        policy = Policy(ip_restrictions=IpRestrictions(allowed_ips=("10.0.0.0/8",)))

        decision = await world.evaluator.evaluate(request_for("member-1", policy, client_ip="not-an-ip"))

        assert decision.allowed is False
        assert decision.failed_check == CheckName.IP_RESTRICTION

    @pytest.mark.asyncio
    async def test_ip_from_forwarded_for(self, world):
        policy = Policy(ip_restrictions=IpRestrictions(allowed_ips=("10.0.0.0/8",)))

        decision = await world.evaluator.evaluate(
            request_for("member-1", policy, forwarded_for="10.1.1.1, 192.168.0.1")
        )

        assert decision.allowed is True


class TestFailureHandling:
    """Test cases for fail-open/fail-closed resolution."""

    @pytest.mark.asyncio
    async def test_store_error_fails_closed(self, world):
        world.stores.roles.list_permissions = AsyncMock(side_effect=RuntimeError("store down"))

        decision = await world.evaluator.evaluate(request_for("member-1", Policy(permission_codes=P.SCAN_READ)))

        assert decision.allowed is False
        assert decision.failed_check == CheckName.PERMISSION
        assert world.metrics.sample_value(
            "errors_total", error_type="INTERNAL_EVALUATION_ERROR", service="policy-test"
        ) == 1

    @pytest.mark.asyncio
    async def test_store_error_fails_open_when_configured(self, world):
        world.stores.roles.list_permissions = AsyncMock(side_effect=RuntimeError("store down"))
        policy = Policy(permission_codes=P.SCAN_READ, fail_closed=False)

        decision = await world.evaluator.evaluate(request_for("member-1", policy))

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_membership_store_error(self, world):
        world.stores.workspaces.is_member = AsyncMock(side_effect=RuntimeError("store down"))
        policy = Policy(check_workspace_membership=True)

        decision = await world.evaluator.evaluate(request_for("member-1", policy, workspace_id="ws-1"))

        assert decision.allowed is False
        assert decision.failed_check == CheckName.WORKSPACE_MEMBERSHIP


class TestCancellation:
    """Test cases for timeouts and cancellation."""

    @pytest.fixture
    def slow_store(self, world):
        state = {"cancelled": False}

        async def slow_permissions(user_id, workspace_id=None):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                state["cancelled"] = True
                raise
            return set()

        world.stores.roles.list_permissions = slow_permissions
        return state

    @pytest.mark.asyncio
    async def test_timeout_denies(self, world, slow_store):
        decision = await world.evaluator.evaluate(
            request_for("member-1", Policy(permission_codes=P.SCAN_READ)),
            timeout=0.05,
        )
        await asyncio.sleep(0.05)

        assert decision.allowed is False
        assert decision.failed_check == CheckName.CANCELLED
        assert slow_store["cancelled"] is True

    @pytest.mark.asyncio
    async def test_cancel_event_denies(self, world, slow_store):
        event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.02, event.set)

        decision = await world.evaluator.evaluate(
            request_for("member-1", Policy(permission_codes=P.SCAN_READ)),
            timeout=5,
            cancel_event=event,
        )

        assert decision.allowed is False
        assert decision.reason == "Policy evaluation was cancelled"

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self, world, slow_store):
        outer = asyncio.ensure_future(
            world.evaluator.evaluate(request_for("member-1", Policy(permission_codes=P.SCAN_READ)))
        )
        await asyncio.sleep(0.02)
        outer.cancel()

        with pytest.raises(asyncio.CancelledError):
            await outer
        await asyncio.sleep(0.05)

        assert slow_store["cancelled"] is True

    @pytest.mark.asyncio
    async def test_fast_evaluation_ignores_unset_event(self, world):
        decision = await world.evaluator.evaluate(
            request_for("member-1", Policy()),
            cancel_event=asyncio.Event(),
        )

        assert decision.allowed is True


class TestEnforce:
    """Test cases for enforce and decision metrics."""

    @pytest.mark.asyncio
    async def test_enforce_raises_on_deny(self, world):
        await world.stores.roles.add_assignment(RoleAssignment("member-1", "role-deleter"))

        with pytest.raises(PermissionDeniedError) as exc_info:
            await world.evaluator.enforce(request_for("member-1", Policy(permission_codes=P.SCAN_DELETE)))

        error = exc_info.value
        assert error.status_code == 403
        assert error.upgrade_hint["required_plan"] == "BUSINESS"
        assert error.details["failed_check"] == "permission"

    @pytest.mark.asyncio
    async def test_enforce_returns_allow(self, world):
        decision = await world.evaluator.enforce(request_for("super-1", Policy(permission_codes=P.SCAN_DELETE)))

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_decisions_are_counted(self, world):
        await world.evaluator.evaluate(request_for("member-1", Policy(permission_codes=P.SCAN_DELETE)))
        await world.evaluator.evaluate(request_for("super-1", Policy(permission_codes=P.SCAN_DELETE)))

        assert world.metrics.sample_value("policy_decisions_total", outcome="deny", check="permission") == 1
        assert world.metrics.sample_value("policy_decisions_total", outcome="allow", check="none") == 1
        assert world.metrics.sample_value("policy_evaluation_duration_seconds_count") == 2
