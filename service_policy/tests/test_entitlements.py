"""
Unit tests for the permission catalogue and the plan entitlement table.
"""

import pytest

from service_policy.app.permissions.codes import (
    PermissionCodes as P,
    PermissionResource,
    PermissionScope,
    PERMISSIONS,
    all_permission_codes,
    codes_with_scope,
    parse_code,
    scope_for,
)
from service_policy.app.plans.entitlements import (
    PLAN_FEATURES,
    PLAN_LIMITS,
    PLAN_ORDER,
    PLAN_PERMISSIONS,
    PLAN_UPGRADE_MESSAGES,
    Feature,
    LimitType,
    Plan,
    minimum_plan_for_all,
    minimum_plan_for_any,
    minimum_plan_for_feature,
    minimum_plan_for_permission,
    permission_upgrade_message,
    plan_has_feature,
    plan_has_permission,
)


class TestPermissionCatalogue:
    """Test cases for permission codes."""

    def test_parse_code(self):
        """Test parsing a code into its parts."""
        permission = parse_code("SCAN:DELETE")

        assert permission.resource == PermissionResource.SCAN
        assert permission.scope == PermissionScope.SCAN
        assert permission.description

    def test_parse_malformed_code(self):
        """Test malformed codes are rejected."""
        with pytest.raises(ValueError):
            parse_code("SCANDELETE")
        with pytest.raises(ValueError):
            parse_code("SCAN:FLY")

    @pytest.mark.parametrize("resource", [
        PermissionResource.ROLE, PermissionResource.PERMISSION, PermissionResource.SETTINGS
    ])
    def test_admin_resources_are_global(self, resource):
        """Test role, permission and settings codes have global scope."""
        assert scope_for(resource) == PermissionScope.GLOBAL

    def test_workspace_scoped_codes(self):
        """Test only workspace codes carry the workspace scope."""
        codes = codes_with_scope(PermissionScope.WORKSPACE)

        assert P.WORKSPACE_MANAGE in codes
        assert all(code.startswith("WORKSPACE:") for code in codes)

    def test_catalogue_is_sorted_and_complete(self):
        """Test the catalogue lists every code once, sorted."""
        codes = all_permission_codes()

        assert codes == sorted(codes)
        assert len(codes) == len(PERMISSIONS) == 36


class TestPlanTable:
    """Test cases for the plan entitlement table."""

    def test_plans_are_monotonic(self):
        """Test each tier contains everything of the tier below."""
        for lower, higher in zip(PLAN_ORDER, PLAN_ORDER[1:]):
            assert PLAN_FEATURES[lower] <= PLAN_FEATURES[higher]
            assert PLAN_PERMISSIONS[lower] <= PLAN_PERMISSIONS[higher]
            for limit_type in LimitType:
                assert PLAN_LIMITS[lower][limit_type] <= PLAN_LIMITS[higher][limit_type]

    def test_starter_limits(self):
        """Test the starter tier limits."""
        limits = PLAN_LIMITS[Plan.STARTER]

        assert limits[LimitType.SCANS_PER_DAY] == 5
        assert limits[LimitType.SCANS_PER_MONTH] == 30
        assert limits[LimitType.MAX_ALERTS] == 100

    def test_feature_lookup(self):
        """Test feature membership per plan."""
        assert plan_has_feature(Plan.STARTER, Feature.REPORTING)
        assert not plan_has_feature(Plan.STARTER, Feature.ADVANCED_SCAN)
        assert plan_has_feature(Plan.PRO, Feature.ADVANCED_SCAN)
        assert not plan_has_feature(Plan.BUSINESS, Feature.PRIORITY_SUPPORT)

    def test_permission_lookup(self):
        """Test permission membership per plan."""
        assert plan_has_permission(Plan.STARTER, P.SCAN_CREATE)
        assert not plan_has_permission(Plan.PRO, P.SCAN_DELETE)
        assert plan_has_permission(Plan.BUSINESS, P.SCAN_DELETE)

    def test_minimum_plans(self):
        """Test minimum plan is the first tier containing the entitlement."""
        assert minimum_plan_for_permission(P.SCAN_READ) == Plan.STARTER
        assert minimum_plan_for_permission(P.SCAN_DELETE) == Plan.BUSINESS
        assert minimum_plan_for_permission(P.WORKSPACE_DELETE) == Plan.ENTERPRISE
        assert minimum_plan_for_permission(P.WORKSPACE_CREATE) is None
        assert minimum_plan_for_feature(Feature.CUSTOM_RULES) == Plan.BUSINESS

    def test_combined_minimum_plans(self):
        """Test combining minimum plans for all/any requirements."""
        assert minimum_plan_for_all([Plan.PRO, Plan.BUSINESS]) == Plan.BUSINESS
        assert minimum_plan_for_all([Plan.PRO, None]) is None
        assert minimum_plan_for_any([Plan.BUSINESS, Plan.PRO, None]) == Plan.PRO
        assert minimum_plan_for_any([None]) is None

    def test_permission_upgrade_message(self):
        """Test upgrade messages name the minimum plan."""
        message = permission_upgrade_message(P.SCAN_DELETE, Plan.STARTER)

        assert message == "This feature requires the BUSINESS plan or higher. Please upgrade to access it."
        assert permission_upgrade_message(P.SCAN_DELETE, Plan.ENTERPRISE) is None
        assert permission_upgrade_message(P.WORKSPACE_CREATE, Plan.STARTER) is None

    def test_every_feature_and_limit_has_upgrade_message(self):
        """Test upgrade messages cover every feature and limit."""
        for key in list(Feature) + list(LimitType):
            assert PLAN_UPGRADE_MESSAGES[key]
