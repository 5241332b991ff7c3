"""
Unit tests for the policy registry and policy models.
"""

import pytest

from shared.errors import ValidationError
from service_policy.app.permissions.codes import PermissionCodes as P
from service_policy.app.plans.entitlements import Feature, LimitType
from service_policy.app.policy.models import Decision, Policy, TimeWindow
from service_policy.app.policy.registry import PolicyRegistry, ScanPolicies, create_default_registry
from service_policy.app.schemas import PolicySpec


class TestPolicyRegistry:
    """Test cases for PolicyRegistry."""

    def test_default_registry(self):
        registry = create_default_registry()

        assert "scan.create" in registry
        assert registry.get("scan.delete") is ScanPolicies.DELETE
        assert registry.names() == sorted(registry.names())

    def test_duplicate_name(self):
        registry = PolicyRegistry()
        registry.register("scan.view", ScanPolicies.VIEW)

        with pytest.raises(ValidationError):
            registry.register("scan.view", ScanPolicies.VIEW)

    def test_malformed_policy(self):
        with pytest.raises(ValidationError):
            PolicyRegistry().register("scan.view", {"permission_codes": ["SCAN:READ"]})

    def test_unknown_name(self):
        with pytest.raises(ValidationError):
            PolicyRegistry().get("scan.view")


class TestPolicyModels:
    """Test cases for Policy normalization and serialization."""

    def test_shorthand_values_become_tuples(self):
        policy = Policy(permission_codes=P.SCAN_READ, features="custom_rules", limit_type="scans_per_day")

        assert policy.permission_codes == (P.SCAN_READ,)
        assert policy.features == (Feature.CUSTOM_RULES,)
        assert policy.limit_type == LimitType.SCANS_PER_DAY

    def test_unknown_feature_rejected(self):
        with pytest.raises(ValueError):
            Policy(features="teleportation")

    def test_describe_omits_unset(self):
        summary = Policy(permission_codes=P.SCAN_READ, time_window=TimeWindow(9, 17)).describe()

        assert summary["permission_codes"] == [P.SCAN_READ]
        assert summary["time_window"] == {"start_hour": 9, "end_hour": 17, "timezone": None}
        assert "features" not in summary

    def test_decision_to_dict(self):
        assert Decision.allow().to_dict() == {
            "allowed": True,
            "reason": "Access granted",
            "upgrade_hint": None,
            "failed_check": None,
            "limit_status": None,
        }

    def test_policy_spec_conversion(self):
        spec = PolicySpec(
            permission_codes=["SCAN:READ"],
            features=["advanced_scan"],
            ip_restrictions={"allowed_ips": ["10.0.0.0/8"]},
            time_window={"start_hour": 22, "end_hour": 6, "timezone": "Europe/Berlin"},
        )

        policy = spec.to_policy()

        assert policy.permission_codes == ("SCAN:READ",)
        assert policy.features == (Feature.ADVANCED_SCAN,)
        assert policy.ip_restrictions.allowed_ips == ("10.0.0.0/8",)
        assert policy.time_window == TimeWindow(22, 6, "Europe/Berlin")
