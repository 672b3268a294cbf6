"""
Tests for quota limit resolution, enforcement settings and the
quota_defaults.yml loader.

Test classes:
- TestQuotaDefaultsLoader: YAML loading and built-in fallback
- TestLimitResolution: tenant > plan > tier default precedence
- TestCustomQuota: admin overrides
- TestEnforcementSettings: defaults, per-metric rows, validation
- TestLimitValue: the Limit value type
"""

import pytest
import yaml

from tenantguard.config.quota_defaults import QuotaDefaultsLoader
from tenantguard.quotas.errors import QuotaEvaluationError
from tenantguard.quotas.metrics import BYTES_PER_GB
from tenantguard.quotas.models import EnforcementSettings, Limit, QuotaStatus
from tenantguard.quotas.policy import QuotaPolicy, override_key


@pytest.fixture
def fresh_loader(monkeypatch):
    """Reset the loader singleton so a test can point it at its own file."""
    monkeypatch.setattr(QuotaDefaultsLoader, "_instance", None)
    yield
    QuotaDefaultsLoader._instance = None


@pytest.fixture
def policy(db_session):
    return QuotaPolicy(db_session)


# =============================================================================
# TestQuotaDefaultsLoader
# =============================================================================


class TestQuotaDefaultsLoader:

    def test_reads_yaml(self, fresh_loader, tmp_path):
        path = tmp_path / "quota_defaults.yml"
        path.write_text(yaml.dump({
            "default_tier": "starter",
            "tiers": {"starter": {"users": 7}},
            "enforcement": {"grace_days": 3},
        }))

        loader = QuotaDefaultsLoader(str(path))

        assert loader.default_tier == "starter"
        assert loader.get_tier_limit("starter", "users") == 7
        assert loader.get_tier_limit("unknown-tier", "users") == 7
        assert loader.get_enforcement_defaults()["grace_days"] == 3
        assert loader.get_enforcement_defaults()["block_pct"] == 100

    def test_missing_file_uses_fallback(self, fresh_loader, tmp_path):
        loader = QuotaDefaultsLoader(str(tmp_path / "absent.yml"))

        assert loader.default_tier == "free"
        assert loader.get_tier_limit("free", "employees") == 10
        assert loader.get_tier_limit("enterprise", "users") == -1
        assert loader.get_tier_limit("free", "nonexistent") is None

    def test_is_a_singleton(self, fresh_loader, tmp_path):
        first = QuotaDefaultsLoader(str(tmp_path / "absent.yml"))
        assert QuotaDefaultsLoader() is first


# =============================================================================
# TestLimitResolution
# =============================================================================


class TestLimitResolution:

    def test_tier_default(self, make, policy):
        tenant = make.tenant(plan=make.plan(tier="starter"))
        assert policy.limit(tenant, "users") == Limit.bounded(25)

    def test_missing_plan_uses_free_tier(self, make, policy):
        tenant = make.tenant(plan=None)
        assert policy.tier_for(tenant) == "free"
        assert policy.limit(tenant, "employees") == Limit.bounded(10)

    def test_unknown_tier_uses_free_tier(self, make, policy):
        tenant = make.tenant(plan=make.plan(tier="platinum"))
        assert policy.limit(tenant, "projects") == Limit.bounded(3)

    def test_inactive_plan_uses_free_tier(self, make, policy):
        tenant = make.tenant(plan=make.plan(tier="professional", is_active=False))
        assert policy.limit(tenant, "users") == Limit.bounded(5)

    def test_enterprise_is_unlimited(self, make, policy):
        tenant = make.tenant(plan=make.plan(tier="enterprise"))
        assert policy.limit(tenant, "users").is_unlimited

    def test_plan_override_beats_tier(self, make, policy):
        tenant = make.tenant(plan=make.plan(tier="starter", limits={"max_users": 40}))
        assert policy.limit(tenant, "users") == Limit.bounded(40)

    def test_tenant_override_beats_plan(self, make, policy):
        plan = make.plan(tier="starter", limits={"max_users": 40})
        tenant = make.tenant(plan=plan, limits={"max_users": 3})
        assert policy.limit(tenant, "users") == Limit.bounded(3)

    def test_tenant_override_can_be_unlimited(self, make, policy):
        tenant = make.tenant(plan=None, limits={"max_projects": -1})
        assert policy.limit(tenant, "projects").is_unlimited

    def test_storage_is_converted_to_bytes(self, make, policy):
        tenant = make.tenant(plan=make.plan(tier="starter"))
        assert policy.limit(tenant, "storage_bytes") == Limit.bounded(10 * BYTES_PER_GB)

    def test_storage_override_uses_gigabyte_key(self, make, policy):
        tenant = make.tenant(plan=None, limits={"max_storage_gb": 2})
        assert override_key("storage_bytes") == "max_storage_gb"
        assert policy.limit(tenant, "storage_bytes") == Limit.bounded(2 * BYTES_PER_GB)

    def test_unconfigured_metric_is_zero(self, make, policy):
        tenant = make.tenant(plan=None)
        assert policy.limit(tenant, "invoices") == Limit.bounded(0)

    def test_invalid_override_raises(self, make, policy):
        tenant = make.tenant(plan=None, limits={"max_users": "lots"})
        with pytest.raises(QuotaEvaluationError):
            policy.limit(tenant, "users")


# =============================================================================
# TestCustomQuota
# =============================================================================


class TestCustomQuota:

    def test_set_and_clear(self, make, policy):
        tenant = make.tenant(plan=make.plan(tier="starter"))

        policy.set_custom_quota(tenant, "users", 60)
        assert tenant.metadata_json["max_users"] == 60
        assert policy.limit(tenant, "users") == Limit.bounded(60)

        policy.clear_custom_quota(tenant, "users")
        assert "max_users" not in tenant.metadata_json
        assert policy.limit(tenant, "users") == Limit.bounded(25)

    def test_unlimited_is_stored_as_sentinel(self, make, policy):
        tenant = make.tenant(plan=None)
        policy.set_custom_quota(tenant, "customers", Limit.unlimited())
        assert tenant.metadata_json["max_customers"] == -1

    def test_keeps_other_overrides(self, make, policy):
        tenant = make.tenant(plan=None, limits={"max_projects": 9})
        policy.set_custom_quota(tenant, "users", 6)
        assert tenant.metadata_json == {"max_projects": 9, "max_users": 6}


# =============================================================================
# TestEnforcementSettings
# =============================================================================


class TestEnforcementSettings:

    def test_defaults_when_unset(self, policy):
        settings = policy.settings_for("users")
        assert settings == EnforcementSettings(
            warning_pct=80, critical_pct=90, block_pct=100, grace_days=10
        )

    def test_per_metric_row(self, policy):
        policy.update_settings("users", grace_days=3, block_pct=120)

        settings = policy.settings_for("users")
        assert settings.grace_days == 3
        assert settings.block_pct == 120
        assert policy.settings_for("projects").grace_days == 10

    def test_inactive_row_is_ignored(self, policy):
        policy.update_settings("users", grace_days=3, is_active=False)
        assert policy.settings_for("users").grace_days == 10

    def test_threshold_order_is_validated(self, policy):
        with pytest.raises(ValueError):
            policy.update_settings("users", warning_pct=95, critical_pct=90)

    def test_unknown_field_is_rejected(self, policy):
        with pytest.raises(ValueError):
            policy.update_settings("users", colour="red")

    @pytest.mark.parametrize(
        "percentage,expected",
        [
            (None, QuotaStatus.OK),
            (50, QuotaStatus.OK),
            (80, QuotaStatus.WARNING),
            (90, QuotaStatus.CRITICAL),
            (100, QuotaStatus.EXCEEDED),
            (250, QuotaStatus.EXCEEDED),
        ],
    )
    def test_status_for(self, percentage, expected):
        assert EnforcementSettings().status_for(percentage) == expected


# =============================================================================
# TestLimitValue
# =============================================================================


class TestLimitValue:

    def test_from_raw(self):
        assert Limit.from_raw(-1).is_unlimited
        assert Limit.from_raw("12") == Limit.bounded(12)
        assert Limit.from_raw(1.5).value == 1.5

    def test_negative_bound_rejected(self):
        with pytest.raises(ValueError):
            Limit.from_raw(-5)

    def test_percentage(self):
        assert Limit.unlimited().percentage(1000) is None
        assert Limit.bounded(10).percentage(5) == 50
        assert Limit.bounded(0).percentage(0) == 0
        assert Limit.bounded(0).percentage(1) == 100

    def test_remaining_and_raw(self):
        assert Limit.bounded(10).remaining(12) == 0
        assert Limit.unlimited().remaining(12) is None
        assert Limit.unlimited().to_raw() == -1
        assert str(Limit.bounded(25)) == "25"
