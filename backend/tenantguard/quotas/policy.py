"""
Quota policy - limits and enforcement thresholds.

Limit resolution for a tenant and metric, first match wins:
1. tenant metadata  max_<limit_key>
2. plan metadata    max_<limit_key>
3. default table for the plan's tier (config/quota_defaults.yml)

Tenants without an active plan, or whose plan has an unknown tier, use
the free tier. A metric missing from the table resolves to a zero bound,
which blocks immediately.
"""

import logging
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenantguard.config.quota_defaults import QuotaDefaultsLoader, get_quota_defaults_loader
from tenantguard.models.quota import QuotaEnforcementSetting
from tenantguard.models.tenant import Tenant
from tenantguard.quotas.errors import QuotaEvaluationError
from tenantguard.quotas.metrics import limit_key_for, limit_scale_for
from tenantguard.quotas.models import EnforcementSettings, Limit

logger = logging.getLogger(__name__)


def override_key(metric: str) -> str:
    return f"max_{limit_key_for(metric)}"


class QuotaPolicy:
    """Resolves limits and enforcement settings."""

    def __init__(self, session: Session, defaults: Optional[QuotaDefaultsLoader] = None):
        self.db = session
        self.defaults = defaults or get_quota_defaults_loader()

    def tier_for(self, tenant: Tenant) -> str:
        plan = tenant.active_plan
        if plan is not None and self.defaults.has_tier(plan.tier):
            return plan.tier
        return self.defaults.default_tier

    def limit(self, tenant: Tenant, metric: str) -> Limit:
        """Effective limit for tenant and metric, in the metric's own unit."""
        key = override_key(metric)

        raw = tenant.limit_overrides.get(key)
        if raw is None and tenant.active_plan is not None:
            raw = tenant.active_plan.limit_overrides.get(key)
        if raw is None:
            raw = self.defaults.get_tier_limit(self.tier_for(tenant), limit_key_for(metric))
        if raw is None:
            logger.debug(
                "No limit configured, treating as zero",
                extra={"tenant_id": tenant.id, "metric": metric},
            )
            return Limit.bounded(0)

        try:
            limit = Limit.from_raw(raw)
        except (TypeError, ValueError) as e:
            raise QuotaEvaluationError(
                tenant.id, metric, f"Invalid limit value {raw!r}", cause=e
            ) from e

        scale = limit_scale_for(metric)
        if limit.is_unlimited or scale == 1:
            return limit
        return Limit.bounded(limit.value * scale)

    def settings_for(self, metric: str) -> EnforcementSettings:
        """Active per-metric settings, or the configured defaults."""
        try:
            row = (
                self.db.query(QuotaEnforcementSetting)
                .filter(
                    QuotaEnforcementSetting.metric == metric,
                    QuotaEnforcementSetting.is_active.is_(True),
                )
                .first()
            )
        except SQLAlchemyError as e:
            raise QuotaEvaluationError(None, metric, "Failed to load enforcement settings", cause=e) from e

        if row is None:
            return EnforcementSettings(**self.defaults.get_enforcement_defaults())

        return EnforcementSettings(
            warning_pct=row.warning_pct,
            critical_pct=row.critical_pct,
            block_pct=row.block_pct,
            grace_days=row.grace_days,
            send_email=row.send_email,
            send_sms=row.send_sms,
        )

    def set_custom_quota(
        self,
        tenant: Tenant,
        metric: str,
        limit: Union[Limit, int, float],
    ) -> Limit:
        """
        Store a tenant-level override in the metric's limit unit.

        For storage the override is given in gigabytes.
        """
        if not isinstance(limit, Limit):
            limit = Limit.from_raw(limit)

        overrides = tenant.limit_overrides
        overrides[override_key(metric)] = limit.to_raw()
        tenant.metadata_json = overrides
        self.db.flush()

        logger.info(
            "Custom quota set",
            extra={"tenant_id": tenant.id, "metric": metric, "limit": limit.to_raw()},
        )
        return limit

    def clear_custom_quota(self, tenant: Tenant, metric: str) -> None:
        overrides = tenant.limit_overrides
        if overrides.pop(override_key(metric), None) is not None:
            tenant.metadata_json = overrides
            self.db.flush()

    def update_settings(self, metric: str, **values) -> QuotaEnforcementSetting:
        """Create or update the settings row for a metric."""
        row = (
            self.db.query(QuotaEnforcementSetting)
            .filter(QuotaEnforcementSetting.metric == metric)
            .first()
        )
        if row is None:
            defaults = self.defaults.get_enforcement_defaults()
            row = QuotaEnforcementSetting(metric=metric, **defaults)
            self.db.add(row)

        for field_name, value in values.items():
            if value is None:
                continue
            if not hasattr(QuotaEnforcementSetting, field_name):
                raise ValueError(f"Unknown enforcement setting '{field_name}'")
            setattr(row, field_name, value)

        if not (row.warning_pct <= row.critical_pct <= row.block_pct):
            raise ValueError("Thresholds must satisfy warning_pct <= critical_pct <= block_pct")
        if row.grace_days < 0:
            raise ValueError("grace_days must be >= 0")

        self.db.flush()
        logger.info(
            "Quota enforcement settings updated",
            extra={"metric": metric, **{k: v for k, v in values.items() if v is not None}},
        )
        return row
