"""
Quota enforcer - base allow/deny against plan limits.

can_create() is the hard check: unlimited, or current usage strictly
below the limit. GracePeriodEnforcer wraps this with warnings and a
grace window before blocking.

Usage:
    enforcer = QuotaEnforcer(session, cache=get_cache_backend())
    if not enforcer.can_create(tenant, "users"):
        raise QuotaExceededError(...)
    enforcer.set_usage(tenant, "users", user_count)
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from tenantguard.cache import CacheBackend
from tenantguard.models.tenant import Tenant
from tenantguard.models.usage import MetricType
from tenantguard.quotas.ledger import UsageLedger
from tenantguard.quotas.metrics import QUOTA_METRICS
from tenantguard.quotas.models import Limit, QuotaDecision, QuotaState, QuotaUsage
from tenantguard.quotas.policy import QuotaPolicy

logger = logging.getLogger(__name__)

APPROACHING_LIMIT_PCT = 80


class QuotaEnforcer:
    """Compares usage with limits."""

    def __init__(
        self,
        session: Session,
        cache: Optional[CacheBackend] = None,
        policy: Optional[QuotaPolicy] = None,
        ledger: Optional[UsageLedger] = None,
    ):
        self.db = session
        self.policy = policy or QuotaPolicy(session)
        self.ledger = ledger or UsageLedger(session, cache)

    def limit(self, tenant: Tenant, metric: str) -> Limit:
        return self.policy.limit(tenant, metric)

    def current_usage(self, tenant: Tenant, metric: str) -> float:
        return self.ledger.current_usage(tenant.id, metric)

    def check(self, tenant: Optional[Tenant], metric: str) -> QuotaDecision:
        """Structured base decision for creating one more unit."""
        if tenant is None:
            return QuotaDecision(
                allowed=False,
                state=QuotaState.NOT_FOUND,
                metric=metric,
                current=0,
                limit=Limit.bounded(0),
                reason="Tenant does not exist.",
            )

        limit = self.limit(tenant, metric)
        if limit.is_unlimited:
            return QuotaDecision(
                allowed=True,
                state=QuotaState.OK,
                metric=metric,
                current=0,
                limit=limit,
                reason="Unlimited.",
            )

        current = self.current_usage(tenant, metric)
        allowed = limit.allows(current)
        return QuotaDecision(
            allowed=allowed,
            state=QuotaState.OK if allowed else QuotaState.BLOCKED,
            metric=metric,
            current=current,
            limit=limit,
            reason="Within limit." if allowed else f"Quota limit reached for '{metric}'.",
            percentage=limit.percentage(current),
        )

    def can_create(self, tenant: Tenant, metric: str) -> bool:
        return self.check(tenant, metric).allowed

    def can_use_storage(self, tenant: Tenant, additional_bytes: int) -> bool:
        """True when current storage plus additional_bytes fits the limit."""
        limit = self.limit(tenant, "storage_bytes")
        if limit.is_unlimited:
            return True
        current = self.current_usage(tenant, "storage_bytes")
        return current + additional_bytes <= limit.value

    def can_make_api_call(self, tenant: Tenant) -> bool:
        return self.can_create(tenant, "api_calls_monthly")

    def increment_api_calls(self, tenant: Tenant, count: int = 1) -> None:
        self.record_usage(tenant, "api_calls_monthly", count, MetricType.COUNTER)

    def record_usage(
        self,
        tenant: Tenant,
        metric: str,
        quantity: float = 1,
        metric_type: Optional[MetricType] = None,
    ) -> None:
        self.ledger.record(tenant.id, metric, quantity, metric_type)

    def set_usage(self, tenant: Tenant, metric: str, value: float) -> None:
        """Record an absolute gauge value."""
        self.ledger.record(tenant.id, metric, value, MetricType.GAUGE)

    def is_approaching_limit(
        self,
        tenant: Tenant,
        metric: str,
        threshold_pct: float = APPROACHING_LIMIT_PCT,
    ) -> bool:
        limit = self.limit(tenant, metric)
        if limit.is_unlimited:
            return False
        percentage = limit.percentage(self.current_usage(tenant, metric))
        return percentage >= threshold_pct

    def usage_for(self, tenant: Tenant, metric: str) -> QuotaUsage:
        limit = self.limit(tenant, metric)
        used = self.current_usage(tenant, metric)
        settings = self.policy.settings_for(metric)
        return QuotaUsage(
            metric=metric,
            limit=limit,
            used=used,
            status=settings.status_for(limit.percentage(used)),
        )

    def quota_summary(self, tenant: Tenant) -> Dict[str, dict]:
        """Limit, used, remaining, percentage and status per metric."""
        return {metric: self.usage_for(tenant, metric).to_dict() for metric in QUOTA_METRICS}

    def tenants_nearing_quotas(
        self,
        tenants: List[Tenant],
        threshold_pct: float = APPROACHING_LIMIT_PCT,
    ) -> List[dict]:
        """Tenants with at least one metric at or above threshold_pct."""
        result = []
        for tenant in tenants:
            warnings = [
                metric
                for metric in QUOTA_METRICS
                if self.is_approaching_limit(tenant, metric, threshold_pct)
            ]
            if warnings:
                result.append({"tenant_id": tenant.id, "metrics": warnings})
        return result

    def clear_cache(self, tenant: Tenant, metric: Optional[str] = None) -> int:
        return self.ledger.clear_cache(tenant.id, metric)
