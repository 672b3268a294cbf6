"""
Usage ledger - append-only metering with a cached aggregate.

Every metering event writes an immutable UsageRecord stamped with its
billing period. The current aggregate per tenant, metric and period is
cached:

- counters: the cached sum is invalidated on every record so the next
  read recomputes it from the store
- gauges: the cached value is overwritten with the new absolute value

The cache can drift from the store (lost invalidation, Redis restart).
reconcile() recomputes from the store and overwrites the cache.

Billing periods are calendar months in UTC, half-open [start, end).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenantguard.cache import (
    QUOTA_CACHE_TTL_SECONDS,
    CacheBackend,
    CacheError,
    usage_key,
)
from tenantguard.models.base import as_utc, utcnow
from tenantguard.models.usage import MetricType, UsageRecord
from tenantguard.quotas.errors import QuotaEvaluationError
from tenantguard.quotas.metrics import get_metric

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BillingPeriod:
    start: datetime
    end: datetime

    @property
    def key(self) -> str:
        return self.start.strftime("%Y-%m")

    def contains(self, at: datetime) -> bool:
        return self.start <= at < self.end


def billing_period(at: Optional[datetime] = None) -> BillingPeriod:
    """Calendar month containing at (UTC)."""
    at = as_utc(at) if at is not None else utcnow()
    start = at.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return BillingPeriod(start=start, end=end)


@dataclass(frozen=True)
class ReconcileResult:
    tenant_id: str
    metric: str
    period: str
    cached: Optional[float]
    actual: float

    @property
    def drifted(self) -> bool:
        return self.cached is not None and self.cached != self.actual

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "metric": self.metric,
            "period": self.period,
            "cached": self.cached,
            "actual": self.actual,
            "drifted": self.drifted,
        }


class UsageLedger:
    """Records usage and serves current aggregates."""

    def __init__(self, session: Session, cache: Optional[CacheBackend] = None):
        self.db = session
        self.cache = cache

    def metric_type(self, tenant_id: str, metric: str) -> MetricType:
        """
        Accumulation type for a metric.

        Registered metrics use their declared type; others take the type
        of their latest record, defaulting to counter.
        """
        definition = get_metric(metric)
        if definition is not None:
            return definition.metric_type

        latest = (
            self.db.query(UsageRecord.metric_type)
            .filter(UsageRecord.tenant_id == tenant_id, UsageRecord.metric == metric)
            .order_by(UsageRecord.recorded_at.desc())
            .first()
        )
        if latest is not None:
            return MetricType(latest[0])
        return MetricType.COUNTER

    def record(
        self,
        tenant_id: str,
        metric: str,
        quantity: float = 1,
        metric_type: Optional[MetricType] = None,
        unit: Optional[str] = None,
        at: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> UsageRecord:
        """
        Append a metering event.

        Counters add quantity to the period's total; gauges replace the
        current value with quantity.
        """
        if quantity < 0:
            raise ValueError(f"Usage quantity must be >= 0, got {quantity}")

        at = as_utc(at) if at is not None else utcnow()
        period = billing_period(at)
        definition = get_metric(metric)
        if metric_type is None:
            metric_type = self.metric_type(tenant_id, metric)
        if unit is None and definition is not None:
            unit = definition.unit

        record = UsageRecord(
            tenant_id=tenant_id,
            metric=metric,
            metric_type=metric_type.value,
            quantity=quantity,
            unit=unit,
            period_start=period.start,
            period_end=period.end,
            recorded_at=at,
            metadata_json=metadata or {},
        )
        try:
            self.db.add(record)
            self.db.flush()
        except SQLAlchemyError as e:
            raise QuotaEvaluationError(tenant_id, metric, "Failed to record usage", cause=e) from e

        self._update_cache(tenant_id, metric, metric_type, quantity, period)

        logger.debug(
            "Usage recorded",
            extra={
                "tenant_id": tenant_id,
                "metric": metric,
                "metric_type": metric_type.value,
                "quantity": quantity,
            },
        )
        return record

    def _update_cache(
        self,
        tenant_id: str,
        metric: str,
        metric_type: MetricType,
        quantity: float,
        period: BillingPeriod,
    ) -> None:
        if self.cache is None:
            return
        key = usage_key(tenant_id, metric, period.key)
        try:
            if metric_type == MetricType.GAUGE:
                self.cache.set(key, quantity, QUOTA_CACHE_TTL_SECONDS)
            else:
                self.cache.delete(key)
        except CacheError as e:
            logger.error(
                "Usage cache update failed; aggregate may be stale until reconcile",
                extra={"tenant_id": tenant_id, "metric": metric, "error": str(e)},
            )

    def current_usage(
        self,
        tenant_id: str,
        metric: str,
        at: Optional[datetime] = None,
    ) -> float:
        """Current aggregate, served from cache when possible."""
        period = billing_period(at)
        key = usage_key(tenant_id, metric, period.key)

        if self.cache is not None:
            try:
                cached = self.cache.get(key)
            except CacheError as e:
                logger.warning(
                    "Usage cache read failed, computing from store",
                    extra={"tenant_id": tenant_id, "metric": metric, "error": str(e)},
                )
                cached = None
            if cached is not None:
                return float(cached)

        actual = self.compute_usage(tenant_id, metric, at)

        if self.cache is not None:
            try:
                self.cache.set(key, actual, QUOTA_CACHE_TTL_SECONDS)
            except CacheError as e:
                logger.warning(
                    "Usage cache write failed",
                    extra={"tenant_id": tenant_id, "metric": metric, "error": str(e)},
                )

        return actual

    def compute_usage(
        self,
        tenant_id: str,
        metric: str,
        at: Optional[datetime] = None,
    ) -> float:
        """
        Authoritative aggregate from the store.

        Counters sum the period's records. Gauges return the latest value
        ever recorded, since a gauge describes current state rather than
        consumption within the period.
        """
        period = billing_period(at)
        try:
            metric_type = self.metric_type(tenant_id, metric)
            if metric_type == MetricType.COUNTER:
                total = (
                    self.db.query(func.coalesce(func.sum(UsageRecord.quantity), 0))
                    .filter(
                        UsageRecord.tenant_id == tenant_id,
                        UsageRecord.metric == metric,
                        UsageRecord.metric_type == MetricType.COUNTER.value,
                        UsageRecord.period_start == period.start,
                    )
                    .scalar()
                )
                return float(total or 0)

            latest = (
                self.db.query(UsageRecord.quantity)
                .filter(
                    UsageRecord.tenant_id == tenant_id,
                    UsageRecord.metric == metric,
                    UsageRecord.metric_type == MetricType.GAUGE.value,
                    UsageRecord.recorded_at < period.end,
                )
                .order_by(UsageRecord.recorded_at.desc(), UsageRecord.created_at.desc())
                .first()
            )
            return float(latest[0]) if latest is not None else 0.0
        except SQLAlchemyError as e:
            logger.error(
                "Failed to compute usage",
                extra={"tenant_id": tenant_id, "metric": metric, "error": str(e)},
                exc_info=True,
            )
            raise QuotaEvaluationError(tenant_id, metric, "Failed to compute usage", cause=e) from e

    def reconcile(
        self,
        tenant_id: str,
        metric: str,
        at: Optional[datetime] = None,
    ) -> ReconcileResult:
        """Recompute from the store and overwrite the cached aggregate."""
        period = billing_period(at)
        key = usage_key(tenant_id, metric, period.key)

        cached = None
        if self.cache is not None:
            try:
                raw = self.cache.get(key)
                cached = float(raw) if raw is not None else None
            except CacheError as e:
                logger.warning(
                    "Usage cache read failed during reconcile",
                    extra={"tenant_id": tenant_id, "metric": metric, "error": str(e)},
                )

        actual = self.compute_usage(tenant_id, metric, at)
        result = ReconcileResult(tenant_id, metric, period.key, cached, actual)

        if self.cache is not None:
            try:
                self.cache.set(key, actual, QUOTA_CACHE_TTL_SECONDS)
            except CacheError as e:
                logger.warning(
                    "Usage cache write failed during reconcile",
                    extra={"tenant_id": tenant_id, "metric": metric, "error": str(e)},
                )

        if result.drifted:
            logger.warning("Usage cache drift corrected", extra=result.to_dict())

        return result

    def clear_cache(self, tenant_id: str, metric: Optional[str] = None) -> int:
        """Drop cached aggregates for a tenant (one metric or all)."""
        if self.cache is None:
            return 0
        pattern = usage_key(tenant_id, metric or "*", "*")
        try:
            return self.cache.delete_pattern(pattern)
        except CacheError as e:
            logger.warning(
                "Usage cache clear failed",
                extra={"tenant_id": tenant_id, "error": str(e)},
            )
            return 0
