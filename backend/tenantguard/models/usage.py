"""
Usage ledger model.

UsageRecord rows are append-only and immutable once written. Every row is
stamped with the billing period it belongs to so period aggregates can be
computed with a single range filter.

- counter rows accumulate within a period (api calls)
- gauge rows carry an absolute value that replaces the previous one (users, storage)
"""

import enum

from sqlalchemy import Column, DateTime, Float, Index, JSON, String

from tenantguard.db_base import Base
from tenantguard.models.base import TenantScopedMixin, generate_uuid, utcnow


class MetricType(str, enum.Enum):
    COUNTER = "counter"
    GAUGE = "gauge"


class UsageRecord(Base, TenantScopedMixin):
    """
    A single metering event.

    NOTE: Does not include TimestampMixin; rows are never updated.
    """

    __tablename__ = "usage_records"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    metric = Column(String(100), nullable=False, comment="Metric name, e.g. api_calls_monthly")
    metric_type = Column(String(20), nullable=False, default=MetricType.COUNTER.value)
    quantity = Column(Float, nullable=False, default=1.0)
    unit = Column(String(20), nullable=True, comment="calls | users | bytes | count")

    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)

    recorded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    metadata_json = Column("metadata", JSON, nullable=True)

    __table_args__ = (
        Index("ix_usage_records_tenant_metric_period", "tenant_id", "metric", "period_start"),
        Index("ix_usage_records_tenant_metric_recorded", "tenant_id", "metric", "recorded_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageRecord(tenant_id={self.tenant_id}, metric={self.metric}, "
            f"type={self.metric_type}, quantity={self.quantity})>"
        )
