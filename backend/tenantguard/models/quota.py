"""
Quota warning and enforcement setting models.

QuotaWarning rows record that a tenant crossed a threshold for a metric.
The oldest non-dismissed warning at or above the block threshold is the
anchor from which grace-period days are counted.

QuotaEnforcementSetting rows hold per-metric thresholds; metrics without
an active row use the defaults (80 / 90 / 100 / 10 days).
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String

from tenantguard.db_base import Base
from tenantguard.models.base import (
    TenantScopedMixin,
    TimestampMixin,
    as_utc,
    generate_uuid,
    utcnow,
)


class WarningLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class QuotaWarning(Base, TenantScopedMixin, TimestampMixin):
    """Threshold crossing for one tenant and metric."""

    __tablename__ = "quota_warnings"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    metric = Column(String(100), nullable=False)
    percentage_used = Column(Float, nullable=False)
    level = Column(String(20), nullable=False, default=WarningLevel.LOW.value)

    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_dismissed = Column(Boolean, nullable=False, default=False)
    dismissed_at = Column(DateTime(timezone=True), nullable=True)
    last_notified_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last warning/reminder sent for this anchor",
    )

    __table_args__ = (
        Index("ix_quota_warnings_tenant_metric", "tenant_id", "metric", "is_dismissed"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuotaWarning(tenant_id={self.tenant_id}, metric={self.metric}, "
            f"level={self.level}, dismissed={self.is_dismissed})>"
        )

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Not dismissed and not yet expired."""
        if self.is_dismissed:
            return False
        expires_at = as_utc(self.expires_at)
        if expires_at is None:
            return True
        return expires_at > (now or utcnow())

    def dismiss(self, now: Optional[datetime] = None) -> None:
        self.is_dismissed = True
        self.dismissed_at = now or utcnow()


class QuotaEnforcementSetting(Base, TimestampMixin):
    """Per-metric enforcement thresholds."""

    __tablename__ = "quota_enforcement_settings"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    metric = Column(String(100), nullable=False, unique=True)
    warning_pct = Column(Integer, nullable=False, default=80)
    critical_pct = Column(Integer, nullable=False, default=90)
    block_pct = Column(Integer, nullable=False, default=100)
    grace_days = Column(Integer, nullable=False, default=10)
    send_email = Column(Boolean, nullable=False, default=True)
    send_sms = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<QuotaEnforcementSetting(metric={self.metric}, block_pct={self.block_pct})>"
