"""
Quota notification outbox.

Each row is one message to deliver on one channel. Rows are written in
the same transaction as the quota decision that produced them and drained
by the quota notification worker, which records sent/failed state.

Idempotency key format: {tenant_id}:{kind}:{metric}:{channel}:{YYYY-MM-DD}
so a tenant receives at most one message per kind, metric and channel a day.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Index, JSON, String, Text

from tenantguard.db_base import Base
from tenantguard.models.base import (
    TenantScopedMixin,
    TimestampMixin,
    generate_uuid,
    utcnow,
)


class NotificationKind(str, enum.Enum):
    QUOTA_WARNING = "quota_warning"
    GRACE_REMINDER = "grace_reminder"


class NotificationChannel(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"


class QuotaNotification(Base, TenantScopedMixin, TimestampMixin):
    __tablename__ = "quota_notifications"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    kind = Column(String(50), nullable=False)
    channel = Column(String(20), nullable=False)
    metric = Column(String(100), nullable=False)

    subject = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)

    idempotency_key = Column(String(255), nullable=False, unique=True)

    queued_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(String(500), nullable=True)

    __table_args__ = (
        Index("ix_quota_notifications_pending", "channel", "sent_at", "failed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuotaNotification(tenant_id={self.tenant_id}, kind={self.kind}, "
            f"channel={self.channel}, metric={self.metric})>"
        )

    @staticmethod
    def build_idempotency_key(
        tenant_id: str,
        kind: NotificationKind,
        metric: str,
        channel: NotificationChannel,
        at: datetime,
    ) -> str:
        return f"{tenant_id}:{kind.value}:{metric}:{channel.value}:{at.strftime('%Y-%m-%d')}"

    def mark_sent(self) -> None:
        self.sent_at = utcnow()

    def mark_failed(self, error: Optional[str]) -> None:
        self.failed_at = utcnow()
        self.error = error[:500] if error else None
