"""
Quota notifications.

QuotaNotifier is the seam the grace-period enforcer calls. The default
implementation writes outbox rows that the quota notification worker
delivers, so a slow or failing provider never delays a quota decision.

Email is queued unless the metric's send_email switch is off. SMS is
added for urgent notices when send_sms is on: usage at or above 90% of
the limit, or 3 or fewer grace days left.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from tenantguard.models.base import utcnow
from tenantguard.models.notification import (
    NotificationChannel,
    NotificationKind,
    QuotaNotification,
)
from tenantguard.models.tenant import Tenant

logger = logging.getLogger(__name__)

SMS_PERCENTAGE_THRESHOLD = 90
SMS_DAYS_REMAINING_THRESHOLD = 3


def is_urgent(percentage: Optional[float] = None, days_remaining: Optional[int] = None) -> bool:
    if percentage is not None and percentage >= SMS_PERCENTAGE_THRESHOLD:
        return True
    if days_remaining is not None and days_remaining <= SMS_DAYS_REMAINING_THRESHOLD:
        return True
    return False


class QuotaNotifier(ABC):
    """
    Delivers quota warnings and grace reminders.

    send_email / send_sms are the per-metric channel switches from the
    enforcement settings.
    """

    @abstractmethod
    def send_warning(
        self,
        tenant: Tenant,
        metric: str,
        percentage: float,
        days_remaining: Optional[int] = None,
        send_email: bool = True,
        send_sms: bool = True,
    ) -> None:
        pass

    @abstractmethod
    def send_grace_reminder(
        self,
        tenant: Tenant,
        metric: str,
        percentage: float,
        days_remaining: int,
        send_email: bool = True,
        send_sms: bool = True,
    ) -> None:
        pass


class OutboxQuotaNotifier(QuotaNotifier):
    """
    Queues notifications in the quota_notifications outbox.

    Each row is written in its own savepoint. A failed write rolls back
    only that row, and the caller's pending changes stay usable.
    """

    def __init__(self, session: Session, send_email: bool = True, send_sms: bool = True):
        self.db = session
        self.send_email = send_email
        self.send_sms = send_sms

    def send_warning(
        self,
        tenant: Tenant,
        metric: str,
        percentage: float,
        days_remaining: Optional[int] = None,
        send_email: bool = True,
        send_sms: bool = True,
    ) -> None:
        subject = f"Quota warning: {metric} at {percentage:.0f}%"
        message = f"Your {metric} usage has reached {percentage:.1f}% of your plan limit."
        if days_remaining is not None:
            message += f" You have {days_remaining} day(s) to reduce usage or upgrade before creation is blocked."
        self._queue(
            tenant,
            NotificationKind.QUOTA_WARNING,
            metric,
            subject,
            message,
            {"percentage": round(percentage, 2), "days_remaining": days_remaining},
            urgent=is_urgent(percentage, days_remaining),
            send_email=send_email,
            send_sms=send_sms,
        )

    def send_grace_reminder(
        self,
        tenant: Tenant,
        metric: str,
        percentage: float,
        days_remaining: int,
        send_email: bool = True,
        send_sms: bool = True,
    ) -> None:
        subject = f"Action required: {days_remaining} day(s) left for {metric}"
        message = (
            f"Your {metric} usage is at {percentage:.1f}% of your plan limit. "
            f"Creation will be blocked in {days_remaining} day(s) unless usage is reduced "
            f"or your plan is upgraded."
        )
        self._queue(
            tenant,
            NotificationKind.GRACE_REMINDER,
            metric,
            subject,
            message,
            {"percentage": round(percentage, 2), "days_remaining": days_remaining},
            urgent=is_urgent(percentage, days_remaining),
            send_email=send_email,
            send_sms=send_sms,
        )

    def _queue(
        self,
        tenant: Tenant,
        kind: NotificationKind,
        metric: str,
        subject: str,
        message: str,
        payload: dict,
        urgent: bool,
        send_email: bool = True,
        send_sms: bool = True,
    ) -> List[QuotaNotification]:
        channels = []
        if self.send_email and send_email:
            channels.append(NotificationChannel.EMAIL)
        if self.send_sms and send_sms and urgent:
            channels.append(NotificationChannel.SMS)

        now = utcnow()
        queued = []
        for channel in channels:
            with self.db.begin_nested():
                row = self._queue_one(tenant, kind, metric, channel, subject, message, payload, now)
                if row is not None:
                    self.db.flush()
            if row is not None:
                queued.append(row)
        return queued

    def _queue_one(
        self,
        tenant: Tenant,
        kind: NotificationKind,
        metric: str,
        channel: NotificationChannel,
        subject: str,
        message: str,
        payload: dict,
        now: datetime,
    ) -> Optional[QuotaNotification]:
        key = QuotaNotification.build_idempotency_key(tenant.id, kind, metric, channel, now)
        exists = (
            self.db.query(QuotaNotification.id)
            .filter(QuotaNotification.idempotency_key == key)
            .first()
        )
        if exists is not None:
            logger.debug("Notification already queued today", extra={"idempotency_key": key})
            return None

        row = QuotaNotification(
            tenant_id=tenant.id,
            kind=kind.value,
            channel=channel.value,
            metric=metric,
            subject=subject,
            message=message,
            payload=payload,
            idempotency_key=key,
            queued_at=now,
        )
        self.db.add(row)
        logger.info(
            "Quota notification queued",
            extra={
                "tenant_id": tenant.id,
                "kind": kind.value,
                "channel": channel.value,
                "metric": metric,
            },
        )
        return row
