"""
Quota notification worker.

Drains the quota_notifications outbox:
- picks up rows with sent_at and failed_at both null, oldest first
- delivers email rows to the tenant contact email, SMS rows to its phone
- records sent/failed state on each row

Run as a cron job or background worker:
    python -m tenantguard.jobs.quota_notification_worker

Configuration:
- QUOTA_NOTIFICATION_BATCH_SIZE: rows per run (default: 50)
- QUOTA_EMAIL_PROVIDER: sendgrid | smtp | mock
- QUOTA_SMS_PROVIDER: twilio | mock
"""

import os
import sys
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from tenantguard.database.session import session_scope
from tenantguard.models.notification import NotificationChannel, QuotaNotification
from tenantguard.models.tenant import Tenant
from tenantguard.services.email_sender import EmailMessage, EmailSender, get_email_sender
from tenantguard.services.sms_sender import SmsMessage, SmsSender, get_sms_sender

logger = logging.getLogger(__name__)

QUOTA_NOTIFICATION_BATCH_SIZE = int(os.getenv("QUOTA_NOTIFICATION_BATCH_SIZE", "50"))


class QuotaNotificationWorker:
    """Delivers queued quota notifications across all tenants."""

    def __init__(
        self,
        db_session: Session,
        email_sender: Optional[EmailSender] = None,
        sms_sender: Optional[SmsSender] = None,
    ):
        self.db = db_session
        self.email_sender = email_sender or get_email_sender()
        self.sms_sender = sms_sender or get_sms_sender()
        self.run_id = str(uuid.uuid4())
        self.stats = {
            "processed": 0,
            "sent": 0,
            "failed": 0,
            "errors": 0,
        }

    def _get_pending(self, limit: int) -> List[QuotaNotification]:
        return (
            self.db.query(QuotaNotification)
            .filter(
                QuotaNotification.sent_at.is_(None),
                QuotaNotification.failed_at.is_(None),
            )
            .order_by(QuotaNotification.queued_at.asc())
            .limit(limit)
            .all()
        )

    def _deliver(self, notification: QuotaNotification, tenant: Tenant) -> bool:
        if notification.channel == NotificationChannel.SMS.value:
            if not tenant.phone:
                notification.mark_failed("Tenant has no phone number")
                return False
            return self.sms_sender.send(SmsMessage(
                to_number=tenant.phone,
                body=f"{notification.subject}. {notification.message}",
            ))

        if not tenant.email:
            notification.mark_failed("Tenant has no contact email")
            return False
        return self.email_sender.send(EmailMessage(
            to_email=tenant.email,
            to_name=tenant.name,
            subject=notification.subject,
            text_body=notification.message,
            tags=[f"quota:{notification.kind}", f"tenant:{notification.tenant_id}"],
        ))

    def process_notification(self, notification: QuotaNotification) -> bool:
        self.stats["processed"] += 1

        tenant = self.db.query(Tenant).filter(Tenant.id == notification.tenant_id).first()
        if tenant is None:
            notification.mark_failed("Tenant not found")
            self.stats["failed"] += 1
            return False

        try:
            success = self._deliver(notification, tenant)
        except Exception as e:
            notification.mark_failed(str(e))
            self.stats["failed"] += 1
            self.stats["errors"] += 1
            logger.error(
                "Failed to deliver quota notification",
                extra={"notification_id": notification.id, "error": str(e)},
                exc_info=True,
            )
            return False

        if success:
            notification.mark_sent()
            self.stats["sent"] += 1
            logger.info(
                "Quota notification delivered",
                extra={
                    "notification_id": notification.id,
                    "channel": notification.channel,
                    "kind": notification.kind,
                },
            )
            return True

        if notification.failed_at is None:
            notification.mark_failed("Provider returned failure")
        self.stats["failed"] += 1
        return False

    def run(self, batch_size: int = QUOTA_NOTIFICATION_BATCH_SIZE) -> Dict:
        start_time = datetime.now(timezone.utc)
        logger.info("Starting quota notification worker", extra={"run_id": self.run_id})

        pending = self._get_pending(batch_size)
        logger.info(
            f"Found {len(pending)} pending quota notifications",
            extra={"run_id": self.run_id},
        )

        for notification in pending:
            self.process_notification(notification)
            self.db.flush()

        duration = (datetime.now(timezone.utc) - start_time).total_seconds()
        self.stats["duration_seconds"] = duration
        self.stats["run_id"] = self.run_id

        logger.info("Quota notification worker completed", extra=dict(self.stats))
        return self.stats


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info("Quota Notification Worker starting")

    try:
        with session_scope() as session:
            QuotaNotificationWorker(session).run()
    except Exception as e:
        logger.error("Quota Notification Worker failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)

    logger.info("Quota Notification Worker finished")


if __name__ == "__main__":
    main()
