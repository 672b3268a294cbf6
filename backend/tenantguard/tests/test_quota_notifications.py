"""
Tests for quota notification queuing and delivery.

Test classes:
- TestIsUrgent: SMS escalation thresholds
- TestOutboxQuotaNotifier: channels, idempotency, settings switches, failed writes
- TestQuotaNotificationWorker: delivery, missing contacts, provider failures
- TestSenders: SendGrid / Twilio request shape over a mocked httpx client
"""

import pytest
from unittest.mock import MagicMock

import httpx
from sqlalchemy.exc import IntegrityError

from tenantguard.jobs.quota_notification_worker import QuotaNotificationWorker
from tenantguard.models.base import utcnow
from tenantguard.models.notification import (
    NotificationChannel,
    NotificationKind,
    QuotaNotification,
)
from tenantguard.models.tenant import Tenant
from tenantguard.quotas.notifier import OutboxQuotaNotifier, is_urgent
from tenantguard.services.email_sender import (
    EmailMessage,
    MockEmailSender,
    SendGridEmailSender,
)
from tenantguard.services.sms_sender import MockSmsSender, SmsMessage, TwilioSmsSender


@pytest.fixture
def tenant(make):
    return make.tenant(plan=None, phone="+15550100")


def _queued(db_session, tenant):
    return (
        db_session.query(QuotaNotification)
        .filter(QuotaNotification.tenant_id == tenant.id)
        .order_by(QuotaNotification.channel)
        .all()
    )


# =============================================================================
# TestIsUrgent
# =============================================================================


class TestIsUrgent:

    @pytest.mark.parametrize(
        "percentage,days_remaining,expected",
        [
            (80, None, False),
            (89.9, 10, False),
            (90, None, True),
            (80, 3, True),
            (80, 4, False),
            (None, 0, True),
        ],
    )
    def test_thresholds(self, percentage, days_remaining, expected):
        assert is_urgent(percentage, days_remaining) is expected


# =============================================================================
# TestOutboxQuotaNotifier
# =============================================================================


class TestOutboxQuotaNotifier:

    def test_non_urgent_warning_is_email_only(self, db_session, tenant):
        OutboxQuotaNotifier(db_session).send_warning(tenant, "users", 82.0)

        rows = _queued(db_session, tenant)
        assert [r.channel for r in rows] == ["email"]
        assert rows[0].kind == NotificationKind.QUOTA_WARNING.value
        assert rows[0].payload == {"percentage": 82.0, "days_remaining": None}
        assert "82" in rows[0].subject

    def test_urgent_warning_adds_sms(self, db_session, tenant):
        OutboxQuotaNotifier(db_session).send_warning(tenant, "users", 100.0, 10)
        assert [r.channel for r in _queued(db_session, tenant)] == ["email", "sms"]

    def test_reminder_with_few_days_left_adds_sms(self, db_session, tenant):
        OutboxQuotaNotifier(db_session).send_grace_reminder(tenant, "projects", 100.0, 2)

        rows = _queued(db_session, tenant)
        assert {r.kind for r in rows} == {NotificationKind.GRACE_REMINDER.value}
        assert len(rows) == 2
        assert "2 day(s)" in rows[0].message

    def test_same_day_duplicates_are_dropped(self, db_session, tenant):
        notifier = OutboxQuotaNotifier(db_session)
        notifier.send_warning(tenant, "users", 95.0)
        notifier.send_warning(tenant, "users", 97.0)

        assert len(_queued(db_session, tenant)) == 2

    def test_idempotency_key_format(self, db_session, tenant):
        OutboxQuotaNotifier(db_session).send_warning(tenant, "users", 50.0)

        row = _queued(db_session, tenant)[0]
        day = utcnow().strftime("%Y-%m-%d")
        assert row.idempotency_key == f"{tenant.id}:quota_warning:users:email:{day}"

    def test_channels_can_be_disabled(self, db_session, tenant):
        OutboxQuotaNotifier(db_session, send_email=False, send_sms=False).send_warning(
            tenant, "users", 100.0
        )
        assert _queued(db_session, tenant) == []

    def test_per_metric_switches_narrow_channels(self, db_session, tenant):
        notifier = OutboxQuotaNotifier(db_session)
        notifier.send_warning(tenant, "users", 100.0, send_sms=False)
        notifier.send_grace_reminder(tenant, "projects", 100.0, 2, send_email=False)

        assert [(r.metric, r.channel) for r in _queued(db_session, tenant)] == [
            ("users", "email"),
            ("projects", "sms"),
        ]

    def test_notifier_switch_overrides_per_metric_switch(self, db_session, tenant):
        OutboxQuotaNotifier(db_session, send_sms=False).send_warning(
            tenant, "users", 100.0, send_sms=True
        )
        assert [r.channel for r in _queued(db_session, tenant)] == ["email"]

    def test_rejected_row_leaves_session_usable(self, db_session, tenant):
        class RejectingNotifier(OutboxQuotaNotifier):
            def _queue_one(self, tenant, kind, metric, channel, subject, message, payload, now):
                return super()._queue_one(tenant, kind, metric, channel, None, message, payload, now)

        tenant.phone = "+15550199"
        db_session.flush()

        with pytest.raises(IntegrityError):
            RejectingNotifier(db_session).send_warning(tenant, "users", 50.0)

        assert db_session.get(Tenant, tenant.id).phone == "+15550199"
        assert _queued(db_session, tenant) == []

        OutboxQuotaNotifier(db_session).send_warning(tenant, "users", 50.0)
        db_session.flush()
        assert [r.channel for r in _queued(db_session, tenant)] == ["email"]


# =============================================================================
# TestQuotaNotificationWorker
# =============================================================================


class TestQuotaNotificationWorker:

    def test_delivers_email_and_sms(self, db_session, tenant):
        OutboxQuotaNotifier(db_session).send_warning(tenant, "users", 100.0)
        email, sms = MockEmailSender(), MockSmsSender()

        stats = QuotaNotificationWorker(db_session, email, sms).run()

        assert stats["processed"] == 2
        assert stats["sent"] == 2
        assert email.sent_messages[0].to_email == "owner@example.com"
        assert "quota:quota_warning" in email.sent_messages[0].tags
        assert sms.sent_messages[0].to_number == "+15550100"
        assert all(r.sent_at is not None for r in _queued(db_session, tenant))

    def test_sent_rows_are_not_redelivered(self, db_session, tenant):
        OutboxQuotaNotifier(db_session).send_warning(tenant, "users", 50.0)
        email = MockEmailSender()
        QuotaNotificationWorker(db_session, email, MockSmsSender()).run()

        stats = QuotaNotificationWorker(db_session, email, MockSmsSender()).run()

        assert stats["processed"] == 0
        assert len(email.sent_messages) == 1

    def test_missing_phone_fails_sms_row(self, db_session, make):
        tenant = make.tenant(plan=None)
        OutboxQuotaNotifier(db_session).send_warning(tenant, "users", 100.0)
        sms = MockSmsSender()

        stats = QuotaNotificationWorker(db_session, MockEmailSender(), sms).run()

        assert stats["sent"] == 1
        assert stats["failed"] == 1
        assert sms.sent_messages == []
        failed = [r for r in _queued(db_session, tenant) if r.failed_at is not None]
        assert failed[0].channel == NotificationChannel.SMS.value
        assert failed[0].error == "Tenant has no phone number"

    def test_provider_failure_is_recorded(self, db_session, tenant):
        OutboxQuotaNotifier(db_session).send_warning(tenant, "users", 50.0)

        stats = QuotaNotificationWorker(
            db_session, MockEmailSender(succeed=False), MockSmsSender()
        ).run()

        assert stats["failed"] == 1
        assert _queued(db_session, tenant)[0].error == "Provider returned failure"

    def test_provider_exception_is_contained(self, db_session, tenant):
        OutboxQuotaNotifier(db_session).send_warning(tenant, "users", 50.0)
        email = MagicMock()
        email.send.side_effect = RuntimeError("boom")

        stats = QuotaNotificationWorker(db_session, email, MockSmsSender()).run()

        assert stats["errors"] == 1
        assert stats["failed"] == 1
        assert _queued(db_session, tenant)[0].error == "boom"

    def test_batch_size_limits_run(self, db_session, tenant):
        notifier = OutboxQuotaNotifier(db_session)
        for metric in ("users", "projects", "customers"):
            notifier.send_warning(tenant, metric, 50.0)

        stats = QuotaNotificationWorker(db_session, MockEmailSender(), MockSmsSender()).run(
            batch_size=2
        )
        assert stats["processed"] == 2


# =============================================================================
# TestSenders
# =============================================================================


class TestSenders:

    def test_sendgrid_posts_payload(self):
        client = MagicMock()
        client.post.return_value = httpx.Response(202)
        sender = SendGridEmailSender(api_key="sg-key", from_email="q@example.com", client=client)

        ok = sender.send(EmailMessage(
            to_email="a@example.com", subject="Hi", text_body="Body", tags=["quota"]
        ))

        assert ok is True
        _, kwargs = client.post.call_args
        assert kwargs["headers"]["Authorization"] == "Bearer sg-key"
        assert kwargs["json"]["categories"] == ["quota"]
        assert kwargs["json"]["from"]["email"] == "q@example.com"

    def test_sendgrid_without_key_fails(self, monkeypatch):
        monkeypatch.delenv("SENDGRID_API_KEY", raising=False)
        assert SendGridEmailSender().send(
            EmailMessage(to_email="a@example.com", subject="s", text_body="b")
        ) is False

    def test_sendgrid_http_error_returns_false(self):
        client = MagicMock()
        client.post.side_effect = httpx.ConnectError("refused")
        sender = SendGridEmailSender(api_key="k", client=client)
        assert sender.send(EmailMessage(to_email="a@example.com", subject="s", text_body="b")) is False

    def test_twilio_posts_form(self):
        client = MagicMock()
        client.post.return_value = httpx.Response(201)
        sender = TwilioSmsSender("AC1", "token", "+15550000", client=client)

        assert sender.send(SmsMessage(to_number="+15550100", body="hello")) is True
        args, kwargs = client.post.call_args
        assert args[0].endswith("/Accounts/AC1/Messages.json")
        assert kwargs["data"]["To"] == "+15550100"

    def test_twilio_error_status(self):
        client = MagicMock()
        client.post.return_value = httpx.Response(400, text="bad number")
        sender = TwilioSmsSender("AC1", "token", "+15550000", client=client)
        assert sender.send(SmsMessage(to_number="x", body="hello")) is False
