"""
Email delivery for quota notifications.

Providers:
- SendGrid (production)
- SMTP (development)
- Mock (testing)

Selected with QUOTA_EMAIL_PROVIDER (sendgrid | smtp | mock).
"""

import os
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

import httpx

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
DEFAULT_FROM_EMAIL = "quotas@example.com"
DEFAULT_FROM_NAME = "Tenant Guard"


@dataclass
class EmailMessage:
    to_email: str
    subject: str
    text_body: str
    to_name: Optional[str] = None
    html_body: Optional[str] = None
    tags: Optional[List[str]] = None


class EmailSender(ABC):
    """Abstract email sender. send() returns True on success."""

    @abstractmethod
    def send(self, message: EmailMessage) -> bool:
        pass


class SendGridEmailSender(EmailSender):
    """SendGrid v3 API sender."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key or os.getenv("SENDGRID_API_KEY")
        self.from_email = from_email or os.getenv("QUOTA_FROM_EMAIL", DEFAULT_FROM_EMAIL)
        self.from_name = from_name or os.getenv("QUOTA_FROM_NAME", DEFAULT_FROM_NAME)
        self._client = client

        if not self.api_key:
            logger.warning("SendGrid API key not configured")

    def _payload(self, message: EmailMessage) -> dict:
        content = [{"type": "text/plain", "value": message.text_body}]
        if message.html_body:
            content.append({"type": "text/html", "value": message.html_body})

        payload = {
            "personalizations": [
                {"to": [{"email": message.to_email, "name": message.to_name or ""}]}
            ],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": message.subject,
            "content": content,
        }
        if message.tags:
            payload["categories"] = message.tags
        return payload

    def send(self, message: EmailMessage) -> bool:
        if not self.api_key:
            logger.error("Cannot send email: SendGrid API key not configured")
            return False

        try:
            client = self._client or httpx.Client(timeout=30.0)
            try:
                response = client.post(
                    SENDGRID_SEND_URL,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=self._payload(message),
                )
            finally:
                if self._client is None:
                    client.close()
        except httpx.HTTPError as e:
            logger.error(
                "Failed to send email via SendGrid",
                extra={"subject": message.subject, "error": str(e)},
                exc_info=True,
            )
            return False

        if response.status_code in (200, 202):
            logger.info("Email sent", extra={"subject": message.subject})
            return True

        logger.error(
            "SendGrid API error",
            extra={"status_code": response.status_code, "response": response.text},
        )
        return False


class SMTPEmailSender(EmailSender):
    """SMTP sender for development."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
    ):
        self.host = host or os.getenv("SMTP_HOST", "localhost")
        self.port = port or int(os.getenv("SMTP_PORT", "587"))
        self.username = username or os.getenv("SMTP_USERNAME")
        self.password = password or os.getenv("SMTP_PASSWORD")
        self.use_tls = use_tls
        self.from_email = os.getenv("QUOTA_FROM_EMAIL", DEFAULT_FROM_EMAIL)
        self.from_name = os.getenv("QUOTA_FROM_NAME", DEFAULT_FROM_NAME)

    def send(self, message: EmailMessage) -> bool:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = message.to_email
        msg.attach(MIMEText(message.text_body, "plain"))
        if message.html_body:
            msg.attach(MIMEText(message.html_body, "html"))

        try:
            with smtplib.SMTP(self.host, self.port) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.from_email, [message.to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "Failed to send email via SMTP",
                extra={"subject": message.subject, "error": str(e)},
                exc_info=True,
            )
            return False

        logger.info("Email sent via SMTP", extra={"subject": message.subject})
        return True


class MockEmailSender(EmailSender):
    """Records messages instead of sending them."""

    def __init__(self, succeed: bool = True):
        self.sent_messages: List[EmailMessage] = []
        self.succeed = succeed

    def send(self, message: EmailMessage) -> bool:
        self.sent_messages.append(message)
        return self.succeed


def get_email_sender() -> EmailSender:
    provider = os.getenv("QUOTA_EMAIL_PROVIDER", "sendgrid").lower()
    if provider == "smtp":
        return SMTPEmailSender()
    if provider == "mock":
        return MockEmailSender()
    return SendGridEmailSender()
